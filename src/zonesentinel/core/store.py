"""
ZoneSentinel Store Access - Redis-backed risk zone persistence

Read/write contract used by the score engine and the posture aggregator.
Redis is the single authoritative store; every record is a Pydantic model
serialized as JSON.

Key layout (prefix from RedisConfig.key_prefix, default "riskzone"):
    {p}:events:data             HASH   event_id -> SecurityEvent JSON
    {p}:events:{cell}           ZSET   event_id scored by event timestamp
    {p}:events                  ZSET   all event_ids scored by event timestamp
    {p}:score:{cell}            STRING RiskZoneScore JSON
    {p}:scores                  ZSET   cell_id scored by final score
    {p}:adjustments:{cell}      HASH   adjustment_id -> RiskZoneAdjustment JSON
    {p}:history:{cell}          LIST   RiskZoneHistory JSON, oldest first

Guarantees:
    - Score upsert and history append for one recalculation run in a single
      MULTI/EXEC transaction: both apply or neither does. The event or
      adjustment that triggered the run is written in the same transaction.
    - Events are archived in place, never deleted.
    - Adjustments are deactivated in place, never deleted.
    - History is only ever appended.

Every Redis or decoding failure surfaces as StoreError carrying the
operation name and cell; nothing is retried here.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional, List, Iterator
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from pydantic import ValidationError

from ..config import RedisConfig
from ..exceptions import StoreError, AdjustmentNotFoundError
from ..models import (
    SecurityEvent,
    RiskZoneScore,
    RiskZoneAdjustment,
    RiskZoneHistory,
    utcnow,
)


logger = logging.getLogger(__name__)


class RedisConnectionManager:
    """
    Lazily creates a pooled Redis client, retrying the initial connection.

    Retries apply to establishing the pool only; individual commands are
    never retried.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        max_connections: int = 100,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.1,
    ):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisConnectionManager":
        return cls(
            redis_url=config.url,
            max_connections=config.max_connections,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
        )

    async def get_client(self) -> redis.Redis:
        """
        Get a Redis client, creating the connection pool if needed.

        Raises:
            RedisConnectionError: unable to connect after retries
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            for attempt in range(self._retry_attempts):
                try:
                    self._pool = redis.ConnectionPool.from_url(
                        self._redis_url,
                        max_connections=self._max_connections,
                        socket_timeout=self._socket_timeout,
                        socket_connect_timeout=self._socket_connect_timeout,
                        decode_responses=True,
                    )
                    client = redis.Redis(connection_pool=self._pool)
                    await client.ping()
                    self._client = client
                    logger.info("Redis connection established successfully")
                    return self._client

                except RedisError as e:
                    logger.warning(f"Redis connection attempt {attempt + 1} failed: {e}")
                    if self._pool is not None:
                        await self._pool.disconnect()
                        self._pool = None
                    if attempt < self._retry_attempts - 1:
                        await asyncio.sleep(self._retry_delay * (attempt + 1))
                    else:
                        raise RedisConnectionError(
                            f"Failed to connect to Redis after {self._retry_attempts} attempts"
                        ) from e

        raise RedisConnectionError("Unexpected state in connection manager")

    async def close(self) -> None:
        """Close Redis connections gracefully."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None


@contextmanager
def _store_operation(operation: str, cell_id: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except StoreError:
        raise
    except (RedisError, ValidationError, ValueError) as e:
        logger.error(f"Store operation '{operation}' failed for cell {cell_id}: {e}")
        raise StoreError(operation, cell_id=cell_id, cause=e) from e


class RiskZoneStore(ABC):
    """
    Abstract read/write contract for risk zone records.

    "Active" adjustment filtering (active flag and validity window) is the
    store's responsibility, so the engine only sums what it receives.
    """

    # Events -----------------------------------------------------------------

    @abstractmethod
    async def add_event(self, event: SecurityEvent) -> SecurityEvent:
        pass

    @abstractmethod
    async def archive_event(self, cell_id: str, event_id: str) -> bool:
        """Soft-archive an event. Returns False if it does not exist."""
        pass

    @abstractmethod
    async def get_event(self, cell_id: str, event_id: str) -> Optional[SecurityEvent]:
        """Stored event (archived or not), or None if it does not belong to the cell."""
        pass

    @abstractmethod
    async def get_events(
        self,
        cell_id: str,
        window_days: int,
        as_of: Optional[datetime] = None,
    ) -> List[SecurityEvent]:
        """Non-archived events for a cell dated on or after as_of - window_days."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        days: int,
        as_of: Optional[datetime] = None,
    ) -> List[SecurityEvent]:
        """Non-archived events across all cells, oldest first."""
        pass

    # Scores -----------------------------------------------------------------

    @abstractmethod
    async def get_score(self, cell_id: str) -> Optional[RiskZoneScore]:
        pass

    @abstractmethod
    async def list_scores(self, limit: Optional[int] = None) -> List[RiskZoneScore]:
        """Scores ordered by final score, highest first."""
        pass

    @abstractmethod
    async def upsert_score(self, score: RiskZoneScore) -> None:
        pass

    # Adjustments ------------------------------------------------------------

    @abstractmethod
    async def add_adjustment(self, adjustment: RiskZoneAdjustment) -> RiskZoneAdjustment:
        pass

    @abstractmethod
    async def get_adjustment(
        self, cell_id: str, adjustment_id: str
    ) -> Optional[RiskZoneAdjustment]:
        pass

    @abstractmethod
    async def list_adjustments(self, cell_id: str) -> List[RiskZoneAdjustment]:
        """All adjustments for a cell, including inactive ones, oldest first."""
        pass

    @abstractmethod
    async def deactivate_adjustment(
        self,
        cell_id: str,
        adjustment_id: str,
        revoked_by: str,
        revoked_at: Optional[datetime] = None,
    ) -> RiskZoneAdjustment:
        """
        Mark an adjustment inactive, keeping the record.

        Raises:
            AdjustmentNotFoundError: no such adjustment for the cell
        """
        pass

    async def get_active_adjustments(
        self,
        cell_id: str,
        as_of: Optional[datetime] = None,
    ) -> List[RiskZoneAdjustment]:
        """Adjustments that are active and inside their validity window at as_of."""
        as_of = as_of or utcnow()
        return [a for a in await self.list_adjustments(cell_id) if a.is_effective(as_of)]

    # History ----------------------------------------------------------------

    @abstractmethod
    async def append_history(self, entry: RiskZoneHistory) -> None:
        pass

    @abstractmethod
    async def get_history(
        self, cell_id: str, limit: Optional[int] = None
    ) -> List[RiskZoneHistory]:
        """Newest `limit` entries, oldest first."""
        pass

    @abstractmethod
    async def save_recalculation(
        self,
        score: RiskZoneScore,
        entry: RiskZoneHistory,
        *,
        event: Optional[SecurityEvent] = None,
        adjustment: Optional[RiskZoneAdjustment] = None,
    ) -> None:
        """
        Upsert the score and append its history entry as one atomic unit.

        A new or updated event or adjustment passed alongside is written in
        the same unit, so a failed save leaves no trace of the change.
        """
        pass

    async def close(self) -> None:
        return None


class RedisRiskZoneStore(RiskZoneStore):
    """
    Redis implementation of RiskZoneStore.

    Example:
        store = RedisRiskZoneStore(config=RedisConfig.from_env())
        await store.add_event(event)
        events = await store.get_events(event.cell_id, window_days=90)

    For tests, pass an already-connected client (e.g. fakeredis):
        store = RedisRiskZoneStore(client=fakeredis.FakeAsyncRedis(decode_responses=True))
    """

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        client: Optional[redis.Redis] = None,
    ):
        self._config = config or RedisConfig()
        self._client = client
        self._manager = None if client is not None else RedisConnectionManager.from_config(self._config)
        self._prefix = self._config.key_prefix

    async def _redis(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        return await self._manager.get_client()

    async def close(self) -> None:
        if self._manager is not None:
            await self._manager.close()

    async def ping(self) -> bool:
        with _store_operation("ping"):
            client = await self._redis()
            return bool(await client.ping())

    # Keys -------------------------------------------------------------------

    def _event_data_key(self) -> str:
        return f"{self._prefix}:events:data"

    def _cell_events_key(self, cell_id: str) -> str:
        return f"{self._prefix}:events:{cell_id}"

    def _all_events_key(self) -> str:
        return f"{self._prefix}:events"

    def _score_key(self, cell_id: str) -> str:
        return f"{self._prefix}:score:{cell_id}"

    def _scores_index_key(self) -> str:
        return f"{self._prefix}:scores"

    def _adjustments_key(self, cell_id: str) -> str:
        return f"{self._prefix}:adjustments:{cell_id}"

    def _history_key(self, cell_id: str) -> str:
        return f"{self._prefix}:history:{cell_id}"

    # Events -----------------------------------------------------------------

    async def add_event(self, event: SecurityEvent) -> SecurityEvent:
        with _store_operation("add_event", event.cell_id):
            client = await self._redis()
            async with client.pipeline(transaction=True) as pipe:
                self._queue_event(pipe, event)
                await pipe.execute()

        logger.debug(f"Stored event {event.event_id} for cell {event.cell_id}")
        return event

    def _queue_event(self, pipe, event: SecurityEvent) -> None:
        ts = event.event_date.timestamp()
        pipe.hset(self._event_data_key(), event.event_id, event.model_dump_json())
        pipe.zadd(self._cell_events_key(event.cell_id), {event.event_id: ts})
        pipe.zadd(self._all_events_key(), {event.event_id: ts})

    async def get_event(self, cell_id: str, event_id: str) -> Optional[SecurityEvent]:
        with _store_operation("get_event", cell_id):
            client = await self._redis()
            raw = await client.hget(self._event_data_key(), event_id)
            if raw is None:
                return None
            event = SecurityEvent.model_validate_json(raw)
        return event if event.cell_id == cell_id else None

    async def archive_event(self, cell_id: str, event_id: str) -> bool:
        with _store_operation("archive_event", cell_id):
            client = await self._redis()
            raw = await client.hget(self._event_data_key(), event_id)
            if raw is None:
                return False
            event = SecurityEvent.model_validate_json(raw)
            if event.cell_id != cell_id:
                return False
            if not event.archived:
                archived = event.model_copy(update={"archived": True})
                await client.hset(self._event_data_key(), event_id, archived.model_dump_json())
        return True

    async def _load_events(self, client: redis.Redis, event_ids: List[str]) -> List[SecurityEvent]:
        if not event_ids:
            return []
        rows = await client.hmget(self._event_data_key(), event_ids)
        events = []
        for raw in rows:
            if raw is None:
                continue
            event = SecurityEvent.model_validate_json(raw)
            if not event.archived:
                events.append(event)
        return events

    async def get_events(
        self,
        cell_id: str,
        window_days: int,
        as_of: Optional[datetime] = None,
    ) -> List[SecurityEvent]:
        as_of = as_of or utcnow()
        since = (as_of - timedelta(days=window_days)).timestamp()

        with _store_operation("get_events", cell_id):
            client = await self._redis()
            ids = await client.zrangebyscore(self._cell_events_key(cell_id), since, "+inf")
            return await self._load_events(client, ids)

    async def get_recent_events(
        self,
        days: int,
        as_of: Optional[datetime] = None,
    ) -> List[SecurityEvent]:
        as_of = as_of or utcnow()
        since = (as_of - timedelta(days=days)).timestamp()

        with _store_operation("get_recent_events"):
            client = await self._redis()
            ids = await client.zrangebyscore(self._all_events_key(), since, as_of.timestamp())
            return await self._load_events(client, ids)

    # Scores -----------------------------------------------------------------

    async def get_score(self, cell_id: str) -> Optional[RiskZoneScore]:
        with _store_operation("get_score", cell_id):
            client = await self._redis()
            raw = await client.get(self._score_key(cell_id))
            return RiskZoneScore.model_validate_json(raw) if raw else None

    async def list_scores(self, limit: Optional[int] = None) -> List[RiskZoneScore]:
        if limit is not None and limit <= 0:
            return []
        with _store_operation("list_scores"):
            client = await self._redis()
            end = -1 if limit is None else limit - 1
            cells = await client.zrevrange(self._scores_index_key(), 0, end)
            if not cells:
                return []
            rows = await client.mget([self._score_key(c) for c in cells])
            return [RiskZoneScore.model_validate_json(raw) for raw in rows if raw]

    async def upsert_score(self, score: RiskZoneScore) -> None:
        with _store_operation("upsert_score", score.cell_id):
            client = await self._redis()
            async with client.pipeline(transaction=True) as pipe:
                self._queue_score(pipe, score)
                await pipe.execute()

    def _queue_score(self, pipe, score: RiskZoneScore) -> None:
        pipe.set(self._score_key(score.cell_id), score.model_dump_json())
        pipe.zadd(self._scores_index_key(), {score.cell_id: score.final_score})

    # Adjustments ------------------------------------------------------------

    async def add_adjustment(self, adjustment: RiskZoneAdjustment) -> RiskZoneAdjustment:
        with _store_operation("add_adjustment", adjustment.cell_id):
            client = await self._redis()
            await client.hset(*self._adjustment_field(adjustment))
        return adjustment

    def _adjustment_field(self, adjustment: RiskZoneAdjustment):
        return (
            self._adjustments_key(adjustment.cell_id),
            adjustment.adjustment_id,
            adjustment.model_dump_json(),
        )

    async def get_adjustment(
        self, cell_id: str, adjustment_id: str
    ) -> Optional[RiskZoneAdjustment]:
        with _store_operation("get_adjustment", cell_id):
            client = await self._redis()
            raw = await client.hget(self._adjustments_key(cell_id), adjustment_id)
            return RiskZoneAdjustment.model_validate_json(raw) if raw else None

    async def list_adjustments(self, cell_id: str) -> List[RiskZoneAdjustment]:
        with _store_operation("list_adjustments", cell_id):
            client = await self._redis()
            rows = await client.hvals(self._adjustments_key(cell_id))
            adjustments = [RiskZoneAdjustment.model_validate_json(raw) for raw in rows]
        adjustments.sort(key=lambda a: (a.created_at, a.adjustment_id))
        return adjustments

    async def deactivate_adjustment(
        self,
        cell_id: str,
        adjustment_id: str,
        revoked_by: str,
        revoked_at: Optional[datetime] = None,
    ) -> RiskZoneAdjustment:
        existing = await self.get_adjustment(cell_id, adjustment_id)
        if existing is None:
            raise AdjustmentNotFoundError(cell_id, adjustment_id)
        if not existing.is_active:
            return existing

        revoked = existing.model_copy(update={
            "is_active": False,
            "revoked_at": revoked_at or utcnow(),
            "revoked_by": revoked_by,
        })
        with _store_operation("deactivate_adjustment", cell_id):
            client = await self._redis()
            await client.hset(
                self._adjustments_key(cell_id), adjustment_id, revoked.model_dump_json()
            )
        return revoked

    # History ----------------------------------------------------------------

    async def append_history(self, entry: RiskZoneHistory) -> None:
        with _store_operation("append_history", entry.cell_id):
            client = await self._redis()
            await client.rpush(self._history_key(entry.cell_id), entry.model_dump_json())

    async def get_history(
        self, cell_id: str, limit: Optional[int] = None
    ) -> List[RiskZoneHistory]:
        if limit is not None and limit <= 0:
            return []
        with _store_operation("get_history", cell_id):
            client = await self._redis()
            start = 0 if limit is None else -limit
            rows = await client.lrange(self._history_key(cell_id), start, -1)
            return [RiskZoneHistory.model_validate_json(raw) for raw in rows]

    async def save_recalculation(
        self,
        score: RiskZoneScore,
        entry: RiskZoneHistory,
        *,
        event: Optional[SecurityEvent] = None,
        adjustment: Optional[RiskZoneAdjustment] = None,
    ) -> None:
        for kind, record in (("history entry", entry), ("event", event), ("adjustment", adjustment)):
            if record is not None and record.cell_id != score.cell_id:
                raise StoreError("save_recalculation", cell_id=score.cell_id,
                                 cause=ValueError(f"{kind} belongs to another cell"))

        with _store_operation("save_recalculation", score.cell_id):
            client = await self._redis()
            async with client.pipeline(transaction=True) as pipe:
                if event is not None:
                    self._queue_event(pipe, event)
                if adjustment is not None:
                    pipe.hset(*self._adjustment_field(adjustment))
                self._queue_score(pipe, score)
                pipe.rpush(self._history_key(entry.cell_id), entry.model_dump_json())
                await pipe.execute()

"""
ZoneSentinel Store Tests
========================

Validates Redis-backed store access:
- Event windows, soft archival and cross-cell queries
- Score upsert and ranking
- Adjustment activity filtering and non-destructive revocation
- Append-only history and the atomic score + history write
- Redis and decoding failures surfacing as StoreError

Tech Stack: pytest, pytest-asyncio, fakeredis, unittest.mock
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import fakeredis
import pytest
import redis.asyncio as redis_asyncio
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from zonesentinel.config import RedisConfig
from zonesentinel.core.store import RedisConnectionManager, RedisRiskZoneStore
from zonesentinel.exceptions import AdjustmentNotFoundError, StoreError
from zonesentinel.models import (
    ChangeType,
    RiskLevel,
    RiskZoneAdjustment,
    RiskZoneHistory,
    RiskZoneScore,
    SecurityEvent,
    Severity,
)


CELL = "862a1072fffffff"
OTHER_CELL = "862a10707ffffff"
THIRD_CELL = "862a1070fffffff"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def event(days_ago=0, cell=CELL, severity=Severity.MEDIUM, **kwargs):
    return SecurityEvent(
        cell_id=cell,
        severity=severity,
        event_date=NOW - timedelta(days=days_ago),
        **kwargs,
    )


def score(cell=CELL, final=10.0, level=RiskLevel.LOW):
    return RiskZoneScore(
        cell_id=cell,
        resolution=6,
        base_score=final,
        final_score=final,
        risk_level=level,
        last_calculated_at=NOW,
    )


def history(cell=CELL, new=10.0, previous=None):
    return RiskZoneHistory(
        cell_id=cell,
        previous_score=previous,
        new_score=new,
        new_risk_level=RiskLevel.LOW,
        change_type=ChangeType.RECALCULATION,
        created_at=NOW,
    )


def adjustment(value=10.0, cell=CELL, **kwargs):
    kwargs.setdefault("valid_from", NOW - timedelta(days=1))
    return RiskZoneAdjustment(
        cell_id=cell,
        adjustment_value=value,
        justification="field report",
        created_by="analyst",
        **kwargs,
    )


# =============================================================================
# EVENTS
# =============================================================================

class TestEvents:

    @pytest.mark.asyncio
    async def test_window_filter(self, store):
        recent = await store.add_event(event(5))
        await store.add_event(event(120))

        events = await store.get_events(CELL, window_days=90, as_of=NOW)

        assert [e.event_id for e in events] == [recent.event_id]

    @pytest.mark.asyncio
    async def test_events_ordered_oldest_first(self, store):
        newer = await store.add_event(event(1))
        older = await store.add_event(event(30))

        events = await store.get_events(CELL, window_days=90, as_of=NOW)

        assert [e.event_id for e in events] == [older.event_id, newer.event_id]

    @pytest.mark.asyncio
    async def test_round_trip_preserves_fields(self, store):
        original = event(3, verified=True, description="Armed robbery at toll booth",
                         source="field-report", organization_id="org-1")
        await store.add_event(original)

        [loaded] = await store.get_events(CELL, window_days=90, as_of=NOW)

        assert loaded == original

    @pytest.mark.asyncio
    async def test_archive_is_soft(self, store, fake_redis):
        stored = await store.add_event(event(2))

        assert await store.archive_event(CELL, stored.event_id)
        assert await store.get_events(CELL, window_days=90, as_of=NOW) == []

        # Record still present, flagged archived
        raw = await fake_redis.hget("riskzone:events:data", stored.event_id)
        assert SecurityEvent.model_validate_json(raw).archived

    @pytest.mark.asyncio
    async def test_archive_unknown_or_foreign_event(self, store):
        stored = await store.add_event(event(2))

        assert not await store.archive_event(CELL, "missing")
        assert not await store.archive_event(OTHER_CELL, stored.event_id)
        assert len(await store.get_events(CELL, window_days=90, as_of=NOW)) == 1

    @pytest.mark.asyncio
    async def test_recent_events_across_cells(self, store):
        await store.add_event(event(1, cell=CELL))
        await store.add_event(event(2, cell=OTHER_CELL))
        await store.add_event(event(45, cell=THIRD_CELL))

        events = await store.get_recent_events(30, as_of=NOW)

        assert {e.cell_id for e in events} == {CELL, OTHER_CELL}


# =============================================================================
# SCORES
# =============================================================================

class TestScores:

    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, store):
        await store.upsert_score(score(final=10.0))
        await store.upsert_score(score(final=60.0, level=RiskLevel.HIGH))

        stored = await store.get_score(CELL)

        assert stored.final_score == 60.0
        assert stored.risk_level == RiskLevel.HIGH
        assert len(await store.list_scores()) == 1

    @pytest.mark.asyncio
    async def test_missing_score(self, store):
        assert await store.get_score(CELL) is None

    @pytest.mark.asyncio
    async def test_list_scores_ranked(self, store):
        await store.upsert_score(score(CELL, 30.0, RiskLevel.MEDIUM))
        await store.upsert_score(score(OTHER_CELL, 90.0, RiskLevel.EXTREME))
        await store.upsert_score(score(THIRD_CELL, 5.0))

        ranked = await store.list_scores()
        top = await store.list_scores(limit=2)

        assert [s.cell_id for s in ranked] == [OTHER_CELL, CELL, THIRD_CELL]
        assert [s.cell_id for s in top] == [OTHER_CELL, CELL]
        assert await store.list_scores(limit=0) == []

    @pytest.mark.asyncio
    async def test_key_prefix(self, fake_redis):
        store = RedisRiskZoneStore(config=RedisConfig(key_prefix="tenant-a"), client=fake_redis)

        await store.upsert_score(score())

        assert await fake_redis.exists(f"tenant-a:score:{CELL}")
        assert not await fake_redis.exists(f"riskzone:score:{CELL}")

    @pytest.mark.asyncio
    async def test_corrupt_record_is_store_error(self, store, fake_redis):
        await fake_redis.set(f"riskzone:score:{CELL}", "{not json")

        with pytest.raises(StoreError) as exc_info:
            await store.get_score(CELL)

        assert exc_info.value.operation == "get_score"
        assert exc_info.value.cell_id == CELL


# =============================================================================
# ADJUSTMENTS
# =============================================================================

class TestAdjustments:

    @pytest.mark.asyncio
    async def test_active_filtering(self, store):
        current = await store.add_adjustment(adjustment(10))
        await store.add_adjustment(adjustment(
            20, valid_from=NOW - timedelta(days=10), valid_until=NOW - timedelta(days=1)
        ))
        await store.add_adjustment(adjustment(30, valid_from=NOW + timedelta(days=1)))
        await store.add_adjustment(adjustment(40, is_active=False))

        active = await store.get_active_adjustments(CELL, as_of=NOW)

        assert [a.adjustment_id for a in active] == [current.adjustment_id]
        assert len(await store.list_adjustments(CELL)) == 4

    @pytest.mark.asyncio
    async def test_valid_until_is_exclusive(self, store):
        await store.add_adjustment(adjustment(10, valid_until=NOW))

        assert await store.get_active_adjustments(CELL, as_of=NOW) == []
        assert len(await store.get_active_adjustments(CELL, as_of=NOW - timedelta(seconds=1))) == 1

    @pytest.mark.asyncio
    async def test_deactivate_keeps_record(self, store):
        created = await store.add_adjustment(adjustment(10))

        revoked = await store.deactivate_adjustment(CELL, created.adjustment_id, "supervisor", NOW)

        assert not revoked.is_active
        assert revoked.revoked_at == NOW
        assert revoked.revoked_by == "supervisor"
        stored = await store.get_adjustment(CELL, created.adjustment_id)
        assert stored == revoked
        assert await store.get_active_adjustments(CELL, as_of=NOW) == []

    @pytest.mark.asyncio
    async def test_deactivate_twice_is_noop(self, store):
        created = await store.add_adjustment(adjustment(10))
        first = await store.deactivate_adjustment(CELL, created.adjustment_id, "a", NOW)

        second = await store.deactivate_adjustment(
            CELL, created.adjustment_id, "b", NOW + timedelta(hours=1)
        )

        assert second == first

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, store):
        with pytest.raises(AdjustmentNotFoundError):
            await store.deactivate_adjustment(CELL, "missing", "a")

    def test_inverted_window_rejected(self):
        with pytest.raises(ValueError):
            adjustment(10, valid_from=NOW, valid_until=NOW - timedelta(days=1))


# =============================================================================
# HISTORY AND ATOMIC WRITES
# =============================================================================

class TestHistory:

    @pytest.mark.asyncio
    async def test_append_only_order(self, store):
        for value in (1.0, 2.0, 3.0):
            await store.append_history(history(new=value))

        entries = await store.get_history(CELL)
        latest = await store.get_history(CELL, limit=2)

        assert [e.new_score for e in entries] == [1.0, 2.0, 3.0]
        assert [e.new_score for e in latest] == [2.0, 3.0]
        assert await store.get_history(CELL, limit=0) == []

    @pytest.mark.asyncio
    async def test_save_recalculation_writes_both(self, store):
        await store.save_recalculation(score(final=42.0, level=RiskLevel.MEDIUM), history(new=42.0))

        assert (await store.get_score(CELL)).final_score == 42.0
        assert [e.new_score for e in await store.get_history(CELL)] == [42.0]

    @pytest.mark.asyncio
    async def test_save_recalculation_is_all_or_nothing(self, store):
        """
        Scenario:
            The MULTI/EXEC transaction fails.

        Expected:
            - StoreError naming the operation and cell
            - Neither the score nor the history entry is visible
        """
        with patch.object(Pipeline, "execute", AsyncMock(side_effect=RedisError("EXECABORT"))):
            with pytest.raises(StoreError) as exc_info:
                await store.save_recalculation(score(final=42.0), history(new=42.0))

        assert exc_info.value.operation == "save_recalculation"
        assert await store.get_score(CELL) is None
        assert await store.get_history(CELL) == []

    @pytest.mark.asyncio
    async def test_save_recalculation_rejects_mismatched_cells(self, store):
        with pytest.raises(StoreError):
            await store.save_recalculation(score(CELL), history(OTHER_CELL))
        with pytest.raises(StoreError, match="adjustment belongs to another cell"):
            await store.save_recalculation(
                score(CELL), history(CELL), adjustment=adjustment(cell=OTHER_CELL)
            )

    @pytest.mark.asyncio
    async def test_save_recalculation_writes_triggering_records(self, store):
        new_event = event(2)
        new_adjustment = adjustment(25.0)

        await store.save_recalculation(
            score(final=35.0, level=RiskLevel.MEDIUM),
            history(new=35.0),
            event=new_event,
            adjustment=new_adjustment,
        )

        assert (await store.get_event(CELL, new_event.event_id)).event_id == new_event.event_id
        assert [e.event_id for e in await store.get_events(CELL, 90, as_of=NOW)] == [new_event.event_id]
        assert (await store.get_adjustment(CELL, new_adjustment.adjustment_id)).is_active
        assert len(await store.get_history(CELL)) == 1

    @pytest.mark.asyncio
    async def test_failed_save_leaves_no_adjustment_or_event(self, store):
        """
        Scenario:
            A recalculation triggered by a new adjustment and event fails
            inside the transaction.

        Expected:
            - No active adjustment, no event, no score and no history
        """
        new_event = event(2)
        new_adjustment = adjustment(40.0)

        with patch.object(Pipeline, "execute", AsyncMock(side_effect=RedisError("EXECABORT"))):
            with pytest.raises(StoreError):
                await store.save_recalculation(
                    score(final=40.0), history(new=40.0),
                    event=new_event, adjustment=new_adjustment,
                )

        assert await store.get_active_adjustments(CELL, as_of=NOW) == []
        assert await store.get_event(CELL, new_event.event_id) is None
        assert await store.get_events(CELL, 90, as_of=NOW) == []
        assert await store.get_score(CELL) is None
        assert await store.get_history(CELL) == []

    @pytest.mark.asyncio
    async def test_get_event_scoped_to_cell(self, store):
        stored = await store.add_event(event(1))

        assert (await store.get_event(CELL, stored.event_id)).cell_id == CELL
        assert await store.get_event(OTHER_CELL, stored.event_id) is None
        assert await store.get_event(CELL, "missing") is None


# =============================================================================
# CONNECTION FAILURES
# =============================================================================

class TestConnectionFailures:

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self, store, fake_redis):
        fake_redis.get = AsyncMock(side_effect=RedisConnectionError("connection reset"))

        with pytest.raises(StoreError) as exc_info:
            await store.get_score(CELL)

        assert "connection reset" in str(exc_info.value)
        assert exc_info.value.code.value == "E5000"

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping()

    @pytest.mark.asyncio
    async def test_connection_manager_gives_up(self):
        manager = RedisConnectionManager(
            redis_url="redis://127.0.0.1:6399/0",
            retry_attempts=2,
            retry_delay=0,
        )
        refused = AsyncMock(side_effect=RedisConnectionError("Connection refused"))

        with patch.object(redis_asyncio.Redis, "ping", refused):
            with pytest.raises(RedisConnectionError, match="after 2 attempts"):
                await manager.get_client()

        assert refused.await_count == 2
        await manager.close()

    @pytest.mark.asyncio
    async def test_store_without_client_uses_manager(self):
        store = RedisRiskZoneStore(config=RedisConfig(host="127.0.0.1", port=6399))
        store._manager._retry_attempts = 1

        with patch.object(
            redis_asyncio.Redis, "ping",
            AsyncMock(side_effect=RedisConnectionError("Connection refused")),
        ):
            with pytest.raises(StoreError) as exc_info:
                await store.get_score(CELL)

        assert exc_info.value.operation == "get_score"
        await store.close()

    @pytest.mark.asyncio
    async def test_shared_fake_server_is_isolated(self):
        a = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
        b = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
        await RedisRiskZoneStore(client=a).upsert_score(score())

        assert await RedisRiskZoneStore(client=b).get_score(CELL) is None

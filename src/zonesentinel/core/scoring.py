"""
ZoneSentinel Risk Zone Score Engine

Computes and persists the risk score for one H3 cell from its recent
security events and active analyst adjustments.

Score Formula:
    event_score   = sum(weight(severity) * decay(age) * bonus(verified))
    final_score   = clamp(event_score + manual_adjustment, 0, 100)
    risk_level    = threshold lookup on final_score
    multiplier    = fixed lookup on risk_level

Where:
    - weight: per-severity constant, increasing low -> critical
    - decay(age) = max(floor, 0.5 ** (age_days / half_life)), age in whole days
    - bonus = verification_bonus for verified events, 1.0 otherwise
    - manual_adjustment = sum of adjustments effective at calculation time

Guarantees:
    - Idempotent for a fixed event/adjustment snapshot and calendar day
    - Score and history are persisted atomically (one transaction), together
      with the event or adjustment that triggered the recalculation
    - Errors propagate to the caller; nothing is retried here

Example:
    engine = RiskZoneScoreEngine(store)
    score = await engine.recalculate_zone("862a1072fffffff")
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Optional, List, Callable, Iterable, Tuple
import logging

from ..config import ScoringConfig
from ..exceptions import AdjustmentNotFoundError
from ..geo.h3_index import validate_cell, get_resolution
from ..models import (
    SecurityEvent,
    RiskZoneScore,
    RiskZoneAdjustment,
    RiskZoneHistory,
    RiskLevel,
    Severity,
    ChangeType,
    utcnow,
)
from .store import RiskZoneStore


logger = logging.getLogger(__name__)


# =============================================================================
# PURE SCORING HELPERS
# =============================================================================

def severity_weight(severity: Severity, config: ScoringConfig) -> float:
    """Base contribution of one event of the given severity."""
    return config.severity_weights[Severity(severity).value]


def event_age_days(event_date: datetime, as_of: datetime) -> int:
    """Whole days elapsed; future-dated events count as age 0."""
    return max((as_of - event_date).days, 0)


def decay_factor(age_days: float, config: ScoringConfig) -> float:
    """
    Exponential half-life decay bounded below by the configured floor.

    Returns a value in [floor, 1.0]; non-increasing in age.
    """
    if not config.decay_enabled or age_days <= 0:
        return 1.0
    return max(config.decay_floor, 0.5 ** (age_days / config.decay_half_life_days))


def score_event(event: SecurityEvent, as_of: datetime, config: ScoringConfig) -> float:
    """Weighted, decayed, verification-adjusted contribution of one event."""
    contribution = severity_weight(event.severity, config)
    contribution *= decay_factor(event_age_days(event.event_date, as_of), config)
    if event.verified:
        contribution *= config.verification_bonus
    return contribution


def clamp_score(value: float, config: ScoringConfig) -> float:
    return min(max(value, config.min_score), config.max_score)


def classify_score(score: float, config: ScoringConfig) -> RiskLevel:
    """Map a final score to its risk level (thresholds are inclusive lower bounds)."""
    if score >= config.extreme_threshold:
        return RiskLevel.EXTREME
    if score >= config.high_threshold:
        return RiskLevel.HIGH
    if score >= config.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def price_multiplier_for(level: RiskLevel, config: ScoringConfig) -> float:
    return config.price_multipliers[RiskLevel(level).value]


def compute_score(
    cell_id: str,
    events: Iterable[SecurityEvent],
    adjustments: Iterable[RiskZoneAdjustment],
    as_of: datetime,
    config: ScoringConfig,
    previous: Optional[RiskZoneScore] = None,
) -> RiskZoneScore:
    """
    Build a RiskZoneScore from a snapshot of events and adjustments.

    Archived events and adjustments not effective at as_of are ignored even
    if the caller passes them in.
    """
    live_events = [e for e in events if not e.archived]
    effective = [a for a in adjustments if a.is_effective(as_of)]

    base_score = round(sum(score_event(e, as_of, config) for e in live_events), 2)
    manual_adjustment = round(sum(a.adjustment_value for a in effective), 2)
    final_score = round(clamp_score(base_score + manual_adjustment, config), 2)
    level = classify_score(final_score, config)

    if live_events:
        last_event_date = max(e.event_date for e in live_events)
    else:
        last_event_date = previous.last_event_date if previous else None

    return RiskZoneScore(
        cell_id=cell_id,
        resolution=get_resolution(cell_id),
        base_score=base_score,
        manual_adjustment=manual_adjustment,
        final_score=final_score,
        risk_level=level,
        price_multiplier=price_multiplier_for(level, config),
        event_count=len(live_events),
        last_event_date=last_event_date,
        last_calculated_at=as_of,
    )


# =============================================================================
# ENGINE
# =============================================================================

class RiskZoneScoreEngine:
    """
    Recalculates and persists cell scores through a RiskZoneStore.

    Concurrent recalculations of the same cell are last-writer-wins for the
    score row; each run's score and history entry land together.
    """

    def __init__(
        self,
        store: RiskZoneStore,
        config: Optional[ScoringConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Event/adjustment/score persistence
            config: Scoring constants (defaults if not provided)
            clock: Returns the current UTC time; injectable for tests
        """
        self._store = store
        self._config = config or ScoringConfig()
        self._clock = clock or utcnow

    @property
    def config(self) -> ScoringConfig:
        return self._config

    @property
    def store(self) -> RiskZoneStore:
        return self._store

    async def recalculate_zone(
        self,
        cell_id: str,
        change_type: ChangeType = ChangeType.RECALCULATION,
        reason: Optional[str] = None,
        actor: str = "system",
    ) -> RiskZoneScore:
        """
        Recompute a cell's score and persist it with one history entry.

        The cell need not have a prior score; the first calculation
        creates it.

        Raises:
            InvalidCellError: cell_id is empty or malformed
            StoreError: any read or write failed (nothing is written on failure)
        """
        return await self._recalculate(validate_cell(cell_id), change_type, reason, actor)

    async def _recalculate(
        self,
        cell_id: str,
        change_type: ChangeType,
        reason: Optional[str],
        actor: str,
        event: Optional[SecurityEvent] = None,
        adjustment: Optional[RiskZoneAdjustment] = None,
    ) -> RiskZoneScore:
        """
        Score the stored snapshot with a not-yet-persisted event or
        adjustment folded in, then save everything in one atomic write.
        """
        start = time.perf_counter()
        as_of = self._clock()

        previous = await self._store.get_score(cell_id)
        events = await self._store.get_events(cell_id, self._config.window_days, as_of=as_of)
        adjustments = await self._store.get_active_adjustments(cell_id, as_of=as_of)

        if event is not None:
            events = [e for e in events if e.event_id != event.event_id]
            if event.event_date >= as_of - timedelta(days=self._config.window_days):
                events.append(event)
        if adjustment is not None:
            adjustments = [a for a in adjustments if a.adjustment_id != adjustment.adjustment_id]
            adjustments.append(adjustment)

        score = compute_score(cell_id, events, adjustments, as_of, self._config, previous)
        entry = RiskZoneHistory(
            cell_id=cell_id,
            previous_score=previous.final_score if previous else None,
            new_score=score.final_score,
            previous_risk_level=previous.risk_level if previous else None,
            new_risk_level=score.risk_level,
            change_type=change_type,
            change_reason=reason,
            actor=actor,
            created_at=as_of,
        )

        await self._store.save_recalculation(score, entry, event=event, adjustment=adjustment)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Recalculated {cell_id}: "
            f"{previous.final_score if previous else 'new'} -> {score.final_score} "
            f"({score.risk_level.value}, {score.event_count} events, "
            f"adj {score.manual_adjustment:+.2f}) in {elapsed_ms:.1f}ms"
        )
        return score

    async def record_event(self, event: SecurityEvent) -> RiskZoneScore:
        """Persist a new event and recalculate its cell in one write."""
        return await self._recalculate(
            event.cell_id,
            ChangeType.EVENT_ADDED,
            f"{event.severity.value} {event.event_type.value} event {event.event_id}",
            "system",
            event=event,
        )

    async def archive_event(self, cell_id: str, event_id: str, actor: str = "system") -> Optional[RiskZoneScore]:
        """
        Soft-archive an event and recalculate its cell.

        Returns None when the event does not exist for the cell.
        """
        cell_id = validate_cell(cell_id)
        event = await self._store.get_event(cell_id, event_id)
        if event is None:
            return None
        archived = None if event.archived else event.model_copy(update={"archived": True})
        return await self._recalculate(
            cell_id,
            ChangeType.SYSTEM_UPDATE,
            f"event {event_id} archived",
            actor,
            event=archived,
        )

    async def add_adjustment(
        self,
        cell_id: str,
        adjustment_value: float,
        justification: str,
        created_by: str,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
    ) -> Tuple[RiskZoneAdjustment, RiskZoneScore]:
        """
        Create an analyst adjustment and recalculate the cell.

        The adjustment, score and history entry are stored together; if the
        write fails, the adjustment does not exist.

        Raises:
            InvalidCellError: cell_id is empty or malformed
            pydantic.ValidationError: value out of range, empty justification
                or an inverted validity window
            StoreError: the store could not be read or written
        """
        cell_id = validate_cell(cell_id)
        adjustment = RiskZoneAdjustment(
            cell_id=cell_id,
            adjustment_value=adjustment_value,
            justification=justification,
            valid_from=valid_from or self._clock(),
            valid_until=valid_until,
            created_by=created_by,
            created_at=self._clock(),
        )

        score = await self._recalculate(
            cell_id,
            ChangeType.MANUAL_ADJUSTMENT,
            f"adjustment {adjustment.adjustment_id} ({adjustment_value:+g}): {justification}",
            created_by,
            adjustment=adjustment,
        )
        return adjustment, score

    async def revoke_adjustment(
        self,
        cell_id: str,
        adjustment_id: str,
        revoked_by: str,
        reason: Optional[str] = None,
    ) -> RiskZoneScore:
        """
        Deactivate an adjustment (the record is kept) and recalculate.

        Revoking an already inactive adjustment changes nothing but still
        records a recalculation.

        Raises:
            AdjustmentNotFoundError: no such adjustment for the cell
        """
        cell_id = validate_cell(cell_id)
        existing = await self._store.get_adjustment(cell_id, adjustment_id)
        if existing is None:
            raise AdjustmentNotFoundError(cell_id, adjustment_id)

        revoked = None
        if existing.is_active:
            revoked = existing.model_copy(update={
                "is_active": False,
                "revoked_at": self._clock(),
                "revoked_by": revoked_by,
            })

        detail = f": {reason}" if reason else ""
        return await self._recalculate(
            cell_id,
            ChangeType.MANUAL_ADJUSTMENT,
            f"adjustment {adjustment_id} revoked{detail}",
            revoked_by,
            adjustment=revoked,
        )

    async def get_history(self, cell_id: str, limit: Optional[int] = None) -> List[RiskZoneHistory]:
        return await self._store.get_history(validate_cell(cell_id), limit=limit)

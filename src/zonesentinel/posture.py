"""
ZoneSentinel Security Posture Aggregator

Dashboard read contract: rolls current zone scores and recent events up
into KPI counts. Read-only; never writes to the store.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Optional, Callable
import logging

from .core.store import RiskZoneStore
from .models import (
    RiskLevel,
    Severity,
    SecurityPostureSummary,
    ZoneRanking,
    utcnow,
)


logger = logging.getLogger(__name__)


class SecurityPostureAggregator:
    """
    Computes SecurityPostureSummary snapshots from a RiskZoneStore.

    Event counts cover the requested window. "Days since last critical"
    looks back further (critical_lookback_days) so a quiet month does not
    hide an older critical incident.
    """

    def __init__(
        self,
        store: RiskZoneStore,
        critical_lookback_days: int = 365,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._critical_lookback_days = critical_lookback_days
        self._clock = clock or utcnow

    async def summary(self, window_days: int = 30, top_n: int = 10) -> SecurityPostureSummary:
        """
        Build the current posture summary.

        Raises:
            ValueError: window_days or top_n is negative
            StoreError: the store could not be read
        """
        if window_days < 0 or top_n < 0:
            raise ValueError("window_days and top_n must be non-negative")

        now = self._clock()
        lookback = max(window_days, self._critical_lookback_days)
        events = await self._store.get_recent_events(lookback, as_of=now)
        scores = await self._store.list_scores()

        cutoff = now.timestamp() - window_days * 86400
        in_window = [e for e in events if e.event_date.timestamp() >= cutoff]

        critical_dates = [e.event_date for e in events if e.severity == Severity.CRITICAL]
        last_critical = max(critical_dates) if critical_dates else None
        days_since = max((now - last_critical).days, 0) if last_critical else None

        by_level = {level.value: 0 for level in RiskLevel}
        for score in scores:
            by_level[score.risk_level.value] += 1

        summary = SecurityPostureSummary(
            window_days=window_days,
            total_events=len(in_window),
            critical_events=sum(1 for e in in_window if e.severity == Severity.CRITICAL),
            verified_events=sum(1 for e in in_window if e.verified),
            events_by_type=dict(Counter(e.event_type.value for e in in_window)),
            zones_by_risk_level=by_level,
            total_zones=len(scores),
            top_zones=[
                ZoneRanking(cell_id=s.cell_id, final_score=s.final_score, risk_level=s.risk_level)
                for s in scores[:top_n]
            ],
            last_critical_event_date=last_critical,
            days_since_last_critical=days_since,
            generated_at=now,
        )

        logger.debug(
            f"Posture summary: {summary.total_events} events ({summary.critical_events} critical) "
            f"over {window_days}d, {summary.total_zones} zones"
        )
        return summary

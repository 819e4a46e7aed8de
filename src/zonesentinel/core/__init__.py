"""
ZoneSentinel Core - store access, score engine and batch recalculation.
"""

from .store import RiskZoneStore, RedisRiskZoneStore, RedisConnectionManager
from .scoring import (
    RiskZoneScoreEngine,
    compute_score,
    severity_weight,
    decay_factor,
    score_event,
    classify_score,
    price_multiplier_for,
    clamp_score,
)
from .batch import BatchRecalculationService

__all__ = [
    "RiskZoneStore",
    "RedisRiskZoneStore",
    "RedisConnectionManager",
    "RiskZoneScoreEngine",
    "compute_score",
    "severity_weight",
    "decay_factor",
    "score_event",
    "classify_score",
    "price_multiplier_for",
    "clamp_score",
    "BatchRecalculationService",
]

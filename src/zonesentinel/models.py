"""
ZoneSentinel Core Data Models

This module defines the records exchanged between the store, the score
engine, the corridor analyzer and the batch service. Pydantic is used for
validation at the boundary; registry and analysis records are frozen.

Record lifecycles:
    - SecurityEvent: immutable once verified, soft-archived, never deleted
    - RiskZoneScore: one row per cell, overwritten on each recalculation
    - RiskZoneAdjustment: deactivated by expiry or revocation, never deleted
    - RiskZoneHistory: append-only audit trail
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .geo.h3_index import validate_cell


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class RiskLevel(str, Enum):
    """
    Ordinal risk classification for cells and corridor segments.

    Ordering: LOW < MEDIUM < HIGH < EXTREME
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        """Position in the severity ordering (0 = low)."""
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.EXTREME: 3,
}


class EventType(str, Enum):
    """Category of an observed security incident."""
    ROBBERY = "robbery"
    ASSAULT = "assault"
    KIDNAPPING = "kidnapping"
    VANDALISM = "vandalism"
    FRAUD = "fraud"
    ACCIDENT = "accident"
    THREAT = "threat"
    OTHER = "other"


class Severity(str, Enum):
    """
    Incident severity tier.

    Each tier maps to a scoring weight; weights increase
    LOW < MEDIUM < HIGH < CRITICAL.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChangeType(str, Enum):
    """Why a cell's score changed (audit trail)."""
    EVENT_ADDED = "event_added"
    RECALCULATION = "recalculation"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    SYSTEM_UPDATE = "system_update"


# =============================================================================
# GEOGRAPHY
# =============================================================================

class GeoPoint(BaseModel):
    """
    Geographic coordinates.

    Attributes:
        latitude: WGS84 latitude (-90 to 90)
        longitude: WGS84 longitude (-180 to 180)
    """
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="WGS84 latitude")
    longitude: float = Field(..., ge=-180, le=180, description="WGS84 longitude")

    @property
    def is_set(self) -> bool:
        """False for placeholder coordinates (either axis zero or non-finite)."""
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and self.latitude != 0
            and self.longitude != 0
        )

    def __str__(self) -> str:
        return f"({self.latitude:.6f}, {self.longitude:.6f})"


class GeocodeResult(BaseModel):
    """Output of the geocoding collaborator after normalization."""
    model_config = ConfigDict(frozen=True)

    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    cell_id: str
    resolution: int = Field(..., ge=0, le=15)
    formatted_address: Optional[str] = None

    @field_validator("cell_id")
    @classmethod
    def _check_cell(cls, v: str) -> str:
        return validate_cell(v)

    @property
    def point(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


# =============================================================================
# STORED RECORDS
# =============================================================================

class SecurityEvent(BaseModel):
    """
    A single observed incident inside one H3 cell.

    Created by ingestion/reporting; archived (never deleted). Only
    non-archived events inside the scoring window contribute to a score.
    """
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=_new_id)
    cell_id: str
    event_type: EventType = EventType.OTHER
    severity: Severity
    event_date: datetime
    description: str = ""
    source: str = ""
    verified: bool = False
    organization_id: Optional[str] = None
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("cell_id")
    @classmethod
    def _check_cell(cls, v: str) -> str:
        return validate_cell(v)

    @field_validator("event_date", "created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class RiskZoneScore(BaseModel):
    """
    Current computed state for one cell.

    final_score = clamp(base_score + manual_adjustment, 0, 100);
    risk_level and price_multiplier are functions of final_score.
    """
    cell_id: str
    resolution: int = Field(..., ge=0, le=15)
    base_score: float = Field(default=0.0, ge=0.0)
    manual_adjustment: float = 0.0
    final_score: float = Field(..., ge=0.0, le=100.0)
    risk_level: RiskLevel
    price_multiplier: float = Field(default=1.0, ge=1.0)
    event_count: int = Field(default=0, ge=0)
    last_event_date: Optional[datetime] = None
    last_calculated_at: datetime = Field(default_factory=utcnow)

    @field_validator("cell_id")
    @classmethod
    def _check_cell(cls, v: str) -> str:
        return validate_cell(v)

    @field_validator("last_event_date", "last_calculated_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class RiskZoneAdjustment(BaseModel):
    """
    An analyst override applied to one cell.

    Only adjustments that are active and inside their validity window
    contribute to the cell's manual_adjustment.
    """
    adjustment_id: str = Field(default_factory=_new_id)
    cell_id: str
    adjustment_value: float = Field(..., ge=-100.0, le=100.0)
    justification: str = Field(..., min_length=1)
    valid_from: datetime = Field(default_factory=utcnow)
    valid_until: Optional[datetime] = None
    created_by: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    # Revocation audit
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    @field_validator("cell_id")
    @classmethod
    def _check_cell(cls, v: str) -> str:
        return validate_cell(v)

    @field_validator("valid_from", "valid_until", "created_at", "revoked_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode="after")
    def _check_window(self) -> "RiskZoneAdjustment":
        if self.valid_until is not None and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self

    def is_effective(self, as_of: datetime) -> bool:
        """Active flag set and as_of inside [valid_from, valid_until)."""
        as_of = _as_utc(as_of)
        if not self.is_active:
            return False
        if as_of < self.valid_from:
            return False
        if self.valid_until is not None and as_of >= self.valid_until:
            return False
        return True


class RiskZoneHistory(BaseModel):
    """
    Append-only audit entry for one score transition.

    Written once per recalculation or adjustment; never mutated.
    """
    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=_new_id)
    cell_id: str
    previous_score: Optional[float] = None
    new_score: float
    previous_risk_level: Optional[RiskLevel] = None
    new_risk_level: RiskLevel
    change_type: ChangeType
    change_reason: Optional[str] = None
    actor: str = "system"
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


# =============================================================================
# CORRIDOR REGISTRY
# =============================================================================

class Corridor(BaseModel):
    """A named highway corridor with a pre-assessed static risk level."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    risk_level: RiskLevel
    description: str = ""
    kilometers: float = Field(default=0.0, ge=0.0)
    avg_events_per_cell: float = Field(default=0.0, ge=0.0)
    waypoints: Tuple[Tuple[float, float], ...] = ()


class CorridorSegment(BaseModel):
    """
    A fixed stretch of a corridor with its own risk level.

    Waypoints are (longitude, latitude) pairs in travel order.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    corridor_id: str
    name: str
    km_start: float = Field(default=0.0, ge=0.0)
    km_end: float = Field(default=0.0, ge=0.0)
    risk_level: RiskLevel
    avg_monthly_events: float = Field(default=0.0, ge=0.0)
    critical_hours: str = ""
    common_incident_type: str = ""
    recommendations: Tuple[str, ...] = ()
    waypoints: Tuple[Tuple[float, float], ...]

    @field_validator("waypoints")
    @classmethod
    def _check_waypoints(
        cls, v: Tuple[Tuple[float, float], ...]
    ) -> Tuple[Tuple[float, float], ...]:
        if not v:
            raise ValueError("segment requires at least one waypoint")
        for lon, lat in v:
            if not (-180 <= lon <= 180 and -90 <= lat <= 90):
                raise ValueError(f"waypoint out of range: ({lon}, {lat})")
        return v

    @property
    def length_km(self) -> float:
        return max(self.km_end - self.km_start, 0.0)


class CrossedSegment(BaseModel):
    """A registry segment the analyzed route passes near."""
    model_config = ConfigDict(frozen=True)

    segment_id: str
    corridor_id: str
    name: str
    risk_level: RiskLevel
    recommendations: Tuple[str, ...] = ()
    min_distance_km: float = Field(..., ge=0.0)


class CorridorRiskAnalysis(BaseModel):
    """
    Verdict for one route query. Derived, never persisted.

    input_valid=False means the endpoints were missing or unset;
    input_valid=True with is_analyzed=False means no corridor was near.
    """
    model_config = ConfigDict(frozen=True)

    is_analyzed: bool
    input_valid: bool = True
    overall_risk_level: RiskLevel = RiskLevel.LOW
    crossed_segments: Tuple[CrossedSegment, ...] = ()
    recommendations: Tuple[str, ...] = ()

    @classmethod
    def not_analyzed(cls, input_valid: bool = True) -> "CorridorRiskAnalysis":
        return cls(is_analyzed=False, input_valid=input_valid)


# =============================================================================
# BATCH RESULTS
# =============================================================================

class CellError(BaseModel):
    """Why one cell in a batch failed."""
    cell_id: str
    error_type: str
    code: str
    message: str


class CellResult(BaseModel):
    """Outcome for one cell in a batch, in input order."""
    cell_id: str
    success: bool
    final_score: Optional[float] = None
    risk_level: Optional[RiskLevel] = None
    error: Optional[CellError] = None


class BatchResult(BaseModel):
    """
    Aggregate outcome of a batch recalculation.

    success_count + error_count == number of submitted identifiers.
    """
    success_count: int = 0
    error_count: int = 0
    errors: List[CellError] = Field(default_factory=list)
    details: List[CellResult] = Field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def total(self) -> int:
        return self.success_count + self.error_count

    def to_response(self) -> Dict[str, Any]:
        """Shape returned at the batch trigger boundary."""
        return {
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "perCellDetails": [
                {
                    "cellId": d.cell_id,
                    "success": d.success,
                    "finalScore": d.final_score,
                    "riskLevel": d.risk_level.value if d.risk_level else None,
                    "error": d.error.message if d.error else None,
                    "errorType": d.error.error_type if d.error else None,
                }
                for d in self.details
            ],
        }


# =============================================================================
# DASHBOARD READ CONTRACT
# =============================================================================

class ZoneRanking(BaseModel):
    """One entry in the riskiest-zones list."""
    cell_id: str
    final_score: float
    risk_level: RiskLevel


class SecurityPostureSummary(BaseModel):
    """Dashboard-level KPIs computed from the risk zone store."""
    window_days: int
    total_events: int = 0
    critical_events: int = 0
    verified_events: int = 0
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    zones_by_risk_level: Dict[str, int] = Field(default_factory=dict)
    total_zones: int = 0
    top_zones: List[ZoneRanking] = Field(default_factory=list)
    last_critical_event_date: Optional[datetime] = None
    days_since_last_critical: Optional[int] = None
    generated_at: datetime = Field(default_factory=utcnow)

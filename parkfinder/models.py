from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

USER_REPORT_SOURCE = "user_report"

SpotStatus = Literal["available", "taken"]


class SpotType(str, Enum):
    STREET = "street"
    METERED = "metered"
    LOT = "lot"
    GARAGE = "garage"
    HANDICAP = "handicap"
    EV_CHARGING = "ev_charging"
    MOTORCYCLE = "motorcycle"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def confidence_from_percent(value: float | int | None) -> float | None:
    """Convert a 0-100 score to the 0.0-1.0 scale used everywhere in the core."""
    if value is None:
        return None
    return max(0.0, min(1.0, float(value) / 100.0))


class Regulations(BaseModel):
    """Known parking rule fields, plus source-specific leftovers in ``extras``."""

    model_config = ConfigDict(frozen=True)

    time_limit_minutes: int | None = None
    days: str | None = None
    hours: str | None = None
    is_metered: bool | None = None
    meter_type: str | None = None
    hourly_rate: float | None = None
    curb_color: str | None = None
    permit_required: bool | None = None
    permit_zone: str | None = None
    fee: bool | None = None
    extras: dict[str, Any] = Field(default_factory=dict)

    def overlay(self, other: Regulations) -> Regulations:
        """Fields set on ``other`` win; unset (None) fields keep ours."""
        data = self.model_dump(exclude_none=True, exclude={"extras"})
        data.update(other.model_dump(exclude_none=True, exclude={"extras"}))
        data["extras"] = {**self.extras, **other.extras}
        return Regulations(**data)


class CandidateSpot(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    address: str | None = None
    spot_type: SpotType = SpotType.STREET
    capacity: int = Field(default=1, ge=1)
    primary_source: str
    source_id: str | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    verified_sources: frozenset[str] = frozenset()
    regulations: Regulations = Field(default_factory=Regulations)
    needs_verification: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class ParkingSpot(CandidateSpot):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    available_spaces: int = 0
    currently_available: bool | None = None
    status: SpotStatus | None = None
    user_confirmations: int = Field(default=0, ge=0)
    verified: bool = False
    last_status_update: datetime | None = None
    first_reported_by: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_candidate(cls, candidate: CandidateSpot, spot_id: str | None = None) -> ParkingSpot:
        data = candidate.model_dump()
        if spot_id is not None:
            data["id"] = spot_id
        return cls(**data)


class SpotReportResult(BaseModel):
    spot: ParkingSpot
    is_new_discovery: bool
    distance_m: float | None = None
    points_earned: int | None = None
    message: str


class IngestionError(BaseModel):
    source: str
    kind: str
    message: str


class IngestionReport(BaseModel):
    per_source_counts: dict[str, int] = Field(default_factory=dict)
    total_candidates: int = 0
    duplicates_removed: int = 0
    final_spots: list[CandidateSpot] = Field(default_factory=list)
    errors: list[IngestionError] = Field(default_factory=list)
    persisted: int = 0
    skipped_batches: int = 0
    failed_batches: int = 0
    cancelled: bool = False
    duration_s: float = 0.0

    @property
    def final_spot_count(self) -> int:
        return len(self.final_spots)


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class LiveSpotInfo(BaseModel):
    id: str
    latitude: float
    longitude: float
    address: str | None = None
    status: SpotStatus | None = None
    source: str = "user"
    confidence: float
    distance_m: float
    reported_at: datetime | None = None
    verified: bool = False


class StreetSegmentInfo(BaseModel):
    id: str
    latitude: float
    longitude: float
    address: str | None = None
    source: str
    confidence: float
    distance_m: float
    total_spaces: int
    available_spaces: int = 0
    occupancy_rate: float | None = None
    regulations: Regulations = Field(default_factory=Regulations)


class ParkingLotInfo(BaseModel):
    id: str
    type: Literal["lot", "garage"] = "lot"
    latitude: float
    longitude: float
    name: str
    address: str | None = None
    source: str
    confidence: float
    distance_m: float
    paid: bool = False
    free: bool = False
    valet: bool = False
    rating: float | None = None


class PredictionResult(BaseModel):
    probability: float
    reason: str
    tier: str
    recommendation: str = ""
    factors: dict[str, float] = Field(default_factory=dict)


class AvailabilitySummary(BaseModel):
    total_available_spots: int
    confidence_score: float
    recommendations: list[str]


class AvailabilityResult(BaseModel):
    location: Coordinates
    radius_m: float
    timestamp: datetime
    user_reported: list[LiveSpotInfo] = Field(default_factory=list)
    static_segments: list[StreetSegmentInfo] = Field(default_factory=list)
    places: list[ParkingLotInfo] = Field(default_factory=list)
    predictions: list[PredictionResult] = Field(default_factory=list)
    summary: AvailabilitySummary


class NearbyQuery(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    k: int = 5
    radius_m: float | None = None


class ReportRequest(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    status: SpotStatus
    user_id: str | None = None


class ConfirmRequest(BaseModel):
    user_id: str | None = None


class IngestRequest(BaseModel):
    sources: list[str] | None = None
    strategy: Literal["grid", "exact"] | None = None
    persist: bool = True

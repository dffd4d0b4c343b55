from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Core Data Models ---

class Coordinate(BaseModel):
    """A validated WGS84 position. Out-of-range or non-finite values are rejected."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False, description="Latitude in decimal degrees.")
    lng: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False, description="Longitude in decimal degrees.")

class Site(BaseModel):
    """A candidate heritage site as produced by the recommendation source."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Site identifier.")
    name: Optional[str] = Field(None, description="Public name of the site.")
    latitude: Optional[float] = Field(None, description="Latitude; may be missing or invalid when sourced externally.")
    longitude: Optional[float] = Field(None, description="Longitude; may be missing or invalid when sourced externally.")
    popularity_score: Optional[float] = Field(
        None, ge=0.0, le=10.0, allow_inf_nan=False, description="Externally supplied popularity (0-10)."
    )
    category: str = Field("heritage site", description="Free-text category, e.g. temple or fort.")
    description: Optional[str] = None
    mythology_connection: Optional[str] = None
    recommended_reason: Optional[str] = None

class RankedSite(BaseModel):
    """A Site with its distance from the user and its composite rank (lower is better)."""
    model_config = ConfigDict(frozen=True)

    site: Site
    distance_km: float = Field(..., ge=0.0)
    rank_score: float

class ContributionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class OptionalPosition(BaseModel):
    """An optional coordinate: both halves or neither, always within range."""
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, allow_inf_nan=False)

    @model_validator(mode="after")
    def _both_or_neither(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

class ContributionRecord(OptionalPosition):
    """A community submission together with its moderation outcome."""
    id: str
    submitter_id: str
    type: str
    title: str
    description: str
    location_name: Optional[str] = None
    image_url: Optional[str] = None
    accuracy_score: float
    sentiment_score: float
    status: ContributionStatus
    moderation_feedback: str = ""
    sentiment_notes: Optional[str] = None
    improvements: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class UserReputationProfile(BaseModel):
    user_id: str
    points: int = Field(0, ge=0)
    reputation_score: float = Field(50.0, ge=0.0, le=100.0)
    badges: List[str] = Field(default_factory=list, description="Unique badges in the order they were earned.")

    @field_validator("badges")
    @classmethod
    def _unique_badges(cls, value: List[str]) -> List[str]:
        seen = set()
        ordered = []
        for badge in value:
            if badge not in seen:
                seen.add(badge)
                ordered.append(badge)
        return ordered

# --- External Model Payloads ---
# The model returns loosely-typed JSON; these models are the only way it
# enters the scoring code.

class ModerationResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    accuracy_score: float = Field(..., ge=0.0, le=10.0, allow_inf_nan=False)
    sentiment_score: float = Field(..., ge=0.0, le=10.0, allow_inf_nan=False)
    approval_recommendation: Literal["approve", "reject"]
    feedback: str = ""
    sentiment_notes: Optional[str] = None
    improvements: Optional[str] = None

    @field_validator("approval_recommendation", mode="before")
    @classmethod
    def _normalize_recommendation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

class RecommendedSitePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    type: Optional[str] = None
    popularity_score: Optional[float] = Field(None, ge=0.0, le=10.0, allow_inf_nan=False)
    mythology_connection: Optional[str] = None
    recommended_reason: Optional[str] = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _unparseable_coordinate_is_missing(cls, value: Any) -> Any:
        # the ranker drops sites without a usable position
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

class RecommendationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sites: List[RecommendedSitePayload] = Field(default_factory=list)

# --- API Request Models ---

class SavedInterest(BaseModel):
    title: str
    type: Optional[str] = None

class DiscoverRequest(BaseModel):
    latitude: float = Field(..., description="User latitude.")
    longitude: float = Field(..., description="User longitude.")
    search_radius_km: Optional[float] = Field(None, gt=0, description="Normalization radius; defaults to the configured radius.")
    interests: List[SavedInterest] = Field(default_factory=list, description="Sites the user saved before.")

class NearbyRequest(BaseModel):
    latitude: float
    longitude: float
    search_radius_km: Optional[float] = Field(None, gt=0)
    sites: List[Site] = Field(default_factory=list)

class ContributionRequest(OptionalPosition):
    type: str = Field("heritage_site", description="heritage_site, story, photo, ...")
    title: str = Field(..., min_length=3)
    description: str = Field(..., min_length=10)
    location_name: Optional[str] = None
    image_url: Optional[str] = None

class AwardPointsRequest(BaseModel):
    action: str = Field(..., description="One of the point table actions, e.g. 'scan'.")

class AwardBadgeRequest(BaseModel):
    badge: str = Field(..., min_length=1)

class ReputationUpdateRequest(BaseModel):
    reputation_score: float = Field(..., ge=0.0, le=100.0)

# --- API Response Models ---

class DiscoverResponse(BaseModel):
    results: List[RankedSite]
    user_lat: float
    user_lon: float
    search_radius_km: float

class ContributionResponse(BaseModel):
    contribution: ContributionRecord
    points_awarded: int
    profile: UserReputationProfile

class ContributionListResponse(BaseModel):
    contributions: List[ContributionRecord]

class BadgeResponse(BaseModel):
    profile: UserReputationProfile
    added: bool

class PointTableResponse(BaseModel):
    points: Dict[str, int]

class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    points: int
    reputation_score: float
    badge_count: int

class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]

# --- Error Response Model ---

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed.")

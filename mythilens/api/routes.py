import hmac
from typing import NoReturn, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from mythilens.core.config import settings
from mythilens.core.middleware import USER_ID_PATTERN
from mythilens.models.dto import (
    AwardBadgeRequest,
    AwardPointsRequest,
    BadgeResponse,
    ContributionListResponse,
    ContributionRequest,
    ContributionResponse,
    DiscoverRequest,
    DiscoverResponse,
    ErrorResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    NearbyRequest,
    PointTableResponse,
    ReputationUpdateRequest,
    UserReputationProfile,
)
from mythilens.services.distance_ranker import InvalidCoordinateError, MissingScoreError, make_coordinate
from mythilens.services.model_client import ModelClient, ModelPayloadError, ModelUnavailableError
from mythilens.services.moderation_service import ModerationService
from mythilens.services.points_ledger import PointsLedger, UnrecognizedActionError
from mythilens.services.profile_store import ProfileStore
from mythilens.services.recommendation_service import RecommendationService

router = APIRouter()
logger = structlog.get_logger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_profile_store(request: Request) -> ProfileStore:
    return request.app.state.profile_store

def get_model_client(request: Request) -> Optional[ModelClient]:
    return getattr(request.app.state, "model_client", None)

def get_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ErrorResponse(
                error="IDENTITY_REQUIRED",
                detail="A valid X-User-Id header or mythilens_user cookie is required.",
            ).model_dump(),
        )
    return user_id

def _check_radius(search_radius_km: Optional[float]) -> float:
    radius = search_radius_km or settings.DEFAULT_SEARCH_RADIUS_KM
    if radius > settings.MAX_SEARCH_RADIUS_KM:
        _fail(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_RADIUS",
            f"search_radius_km must not exceed {settings.MAX_SEARCH_RADIUS_KM:g} km.",
        )
    return radius

def _fail(status_code: int, error: str, detail: str, retry_after: Optional[int] = None) -> NoReturn:
    raise HTTPException(
        status_code=status_code,
        detail=ErrorResponse(error=error, detail=detail, retry_after_seconds=retry_after).model_dump(),
    )

def _raise_for_domain_error(e: Exception) -> NoReturn:
    """Translate service exceptions into the API error format."""
    if isinstance(e, InvalidCoordinateError):
        _fail(status.HTTP_400_BAD_REQUEST, "INVALID_COORDINATE", "Latitude/longitude must be finite and within range.")
    if isinstance(e, UnrecognizedActionError):
        _fail(status.HTTP_400_BAD_REQUEST, "UNRECOGNIZED_ACTION", str(e))
    if isinstance(e, (ModelPayloadError, MissingScoreError)):
        logger.warning("model_payload_rejected", error=str(e))
        _fail(status.HTTP_502_BAD_GATEWAY, "MODEL_PAYLOAD_INVALID", "The AI service returned an unusable answer.")
    if isinstance(e, ModelUnavailableError):
        _fail(status.HTTP_503_SERVICE_UNAVAILABLE, "MODEL_UNAVAILABLE", "The AI service is temporarily unavailable.", 30)
    if isinstance(e, RuntimeError) and str(e) == "profile_store_unavailable":
        _fail(status.HTTP_503_SERVICE_UNAVAILABLE, "PROFILE_STORE_UNAVAILABLE", "User profiles are temporarily unavailable.", 30)
    raise e

DOMAIN_ERRORS = (
    InvalidCoordinateError,
    UnrecognizedActionError,
    ModelPayloadError,
    MissingScoreError,
    ModelUnavailableError,
    RuntimeError,
)

# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------
@router.post("/discover", response_model=DiscoverResponse, responses=ERROR_RESPONSES)
async def discover(
    data: DiscoverRequest,
    model_client: Optional[ModelClient] = Depends(get_model_client),
    user_id: str = Depends(get_user_id),
):
    """AI-recommended heritage sites near the user, ranked by distance and popularity."""
    radius = _check_radius(data.search_radius_km)
    service = RecommendationService(model_client)
    try:
        user_coord = make_coordinate(data.latitude, data.longitude)
        results = await service.discover(user_coord, radius, data.interests)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)

    return DiscoverResponse(
        results=results,
        user_lat=user_coord.lat,
        user_lon=user_coord.lng,
        search_radius_km=radius,
    )

@router.post("/nearby", response_model=DiscoverResponse, responses=ERROR_RESPONSES)
async def nearby(data: NearbyRequest, user_id: str = Depends(get_user_id)):
    """Caller-supplied sites within the search radius, nearest first."""
    radius = _check_radius(data.search_radius_km)
    service = RecommendationService(model_client=None)
    try:
        user_coord = make_coordinate(data.latitude, data.longitude)
        results = service.nearby(user_coord, data.sites, radius)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)

    return DiscoverResponse(
        results=results,
        user_lat=user_coord.lat,
        user_lon=user_coord.lng,
        search_radius_km=radius,
    )

# ----------------------------------------------------------------------
# Community contributions
# ----------------------------------------------------------------------
@router.post(
    "/contributions",
    response_model=ContributionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def submit_contribution(
    data: ContributionRequest,
    user_id: str = Depends(get_user_id),
    profile_store: ProfileStore = Depends(get_profile_store),
    model_client: Optional[ModelClient] = Depends(get_model_client),
):
    """Moderate a submission, publish or queue it, and award contribution points."""
    service = ModerationService(model_client, profile_store)
    try:
        record, profile = await service.submit(user_id, data)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)

    return ContributionResponse(
        contribution=record,
        points_awarded=service.points_for_contribution(),
        profile=profile,
    )

@router.get("/contributions", response_model=ContributionListResponse, responses=ERROR_RESPONSES)
async def list_contributions(
    limit: int = Query(settings.CONTRIBUTION_HISTORY_SIZE, ge=1, le=settings.CONTRIBUTION_HISTORY_SIZE),
    user_id: str = Depends(get_user_id),
    profile_store: ProfileStore = Depends(get_profile_store),
    model_client: Optional[ModelClient] = Depends(get_model_client),
):
    """The caller's submissions and their moderation status, newest first."""
    service = ModerationService(model_client, profile_store)
    try:
        records = await service.history(user_id, limit)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)
    return ContributionListResponse(contributions=records)

# ----------------------------------------------------------------------
# Points, badges, profile
# ----------------------------------------------------------------------
@router.get("/points/table", response_model=PointTableResponse)
async def point_table():
    return PointTableResponse(points=PointsLedger.point_table())

@router.post("/points", response_model=UserReputationProfile, responses=ERROR_RESPONSES)
async def award_points(
    data: AwardPointsRequest,
    user_id: str = Depends(get_user_id),
    profile_store: ProfileStore = Depends(get_profile_store),
):
    try:
        return await profile_store.award_points(user_id, data.action)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)

@router.post("/badges", response_model=BadgeResponse, responses=ERROR_RESPONSES)
async def award_badge(
    data: AwardBadgeRequest,
    user_id: str = Depends(get_user_id),
    profile_store: ProfileStore = Depends(get_profile_store),
):
    """Award a badge; awarding one the user already holds is a no-op."""
    if not data.badge.strip():
        _fail(status.HTTP_400_BAD_REQUEST, "INVALID_BADGE", "Badge name must not be blank.")
    try:
        profile, added = await profile_store.award_badge(user_id, data.badge)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)
    return BadgeResponse(profile=profile, added=added)

@router.get("/profile", response_model=UserReputationProfile, responses=ERROR_RESPONSES)
async def get_profile(
    user_id: str = Depends(get_user_id),
    profile_store: ProfileStore = Depends(get_profile_store),
):
    try:
        return await profile_store.get_profile(user_id)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)

@router.put("/profile/{user_id}/reputation", response_model=UserReputationProfile, responses=ERROR_RESPONSES)
async def set_reputation(
    user_id: str,
    data: ReputationUpdateRequest,
    x_admin_token: Optional[str] = Header(None),
    profile_store: ProfileStore = Depends(get_profile_store),
):
    """Adjust a user's reputation. Requires the configured admin token."""
    if not settings.ADMIN_TOKEN or not x_admin_token or not hmac.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        _fail(status.HTTP_403_FORBIDDEN, "ADMIN_TOKEN_INVALID", "A valid X-Admin-Token header is required.")
    if not USER_ID_PATTERN.match(user_id):
        _fail(status.HTTP_400_BAD_REQUEST, "INVALID_USER_ID", "User id contains characters that are not allowed.")
    try:
        profile = await profile_store.set_reputation(user_id, data.reputation_score)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)
    logger.info("reputation_adjusted", target_user_id=user_id, reputation_score=profile.reputation_score)
    return profile

@router.get("/leaderboard", response_model=LeaderboardResponse, responses=ERROR_RESPONSES)
async def leaderboard(
    limit: int = Query(settings.LEADERBOARD_SIZE, ge=1, le=200),
    profile_store: ProfileStore = Depends(get_profile_store),
):
    try:
        profiles = await profile_store.top_profiles(limit)
    except DOMAIN_ERRORS as e:
        _raise_for_domain_error(e)
    return LeaderboardResponse(
        entries=[
            LeaderboardEntry(
                rank=position,
                user_id=p.user_id,
                points=p.points,
                reputation_score=p.reputation_score,
                badge_count=len(p.badges),
            )
            for position, p in enumerate(profiles, start=1)
        ]
    )

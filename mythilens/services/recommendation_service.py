from typing import Any, Dict, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from mythilens.core.config import settings
from mythilens.models.dto import (
    Coordinate,
    RankedSite,
    RecommendationPayload,
    SavedInterest,
    Site,
)
from mythilens.services.distance_ranker import DistanceRanker
from mythilens.services.model_client import ModelClient, ModelPayloadError, ModelUnavailableError

logger = structlog.get_logger(__name__)

RECOMMENDATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "sites": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "latitude": {"type": "number"},
                    "longitude": {"type": "number"},
                    "type": {"type": "string"},
                    "popularity_score": {"type": "number"},
                    "mythology_connection": {"type": "string"},
                    "recommended_reason": {"type": "string"},
                },
            },
        }
    },
}

def build_discovery_prompt(
    user_coord: Coordinate, search_radius_km: float, interests: Sequence[SavedInterest]
) -> str:
    # the model is asked for twice the radius; the ranker penalizes the far ones
    lines = [
        "You are a heritage discovery AI. Find REAL heritage sites near GPS coordinates "
        f"{user_coord.lat}, {user_coord.lng} within {search_radius_km * 2:g} km.",
        "",
    ]
    if interests:
        lines.append("User has shown interest in these sites previously:")
        for interest in interests:
            lines.append(f"- {interest.title} ({interest.type or 'heritage site'})")
        lines.append("")
        lines.append("Prioritize similar sites based on architectural style, mythology, and cultural themes.")
        lines.append("")
    lines.extend([
        "IMPORTANT:",
        "1. Use map/places data to provide REAL sites that exist",
        "2. Recommend based on:",
        "   - Proximity to user location",
        "   - Popularity and cultural significance",
        "   - Similarity to user's saved sites",
        "   - Mythological connections",
        "   - Architectural style",
        "3. Provide 10-20 diverse recommendations ranked by relevance",
        "",
        "For each site:",
        "- name: Official name",
        "- description: Brief cultural/historical significance",
        "- latitude: Exact GPS latitude",
        "- longitude: Exact GPS longitude",
        "- type: temple/monument/fort/archaeological site",
        "- popularity_score: 1-10 (based on significance)",
        "- mythology_connection: Any relevant myths/legends",
        "- recommended_reason: Why this site matches user's interests",
    ])
    return "\n".join(lines)

def parse_recommendations(raw: Dict[str, Any]) -> List[Site]:
    """Validate the model's JSON and turn it into Site candidates, in model order."""
    try:
        payload = RecommendationPayload.model_validate(raw)
    except ValidationError as e:
        raise ModelPayloadError(f"recommendation payload failed validation: {e.error_count()} error(s)") from e

    return [
        Site(
            id=f"rec-{index}",
            name=item.name,
            latitude=item.latitude,
            longitude=item.longitude,
            popularity_score=item.popularity_score,
            category=item.type or "heritage site",
            description=item.description,
            mythology_connection=item.mythology_connection,
            recommended_reason=item.recommended_reason,
        )
        for index, item in enumerate(payload.sites)
    ]

class RecommendationService:
    """Nearby heritage discovery: model-sourced candidates, locally ranked."""

    def __init__(self, model_client: Optional[ModelClient], ranker: Optional[DistanceRanker] = None):
        self.model_client = model_client
        self.ranker = ranker or DistanceRanker()

    async def discover(
        self,
        user_coord: Coordinate,
        search_radius_km: Optional[float] = None,
        interests: Sequence[SavedInterest] = (),
        limit: Optional[int] = None,
    ) -> List[RankedSite]:
        if self.model_client is None:
            raise ModelUnavailableError("model API is not configured")

        radius = search_radius_km or settings.DEFAULT_SEARCH_RADIUS_KM
        limit = settings.MAX_RECOMMENDATIONS if limit is None else limit

        prompt = build_discovery_prompt(user_coord, radius, interests)
        raw = await self.model_client.invoke(prompt, RECOMMENDATION_SCHEMA, add_context_from_internet=True)
        candidates = parse_recommendations(raw)

        ranked = self.ranker.rank(user_coord, candidates, radius)
        logger.info(
            "recommendations_ranked",
            candidates=len(candidates),
            ranked=len(ranked),
            radius_km=radius,
        )
        return ranked[:limit]

    def nearby(
        self,
        user_coord: Coordinate,
        sites: Sequence[Site],
        search_radius_km: Optional[float] = None,
    ) -> List[RankedSite]:
        radius = search_radius_km or settings.DEFAULT_SEARCH_RADIUS_KM
        return self.ranker.within_radius(user_coord, sites, radius)

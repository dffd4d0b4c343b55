import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from mythilens.models.dto import (
    ContributionRecord,
    ContributionRequest,
    ModerationResult,
    UserReputationProfile,
)
from mythilens.services.model_client import ModelClient, ModelPayloadError, ModelUnavailableError
from mythilens.services.points_ledger import ActionKind, PointsLedger
from mythilens.services.profile_store import ProfileStore
from mythilens.services.reputation_gate import ReputationGate

logger = structlog.get_logger(__name__)

MODERATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "accuracy_score": {"type": "number"},
        "sentiment_score": {"type": "number"},
        "approval_recommendation": {"type": "string"},
        "feedback": {"type": "string"},
        "sentiment_notes": {"type": "string"},
        "improvements": {"type": "string"},
    },
}

def build_moderation_prompt(submission: ContributionRequest) -> str:
    return f"""You are a heritage content moderator with sentiment analysis capabilities. Analyze this submission:

Type: {submission.type}
Title: {submission.title}
Description: {submission.description}
Location: {submission.location_name or "unspecified"}

Evaluate:
1. Accuracy: Does this seem historically accurate? (research online if needed)
2. Relevance: Is it related to heritage/history/culture?
3. Quality: Is the description informative and well-written?
4. Appropriateness: Is content appropriate and respectful?
5. Sentiment Analysis: Detect any disrespectful, biased, inflammatory, or inappropriate tone
6. Cultural Sensitivity: Check for culturally insensitive or offensive content

Provide:
- accuracy_score: 0-10 (how accurate/verifiable the information is)
- sentiment_score: 0-10 (10 = very respectful, 0 = inappropriate/disrespectful)
- approval_recommendation: "approve" or "reject"
- feedback: Brief explanation of your assessment
- sentiment_notes: Any concerns about tone, bias, or respect
- improvements: Suggestions if score < 7"""

def parse_moderation(raw: Dict[str, Any]) -> ModerationResult:
    try:
        return ModerationResult.model_validate(raw)
    except ValidationError as e:
        raise ModelPayloadError(f"moderation payload failed validation: {e.error_count()} error(s)") from e

class ModerationService:
    """
    Community contribution intake.

    The model scores the submission, the submitter's reputation comes from
    the profile store, and ReputationGate turns both into a status. The
    record is stored, then points for the contribution are awarded whatever
    the status.
    """

    def __init__(self, model_client: Optional[ModelClient], profile_store: ProfileStore):
        self.model_client = model_client
        self.profile_store = profile_store

    async def submit(
        self, user_id: str, submission: ContributionRequest
    ) -> Tuple[ContributionRecord, UserReputationProfile]:
        if self.model_client is None:
            raise ModelUnavailableError("model API is not configured")

        raw = await self.model_client.invoke(
            build_moderation_prompt(submission), MODERATION_SCHEMA, add_context_from_internet=True
        )
        moderation = parse_moderation(raw)

        profile = await self.profile_store.get_profile(user_id)
        status = ReputationGate.decide(
            accuracy_score=moderation.accuracy_score,
            sentiment_score=moderation.sentiment_score,
            ai_recommends_approval=moderation.approval_recommendation == "approve",
            reputation_score=profile.reputation_score,
        )

        record = ContributionRecord(
            id=str(uuid.uuid4()),
            submitter_id=user_id,
            type=submission.type,
            title=submission.title,
            description=submission.description,
            location_name=submission.location_name,
            latitude=submission.latitude,
            longitude=submission.longitude,
            image_url=submission.image_url,
            accuracy_score=moderation.accuracy_score,
            sentiment_score=moderation.sentiment_score,
            status=status,
            moderation_feedback=moderation.feedback,
            sentiment_notes=moderation.sentiment_notes,
            improvements=moderation.improvements,
        )
        logger.info(
            "contribution_moderated",
            contribution_id=record.id,
            user_id=user_id,
            status=status.value,
            accuracy_score=moderation.accuracy_score,
            sentiment_score=moderation.sentiment_score,
            reputation_score=profile.reputation_score,
        )

        await self.profile_store.save_contribution(record)
        profile = await self.profile_store.award_points(user_id, ActionKind.CONTRIBUTION)
        return record, profile

    async def history(self, user_id: str, limit: int) -> List[ContributionRecord]:
        """The user's own submissions, newest first."""
        return await self.profile_store.list_contributions(user_id, limit)

    @staticmethod
    def points_for_contribution() -> int:
        return PointsLedger.points_for(ActionKind.CONTRIBUTION)

from typing import Optional

from mythilens.models.dto import ContributionStatus
from mythilens.services.distance_ranker import MissingScoreError

class ReputationGate:
    """
    Decides whether a contribution is published immediately or held for review.

    Trusted users skip the model's own approve/reject opinion as long as the
    quality thresholds hold; everyone else also needs the model to recommend
    approval. Scores are taken as supplied: range checking belongs to
    whoever produced them (see ModerationResult), so out-of-range inputs are
    not clamped here.
    """

    QUALITY_THRESHOLD = 7
    TRUSTED_REPUTATION = 80

    @classmethod
    def decide(
        cls,
        accuracy_score: Optional[float],
        sentiment_score: Optional[float],
        ai_recommends_approval: Optional[bool],
        reputation_score: Optional[float],
    ) -> ContributionStatus:
        for name, value in (
            ("accuracy_score", accuracy_score),
            ("sentiment_score", sentiment_score),
            ("ai_recommends_approval", ai_recommends_approval),
            ("reputation_score", reputation_score),
        ):
            if value is None:
                raise MissingScoreError(f"{name} is required")

        quality_ok = (
            accuracy_score >= cls.QUALITY_THRESHOLD
            and sentiment_score >= cls.QUALITY_THRESHOLD
        )
        trusted = reputation_score >= cls.TRUSTED_REPUTATION

        if quality_ok and (trusted or ai_recommends_approval is True):
            return ContributionStatus.APPROVED
        return ContributionStatus.PENDING

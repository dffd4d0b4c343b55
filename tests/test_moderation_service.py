import pytest
from pydantic import ValidationError

from conftest import FakeModelClient
from mythilens.models.dto import ContributionRequest, ContributionStatus
from mythilens.services.model_client import ModelPayloadError, ModelUnavailableError
from mythilens.services.moderation_service import ModerationService, build_moderation_prompt

SUBMISSION = ContributionRequest(
    type="heritage_site",
    title="Stepwell of Hampi",
    description="A square stepwell of the Vijayanagara period near the royal enclosure.",
    location_name="Hampi, Karnataka",
)


def verdict(accuracy=9, sentiment=9, recommendation="approve", **extra):
    return {
        "accuracy_score": accuracy,
        "sentiment_score": sentiment,
        "approval_recommendation": recommendation,
        "feedback": "Well sourced.",
        **extra,
    }


class TestSubmit:

    async def test_approved_with_model_recommendation(self, store):
        service = ModerationService(FakeModelClient(verdict()), store)
        record, profile = await service.submit("ada", SUBMISSION)
        assert record.status == ContributionStatus.APPROVED
        assert record.submitter_id == "ada"
        assert record.accuracy_score == 9
        assert record.moderation_feedback == "Well sourced."
        assert profile.points == 25

    async def test_trusted_user_bypasses_rejection(self, store):
        await store.set_reputation("ada", 85)
        service = ModerationService(FakeModelClient(verdict(recommendation="reject")), store)
        record, _ = await service.submit("ada", SUBMISSION)
        assert record.status == ContributionStatus.APPROVED

    async def test_untrusted_user_is_queued(self, store):
        service = ModerationService(FakeModelClient(verdict(recommendation="reject")), store)
        record, profile = await service.submit("ada", SUBMISSION)
        assert record.status == ContributionStatus.PENDING
        assert profile.points == 25

    async def test_low_sentiment_is_queued(self, store):
        await store.set_reputation("ada", 95)
        service = ModerationService(FakeModelClient(verdict(sentiment=4)), store)
        record, _ = await service.submit("ada", SUBMISSION)
        assert record.status == ContributionStatus.PENDING

    async def test_recommendation_is_normalized(self, store):
        service = ModerationService(FakeModelClient(verdict(recommendation=" Approve ")), store)
        record, _ = await service.submit("ada", SUBMISSION)
        assert record.status == ContributionStatus.APPROVED

    @pytest.mark.parametrize("broken", [
        {"sentiment_score": 9, "approval_recommendation": "approve"},
        verdict(accuracy=14),
        verdict(recommendation="maybe"),
        verdict(sentiment="very nice"),
    ])
    async def test_invalid_verdict_awards_nothing(self, store, broken):
        service = ModerationService(FakeModelClient(broken), store)
        with pytest.raises(ModelPayloadError):
            await service.submit("ada", SUBMISSION)
        assert (await store.get_profile("ada")).points == 0

    async def test_record_is_stored(self, store):
        service = ModerationService(FakeModelClient(verdict()), store)
        first, _ = await service.submit("ada", SUBMISSION)
        second, _ = await service.submit("ada", SUBMISSION)
        history = await service.history("ada", 10)
        assert [r.id for r in history] == [second.id, first.id]
        assert history[0].status == ContributionStatus.APPROVED

    async def test_rejected_verdict_stores_nothing(self, store):
        service = ModerationService(FakeModelClient(verdict(accuracy=14)), store)
        with pytest.raises(ModelPayloadError):
            await service.submit("ada", SUBMISSION)
        assert await store.list_contributions("ada", 10) == []

    def test_submission_coordinate_must_be_in_range(self):
        with pytest.raises(ValidationError):
            ContributionRequest(title="Stepwell", description="A square stepwell.", latitude=500, longitude=-999)

    def test_submission_coordinate_needs_both_halves(self):
        with pytest.raises(ValidationError):
            ContributionRequest(title="Stepwell", description="A square stepwell.", latitude=15.33)

    async def test_no_model_configured(self, store):
        with pytest.raises(ModelUnavailableError):
            await ModerationService(None, store).submit("ada", SUBMISSION)

    def test_prompt_contains_submission(self):
        prompt = build_moderation_prompt(SUBMISSION)
        assert "Title: Stepwell of Hampi" in prompt
        assert "Location: Hampi, Karnataka" in prompt
        assert "sentiment_score: 0-10" in prompt

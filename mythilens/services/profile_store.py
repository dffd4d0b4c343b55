import asyncio
from typing import Dict, List, Optional, Protocol, Tuple, Union

import structlog
from redis.asyncio import Redis

from mythilens.core.config import settings
from mythilens.models.dto import ContributionRecord, UserReputationProfile
from mythilens.services.points_ledger import ActionKind, PointsLedger

logger = structlog.get_logger(__name__)

# --- Contract ---

class ProfileStore(Protocol):
    """
    Read/write access to user reputation profiles and their submitted
    contributions, keyed by user identity.

    Every mutating call is a single atomic read-modify-write for that user,
    so concurrent awards never lose an increment. Contribution history is
    newest first and capped at `CONTRIBUTION_HISTORY_SIZE` per user.
    """
    async def get_profile(self, user_id: str) -> UserReputationProfile: ...
    async def award_points(self, user_id: str, action: Union[ActionKind, str]) -> UserReputationProfile: ...
    async def award_badge(self, user_id: str, badge: str) -> Tuple[UserReputationProfile, bool]: ...
    async def set_reputation(self, user_id: str, reputation_score: float) -> UserReputationProfile: ...
    async def top_profiles(self, limit: int) -> List[UserReputationProfile]: ...
    async def save_contribution(self, record: ContributionRecord) -> None: ...
    async def list_contributions(self, user_id: str, limit: int) -> List[ContributionRecord]: ...

def _check_reputation(reputation_score: float) -> float:
    if not 0 <= reputation_score <= 100:
        raise ValueError(f"reputation_score must be within [0, 100], got {reputation_score!r}")
    return float(reputation_score)

# --- In-memory ---

class InMemoryProfileStore:
    """Process-local store. Used in development and tests."""

    def __init__(self, default_reputation: Optional[float] = None, history_size: Optional[int] = None):
        self.default_reputation = (
            settings.DEFAULT_REPUTATION_SCORE if default_reputation is None else default_reputation
        )
        self.history_size = settings.CONTRIBUTION_HISTORY_SIZE if history_size is None else history_size
        self._profiles: Dict[str, UserReputationProfile] = {}
        self._contributions: Dict[str, List[ContributionRecord]] = {}
        self._lock = asyncio.Lock()

    def _load(self, user_id: str) -> UserReputationProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            profile = UserReputationProfile(user_id=user_id, reputation_score=self.default_reputation)
        return profile

    async def get_profile(self, user_id: str) -> UserReputationProfile:
        return self._load(user_id).model_copy(deep=True)

    async def award_points(self, user_id: str, action: Union[ActionKind, str]) -> UserReputationProfile:
        async with self._lock:
            profile = self._load(user_id)
            points = PointsLedger.award(profile.points, action)
            self._profiles[user_id] = profile.model_copy(update={"points": points})
            logger.info("points_awarded", user_id=user_id, action=PointsLedger.parse_action(action).value, points=points)
            return self._profiles[user_id].model_copy(deep=True)

    async def award_badge(self, user_id: str, badge: str) -> Tuple[UserReputationProfile, bool]:
        async with self._lock:
            profile = self._load(user_id)
            badges, added = PointsLedger.add_badge(profile.badges, badge)
            if added:
                self._profiles[user_id] = profile.model_copy(update={"badges": badges})
                logger.info("badge_awarded", user_id=user_id, badge=badge.strip())
            return self._load(user_id).model_copy(deep=True), added

    async def set_reputation(self, user_id: str, reputation_score: float) -> UserReputationProfile:
        score = _check_reputation(reputation_score)
        async with self._lock:
            profile = self._load(user_id)
            self._profiles[user_id] = profile.model_copy(update={"reputation_score": score})
            return self._profiles[user_id].model_copy(deep=True)

    async def top_profiles(self, limit: int) -> List[UserReputationProfile]:
        # same order as ZREVRANGE: points, then user id, both descending
        scored = [p for p in self._profiles.values() if p.points > 0]
        ordered = sorted(scored, key=lambda p: (p.points, p.user_id), reverse=True)
        return [p.model_copy(deep=True) for p in ordered[:max(0, limit)]]

    async def save_contribution(self, record: ContributionRecord) -> None:
        async with self._lock:
            history = self._contributions.setdefault(record.submitter_id, [])
            history.insert(0, record.model_copy(deep=True))
            del history[self.history_size:]

    async def list_contributions(self, user_id: str, limit: int) -> List[ContributionRecord]:
        history = self._contributions.get(user_id, [])
        return [r.model_copy(deep=True) for r in history[:max(0, limit)]]

# --- Redis ---

class RedisProfileStore:
    """
    Redis-backed profile store with fail-closed behavior (no in-memory fallback).

    Layout per user: hash `profile:{id}` (points, reputation_score), set
    `profile:{id}:badge_set` for uniqueness and list `profile:{id}:badges`
    for earn order, list `profile:{id}:contributions` of JSON records, newest
    first. `leaderboard:points` is a sorted set of point totals.
    """

    LEADERBOARD_KEY = "leaderboard:points"

    AWARD_POINTS_SCRIPT = """
    local points = redis.call('HINCRBY', KEYS[1], 'points', ARGV[1])
    redis.call('ZADD', KEYS[2], points, ARGV[2])
    return points
    """

    AWARD_BADGE_SCRIPT = """
    local added = redis.call('SADD', KEYS[1], ARGV[1])
    if added == 1 then
      redis.call('RPUSH', KEYS[2], ARGV[1])
    end
    return added
    """

    SAVE_CONTRIBUTION_SCRIPT = """
    redis.call('LPUSH', KEYS[1], ARGV[1])
    redis.call('LTRIM', KEYS[1], 0, tonumber(ARGV[2]) - 1)
    return redis.call('LLEN', KEYS[1])
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        default_reputation: Optional[float] = None,
        history_size: Optional[int] = None,
    ):
        self.redis_client: Optional[Redis] = redis_client
        self.default_reputation = (
            settings.DEFAULT_REPUTATION_SCORE if default_reputation is None else default_reputation
        )
        self.history_size = settings.CONTRIBUTION_HISTORY_SIZE if history_size is None else history_size

    @staticmethod
    def _profile_key(user_id: str) -> str:
        return f"profile:{user_id}"

    def _require_client(self) -> Redis:
        if not self.redis_client:
            raise RuntimeError("profile_store_unavailable")
        return self.redis_client

    @staticmethod
    def _text(value) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def get_profile(self, user_id: str) -> UserReputationProfile:
        client = self._require_client()
        key = self._profile_key(user_id)
        try:
            fields = await client.hgetall(key) or {}
            badges = await client.lrange(f"{key}:badges", 0, -1) or []
        except Exception as e:
            logger.error("profile_get_error", error=str(e), user_id=user_id)
            raise RuntimeError("profile_store_unavailable") from e

        fields = {self._text(k): self._text(v) for k, v in fields.items()}
        try:
            points = int(fields.get("points", 0))
        except ValueError:
            logger.error("profile_parse_error", user_id=user_id, field="points", raw_value=fields.get("points"))
            points = 0
        try:
            reputation = float(fields.get("reputation_score", self.default_reputation))
        except ValueError:
            logger.error("profile_parse_error", user_id=user_id, field="reputation_score",
                         raw_value=fields.get("reputation_score"))
            reputation = float(self.default_reputation)

        return UserReputationProfile(
            user_id=user_id,
            points=max(0, points),
            reputation_score=min(100.0, max(0.0, reputation)),
            badges=[self._text(b) for b in badges],
        )

    async def award_points(self, user_id: str, action: Union[ActionKind, str]) -> UserReputationProfile:
        # unknown actions fail before anything is written
        delta = PointsLedger.points_for(action)
        client = self._require_client()
        key = self._profile_key(user_id)
        try:
            points = await client.eval(self.AWARD_POINTS_SCRIPT, 2, key, self.LEADERBOARD_KEY, delta, user_id)
        except Exception as e:
            logger.error("profile_award_points_error", error=str(e), user_id=user_id)
            raise RuntimeError("profile_store_unavailable") from e
        logger.info("points_awarded", user_id=user_id, action=PointsLedger.parse_action(action).value, points=int(points))
        return await self.get_profile(user_id)

    async def award_badge(self, user_id: str, badge: str) -> Tuple[UserReputationProfile, bool]:
        if not badge or not badge.strip():
            raise ValueError("badge name must not be blank")
        badge = badge.strip()
        client = self._require_client()
        key = self._profile_key(user_id)
        try:
            added = await client.eval(self.AWARD_BADGE_SCRIPT, 2, f"{key}:badge_set", f"{key}:badges", badge)
        except Exception as e:
            logger.error("profile_award_badge_error", error=str(e), user_id=user_id)
            raise RuntimeError("profile_store_unavailable") from e
        added = int(added) == 1
        if added:
            logger.info("badge_awarded", user_id=user_id, badge=badge)
        return await self.get_profile(user_id), added

    async def set_reputation(self, user_id: str, reputation_score: float) -> UserReputationProfile:
        score = _check_reputation(reputation_score)
        client = self._require_client()
        try:
            await client.hset(self._profile_key(user_id), "reputation_score", score)
        except Exception as e:
            logger.error("profile_set_reputation_error", error=str(e), user_id=user_id)
            raise RuntimeError("profile_store_unavailable") from e
        return await self.get_profile(user_id)

    async def top_profiles(self, limit: int) -> List[UserReputationProfile]:
        if limit <= 0:
            return []
        client = self._require_client()
        try:
            user_ids = await client.zrevrange(self.LEADERBOARD_KEY, 0, limit - 1)
        except Exception as e:
            logger.error("profile_leaderboard_error", error=str(e))
            raise RuntimeError("profile_store_unavailable") from e
        return [await self.get_profile(self._text(uid)) for uid in user_ids]

    async def save_contribution(self, record: ContributionRecord) -> None:
        client = self._require_client()
        key = f"{self._profile_key(record.submitter_id)}:contributions"
        try:
            await client.eval(self.SAVE_CONTRIBUTION_SCRIPT, 1, key, record.model_dump_json(), self.history_size)
        except Exception as e:
            logger.error("contribution_save_error", error=str(e), user_id=record.submitter_id)
            raise RuntimeError("profile_store_unavailable") from e

    async def list_contributions(self, user_id: str, limit: int) -> List[ContributionRecord]:
        if limit <= 0:
            return []
        client = self._require_client()
        key = f"{self._profile_key(user_id)}:contributions"
        try:
            raw_records = await client.lrange(key, 0, limit - 1) or []
        except Exception as e:
            logger.error("contribution_list_error", error=str(e), user_id=user_id)
            raise RuntimeError("profile_store_unavailable") from e

        records = []
        for raw in raw_records:
            try:
                records.append(ContributionRecord.model_validate_json(raw))
            except ValueError:
                logger.error("contribution_parse_error", user_id=user_id, raw_value=self._text(raw)[:200])
        return records

def build_profile_store() -> ProfileStore:
    """Redis when enabled and configured, process memory otherwise."""
    if settings.ENABLE_REDIS:
        if not settings.REDIS_URL:
            raise ValueError("ENABLE_REDIS is set but REDIS_URL is empty")
        logger.info("profile_store_selected", backend="redis")
        return RedisProfileStore(Redis.from_url(settings.REDIS_URL, decode_responses=True))
    logger.info("profile_store_selected", backend="memory")
    return InMemoryProfileStore()

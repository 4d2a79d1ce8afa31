"""Redis client and Redis-backed recommendation cache."""

import json
import logging

import redis
from pydantic import ValidationError

from folio.config import get_settings
from folio.core.recommendation_cache import RecommendationCache
from folio.models.schemas import RecommendationItem

logger = logging.getLogger(__name__)
settings = get_settings()

# Create Redis client (connects lazily on first command)
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=True,  # Automatically decode bytes to strings
)


class RedisRecommendationCache(RecommendationCache):
    """Stores each user's recommendations under its own key with a Redis TTL.

    Expiry is enforced by Redis itself. Redis failures are logged and
    treated as a miss (reads) or skipped (writes).
    """

    KEY_PREFIX = "recommendations:"

    def __init__(self, client: redis.Redis, ttl: int = settings.recommendation_cache_ttl):
        self.client = client
        self.ttl = ttl

    def _key(self, user_id: str) -> str:
        """Generate Redis key for a user's recommendations."""
        return f"{self.KEY_PREFIX}{user_id}"

    def get(self, user_id: str) -> list[RecommendationItem] | None:
        try:
            data = self.client.get(self._key(user_id))
        except redis.RedisError as e:
            logger.warning(f"Redis read failed for user {user_id}, treating as miss: {e}")
            return None

        if not data:
            return None

        try:
            return [RecommendationItem.model_validate(item) for item in json.loads(data)]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning(f"Discarding unreadable cache entry for user {user_id}: {e}")
            self.invalidate(user_id)
            return None

    def put(self, user_id: str, recommendations: list[RecommendationItem]) -> None:
        payload = json.dumps([rec.model_dump(mode="json") for rec in recommendations])
        try:
            self.client.setex(self._key(user_id), self.ttl, payload)
        except redis.RedisError as e:
            logger.warning(f"Redis write failed for user {user_id}: {e}")

    def invalidate(self, user_id: str) -> None:
        try:
            self.client.delete(self._key(user_id))
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed for user {user_id}: {e}")

    def invalidate_all(self) -> None:
        try:
            keys = list(self.client.scan_iter(match=f"{self.KEY_PREFIX}*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis bulk delete failed: {e}")

"""Redis client and recommendation cache wiring."""

from datetime import timedelta
from functools import lru_cache

import redis

from bookrec.config import get_settings
from bookrec.services.recommendation_cache import (
    InMemoryRecommendationCache,
    RecommendationCache,
    RedisRecommendationCache,
)

settings = get_settings()

# Create Redis client (connects lazily on first command)
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=True,  # Automatically decode bytes to strings
)


@lru_cache
def get_recommendation_cache() -> RecommendationCache:
    """Dependency for getting the recommendation cache.

    Usage in FastAPI endpoints:
        @router.get("/users/{user_id}/recommendations/{strategy}")
        def get_recommendations(
            user_id: str,
            cache: RecommendationCache = Depends(get_recommendation_cache),
        ):
            return cache.get(user_id, strategy)
    """
    ttl = timedelta(seconds=settings.recommendation_ttl_seconds)
    if settings.cache_backend == "memory":
        return InMemoryRecommendationCache(ttl=ttl)
    return RedisRecommendationCache(redis_client, ttl=ttl)

"""Recommendation set cache with time-to-live.

Entries are keyed by (user_id, strategy). Expiry is checked on every read, so
a backend that keeps expired entries around (the in-memory one until
purge_expired() runs) still never serves stale data.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis
from pydantic import ValidationError

from bookrec.errors import CacheWriteError, NotFoundError
from bookrec.models.schemas import Interaction, RecommendationSet, ScoredRecommendation, Strategy

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecommendationCache(ABC):
    """Cache of RecommendationSet per (user, strategy)."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Clock = utcnow):
        self.ttl = ttl
        self.clock = clock

    def get(self, user_id: str, strategy: Strategy) -> Optional[RecommendationSet]:
        """Return the cached set if it has not expired, else None (miss)."""
        entry = self._load(user_id, strategy)
        if entry is None:
            logger.debug("Cache miss for %s/%s", user_id, strategy.value)
            return None
        if entry.is_expired(self.clock()):
            logger.debug("Cache entry for %s/%s expired at %s", user_id, strategy.value, entry.expires_at)
            return None
        logger.debug("Cache hit for %s/%s", user_id, strategy.value)
        return entry

    def put(
        self,
        user_id: str,
        strategy: Strategy,
        recommendations: Iterable[ScoredRecommendation],
    ) -> RecommendationSet:
        """Create or overwrite the set for (user, strategy) with expiry now + TTL.

        Raises:
            CacheWriteError: If the backend could not persist the set
        """
        created_at = self.clock()
        entry = RecommendationSet(
            user_id=user_id,
            strategy=strategy,
            recommendations=tuple(recommendations),
            created_at=created_at,
            expires_at=created_at + self.ttl,
        )
        self._store(entry)
        return entry

    def record_interaction(
        self,
        user_id: str,
        strategy: Strategy,
        book_id: str,
        interaction: Interaction,
        rating: Optional[int] = None,
    ) -> RecommendationSet:
        """Mark a book of the live set as clicked, purchased or rated.

        The set keeps its original expiry.

        Raises:
            NotFoundError: If no live set exists or the book is not in it
            ValueError: If a rating interaction has no rating in 1..5
            CacheWriteError: If the backend could not persist the update
        """
        entry = self.get(user_id, strategy)
        if entry is None:
            raise NotFoundError("recommendation set", f"{user_id}/{strategy.value}")
        if not entry.contains(book_id):
            raise NotFoundError("recommended book", book_id)

        updated = entry.interaction_for(book_id).apply(interaction, rating)
        entry = entry.model_copy(
            update={"interactions": {**entry.interactions, book_id: updated}}
        )
        self._store(entry)
        return entry

    @abstractmethod
    def _load(self, user_id: str, strategy: Strategy) -> Optional[RecommendationSet]:
        """Fetch the raw entry regardless of expiry."""

    @abstractmethod
    def _store(self, entry: RecommendationSet) -> None:
        """Persist an entry, raising CacheWriteError on failure."""

    @abstractmethod
    def delete(self, user_id: str, strategy: Optional[Strategy] = None) -> int:
        """Drop one strategy's entry, or every entry of the user when None.

        Returns:
            Number of entries removed
        """


class InMemoryRecommendationCache(RecommendationCache):
    """Process-local cache. Entries are immutable RecommendationSet objects."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Clock = utcnow):
        super().__init__(ttl=ttl, clock=clock)
        self._entries: dict[tuple[str, Strategy], RecommendationSet] = {}

    def _load(self, user_id: str, strategy: Strategy) -> Optional[RecommendationSet]:
        return self._entries.get((user_id, strategy))

    def _store(self, entry: RecommendationSet) -> None:
        self._entries[(entry.user_id, entry.strategy)] = entry

    def delete(self, user_id: str, strategy: Optional[Strategy] = None) -> int:
        keys = [
            key
            for key in self._entries
            if key[0] == user_id and (strategy is None or key[1] == strategy)
        ]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def purge_expired(self) -> int:
        """Physically remove expired entries (background sweep).

        Returns:
            Number of entries removed
        """
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Purged %d expired recommendation sets", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisRecommendationCache(RecommendationCache):
    """Redis-backed cache storing the JSON document shape of RecommendationSet.

    The Redis key TTL matches the set's expiry, so Redis sweeps expired
    entries on its own; expires_at is still checked on read.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utcnow,
    ):
        super().__init__(ttl=ttl, clock=clock)
        self.client = client

    def _key(self, user_id: str, strategy: Strategy) -> str:
        """Generate Redis key for a recommendation set."""
        return f"recommendations:{user_id}:{strategy.value}"

    def _load(self, user_id: str, strategy: Strategy) -> Optional[RecommendationSet]:
        key = self._key(user_id, strategy)
        try:
            data = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        if not data:
            return None
        try:
            return RecommendationSet.from_document(json.loads(data))
        except (json.JSONDecodeError, KeyError, ValueError, ValidationError) as e:
            logger.warning("Undecodable cache entry %s, treating as miss: %s", key, e)
            return None

    def _store(self, entry: RecommendationSet) -> None:
        key = self._key(entry.user_id, entry.strategy)
        # Remaining lifetime, so re-stored sets keep their original expiry
        ttl_seconds = max(int((entry.expires_at - self.clock()).total_seconds()), 1)
        try:
            self.client.setex(key, ttl_seconds, json.dumps(entry.to_document()))
        except redis.RedisError as e:
            raise CacheWriteError(f"could not cache {key}: {e}") from e

    def delete(self, user_id: str, strategy: Optional[Strategy] = None) -> int:
        strategies = [strategy] if strategy is not None else list(Strategy)
        keys = [self._key(user_id, s) for s in strategies]
        try:
            return int(self.client.delete(*keys))
        except redis.RedisError as e:
            logger.warning("Cache delete failed for user %s: %s", user_id, e)
            return 0

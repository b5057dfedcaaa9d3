"""Recommendation engine: cache lookup, strategy dispatch, fallbacks."""

import logging
from datetime import datetime
from typing import Any, Optional

from langfuse import observe

from bookrec.constants import DEFAULT_LIMIT, SIMILAR_BOOKS_LIMIT
from bookrec.errors import CacheWriteError, InsufficientSignalError
from bookrec.models.schemas import (
    Interaction,
    RecommendationResult,
    RecommendationSet,
    ScoredRecommendation,
    Strategy,
)
from bookrec.services.candidates import select_candidates
from bookrec.services.catalog_store import CatalogStore
from bookrec.services.collaborative import collaborative_recommendations
from bookrec.services.quiz import QuizRanker, quiz_recommendations
from bookrec.services.recommendation_cache import RecommendationCache
from bookrec.services.scoring import score_candidates
from bookrec.services.signals import extract_signals
from bookrec.services.strategies import (
    content_based_recommendations,
    similar_to_book,
    trending_recommendations,
)

logger = logging.getLogger(__name__)

# Strategy used when a strategy reports InsufficientSignalError.
FALLBACKS = {
    Strategy.COLLABORATIVE: Strategy.PERSONALIZED,
    Strategy.CONTENT_BASED: Strategy.PERSONALIZED,
    Strategy.PERSONALIZED: Strategy.TRENDING,
}


class RecommendationEngine:
    """Serves recommendation sets per (user, strategy).

    Flow: cache lookup -> on miss, compute with the requested strategy
    (falling back when the user's signal is too sparse) -> cache write under
    the strategy that produced the list -> return.

    Concurrent misses for the same key may compute twice; the last write
    wins, and both writes hold the same content because scoring is
    deterministic.
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: RecommendationCache,
        quiz_ranker: Optional[QuizRanker] = None,
    ):
        self.store = store
        self.cache = cache
        self.quiz_ranker = quiz_ranker

    def _now(self) -> datetime:
        return self.cache.clock()

    @observe()
    def recommend(
        self,
        user_id: str,
        strategy: Strategy,
        limit: int = DEFAULT_LIMIT,
        quiz_answers: Optional[dict[str, Any]] = None,
    ) -> RecommendationResult:
        """Return recommendations for a user under a strategy.

        Args:
            user_id: User identifier
            strategy: Requested strategy
            limit: Maximum number of recommendations to generate on a miss
            quiz_answers: Quiz answers (ai_quiz only); when given the quiz is
                always re-run

        Returns:
            RecommendationResult; its strategy is the one that produced the
            list, which differs from the request after a fallback

        Raises:
            NotFoundError: If the user does not exist
            StoreUnavailableError: If a catalog query fails
            ValueError: If limit < 1, or ai_quiz is requested without answers
                and nothing is cached
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        fresh_quiz = strategy == Strategy.AI_QUIZ and bool(quiz_answers)
        if not fresh_quiz:
            cached = self.cache.get(user_id, strategy)
            if cached is not None:
                return RecommendationResult(
                    recommendations=cached.recommendations,
                    strategy=cached.strategy,
                    source="cached",
                    generated_at=cached.created_at,
                )
            if strategy == Strategy.AI_QUIZ:
                raise ValueError("Quiz answers required")

        try:
            recommendations = self._compute(user_id, strategy, limit, quiz_answers)
        except InsufficientSignalError as e:
            fallback = FALLBACKS[strategy]
            logger.info(
                "Falling back from %s to %s for user %s: %s",
                strategy.value,
                fallback.value,
                user_id,
                e,
            )
            return self.recommend(user_id, fallback, limit)

        generated_at = self._write(user_id, strategy, recommendations)
        return RecommendationResult(
            recommendations=tuple(recommendations),
            strategy=strategy,
            source="generated",
            generated_at=generated_at,
        )

    def _compute(
        self,
        user_id: str,
        strategy: Strategy,
        limit: int,
        quiz_answers: Optional[dict[str, Any]],
    ) -> list[ScoredRecommendation]:
        if strategy == Strategy.TRENDING:
            # Trending ignores the profile but the user must exist
            self.store.get_user_profile(user_id)
            return trending_recommendations(self.store, now=self._now(), limit=limit)

        if strategy == Strategy.COLLABORATIVE:
            return collaborative_recommendations(self.store, user_id, limit)

        signals = extract_signals(self.store, user_id)

        if strategy == Strategy.CONTENT_BASED:
            return content_based_recommendations(self.store, user_id, signals, limit)

        if strategy == Strategy.AI_QUIZ:
            return quiz_recommendations(
                self.store, signals, quiz_answers or {}, limit, ranker=self.quiz_ranker
            )

        if signals.is_empty:
            raise InsufficientSignalError(f"user {user_id} has no signals yet")
        candidates = select_candidates(self.store, signals, limit)
        return score_candidates(candidates, signals, limit)

    def _write(
        self,
        user_id: str,
        strategy: Strategy,
        recommendations: list[ScoredRecommendation],
    ) -> datetime:
        """Cache the set; a failed write is logged and otherwise ignored."""
        try:
            return self.cache.put(user_id, strategy, recommendations).created_at
        except CacheWriteError as e:
            logger.warning("Could not cache %s recommendations for user %s: %s", strategy.value, user_id, e)
            return self._now()

    @observe()
    def similar_to_book(
        self,
        book_id: str,
        limit: int = SIMILAR_BOOKS_LIMIT,
    ) -> list[ScoredRecommendation]:
        """Because-you-liked recommendations for one book (not cached).

        Raises:
            NotFoundError: If the book does not exist
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        return similar_to_book(self.store, book_id, limit)

    def invalidate(self, user_id: str, strategy: Optional[Strategy] = None) -> int:
        """Drop cached sets of a user, e.g. after a purchase or review."""
        removed = self.cache.delete(user_id, strategy)
        logger.info("Invalidated %d cached recommendation sets for user %s", removed, user_id)
        return removed

    def record_interaction(
        self,
        user_id: str,
        strategy: Strategy,
        book_id: str,
        interaction: Interaction,
        rating: Optional[int] = None,
    ) -> RecommendationSet:
        """Track a click, purchase or rating on a served recommendation.

        Raises:
            NotFoundError: If the set expired or never held the book
            CacheWriteError: If the update could not be persisted
        """
        entry = self.cache.record_interaction(user_id, strategy, book_id, interaction, rating)
        logger.info(
            "Recorded %s on %s for user %s (%s)",
            interaction.value,
            book_id,
            user_id,
            strategy.value,
        )
        return entry

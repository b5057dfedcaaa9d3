"""Trending, content-based and "because you liked" strategies."""

import logging
from datetime import datetime, timedelta

from langfuse import observe

from bookrec.constants import (
    CONTENT_BASE_SCORE,
    CONTENT_GENRE_WEIGHT,
    CONTENT_SAME_AUTHOR_BONUS,
    HIGH_RATING_THRESHOLD,
    SIMILAR_BASE_SCORE,
    SIMILAR_GENRE_WEIGHT,
    SIMILAR_SAME_AUTHOR_BONUS,
    TRENDING_SATURATION,
    TRENDING_WINDOW_DAYS,
)
from bookrec.errors import InsufficientSignalError
from bookrec.models.schemas import (
    BookFilter,
    BookSort,
    CandidateBook,
    ScoredRecommendation,
    UserSignals,
)
from bookrec.services.catalog_store import CatalogStore
from bookrec.services.scoring import clamp_score, rank, score_candidates

logger = logging.getLogger(__name__)


# =============================================================================
# Trending
# =============================================================================


def trending_reason(purchase_count: int) -> str:
    return f"Trending with {purchase_count} recent purchases"


@observe()
def trending_recommendations(
    store: CatalogStore,
    now: datetime,
    limit: int,
) -> list[ScoredRecommendation]:
    """Books most purchased in the trending window.

    Falls back to popularity-only ranking (rating count, then average) when
    nothing was purchased in the window.
    """
    since = now - timedelta(days=TRENDING_WINDOW_DAYS)
    trending = store.trending_books(since=since, limit=limit)

    if not trending:
        logger.info("No purchases since %s; using popularity ranking", since.date())
        popular = store.query_books(BookFilter(), sort=BookSort.POPULARITY, limit=limit)
        return score_candidates(popular, UserSignals(), limit=limit)

    books = {book.id: book for book in store.get_books(t.book_id for t in trending)}
    recommendations = []
    for entry in trending:
        book = books.get(entry.book_id)
        if book is None:
            continue
        recommendations.append(
            ScoredRecommendation(
                book=book,
                score=clamp_score(entry.purchase_count / TRENDING_SATURATION),
                reason=trending_reason(entry.purchase_count),
            )
        )
    # trending_books is already ordered by purchase count; keep that order
    return recommendations


# =============================================================================
# Content-based and similar books
# =============================================================================


def common_genres(book: CandidateBook, source: CandidateBook) -> list[str]:
    """Genres of book that the source book also has, in book's order."""
    source_genres = set(source.genres)
    return [g for g in book.genres if g in source_genres]


def similarity_reason(book: CandidateBook, source: CandidateBook) -> str:
    if book.author_id == source.author_id:
        return f'Same author as "{source.title}"'
    shared = common_genres(book, source)
    if shared:
        label = "genres" if len(shared) > 1 else "genre"
        return f"Similar {label}: {', '.join(shared[:2])}"
    return "Similar to books you enjoyed"


def content_score(book: CandidateBook, source: CandidateBook) -> float:
    """0.3 + shared/candidate genres * 0.4 + 0.3 for the same author."""
    shared = len(common_genres(book, source))
    genre_ratio = shared / len(book.genres) if book.genres else 0.0
    author_bonus = CONTENT_SAME_AUTHOR_BONUS if book.author_id == source.author_id else 0.0
    return clamp_score(CONTENT_BASE_SCORE + genre_ratio * CONTENT_GENRE_WEIGHT + author_bonus)


def similar_score(book: CandidateBook, source: CandidateBook) -> float:
    """0.2 + shared/source genres * 0.5 + 0.3 for the same author."""
    shared = len(common_genres(book, source))
    genre_ratio = shared / len(source.genres) if source.genres else 0.0
    author_bonus = SIMILAR_SAME_AUTHOR_BONUS if book.author_id == source.author_id else 0.0
    return clamp_score(SIMILAR_BASE_SCORE + genre_ratio * SIMILAR_GENRE_WEIGHT + author_bonus)


def _related_books(
    store: CatalogStore,
    source: CandidateBook,
    exclude_ids: frozenset[str],
    limit: int,
) -> list[CandidateBook]:
    return store.query_books(
        BookFilter(
            genres=frozenset(source.genres) or None,
            author_ids=frozenset({source.author_id}),
            exclude_ids=exclude_ids | {source.id},
        ),
        sort=BookSort.TOP_RATED,
        limit=limit,
    )


@observe()
def content_based_recommendations(
    store: CatalogStore,
    user_id: str,
    signals: UserSignals,
    limit: int,
) -> list[ScoredRecommendation]:
    """Books resembling the user's most recent highly rated book.

    Raises:
        InsufficientSignalError: If the user has no highly rated book, or no
            related unseen book exists
    """
    all_ratings = store.query_ratings_by_user(user_id)
    ratings = [r for r in all_ratings if r.rating >= HIGH_RATING_THRESHOLD]
    if not ratings:
        raise InsufficientSignalError(f"user {user_id} has no highly rated books")

    latest = max(ratings, key=lambda r: (r.created_at is not None, r.created_at, r.book_id))
    source = store.get_book(latest.book_id)

    rated_ids = frozenset(r.book_id for r in all_ratings)
    related = _related_books(store, source, signals.excluded_book_ids | rated_ids, limit)
    if not related:
        raise InsufficientSignalError(f'nothing related to "{source.title}" left to recommend')

    return rank(
        (
            ScoredRecommendation(
                book=book,
                score=content_score(book, source),
                reason=similarity_reason(book, source),
            )
            for book in related
        ),
        limit,
    )


@observe()
def similar_to_book(
    store: CatalogStore,
    book_id: str,
    limit: int,
) -> list[ScoredRecommendation]:
    """Because-you-liked-X: books sharing a genre or the author of X.

    Raises:
        NotFoundError: If the book does not exist
    """
    source = store.get_book(book_id)
    related = _related_books(store, source, frozenset(), limit)
    return rank(
        (
            ScoredRecommendation(
                book=book,
                score=similar_score(book, source),
                reason=similarity_reason(book, source),
            )
            for book in related
        ),
        limit,
    )

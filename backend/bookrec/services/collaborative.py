"""Collaborative filtering from users with similar rating patterns.

Pipeline (each stage is a pure function):
1. group_ratings_by_user: other users' ratings on books the target rated
2. compute_similarities: mean squared difference (MSD) per user
3. select_similar_users: keep MSD < threshold, sort ascending, take K
4. aggregate_book_ratings: (average rating, rater count) per unseen book
5. rank_aggregates: average desc, rater count desc, book id asc
6. to_recommendations: score = average / 5
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

from langfuse import observe
from scipy.spatial.distance import sqeuclidean

from bookrec.constants import (
    HIGH_RATING_THRESHOLD,
    MAX_SIMILAR_USERS,
    MIN_RATINGS_FOR_COLLABORATIVE,
    SIMILARITY_THRESHOLD,
)
from bookrec.errors import InsufficientSignalError
from bookrec.models.schemas import CandidateBook, Rating, ScoredRecommendation
from bookrec.services.catalog_store import CatalogStore
from bookrec.services.scoring import clamp_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSimilarity:
    user_id: str
    msd: float
    common_count: int


@dataclass(frozen=True)
class BookAggregate:
    book_id: str
    average_rating: float
    rater_count: int


def group_ratings_by_user(ratings: Iterable[Rating]) -> dict[str, dict[str, int]]:
    """Group ratings into {user_id: {book_id: rating}}."""
    grouped: dict[str, dict[str, int]] = defaultdict(dict)
    for r in ratings:
        grouped[r.user_id][r.book_id] = r.rating
    return dict(grouped)


def mean_squared_difference(
    target: Mapping[str, int],
    other: Mapping[str, int],
) -> Optional[float]:
    """MSD of ratings on the books both users rated.

    Returns None when the users share no rated book.
    """
    common = sorted(set(target) & set(other))
    if not common:
        return None
    u = [float(target[book_id]) for book_id in common]
    v = [float(other[book_id]) for book_id in common]
    return float(sqeuclidean(u, v)) / len(common)


def compute_similarities(
    target: Mapping[str, int],
    others: Mapping[str, Mapping[str, int]],
) -> list[UserSimilarity]:
    """MSD between the target and every other user sharing a rated book."""
    similarities = []
    for user_id, ratings in others.items():
        msd = mean_squared_difference(target, ratings)
        if msd is None:
            continue
        common_count = len(set(target) & set(ratings))
        similarities.append(UserSimilarity(user_id=user_id, msd=msd, common_count=common_count))
    return similarities


def select_similar_users(
    similarities: Iterable[UserSimilarity],
    threshold: float = SIMILARITY_THRESHOLD,
    k: int = MAX_SIMILAR_USERS,
) -> list[UserSimilarity]:
    """Keep users with MSD below threshold, most similar first, at most k.

    Ties on MSD go to the user with more books in common, then by user id.
    """
    qualifying = [s for s in similarities if s.msd < threshold]
    qualifying.sort(key=lambda s: (s.msd, -s.common_count, s.user_id))
    return qualifying[:k]


def aggregate_book_ratings(
    ratings: Iterable[Rating],
    exclude_book_ids: Iterable[str] = (),
    min_rating: int = HIGH_RATING_THRESHOLD,
) -> list[BookAggregate]:
    """Average rating and rater count per book, ignoring excluded books."""
    excluded = set(exclude_book_ids)
    buckets: dict[str, list[int]] = defaultdict(list)
    for r in ratings:
        if r.rating < min_rating or r.book_id in excluded:
            continue
        buckets[r.book_id].append(r.rating)
    return [
        BookAggregate(
            book_id=book_id,
            average_rating=sum(values) / len(values),
            rater_count=len(values),
        )
        for book_id, values in buckets.items()
    ]


def rank_aggregates(
    aggregates: Iterable[BookAggregate],
    limit: Optional[int] = None,
) -> list[BookAggregate]:
    """Order by average rating desc, then rater count desc, then book id asc."""
    ordered = sorted(
        aggregates,
        key=lambda a: (-a.average_rating, -a.rater_count, a.book_id),
    )
    return ordered if limit is None else ordered[:limit]


def collaborative_reason(rater_count: int) -> str:
    return f"Recommended by {rater_count} users with similar tastes"


def to_recommendations(
    aggregates: Iterable[BookAggregate],
    books: Mapping[str, CandidateBook],
) -> list[ScoredRecommendation]:
    """Attach catalog snapshots to ranked aggregates.

    Aggregates whose book is missing from the catalog are dropped; the
    aggregate order is kept.
    """
    recommendations = []
    for aggregate in aggregates:
        book = books.get(aggregate.book_id)
        if book is None:
            continue
        recommendations.append(
            ScoredRecommendation(
                book=book,
                score=clamp_score(aggregate.average_rating / 5),
                reason=collaborative_reason(aggregate.rater_count),
            )
        )
    return recommendations


@observe()
def collaborative_recommendations(
    store: CatalogStore,
    user_id: str,
    limit: int,
) -> list[ScoredRecommendation]:
    """Recommend books that users with similar tastes rated highly.

    Args:
        store: Catalog store
        user_id: Target user
        limit: Maximum number of recommendations

    Returns:
        Non-empty list of ScoredRecommendation

    Raises:
        InsufficientSignalError: If the user rated fewer than
            MIN_RATINGS_FOR_COLLABORATIVE books, no similar user is found,
            or similar users rated nothing new highly
        NotFoundError: If the user does not exist
    """
    store.get_user_profile(user_id)  # NotFound for unknown users

    target_ratings = {r.book_id: r.rating for r in store.query_ratings_by_user(user_id)}
    if len(target_ratings) < MIN_RATINGS_FOR_COLLABORATIVE:
        raise InsufficientSignalError(
            f"user {user_id} rated {len(target_ratings)} books; "
            f"collaborative filtering needs {MIN_RATINGS_FOR_COLLABORATIVE}"
        )

    others = group_ratings_by_user(
        store.query_ratings_for_books(target_ratings.keys(), excluding_user=user_id)
    )
    similar_users = select_similar_users(compute_similarities(target_ratings, others))
    if not similar_users:
        raise InsufficientSignalError(f"no users with similar tastes to {user_id}")

    logger.debug(
        "User %s: %d similar users (best MSD %.3f)",
        user_id,
        len(similar_users),
        similar_users[0].msd,
    )

    neighbor_ratings = store.query_ratings_by_users(
        [s.user_id for s in similar_users],
        min_rating=HIGH_RATING_THRESHOLD,
        excluding_books=target_ratings.keys(),
    )
    ranked = rank_aggregates(
        aggregate_book_ratings(neighbor_ratings, exclude_book_ids=target_ratings.keys()),
        limit=limit,
    )
    if not ranked:
        raise InsufficientSignalError(f"similar users rated no new books highly for {user_id}")

    books = {book.id: book for book in store.get_books(a.book_id for a in ranked)}
    recommendations = to_recommendations(ranked, books)
    if not recommendations:
        raise InsufficientSignalError(f"collaborative books for {user_id} missing from catalog")
    return recommendations

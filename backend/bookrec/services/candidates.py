"""Candidate selection for personalized scoring."""

import logging

from bookrec.models.schemas import BookFilter, BookSort, CandidateBook, UserSignals
from bookrec.services.catalog_store import CatalogStore

logger = logging.getLogger(__name__)


def select_candidates(
    store: CatalogStore,
    signals: UserSignals,
    limit: int,
) -> list[CandidateBook]:
    """Fetch up to `limit` books worth scoring for a user.

    Strategy:
    - Books sharing a favorite genre (no genre filter when the user has none)
    - Excluding books the user purchased or rated highly
    - Ordered by average rating desc, then rating count desc

    When the exclusions leave nothing, the genre filter is dropped and the
    top-rated books store-wide are returned. If even that is empty (the user
    owns every book), the exclusions are dropped too, so a non-empty catalog
    always yields candidates.

    Args:
        store: Catalog store
        signals: User signals
        limit: Maximum number of candidates

    Returns:
        List of CandidateBook in store order
    """
    excluded = signals.excluded_book_ids
    genres = signals.favorite_genres or None

    candidates = store.query_books(
        BookFilter(genres=genres, exclude_ids=excluded),
        sort=BookSort.TOP_RATED,
        limit=limit,
    )
    if candidates:
        return candidates

    if genres:
        logger.info("No genre-matching candidates left; relaxing genre filter")
        candidates = store.query_books(
            BookFilter(exclude_ids=excluded),
            sort=BookSort.TOP_RATED,
            limit=limit,
        )
        if candidates:
            return candidates

    if excluded:
        logger.info("Exclusions removed every book; returning top-rated store-wide")
        candidates = store.query_books(BookFilter(), sort=BookSort.TOP_RATED, limit=limit)

    return candidates

"""User signal extraction."""

import logging

from bookrec.constants import HIGH_RATING_THRESHOLD
from bookrec.models.schemas import UserSignals
from bookrec.services.catalog_store import CatalogStore

logger = logging.getLogger(__name__)


def extract_signals(store: CatalogStore, user_id: str) -> UserSignals:
    """Gather a user's affinity signals from the catalog store.

    Signals:
    - favorite genres from the stored profile
    - book ids from completed purchases
    - book ids the user rated at or above HIGH_RATING_THRESHOLD
    - followed author ids

    A new user yields an all-empty UserSignals; callers treat that as a cue
    to use the trending strategy, never as an error.

    Args:
        store: Catalog store
        user_id: User identifier

    Returns:
        UserSignals for the user

    Raises:
        NotFoundError: If the user does not exist
        StoreUnavailableError: If a store query fails
    """
    profile = store.get_user_profile(user_id)
    purchased = store.get_completed_purchases(user_id)
    ratings = store.query_ratings_by_user(user_id)

    signals = UserSignals(
        favorite_genres=frozenset(profile.favorite_genres),
        purchased_book_ids=frozenset(purchased),
        highly_rated_book_ids=frozenset(
            r.book_id for r in ratings if r.rating >= HIGH_RATING_THRESHOLD
        ),
        followed_author_ids=frozenset(profile.following_author_ids),
    )

    logger.debug(
        "Signals for user %s: %d genres, %d purchased, %d highly rated, %d followed authors",
        user_id,
        len(signals.favorite_genres),
        len(signals.purchased_book_ids),
        len(signals.highly_rated_book_ids),
        len(signals.followed_author_ids),
    )
    return signals

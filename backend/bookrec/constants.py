# =============================================================================
# STRATEGIES
# =============================================================================

DEFAULT_LIMIT = 10
"""Default number of recommendations returned per request."""

SIMILAR_BOOKS_LIMIT = 8
"""Default number of books returned by "because you liked" lookups."""


# =============================================================================
# PERSONALIZED SCORING CONFIGURATION
# =============================================================================
# Each term is bounded on its own before the terms are summed. The sum is then
# clamped to 1.0.

GENRE_MATCH_WEIGHT = 0.3
"""Contribution per candidate genre found in the user's favorite genres."""

GENRE_MATCH_CAP = 0.3
"""
Ceiling for the genre term.

With the cap equal to the per-genre weight, a single overlapping genre
already earns the full term. A book tagged with five favorite genres scores
exactly as much on this term as a book tagged with one.
"""

FOLLOWED_AUTHOR_BONUS = 0.4
"""Flat bonus when the candidate's author is followed by the user."""

RATING_WEIGHT = 0.1
"""
Multiplier applied to the catalog average rating (0-5).

A perfect 5.0 contributes 0.5, which can push the raw sum above 1.0.
"""

POPULARITY_DIVISOR = 1000
"""Rating count that maps to 1.0 before the popularity cap is applied."""

POPULARITY_CAP = 0.2
"""Ceiling for the popularity term (min(rating_count / divisor, cap))."""

MAX_SCORE = 1.0
"""Hard ceiling for every recommendation score."""


# =============================================================================
# REASON CONFIGURATION
# =============================================================================

HIGHLY_RATED_AVERAGE = 4.5
"""Minimum catalog average for the "Highly rated by readers" reason."""

HIGHLY_RATED_MIN_COUNT = 100
"""Minimum rating count for the "Highly rated by readers" reason."""

MAX_REASON_PARTS = 5
"""Maximum number of fired reason rules joined into one reason string.

Equal to the number of built-in rules, so every rule that fires is shown.
"""

REASON_SEPARATOR = " • "
"""Separator placed between reason parts."""

FALLBACK_REASON = "Recommended for you"
"""Reason used when no rule fires."""


# =============================================================================
# USER SIGNAL CONFIGURATION
# =============================================================================

HIGH_RATING_THRESHOLD = 4
"""
Reviews rated at or above this value (1-5 scale) count as "highly rated".

Used for:
    - UserSignals.highly_rated_book_ids (excluded from candidates)
    - Books surfaced from similar users in collaborative filtering
    - Picking the source book of content-based recommendations
"""


# =============================================================================
# COLLABORATIVE FILTERING CONFIGURATION
# =============================================================================
# Similar users are found by mean squared difference (MSD) of ratings on the
# books both users rated. Lower MSD means more similar.

MIN_RATINGS_FOR_COLLABORATIVE = 3
"""
Minimum number of books the target user must have rated.

Below this, collaborative filtering is skipped and the personalized
strategy is used instead.
"""

SIMILARITY_THRESHOLD = 2.0
"""
Users qualify as similar only when their MSD is strictly below this value.

On a 1-5 scale the MSD ranges from 0 (identical ratings) to 16.

Tuning:
    - Lower (e.g., 1.0): only near-identical tastes qualify (stricter)
    - Higher (e.g., 4.0): looser matches qualify (more candidates, more noise)
"""

MAX_SIMILAR_USERS = 10
"""Number of most similar users (K) retained for aggregation."""


# =============================================================================
# CONTENT-BASED CONFIGURATION
# =============================================================================

CONTENT_BASE_SCORE = 0.3
"""Base score for every content-based candidate."""

CONTENT_GENRE_WEIGHT = 0.4
"""Weight of the shared-genre ratio (shared / candidate genres)."""

CONTENT_SAME_AUTHOR_BONUS = 0.3
"""Bonus when the candidate shares the source book's author."""

SIMILAR_BASE_SCORE = 0.2
"""Base score for "because you liked" candidates."""

SIMILAR_GENRE_WEIGHT = 0.5
"""Weight of the shared-genre ratio (shared / source genres)."""

SIMILAR_SAME_AUTHOR_BONUS = 0.3
"""Bonus when a "because you liked" candidate shares the source author."""


# =============================================================================
# TRENDING CONFIGURATION
# =============================================================================

TRENDING_WINDOW_DAYS = 30
"""Only completed purchases created within this many days count as trending."""

TRENDING_SATURATION = 100
"""Purchase count that maps to a trending score of 1.0."""


# =============================================================================
# AI QUIZ CONFIGURATION
# =============================================================================

LLM_MODEL = "gpt-4o-mini"
"""Language model used to rank quiz candidates."""

QUIZ_CANDIDATE_POOL = 30
"""Number of candidates offered to the LLM for a quiz request."""


# =============================================================================
# VALIDATION
# =============================================================================

def validate_constants():
    """
    Validate that all constants are within acceptable ranges.

    Raises:
        ValueError: If any constant is out of range
    """
    # Score terms must stay inside the unit interval
    for name, value in (
        ("GENRE_MATCH_WEIGHT", GENRE_MATCH_WEIGHT),
        ("GENRE_MATCH_CAP", GENRE_MATCH_CAP),
        ("FOLLOWED_AUTHOR_BONUS", FOLLOWED_AUTHOR_BONUS),
        ("RATING_WEIGHT", RATING_WEIGHT),
        ("POPULARITY_CAP", POPULARITY_CAP),
        ("MAX_SCORE", MAX_SCORE),
    ):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be 0.0-1.0, got {value}")

    if POPULARITY_DIVISOR <= 0:
        raise ValueError(f"POPULARITY_DIVISOR must be > 0, got {POPULARITY_DIVISOR}")

    # Rating thresholds must be between 1 and 5
    if not 1 <= HIGH_RATING_THRESHOLD <= 5:
        raise ValueError(f"HIGH_RATING_THRESHOLD must be 1-5, got {HIGH_RATING_THRESHOLD}")

    if not 0.0 <= HIGHLY_RATED_AVERAGE <= 5.0:
        raise ValueError(f"HIGHLY_RATED_AVERAGE must be 0.0-5.0, got {HIGHLY_RATED_AVERAGE}")

    # MSD on a 1-5 scale is bounded by 16
    if not 0.0 < SIMILARITY_THRESHOLD <= 16.0:
        raise ValueError(f"SIMILARITY_THRESHOLD must be in (0, 16], got {SIMILARITY_THRESHOLD}")

    # Counts must be positive
    if MIN_RATINGS_FOR_COLLABORATIVE < 1:
        raise ValueError(
            f"MIN_RATINGS_FOR_COLLABORATIVE must be >= 1, got {MIN_RATINGS_FOR_COLLABORATIVE}"
        )

    if MAX_SIMILAR_USERS < 1:
        raise ValueError(f"MAX_SIMILAR_USERS must be >= 1, got {MAX_SIMILAR_USERS}")

    if MAX_REASON_PARTS < 1:
        raise ValueError(f"MAX_REASON_PARTS must be >= 1, got {MAX_REASON_PARTS}")

    if DEFAULT_LIMIT < 1:
        raise ValueError(f"DEFAULT_LIMIT must be >= 1, got {DEFAULT_LIMIT}")

    if TRENDING_WINDOW_DAYS < 1:
        raise ValueError(f"TRENDING_WINDOW_DAYS must be >= 1, got {TRENDING_WINDOW_DAYS}")

    if TRENDING_SATURATION < 1:
        raise ValueError(f"TRENDING_SATURATION must be >= 1, got {TRENDING_SATURATION}")


# Run validation on import
validate_constants()

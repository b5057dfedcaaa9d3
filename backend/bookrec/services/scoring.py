"""Personalized relevance scoring.

score_candidate() is a pure function of (CandidateBook, UserSignals): the same
inputs always give the same score and reason, which the cache relies on.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Optional

from bookrec.constants import (
    FALLBACK_REASON,
    FOLLOWED_AUTHOR_BONUS,
    GENRE_MATCH_CAP,
    GENRE_MATCH_WEIGHT,
    HIGHLY_RATED_AVERAGE,
    HIGHLY_RATED_MIN_COUNT,
    MAX_REASON_PARTS,
    MAX_SCORE,
    POPULARITY_CAP,
    POPULARITY_DIVISOR,
    RATING_WEIGHT,
    REASON_SEPARATOR,
)
from bookrec.models.schemas import CandidateBook, ScoredRecommendation, UserSignals


@dataclass(frozen=True)
class ScoreFactors:
    """Bounded contribution of each scoring feature."""

    genre_match: float = 0.0
    followed_author: float = 0.0
    rating_quality: float = 0.0
    popularity: float = 0.0

    @property
    def total(self) -> float:
        return self.genre_match + self.followed_author + self.rating_quality + self.popularity


@dataclass(frozen=True)
class ReasonRule:
    """A reason fragment emitted when its predicate holds."""

    name: str
    predicate: Callable[[CandidateBook, UserSignals], bool]
    text: Callable[[CandidateBook, UserSignals], str]


def clamp_score(value: float) -> float:
    """Clamp any raw score into [0, MAX_SCORE]."""
    return max(0.0, min(value, MAX_SCORE))


def matching_genres(book: CandidateBook, signals: UserSignals) -> list[str]:
    """Candidate genres found in the favorite genres, in catalog order."""
    seen = set()
    matches = []
    for genre in book.genres:
        if genre in signals.favorite_genres and genre not in seen:
            seen.add(genre)
            matches.append(genre)
    return matches


def compute_factors(book: CandidateBook, signals: UserSignals) -> ScoreFactors:
    """Compute each bounded feature contribution."""
    genre_term = min(GENRE_MATCH_WEIGHT * len(matching_genres(book, signals)), GENRE_MATCH_CAP)
    author_term = FOLLOWED_AUTHOR_BONUS if book.author_id in signals.followed_author_ids else 0.0
    rating_term = max(book.average_rating, 0.0) * RATING_WEIGHT
    popularity_term = min(max(book.ratings_count, 0) / POPULARITY_DIVISOR, POPULARITY_CAP)

    return ScoreFactors(
        genre_match=genre_term,
        followed_author=author_term,
        rating_quality=rating_term,
        popularity=popularity_term,
    )


def _genre_reason(book: CandidateBook, signals: UserSignals) -> str:
    genres = matching_genres(book, signals)
    label = "genres" if len(genres) > 1 else "genre"
    return f"Matches your favorite {label}: {', '.join(genres)}"


# Evaluated in order; the first MAX_REASON_PARTS that fire are joined.
REASON_RULES: tuple[ReasonRule, ...] = (
    ReasonRule(
        name="genre_match",
        predicate=lambda book, signals: bool(matching_genres(book, signals)),
        text=_genre_reason,
    ),
    ReasonRule(
        name="followed_author",
        predicate=lambda book, signals: book.author_id in signals.followed_author_ids,
        text=lambda book, signals: "From an author you follow",
    ),
    ReasonRule(
        name="highly_rated",
        predicate=lambda book, signals: (
            book.average_rating >= HIGHLY_RATED_AVERAGE
            and book.ratings_count >= HIGHLY_RATED_MIN_COUNT
        ),
        text=lambda book, signals: "Highly rated by readers",
    ),
    ReasonRule(
        name="new_release",
        predicate=lambda book, signals: book.new_release,
        text=lambda book, signals: "New release",
    ),
    ReasonRule(
        name="bestseller",
        predicate=lambda book, signals: book.bestseller,
        text=lambda book, signals: "Bestseller",
    ),
)


def build_reason(
    book: CandidateBook,
    signals: UserSignals,
    rules: Iterable[ReasonRule] = REASON_RULES,
    max_parts: int = MAX_REASON_PARTS,
) -> str:
    """Join the texts of the first `max_parts` rules that fire.

    Returns FALLBACK_REASON when no rule fires.
    """
    parts = []
    for rule in rules:
        if len(parts) >= max_parts:
            break
        if rule.predicate(book, signals):
            parts.append(rule.text(book, signals))
    return REASON_SEPARATOR.join(parts) if parts else FALLBACK_REASON


def score_candidate(book: CandidateBook, signals: UserSignals) -> ScoredRecommendation:
    """Score one candidate against a user's signals.

    Score = min(genre + followed author + rating quality + popularity, 1.0)
    where each term is bounded on its own (see bookrec.constants).

    Args:
        book: Candidate book
        signals: User signals

    Returns:
        ScoredRecommendation with score in [0, 1] and a reason string
    """
    factors = compute_factors(book, signals)
    return ScoredRecommendation(
        book=book,
        score=clamp_score(factors.total),
        reason=build_reason(book, signals),
    )


def rank(
    recommendations: Iterable[ScoredRecommendation],
    limit: Optional[int] = None,
) -> list[ScoredRecommendation]:
    """Order by score desc, then rating count desc, then book id asc."""
    ordered = sorted(
        recommendations,
        key=lambda rec: (-rec.score, -rec.book.ratings_count, rec.book.id),
    )
    return ordered if limit is None else ordered[:limit]


def score_candidates(
    candidates: Iterable[CandidateBook],
    signals: UserSignals,
    limit: Optional[int] = None,
) -> list[ScoredRecommendation]:
    """Score and rank a batch of candidates."""
    return rank((score_candidate(book, signals) for book in candidates), limit)

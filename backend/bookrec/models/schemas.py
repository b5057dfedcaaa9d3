"""Pydantic schemas for recommendation data and API responses."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Strategy(str, Enum):
    """Recommendation-generation approach. Each has its own cache entry."""

    PERSONALIZED = "personalized"
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    TRENDING = "trending"
    AI_QUIZ = "ai_quiz"


class Interaction(str, Enum):
    """What a user did with a recommended book."""

    CLICK = "click"
    PURCHASE = "purchase"
    RATING = "rating"


# ============================================================================
# Catalog Projections
# ============================================================================


class CandidateBook(BaseModel):
    """Immutable read projection of a catalog book used during scoring."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    genres: tuple[str, ...] = ()
    author_id: str
    average_rating: float = Field(0.0, ge=0.0, le=5.0)
    ratings_count: int = Field(0, ge=0)
    bestseller: bool = False
    new_release: bool = False


class Rating(BaseModel):
    """A single user rating of a book (1-5)."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    book_id: str
    rating: int = Field(..., ge=1, le=5)
    created_at: Optional[datetime] = None


class UserProfile(BaseModel):
    """Stored preference fields of a user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    favorite_genres: tuple[str, ...] = ()
    following_author_ids: tuple[str, ...] = ()


class TrendingBook(BaseModel):
    model_config = ConfigDict(frozen=True)

    book_id: str
    purchase_count: int


class BookSort(str, Enum):
    """Deterministic orderings supported by the catalog store."""

    # average rating desc, rating count desc, id asc
    TOP_RATED = "top_rated"
    # rating count desc, average rating desc, id asc
    POPULARITY = "popularity"


class BookFilter(BaseModel):
    """Catalog query filter.

    genres and author_ids are each "any of"; when both are set a book matches
    if it satisfies either of them. exclude_ids is always applied.
    """

    model_config = ConfigDict(frozen=True)

    genres: Optional[frozenset[str]] = None
    author_ids: Optional[frozenset[str]] = None
    exclude_ids: frozenset[str] = frozenset()


# ============================================================================
# Recommendation Data
# ============================================================================


class UserSignals(BaseModel):
    """Request-scoped affinity signals of one user. Never persisted."""

    model_config = ConfigDict(frozen=True)

    favorite_genres: frozenset[str] = frozenset()
    purchased_book_ids: frozenset[str] = frozenset()
    highly_rated_book_ids: frozenset[str] = frozenset()
    followed_author_ids: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        """True for a user with no signal at all (cold start)."""
        return not (
            self.favorite_genres
            or self.purchased_book_ids
            or self.highly_rated_book_ids
            or self.followed_author_ids
        )

    @property
    def excluded_book_ids(self) -> frozenset[str]:
        """Books the user already owns or rated highly."""
        return self.purchased_book_ids | self.highly_rated_book_ids


class ScoredRecommendation(BaseModel):
    """One ranked book with its score in [0, 1] and a readable reason."""

    model_config = ConfigDict(frozen=True)

    book: CandidateBook
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str


class BookInteraction(BaseModel):
    """Feedback recorded against one book of a cached set."""

    model_config = ConfigDict(frozen=True)

    clicked: bool = False
    purchased: bool = False
    rating: Optional[int] = Field(None, ge=1, le=5)

    def apply(self, interaction: Interaction, rating: Optional[int] = None) -> "BookInteraction":
        if interaction == Interaction.CLICK:
            return self.model_copy(update={"clicked": True})
        if interaction == Interaction.PURCHASE:
            return self.model_copy(update={"purchased": True})
        if rating is None or not 1 <= rating <= 5:
            raise ValueError("A rating interaction needs a rating between 1 and 5")
        return self.model_copy(update={"rating": rating})


class RecommendationSet(BaseModel):
    """Cached recommendations of one user under one strategy."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    strategy: Strategy
    recommendations: tuple[ScoredRecommendation, ...]
    created_at: datetime
    expires_at: datetime
    interactions: dict[str, BookInteraction] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def interaction_for(self, book_id: str) -> BookInteraction:
        return self.interactions.get(book_id, BookInteraction())

    def contains(self, book_id: str) -> bool:
        return any(rec.book.id == book_id for rec in self.recommendations)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted cache shape."""
        return {
            "userId": self.user_id,
            "strategy": self.strategy.value,
            "books": [
                {
                    "bookId": rec.book.id,
                    "score": rec.score,
                    "reason": rec.reason,
                    "book": rec.book.model_dump(mode="json"),
                    **self.interaction_for(rec.book.id).model_dump(),
                }
                for rec in self.recommendations
            ],
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "RecommendationSet":
        """Rebuild a set from its persisted shape."""
        return cls(
            user_id=document["userId"],
            strategy=Strategy(document["strategy"]),
            recommendations=tuple(
                ScoredRecommendation(
                    book=CandidateBook.model_validate(entry["book"]),
                    score=entry["score"],
                    reason=entry["reason"],
                )
                for entry in document["books"]
            ),
            created_at=datetime.fromisoformat(document["createdAt"]),
            expires_at=datetime.fromisoformat(document["expiresAt"]),
            interactions={
                entry["bookId"]: BookInteraction(
                    clicked=entry.get("clicked", False),
                    purchased=entry.get("purchased", False),
                    rating=entry.get("rating"),
                )
                for entry in document["books"]
                if entry.get("clicked") or entry.get("purchased") or entry.get("rating")
            },
        )


class RecommendationResult(BaseModel):
    """Outcome of one engine request."""

    model_config = ConfigDict(frozen=True)

    recommendations: tuple[ScoredRecommendation, ...]
    strategy: Strategy = Field(..., description="Strategy that produced the list")
    source: str = Field(..., description="cached | generated")
    generated_at: datetime


# ============================================================================
# API Schemas
# ============================================================================


class RecommendationOut(BaseModel):
    """Response schema for one recommendation."""

    book_id: str
    title: str
    genres: List[str]
    author_id: str
    average_rating: float
    ratings_count: int
    score: float = Field(..., ge=0, le=1)
    reason: str

    @classmethod
    def from_scored(cls, rec: ScoredRecommendation) -> "RecommendationOut":
        return cls(
            book_id=rec.book.id,
            title=rec.book.title,
            genres=list(rec.book.genres),
            author_id=rec.book.author_id,
            average_rating=rec.book.average_rating,
            ratings_count=rec.book.ratings_count,
            score=rec.score,
            reason=rec.reason,
        )


class RecommendationsResponse(BaseModel):
    """Response schema for recommendation endpoints."""

    requested_strategy: Optional[Strategy] = None
    strategy: Optional[Strategy] = None
    source: str = Field(..., description="cached | generated | similar")
    generated_at: Optional[datetime] = None
    recommendations: List[RecommendationOut]


class InteractionSubmit(BaseModel):
    """Request schema for recording an interaction with a recommended book."""

    book_id: str = Field(..., min_length=1)
    interaction: Interaction
    rating: Optional[int] = Field(None, ge=1, le=5)


class InteractionResponse(BaseModel):
    """Response schema after recording an interaction."""

    success: bool
    book_id: str
    clicked: bool
    purchased: bool
    rating: Optional[int] = None

"""Catalog store queries used by the recommender.

Every function the recommender needs from the catalog goes through
CatalogStore, so strategies can be exercised against any backing store.
SQLAlchemy errors are reported as StoreUnavailableError (or StoreTimeoutError
when the database cancelled a statement for exceeding its deadline).
"""

import functools
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from bookrec.errors import NotFoundError, StoreTimeoutError, StoreUnavailableError
from bookrec.models.database import (
    Book,
    BookGenre,
    Purchase,
    PurchaseItem,
    Review,
    User,
)
from bookrec.models.schemas import (
    BookFilter,
    BookSort,
    CandidateBook,
    Rating,
    TrendingBook,
    UserProfile,
)

logger = logging.getLogger(__name__)

COMPLETED = "completed"

_TIMEOUT_MARKERS = ("statement timeout", "canceling statement", "timeout expired")


class CatalogStore(Protocol):
    """Read interface of the catalog consumed by the recommendation core."""

    def query_books(
        self,
        filter: BookFilter,
        sort: BookSort = BookSort.TOP_RATED,
        limit: int = 10,
        skip: int = 0,
    ) -> list[CandidateBook]: ...

    def get_book(self, book_id: str) -> CandidateBook: ...

    def get_books(self, book_ids: Iterable[str]) -> list[CandidateBook]: ...

    def query_ratings_by_user(self, user_id: str) -> list[Rating]: ...

    def query_ratings_for_books(
        self, book_ids: Iterable[str], excluding_user: str
    ) -> list[Rating]: ...

    def query_ratings_by_users(
        self,
        user_ids: Iterable[str],
        min_rating: int = 1,
        excluding_books: Iterable[str] = (),
    ) -> list[Rating]: ...

    def get_user_profile(self, user_id: str) -> UserProfile: ...

    def get_completed_purchases(self, user_id: str) -> list[str]: ...

    def trending_books(self, since: datetime, limit: int) -> list[TrendingBook]: ...


def _store_call(method):
    """Translate SQLAlchemy failures into store errors.

    The session is rolled back first: a cancelled statement leaves a
    PostgreSQL transaction aborted, and later queries on the same session
    (the trending degrade) would fail with InFailedSqlTransaction.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except OperationalError as e:
            self.db.rollback()
            message = str(e).lower()
            if any(marker in message for marker in _TIMEOUT_MARKERS):
                logger.error("Catalog store timeout in %s: %s", method.__name__, e)
                raise StoreTimeoutError(f"{method.__name__} timed out") from e
            logger.error("Catalog store failure in %s: %s", method.__name__, e)
            raise StoreUnavailableError(f"{method.__name__} failed: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Catalog store failure in %s: %s", method.__name__, e)
            raise StoreUnavailableError(f"{method.__name__} failed: {e}") from e

    return wrapper


def to_candidate(book: Book) -> CandidateBook:
    """Project an ORM book onto an immutable CandidateBook."""
    return CandidateBook(
        id=book.id,
        title=book.title,
        genres=tuple(book.genres),
        author_id=book.author_id,
        average_rating=book.average_rating or 0.0,
        ratings_count=book.ratings_count or 0,
        bestseller=bool(book.bestseller),
        new_release=bool(book.new_release),
    )


def _to_rating(review: Review) -> Rating:
    return Rating(
        user_id=review.user_id,
        book_id=review.book_id,
        rating=review.rating,
        created_at=review.created_at,
    )


class SqlCatalogStore:
    """CatalogStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @_store_call
    def query_books(
        self,
        filter: BookFilter,
        sort: BookSort = BookSort.TOP_RATED,
        limit: int = 10,
        skip: int = 0,
    ) -> list[CandidateBook]:
        """Filtered, deterministically ordered catalog query.

        Args:
            filter: Genre/author match and exclusions
            sort: Ordering; both orderings end with id ascending
            limit: Maximum number of books to return
            skip: Number of leading results to skip

        Returns:
            List of CandidateBook in store order
        """
        stmt = select(Book).options(selectinload(Book.genre_links))

        match_any = []
        if filter.genres:
            match_any.append(
                Book.id.in_(
                    select(BookGenre.book_id).where(BookGenre.genre.in_(sorted(filter.genres)))
                )
            )
        if filter.author_ids:
            match_any.append(Book.author_id.in_(sorted(filter.author_ids)))
        if match_any:
            stmt = stmt.where(or_(*match_any))

        if filter.exclude_ids:
            stmt = stmt.where(Book.id.notin_(sorted(filter.exclude_ids)))

        if sort == BookSort.POPULARITY:
            stmt = stmt.order_by(
                Book.ratings_count.desc(), Book.average_rating.desc(), Book.id.asc()
            )
        else:
            stmt = stmt.order_by(
                Book.average_rating.desc(), Book.ratings_count.desc(), Book.id.asc()
            )

        stmt = stmt.offset(skip).limit(limit)
        return [to_candidate(book) for book in self.db.scalars(stmt).all()]

    @_store_call
    def get_book(self, book_id: str) -> CandidateBook:
        """Retrieve one book.

        Raises:
            NotFoundError: If the book does not exist
        """
        stmt = select(Book).options(selectinload(Book.genre_links)).where(Book.id == book_id)
        book = self.db.scalars(stmt).first()
        if book is None:
            raise NotFoundError("book", book_id)
        return to_candidate(book)

    @_store_call
    def get_books(self, book_ids: Iterable[str]) -> list[CandidateBook]:
        """Retrieve several books (may be fewer than requested if some are missing)."""
        ids = sorted(set(book_ids))
        if not ids:
            return []
        stmt = (
            select(Book)
            .options(selectinload(Book.genre_links))
            .where(Book.id.in_(ids))
            .order_by(Book.id)
        )
        return [to_candidate(book) for book in self.db.scalars(stmt).all()]

    @_store_call
    def query_ratings_by_user(self, user_id: str) -> list[Rating]:
        stmt = select(Review).where(Review.user_id == user_id).order_by(Review.book_id)
        return [_to_rating(review) for review in self.db.scalars(stmt).all()]

    @_store_call
    def query_ratings_for_books(
        self, book_ids: Iterable[str], excluding_user: str
    ) -> list[Rating]:
        """Ratings other users gave to any of the given books."""
        ids = sorted(set(book_ids))
        if not ids:
            return []
        stmt = (
            select(Review)
            .where(Review.book_id.in_(ids), Review.user_id != excluding_user)
            .order_by(Review.user_id, Review.book_id)
        )
        return [_to_rating(review) for review in self.db.scalars(stmt).all()]

    @_store_call
    def query_ratings_by_users(
        self,
        user_ids: Iterable[str],
        min_rating: int = 1,
        excluding_books: Iterable[str] = (),
    ) -> list[Rating]:
        """Ratings at or above min_rating given by any of the users."""
        ids = sorted(set(user_ids))
        if not ids:
            return []
        stmt = select(Review).where(Review.user_id.in_(ids), Review.rating >= min_rating)
        excluded = sorted(set(excluding_books))
        if excluded:
            stmt = stmt.where(Review.book_id.notin_(excluded))
        stmt = stmt.order_by(Review.user_id, Review.book_id)
        return [_to_rating(review) for review in self.db.scalars(stmt).all()]

    @_store_call
    def get_user_profile(self, user_id: str) -> UserProfile:
        """Retrieve stored preferences of a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        stmt = (
            select(User)
            .options(selectinload(User.favorite_genre_links), selectinload(User.follows))
            .where(User.id == user_id)
        )
        user = self.db.scalars(stmt).first()
        if user is None:
            raise NotFoundError("user", user_id)
        return UserProfile(
            user_id=user.id,
            favorite_genres=tuple(link.genre for link in user.favorite_genre_links),
            following_author_ids=tuple(sorted(f.author_id for f in user.follows)),
        )

    @_store_call
    def get_completed_purchases(self, user_id: str) -> list[str]:
        """Book ids from the user's completed purchases."""
        stmt = (
            select(PurchaseItem.book_id)
            .join(Purchase, Purchase.id == PurchaseItem.purchase_id)
            .where(Purchase.user_id == user_id, Purchase.payment_status == COMPLETED)
            .distinct()
            .order_by(PurchaseItem.book_id)
        )
        return list(self.db.scalars(stmt).all())

    @_store_call
    def trending_books(self, since: datetime, limit: int) -> list[TrendingBook]:
        """Books ranked by quantity sold in completed purchases since a date."""
        purchase_count = func.sum(PurchaseItem.quantity).label("purchase_count")
        stmt = (
            select(PurchaseItem.book_id, purchase_count)
            .join(Purchase, Purchase.id == PurchaseItem.purchase_id)
            .where(Purchase.payment_status == COMPLETED, Purchase.created_at >= since)
            .group_by(PurchaseItem.book_id)
            .order_by(purchase_count.desc(), PurchaseItem.book_id.asc())
            .limit(limit)
        )
        return [
            TrendingBook(book_id=book_id, purchase_count=int(count))
            for book_id, count in self.db.execute(stmt).all()
        ]


"""Pytest configuration for backend tests."""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Tests never touch a real database, Redis server, OpenAI or Langfuse
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("LANGFUSE_TRACING_ENABLED", "false")
os.environ.pop("OPENAI_API_KEY", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookrec.models.database import (
    Author,
    AuthorFollow,
    Base,
    Book,
    BookGenre,
    FavoriteGenre,
    Purchase,
    PurchaseItem,
    Review,
    User,
)
from bookrec.models.schemas import CandidateBook
from bookrec.services.catalog_store import SqlCatalogStore
from bookrec.services.recommendation_cache import InMemoryRecommendationCache

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class CatalogBuilder:
    """Inserts catalog rows with terse defaults."""

    def __init__(self, db: Session):
        self.db = db

    def author(self, author_id: str, name: str | None = None) -> Author:
        author = Author(id=author_id, name=name or f"Author {author_id}")
        self.db.add(author)
        self.db.flush()
        return author

    def book(
        self,
        book_id: str,
        author_id: str,
        genres: list[str] | None = None,
        average_rating: float = 0.0,
        ratings_count: int = 0,
        bestseller: bool = False,
        new_release: bool = False,
        title: str | None = None,
    ) -> Book:
        if self.db.get(Author, author_id) is None:
            self.author(author_id)
        book = Book(
            id=book_id,
            title=title or f"Book {book_id}",
            author_id=author_id,
            average_rating=average_rating,
            ratings_count=ratings_count,
            bestseller=bestseller,
            new_release=new_release,
        )
        book.genre_links = [
            BookGenre(genre=genre, position=i) for i, genre in enumerate(genres or [])
        ]
        self.db.add(book)
        self.db.flush()
        return book

    def user(
        self,
        user_id: str,
        favorite_genres: list[str] | None = None,
        following: list[str] | None = None,
    ) -> User:
        user = User(id=user_id, name=f"User {user_id}")
        user.favorite_genre_links = [FavoriteGenre(genre=g) for g in favorite_genres or []]
        user.follows = [AuthorFollow(author_id=a) for a in following or []]
        self.db.add(user)
        self.db.flush()
        return user

    def review(
        self,
        user_id: str,
        book_id: str,
        rating: int,
        created_at: datetime | None = None,
    ) -> Review:
        review = Review(
            user_id=user_id,
            book_id=book_id,
            rating=rating,
            created_at=created_at or NOW,
        )
        self.db.add(review)
        self.db.flush()
        return review

    def purchase(
        self,
        user_id: str,
        book_ids: list[str],
        status: str = "completed",
        created_at: datetime | None = None,
        quantity: int = 1,
    ) -> Purchase:
        purchase = Purchase(
            user_id=user_id,
            payment_status=status,
            created_at=created_at or NOW,
        )
        purchase.items = [PurchaseItem(book_id=b, quantity=quantity) for b in book_ids]
        self.db.add(purchase)
        self.db.flush()
        return purchase


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across connections."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(db_engine) -> Session:
    """Database session for each test."""
    TestingSession = sessionmaker(bind=db_engine, autoflush=False, autocommit=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def catalog(db) -> CatalogBuilder:
    return CatalogBuilder(db)


@pytest.fixture
def store(db) -> SqlCatalogStore:
    return SqlCatalogStore(db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock) -> InMemoryRecommendationCache:
    return InMemoryRecommendationCache(clock=clock)


@pytest.fixture
def make_book():
    """Factory for CandidateBook snapshots."""

    def _make(book_id: str = "b1", **overrides) -> CandidateBook:
        fields = {
            "id": book_id,
            "title": f"Book {book_id}",
            "genres": (),
            "author_id": "a1",
            "average_rating": 0.0,
            "ratings_count": 0,
        }
        fields.update(overrides)
        return CandidateBook(**fields)

    return _make

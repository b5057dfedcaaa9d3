"""Integration tests for the SQL catalog store (SQLite in memory)."""

import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from bookrec.errors import NotFoundError, StoreTimeoutError, StoreUnavailableError
from bookrec.models.schemas import BookFilter, BookSort
from bookrec.services.catalog_store import SqlCatalogStore


@pytest.fixture
def shelf(catalog):
    catalog.book("fan1", "tolkien", ["Fantasy", "Adventure"], average_rating=4.8, ratings_count=900)
    catalog.book("fan2", "jordan", ["Fantasy"], average_rating=4.1, ratings_count=300)
    catalog.book("sci1", "leguin", ["Science Fiction"], average_rating=4.8, ratings_count=1200)
    catalog.book("myst", "christie", ["Mystery"], average_rating=4.1, ratings_count=300)
    return catalog


def test_query_books_orders_top_rated_with_id_tiebreak(store, shelf):
    books = store.query_books(BookFilter(), sort=BookSort.TOP_RATED, limit=10)

    assert [b.id for b in books] == ["sci1", "fan1", "fan2", "myst"]


def test_query_books_popularity_order(store, shelf):
    books = store.query_books(BookFilter(), sort=BookSort.POPULARITY, limit=2)

    assert [b.id for b in books] == ["sci1", "fan1"]


def test_query_books_filters_genre_and_exclusions(store, shelf):
    books = store.query_books(
        BookFilter(genres=frozenset({"Fantasy"}), exclude_ids=frozenset({"fan1"})),
        limit=10,
    )

    assert [b.id for b in books] == ["fan2"]


def test_query_books_genre_or_author(store, shelf):
    books = store.query_books(
        BookFilter(genres=frozenset({"Mystery"}), author_ids=frozenset({"leguin"})),
        limit=10,
    )

    assert {b.id for b in books} == {"sci1", "myst"}


def test_query_books_skip_and_limit(store, shelf):
    books = store.query_books(BookFilter(), limit=2, skip=1)

    assert [b.id for b in books] == ["fan1", "fan2"]


def test_candidate_projection_keeps_genre_order(store, shelf):
    book = store.get_book("fan1")

    assert book.genres == ("Fantasy", "Adventure")
    assert book.author_id == "tolkien"
    assert book.average_rating == pytest.approx(4.8)


def test_get_book_not_found(store):
    with pytest.raises(NotFoundError) as exc:
        store.get_book("missing")

    assert exc.value.kind == "book"


def test_get_books_skips_missing(store, shelf):
    books = store.get_books(["myst", "missing", "fan2"])

    assert [b.id for b in books] == ["fan2", "myst"]
    assert store.get_books([]) == []


def test_user_profile_and_not_found(store, catalog):
    catalog.author("tolkien")
    catalog.user("u1", favorite_genres=["Fantasy", "Horror"], following=["tolkien"])

    profile = store.get_user_profile("u1")

    assert set(profile.favorite_genres) == {"Fantasy", "Horror"}
    assert profile.following_author_ids == ("tolkien",)
    with pytest.raises(NotFoundError):
        store.get_user_profile("ghost")


def test_completed_purchases_only(store, shelf):
    shelf.user("u1")
    shelf.purchase("u1", ["fan1", "fan2"])
    shelf.purchase("u1", ["myst"], status="pending")
    shelf.purchase("u1", ["fan1"])

    assert store.get_completed_purchases("u1") == ["fan1", "fan2"]


def test_rating_queries(store, shelf):
    for user_id in ("u1", "u2", "u3"):
        shelf.user(user_id)
    shelf.review("u1", "fan1", 5)
    shelf.review("u2", "fan1", 4)
    shelf.review("u2", "myst", 2)
    shelf.review("u3", "sci1", 5)

    assert [r.book_id for r in store.query_ratings_by_user("u2")] == ["fan1", "myst"]
    assert [r.user_id for r in store.query_ratings_for_books(["fan1"], excluding_user="u1")] == ["u2"]

    high = store.query_ratings_by_users(["u2", "u3"], min_rating=4, excluding_books=["sci1"])
    assert [(r.user_id, r.book_id) for r in high] == [("u2", "fan1")]


def test_trending_counts_recent_completed_quantities(store, shelf, clock):
    for user_id in ("u1", "u2"):
        shelf.user(user_id)
    shelf.purchase("u1", ["fan1"], quantity=3)
    shelf.purchase("u2", ["fan1", "myst"])
    shelf.purchase("u2", ["sci1"], status="failed")
    shelf.purchase("u2", ["fan2"], created_at=clock.now - timedelta(days=45))

    trending = store.trending_books(since=clock.now - timedelta(days=30), limit=10)

    assert [(t.book_id, t.purchase_count) for t in trending] == [("fan1", 4), ("myst", 1)]


def test_database_timeout_becomes_store_timeout():
    db = MagicMock()
    db.scalars.side_effect = OperationalError(
        "SELECT", {}, Exception("canceling statement due to statement timeout")
    )

    with pytest.raises(StoreTimeoutError):
        SqlCatalogStore(db).get_book("b1")


def test_database_failure_becomes_store_unavailable():
    db = MagicMock()
    db.scalars.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

    with pytest.raises(StoreUnavailableError) as exc:
        SqlCatalogStore(db).query_ratings_by_user("u1")

    assert not isinstance(exc.value, StoreTimeoutError)


def test_store_errors_roll_back_the_session(clock):
    """The session must be usable for the trending retry after a failed query."""
    timed_out = MagicMock()
    timed_out.scalars.side_effect = OperationalError(
        "SELECT", {}, Exception("canceling statement due to statement timeout")
    )
    broken = MagicMock()
    broken.execute.side_effect = ProgrammingError("SELECT", {}, Exception("no such table"))

    with pytest.raises(StoreTimeoutError):
        SqlCatalogStore(timed_out).get_book("b1")
    with pytest.raises(StoreUnavailableError):
        SqlCatalogStore(broken).trending_books(since=clock.now, limit=5)

    timed_out.rollback.assert_called_once()
    broken.rollback.assert_called_once()

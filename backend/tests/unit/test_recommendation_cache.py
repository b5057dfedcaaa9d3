"""Tests for the recommendation set cache (in-memory and Redis backends)."""

import json
import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest
import redis

from bookrec.errors import CacheWriteError, NotFoundError
from bookrec.models.schemas import Interaction, RecommendationSet, ScoredRecommendation, Strategy
from bookrec.services.recommendation_cache import (
    DEFAULT_TTL,
    InMemoryRecommendationCache,
    RedisRecommendationCache,
)


@pytest.fixture
def recs(make_book):
    return [
        ScoredRecommendation(
            book=make_book("b1", genres=("Fantasy",), average_rating=4.2, ratings_count=90),
            score=0.72,
            reason="Matches your favorite genre: Fantasy",
        ),
        ScoredRecommendation(book=make_book("b2"), score=0.3, reason="Recommended for you"),
    ]


# =============================================================================
# In-memory backend
# =============================================================================


def test_put_then_get_returns_same_set(memory_cache, recs, clock):
    stored = memory_cache.put("u1", Strategy.PERSONALIZED, recs)
    loaded = memory_cache.get("u1", Strategy.PERSONALIZED)

    assert loaded == stored
    assert loaded.recommendations == tuple(recs)
    assert loaded.created_at == clock.now
    assert loaded.expires_at == clock.now + DEFAULT_TTL


def test_repeated_reads_are_identical(memory_cache, recs):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)

    assert memory_cache.get("u1", Strategy.PERSONALIZED) == memory_cache.get("u1", Strategy.PERSONALIZED)


def test_miss_for_unknown_key(memory_cache):
    assert memory_cache.get("nobody", Strategy.TRENDING) is None


def test_entry_expires_exactly_at_ttl(memory_cache, recs, clock):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)

    clock.advance(DEFAULT_TTL - timedelta(seconds=1))
    assert memory_cache.get("u1", Strategy.PERSONALIZED) is not None

    clock.advance(timedelta(seconds=1))
    assert memory_cache.get("u1", Strategy.PERSONALIZED) is None


def test_strategies_do_not_overwrite_each_other(memory_cache, recs):
    """Personalized and trending sets of one user live side by side."""
    memory_cache.put("u1", Strategy.PERSONALIZED, recs[:1])
    memory_cache.put("u1", Strategy.TRENDING, recs[1:])

    personalized = memory_cache.get("u1", Strategy.PERSONALIZED)
    trending = memory_cache.get("u1", Strategy.TRENDING)

    assert [r.book.id for r in personalized.recommendations] == ["b1"]
    assert [r.book.id for r in trending.recommendations] == ["b2"]
    assert len(memory_cache) == 2


def test_put_overwrites_and_renews_expiry(memory_cache, recs, clock):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)
    clock.advance(timedelta(days=6))
    memory_cache.put("u1", Strategy.PERSONALIZED, recs[:1])
    clock.advance(timedelta(days=2))

    entry = memory_cache.get("u1", Strategy.PERSONALIZED)

    assert entry is not None
    assert len(entry.recommendations) == 1


def test_purge_expired_removes_only_expired(memory_cache, recs, clock):
    memory_cache.put("old", Strategy.PERSONALIZED, recs)
    clock.advance(timedelta(days=5))
    memory_cache.put("new", Strategy.PERSONALIZED, recs)
    clock.advance(timedelta(days=3))

    removed = memory_cache.purge_expired()

    assert removed == 1
    assert len(memory_cache) == 1
    assert memory_cache.get("new", Strategy.PERSONALIZED) is not None


def test_delete_one_strategy_or_all(memory_cache, recs):
    for strategy in (Strategy.PERSONALIZED, Strategy.TRENDING, Strategy.COLLABORATIVE):
        memory_cache.put("u1", strategy, recs)
    memory_cache.put("u2", Strategy.TRENDING, recs)

    assert memory_cache.delete("u1", Strategy.TRENDING) == 1
    assert memory_cache.get("u1", Strategy.TRENDING) is None
    assert memory_cache.delete("u1") == 2
    assert memory_cache.get("u2", Strategy.TRENDING) is not None


def test_custom_ttl(clock, recs):
    cache = InMemoryRecommendationCache(ttl=timedelta(hours=1), clock=clock)
    cache.put("u1", Strategy.TRENDING, recs)

    clock.advance(timedelta(hours=1))

    assert cache.get("u1", Strategy.TRENDING) is None


# =============================================================================
# Interactions
# =============================================================================


def test_interactions_accumulate_per_book(memory_cache, recs):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)

    memory_cache.record_interaction("u1", Strategy.PERSONALIZED, "b1", Interaction.CLICK)
    memory_cache.record_interaction("u1", Strategy.PERSONALIZED, "b1", Interaction.RATING, rating=4)
    entry = memory_cache.get("u1", Strategy.PERSONALIZED)

    b1 = entry.interaction_for("b1")
    assert (b1.clicked, b1.purchased, b1.rating) == (True, False, 4)
    assert entry.interaction_for("b2").clicked is False
    assert entry.recommendations == tuple(recs)


def test_interaction_keeps_original_expiry(memory_cache, recs, clock):
    stored = memory_cache.put("u1", Strategy.PERSONALIZED, recs)
    clock.advance(timedelta(days=3))

    updated = memory_cache.record_interaction("u1", Strategy.PERSONALIZED, "b2", Interaction.PURCHASE)

    assert updated.expires_at == stored.expires_at
    assert updated.interaction_for("b2").purchased is True


def test_interaction_without_live_set_is_not_found(memory_cache, recs, clock):
    with pytest.raises(NotFoundError):
        memory_cache.record_interaction("u1", Strategy.TRENDING, "b1", Interaction.CLICK)

    memory_cache.put("u1", Strategy.TRENDING, recs)
    clock.advance(DEFAULT_TTL)

    with pytest.raises(NotFoundError):
        memory_cache.record_interaction("u1", Strategy.TRENDING, "b1", Interaction.CLICK)


def test_interaction_on_book_outside_set_is_not_found(memory_cache, recs):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)

    with pytest.raises(NotFoundError) as exc:
        memory_cache.record_interaction("u1", Strategy.PERSONALIZED, "b9", Interaction.CLICK)

    assert exc.value.identifier == "b9"


def test_rating_interaction_needs_valid_rating(memory_cache, recs):
    memory_cache.put("u1", Strategy.PERSONALIZED, recs)

    for rating in (None, 0, 6):
        with pytest.raises(ValueError):
            memory_cache.record_interaction(
                "u1", Strategy.PERSONALIZED, "b1", Interaction.RATING, rating=rating
            )
    assert memory_cache.get("u1", Strategy.PERSONALIZED).interactions == {}


# =============================================================================
# Redis backend
# =============================================================================


def test_redis_put_uses_setex_with_ttl(clock, recs):
    client = MagicMock()
    cache = RedisRecommendationCache(client, clock=clock)

    cache.put("u1", Strategy.PERSONALIZED, recs)

    key, ttl_seconds, payload = client.setex.call_args.args
    document = json.loads(payload)
    assert key == "recommendations:u1:personalized"
    assert ttl_seconds == 7 * 24 * 60 * 60
    assert document["userId"] == "u1"
    assert document["strategy"] == "personalized"
    assert [entry["bookId"] for entry in document["books"]] == ["b1", "b2"]
    assert document["books"][0]["score"] == 0.72


def test_redis_get_decodes_stored_document(clock, recs):
    client = MagicMock()
    cache = RedisRecommendationCache(client, clock=clock)
    stored = cache.put("u1", Strategy.TRENDING, recs)
    client.get.return_value = client.setex.call_args.args[2]

    loaded = cache.get("u1", Strategy.TRENDING)

    client.get.assert_called_with("recommendations:u1:trending")
    assert loaded == stored


def test_redis_get_rejects_expired_document(clock, recs):
    client = MagicMock()
    cache = RedisRecommendationCache(client, clock=clock)
    cache.put("u1", Strategy.TRENDING, recs)
    client.get.return_value = client.setex.call_args.args[2]

    clock.advance(DEFAULT_TTL)

    assert cache.get("u1", Strategy.TRENDING) is None


def test_redis_read_errors_are_a_miss(clock):
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    cache = RedisRecommendationCache(client, clock=clock)

    assert cache.get("u1", Strategy.PERSONALIZED) is None


def test_redis_corrupt_entry_is_a_miss(clock):
    client = MagicMock()
    client.get.return_value = "{not json"
    cache = RedisRecommendationCache(client, clock=clock)

    assert cache.get("u1", Strategy.PERSONALIZED) is None

    client.get.return_value = json.dumps({"userId": "u1"})
    assert cache.get("u1", Strategy.PERSONALIZED) is None


def test_redis_write_failure_raises_cache_write_error(clock, recs):
    client = MagicMock()
    client.setex.side_effect = redis.ConnectionError("down")
    cache = RedisRecommendationCache(client, clock=clock)

    with pytest.raises(CacheWriteError):
        cache.put("u1", Strategy.PERSONALIZED, recs)


def test_redis_delete_all_strategies(clock):
    client = MagicMock()
    client.delete.return_value = 2
    cache = RedisRecommendationCache(client, clock=clock)

    removed = cache.delete("u1")

    assert removed == 2
    keys = client.delete.call_args.args
    assert len(keys) == len(Strategy)
    assert "recommendations:u1:ai_quiz" in keys


def test_document_round_trip_keeps_book_snapshot(clock, recs):
    entry = RecommendationSet(
        user_id="u1",
        strategy=Strategy.COLLABORATIVE,
        recommendations=tuple(recs),
        created_at=clock.now,
        expires_at=clock.now + DEFAULT_TTL,
    )

    restored = RecommendationSet.from_document(json.loads(json.dumps(entry.to_document())))

    assert restored == entry
    assert restored.recommendations[0].book.genres == ("Fantasy",)


def test_redis_interaction_restores_with_remaining_ttl(clock, recs):
    client = MagicMock()
    cache = RedisRecommendationCache(client, clock=clock)
    cache.put("u1", Strategy.PERSONALIZED, recs)
    client.get.return_value = client.setex.call_args.args[2]
    clock.advance(timedelta(days=2))

    cache.record_interaction("u1", Strategy.PERSONALIZED, "b1", Interaction.CLICK)

    key, ttl_seconds, payload = client.setex.call_args.args
    assert ttl_seconds == 5 * 24 * 60 * 60
    document = json.loads(payload)
    assert document["books"][0]["clicked"] is True
    assert document["books"][1]["clicked"] is False

    client.get.return_value = payload
    restored = cache.get("u1", Strategy.PERSONALIZED)
    assert restored.interaction_for("b1").clicked is True

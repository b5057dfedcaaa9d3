"""API routes for recommendations."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bookrec.constants import DEFAULT_LIMIT, SIMILAR_BOOKS_LIMIT
from bookrec.core.database import get_db
from bookrec.core.redis_client import get_recommendation_cache
from bookrec.errors import NotFoundError, StoreTimeoutError, StoreUnavailableError
from bookrec.models.schemas import (
    RecommendationOut,
    RecommendationResult,
    RecommendationsResponse,
    Strategy,
)
from bookrec.services.catalog_store import SqlCatalogStore
from bookrec.services.quiz import QuizRanker, get_quiz_ranker
from bookrec.services.recommendation_cache import RecommendationCache
from bookrec.services.recommendation_engine import RecommendationEngine

logger = logging.getLogger(__name__)
router = APIRouter()


def get_engine(
    db: Session = Depends(get_db),
    cache: RecommendationCache = Depends(get_recommendation_cache),
    quiz_ranker: Optional[QuizRanker] = Depends(get_quiz_ranker),
) -> RecommendationEngine:
    """Dependency building a request-scoped engine over the DB session."""
    return RecommendationEngine(SqlCatalogStore(db), cache, quiz_ranker=quiz_ranker)


def _parse_answers(answers: Optional[str]) -> Optional[dict]:
    if not answers:
        return None
    try:
        parsed = json.loads(answers)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Quiz answers must be JSON")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="Quiz answers must be a JSON object")
    return parsed


def _to_response(requested: Strategy, result: RecommendationResult) -> RecommendationsResponse:
    return RecommendationsResponse(
        requested_strategy=requested,
        strategy=result.strategy,
        source=result.source,
        generated_at=result.generated_at,
        recommendations=[RecommendationOut.from_scored(rec) for rec in result.recommendations],
    )


@router.get(
    "/users/{user_id}/recommendations/{strategy}",
    response_model=RecommendationsResponse,
)
def get_recommendations(
    user_id: str,
    strategy: Strategy,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=50),
    answers: Optional[str] = Query(None, description="Quiz answers as a JSON object"),
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationsResponse:
    """Return recommendations for a user under a strategy.

    A catalog timeout degrades to the trending strategy for the same user;
    if that fails too, the request fails with 503.
    """
    quiz_answers = _parse_answers(answers)

    try:
        result = engine.recommend(user_id, strategy, limit=limit, quiz_answers=quiz_answers)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreTimeoutError:
        logger.warning("Catalog timeout for %s/%s; degrading to trending", user_id, strategy.value)
        try:
            result = engine.recommend(user_id, Strategy.TRENDING, limit=limit)
        except StoreUnavailableError as e:
            raise HTTPException(status_code=503, detail=f"Recommendations unavailable: {e}")
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Recommendations unavailable: {e}")

    return _to_response(strategy, result)


@router.get("/books/{book_id}/similar", response_model=RecommendationsResponse)
def get_similar_books(
    book_id: str,
    limit: int = Query(SIMILAR_BOOKS_LIMIT, ge=1, le=50),
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationsResponse:
    """Return "because you liked" recommendations for a book."""
    try:
        recommendations = engine.similar_to_book(book_id, limit=limit)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Recommendations unavailable: {e}")

    return RecommendationsResponse(
        source="similar",
        recommendations=[RecommendationOut.from_scored(rec) for rec in recommendations],
    )


@router.delete("/users/{user_id}/recommendations")
def invalidate_recommendations(
    user_id: str,
    strategy: Optional[Strategy] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> dict:
    """Drop cached recommendation sets of a user."""
    removed = engine.invalidate(user_id, strategy)
    return {"user_id": user_id, "removed": removed}

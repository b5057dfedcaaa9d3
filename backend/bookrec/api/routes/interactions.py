"""API routes for tracking interactions with served recommendations."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from bookrec.api.routes.recommendations import get_engine
from bookrec.errors import CacheWriteError, NotFoundError
from bookrec.models.schemas import InteractionResponse, InteractionSubmit, Strategy
from bookrec.services.recommendation_engine import RecommendationEngine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/users/{user_id}/recommendations/{strategy}/interactions",
    response_model=InteractionResponse,
)
def record_interaction(
    user_id: str,
    strategy: Strategy,
    submission: InteractionSubmit,
    engine: RecommendationEngine = Depends(get_engine),
) -> InteractionResponse:
    """
    Record a click, purchase or rating on a book from a cached set.

    Args:
        user_id: Owner of the recommendation set
        strategy: Strategy the set was cached under
        submission: Book and interaction (rating 1-5 required for "rating")

    Returns:
        The book's interaction state after the update
    """
    try:
        entry = engine.record_interaction(
            user_id,
            strategy,
            submission.book_id,
            submission.interaction,
            rating=submission.rating,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CacheWriteError as e:
        logger.error("Could not record interaction for %s: %s", user_id, e)
        raise HTTPException(status_code=503, detail="Interaction could not be saved")

    state = entry.interaction_for(submission.book_id)
    return InteractionResponse(
        success=True,
        book_id=submission.book_id,
        clicked=state.clicked,
        purchased=state.purchased,
        rating=state.rating,
    )

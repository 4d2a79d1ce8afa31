"""API routes for recommendations."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from folio.api.dependencies import get_current_user_id
from folio.core.database import get_db
from folio.models.schemas import CacheClearedResponse, RecommendationsResponse
from folio.services.profile_builder import UserNotFoundError
from folio.services.recommendation_engine import (
    RecommendationEngine,
    get_recommendation_engine,
)

router = APIRouter()

EMPTY_MESSAGE = (
    "No recommendations available. Try reviewing some books or adding books "
    "to your favorites first!"
)


@router.get("", response_model=RecommendationsResponse)
def get_recommendations(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> RecommendationsResponse:
    """Return personalized book recommendations for the caller.

    Served from the per-user cache when fresh; otherwise computed from the
    caller's reviews and favorites, degrading to genre-based or popular
    books when AI suggestions are unavailable.

    Args:
        user_id: Caller identity
        db: Database session
        engine: Recommendation engine

    Returns:
        Up to 5 recommendations with a short status message
    """
    try:
        recommendations = engine.get_recommendations(db, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")

    if recommendations:
        message = f"Found {len(recommendations)} personalized recommendations"
    else:
        message = EMPTY_MESSAGE

    return RecommendationsResponse(
        user_id=user_id,
        recommendations=recommendations,
        message=message,
    )


@router.delete("/cache", response_model=CacheClearedResponse)
def clear_recommendation_cache(
    user_id: str = Depends(get_current_user_id),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> CacheClearedResponse:
    """Drop the caller's cached recommendations so the next request recomputes them."""
    engine.clear_cache(user_id)
    return CacheClearedResponse(
        success=True,
        message="Recommendation cache cleared successfully",
    )

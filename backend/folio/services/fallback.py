"""Database-only recommendation strategies used when the AI path cannot answer."""

import logging
from collections.abc import Collection

from langfuse import observe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from folio.constants import (
    GENRE_FALLBACK_CONFIDENCE,
    MAX_RECOMMENDATIONS,
    POPULAR_FALLBACK_CONFIDENCE,
)
from folio.models.schemas import CatalogEntry, RecommendationItem
from folio.services import book_service

logger = logging.getLogger(__name__)

POPULAR_REASON = "Popular book with high ratings from our community"


@observe()
def genre_based_recommendations(
    db: Session,
    favorite_genres: list[str],
    exclude_ids: Collection[str] | None = None,
    limit: int = MAX_RECOMMENDATIONS,
) -> list[RecommendationItem]:
    """Top-ranked catalog books sharing a genre with the user's favorites.

    Never raises on catalog errors; returns an empty list instead.

    Args:
        db: Database session
        favorite_genres: The profile's favorite genres, heaviest first
        exclude_ids: Books the user already reviewed or favorited
        limit: Maximum number of results

    Returns:
        Recommendations with fixed confidence GENRE_FALLBACK_CONFIDENCE
    """
    if not favorite_genres:
        return []

    try:
        books = book_service.get_books_by_genres(
            db, favorite_genres, exclude_ids=exclude_ids, limit=limit
        )
    except SQLAlchemyError:
        logger.exception("Genre-based recommendation query failed")
        return []

    recommendations = []
    for book in books:
        entry = CatalogEntry.model_validate(book)
        matched = [g for g in favorite_genres if g in entry.genres] or favorite_genres
        recommendations.append(
            RecommendationItem(
                book=entry,
                reason=f"Recommended based on your interest in {', '.join(matched)}",
                confidence=GENRE_FALLBACK_CONFIDENCE,
            )
        )

    logger.info(f"Genre-based fallback produced {len(recommendations)} recommendations")
    return recommendations


@observe()
def popular_recommendations(
    db: Session,
    exclude_ids: Collection[str] | None = None,
    limit: int = MAX_RECOMMENDATIONS,
) -> list[RecommendationItem]:
    """Top-ranked reviewed books, the last-resort strategy.

    Never raises on catalog errors; returns an empty list instead.

    Args:
        db: Database session
        exclude_ids: Optional books to leave out
        limit: Maximum number of results

    Returns:
        Recommendations with fixed confidence POPULAR_FALLBACK_CONFIDENCE
    """
    try:
        books = book_service.get_popular_books(db, exclude_ids=exclude_ids, limit=limit)
    except SQLAlchemyError:
        logger.exception("Popular books query failed")
        return []

    recommendations = [
        RecommendationItem(
            book=CatalogEntry.model_validate(book),
            reason=POPULAR_REASON,
            confidence=POPULAR_FALLBACK_CONFIDENCE,
        )
        for book in books
    ]
    logger.info(f"Popularity fallback produced {len(recommendations)} recommendations")
    return recommendations

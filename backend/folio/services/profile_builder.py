"""Builds a user's taste profile from their reviews and favorites."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from langfuse import observe
from sqlalchemy.orm import Session

from folio.constants import FAVORITE_GENRE_WEIGHT, TOP_GENRES_LIMIT
from folio.models.database import Book, Review, UserFavorite
from folio.models.schemas import CatalogEntry
from folio.services import review_service, user_service

logger = logging.getLogger(__name__)


class UserNotFoundError(ValueError):
    """The user identity does not resolve to an account."""

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


@dataclass
class ReviewedBook:
    book_id: str
    book: CatalogEntry | None
    rating: int
    content: str
    created_at: datetime | None


@dataclass
class FavoritedBook:
    book_id: str
    book: CatalogEntry | None
    created_at: datetime | None


@dataclass
class UserProfile:
    """Taste summary computed fresh for every request.

    `reviews` and `favorites` are ordered most recent first.
    """

    user_id: str
    reviews: list[ReviewedBook] = field(default_factory=list)
    favorites: list[FavoritedBook] = field(default_factory=list)
    favorite_genres: list[str] = field(default_factory=list)
    average_rating_given: float = 0.0

    @property
    def has_history(self) -> bool:
        return bool(self.reviews or self.favorites)

    @property
    def excluded_book_ids(self) -> set[str]:
        """IDs of every book the user already reviewed or favorited."""
        return {r.book_id for r in self.reviews} | {f.book_id for f in self.favorites}


def compute_favorite_genres(
    reviews: list[ReviewedBook],
    favorites: list[FavoritedBook],
    limit: int = TOP_GENRES_LIMIT,
) -> list[str]:
    """Rank genre tags by accumulated preference weight.

    Each reviewed book adds its rating to every one of its genre tags; each
    favorited book adds FAVORITE_GENRE_WEIGHT. Ties keep first-seen order
    (reviews are accumulated before favorites).

    Args:
        reviews: Reviewed books, most recent first
        favorites: Favorited books, most recent first
        limit: Number of genres to keep

    Returns:
        Up to `limit` genre tags, heaviest first
    """
    weights: dict[str, float] = {}

    for review in reviews:
        if review.book is None:
            continue
        for genre in review.book.genres:
            weights[genre] = weights.get(genre, 0.0) + review.rating

    for favorite in favorites:
        if favorite.book is None:
            continue
        for genre in favorite.book.genres:
            weights[genre] = weights.get(genre, 0.0) + FAVORITE_GENRE_WEIGHT

    # sorted() is stable and dicts keep insertion order
    ranked = sorted(weights.items(), key=lambda item: item[1], reverse=True)
    return [genre for genre, _ in ranked[:limit]]


def compute_average_rating(reviews: list[ReviewedBook]) -> float:
    """Arithmetic mean of the review ratings, 0 when there are none."""
    if not reviews:
        return 0.0
    return sum(r.rating for r in reviews) / len(reviews)


@observe()
def build_profile(db: Session, user_id: str) -> UserProfile:
    """Load a user's history and derive their taste profile.

    Args:
        db: Database session
        user_id: User identifier from the session layer

    Returns:
        UserProfile; check `has_history` before asking for AI suggestions

    Raises:
        UserNotFoundError: If the user does not exist
    """
    if user_service.get_user_by_id(db, user_id) is None:
        raise UserNotFoundError(user_id)

    # Independent reads; order does not matter
    reviews = [_to_reviewed_book(r) for r in review_service.get_reviews_by_user(db, user_id)]
    favorites = [
        _to_favorited_book(f) for f in review_service.get_favorites_by_user(db, user_id)
    ]

    logger.info(
        f"Profile for user {user_id}: {len(reviews)} reviews, {len(favorites)} favorites"
    )

    return UserProfile(
        user_id=user_id,
        reviews=reviews,
        favorites=favorites,
        favorite_genres=compute_favorite_genres(reviews, favorites),
        average_rating_given=compute_average_rating(reviews),
    )


def _to_catalog_entry(book: Book | None) -> CatalogEntry | None:
    return CatalogEntry.model_validate(book) if book is not None else None


def _to_reviewed_book(review: Review) -> ReviewedBook:
    return ReviewedBook(
        book_id=review.book_id,
        book=_to_catalog_entry(review.book),
        rating=review.rating,
        content=review.content or "",
        created_at=review.created_at,
    )


def _to_favorited_book(favorite: UserFavorite) -> FavoritedBook:
    return FavoritedBook(
        book_id=favorite.book_id,
        book=_to_catalog_entry(favorite.book),
        created_at=favorite.created_at,
    )

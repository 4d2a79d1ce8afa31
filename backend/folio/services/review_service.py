"""Read access to a user's reviews and favorites."""

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from folio.models.database import Review, UserFavorite


def get_reviews_by_user(db: Session, user_id: str) -> list[Review]:
    """Retrieve a user's reviews with their books, most recent first."""
    stmt = (
        select(Review)
        .where(Review.user_id == user_id)
        .options(selectinload(Review.book))
        .order_by(Review.created_at.desc())
    )
    return list(db.scalars(stmt).all())


def get_favorites_by_user(db: Session, user_id: str) -> list[UserFavorite]:
    """Retrieve a user's favorites with their books, most recent first."""
    stmt = (
        select(UserFavorite)
        .where(UserFavorite.user_id == user_id)
        .options(selectinload(UserFavorite.book))
        .order_by(UserFavorite.created_at.desc())
    )
    return list(db.scalars(stmt).all())

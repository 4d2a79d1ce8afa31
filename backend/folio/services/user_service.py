"""User lookups."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from folio.models.database import User


def get_user_by_id(db: Session, user_id: str) -> User | None:
    """Retrieve a user by ID, or None if it does not exist."""
    stmt = select(User).where(User.id == user_id)
    return db.scalars(stmt).first()

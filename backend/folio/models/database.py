"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import (
    DECIMAL,
    SmallInteger,
    TIMESTAMP,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """Platform account. Only the identity is read by the recommendation engine."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}')>"


class Book(Base):
    """Catalog entry.

    `average_rating` and `review_count` are maintained by the rating
    aggregation job and are read-only here.
    """

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    author: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    genres: Mapped[List[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    published_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_rating: Mapped[Decimal | None] = mapped_column(DECIMAL(3, 2), nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Book(id='{self.id}', title='{self.title}')>"


class Review(Base):
    """A user's rating (1-5) and optional text for one book."""

    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_reviews_user_book"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    book_id: Mapped[str] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=func.now()
    )

    book: Mapped[Book] = relationship()

    def __repr__(self) -> str:
        return f"<Review(id='{self.id}', book_id='{self.book_id}', rating={self.rating})>"


class UserFavorite(Base):
    """A book the user marked as favorite."""

    __tablename__ = "user_favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_user_favorites_user_book"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    book_id: Mapped[str] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=func.now()
    )

    book: Mapped[Book] = relationship()

    def __repr__(self) -> str:
        return f"<UserFavorite(id='{self.id}', book_id='{self.book_id}')>"

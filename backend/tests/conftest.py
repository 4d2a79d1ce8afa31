"""Shared fixtures for Folio tests."""

import threading

import pytest

from folio.models.database import Book
from folio.models.schemas import CatalogEntry


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_book():
    """Factory for unsaved Book rows."""

    def _make_book(
        book_id: str,
        title: str | None = None,
        author: str = "Some Author",
        genres: list[str] | None = None,
        average_rating: float = 4.0,
        review_count: int = 10,
    ) -> Book:
        return Book(
            id=book_id,
            title=title or f"Book {book_id}",
            author=author,
            genres=genres or [],
            average_rating=average_rating,
            review_count=review_count,
        )

    return _make_book


@pytest.fixture
def make_entry(make_book):
    """Factory for CatalogEntry snapshots."""

    def _make_entry(book_id: str, **kwargs) -> CatalogEntry:
        return CatalogEntry.model_validate(make_book(book_id, **kwargs))

    return _make_entry

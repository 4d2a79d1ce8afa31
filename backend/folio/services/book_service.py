"""Catalog queries used by the recommendation engine."""

from collections.abc import Collection, Iterable

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from folio.constants import MAX_RECOMMENDATIONS
from folio.models.database import Book

# Highest rated first, then most reviewed
CATALOG_RANKING = (
    Book.average_rating.desc().nulls_last(),
    Book.review_count.desc(),
    Book.id,
)


def find_title_candidates(
    db: Session,
    suggestions: Iterable[tuple[str, str]],
    exclude_ids: Collection[str] | None = None,
    per_rule_limit: int = MAX_RECOMMENDATIONS,
) -> list[Book]:
    """Retrieve the books a set of (title, author) suggestions could match.

    For every suggestion, at most `per_rule_limit` top-ranked books are taken
    for each matching rule: the title contains the suggested title, or the
    title contains its first word and the author contains the suggested
    author. Resolution matches fewer than `per_rule_limit` books in total, so
    the best unused match of every suggestion is always in the result.

    Args:
        db: Database session
        suggestions: (title, author) pairs as returned by the model
        exclude_ids: Optional list of book IDs to leave out
        per_rule_limit: Books kept per suggestion and rule

    Returns:
        Candidate books in catalog ranking order
    """
    candidate_ids: set[str] = set()

    for title, author in suggestions:
        title = title.strip()
        if not title:
            continue

        conditions = [Book.title.icontains(title, autoescape=True)]
        author = author.strip()
        if author:
            conditions.append(
                and_(
                    Book.title.icontains(title.split()[0], autoescape=True),
                    Book.author.icontains(author, autoescape=True),
                )
            )

        for condition in conditions:
            stmt = (
                select(Book.id)
                .where(condition)
                .order_by(*CATALOG_RANKING)
                .limit(per_rule_limit)
            )
            if exclude_ids:
                stmt = stmt.where(Book.id.notin_(exclude_ids))
            candidate_ids.update(db.scalars(stmt).all())

    if not candidate_ids:
        return []

    stmt = select(Book).where(Book.id.in_(sorted(candidate_ids))).order_by(*CATALOG_RANKING)
    return list(db.scalars(stmt).all())


def get_books_by_genres(
    db: Session,
    genres: list[str],
    exclude_ids: Collection[str] | None = None,
    limit: int = 5,
) -> list[Book]:
    """Retrieve top-ranked books tagged with at least one of the genres.

    Args:
        db: Database session
        genres: Genre tags to match (any of)
        exclude_ids: Optional list of book IDs to leave out
        limit: Maximum number of results

    Returns:
        Books ordered by average rating, then review count (both descending)
    """
    if not genres:
        return []

    stmt = (
        select(Book)
        .where(Book.genres.overlap(genres))
        .order_by(*CATALOG_RANKING)
        .limit(limit)
    )
    if exclude_ids:
        stmt = stmt.where(Book.id.notin_(exclude_ids))

    return list(db.scalars(stmt).all())


def get_popular_books(
    db: Session,
    exclude_ids: Collection[str] | None = None,
    limit: int = 5,
) -> list[Book]:
    """Retrieve top-ranked books that have at least one review.

    Args:
        db: Database session
        exclude_ids: Optional list of book IDs to leave out
        limit: Maximum number of results

    Returns:
        Books ordered by average rating, then review count (both descending)
    """
    stmt = (
        select(Book)
        .where(Book.review_count > 0)
        .order_by(*CATALOG_RANKING)
        .limit(limit)
    )
    if exclude_ids:
        stmt = stmt.where(Book.id.notin_(exclude_ids))

    return list(db.scalars(stmt).all())

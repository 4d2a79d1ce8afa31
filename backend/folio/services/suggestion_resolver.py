"""Turns completion output into catalog recommendations."""

import json
import logging
import re
from collections.abc import Collection, Sequence

from pydantic import ValidationError

from folio.constants import MAX_RECOMMENDATIONS
from folio.models.schemas import CatalogEntry, RecommendationItem, Suggestion

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class SuggestionParseError(ValueError):
    """The completion output is not the expected JSON suggestion list."""


def parse_suggestions(raw: str) -> list[Suggestion]:
    """Parse the completion text into suggestions.

    Accepts a JSON array of {title, author, reason, confidence} objects, or an
    object wrapping that array under "recommendations". A surrounding
    Markdown code fence is ignored.

    Args:
        raw: Completion text

    Returns:
        Suggestions in model order

    Raises:
        SuggestionParseError: If the text is not JSON or does not match the schema
    """
    text = raw.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise SuggestionParseError(f"Failed to parse completion response: {e}") from e

    if isinstance(payload, dict) and "recommendations" in payload:
        payload = payload["recommendations"]

    if not isinstance(payload, list):
        raise SuggestionParseError(
            f"Expected a JSON array of suggestions, got {type(payload).__name__}"
        )

    try:
        return [Suggestion.model_validate(item) for item in payload]
    except ValidationError as e:
        raise SuggestionParseError(f"Invalid suggestion structure: {e}") from e


def match_suggestion(
    suggestion: Suggestion,
    catalog: Sequence[CatalogEntry],
    excluded_ids: Collection[str],
) -> CatalogEntry | None:
    """Find the catalog entry a suggestion refers to.

    Tried in order, case-insensitively, over entries not in `excluded_ids`:
    1. the suggested title is a substring of the catalog title;
    2. the first word of the suggested title is a substring of the catalog
       title and the suggested author a substring of the catalog author.
    The first entry (in catalog order) satisfying a rule wins.

    Args:
        suggestion: Parsed suggestion
        catalog: Catalog snapshot to search
        excluded_ids: Books the user already reviewed or favorited

    Returns:
        The matching entry, or None
    """
    title = suggestion.title.strip().lower()
    if not title:
        return None

    available = [entry for entry in catalog if entry.id not in excluded_ids]

    for entry in available:
        if title in entry.title.lower():
            return entry

    author = suggestion.author.strip().lower()
    if not author:
        return None

    first_word = title.split()[0]
    for entry in available:
        if first_word in entry.title.lower() and author in entry.author.lower():
            return entry

    return None


def resolve_suggestions(
    suggestions: Sequence[Suggestion],
    catalog: Sequence[CatalogEntry],
    excluded_ids: Collection[str],
    limit: int = MAX_RECOMMENDATIONS,
) -> list[RecommendationItem]:
    """Match suggestions against the catalog, keeping model order.

    Unmatched suggestions (titles the catalog does not carry) are dropped.
    A book matched by an earlier suggestion is not matched again.
    """
    recommendations: list[RecommendationItem] = []
    taken: set[str] = set(excluded_ids)

    for suggestion in suggestions:
        if len(recommendations) >= limit:
            break

        entry = match_suggestion(suggestion, catalog, taken)
        if entry is None:
            logger.debug(f"No catalog match for suggestion '{suggestion.title}'")
            continue

        taken.add(entry.id)
        recommendations.append(
            RecommendationItem(
                book=entry,
                reason=suggestion.reason,
                confidence=suggestion.confidence,
            )
        )

    logger.info(f"Resolved {len(recommendations)} of {len(suggestions)} suggestions")
    return recommendations


def merge_recommendations(
    primary: Sequence[RecommendationItem],
    supplement: Sequence[RecommendationItem],
    limit: int = MAX_RECOMMENDATIONS,
) -> list[RecommendationItem]:
    """Append supplement items after the primary ones, skipping duplicate books."""
    merged: list[RecommendationItem] = []
    seen: set[str] = set()

    for rec in [*primary, *supplement]:
        if len(merged) >= limit:
            break
        if rec.book.id in seen:
            continue
        seen.add(rec.book.id)
        merged.append(rec)

    return merged

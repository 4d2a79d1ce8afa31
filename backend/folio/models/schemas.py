"""Pydantic schemas for request/response validation."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from folio.constants import DEFAULT_SUGGESTION_CONFIDENCE


# ============================================================================
# Catalog Schemas
# ============================================================================


class CatalogEntry(BaseModel):
    """Read-only snapshot of a catalog book."""

    id: str
    title: str
    author: str
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    published_year: Optional[int] = None
    average_rating: Optional[float] = None
    review_count: int = 0

    model_config = {"from_attributes": True}

    # Column defaults are only applied on insert, so unsaved rows carry None
    @field_validator("genres", mode="before")
    @classmethod
    def _genres_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("review_count", mode="before")
    @classmethod
    def _review_count_default(cls, value: Any) -> Any:
        return 0 if value is None else value


# ============================================================================
# Recommendation Schemas
# ============================================================================


class RecommendationItem(BaseModel):
    """A recommended catalog book with its explanation."""

    book: CatalogEntry
    reason: str = Field(..., description="Why this book is recommended")
    confidence: float = Field(..., ge=0, le=1, description="Quality signal (0.0-1.0)")


class RecommendationsResponse(BaseModel):
    """Response schema for recommendations endpoint."""

    user_id: str
    recommendations: List[RecommendationItem]
    message: str


class CacheClearedResponse(BaseModel):
    """Response schema after clearing a user's recommendation cache."""

    success: bool
    message: str


# ============================================================================
# Completion Payload Schemas (internal use)
# ============================================================================


class Suggestion(BaseModel):
    """One free-text suggestion returned by the completion service."""

    title: str = Field(..., min_length=1)
    author: str = ""
    reason: str = ""
    confidence: float = DEFAULT_SUGGESTION_CONFIDENCE

    @field_validator("author", "reason", mode="before")
    @classmethod
    def _blank_if_missing(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        """Fall back to the default for missing or non-numeric values, clamp to 0-1."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return DEFAULT_SUGGESTION_CONFIDENCE
        if value != value:  # NaN
            return DEFAULT_SUGGESTION_CONFIDENCE
        return min(max(float(value), 0.0), 1.0)

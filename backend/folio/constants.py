# =============================================================================
# RESULT SIZE CONFIGURATION
# =============================================================================

MAX_RECOMMENDATIONS = 5
"""Maximum number of recommendations returned for a user, whatever the strategy."""

MIN_AI_RECOMMENDATIONS = 3
"""
Minimum number of resolved AI suggestions before the list is considered complete.

Below this, genre-based results are appended (de-duplicated) until
MAX_RECOMMENDATIONS is reached.
"""


# =============================================================================
# TASTE PROFILE CONFIGURATION
# =============================================================================

TOP_GENRES_LIMIT = 5
"""Number of genre tags kept as the user's favorite genres."""

FAVORITE_GENRE_WEIGHT = 4.5
"""
Weight added to each genre tag of a favorited book.

Reviewed books contribute their rating (1-5) instead. A favorite counts as an
implicit "would rate highly".

Example:
    Reviewed Fantasy book rated 5 + favorited Fantasy book → Fantasy weight 9.5
"""

HIGH_RATING_THRESHOLD = 4
"""
Reviews rated at or above this threshold are listed as books the user loved.
"""

DISLIKE_THRESHOLD = 2
"""
Reviews rated at or below this threshold are listed as books the user disliked.
"""


# =============================================================================
# LLM CONTEXT CONFIGURATION
# =============================================================================

RECENT_REVIEWS_IN_PROMPT = 10
"""
Number of most recent reviews considered when building the prompt.

Only the high-rated and low-rated ones among them are shown.
"""

RECENT_FAVORITES_IN_PROMPT = 5
"""Number of most recent favorites listed in the prompt."""

REVIEW_EXCERPT_LENGTH = 100
"""Review text is cut to this many characters in the prompt."""

SUGGESTIONS_REQUESTED = 5
"""Number of suggestions the model is asked for."""

COMPLETION_MAX_TOKENS = 800
"""Output token cap for a completion request."""

COMPLETION_TEMPERATURE = 0.7
"""Sampling temperature for a completion request."""


# =============================================================================
# CONFIDENCE CONFIGURATION
# =============================================================================
# Confidence is a quality signal, not a probability. Always within 0.0-1.0.

DEFAULT_SUGGESTION_CONFIDENCE = 0.8
"""Confidence used when the model omits one or returns a non-numeric value."""

GENRE_FALLBACK_CONFIDENCE = 0.7
"""Fixed confidence of genre-based fallback recommendations."""

POPULAR_FALLBACK_CONFIDENCE = 0.6
"""Fixed confidence of popularity fallback recommendations."""


# =============================================================================
# VALIDATION
# =============================================================================

def validate_constants():
    """
    Validate that all constants are within acceptable ranges.

    Raises:
        ValueError: If any constant is out of range
    """
    if MAX_RECOMMENDATIONS < 1:
        raise ValueError(f"MAX_RECOMMENDATIONS must be >= 1, got {MAX_RECOMMENDATIONS}")

    if not 0 <= MIN_AI_RECOMMENDATIONS <= MAX_RECOMMENDATIONS:
        raise ValueError(
            f"MIN_AI_RECOMMENDATIONS must be 0-{MAX_RECOMMENDATIONS}, got {MIN_AI_RECOMMENDATIONS}"
        )

    if TOP_GENRES_LIMIT < 1:
        raise ValueError(f"TOP_GENRES_LIMIT must be >= 1, got {TOP_GENRES_LIMIT}")

    # Rating thresholds must be between 1 and 5
    if not 1 <= DISLIKE_THRESHOLD <= 5:
        raise ValueError(f"DISLIKE_THRESHOLD must be 1-5, got {DISLIKE_THRESHOLD}")

    if not 1 <= HIGH_RATING_THRESHOLD <= 5:
        raise ValueError(f"HIGH_RATING_THRESHOLD must be 1-5, got {HIGH_RATING_THRESHOLD}")

    for name, value in (
        ("DEFAULT_SUGGESTION_CONFIDENCE", DEFAULT_SUGGESTION_CONFIDENCE),
        ("GENRE_FALLBACK_CONFIDENCE", GENRE_FALLBACK_CONFIDENCE),
        ("POPULAR_FALLBACK_CONFIDENCE", POPULAR_FALLBACK_CONFIDENCE),
    ):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be 0.0-1.0, got {value}")


# Run validation on import
validate_constants()

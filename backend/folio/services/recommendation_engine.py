"""Personalized recommendation pipeline with AI suggestions and database fallbacks."""

import logging
import threading
import time
from functools import lru_cache
from typing import Callable

from langfuse import observe
from langfuse.openai import OpenAI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from folio.config import Settings, get_settings
from folio.constants import (
    DISLIKE_THRESHOLD,
    HIGH_RATING_THRESHOLD,
    MAX_RECOMMENDATIONS,
    MIN_AI_RECOMMENDATIONS,
    RECENT_FAVORITES_IN_PROMPT,
    RECENT_REVIEWS_IN_PROMPT,
    REVIEW_EXCERPT_LENGTH,
    SUGGESTIONS_REQUESTED,
)
from folio.core.completion_client import (
    CallThrottle,
    CompletionClient,
    CompletionError,
    RetryPolicy,
)
from folio.core.langfuse_client import langfuse
from folio.core.recommendation_cache import InMemoryRecommendationCache, RecommendationCache
from folio.models.schemas import CatalogEntry, RecommendationItem
from folio.services import book_service
from folio.services.fallback import genre_based_recommendations, popular_recommendations
from folio.services.profile_builder import (
    ReviewedBook,
    UserNotFoundError,
    UserProfile,
    build_profile,
)
from folio.services.suggestion_resolver import (
    SuggestionParseError,
    merge_recommendations,
    parse_suggestions,
    resolve_suggestions,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a knowledgeable book recommendation assistant. Provide thoughtful, "
    "personalized book recommendations based on user reading history. "
    "Keep responses concise and focused."
)


class RecommendationEngine:
    """Sequences cache, profile, completion, resolution and fallbacks.

    Only UserNotFoundError reaches the caller. Every other failure degrades
    to a weaker strategy, and every answer is cached.
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        cache: RecommendationCache,
        pipeline_timeout: float = 90.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._completion_client = completion_client
        self._cache = cache
        self._pipeline_timeout = pipeline_timeout
        self._clock = clock

    @property
    def cache(self) -> RecommendationCache:
        return self._cache

    @observe()
    def get_recommendations(self, db: Session, user_id: str) -> list[RecommendationItem]:
        """Return up to MAX_RECOMMENDATIONS recommendations for a user.

        Args:
            db: Database session
            user_id: Authenticated user identifier

        Returns:
            Recommendations, possibly empty

        Raises:
            UserNotFoundError: If the user does not exist
        """
        langfuse.update_current_trace(user_id=user_id, tags=["recommendations"])

        cached = self._cache.get(user_id)
        if cached is not None:
            logger.info(f"Returning {len(cached)} cached recommendations for user {user_id}")
            return cached

        deadline = self._clock() + self._pipeline_timeout

        try:
            profile = build_profile(db, user_id)
        except UserNotFoundError:
            raise
        except Exception:
            logger.exception(f"Failed to build profile for user {user_id}, using popular books")
            return self._store(user_id, popular_recommendations(db))

        if not profile.has_history:
            logger.info(f"User {user_id} has no reviews or favorites, using popular books")
            return self._store(user_id, popular_recommendations(db))

        try:
            recommendations = self._personalized_recommendations(db, profile, deadline)
        except Exception:
            logger.exception(f"Recommendation pipeline failed for user {user_id}, using popular books")
            recommendations = popular_recommendations(db, exclude_ids=profile.excluded_book_ids)

        return self._store(user_id, recommendations)

    def clear_cache(self, user_id: str) -> None:
        """Forget a user's cached recommendations (call after their history changes)."""
        self._cache.invalidate(user_id)
        logger.info(f"Cleared recommendation cache for user {user_id}")

    def clear_all_cache(self) -> None:
        """Forget every cached recommendation list."""
        self._cache.invalidate_all()
        logger.info("Cleared all cached recommendations")

    def _personalized_recommendations(
        self, db: Session, profile: UserProfile, deadline: float
    ) -> list[RecommendationItem]:
        excluded = profile.excluded_book_ids

        try:
            ai_recommendations = self._ai_recommendations(db, profile, deadline)
        except (CompletionError, SuggestionParseError, SQLAlchemyError) as e:
            logger.warning(f"AI recommendation failed, falling back to genre-based: {e}")
            return genre_based_recommendations(db, profile.favorite_genres, excluded)

        if len(ai_recommendations) >= MIN_AI_RECOMMENDATIONS:
            return ai_recommendations[:MAX_RECOMMENDATIONS]

        logger.info(
            f"Only {len(ai_recommendations)} AI recommendations resolved, "
            "supplementing with genre-based results"
        )
        supplement = genre_based_recommendations(
            db,
            profile.favorite_genres,
            excluded | {rec.book.id for rec in ai_recommendations},
        )
        return merge_recommendations(ai_recommendations, supplement)

    @observe()
    def _ai_recommendations(
        self, db: Session, profile: UserProfile, deadline: float
    ) -> list[RecommendationItem]:
        prompt = build_recommendation_prompt(profile)
        raw = self._completion_client.complete(SYSTEM_PROMPT, prompt, deadline=deadline)

        suggestions = parse_suggestions(raw)
        excluded = profile.excluded_book_ids
        catalog = [
            CatalogEntry.model_validate(book)
            for book in book_service.find_title_candidates(
                db, [(s.title, s.author) for s in suggestions], exclude_ids=excluded
            )
        ]
        return resolve_suggestions(suggestions, catalog, excluded)

    def _store(
        self, user_id: str, recommendations: list[RecommendationItem]
    ) -> list[RecommendationItem]:
        self._cache.put(user_id, recommendations)
        logger.info(f"Cached {len(recommendations)} recommendations for user {user_id}")
        return recommendations


def build_recommendation_prompt(profile: UserProfile) -> str:
    """Describe the user's taste as prose and ask for a JSON suggestion list.

    Args:
        profile: User taste profile

    Returns:
        User prompt string
    """
    recent_reviews = profile.reviews[:RECENT_REVIEWS_IN_PROMPT]
    high_rated = [r for r in recent_reviews if r.rating >= HIGH_RATING_THRESHOLD]
    low_rated = [r for r in recent_reviews if r.rating <= DISLIKE_THRESHOLD]
    recent_favorites = profile.favorites[:RECENT_FAVORITES_IN_PROMPT]

    prompt = (
        f"Based on a user's reading history and preferences, recommend "
        f"{SUGGESTIONS_REQUESTED} books they might enjoy. Here's their profile:\n\n"
    )
    prompt += f"Average Rating Given: {profile.average_rating_given:.1f}/5\n"
    prompt += f"Favorite Genres: {', '.join(profile.favorite_genres) or 'None yet'}\n\n"

    prompt += f"Recent High-Rated Books ({HIGH_RATING_THRESHOLD}-5 stars):\n"
    for review in high_rated:
        prompt += _format_review_line(review)
    if not high_rated:
        prompt += "- None\n"
    prompt += "\n"

    prompt += f"Recent Low-Rated Books (1-{DISLIKE_THRESHOLD} stars):\n"
    for review in low_rated:
        prompt += _format_review_line(review)
    if not low_rated:
        prompt += "- None\n"
    prompt += "\n"

    prompt += "Favorite Books (marked as favorites):\n"
    for favorite in recent_favorites:
        prompt += f"- {_describe_book(favorite.book)}\n"
    if not recent_favorites:
        prompt += "- None\n"
    prompt += "\n"

    prompt += f"""Return exactly {SUGGESTIONS_REQUESTED} recommendations as a JSON array, with no other text:
[
  {{"title": "Book Title", "author": "Author Name", "reason": "Brief explanation why this book matches their preferences", "confidence": 0.85}}
]

Focus on books that match their preferred genres and reading patterns. Consider both their review ratings and favorite books. Avoid books they've already reviewed or favorited."""

    return prompt


def _describe_book(book: CatalogEntry | None) -> str:
    if book is None:
        return "Unknown book"
    return f'"{book.title}" by {book.author}'


def _format_review_line(review: ReviewedBook) -> str:
    excerpt = review.content[:REVIEW_EXCERPT_LENGTH] if review.content else "No review text"
    return f"- {_describe_book(review.book)} ({review.rating}/5): {excerpt}\n"


def _build_cache(settings: Settings) -> RecommendationCache:
    if settings.recommendation_cache_backend == "redis":
        from folio.core.redis_client import RedisRecommendationCache, redis_client

        return RedisRecommendationCache(redis_client, ttl=settings.recommendation_cache_ttl)
    return InMemoryRecommendationCache(ttl=settings.recommendation_cache_ttl)


_engine_lock = threading.Lock()


def get_recommendation_engine() -> RecommendationEngine:
    """Process-wide engine; owns the shared throttle and cache.

    Concurrent first calls serialize on a lock and all receive the same instance.

    Usage in FastAPI endpoints:
        @router.get("")
        def list_recommendations(
            engine: RecommendationEngine = Depends(get_recommendation_engine)
        ):
            ...
    """
    with _engine_lock:
        return _build_recommendation_engine()


@lru_cache
def _build_recommendation_engine() -> RecommendationEngine:
    settings = get_settings()

    openai_client = None
    if settings.openai_api_key:
        # OpenAI client wrapped by Langfuse; retries are handled by CompletionClient
        openai_client = OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_request_timeout,
            max_retries=0,
        )
    else:
        logger.warning("OPENAI_API_KEY is not set; recommendations will use fallbacks only")

    completion_client = CompletionClient(
        openai_client=openai_client,
        throttle=CallThrottle(settings.completion_min_interval),
        model=settings.openai_model,
        retry_policy=RetryPolicy(
            max_attempts=settings.completion_max_attempts,
            rate_limit_cooldown=settings.completion_rate_limit_cooldown,
            backoff_step=settings.completion_backoff_step,
            retry_unauthorized=settings.completion_retry_unauthorized,
        ),
        request_timeout=settings.openai_request_timeout,
    )

    logger.info(f"Recommendation cache backend: {settings.recommendation_cache_backend}")
    return RecommendationEngine(
        completion_client=completion_client,
        cache=_build_cache(settings),
        pipeline_timeout=settings.recommendation_pipeline_timeout,
    )

"""End-to-end behaviour of the recommendation pipeline.

The completion client, profile builder and catalog queries are mocked.
"""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from folio.core.completion_client import (
    CallThrottle,
    CompletionClient,
    CompletionRateLimitError,
)
from folio.core.recommendation_cache import InMemoryRecommendationCache
from folio.models.database import Review
from folio.models.schemas import RecommendationItem
from folio.services.fallback import POPULAR_REASON
from folio.services.profile_builder import (
    FavoritedBook,
    ReviewedBook,
    UserNotFoundError,
    UserProfile,
)
from folio.services.recommendation_engine import (
    RecommendationEngine,
    _build_recommendation_engine,
    build_recommendation_prompt,
    get_recommendation_engine,
)

ENGINE = "folio.services.recommendation_engine"


def _profile(make_entry, reviews=(), favorites=(), genres=("Fantasy",)):
    return UserProfile(
        user_id="u1",
        reviews=[
            ReviewedBook(
                book_id=book_id,
                book=make_entry(book_id, title=title),
                rating=rating,
                content=content,
                created_at=None,
            )
            for book_id, title, rating, content in reviews
        ],
        favorites=list(favorites),
        favorite_genres=list(genres),
        average_rating_given=4.0,
    )


def _suggestions(*titles):
    return json.dumps(
        [{"title": t, "author": "Some Author", "reason": f"Because {t}", "confidence": 0.9} for t in titles]
    )


def _items(make_entry, *ids, reason="genre", confidence=0.7):
    return [
        RecommendationItem(book=make_entry(i), reason=reason, confidence=confidence) for i in ids
    ]


@pytest.fixture
def completion():
    return MagicMock()


@pytest.fixture
def engine(completion, clock):
    return RecommendationEngine(
        completion_client=completion,
        cache=InMemoryRecommendationCache(ttl=3600, clock=clock),
        clock=clock,
    )


@pytest.fixture
def history(make_entry):
    return _profile(make_entry, reviews=[("read", "Already Read", 5, "Loved it")])


@pytest.fixture
def pipeline(history):
    """Patch the profile builder, catalog snapshot and fallbacks around the engine."""
    with patch(f"{ENGINE}.build_profile", return_value=history) as build_profile, patch(
        "folio.services.book_service.find_title_candidates", return_value=[]
    ) as candidates, patch(f"{ENGINE}.genre_based_recommendations", return_value=[]) as genre, patch(
        f"{ENGINE}.popular_recommendations", return_value=[]
    ) as popular:
        yield MagicMock(
            build_profile=build_profile, candidates=candidates, genre=genre, popular=popular
        )


def test_no_history_returns_popular_without_completion(engine, completion, pipeline, make_entry):
    pipeline.build_profile.return_value = _profile(make_entry, genres=())
    popular = _items(make_entry, "p1", "p2", reason=POPULAR_REASON, confidence=0.6)
    pipeline.popular.return_value = popular

    result = engine.get_recommendations(MagicMock(), "u1")

    assert result == popular
    completion.complete.assert_not_called()
    pipeline.genre.assert_not_called()


def test_enough_ai_matches_are_returned_in_model_order(engine, completion, pipeline, make_book):
    titles = ["Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot"]
    completion.complete.return_value = _suggestions(*titles)
    pipeline.candidates.return_value = [make_book(t.lower(), title=t) for t in reversed(titles)]

    result = engine.get_recommendations(MagicMock(), "u1")

    assert [r.book.id for r in result] == ["alpha", "bravo", "charlie", "delta", "echo"]
    assert result[0].reason == "Because Alpha"
    assert result[0].confidence == 0.9
    pipeline.genre.assert_not_called()


def test_three_ai_matches_need_no_supplement(engine, completion, pipeline, make_book):
    completion.complete.return_value = _suggestions("Alpha", "Bravo", "Charlie", "Unknown")
    pipeline.candidates.return_value = [make_book(t, title=t) for t in ("Alpha", "Bravo", "Charlie")]

    result = engine.get_recommendations(MagicMock(), "u1")

    assert [r.book.id for r in result] == ["Alpha", "Bravo", "Charlie"]
    pipeline.genre.assert_not_called()


def test_few_ai_matches_are_supplemented_by_genre(
    engine, completion, pipeline, make_book, make_entry
):
    completion.complete.return_value = _suggestions("Alpha", "Nowhere")
    pipeline.candidates.return_value = [make_book("alpha", title="Alpha")]
    pipeline.genre.return_value = _items(make_entry, "g1", "alpha", "g2", "g3", "g4")

    result = engine.get_recommendations(MagicMock(), "u1")

    assert [r.book.id for r in result] == ["alpha", "g1", "g2", "g3", "g4"]
    assert result[0].reason == "Because Alpha"
    # Supplement excludes history and the AI picks
    _, genres, excluded = pipeline.genre.call_args.args
    assert genres == ["Fantasy"]
    assert excluded == {"read", "alpha"}


def test_history_is_never_recommended(engine, completion, pipeline):
    completion.complete.return_value = _suggestions("Already Read")
    pipeline.candidates.return_value = []

    result = engine.get_recommendations(MagicMock(), "u1")

    assert result == []
    _, queried = pipeline.candidates.call_args.args
    assert queried == [("Already Read", "Some Author")]
    assert pipeline.candidates.call_args.kwargs["exclude_ids"] == {"read"}


def test_malformed_completion_matches_genre_only_result(engine, completion, pipeline, make_entry):
    completion.complete.return_value = "I recommend Dune, it is great."
    genre = _items(make_entry, "g1", "g2")
    pipeline.genre.return_value = genre

    result = engine.get_recommendations(MagicMock(), "u1")

    assert result == genre
    pipeline.genre.assert_called_once_with(pipeline.genre.call_args.args[0], ["Fantasy"], {"read"})


def test_completion_failure_falls_back_to_genre(engine, completion, pipeline, make_entry):
    completion.complete.side_effect = CompletionRateLimitError("overloaded", attempts=3)
    genre = _items(make_entry, "g1")
    pipeline.genre.return_value = genre

    assert engine.get_recommendations(MagicMock(), "u1") == genre


def test_empty_fallback_result_is_returned_and_cached(engine, completion, pipeline):
    completion.complete.side_effect = CompletionRateLimitError("overloaded", attempts=3)

    assert engine.get_recommendations(MagicMock(), "u1") == []
    assert engine.cache.get("u1") == []


def test_results_are_cached(engine, completion, pipeline, make_book):
    completion.complete.return_value = _suggestions("Alpha", "Bravo", "Charlie")
    pipeline.candidates.return_value = [make_book(t, title=t) for t in ("Alpha", "Bravo", "Charlie")]
    db = MagicMock()

    first = engine.get_recommendations(db, "u1")
    second = engine.get_recommendations(db, "u1")

    assert first == second
    completion.complete.assert_called_once()
    pipeline.build_profile.assert_called_once()


def test_cache_expires_after_ttl(engine, completion, pipeline, clock):
    completion.complete.return_value = "[]"

    engine.get_recommendations(MagicMock(), "u1")
    clock.advance(3600)
    engine.get_recommendations(MagicMock(), "u1")

    assert completion.complete.call_count == 2


def test_clear_cache_forces_recompute(engine, completion, pipeline):
    completion.complete.return_value = "[]"

    engine.get_recommendations(MagicMock(), "u1")
    engine.clear_cache("u1")
    engine.get_recommendations(MagicMock(), "u1")

    assert completion.complete.call_count == 2


def test_clear_all_cache(engine, completion, pipeline):
    completion.complete.return_value = "[]"
    engine.get_recommendations(MagicMock(), "u1")
    engine.get_recommendations(MagicMock(), "u2")

    engine.clear_all_cache()

    assert engine.cache.get("u1") is None
    assert engine.cache.get("u2") is None


def test_unknown_user_propagates_and_is_not_cached(engine, completion, pipeline):
    pipeline.build_profile.side_effect = UserNotFoundError("ghost")

    with pytest.raises(UserNotFoundError):
        engine.get_recommendations(MagicMock(), "ghost")

    assert engine.cache.get("ghost") is None
    pipeline.popular.assert_not_called()


def test_profile_failure_falls_back_to_popular(engine, completion, pipeline, make_entry):
    pipeline.build_profile.side_effect = RuntimeError("db down")
    popular = _items(make_entry, "p1", reason=POPULAR_REASON, confidence=0.6)
    pipeline.popular.return_value = popular

    assert engine.get_recommendations(MagicMock(), "u1") == popular
    completion.complete.assert_not_called()


def test_unexpected_error_falls_back_to_popular_excluding_history(
    engine, completion, pipeline, make_entry
):
    completion.complete.side_effect = RuntimeError("unexpected")
    popular = _items(make_entry, "p1", reason=POPULAR_REASON, confidence=0.6)
    pipeline.popular.return_value = popular

    assert engine.get_recommendations(MagicMock(), "u1") == popular
    assert pipeline.popular.call_args.kwargs["exclude_ids"] == {"read"}


def test_completion_receives_pipeline_deadline(engine, completion, pipeline, clock):
    completion.complete.return_value = "[]"

    engine.get_recommendations(MagicMock(), "u1")

    assert completion.complete.call_args.kwargs["deadline"] == clock() + 90.0


def test_result_is_capped_unique_and_unread(engine, completion, pipeline, make_book, make_entry):
    completion.complete.return_value = _suggestions("Alpha", "Alpha", "Bravo")
    pipeline.candidates.return_value = [make_book("alpha", title="Alpha")]
    pipeline.genre.return_value = _items(make_entry, *[f"g{i}" for i in range(6)])

    result = engine.get_recommendations(MagicMock(), "u1")

    ids = [r.book.id for r in result]
    assert len(result) <= 5
    assert len(ids) == len(set(ids))
    assert "read" not in ids
    assert all(0 <= r.confidence <= 1 for r in result)


class TestPrompt:
    def test_prompt_describes_likes_and_dislikes(self, make_entry):
        profile = _profile(
            make_entry,
            reviews=[
                ("a", "The Hobbit", 5, "A cosy adventure " * 20),
                ("b", "Twilight", 1, ""),
                ("c", "Middling", 3, "Fine"),
            ],
            genres=("Fantasy", "Adventure"),
        )

        prompt = build_recommendation_prompt(profile)

        assert "Average Rating Given: 4.0/5" in prompt
        assert "Favorite Genres: Fantasy, Adventure" in prompt
        assert '"The Hobbit" by Some Author (5/5)' in prompt
        assert '"Twilight" by Some Author (1/5): No review text' in prompt
        assert "Middling" not in prompt
        assert ("A cosy adventure " * 20)[:101] not in prompt
        assert "JSON array" in prompt

    def test_prompt_lists_favorites(self, make_entry):
        favorite = FavoritedBook(book_id="f", book=make_entry("f", title="Piranesi"), created_at=None)
        profile = _profile(make_entry, favorites=[favorite])

        prompt = build_recommendation_prompt(profile)

        assert '- "Piranesi" by Some Author' in prompt


def test_reviewed_book_is_excluded_and_genre_fills_in(engine, completion, make_book, make_entry):
    """Loved a Fantasy book, disliked a Romance one; the model suggests the loved book again."""
    book_a = make_book("A", title="A", genres=["Fantasy"])
    book_b = make_book("B", title="B", genres=["Romance"])
    reviews = [
        Review(id="r1", user_id="u1", book_id="A", rating=5, content="Great", book=book_a),
        Review(id="r2", user_id="u1", book_id="B", rating=1, content="Meh", book=book_b),
    ]
    completion.complete.return_value = json.dumps(
        [{"title": "A", "author": "Some Author", "reason": "You loved it", "confidence": 0.9}]
    )
    genre = _items(make_entry, "g1", "g2")

    with patch("folio.services.user_service.get_user_by_id", return_value=MagicMock()), patch(
        "folio.services.review_service.get_reviews_by_user", return_value=reviews
    ), patch("folio.services.review_service.get_favorites_by_user", return_value=[]), patch(
        "folio.services.book_service.find_title_candidates", return_value=[book_a]
    ), patch(f"{ENGINE}.genre_based_recommendations", return_value=genre) as genre_fallback:
        result = engine.get_recommendations(MagicMock(), "u1")

    assert result == genre
    _, genres, excluded = genre_fallback.call_args.args
    assert genres == ["Fantasy", "Romance"]
    assert excluded == {"A", "B"}


def test_concurrent_first_requests_share_one_engine():
    built = []

    def slow_engine(**kwargs):
        time.sleep(0.05)
        instance = MagicMock()
        built.append(instance)
        return instance

    results = []
    start = threading.Barrier(4)

    def request():
        start.wait()
        results.append(get_recommendation_engine())

    _build_recommendation_engine.cache_clear()
    try:
        with patch(f"{ENGINE}.RecommendationEngine", side_effect=slow_engine):
            threads = [threading.Thread(target=request) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=5)
    finally:
        _build_recommendation_engine.cache_clear()

    assert len(built) == 1
    assert len(results) == 4
    assert all(result is built[0] for result in results)


def test_unexpected_completion_failure_uses_genre_fallback(pipeline, clock, make_entry):
    openai_client = MagicMock()
    openai_client.chat.completions.create.side_effect = RuntimeError("trace export failed")
    client = CompletionClient(
        openai_client=openai_client,
        throttle=CallThrottle(5.0, clock=clock, sleep=clock.sleep),
        model="gpt-4o-mini",
        clock=clock,
        sleep=clock.sleep,
    )
    engine = RecommendationEngine(
        completion_client=client,
        cache=InMemoryRecommendationCache(ttl=3600, clock=clock),
        clock=clock,
    )
    genre = _items(make_entry, "g1")
    pipeline.genre.return_value = genre

    assert engine.get_recommendations(MagicMock(), "u1") == genre
    assert openai_client.chat.completions.create.call_count == 3
    pipeline.popular.assert_not_called()

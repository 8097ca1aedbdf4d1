"""
Integration Tests for SrsService
================================

Test Coverage
-------------
- Vocabulary CRUD: add, duplicate detection, update, archive, search
- Review transitions persisted through the write path
- Due queue ordering and the local-day review forecast
- Aggregate statistics and the SRS level distribution

Testing Strategy
----------------
- Real SQLite database per test (``database`` fixture)
- FrozenClock drives every timestamp
- EventRecorder captures events published after commit
"""

import pytest

from progression_engine.modules.shared.exceptions import (
    DuplicateVocabularyError,
    InvalidQualityError,
    ItemNotFoundError,
    ValidationError,
)
from tests.conftest import START

pytestmark = [pytest.mark.integration, pytest.mark.database]

USER = 7


# ============================================================================
# VOCABULARY MANAGEMENT
# ============================================================================


class TestAddVocabulary:
    """Adding words to a user's list."""

    async def test_new_item_is_due_immediately(self, srs, recorder):
        # Arrange / Act
        item = await srs.add_vocabulary(
            USER, "  Hola ", "hello", "ES", tags=["Greeting", " basics ", ""]
        )

        # Assert
        assert item["word"] == "Hola"
        assert item["language"] == "es"
        assert item["tags"] == ["basics", "greeting"]
        assert item["srs_level"] == 0
        assert item["ease_factor"] == 2.5
        assert item["next_review"] == START.isoformat()

        due = await srs.due_for_review(USER)
        assert [d["id"] for d in due] == [item["id"]]
        assert recorder.payloads("vocabulary.added") == [
            {"user_id": USER, "item_id": item["id"], "word": "Hola", "language": "es"}
        ]

    async def test_duplicate_word_rejected(self, srs):
        await srs.add_vocabulary(USER, "la casa", "house", "es")

        with pytest.raises(DuplicateVocabularyError):
            await srs.add_vocabulary(USER, "La   Casa", "the house", "es")

    async def test_same_word_in_other_language_or_user_allowed(self, srs):
        await srs.add_vocabulary(USER, "taxi", "taxi", "es")

        other_language = await srs.add_vocabulary(USER, "taxi", "taxi", "fr")
        other_user = await srs.add_vocabulary(USER + 1, "taxi", "taxi", "es")

        assert other_language["id"] != other_user["id"]

    async def test_archived_word_can_be_added_again(self, srs):
        first = await srs.add_vocabulary(USER, "perro", "dog", "es")
        await srs.archive_vocabulary(first["id"])

        second = await srs.add_vocabulary(USER, "perro", "dog", "es")

        assert second["id"] != first["id"]

    @pytest.mark.parametrize("field", ["word", "translation", "language"])
    async def test_empty_fields_rejected(self, srs, field):
        values = {"word": "gato", "translation": "cat", "language": "es"}
        values[field] = "   "

        with pytest.raises(ValidationError):
            await srs.add_vocabulary(USER, **values)


class TestUpdateAndArchive:
    async def test_update_editable_fields(self, srs):
        item = await srs.add_vocabulary(USER, "gato", "cat", "es")

        updated = await srs.update_vocabulary(
            item["id"], notes="feline", tags=["Animals"], is_favorite=True
        )

        assert updated["notes"] == "feline"
        assert updated["tags"] == ["animals"]
        assert updated["is_favorite"] is True
        assert (await srs.get_vocabulary(item["id"]))["notes"] == "feline"

    async def test_srs_fields_not_editable(self, srs):
        item = await srs.add_vocabulary(USER, "gato", "cat", "es")

        with pytest.raises(ValidationError):
            await srs.update_vocabulary(item["id"], srs_level=9)

    async def test_archived_item_is_hidden(self, srs):
        item = await srs.add_vocabulary(USER, "gato", "cat", "es")

        archived = await srs.archive_vocabulary(item["id"])
        again = await srs.archive_vocabulary(item["id"])

        assert archived["is_archived"] is True
        assert again["is_archived"] is True
        assert await srs.due_for_review(USER) == []
        with pytest.raises(ItemNotFoundError):
            await srs.get_vocabulary(item["id"])
        with pytest.raises(ItemNotFoundError):
            await srs.update_vocabulary(item["id"], notes="x")

    async def test_archive_unknown_item(self, srs):
        with pytest.raises(ItemNotFoundError):
            await srs.archive_vocabulary(999)


class TestSearch:
    """Text, tag and attribute filters with pagination."""

    async def _seed(self, srs, clock):
        words = [
            ("hola", "hello", ["greeting"]),
            ("adiós", "goodbye", ["greeting"]),
            ("manzana", "apple", ["food"]),
            ("pan", "bread", ["food", "basics"]),
        ]
        for word, translation, tags in words:
            await srs.add_vocabulary(USER, word, translation, "es", tags=tags)
            clock.advance(minutes=1)
        await srs.add_vocabulary(USER, "pain", "bread", "fr", tags=["food"])

    async def test_query_matches_word_or_translation(self, srs, clock):
        await self._seed(srs, clock)

        result = await srs.search_vocabulary(USER, "BREAD")

        assert {item["word"] for item in result["items"]} == {"pan", "pain"}
        assert result["total"] == 2
        assert result["has_more"] is False

    async def test_like_wildcards_are_literal(self, srs, clock):
        await self._seed(srs, clock)

        result = await srs.search_vocabulary(USER, "%")

        assert result["total"] == 0

    async def test_tag_and_language_filters(self, srs, clock):
        await self._seed(srs, clock)

        result = await srs.search_vocabulary(USER, tags=["FOOD"], language="es")

        # Newest first
        assert [item["word"] for item in result["items"]] == ["pan", "manzana"]

    async def test_pagination(self, srs, clock):
        await self._seed(srs, clock)

        page = await srs.search_vocabulary(USER, language="es", limit=3, offset=0)
        rest = await srs.search_vocabulary(USER, language="es", limit=3, offset=3)

        assert len(page["items"]) == 3
        assert page["total"] == 4
        assert page["has_more"] is True
        assert [item["word"] for item in rest["items"]] == ["hola"]
        assert rest["has_more"] is False


# ============================================================================
# REVIEWS
# ============================================================================


class TestReview:
    """Review writes and scheduling."""

    async def test_one_six_fifteen_sequence(self, srs, clock, recorder):
        # Arrange
        item = await srs.add_vocabulary(USER, "hola", "hello", "es")

        # Act
        intervals = []
        for _ in range(3):
            result = await srs.review(item["id"], 4, response_time_ms=800)
            intervals.append(result.interval)
            clock.set(result.next_review)

        # Assert
        assert intervals == [1, 6, 15]
        stored = await srs.get_vocabulary(item["id"])
        assert stored["srs_level"] == 3
        assert stored["interval"] == 15
        assert stored["next_review"] == result.next_review.isoformat()
        assert result.next_review == clock.now()
        assert len(recorder.payloads("vocabulary.reviewed")) == 3

    async def test_failed_review_is_due_again_now(self, srs):
        item = await srs.add_vocabulary(USER, "hola", "hello", "es")
        await srs.review(item["id"], 5)

        result = await srs.review(item["id"], 1)

        assert result.new_srs_level == 0
        assert [d["id"] for d in await srs.due_for_review(USER)] == [item["id"]]

    async def test_invalid_quality_checked_before_lookup(self, srs):
        with pytest.raises(InvalidQualityError):
            await srs.review(12345, 7)

    async def test_unknown_or_archived_item(self, srs):
        item = await srs.add_vocabulary(USER, "hola", "hello", "es")
        await srs.archive_vocabulary(item["id"])

        with pytest.raises(ItemNotFoundError):
            await srs.review(item["id"], 4)
        with pytest.raises(ItemNotFoundError):
            await srs.review(999, 4)


class TestDueQueue:
    async def test_ordering_and_limit(self, srs, clock):
        first = await srs.add_vocabulary(USER, "uno", "one", "es")
        clock.advance(minutes=5)
        second = await srs.add_vocabulary(USER, "dos", "two", "es")
        clock.advance(minutes=5)
        third = await srs.add_vocabulary(USER, "tres", "three", "es")

        due = await srs.due_for_review(USER, limit=2)

        assert [d["id"] for d in due] == [first["id"], second["id"]]
        assert third["id"] not in [d["id"] for d in due]

    async def test_reviewed_item_returns_after_interval(self, srs, clock):
        item = await srs.add_vocabulary(USER, "uno", "one", "es")
        await srs.review(item["id"], 4)

        assert await srs.due_for_review(USER) == []

        clock.advance(days=1)
        assert [d["id"] for d in await srs.due_for_review(USER)] == [item["id"]]


class TestForecast:
    """Per-day due counts in the user's local calendar."""

    async def test_zero_days_is_empty(self, srs):
        assert await srs.review_forecast(USER, days=0) == []

    async def test_out_of_range_days_rejected(self, srs):
        with pytest.raises(ValidationError):
            await srs.review_forecast(USER, days=-1)

    @pytest.mark.parametrize("days", ["3", 2.5, None, True])
    async def test_non_integer_days_rejected(self, srs, days):
        with pytest.raises(ValidationError):
            await srs.review_forecast(USER, days=days)

    async def test_counts_per_local_day(self, srs, progression):
        # 12:00 UTC is 08:00 in New York on 2025-03-10
        await progression.ensure_progression(USER, timezone_name="America/New_York")
        new_item = await srs.add_vocabulary(USER, "uno", "one", "es")
        tomorrow = await srs.add_vocabulary(USER, "dos", "two", "es")
        next_week = await srs.add_vocabulary(USER, "tres", "three", "es")

        await srs.review(tomorrow["id"], 4)
        await srs.review(next_week["id"], 4)
        await srs.review(next_week["id"], 4)

        forecast = await srs.review_forecast(USER, days=7)

        assert [day["date"] for day in forecast] == [
            "2025-03-10",
            "2025-03-11",
            "2025-03-12",
            "2025-03-13",
            "2025-03-14",
            "2025-03-15",
            "2025-03-16",
        ]
        assert [day["count"] for day in forecast] == [1, 1, 0, 0, 0, 0, 1]
        assert new_item["next_review"] == START.isoformat()


class TestStatistics:
    async def test_review_stats(self, srs):
        mastered_soon = await srs.add_vocabulary(USER, "uno", "one", "es")
        learning = await srs.add_vocabulary(USER, "dos", "two", "es")
        await srs.add_vocabulary(USER, "tres", "three", "es")

        await srs.review(learning["id"], 5)
        await srs.review(mastered_soon["id"], 5)
        await srs.review(mastered_soon["id"], 1)

        stats = await srs.review_stats(USER)

        assert stats["total"] == 3
        assert stats["mastered"] == 0
        assert stats["learning"] == 1
        assert stats["new"] == 2
        assert stats["due_now"] == 2
        assert stats["total_reviews"] == 3
        assert stats["correct_reviews"] == 2
        assert stats["accuracy"] == 66.67

    async def test_stats_for_empty_user(self, srs):
        stats = await srs.review_stats(USER)

        assert stats["total"] == 0
        assert stats["accuracy"] == 0.0

    async def test_distribution_is_zero_filled(self, srs):
        item = await srs.add_vocabulary(USER, "uno", "one", "es")
        await srs.add_vocabulary(USER, "dos", "two", "es")
        await srs.review(item["id"], 4)

        distribution = await srs.srs_distribution(USER)

        assert list(distribution) == list(range(10))
        assert distribution[0] == 1
        assert distribution[1] == 1
        assert sum(distribution.values()) == 2

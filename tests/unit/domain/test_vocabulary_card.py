"""
Unit Tests for the VocabularyCard Domain Model
==============================================

Test Coverage
-------------
- Quality validation (rejected before any mutation)
- Pass/fail transitions of SRS level, interval and next review
- Ease factor floor and one-shot mastery
- Review history eviction
- Domain event emission

Testing Strategy
----------------
- Pure domain tests, no database
- AAA pattern (Arrange, Act, Assert)
"""

from datetime import datetime, timedelta, timezone

import pytest

from progression_engine.domain.models.vocabulary import VocabularyCard
from progression_engine.modules.shared.exceptions import InvalidQualityError
from tests.conftest import assert_domain_event_emitted, get_domain_event_payload

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_card(**overrides) -> VocabularyCard:
    fields = {"item_id": 1, "user_id": 7, "word": "hola", "language": "es"}
    fields.update(overrides)
    return VocabularyCard(**fields)


# ============================================================================
# VALIDATION
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestQualityValidation:
    """Invalid ratings leave the card untouched."""

    @pytest.mark.parametrize("quality", [-1, 6, 2.5, "4", None, True])
    def test_invalid_quality_rejected(self, quality):
        # Arrange
        card = make_card(srs_level=3, interval=15)

        # Act & Assert
        with pytest.raises(InvalidQualityError):
            card.review(quality, NOW)

        assert card.total_reviews == 0
        assert card.srs_level == 3
        assert card.get_pending_events() == []


# ============================================================================
# SCHEDULING
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestScheduling:
    """SM-2 level, interval and ease transitions."""

    def test_first_passing_review(self):
        card = make_card()

        result = card.review(4, NOW, response_time_ms=1200)

        assert result.was_correct
        assert result.new_srs_level == 1
        assert result.interval == 1
        assert result.next_review == NOW + timedelta(days=1)
        assert result.ease_factor == 2.5
        assert card.first_reviewed_at == NOW

    def test_one_six_fifteen_progression(self):
        """Three quality-4 reviews give intervals 1, 6 and round(6 * 2.5)."""
        card = make_card()

        intervals = [card.review(4, NOW).interval for _ in range(3)]

        assert intervals == [1, 6, 15]
        assert card.srs_level == 3

    def test_interval_grows_from_previous_ease_factor(self):
        # Ease 2.5 before the review, 2.36 after
        card = make_card(srs_level=2, interval=6)

        result = card.review(3, NOW)

        assert result.interval == 15
        assert result.ease_factor == 2.36

    def test_failed_review_resets(self):
        card = make_card(srs_level=5, interval=40, current_streak=4, longest_streak=4)

        result = card.review(2, NOW)

        assert not result.was_correct
        assert result.new_srs_level == 0
        assert result.interval == 0
        assert result.next_review == NOW
        assert card.current_streak == 0
        assert card.longest_streak == 4
        assert card.incorrect_reviews == 1

    def test_ease_factor_never_below_floor(self):
        card = make_card()

        for _ in range(10):
            card.review(0, NOW)

        assert card.ease_factor == 1.3

    def test_accuracy(self):
        card = make_card()
        for quality in (5, 5, 1):
            card.review(quality, NOW)

        assert card.accuracy == 66.67


# ============================================================================
# MASTERY & HISTORY
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestMastery:
    """Mastery happens once and sticks."""

    def test_reaching_level_nine_masters(self):
        card = make_card(srs_level=8, interval=100)

        result = card.review(5, NOW)

        assert result.is_mastered
        assert result.just_mastered
        assert card.mastered_at == NOW
        assert assert_domain_event_emitted(card, "vocabulary.mastered")

    def test_mastery_is_one_shot(self):
        card = make_card(srs_level=8, interval=100)
        card.review(5, NOW)
        card.clear_domain_events()

        later = NOW + timedelta(days=300)
        result = card.review(5, later)

        assert result.is_mastered
        assert not result.just_mastered
        assert card.srs_level == 9
        assert card.mastered_at == NOW
        assert not assert_domain_event_emitted(card, "vocabulary.mastered")

    def test_failing_after_mastery_keeps_flag(self):
        card = make_card(srs_level=9, interval=200, is_mastered=True, mastered_at=NOW)

        result = card.review(0, NOW + timedelta(days=1))

        assert result.new_srs_level == 0
        assert result.is_mastered


@pytest.mark.unit
@pytest.mark.domain
class TestHistoryAndEvents:
    def test_history_keeps_last_ten(self):
        card = make_card()

        for minute in range(12):
            card.review(4, NOW + timedelta(minutes=minute))

        assert len(card.review_history) == 10
        assert card.review_history[0].reviewed_at == NOW + timedelta(minutes=2)
        assert card.review_history[-1].reviewed_at == NOW + timedelta(minutes=11)

    def test_reviewed_event_payload(self):
        card = make_card()

        card.review(5, NOW)

        payload = get_domain_event_payload(card, "vocabulary.reviewed")
        assert payload["user_id"] == 7
        assert payload["item_id"] == 1
        assert payload["quality"] == 5
        assert payload["new_srs_level"] == 1

    def test_db_updates_serialize_history(self):
        card = make_card()
        card.review(4, NOW, response_time_ms=900)

        updates = card.to_db_updates()

        assert updates["review_history"] == [
            {
                "quality": 4,
                "response_time_ms": 900,
                "was_correct": True,
                "reviewed_at": NOW.isoformat(),
            }
        ]

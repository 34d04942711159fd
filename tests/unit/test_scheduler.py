"""
Unit tests for the card scheduler state machine.

Run: pytest tests/unit/test_scheduler.py -v
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from src.core.errors import ValidationError
from src.srs.deck_config import DeckConfig
from src.srs.models import Card, CardState, Rating
from src.srs.scheduler import CardScheduler


@pytest.fixture
def scheduler(deck_config):
    return CardScheduler(deck_config)


def grade_all(scheduler, card, ratings, make_event, start, step=timedelta(minutes=1)):
    """Grade a card through a list of ratings, returning every result."""
    results = []
    at = start
    for rating in ratings:
        result = scheduler.grade(card, make_event(card.id, rating, at=at))
        results.append(result)
        card = result.card
        at = at + step
    return results


# ============================================================================
# New and Learning
# ============================================================================


class TestLearning:
    """Tests for new and learning cards."""

    def test_good_good_graduates_with_defaults(self, scheduler, make_event, now):
        """Good, Good on steps [1, 10] graduates with 1 day and ease 2.5."""
        card = Card(id="c1", created_at=now)
        first, second = grade_all(scheduler, card, [Rating.GOOD, Rating.GOOD], make_event, now)

        assert first.card.state == CardState.LEARNING
        assert first.card.learning_step == 1
        assert first.card.interval == 10
        assert not first.transitions.graduated

        assert second.card.state == CardState.REVIEW
        assert second.card.interval == 1
        assert second.card.ease_factor == pytest.approx(2.5)
        assert second.transitions.graduated

    def test_first_grade_enters_learning(self, scheduler, make_event, now):
        """Again and Hard on a new card both leave it at learning step 0."""
        card = Card(id="c1", created_at=now)
        for rating in (Rating.AGAIN, Rating.HARD):
            result = scheduler.grade(card, make_event(card.id, rating))
            assert result.card.state == CardState.LEARNING
            assert result.card.learning_step == 0
            assert result.card.interval == 1
            assert result.card.next_due == now + timedelta(minutes=1)

    def test_again_resets_step(self, scheduler, make_event, now):
        """Again in learning returns to step 0."""
        card = Card(id="c1", state=CardState.LEARNING, learning_step=1, interval=10)
        result = scheduler.grade(card, make_event(card.id, Rating.AGAIN))
        assert result.card.learning_step == 0
        assert result.card.state == CardState.LEARNING

    def test_hard_repeats_step(self, scheduler, make_event):
        """Hard keeps the current step."""
        card = Card(id="c1", state=CardState.LEARNING, learning_step=1, interval=10)
        result = scheduler.grade(card, make_event(card.id, Rating.HARD))
        assert result.card.learning_step == 1
        assert result.card.interval == 10

    def test_easy_graduates_immediately(self, scheduler, make_event, now):
        """Easy skips the remaining steps and uses the easy interval."""
        card = Card(id="c1", created_at=now)
        result = scheduler.grade(card, make_event(card.id, Rating.EASY))
        assert result.card.state == CardState.REVIEW
        assert result.card.interval == 4
        assert result.transitions.graduated
        assert result.card.next_due == now + timedelta(days=4)

    def test_empty_steps_use_fallback(self, make_event):
        """An empty step list never fails."""
        config = DeckConfig(learning_steps=(), relearning_steps=())
        assert config.learning_steps == (1.0,)
        assert config.relearning_steps == (10.0,)

        scheduler = CardScheduler(config)
        card = Card(id="c1")
        result = scheduler.grade(card, make_event(card.id, Rating.GOOD))
        assert result.card.state == CardState.REVIEW

    def test_out_of_range_step_is_clamped(self, scheduler, make_event):
        """A corrupted learning_step is treated as the last valid step."""
        card = Card(id="c1", state=CardState.LEARNING, learning_step=7)
        result = scheduler.grade(card, make_event(card.id, Rating.HARD))
        assert result.card.learning_step == 1


# ============================================================================
# Review
# ============================================================================


class TestReview:
    """Tests for review-state cards."""

    def test_again_is_a_lapse(self, scheduler, review_card, make_event, now):
        """Again on interval 6 / ease 2.5 goes to relearning with reduced ease."""
        result = scheduler.grade(review_card, make_event(review_card.id, Rating.AGAIN))
        card = result.card

        assert card.state == CardState.RELEARNING
        assert card.lapse_count == 1
        assert card.learning_step == 0
        assert card.interval == 10  # first relearning step, minutes
        assert card.pre_lapse_interval == 6
        assert card.ease_factor == pytest.approx(2.3)
        assert card.next_due == now + timedelta(minutes=10)
        assert result.transitions.lapsed
        assert not result.transitions.became_leech

    def test_lapse_ease_never_below_min(self, scheduler, review_card, make_event):
        card = replace(review_card, ease_factor=1.35)
        result = scheduler.grade(card, make_event(card.id, Rating.AGAIN))
        assert result.card.ease_factor == pytest.approx(1.3)

    def test_hard_good_easy_intervals(self, scheduler, review_card, make_event):
        """Hard x1.2, Good x ease, Easy x ease x 1.3."""
        hard = scheduler.grade(review_card, make_event(review_card.id, Rating.HARD)).card
        good = scheduler.grade(review_card, make_event(review_card.id, Rating.GOOD)).card
        easy = scheduler.grade(review_card, make_event(review_card.id, Rating.EASY)).card

        assert hard.interval == 7  # round(7.2)
        assert hard.ease_factor == pytest.approx(2.35)
        assert good.interval == 15
        assert good.ease_factor == pytest.approx(2.5)
        assert easy.interval == 20  # round(19.5)
        assert easy.ease_factor == pytest.approx(2.65)

    def test_good_sequence_strictly_increases(self, scheduler, review_card, make_event, now):
        """Consecutive Good reviews keep growing the interval."""
        card = replace(review_card, interval=1, ease_factor=1.3)
        intervals = []
        at = now
        for _ in range(12):
            card = scheduler.grade(card, make_event(card.id, Rating.GOOD, at=at)).card
            intervals.append(card.interval)
            at = card.next_due
        assert all(b > a for a, b in zip(intervals, intervals[1:]))

    def test_interval_capped_at_maximum(self, make_event, review_card):
        scheduler = CardScheduler(DeckConfig(maximum_interval=30))
        card = replace(review_card, interval=25)
        result = scheduler.grade(card, make_event(card.id, Rating.EASY))
        assert result.card.interval == 30

    def test_ease_clamped_for_adversarial_card(self, scheduler, review_card, make_event):
        """Out-of-range stored ease is pulled back into bounds on any rating."""
        for ease in (-5.0, 0.0, 99.0):
            for rating in Rating:
                card = replace(review_card, ease_factor=ease)
                result = scheduler.grade(card, make_event(card.id, rating))
                assert 1.3 <= result.card.ease_factor <= 3.5

    def test_easy_ease_capped_at_max(self, scheduler, review_card, make_event):
        card = replace(review_card, ease_factor=3.45)
        result = scheduler.grade(card, make_event(card.id, Rating.EASY))
        assert result.card.ease_factor == pytest.approx(3.5)


# ============================================================================
# Leeches and relearning
# ============================================================================


class TestLeech:
    """Tests for lapse counting and leech marking."""

    def test_leech_flag_set_exactly_once(self, make_event, review_card, now):
        """is_leech turns on at the threshold lapse and never reverts."""
        scheduler = CardScheduler(DeckConfig(leech_threshold=3))
        card = review_card
        became = []
        at = now
        for _ in range(5):
            lapse = scheduler.grade(card, make_event(card.id, Rating.AGAIN, at=at))
            became.append(lapse.transitions.became_leech)
            card = lapse.card
            at += timedelta(minutes=10)
            card = scheduler.grade(card, make_event(card.id, Rating.GOOD, at=at)).card
            assert card.state == CardState.REVIEW
            at += timedelta(days=1)

        assert became == [False, False, True, False, False]
        assert card.is_leech
        assert card.lapse_count == 5

        for rating in (Rating.EASY, Rating.GOOD, Rating.EASY):
            card = scheduler.grade(card, make_event(card.id, rating, at=at)).card
        assert card.is_leech


class TestRelearning:
    """Tests for relearning cards."""

    def test_return_to_review_at_fraction(self, scheduler, make_event):
        card = Card(id="c1", state=CardState.RELEARNING, interval=10, pre_lapse_interval=20, lapse_count=1)
        result = scheduler.grade(card, make_event(card.id, Rating.GOOD))
        assert result.card.state == CardState.REVIEW
        assert result.card.interval == 5
        assert not result.transitions.graduated
        assert not result.transitions.lapsed

    def test_easy_returns_at_half(self, scheduler, make_event):
        card = Card(id="c1", state=CardState.RELEARNING, interval=10, pre_lapse_interval=20)
        result = scheduler.grade(card, make_event(card.id, Rating.EASY))
        assert result.card.interval == 10

    def test_minimum_one_day(self, scheduler, make_event):
        card = Card(id="c1", state=CardState.RELEARNING, interval=10, pre_lapse_interval=1)
        result = scheduler.grade(card, make_event(card.id, Rating.GOOD))
        assert result.card.interval == 1

    def test_again_in_relearning_is_not_a_lapse(self, scheduler, make_event):
        card = Card(id="c1", state=CardState.RELEARNING, interval=10, lapse_count=2)
        result = scheduler.grade(card, make_event(card.id, Rating.AGAIN))
        assert result.card.lapse_count == 2
        assert result.card.state == CardState.RELEARNING


# ============================================================================
# Validation
# ============================================================================


class TestValidation:
    """Malformed input raises ValidationError."""

    def test_unknown_state(self, scheduler, make_event):
        card = Card(id="c1", state="suspended")
        with pytest.raises(ValidationError):
            scheduler.grade(card, make_event(card.id))

    def test_unknown_rating(self, scheduler, make_event):
        card = Card(id="c1")
        with pytest.raises(ValidationError):
            scheduler.grade(card, make_event(card.id, rating="perfect"))

    def test_event_for_other_card(self, scheduler, make_event):
        with pytest.raises(ValidationError):
            scheduler.grade(Card(id="c1"), make_event("c2"))

    def test_rating_digits(self):
        assert Rating.parse("1") == Rating.AGAIN
        assert Rating.parse(4) == Rating.EASY
        assert Rating.parse("Good") == Rating.GOOD


# ============================================================================
# Forecasting
# ============================================================================


class TestForecasting:
    """Tests for prediction helpers."""

    def test_predict_next_due_covers_all_ratings(self, scheduler, review_card, now):
        outcomes = scheduler.predict_next_due(review_card, now)
        assert set(outcomes) == set(Rating)
        assert outcomes[Rating.AGAIN].card.state == CardState.RELEARNING
        assert outcomes[Rating.GOOD].card.interval == 15

    def test_retention_probability(self, scheduler, review_card, now):
        assert scheduler.retention_probability(Card(id="new"), now) == 0.0
        fresh = scheduler.retention_probability(review_card, review_card.last_reviewed)
        later = scheduler.retention_probability(review_card, now)
        assert fresh == pytest.approx(1.0)
        assert 0.0 < later < fresh

    def test_time_to_mastery(self, scheduler, review_card):
        estimate = scheduler.estimate_time_to_mastery(review_card, target_interval=30)
        assert estimate.reviews == 2  # 6 -> 15 -> 38
        assert estimate.days == 15 + 38

    def test_time_to_mastery_already_there(self, scheduler, review_card):
        card = replace(review_card, interval=60)
        estimate = scheduler.estimate_time_to_mastery(card, target_interval=30)
        assert estimate.reviews == 0

"""
Unit tests for the study session engine.

Run: pytest tests/unit/test_session_engine.py -v
"""

from datetime import timedelta

import pytest

from config import Settings
from src.burnout.baseline import ResponseTimeBaseline, RunningStats
from src.burnout.breaks import BreakTrigger
from src.core.errors import DuplicateSubmissionError, ValidationError
from src.personalization.profile import UserLearningProfile
from src.session import SessionContext, SessionEngine
from src.srs.models import Card, CardState, Rating


@pytest.fixture
def engine():
    context = SessionContext.resolve(
        "u1",
        UserLearningProfile(user_id="u1"),
        settings=Settings(_env_file=None),
    )
    return SessionEngine(context)


@pytest.fixture
def review_cards(now):
    return [
        Card(
            id=f"r{i}",
            state=CardState.REVIEW,
            interval=6,
            next_due=now - timedelta(hours=i + 1),
            last_reviewed=now - timedelta(days=7),
        )
        for i in range(10)
    ]


@pytest.fixture
def steady_baseline():
    """A reliable 3s baseline."""
    return ResponseTimeBaseline(buckets={"overall": RunningStats(count=30, mean=3000.0, m2=29 * 1000.0**2)})


def rate(engine, state, make_event, card_id, rating=Rating.GOOD, at=None, response_ms=3000.0):
    step = engine.submit_rating(state, make_event(card_id, rating, response_ms=response_ms, at=at))
    return step, engine.release(step.state, card_id)


class TestSubmission:
    """Tests for rating submission and the in-flight guard."""

    def test_start_orders_queue(self, engine, review_cards, now):
        cards = review_cards[:2] + [Card(id="n1", created_at=now - timedelta(days=1))]
        state = engine.start(cards, now=now)
        assert state.queue == ("r1", "r0", "n1")
        assert state.current_card.id == "r1"
        assert not state.reference_baseline.reliable

    def test_limit_caps_queue(self, engine, review_cards, now):
        state = engine.start(review_cards, now=now, limit=3)
        assert len(state.queue) == 3

    def test_duplicate_submission_rejected(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        step = engine.submit_rating(state, make_event("r0"))
        assert "r0" in step.state.in_flight

        with pytest.raises(DuplicateSubmissionError):
            engine.submit_rating(step.state, make_event("r0", Rating.EASY))

        released = engine.release(step.state, "r0")
        again = engine.submit_rating(released, make_event("r0", Rating.EASY))
        assert again.state.cards["r0"].review_count == 2

    def test_unknown_card(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        with pytest.raises(ValidationError):
            engine.submit_rating(state, make_event("missing"))

    def test_graded_card_leaves_queue(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards[:2], now=now)
        _, state = rate(engine, state, make_event, "r1")
        assert state.queue == ("r0",)
        assert state.cards["r1"].interval == 15

    def test_learning_card_requeued(self, engine, make_event, now):
        state = engine.start([Card(id="n1"), Card(id="n2")], now=now)
        _, state = rate(engine, state, make_event, "n1")
        assert state.queue == ("n2", "n1")
        assert state.cards["n1"].state == CardState.LEARNING

    def test_baseline_updated_per_rating(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        _, state = rate(engine, state, make_event, "r0", response_ms=4000)
        _, state = rate(engine, state, make_event, "r1", response_ms=2000)
        assert state.baseline.sample_count == 2
        assert state.baseline.get_baseline().mean == pytest.approx(3000)


class TestFatigueCadence:
    """Fatigue is recomputed every third rating."""

    def test_indicators_refresh_every_third_rating(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        scores = []
        for i in range(6):
            _, state = rate(
                engine, state, make_event, f"r{i}", Rating.AGAIN, at=now + timedelta(seconds=20 * i)
            )
            scores.append(state.indicators.overall_fatigue_score)

        assert scores[0] == scores[1] == 0.0
        assert scores[2] > 0.0
        assert scores[3] == scores[4] == scores[2]
        assert scores[5] >= scores[2]

    def test_cold_start_adopts_baseline_once_reliable(self, engine, make_event, now):
        cards = [Card(id=f"c{i}", state=CardState.REVIEW, interval=3, next_due=now) for i in range(12)]
        state = engine.start(cards, now=now)
        assert not state.reference_baseline.reliable

        for i in range(9):
            _, state = rate(engine, state, make_event, f"c{i}", at=now + timedelta(seconds=20 * i))
        assert not state.reference_baseline.reliable

        for i in range(9, 12):
            _, state = rate(engine, state, make_event, f"c{i}", at=now + timedelta(seconds=20 * i))
        assert state.reference_baseline.reliable
        assert state.reference_baseline.mean == pytest.approx(3000)
        assert state.indicators.baseline_reliable

    def test_fatigue_suggestion_and_dismissal(self, engine, review_cards, make_event, now, steady_baseline):
        state = engine.start(review_cards, baseline=steady_baseline, now=now)
        assert state.reference_baseline.reliable

        suggestions = []
        for i in range(9):
            step, state = rate(
                engine, state, make_event, f"r{i}", at=now + timedelta(seconds=20 * i), response_ms=12000
            )
            if step.suggestion is not None:
                suggestions.append((i, step.suggestion))

        assert len(suggestions) == 1
        index, suggestion = suggestions[0]
        assert index == 2
        assert suggestion.trigger == BreakTrigger.FATIGUE
        assert state.fatigue_onset_minute == pytest.approx(0.7)

        state, event = engine.dismiss_break(state, now + timedelta(minutes=3))
        assert event is not None
        assert not event.taken
        assert state.pending_suggestion is None
        assert engine.dismiss_break(state)[1] is None


class TestBreaksAndSummary:
    """Tests for breaks and the end-of-session summary."""

    def test_summary_values(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        ratings = [Rating.GOOD, Rating.GOOD, Rating.EASY, Rating.AGAIN]
        for i, rating in enumerate(ratings):
            _, state = rate(engine, state, make_event, f"r{i}", rating, at=now + timedelta(seconds=30 * i))

        summary = engine.finish(state, now + timedelta(minutes=5))
        assert summary.cards_studied == 4
        assert summary.retention_rate == pytest.approx(75)
        assert summary.rating_breakdown == {"again": 1, "hard": 0, "good": 2, "easy": 1}
        assert summary.time_spent_seconds == pytest.approx(300)
        assert summary.lapsed == 1
        assert summary.graduated == 0
        assert summary.average_response_ms == pytest.approx(3000)
        assert summary.to_dict()["performance_trend"] in ("improving", "stable", "declining")

    def test_empty_session_summary(self, engine, now):
        state = engine.start([], now=now)
        assert state.is_finished
        summary = engine.finish(state, now)
        assert summary.cards_studied == 0
        assert summary.retention_rate == 0.0

    def test_break_time_excluded(self, engine, review_cards, make_event, now, steady_baseline):
        state = engine.start(review_cards, baseline=steady_baseline, now=now)
        for i in range(3):
            _, state = rate(engine, state, make_event, f"r{i}", at=now + timedelta(seconds=20 * i), response_ms=12000)
        assert state.pending_suggestion is not None

        break_start = now + timedelta(minutes=1)
        state = engine.take_break(state, break_start)
        assert state.advisor.on_break
        assert state.advisor.active_break.trigger == BreakTrigger.FATIGUE
        assert state.advisor.active_break.planned_minutes == 10

        state, event = engine.resume(state, post_fatigue=20, now=break_start + timedelta(minutes=10))
        assert event.taken
        assert not event.interrupted
        assert event.effectiveness > 0
        assert state.recent_events == ()
        assert state.break_seconds == pytest.approx(600)

        summary = engine.finish(state, now + timedelta(minutes=12))
        assert summary.time_spent_seconds == pytest.approx(120)
        assert summary.breaks_taken == 1
        assert summary.break_suggestions == 1

    def test_manual_break(self, engine, review_cards, now):
        state = engine.start(review_cards, now=now)
        state = engine.take_break(state, now, planned_minutes=5)
        assert state.advisor.active_break.trigger == BreakTrigger.MANUAL
        state, event = engine.resume(state, post_fatigue=0, now=now + timedelta(minutes=2))
        assert event.interrupted
        assert event.effectiveness == 0.0

    def test_rating_during_break_ends_it(self, engine, review_cards, make_event, now):
        state = engine.start(review_cards, now=now)
        state = engine.take_break(state, now, planned_minutes=10)

        step, state = rate(engine, state, make_event, "r0", at=now + timedelta(minutes=1))
        assert step.ended_break is not None
        assert step.ended_break.interrupted
        assert step.ended_break.actual_duration == pytest.approx(1)
        assert not state.advisor.on_break
        assert state.break_events == (step.ended_break,)
        assert state.break_seconds == pytest.approx(60)
        assert state.recent_events == (step.state.all_events[-1],)

        step, state = rate(engine, state, make_event, "r1", at=now + timedelta(minutes=60))
        assert step.ended_break is None
        assert step.suggestion is not None
        assert step.suggestion.trigger == BreakTrigger.TIME

    def test_resume_without_break(self, engine, review_cards, now):
        state = engine.start(review_cards, now=now)
        same, event = engine.resume(state, post_fatigue=10, now=now)
        assert same is state
        assert event is None

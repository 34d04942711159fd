"""
Unit tests for fatigue scoring and trend analysis.

Run: pytest tests/unit/test_fatigue.py -v
"""

import math
import random
from datetime import timedelta

import pytest

from src.burnout.baseline import BaselineSnapshot
from src.burnout.breaks import AdvisorState, BreakAdvisor, BreakTrigger
from src.burnout.fatigue import FatigueMonitor, TrendDirection, analyze_trend
from src.personalization.profile import UserLearningProfile
from src.srs.models import Rating, RatingEvent

RELIABLE = BaselineSnapshot(mean=3000.0, variance=1000.0**2, sample_count=30, reliable=True)
UNRELIABLE = BaselineSnapshot(mean=3000.0, variance=1000.0**2, sample_count=2, reliable=False)


def events(times, now, ratings=None, spacing=timedelta(seconds=20)):
    ratings = ratings or [Rating.GOOD] * len(times)
    return [
        RatingEvent(card_id=f"c{i}", rating=r, response_time_ms=t, timestamp=now + spacing * i)
        for i, (t, r) in enumerate(zip(times, ratings))
    ]


class TestTrendAnalysis:
    """Tests for least-squares trend classification."""

    def test_rising_times_decline(self):
        trend = analyze_trend([3000, 4000, 5000, 6000, 7000], higher_is_worse=True)
        assert trend.direction == TrendDirection.DECLINING
        assert trend.confidence == pytest.approx(100)

    def test_rising_ratings_improve(self):
        trend = analyze_trend([0, 1, 2, 2, 3], higher_is_worse=False)
        assert trend.direction == TrendDirection.IMPROVING

    def test_flat_is_stable(self):
        assert analyze_trend([2, 2, 2, 2]).direction == TrendDirection.STABLE
        assert analyze_trend([5]).direction == TrendDirection.STABLE


class TestFatigueMonitor:
    """Tests for the weighted fatigue score."""

    def test_linear_slowdown_scenario(self, now):
        """3s..12s against a 3s baseline: strictly rising score that crosses 65 with one suggestion."""
        monitor = FatigueMonitor()
        advisor = BreakAdvisor()
        profile = UserLearningProfile(user_id="u1")
        state = AdvisorState(session_started_at=now)
        stream = events([3000 + 1000 * i for i in range(10)], now)

        scores = []
        suggestions = []
        for i in range(1, len(stream) + 1):
            window = stream[:i]
            indicators = monitor.update_indicators(
                window,
                RELIABLE,
                typical_session_minutes=profile.average_session_length,
            )
            scores.append(indicators.overall_fatigue_score)
            suggestion = advisor.evaluate(indicators, profile, state, window[-1].timestamp)
            if suggestion is not None:
                suggestions.append(suggestion)
                state = advisor.issue(state, suggestion)

        assert all(b > a for a, b in zip(scores, scores[1:]))
        assert scores[0] < profile.fatigue_threshold < scores[-1]
        assert len(suggestions) == 1
        assert suggestions[0].trigger == BreakTrigger.FATIGUE

    def test_unreliable_baseline_suppresses_slowdown(self, now):
        monitor = FatigueMonitor()
        stream = events([3000 + 2000 * i for i in range(10)], now)
        indicators = monitor.update_indicators(stream, UNRELIABLE, elapsed_minutes=0, typical_session_minutes=20)
        assert indicators.slowdown == 0.0
        assert indicators.overall_fatigue_score == 0.0
        assert not indicators.baseline_reliable

    def test_unreliable_baseline_renormalizes_weights(self, now):
        monitor = FatigueMonitor()
        stream = events([3000] * 10, now, ratings=[Rating.AGAIN] * 10)
        indicators = monitor.update_indicators(stream, UNRELIABLE, elapsed_minutes=0, typical_session_minutes=20)
        # error weight 0.2 of the remaining 0.3
        assert indicators.error_rate == pytest.approx(100)
        assert indicators.overall_fatigue_score == pytest.approx(100 * 0.2 / 0.3)

    def test_error_rate_counts_again_and_hard(self, now):
        monitor = FatigueMonitor()
        ratings = [Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY]
        indicators = monitor.update_indicators(events([3000] * 4, now, ratings), RELIABLE, elapsed_minutes=0)
        assert indicators.error_rate == pytest.approx(50)

    def test_duration_saturates(self, now):
        monitor = FatigueMonitor()
        stream = events([3000] * 3, now)
        half = monitor.update_indicators(stream, RELIABLE, elapsed_minutes=20, typical_session_minutes=20)
        full = monitor.update_indicators(stream, RELIABLE, elapsed_minutes=400, typical_session_minutes=20)
        assert half.duration == pytest.approx(50)
        assert full.duration == pytest.approx(100)

    def test_faster_than_baseline_is_not_fatigue(self, now):
        monitor = FatigueMonitor()
        indicators = monitor.update_indicators(events([1000] * 5, now), RELIABLE, elapsed_minutes=0)
        assert indicators.slowdown == 0.0

    def test_infinite_response_is_maximal_slowdown(self, now):
        monitor = FatigueMonitor()
        huge = monitor.update_indicators(events([3000, 3000, 1e9], now), RELIABLE, elapsed_minutes=0)
        endless = monitor.update_indicators(events([3000, 3000, math.inf], now), RELIABLE, elapsed_minutes=0)
        assert huge.slowdown == pytest.approx(100, abs=0.01)
        assert endless.slowdown == 100.0
        assert endless.overall_fatigue_score >= huge.overall_fatigue_score

    def test_empty_window(self):
        indicators = FatigueMonitor().update_indicators([], RELIABLE)
        assert indicators.overall_fatigue_score == 0.0

    def test_score_always_in_bounds(self, now):
        """Random and extreme windows never leave [0, 100]."""
        rng = random.Random(7)
        monitor = FatigueMonitor()
        extremes = [0.0, 1.0, 1e9, -500.0, math.inf]
        for _ in range(200):
            n = rng.randint(1, 12)
            times = [rng.choice(extremes + [rng.uniform(200, 90_000)]) for _ in range(n)]
            ratings = [rng.choice(list(Rating)) for _ in range(n)]
            baseline = rng.choice([RELIABLE, UNRELIABLE, BaselineSnapshot(0.0, 0.0, 50, True)])
            indicators = monitor.update_indicators(
                events(times, now, ratings),
                baseline,
                elapsed_minutes=rng.uniform(-10, 500),
                typical_session_minutes=rng.choice([0, 5, 20, 90]),
            )
            assert 0.0 <= indicators.overall_fatigue_score <= 100.0

    def test_performance_trend_reported(self, now):
        ratings = [Rating.EASY, Rating.EASY, Rating.GOOD, Rating.HARD, Rating.AGAIN, Rating.AGAIN]
        indicators = FatigueMonitor().update_indicators(events([3000] * 6, now, ratings), RELIABLE, elapsed_minutes=5)
        assert indicators.performance_trend == TrendDirection.DECLINING
        assert indicators.performance_declining

"""
Fatigue Monitor.

Scores a learner's fatigue from a rolling window of recent rating events:
- Slowdown: recent response times against the personal baseline (z-score)
- Error rate: share of Again/Hard ratings in the window
- Duration: elapsed study time against the learner's typical session

The subscores are combined by a fixed weighted sum and clamped to [0, 100].
While the baseline is unreliable the slowdown weight is zero and the other
weights are renormalized.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from statistics import fmean
from typing import Any

from loguru import logger

from src.srs.models import Rating, RatingEvent

from .baseline import BaselineSnapshot

RATING_SCORES = {
    Rating.AGAIN: 0,
    Rating.HARD: 1,
    Rating.GOOD: 2,
    Rating.EASY: 3,
}


# =============================================================================
# Trend Analysis
# =============================================================================


class TrendDirection(str, Enum):
    """Direction of a metric over the window."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass(frozen=True)
class TrendAnalysis:
    """Least-squares trend of a series."""

    direction: TrendDirection
    strength: float  # 0-100
    confidence: float  # 0-100, from r squared
    data_points: int


def analyze_trend(values: Sequence[float], higher_is_worse: bool = True) -> TrendAnalysis:
    """
    Fit a line through the series and classify its direction.

    The slope is taken relative to the series mean so that milliseconds and
    rating scores share one stability cut-off (2% of the mean per item).
    """
    n = len(values)
    if n < 2:
        return TrendAnalysis(TrendDirection.STABLE, 0.0, 0.0, n)

    x_mean = (n - 1) / 2
    y_mean = fmean(values)
    sxx = sum((i - x_mean) ** 2 for i in range(n))
    syy = sum((v - y_mean) ** 2 for v in values)
    sxy = sum((i - x_mean) * (v - y_mean) for i, v in enumerate(values))

    if syy == 0 or not math.isfinite(syy):
        return TrendAnalysis(TrendDirection.STABLE, 0.0, 0.0, n)

    slope = sxy / sxx
    relative = slope / max(abs(y_mean), 1e-9)
    r_squared = (sxy * sxy) / (sxx * syy)

    if abs(relative) < 0.02:
        direction = TrendDirection.STABLE
    elif (relative > 0) == higher_is_worse:
        direction = TrendDirection.DECLINING
    else:
        direction = TrendDirection.IMPROVING

    return TrendAnalysis(
        direction=direction,
        strength=min(100.0, abs(relative) * 1000),
        confidence=min(100.0, r_squared * 100),
        data_points=n,
    )


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class FatigueWeights:
    """Weights of the subscores in the overall score."""

    slowdown: float = 0.7
    error_rate: float = 0.2
    duration: float = 0.1


@dataclass
class FatigueConfig:
    """Configuration for fatigue scoring."""

    window_size: int = 10  # Events considered
    slowdown_window: int = 5  # Most recent events averaged for the z-score
    std_floor_fraction: float = 0.15  # Minimum sd as a share of the baseline mean
    duration_horizon: float = 2.0  # Duration subscore saturates at this many typical sessions
    trend_confidence: float = 60.0  # Confidence needed to raise a trend flag
    default_session_minutes: float = 20.0
    weights: FatigueWeights = field(default_factory=FatigueWeights)

    @classmethod
    def from_settings(cls, settings: Any) -> FatigueConfig:
        return cls(
            window_size=settings.fatigue_window_size,
            slowdown_window=settings.slowdown_window_size,
        )


# =============================================================================
# Indicators
# =============================================================================


@dataclass(frozen=True)
class FatigueIndicators:
    """Fatigue snapshot for one point in a session."""

    overall_fatigue_score: float = 0.0
    slowdown: float = 0.0
    error_rate: float = 0.0
    duration: float = 0.0
    response_time_slowing: bool = False
    performance_declining: bool = False
    hesitation_increasing: bool = False
    baseline_reliable: bool = False
    performance_trend: TrendDirection = TrendDirection.STABLE

    def to_dict(self) -> dict:
        return {
            "overall_fatigue_score": round(self.overall_fatigue_score, 2),
            "slowdown": round(self.slowdown, 2),
            "error_rate": round(self.error_rate, 2),
            "duration": round(self.duration, 2),
            "response_time_slowing": self.response_time_slowing,
            "performance_declining": self.performance_declining,
            "hesitation_increasing": self.hesitation_increasing,
            "baseline_reliable": self.baseline_reliable,
            "performance_trend": self.performance_trend.value,
        }


def _clamp_score(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, value))


class FatigueMonitor:
    """
    Computes FatigueIndicators from recent rating events.

    The monitor holds no session state; callers pass the window each time.
    """

    def __init__(self, config: FatigueConfig | None = None):
        """
        Initialize fatigue monitor.

        Args:
            config: Custom weights and windows (uses defaults if None)
        """
        self.config = config or FatigueConfig()

    def update_indicators(
        self,
        recent_events: Sequence[RatingEvent],
        baseline: BaselineSnapshot,
        elapsed_minutes: float | None = None,
        typical_session_minutes: float | None = None,
    ) -> FatigueIndicators:
        """
        Score fatigue for the current window.

        Args:
            recent_events: Rating events, oldest first (only the last
                ``window_size`` are used)
            baseline: Effective response-time baseline
            elapsed_minutes: Active study time so far (derived from event
                timestamps if None)
            typical_session_minutes: The learner's usual session length

        Returns:
            FatigueIndicators with the overall score clamped to [0, 100]
        """
        window = list(recent_events)[-self.config.window_size :]
        if not window:
            return FatigueIndicators(baseline_reliable=baseline.reliable)

        if elapsed_minutes is None:
            elapsed_minutes = (window[-1].timestamp - window[0].timestamp).total_seconds() / 60
        typical = typical_session_minutes or self.config.default_session_minutes
        if typical <= 0:
            typical = self.config.default_session_minutes

        slowdown = self._slowdown_score(window, baseline) if baseline.reliable else 0.0
        error_rate = self._error_rate_score(window)
        duration = _clamp_score(
            100 * min(1.0, max(0.0, elapsed_minutes) / (self.config.duration_horizon * typical))
        )

        weights = self.config.weights
        slowdown_weight = weights.slowdown if baseline.reliable else 0.0
        total_weight = slowdown_weight + weights.error_rate + weights.duration
        if total_weight <= 0:
            score = 0.0
        else:
            score = (
                slowdown * slowdown_weight
                + error_rate * weights.error_rate
                + duration * weights.duration
            ) / total_weight

        times = [e.response_time_ms for e in window]
        hesitations = [e.hesitation_time_ms for e in window]
        scores = [RATING_SCORES[Rating.parse(e.rating)] for e in window]

        time_trend = analyze_trend(times, higher_is_worse=True)
        hesitation_trend = analyze_trend(hesitations, higher_is_worse=True)
        performance_trend = analyze_trend(scores, higher_is_worse=False)
        min_conf = self.config.trend_confidence

        indicators = FatigueIndicators(
            overall_fatigue_score=_clamp_score(score),
            slowdown=slowdown,
            error_rate=error_rate,
            duration=duration,
            response_time_slowing=_flag(time_trend, min_conf),
            performance_declining=_flag(performance_trend, min_conf),
            hesitation_increasing=_flag(hesitation_trend, min_conf),
            baseline_reliable=baseline.reliable,
            performance_trend=performance_trend.direction,
        )
        logger.debug(
            f"Fatigue {indicators.overall_fatigue_score:.1f} "
            f"(slow={slowdown:.1f}, err={error_rate:.1f}, dur={duration:.1f}, n={len(window)})"
        )
        return indicators

    def _slowdown_score(self, window: list[RatingEvent], baseline: BaselineSnapshot) -> float:
        """Map the z-score of recent response times to 0-100 (0 when faster than usual)."""
        recent = [e.response_time_ms for e in window[-self.config.slowdown_window :]]
        sigma = max(baseline.std, self.config.std_floor_fraction * baseline.mean, 1.0)
        z = (fmean(recent) - baseline.mean) / sigma
        if z == math.inf:
            return 100.0
        if math.isnan(z) or z <= 0:
            return 0.0
        return _clamp_score(100 * (1 - math.exp(-z / 2)))

    def _error_rate_score(self, window: list[RatingEvent]) -> float:
        struggles = sum(1 for e in window if Rating.parse(e.rating).is_struggle)
        return _clamp_score(100 * struggles / len(window))


def _flag(trend: TrendAnalysis, min_confidence: float) -> bool:
    return trend.direction == TrendDirection.DECLINING and trend.confidence > min_confidence

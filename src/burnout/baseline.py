"""
Response-Time Baseline Tracker.

Learns a learner's typical response time incrementally with Welford's
algorithm: O(1) per observation, never recomputed from history.

Observations are kept per difficulty bucket and in an ``overall`` bucket.
Below ``min_samples`` a bucket is not reliable and consumers fall back to
population defaults instead of judging personal deviation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

OVERALL = "overall"


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class BaselineConfig:
    """Configuration for baseline tracking."""

    min_samples: int = 10
    # Timings outside this range are treated as noise (distraction, misclick)
    min_plausible_ms: float = 500.0
    max_plausible_ms: float = 60_000.0
    # Population defaults used while a baseline is unreliable
    population_mean_ms: float = 3000.0
    population_std_ms: float = 1000.0

    @classmethod
    def from_settings(cls, settings: Any) -> BaselineConfig:
        return cls(min_samples=settings.baseline_min_samples)


# =============================================================================
# Running statistics
# =============================================================================


@dataclass(frozen=True)
class RunningStats:
    """Welford accumulator: count, running mean and sum of squared deviations."""

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def observe(self, value: float) -> RunningStats:
        count = self.count + 1
        delta = value - self.mean
        mean = self.mean + delta / count
        m2 = self.m2 + delta * (value - mean)
        return RunningStats(count=count, mean=mean, m2=m2)

    @property
    def variance(self) -> float:
        """Sample variance (0 until two observations exist)."""
        if self.count < 2:
            return 0.0
        return max(0.0, self.m2 / (self.count - 1))

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)


@dataclass(frozen=True)
class BaselineSnapshot:
    """Point-in-time view of one bucket."""

    mean: float
    variance: float
    sample_count: int
    reliable: bool

    @property
    def std(self) -> float:
        return math.sqrt(max(0.0, self.variance))


@dataclass(frozen=True)
class ResponseThresholds:
    """Personalized response-time cut-offs in milliseconds."""

    baseline: float
    slow_warning: float
    fatigue_threshold: float


# =============================================================================
# Tracker
# =============================================================================


@dataclass(frozen=True)
class ResponseTimeBaseline:
    """
    Immutable per-user baseline.

    ``observe`` returns a new tracker so a session can hold every
    intermediate state without hidden mutation.
    """

    buckets: dict[str, RunningStats] = field(default_factory=dict)
    config: BaselineConfig = field(default_factory=BaselineConfig)

    def observe(self, response_time_ms: float, difficulty_bucket: str | None = None) -> ResponseTimeBaseline:
        """Fold one response time into the overall and bucket statistics."""
        if not self.config.min_plausible_ms <= response_time_ms <= self.config.max_plausible_ms:
            logger.debug(f"Ignoring implausible response time {response_time_ms:.0f}ms")
            return self

        buckets = dict(self.buckets)
        buckets[OVERALL] = buckets.get(OVERALL, RunningStats()).observe(response_time_ms)
        if difficulty_bucket and difficulty_bucket != OVERALL:
            buckets[difficulty_bucket] = buckets.get(difficulty_bucket, RunningStats()).observe(
                response_time_ms
            )
        return ResponseTimeBaseline(buckets=buckets, config=self.config)

    def get_baseline(self, difficulty_bucket: str | None = None) -> BaselineSnapshot:
        """Statistics for a bucket (the overall bucket when none is given)."""
        stats = self.buckets.get(difficulty_bucket or OVERALL, RunningStats())
        return BaselineSnapshot(
            mean=stats.mean,
            variance=stats.variance,
            sample_count=stats.count,
            reliable=stats.count >= self.config.min_samples,
        )

    def effective_baseline(self, difficulty_bucket: str | None = None) -> BaselineSnapshot:
        """
        Most specific reliable baseline available.

        Falls back from the bucket to the overall statistics, then to the
        population defaults (reported as not reliable).
        """
        for key in (difficulty_bucket, OVERALL):
            if key is None:
                continue
            snapshot = self.get_baseline(key)
            if snapshot.reliable:
                return snapshot
        return BaselineSnapshot(
            mean=self.config.population_mean_ms,
            variance=self.config.population_std_ms**2,
            sample_count=self.get_baseline().sample_count,
            reliable=False,
        )

    def personalized_thresholds(self, difficulty_bucket: str | None = None) -> ResponseThresholds:
        """Baseline, slow warning (+1.5 sd) and fatigue (+2.5 sd) response times."""
        snapshot = self.effective_baseline(difficulty_bucket)
        if not snapshot.reliable:
            return ResponseThresholds(baseline=3000.0, slow_warning=6000.0, fatigue_threshold=10000.0)
        return ResponseThresholds(
            baseline=snapshot.mean,
            slow_warning=snapshot.mean + snapshot.std * 1.5,
            fatigue_threshold=snapshot.mean + snapshot.std * 2.5,
        )

    @property
    def sample_count(self) -> int:
        return self.get_baseline().sample_count

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            name: {"count": s.count, "mean": s.mean, "m2": s.m2}
            for name, s in self.buckets.items()
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], config: BaselineConfig | None = None) -> ResponseTimeBaseline:
        """
        Rebuild a tracker from stored statistics.

        Raises:
            ValueError: if the stored data is malformed
        """
        buckets: dict[str, RunningStats] = {}
        for name, raw in data.items():
            count = int(raw["count"])
            mean = float(raw["mean"])
            m2 = float(raw["m2"])
            if count < 0 or m2 < 0 or not math.isfinite(mean) or not math.isfinite(m2):
                raise ValueError(f"Corrupt baseline bucket '{name}': {raw}")
            buckets[str(name)] = RunningStats(count=count, mean=mean, m2=m2)
        return cls(buckets=buckets, config=config or BaselineConfig())

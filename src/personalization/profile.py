"""
User learning profile and recommendation values.

Cold-start defaults (used for a learner with no history, and for any field
missing from stored data):

    average_session_length   20 minutes
    average_cards_per_session 15 cards
    average_retention_rate   0.75
    preferred_study_hours    9, 14, 19
    fatigue_threshold        65 (fatigue score)
    break_interval           25 minutes
    break_duration           10 minutes
    celebration_frequency    every 5 cards
    milestone_progression    25, 75, 150, 300, 500 mastered cards
    study_velocity           60 cards per hour
    consistency_score        0.5
    difficulty_tolerance     0.7
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

COLD_START_SESSION_MINUTES = 20.0
COLD_START_CARDS_PER_SESSION = 15.0
COLD_START_RETENTION = 0.75
COLD_START_STUDY_HOURS = (9, 14, 19)
COLD_START_FATIGUE_THRESHOLD = 65.0
COLD_START_BREAK_INTERVAL = 25
COLD_START_BREAK_DURATION = 10
COLD_START_CELEBRATION = 5
COLD_START_MILESTONES = (25, 75, 150, 300, 500)
COLD_START_VELOCITY = 60.0
COLD_START_CONSISTENCY = 0.5
COLD_START_DIFFICULTY_TOLERANCE = 0.7

MILESTONE_INCREMENT = 500

# Bounds enforced on stored and adapted values
FATIGUE_THRESHOLD_MIN = 50.0
FATIGUE_THRESHOLD_MAX = 80.0


@dataclass
class HourStats:
    """Running mean of session retention for one hour of the day."""

    mean: float = 0.0
    count: int = 0

    def add(self, retention: float) -> HourStats:
        count = self.count + 1
        return HourStats(mean=self.mean + (retention - self.mean) / count, count=count)


@dataclass
class UserLearningProfile:
    """Long-lived learner statistics, updated once per session."""

    user_id: str
    total_cards_studied: int = 0
    average_session_length: float = COLD_START_SESSION_MINUTES
    average_cards_per_session: float = COLD_START_CARDS_PER_SESSION
    average_retention_rate: float = COLD_START_RETENTION
    preferred_study_hours: list[int] = field(default_factory=lambda: list(COLD_START_STUDY_HOURS))
    fatigue_threshold: float = COLD_START_FATIGUE_THRESHOLD
    break_interval: int = COLD_START_BREAK_INTERVAL
    break_duration: int = COLD_START_BREAK_DURATION
    celebration_frequency: int = COLD_START_CELEBRATION
    milestone_progression: list[int] = field(default_factory=lambda: list(COLD_START_MILESTONES))
    study_velocity: float = COLD_START_VELOCITY
    consistency_score: float = COLD_START_CONSISTENCY
    difficulty_tolerance: float = COLD_START_DIFFICULTY_TOLERANCE

    # History used for adaptation
    session_count: int = 0
    hourly_retention: dict[int, HourStats] = field(default_factory=dict)
    fatigue_onsets: list[float] = field(default_factory=list)
    study_days: list[str] = field(default_factory=list)
    last_updated: datetime | None = None

    @property
    def is_cold_start(self) -> bool:
        return self.session_count == 0 and self.total_cards_studied == 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["hourly_retention"] = {
            str(hour): {"mean": s.mean, "count": s.count} for hour, s in self.hourly_retention.items()
        }
        data["last_updated"] = self.last_updated.isoformat() if self.last_updated else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserLearningProfile:
        """
        Rebuild a profile from stored data.

        Missing fields take their cold-start defaults.

        Raises:
            ValueError: stored values are of the wrong type or out of range
            TypeError: stored data is not a mapping
        """
        if not isinstance(data, dict) or not data.get("user_id"):
            raise ValueError("Stored profile has no user_id")

        profile = cls(user_id=str(data["user_id"]))
        for name in (
            "average_session_length",
            "average_cards_per_session",
            "average_retention_rate",
            "fatigue_threshold",
            "study_velocity",
            "consistency_score",
            "difficulty_tolerance",
        ):
            if data.get(name) is not None:
                value = float(data[name])
                if not math.isfinite(value) or value < 0:
                    raise ValueError(f"Invalid profile field {name}={data[name]!r}")
                setattr(profile, name, value)

        for name in (
            "total_cards_studied",
            "break_interval",
            "break_duration",
            "celebration_frequency",
            "session_count",
        ):
            if data.get(name) is not None:
                value = int(data[name])
                if value < 0:
                    raise ValueError(f"Invalid profile field {name}={data[name]!r}")
                setattr(profile, name, value)

        if data.get("preferred_study_hours"):
            profile.preferred_study_hours = [int(h) % 24 for h in data["preferred_study_hours"]]
        if data.get("milestone_progression"):
            profile.milestone_progression = sorted(int(m) for m in data["milestone_progression"])
        if data.get("hourly_retention"):
            hourly = data["hourly_retention"]
            if not isinstance(hourly, dict) or not all(isinstance(s, dict) for s in hourly.values()):
                raise ValueError(f"Invalid profile field hourly_retention={hourly!r}")
            profile.hourly_retention = {
                int(hour): HourStats(mean=float(s["mean"]), count=int(s["count"]))
                for hour, s in data["hourly_retention"].items()
            }
        profile.fatigue_onsets = [float(m) for m in data.get("fatigue_onsets") or []]
        profile.study_days = [str(d) for d in data.get("study_days") or []]
        if data.get("last_updated"):
            profile.last_updated = datetime.fromisoformat(data["last_updated"])

        profile.fatigue_threshold = min(
            FATIGUE_THRESHOLD_MAX, max(FATIGUE_THRESHOLD_MIN, profile.fatigue_threshold)
        )
        profile.average_retention_rate = min(1.0, profile.average_retention_rate)
        return profile


@dataclass(frozen=True)
class Recommendations:
    """Settings and targets derived from a profile for the next session."""

    next_milestone: int
    celebration_trigger: int
    fatigue_warning_threshold: float
    break_interval: int
    break_duration: int
    session_length_recommendation: int
    optimal_study_time: str
    optimal_study_hour: int
    difficulty_adjustment: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def format_hour(hour: int) -> str:
    """Render an hour of the day as '9:00 AM'."""
    hour %= 24
    period = "PM" if hour >= 12 else "AM"
    display = hour - 12 if hour > 12 else 12 if hour == 0 else hour
    return f"{display}:00 {period}"

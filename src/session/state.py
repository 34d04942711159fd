"""
Study session values.

A session is a chain of immutable SessionState values: every rating, break
and dismissal produces a new state, so a session can be replayed from its
events and inspected at any step.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from config import Settings, get_settings
from src.burnout.baseline import BaselineConfig, BaselineSnapshot, ResponseTimeBaseline
from src.burnout.breaks import AdvisorConfig, AdvisorState, BreakEvent, BreakSuggestion
from src.burnout.fatigue import FatigueConfig, FatigueIndicators, TrendDirection
from src.personalization.profile import UserLearningProfile
from src.srs.deck_config import DeckConfig, resolve_deck_config
from src.srs.models import Card, GradeResult, Rating, RatingEvent

# =============================================================================
# Effective configuration
# =============================================================================


@dataclass(frozen=True)
class SessionContext:
    """Fully resolved configuration shared by every component in a session."""

    user_id: str
    deck_config: DeckConfig
    profile: UserLearningProfile
    fatigue_config: FatigueConfig
    advisor_config: AdvisorConfig
    baseline_config: BaselineConfig
    fatigue_check_every: int = 3

    @classmethod
    def resolve(
        cls,
        user_id: str,
        profile: UserLearningProfile,
        deck_config: DeckConfig | Mapping[str, Any] | None = None,
        settings: Settings | None = None,
    ) -> SessionContext:
        """Resolve defaults once, from settings and the stored deck config."""
        settings = settings or get_settings()
        return cls(
            user_id=user_id,
            deck_config=resolve_deck_config(deck_config),
            profile=profile,
            fatigue_config=FatigueConfig.from_settings(settings),
            advisor_config=AdvisorConfig.from_settings(settings),
            baseline_config=BaselineConfig.from_settings(settings),
            fatigue_check_every=settings.fatigue_check_every,
        )


# =============================================================================
# Session state
# =============================================================================


@dataclass(frozen=True)
class SessionState:
    """Everything known about a session after a given step."""

    started_at: datetime
    cards: dict[str, Card]
    queue: tuple[str, ...]
    baseline: ResponseTimeBaseline
    reference_baseline: BaselineSnapshot
    advisor: AdvisorState

    # Events since the last break (the fatigue window) and for the whole session
    recent_events: tuple[RatingEvent, ...] = ()
    all_events: tuple[RatingEvent, ...] = ()
    indicators: FatigueIndicators = field(default_factory=FatigueIndicators)
    fatigue_onset_minute: float | None = None
    peak_fatigue: float = 0.0

    pending_suggestion: BreakSuggestion | None = None
    break_events: tuple[BreakEvent, ...] = ()
    break_seconds: float = 0.0

    in_flight: frozenset[str] = frozenset()
    graduated: int = 0
    lapsed: int = 0
    new_leeches: int = 0

    @property
    def current_card(self) -> Card | None:
        if not self.queue:
            return None
        return self.cards[self.queue[0]]

    @property
    def cards_studied(self) -> int:
        return len(self.all_events)

    @property
    def is_finished(self) -> bool:
        return not self.queue

    def rating_breakdown(self) -> dict[str, int]:
        breakdown = {rating.value: 0 for rating in Rating}
        for event in self.all_events:
            breakdown[Rating.parse(event.rating).value] += 1
        return breakdown


@dataclass(frozen=True)
class StepResult:
    """Outcome of submitting one rating."""

    state: SessionState
    grade: GradeResult
    suggestion: BreakSuggestion | None = None
    ended_break: BreakEvent | None = None  # break cut short by this rating


@dataclass(frozen=True)
class SessionSummary:
    """End-of-session report for the study log and the profile manager."""

    user_id: str
    cards_studied: int
    time_spent_seconds: float
    rating_breakdown: dict[str, int]
    retention_rate: float  # percent of Good + Easy ratings
    fatigue_score: float
    performance_trend: TrendDirection
    started_at: datetime
    ended_at: datetime | None = None
    average_response_ms: float = 0.0
    peak_fatigue: float = 0.0
    fatigue_onset_minute: float | None = None
    graduated: int = 0
    lapsed: int = 0
    new_leeches: int = 0
    breaks_taken: int = 0
    break_suggestions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "cards_studied": self.cards_studied,
            "time_spent_seconds": round(self.time_spent_seconds, 1),
            "rating_breakdown": dict(self.rating_breakdown),
            "retention_rate": round(self.retention_rate, 1),
            "fatigue_score": round(self.fatigue_score, 1),
            "performance_trend": self.performance_trend.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "average_response_ms": round(self.average_response_ms),
            "peak_fatigue": round(self.peak_fatigue, 1),
            "fatigue_onset_minute": self.fatigue_onset_minute,
            "graduated": self.graduated,
            "lapsed": self.lapsed,
            "new_leeches": self.new_leeches,
            "breaks_taken": self.breaks_taken,
            "break_suggestions": self.break_suggestions,
        }

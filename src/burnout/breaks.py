"""
Break Advisor.

Decides when to suggest a break and records what the learner did with it.

Triggers, highest priority first:
1. fatigue_detected - overall fatigue score at or above the profile threshold
2. time_threshold   - minutes since the last break at or above the profile interval
3. user_pattern     - the session is near the point where fatigue set in
                      during earlier sessions (lower confidence)

Suppression rules within one session:
- A kind with an unanswered suggestion is not issued again
- A dismissed kind stays silent unless fatigue rises more than
  ``rearm_margin`` points above the score at dismissal
- Pattern suggestions stop once anything has been dismissed

All advisor state lives in the immutable AdvisorState; every operation
returns a new state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from statistics import median
from typing import TYPE_CHECKING, Any

from loguru import logger

from .fatigue import FatigueIndicators

if TYPE_CHECKING:
    from src.personalization.profile import UserLearningProfile


class BreakTrigger(str, Enum):
    """Why a break was suggested (or taken)."""

    FATIGUE = "fatigue_detected"
    TIME = "time_threshold"
    PATTERN = "user_pattern"
    MANUAL = "manual"


BENEFITS = {
    BreakTrigger.FATIGUE: (
        "Restore cognitive energy",
        "Improve retention of upcoming cards",
        "Prevent performance decline",
    ),
    BreakTrigger.TIME: (
        "Prevent mental fatigue",
        "Consolidate what you've learned",
        "Return refreshed",
    ),
    BreakTrigger.PATTERN: (
        "Get ahead of your usual slump",
        "Keep the rest of the session productive",
    ),
    BreakTrigger.MANUAL: (),
}


# =============================================================================
# Values
# =============================================================================


@dataclass
class AdvisorConfig:
    """Configuration for break suggestions."""

    rearm_margin: float = 10.0
    pattern_tolerance_minutes: float = 5.0
    pattern_min_sessions: int = 3
    pattern_max_confidence: float = 60.0
    severe_fatigue: float = 80.0  # Fatigue breaks above this are at least 15 minutes

    @classmethod
    def from_settings(cls, settings: Any) -> AdvisorConfig:
        return cls(
            rearm_margin=settings.dismiss_rearm_margin,
            pattern_tolerance_minutes=settings.pattern_tolerance_minutes,
            pattern_min_sessions=settings.pattern_min_sessions,
        )


@dataclass(frozen=True)
class BreakSuggestion:
    """A break offered to the learner."""

    trigger: BreakTrigger
    confidence: float
    message: str
    suggested_duration: int  # minutes
    fatigue_score: float = 0.0
    timing: str = "after_current_card"
    benefits: tuple[str, ...] = ()


@dataclass(frozen=True)
class Dismissal:
    trigger: BreakTrigger
    fatigue_score: float
    at: datetime


@dataclass(frozen=True)
class ActiveBreak:
    trigger: BreakTrigger
    started_at: datetime
    planned_minutes: int
    pre_fatigue: float


@dataclass(frozen=True)
class BreakEvent:
    """Logged outcome of a suggested or manual break."""

    trigger: BreakTrigger
    taken: bool
    pre_fatigue: float
    post_fatigue: float | None = None
    planned_duration: int = 0
    actual_duration: float = 0.0  # minutes
    effectiveness: float = 0.0
    interrupted: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None


@dataclass(frozen=True)
class AdvisorState:
    """Break bookkeeping for one study session."""

    session_started_at: datetime
    last_break_at: datetime | None = None
    outstanding: frozenset[BreakTrigger] = frozenset()
    dismissals: tuple[Dismissal, ...] = ()
    issued: tuple[BreakSuggestion, ...] = ()
    active_break: ActiveBreak | None = None
    breaks_taken: int = 0

    def elapsed_minutes(self, now: datetime) -> float:
        return max(0.0, (now - self.session_started_at).total_seconds() / 60)

    def minutes_since_break(self, now: datetime) -> float:
        since = self.last_break_at or self.session_started_at
        return max(0.0, (now - since).total_seconds() / 60)

    @property
    def on_break(self) -> bool:
        return self.active_break is not None


def complete_recovery_protocol(pre_fatigue: float, post_fatigue: float, actual_duration: float) -> float:
    """
    Break effectiveness as the percentage drop in fatigue, in [0, 100].

    A break with no measurable fatigue before it, or no duration, scores 0.
    """
    if pre_fatigue <= 0 or actual_duration <= 0:
        return 0.0
    reduction = (pre_fatigue - post_fatigue) / pre_fatigue * 100
    return min(100.0, max(0.0, reduction))


# =============================================================================
# Break Advisor
# =============================================================================


class BreakAdvisor:
    """Evaluates break triggers against the learner's profile."""

    def __init__(self, config: AdvisorConfig | None = None):
        self.config = config or AdvisorConfig()

    def evaluate(
        self,
        indicators: FatigueIndicators,
        profile: UserLearningProfile,
        state: AdvisorState,
        now: datetime | None = None,
    ) -> BreakSuggestion | None:
        """
        Return the highest-priority break suggestion that is not suppressed.

        Pure: the caller records an issued suggestion with ``issue``.
        """
        if state.on_break:
            return None
        now = now or datetime.now()
        score = indicators.overall_fatigue_score

        for trigger in (BreakTrigger.FATIGUE, BreakTrigger.TIME, BreakTrigger.PATTERN):
            if self._suppressed(trigger, score, state):
                continue
            suggestion = self._check(trigger, indicators, profile, state, now)
            if suggestion is not None:
                return suggestion
        return None

    def _suppressed(self, trigger: BreakTrigger, score: float, state: AdvisorState) -> bool:
        if trigger in state.outstanding:
            return True
        if trigger == BreakTrigger.PATTERN and state.dismissals:
            return True
        dismissed = [d for d in state.dismissals if d.trigger == trigger]
        if dismissed:
            return score <= dismissed[-1].fatigue_score + self.config.rearm_margin
        return False

    def _check(
        self,
        trigger: BreakTrigger,
        indicators: FatigueIndicators,
        profile: UserLearningProfile,
        state: AdvisorState,
        now: datetime,
    ) -> BreakSuggestion | None:
        score = indicators.overall_fatigue_score

        if trigger == BreakTrigger.FATIGUE:
            if score < profile.fatigue_threshold:
                return None
            duration = profile.break_duration
            if score > self.config.severe_fatigue:
                duration = max(duration, 15)
            return self._suggest(
                trigger,
                confidence=min(95.0, score),
                message=f"Your answers are showing signs of fatigue ({round(score)}% fatigue score).",
                duration=duration,
                score=score,
            )

        if trigger == BreakTrigger.TIME:
            minutes = state.minutes_since_break(now)
            if profile.break_interval <= 0 or minutes < profile.break_interval:
                return None
            return self._suggest(
                trigger,
                confidence=min(80.0, minutes / profile.break_interval * 60),
                message=f"You've been studying for {round(minutes)} minutes. A break will help you stay focused.",
                duration=profile.break_duration,
                score=score,
            )

        onsets = list(profile.fatigue_onsets)
        if len(onsets) < self.config.pattern_min_sessions:
            return None
        typical_onset = median(onsets)
        elapsed = state.elapsed_minutes(now)
        if abs(elapsed - typical_onset) > self.config.pattern_tolerance_minutes:
            return None
        return self._suggest(
            trigger,
            confidence=min(self.config.pattern_max_confidence, 30.0 + 5 * len(onsets)),
            message=f"You usually start to tire around {round(typical_onset)} minutes in.",
            duration=profile.break_duration,
            score=score,
        )

    def _suggest(
        self,
        trigger: BreakTrigger,
        confidence: float,
        message: str,
        duration: int,
        score: float,
    ) -> BreakSuggestion:
        confidence = min(100.0, max(0.0, confidence))
        return BreakSuggestion(
            trigger=trigger,
            confidence=confidence,
            message=message,
            suggested_duration=max(1, int(duration)),
            fatigue_score=score,
            timing="immediate" if confidence > 80 else "after_current_card",
            benefits=BENEFITS[trigger],
        )

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def issue(self, state: AdvisorState, suggestion: BreakSuggestion) -> AdvisorState:
        """Record that a suggestion was shown and is awaiting an answer."""
        logger.info(
            f"Break suggested ({suggestion.trigger.value}, confidence {suggestion.confidence:.0f})"
        )
        return replace(
            state,
            outstanding=state.outstanding | {suggestion.trigger},
            issued=state.issued + (suggestion,),
        )

    def dismiss(
        self,
        state: AdvisorState,
        suggestion: BreakSuggestion,
        fatigue_score: float,
        now: datetime | None = None,
    ) -> tuple[AdvisorState, BreakEvent]:
        """Learner skipped the break; logged with ``taken=False``."""
        now = now or datetime.now()
        event = BreakEvent(
            trigger=suggestion.trigger,
            taken=False,
            pre_fatigue=fatigue_score,
            planned_duration=suggestion.suggested_duration,
            started_at=now,
        )
        state = replace(
            state,
            outstanding=state.outstanding - {suggestion.trigger},
            dismissals=state.dismissals + (Dismissal(suggestion.trigger, fatigue_score, now),),
        )
        logger.info(f"Break dismissed ({suggestion.trigger.value}) at fatigue {fatigue_score:.0f}")
        return state, event

    def start_break(
        self,
        state: AdvisorState,
        trigger: BreakTrigger,
        planned_minutes: int,
        pre_fatigue: float,
        now: datetime | None = None,
    ) -> AdvisorState:
        """Begin a break (suggested or manual)."""
        now = now or datetime.now()
        return replace(
            state,
            outstanding=frozenset(),
            active_break=ActiveBreak(
                trigger=trigger,
                started_at=now,
                planned_minutes=max(1, int(planned_minutes)),
                pre_fatigue=pre_fatigue,
            ),
        )

    def resume(
        self,
        state: AdvisorState,
        post_fatigue: float,
        now: datetime | None = None,
    ) -> tuple[AdvisorState, BreakEvent | None]:
        """
        End the active break.

        Resuming before the planned duration marks the break as interrupted.
        Dismissals are kept for the rest of the session.
        """
        active = state.active_break
        if active is None:
            return state, None
        now = now or datetime.now()
        actual = max(0.0, (now - active.started_at).total_seconds() / 60)
        interrupted = actual < active.planned_minutes
        if interrupted:
            logger.info(f"Break interrupted after {actual:.1f} of {active.planned_minutes} minutes")

        event = BreakEvent(
            trigger=active.trigger,
            taken=True,
            pre_fatigue=active.pre_fatigue,
            post_fatigue=post_fatigue,
            planned_duration=active.planned_minutes,
            actual_duration=actual,
            effectiveness=complete_recovery_protocol(active.pre_fatigue, post_fatigue, actual),
            interrupted=interrupted,
            started_at=active.started_at,
            ended_at=now,
        )
        state = replace(
            state,
            active_break=None,
            last_break_at=now,
            outstanding=frozenset(),
            breaks_taken=state.breaks_taken + 1,
        )
        return state, event

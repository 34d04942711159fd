"""
Card and rating value types.

A Card is a single tagged record: the ``state`` field decides which of the
scheduling fields are meaningful. Cards are frozen; the scheduler returns a
new Card for every grade.

Interval units:
- Learning / Relearning: whole minutes until the next step
- Review: whole days until the next review
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from src.core.errors import ValidationError

# =============================================================================
# Enums
# =============================================================================


class CardState(str, Enum):
    """Lifecycle state of a card."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"

    @classmethod
    def parse(cls, value: CardState | str) -> CardState:
        """Coerce a stored value, raising ValidationError for unknown states."""
        try:
            return cls(value)
        except ValueError as e:
            raise ValidationError(f"Unknown card state: {value!r}") from e


class Rating(str, Enum):
    """Four-level recall rating given by the learner."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @classmethod
    def parse(cls, value: Rating | str | int) -> Rating:
        """
        Coerce a rating.

        Accepts the enum, its name/value, or the keyboard digits 1-4.
        """
        if isinstance(value, Rating):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _RATING_KEYS:
                return _RATING_KEYS[key]
            try:
                return cls(key)
            except ValueError:
                pass
        raise ValidationError(f"Unknown rating: {value!r}")

    @property
    def is_struggle(self) -> bool:
        """Again and Hard both count as errors for fatigue purposes."""
        return self in (Rating.AGAIN, Rating.HARD)

    @property
    def is_recalled(self) -> bool:
        """Good and Easy count toward retention."""
        return self in (Rating.GOOD, Rating.EASY)


_RATING_KEYS = {
    "1": Rating.AGAIN,
    "2": Rating.HARD,
    "3": Rating.GOOD,
    "4": Rating.EASY,
}


# =============================================================================
# Card
# =============================================================================


@dataclass(frozen=True)
class Card:
    """Scheduling record for one study item."""

    id: str
    state: CardState = CardState.NEW
    learning_step: int = 0
    interval: int = 0
    ease_factor: float = 2.5
    lapse_count: int = 0
    is_leech: bool = False
    next_due: datetime | None = None
    last_reviewed: datetime | None = None
    review_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    pre_lapse_interval: int = 0

    @property
    def is_new(self) -> bool:
        return self.state == CardState.NEW

    def is_due(self, now: datetime) -> bool:
        """Whether a non-new card should be shown at ``now``."""
        if self.state == CardState.NEW:
            return False
        return self.next_due is None or self.next_due <= now


# =============================================================================
# Rating events and grade results
# =============================================================================


@dataclass(frozen=True)
class RatingEvent:
    """A single answer submitted by the learner."""

    card_id: str
    rating: Rating
    response_time_ms: float
    hesitation_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    difficulty_bucket: str | None = None


@dataclass(frozen=True)
class Transitions:
    """Notification flags raised by a single grade."""

    graduated: bool = False
    lapsed: bool = False
    became_leech: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "graduated": self.graduated,
            "lapsed": self.lapsed,
            "became_leech": self.became_leech,
        }


@dataclass(frozen=True)
class GradeResult:
    """Updated card plus the transitions that happened on the way."""

    card: Card
    transitions: Transitions = field(default_factory=Transitions)

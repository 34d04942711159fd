"""
Card Scheduler - Learning / Review / Relearning state machine.

Implements an SM-2 style scheduler with learning steps:
- New cards enter Learning at step 0 on their first grade
- Learning cards walk the learning steps and graduate into Review
- Review cards grow their interval by the ease factor; a failure is a lapse
- Relearning cards walk the relearning steps and return to Review at a
  fraction of their pre-lapse interval

Rating effects in Review:
    Again - lapse, ease -= lapse_penalty, back to Relearning
    Hard  - interval * hard_interval_multiplier, ease -= hard_penalty
    Good  - interval * ease
    Easy  - interval * ease * easy_interval_bonus, ease += easy_bonus

Ease is clamped to [min_ease, max_ease] on every output, and Review
intervals grow by at least one day per success.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from loguru import logger

from src.core.errors import ValidationError

from .deck_config import (
    FALLBACK_LEARNING_STEPS,
    FALLBACK_RELEARNING_STEPS,
    DeckConfig,
    resolve_deck_config,
)
from .models import Card, CardState, GradeResult, Rating, RatingEvent, Transitions

# =============================================================================
# Helpers
# =============================================================================


def _step_minutes(step: float) -> int:
    return max(1, round(step))


def _clamp_step(step: int, steps: tuple[float, ...]) -> int:
    return min(max(0, int(step)), len(steps) - 1)


@dataclass(frozen=True)
class MasteryEstimate:
    """Simulated cost of taking a card to a target interval."""

    days: int
    reviews: int


# =============================================================================
# Card Scheduler
# =============================================================================


class CardScheduler:
    """
    Grades cards against a DeckConfig.

    The scheduler is stateless apart from its default config; ``grade`` is a
    pure function of (card, event, config).
    """

    def __init__(self, config: DeckConfig | None = None):
        """
        Initialize the scheduler.

        Args:
            config: Default deck config (uses defaults if None)
        """
        self.config = resolve_deck_config(config)

    def grade(
        self,
        card: Card,
        event: RatingEvent,
        config: DeckConfig | None = None,
    ) -> GradeResult:
        """
        Apply one rating to a card.

        Args:
            card: Current card record
            event: The learner's rating for this card
            config: Deck config override (uses the scheduler default if None)

        Returns:
            GradeResult with the updated card and transition flags

        Raises:
            ValidationError: unknown state or rating, or event for another card
        """
        config = config or self.config
        if event.card_id != card.id:
            raise ValidationError(f"Rating event for {event.card_id} applied to card {card.id}")

        state = CardState.parse(card.state)
        rating = Rating.parse(event.rating)
        now = event.timestamp

        if state == CardState.NEW:
            fields, transitions = self._grade_learning(
                replace(card, ease_factor=config.starting_ease, learning_step=0), rating, config, now
            )
        elif state == CardState.LEARNING:
            fields, transitions = self._grade_learning(card, rating, config, now)
        elif state == CardState.REVIEW:
            fields, transitions = self._grade_review(card, rating, config, now)
        else:
            fields, transitions = self._grade_relearning(card, rating, config, now)

        updated = replace(
            card,
            **fields,
            last_reviewed=now,
            review_count=max(0, card.review_count) + 1,
        )
        updated = replace(updated, ease_factor=config.clamp_ease(updated.ease_factor))

        logger.debug(
            f"Graded {card.id}: {state.value} -> {updated.state.value} "
            f"({rating.value}, interval={updated.interval}, ease={updated.ease_factor:.2f})"
        )
        return GradeResult(card=updated, transitions=transitions)

    # -------------------------------------------------------------------------
    # Per-state transitions
    # -------------------------------------------------------------------------

    def _grade_learning(
        self,
        card: Card,
        rating: Rating,
        config: DeckConfig,
        now: datetime,
    ) -> tuple[dict, Transitions]:
        steps = config.learning_steps or FALLBACK_LEARNING_STEPS
        step = _clamp_step(card.learning_step, steps)

        if rating == Rating.EASY:
            return self._graduate(config.easy_interval, config.starting_ease + config.easy_bonus, config, now)

        if rating == Rating.AGAIN:
            step = 0
        elif rating == Rating.GOOD:
            if step + 1 >= len(steps):
                return self._graduate(config.graduating_interval, config.starting_ease, config, now)
            step += 1

        minutes = _step_minutes(steps[step])
        return (
            {
                "state": CardState.LEARNING,
                "learning_step": step,
                "interval": minutes,
                "next_due": now + timedelta(minutes=minutes),
            },
            Transitions(),
        )

    def _graduate(
        self,
        interval: int,
        ease: float,
        config: DeckConfig,
        now: datetime,
    ) -> tuple[dict, Transitions]:
        days = min(config.maximum_interval, max(1, interval))
        return (
            {
                "state": CardState.REVIEW,
                "learning_step": 0,
                "interval": days,
                "ease_factor": ease,
                "next_due": now + timedelta(days=days),
            },
            Transitions(graduated=True),
        )

    def _grade_review(
        self,
        card: Card,
        rating: Rating,
        config: DeckConfig,
        now: datetime,
    ) -> tuple[dict, Transitions]:
        interval = max(1, int(card.interval))
        ease = config.clamp_ease(card.ease_factor)

        if rating == Rating.AGAIN:
            lapses = max(0, card.lapse_count) + 1
            became_leech = not card.is_leech and lapses >= config.leech_threshold
            if became_leech:
                logger.info(f"Card {card.id} marked as leech after {lapses} lapses")
            steps = config.relearning_steps or FALLBACK_RELEARNING_STEPS
            minutes = _step_minutes(steps[0])
            return (
                {
                    "state": CardState.RELEARNING,
                    "learning_step": 0,
                    "interval": minutes,
                    "ease_factor": ease - config.lapse_penalty,
                    "lapse_count": lapses,
                    "is_leech": card.is_leech or became_leech,
                    "pre_lapse_interval": interval,
                    "next_due": now + timedelta(minutes=minutes),
                },
                Transitions(lapsed=True, became_leech=became_leech),
            )

        if rating == Rating.HARD:
            raw = interval * config.hard_interval_multiplier
            new_ease = ease - config.hard_penalty
        elif rating == Rating.GOOD:
            raw = interval * ease
            new_ease = ease
        else:
            raw = interval * ease * config.easy_interval_bonus
            new_ease = ease + config.easy_bonus

        days = min(config.maximum_interval, max(interval + 1, round(raw)))
        return (
            {
                "state": CardState.REVIEW,
                "learning_step": 0,
                "interval": days,
                "ease_factor": new_ease,
                "next_due": now + timedelta(days=days),
            },
            Transitions(),
        )

    def _grade_relearning(
        self,
        card: Card,
        rating: Rating,
        config: DeckConfig,
        now: datetime,
    ) -> tuple[dict, Transitions]:
        steps = config.relearning_steps or FALLBACK_RELEARNING_STEPS
        step = _clamp_step(card.learning_step, steps)

        if rating == Rating.EASY:
            return self._return_to_review(card, config.relearn_easy_fraction, config, now)

        if rating == Rating.AGAIN:
            step = 0
        elif rating == Rating.GOOD:
            if step + 1 >= len(steps):
                return self._return_to_review(card, config.relearn_interval_fraction, config, now)
            step += 1

        minutes = _step_minutes(steps[step])
        return (
            {
                "state": CardState.RELEARNING,
                "learning_step": step,
                "interval": minutes,
                "next_due": now + timedelta(minutes=minutes),
            },
            Transitions(),
        )

    def _return_to_review(
        self,
        card: Card,
        fraction: float,
        config: DeckConfig,
        now: datetime,
    ) -> tuple[dict, Transitions]:
        days = max(1, round(max(0, card.pre_lapse_interval) * fraction))
        days = min(config.maximum_interval, days)
        return (
            {
                "state": CardState.REVIEW,
                "learning_step": 0,
                "interval": days,
                "next_due": now + timedelta(days=days),
            },
            Transitions(),
        )

    # -------------------------------------------------------------------------
    # Forecasting
    # -------------------------------------------------------------------------

    def predict_next_due(
        self,
        card: Card,
        now: datetime | None = None,
        config: DeckConfig | None = None,
    ) -> dict[Rating, GradeResult]:
        """Outcome of each possible rating if the card were graded at ``now``."""
        now = now or datetime.now()
        return {
            rating: self.grade(card, RatingEvent(card.id, rating, 0.0, timestamp=now), config)
            for rating in Rating
        }

    def retention_probability(self, card: Card, now: datetime | None = None) -> float:
        """
        Estimated probability the card is still remembered at ``now``.

        Exponential decay over the current interval, stretched or shrunk by
        ease relative to the default 2.5.
        """
        if card.last_reviewed is None or card.state == CardState.NEW:
            return 0.0
        now = now or datetime.now()
        days_since = max(0.0, (now - card.last_reviewed).total_seconds() / 86400)

        if card.state == CardState.REVIEW:
            interval_days = max(1, card.interval)
        else:
            interval_days = max(1, card.interval) / 1440
        stability = interval_days * (max(card.ease_factor, 0.1) / 2.5)

        return max(0.0, min(1.0, math.exp(-days_since / stability)))

    def estimate_time_to_mastery(
        self,
        card: Card,
        target_interval: int = 30,
        config: DeckConfig | None = None,
        max_reviews: int = 100,
    ) -> MasteryEstimate:
        """Simulate consecutive Good reviews until the interval reaches the target."""
        config = config or self.config
        if card.state == CardState.REVIEW:
            interval = max(1, card.interval)
            ease = config.clamp_ease(card.ease_factor)
        else:
            interval = config.graduating_interval
            ease = config.starting_ease

        days = 0
        reviews = 0
        while interval < target_interval and reviews < max_reviews:
            interval = min(config.maximum_interval, max(interval + 1, round(interval * ease)))
            days += interval
            reviews += 1
            if interval >= config.maximum_interval:
                break

        return MasteryEstimate(days=days, reviews=reviews)

"""
Review Queue Builder.

Key principles:
1. Due reviews always come first, oldest due date first
2. New cards fill the remaining slots up to the daily new-card limit
3. The daily hard cap is the only thing that stops a session outright
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from .deck_config import DeckConfig
from .models import Card, CardState

if TYPE_CHECKING:
    from src.personalization.profile import UserLearningProfile

_NEVER = datetime.min


def _due_sort_key(card: Card) -> tuple[datetime, datetime]:
    return (card.next_due or _NEVER, card.last_reviewed or _NEVER)


def build_queue(
    all_cards: Iterable[Card],
    config: DeckConfig,
    now: datetime | None = None,
    new_cards_studied_today: int = 0,
) -> list[Card]:
    """
    Order the cards for one study session.

    Args:
        all_cards: Every card in the deck
        config: Effective deck config for the session
        now: Reference time (defaults to now)
        new_cards_studied_today: New cards already introduced today

    Returns:
        Due reviews (by next_due, then last_reviewed) followed by new cards
        (by created_at), capped at the remaining new-card allowance
    """
    now = now or datetime.now()
    due: list[Card] = []
    new: list[Card] = []

    for card in all_cards:
        if card.state == CardState.NEW:
            new.append(card)
        elif card.is_due(now):
            due.append(card)

    due.sort(key=_due_sort_key)
    new.sort(key=lambda c: c.created_at)

    new_allowance = max(0, config.new_cards_per_day - new_cards_studied_today)
    queue = due + new[:new_allowance]

    logger.debug(
        f"Queue built: {len(due)} due, {min(len(new), new_allowance)}/{len(new)} new admitted"
    )
    return queue


# =============================================================================
# Daily workload
# =============================================================================


@dataclass(frozen=True)
class CardCountRecommendation:
    """How many cards to aim for in the next session."""

    recommended: int
    should_study: bool
    remaining_today: int
    reason: str


def recommended_card_count(
    profile: UserLearningProfile,
    cards_studied_today: int,
    config: DeckConfig,
    fatigue_score: float = 0.0,
) -> CardCountRecommendation:
    """
    Size the next session against the learner's habits and the daily cap.

    The daily capacity shrinks with fatigue (half the cap at a score of
    100). ``should_study`` turns false only once the hard cap is reached.
    """
    cap = config.max_reviews_per_day
    studied = max(0, cards_studied_today)

    if studied >= cap:
        return CardCountRecommendation(
            recommended=0,
            should_study=False,
            remaining_today=0,
            reason=f"Daily limit of {cap} cards reached",
        )

    fatigue = min(100.0, max(0.0, fatigue_score))
    adjusted_capacity = round(cap * (1 - fatigue / 200))
    remaining = max(0, adjusted_capacity - studied)
    target = max(1, round(profile.average_cards_per_session))

    if remaining == 0:
        return CardCountRecommendation(
            recommended=min(5, cap - studied),
            should_study=True,
            remaining_today=cap - studied,
            reason="You're tired - keep it to a short review",
        )

    recommended = min(target, remaining)
    if recommended < target:
        reason = f"Close to today's limit - {remaining} cards left"
    elif studied > target:
        reason = "You've already studied a full session today - an extra one is optional"
    else:
        reason = f"A typical session for you is {target} cards"

    return CardCountRecommendation(
        recommended=recommended,
        should_study=True,
        remaining_today=cap - studied,
        reason=reason,
    )

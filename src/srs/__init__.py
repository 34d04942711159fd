"""
SRS Module - Card scheduling and review queues.

Components:
- models: Card, CardState, Rating, RatingEvent, GradeResult
- deck_config: DeckConfig resolution and presets
- scheduler: Learning / Review / Relearning state machine
- queue: Session queue ordering and daily workload sizing
"""

from src.srs.deck_config import (
    PRESETS,
    DeckConfig,
    get_preset,
    optimize_config,
    resolve_deck_config,
)
from src.srs.models import Card, CardState, GradeResult, Rating, RatingEvent, Transitions
from src.srs.queue import CardCountRecommendation, build_queue, recommended_card_count
from src.srs.scheduler import CardScheduler, MasteryEstimate

__all__ = [
    # Models
    "Card",
    "CardState",
    "Rating",
    "RatingEvent",
    "GradeResult",
    "Transitions",
    # Config
    "DeckConfig",
    "PRESETS",
    "get_preset",
    "optimize_config",
    "resolve_deck_config",
    # Scheduling
    "CardScheduler",
    "MasteryEstimate",
    "build_queue",
    "recommended_card_count",
    "CardCountRecommendation",
]

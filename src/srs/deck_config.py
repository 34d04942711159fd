"""
Deck configuration.

DeckConfig is a frozen pydantic model resolved once per session. Stored or
user-supplied settings go through ``resolve_deck_config``, which never
raises: malformed fields fall back to their defaults with a warning.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

DEFAULT_LEARNING_STEPS: tuple[float, ...] = (1.0, 10.0)
DEFAULT_RELEARNING_STEPS: tuple[float, ...] = (10.0,)

# Used when a step list ends up empty
FALLBACK_LEARNING_STEPS: tuple[float, ...] = (1.0,)
FALLBACK_RELEARNING_STEPS: tuple[float, ...] = (10.0,)

MAX_STEP_MINUTES = 525_600.0  # one year
MAX_INTERVAL_DAYS = 36500
MAX_EASE = 10.0
MAX_MULTIPLIER = 10.0


def _clean_steps(steps: tuple[float, ...], fallback: tuple[float, ...], name: str) -> tuple[float, ...]:
    cleaned = tuple(float(s) for s in steps if math.isfinite(s) and 0 < s <= MAX_STEP_MINUTES)
    if len(cleaned) != len(steps):
        logger.warning(f"Deck config: dropped out-of-range {name} {list(steps)}")
    if not cleaned:
        logger.warning(f"Deck config: {name} empty, using {list(fallback)}")
        return fallback
    return cleaned


class DeckConfig(BaseModel):
    """Per-deck scheduling parameters (steps in minutes, intervals in days)."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    # Daily limits
    new_cards_per_day: int = Field(default=20, ge=0)
    max_reviews_per_day: int = Field(default=200, ge=1)

    # Steps
    learning_steps: tuple[float, ...] = DEFAULT_LEARNING_STEPS
    relearning_steps: tuple[float, ...] = DEFAULT_RELEARNING_STEPS

    # Graduation
    graduating_interval: int = Field(default=1, ge=1, le=MAX_INTERVAL_DAYS)
    easy_interval: int = Field(default=4, ge=1, le=MAX_INTERVAL_DAYS)
    maximum_interval: int = Field(default=MAX_INTERVAL_DAYS, ge=1, le=MAX_INTERVAL_DAYS)

    # Ease
    starting_ease: float = Field(default=2.5, gt=0, le=MAX_EASE)
    min_ease: float = Field(default=1.3, gt=0, le=MAX_EASE)
    max_ease: float = Field(default=3.5, gt=0, le=MAX_EASE)
    easy_bonus: float = Field(default=0.15, ge=0, le=MAX_EASE)
    hard_penalty: float = Field(default=0.15, ge=0, le=MAX_EASE)
    lapse_penalty: float = Field(default=0.2, ge=0, le=MAX_EASE)

    # Interval multipliers
    hard_interval_multiplier: float = Field(default=1.2, gt=0, le=MAX_MULTIPLIER)
    easy_interval_bonus: float = Field(default=1.3, gt=0, le=MAX_MULTIPLIER)

    # Lapses
    leech_threshold: int = Field(default=8, ge=1)
    relearn_interval_fraction: float = Field(default=0.25, gt=0, le=1)
    relearn_easy_fraction: float = Field(default=0.5, gt=0, le=1)

    @field_validator("learning_steps")
    @classmethod
    def _learning_steps(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        return _clean_steps(v, FALLBACK_LEARNING_STEPS, "learning_steps")

    @field_validator("relearning_steps")
    @classmethod
    def _relearning_steps(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        return _clean_steps(v, FALLBACK_RELEARNING_STEPS, "relearning_steps")

    def clamp_ease(self, ease: float) -> float:
        return min(self.max_ease, max(self.min_ease, ease))


def resolve_deck_config(raw: DeckConfig | Mapping[str, Any] | None = None) -> DeckConfig:
    """
    Build the effective DeckConfig for a session.

    Invalid fields are replaced with defaults and reported as configuration
    warnings; the call itself never fails.
    """
    if isinstance(raw, DeckConfig):
        return _fix_ease_bounds(raw)
    values = dict(raw or {})

    try:
        config = DeckConfig(**values)
    except PydanticValidationError as e:
        bad_fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        for name in sorted(bad_fields):
            logger.warning(f"Deck config: invalid {name}={values.get(name)!r}, using default")
            values.pop(name, None)
        try:
            config = DeckConfig(**values)
        except PydanticValidationError as e2:
            logger.warning(f"Deck config unusable, falling back to defaults: {e2}")
            config = DeckConfig()

    return _fix_ease_bounds(config)


def _fix_ease_bounds(config: DeckConfig) -> DeckConfig:
    defaults = DeckConfig()
    if config.min_ease > config.max_ease:
        logger.warning(
            f"Deck config: min_ease {config.min_ease} > max_ease {config.max_ease}, using defaults"
        )
        config = config.model_copy(update={"min_ease": defaults.min_ease, "max_ease": defaults.max_ease})
    if not config.min_ease <= config.starting_ease <= config.max_ease:
        clamped = config.clamp_ease(config.starting_ease)
        logger.warning(f"Deck config: starting_ease {config.starting_ease} clamped to {clamped}")
        config = config.model_copy(update={"starting_ease": clamped})
    return config


# =============================================================================
# Presets
# =============================================================================

PRESETS: dict[str, dict[str, Any]] = {
    "conservative": {
        "learning_steps": (1.0, 10.0, 1440.0),
        "graduating_interval": 3,
        "easy_interval": 7,
        "new_cards_per_day": 15,
        "starting_ease": 2.3,
    },
    "balanced": {},
    "aggressive": {
        "learning_steps": (10.0,),
        "graduating_interval": 1,
        "easy_interval": 3,
        "new_cards_per_day": 30,
        "starting_ease": 2.7,
    },
    "language": {
        "learning_steps": (1.0, 10.0, 60.0, 1440.0),
        "graduating_interval": 2,
        "easy_interval": 5,
        "new_cards_per_day": 25,
        "leech_threshold": 6,
    },
}

PRESET_DESCRIPTIONS = {
    "conservative": "Longer learning phases, more frequent reviews",
    "balanced": "Standard settings for most learners",
    "aggressive": "Faster progression, more new cards",
    "language": "Vocabulary acquisition, more forgiving leech threshold",
}


def get_preset(name: str) -> DeckConfig:
    """Return the DeckConfig for a named preset (unknown names give the defaults)."""
    overrides = PRESETS.get(name.strip().lower())
    if overrides is None:
        logger.warning(f"Unknown deck preset '{name}', using balanced")
        overrides = {}
    return resolve_deck_config(overrides)


def optimize_config(
    config: DeckConfig,
    average_retention: float,
    lapse_rate: float,
) -> DeckConfig:
    """
    Nudge a config toward the learner's observed performance.

    Low retention (< 0.8) lengthens graduation and lowers starting ease,
    very high retention (> 0.95) does the opposite. A lapse rate above 0.3
    adds a one-hour learning step when fewer than three steps exist.
    """
    updates: dict[str, Any] = {}

    if average_retention < 0.8:
        updates["graduating_interval"] = min(config.graduating_interval + 1, 3)
        updates["starting_ease"] = max(config.starting_ease - 0.1, 2.0)
    elif average_retention > 0.95:
        updates["graduating_interval"] = max(config.graduating_interval - 1, 1)
        updates["starting_ease"] = min(config.starting_ease + 0.1, 3.0)

    if lapse_rate > 0.3 and len(config.learning_steps) < 3:
        updates["learning_steps"] = config.learning_steps + (60.0,)

    if not updates:
        return config
    return resolve_deck_config({**config.model_dump(), **updates})

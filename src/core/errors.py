"""
Error types shared across the scheduler, fatigue and profile layers.

Only caller mistakes raise. Missing or corrupt stored data and malformed
deck settings are recovered from with a logged warning instead.
"""

from __future__ import annotations


class PacedError(Exception):
    """Base class for errors raised by paced-recall."""

    pass


class ValidationError(PacedError, ValueError):
    """A rating event, card, rating or state that cannot be processed."""

    pass


class DuplicateSubmissionError(PacedError):
    """A second rating arrived for a card whose grade is still in flight."""

    def __init__(self, card_id: str):
        super().__init__(f"Rating for card {card_id} is already being processed")
        self.card_id = card_id

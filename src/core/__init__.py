"""
Core Module - Shared error types.

Components:
- errors: PacedError hierarchy (ValidationError, DuplicateSubmissionError)
"""

from src.core.errors import DuplicateSubmissionError, PacedError, ValidationError

__all__ = [
    "PacedError",
    "ValidationError",
    "DuplicateSubmissionError",
]

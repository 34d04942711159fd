"""
Session Module - Immutable per-step study session state.

Components:
- state: SessionContext, SessionState, StepResult, SessionSummary
- engine: SessionEngine (rate, break, resume, finish)
"""

from src.session.engine import SessionEngine
from src.session.state import SessionContext, SessionState, SessionSummary, StepResult

__all__ = [
    "SessionContext",
    "SessionEngine",
    "SessionState",
    "SessionSummary",
    "StepResult",
]

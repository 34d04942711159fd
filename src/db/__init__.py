"""
Database Module - SQLAlchemy study store.

Components:
- database: engine cache, init_db, session_scope
- models: ORM tables (cards, deck configs, profiles, baselines, breaks, logs)
- store: StudyStore mapping rows to core values
"""

from src.db.database import get_engine, get_session_factory, init_db, session_scope
from src.db.store import StudyStore

__all__ = [
    "StudyStore",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]

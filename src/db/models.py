"""
Study Store Models.

SQLAlchemy models for the study store:
- Cards (scheduling fields plus the opaque front/back text)
- Deck settings
- Learner profiles and response-time baselines (JSON payloads)
- Break history and per-session study logs
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CardRecord(Base):
    """One study card and its scheduling state."""

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    deck: Mapped[str] = mapped_column(String(100), default="default", index=True)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty_bucket: Mapped[str | None] = mapped_column(String(50))

    # Scheduling
    state: Mapped[str] = mapped_column(String(20), default="new")
    learning_step: Mapped[int] = mapped_column(Integer, default=0)
    interval: Mapped[int] = mapped_column(Integer, default=0)  # days in review, minutes in steps
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    lapse_count: Mapped[int] = mapped_column(Integer, default=0)
    is_leech: Mapped[bool] = mapped_column(Boolean, default=False)
    pre_lapse_interval: Mapped[int] = mapped_column(Integer, default=0)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    next_due: Mapped[datetime | None] = mapped_column()
    last_reviewed: Mapped[datetime | None] = mapped_column()
    introduced_at: Mapped[datetime | None] = mapped_column()  # first grade of a new card

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    __table_args__ = (Index("ix_cards_deck_next_due", "deck", "next_due"),)


class DeckSettingsRecord(Base):
    """Stored DeckConfig values for a deck (resolved leniently on load)."""

    __tablename__ = "deck_configs"

    deck: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())


class LearningProfileRecord(Base):
    """Serialized UserLearningProfile."""

    __tablename__ = "learning_profiles"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())


class ResponseTimeBaselineRecord(Base):
    """Welford statistics per difficulty bucket for a learner."""

    __tablename__ = "response_time_baselines"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())


class StudyBreakRecord(Base):
    """A suggested, skipped, or manual break."""

    __tablename__ = "study_breaks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    break_trigger: Mapped[str] = mapped_column(String(30))
    break_taken: Mapped[bool] = mapped_column(Boolean, default=False)
    planned_duration_minutes: Mapped[int] = mapped_column(Integer, default=0)
    break_duration_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    pre_break_fatigue_score: Mapped[float] = mapped_column(Float, default=0.0)
    post_break_fatigue_score: Mapped[float | None] = mapped_column(Float)
    effectiveness_score: Mapped[float] = mapped_column(Float, default=0.0)
    interrupted: Mapped[bool] = mapped_column(Boolean, default=False)
    break_started_at: Mapped[datetime] = mapped_column()
    break_ended_at: Mapped[datetime | None] = mapped_column()


class StudyLogRecord(Base):
    """Summary of one study session."""

    __tablename__ = "study_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    session_date: Mapped[datetime] = mapped_column(index=True)
    cards_studied: Mapped[int] = mapped_column(Integer, default=0)
    time_spent_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    retention_rate: Mapped[float] = mapped_column(Float, default=0.0)
    fatigue_score: Mapped[float] = mapped_column(Float, default=0.0)
    performance_trend: Mapped[str] = mapped_column(String(20), default="stable")
    rating_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    summary: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

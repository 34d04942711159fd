"""
Study Store.

Maps database rows to the core value types (Card, profiles, baselines,
break events, session summaries).

Loads are lenient: a missing or corrupt profile/baseline is reported as a
warning and the caller starts from defaults. Session writes that fail are
logged and never interrupt studying.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from src.burnout.baseline import BaselineConfig, ResponseTimeBaseline
from src.burnout.breaks import BreakEvent
from src.core.errors import ValidationError
from src.session.state import SessionSummary
from src.srs.models import Card, CardState

from .database import get_session_factory, session_scope
from .models import (
    CardRecord,
    DeckSettingsRecord,
    LearningProfileRecord,
    ResponseTimeBaselineRecord,
    StudyBreakRecord,
    StudyLogRecord,
)


def _to_card(row: CardRecord) -> Card:
    return Card(
        id=row.id,
        state=CardState.parse(row.state),
        learning_step=row.learning_step or 0,
        interval=row.interval or 0,
        ease_factor=row.ease_factor if row.ease_factor is not None else 2.5,
        lapse_count=row.lapse_count or 0,
        is_leech=bool(row.is_leech),
        next_due=row.next_due,
        last_reviewed=row.last_reviewed,
        review_count=row.review_count or 0,
        created_at=row.created_at or datetime.now(),
        pre_lapse_interval=row.pre_lapse_interval or 0,
    )


class StudyStore:
    """Persistence for one study database."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self.session_factory = session_factory or get_session_factory()

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    def add_card(
        self,
        front: str,
        back: str,
        deck: str = "default",
        difficulty_bucket: str | None = None,
        now: datetime | None = None,
    ) -> Card:
        """Create a new card and return its scheduling record."""
        if not front.strip() or not back.strip():
            raise ValidationError("Card front and back must not be empty")
        now = now or datetime.now()
        row = CardRecord(
            id=str(uuid.uuid4()),
            deck=deck,
            front=front.strip(),
            back=back.strip(),
            difficulty_bucket=difficulty_bucket,
            state=CardState.NEW.value,
            created_at=now,
            updated_at=now,
        )
        with session_scope(self.session_factory) as session:
            session.add(row)
            session.flush()
            card = _to_card(row)
        logger.debug(f"Added card {card.id} to deck '{deck}'")
        return card

    def list_cards(self, deck: str | None = None) -> list[Card]:
        with session_scope(self.session_factory) as session:
            stmt = select(CardRecord)
            if deck:
                stmt = stmt.where(CardRecord.deck == deck)
            return [_to_card(row) for row in session.scalars(stmt)]

    def get_card_content(self, card_id: str) -> dict[str, Any] | None:
        """Front, back and difficulty bucket for display."""
        with session_scope(self.session_factory) as session:
            row = session.get(CardRecord, card_id)
            if row is None:
                return None
            return {"front": row.front, "back": row.back, "difficulty_bucket": row.difficulty_bucket}

    def save_card(self, card: Card) -> bool:
        """
        Persist a graded card.

        Returns:
            True if saved; False if the write failed (logged, not raised)
        """
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(CardRecord, card.id)
                if row is None:
                    raise ValidationError(f"Card not found: {card.id}")
                if row.state == CardState.NEW.value and card.state != CardState.NEW:
                    row.introduced_at = card.last_reviewed or datetime.now()
                row.state = CardState.parse(card.state).value
                row.learning_step = card.learning_step
                row.interval = card.interval
                row.ease_factor = card.ease_factor
                row.lapse_count = card.lapse_count
                row.is_leech = card.is_leech
                row.pre_lapse_interval = card.pre_lapse_interval
                row.review_count = card.review_count
                row.next_due = card.next_due
                row.last_reviewed = card.last_reviewed
            return True
        except Exception as e:
            logger.warning(f"Could not save card {card.id}: {e}")
            return False

    def new_cards_introduced_on(self, day: datetime | None = None, deck: str | None = None) -> int:
        """New cards whose first grade happened on the given day."""
        start = datetime.combine((day or datetime.now()).date(), time.min)
        end = datetime.combine(start.date(), time.max)
        with session_scope(self.session_factory) as session:
            stmt = select(func.count()).select_from(CardRecord).where(
                CardRecord.introduced_at >= start, CardRecord.introduced_at <= end
            )
            if deck:
                stmt = stmt.where(CardRecord.deck == deck)
            return session.scalar(stmt) or 0

    # -------------------------------------------------------------------------
    # Deck settings
    # -------------------------------------------------------------------------

    def load_deck_config(self, deck: str = "default") -> dict[str, Any]:
        """Raw stored settings (resolved by resolve_deck_config at session start)."""
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(DeckSettingsRecord, deck)
                return dict(row.payload or {}) if row else {}
        except Exception as e:
            logger.warning(f"Could not load deck config for '{deck}': {e}")
            return {}

    def save_deck_config(self, deck: str, payload: dict[str, Any]) -> None:
        with session_scope(self.session_factory) as session:
            row = session.get(DeckSettingsRecord, deck)
            if row is None:
                session.add(DeckSettingsRecord(deck=deck, payload=payload))
            else:
                row.payload = payload

    # -------------------------------------------------------------------------
    # Profiles (ProfileStore protocol)
    # -------------------------------------------------------------------------

    def load_profile(self, user_id: str) -> dict | None:
        with session_scope(self.session_factory) as session:
            row = session.get(LearningProfileRecord, user_id)
            return dict(row.payload) if row and row.payload is not None else None

    def save_profile(self, user_id: str, data: dict) -> None:
        with session_scope(self.session_factory) as session:
            row = session.get(LearningProfileRecord, user_id)
            if row is None:
                session.add(LearningProfileRecord(user_id=user_id, payload=data))
            else:
                row.payload = data

    # -------------------------------------------------------------------------
    # Baselines
    # -------------------------------------------------------------------------

    def load_baseline(self, user_id: str, config: BaselineConfig | None = None) -> ResponseTimeBaseline:
        """Stored baseline, or an empty one if missing or corrupt."""
        config = config or BaselineConfig()
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(ResponseTimeBaselineRecord, user_id)
                payload = dict(row.payload) if row and row.payload else None
        except Exception as e:
            logger.warning(f"Could not load baseline for {user_id}: {e}")
            return ResponseTimeBaseline(config=config)

        if payload is None:
            return ResponseTimeBaseline(config=config)
        try:
            return ResponseTimeBaseline.from_dict(payload, config)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt baseline for {user_id}, starting fresh: {e}")
            return ResponseTimeBaseline(config=config)

    def save_baseline(self, user_id: str, baseline: ResponseTimeBaseline) -> None:
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(ResponseTimeBaselineRecord, user_id)
                if row is None:
                    row = ResponseTimeBaselineRecord(user_id=user_id)
                    session.add(row)
                row.payload = baseline.to_dict()
                row.sample_count = baseline.sample_count
        except Exception as e:
            logger.warning(f"Could not save baseline for {user_id}: {e}")

    # -------------------------------------------------------------------------
    # Breaks and study logs
    # -------------------------------------------------------------------------

    def log_break(self, user_id: str, event: BreakEvent) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    StudyBreakRecord(
                        user_id=user_id,
                        break_trigger=event.trigger.value,
                        break_taken=event.taken,
                        planned_duration_minutes=event.planned_duration,
                        break_duration_minutes=round(event.actual_duration, 2),
                        pre_break_fatigue_score=event.pre_fatigue,
                        post_break_fatigue_score=event.post_fatigue,
                        effectiveness_score=round(event.effectiveness, 1),
                        interrupted=event.interrupted,
                        break_started_at=event.started_at,
                        break_ended_at=event.ended_at,
                    )
                )
        except Exception as e:
            logger.warning(f"Could not log break: {e}")

    def list_breaks(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        with session_scope(self.session_factory) as session:
            rows = session.scalars(
                select(StudyBreakRecord)
                .where(StudyBreakRecord.user_id == user_id)
                .order_by(StudyBreakRecord.break_started_at.desc())
                .limit(limit)
            )
            return [
                {
                    "trigger": row.break_trigger,
                    "taken": row.break_taken,
                    "planned": row.planned_duration_minutes,
                    "actual": row.break_duration_minutes,
                    "pre_fatigue": row.pre_break_fatigue_score,
                    "post_fatigue": row.post_break_fatigue_score,
                    "effectiveness": row.effectiveness_score,
                    "interrupted": row.interrupted,
                    "started_at": row.break_started_at,
                }
                for row in rows
            ]

    def log_session(self, summary: SessionSummary) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    StudyLogRecord(
                        user_id=summary.user_id,
                        session_date=summary.started_at,
                        cards_studied=summary.cards_studied,
                        time_spent_seconds=summary.time_spent_seconds,
                        retention_rate=summary.retention_rate,
                        fatigue_score=summary.fatigue_score,
                        performance_trend=summary.performance_trend.value,
                        rating_breakdown=dict(summary.rating_breakdown),
                        summary=summary.to_dict(),
                    )
                )
        except Exception as e:
            logger.warning(f"Could not save session: {e}")

    def cards_studied_on(self, user_id: str, day: datetime | None = None) -> int:
        start = datetime.combine((day or datetime.now()).date(), time.min)
        end = datetime.combine(start.date(), time.max)
        with session_scope(self.session_factory) as session:
            total = session.scalar(
                select(func.sum(StudyLogRecord.cards_studied)).where(
                    StudyLogRecord.user_id == user_id,
                    StudyLogRecord.session_date >= start,
                    StudyLogRecord.session_date <= end,
                )
            )
            return int(total or 0)

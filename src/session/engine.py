"""
Study Session Engine.

Threads each rating through the components in order:

    scheduler -> baseline -> fatigue (every Nth rating) -> break advisor

Every call takes a SessionState and returns a new one. Persistence is the
caller's job; the in-flight guard stays set for a card until the caller
releases it after saving (or failing to save) the graded card.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from statistics import fmean

from loguru import logger

from src.burnout.baseline import ResponseTimeBaseline
from src.burnout.breaks import AdvisorState, BreakAdvisor, BreakEvent, BreakTrigger
from src.burnout.fatigue import (
    RATING_SCORES,
    FatigueIndicators,
    FatigueMonitor,
    TrendDirection,
    analyze_trend,
)
from src.core.errors import DuplicateSubmissionError, ValidationError
from src.srs.models import Card, CardState, Rating, RatingEvent
from src.srs.queue import build_queue
from src.srs.scheduler import CardScheduler

from .state import SessionContext, SessionState, SessionSummary, StepResult

# Learning cards due within this horizon are shown again in the same session
REQUEUE_HORIZON = timedelta(minutes=20)


class SessionEngine:
    """Drives one study session for one learner."""

    def __init__(
        self,
        context: SessionContext,
        scheduler: CardScheduler | None = None,
        monitor: FatigueMonitor | None = None,
        advisor: BreakAdvisor | None = None,
    ):
        self.context = context
        self.scheduler = scheduler or CardScheduler(context.deck_config)
        self.monitor = monitor or FatigueMonitor(context.fatigue_config)
        self.advisor = advisor or BreakAdvisor(context.advisor_config)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(
        self,
        cards: Iterable[Card],
        baseline: ResponseTimeBaseline | None = None,
        now: datetime | None = None,
        new_cards_studied_today: int = 0,
        limit: int | None = None,
    ) -> SessionState:
        """
        Build the queue and the initial state.

        Args:
            cards: Every card in the deck
            baseline: The learner's stored baseline (cold start if None)
            now: Session start time
            new_cards_studied_today: New cards already introduced today
            limit: Optional cap on the number of queued cards
        """
        now = now or datetime.now()
        cards = list(cards)
        queue = build_queue(cards, self.context.deck_config, now, new_cards_studied_today)
        if limit is not None:
            queue = queue[: max(0, limit)]

        baseline = baseline or ResponseTimeBaseline(config=self.context.baseline_config)
        logger.info(f"Session started for {self.context.user_id}: {len(queue)} cards queued")

        return SessionState(
            started_at=now,
            cards={card.id: card for card in cards},
            queue=tuple(card.id for card in queue),
            baseline=baseline,
            reference_baseline=baseline.effective_baseline(),
            advisor=AdvisorState(session_started_at=now),
        )

    def submit_rating(self, state: SessionState, event: RatingEvent) -> StepResult:
        """
        Grade a card and update baseline, fatigue and break advice.

        A rating that arrives during a break ends the break first, so an early
        return is logged as an interruption.

        Raises:
            DuplicateSubmissionError: the card's previous rating is still in flight
            ValidationError: unknown card or invalid rating
        """
        if event.card_id in state.in_flight:
            raise DuplicateSubmissionError(event.card_id)
        card = state.cards.get(event.card_id)
        if card is None:
            raise ValidationError(f"Card not found: {event.card_id}")

        ended_break = None
        if state.advisor.on_break:
            logger.info("Rating submitted during a break, ending the break")
            post_fatigue = self.current_indicators(state, event.timestamp).overall_fatigue_score
            state, ended_break = self.resume(state, post_fatigue, event.timestamp)

        result = self.scheduler.grade(card, event, self.context.deck_config)
        now = event.timestamp

        cards = dict(state.cards)
        cards[card.id] = result.card
        queue = self._advance_queue(state.queue, result.card, now)
        baseline = state.baseline.observe(event.response_time_ms, event.difficulty_bucket)

        state = replace(
            state,
            cards=cards,
            queue=queue,
            baseline=baseline,
            recent_events=state.recent_events + (event,),
            all_events=state.all_events + (event,),
            in_flight=state.in_flight | {card.id},
            graduated=state.graduated + int(result.transitions.graduated),
            lapsed=state.lapsed + int(result.transitions.lapsed),
            new_leeches=state.new_leeches + int(result.transitions.became_leech),
        )

        if state.cards_studied % self.context.fatigue_check_every == 0:
            state = self._refresh_fatigue(state, now)

        suggestion = None
        if state.pending_suggestion is None:
            suggestion = self.advisor.evaluate(state.indicators, self.context.profile, state.advisor, now)
            if suggestion is not None:
                state = replace(
                    state,
                    advisor=self.advisor.issue(state.advisor, suggestion),
                    pending_suggestion=suggestion,
                )

        return StepResult(state=state, grade=result, suggestion=suggestion, ended_break=ended_break)

    def release(self, state: SessionState, card_id: str) -> SessionState:
        """Clear the in-flight guard once the graded card has been persisted (or failed to)."""
        return replace(state, in_flight=state.in_flight - {card_id})

    def _advance_queue(self, queue: tuple[str, ...], card: Card, now: datetime) -> tuple[str, ...]:
        remaining = tuple(cid for cid in queue if cid != card.id)
        in_steps = card.state in (CardState.LEARNING, CardState.RELEARNING)
        if in_steps and card.next_due is not None and card.next_due <= now + REQUEUE_HORIZON:
            remaining = remaining + (card.id,)
        return remaining

    def _refresh_fatigue(self, state: SessionState, now: datetime) -> SessionState:
        # The reference stays fixed once reliable; until then adopt the live baseline
        if not state.reference_baseline.reliable:
            live = state.baseline.effective_baseline()
            if live.reliable:
                logger.info(f"Response-time baseline reliable after {live.sample_count} samples")
                state = replace(state, reference_baseline=live)

        indicators = self.current_indicators(state, now)
        onset = state.fatigue_onset_minute
        if onset is None and indicators.overall_fatigue_score >= self.context.profile.fatigue_threshold:
            onset = round(state.advisor.elapsed_minutes(now), 1)
            logger.debug(f"Fatigue threshold first crossed at {onset} minutes")
        return replace(
            state,
            indicators=indicators,
            fatigue_onset_minute=onset,
            peak_fatigue=max(state.peak_fatigue, indicators.overall_fatigue_score),
        )

    def current_indicators(self, state: SessionState, now: datetime) -> FatigueIndicators:
        """Fatigue for the current stretch of study (since the last break)."""
        return self.monitor.update_indicators(
            state.recent_events,
            state.reference_baseline,
            elapsed_minutes=state.advisor.minutes_since_break(now),
            typical_session_minutes=self.context.profile.average_session_length,
        )

    # -------------------------------------------------------------------------
    # Breaks
    # -------------------------------------------------------------------------

    def dismiss_break(self, state: SessionState, now: datetime | None = None) -> tuple[SessionState, BreakEvent | None]:
        """Skip the pending suggestion (logged with taken=False)."""
        suggestion = state.pending_suggestion
        if suggestion is None:
            return state, None
        now = now or datetime.now()
        advisor, event = self.advisor.dismiss(
            state.advisor, suggestion, state.indicators.overall_fatigue_score, now
        )
        state = replace(
            state,
            advisor=advisor,
            pending_suggestion=None,
            break_events=state.break_events + (event,),
        )
        return state, event

    def take_break(
        self,
        state: SessionState,
        now: datetime | None = None,
        planned_minutes: int | None = None,
    ) -> SessionState:
        """Start the pending suggested break, or a manual break if none is pending."""
        now = now or datetime.now()
        suggestion = state.pending_suggestion
        trigger = suggestion.trigger if suggestion else BreakTrigger.MANUAL
        if planned_minutes is None:
            planned_minutes = suggestion.suggested_duration if suggestion else self.context.profile.break_duration

        pre_fatigue = self.current_indicators(state, now).overall_fatigue_score
        advisor = self.advisor.start_break(state.advisor, trigger, planned_minutes, pre_fatigue, now)
        logger.info(f"Break started ({trigger.value}, {planned_minutes} min, fatigue {pre_fatigue:.0f})")
        return replace(state, advisor=advisor, pending_suggestion=None)

    def resume(
        self,
        state: SessionState,
        post_fatigue: float,
        now: datetime | None = None,
    ) -> tuple[SessionState, BreakEvent | None]:
        """
        End the current break and start a fresh fatigue window.

        Args:
            post_fatigue: Fatigue score measured after the break (0-100)
        """
        active = state.advisor.active_break
        now = now or datetime.now()
        advisor, event = self.advisor.resume(state.advisor, post_fatigue, now)
        if event is None or active is None:
            return state, None

        state = replace(
            state,
            advisor=advisor,
            recent_events=(),
            indicators=FatigueIndicators(baseline_reliable=state.reference_baseline.reliable),
            break_events=state.break_events + (event,),
            break_seconds=state.break_seconds + (now - active.started_at).total_seconds(),
        )
        return state, event

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    def finish(self, state: SessionState, now: datetime | None = None) -> SessionSummary:
        """Summarize the session for the study log and the profile manager."""
        now = now or (state.all_events[-1].timestamp if state.all_events else datetime.now())
        studied = state.cards_studied
        breakdown = state.rating_breakdown()
        recalled = breakdown[Rating.GOOD.value] + breakdown[Rating.EASY.value]

        if studied >= 2:
            scores = [RATING_SCORES[Rating.parse(e.rating)] for e in state.all_events]
            trend = analyze_trend(scores, higher_is_worse=False).direction
        else:
            trend = TrendDirection.STABLE

        active_seconds = max(0.0, (now - state.started_at).total_seconds() - state.break_seconds)
        summary = SessionSummary(
            user_id=self.context.user_id,
            cards_studied=studied,
            time_spent_seconds=active_seconds,
            rating_breakdown=breakdown,
            retention_rate=(recalled / studied * 100) if studied else 0.0,
            fatigue_score=state.indicators.overall_fatigue_score,
            performance_trend=trend,
            started_at=state.started_at,
            ended_at=now,
            average_response_ms=fmean(e.response_time_ms for e in state.all_events) if studied else 0.0,
            peak_fatigue=state.peak_fatigue,
            fatigue_onset_minute=state.fatigue_onset_minute,
            graduated=state.graduated,
            lapsed=state.lapsed,
            new_leeches=state.new_leeches,
            breaks_taken=state.advisor.breaks_taken,
            break_suggestions=len(state.advisor.issued),
        )
        logger.info(
            f"Session finished: {studied} cards, {summary.retention_rate:.0f}% retention, "
            f"fatigue {summary.fatigue_score:.0f}"
        )
        return summary

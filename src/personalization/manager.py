"""
Personalization Profile Manager.

Folds session summaries into a learner's profile and turns the profile into
recommendations for the next session.

Adaptation rules:
- Averages use an exponential moving average whose smoothing factor is
  max(ema_alpha, 1 / (sessions + 1)), so early sessions quickly replace the
  cold-start defaults and later sessions still carry at least ``ema_alpha``
- The fatigue threshold drops by 2 after a fatigued low-retention session
  and rises by 1 after a fresh high-retention one, bounded to 50..80
- The optimal study hour is the hour with the best mean retention among
  hours with at least ``min_hour_samples`` sessions
- Milestones are scaled by study velocity and extended by 500 once passed
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from .profile import (
    COLD_START_STUDY_HOURS,
    FATIGUE_THRESHOLD_MAX,
    FATIGUE_THRESHOLD_MIN,
    MILESTONE_INCREMENT,
    HourStats,
    Recommendations,
    UserLearningProfile,
    format_hour,
)

if TYPE_CHECKING:
    from src.session.state import SessionSummary

BASE_MILESTONES = (25, 75, 150, 300, 500, 750, 1000, 1500, 2000)
FAST_VELOCITY = 120.0  # cards per hour
SLOW_VELOCITY = 30.0
MAX_FATIGUE_ONSETS = 10
CONSISTENCY_DAYS = 30
REFRESH_AFTER_DAYS = 7


class ProfileStore(Protocol):
    """Where profiles are persisted (see src.db.store.StudyStore)."""

    def load_profile(self, user_id: str) -> dict | None: ...

    def save_profile(self, user_id: str, data: dict) -> None: ...


# =============================================================================
# Derived settings
# =============================================================================


def optimal_break_interval(average_session_length: float, fatigue_score: float | None = None) -> int:
    """80% of the usual session length (15-45 min), shortened when sessions end fatigued."""
    interval = max(15.0, min(45.0, average_session_length * 0.8))
    if fatigue_score is not None:
        if fatigue_score > 70:
            interval = max(15.0, interval - 5)
        elif fatigue_score < 50:
            interval = min(45.0, interval + 5)
    return round(interval)


def optimal_break_duration(average_session_length: float) -> int:
    if average_session_length < 20:
        return 5
    if average_session_length < 30:
        return 8
    if average_session_length < 45:
        return 12
    return 15


def celebration_frequency(average_cards_per_session: float, retention: float) -> int:
    """Celebrate more often for beginners and learners who are struggling."""
    if average_cards_per_session < 10 or retention < 0.7:
        return 3
    if average_cards_per_session < 20 or retention < 0.8:
        return 4
    if average_cards_per_session < 30 or retention < 0.9:
        return 5
    return 7


def personalized_milestones(total_cards: int, study_velocity: float) -> list[int]:
    """Base milestone ladder scaled by pace, extended past the current total."""
    if study_velocity > FAST_VELOCITY:
        milestones = [round(m * 1.2) for m in BASE_MILESTONES]
    elif study_velocity < SLOW_VELOCITY:
        milestones = [round(m * 0.7) for m in BASE_MILESTONES]
    else:
        milestones = list(BASE_MILESTONES)
    return extend_milestones(milestones, total_cards)


def extend_milestones(milestones: list[int], mastered: int) -> list[int]:
    milestones = sorted(milestones) or [MILESTONE_INCREMENT]
    while milestones[-1] <= mastered:
        milestones.append(milestones[-1] + MILESTONE_INCREMENT)
    return milestones


def _ema(current: float, observed: float, alpha: float) -> float:
    return (1 - alpha) * current + alpha * observed


# =============================================================================
# Profile Manager
# =============================================================================


class ProfileManager:
    """
    Loads, adapts and saves learner profiles.

    The store is optional; without one profiles live only in memory.
    Storage failures are logged and never interrupt the learner.
    """

    def __init__(
        self,
        store: ProfileStore | None = None,
        ema_alpha: float = 0.3,
        min_hour_samples: int = 3,
    ):
        self.store = store
        self.ema_alpha = ema_alpha
        self.min_hour_samples = min_hour_samples

    def initialize_profile(self, user_id: str) -> UserLearningProfile:
        """Stored profile for the user, or cold-start defaults if none is usable."""
        if self.store is None:
            return UserLearningProfile(user_id=user_id)

        try:
            data = self.store.load_profile(user_id)
        except Exception as e:
            logger.warning(f"Could not load profile for {user_id}: {e}")
            return UserLearningProfile(user_id=user_id)

        if data is None:
            logger.info(f"No profile for {user_id}, starting from defaults")
            return UserLearningProfile(user_id=user_id)

        try:
            return UserLearningProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt profile for {user_id}, starting from defaults: {e}")
            return UserLearningProfile(user_id=user_id)

    def update_profile(
        self,
        summary: SessionSummary,
        profile: UserLearningProfile | None = None,
    ) -> UserLearningProfile:
        """
        Blend one finished session into the profile and save it.

        Args:
            summary: The session that just ended
            profile: Current profile (loaded from the store if None)

        Returns:
            The updated profile (returned even if saving fails)
        """
        profile = profile or self.initialize_profile(summary.user_id)
        if summary.cards_studied <= 0:
            logger.debug("Empty session, profile unchanged")
            return profile

        alpha = max(self.ema_alpha, 1 / (profile.session_count + 1))
        minutes = summary.time_spent_seconds / 60
        retention = summary.retention_rate / 100

        average_session_length = _ema(profile.average_session_length, minutes, alpha)
        average_cards = _ema(profile.average_cards_per_session, summary.cards_studied, alpha)
        average_retention = _ema(profile.average_retention_rate, retention, alpha)
        velocity = profile.study_velocity
        if minutes > 0:
            velocity = _ema(velocity, summary.cards_studied / (minutes / 60), alpha)

        hour = summary.started_at.hour
        hourly = dict(profile.hourly_retention)
        hourly[hour] = hourly.get(hour, HourStats()).add(retention)

        threshold = profile.fatigue_threshold
        if summary.fatigue_score > threshold and retention < 0.7:
            threshold = max(FATIGUE_THRESHOLD_MIN, threshold - 2)
        elif summary.fatigue_score < threshold and retention > 0.85:
            threshold = min(FATIGUE_THRESHOLD_MAX, threshold + 1)

        onsets = list(profile.fatigue_onsets)
        if summary.fatigue_onset_minute is not None:
            onsets = (onsets + [summary.fatigue_onset_minute])[-MAX_FATIGUE_ONSETS:]

        study_days = self._update_study_days(profile.study_days, summary.started_at.date())
        total = profile.total_cards_studied + summary.cards_studied
        target_tolerance = min(1.0, average_retention * 1.2) if average_retention > 0.8 else 0.6

        updated = replace(
            profile,
            total_cards_studied=total,
            average_session_length=average_session_length,
            average_cards_per_session=average_cards,
            average_retention_rate=average_retention,
            preferred_study_hours=self._preferred_hours(hourly, profile.preferred_study_hours),
            fatigue_threshold=threshold,
            break_interval=optimal_break_interval(average_session_length, summary.fatigue_score),
            break_duration=optimal_break_duration(average_session_length),
            celebration_frequency=celebration_frequency(average_cards, average_retention),
            milestone_progression=personalized_milestones(total, velocity),
            study_velocity=velocity,
            consistency_score=min(1.0, len(study_days) / CONSISTENCY_DAYS),
            difficulty_tolerance=_ema(profile.difficulty_tolerance, target_tolerance, alpha),
            session_count=profile.session_count + 1,
            hourly_retention=hourly,
            fatigue_onsets=onsets,
            study_days=study_days,
            last_updated=summary.ended_at or datetime.now(),
        )

        self._save(updated)
        return updated

    def _update_study_days(self, days: list[str], today: date) -> list[str]:
        cutoff = today - timedelta(days=CONSISTENCY_DAYS - 1)
        kept = {d for d in days if _parse_day(d) is not None and _parse_day(d) >= cutoff}
        kept.add(today.isoformat())
        return sorted(kept)

    def _preferred_hours(self, hourly: dict[int, HourStats], current: list[int]) -> list[int]:
        """Up to three hours, most-studied first."""
        if not hourly:
            return list(current)
        ranked = sorted(hourly.items(), key=lambda item: (-item[1].count, -item[1].mean, item[0]))
        return [hour for hour, _ in ranked[:3]]

    def _save(self, profile: UserLearningProfile) -> None:
        if self.store is None:
            return
        try:
            self.store.save_profile(profile.user_id, profile.to_dict())
            logger.info(f"Saved profile for {profile.user_id} ({profile.session_count} sessions)")
        except Exception as e:
            logger.warning(f"Could not save profile for {profile.user_id}: {e}")

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    def optimal_study_hour(self, profile: UserLearningProfile) -> int:
        """Hour with the best retention once it has enough sessions, else the first preferred hour."""
        candidates = [
            (stats.mean, hour)
            for hour, stats in profile.hourly_retention.items()
            if stats.count >= self.min_hour_samples
        ]
        if candidates:
            best_mean = max(mean for mean, _ in candidates)
            return min(hour for mean, hour in candidates if mean == best_mean)
        hours = profile.preferred_study_hours or list(COLD_START_STUDY_HOURS)
        return hours[0]

    def get_recommendations(
        self,
        profile: UserLearningProfile,
        mastered_count: int | None = None,
    ) -> Recommendations:
        """
        Recommendations for the next session.

        Args:
            profile: Learner profile (cold-start profiles give the defaults)
            mastered_count: Cards mastered so far (total studied if None)
        """
        mastered = profile.total_cards_studied if mastered_count is None else mastered_count
        milestones = extend_milestones(list(profile.milestone_progression), mastered)
        next_milestone = next(m for m in milestones if m > mastered)
        hour = self.optimal_study_hour(profile)

        return Recommendations(
            next_milestone=next_milestone,
            celebration_trigger=profile.celebration_frequency,
            fatigue_warning_threshold=profile.fatigue_threshold,
            break_interval=profile.break_interval,
            break_duration=profile.break_duration,
            session_length_recommendation=round(profile.average_session_length),
            optimal_study_time=format_hour(hour),
            optimal_study_hour=hour,
            difficulty_adjustment=profile.difficulty_tolerance,
        )

    def adaptive_session_length(
        self,
        profile: UserLearningProfile,
        hour: int,
        available_minutes: float | None = None,
    ) -> int:
        """Session length for a given hour, capped by the time available (10-90 min)."""
        length = profile.average_session_length
        if hour in profile.preferred_study_hours:
            length *= 1.1
        if profile.consistency_score > 0.8:
            length *= 1.2
        if available_minutes:
            length = min(length, available_minutes * 0.9)
        return max(10, min(90, round(length)))

    def should_refresh(self, profile: UserLearningProfile, now: datetime | None = None) -> bool:
        """Profiles not updated for a week should be reloaded from history."""
        if profile.last_updated is None:
            return True
        now = now or datetime.now()
        return now - profile.last_updated > timedelta(days=REFRESH_AFTER_DAYS)


def _parse_day(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None

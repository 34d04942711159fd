"""
Configuration settings for paced-recall.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is read with the PACED_ prefix (e.g. PACED_DATABASE_URL).
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path.home() / ".paced"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PACED_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default=f"sqlite:///{DATA_DIR / 'paced.db'}",
        description="SQLAlchemy connection string for the study store",
    )

    # ========================================
    # Learner
    # ========================================
    default_user_id: str = Field(
        default="local",
        description="Profile used when no user is given on the command line",
    )

    # ========================================
    # Fatigue Monitoring
    # ========================================
    fatigue_check_every: int = Field(
        default=3,
        ge=1,
        description="Recompute fatigue indicators every N ratings",
    )
    fatigue_window_size: int = Field(
        default=10,
        ge=3,
        description="Number of recent rating events considered by the fatigue monitor",
    )
    slowdown_window_size: int = Field(
        default=5,
        ge=1,
        description="Most recent responses averaged for the slowdown z-score",
    )
    baseline_min_samples: int = Field(
        default=10,
        ge=1,
        description="Samples required before a response-time baseline is trusted",
    )

    # ========================================
    # Break Advisor
    # ========================================
    dismiss_rearm_margin: float = Field(
        default=10.0,
        ge=0,
        description="Fatigue points above the dismissal score that re-arm a dismissed trigger",
    )
    pattern_tolerance_minutes: float = Field(
        default=5.0,
        ge=0,
        description="Window around the learner's typical fatigue onset for pattern breaks",
    )
    pattern_min_sessions: int = Field(
        default=3,
        ge=1,
        description="Recorded fatigue onsets needed before pattern breaks are offered",
    )

    # ========================================
    # Personalization
    # ========================================
    profile_ema_alpha: float = Field(
        default=0.3,
        gt=0,
        le=1,
        description="Floor for the smoothing factor applied to per-session profile updates",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level for the console sink",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

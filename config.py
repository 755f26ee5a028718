"""
Configuration settings for cortex-review.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is prefixed with CORTEX_REVIEW_ (e.g. CORTEX_REVIEW_QUESTION_TIME_LIMIT=45).
"""
from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.review.scheduler import SchedulePolicy
from src.review.scoring import ScoringPolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CORTEX_REVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Challenge Scoring
    # ========================================
    base_points: int = Field(
        default=100,
        ge=0,
        description="Points for a correct answer",
    )
    max_time_bonus: int = Field(
        default=100,
        ge=0,
        description="Time bonus for a correct answer with the full time left",
    )
    combo_multiplier: float = Field(
        default=0.1,
        ge=0.0,
        description="Combo bonus per streak step, as a share of base points",
    )
    question_time_limit: int = Field(
        default=30,
        gt=0,
        description="Seconds allowed per timed question",
    )

    # ========================================
    # Review Scheduling
    # ========================================
    advance_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Accuracy at or above which the stage advances",
    )
    hold_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Accuracy at or above which the stage is kept",
    )
    advance_interval_days: float = Field(
        default=7,
        gt=0,
        description="Days until next review after a strong session",
    )
    hold_interval_days: float = Field(
        default=1,
        gt=0,
        description="Days until next review after an average session",
    )
    reset_interval_hours: float = Field(
        default=12,
        gt=0,
        description="Hours until next review after a weak session",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @model_validator(mode="after")
    def _check_thresholds(self) -> Settings:
        if self.hold_threshold > self.advance_threshold:
            raise ValueError("hold_threshold must not exceed advance_threshold")
        return self

    def scoring_policy(self) -> ScoringPolicy:
        """Build the challenge scoring policy."""
        return ScoringPolicy(
            base_points=self.base_points,
            max_time_bonus=self.max_time_bonus,
            combo_multiplier=self.combo_multiplier,
            question_time_limit=self.question_time_limit,
        )

    def schedule_policy(self) -> SchedulePolicy:
        """Build the review scheduling policy."""
        return SchedulePolicy(
            advance_threshold=self.advance_threshold,
            hold_threshold=self.hold_threshold,
            advance_interval=timedelta(days=self.advance_interval_days),
            hold_interval=timedelta(days=self.hold_interval_days),
            reset_interval=timedelta(hours=self.reset_interval_hours),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

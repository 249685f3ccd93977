"""
Configuration settings for the adaptive learning core.

Uses Pydantic Settings for environment variable management with .env file support.
The model constants are read once here and handed to the core as immutable
values (MasteryConfig, FsrsParameters); nothing reads them as globals.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.mastery import MasteryConfig
from src.core.platform_client import ApiConfig
from src.cortex.tracking_queue import TrackingQueue
from src.study.retention_engine import FsrsParameters


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Learning Platform API
    # ========================================
    api_base_url: str = Field(
        default="http://localhost:54321/functions/v1/server",
        description="Base URL of the platform REST service",
    )
    api_anon_key: str = Field(
        default="",
        description="Gateway key, always sent as 'Authorization: Bearer'",
    )
    api_access_token: str | None = Field(
        default=None,
        description="Learner JWT, sent as 'X-Access-Token' when set",
    )
    api_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout per request",
    )
    api_sessions_endpoint: str = Field(default="/study-sessions")
    api_reviews_endpoint: str = Field(default="/reviews")
    api_fsrs_states_endpoint: str = Field(default="/fsrs-states")
    api_bkt_states_endpoint: str = Field(default="/bkt-states")
    api_study_queue_endpoint: str = Field(default="/study-queue")
    api_daily_activities_endpoint: str = Field(default="/daily-activities")
    api_student_stats_endpoint: str = Field(default="/student-stats")

    # ========================================
    # BKT Mastery Model
    # ========================================
    bkt_p_learn: float = Field(
        default=0.18,
        ge=0.0,
        le=1.0,
        description="Learning rate applied on a correct answer",
    )
    bkt_p_forget: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Share of mastery lost on an incorrect answer",
    )
    bkt_recovery_factor: float = Field(
        default=3.0,
        ge=1.0,
        description="Boost when re-learning a concept that was known better before",
    )
    bkt_quiz_multiplier: float = Field(
        default=0.70,
        ge=0.0,
        le=1.0,
        description="Weight of a correct quiz answer relative to flashcard recall",
    )
    bkt_flashcard_multiplier: float = Field(default=1.00, ge=0.0, le=1.0)
    bkt_p_transit: float = Field(default=0.1, ge=0.0, le=1.0)
    bkt_p_slip: float = Field(default=0.1, ge=0.0, le=1.0)
    bkt_p_guess: float = Field(default=0.25, ge=0.0, le=1.0)
    bkt_p_init: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="p_know of a concept never attempted",
    )

    # Keyword color bands
    mastery_green_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    mastery_yellow_threshold: float = Field(default=0.50, ge=0.0, le=1.0)

    # ========================================
    # FSRS Scheduler
    # ========================================
    fsrs_desired_retention: float = Field(
        default=0.90,
        gt=0.0,
        lt=1.0,
        description="Target recall probability at the due date",
    )
    fsrs_maximum_interval_days: int = Field(
        default=365,
        ge=1,
        description="Cap on the scheduled interval",
    )
    fsrs_relearning_minutes: int = Field(
        default=10,
        ge=1,
        description="Re-test delay after a lapse (grade 1)",
    )
    fsrs_initial_stability: float = Field(default=0.5, gt=0.0)
    fsrs_initial_difficulty: float = Field(default=5.0, ge=1.0, le=10.0)

    # ========================================
    # Tracking Queue
    # ========================================
    tracking_queue_size: int = Field(
        default=256,
        ge=1,
        description="Pending FSRS/BKT writes before new ones are dropped",
    )
    tracking_workers: int = Field(
        default=2,
        ge=1,
        description="Concurrent tracking write workers",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.mastery_yellow_threshold > self.mastery_green_threshold:
            raise ValueError("mastery_yellow_threshold must not exceed mastery_green_threshold")
        return self

    def has_access_token(self) -> bool:
        """Check if a learner token is configured."""
        return bool(self.api_access_token)

    def api_config(self) -> ApiConfig:
        """Connection settings for PlatformClient."""
        return ApiConfig(
            base_url=self.api_base_url,
            anon_key=self.api_anon_key,
            access_token=self.api_access_token,
            timeout_seconds=self.api_timeout_seconds,
            sessions_endpoint=self.api_sessions_endpoint,
            reviews_endpoint=self.api_reviews_endpoint,
            fsrs_states_endpoint=self.api_fsrs_states_endpoint,
            bkt_states_endpoint=self.api_bkt_states_endpoint,
            study_queue_endpoint=self.api_study_queue_endpoint,
            daily_activities_endpoint=self.api_daily_activities_endpoint,
            student_stats_endpoint=self.api_student_stats_endpoint,
        )

    def mastery_config(self) -> MasteryConfig:
        """BKT constants and thresholds as one immutable value."""
        return MasteryConfig(
            p_learn=self.bkt_p_learn,
            p_forget=self.bkt_p_forget,
            recovery_factor=self.bkt_recovery_factor,
            quiz_multiplier=self.bkt_quiz_multiplier,
            flashcard_multiplier=self.bkt_flashcard_multiplier,
            p_transit=self.bkt_p_transit,
            p_slip=self.bkt_p_slip,
            p_guess=self.bkt_p_guess,
            p_init=self.bkt_p_init,
            green_threshold=self.mastery_green_threshold,
            yellow_threshold=self.mastery_yellow_threshold,
        )

    def tracking_queue(self) -> TrackingQueue:
        """Background queue for tracking writes, sized from settings."""
        return TrackingQueue(maxsize=self.tracking_queue_size, workers=self.tracking_workers)

    def fsrs_parameters(self) -> FsrsParameters:
        """Scheduler parameters (default FSRS-4.5 weights)."""
        return FsrsParameters(
            desired_retention=self.fsrs_desired_retention,
            maximum_interval_days=self.fsrs_maximum_interval_days,
            relearning_minutes=self.fsrs_relearning_minutes,
            initial_stability=self.fsrs_initial_stability,
            initial_difficulty=self.fsrs_initial_difficulty,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

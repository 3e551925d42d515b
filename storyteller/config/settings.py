# ABOUTME: Configuration settings for the narrative session orchestrator using Pydantic Settings.
# ABOUTME: Loads environment variables, validates story-arc thresholds at startup and provides type-safe access.

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storyteller.utils.phases import PhaseConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    # Narrative service (OpenAI-compatible chat completions)
    narrative_api_key: str | None = Field(
        default=None,
        description="API key for the narrative service; unset selects the offline mock narrator"
    )
    narrative_base_url: str | None = Field(
        default=None,
        description="Base URL of an OpenAI-compatible endpoint (None = api.openai.com)"
    )
    narrative_model: str = Field(
        default="gpt-4o",
        description="Model used to generate story rounds"
    )
    narrative_temperature: float = Field(
        default=1.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for story generation"
    )
    narrative_max_tokens: int = Field(
        default=4000,
        gt=0,
        description="Maximum completion tokens per round"
    )
    narrative_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Upper bound on a single narrative generation, retries included"
    )
    narrative_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for transient narrative API errors"
    )

    # Redis Configuration
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL"
    )
    session_key_prefix: str = Field(
        default="storyteller:session:",
        description="Key prefix for persisted session snapshots"
    )

    # Application Settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_dir: str = Field(
        default="logs",
        description="Directory for rotating log files"
    )
    strict_invariants: bool = Field(
        default=False,
        description="Raise on invariant violations instead of clamping (development)"
    )

    # Story arc
    max_rounds: int = Field(
        default=6,
        ge=1,
        description="Rounds per session, ending round included"
    )
    opening_rounds: int = Field(
        default=2,
        ge=0,
        description="Narrative-only prologue rounds"
    )
    goal_selection_round: int = Field(
        default=3,
        ge=1,
        description="Round on which the goal is chosen"
    )
    climax_lookback: int = Field(
        default=2,
        ge=1,
        description="Closing window size (ending round included)"
    )
    climax_min_swing: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Minimum progress gain for a successful climax check"
    )
    default_difficulty: int = Field(
        default=8,
        ge=1,
        le=12,
        description="Difficulty for checks whose choice carries none"
    )
    history_window: int = Field(
        default=3,
        ge=1,
        description="Recent rounds included in continuation prompts"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @model_validator(mode="after")
    def validate_story_arc(self):
        """Fail fast on thresholds that would make the phase function inconsistent"""
        self.phase_config.validate_max_rounds(self.max_rounds)
        return self

    @property
    def phase_config(self) -> PhaseConfig:
        """Phase thresholds as a validated PhaseConfig"""
        return PhaseConfig(
            opening_rounds=self.opening_rounds,
            goal_selection_round=self.goal_selection_round,
            climax_lookback=self.climax_lookback,
        )


# Singleton settings instance - lazy initialization to allow import without .env
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

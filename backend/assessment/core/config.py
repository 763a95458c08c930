"""
Engine configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal, Self


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Timed Assessment Engine"
    APP_VERSION: str = "0.1.0"
    ENV: Literal["development", "test", "production"] = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Reference collaborator API
    API_V1_PREFIX: str = "/v1"
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Collaborator client
    API_BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Base URL of the attempt collaborator API",
    )
    API_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        gt=0.0,
        description="Per-request timeout for collaborator calls",
    )

    # Answer autosave
    # Debounced saves supersede pending saves for the same question
    AUTOSAVE_DEBOUNCE_SECONDS: float = Field(default=1.0, ge=0.0)

    # Background timers (torn down as soon as the attempt leaves IN_PROGRESS)
    TIMER_TICK_SECONDS: float = Field(default=1.0, gt=0.0)
    TAB_TRACKING_PUSH_SECONDS: float = Field(default=10.0, gt=0.0)

    # Pause markers ("save & exit") survive a full reload when stored on disk.
    # Empty string keeps them in memory only.
    PAUSE_MARKER_PATH: str = ""

    # AI grading suggestions (reference collaborator)
    # Without a key suggestions come from the local heuristic generator
    OPENAI_API_KEY: str = Field(
        default="",
        description="OpenAI API key for grading suggestions (leave empty to disable)",
    )
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0.0)

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_timer_ordering(self) -> Self:
        """The tracking push must not run more often than the countdown tick."""
        if self.TAB_TRACKING_PUSH_SECONDS < self.TIMER_TICK_SECONDS:
            raise ValueError(
                "TAB_TRACKING_PUSH_SECONDS must be >= TIMER_TICK_SECONDS, "
                f"got {self.TAB_TRACKING_PUSH_SECONDS} < {self.TIMER_TICK_SECONDS}"
            )
        return self


settings = Settings()

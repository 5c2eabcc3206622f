"""Configuration schema models using Pydantic."""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from scheme_engine.domain.models import SchemeLevel

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class AuthorityConfig(BaseModel):
    """Connection settings for the remote scheme authority."""

    base_url: str = Field(..., min_length=1, description="Base URL of the authority API")
    timeout: int = Field(30, ge=1, le=300, description="Per-request timeout (seconds)")
    user_agent: str = Field(
        "SchemeEligibilityEngine/1.0", min_length=1, description="User-Agent header"
    )

    @field_validator("base_url", "user_agent")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped

    @field_validator("base_url")
    @classmethod
    def require_http_scheme(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class SyncSettings(BaseModel):
    """Reconciliation cadence and retry policy."""

    interval: str = Field("15m", description="Time between sync cycles")
    max_attempts: int = Field(4, ge=1, le=10, description="Attempts per remote fetch")
    initial_delay_seconds: float = Field(1.0, ge=0.0, le=60.0, description="First retry delay")
    backoff_multiplier: float = Field(2.0, ge=1.0, le=5.0, description="Delay growth per retry")
    max_delay_seconds: float = Field(60.0, ge=0.0, le=600.0, description="Retry delay cap")

    # Computed field
    interval_seconds: Optional[int] = None

    @model_validator(mode="after")
    def compute_interval(self):
        try:
            seconds = parse_duration(self.interval)
            validate_duration_range(seconds, min_seconds=60, max_seconds=86400, label="Sync interval")
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        self.interval_seconds = seconds
        return self

    def retry_delay(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (1-based)."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


class ScoringWeights(BaseModel):
    """Named weights for the relevance score.

    relevance = mandatory_match * matched mandatory criteria
              + optional_match * matched optional criteria
              + benefit_tier * level_tiers[level]
              + freshness * max(0, 1 - days_to_deadline / freshness_horizon_days)
    """

    mandatory_match: float = Field(1.0, ge=0.0)
    optional_match: float = Field(0.5, ge=0.0)
    benefit_tier: float = Field(2.0, ge=0.0)
    freshness: float = Field(1.5, ge=0.0)
    freshness_horizon_days: int = Field(90, ge=1, le=3650)
    level_tiers: Dict[SchemeLevel, float] = Field(
        default_factory=lambda: {
            SchemeLevel.CENTRAL: 1.0,
            SchemeLevel.STATE: 0.75,
            SchemeLevel.DISTRICT: 0.5,
        },
        description="Benefit-value heuristic per level; must not increase from central to district",
    )

    @model_validator(mode="after")
    def validate_level_tiers(self):
        missing = [level.value for level in SchemeLevel if level not in self.level_tiers]
        if missing:
            raise ValueError(f"level_tiers is missing: {', '.join(missing)}")

        central = self.level_tiers[SchemeLevel.CENTRAL]
        state = self.level_tiers[SchemeLevel.STATE]
        district = self.level_tiers[SchemeLevel.DISTRICT]
        if not central >= state >= district >= 0:
            raise ValueError("level_tiers must satisfy central >= state >= district >= 0")
        return self


class MatchingConfig(BaseModel):
    """Matching engine settings."""

    cache_size: int = Field(1024, ge=0, le=1_000_000, description="Cached results (0 disables)")


class NotificationSettings(BaseModel):
    """Re-evaluation batching and deadline reminders."""

    batch_size: int = Field(500, ge=1, le=100_000, description="Profiles per re-evaluation batch")
    batch_pause_seconds: float = Field(
        0.0, ge=0.0, le=5.0, description="Pause between batches to yield to matching queries"
    )
    reminder_threshold: str = Field("7d", description="Remind when a deadline is this close")
    reminder_interval: str = Field("1d", description="Time between reminder scans")

    # Computed fields
    reminder_threshold_days: Optional[int] = None
    reminder_interval_seconds: Optional[int] = None

    @model_validator(mode="after")
    def compute_durations(self):
        try:
            threshold = parse_duration(self.reminder_threshold)
            validate_duration_range(
                threshold, min_seconds=86400, max_seconds=365 * 86400, label="Reminder threshold"
            )
            interval = parse_duration(self.reminder_interval)
            validate_duration_range(
                interval, min_seconds=300, max_seconds=7 * 86400, label="Reminder interval"
            )
        except DurationParseError as e:
            raise ValueError(str(e)) from e

        self.reminder_threshold_days = threshold // 86400
        self.reminder_interval_seconds = interval
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(LogFormat.KEY_VALUE, description="Log output format")

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the Scheme Eligibility Engine."""

    authority: AuthorityConfig = Field(..., description="Remote scheme authority")
    sync: SyncSettings = Field(default_factory=SyncSettings)
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    profiles_file: Optional[Path] = Field(
        None, description="YAML file of profiles used for re-evaluation"
    )

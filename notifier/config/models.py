"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

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


def _checked_duration(value: str, min_seconds: int, max_seconds: int, label: str) -> int:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return seconds


class QueueConfig(BaseModel):
    """Queue processor settings."""

    batch_size: int = Field(50, ge=1, le=1000, description="Maximum rows claimed per run")
    max_retries: int = Field(3, ge=1, le=10, description="Attempt budget for new queue rows")
    poll_interval: str = Field("1m", description="How often the processor runs")
    max_concurrency: int = Field(
        5, ge=1, le=50, description="Worker threads dispatching a claimed batch"
    )
    backoff_base_seconds: int = Field(
        60, ge=1, le=3600, description="Delay after the first failure; doubles per retry"
    )
    backoff_max_seconds: int = Field(
        86400, ge=60, description="Upper bound for any retry delay"
    )
    stale_claim_timeout: str = Field(
        "15m", description="Age after which a processing row is considered abandoned"
    )
    max_error_messages: int = Field(
        50, ge=1, le=1000, description="Error messages kept in a run result"
    )
    max_overlapping_runs: int = Field(
        2, ge=1, le=10, description="Scheduled runs allowed to overlap in time"
    )

    poll_interval_seconds: Optional[int] = None
    stale_claim_timeout_seconds: Optional[int] = None

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: str) -> str:
        _checked_duration(v, 10, 3600, "Poll interval")
        return v

    @field_validator("stale_claim_timeout")
    @classmethod
    def validate_stale_claim_timeout(cls, v: str) -> str:
        _checked_duration(v, 60, 86400, "Stale claim timeout")
        return v

    @model_validator(mode="after")
    def compute_fields(self):
        """Validate cross-field bounds and compute derived seconds."""
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError(
                "backoff_max_seconds must be greater than or equal to backoff_base_seconds"
            )
        self.poll_interval_seconds = parse_duration(self.poll_interval)
        self.stale_claim_timeout_seconds = parse_duration(self.stale_claim_timeout)
        return self


class RetentionConfig(BaseModel):
    """Retention and reporting window for terminal queue rows."""

    days_to_keep: int = Field(30, ge=1, le=3650, description="Terminal rows older than this are purged")
    cleanup_interval: str = Field("7d", description="How often the purge runs")
    stats_window_days: int = Field(7, ge=1, le=365, description="Default window for queue stats")

    cleanup_interval_seconds: Optional[int] = None

    @field_validator("cleanup_interval")
    @classmethod
    def validate_cleanup_interval(cls, v: str) -> str:
        _checked_duration(v, 3600, 30 * 86400, "Cleanup interval")
        return v

    @model_validator(mode="after")
    def compute_fields(self):
        self.cleanup_interval_seconds = parse_duration(self.cleanup_interval)
        return self


class EmailConfig(BaseModel):
    """Email transport settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    timeout_seconds: int = Field(
        30, ge=1, le=300, description="Timeout for each SMTP connection and command"
    )


class ChannelDefaults(BaseModel):
    """Default opt-in flags for one event category."""

    email: bool = True
    push: bool = True
    in_app: bool = True


class PreferenceDefaultsConfig(BaseModel):
    """Defaults applied when a user has no explicit preference for an event/channel."""

    transactional: ChannelDefaults = Field(default_factory=ChannelDefaults)
    broadcast: ChannelDefaults = Field(
        default_factory=lambda: ChannelDefaults(email=False, push=False, in_app=True)
    )


class AppSettings(BaseModel):
    """Product details used in rendered content."""

    app_name: str = Field("Referral Network", min_length=1)
    app_url: str = Field("http://localhost:3000", min_length=1)
    support_email: Optional[str] = None
    currency_symbol: str = Field("₹", description="Prefix for reward amounts")

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        stripped = v.strip().rstrip("/")
        if not stripped:
            raise ValueError("app_url cannot be empty")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue processor settings")
    retention: RetentionConfig = Field(
        default_factory=RetentionConfig, description="Retention settings"
    )
    email: EmailConfig = Field(default_factory=EmailConfig, description="Email settings")
    preferences: PreferenceDefaultsConfig = Field(
        default_factory=PreferenceDefaultsConfig, description="Preference defaults"
    )
    app: AppSettings = Field(default_factory=AppSettings, description="Product settings")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

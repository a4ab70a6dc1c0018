"""Configuration management for the notification service."""

from .duration import DurationParseError, parse_duration
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config
from .models import (
    AppConfig,
    AppSettings,
    ChannelDefaults,
    EmailConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    PreferenceDefaultsConfig,
    QueueConfig,
    RetentionConfig,
)

__all__ = [
    # Main loader functions
    "load_config",
    "parse_config",
    "load_environment_config",
    "parse_duration",
    # Configuration models
    "AppConfig",
    "QueueConfig",
    "RetentionConfig",
    "EmailConfig",
    "ChannelDefaults",
    "PreferenceDefaultsConfig",
    "AppSettings",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
    "DurationParseError",
]

"""Configuration management for the Scheme Eligibility Engine."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, validate_config_file
from .models import (
    AppConfig,
    AuthorityConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    MatchingConfig,
    NotificationSettings,
    ScoringWeights,
    SyncSettings,
)

__all__ = [
    # Loader functions
    "load_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "AuthorityConfig",
    "SyncSettings",
    "ScoringWeights",
    "MatchingConfig",
    "NotificationSettings",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]

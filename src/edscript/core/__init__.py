"""Core components: errors, configuration and settings."""

from .errors import (
    EdscriptError,
    ConfigError,
    FunctionError,
    FunctionNotFound,
    ArgumentError,
    ScriptInterrupted,
    LoopLimitError,
    UrlError,
    ErrorSeverity,
    ErrorCategory,
)
from .config import AppConfig, AppConfigLoader, LimitsConfig, SafetyConfig
from .settings import Settings, persists_changes, preserved

__all__ = [
    "EdscriptError",
    "ConfigError",
    "FunctionError",
    "FunctionNotFound",
    "ArgumentError",
    "ScriptInterrupted",
    "LoopLimitError",
    "UrlError",
    "ErrorSeverity",
    "ErrorCategory",
    "AppConfig",
    "AppConfigLoader",
    "LimitsConfig",
    "SafetyConfig",
    "Settings",
    "persists_changes",
    "preserved",
]

"""Error definitions for configuration loading and function execution."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Reported, processing continues
    MEDIUM = "medium"     # Fatal to one function invocation
    HIGH = "high"         # Fatal to a configuration load


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    SYNTAX = "syntax"             # Malformed block header, bad keyword
    SEMANTIC = "semantic"         # Missing field, limit exceeded
    INVOCATION = "invocation"     # Unknown function, missing argument
    RESOURCE = "resource"         # Unreadable file
    INTERRUPT = "interrupt"       # User interrupt
    SAFETY = "safety"             # Runaway loop guard


class EdscriptError(Exception):
    """Base exception for all edscript errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.INVOCATION,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
        }


class ConfigError(EdscriptError):
    """Configuration loading or validation error."""

    def __init__(
        self,
        message: str,
        config_path: Optional[str] = None,
        line: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.SYNTAX)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path
        self.context["line"] = line

    @property
    def config_path(self) -> Optional[str]:
        return self.context.get("config_path")

    @property
    def line(self) -> Optional[int]:
        return self.context.get("line")

    def __str__(self) -> str:
        where = self.config_path or "config"
        if self.line is not None:
            return f"{where} line {self.line}: {self.message}"
        return f"{where}: {self.message}"


class FunctionError(EdscriptError):
    """Function invocation or execution error."""

    def __init__(self, message: str, function: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.INVOCATION)
        super().__init__(message, **kwargs)
        self.context["function"] = function


class FunctionNotFound(FunctionError):
    """No function by that name, or the name itself is illegal."""


class ArgumentError(FunctionError):
    """A template referenced a positional argument that was not supplied."""

    def __init__(self, index: int, function: Optional[str] = None, **kwargs):
        super().__init__(f"no such argument {index}", function=function, **kwargs)
        self.context["argument"] = index


class ScriptInterrupted(FunctionError):
    """The interrupt flag was raised while a function was running."""

    def __init__(self, function: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.INTERRUPT)
        super().__init__("interrupted", function=function, **kwargs)


class LoopLimitError(FunctionError):
    """A function exceeded the configured number of loop iterations."""

    def __init__(self, limit: int, function: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.SAFETY)
        super().__init__(
            f"more than {limit} loop iterations",
            function=function,
            **kwargs
        )
        self.context["limit"] = limit


class UrlError(EdscriptError):
    """URL has no recognizable protocol or host."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.SYNTAX)
        super().__init__(message, **kwargs)
        self.context["url"] = url

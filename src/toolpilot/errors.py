"""Application-level exception types for toolpilot."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure categories surfaced by the orchestration loop."""

    RATE_LIMIT = "rate_limit"
    UPSTREAM_ERROR = "upstream_error"
    TOOL_ERROR = "tool_error"
    COMPILATION_ERROR = "compilation_error"
    RUNTIME_ERROR = "runtime_error"
    CANCELLED = "cancelled"


class ToolpilotError(Exception):
    """Base exception for toolpilot."""


class ConfigurationError(ToolpilotError):
    """Base exception for configuration and startup validation errors."""


class ApiKeyNotConfiguredError(ConfigurationError):
    """Raised when an API key is required but missing or malformed."""


class UnknownProviderError(ConfigurationError):
    """Raised when no adapter exists for the requested provider."""


class OperationCancelledError(ToolpilotError):
    """Raised when a cooperative cancellation request is observed."""

"""Provider abstraction: one streaming contract over three wire protocols."""

from .base import ProviderAdapter, StreamState, parse_arguments
from .factory import create_adapter
from .providers import Provider, ProviderInfo
from .types import (
    Message,
    PropertySchema,
    Response,
    StopReason,
    ToolDefinition,
    ToolInvocation,
    ToolOutcome,
    ToolSchema,
    WireMessage,
)

__all__ = [
    "Message",
    "PropertySchema",
    "Provider",
    "ProviderAdapter",
    "ProviderInfo",
    "Response",
    "StopReason",
    "StreamState",
    "ToolDefinition",
    "ToolInvocation",
    "ToolOutcome",
    "ToolSchema",
    "WireMessage",
    "create_adapter",
    "parse_arguments",
]

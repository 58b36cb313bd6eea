"""toolpilot - a tool-calling agent engine over Anthropic, OpenAI and Gemini."""

from .cancellation import CancellationToken
from .core import ContextWindow, LoopHooks, Orchestrator, TurnResult
from .llm import Provider, ProviderAdapter, create_adapter
from .session import SessionTracker
from .tools import ToolRegistry, ToolResult

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "ContextWindow",
    "LoopHooks",
    "Orchestrator",
    "Provider",
    "ProviderAdapter",
    "SessionTracker",
    "ToolRegistry",
    "ToolResult",
    "TurnResult",
    "create_adapter",
]

"""Core orchestration for toolpilot."""

from .context_window import ContextWindow
from .orchestrator import LoopHooks, Orchestrator, TurnResult, is_rate_limit_error, is_resume_command

__all__ = [
    "ContextWindow",
    "LoopHooks",
    "Orchestrator",
    "TurnResult",
    "is_rate_limit_error",
    "is_resume_command",
]

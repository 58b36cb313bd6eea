"""Session state for resumable tasks."""

from .tracker import (
    ErrorInfo,
    SessionTracker,
    TaskState,
    TaskStatus,
    TaskStep,
    ToolCallRecord,
    current_task_id,
    get_tracker,
)

__all__ = [
    "ErrorInfo",
    "SessionTracker",
    "TaskState",
    "TaskStatus",
    "TaskStep",
    "ToolCallRecord",
    "current_task_id",
    "get_tracker",
]

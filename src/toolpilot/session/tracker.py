"""Resumable task state shared by the orchestration loop and its host."""

from __future__ import annotations

import copy
import threading
import uuid
from collections import deque
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from loguru import logger

from toolpilot.errors import ErrorKind

DEFAULT_TOOL_HISTORY_LIMIT = 50
RATE_LIMIT_INTERRUPT_REASON = "API Rate Limit exceeded"

_task_id_context: ContextVar[str] = ContextVar("task_id", default="-")


def current_task_id() -> str:
    """Task id of the most recent task started in this context, for log records."""
    return _task_id_context.get()


def _now() -> datetime:
    return datetime.now(UTC)


class TaskStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass
class TaskStep:
    index: int
    name: str
    status: str = "pending"
    result: str | None = None
    started_at: datetime = field(default_factory=_now)
    ended_at: datetime | None = None


@dataclass
class TaskState:
    task_id: str
    description: str
    status: TaskStatus = TaskStatus.IN_PROGRESS
    steps: list[TaskStep] = field(default_factory=list)
    summary: str | None = None
    started_at: datetime = field(default_factory=_now)
    ended_at: datetime | None = None
    interrupted_at: datetime | None = None
    interrupt_reason: str | None = None


@dataclass(frozen=True)
class ToolCallRecord:
    tool_name: str
    arguments: dict[str, Any]
    result: Any
    success: bool
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ErrorInfo:
    kind: str
    message: str
    recoverable: bool
    timestamp: datetime = field(default_factory=_now)


def _describe_cached(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return f"{len(value)} items"
    if value is None:
        return "null"
    return type(value).__name__


class SessionTracker:
    """Progress of the current task, kept so an interrupted task can resume.

    Every public method takes the same re-entrant lock, so the tracker can be
    shared between the loop and a host thread. Step mutations without a
    current task are ignored.
    """

    def __init__(self, tool_history_limit: int = DEFAULT_TOOL_HISTORY_LIMIT) -> None:
        self._lock = threading.RLock()
        self._task: TaskState | None = None
        self._tool_history: deque[ToolCallRecord] = deque(maxlen=tool_history_limit)
        self._cache: dict[str, Any] = {}
        self._last_error: ErrorInfo | None = None

    @property
    def current_task(self) -> TaskState | None:
        """A snapshot of the current task."""
        with self._lock:
            return copy.deepcopy(self._task)

    @property
    def last_error(self) -> ErrorInfo | None:
        with self._lock:
            return self._last_error

    @property
    def tool_history(self) -> list[ToolCallRecord]:
        with self._lock:
            return list(self._tool_history)

    @property
    def cached_keys(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    # Task lifecycle

    def start_task(self, description: str) -> TaskState:
        with self._lock:
            self._task = TaskState(task_id=uuid.uuid4().hex[:8], description=description)
            _task_id_context.set(self._task.task_id)
            logger.info("session.task.start task_id={}", self._task.task_id)
            return copy.deepcopy(self._task)

    def add_step(self, name: str, status: str = "pending") -> None:
        with self._lock:
            if self._task is None:
                return
            self._task.steps.append(TaskStep(index=len(self._task.steps) + 1, name=name, status=status))

    def update_current_step(self, status: str, result: str | None = None) -> None:
        with self._lock:
            if self._task is None or not self._task.steps:
                return
            step = self._task.steps[-1]
            step.status = status
            step.result = result
            step.ended_at = _now()

    def complete_task(self, summary: str) -> None:
        with self._lock:
            if self._task is None:
                return
            self._task.status = TaskStatus.COMPLETED
            self._task.summary = summary
            self._task.ended_at = _now()
            logger.info("session.task.complete task_id={} steps={}", self._task.task_id, len(self._task.steps))

    def fail_task(self, reason: str) -> None:
        with self._lock:
            if self._task is None:
                return
            self._task.status = TaskStatus.FAILED
            self._task.summary = reason
            self._task.ended_at = _now()
            logger.info("session.task.failed task_id={} reason={}", self._task.task_id, reason)

    def interrupt_task(self, reason: str) -> None:
        with self._lock:
            if self._task is None:
                return
            self._task.status = TaskStatus.INTERRUPTED
            self._task.interrupt_reason = reason
            self._task.interrupted_at = _now()
            logger.info("session.task.interrupted task_id={} reason={}", self._task.task_id, reason)

    def resume_task(self) -> None:
        """Put an interrupted task back in progress, keeping its steps."""
        with self._lock:
            if self._task is None or self._task.status != TaskStatus.INTERRUPTED:
                return
            self._task.status = TaskStatus.IN_PROGRESS
            self._task.interrupt_reason = None
            self._task.interrupted_at = None
            logger.info("session.task.resumed task_id={} steps={}", self._task.task_id, len(self._task.steps))

    # Tool history

    def record_tool_call(
        self,
        tool_name: str,
        arguments: Mapping[str, Any],
        result: Any,
        success: bool,
    ) -> None:
        with self._lock:
            self._tool_history.append(
                ToolCallRecord(tool_name=tool_name, arguments=dict(arguments), result=result, success=success)
            )

    def get_last_tool_call(self, tool_name: str) -> ToolCallRecord | None:
        with self._lock:
            for record in reversed(self._tool_history):
                if record.tool_name == tool_name:
                    return record
            return None

    # Data cache

    def cache_data(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def get_cached_data(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._cache.get(key, default)

    def has_cached_data(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    # Errors

    def record_error(self, kind: ErrorKind | str, message: str, recoverable: bool) -> None:
        with self._lock:
            self._last_error = ErrorInfo(kind=str(kind), message=message, recoverable=recoverable)
            if kind == ErrorKind.RATE_LIMIT:
                self.interrupt_task(RATE_LIMIT_INTERRUPT_REASON)

    def has_recoverable_interrupt(self) -> bool:
        with self._lock:
            return (
                self._task is not None
                and self._task.status == TaskStatus.INTERRUPTED
                and self._last_error is not None
                and self._last_error.recoverable
            )

    def generate_context_summary(self) -> str:
        """Render the task state as markdown for injection into a resumed prompt."""
        with self._lock:
            lines: list[str] = []
            task = self._task
            if task is not None:
                lines.append("## Current Task Context")
                lines.append(f"- Task: {task.description}")
                lines.append(f"- Status: {task.status}")
                if task.steps:
                    lines.append(f"- Progress: {len(task.steps)} steps completed")
                    lines.append("- Completed Steps:")
                    for step in task.steps:
                        lines.append(f"  {step.index}. {step.name}: {step.status}")
                        if step.result:
                            lines.append(f"     Result: {step.result}")
                if task.status == TaskStatus.INTERRUPTED:
                    lines.append(f"- Warning: Interrupted: {task.interrupt_reason}")
                    lines.append("- User said 'continue' - resume from last successful step")

            if self._cache:
                lines.append("")
                lines.append("## Cached Data Available:")
                for key, value in self._cache.items():
                    lines.append(f"- {key}: {_describe_cached(value)}")

            return "\n".join(lines) + "\n" if lines else ""

    def reset(self) -> None:
        """Forget the current task, cache and last error; tool history survives."""
        with self._lock:
            self._task = None
            self._cache.clear()
            self._last_error = None


_default_tracker: SessionTracker | None = None
_default_lock = threading.Lock()


def get_tracker() -> SessionTracker:
    """Return the process-wide tracker, creating it on first use."""
    global _default_tracker
    if _default_tracker is None:
        with _default_lock:
            if _default_tracker is None:
                _default_tracker = SessionTracker()
    return _default_tracker

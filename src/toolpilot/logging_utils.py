"""Loguru setup for the CLI and for hosts embedding the engine."""

from __future__ import annotations

import os
import sys
from typing import Any, Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

from toolpilot.session.tracker import current_task_id

LogProfile = Literal["default", "chat", "json"]

LEVEL_ENV = "TOOLPILOT_LOG_LEVEL"
STDERR_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | task={extra[task_id]} | {name}:{line} | {message}"
CHAT_FORMAT = "[{extra[task_id]}] {message}"

_active: tuple[LogProfile, str] | None = None


def bind_task_id(record: loguru.Record) -> None:
    record["extra"].setdefault("task_id", current_task_id())


def resolve_level(level: str | None = None) -> str:
    return (level or os.getenv(LEVEL_ENV) or "INFO").upper()


def _sink_for(profile: LogProfile) -> tuple[Any, dict[str, Any]]:
    match profile:
        case "chat":
            handler = RichHandler(
                console=get_console(),
                show_time=False,
                show_path=False,
                markup=False,
                rich_tracebacks=False,
            )
            return handler, {"format": CHAT_FORMAT}
        case "json":
            return sys.stderr, {"serialize": True}
        case _:
            return sys.stderr, {"format": STDERR_FORMAT}


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Send loguru records to the sink for ``profile``.

    Every record carries ``extra["task_id"]``. Calling again with the same
    profile and level does nothing.
    """
    global _active
    wanted = (profile, resolve_level(level))
    if wanted == _active:
        return

    sink, options = _sink_for(profile)
    logger.remove()
    logger.configure(patcher=bind_task_id)
    logger.add(sink, level=wanted[1], backtrace=False, diagnose=False, **options)
    _active = wanted

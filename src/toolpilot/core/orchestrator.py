"""Iterative tool-calling loop for one conversation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from toolpilot.cancellation import CancellationToken
from toolpilot.core.context_window import ContextWindow
from toolpilot.core.prompt import DEFAULT_SYSTEM_PROMPT
from toolpilot.errors import ErrorKind, OperationCancelledError
from toolpilot.llm.base import ProviderAdapter
from toolpilot.llm.types import Message, Response, ToolDefinition, ToolInvocation, ToolOutcome, WireMessage
from toolpilot.session.tracker import SessionTracker, get_tracker
from toolpilot.tools.registry import ToolDispatcher, ToolResult

RESUME_KEYWORDS = (
    "continue",
    "go on",
    "keep going",
    "resume",
    "carry on",
    "proceed",
    "go ahead",
    "next",
    "keep it up",
)
RATE_LIMIT_MARKERS = ("429", "rate_limit", "overloaded", "529")
DEFAULT_RATE_LIMIT_DELAYS: tuple[float, ...] = (10, 30, 60)
RESUME_HEADER = "[SYSTEM: Previous session context - DO NOT repeat completed steps, continue from where you left off]"
CANCEL_REASON = "User cancelled"


def is_resume_command(text: str) -> bool:
    if not text or not text.strip():
        return False
    lowered = text.strip().casefold()
    return any(keyword in lowered for keyword in RESUME_KEYWORDS)


def is_rate_limit_error(error: str | None) -> bool:
    if not error:
        return False
    return any(marker in error for marker in RATE_LIMIT_MARKERS)


@dataclass(frozen=True)
class LoopHooks:
    """Optional observers for a running turn. All are called synchronously."""

    on_text_delta: Callable[[str], None] | None = None
    on_status: Callable[[str], None] | None = None
    on_tool_started: Callable[[str, dict[str, Any]], None] | None = None
    on_tool_finished: Callable[[ToolOutcome, float], None] | None = None

    def status(self, message: str) -> None:
        if self.on_status is not None:
            self.on_status(message)


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one user message."""

    text: str
    success: bool = True
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    iterations: int = 0
    tool_calls: int = 0


class Orchestrator:
    """Drives a conversation until the model stops asking for tools.

    Rate-limited requests are retried after each delay in
    ``rate_limit_delays``; other upstream failures end the turn. There is no
    iteration cap: a turn ends on a tool-free response, an error or
    cancellation.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        dispatcher: ToolDispatcher,
        tracker: SessionTracker | None = None,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        context_window: ContextWindow | None = None,
        rate_limit_delays: Sequence[float] = DEFAULT_RATE_LIMIT_DELAYS,
    ) -> None:
        self._adapter = adapter
        self._dispatcher = dispatcher
        self._tracker = tracker if tracker is not None else get_tracker()
        self._system_prompt = system_prompt
        self._context_window = context_window or ContextWindow()
        self._rate_limit_delays = tuple(rate_limit_delays)
        self._history: list[Message] = []

    @property
    def tracker(self) -> SessionTracker:
        return self._tracker

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    def reset(self) -> None:
        """Start a new conversation; the tracker is left alone."""
        self._history.clear()

    async def aclose(self) -> None:
        await self._adapter.aclose()

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def handle_message(
        self,
        text: str,
        *,
        cancellation: CancellationToken | None = None,
        hooks: LoopHooks | None = None,
    ) -> TurnResult:
        token = cancellation or CancellationToken()
        hooks = hooks or LoopHooks()
        self._history.append(Message(role="user", content=self._prepare_prompt(text)))
        try:
            return await self._run(token, hooks)
        except (OperationCancelledError, asyncio.CancelledError):
            self._tracker.interrupt_task(CANCEL_REASON)
            self._tracker.record_error(ErrorKind.CANCELLED, "Operation cancelled by user", False)
            logger.info("orchestrator.cancelled")
            raise

    def _prepare_prompt(self, text: str) -> str:
        if is_resume_command(text) and self._tracker.has_recoverable_interrupt():
            summary = self._tracker.generate_context_summary()
            self._tracker.resume_task()
            logger.info("orchestrator.resume summary_chars={}", len(summary))
            return f"{text}\n\n{RESUME_HEADER}\n{summary}"
        self._tracker.start_task(text)
        return text

    async def _run(self, token: CancellationToken, hooks: LoopHooks) -> TurnResult:
        conversation: list[WireMessage] = [message.to_wire() for message in self._history]
        definitions = self._dispatcher.definitions()
        iteration = 0
        tool_calls = 0

        while True:
            token.raise_if_cancelled()
            iteration += 1
            logger.info("orchestrator.iteration iteration={} messages={}", iteration, len(conversation))
            hooks.status("Thinking..." if iteration == 1 else "Processing...")

            response = await self._request(conversation, definitions, token, hooks)
            if not response.success:
                return self._failed_turn(response, iteration, tool_calls)

            if not response.tool_invocations:
                self._history.append(Message(role="assistant", content=response.text))
                self._tracker.complete_task(response.text)
                hooks.status("Complete")
                logger.info("orchestrator.done iterations={} tool_calls={}", iteration, tool_calls)
                return TurnResult(text=response.text, iterations=iteration, tool_calls=tool_calls)

            outcomes: list[ToolOutcome] = []
            for invocation in response.tool_invocations:
                token.raise_if_cancelled()
                outcomes.append(await self._dispatch(invocation, token, hooks))
            tool_calls += len(outcomes)

            conversation.append(self._adapter.format_assistant_message(response.text, response.tool_invocations))
            conversation.extend(self._adapter.format_tool_result_messages(outcomes))

    async def _request(
        self,
        conversation: list[WireMessage],
        definitions: list[ToolDefinition],
        token: CancellationToken,
        hooks: LoopHooks,
    ) -> Response:
        attempts = len(self._rate_limit_delays) + 1
        for attempt, delay in enumerate(self._rate_limit_delays, start=1):
            response = await self._send(conversation, definitions, token, hooks)
            if response.success or not is_rate_limit_error(response.error):
                return response
            logger.warning("orchestrator.rate_limited attempt={} of={} retry_in={}s", attempt, attempts, delay)
            hooks.status(f"Rate limited, retrying in {delay:g}s...")
            await token.sleep(delay)
        return await self._send(conversation, definitions, token, hooks)

    async def _send(
        self,
        conversation: list[WireMessage],
        definitions: list[ToolDefinition],
        token: CancellationToken,
        hooks: LoopHooks,
    ) -> Response:
        return await self._adapter.send_streaming(
            self._context_window.trim(conversation),
            self._system_prompt,
            definitions,
            hooks.on_text_delta,
            cancellation=token,
        )

    def _failed_turn(self, response: Response, iteration: int, tool_calls: int) -> TurnResult:
        error = response.error or "Unknown upstream error"
        if is_rate_limit_error(error):
            self._tracker.record_error(ErrorKind.RATE_LIMIT, error, True)
            logger.warning("orchestrator.rate_limit_exhausted iterations={}", iteration)
            return TurnResult(
                text=self._rate_limit_notice(),
                success=False,
                error_kind=ErrorKind.RATE_LIMIT,
                error_message=error,
                iterations=iteration,
                tool_calls=tool_calls,
            )
        self._tracker.record_error(ErrorKind.UPSTREAM_ERROR, error, False)
        self._tracker.fail_task(error)
        logger.error("orchestrator.upstream_error error={}", error)
        return TurnResult(
            text=f"Error: {error}",
            success=False,
            error_kind=ErrorKind.UPSTREAM_ERROR,
            error_message=error,
            iterations=iteration,
            tool_calls=tool_calls,
        )

    def _rate_limit_notice(self) -> str:
        task = self._tracker.current_task
        steps = len(task.steps) if task is not None else 0
        cached = len(self._tracker.cached_keys)
        lines = [
            "**API Rate Limit**",
            "",
            "API rate limit reached. Please wait a moment before retrying.",
            "",
        ]
        if steps or cached:
            lines += [
                "Progress has been saved:",
                f"- {steps} steps completed",
                f"- {cached} data sets cached",
                "",
            ]
        lines.append('Wait about 1 minute, then send "continue" to resume from where you left off.')
        return "\n".join(lines)

    async def _dispatch(self, invocation: ToolInvocation, token: CancellationToken, hooks: LoopHooks) -> ToolOutcome:
        arguments = dict(invocation.arguments)
        if hooks.on_tool_started is not None:
            hooks.on_tool_started(invocation.name, arguments)
        hooks.status(f"Running {invocation.name}...")

        start = time.monotonic()
        try:
            outcome = await token.guard(
                self._dispatcher.execute_tool(invocation.name, arguments, call_id=invocation.id)
            )
        except OperationCancelledError:
            raise
        except Exception as exc:
            logger.exception("orchestrator.tool_error name={}", invocation.name)
            result = ToolResult.fail(f"Tool execution error: {exc}")
            outcome = ToolOutcome(
                call_id=invocation.id,
                tool_name=invocation.name,
                success=False,
                payload=result.to_payload(),
            )
        elapsed = time.monotonic() - start
        if outcome.call_id != invocation.id:
            outcome = replace(outcome, call_id=invocation.id)

        status = "completed" if outcome.success else "failed"
        self._tracker.record_tool_call(invocation.name, arguments, outcome.data, outcome.success)
        self._tracker.add_step(invocation.name, status)
        self._tracker.update_current_step(status, outcome.message)
        if outcome.success and outcome.data:
            self._tracker.cache_data(f"{invocation.name}_result", outcome.data)
        if not outcome.success:
            logger.info("orchestrator.tool_failed name={} kind={}", invocation.name, ErrorKind.TOOL_ERROR)

        if hooks.on_tool_finished is not None:
            hooks.on_tool_finished(outcome, elapsed)
        return outcome

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import pytest
from pydantic import BaseModel

from toolpilot.cancellation import CancellationToken
from toolpilot.core.orchestrator import (
    RESUME_HEADER,
    LoopHooks,
    Orchestrator,
    is_rate_limit_error,
    is_resume_command,
)
from toolpilot.errors import ErrorKind, OperationCancelledError
from toolpilot.llm.types import Response, StopReason, ToolDefinition, ToolInvocation, ToolOutcome
from toolpilot.session import SessionTracker, TaskStatus
from toolpilot.tools import ToolRegistry

RATE_LIMITED = Response.failure("API Error 429: rate_limit_error")


class CountInput(BaseModel):
    category: str = "walls"


class ScriptedAdapter:
    """Replays canned responses and records every conversation it was sent."""

    def __init__(self, responses: Sequence[Response | Callable[[], Response]]) -> None:
        self._responses = list(responses)
        self.conversations: list[list[dict[str, Any]]] = []
        self.closed = False

    async def send_streaming(
        self,
        conversation: list[dict[str, Any]],
        system_prompt: str,
        tools: list[ToolDefinition],
        on_text_delta: Callable[[str], None] | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Response:
        self.conversations.append(list(conversation))
        item = self._responses.pop(0)
        response = item() if callable(item) else item
        if on_text_delta is not None and response.text:
            on_text_delta(response.text)
        return response

    def format_assistant_message(self, text: str, invocations: Sequence[ToolInvocation]) -> dict[str, Any]:
        return {"role": "assistant", "content": text, "calls": [invocation.id for invocation in invocations]}

    def format_tool_result_messages(self, outcomes: Sequence[ToolOutcome]) -> list[dict[str, Any]]:
        return [{"role": "tool", "tool_call_id": outcome.call_id, "content": outcome.result_json} for outcome in outcomes]

    async def aclose(self) -> None:
        self.closed = True


def _tool_calls(*names: str) -> Response:
    invocations = tuple(ToolInvocation(id=f"call_{idx}_{name}", name=name) for idx, name in enumerate(names))
    return Response(tool_invocations=invocations, stop_reason=StopReason.TOOL_CALLS)


def _final(text: str) -> Response:
    return Response(text=text, raw_stop_reason="end_turn")


def _registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register("count", "count elements", CountInput, lambda params: {"count": 3})
    registry.register("select", "select elements", CountInput, lambda params: "Selected.")
    return registry


@pytest.fixture
def delays(monkeypatch) -> list[float]:
    recorded: list[float] = []

    async def _sleep(self: CancellationToken, seconds: float) -> None:
        self.raise_if_cancelled()
        recorded.append(seconds)

    monkeypatch.setattr(CancellationToken, "sleep", _sleep)
    return recorded


def test_resume_command_detection() -> None:
    assert is_resume_command("continue")
    assert is_resume_command("  Please GO ON with it ")
    assert not is_resume_command("")
    assert not is_resume_command("   ")
    assert not is_resume_command("stop now")


def test_rate_limit_error_detection() -> None:
    assert is_rate_limit_error("API Error 429: slow down")
    assert is_rate_limit_error("overloaded_error: Overloaded")
    assert not is_rate_limit_error("API Error 400: bad request")
    assert not is_rate_limit_error(None)


@pytest.mark.asyncio
async def test_tool_calls_over_two_turns_with_rate_limit_backoff(delays: list[float]) -> None:
    adapter = ScriptedAdapter(
        [
            _tool_calls("count", "select"),
            RATE_LIMITED,
            RATE_LIMITED,
            _tool_calls("count"),
            _final("There are 3 walls."),
        ]
    )
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker)  # type: ignore[arg-type]

    result = await orchestrator.handle_message("How many walls?")

    assert result.success is True
    assert result.text == "There are 3 walls."
    assert result.tool_calls == 3
    assert result.iterations == 3
    assert delays == [10, 30]
    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert [(step.name, step.status) for step in task.steps] == [
        ("count", "completed"),
        ("select", "completed"),
        ("count", "completed"),
    ]
    assert tracker.get_cached_data("count_result") == {"count": 3}
    assert not tracker.has_cached_data("select_result")

    second_request = adapter.conversations[1]
    assert second_request[-3]["calls"] == ["call_0_count", "call_1_select"]
    assert [message["tool_call_id"] for message in second_request[-2:]] == ["call_0_count", "call_1_select"]
    assert [message.role for message in orchestrator.history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_exhausted_rate_limit_saves_progress_then_resumes(delays: list[float]) -> None:
    adapter = ScriptedAdapter(
        [
            _tool_calls("count"),
            RATE_LIMITED,
            RATE_LIMITED,
            RATE_LIMITED,
            RATE_LIMITED,
            _final("Done counting."),
        ]
    )
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker)  # type: ignore[arg-type]

    first = await orchestrator.handle_message("Count everything")

    assert delays == [10, 30, 60]
    assert first.success is False
    assert first.error_kind is ErrorKind.RATE_LIMIT
    assert first.text.startswith("**API Rate Limit**")
    assert "- 1 steps completed" in first.text
    assert "- 1 data sets cached" in first.text
    assert 'send "continue"' in first.text
    assert tracker.has_recoverable_interrupt() is True

    second = await orchestrator.handle_message("continue")

    assert second.success is True
    prompt = adapter.conversations[-1][-1]["content"]
    assert prompt.startswith(f"continue\n\n{RESUME_HEADER}\n## Current Task Context\n- Task: Count everything")
    assert "  1. count: completed" in prompt
    assert "- count_result: 1 items" in prompt
    task = tracker.current_task
    assert task is not None
    assert task.description == "Count everything"
    assert task.status is TaskStatus.COMPLETED
    assert len(task.steps) == 1


@pytest.mark.asyncio
async def test_continue_without_interrupt_starts_fresh_task(delays: list[float]) -> None:
    adapter = ScriptedAdapter([_final("Nothing to resume.")])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker)  # type: ignore[arg-type]

    await orchestrator.handle_message("continue")

    assert adapter.conversations[0][-1] == {"role": "user", "content": "continue"}
    task = tracker.current_task
    assert task is not None
    assert task.description == "continue"
    assert delays == []


@pytest.mark.asyncio
async def test_upstream_error_fails_task_without_retry(delays: list[float]) -> None:
    adapter = ScriptedAdapter([Response.failure("API Error 400: invalid model")])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker)  # type: ignore[arg-type]

    result = await orchestrator.handle_message("hello")

    assert result.success is False
    assert result.error_kind is ErrorKind.UPSTREAM_ERROR
    assert result.text == "Error: API Error 400: invalid model"
    assert delays == []
    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.FAILED
    assert tracker.has_recoverable_interrupt() is False


@pytest.mark.asyncio
async def test_failed_tool_is_reported_back_and_loop_continues(delays: list[float]) -> None:
    adapter = ScriptedAdapter([_tool_calls("missing_tool"), _final("That tool does not exist.")])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker)  # type: ignore[arg-type]

    result = await orchestrator.handle_message("use the missing tool")

    assert result.success is True
    tool_message = adapter.conversations[1][-1]
    assert tool_message["tool_call_id"] == "call_0_missing_tool"
    assert '"success":false' in tool_message["content"]
    task = tracker.current_task
    assert task is not None
    assert [(step.name, step.status, step.result) for step in task.steps] == [
        ("missing_tool", "failed", "Unknown tool: missing_tool")
    ]


@pytest.mark.asyncio
async def test_cancellation_interrupts_task_and_is_not_resumable(delays: list[float]) -> None:
    token = CancellationToken()
    registry = _registry()

    def _cancel(params: CountInput) -> str:
        token.cancel("User cancelled")
        return "cancelling"

    registry.register("cancel", "cancel", CountInput, _cancel)
    adapter = ScriptedAdapter([_tool_calls("cancel", "count")])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, registry, tracker)  # type: ignore[arg-type]

    with pytest.raises(OperationCancelledError):
        await orchestrator.handle_message("do it", cancellation=token)

    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.INTERRUPTED
    assert task.interrupt_reason == "User cancelled"
    assert [step.name for step in task.steps] == ["cancel"]
    error = tracker.last_error
    assert error is not None
    assert error.kind == ErrorKind.CANCELLED
    assert tracker.has_recoverable_interrupt() is False


@pytest.mark.asyncio
async def test_cancellation_during_backoff_stops_retries(delays: list[float]) -> None:
    token = CancellationToken()

    def _rate_limited_then_cancel() -> Response:
        token.cancel()
        return RATE_LIMITED

    adapter = ScriptedAdapter([_rate_limited_then_cancel])
    orchestrator = Orchestrator(adapter, _registry(), SessionTracker())  # type: ignore[arg-type]

    with pytest.raises(OperationCancelledError):
        await orchestrator.handle_message("hi", cancellation=token)

    assert delays == []
    assert len(adapter.conversations) == 1


@pytest.mark.asyncio
async def test_loop_has_no_iteration_cap(delays: list[float]) -> None:
    responses: list[Response] = [_tool_calls("count") for _ in range(30)]
    responses.append(_final("finished"))
    adapter = ScriptedAdapter(responses)
    orchestrator = Orchestrator(adapter, _registry(), SessionTracker())  # type: ignore[arg-type]

    result = await orchestrator.handle_message("keep counting")

    assert result.text == "finished"
    assert result.iterations == 31
    assert result.tool_calls == 30


@pytest.mark.asyncio
async def test_hooks_observe_status_text_and_tools(delays: list[float]) -> None:
    events: list[tuple[str, Any]] = []
    hooks = LoopHooks(
        on_text_delta=lambda text: events.append(("text", text)),
        on_status=lambda message: events.append(("status", message)),
        on_tool_started=lambda name, args: events.append(("start", name)),
        on_tool_finished=lambda outcome, elapsed: events.append(("end", outcome.tool_name)),
    )
    adapter = ScriptedAdapter([_tool_calls("count"), _final("3")])
    orchestrator = Orchestrator(adapter, _registry(), SessionTracker())  # type: ignore[arg-type]

    await orchestrator.handle_message("count", hooks=hooks)

    assert events == [
        ("status", "Thinking..."),
        ("start", "count"),
        ("status", "Running count..."),
        ("end", "count"),
        ("status", "Processing..."),
        ("text", "3"),
        ("status", "Complete"),
    ]


@pytest.mark.asyncio
async def test_async_context_manager_closes_adapter() -> None:
    adapter = ScriptedAdapter([])

    async with Orchestrator(adapter, _registry(), SessionTracker()):  # type: ignore[arg-type]
        pass

    assert adapter.closed is True


@pytest.mark.asyncio
async def test_cancel_interrupts_real_backoff_sleep() -> None:
    token = CancellationToken()
    loop = asyncio.get_running_loop()

    def _on_status(message: str) -> None:
        if message.startswith("Rate limited"):
            loop.call_soon(token.cancel, "User cancelled")

    adapter = ScriptedAdapter([RATE_LIMITED])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, _registry(), tracker, rate_limit_delays=(60,))  # type: ignore[arg-type]

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(
            orchestrator.handle_message("hi", cancellation=token, hooks=LoopHooks(on_status=_on_status)),
            timeout=5,
        )

    assert len(adapter.conversations) == 1
    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.INTERRUPTED


@pytest.mark.asyncio
async def test_cancel_stops_waiting_on_a_running_tool(delays: list[float]) -> None:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    registry = _registry()

    async def _slow(params: CountInput) -> str:
        await asyncio.sleep(60)
        return "never"

    registry.register("slow", "slow", CountInput, _slow)
    hooks = LoopHooks(on_tool_started=lambda name, args: loop.call_soon(token.cancel, "User cancelled"))
    adapter = ScriptedAdapter([_tool_calls("slow")])
    tracker = SessionTracker()
    orchestrator = Orchestrator(adapter, registry, tracker)  # type: ignore[arg-type]

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(orchestrator.handle_message("wait", cancellation=token, hooks=hooks), timeout=5)

    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.INTERRUPTED
    assert task.steps == []

from __future__ import annotations

import threading

from toolpilot.errors import ErrorKind
from toolpilot.session.tracker import SessionTracker, TaskStatus, get_tracker


def test_start_task_assigns_short_hex_id() -> None:
    tracker = SessionTracker()

    task = tracker.start_task("count walls")

    assert len(task.task_id) == 8
    int(task.task_id, 16)
    assert task.status is TaskStatus.IN_PROGRESS
    assert task.description == "count walls"


def test_step_mutations_without_task_are_ignored() -> None:
    tracker = SessionTracker()

    tracker.add_step("search")
    tracker.update_current_step("completed", "ok")
    tracker.complete_task("done")
    tracker.interrupt_task("why")

    assert tracker.current_task is None


def test_recoverable_interrupt_requires_interrupted_and_recoverable_error() -> None:
    tracker = SessionTracker()
    assert tracker.has_recoverable_interrupt() is False

    tracker.start_task("task")
    tracker.record_error(ErrorKind.RATE_LIMIT, "429 Too Many Requests", True)
    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.INTERRUPTED
    assert task.interrupt_reason == "API Rate Limit exceeded"
    assert tracker.has_recoverable_interrupt() is True

    tracker.record_error(ErrorKind.UPSTREAM_ERROR, "bad request", False)
    assert tracker.has_recoverable_interrupt() is False


def test_interrupted_with_non_recoverable_error_is_not_resumable() -> None:
    tracker = SessionTracker()
    tracker.start_task("task")
    tracker.interrupt_task("User cancelled")
    tracker.record_error(ErrorKind.CANCELLED, "cancelled", False)

    assert tracker.has_recoverable_interrupt() is False


def test_recoverable_error_without_interruption_is_not_resumable() -> None:
    tracker = SessionTracker()
    tracker.start_task("task")
    tracker.record_error(ErrorKind.TOOL_ERROR, "flaky", True)

    assert tracker.has_recoverable_interrupt() is False


def test_tool_history_is_a_bounded_ring() -> None:
    tracker = SessionTracker(tool_history_limit=3)
    for idx in range(5):
        tracker.record_tool_call(f"tool_{idx % 2}", {"i": idx}, {"i": idx}, True)

    history = tracker.tool_history
    assert [record.arguments["i"] for record in history] == [2, 3, 4]
    last = tracker.get_last_tool_call("tool_1")
    assert last is not None
    assert last.arguments == {"i": 3}
    assert tracker.get_last_tool_call("missing") is None


def test_cache_overwrites_and_reports_presence() -> None:
    tracker = SessionTracker()
    tracker.cache_data("search_result", [1, 2])
    tracker.cache_data("search_result", [1, 2, 3])

    assert tracker.has_cached_data("search_result")
    assert tracker.get_cached_data("search_result") == [1, 2, 3]
    assert tracker.get_cached_data("missing", "fallback") == "fallback"


def test_context_summary_lists_steps_interruption_and_cache() -> None:
    tracker = SessionTracker()
    tracker.start_task("rename rooms")
    tracker.add_step("search_elements", "completed")
    tracker.update_current_step("completed", "Found 12 rooms")
    tracker.add_step("set_parameter", "failed")
    tracker.update_current_step("failed", "")
    tracker.cache_data("search_elements_result", {"ids": [1, 2], "count": 2})
    tracker.cache_data("note", "text")
    tracker.record_error(ErrorKind.RATE_LIMIT, "overloaded", True)

    summary = tracker.generate_context_summary()

    assert summary.splitlines() == [
        "## Current Task Context",
        "- Task: rename rooms",
        "- Status: interrupted",
        "- Progress: 2 steps completed",
        "- Completed Steps:",
        "  1. search_elements: completed",
        "     Result: Found 12 rooms",
        "  2. set_parameter: failed",
        "- Warning: Interrupted: API Rate Limit exceeded",
        "- User said 'continue' - resume from last successful step",
        "",
        "## Cached Data Available:",
        "- search_elements_result: 2 items",
        "- note: str",
    ]


def test_empty_tracker_summary_is_empty() -> None:
    assert SessionTracker().generate_context_summary() == ""


def test_reset_keeps_tool_history() -> None:
    tracker = SessionTracker()
    tracker.start_task("task")
    tracker.record_tool_call("a", {}, None, True)
    tracker.cache_data("k", 1)
    tracker.record_error(ErrorKind.RATE_LIMIT, "429", True)

    tracker.reset()

    assert tracker.current_task is None
    assert tracker.last_error is None
    assert tracker.cached_keys == []
    assert len(tracker.tool_history) == 1


def test_resume_task_returns_interrupted_task_to_progress() -> None:
    tracker = SessionTracker()
    tracker.start_task("task")
    tracker.add_step("one", "completed")
    tracker.record_error(ErrorKind.RATE_LIMIT, "429", True)

    tracker.resume_task()

    task = tracker.current_task
    assert task is not None
    assert task.status is TaskStatus.IN_PROGRESS
    assert len(task.steps) == 1
    assert tracker.has_recoverable_interrupt() is False


def test_current_task_is_a_snapshot() -> None:
    tracker = SessionTracker()
    tracker.start_task("task")
    snapshot = tracker.current_task
    assert snapshot is not None

    snapshot.steps.append(object())  # type: ignore[arg-type]

    task = tracker.current_task
    assert task is not None
    assert task.steps == []


def test_concurrent_step_recording_keeps_every_step() -> None:
    tracker = SessionTracker()
    tracker.start_task("parallel")

    def _record(worker: int) -> None:
        for idx in range(50):
            tracker.add_step(f"w{worker}-{idx}", "completed")

    threads = [threading.Thread(target=_record, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    task = tracker.current_task
    assert task is not None
    assert [step.index for step in task.steps] == list(range(1, 201))


def test_get_tracker_returns_process_default() -> None:
    assert get_tracker() is get_tracker()

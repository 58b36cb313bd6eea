from __future__ import annotations

from toolpilot.core.context_window import (
    TRIM_ACKNOWLEDGEMENT,
    TRIM_NOTICE,
    ContextWindow,
    message_size,
)


def _conversation(count: int, width: int) -> list[dict]:
    messages = []
    for idx in range(count):
        role = "user" if idx % 2 == 0 else "assistant"
        messages.append({"role": role, "content": f"{idx}:" + "x" * width})
    return messages


def test_small_conversations_are_returned_unchanged() -> None:
    window = ContextWindow(max_input_tokens=10, chars_per_token=1)
    conversation = _conversation(2, 500)

    assert window.trim(conversation) == conversation


def test_conversation_within_budget_is_not_trimmed() -> None:
    window = ContextWindow()
    conversation = _conversation(6, 100)

    assert window.trim(conversation) == conversation


def test_trimmed_output_keeps_first_and_latest_within_budget() -> None:
    for count in (8, 20, 41):
        for width in (120, 333, 1000):
            conversation = _conversation(count, width)
            budget_tokens = sum(message_size(m) for m in conversation) // 2
            window = ContextWindow(max_input_tokens=budget_tokens, chars_per_token=1)

            trimmed = window.trim(conversation)

            assert trimmed[0] == conversation[0]
            assert trimmed[-1] == conversation[-1]
            assert trimmed[1] == {"role": "user", "content": TRIM_NOTICE}
            assert trimmed[2] == {"role": "assistant", "content": TRIM_ACKNOWLEDGEMENT}
            assert sum(message_size(m) for m in trimmed) <= window.budget_chars


def test_trimmed_output_preserves_chronological_order() -> None:
    conversation = _conversation(12, 200)
    window = ContextWindow(max_input_tokens=1200, chars_per_token=1)

    trimmed = window.trim(conversation)
    kept = trimmed[3:]

    positions = [conversation.index(m) for m in kept]
    assert positions == sorted(positions)
    assert positions[-1] == len(conversation) - 1


def test_latest_message_is_kept_even_when_it_alone_exceeds_budget() -> None:
    conversation = _conversation(4, 10)
    conversation.append({"role": "user", "content": "y" * 5000})
    window = ContextWindow(max_input_tokens=200, chars_per_token=1)

    trimmed = window.trim(conversation)

    assert trimmed[0] == conversation[0]
    assert trimmed[-1] == conversation[-1]
    assert len(trimmed) == 4


def test_orphaned_tool_results_are_dropped_from_the_kept_tail() -> None:
    first = {"role": "user", "content": "task"}
    filler = {"role": "assistant", "content": "z" * 2000}
    assistant_call = {
        "role": "assistant",
        "content": [{"type": "tool_use", "id": "t1", "name": "count", "input": {"pad": "p" * 400}}],
    }
    tool_result = {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "{}"}]}
    final = {"role": "assistant", "content": "done"}
    conversation = [first, filler, assistant_call, tool_result, final]
    budget = (
        message_size(first)
        + message_size({"role": "user", "content": TRIM_NOTICE})
        + message_size({"role": "assistant", "content": TRIM_ACKNOWLEDGEMENT})
        + message_size(tool_result)
        + message_size(final)
        + 10
    )
    window = ContextWindow(max_input_tokens=budget, chars_per_token=1)

    trimmed = window.trim(conversation)

    assert tool_result not in trimmed
    assert trimmed[-1] == final

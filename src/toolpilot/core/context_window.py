"""Keep the outgoing conversation under the provider's input budget."""

from __future__ import annotations

import json
from collections.abc import Sequence

from loguru import logger

from toolpilot.llm.types import WireMessage

DEFAULT_MAX_INPUT_TOKENS = 150_000
DEFAULT_CHARS_PER_TOKEN = 3

TRIM_NOTICE = "[Earlier conversation history was trimmed to stay within context limits]"
TRIM_ACKNOWLEDGEMENT = "Understood. I'll continue based on the recent conversation context."


def message_size(message: WireMessage) -> int:
    return len(json.dumps(message, ensure_ascii=False, separators=(",", ":"), default=str))


def is_tool_result_message(message: WireMessage) -> bool:
    """True for messages that answer an earlier tool invocation, in any provider shape."""
    role = message.get("role")
    if role in {"tool", "function"}:
        return True
    content = message.get("content")
    if role == "user" and isinstance(content, list):
        return any(isinstance(block, dict) and block.get("type") == "tool_result" for block in content)
    return False


class ContextWindow:
    """Character-budget trimming with a notice in place of dropped history."""

    def __init__(
        self,
        max_input_tokens: int = DEFAULT_MAX_INPUT_TOKENS,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ) -> None:
        self.max_input_tokens = max_input_tokens
        self.chars_per_token = chars_per_token

    @property
    def budget_chars(self) -> int:
        return self.max_input_tokens * self.chars_per_token

    def trim(self, conversation: Sequence[WireMessage]) -> list[WireMessage]:
        messages = list(conversation)
        budget = self.budget_chars
        total = sum(message_size(message) for message in messages)
        if len(messages) <= 2 or total <= budget:
            return messages

        first = messages[0]
        notice: list[WireMessage] = [
            {"role": "user", "content": TRIM_NOTICE},
            {"role": "assistant", "content": TRIM_ACKNOWLEDGEMENT},
        ]
        used = message_size(first) + sum(message_size(message) for message in notice)

        kept: list[WireMessage] = []
        for message in reversed(messages[1:]):
            size = message_size(message)
            if kept and used + size > budget:
                break
            kept.append(message)
            used += size
        kept.reverse()

        while len(kept) > 1 and is_tool_result_message(kept[0]):
            kept.pop(0)

        logger.info(
            "context.trimmed messages_before={} messages_after={} chars_before={} budget={}",
            len(messages),
            len(kept) + 3,
            total,
            budget,
        )
        return [first, *notice, *kept]

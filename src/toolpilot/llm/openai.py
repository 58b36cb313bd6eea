"""OpenAI Chat Completions adapter."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from toolpilot.llm.base import ProviderAdapter, StreamState
from toolpilot.llm.providers import Provider
from toolpilot.llm.types import ToolDefinition, ToolInvocation, ToolOutcome, WireMessage

API_URL = "https://api.openai.com/v1/chat/completions"

FINISH_REASONS = {"stop": "end_turn", "tool_calls": "tool_use"}


class OpenAIAdapter(ProviderAdapter):
    provider = Provider.OPENAI

    def endpoint(self) -> str:
        return API_URL

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_request_body(
        self,
        conversation: Sequence[WireMessage],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        messages: list[WireMessage] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(conversation)
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
            "stream": True,
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema.to_dict(),
                    },
                }
                for tool in tools
            ]
        return body

    def handle_frame(self, frame: dict[str, Any], state: StreamState) -> None:
        choices = frame.get("choices") or []
        if not choices:
            return
        choice = choices[0]
        delta = choice.get("delta") or {}

        state.emit_text(delta.get("content"))

        for fragment in delta.get("tool_calls") or []:
            builder = state.invocations.builder(int(fragment.get("index", 0)))
            if fragment.get("id"):
                builder.id = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                builder.name = function["name"]
            builder.append_arguments(function.get("arguments"))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            state.raw_stop_reason = FINISH_REASONS.get(finish_reason, finish_reason)

    def format_assistant_message(self, text: str, invocations: Sequence[ToolInvocation]) -> WireMessage:
        message: WireMessage = {"role": "assistant", "content": text or ""}
        if invocations:
            message["tool_calls"] = [
                {
                    "id": invocation.id,
                    "type": "function",
                    "function": {
                        "name": invocation.name,
                        "arguments": json.dumps(invocation.arguments, ensure_ascii=False),
                    },
                }
                for invocation in invocations
            ]
        return message

    def format_tool_result_messages(self, outcomes: Sequence[ToolOutcome]) -> list[WireMessage]:
        return [
            {"role": "tool", "tool_call_id": outcome.call_id, "content": outcome.result_json}
            for outcome in outcomes
        ]

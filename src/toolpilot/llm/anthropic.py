"""Anthropic Messages API adapter."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from toolpilot.llm.base import ProviderAdapter, StreamState
from toolpilot.llm.providers import Provider
from toolpilot.llm.types import ToolDefinition, ToolInvocation, ToolOutcome, WireMessage

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    provider = Provider.ANTHROPIC

    def endpoint(self) -> str:
        return API_URL

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": API_VERSION}

    def build_request_body(
        self,
        conversation: Sequence[WireMessage],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": list(conversation),
            "stream": True,
        }
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema.to_dict(),
                }
                for tool in tools
            ]
        return body

    def handle_frame(self, frame: dict[str, Any], state: StreamState) -> None:
        event_type = frame.get("type")
        index = int(frame.get("index", 0))
        match event_type:
            case "content_block_start":
                block = frame["content_block"]
                if block.get("type") == "tool_use":
                    builder = state.invocations.builder(index)
                    builder.id = block.get("id")
                    builder.name = block.get("name")
            case "content_block_delta":
                delta = frame["delta"]
                delta_type = delta.get("type")
                if delta_type == "text_delta":
                    state.emit_text(delta.get("text"))
                elif delta_type == "input_json_delta" and state.invocations.has_pending(index):
                    state.invocations.builder(index).append_arguments(delta.get("partial_json"))
            case "content_block_stop":
                state.invocations.finalize(index)
            case "message_delta":
                stop_reason = (frame.get("delta") or {}).get("stop_reason")
                if stop_reason:
                    state.raw_stop_reason = stop_reason
            case "error":
                error = frame.get("error") or {}
                state.error = f"{error.get('type', 'error')}: {error.get('message', '')}"

    def format_assistant_message(self, text: str, invocations: Sequence[ToolInvocation]) -> WireMessage:
        content: list[dict[str, Any]] = []
        if text:
            content.append({"type": "text", "text": text})
        for invocation in invocations:
            content.append(
                {
                    "type": "tool_use",
                    "id": invocation.id,
                    "name": invocation.name,
                    "input": dict(invocation.arguments),
                }
            )
        return {"role": "assistant", "content": content}

    def format_tool_result_messages(self, outcomes: Sequence[ToolOutcome]) -> list[WireMessage]:
        if not outcomes:
            return []
        blocks = [
            {"type": "tool_result", "tool_use_id": outcome.call_id, "content": outcome.result_json}
            for outcome in outcomes
        ]
        return [{"role": "user", "content": blocks}]

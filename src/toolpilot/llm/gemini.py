"""Google Gemini ``streamGenerateContent`` adapter."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from toolpilot.llm.base import ProviderAdapter, StreamState
from toolpilot.llm.providers import Provider
from toolpilot.llm.types import ToolDefinition, ToolInvocation, ToolOutcome, WireMessage

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

ROLE_MAP = {"assistant": "model", "model": "model", "function": "function"}


def _block_to_part(block: Any) -> dict[str, Any] | None:
    if not isinstance(block, dict):
        return {"text": str(block)}
    match block.get("type"):
        case "text":
            return {"text": block.get("text", "")}
        case "tool_use":
            return {"functionCall": {"name": block.get("name", ""), "args": block.get("input") or {}}}
        case "tool_result":
            return {
                "functionResponse": {
                    "name": block.get("name") or block.get("tool_use_id", ""),
                    "response": {"content": block.get("content")},
                }
            }
    if any(key in block for key in ("text", "functionCall", "functionResponse")):
        return block
    return None


def to_gemini_content(message: WireMessage) -> dict[str, Any]:
    """Convert one conversation entry into a Gemini ``contents`` item."""
    role = ROLE_MAP.get(str(message.get("role", "user")), "user")
    if "parts" in message:
        parts = list(message["parts"] or [])
    else:
        content = message.get("content")
        if isinstance(content, str):
            parts = [{"text": content}]
        elif isinstance(content, list):
            parts = [part for part in map(_block_to_part, content) if part is not None]
        else:
            parts = []
    return {"role": role, "parts": parts or [{"text": ""}]}


def _response_content(result_json: str) -> Any:
    try:
        return json.loads(result_json)
    except json.JSONDecodeError:
        return {"result": result_json}


class GeminiAdapter(ProviderAdapter):
    provider = Provider.GOOGLE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._call_counter = 0

    def endpoint(self) -> str:
        return f"{API_BASE}/{self.model}:streamGenerateContent?alt=sse"

    def headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def build_request_body(
        self,
        conversation: Sequence[WireMessage],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [to_gemini_content(message) for message in conversation],
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.input_schema.to_dict(),
                        }
                        for tool in tools
                    ]
                }
            ]
        return body

    def handle_frame(self, frame: dict[str, Any], state: StreamState) -> None:
        if "error" in frame:
            error = frame["error"] or {}
            state.error = f"{error.get('status', 'error')}: {error.get('message', '')}"
            return
        candidates = frame.get("candidates") or []
        if not candidates:
            return
        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "text" in part:
                state.emit_text(part["text"])
            call = part.get("functionCall")
            if call:
                index = state.invocations.next_index()
                builder = state.invocations.builder(index)
                builder.id = self._next_call_id()
                builder.name = call.get("name")
                args = call.get("args")
                builder.arguments = dict(args) if isinstance(args, dict) else {}
                state.invocations.finalize(index)
        finish_reason = candidate.get("finishReason")
        if finish_reason:
            state.raw_stop_reason = finish_reason

    def _next_call_id(self) -> str:
        call_id = f"gemini_call_{self._call_counter}"
        self._call_counter += 1
        return call_id

    def format_assistant_message(self, text: str, invocations: Sequence[ToolInvocation]) -> WireMessage:
        parts: list[dict[str, Any]] = []
        if text:
            parts.append({"text": text})
        for invocation in invocations:
            parts.append({"functionCall": {"name": invocation.name, "args": dict(invocation.arguments)}})
        return {"role": "model", "parts": parts or [{"text": ""}]}

    def format_tool_result_messages(self, outcomes: Sequence[ToolOutcome]) -> list[WireMessage]:
        if not outcomes:
            return []
        parts = [
            {
                "functionResponse": {
                    "name": outcome.tool_name,
                    "response": {"content": _response_content(outcome.result_json)},
                }
            }
            for outcome in outcomes
        ]
        return [{"role": "function", "parts": parts}]

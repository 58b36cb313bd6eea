"""Provider-neutral value types shared by every adapter."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, TypeAlias

Role = Literal["user", "assistant"]
WireMessage: TypeAlias = dict[str, Any]


class StopReason(StrEnum):
    MORE_TEXT = "more_text"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    """One entry of the in-memory conversation."""

    role: Role
    content: str

    def to_wire(self) -> WireMessage:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class PropertySchema:
    """Schema of one named tool parameter."""

    type: str
    description: str = ""
    enum: tuple[str, ...] | None = None
    items: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            payload["enum"] = list(self.enum)
        if self.type == "array":
            payload["items"] = dict(self.items or {"type": "string"})
        return payload


@dataclass(frozen=True)
class ToolSchema:
    properties: dict[str, PropertySchema] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    type: str = "object"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "properties": {name: prop.to_dict() for name, prop in self.properties.items()},
            "required": list(self.required),
        }


@dataclass(frozen=True)
class ToolDefinition:
    """A callable operation advertised to the model."""

    name: str
    description: str
    input_schema: ToolSchema = field(default_factory=ToolSchema)


@dataclass(frozen=True)
class ToolInvocation:
    """A completed tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutcome:
    """Result of dispatching one ToolInvocation."""

    call_id: str
    tool_name: str
    success: bool
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        message = self.payload.get("message")
        return message if isinstance(message, str) else ""

    @property
    def data(self) -> dict[str, Any]:
        data = self.payload.get("data")
        return data if isinstance(data, dict) else {}

    @property
    def result_json(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class Response:
    """Aggregate of one upstream round-trip."""

    text: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = ()
    stop_reason: StopReason = StopReason.MORE_TEXT
    success: bool = True
    error: str | None = None
    raw_stop_reason: str | None = None

    @classmethod
    def failure(cls, error: str, *, text: str = "") -> Response:
        return cls(text=text, stop_reason=StopReason.ERROR, success=False, error=error)

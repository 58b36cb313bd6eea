"""Host tool registry and the dispatch interface used by the orchestrator."""

from __future__ import annotations

import builtins
import inspect
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable, TypeAlias

from loguru import logger
from pydantic import BaseModel, ValidationError

from toolpilot.llm.types import PropertySchema, ToolDefinition, ToolOutcome, ToolSchema

JSON_SCHEMA_TYPES = frozenset({"string", "integer", "number", "boolean", "array", "object"})
LOG_VALUE_WIDTH = 30

ToolHandler: TypeAlias = Callable[[Any], Any | Awaitable[Any]]


@dataclass(frozen=True)
class ToolResult:
    """What a tool handler reports back to the model."""

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    warning: str | None = None

    @classmethod
    def ok(cls, message: str, data: Mapping[str, Any] | None = None) -> ToolResult:
        return cls(success=True, message=message, data=dict(data or {}))

    @classmethod
    def fail(cls, message: str, data: Mapping[str, Any] | None = None) -> ToolResult:
        return cls(success=False, message=message, data=dict(data or {}))

    @classmethod
    def with_warning(cls, message: str, data: Mapping[str, Any] | None = None) -> ToolResult:
        return cls(success=True, message=message, data=dict(data or {}), warning=message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message, "data": self.data}
        if self.warning is not None:
            payload["warning"] = self.warning
        return payload


@runtime_checkable
class ToolDispatcher(Protocol):
    """Executes tools by name; failures come back as outcomes, never as exceptions."""

    def definitions(self) -> list[ToolDefinition]: ...

    async def execute_tool(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        call_id: str = "",
    ) -> ToolOutcome: ...


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata and runtime handle."""

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler
    definition: ToolDefinition


def _shorten(text: str, width: int = LOG_VALUE_WIDTH, placeholder: str = "...") -> str:
    if len(text) <= width:
        return text
    available = width - len(placeholder)
    return text[:available] + placeholder if available > 0 else placeholder


def _resolve_ref(node: dict[str, Any], defs: Mapping[str, Any]) -> dict[str, Any]:
    ref = node.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/$defs/"):
        resolved = defs.get(ref.removeprefix("#/$defs/"), {})
        return {**resolved, **{key: value for key, value in node.items() if key != "$ref"}}
    return node


def _collapse_optional(node: dict[str, Any], defs: Mapping[str, Any]) -> dict[str, Any]:
    variants = node.get("anyOf") or node.get("oneOf")
    if not variants:
        return _resolve_ref(node, defs)
    for variant in variants:
        variant = _resolve_ref(variant, defs)
        if variant.get("type") != "null":
            merged = {key: value for key, value in node.items() if key not in {"anyOf", "oneOf"}}
            return {**variant, **merged}
    return {key: value for key, value in node.items() if key not in {"anyOf", "oneOf"}}


def _property_schema(node: dict[str, Any], defs: Mapping[str, Any]) -> PropertySchema:
    node = _collapse_optional(node, defs)
    schema_type = node.get("type")
    if schema_type not in JSON_SCHEMA_TYPES:
        schema_type = "string"
    enum = node.get("enum")
    items = node.get("items")
    if isinstance(items, dict):
        items = _collapse_optional(items, defs)
        items = {key: value for key, value in items.items() if key in {"type", "enum", "description"}}
    return PropertySchema(
        type=schema_type,
        description=node.get("description", ""),
        enum=tuple(str(value) for value in enum) if enum else None,
        items=items if isinstance(items, dict) and items else None,
    )


def schema_from_model(model: type[BaseModel]) -> ToolSchema:
    """Flatten a pydantic model's JSON schema into the provider-neutral tool schema."""
    raw = model.model_json_schema()
    defs = raw.get("$defs", {})
    properties = {
        name: _property_schema(node, defs) for name, node in (raw.get("properties") or {}).items()
    }
    return ToolSchema(properties=properties, required=tuple(raw.get("required") or ()))


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(problems)


def _coerce_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult.ok("Done.")
    if isinstance(value, str):
        return ToolResult.ok(value)
    if isinstance(value, Mapping):
        return ToolResult.ok("", dict(value))
    return ToolResult.ok(str(value), {"result": value})


class ToolRegistry:
    """Registry of host tools, each with a pydantic input model.

    Names are matched case-insensitively. ``execute_tool`` validates the
    model's arguments against the input model and always returns an outcome.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        description: str,
        model: type[BaseModel],
        handler: ToolHandler,
    ) -> ToolDescriptor:
        definition = ToolDefinition(name=name, description=description, input_schema=schema_from_model(model))
        descriptor = ToolDescriptor(
            name=name,
            description=description,
            input_model=model,
            handler=handler,
            definition=definition,
        )
        self._tools[name.casefold()] = descriptor
        return descriptor

    def tool(self, name: str, description: str, model: type[BaseModel]) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, description, model, handler)
            return handler

        return decorator

    def has(self, name: str) -> bool:
        return bool(name) and name.casefold() in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        if not name:
            return None
        return self._tools.get(name.casefold())

    def names(self) -> builtins.list[str]:
        return [descriptor.name for descriptor in self._tools.values()]

    def definitions(self) -> builtins.list[ToolDefinition]:
        return [descriptor.definition for descriptor in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    async def execute_tool(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        call_id: str = "",
    ) -> ToolOutcome:
        descriptor = self.get(name)
        if descriptor is None:
            logger.warning("tool.call.unknown name={}", name)
            return self._outcome(call_id, name, ToolResult.fail(f"Unknown tool: {name}"))

        self._log_tool_call(descriptor.name, arguments)
        start = time.monotonic()
        try:
            params = descriptor.input_model.model_validate(dict(arguments))
            value = descriptor.handler(params)
            if inspect.isawaitable(value):
                value = await value
            result = _coerce_result(value)
        except ValidationError as exc:
            result = ToolResult.fail(f"Invalid arguments for {descriptor.name}: {_format_validation_error(exc)}")
        except Exception as exc:
            logger.exception("tool.call.error name={}", descriptor.name)
            result = ToolResult.fail(f"Tool execution error: {exc}")
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", descriptor.name, duration * 1000)
        return self._outcome(call_id, descriptor.name, result)

    @staticmethod
    def _outcome(call_id: str, name: str, result: ToolResult) -> ToolOutcome:
        return ToolOutcome(call_id=call_id, tool_name=name, success=result.success, payload=result.to_payload())

    @staticmethod
    def _log_tool_call(name: str, arguments: Mapping[str, Any]) -> None:
        params: builtins.list[str] = []
        for key, value in arguments.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            params.append(f"{key}={_shorten(rendered)}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))

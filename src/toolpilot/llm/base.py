"""Streaming adapter contract shared by every provider runtime."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeAlias

import httpx
from loguru import logger

from toolpilot.cancellation import CancellationToken
from toolpilot.llm.providers import Provider
from toolpilot.llm.types import (
    Response,
    StopReason,
    ToolDefinition,
    ToolInvocation,
    ToolOutcome,
    WireMessage,
)

DEFAULT_TIMEOUT_SECONDS = 300.0
SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"
PREVIEW_CHARS = 200

TextDeltaCallback: TypeAlias = Callable[[str], None]


def parse_arguments(raw: str, *, tool_name: str | None = None) -> dict[str, Any]:
    """Decode a streamed argument buffer, degrading to an empty mapping."""
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning(
            "llm.tool_arguments.invalid tool={} error={} preview={!r}",
            tool_name,
            exc.msg,
            raw[:PREVIEW_CHARS],
        )
        return {}
    if not isinstance(value, dict):
        logger.warning("llm.tool_arguments.not_object tool={} type={}", tool_name, type(value).__name__)
        return {}
    return value


@dataclass
class PartialInvocation:
    """Fragments of one tool call collected while the stream is open."""

    id: str | None = None
    name: str | None = None
    argument_parts: list[str] = field(default_factory=list)
    arguments: dict[str, Any] | None = None

    def append_arguments(self, fragment: str | None) -> None:
        if fragment:
            self.argument_parts.append(fragment)

    def build(self, *, fallback_id: str) -> ToolInvocation:
        if self.arguments is not None:
            arguments = dict(self.arguments)
        else:
            arguments = parse_arguments("".join(self.argument_parts), tool_name=self.name)
        return ToolInvocation(id=self.id or fallback_id, name=self.name or "", arguments=arguments)


class InvocationAccumulator:
    """Index-keyed partial invocations, finalized in ascending index order."""

    def __init__(self) -> None:
        self._pending: dict[int, PartialInvocation] = {}
        self._finished: dict[int, ToolInvocation] = {}

    def builder(self, index: int) -> PartialInvocation:
        return self._pending.setdefault(index, PartialInvocation())

    def has_pending(self, index: int) -> bool:
        return index in self._pending

    def next_index(self) -> int:
        used = self._pending.keys() | self._finished.keys()
        return max(used) + 1 if used else 0

    def finalize(self, index: int) -> None:
        partial = self._pending.pop(index, None)
        if partial is None:
            return
        self._finished[index] = partial.build(fallback_id=f"call_{index}")

    def finalize_all(self) -> tuple[ToolInvocation, ...]:
        for index in list(self._pending):
            self.finalize(index)
        return tuple(self._finished[index] for index in sorted(self._finished))


@dataclass
class StreamState:
    """Mutable aggregate for one streamed response."""

    on_text_delta: TextDeltaCallback | None = None
    text_parts: list[str] = field(default_factory=list)
    invocations: InvocationAccumulator = field(default_factory=InvocationAccumulator)
    raw_stop_reason: str | None = None
    error: str | None = None
    pending_deltas: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def emit_text(self, fragment: str | None) -> None:
        if not fragment:
            return
        self.text_parts.append(fragment)
        self.pending_deltas.append(fragment)

    def flush_deltas(self) -> None:
        """Hand buffered fragments to ``on_text_delta``; callback errors propagate."""
        deltas, self.pending_deltas = self.pending_deltas, []
        if self.on_text_delta is None:
            return
        for fragment in deltas:
            self.on_text_delta(fragment)

    def to_response(self) -> Response:
        invocations = self.invocations.finalize_all()
        if self.error is not None:
            return Response.failure(self.error, text=self.text)
        return Response(
            text=self.text,
            tool_invocations=invocations,
            stop_reason=StopReason.TOOL_CALLS if invocations else StopReason.MORE_TEXT,
            success=True,
            raw_stop_reason=self.raw_stop_reason,
        )


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line until the done sentinel."""
    async for line in response.aiter_lines():
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        data = line[len(SSE_DATA_PREFIX) :].strip()
        if not data:
            continue
        if data == SSE_DONE_SENTINEL:
            return
        yield data


class ProviderAdapter(ABC):
    """One upstream model provider behind a uniform streaming contract.

    Subclasses describe the request (``endpoint``, ``headers``,
    ``build_request_body``), interpret each decoded SSE frame
    (``handle_frame``) and shape follow-up messages in the provider's wire
    format. HTTP, SSE framing and response aggregation live here.
    """

    provider: ClassVar[Provider]

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    @abstractmethod
    def endpoint(self) -> str: ...

    @abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abstractmethod
    def build_request_body(
        self,
        conversation: Sequence[WireMessage],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]: ...

    @abstractmethod
    def handle_frame(self, frame: dict[str, Any], state: StreamState) -> None: ...

    @abstractmethod
    def format_assistant_message(self, text: str, invocations: Sequence[ToolInvocation]) -> WireMessage: ...

    @abstractmethod
    def format_tool_result_messages(self, outcomes: Sequence[ToolOutcome]) -> list[WireMessage]: ...

    async def send_streaming(
        self,
        conversation: Sequence[WireMessage],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
        on_text_delta: TextDeltaCallback | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Response:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        body = self.build_request_body(conversation, system_prompt, tools)
        state = StreamState(on_text_delta=on_text_delta)
        logger.info(
            "llm.request.start provider={} model={} messages={} tools={}",
            self.provider,
            self.model,
            len(conversation),
            len(tools),
        )
        try:
            async with self._client.stream("POST", self.endpoint(), headers=self.headers(), json=body) as response:
                if response.is_error:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "llm.request.rejected provider={} status={}", self.provider, response.status_code
                    )
                    return Response.failure(f"API Error {response.status_code}: {detail}")
                async for data in iter_sse_data(response):
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    self._dispatch_frame(data, state)
        except httpx.HTTPError as exc:
            logger.warning("llm.request.transport_error provider={} error={}", self.provider, exc)
            return Response.failure(str(exc) or type(exc).__name__, text=state.text)

        result = state.to_response()
        logger.info(
            "llm.request.end provider={} success={} stop={} raw_stop={} tool_calls={} chars={}",
            self.provider,
            result.success,
            result.stop_reason,
            result.raw_stop_reason,
            len(result.tool_invocations),
            len(result.text),
        )
        return result

    def _dispatch_frame(self, data: str, state: StreamState) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("llm.stream.bad_frame provider={} preview={!r}", self.provider, data[:PREVIEW_CHARS])
            return
        if not isinstance(frame, dict):
            return
        try:
            self.handle_frame(frame, state)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            logger.warning(
                "llm.stream.unexpected_frame provider={} error={} preview={!r}",
                self.provider,
                exc,
                data[:PREVIEW_CHARS],
            )
        state.flush_deltas()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ProviderAdapter:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

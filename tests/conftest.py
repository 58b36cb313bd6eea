from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import Any, TypeAlias

import httpx
import pytest

Frame: TypeAlias = dict[str, Any] | str
ClientFactory: TypeAlias = Callable[..., tuple[httpx.AsyncClient, list[httpx.Request]]]


def sse_body(frames: Iterable[Frame], *, done: bool = False) -> bytes:
    chunks: list[str] = []
    for frame in frames:
        if isinstance(frame, str):
            chunks.append(f"data: {frame}\n\n")
            continue
        if "type" in frame:
            chunks.append(f"event: {frame['type']}\n")
        chunks.append(f"data: {json.dumps(frame)}\n\n")
    if done:
        chunks.append("data: [DONE]\n\n")
    return "".join(chunks).encode()


@pytest.fixture
def sse_client() -> ClientFactory:
    """Build an AsyncClient whose every POST answers with the given SSE frames."""

    def _factory(
        frames: Iterable[Frame] = (),
        *,
        done: bool = False,
        status_code: int = 200,
        body: bytes | None = None,
    ) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []
        content = body if body is not None else sse_body(list(frames), done=done)

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(status_code, content=content, headers={"content-type": "text/event-stream"})

        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests

    return _factory

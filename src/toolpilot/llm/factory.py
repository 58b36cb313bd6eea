"""Adapter construction keyed by provider."""

from __future__ import annotations

import httpx

from toolpilot.errors import UnknownProviderError
from toolpilot.llm.anthropic import AnthropicAdapter
from toolpilot.llm.base import DEFAULT_TIMEOUT_SECONDS, ProviderAdapter
from toolpilot.llm.gemini import GeminiAdapter
from toolpilot.llm.openai import OpenAIAdapter
from toolpilot.llm.providers import Provider

ADAPTERS: dict[Provider, type[ProviderAdapter]] = {
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.OPENAI: OpenAIAdapter,
    Provider.GOOGLE: GeminiAdapter,
}


def create_adapter(
    provider: Provider | str,
    api_key: str,
    model: str | None = None,
    max_tokens: int = 16384,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> ProviderAdapter:
    """Build the adapter for ``provider``; an empty model selects the provider default."""
    resolved = provider if isinstance(provider, Provider) else Provider.parse(provider)
    adapter_cls = ADAPTERS.get(resolved)
    if adapter_cls is None:
        raise UnknownProviderError(f"No adapter registered for provider '{provider}'")
    return adapter_cls(
        api_key,
        model or resolved.info.default_model,
        max_tokens,
        client=client,
        timeout=timeout,
    )

"""Provider catalog: identifiers, defaults and API-key checks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Provider(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: str | None) -> Provider:
        """Parse a configured provider name, defaulting to Anthropic."""
        if value is None or not value.strip():
            return cls.ANTHROPIC
        normalized = value.strip().casefold()
        if normalized in {"openai", "gpt"}:
            return cls.OPENAI
        if normalized in {"google", "gemini"}:
            return cls.GOOGLE
        return cls.ANTHROPIC

    @property
    def info(self) -> ProviderInfo:
        return _CATALOG[self]

    def validate_api_key(self, key: str | None) -> bool:
        if key is None or not key.strip():
            return False
        info = self.info
        if info.key_prefix is not None:
            return key.startswith(info.key_prefix)
        return len(key) >= info.min_key_length


@dataclass(frozen=True)
class ProviderInfo:
    display_name: str
    default_model: str
    key_hint: str
    key_prefix: str | None = None
    min_key_length: int = 0

    @property
    def key_error(self) -> str:
        if self.key_prefix is not None:
            return f"Invalid API key. {self.display_name} keys start with '{self.key_prefix}'"
        return f"Invalid API key. Please check your {self.display_name} API key."


_CATALOG: dict[Provider, ProviderInfo] = {
    Provider.ANTHROPIC: ProviderInfo(
        display_name="Anthropic (Claude)",
        default_model="claude-sonnet-4-20250514",
        key_hint="Get one at console.anthropic.com",
        key_prefix="sk-ant-",
    ),
    Provider.OPENAI: ProviderInfo(
        display_name="OpenAI (GPT)",
        default_model="gpt-4o",
        key_hint="Get one at platform.openai.com/api-keys",
        key_prefix="sk-",
    ),
    Provider.GOOGLE: ProviderInfo(
        display_name="Google (Gemini)",
        default_model="gemini-2.0-flash",
        key_hint="Get one at aistudio.google.com/apikey",
        min_key_length=20,
    ),
}

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

PROVIDER_NAMES: tuple[str, ...] = ("openai", "anthropic", "deepseek", "grok", "llama", "openrouter")

_ALIASES = {
    "gpt": "openai",
    "claude": "anthropic",
    "xai": "grok",
    "x.ai": "grok",
    "meta": "llama",
    "meta-llama": "llama",
    "router": "openrouter",
}

# name -> (default model, default base url)
_DEFAULTS: dict[str, tuple[str, str | None]] = {
    "openai": ("gpt-4.1-mini", "https://api.openai.com/v1"),
    "anthropic": ("claude-3-5-haiku-latest", None),
    "deepseek": ("deepseek-chat", "https://api.deepseek.com/v1"),
    "grok": ("grok-beta", "https://api.x.ai/v1"),
    "llama": ("Llama-3.3-70B-Instruct", "https://api.llama.com/compat/v1"),
    "openrouter": ("meta-llama/llama-3.3-70b-instruct:free", "https://openrouter.ai/api/v1"),
}

DEFAULT_ANTHROPIC_MAX_TOKENS = 1024


def as_provider_name(value: object) -> str | None:
    normalized = str(value or "").strip().lower()
    if normalized in PROVIDER_NAMES:
        return normalized
    return _ALIASES.get(normalized)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    api_key: str
    model: str
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    max_tokens_cap: int | None = None


def _positive_int(value: str | None) -> int:
    try:
        parsed = int(str(value or "").strip())
    except ValueError:
        return 0
    return parsed if parsed > 0 else 0


def build_provider_configs(env: Mapping[str, str] | None = None) -> list[ProviderConfig]:
    """One config per provider that has an API key in the environment."""
    env = os.environ if env is None else env
    configs: list[ProviderConfig] = []

    for name in PROVIDER_NAMES:
        prefix = name.upper()
        api_key = str(env.get(f"{prefix}_API_KEY", "")).strip()
        if not api_key:
            continue

        default_model, default_base_url = _DEFAULTS[name]
        base_url = env.get(f"{prefix}_BASE_URL") or default_base_url
        headers: dict[str, str] = {}
        max_tokens_cap = None

        if name == "openrouter":
            referer = str(env.get("OPENROUTER_HTTP_REFERER", "")).strip()
            title = str(env.get("OPENROUTER_X_TITLE", "")).strip()
            if referer:
                headers["HTTP-Referer"] = referer
            if title:
                headers["X-Title"] = title
        if name == "anthropic":
            max_tokens_cap = _positive_int(env.get("ANTHROPIC_MAX_TOKENS")) or DEFAULT_ANTHROPIC_MAX_TOKENS

        configs.append(
            ProviderConfig(
                name=name,
                api_key=api_key,
                model=env.get(f"{prefix}_MODEL") or default_model,
                base_url=base_url.rstrip("/") if base_url else None,
                headers=headers,
                max_tokens_cap=max_tokens_cap,
            )
        )

    return configs


@runtime_checkable
class TextProvider(Protocol):
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        prompt: str,
    ) -> str:
        """Single-shot completion of one user prompt. Returns the response text."""
        ...

    def stream_text(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        prompt: str,
    ) -> AsyncIterator[str]:
        """Stream text deltas for one user prompt."""
        ...


def create_provider(config: ProviderConfig, *, timeout_seconds: float = 45.0) -> TextProvider:
    """Factory: create a TextProvider for a configured provider."""
    if config.name == "anthropic":
        from campaign_assistant.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(config.api_key, base_url=config.base_url, timeout_seconds=timeout_seconds)
    if config.name in PROVIDER_NAMES:
        from campaign_assistant.providers.openai_provider import OpenAICompatibleProvider
        return OpenAICompatibleProvider(
            config.api_key,
            base_url=config.base_url,
            headers=config.headers,
            timeout_seconds=timeout_seconds,
        )
    raise ValueError(f"Unknown provider: {config.name!r}. Supported: {', '.join(PROVIDER_NAMES)}")

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from campaign_assistant.model_registry import ModelMode, is_paid_plan
from campaign_assistant.provider import PROVIDER_NAMES, as_provider_name

DEFAULT_PRIORITY: tuple[str, ...] = ("deepseek", "llama", "openrouter", "openai", "anthropic", "grok")

_STARTER_ALLOW: tuple[str, ...] = ("llama", "deepseek", "openrouter", "openai")
_PREMIUM_PROVIDERS: tuple[str, ...] = ("openai", "anthropic", "grok")

MODE_PREFERRED_ORDER: dict[ModelMode, tuple[str, ...]] = {
    ModelMode.ESSENTIAL: ("openrouter", "llama", "deepseek", "openai", "anthropic", "grok"),
    ModelMode.BALANCED: ("deepseek", "openai", "anthropic", "openrouter", "llama", "grok"),
    ModelMode.PREMIUM: ("openai", "anthropic", "grok", "deepseek", "openrouter", "llama"),
}


@dataclass(frozen=True)
class ProviderPolicy:
    allowed: frozenset[str]
    preferred_order: tuple[str, ...]
    premium_providers: frozenset[str]


def parse_provider_list(raw: str | Iterable[str] | None, fallback: Iterable[str] = ()) -> list[str]:
    if raw is None:
        entries: Iterable[str] = []
    elif isinstance(raw, str):
        entries = raw.split(",")
    else:
        entries = raw
    parsed: list[str] = []
    for entry in entries:
        name = as_provider_name(entry)
        if name and name not in parsed:
            parsed.append(name)
    return parsed or list(fallback)


def resolve_provider_policy(user_plan: str | None, env: Mapping[str, str] | None = None) -> ProviderPolicy:
    env = os.environ if env is None else env
    starter_allow = parse_provider_list(env.get("AI_POLICY_STARTER_ALLOW"), _STARTER_ALLOW)
    pro_allow = parse_provider_list(env.get("AI_POLICY_PRO_ALLOW"), PROVIDER_NAMES)
    premium = parse_provider_list(env.get("AI_POLICY_PREMIUM_PROVIDERS"), _PREMIUM_PROVIDERS)

    if is_paid_plan(user_plan):
        allowed = pro_allow
        preferred = parse_provider_list(env.get("AI_POLICY_PRO_PRIORITY"), pro_allow)
    else:
        allowed = starter_allow
        preferred = parse_provider_list(env.get("AI_POLICY_STARTER_PRIORITY"), starter_allow)

    return ProviderPolicy(
        allowed=frozenset(allowed),
        preferred_order=tuple(preferred),
        premium_providers=frozenset(premium),
    )


def build_attempt_order(
    available: Iterable[str],
    *,
    requested: str | None = None,
    preferred: str | None = None,
    mode: ModelMode | None = None,
    policy_order: Iterable[str] = (),
    priority: Iterable[str] = (),
    strict: bool = False,
) -> list[str]:
    """Order available providers for failover.

    Explicit request, then the configured preference, then the mode's order,
    then the plan policy, then configured priority, then the default priority.
    With ``strict`` and a preference set, only the first four sources count.
    """
    available_list = list(available)
    available_set = set(available_list)
    ordered: list[str] = []

    def push(name: str | None) -> None:
        if name and name in available_set and name not in ordered:
            ordered.append(name)

    push(as_provider_name(requested))
    preferred_name = as_provider_name(preferred)
    push(preferred_name)
    for name in MODE_PREFERRED_ORDER[mode or ModelMode.ESSENTIAL]:
        push(name)
    for name in policy_order:
        push(name)

    if strict and preferred_name:
        return ordered

    for name in parse_provider_list(list(priority), DEFAULT_PRIORITY):
        push(name)
    for name in DEFAULT_PRIORITY:
        push(name)
    for name in available_list:
        push(name)
    return ordered

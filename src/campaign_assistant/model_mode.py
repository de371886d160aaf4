from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from campaign_assistant.model_registry import (
    ModelMode,
    get_model_for_mode,
    is_model_accessible,
    is_paid_plan,
)


@dataclass(frozen=True)
class ModelProfile:
    mode: ModelMode
    provider: str
    model: str
    temperature: float
    max_output_tokens: int
    quality_instruction: str


def normalize_mode(value: object) -> ModelMode:
    if isinstance(value, ModelMode):
        return value
    candidate = str(value or "").strip().lower()
    try:
        return ModelMode(candidate)
    except ValueError:
        return ModelMode.ESSENTIAL


def resolve_model_profile(
    mode: object = None,
    user_plan: str | None = None,
    env: Mapping[str, str] | None = None,
) -> ModelProfile:
    """Resolve the generation profile for a request. Never fails."""
    env = os.environ if env is None else env
    requested = normalize_mode(mode)
    # Paid plans may request any mode.
    if not is_paid_plan(user_plan) and not is_model_accessible(requested, user_plan):
        effective = ModelMode.ESSENTIAL
    else:
        effective = requested

    entry = get_model_for_mode(effective, env)
    prefix = f"AI_MODE_{effective.value.upper()}"
    return ModelProfile(
        mode=entry.mode,
        provider=env.get(f"{prefix}_PROVIDER") or entry.provider,
        model=env.get(f"{prefix}_MODEL") or entry.model,
        temperature=entry.temperature,
        max_output_tokens=entry.max_output_tokens,
        quality_instruction=entry.quality_instruction,
    )

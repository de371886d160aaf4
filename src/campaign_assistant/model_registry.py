from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


class ModelMode(str, Enum):
    ESSENTIAL = "essential"
    BALANCED = "balanced"
    PREMIUM = "premium"


PAID_PLANS = frozenset({"pro", "premium", "enterprise"})


def normalize_plan(plan: str | None) -> str:
    return str(plan or "").strip().lower()


def is_paid_plan(plan: str | None) -> bool:
    return normalize_plan(plan) in PAID_PLANS


@dataclass(frozen=True)
class ModelRegistryEntry:
    id: str
    provider: str
    model: str
    label: str
    mode: ModelMode
    input_cost_per_1k_tokens: float
    output_cost_per_1k_tokens: float
    max_output_tokens: int
    temperature: float
    quality_instruction: str
    expense_tier: str
    # How fast this model consumes quota relative to the essential model.
    quota_multiplier: int


@dataclass(frozen=True)
class PlanUsageBudget:
    plan: str
    monthly_budget_usd: float
    model_access: tuple[ModelMode, ...]


_ESSENTIAL_INSTRUCTION = (
    "Maximize quality under tight budget: be precise, avoid fluff, use short structured output, "
    "validate assumptions, and produce actionable copy."
)
_BALANCED_INSTRUCTION = (
    "Prioritize high signal: clear campaign strategy, concise sections, practical next actions, "
    "and consistent tone aligned to audience and goal."
)
_PREMIUM_INSTRUCTION = (
    "Deliver premium quality: accurate, concrete, and conversion-focused copy with clear structure, "
    "strong CTA logic, and polished wording."
)

PLAN_USAGE_BUDGETS: tuple[PlanUsageBudget, ...] = (
    PlanUsageBudget("free", 0.25, (ModelMode.ESSENTIAL,)),
    PlanUsageBudget("pro", 7.50, (ModelMode.ESSENTIAL, ModelMode.BALANCED, ModelMode.PREMIUM)),
    PlanUsageBudget("premium", 30.00, (ModelMode.ESSENTIAL, ModelMode.BALANCED, ModelMode.PREMIUM)),
)

MODEL_REGISTRY: tuple[ModelRegistryEntry, ...] = (
    ModelRegistryEntry(
        id="mini-openrouter-llama",
        provider="openrouter",
        model="meta-llama/llama-3.3-70b-instruct:free",
        label="Mini (Llama)",
        mode=ModelMode.ESSENTIAL,
        input_cost_per_1k_tokens=0.0001,
        output_cost_per_1k_tokens=0.00015,
        max_output_tokens=700,
        temperature=0.22,
        quality_instruction=_ESSENTIAL_INSTRUCTION,
        expense_tier="low",
        quota_multiplier=1,
    ),
    ModelRegistryEntry(
        id="mini-deepseek",
        provider="deepseek",
        model="deepseek-chat",
        label="Mini (DeepSeek)",
        mode=ModelMode.ESSENTIAL,
        input_cost_per_1k_tokens=0.00014,
        output_cost_per_1k_tokens=0.00028,
        max_output_tokens=700,
        temperature=0.22,
        quality_instruction=_ESSENTIAL_INSTRUCTION,
        expense_tier="low",
        quota_multiplier=1,
    ),
    ModelRegistryEntry(
        id="balanced-openai-mini",
        provider="openai",
        model="gpt-4.1-mini",
        label="Standard (GPT-4.1 Mini)",
        mode=ModelMode.BALANCED,
        input_cost_per_1k_tokens=0.0004,
        output_cost_per_1k_tokens=0.0016,
        max_output_tokens=900,
        temperature=0.28,
        quality_instruction=_BALANCED_INSTRUCTION,
        expense_tier="medium",
        quota_multiplier=3,
    ),
    ModelRegistryEntry(
        id="balanced-anthropic-haiku",
        provider="anthropic",
        model="claude-3-5-haiku-latest",
        label="Standard (Claude Haiku)",
        mode=ModelMode.BALANCED,
        input_cost_per_1k_tokens=0.00025,
        output_cost_per_1k_tokens=0.00125,
        max_output_tokens=900,
        temperature=0.28,
        quality_instruction=_BALANCED_INSTRUCTION,
        expense_tier="medium",
        quota_multiplier=3,
    ),
    ModelRegistryEntry(
        id="premium-openai-gpt4",
        provider="openai",
        model="gpt-4.1",
        label="Premium (GPT-4.1)",
        mode=ModelMode.PREMIUM,
        input_cost_per_1k_tokens=0.002,
        output_cost_per_1k_tokens=0.008,
        max_output_tokens=1200,
        temperature=0.2,
        quality_instruction=_PREMIUM_INSTRUCTION,
        expense_tier="high",
        quota_multiplier=8,
    ),
    ModelRegistryEntry(
        id="premium-anthropic-sonnet",
        provider="anthropic",
        model="claude-sonnet-4-20250514",
        label="Premium (Claude Sonnet)",
        mode=ModelMode.PREMIUM,
        input_cost_per_1k_tokens=0.003,
        output_cost_per_1k_tokens=0.015,
        max_output_tokens=1200,
        temperature=0.2,
        quality_instruction=_PREMIUM_INSTRUCTION,
        expense_tier="high",
        quota_multiplier=8,
    ),
)


def get_model_for_mode(mode: ModelMode, env: Mapping[str, str] | None = None) -> ModelRegistryEntry:
    """First registry entry for ``mode``, or the exact entry named by the mode's env overrides."""
    env = os.environ if env is None else env
    prefix = f"AI_MODE_{mode.value.upper()}"
    env_provider = env.get(f"{prefix}_PROVIDER")
    env_model = env.get(f"{prefix}_MODEL")
    if env_provider and env_model:
        for entry in MODEL_REGISTRY:
            if entry.provider == env_provider and entry.model == env_model:
                return entry

    for entry in MODEL_REGISTRY:
        if entry.mode == mode:
            return entry
    return MODEL_REGISTRY[0]


def get_plan_budget(plan: str | None) -> PlanUsageBudget:
    normalized = normalize_plan(plan) or "free"
    for budget in PLAN_USAGE_BUDGETS:
        if budget.plan == normalized:
            return budget
    return PLAN_USAGE_BUDGETS[0]


def is_model_accessible(mode: ModelMode, plan: str | None) -> bool:
    return mode in get_plan_budget(plan).model_access


def estimate_token_cost(entry: ModelRegistryEntry, input_tokens: int, output_tokens: int) -> float:
    input_cost = (input_tokens / 1000) * entry.input_cost_per_1k_tokens
    output_cost = (output_tokens / 1000) * entry.output_cost_per_1k_tokens
    return round(input_cost + output_cost, 6)


def estimate_per_message_cost_usd(entry: ModelRegistryEntry) -> float:
    """Cost of an average exchange: ~300 input tokens and up to 600 output tokens."""
    return estimate_token_cost(entry, 300, min(entry.max_output_tokens, 600))


def estimate_remaining_messages(entry: ModelRegistryEntry, remaining_budget_usd: float) -> int:
    per_message = estimate_per_message_cost_usd(entry)
    if per_message <= 0:
        return 9999
    return math.floor(remaining_budget_usd / per_message)


_CREDIT_MODE_MULTIPLIERS = {
    ModelMode.ESSENTIAL: 1.0,
    ModelMode.BALANCED: 1.5,
    ModelMode.PREMIUM: 3.0,
}


def token_cost_to_credits(entry: ModelRegistryEntry, input_tokens: int, output_tokens: int) -> int:
    cost_usd = estimate_token_cost(entry, input_tokens, output_tokens)
    raw = math.ceil(round(cost_usd * 10000 * _CREDIT_MODE_MULTIPLIERS[entry.mode], 6))
    return max(1, min(raw, 50))


def models_for_client(plan: str | None) -> list[dict]:
    """One public summary per mode the plan can use, in registry order."""
    budget = get_plan_budget(plan)
    seen: set[ModelMode] = set()
    results: list[dict] = []
    for entry in MODEL_REGISTRY:
        if entry.mode not in budget.model_access or entry.mode in seen:
            continue
        seen.add(entry.mode)
        results.append(
            {
                "id": entry.id,
                "label": entry.label,
                "mode": entry.mode.value,
                "expense_tier": entry.expense_tier,
                "quota_multiplier": entry.quota_multiplier,
                "credits_per_message": token_cost_to_credits(entry, 300, min(entry.max_output_tokens, 600)),
            }
        )
    return results

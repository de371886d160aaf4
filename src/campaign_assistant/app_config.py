from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from campaign_assistant.provider import ProviderConfig, as_provider_name, build_provider_configs
from campaign_assistant.provider_policy import parse_provider_list


@dataclass
class RuntimeEnv:
    provider_configs: list[ProviderConfig]
    preferred_provider: str | None
    strict_preference: bool
    priority: list[str]


@dataclass
class AppConfig:
    user_id: str
    user_plan: str | None
    mode: str
    store_db_path: str
    resume_days: int
    non_pro_max_credits: int
    congestion_lookback_minutes: int
    credit_usd_factor: float
    planner_timeout_seconds: float
    generation_timeout_seconds: float
    max_output_tokens: int
    provider_priority: list[str]
    local_fallback_enabled: bool
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        user_id=str(config.get("UserId", "local-user")).strip() or "local-user",
        user_plan=str(config.get("UserPlan", "")).strip().lower() or None,
        mode=str(config.get("Mode", "essential")).strip().lower(),
        store_db_path=str(config.get("StoreDbPath", ".campaign_assistant/store.db")),
        resume_days=int(config.get("ResumeDays", 30)),
        non_pro_max_credits=int(config.get("NonProMaxCredits", 25)),
        congestion_lookback_minutes=int(config.get("CongestionLookbackMinutes", 20)),
        credit_usd_factor=float(config.get("CreditUsdFactor", 0.0003)),
        planner_timeout_seconds=float(config.get("PlannerTimeoutSeconds", 20)),
        generation_timeout_seconds=float(config.get("GenerationTimeoutSeconds", 45)),
        max_output_tokens=int(config.get("MaxOutputTokens", 640)),
        provider_priority=parse_provider_list(config.get("ProviderPriority")),
        local_fallback_enabled=_to_bool(config.get("LocalFallbackEnabled", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(app: AppConfig, env: Mapping[str, str] | None = None) -> RuntimeEnv:
    env = os.environ if env is None else env
    # AI_PROVIDER_PRIORITY overrides ProviderPriority from config.json.
    priority = parse_provider_list(env.get("AI_PROVIDER_PRIORITY"), app.provider_priority)
    return RuntimeEnv(
        provider_configs=build_provider_configs(env),
        preferred_provider=as_provider_name(env.get("AI_PROVIDER")),
        strict_preference=_to_bool(env.get("AI_PROVIDER_STRICT"), default=False),
        priority=priority,
    )

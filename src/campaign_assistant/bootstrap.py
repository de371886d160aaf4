from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from campaign_assistant.app_config import AppConfig, RuntimeEnv
from campaign_assistant.credits import CreditMeter
from campaign_assistant.generation import TextGenerator
from campaign_assistant.logging_config import setup_logging
from campaign_assistant.orchestrator import CampaignOrchestrator
from campaign_assistant.planner import Planner
from campaign_assistant.storage import (
    CampaignStore,
    CheckpointManager,
    DeliveryOutbox,
    EventEmitter,
    TelemetryRecorder,
    UsageLedger,
    WorkflowSessionRepository,
)


@dataclass
class AppRuntime:
    app: AppConfig
    store: CampaignStore
    sessions: WorkflowSessionRepository
    credits: CreditMeter
    generator: TextGenerator
    telemetry: TelemetryRecorder
    outbox: DeliveryOutbox
    orchestrator: CampaignOrchestrator
    log_descriptions: list[str]

    def close(self) -> None:
        self.store.close()


def _resolve_db_path(raw: str) -> str:
    if raw == ":memory:":
        return raw
    db_path = Path(raw)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    return str(db_path)


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    environ: Mapping[str, str] | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = (
        setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []
    )

    store = CampaignStore(_resolve_db_path(app.store_db_path))
    events = EventEmitter(store)
    checkpoints = CheckpointManager(store, events)
    sessions = WorkflowSessionRepository(store, events, checkpoints, resume_days=app.resume_days)
    telemetry = TelemetryRecorder(store)
    outbox = DeliveryOutbox(store, events)
    credits = CreditMeter(
        UsageLedger(store),
        telemetry,
        non_pro_max_credits=app.non_pro_max_credits,
        lookback_minutes=app.congestion_lookback_minutes,
        usd_per_credit=app.credit_usd_factor,
    )

    generator = TextGenerator(
        env.provider_configs,
        local_fallback_enabled=app.local_fallback_enabled,
        default_max_output_tokens=app.max_output_tokens,
        timeout_seconds=app.generation_timeout_seconds,
        priority=env.priority,
        preferred_provider=env.preferred_provider,
        strict_preference=env.strict_preference,
        env=environ,
    )
    if generator.configured_providers:
        logger.info(f"Configured AI providers: {', '.join(generator.configured_providers)}")
    else:
        logger.warning("No AI provider keys configured; replies come from the local fallback")

    orchestrator = CampaignOrchestrator(
        sessions=sessions,
        credits=credits,
        generator=generator,
        planner=Planner(generator, timeout_seconds=app.planner_timeout_seconds),
        telemetry=telemetry,
        outbox=outbox,
        env=environ,
    )

    return AppRuntime(
        app=app,
        store=store,
        sessions=sessions,
        credits=credits,
        generator=generator,
        telemetry=telemetry,
        outbox=outbox,
        orchestrator=orchestrator,
        log_descriptions=log_descriptions,
    )

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger

from campaign_assistant.errors import InsufficientCreditsError
from campaign_assistant.model_registry import ModelMode, get_plan_budget, is_paid_plan
from campaign_assistant.storage.events import to_iso
from campaign_assistant.storage.telemetry import TelemetryRecorder
from campaign_assistant.storage.usage_ledger import UsageLedger

DEFAULT_NON_PRO_MAX_CREDITS = 25
DEFAULT_LOOKBACK_MINUTES = 20
DEFAULT_USD_PER_CREDIT = 0.0003

_MODE_WEIGHTS = {
    ModelMode.ESSENTIAL: 1.0,
    ModelMode.BALANCED: 1.35,
    ModelMode.PREMIUM: 1.8,
}
_TOOL_WEIGHTS = {
    "confirm_queue_campaign": 0.9,
    "request_recipients": 0.9,
    "review_campaign": 1.25,
    "compose_signature_email": 1.25,
}
_DEFAULT_TOOL_WEIGHT = 1.1


@dataclass(frozen=True)
class CreditsSnapshot:
    limited: bool
    max_credits: int | None
    remaining_credits: int | None
    used_credits: int | None
    window_hours: int | None
    reset_at: datetime | None
    congestion: str
    monthly_budget_usd: float
    remaining_budget_usd: float

    def to_dict(self) -> dict:
        return {
            "limited": self.limited,
            "max_credits": self.max_credits,
            "remaining_credits": self.remaining_credits,
            "used_credits": self.used_credits,
            "window_hours": self.window_hours,
            "reset_at": to_iso(self.reset_at) if self.reset_at else None,
            "congestion": self.congestion,
            "monthly_budget_usd": self.monthly_budget_usd,
            "remaining_budget_usd": self.remaining_budget_usd,
        }


@dataclass(frozen=True)
class CreditCharge:
    charged: int
    snapshot: CreditsSnapshot


def window_from_congestion(error_rate: float, avg_latency_ms: float) -> tuple[int, str]:
    latency = avg_latency_ms if math.isfinite(avg_latency_ms) else 0.0
    if error_rate >= 0.35 or latency >= 4500:
        return 12, "severe"
    if error_rate >= 0.25 or latency >= 3000:
        return 10, "high"
    if error_rate >= 0.15 or latency >= 1800:
        return 8, "moderate"
    return 6, "low"


def build_window_info(window_hours: int, now: datetime) -> tuple[str, datetime]:
    """Epoch-aligned window containing ``now``: returns (bucket key, reset time)."""
    window_ms = window_hours * 60 * 60 * 1000
    now_ms = int(now.timestamp() * 1000)
    started_ms = now_ms - (now_ms % window_ms)
    started_at = datetime.fromtimestamp(started_ms / 1000, tz=UTC)
    reset_at = started_at + timedelta(milliseconds=window_ms)
    key = f"ai-credits:{window_hours}h:{started_at.strftime('%Y-%m-%dT%H:%M:%S.000Z')}"
    return key, reset_at


def build_month_key(now: datetime) -> str:
    now = now.astimezone(UTC)
    return f"ai-month:{now.year}-{now.month:02d}"


def month_reset_date(now: datetime) -> datetime:
    now = now.astimezone(UTC)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


def estimate_credit_cost(
    prompt: str,
    response_text: str | None = None,
    mode: ModelMode | str = ModelMode.ESSENTIAL,
    tool_name: str | None = None,
) -> int:
    prompt_units = max(1, math.ceil(len(prompt.strip()) / 180))
    if response_text:
        response_units = max(1, math.ceil(len(response_text.strip()) / 260))
    else:
        response_units = 1

    mode_weight = _MODE_WEIGHTS.get(ModelMode(mode) if isinstance(mode, str) else mode, 1.0)
    tool_weight = _TOOL_WEIGHTS.get(tool_name or "", _DEFAULT_TOOL_WEIGHT)

    # Rounding before ceil keeps binary float noise from adding a whole credit.
    raw = math.ceil(round((prompt_units * 0.8 + response_units * 1.2) * mode_weight * tool_weight, 9))
    return max(1, min(raw, 8))


def _ceil_div(amount: float, unit: float) -> int:
    return math.ceil(round(amount / unit, 6))


class CreditMeter:
    def __init__(
        self,
        ledger: UsageLedger,
        telemetry: TelemetryRecorder,
        *,
        non_pro_max_credits: int = DEFAULT_NON_PRO_MAX_CREDITS,
        lookback_minutes: int = DEFAULT_LOOKBACK_MINUTES,
        usd_per_credit: float = DEFAULT_USD_PER_CREDIT,
        clock: Callable[[], datetime] | None = None,
    ):
        self._ledger = ledger
        self._telemetry = telemetry
        self._non_pro_max_credits = non_pro_max_credits if non_pro_max_credits > 0 else DEFAULT_NON_PRO_MAX_CREDITS
        self._lookback_minutes = lookback_minutes if lookback_minutes > 0 else DEFAULT_LOOKBACK_MINUTES
        self._usd_per_credit = usd_per_credit
        self._clock = clock or (lambda: datetime.now(UTC))

    def resolve_adaptive_window(self) -> tuple[int, str]:
        since = self._clock() - timedelta(minutes=self._lookback_minutes)
        sample = self._telemetry.congestion_since(to_iso(since))
        return window_from_congestion(sample.error_rate, sample.avg_latency_ms)

    def _remaining_budget(self, monthly_budget_usd: float, used: int) -> float:
        # Rounded to micro-dollars; float residue must not keep an exhausted budget open.
        return max(0.0, round(monthly_budget_usd - used * self._usd_per_credit, 6))

    def snapshot(self, user_id: str, user_plan: str | None) -> CreditsSnapshot:
        now = self._clock()
        budget = get_plan_budget(user_plan)

        if is_paid_plan(user_plan):
            used = self._ledger.get_requests(build_month_key(now), user_id)
            remaining_budget = self._remaining_budget(budget.monthly_budget_usd, used)
            exhausted = remaining_budget <= 0
            return CreditsSnapshot(
                limited=True,
                max_credits=_ceil_div(budget.monthly_budget_usd, self._usd_per_credit),
                remaining_credits=0 if exhausted else _ceil_div(remaining_budget, self._usd_per_credit),
                used_credits=used,
                window_hours=None,
                reset_at=month_reset_date(now),
                congestion="low",
                monthly_budget_usd=budget.monthly_budget_usd,
                remaining_budget_usd=remaining_budget,
            )

        hours, congestion = self.resolve_adaptive_window()
        key, reset_at = build_window_info(hours, now)
        used = self._ledger.get_requests(key, user_id)
        return CreditsSnapshot(
            limited=True,
            max_credits=self._non_pro_max_credits,
            remaining_credits=max(0, self._non_pro_max_credits - used),
            used_credits=used,
            window_hours=hours,
            reset_at=reset_at,
            congestion=congestion,
            monthly_budget_usd=budget.monthly_budget_usd,
            remaining_budget_usd=self._remaining_budget(budget.monthly_budget_usd, used),
        )

    def assert_minimum_credits(self, user_id: str, user_plan: str | None, minimum_credits: int) -> CreditsSnapshot:
        snapshot = self.snapshot(user_id, user_plan)
        if not snapshot.limited:
            return snapshot

        minimum = max(1, minimum_credits)
        remaining = snapshot.remaining_credits or 0
        if remaining < minimum:
            reset_label = "next window"
            if snapshot.reset_at is not None:
                seconds = (snapshot.reset_at - self._clock()).total_seconds()
                reset_label = f"{max(1, math.ceil(seconds / 60))}m"
            logger.info(f"Credits exhausted for user {user_id}: {remaining}/{snapshot.max_credits}")
            raise InsufficientCreditsError(
                f"AI credits exhausted. You have {remaining}/{snapshot.max_credits} credits left. "
                f"Next refill in {reset_label}.",
                remaining_credits=remaining,
                max_credits=snapshot.max_credits,
                reset_at=snapshot.reset_at,
            )
        return snapshot

    def consume_credits(
        self,
        user_id: str,
        user_plan: str | None,
        credits: int,
        cached_snapshot: CreditsSnapshot | None = None,
    ) -> CreditCharge:
        snapshot = cached_snapshot or self.snapshot(user_id, user_plan)
        requested = max(1, credits)

        if is_paid_plan(user_plan):
            if snapshot.remaining_budget_usd <= 0:
                return CreditCharge(charged=0, snapshot=snapshot)
            self._ledger.increment(build_month_key(self._clock()), user_id, requested)
            charged = requested
        else:
            remaining = snapshot.remaining_credits or 0
            if remaining <= 0:
                return CreditCharge(charged=0, snapshot=snapshot)
            charged = min(requested, remaining)
            key, _ = build_window_info(snapshot.window_hours or 6, self._clock())
            self._ledger.increment(key, user_id, charged)

        logger.info(f"Charged {charged} credits to user {user_id} (plan={user_plan or 'free'})")
        return CreditCharge(charged=charged, snapshot=self.snapshot(user_id, user_plan))

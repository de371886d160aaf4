from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from campaign_assistant.model_registry import is_paid_plan
from campaign_assistant.template_catalog import TEMPLATE_CATALOG, TemplateDefinition, find_template
from campaign_assistant.workflow_types import RecipientStats, TemplateSuggestion, ToolResult

MAX_TEMPLATE_SUGGESTIONS = 4

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_RECIPIENT_SPLIT_RE = re.compile(r"[;\n,]")

_SMTP_LABELS = {
    "platform": "platform SMTP",
    "user": "your custom SMTP",
    "dedicated": "dedicated SMTP",
}
MAX_SCHEDULE_CHARS = 64

ASK_CAMPAIGN_TYPE_TEXT = "Great, what are you sending today: newsletter, promo, product update, or one-off email?"
DEFAULT_TOOL_TEXT = (
    "Got it. Tell me your goal, target audience, and CTA, and I'll draft it with you. "
    "We can send to your full mailing list when ready."
)


@dataclass
class ToolInvocation:
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    selected_template_id: str | None = None
    user_plan: str | None = None


def score_template(template: TemplateDefinition, query: str) -> int:
    candidate = f"{template.name} {template.theme} {template.domain} {template.tone}".strip().lower()
    tokens = [token for token in query.strip().lower().split() if len(token) > 2]
    return sum(1 for token in tokens if token in candidate)


def _to_suggestion(template: TemplateDefinition) -> TemplateSuggestion:
    return TemplateSuggestion(
        id=template.id,
        name=template.name,
        theme=template.theme,
        domain=template.domain,
        tone=template.tone,
    )


def rank_templates(query: str, user_plan: str | None) -> list[TemplateSuggestion]:
    paid = is_paid_plan(user_plan)
    visible = [t for t in TEMPLATE_CATALOG if paid or t.access_tier != "pro"]
    # sorted() is stable, so equal scores keep catalog order.
    ranked = sorted(visible, key=lambda t: score_template(t, query), reverse=True)
    return [_to_suggestion(t) for t in ranked[:MAX_TEMPLATE_SUGGESTIONS]]


def parse_recipients(raw: str) -> RecipientStats:
    """Count distinct recipient tokens; repeats (case-insensitive) are duplicates."""
    tokens = [entry.strip().lower() for entry in _RECIPIENT_SPLIT_RE.split(raw)]
    seen: set[str] = set()
    valid = 0
    invalid = 0
    duplicates = 0
    for token in tokens:
        if not token:
            continue
        if token in seen:
            duplicates += 1
            continue
        seen.add(token)
        if _EMAIL_RE.match(token):
            valid += 1
        else:
            invalid += 1
    return RecipientStats(total=len(seen), valid=valid, invalid=invalid, duplicates=duplicates)


def _review_text(selected_template_id: str | None) -> str:
    template = find_template(selected_template_id)
    template_name = template.name if template else "selected template"
    return "\n".join(
        [
            f"Quick review: goal captured, {template_name} configured, and recipients validated.",
            "",
            "Before we send, choose your delivery method:",
            "- Platform SMTP (default, ready to go)",
            "- Your own SMTP server (custom configuration)",
            "- Dedicated SMTP (higher deliverability)",
            "",
            "You can also schedule for a specific time instead of sending immediately. Ready to confirm?",
        ]
    )


def coerce_smtp_source(value: object) -> str:
    candidate = value.strip().lower() if isinstance(value, str) else ""
    return candidate if candidate in _SMTP_LABELS else "platform"


def coerce_schedule(value: object) -> str | None:
    """Planner-supplied schedule as plain text; anything that is not a short string means "send now"."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_SCHEDULE_CHARS:
        return None
    return trimmed


def create_campaign_id(clock_ms: Callable[[], int] | None = None) -> str:
    now_ms = clock_ms() if clock_ms else int(time.time() * 1000)
    return f"cmp-{str(now_ms)[-8:]}"


def execute_tool(invocation: ToolInvocation, *, clock_ms: Callable[[], int] | None = None) -> ToolResult:
    tool = invocation.tool.strip().lower()
    args = invocation.args or {}
    paid = is_paid_plan(invocation.user_plan)

    if tool == "ask_campaign_type":
        return ToolResult(text=ASK_CAMPAIGN_TYPE_TEXT)

    if tool == "suggest_templates":
        query = str(args.get("query") or invocation.context.get("goal") or "")
        return ToolResult(
            text="I selected four template directions that best match your campaign.",
            template_suggestions=rank_templates(query, invocation.user_plan),
        )

    if tool == "select_template":
        found = find_template(str(args.get("templateId") or args.get("template_id") or ""))
        if found is None:
            return ToolResult(text="I could not find that template. Pick one of the suggestions and I will continue.")
        if not paid and found.access_tier == "pro":
            return ToolResult(
                text=f"{found.name} is a Pro template. Upgrade to Pro to use it, or choose a free template and I'll continue."
            )
        return ToolResult(
            text=f"{found.name} selected. I can now help refine content and collect recipients.",
            selected_template_id=found.id,
        )

    if tool == "request_recipients":
        return ToolResult(text="Please paste recipient emails or upload a CSV with an email column.")

    if tool == "validate_recipients":
        stats = parse_recipients(str(args.get("recipients") or ""))
        return ToolResult(
            text=f"Validation complete: {stats.valid} valid, {stats.invalid} invalid, {stats.duplicates} duplicates.",
            recipient_stats=stats,
        )

    if tool == "review_campaign":
        return ToolResult(text=_review_text(invocation.selected_template_id))

    if tool == "confirm_queue_campaign":
        campaign_id = create_campaign_id(clock_ms)
        smtp_source = coerce_smtp_source(args.get("smtpSource") or args.get("smtp_source"))
        scheduled_at = coerce_schedule(args.get("scheduledAt") or args.get("scheduled_at"))
        smtp_label = _SMTP_LABELS[smtp_source]
        schedule_label = f"scheduled for {scheduled_at}" if scheduled_at else "queued for immediate delivery"
        return ToolResult(
            text=" ".join(
                [
                    f"Campaign {schedule_label} via {smtp_label} (ID: {campaign_id}).",
                    "Emails will be sent through our queue system with progress tracking.",
                    "You'll receive real-time updates as each recipient is processed.",
                ]
            ),
            campaign_id=campaign_id,
            smtp_source=smtp_source,
            scheduled_at=scheduled_at,
        )

    if tool == "compose_signature_email":
        return ToolResult(
            text=(
                "Perfect. I can draft a clean signature email. Tell me who it is for, the tone, and the CTA. "
                "You can send to multiple recipients at once."
            )
        )

    return ToolResult(text=DEFAULT_TOOL_TEXT)

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WorkflowState(str, Enum):
    INTENT_CAPTURE = "INTENT_CAPTURE"
    GOAL_BRIEF = "GOAL_BRIEF"
    TEMPLATE_DISCOVERY = "TEMPLATE_DISCOVERY"
    TEMPLATE_SELECTED = "TEMPLATE_SELECTED"
    CONTENT_REFINE = "CONTENT_REFINE"
    AUDIENCE_COLLECTION = "AUDIENCE_COLLECTION"
    VALIDATION_REVIEW = "VALIDATION_REVIEW"
    SEND_CONFIRMATION = "SEND_CONFIRMATION"
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"


# Declaration order is the workflow's total order.
WORKFLOW_STATE_SEQUENCE: tuple[WorkflowState, ...] = tuple(WorkflowState)


class WorkflowIntent(str, Enum):
    UNKNOWN = "UNKNOWN"
    NEWSLETTER = "NEWSLETTER"
    SIMPLE_EMAIL = "SIMPLE_EMAIL"
    SIGNATURE = "SIGNATURE"


TOOL_NAMES: tuple[str, ...] = (
    "ask_campaign_type",
    "suggest_templates",
    "select_template",
    "request_recipients",
    "validate_recipients",
    "review_campaign",
    "confirm_queue_campaign",
    "compose_simple_email",
    "compose_signature_email",
)


class _Unset:
    """Marker for a patch field that was not supplied (distinct from ``None``)."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class RecipientStats:
    total: int
    valid: int
    invalid: int
    duplicates: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "duplicates": self.duplicates,
        }

    @classmethod
    def from_raw(cls, raw: object) -> RecipientStats | None:
        if isinstance(raw, RecipientStats):
            return raw
        if not isinstance(raw, dict):
            return None
        try:
            return cls(
                total=int(raw["total"]),
                valid=int(raw["valid"]),
                invalid=int(raw["invalid"]),
                duplicates=int(raw["duplicates"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class TemplateSuggestion:
    id: str
    name: str
    theme: str
    domain: str
    tone: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "theme": self.theme,
            "domain": self.domain,
            "tone": self.tone,
        }


@dataclass(frozen=True)
class ToolResult:
    text: str
    template_suggestions: list[TemplateSuggestion] | None = None
    selected_template_id: str | None = None
    recipient_stats: RecipientStats | None = None
    campaign_id: str | None = None
    smtp_source: str | None = None
    scheduled_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": self.text}
        if self.template_suggestions is not None:
            payload["template_suggestions"] = [s.to_dict() for s in self.template_suggestions]
        if self.selected_template_id is not None:
            payload["selected_template_id"] = self.selected_template_id
        if self.recipient_stats is not None:
            payload["recipient_stats"] = self.recipient_stats.to_dict()
        if self.campaign_id is not None:
            payload["campaign_id"] = self.campaign_id
        if self.smtp_source is not None:
            payload["smtp_source"] = self.smtp_source
        if self.scheduled_at is not None:
            payload["scheduled_at"] = self.scheduled_at
        return payload


@dataclass(frozen=True)
class WorkflowMachineState:
    state: WorkflowState = WorkflowState.INTENT_CAPTURE
    intent: WorkflowIntent = WorkflowIntent.UNKNOWN
    selected_template_id: str | None = None
    recipient_stats: RecipientStats | None = None
    summary: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "intent": self.intent.value,
            "selected_template_id": self.selected_template_id,
            "recipient_stats": self.recipient_stats.to_dict() if self.recipient_stats else None,
            "summary": self.summary,
            "context": dict(self.context),
        }


@dataclass(frozen=True)
class WorkflowPatch:
    """Proposed change to a session.

    ``state``/``intent`` of ``None`` mean "keep". The three nullable fields use
    ``UNSET`` for "keep", ``None`` for "clear" and any other value for "set".
    ``context`` is always merged key by key.
    """

    state: WorkflowState | str | None = None
    intent: WorkflowIntent | str | None = None
    selected_template_id: Any = UNSET
    recipient_stats: Any = UNSET
    summary: Any = UNSET
    context: dict[str, Any] | None = None

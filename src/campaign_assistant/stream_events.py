from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from campaign_assistant.workflow_types import RecipientStats, TemplateSuggestion, ToolResult


@dataclass(frozen=True)
class SessionEvent:
    request_id: str
    conversation_id: str
    state: str
    intent: str
    resumed: bool
    type: str = "session"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "request_id": self.request_id,
            "conversation_id": self.conversation_id,
            "state": self.state,
            "intent": self.intent,
            "resumed": self.resumed,
        }


@dataclass(frozen=True)
class ModerationEvent:
    action: str
    message: str
    type: str = "moderation"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "action": self.action, "message": self.message}


@dataclass(frozen=True)
class ToolStartEvent:
    tool: str
    args: dict[str, Any]
    type: str = "tool_start"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tool": self.tool, "args": dict(self.args)}


@dataclass(frozen=True)
class ToolResultEvent:
    tool: str
    result: ToolResult
    type: str = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tool": self.tool, "result": self.result.to_dict()}


@dataclass(frozen=True)
class StatePatchEvent:
    state: str
    intent: str
    selected_template_id: str | None
    recipient_stats: RecipientStats | None
    type: str = "state_patch"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "state": self.state,
            "intent": self.intent,
            "selected_template_id": self.selected_template_id,
            "recipient_stats": self.recipient_stats.to_dict() if self.recipient_stats else None,
        }


@dataclass(frozen=True)
class TokenEvent:
    token: str
    type: str = "token"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "token": self.token}


@dataclass(frozen=True)
class DoneEvent:
    """Authoritative result of a turn."""

    request_id: str
    conversation_id: str
    state: str
    intent: str
    text: str
    selected_template_id: str | None = None
    template_suggestions: list[TemplateSuggestion] | None = None
    recipient_stats: RecipientStats | None = None
    campaign_id: str | None = None
    remaining_credits: int | None = None
    max_credits: int | None = None
    type: str = "done"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "request_id": self.request_id,
            "conversation_id": self.conversation_id,
            "state": self.state,
            "intent": self.intent,
            "text": self.text,
            "selected_template_id": self.selected_template_id,
            "template_suggestions": (
                [s.to_dict() for s in self.template_suggestions] if self.template_suggestions is not None else None
            ),
            "recipient_stats": self.recipient_stats.to_dict() if self.recipient_stats else None,
            "campaign_id": self.campaign_id,
            "remaining_credits": self.remaining_credits,
            "max_credits": self.max_credits,
        }


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str
    type: str = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "code": self.code, "message": self.message}


StreamEvent = (
    SessionEvent
    | ModerationEvent
    | ToolStartEvent
    | ToolResultEvent
    | StatePatchEvent
    | TokenEvent
    | DoneEvent
    | ErrorEvent
)

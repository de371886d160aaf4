from __future__ import annotations

from typing import Any

from campaign_assistant.workflow_types import (
    UNSET,
    WORKFLOW_STATE_SEQUENCE,
    RecipientStats,
    WorkflowIntent,
    WorkflowMachineState,
    WorkflowPatch,
    WorkflowState,
)


def create_initial_state() -> WorkflowMachineState:
    return WorkflowMachineState()


def state_index(state: WorkflowState) -> int:
    return WORKFLOW_STATE_SEQUENCE.index(state)


def coerce_state(value: object) -> WorkflowState:
    if isinstance(value, WorkflowState):
        return value
    candidate = str(value or "").strip().upper()
    try:
        return WorkflowState(candidate)
    except ValueError:
        return WorkflowState.INTENT_CAPTURE


def coerce_intent(value: object) -> WorkflowIntent:
    if isinstance(value, WorkflowIntent):
        return value
    candidate = str(value or "").strip().upper()
    try:
        return WorkflowIntent(candidate)
    except ValueError:
        return WorkflowIntent.UNKNOWN


def hydrate(raw: dict[str, Any]) -> WorkflowMachineState:
    """Build a machine state from persisted values, defaulting anything malformed."""
    context = raw.get("context")
    selected = raw.get("selected_template_id")
    summary = raw.get("summary")
    return WorkflowMachineState(
        state=coerce_state(raw.get("state")),
        intent=coerce_intent(raw.get("intent")),
        selected_template_id=str(selected) if selected else None,
        recipient_stats=RecipientStats.from_raw(raw.get("recipient_stats")),
        summary=summary if isinstance(summary, str) else None,
        context=dict(context) if isinstance(context, dict) else {},
    )


def apply_patch(
    current: WorkflowMachineState,
    patch: WorkflowPatch,
    *,
    allow_backward_state: bool = False,
) -> WorkflowMachineState:
    requested = coerce_state(patch.state) if patch.state else current.state
    if allow_backward_state or state_index(requested) >= state_index(current.state):
        next_state = requested
    else:
        next_state = current.state

    return WorkflowMachineState(
        state=next_state,
        intent=coerce_intent(patch.intent) if patch.intent else current.intent,
        selected_template_id=(
            current.selected_template_id if patch.selected_template_id is UNSET else patch.selected_template_id
        ),
        recipient_stats=current.recipient_stats if patch.recipient_stats is UNSET else patch.recipient_stats,
        summary=current.summary if patch.summary is UNSET else patch.summary,
        context={**current.context, **(patch.context or {})},
    )

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any
from uuid import uuid4

from loguru import logger

from campaign_assistant.credits import CreditCharge, CreditMeter, CreditsSnapshot, estimate_credit_cost
from campaign_assistant.errors import GenerationError, InsufficientCreditsError, PersistenceError
from campaign_assistant.generation import GenerationAttempt, GenerationRequest, StreamToken, TextGenerator, chunk_text
from campaign_assistant.model_mode import ModelProfile, resolve_model_profile
from campaign_assistant.moderation import ModerationAction, ModerationResult, moderate_prompt
from campaign_assistant.planner import PlanOutcome, Planner, should_capture_goal_prompt
from campaign_assistant.storage.delivery_outbox import CampaignHandoff, DeliveryOutbox
from campaign_assistant.storage.session_repository import WorkflowSession, WorkflowSessionRepository
from campaign_assistant.storage.telemetry import TelemetryRecorder
from campaign_assistant.stream_events import (
    DoneEvent,
    ErrorEvent,
    ModerationEvent,
    SessionEvent,
    StatePatchEvent,
    StreamEvent,
    TokenEvent,
    ToolResultEvent,
    ToolStartEvent,
)
from campaign_assistant.tool_executor import ToolInvocation, execute_tool
from campaign_assistant.workflow_machine import apply_patch
from campaign_assistant.workflow_types import UNSET, ToolResult, WorkflowIntent, WorkflowPatch, WorkflowState

TOKEN_CHUNK_SIZE = 20
MAX_TURN_CHARGE = 10

# Tools whose own text is the reply; no response generation runs for them.
TOOL_TEXT_ONLY = frozenset(
    {
        "ask_campaign_type",
        "suggest_templates",
        "request_recipients",
        "validate_recipients",
        "confirm_queue_campaign",
    }
)

_TOOL_DEFAULT_STATES = {
    "request_recipients": WorkflowState.AUDIENCE_COLLECTION,
    "review_campaign": WorkflowState.SEND_CONFIRMATION,
    "confirm_queue_campaign": WorkflowState.QUEUED,
    "suggest_templates": WorkflowState.TEMPLATE_DISCOVERY,
    "select_template": WorkflowState.TEMPLATE_SELECTED,
}

RESPONSE_SYSTEM_PROMPT = "\n".join(
    [
        "You are a friendly and knowledgeable email campaign assistant.",
        "You help users create, design, and send email campaigns.",
        "Be conversational, warm, and specific. Reference the user's actual message.",
        "Keep responses concise (2-5 sentences) unless the user needs more detail.",
        "Always guide toward the email workflow: goal -> template -> recipients -> send.",
        "Never use formal letter format. No 'Dear user' or sign-offs.",
        "When discussing sending options, mention: platform SMTP (default), custom SMTP, or dedicated SMTP.",
        "For scheduling, emails can be sent immediately or scheduled for a specific time.",
        "Emails are sent via a queue system that handles multi-recipient delivery with progress tracking.",
    ]
)

SIMPLE_RESPONSE_SYSTEM_PROMPT = "\n".join(
    [
        "You are a friendly email campaign assistant.",
        "Be conversational, concise, and helpful. Reference what the user actually said.",
        "Guide toward: goal -> template -> recipients -> send.",
        "No formal letter format. No sign-offs.",
    ]
)


@dataclass
class TurnRequest:
    user_id: str
    prompt: str
    user_plan: str | None = None
    conversation_id: str | None = None
    mode: str | None = None
    provider: str | None = None
    model: str | None = None
    system: str | None = None


class SessionLocks:
    """One asyncio lock per workflow session; turns of a session never interleave.

    A lock lives only while some turn holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[session_id] -= 1
            if self._holders[session_id] == 0:
                del self._holders[session_id]
                del self._locks[session_id]


@dataclass
class _Turn:
    request: TurnRequest
    request_id: str
    log: Any
    moderation: ModerationResult
    profile: ModelProfile
    base: GenerationRequest
    session: WorkflowSession | None = None
    snapshot: CreditsSnapshot | None = None
    minimum_credits: int = 1
    plan: PlanOutcome | None = None
    tool: str | None = None
    args: dict = field(default_factory=dict)
    tool_result: ToolResult | None = None
    persisted: WorkflowSession | None = None
    streamed_text: str = ""
    final_text: str = ""
    response_attempts: list[GenerationAttempt] = field(default_factory=list)
    telemetry_written: bool = False
    charge: CreditCharge | None = None
    failed: bool = False


def build_response_prompt(turn_prompt: str, persisted: WorkflowSession, tool: str, result: ToolResult) -> str:
    state = persisted.state
    stats = state.recipient_stats
    recipients = f"{stats.valid} valid of {stats.total} total" if stats else "none yet"
    return "\n".join(
        [
            f'The user said: "{turn_prompt}"',
            "",
            f"Current workflow state: {state.state.value}",
            f"User's goal: {state.context.get('goal') or 'not yet defined'}",
            f"Selected template: {state.selected_template_id or 'none'}",
            f"Recipients: {recipients}",
            "",
            f"Tool used: {tool}",
            f"Tool output: {json.dumps(result.to_dict(), ensure_ascii=False)}",
            "",
            "Write a natural, helpful response that:",
            "1. Directly addresses what the user said",
            "2. Incorporates the tool result naturally",
            "3. Suggests the clear next step in the workflow",
        ]
    )


def build_simple_response_prompt(turn_prompt: str, persisted: WorkflowSession, tool: str, result: ToolResult) -> str:
    return "\n".join(
        [
            f'The user said: "{turn_prompt}"',
            f"Workflow state: {persisted.state.state.value}",
            f"Tool: {tool}",
            f"Tool result: {json.dumps(result.to_dict(), ensure_ascii=False)}",
            "Write a concise, natural response addressing the user and suggesting next steps.",
        ]
    )


class CampaignOrchestrator:
    def __init__(
        self,
        *,
        sessions: WorkflowSessionRepository,
        credits: CreditMeter,
        generator: TextGenerator,
        planner: Planner,
        telemetry: TelemetryRecorder,
        outbox: DeliveryOutbox,
        locks: SessionLocks | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self._sessions = sessions
        self._credits = credits
        self._generator = generator
        self._planner = planner
        self._telemetry = telemetry
        self._outbox = outbox
        self._locks = locks or SessionLocks()
        self._env = env

    async def collect_turn(self, request: TurnRequest) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        async for event in self.stream_turn(request):
            events.append(event)
        return events

    async def stream_turn(self, request: TurnRequest) -> AsyncIterator[StreamEvent]:
        moderation = moderate_prompt(request.prompt)
        profile = resolve_model_profile(request.mode, request.user_plan, self._env)
        request_id = str(uuid4())
        turn = _Turn(
            request=request,
            request_id=request_id,
            log=logger.bind(request_id=request_id),
            moderation=moderation,
            profile=profile,
            base=self._base_request(request, moderation, profile),
        )

        loaded = self._sessions.load_or_create(request.user_id, request.conversation_id)
        async with self._locks.hold(loaded.id):
            # Another turn may have committed while this one waited for the lock.
            current = self._sessions.get_session(loaded.id)
            if current is None:
                raise PersistenceError(f"Workflow session disappeared: {loaded.id}")
            turn.session = replace(current, resumed=loaded.resumed)

            try:
                async with aclosing(self._run_turn(turn)) as events:
                    async for event in events:
                        yield event
            finally:
                self._finalize(turn)

    def _base_request(
        self, request: TurnRequest, moderation: ModerationResult, profile: ModelProfile
    ) -> GenerationRequest:
        if request.provider:
            provider, model = request.provider, request.model
        else:
            provider, model = profile.provider, request.model or profile.model
        system = "\n".join(part for part in (request.system, profile.quality_instruction) if part)
        return GenerationRequest(
            prompt=moderation.sanitized_prompt,
            system=system or None,
            model=model,
            temperature=profile.temperature,
            mode=profile.mode,
            provider=provider,
            user_id=request.user_id,
            user_plan=request.user_plan,
            max_output_tokens=profile.max_output_tokens,
        )

    async def _run_turn(self, turn: _Turn) -> AsyncIterator[StreamEvent]:
        request = turn.request
        session = turn.session
        moderation = turn.moderation
        prompt = moderation.sanitized_prompt

        yield SessionEvent(
            request_id=turn.request_id,
            conversation_id=session.conversation_id,
            state=session.state.state.value,
            intent=session.state.intent.value,
            resumed=session.resumed,
        )

        if moderation.action != ModerationAction.ALLOW:
            yield ModerationEvent(action=moderation.action.value, message=moderation.message)

        turn.minimum_credits = estimate_credit_cost(prompt, mode=turn.profile.mode)
        try:
            turn.snapshot = self._credits.assert_minimum_credits(
                request.user_id, request.user_plan, turn.minimum_credits
            )
        except InsufficientCreditsError as ex:
            turn.failed = True
            yield ErrorEvent(code="INSUFFICIENT_CREDITS", message=str(ex))
            raise

        turn.plan = await self._planner.plan(
            prompt,
            session.state,
            turn.base,
            off_topic=moderation.action == ModerationAction.REWRITE_SCOPE,
        )
        decision = turn.plan.decision
        turn.tool = decision.tool
        turn.args = dict(decision.args)
        turn.log.debug(f"Planned tool={turn.tool} source={turn.plan.source}")

        yield ToolStartEvent(tool=turn.tool, args=turn.args)

        turn.tool_result = execute_tool(
            ToolInvocation(
                tool=turn.tool,
                args=turn.args,
                context=session.state.context,
                selected_template_id=session.state.selected_template_id,
                user_plan=request.user_plan,
            )
        )
        yield ToolResultEvent(tool=turn.tool, result=turn.tool_result)

        try:
            self._persist(turn)
        except PersistenceError as ex:
            turn.failed = True
            turn.persisted = None
            yield ErrorEvent(code="PERSISTENCE", message=str(ex))
            raise

        persisted = turn.persisted.state
        yield StatePatchEvent(
            state=persisted.state.value,
            intent=persisted.intent.value,
            selected_template_id=persisted.selected_template_id,
            recipient_stats=persisted.recipient_stats,
        )

        if turn.tool in TOOL_TEXT_ONLY:
            turn.final_text = (decision.response or "").strip() or turn.tool_result.text or "Done."
            for chunk in chunk_text(turn.final_text, TOKEN_CHUNK_SIZE):
                yield TokenEvent(chunk)
        else:
            async with aclosing(self._stream_response(turn)) as events:
                async for event in events:
                    yield event

        if not turn.final_text:
            turn.final_text = turn.tool_result.text or "Done."

        self._write_telemetry(turn)
        self._settle(turn)

        result = turn.tool_result
        yield DoneEvent(
            request_id=turn.request_id,
            conversation_id=turn.persisted.conversation_id,
            state=persisted.state.value,
            intent=persisted.intent.value,
            text=turn.final_text,
            selected_template_id=persisted.selected_template_id,
            template_suggestions=result.template_suggestions,
            recipient_stats=persisted.recipient_stats,
            campaign_id=result.campaign_id,
            remaining_credits=turn.charge.snapshot.remaining_credits,
            max_credits=turn.charge.snapshot.max_credits,
        )

    async def _stream_response(self, turn: _Turn) -> AsyncIterator[StreamEvent]:
        prompt = turn.moderation.sanitized_prompt
        streaming = replace(
            turn.base,
            system=RESPONSE_SYSTEM_PROMPT,
            prompt=build_response_prompt(prompt, turn.persisted, turn.tool, turn.tool_result),
        )
        summary_text = ""
        try:
            async with aclosing(self._generator.generate_stream(streaming)) as stream:
                async for item in stream:
                    if isinstance(item, StreamToken):
                        turn.streamed_text += item.token
                        yield TokenEvent(item.token)
                    else:
                        summary_text = item.text
                        turn.response_attempts.extend(item.attempts)
        except GenerationError as ex:
            turn.response_attempts.extend(ex.attempts)
            if turn.streamed_text.strip():
                turn.log.warning(f"Response stream broke after partial output; keeping it: {ex}")
                turn.final_text = turn.streamed_text.strip()
                return
            turn.log.warning(f"Response stream failed; retrying single-shot: {ex}")
        else:
            turn.final_text = turn.streamed_text.strip() or summary_text
            return

        simple = replace(
            turn.base,
            system=SIMPLE_RESPONSE_SYSTEM_PROMPT,
            prompt=build_simple_response_prompt(prompt, turn.persisted, turn.tool, turn.tool_result),
        )
        try:
            result = await self._generator.generate(simple)
        except GenerationError as ex:
            turn.response_attempts.extend(ex.attempts)
            turn.log.warning(f"Response generation failed; replying with tool text: {ex}")
            turn.final_text = turn.tool_result.text
        else:
            turn.response_attempts.extend(result.attempts)
            turn.final_text = result.text
        for chunk in chunk_text(turn.final_text, TOKEN_CHUNK_SIZE):
            yield TokenEvent(chunk)

    def _build_patch(self, turn: _Turn) -> WorkflowPatch:
        decision = turn.plan.decision
        current = turn.session.state
        result = turn.tool_result

        state = decision.state or _TOOL_DEFAULT_STATES.get(turn.tool)
        intent = decision.intent
        if intent is None and current.intent == WorkflowIntent.UNKNOWN and turn.tool == "suggest_templates":
            intent = WorkflowIntent.NEWSLETTER

        context: dict = {"incoherent_turns": turn.plan.incoherent_turns}
        prompt = turn.moderation.sanitized_prompt
        if should_capture_goal_prompt(prompt) and not current.context.get("goal"):
            context["goal"] = prompt

        return WorkflowPatch(
            state=state,
            intent=intent,
            selected_template_id=result.selected_template_id or UNSET,
            recipient_stats=result.recipient_stats or UNSET,
            summary=result.text,
            context=context,
        )

    def _persist(self, turn: _Turn) -> None:
        patched = apply_patch(turn.session.state, self._build_patch(turn))
        result = turn.tool_result
        with self._sessions.transaction():
            turn.persisted = self._sessions.persist(
                turn.session.id,
                patched,
                expected_version=turn.session.version,
                checkpoint_payload={
                    "tool": turn.tool,
                    "args": turn.args,
                    "tool_result": result.to_dict(),
                },
            )
            if turn.tool == "confirm_queue_campaign" and result.campaign_id:
                stats = turn.persisted.state.recipient_stats
                self._outbox.enqueue(
                    CampaignHandoff(
                        campaign_id=result.campaign_id,
                        session_id=turn.persisted.id,
                        user_id=turn.request.user_id,
                        conversation_id=turn.persisted.conversation_id,
                        template_id=turn.persisted.state.selected_template_id,
                        recipient_stats=stats.to_dict() if stats else None,
                        smtp_source=result.smtp_source or "platform",
                        scheduled_at=result.scheduled_at,
                    )
                )

    def _write_telemetry(self, turn: _Turn) -> None:
        attempts = (turn.plan.attempts if turn.plan else []) + turn.response_attempts
        self._telemetry.record_attempts(
            request_id=turn.request_id,
            session_id=turn.session.id,
            user_id=turn.request.user_id,
            moderation_action=turn.moderation.action.value,
            attempts=attempts,
        )
        turn.telemetry_written = True

    def _settle(self, turn: _Turn) -> None:
        total_attempts = len(turn.plan.attempts if turn.plan else []) + len(turn.response_attempts)
        response_credits = estimate_credit_cost(
            turn.moderation.sanitized_prompt,
            response_text=turn.final_text or turn.streamed_text,
            mode=turn.profile.mode,
            tool_name=turn.tool,
        )
        credits = max(turn.minimum_credits, min(MAX_TURN_CHARGE, response_credits + max(0, total_attempts - 2)))
        turn.charge = self._credits.consume_credits(
            turn.request.user_id,
            turn.request.user_plan,
            credits,
            cached_snapshot=turn.snapshot,
        )

    def _finalize(self, turn: _Turn) -> None:
        """Complete side effects of a turn that stopped early. Idempotent."""
        if turn.failed or turn.tool_result is None:
            return
        if turn.persisted is None:
            turn.log.info("Turn abandoned before persistence; persisting tool result")
            self._persist(turn)
        if not turn.telemetry_written:
            self._write_telemetry(turn)
        if turn.charge is None:
            if not turn.final_text:
                turn.final_text = turn.streamed_text.strip() or turn.tool_result.text
            turn.log.info("Turn abandoned before settlement; settling credits")
            self._settle(turn)

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field, replace
from typing import Any

from loguru import logger

from campaign_assistant.errors import GenerationError
from campaign_assistant.generation import GenerationAttempt, GenerationRequest, GenerationResult, TextGenerator
from campaign_assistant.template_catalog import find_template_in_text
from campaign_assistant.workflow_types import TOOL_NAMES, WorkflowIntent, WorkflowMachineState, WorkflowState

DEFAULT_PLANNER_TIMEOUT_SECONDS = 20.0
PLANNER_TEMPERATURE = 0.3
PLANNER_MAX_OUTPUT_TOKENS = 400
MAX_INCOHERENT_TURNS = 3

_EARLY_STATES = (WorkflowState.INTENT_CAPTURE, WorkflowState.GOAL_BRIEF)

_GREETINGS = frozenset(
    {
        "hi",
        "hello",
        "hey",
        "yo",
        "good morning",
        "good afternoon",
        "good evening",
        "ola",
        "olá",
        "bom dia",
        "boa tarde",
        "boa noite",
    }
)

EMAIL_INTENT_KEYWORDS = (
    "newsletter", "template", "email", "campaign", "promo", "promotion",
    "announcement", "welcome", "onboarding", "launch", "update", "invite",
    "reminder", "follow-up", "followup", "drip", "blast", "outreach",
    "retention", "reactivation", "winback", "win-back", "upsell",
    "cross-sell", "product update", "event", "webinar", "sale",
)

WELCOME_TEXT = "\n".join(
    [
        "Hey! I'm your email campaign assistant. I can help you create and send professional emails to your audience.",
        "",
        "To get started, tell me:",
        "1. What's the goal of your email? (promote a product, share news, announce an event, etc.)",
        "2. Who are you sending to? (customers, subscribers, leads, etc.)",
        "",
        "Or just describe what you need and I'll guide you through it.",
    ]
)

PLANNER_SYSTEM_PROMPT = "\n".join(
    [
        "You are the AI workflow planner for an email campaign platform.",
        "You MUST output valid JSON only. No markdown, no explanation, just the JSON object.",
        "Your response field should be a warm, helpful, conversational message to the user.",
        "Always acknowledge what the user said and connect it to the email workflow.",
        "Be specific and actionable. Reference the user's business, goals, or audience when known.",
    ]
)


@dataclass(frozen=True)
class PlannerDecision:
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    state: WorkflowState | None = None
    intent: WorkflowIntent | None = None
    response: str | None = None


@dataclass(frozen=True)
class PlanOutcome:
    decision: PlannerDecision
    # "incoherent", "greeting", "planner" or "fallback"
    source: str
    incoherent_turns: int
    generation: GenerationResult | None = None
    failed_attempts: list[GenerationAttempt] = field(default_factory=list)

    @property
    def attempts(self) -> list[GenerationAttempt]:
        if self.generation is not None:
            return list(self.generation.attempts)
        return list(self.failed_attempts)


def safe_json_parse(raw: str) -> dict | None:
    """Parse the outermost ``{...}`` span of ``raw``; anything else yields ``None``."""
    trimmed = raw.strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(trimmed[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def normalize_tool(value: object) -> str:
    candidate = str(value or "").strip().lower()
    if candidate in TOOL_NAMES:
        return candidate
    return "compose_simple_email"


def _parse_state(value: object) -> WorkflowState | None:
    try:
        return WorkflowState(str(value).strip().upper())
    except ValueError:
        return None


def _parse_intent(value: object) -> WorkflowIntent | None:
    try:
        return WorkflowIntent(str(value).strip().upper())
    except ValueError:
        return None


def coerce_decision(raw: dict) -> PlannerDecision:
    args = raw.get("args")
    response = raw.get("response")
    return PlannerDecision(
        tool=normalize_tool(raw.get("tool")),
        args=dict(args) if isinstance(args, dict) else {},
        state=_parse_state(raw.get("state")) if raw.get("state") else None,
        intent=_parse_intent(raw.get("intent")) if raw.get("intent") else None,
        response=response if isinstance(response, str) else None,
    )


def looks_like_greeting_or_short_intent(prompt: str) -> bool:
    normalized = prompt.strip().lower()
    if not normalized:
        return True
    if normalized in _GREETINGS or normalized in ("help", "start"):
        return True
    return normalized.startswith(("can you help", "i need help"))


def is_likely_incoherent_prompt(prompt: str) -> bool:
    normalized = prompt.strip().lower()
    if not normalized or looks_like_greeting_or_short_intent(normalized):
        return False

    compact = re.sub(r"\s+", "", normalized)
    if len(compact) <= 2:
        return True
    if not re.search(r"[a-z]", compact):
        return True

    vowels = sum(1 for ch in compact if ch in "aeiou")
    unique_chars = len(set(compact))
    single_token = len(normalized.split()) == 1

    if single_token and len(compact) <= 5 and vowels == 0:
        return True
    if single_token and len(compact) >= 4 and unique_chars <= 2:
        return True
    return bool(re.fullmatch(r"[a-z]{3,6}", compact)) and vowels == 0


def build_incoherent_response(turn: int) -> str:
    if turn <= 1:
        return "I didn't catch that. Tell me in one line what you want to send and what outcome you want."
    return "I still can't understand that input. Rephrase it as: campaign type + audience + goal."


def should_capture_goal_prompt(prompt: str) -> bool:
    normalized = prompt.strip()
    if not normalized:
        return False
    if looks_like_greeting_or_short_intent(normalized) or is_likely_incoherent_prompt(normalized):
        return False
    return len(normalized) >= 6


def infer_fallback_decision(machine: WorkflowMachineState, prompt: str) -> PlannerDecision:
    """Keyword heuristics used whenever the planner output is unusable."""
    normalized = prompt.lower()

    template = find_template_in_text(normalized)
    if template is not None:
        return PlannerDecision(
            tool="select_template",
            args={"templateId": template.id},
            state=WorkflowState.TEMPLATE_SELECTED,
            intent=WorkflowIntent.NEWSLETTER if machine.intent == WorkflowIntent.UNKNOWN else machine.intent,
            response=(
                f"Great choice! I've selected {template.name} for you. You can preview and customize it, "
                "then we'll collect your recipients."
            ),
        )

    if "@" in normalized or "csv" in normalized:
        return PlannerDecision(
            tool="validate_recipients",
            args={"recipients": prompt},
            state=WorkflowState.VALIDATION_REVIEW,
            response="Let me validate those email addresses for you. I'll check for formatting issues and duplicates.",
        )

    early = machine.state in _EARLY_STATES
    # Queueing only applies once discovery is over.
    if not early and any(word in normalized for word in ("send", "launch", "queue")):
        return PlannerDecision(
            tool="confirm_queue_campaign",
            state=WorkflowState.QUEUED,
            response=(
                "Queuing your campaign now! Emails will be sent through our delivery system "
                "with real-time progress tracking."
            ),
        )

    if early and any(keyword in normalized for keyword in EMAIL_INTENT_KEYWORDS):
        return PlannerDecision(
            tool="suggest_templates",
            args={"query": prompt},
            state=WorkflowState.TEMPLATE_DISCOVERY,
            intent=WorkflowIntent.NEWSLETTER,
            response=(
                "I found some templates that match what you're going for. Pick the one that fits best. "
                "Each is fully customizable, and I'll help you refine the content."
            ),
        )

    if early:
        return PlannerDecision(
            tool="ask_campaign_type",
            args={"query": prompt},
            state=WorkflowState.GOAL_BRIEF,
            intent=machine.intent,
            response="\n".join(
                [
                    "Thanks for sharing that! To create the best campaign for you, I'd like to know a bit more:",
                    "",
                    "1. What type of email is this? (newsletter, promotion, announcement, etc.)",
                    "2. Who's your target audience?",
                    "3. What action do you want readers to take?",
                    "",
                    "Share whatever you have and I'll take it from there.",
                ]
            ),
        )

    if "signature" in normalized:
        return PlannerDecision(
            tool="compose_signature_email",
            state=WorkflowState.COMPLETED,
            intent=WorkflowIntent.SIGNATURE,
            response=(
                "I can create a polished signature email for you. Tell me the recipient, the tone you want, "
                "and your main call-to-action."
            ),
        )

    return PlannerDecision(
        tool="ask_campaign_type",
        state=WorkflowState.GOAL_BRIEF,
        intent=machine.intent,
        response="\n".join(
            [
                "I'd love to help with that! I specialize in email campaigns. Here's what I can do:",
                "",
                "1. Create and send newsletters with professional templates",
                "2. Build promotional or announcement emails",
                "3. Draft signature emails",
                "",
                "What kind of email would you like to create? Tell me your goal and audience and I'll get you started.",
            ]
        ),
    )


def build_planner_prompt(machine: WorkflowMachineState, prompt: str, *, off_topic: bool = False) -> str:
    context = {
        "state": machine.state.value,
        "intent": machine.intent.value,
        "selectedTemplateId": machine.selected_template_id,
        "recipientStats": machine.recipient_stats.to_dict() if machine.recipient_stats else None,
        "context": machine.context,
    }
    lines = [
        "You are the AI planner for an email campaign platform.",
        "Select exactly one tool and respond with strict JSON only.",
        "",
        "JSON Schema:",
        '{"tool":"<tool_name>","args":{},"state":"<next_state>","intent":"<intent>",'
        '"response":"<your conversational response to the user>"}',
        "",
        f"Tools: {' | '.join(TOOL_NAMES)}",
        f"States: {' | '.join(state.value for state in WorkflowState)}",
        f"Intents: {' | '.join(intent.value for intent in WorkflowIntent)}",
        "",
        "## Conversation Strategy",
        "You are a friendly, knowledgeable email marketing assistant. Your job is to INTERACT with the user "
        "naturally while guiding them through this flow:",
        "1. Understand their overall goal (what they want to achieve with email)",
        "2. Propose a template if they haven't specified one",
        "3. Help them collect/import their mailing list",
        "4. Send or schedule the email campaign",
        "",
        "## Response Style Rules",
        "- BE CONVERSATIONAL. Respond naturally to what the user says. Acknowledge their input, ask follow-up "
        "questions, offer suggestions.",
        "- When the user describes their business or goal, engage with it. Ask clarifying questions about their "
        "audience, tone, and objectives.",
        "- Use short paragraphs and numbered lists for readability. Keep responses 2-4 sentences unless detail "
        "is needed.",
        "- NEVER ignore the user's message. Always address what they said before moving to next steps.",
        "- If the user asks a question about email marketing, answer it helpfully, then guide back to the workflow.",
        "- If the user's message isn't directly about email, acknowledge it warmly and steer toward how you can "
        "help with their email needs.",
        "- Never use formal letter format, greetings like 'Dear user', or signatures.",
        "- Never prefix with labels like 'Resumed:' or 'Response:'.",
        "",
        "## Tool Selection Guide",
        "- PROACTIVE TEMPLATES: As soon as the user mentions ANY email-related intent (welcome email, promo, "
        "newsletter, announcement, product update, etc.), use suggest_templates IMMEDIATELY. Do NOT ask "
        "clarifying questions first. Show templates and refine from there.",
        "- INTENT_CAPTURE/GOAL_BRIEF: If the user's intent is unclear or not email-related, use ask_campaign_type "
        "to learn more.",
        "- Once templates are shown: User picks a template -> use select_template with the templateId.",
        "- Template confirmed: Use request_recipients to ask for their mailing list.",
        "- User provides emails: Use validate_recipients to validate them.",
        "- Ready to send: Use review_campaign, then confirm_queue_campaign.",
        "- Simple one-off email (no template needed): Use compose_simple_email.",
        "- Email signature request: Use compose_signature_email.",
        "",
        "## SMTP and Sending Options",
        "When discussing sending, the user can choose:",
        "- Platform SMTP (default, included)",
        "- Their own SMTP server (custom configuration)",
        "- Purchase dedicated SMTP through the platform",
        "Mention these options when relevant, especially at the send/schedule step.",
        "",
    ]
    if off_topic:
        lines += [
            "Note: this message is outside email campaign work. Acknowledge it in one sentence, do not answer it, "
            "and steer the user back to their email campaign.",
            "",
        ]
    lines += [
        f"Current workflow state: {json.dumps(context, ensure_ascii=False)}",
        f"User message: {prompt}",
    ]
    return "\n".join(lines)


class Planner:
    """Chooses the tool for a turn: canned short-circuits, then the model, then heuristics."""

    def __init__(self, generator: TextGenerator, *, timeout_seconds: float = DEFAULT_PLANNER_TIMEOUT_SECONDS):
        self._generator = generator
        self._timeout_seconds = timeout_seconds

    async def plan(
        self,
        prompt: str,
        machine: WorkflowMachineState,
        base_request: GenerationRequest,
        *,
        off_topic: bool = False,
    ) -> PlanOutcome:
        previous = machine.context.get("incoherent_turns")
        previous_turns = max(0, previous) if isinstance(previous, int) and not isinstance(previous, bool) else 0
        incoherent = is_likely_incoherent_prompt(prompt)
        turns = min(previous_turns + 1, MAX_INCOHERENT_TURNS) if incoherent else 0

        if incoherent:
            decision = PlannerDecision(
                tool="ask_campaign_type",
                state=WorkflowState.GOAL_BRIEF,
                intent=machine.intent,
                response=build_incoherent_response(turns),
            )
            return PlanOutcome(decision=decision, source="incoherent", incoherent_turns=turns)

        if machine.state == WorkflowState.INTENT_CAPTURE and looks_like_greeting_or_short_intent(prompt):
            decision = PlannerDecision(
                tool="ask_campaign_type",
                state=WorkflowState.GOAL_BRIEF,
                intent=machine.intent,
                response=WELCOME_TEXT,
            )
            return PlanOutcome(decision=decision, source="greeting", incoherent_turns=turns)

        request = replace(
            base_request,
            prompt=build_planner_prompt(machine, prompt, off_topic=off_topic),
            system=PLANNER_SYSTEM_PROMPT,
            temperature=PLANNER_TEMPERATURE,
            max_output_tokens=PLANNER_MAX_OUTPUT_TOKENS,
        )
        try:
            result = await asyncio.wait_for(self._generator.generate(request), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Planner timed out after {self._timeout_seconds:.0f}s; using heuristic fallback")
            timed_out = GenerationAttempt(
                provider=base_request.provider or "unknown",
                model=base_request.model or "unknown",
                status="ERROR",
                latency_ms=int(self._timeout_seconds * 1000),
                error_code="TIMEOUT",
            )
            return PlanOutcome(
                decision=infer_fallback_decision(machine, prompt),
                source="fallback",
                incoherent_turns=turns,
                failed_attempts=[timed_out],
            )
        except GenerationError as ex:
            logger.warning(f"Planner generation failed; using heuristic fallback: {ex}")
            return PlanOutcome(
                decision=infer_fallback_decision(machine, prompt),
                source="fallback",
                incoherent_turns=turns,
                failed_attempts=ex.attempts,
            )

        parsed = safe_json_parse(result.text)
        if parsed is None:
            logger.info("Planner output was not a JSON object; using heuristic fallback")
            return PlanOutcome(
                decision=infer_fallback_decision(machine, prompt),
                source="fallback",
                incoherent_turns=turns,
                generation=result,
            )

        return PlanOutcome(
            decision=coerce_decision(parsed),
            source="planner",
            incoherent_turns=turns,
            generation=result,
        )

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MAX_PROMPT_CHARS = 6000
DEFAULT_PROMPT = "Help me create an email campaign."

_SAFETY_SENSITIVE_HINTS = (
    "phishing",
    "steal password",
    "malware",
    "exploit",
    "fraud",
    "blackmail",
    "hate speech",
    "scam",
    "credential stuffing",
)

_OFF_TOPIC_PREFIXES = (
    "write me python code",
    "solve this math",
    "translate this to french",
    "what is the capital of",
    "explain quantum",
    "write a poem about",
    "tell me a joke",
)

_SAFE_BRIEF_PROMPT = (
    "Rewrite this request into a safe, lawful, professional email campaign brief "
    "that avoids harmful actions and keeps marketing compliance."
)


class ModerationAction(str, Enum):
    ALLOW = "allow"
    REWRITE_SCOPE = "rewrite_scope"
    REWRITE_SAFETY = "rewrite_safety"


@dataclass(frozen=True)
class ModerationResult:
    action: ModerationAction
    sanitized_prompt: str
    message: str


def _normalize(value: str) -> str:
    return value.strip().lower()


def is_unsafe_prompt(prompt: str) -> bool:
    candidate = _normalize(prompt)
    return any(hint in candidate for hint in _SAFETY_SENSITIVE_HINTS)


def is_off_topic_prompt(prompt: str) -> bool:
    candidate = _normalize(prompt)
    return candidate.startswith(_OFF_TOPIC_PREFIXES)


def moderate_prompt(raw_prompt: str) -> ModerationResult:
    prompt = (raw_prompt or "").replace("\x00", "").strip()[:MAX_PROMPT_CHARS]
    if not prompt:
        return ModerationResult(ModerationAction.ALLOW, DEFAULT_PROMPT, "Starting in email mode.")

    if is_unsafe_prompt(prompt):
        return ModerationResult(
            ModerationAction.REWRITE_SAFETY,
            _SAFE_BRIEF_PROMPT,
            "I rewrote that into a safe email brief and will continue in compliant mode.",
        )

    if is_off_topic_prompt(prompt):
        return ModerationResult(ModerationAction.REWRITE_SCOPE, prompt, "Redirected to email scope.")

    return ModerationResult(ModerationAction.ALLOW, prompt, "Prompt accepted.")

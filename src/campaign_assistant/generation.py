from __future__ import annotations

import asyncio
import math
import os
import time
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from dataclasses import dataclass, field

from loguru import logger

from campaign_assistant.errors import GenerationError
from campaign_assistant.model_registry import ModelMode
from campaign_assistant.provider import ProviderConfig, TextProvider, as_provider_name, create_provider
from campaign_assistant.provider_policy import build_attempt_order, resolve_provider_policy

DEFAULT_MAX_OUTPUT_TOKENS = 640
DEFAULT_TEMPERATURE = 0.4
DEFAULT_TIMEOUT_SECONDS = 45.0
FALLBACK_PROVIDER = "fallback"
FALLBACK_MODEL = "local-fallback-v1"
FALLBACK_CHUNK_SIZE = 16

NO_PROVIDER_MESSAGE = (
    "No AI provider API key configured. Set one of: OPENAI_API_KEY, ANTHROPIC_API_KEY, "
    "DEEPSEEK_API_KEY, GROK_API_KEY, LLAMA_API_KEY, OPENROUTER_API_KEY."
)

# USD per 1k tokens: (input, output)
_RATES_PER_THOUSAND: dict[str, tuple[float, float]] = {
    "openai": (0.0004, 0.0016),
    "anthropic": (0.00025, 0.00125),
    "deepseek": (0.00014, 0.00028),
    "grok": (0.0007, 0.0015),
    "llama": (0.0001, 0.0001),
    "openrouter": (0.0001, 0.00015),
}


@dataclass
class GenerationRequest:
    prompt: str
    system: str | None = None
    model: str | None = None
    temperature: float | None = None
    mode: ModelMode | None = None
    provider: str | None = None
    user_id: str | None = None
    user_plan: str | None = None
    max_output_tokens: int | None = None


@dataclass(frozen=True)
class GenerationAttempt:
    provider: str
    model: str
    status: str
    latency_ms: int | None = None
    token_in: int | None = None
    token_out: int | None = None
    estimated_cost_usd: float | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model: str
    provider: str
    attempts: list[GenerationAttempt] = field(default_factory=list)
    latency_ms: int | None = None
    token_in: int | None = None
    token_out: int | None = None
    estimated_cost_usd: float | None = None


@dataclass(frozen=True)
class StreamToken:
    token: str


@dataclass(frozen=True)
class StreamSummary:
    text: str
    model: str
    provider: str
    attempts: list[GenerationAttempt] = field(default_factory=list)


def estimate_tokens(text: str) -> int:
    trimmed = text.strip()
    if not trimmed:
        return 0
    return math.ceil(len(trimmed) / 4)


def clamp_text_to_token_budget(text: str, max_output_tokens: int) -> str:
    normalized = text.strip()
    if not normalized or estimate_tokens(normalized) <= max_output_tokens:
        return normalized
    max_chars = max(64, max_output_tokens * 4)
    return normalized[:max_chars].rstrip()


def estimate_cost_usd(provider: str, token_in: int, token_out: int) -> float | None:
    rates = _RATES_PER_THOUSAND.get(provider)
    if rates is None:
        return None
    return round((token_in / 1000) * rates[0] + (token_out / 1000) * rates[1], 6)


def normalize_error_code(error: BaseException | str) -> str:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return "TIMEOUT"
    status = getattr(error, "status_code", None)
    if status == 429:
        return "RATE_LIMIT"
    if status in (401, 403):
        return "AUTH"

    message = str(error).lower()
    if "429" in message or "rate" in message:
        return "RATE_LIMIT"
    if "quota" in message:
        return "QUOTA"
    if "401" in message or "403" in message:
        return "AUTH"
    if "timeout" in message or "timed out" in message:
        return "TIMEOUT"
    return "UNKNOWN"


def chunk_text(text: str, size: int) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


def build_local_fallback_text(prompt: str) -> str:
    """Canned reply used when no provider is configured."""
    prompt = prompt.strip()
    normalized = prompt.lower()

    if not prompt:
        return (
            "Hey! I'm your email campaign assistant. Tell me what you want to send and who your audience is, "
            "and I'll guide you through creating and sending it."
        )

    if normalized in ("hi", "hello", "hey") or normalized.startswith(("hello ", "hey ")):
        return "\n".join(
            [
                "Hey! I can help you create and send email campaigns to your audience.",
                "",
                "To get started, tell me:",
                "1. What's the goal of your email? (promote a product, share news, announce an event, etc.)",
                "2. Who are you sending to? (customers, subscribers, leads, etc.)",
                "",
                "Or just describe what you need and I'll guide you through it.",
            ]
        )

    if any(word in normalized for word in ("email", "audience", "csv", "recipient")):
        return (
            "Let's get your recipients set up. You can paste email addresses directly in the chat, "
            "or upload a CSV file with an email column. I'll validate everything and flag any duplicates "
            "or invalid addresses before we send."
        )

    if "template" in normalized or "design" in normalized:
        return (
            "I'll show you some template options that fit your campaign. Each one is fully customizable - "
            "you can edit text, images, colors, and layout. Let me know your goal and I'll find the best match."
        )

    if any(word in normalized for word in ("send", "schedule", "smtp")):
        return "\n".join(
            [
                "When you're ready to send, you have a few options:",
                "1. Send immediately via our platform SMTP",
                "2. Connect your own SMTP server",
                "3. Use a dedicated SMTP for higher deliverability",
                "",
                "You can also schedule emails for a specific time. "
                "All emails go through our queue system with real-time progress tracking.",
            ]
        )

    return "\n".join(
        [
            "I can help you with that! To build the best campaign, I need a few details:",
            "1. What's the goal? (promotion, newsletter, announcement, etc.)",
            "2. Who's your audience?",
            "3. What tone and call-to-action do you want?",
            "",
            "Share what you have and I'll take it from there.",
        ]
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class TextGenerator:
    """Multi-provider text generation with ordered failover.

    Every call returns (or raises with) the full attempt trail so callers can
    write one telemetry row per provider attempt.
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        *,
        local_fallback_enabled: bool = True,
        default_max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        priority: Iterable[str] = (),
        preferred_provider: str | None = None,
        strict_preference: bool = False,
        env: Mapping[str, str] | None = None,
        provider_factory: Callable[[ProviderConfig], TextProvider] | None = None,
    ):
        self._configs = list(configs)
        self._local_fallback_enabled = local_fallback_enabled
        self._default_max_output_tokens = (
            default_max_output_tokens if default_max_output_tokens > 0 else DEFAULT_MAX_OUTPUT_TOKENS
        )
        self._timeout_seconds = timeout_seconds
        self._priority = list(priority)
        self._preferred_provider = preferred_provider
        self._strict_preference = strict_preference
        self._env = os.environ if env is None else env
        self._provider_factory = provider_factory or (
            lambda config: create_provider(config, timeout_seconds=timeout_seconds)
        )
        self._providers: dict[str, TextProvider] = {}

    @property
    def configured_providers(self) -> list[str]:
        return [config.name for config in self._configs]

    def _provider(self, config: ProviderConfig) -> TextProvider:
        provider = self._providers.get(config.name)
        if provider is None:
            provider = self._provider_factory(config)
            self._providers[config.name] = provider
        return provider

    def _max_output_tokens(self, request: GenerationRequest) -> int:
        if request.max_output_tokens and request.max_output_tokens > 0:
            return request.max_output_tokens
        return self._default_max_output_tokens

    def _select(self, request: GenerationRequest) -> list[ProviderConfig] | None:
        """Providers to try, in order. ``None`` means answer locally."""
        if not self._configs:
            if not self._local_fallback_enabled:
                raise GenerationError(NO_PROVIDER_MESSAGE, [])
            return None

        policy = resolve_provider_policy(request.user_plan, self._env)
        allowed = [config for config in self._configs if config.name in policy.allowed]
        if not allowed:
            raise GenerationError("No AI providers are allowed for the current plan.", [])

        by_name = {config.name: config for config in allowed}
        order = build_attempt_order(
            by_name,
            requested=request.provider,
            preferred=self._preferred_provider,
            mode=request.mode,
            policy_order=policy.preferred_order,
            priority=self._priority,
            strict=self._strict_preference,
        )
        if not order:
            raise GenerationError("No eligible AI provider available for this request.", [])
        return [by_name[name] for name in order]

    def _model_for(self, config: ProviderConfig, request: GenerationRequest) -> str:
        # A requested model only makes sense for the provider it was requested with.
        if request.model and as_provider_name(request.provider) == config.name:
            return request.model
        return config.model

    def _call_max_tokens(self, config: ProviderConfig, max_tokens: int) -> int:
        if config.max_tokens_cap:
            return max(64, min(max_tokens, config.max_tokens_cap))
        return max_tokens

    def _token_in(self, request: GenerationRequest) -> int:
        return estimate_tokens(request.prompt + (request.system or ""))

    def _local_fallback(self, request: GenerationRequest, max_tokens: int) -> GenerationResult:
        text = clamp_text_to_token_budget(build_local_fallback_text(request.prompt), max_tokens)
        token_in = self._token_in(request)
        token_out = estimate_tokens(text)
        attempt = GenerationAttempt(
            provider=FALLBACK_PROVIDER,
            model=FALLBACK_MODEL,
            status="SUCCESS",
            latency_ms=0,
            token_in=token_in,
            token_out=token_out,
            estimated_cost_usd=0.0,
        )
        logger.info("No AI provider configured; answering with local fallback text")
        return GenerationResult(
            text=text,
            model=FALLBACK_MODEL,
            provider=FALLBACK_PROVIDER,
            attempts=[attempt],
            latency_ms=0,
            token_in=token_in,
            token_out=token_out,
            estimated_cost_usd=0.0,
        )

    def _failed_attempt(
        self, config: ProviderConfig, model: str, request: GenerationRequest, started: float, error: Exception
    ) -> GenerationAttempt:
        return GenerationAttempt(
            provider=config.name,
            model=model,
            status="ERROR",
            latency_ms=_elapsed_ms(started),
            token_in=self._token_in(request),
            token_out=0,
            estimated_cost_usd=None,
            error_code=normalize_error_code(error),
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        max_tokens = self._max_output_tokens(request)
        order = self._select(request)
        if order is None:
            return self._local_fallback(request, max_tokens)

        attempts: list[GenerationAttempt] = []
        errors: list[str] = []
        temperature = request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE

        for config in order:
            model = self._model_for(config, request)
            started = time.monotonic()
            try:
                raw = await asyncio.wait_for(
                    self._provider(config).create_message(
                        model=model,
                        max_tokens=self._call_max_tokens(config, max_tokens),
                        temperature=temperature,
                        system_prompt=request.system,
                        prompt=request.prompt,
                    ),
                    timeout=self._timeout_seconds,
                )
                text = clamp_text_to_token_budget(raw or "", max_tokens)
                if not text:
                    raise ValueError(f"{config.name} response did not include text")
            except Exception as ex:
                attempts.append(self._failed_attempt(config, model, request, started, ex))
                errors.append(f"{config.name}: {str(ex) or type(ex).__name__}")
                logger.warning(f"Provider {config.name} failed ({attempts[-1].error_code}): {ex}")
                continue

            latency_ms = _elapsed_ms(started)
            token_in = self._token_in(request)
            token_out = estimate_tokens(text)
            cost = estimate_cost_usd(config.name, token_in, token_out)
            attempts.append(
                GenerationAttempt(
                    provider=config.name,
                    model=model,
                    status="SUCCESS",
                    latency_ms=latency_ms,
                    token_in=token_in,
                    token_out=token_out,
                    estimated_cost_usd=cost,
                )
            )
            return GenerationResult(
                text=text,
                model=model,
                provider=config.name,
                attempts=attempts,
                latency_ms=latency_ms,
                token_in=token_in,
                token_out=token_out,
                estimated_cost_usd=cost,
            )

        raise GenerationError(f"All AI providers failed. {' | '.join(errors)}", attempts)

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[StreamToken | StreamSummary]:
        """Yield ``StreamToken`` items then exactly one ``StreamSummary``.

        Providers are failed over only while nothing has been yielded. Once a
        provider has produced tokens, a later failure raises ``GenerationError``.
        When every stream fails up front, single-shot ``generate`` is tried.
        """
        max_tokens = self._max_output_tokens(request)
        order = self._select(request)
        if order is None:
            result = self._local_fallback(request, max_tokens)
            for chunk in chunk_text(result.text, FALLBACK_CHUNK_SIZE):
                yield StreamToken(chunk)
            yield StreamSummary(text=result.text, model=result.model, provider=result.provider, attempts=result.attempts)
            return

        attempts: list[GenerationAttempt] = []
        errors: list[str] = []
        temperature = request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE

        for config in order:
            model = self._model_for(config, request)
            started = time.monotonic()
            full_text = ""
            try:
                stream = self._provider(config).stream_text(
                    model=model,
                    max_tokens=self._call_max_tokens(config, max_tokens),
                    temperature=temperature,
                    system_prompt=request.system,
                    prompt=request.prompt,
                )
                try:
                    while True:
                        try:
                            token = await asyncio.wait_for(anext(stream), timeout=self._timeout_seconds)
                        except StopAsyncIteration:
                            break
                        if not token:
                            continue
                        full_text += token
                        yield StreamToken(token)
                        if estimate_tokens(full_text) >= max_tokens:
                            break
                finally:
                    await stream.aclose()
                if not full_text.strip():
                    raise ValueError(f"{config.name} stream returned empty text")
            except Exception as ex:
                attempts.append(self._failed_attempt(config, model, request, started, ex))
                errors.append(f"{config.name}: {str(ex) or type(ex).__name__}")
                if full_text:
                    raise GenerationError(f"{config.name} stream failed after partial output: {ex}", attempts) from ex
                logger.warning(f"Provider {config.name} stream failed ({attempts[-1].error_code}): {ex}")
                continue

            text = clamp_text_to_token_budget(full_text, max_tokens)
            token_in = self._token_in(request)
            token_out = estimate_tokens(text)
            attempts.append(
                GenerationAttempt(
                    provider=config.name,
                    model=model,
                    status="SUCCESS",
                    latency_ms=_elapsed_ms(started),
                    token_in=token_in,
                    token_out=token_out,
                    estimated_cost_usd=estimate_cost_usd(config.name, token_in, token_out),
                )
            )
            yield StreamSummary(text=text, model=model, provider=config.name, attempts=attempts)
            return

        logger.warning(f"Falling back to single-shot generation after stream failures: {' | '.join(errors)}")
        try:
            fallback = await self.generate(request)
        except GenerationError as ex:
            raise GenerationError(str(ex), attempts + ex.attempts) from ex
        for chunk in chunk_text(fallback.text, FALLBACK_CHUNK_SIZE):
            yield StreamToken(chunk)
        yield StreamSummary(
            text=fallback.text,
            model=fallback.model,
            provider=fallback.provider,
            attempts=attempts + fallback.attempts,
        )

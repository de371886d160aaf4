import asyncio
import unittest

from campaign_assistant.errors import GenerationError
from campaign_assistant.generation import (
    FALLBACK_MODEL,
    FALLBACK_PROVIDER,
    NO_PROVIDER_MESSAGE,
    GenerationRequest,
    StreamSummary,
    StreamToken,
    TextGenerator,
    clamp_text_to_token_budget,
    estimate_tokens,
    normalize_error_code,
)
from campaign_assistant.provider import ProviderConfig


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class _FakeProvider:
    def __init__(
        self,
        text: str = "",
        *,
        error: Exception | None = None,
        tokens: list[str] | None = None,
        stream_error: Exception | None = None,
        fail_after: int = 0,
    ):
        self._text = text
        self._error = error
        self._tokens = tokens or []
        self._stream_error = stream_error
        self._fail_after = fail_after
        self.calls: list[dict] = []
        self.stream_closed = False

    async def create_message(self, model, max_tokens, temperature, system_prompt, prompt) -> str:
        self.calls.append({"model": model, "max_tokens": max_tokens, "temperature": temperature})
        if self._error is not None:
            raise self._error
        return self._text

    async def stream_text(self, model, max_tokens, temperature, system_prompt, prompt):
        self.calls.append({"model": model, "max_tokens": max_tokens, "stream": True})
        try:
            for i, token in enumerate(self._tokens):
                if self._stream_error is not None and i == self._fail_after:
                    raise self._stream_error
                yield token
            if self._stream_error is not None and self._fail_after >= len(self._tokens):
                raise self._stream_error
        finally:
            self.stream_closed = True


def _config(name: str) -> ProviderConfig:
    return ProviderConfig(name=name, api_key="k", model=f"{name}-default")


def _generator(providers: dict[str, _FakeProvider], **kwargs) -> TextGenerator:
    return TextGenerator(
        [_config(name) for name in providers],
        env={},
        provider_factory=lambda config: providers[config.name],
        **kwargs,
    )


async def _drain(generator: TextGenerator, request: GenerationRequest) -> list:
    return [item async for item in generator.generate_stream(request)]


class GenerateTests(unittest.TestCase):
    def test_local_fallback_without_providers(self) -> None:
        result = asyncio.run(TextGenerator([], env={}).generate(GenerationRequest(prompt="hello")))
        self.assertEqual(FALLBACK_PROVIDER, result.provider)
        self.assertEqual(FALLBACK_MODEL, result.model)
        self.assertIn("email campaigns", result.text)
        self.assertEqual(["SUCCESS"], [a.status for a in result.attempts])

    def test_no_providers_and_fallback_disabled(self) -> None:
        generator = TextGenerator([], env={}, local_fallback_enabled=False)
        with self.assertRaises(GenerationError) as ctx:
            asyncio.run(generator.generate(GenerationRequest(prompt="hello")))
        self.assertEqual(NO_PROVIDER_MESSAGE, str(ctx.exception))
        self.assertEqual([], ctx.exception.attempts)

    def test_fails_over_and_keeps_attempt_trail(self) -> None:
        providers = {
            "deepseek": _FakeProvider(error=_StatusError("slow down", 429)),
            "openai": _FakeProvider("Here is your draft."),
        }
        result = asyncio.run(_generator(providers).generate(GenerationRequest(prompt="draft", user_plan="free")))
        self.assertEqual("openai", result.provider)
        self.assertEqual("Here is your draft.", result.text)
        self.assertEqual(["deepseek", "openai"], [a.provider for a in result.attempts])
        self.assertEqual("RATE_LIMIT", result.attempts[0].error_code)
        self.assertEqual("SUCCESS", result.attempts[1].status)

    def test_all_failures_raise_with_attempts(self) -> None:
        providers = {
            "deepseek": _FakeProvider(error=RuntimeError("quota exceeded")),
            "openai": _FakeProvider(""),
        }
        with self.assertRaises(GenerationError) as ctx:
            asyncio.run(_generator(providers).generate(GenerationRequest(prompt="draft")))
        self.assertTrue(str(ctx.exception).startswith("All AI providers failed."))
        self.assertEqual(["QUOTA", "UNKNOWN"], [a.error_code for a in ctx.exception.attempts])

    def test_requested_provider_goes_first_with_its_model(self) -> None:
        providers = {"deepseek": _FakeProvider("a"), "openai": _FakeProvider("b")}
        request = GenerationRequest(prompt="draft", provider="openai", model="gpt-custom")
        result = asyncio.run(_generator(providers).generate(request))
        self.assertEqual("openai", result.provider)
        self.assertEqual("gpt-custom", providers["openai"].calls[0]["model"])
        self.assertEqual([], providers["deepseek"].calls)

    def test_requested_model_is_not_sent_to_other_providers(self) -> None:
        providers = {"deepseek": _FakeProvider(error=RuntimeError("down")), "openai": _FakeProvider("b")}
        request = GenerationRequest(prompt="draft", provider="deepseek", model="deepseek-reasoner")
        asyncio.run(_generator(providers).generate(request))
        self.assertEqual("deepseek-reasoner", providers["deepseek"].calls[0]["model"])
        self.assertEqual("openai-default", providers["openai"].calls[0]["model"])

    def test_free_plan_cannot_use_premium_only_provider(self) -> None:
        providers = {"anthropic": _FakeProvider("hi")}
        with self.assertRaises(GenerationError):
            asyncio.run(_generator(providers).generate(GenerationRequest(prompt="draft", user_plan="free")))
        result = asyncio.run(_generator(providers).generate(GenerationRequest(prompt="draft", user_plan="pro")))
        self.assertEqual("anthropic", result.provider)

    def test_output_is_clamped_to_budget(self) -> None:
        providers = {"openai": _FakeProvider("x" * 2000)}
        result = asyncio.run(_generator(providers).generate(GenerationRequest(prompt="p", max_output_tokens=100)))
        self.assertEqual(400, len(result.text))
        self.assertEqual(100, providers["openai"].calls[0]["max_tokens"])

    def test_timeout_counts_as_failed_attempt(self) -> None:
        class _Slow(_FakeProvider):
            async def create_message(self, *args, **kwargs) -> str:
                await asyncio.sleep(1)
                return "late"

        providers = {"deepseek": _Slow(), "openai": _FakeProvider("on time")}
        result = asyncio.run(_generator(providers, timeout_seconds=0.01).generate(GenerationRequest(prompt="p")))
        self.assertEqual("TIMEOUT", result.attempts[0].error_code)
        self.assertEqual("openai", result.provider)


class GenerateStreamTests(unittest.TestCase):
    def test_tokens_then_summary(self) -> None:
        providers = {"openai": _FakeProvider(tokens=["Hel", "lo ", "there"])}
        items = asyncio.run(_drain(_generator(providers), GenerationRequest(prompt="p")))
        self.assertEqual(["Hel", "lo ", "there"], [i.token for i in items if isinstance(i, StreamToken)])
        summary = items[-1]
        self.assertIsInstance(summary, StreamSummary)
        self.assertEqual("Hello there", summary.text)
        self.assertEqual("openai", summary.provider)
        self.assertTrue(providers["openai"].stream_closed)

    def test_fails_over_before_first_token(self) -> None:
        providers = {
            "deepseek": _FakeProvider(tokens=["never"], stream_error=_StatusError("unauthorized", 401)),
            "openai": _FakeProvider(tokens=["ok"]),
        }
        items = asyncio.run(_drain(_generator(providers), GenerationRequest(prompt="p")))
        summary = items[-1]
        self.assertEqual("openai", summary.provider)
        self.assertEqual(["AUTH", None], [a.error_code for a in summary.attempts])

    def test_failure_after_partial_output_raises(self) -> None:
        providers = {
            "deepseek": _FakeProvider(tokens=["one ", "two"], stream_error=RuntimeError("reset"), fail_after=1),
            "openai": _FakeProvider(tokens=["unused"]),
        }
        received: list[str] = []

        async def run() -> None:
            async for item in _generator(providers).generate_stream(GenerationRequest(prompt="p")):
                received.append(item.token)

        with self.assertRaises(GenerationError) as ctx:
            asyncio.run(run())
        self.assertEqual(["one "], received)
        self.assertEqual(1, len(ctx.exception.attempts))
        self.assertEqual([], providers["openai"].calls)

    def test_stream_failures_fall_back_to_single_shot(self) -> None:
        providers = {"openai": _FakeProvider("single shot answer here", stream_error=RuntimeError("no stream"))}
        items = asyncio.run(_drain(_generator(providers), GenerationRequest(prompt="p")))
        tokens = [i.token for i in items if isinstance(i, StreamToken)]
        self.assertEqual("single shot answer here", "".join(tokens))
        self.assertTrue(all(len(t) <= 16 for t in tokens))
        self.assertEqual(["ERROR", "SUCCESS"], [a.status for a in items[-1].attempts])

    def test_local_fallback_streams_in_chunks(self) -> None:
        items = asyncio.run(_drain(TextGenerator([], env={}), GenerationRequest(prompt="")))
        tokens = [i.token for i in items if isinstance(i, StreamToken)]
        self.assertGreater(len(tokens), 1)
        self.assertEqual(items[-1].text, "".join(tokens))


class HelperTests(unittest.TestCase):
    def test_estimate_tokens(self) -> None:
        self.assertEqual(0, estimate_tokens("   "))
        self.assertEqual(2, estimate_tokens("12345"))

    def test_clamp_keeps_short_text(self) -> None:
        self.assertEqual("short", clamp_text_to_token_budget("  short  ", 10))

    def test_clamp_has_minimum_width(self) -> None:
        self.assertEqual(64, len(clamp_text_to_token_budget("y" * 500, 1)))

    def test_error_codes(self) -> None:
        self.assertEqual("TIMEOUT", normalize_error_code(TimeoutError()))
        self.assertEqual("RATE_LIMIT", normalize_error_code(_StatusError("x", 429)))
        self.assertEqual("AUTH", normalize_error_code(_StatusError("x", 403)))
        self.assertEqual("QUOTA", normalize_error_code("insufficient quota"))
        self.assertEqual("TIMEOUT", normalize_error_code("request timed out"))
        self.assertEqual("UNKNOWN", normalize_error_code("boom"))


if __name__ == "__main__":
    unittest.main()

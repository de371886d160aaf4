import asyncio
import unittest
from types import SimpleNamespace

from campaign_assistant.providers.anthropic_provider import AnthropicProvider, _request_kwargs


class _FakeStream:
    def __init__(self, events):
        self._events = list(events)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self._events:
            yield event

    async def close(self) -> None:
        self.closed = True


class _FakeMessages:
    def __init__(self, response):
        self._response = response
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self._response


def _provider_with(response) -> tuple[AnthropicProvider, _FakeMessages]:
    messages = _FakeMessages(response)
    provider = AnthropicProvider.__new__(AnthropicProvider)
    provider._client = SimpleNamespace(messages=messages)
    return provider, messages


def _text_delta(text: str):
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=text))


class RequestKwargsTests(unittest.TestCase):
    def test_system_is_only_sent_when_present(self) -> None:
        without = _request_kwargs("claude", 100, 0.2, None, "hi")
        self.assertNotIn("system", without)
        self.assertEqual([{"role": "user", "content": "hi"}], without["messages"])

        with_system = _request_kwargs("claude", 100, 0.2, "Be brief.", "hi")
        self.assertEqual("Be brief.", with_system["system"])


class AnthropicProviderTests(unittest.TestCase):
    def test_create_message_joins_text_blocks(self) -> None:
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Line one"),
                SimpleNamespace(type="tool_use", text=None),
                SimpleNamespace(type="text", text="Line two "),
            ],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=12, output_tokens=8),
        )
        provider, messages = _provider_with(response)

        text = asyncio.run(provider.create_message("claude-3-5-haiku-latest", 300, 0.28, "sys", "prompt"))

        self.assertEqual("Line one\nLine two", text)
        self.assertEqual(300, messages.calls[0]["max_tokens"])
        self.assertEqual("sys", messages.calls[0]["system"])

    def test_stream_text_yields_text_deltas_only(self) -> None:
        stream = _FakeStream(
            [
                SimpleNamespace(type="message_start"),
                _text_delta("Fresh "),
                SimpleNamespace(
                    type="content_block_delta", delta=SimpleNamespace(type="input_json_delta", partial_json="{}")
                ),
                _text_delta("sushi"),
                SimpleNamespace(type="message_stop"),
            ]
        )
        provider, messages = _provider_with(stream)

        async def collect() -> list[str]:
            return [token async for token in provider.stream_text("claude", 50, 0.2, None, "p")]

        self.assertEqual(["Fresh ", "sushi"], asyncio.run(collect()))
        self.assertTrue(stream.closed)
        self.assertTrue(messages.calls[0]["stream"])


if __name__ == "__main__":
    unittest.main()

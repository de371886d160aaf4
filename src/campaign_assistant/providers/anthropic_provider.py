from __future__ import annotations

from collections.abc import AsyncIterator

import anthropic
import httpx
from loguru import logger
from tenacity import retry

from campaign_assistant.providers.common import default_retry_kwargs

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


def _request_kwargs(
    model: str,
    max_tokens: int,
    temperature: float,
    system_prompt: str | None,
    prompt: str,
) -> dict:
    kwargs: dict = dict(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[{"role": "user", "content": prompt}],
    )
    if system_prompt:
        kwargs["system"] = system_prompt
    return kwargs


class AnthropicProvider:
    def __init__(self, api_key: str, *, base_url: str | None = None, timeout_seconds: float = 45.0):
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            max_retries=0,
        )

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        prompt: str,
    ) -> str:
        logger.debug(f"API request: provider=anthropic, model={model}, max_tokens={max_tokens}")
        response = await self._client.messages.create(
            **_request_kwargs(model, max_tokens, temperature, system_prompt, prompt)
        )
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "\n".join(block.text for block in response.content if block.type == "text").strip()

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _open_stream(self, **kwargs):
        return await self._client.messages.create(stream=True, **kwargs)

    async def stream_text(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        prompt: str,
    ) -> AsyncIterator[str]:
        logger.debug(f"API stream request: provider=anthropic, model={model}, max_tokens={max_tokens}")
        stream = await self._open_stream(**_request_kwargs(model, max_tokens, temperature, system_prompt, prompt))
        try:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if event.delta.text:
                        yield event.delta.text
        finally:
            await stream.close()

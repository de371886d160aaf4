from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import openai
from loguru import logger
from tenacity import retry

from campaign_assistant.providers.common import default_retry_kwargs

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


def _to_openai_messages(system_prompt: str | None, prompt: str) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    out.append({"role": "user", "content": prompt})
    return out


def _content_text(content) -> str:
    """Chat content may be a plain string or a list of typed parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    parts: list[str] = []
    for part in content:
        text = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
        if text:
            parts.append(text)
    return "\n".join(parts).strip()


class OpenAICompatibleProvider:
    """Any chat-completions endpoint: OpenAI itself, DeepSeek, Grok, Llama API, OpenRouter."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 45.0,
    ):
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=headers or None,
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
        oai_messages = _to_openai_messages(system_prompt, prompt)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
        )
        choice = response.choices[0] if response.choices else None
        text = _content_text(choice.message.content if choice else None)
        logger.debug(f"API response: finish_reason={choice.finish_reason if choice else None}, len={len(text)}")
        return text

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _open_stream(self, **kwargs):
        return await self._client.chat.completions.create(stream=True, **kwargs)

    async def stream_text(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        prompt: str,
    ) -> AsyncIterator[str]:
        oai_messages = _to_openai_messages(system_prompt, prompt)
        logger.debug(f"API stream request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        stream = await self._open_stream(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
        )
        try:
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if choice is None or choice.delta is None:
                    continue
                if choice.delta.content:
                    yield choice.delta.content
        finally:
            await stream.close()

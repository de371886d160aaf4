from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    """Dispatches ``/``-prefixed console input; everything else is a workflow turn."""

    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_credits: Callable[[], Awaitable[None]],
        on_models: Callable[[], Awaitable[None]],
        on_mode: Callable[[str], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_checkpoint: Callable[[str], Awaitable[None]],
        on_usage: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_credits = on_credits
        self._on_models = on_models
        self._on_mode = on_mode
        self._on_session = on_session
        self._on_checkpoint = on_checkpoint
        self._on_usage = on_usage
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command = trimmed.split(maxsplit=1)[0]
        if command == "/help":
            await self._on_help()
            return True
        if command == "/credits":
            await self._on_credits()
            return True
        if command == "/models":
            await self._on_models()
            return True
        if command == "/mode":
            await self._on_mode(trimmed)
            return True
        if command == "/session":
            await self._on_session(trimmed)
            return True
        if command == "/checkpoint":
            await self._on_checkpoint(trimmed)
            return True
        if command == "/usage":
            await self._on_usage(trimmed)
            return True

        self._on_unknown(trimmed)
        return True

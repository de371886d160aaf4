from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from campaign_assistant.bootstrap import AppRuntime
from campaign_assistant.commands.router import CommandRouter
from campaign_assistant.errors import InsufficientCreditsError
from campaign_assistant.model_registry import (
    ModelMode,
    estimate_remaining_messages,
    get_model_for_mode,
    is_model_accessible,
    models_for_client,
)
from campaign_assistant.orchestrator import TurnRequest
from campaign_assistant.spinner import REPLY_LABEL, Spinner, label_for_tool
from campaign_assistant.storage.events import to_iso
from campaign_assistant.storage.session_repository import create_conversation_id
from campaign_assistant.stream_events import (
    DoneEvent,
    ErrorEvent,
    ModerationEvent,
    SessionEvent,
    StatePatchEvent,
    TokenEvent,
    ToolStartEvent,
)


class AssistantConsole:
    """Interactive front end: local commands plus streamed workflow turns."""

    _LINE_PREFIX = "assistant> "

    def __init__(
        self,
        runtime: AppRuntime,
        *,
        conversation_id: str | None = None,
        show_spinner: bool = True,
    ):
        self._runtime = runtime
        self._user_id = runtime.app.user_id
        self._user_plan = runtime.app.user_plan
        self._mode = runtime.app.mode
        self._conversation_id = conversation_id
        self._show_spinner = show_spinner
        self._last_done: DoneEvent | None = None

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_credits=self._handle_credits_command,
            on_models=self._handle_models_command,
            on_mode=self._handle_mode_command,
            on_session=self._handle_session_command,
            on_checkpoint=self._handle_checkpoint_command,
            on_usage=self._handle_usage_command,
            on_unknown=self._on_unknown_command,
        )

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def last_done(self) -> DoneEvent | None:
        return self._last_done

    async def run(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return
        await self._run_turn(user_message)

    async def _run_turn(self, prompt: str) -> None:
        request = TurnRequest(
            user_id=self._user_id,
            user_plan=self._user_plan,
            prompt=prompt,
            conversation_id=self._conversation_id,
            mode=self._mode,
        )

        self._last_done = None
        spinner = Spinner(prefix=self._LINE_PREFIX)
        if self._show_spinner:
            spinner.start()
        else:
            print(self._LINE_PREFIX, end="", flush=True)

        try:
            async for event in self._runtime.orchestrator.stream_turn(request):
                if isinstance(event, SessionEvent):
                    self._conversation_id = event.conversation_id
                elif isinstance(event, ModerationEvent):
                    logger.info(f"Prompt moderated ({event.action}): {event.message}")
                elif isinstance(event, ToolStartEvent):
                    spinner.set_label(label_for_tool(event.tool))
                elif isinstance(event, StatePatchEvent):
                    spinner.set_label(REPLY_LABEL)
                elif isinstance(event, TokenEvent):
                    spinner.stop()
                    print(event.token, end="", flush=True)
                elif isinstance(event, ErrorEvent):
                    logger.warning(f"Turn error {event.code}: {event.message}")
                elif isinstance(event, DoneEvent):
                    self._last_done = event
        except InsufficientCreditsError as ex:
            spinner.stop()
            print(f"Rate limited: {ex}")
            return
        finally:
            spinner.stop()

        if self._last_done is not None:
            self._print_done_details(self._last_done)

    def _print_done_details(self, done: DoneEvent) -> None:
        print()
        if done.template_suggestions:
            print(f"{self._LINE_PREFIX}Templates:")
            for suggestion in done.template_suggestions:
                print(f"{self._LINE_PREFIX}  - {suggestion.name} ({suggestion.id}) [{suggestion.theme}]")
        if done.campaign_id:
            print(f"{self._LINE_PREFIX}Campaign queued: {done.campaign_id}")
        if done.remaining_credits is not None:
            print(f"{self._LINE_PREFIX}[{done.state}] credits {done.remaining_credits}/{done.max_credits}")

    async def _on_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /credits")
        print(f"{self._LINE_PREFIX}- /models")
        print(f"{self._LINE_PREFIX}- /mode <essential|balanced|premium>")
        print(f"{self._LINE_PREFIX}- /session")
        print(f"{self._LINE_PREFIX}- /session list [limit]")
        print(f"{self._LINE_PREFIX}- /session new")
        print(f"{self._LINE_PREFIX}- /session resume <conversation_id>")
        print(f"{self._LINE_PREFIX}- /checkpoint list [limit]")
        print(f"{self._LINE_PREFIX}- /usage [days]")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    async def _handle_credits_command(self) -> None:
        snapshot = self._runtime.credits.snapshot(self._user_id, self._user_plan)
        print(
            f"{self._LINE_PREFIX}Credits: {snapshot.remaining_credits}/{snapshot.max_credits} "
            f"(plan={self._user_plan or 'free'}, congestion={snapshot.congestion})"
        )
        if snapshot.window_hours:
            print(f"{self._LINE_PREFIX}Window: {snapshot.window_hours}h")
        if snapshot.reset_at is not None:
            print(f"{self._LINE_PREFIX}Resets at: {to_iso(snapshot.reset_at)}")
        entry = get_model_for_mode(ModelMode(self._mode))
        messages = estimate_remaining_messages(entry, snapshot.remaining_budget_usd)
        print(
            f"{self._LINE_PREFIX}Budget: ${snapshot.remaining_budget_usd:.2f}/${snapshot.monthly_budget_usd:.2f} "
            f"(~{messages} {self._mode} messages)"
        )

    async def _handle_models_command(self) -> None:
        print(f"{self._LINE_PREFIX}Models for plan {self._user_plan or 'free'}:")
        for model in models_for_client(self._user_plan):
            marker = "*" if model["mode"] == self._mode else " "
            print(
                f"{self._LINE_PREFIX}{marker} {model['mode']:<9} {model['label']} "
                f"(cost={model['expense_tier']}, x{model['quota_multiplier']}, "
                f"~{model['credits_per_message']} credits/message)"
            )

    async def _handle_mode_command(self, command: str) -> None:
        parts = command.split()
        if len(parts) != 2:
            print(f"{self._LINE_PREFIX}Usage: /mode <essential|balanced|premium> (current: {self._mode})")
            return
        try:
            mode = ModelMode(parts[1].lower())
        except ValueError:
            print(f"{self._LINE_PREFIX}Unknown mode: {parts[1]}")
            return
        if not is_model_accessible(mode, self._user_plan):
            print(f"{self._LINE_PREFIX}Mode {mode.value} is not available on plan {self._user_plan or 'free'}")
            return
        self._mode = mode.value
        print(f"{self._LINE_PREFIX}Mode set to {mode.value}")

    async def _handle_session_command(self, command: str) -> None:
        sessions = self._runtime.sessions
        parts = command.split()

        if len(parts) == 1:
            session = sessions.find_active(self._user_id, self._conversation_id) if self._conversation_id else None
            if session is None:
                print(f"{self._LINE_PREFIX}Current session: none (conversation={self._conversation_id or 'auto'})")
                return
            print(
                f"{self._LINE_PREFIX}Current session: {session.conversation_id} "
                f"state={session.state.state.value} intent={session.state.intent.value} (id={session.id})"
            )
            return

        if parts[1] == "list":
            limit = 20
            if len(parts) >= 3:
                try:
                    limit = int(parts[2])
                except ValueError:
                    print(f"{self._LINE_PREFIX}Usage: /session list [limit]")
                    return
            listed = sessions.list_sessions(self._user_id, limit=limit)
            if not listed:
                print(f"{self._LINE_PREFIX}No sessions found.")
                return
            print(f"{self._LINE_PREFIX}Recent sessions:")
            for s in listed:
                marker = "*" if s.conversation_id == self._conversation_id else "-"
                print(
                    f"{self._LINE_PREFIX}{marker} {s.conversation_id} "
                    f"{s.state.state.value} last_activity={s.last_activity_at}"
                )
            return

        if parts[1] == "new" and len(parts) == 2:
            self._conversation_id = create_conversation_id()
            print(f"{self._LINE_PREFIX}Started new conversation: {self._conversation_id}")
            return

        if parts[1] == "resume" and len(parts) == 3:
            session = sessions.find_active(self._user_id, parts[2])
            if session is None:
                print(f"{self._LINE_PREFIX}Session not found: {parts[2]}")
                return
            self._conversation_id = session.conversation_id
            print(
                f"{self._LINE_PREFIX}Resumed {session.conversation_id} "
                f"(state={session.state.state.value}, summary={session.state.summary or '-'})"
            )
            return

        print(
            f"{self._LINE_PREFIX}Usage: /session | /session list [limit] | /session new | "
            "/session resume <conversation_id>"
        )

    async def _handle_checkpoint_command(self, command: str) -> None:
        parts = command.split()
        if len(parts) == 1 or parts[1] != "list" or len(parts) > 3:
            print(f"{self._LINE_PREFIX}Usage: /checkpoint list [limit]")
            return
        limit = 20
        if len(parts) == 3:
            try:
                limit = int(parts[2])
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /checkpoint list [limit]")
                return

        session = self._runtime.sessions.find_active(self._user_id, self._conversation_id)
        if session is None:
            print(f"{self._LINE_PREFIX}No active session.")
            return
        checkpoints = self._runtime.sessions.checkpoints.list_checkpoints(session.id, limit=limit)
        if not checkpoints:
            print(f"{self._LINE_PREFIX}No checkpoints found for current session.")
            return
        print(f"{self._LINE_PREFIX}Recent checkpoints:")
        for cp in checkpoints:
            tool = cp["payload"].get("tool", "-")
            print(f"{self._LINE_PREFIX}- {cp['id'][:8]} {cp['created_at']} {cp['state']} tool={tool}")

    async def _handle_usage_command(self, command: str) -> None:
        parts = command.split()
        days = 7
        if len(parts) == 2:
            try:
                days = max(1, int(parts[1]))
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /usage [days]")
                return
        elif len(parts) > 2:
            print(f"{self._LINE_PREFIX}Usage: /usage [days]")
            return

        since = datetime.now(UTC) - timedelta(days=days)
        summary = self._runtime.telemetry.summarize_user(self._user_id, to_iso(since))
        print(
            f"{self._LINE_PREFIX}Last {days}d: {summary['requests']} attempts, "
            f"{summary['failed']} failed, avg {summary['avg_latency_ms']}ms, "
            f"~${summary['estimated_cost_usd']:.4f}"
        )
        for provider, count in sorted(summary["by_provider"].items()):
            print(f"{self._LINE_PREFIX}- {provider}: {count}")

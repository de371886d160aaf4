from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from loguru import logger

from campaign_assistant.errors import ConcurrentUpdateError, PersistenceError
from campaign_assistant.storage.checkpoints import CheckpointManager
from campaign_assistant.storage.events import EventEmitter, to_iso
from campaign_assistant.storage.store import CampaignStore
from campaign_assistant.workflow_machine import create_initial_state, hydrate
from campaign_assistant.workflow_types import WorkflowMachineState

DEFAULT_RESUME_DAYS = 30


def create_conversation_id() -> str:
    return f"conv-{uuid4().hex[:12]}"


@dataclass(frozen=True)
class WorkflowSession:
    id: str
    user_id: str
    conversation_id: str
    state: WorkflowMachineState
    version: int
    created_at: str
    last_activity_at: str
    expires_at: str
    resumed: bool


class WorkflowSessionRepository:
    def __init__(
        self,
        store: CampaignStore,
        events: EventEmitter,
        checkpoints: CheckpointManager,
        *,
        resume_days: int = DEFAULT_RESUME_DAYS,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._events = events
        self._checkpoints = checkpoints
        self._resume_days = resume_days if resume_days > 0 else DEFAULT_RESUME_DAYS
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def checkpoints(self) -> CheckpointManager:
        return self._checkpoints

    def transaction(self):
        """Group a persist with other writes on the same store into one commit."""
        return self._store.transaction()

    def get_session(self, session_id: str) -> WorkflowSession | None:
        row = self._store.execute(
            "SELECT * FROM workflow_sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return self._to_session(row, resumed=True)

    def find_active(self, user_id: str, conversation_id: str | None = None) -> WorkflowSession | None:
        """Most recently updated live session of the user, optionally for one conversation."""
        query = """
            SELECT *
            FROM workflow_sessions
            WHERE user_id = ? AND archived_at IS NULL AND expires_at > ?
        """
        params: tuple = (user_id, to_iso(self._clock()))
        if conversation_id:
            query += " AND conversation_id = ?"
            params += (conversation_id,)
        query += " ORDER BY updated_at DESC, rowid DESC LIMIT 1"
        row = self._store.execute(query, params).fetchone()
        if row is None:
            return None
        return self._to_session(row, resumed=True)

    def load_or_create(self, user_id: str, conversation_id: str | None = None) -> WorkflowSession:
        existing = self.find_active(user_id, conversation_id)
        if existing is not None:
            self._events.emit(
                existing.id,
                "session.resumed",
                {"session_id": existing.id, "conversation_id": existing.conversation_id},
            )
            return existing
        return self.create_session(user_id, conversation_id)

    def create_session(self, user_id: str, conversation_id: str | None = None) -> WorkflowSession:
        session_id = str(uuid4())
        conversation_id = conversation_id or create_conversation_id()
        now = self._clock()
        now_iso = to_iso(now)
        initial = create_initial_state()
        try:
            with self._store.transaction():
                self._store.execute(
                    """
                    INSERT INTO workflow_sessions (
                        id, user_id, conversation_id, state, intent, selected_template_id,
                        recipient_stats_json, summary, context_json, version,
                        created_at, updated_at, last_activity_at, expires_at
                    )
                    VALUES (?, ?, ?, ?, ?, NULL, NULL, NULL, ?, 0, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        user_id,
                        conversation_id,
                        initial.state.value,
                        initial.intent.value,
                        json.dumps(initial.context, ensure_ascii=True),
                        now_iso,
                        now_iso,
                        now_iso,
                        self._expiry_from(now),
                    ),
                )
                self._events.emit(
                    session_id,
                    "session.started",
                    {"session_id": session_id, "conversation_id": conversation_id, "user_id": user_id},
                )
                self._checkpoints.create_checkpoint(
                    session_id,
                    initial.state.value,
                    {"created_at": now_iso, "context": initial.context},
                )
        except sqlite3.Error as ex:
            logger.error(f"Failed to create workflow session for user {user_id}: {ex}")
            raise PersistenceError(f"Could not create workflow session: {ex}") from ex

        logger.info(f"Created workflow session {session_id} (conversation={conversation_id})")
        created = self.get_session(session_id)
        if created is None:
            raise PersistenceError(f"Workflow session vanished after create: {session_id}")
        return replace(created, resumed=False)

    def persist(
        self,
        session_id: str,
        state: WorkflowMachineState,
        *,
        expected_version: int | None = None,
        checkpoint_payload: dict | None = None,
    ) -> WorkflowSession:
        """Write the new state and its checkpoint atomically; bumps ``version``."""
        now = self._clock()
        now_iso = to_iso(now)
        recipient_stats_json = (
            json.dumps(state.recipient_stats.to_dict(), ensure_ascii=True) if state.recipient_stats else None
        )
        try:
            with self._store.transaction():
                row = self._store.execute(
                    "SELECT version FROM workflow_sessions WHERE id = ? LIMIT 1",
                    (session_id,),
                ).fetchone()
                if row is None:
                    raise PersistenceError(f"Workflow session does not exist: {session_id}")
                current_version = int(row["version"])
                if expected_version is not None and current_version != expected_version:
                    raise ConcurrentUpdateError(
                        f"Workflow session {session_id} changed concurrently "
                        f"(expected version {expected_version}, found {current_version})"
                    )

                self._store.execute(
                    """
                    UPDATE workflow_sessions
                    SET state = ?, intent = ?, selected_template_id = ?, recipient_stats_json = ?,
                        summary = ?, context_json = ?, version = version + 1,
                        updated_at = ?, last_activity_at = ?, expires_at = ?
                    WHERE id = ? AND version = ?
                    """,
                    (
                        state.state.value,
                        state.intent.value,
                        state.selected_template_id,
                        recipient_stats_json,
                        state.summary,
                        json.dumps(state.context, ensure_ascii=True),
                        now_iso,
                        now_iso,
                        self._expiry_from(now),
                        session_id,
                        current_version,
                    ),
                )
                payload = {
                    "summary": state.summary,
                    "context": state.context,
                    "recipient_stats": state.recipient_stats.to_dict() if state.recipient_stats else None,
                    "selected_template_id": state.selected_template_id,
                    **(checkpoint_payload or {}),
                }
                self._checkpoints.create_checkpoint(session_id, state.state.value, payload)
        except sqlite3.Error as ex:
            logger.error(f"Failed to persist workflow session {session_id}: {ex}")
            raise PersistenceError(f"Could not persist workflow session {session_id}: {ex}") from ex

        persisted = self.get_session(session_id)
        if persisted is None:
            raise PersistenceError(f"Workflow session vanished after update: {session_id}")
        return persisted

    def list_sessions(self, user_id: str, *, limit: int = 25) -> list[WorkflowSession]:
        rows = self._store.execute(
            """
            SELECT *
            FROM workflow_sessions
            WHERE user_id = ? AND archived_at IS NULL AND expires_at > ?
            ORDER BY last_activity_at DESC, rowid DESC
            LIMIT ?
            """,
            (user_id, to_iso(self._clock()), min(max(limit, 1), 100)),
        ).fetchall()
        return [self._to_session(row, resumed=True) for row in rows]

    def get_latest(self, user_id: str) -> tuple[WorkflowSession, dict | None] | None:
        latest = self.find_active(user_id)
        if latest is None:
            return None
        return latest, self._checkpoints.latest_checkpoint(latest.id)

    def _expiry_from(self, now: datetime) -> str:
        return to_iso(now + timedelta(days=self._resume_days))

    def _to_session(self, row, *, resumed: bool) -> WorkflowSession:
        return WorkflowSession(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            state=hydrate(
                {
                    "state": row["state"],
                    "intent": row["intent"],
                    "selected_template_id": row["selected_template_id"],
                    "recipient_stats": self._parse_json(row["recipient_stats_json"]),
                    "summary": row["summary"],
                    "context": self._parse_json(row["context_json"]),
                }
            ),
            version=int(row["version"]),
            created_at=row["created_at"],
            last_activity_at=row["last_activity_at"],
            expires_at=row["expires_at"],
            resumed=resumed,
        )

    def _parse_json(self, raw: str | None) -> object:
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

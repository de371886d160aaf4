from __future__ import annotations

import json
from uuid import uuid4

from campaign_assistant.storage.events import EventEmitter, utc_now
from campaign_assistant.storage.store import CampaignStore


class CheckpointManager:
    """Append-only audit trail of committed workflow turns."""

    def __init__(self, store: CampaignStore, events: EventEmitter):
        self._store = store
        self._events = events

    def create_checkpoint(self, session_id: str, state: str, payload: dict) -> str:
        checkpoint_id = str(uuid4())
        self._store.execute(
            """
            INSERT INTO workflow_checkpoints (id, session_id, state, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (checkpoint_id, session_id, state, json.dumps(payload, ensure_ascii=True, default=str), utc_now()),
        )
        self._store.commit()
        self._events.emit(
            session_id,
            "checkpoint.created",
            {"session_id": session_id, "checkpoint_id": checkpoint_id, "state": state},
        )
        return checkpoint_id

    def list_checkpoints(self, session_id: str, *, limit: int = 20) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT id, session_id, state, payload_json, created_at
            FROM workflow_checkpoints
            WHERE session_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (session_id, max(1, limit)),
        ).fetchall()
        return [self._to_dict(row) for row in rows]

    def latest_checkpoint(self, session_id: str) -> dict | None:
        checkpoints = self.list_checkpoints(session_id, limit=1)
        return checkpoints[0] if checkpoints else None

    def count_checkpoints(self, session_id: str) -> int:
        row = self._store.execute(
            "SELECT COUNT(*) AS c FROM workflow_checkpoints WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return int(row["c"]) if row is not None else 0

    def _to_dict(self, row) -> dict:
        try:
            payload = json.loads(row["payload_json"])
        except (TypeError, ValueError):
            payload = {}
        return {
            "id": row["id"],
            "session_id": row["session_id"],
            "state": row["state"],
            "payload": payload if isinstance(payload, dict) else {},
            "created_at": row["created_at"],
        }

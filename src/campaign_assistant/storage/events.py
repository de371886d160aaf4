from __future__ import annotations

import json
from datetime import UTC, datetime
from uuid import uuid4

from campaign_assistant.storage.store import CampaignStore


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def to_iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="seconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class EventEmitter:
    def __init__(self, store: CampaignStore):
        self._store = store

    def emit(self, session_id: str, event_type: str, payload: dict) -> None:
        self._store.execute(
            """
            INSERT INTO events (id, session_id, type, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                str(uuid4()),
                session_id,
                event_type,
                json.dumps(payload, ensure_ascii=True),
                utc_now(),
            ),
        )
        self._store.commit()

    def list_events(self, session_id: str, *, limit: int = 50) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT id, type, payload_json, created_at
            FROM events
            WHERE session_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (session_id, max(1, limit)),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "type": row["type"],
                "payload": json.loads(row["payload_json"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

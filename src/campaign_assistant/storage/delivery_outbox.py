from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field

from loguru import logger

from campaign_assistant.errors import PersistenceError
from campaign_assistant.storage.events import EventEmitter, utc_now
from campaign_assistant.storage.store import CampaignStore


@dataclass(frozen=True)
class CampaignHandoff:
    campaign_id: str
    session_id: str
    user_id: str
    conversation_id: str
    template_id: str | None
    recipient_stats: dict | None
    smtp_source: str = "platform"
    scheduled_at: str | None = None
    created_at: str = field(default_factory=utc_now)


class DeliveryOutbox:
    """Hand-off point to the external delivery worker; this side only enqueues."""

    def __init__(self, store: CampaignStore, events: EventEmitter):
        self._store = store
        self._events = events

    def enqueue(self, handoff: CampaignHandoff) -> None:
        try:
            with self._store.transaction():
                self._store.execute(
                    """
                    INSERT INTO delivery_outbox (
                        campaign_id, session_id, user_id, conversation_id, template_id,
                        recipient_stats_json, smtp_source, scheduled_at, status, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                    """,
                    (
                        handoff.campaign_id,
                        handoff.session_id,
                        handoff.user_id,
                        handoff.conversation_id,
                        handoff.template_id,
                        json.dumps(handoff.recipient_stats, ensure_ascii=True) if handoff.recipient_stats else None,
                        handoff.smtp_source,
                        handoff.scheduled_at,
                        handoff.created_at,
                    ),
                )
                self._events.emit(
                    handoff.session_id,
                    "campaign.handoff",
                    {"campaign_id": handoff.campaign_id, "smtp_source": handoff.smtp_source},
                )
        except sqlite3.Error as ex:
            logger.error(f"Failed to enqueue campaign {handoff.campaign_id}: {ex}")
            raise PersistenceError(f"Could not hand off campaign {handoff.campaign_id}: {ex}") from ex

    def pending(self, *, limit: int = 50) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT *
            FROM delivery_outbox
            WHERE status = 'pending'
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        results: list[dict] = []
        for row in rows:
            item = dict(row)
            raw_stats = item.pop("recipient_stats_json", None)
            item["recipient_stats"] = json.loads(raw_stats) if raw_stats else None
            results.append(item)
        return results

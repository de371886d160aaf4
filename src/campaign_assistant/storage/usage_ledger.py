from __future__ import annotations

from campaign_assistant.storage.events import utc_now
from campaign_assistant.storage.store import CampaignStore


class UsageLedger:
    """Per-user request counters keyed by metering bucket (credit window or month)."""

    def __init__(self, store: CampaignStore):
        self._store = store

    def get_requests(self, bucket_key: str, user_id: str) -> int:
        row = self._store.execute(
            "SELECT requests FROM usage_ledger WHERE bucket_key = ? AND user_id = ? LIMIT 1",
            (bucket_key, user_id),
        ).fetchone()
        return int(row["requests"]) if row is not None else 0

    def increment(self, bucket_key: str, user_id: str, amount: int) -> int:
        if amount <= 0:
            return self.get_requests(bucket_key, user_id)
        self._store.execute(
            """
            INSERT INTO usage_ledger (bucket_key, user_id, requests, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(bucket_key, user_id)
            DO UPDATE SET requests = requests + excluded.requests, updated_at = excluded.updated_at
            """,
            (bucket_key, user_id, amount, utc_now()),
        )
        self._store.commit()
        return self.get_requests(bucket_key, user_id)

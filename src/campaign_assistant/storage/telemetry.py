from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

from campaign_assistant.storage.events import utc_now
from campaign_assistant.storage.store import CampaignStore


@dataclass(frozen=True)
class CongestionSample:
    total_requests: int
    failed_requests: int
    avg_latency_ms: float

    @property
    def error_rate(self) -> float:
        if self.total_requests <= 0:
            return 0.0
        return self.failed_requests / self.total_requests


class TelemetryRecorder:
    def __init__(self, store: CampaignStore):
        self._store = store

    def record_attempts(
        self,
        *,
        request_id: str,
        session_id: str | None,
        user_id: str,
        moderation_action: str,
        attempts: list,
    ) -> int:
        """Write one row per generation attempt. Returns the number of rows written."""
        if not attempts:
            return 0
        now = utc_now()
        params = [
            (
                str(uuid4()),
                request_id,
                session_id,
                user_id,
                attempt.provider,
                attempt.model,
                attempt.latency_ms,
                attempt.token_in,
                attempt.token_out,
                attempt.estimated_cost_usd,
                attempt.status,
                attempt.error_code,
                moderation_action,
                now,
            )
            for attempt in attempts
        ]
        self._store.executemany(
            """
            INSERT INTO request_telemetry (
                id, request_id, session_id, user_id, provider, model, latency_ms, token_in,
                token_out, estimated_cost_usd, status, error_code, moderation_action, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        self._store.commit()
        return len(params)

    def congestion_since(self, since_iso: str) -> CongestionSample:
        row = self._store.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status != 'SUCCESS' THEN 1 ELSE 0 END), 0) AS failed,
                AVG(latency_ms) AS avg_latency
            FROM request_telemetry
            WHERE created_at >= ?
            """,
            (since_iso,),
        ).fetchone()
        return CongestionSample(
            total_requests=int(row["total"] or 0),
            failed_requests=int(row["failed"] or 0),
            avg_latency_ms=float(row["avg_latency"] or 0.0),
        )

    def list_for_request(self, request_id: str) -> list[dict]:
        rows = self._store.execute(
            "SELECT * FROM request_telemetry WHERE request_id = ? ORDER BY rowid ASC",
            (request_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def summarize_user(self, user_id: str, since_iso: str) -> dict:
        rows = self._store.execute(
            """
            SELECT provider, status, latency_ms, estimated_cost_usd
            FROM request_telemetry
            WHERE user_id = ? AND created_at >= ?
            ORDER BY created_at DESC
            LIMIT 500
            """,
            (user_id, since_iso),
        ).fetchall()

        requests = len(rows)
        success = sum(1 for row in rows if row["status"] == "SUCCESS")
        latency_total = sum(int(row["latency_ms"] or 0) for row in rows)
        cost_total = sum(float(row["estimated_cost_usd"] or 0.0) for row in rows)
        by_provider: dict[str, int] = {}
        for row in rows:
            by_provider[row["provider"]] = by_provider.get(row["provider"], 0) + 1

        return {
            "requests": requests,
            "success": success,
            "failed": requests - success,
            "avg_latency_ms": round(latency_total / requests) if requests else 0,
            "estimated_cost_usd": round(cost_total, 6),
            "by_provider": by_provider,
        }

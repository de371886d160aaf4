from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class CampaignStore:
    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._transaction_depth = 0
        self._initialize_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        # Inside transaction() the outermost block owns the commit.
        if self._transaction_depth == 0:
            self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[CampaignStore]:
        self._transaction_depth += 1
        try:
            yield self
        except BaseException:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self._conn.rollback()
            raise
        else:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflow_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                state TEXT NOT NULL,
                intent TEXT NOT NULL,
                selected_template_id TEXT NULL,
                recipient_stats_json TEXT NULL,
                summary TEXT NULL,
                context_json TEXT NOT NULL DEFAULT '{}',
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_activity_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                archived_at TEXT NULL
            );

            CREATE TABLE IF NOT EXISTS workflow_checkpoints (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES workflow_sessions(id) ON DELETE CASCADE,
                state TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES workflow_sessions(id) ON DELETE CASCADE,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_ledger (
                bucket_key TEXT NOT NULL,
                user_id TEXT NOT NULL,
                requests INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (bucket_key, user_id)
            );

            CREATE TABLE IF NOT EXISTS request_telemetry (
                id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                session_id TEXT NULL,
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                model TEXT NOT NULL,
                latency_ms INTEGER NULL,
                token_in INTEGER NULL,
                token_out INTEGER NULL,
                estimated_cost_usd REAL NULL,
                status TEXT NOT NULL CHECK (status IN ('SUCCESS', 'ERROR')),
                error_code TEXT NULL,
                moderation_action TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS delivery_outbox (
                campaign_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES workflow_sessions(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                template_id TEXT NULL,
                recipient_stats_json TEXT NULL,
                smtp_source TEXT NOT NULL,
                scheduled_at TEXT NULL,
                status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'dispatched')),
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_workflow_sessions_user_activity
                ON workflow_sessions(user_id, last_activity_at);
            CREATE INDEX IF NOT EXISTS idx_workflow_sessions_user_conversation
                ON workflow_sessions(user_id, conversation_id);
            CREATE INDEX IF NOT EXISTS idx_workflow_checkpoints_session_created
                ON workflow_checkpoints(session_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_events_session_created
                ON events(session_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_request_telemetry_created
                ON request_telemetry(created_at);
            CREATE INDEX IF NOT EXISTS idx_request_telemetry_user_created
                ON request_telemetry(user_id, created_at);
            """
        )
        self._conn.commit()

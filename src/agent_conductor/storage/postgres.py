"""PostgreSQL-backed task ledger with automatic table migration."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from agent_conductor.storage.base import (
    TaskLedgerError,
    check_attempt_finish,
    check_attempt_start,
    check_task_finish,
)
from agent_conductor.storage.models import AttemptOutcome, AttemptRecord, TaskRecord


class PostgresTaskStore:
    """Persist tasks and their provider attempts in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENT_CONDUCTOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_tasks (
                    request_id TEXT PRIMARY KEY,
                    prompt TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TIMESTAMPTZ NOT NULL,
                    finished_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_tasks_started_at
                ON agent_tasks(started_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_task_attempts (
                    request_id TEXT NOT NULL
                        REFERENCES agent_tasks(request_id) ON DELETE CASCADE,
                    attempt INTEGER NOT NULL,
                    provider TEXT NOT NULL,
                    status TEXT NOT NULL,
                    error TEXT,
                    started_at TIMESTAMPTZ NOT NULL,
                    finished_at TIMESTAMPTZ,
                    PRIMARY KEY (request_id, attempt)
                )
                """)
            conn.commit()

    def start_task(self, request_id: str, prompt: str) -> TaskRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO agent_tasks (request_id, prompt, status, started_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (request_id) DO NOTHING
                RETURNING request_id
                """,
                (request_id, prompt, "running", now),
            ).fetchone()
            conn.commit()
        if row is None:
            raise TaskLedgerError(f"Task {request_id} already exists")
        return self._require(request_id)

    def start_attempt(self, request_id: str, attempt_number: int, provider: str) -> TaskRecord:
        with self._lock, self._connect() as conn:
            check_attempt_start(self._read_task(conn, request_id), request_id, attempt_number)
            conn.execute(
                """
                INSERT INTO agent_task_attempts (
                    request_id, attempt, provider, status, started_at
                ) VALUES (%s, %s, %s, %s, %s)
                """,
                (request_id, attempt_number, provider, "running", datetime.now(tz=UTC)),
            )
            conn.commit()
        return self._require(request_id)

    def finish_attempt(
        self,
        request_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
        error: str | None = None,
    ) -> TaskRecord:
        with self._lock, self._connect() as conn:
            task = self._read_task(conn, request_id)
            check_attempt_finish(task, request_id, attempt_number, outcome, error)
            conn.execute(
                """
                UPDATE agent_task_attempts
                SET status = %s,
                    error = %s,
                    finished_at = %s
                WHERE request_id = %s AND attempt = %s
                """,
                (
                    outcome,
                    error if outcome == "error" else None,
                    datetime.now(tz=UTC),
                    request_id,
                    attempt_number,
                ),
            )
            conn.commit()
        return self._require(request_id)

    def finish_task(self, request_id: str, outcome: AttemptOutcome) -> TaskRecord:
        with self._lock, self._connect() as conn:
            check_task_finish(self._read_task(conn, request_id), request_id)
            conn.execute(
                """
                UPDATE agent_tasks
                SET status = %s,
                    finished_at = %s
                WHERE request_id = %s
                """,
                (outcome, datetime.now(tz=UTC), request_id),
            )
            conn.commit()
        return self._require(request_id)

    def get_task(self, request_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            return self._read_task(conn, request_id)

    def list_tasks(self, limit: int = 50) -> list[TaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT request_id
                FROM agent_tasks
                ORDER BY started_at DESC
                LIMIT %s
                """,
                (max(0, limit),),
            ).fetchall()
            tasks = [self._read_task(conn, str(row["request_id"])) for row in rows]
        return [task for task in tasks if task is not None]

    def prune(self, max_tasks: int) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM agent_tasks").fetchone()
            excess = int(row["total"]) - max(0, max_tasks) if row else 0
            if excess <= 0:
                return 0
            deleted = conn.execute(
                """
                DELETE FROM agent_tasks
                WHERE request_id IN (
                    SELECT request_id
                    FROM agent_tasks
                    WHERE status <> 'running'
                    ORDER BY started_at ASC
                    LIMIT %s
                )
                """,
                (excess,),
            )
            conn.commit()
        return int(deleted.rowcount or 0)

    def _require(self, request_id: str) -> TaskRecord:
        task = self.get_task(request_id)
        if task is None:
            raise TaskLedgerError(f"Task {request_id} does not exist")
        return task

    def _read_task(self, conn: Any, request_id: str) -> TaskRecord | None:
        row = conn.execute(
            "SELECT * FROM agent_tasks WHERE request_id = %s",
            (request_id,),
        ).fetchone()
        if row is None:
            return None
        attempt_rows = conn.execute(
            """
            SELECT *
            FROM agent_task_attempts
            WHERE request_id = %s
            ORDER BY attempt ASC
            """,
            (request_id,),
        ).fetchall()
        return self._row_to_task(row, attempt_rows)

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "agent-conductor[postgres]"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime | None:
        if raw is None:
            return None
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any, attempt_rows: list[Any]) -> TaskRecord:
        return TaskRecord(
            request_id=str(row["request_id"]),
            prompt=row["prompt"],
            status=row["status"],
            started_at=cls._parse_datetime(row["started_at"]),
            finished_at=cls._parse_datetime(row.get("finished_at")),
            attempts=[
                AttemptRecord(
                    attempt=int(item["attempt"]),
                    provider=str(item["provider"]),
                    status=item["status"],
                    error=item.get("error"),
                    started_at=cls._parse_datetime(item["started_at"]),
                    finished_at=cls._parse_datetime(item.get("finished_at")),
                )
                for item in attempt_rows
            ],
        )

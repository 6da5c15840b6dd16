"""In-memory task ledger, the default process-wide backend."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from agent_conductor.storage.base import (
    TaskLedgerError,
    check_attempt_finish,
    check_attempt_start,
    check_task_finish,
)
from agent_conductor.storage.models import AttemptOutcome, AttemptRecord, TaskRecord


class InMemoryTaskStore:
    """Keep task and attempt records for the lifetime of the process."""

    def __init__(self, *, max_tasks: int | None = None) -> None:
        self._tasks: dict[str, TaskRecord] = {}
        self._lock = threading.Lock()
        self._max_tasks = max_tasks

    def migrate(self) -> None:
        return None

    def start_task(self, request_id: str, prompt: str) -> TaskRecord:
        with self._lock:
            if request_id in self._tasks:
                raise TaskLedgerError(f"Task {request_id} already exists")
            record = TaskRecord(
                request_id=request_id,
                prompt=prompt,
                started_at=datetime.now(UTC),
            )
            self._tasks[request_id] = record
        return record.model_copy(deep=True)

    def start_attempt(self, request_id: str, attempt_number: int, provider: str) -> TaskRecord:
        with self._lock:
            current = check_attempt_start(self._tasks.get(request_id), request_id, attempt_number)
            attempt = AttemptRecord(
                attempt=attempt_number,
                provider=provider,
                started_at=datetime.now(UTC),
            )
            updated = current.model_copy(update={"attempts": [*current.attempts, attempt]})
            self._tasks[request_id] = updated
        return updated.model_copy(deep=True)

    def finish_attempt(
        self,
        request_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
        error: str | None = None,
    ) -> TaskRecord:
        with self._lock:
            current = self._tasks.get(request_id)
            index = check_attempt_finish(current, request_id, attempt_number, outcome, error)
            attempts = list(current.attempts)
            attempts[index] = attempts[index].model_copy(
                update={
                    "status": outcome,
                    "error": error if outcome == "error" else None,
                    "finished_at": datetime.now(UTC),
                }
            )
            updated = current.model_copy(update={"attempts": attempts})
            self._tasks[request_id] = updated
        return updated.model_copy(deep=True)

    def finish_task(self, request_id: str, outcome: AttemptOutcome) -> TaskRecord:
        with self._lock:
            current = check_task_finish(self._tasks.get(request_id), request_id)
            updated = current.model_copy(
                update={"status": outcome, "finished_at": datetime.now(UTC)}
            )
            self._tasks[request_id] = updated
        if self._max_tasks is not None:
            self.prune(self._max_tasks)
        return updated.model_copy(deep=True)

    def get_task(self, request_id: str) -> TaskRecord | None:
        with self._lock:
            task = self._tasks.get(request_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks(self, limit: int = 50) -> list[TaskRecord]:
        with self._lock:
            ordered = sorted(self._tasks.values(), key=lambda t: t.started_at, reverse=True)
        return [task.model_copy(deep=True) for task in ordered[: max(0, limit)]]

    def prune(self, max_tasks: int) -> int:
        """Drop the oldest finished tasks beyond ``max_tasks``; running tasks stay."""
        with self._lock:
            finished = sorted(
                (t for t in self._tasks.values() if t.status != "running"),
                key=lambda t: t.started_at,
            )
            excess = len(self._tasks) - max(0, max_tasks)
            removed = 0
            for task in finished:
                if removed >= excess:
                    break
                del self._tasks[task.request_id]
                removed += 1
        return removed

"""Storage interface for the agent task ledger."""

from __future__ import annotations

from typing import Protocol

from agent_conductor.storage.models import AttemptOutcome, TaskRecord


class TaskLedgerError(RuntimeError):
    """Raised when a ledger write violates the task/attempt lifecycle."""


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def start_task(self, request_id: str, prompt: str) -> TaskRecord: ...

    def start_attempt(self, request_id: str, attempt_number: int, provider: str) -> TaskRecord: ...

    def finish_attempt(
        self,
        request_id: str,
        attempt_number: int,
        outcome: AttemptOutcome,
        error: str | None = None,
    ) -> TaskRecord: ...

    def finish_task(self, request_id: str, outcome: AttemptOutcome) -> TaskRecord: ...

    def get_task(self, request_id: str) -> TaskRecord | None: ...

    def list_tasks(self, limit: int = 50) -> list[TaskRecord]: ...

    def prune(self, max_tasks: int) -> int: ...


def check_attempt_start(task: TaskRecord | None, request_id: str, attempt_number: int) -> TaskRecord:
    if task is None:
        raise TaskLedgerError(f"Task {request_id} does not exist")
    if task.status != "running":
        raise TaskLedgerError(f"Task {request_id} already finished as {task.status}")
    if task.active_attempt is not None:
        raise TaskLedgerError(
            f"Task {request_id} still has attempt {task.active_attempt.attempt} running"
        )
    expected = len(task.attempts) + 1
    if attempt_number != expected:
        raise TaskLedgerError(
            f"Task {request_id} expected attempt {expected}, got {attempt_number}"
        )
    return task


def check_attempt_finish(
    task: TaskRecord | None,
    request_id: str,
    attempt_number: int,
    outcome: AttemptOutcome,
    error: str | None,
) -> int:
    """Return the index of the attempt being closed."""
    if task is None:
        raise TaskLedgerError(f"Task {request_id} does not exist")
    if outcome == "error" and not error:
        raise TaskLedgerError("An errored attempt must carry an error message")
    for index in range(len(task.attempts) - 1, -1, -1):
        if task.attempts[index].attempt != attempt_number:
            continue
        if task.attempts[index].status != "running":
            raise TaskLedgerError(
                f"Attempt {attempt_number} of task {request_id} already finished"
            )
        return index
    raise TaskLedgerError(f"Attempt {attempt_number} of task {request_id} does not exist")


def check_task_finish(task: TaskRecord | None, request_id: str) -> TaskRecord:
    if task is None:
        raise TaskLedgerError(f"Task {request_id} does not exist")
    if task.status != "running":
        raise TaskLedgerError(f"Task {request_id} already finished as {task.status}")
    if task.active_attempt is not None:
        raise TaskLedgerError(
            f"Task {request_id} cannot finish while attempt {task.active_attempt.attempt} is running"
        )
    return task

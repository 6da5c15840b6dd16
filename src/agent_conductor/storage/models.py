"""Ledger records shared by the orchestrator, API and task store backends."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TaskStatus = Literal["running", "done", "cancelled", "error"]
AttemptOutcome = Literal["done", "cancelled", "error"]


class AttemptRecord(BaseModel):
    """One provider-bound execution of the agent loop inside a task."""

    attempt: int = Field(ge=1)
    provider: str
    status: TaskStatus = "running"
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class TaskRecord(BaseModel):
    """One user-initiated agent run keyed by its request id."""

    request_id: str
    prompt: str
    status: TaskStatus = "running"
    attempts: list[AttemptRecord] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def active_attempt(self) -> AttemptRecord | None:
        for attempt in reversed(self.attempts):
            if attempt.status == "running":
                return attempt
        return None

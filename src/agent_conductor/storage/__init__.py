"""Task ledger backends and records."""

from agent_conductor.config.settings import Settings
from agent_conductor.storage.base import TaskLedgerError, TaskStore
from agent_conductor.storage.memory import InMemoryTaskStore
from agent_conductor.storage.models import AttemptRecord, TaskRecord
from agent_conductor.storage.postgres import PostgresTaskStore


def create_task_store(settings: Settings) -> TaskStore:
    """Pick PostgreSQL when a database URL is configured, memory otherwise."""
    if settings.database_url:
        store: TaskStore = PostgresTaskStore(settings.database_url)
    else:
        store = InMemoryTaskStore(max_tasks=settings.task_retention)
    store.migrate()
    return store


__all__ = [
    "AttemptRecord",
    "InMemoryTaskStore",
    "PostgresTaskStore",
    "TaskLedgerError",
    "TaskRecord",
    "TaskStore",
    "create_task_store",
]

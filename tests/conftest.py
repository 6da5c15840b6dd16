from __future__ import annotations

import pytest

from agent_conductor.config.models import AgentSettings
from agent_conductor.protocol.events import AgentEvent
from agent_conductor.storage.memory import InMemoryTaskStore


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def agent_settings() -> AgentSettings:
    return AgentSettings(recover_delay_s=0.0)


@pytest.fixture
def events() -> list[AgentEvent]:
    return []

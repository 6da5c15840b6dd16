"""Contract between the orchestrator and one provider-bound attempt of the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Protocol

from pydantic import BaseModel, model_validator

from agent_conductor.config.models import AgentSettings, AIConfig
from agent_conductor.protocol.events import AgentEvent, HistoryMessage
from agent_conductor.runtime.cancellation import CancellationSignal

EventSink = Callable[[AgentEvent], None]
ConfirmationWaiter = Callable[[str], Awaitable[bool]]


class AttemptOutcome(BaseModel):
    """Terminal result of one attempt. ``error`` is present iff status is error."""

    status: Literal["done", "cancelled", "error"]
    error: str | None = None
    steps: int = 0

    @model_validator(mode="after")
    def _error_matches_status(self) -> AttemptOutcome:
        if self.status == "error" and not self.error:
            raise ValueError("error outcome requires an error message")
        if self.status != "error" and self.error is not None:
            raise ValueError(f"{self.status} outcome must not carry an error")
        return self

    @classmethod
    def done(cls, steps: int = 0) -> AttemptOutcome:
        return cls(status="done", steps=steps)

    @classmethod
    def cancelled(cls, steps: int = 0) -> AttemptOutcome:
        return cls(status="cancelled", steps=steps)

    @classmethod
    def failed(cls, error: str, steps: int = 0) -> AttemptOutcome:
        return cls(status="error", error=error, steps=steps)


@dataclass
class AttemptRequest:
    request_id: str
    prompt: str
    ai_config: AIConfig
    agent_settings: AgentSettings
    signal: CancellationSignal
    emit: EventSink
    wait_for_confirmation: ConfirmationWaiter
    history: list[HistoryMessage] = field(default_factory=list)
    last_resort: bool = True


class AttemptRunner(Protocol):
    """Runs the tool-calling loop once against ``request.ai_config.provider``.

    Implementations emit events only for ``request.request_id``, check
    ``request.signal`` at every suspension point and return ``cancelled``
    promptly once it is set. A terminal ``error`` event is emitted only when
    ``request.last_resort`` is true; otherwise the orchestrator reports it.
    """

    async def run(self, request: AttemptRequest) -> AttemptOutcome: ...

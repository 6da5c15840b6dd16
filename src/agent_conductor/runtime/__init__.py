"""Agent runtime: orchestration, cancellation, confirmations and event delivery."""

from agent_conductor.runtime.agent_loop import ToolCallingRunner
from agent_conductor.runtime.attempt import (
    AttemptOutcome,
    AttemptRequest,
    AttemptRunner,
    ConfirmationWaiter,
    EventSink,
)
from agent_conductor.runtime.bus import EventBus, Subscription
from agent_conductor.runtime.cancellation import CancellationSignal
from agent_conductor.runtime.confirmation import ConfirmationGate
from agent_conductor.runtime.orchestrator import NO_PROVIDER_MESSAGE, Orchestrator
from agent_conductor.runtime.providers import PROVIDERS, ProviderSpec, provider_plan
from agent_conductor.runtime.service import AgentRuntime, RunAlreadyActiveError

__all__ = [
    "AgentRuntime",
    "AttemptOutcome",
    "AttemptRequest",
    "AttemptRunner",
    "CancellationSignal",
    "ConfirmationGate",
    "ConfirmationWaiter",
    "EventBus",
    "EventSink",
    "NO_PROVIDER_MESSAGE",
    "Orchestrator",
    "PROVIDERS",
    "ProviderSpec",
    "RunAlreadyActiveError",
    "Subscription",
    "ToolCallingRunner",
    "provider_plan",
]

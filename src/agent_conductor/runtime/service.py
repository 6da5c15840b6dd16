"""Back-end boundary: active runs, cancellation, confirmations and event delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from agent_conductor.config.models import AgentSettings, AIConfig
from agent_conductor.config.settings import Settings
from agent_conductor.protocol.events import HistoryMessage
from agent_conductor.runtime.agent_loop import ToolCallingRunner
from agent_conductor.runtime.attempt import AttemptRunner
from agent_conductor.runtime.bus import EventBus, Subscription
from agent_conductor.runtime.cancellation import CancellationSignal
from agent_conductor.runtime.confirmation import ConfirmationGate
from agent_conductor.runtime.orchestrator import Orchestrator
from agent_conductor.runtime.providers import PROVIDERS, ProviderSpec, provider_plan
from agent_conductor.storage import create_task_store
from agent_conductor.storage.base import TaskStore
from agent_conductor.storage.models import TaskStatus
from agent_conductor.tools.registry import ToolSpec

logger = logging.getLogger(__name__)


class RunAlreadyActiveError(ValueError):
    pass


@dataclass
class ActiveRun:
    request_id: str
    signal: CancellationSignal = field(default_factory=CancellationSignal)
    task: asyncio.Task[TaskStatus | None] | None = None


class AgentRuntime:
    def __init__(
        self,
        *,
        store: TaskStore,
        runner: AttemptRunner,
        ai_config: AIConfig,
        agent_settings: AgentSettings,
        providers: tuple[ProviderSpec, ...] = PROVIDERS,
        bus: EventBus | None = None,
        gate: ConfirmationGate | None = None,
        task_retention: int | None = None,
    ) -> None:
        self.store = store
        self.ai_config = ai_config
        self.agent_settings = agent_settings
        self.providers = providers
        self.bus = bus or EventBus()
        self.gate = gate or ConfirmationGate()
        self.task_retention = task_retention
        self.orchestrator = Orchestrator(store=store, runner=runner, providers=providers)
        self._active: dict[str, ActiveRun] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry: dict[str, ToolSpec] | None = None,
        store: TaskStore | None = None,
        runner: AttemptRunner | None = None,
    ) -> AgentRuntime:
        return cls(
            store=store or create_task_store(settings),
            runner=runner or ToolCallingRunner.from_settings(settings, registry),
            ai_config=settings.ai_config(),
            agent_settings=settings.agent_settings(),
            task_retention=settings.task_retention,
        )

    def is_available(self) -> bool:
        return bool(provider_plan(self.ai_config, self.providers))

    def active_request_ids(self) -> list[str]:
        return list(self._active)

    def subscribe(self, request_id: str | None = None) -> Subscription:
        return self.bus.subscribe(request_id)

    def start_run(
        self,
        request_id: str,
        prompt: str,
        history: list[HistoryMessage] | None = None,
    ) -> asyncio.Task[TaskStatus | None]:
        """Schedule a run on the current event loop and return its task."""
        if request_id in self._active:
            raise RunAlreadyActiveError(f"Run {request_id} is already active")
        if self.store.get_task(request_id) is not None:
            # the ledger keeps one task per request id
            raise RunAlreadyActiveError(f"Run {request_id} already exists")
        run = ActiveRun(request_id=request_id)
        self._active[request_id] = run
        run.task = asyncio.create_task(self._execute(run, prompt, list(history or [])))
        return run.task

    async def run(
        self,
        request_id: str,
        prompt: str,
        history: list[HistoryMessage] | None = None,
    ) -> TaskStatus | None:
        return await self.start_run(request_id, prompt, history)

    def cancel(self, request_id: str) -> bool:
        """Request cancellation. Returns False when the run is not active."""
        run = self._active.get(request_id)
        if run is None:
            logger.info("agent_runtime event=cancel_ignored request_id=%s", request_id)
            return False
        run.signal.cancel("user")
        denied = self.gate.abort(request_id)
        logger.info("agent_runtime event=cancel request_id=%s denied_confirmations=%d", request_id, denied)
        return True

    def confirm(self, tool_call_id: str, approved: bool) -> bool:
        return self.gate.resolve(tool_call_id, approved)

    async def shutdown(self) -> None:
        runs = list(self._active.values())
        for run in runs:
            self.cancel(run.request_id)
        tasks = [run.task for run in runs if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute(self, run: ActiveRun, prompt: str, history: list[HistoryMessage]) -> TaskStatus | None:
        request_id = run.request_id

        async def _wait_for_confirmation(tool_call_id: str) -> bool:
            return await self.gate.wait(tool_call_id, request_id=request_id, signal=run.signal)

        try:
            return await self.orchestrator.run(
                request_id=request_id,
                prompt=prompt,
                ai_config=self.ai_config,
                agent_settings=self.agent_settings,
                signal=run.signal,
                emit=self.bus.publish,
                wait_for_confirmation=_wait_for_confirmation,
                history=history,
            )
        finally:
            self._active.pop(request_id, None)
            self.gate.abort(request_id)
            if self.task_retention is not None:
                pruned = await asyncio.to_thread(self.store.prune, self.task_retention)
                if pruned:
                    logger.info("agent_runtime event=pruned count=%d", pruned)

"""Provider failover for one agent task."""

from __future__ import annotations

import asyncio
import logging

from agent_conductor.config.models import AgentSettings, AIConfig
from agent_conductor.protocol.events import ErrorEvent, HistoryMessage, StatusEvent
from agent_conductor.runtime.attempt import (
    AttemptOutcome,
    AttemptRequest,
    AttemptRunner,
    ConfirmationWaiter,
    EventSink,
)
from agent_conductor.runtime.cancellation import CancellationSignal
from agent_conductor.runtime.providers import PROVIDERS, ProviderSpec, provider_plan
from agent_conductor.storage.base import TaskStore
from agent_conductor.storage.models import TaskStatus

logger = logging.getLogger(__name__)

NO_PROVIDER_MESSAGE = (
    "No usable AI provider is configured. "
    "Add at least one API key or endpoint in the AI settings."
)
ERROR_EXCERPT_CHARS = 120


class Orchestrator:
    """Run attempts against the provider plan until one succeeds, is cancelled, or all fail."""

    def __init__(
        self,
        *,
        store: TaskStore,
        runner: AttemptRunner,
        providers: tuple[ProviderSpec, ...] = PROVIDERS,
    ) -> None:
        self.store = store
        self.runner = runner
        self.providers = providers

    async def run(
        self,
        *,
        request_id: str,
        prompt: str,
        ai_config: AIConfig,
        agent_settings: AgentSettings,
        signal: CancellationSignal,
        emit: EventSink,
        wait_for_confirmation: ConfirmationWaiter,
        history: list[HistoryMessage] | None = None,
    ) -> TaskStatus | None:
        """Return the task's terminal status, or None when no task was started."""
        plan = provider_plan(ai_config, self.providers)
        if not plan:
            logger.warning("task_run event=no_provider request_id=%s", request_id)
            emit(ErrorEvent(request_id=request_id, error=NO_PROVIDER_MESSAGE))
            return None

        await asyncio.to_thread(self.store.start_task, request_id, prompt)
        logger.info(
            "task_run event=start request_id=%s providers=%s",
            request_id,
            ",".join(spec.id for spec in plan),
        )

        total = len(plan)
        last_error = "Unknown agent failure"
        for index, spec in enumerate(plan, start=1):
            if signal.cancelled:
                return await self._finish(request_id, "cancelled")

            await asyncio.to_thread(self.store.start_attempt, request_id, index, spec.id)
            emit(
                StatusEvent(
                    request_id=request_id,
                    status=f"Attempt {index}/{total} with {spec.label}...",
                    step_number=0,
                )
            )
            logger.info(
                "task_run event=attempt_start request_id=%s attempt=%d/%d provider=%s",
                request_id,
                index,
                total,
                spec.id,
            )

            request = AttemptRequest(
                request_id=request_id,
                prompt=prompt,
                ai_config=ai_config.for_provider(spec.id),
                agent_settings=agent_settings,
                signal=signal,
                emit=emit,
                wait_for_confirmation=wait_for_confirmation,
                history=list(history or []),
                last_resort=index == total,
            )
            try:
                outcome = await self._run_attempt(request)
            except asyncio.CancelledError:
                # written inline; the task is already being torn down
                self.store.finish_attempt(request_id, index, "cancelled")
                self.store.finish_task(request_id, "cancelled")
                logger.info("task_run event=finish request_id=%s status=cancelled", request_id)
                raise

            await asyncio.to_thread(self.store.finish_attempt, request_id, index, outcome.status, outcome.error)
            logger.info(
                "task_run event=attempt_finish request_id=%s attempt=%d provider=%s status=%s",
                request_id,
                index,
                spec.id,
                outcome.status,
            )

            if outcome.status == "done":
                return await self._finish(request_id, "done")
            if outcome.status == "cancelled":
                return await self._finish(request_id, "cancelled")

            last_error = outcome.error or last_error
            if index < total:
                emit(
                    StatusEvent(
                        request_id=request_id,
                        status=(
                            "Switching provider after failure: "
                            f"{last_error[:ERROR_EXCERPT_CHARS]}..."
                        ),
                        step_number=0,
                    )
                )

        await self._finish(request_id, "error")
        emit(
            ErrorEvent(
                request_id=request_id,
                error=(
                    "I tried all configured providers but couldn't complete this yet. "
                    f"{last_error}"
                ),
            )
        )
        return "error"

    async def _run_attempt(self, request: AttemptRequest) -> AttemptOutcome:
        try:
            return await self.runner.run(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "task_run event=runner_fault request_id=%s provider=%s",
                request.request_id,
                request.ai_config.provider,
            )
            return AttemptOutcome.failed(str(exc) or type(exc).__name__)

    async def _finish(self, request_id: str, status: TaskStatus) -> TaskStatus:
        await asyncio.to_thread(self.store.finish_task, request_id, status)
        logger.info("task_run event=finish request_id=%s status=%s", request_id, status)
        return status

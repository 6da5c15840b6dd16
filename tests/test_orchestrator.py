from __future__ import annotations

import asyncio
import threading

from fakes import ScriptedRunner, all_providers_config, fails_with, finishes

from agent_conductor.config.models import AIConfig
from agent_conductor.protocol.events import DoneEvent, ErrorEvent, HistoryMessage, StatusEvent
from agent_conductor.runtime.attempt import AttemptOutcome, AttemptRequest
from agent_conductor.runtime.cancellation import CancellationSignal
from agent_conductor.runtime.orchestrator import NO_PROVIDER_MESSAGE, Orchestrator
from agent_conductor.storage.memory import InMemoryTaskStore


async def _never_confirm(tool_call_id: str) -> bool:
    return False


def _run(orchestrator, *, config, agent_settings, events, signal=None, request_id="r1", history=None):
    return asyncio.run(
        orchestrator.run(
            request_id=request_id,
            prompt="tidy my downloads folder",
            ai_config=config,
            agent_settings=agent_settings,
            signal=signal or CancellationSignal(),
            emit=events.append,
            wait_for_confirmation=_never_confirm,
            history=history,
        )
    )


def test_fails_over_until_a_provider_succeeds(store, agent_settings, events) -> None:
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2", ollama_base_url="http://localhost:11434")
    runner = ScriptedRunner(
        {
            "openai": fails_with("openai overloaded"),
            "anthropic": fails_with("anthropic 500"),
            "ollama": finishes("Folder tidied."),
        }
    )

    status = _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    assert status == "done"
    task = store.get_task("r1")
    assert task.status == "done"
    assert [(a.attempt, a.provider, a.status) for a in task.attempts] == [
        (1, "openai", "error"),
        (2, "anthropic", "error"),
        (3, "ollama", "done"),
    ]
    assert task.attempts[0].error == "openai overloaded"
    assert [call.last_resort for call in runner.calls] == [False, False, True]
    assert [call.ai_config.provider for call in runner.calls] == ["openai", "anthropic", "ollama"]

    statuses = [event.status for event in events if isinstance(event, StatusEvent)]
    assert statuses == [
        "Attempt 1/3 with OpenAI...",
        "Switching provider after failure: openai overloaded...",
        "Attempt 2/3 with Anthropic...",
        "Switching provider after failure: anthropic 500...",
        "Attempt 3/3 with Ollama...",
    ]
    assert not any(isinstance(event, ErrorEvent) for event in events)
    assert isinstance(events[-1], DoneEvent)
    assert all(event.request_id == "r1" for event in events)


def test_preferred_provider_runs_first(store, agent_settings, events) -> None:
    runner = ScriptedRunner({"ollama": finishes()})

    status = _run(
        Orchestrator(store=store, runner=runner),
        config=all_providers_config(provider="ollama"),
        agent_settings=agent_settings,
        events=events,
    )

    assert status == "done"
    assert [call.ai_config.provider for call in runner.calls] == ["ollama"]
    assert events[0].status == "Attempt 1/4 with Ollama..."


def test_preferred_model_is_not_carried_to_attempts(store, agent_settings, events) -> None:
    config = AIConfig(openai_api_key="k1", default_model="gpt-4.1-mini")
    runner = ScriptedRunner({"openai": finishes()})

    _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    assert runner.calls[0].ai_config.default_model == ""


def test_exhaustion_reports_last_error(store, agent_settings, events) -> None:
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2")
    runner = ScriptedRunner({"openai": fails_with("rate limited"), "anthropic": fails_with("bad gateway")})

    status = _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    assert status == "error"
    assert store.get_task("r1").status == "error"
    errors = [event for event in events if isinstance(event, ErrorEvent)]
    assert len(errors) == 1
    assert errors[0].error == "I tried all configured providers but couldn't complete this yet. bad gateway"
    assert events[-1] is errors[0]


def test_switching_status_truncates_long_errors(store, agent_settings, events) -> None:
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2")
    long_error = "x" * 300
    runner = ScriptedRunner({"openai": fails_with(long_error), "anthropic": finishes()})

    _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    switching = [e.status for e in events if isinstance(e, StatusEvent) and e.status.startswith("Switching")]
    assert switching == [f"Switching provider after failure: {'x' * 120}..."]
    assert store.get_task("r1").attempts[0].error == long_error


def test_cancellation_before_second_attempt(store, agent_settings, events) -> None:
    signal = CancellationSignal()

    async def fail_and_cancel(request: AttemptRequest) -> AttemptOutcome:
        request.signal.cancel("user")
        return AttemptOutcome.failed("connection reset")

    runner = ScriptedRunner({"openai": fail_and_cancel, "anthropic": finishes()})
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2")

    status = _run(
        Orchestrator(store=store, runner=runner),
        config=config,
        agent_settings=agent_settings,
        events=events,
        signal=signal,
    )

    assert status == "cancelled"
    task = store.get_task("r1")
    assert task.status == "cancelled"
    assert [a.provider for a in task.attempts] == ["openai"]
    assert len(runner.calls) == 1
    assert not any(isinstance(event, ErrorEvent) for event in events)


def test_cancelled_attempt_ends_task_without_error(store, agent_settings, events) -> None:
    async def cancelled(request: AttemptRequest) -> AttemptOutcome:
        return AttemptOutcome.cancelled(steps=2)

    runner = ScriptedRunner({"openai": cancelled})

    status = _run(
        Orchestrator(store=store, runner=runner),
        config=all_providers_config(),
        agent_settings=agent_settings,
        events=events,
    )

    assert status == "cancelled"
    assert store.get_task("r1").attempts[0].status == "cancelled"
    assert len(runner.calls) == 1
    assert not any(isinstance(event, ErrorEvent) for event in events)


def test_no_configured_provider_records_nothing(store, agent_settings, events) -> None:
    runner = ScriptedRunner({})

    status = _run(Orchestrator(store=store, runner=runner), config=AIConfig(), agent_settings=agent_settings, events=events)

    assert status is None
    assert store.list_tasks() == []
    assert runner.calls == []
    assert events == [ErrorEvent(request_id="r1", error=NO_PROVIDER_MESSAGE)]


def test_runner_exception_counts_as_attempt_failure(store, agent_settings, events) -> None:
    async def explode(request: AttemptRequest) -> AttemptOutcome:
        raise RuntimeError("client crashed")

    runner = ScriptedRunner({"openai": explode, "anthropic": finishes()})
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2")

    status = _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    assert status == "done"
    attempts = store.get_task("r1").attempts
    assert (attempts[0].status, attempts[0].error) == ("error", "client crashed")
    assert attempts[1].status == "done"


def test_history_is_forwarded_to_every_attempt(store, agent_settings, events) -> None:
    history = [
        HistoryMessage(role="user", content="hi"),
        HistoryMessage(role="assistant", content="hello"),
    ]
    runner = ScriptedRunner({"openai": fails_with("boom"), "anthropic": finishes()})
    config = AIConfig(openai_api_key="k1", anthropic_api_key="k2")

    _run(
        Orchestrator(store=store, runner=runner),
        config=config,
        agent_settings=agent_settings,
        events=events,
        history=history,
    )

    assert [call.history for call in runner.calls] == [history, history]


def test_task_cancelled_from_outside_is_recorded(store, agent_settings) -> None:
    async def hang(request: AttemptRequest) -> AttemptOutcome:
        await asyncio.sleep(10)
        return AttemptOutcome.done()

    runner = ScriptedRunner({"openai": hang})
    orchestrator = Orchestrator(store=store, runner=runner)

    async def scenario() -> None:
        task = asyncio.create_task(
            orchestrator.run(
                request_id="r1",
                prompt="wait",
                ai_config=AIConfig(openai_api_key="k1"),
                agent_settings=agent_settings,
                signal=CancellationSignal(),
                emit=lambda event: None,
                wait_for_confirmation=_never_confirm,
            )
        )
        for _ in range(200):
            record = store.get_task("r1")
            if record is not None and record.attempts:
                break
            await asyncio.sleep(0.005)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())

    task = store.get_task("r1")
    assert task.status == "cancelled"
    assert task.attempts[0].status == "cancelled"


class _ThreadRecordingStore(InMemoryTaskStore):
    def __init__(self) -> None:
        super().__init__()
        self.write_threads: list[int] = []

    def start_task(self, request_id, prompt):
        self.write_threads.append(threading.get_ident())
        return super().start_task(request_id, prompt)

    def start_attempt(self, request_id, attempt_number, provider):
        self.write_threads.append(threading.get_ident())
        return super().start_attempt(request_id, attempt_number, provider)

    def finish_attempt(self, request_id, attempt_number, outcome, error=None):
        self.write_threads.append(threading.get_ident())
        return super().finish_attempt(request_id, attempt_number, outcome, error)

    def finish_task(self, request_id, outcome):
        self.write_threads.append(threading.get_ident())
        return super().finish_task(request_id, outcome)


def test_ledger_writes_run_off_the_event_loop(agent_settings, events) -> None:
    store = _ThreadRecordingStore()
    runner = ScriptedRunner({"openai": fails_with("boom"), "anthropic": finishes()})
    config = all_providers_config()

    status = _run(Orchestrator(store=store, runner=runner), config=config, agent_settings=agent_settings, events=events)

    assert status == "done"
    assert len(store.write_threads) == 6
    assert threading.get_ident() not in store.write_threads

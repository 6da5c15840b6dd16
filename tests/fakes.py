"""Test doubles shared across the suite."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from agent_conductor.config.models import AIConfig
from agent_conductor.llm.client import ChatClientError, ChatCompletion
from agent_conductor.protocol.events import DoneEvent, HistoryMessage, TextChunkEvent
from agent_conductor.runtime.attempt import AttemptOutcome, AttemptRequest

Behaviour = Callable[[AttemptRequest], Awaitable[AttemptOutcome]]


class ScriptedRunner:
    """Attempt runner that plays one scripted behaviour per provider."""

    def __init__(self, behaviours: dict[str, Behaviour]) -> None:
        self.behaviours = behaviours
        self.calls: list[AttemptRequest] = []

    async def run(self, request: AttemptRequest) -> AttemptOutcome:
        self.calls.append(request)
        return await self.behaviours[request.ai_config.provider](request)


def fails_with(message: str) -> Behaviour:
    async def _behaviour(request: AttemptRequest) -> AttemptOutcome:
        return AttemptOutcome.failed(message, steps=1)

    return _behaviour


def finishes(text: str = "All done.") -> Behaviour:
    async def _behaviour(request: AttemptRequest) -> AttemptOutcome:
        request.emit(TextChunkEvent(request_id=request.request_id, text=text))
        request.emit(DoneEvent(request_id=request.request_id))
        return AttemptOutcome.done(steps=1)

    return _behaviour


class FakeRuntimeClient:
    """Records calls the chat session makes against the runtime."""

    def __init__(self, *, available: bool = True, start_error: Exception | None = None) -> None:
        self.available = available
        self.start_error = start_error
        self.started: list[tuple[str, str, list[HistoryMessage]]] = []
        self.cancelled: list[str] = []
        self.confirmations: list[tuple[str, bool]] = []

    def is_available(self) -> bool:
        return self.available

    def start_run(self, request_id: str, prompt: str, history: list[HistoryMessage]) -> Any:
        if self.start_error is not None:
            raise self.start_error
        self.started.append((request_id, prompt, list(history)))
        return None

    def cancel(self, request_id: str) -> bool:
        self.cancelled.append(request_id)
        return True

    def confirm(self, tool_call_id: str, approved: bool) -> bool:
        self.confirmations.append((tool_call_id, approved))
        return True


class FakeChatClient:
    """Chat client returning queued completions; exceptions in the queue are raised."""

    def __init__(self, responses: list[ChatCompletion | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def complete(self, *, system_prompt: str, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> ChatCompletion:
        self.calls.append({"system_prompt": system_prompt, "messages": messages, "tools": tools})
        if not self.responses:
            raise ChatClientError("no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def all_providers_config(provider: str = "openai") -> AIConfig:
    return AIConfig(
        provider=provider,
        openai_api_key="sk-openai",
        anthropic_api_key="sk-anthropic",
        openai_compatible_api_key="sk-compatible",
        openai_compatible_base_url="http://localhost:8080/v1",
        ollama_base_url="http://localhost:11434",
    )


def sequential_ids(prefix: str = "agent") -> Callable[[], str]:
    counter = iter(range(1, 10_000))
    return lambda: f"{prefix}-{next(counter)}"

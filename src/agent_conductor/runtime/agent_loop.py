"""Reference attempt runner: a LangGraph model/tools loop over one provider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, TypedDict, TypeVar

from langgraph.graph import END, StateGraph

from agent_conductor.config.models import AgentSettings, AIConfig
from agent_conductor.config.settings import Settings
from agent_conductor.llm.client import ChatClient, build_chat_client
from agent_conductor.protocol.events import (
    Confirmation,
    ConfirmNeededEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolCallInfo,
    ToolResultEvent,
    ToolResultInfo,
)
from agent_conductor.runtime.attempt import AttemptOutcome, AttemptRequest
from agent_conductor.runtime.cancellation import CancellationSignal
from agent_conductor.tools.gateway import ToolExecutor
from agent_conductor.tools.registry import (
    ToolSpec,
    enabled_tools,
    needs_confirmation,
    tool_definitions,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientFactory = Callable[[AIConfig], ChatClient]

DEFAULT_SYSTEM_PROMPT = (
    "You are a capable desktop assistant. Use the available tools to complete the "
    "user's request, explain briefly what you are doing, and finish with a concise answer."
)
DENIED_TOOL_MESSAGE = "User denied this action. Try a different approach or ask the user for guidance."
MAX_CONSECUTIVE_FAILURES = 2
BLOCKER_EXCERPT_CHARS = 220


class LoopState(TypedDict, total=False):
    messages: list[dict[str, Any]]
    step: int
    consecutive_failures: int
    pending_calls: list[dict[str, Any]]
    failed_tools: list[dict[str, str]]
    outcome: dict[str, Any] | None


class _Interrupted(Exception):
    pass


async def _unless_cancelled(work: Awaitable[T], signal: CancellationSignal) -> T:
    """Await ``work`` but give up as soon as ``signal`` is set."""
    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not task.done():
            task.cancel()
    if signal.cancelled:
        raise _Interrupted()
    return task.result()


class ToolCallingRunner:
    """Runs the agent loop for one attempt.

    Each graph step calls the model once; tool calls are executed one at a time
    in the order the model returned them. Dangerous tools suspend on the
    confirmation waiter before running.
    """

    def __init__(
        self,
        *,
        registry: dict[str, ToolSpec] | None = None,
        client_factory: ClientFactory | None = None,
        tool_timeout_s: float = 30.0,
        tool_max_retries: int = 0,
        tool_backoff_s: float = 0.0,
    ) -> None:
        self.registry = registry if registry is not None else {}
        self.client_factory = client_factory or build_chat_client
        self.tool_timeout_s = tool_timeout_s
        self.tool_max_retries = tool_max_retries
        self.tool_backoff_s = tool_backoff_s

    @classmethod
    def from_settings(cls, settings: Settings, registry: dict[str, ToolSpec] | None = None) -> ToolCallingRunner:
        def _client(config: AIConfig) -> ChatClient:
            return build_chat_client(
                config,
                timeout_s=settings.llm_timeout_s,
                max_retries=settings.llm_max_retries,
                backoff_s=settings.llm_backoff_s,
            )

        return cls(
            registry=registry,
            client_factory=_client,
            tool_timeout_s=settings.tool_timeout_s,
            tool_max_retries=settings.tool_max_retries,
            tool_backoff_s=settings.tool_retry_backoff_s,
        )

    async def run(self, request: AttemptRequest) -> AttemptOutcome:
        settings = request.agent_settings
        client = self.client_factory(request.ai_config)
        tools = enabled_tools(self.registry, settings)
        graph = self._build_graph(request, client, tools)

        messages: list[dict[str, Any]] = [
            {"role": item.role, "content": item.content} for item in request.history
        ]
        messages.append({"role": "user", "content": request.prompt})
        initial: LoopState = {
            "messages": messages,
            "step": 0,
            "consecutive_failures": 0,
            "pending_calls": [],
            "failed_tools": [],
            "outcome": None,
        }
        # model + tools per step, plus the final max-steps check
        final = await graph.ainvoke(initial, config={"recursion_limit": settings.max_steps * 2 + 5})
        outcome = AttemptOutcome.model_validate(final["outcome"])
        logger.info(
            "agent_loop event=finish request_id=%s provider=%s status=%s steps=%d",
            request.request_id,
            request.ai_config.provider,
            outcome.status,
            outcome.steps,
        )
        return outcome

    def _build_graph(self, request: AttemptRequest, client: ChatClient, tools: dict[str, ToolSpec]):
        settings = request.agent_settings
        signal = request.signal
        emit = request.emit
        request_id = request.request_id
        system_prompt = build_system_prompt(settings)
        definitions = tool_definitions(tools)
        executor = ToolExecutor(
            registry=tools,
            tool_timeout_s=self.tool_timeout_s,
            max_retries=self.tool_max_retries,
            backoff_s=self.tool_backoff_s,
        )

        def _fail(message: str, steps: int) -> dict[str, Any]:
            if request.last_resort:
                emit(ErrorEvent(request_id=request_id, error=message))
            return AttemptOutcome.failed(message, steps=steps).model_dump()

        async def call_model(state: LoopState) -> LoopState:
            step = state["step"]
            if signal.cancelled:
                return {"outcome": AttemptOutcome.cancelled(step).model_dump()}
            if step >= settings.max_steps:
                message = graceful_steer_message(
                    attempts=settings.max_steps,
                    failed_tools=state["failed_tools"],
                    access_level=settings.access_level,
                )
                return {"outcome": _fail(message, settings.max_steps)}

            step += 1
            emit(
                StatusEvent(
                    request_id=request_id,
                    status="Thinking..." if step == 1 else f"Step {step}...",
                    step_number=step,
                )
            )
            messages = state["messages"]
            try:
                completion = await _unless_cancelled(
                    asyncio.to_thread(
                        client.complete,
                        system_prompt=system_prompt,
                        messages=list(messages),
                        tools=definitions,
                    ),
                    signal,
                )
            except _Interrupted:
                return {"step": step, "outcome": AttemptOutcome.cancelled(step).model_dump()}
            except Exception as exc:  # noqa: BLE001
                failures = state["consecutive_failures"]
                logger.warning(
                    "agent_loop event=model_error request_id=%s provider=%s step=%d error=%s",
                    request_id,
                    request.ai_config.provider,
                    step,
                    exc,
                )
                if settings.auto_recover and failures < MAX_CONSECUTIVE_FAILURES:
                    emit(
                        StatusEvent(
                            request_id=request_id,
                            status="Recovering from a transient model error...",
                            step_number=step,
                        )
                    )
                    try:
                        await _unless_cancelled(asyncio.sleep(settings.recover_delay_s), signal)
                    except _Interrupted:
                        return {"step": step, "outcome": AttemptOutcome.cancelled(step).model_dump()}
                    return {"step": step, "consecutive_failures": failures + 1, "pending_calls": []}

                raw = str(exc) or "LLM request failed"
                message = raw
                if raw.startswith("{") or raw.startswith("HTTP"):
                    message = graceful_steer_message(
                        attempts=step,
                        failed_tools=state["failed_tools"],
                        access_level=settings.access_level,
                    )
                return {"step": step, "outcome": _fail(message, step)}

            if not completion.tool_calls:
                if completion.text:
                    emit(TextChunkEvent(request_id=request_id, text=completion.text))
                messages.append({"role": "assistant", "content": completion.text or ""})
                emit(DoneEvent(request_id=request_id))
                return {
                    "step": step,
                    "messages": messages,
                    "outcome": AttemptOutcome.done(step).model_dump(),
                }

            messages.append(
                {
                    "role": "assistant",
                    "content": completion.text or "",
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.args)},
                        }
                        for call in completion.tool_calls
                    ],
                }
            )
            if completion.text:
                emit(ThinkingEvent(request_id=request_id, text=completion.text))
            return {
                "step": step,
                "messages": messages,
                "consecutive_failures": 0,
                "pending_calls": [call.model_dump() for call in completion.tool_calls],
            }

        async def run_tools(state: LoopState) -> LoopState:
            step = state["step"]
            messages = state["messages"]
            failed_tools = list(state["failed_tools"])
            cancelled = AttemptOutcome.cancelled(step).model_dump()

            for call in state["pending_calls"]:
                if signal.cancelled:
                    return {"messages": messages, "failed_tools": failed_tools, "outcome": cancelled}

                call_id, name, args = call["id"], call["name"], call["args"]
                spec = self.registry.get(name)
                dangerous = needs_confirmation(spec, settings)
                message = spec.describe_confirmation(name, args) if spec is not None else f"Allow {name}?"
                emit(
                    ToolCallEvent(
                        request_id=request_id,
                        tool_call=ToolCallInfo(
                            id=call_id,
                            name=name,
                            args=args,
                            dangerous=dangerous,
                            confirmation_message=message if dangerous else None,
                        ),
                    )
                )

                if dangerous:
                    emit(
                        ConfirmNeededEvent(
                            request_id=request_id,
                            confirmation=Confirmation(
                                tool_call_id=call_id,
                                tool_name=name,
                                message=message,
                                args=args,
                            ),
                        )
                    )
                    approved = await request.wait_for_confirmation(call_id)
                    if signal.cancelled:
                        return {"messages": messages, "failed_tools": failed_tools, "outcome": cancelled}
                    if not approved:
                        messages.append(
                            {"role": "tool", "tool_call_id": call_id, "name": name, "content": DENIED_TOOL_MESSAGE}
                        )
                        emit(
                            ToolResultEvent(
                                request_id=request_id,
                                tool_result=ToolResultInfo(
                                    id=call_id,
                                    name=name,
                                    success=False,
                                    output="Denied by user",
                                    duration_ms=0,
                                ),
                            )
                        )
                        continue

                try:
                    result = await _unless_cancelled(
                        asyncio.to_thread(executor.execute, name, args), signal
                    )
                except _Interrupted:
                    return {"messages": messages, "failed_tools": failed_tools, "outcome": cancelled}

                output = truncate_output(result.summary(), settings.tool_output_limit)
                messages.append({"role": "tool", "tool_call_id": call_id, "name": name, "content": output})
                if not result.succeeded:
                    failed_tools.append({"name": name, "output": output})
                emit(
                    ToolResultEvent(
                        request_id=request_id,
                        tool_result=ToolResultInfo(
                            id=call_id,
                            name=name,
                            success=result.succeeded,
                            output=output,
                            duration_ms=result.duration_ms,
                        ),
                    )
                )

            return {"messages": messages, "failed_tools": failed_tools, "pending_calls": []}

        def _after_model(state: LoopState) -> str:
            if state.get("outcome") is not None:
                return "end"
            if state.get("pending_calls"):
                return "tools"
            return "model"

        def _after_tools(state: LoopState) -> str:
            return "end" if state.get("outcome") is not None else "model"

        graph = StateGraph(LoopState)
        graph.add_node("model", call_model)
        graph.add_node("tools", run_tools)
        graph.set_entry_point("model")
        graph.add_conditional_edges("model", _after_model, {"tools": "tools", "model": "model", "end": END})
        graph.add_conditional_edges("tools", _after_tools, {"model": "model", "end": END})
        return graph.compile()


def build_system_prompt(settings: AgentSettings) -> str:
    custom = settings.system_prompt.strip()
    personality = f"{custom}\n\n{DEFAULT_SYSTEM_PROMPT}" if custom else DEFAULT_SYSTEM_PROMPT
    if settings.access_level == "ultimate":
        guidance = "You may use all enabled tools with minimal interruption. Still avoid destructive actions unless needed."
    elif settings.access_level == "safe":
        guidance = "Avoid destructive operations and shell/app scripting actions."
    else:
        guidance = "Use dangerous operations only when necessary and with user confirmation."
    return f"{personality}\n\nAccess level: {settings.access_level}. {guidance}"


def truncate_output(output: str, limit: int) -> str:
    if len(output) <= limit:
        return output
    return output[:limit] + "\n...(truncated)"


def graceful_steer_message(*, attempts: int, failed_tools: list[dict[str, str]], access_level: str) -> str:
    """User-facing summary for a loop that ran out of steps or hit a raw provider error."""
    lines = [f"I made {attempts} attempt(s) but couldn't fully complete that task yet."]
    names = list(dict.fromkeys(item["name"] for item in failed_tools))
    if names:
        lines.append(f"I tried these actions: {', '.join(names)}.")
    if failed_tools and failed_tools[-1].get("output"):
        short = " ".join(failed_tools[-1]["output"][:BLOCKER_EXCERPT_CHARS].split())
        lines.append(f"Latest blocker: {short}")
    if access_level != "ultimate":
        lines.append(
            "To improve success rate, switch Agent Access Level to Ultimate "
            "or enable missing tool categories in Advanced settings."
        )
    else:
        lines.append("Please provide one concrete constraint or preferred path, and I can retry with that direction.")
    return " ".join(lines)

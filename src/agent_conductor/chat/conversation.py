"""Conversation values and the pure reducers that fold agent events into them."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from agent_conductor.protocol.events import (
    AgentEvent,
    ErrorEvent,
    HistoryMessage,
    StatusEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ThinkingStep(_Frozen):
    kind: Literal["thinking"] = "thinking"
    text: str
    at: datetime = Field(default_factory=_now)


class StatusStep(_Frozen):
    kind: Literal["status"] = "status"
    text: str
    at: datetime = Field(default_factory=_now)


class ToolCallStep(_Frozen):
    kind: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    dangerous: bool = False
    confirmation_message: str | None = None
    at: datetime = Field(default_factory=_now)


class ToolResultStep(_Frozen):
    kind: Literal["tool_result"] = "tool_result"
    id: str
    name: str
    success: bool
    output: str = ""
    duration_ms: float = 0.0
    at: datetime = Field(default_factory=_now)


class ErrorStep(_Frozen):
    kind: Literal["error"] = "error"
    text: str
    at: datetime = Field(default_factory=_now)


Step = Annotated[
    Union[ThinkingStep, StatusStep, ToolCallStep, ToolResultStep, ErrorStep],
    Field(discriminator="kind"),
]


class UserTurn(_Frozen):
    role: Literal["user"] = "user"
    query: str


class AssistantTurn(_Frozen):
    role: Literal["assistant"] = "assistant"
    steps: tuple[Step, ...] = ()
    final_answer: str = ""


Turn = Union[UserTurn, AssistantTurn]
Conversation = tuple[Turn, ...]


def start_exchange(conversation: Conversation, query: str) -> Conversation:
    """Append the user turn and the empty assistant turn that answers it."""
    return (*conversation, UserTurn(query=query), AssistantTurn())


def event_step(event: AgentEvent) -> Step | None:
    if isinstance(event, ThinkingEvent):
        return ThinkingStep(text=event.text)
    if isinstance(event, StatusEvent):
        return StatusStep(text=event.status)
    if isinstance(event, ToolCallEvent):
        call = event.tool_call
        return ToolCallStep(
            id=call.id,
            name=call.name,
            args=call.args,
            dangerous=call.dangerous,
            confirmation_message=call.confirmation_message,
        )
    if isinstance(event, ToolResultEvent):
        result = event.tool_result
        return ToolResultStep(
            id=result.id,
            name=result.name,
            success=result.success,
            output=result.output,
            duration_ms=result.duration_ms,
        )
    if isinstance(event, ErrorEvent):
        return ErrorStep(text=event.error)
    return None


def fold_event(conversation: Conversation, event: AgentEvent) -> Conversation:
    """Fold one event into the last assistant turn.

    Events that carry no step or text (``confirm_needed``, ``done``) leave the
    conversation unchanged. Request id filtering is the caller's job.
    """
    if not conversation or not isinstance(conversation[-1], AssistantTurn):
        return conversation
    turn = conversation[-1]
    if isinstance(event, TextChunkEvent):
        updated = turn.model_copy(update={"final_answer": turn.final_answer + event.text})
    else:
        step = event_step(event)
        if step is None:
            return conversation
        updated = turn.model_copy(update={"steps": (*turn.steps, step)})
    return (*conversation[:-1], updated)


def build_history(conversation: Conversation) -> list[HistoryMessage]:
    """User queries and non-empty assistant answers, in order."""
    history: list[HistoryMessage] = []
    for turn in conversation:
        if isinstance(turn, UserTurn):
            history.append(HistoryMessage(role="user", content=turn.query))
        elif turn.final_answer.strip():
            history.append(HistoryMessage(role="assistant", content=turn.final_answer))
    return history


def last_query(conversation: Conversation) -> str | None:
    for turn in reversed(conversation):
        if isinstance(turn, UserTurn):
            return turn.query
    return None


def can_retry(conversation: Conversation, *, running: bool) -> bool:
    if running or not conversation:
        return False
    turn = conversation[-1]
    if not isinstance(turn, AssistantTurn) or turn.final_answer:
        return False
    return any(isinstance(step, ErrorStep) for step in turn.steps)

"""Event protocol exchanged between the agent runtime and conversation consumers.

Every event carries the ``request_id`` of the run that produced it. Consumers
track a single request id and drop everything else, which is how trailing
events from cancelled or superseded runs are ignored.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

EventType = Literal[
    "thinking",
    "status",
    "tool_call",
    "tool_result",
    "confirm_needed",
    "text_chunk",
    "done",
    "error",
]


class ToolCallInfo(BaseModel):
    """A tool invocation announced before it runs."""

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    dangerous: bool = False
    confirmation_message: str | None = None


class ToolResultInfo(BaseModel):
    """Completion of a previously announced tool call."""

    id: str
    name: str
    success: bool
    output: str = ""
    duration_ms: float = 0.0


class Confirmation(BaseModel):
    """Human decision request for one tool call."""

    tool_call_id: str
    tool_name: str
    message: str
    args: dict[str, Any] = Field(default_factory=dict)


class _EventBase(BaseModel):
    request_id: str


class ThinkingEvent(_EventBase):
    type: Literal["thinking"] = "thinking"
    text: str = ""


class StatusEvent(_EventBase):
    type: Literal["status"] = "status"
    status: str
    step_number: int | None = None


class ToolCallEvent(_EventBase):
    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCallInfo


class ToolResultEvent(_EventBase):
    type: Literal["tool_result"] = "tool_result"
    tool_result: ToolResultInfo


class ConfirmNeededEvent(_EventBase):
    type: Literal["confirm_needed"] = "confirm_needed"
    confirmation: Confirmation


class TextChunkEvent(_EventBase):
    type: Literal["text_chunk"] = "text_chunk"
    text: str = ""


class DoneEvent(_EventBase):
    type: Literal["done"] = "done"


class ErrorEvent(_EventBase):
    type: Literal["error"] = "error"
    error: str


AgentEvent = Annotated[
    Union[
        ThinkingEvent,
        StatusEvent,
        ToolCallEvent,
        ToolResultEvent,
        ConfirmNeededEvent,
        TextChunkEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})


class HistoryMessage(BaseModel):
    """One prior exchange entry replayed to the model on a follow-up run."""

    role: Literal["user", "assistant"]
    content: str


def parse_event(payload: dict[str, Any]) -> AgentEvent:
    """Validate a JSON mapping into the matching event class."""
    return _EVENT_ADAPTER.validate_python(payload)


def is_terminal(event: AgentEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES

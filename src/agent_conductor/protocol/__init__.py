"""Runtime-to-consumer event protocol."""

from agent_conductor.protocol.events import (
    AgentEvent,
    Confirmation,
    ConfirmNeededEvent,
    DoneEvent,
    ErrorEvent,
    HistoryMessage,
    StatusEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolCallInfo,
    ToolResultEvent,
    ToolResultInfo,
    is_terminal,
    parse_event,
)

__all__ = [
    "AgentEvent",
    "ConfirmNeededEvent",
    "Confirmation",
    "DoneEvent",
    "ErrorEvent",
    "HistoryMessage",
    "StatusEvent",
    "TextChunkEvent",
    "ThinkingEvent",
    "ToolCallEvent",
    "ToolCallInfo",
    "ToolResultEvent",
    "ToolResultInfo",
    "is_terminal",
    "parse_event",
]

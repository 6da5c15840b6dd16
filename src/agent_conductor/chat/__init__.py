"""Conversation state for chat consumers of the agent runtime."""

from agent_conductor.chat.conversation import (
    AssistantTurn,
    Conversation,
    ErrorStep,
    StatusStep,
    Step,
    ThinkingStep,
    ToolCallStep,
    ToolResultStep,
    UserTurn,
    build_history,
    can_retry,
    fold_event,
    start_exchange,
)
from agent_conductor.chat.session import ChatSession, Idle, Running, RuntimeClient

__all__ = [
    "AssistantTurn",
    "ChatSession",
    "Conversation",
    "ErrorStep",
    "Idle",
    "Running",
    "RuntimeClient",
    "StatusStep",
    "Step",
    "ThinkingStep",
    "ToolCallStep",
    "ToolResultStep",
    "UserTurn",
    "build_history",
    "can_retry",
    "fold_event",
    "start_exchange",
]

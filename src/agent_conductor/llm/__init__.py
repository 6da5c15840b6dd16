"""Provider chat completion clients."""

from agent_conductor.llm.client import (
    ChatClient,
    ChatClientError,
    ChatCompletion,
    ChatToolCall,
    build_chat_client,
)

__all__ = [
    "ChatClient",
    "ChatClientError",
    "ChatCompletion",
    "ChatToolCall",
    "build_chat_client",
]

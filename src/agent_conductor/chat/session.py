"""Chat session: tracks one running request and folds its events into turns."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterable, Callable, Protocol, Union

from agent_conductor.chat.conversation import (
    Conversation,
    build_history,
    can_retry,
    fold_event,
    last_query,
    start_exchange,
)
from agent_conductor.protocol.events import (
    AgentEvent,
    Confirmation,
    ConfirmNeededEvent,
    HistoryMessage,
    is_terminal,
)

logger = logging.getLogger(__name__)


class RuntimeClient(Protocol):
    def is_available(self) -> bool: ...

    def start_run(self, request_id: str, prompt: str, history: list[HistoryMessage]) -> Any: ...

    def cancel(self, request_id: str) -> bool: ...

    def confirm(self, tool_call_id: str, approved: bool) -> bool: ...


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Running:
    request_id: str


SessionState = Union[Idle, Running]


def new_request_id() -> str:
    return f"agent-{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:6]}"


class ChatSession:
    """Consumer side of the agent runtime for one chat window.

    Only events for the running request id are folded. Cancellation is local
    and immediate; events the runtime still sends for the old id are dropped.
    """

    def __init__(
        self,
        client: RuntimeClient,
        *,
        request_id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self.client = client
        self.request_id_factory = request_id_factory
        self.conversation: Conversation = ()
        self.state: SessionState = Idle()
        self.pending: dict[str, Confirmation] = {}
        self.draft = ""

    @property
    def running(self) -> bool:
        return isinstance(self.state, Running)

    @property
    def request_id(self) -> str | None:
        return self.state.request_id if isinstance(self.state, Running) else None

    @property
    def pending_confirmation(self) -> Confirmation | None:
        return next(iter(self.pending.values()), None)

    @property
    def can_retry(self) -> bool:
        return can_retry(self.conversation, running=self.running)

    def submit(self, query: str) -> str | None:
        """Start a task for ``query``. Returns the new request id, or None when refused."""
        text = query.strip()
        if not text or self.running:
            return None
        history = build_history(self.conversation)
        request_id = self.request_id_factory()
        # a refused start leaves the session idle with its conversation untouched
        self.client.start_run(request_id, text, history)
        self.conversation = start_exchange(self.conversation, text)
        self.state = Running(request_id)
        self.draft = text
        logger.info("chat_session event=submit request_id=%s history=%d", request_id, len(history))
        return request_id

    def handle_event(self, event: AgentEvent) -> bool:
        """Fold ``event`` if it belongs to the running request. Returns whether it applied."""
        if self.request_id is None or event.request_id != self.request_id:
            return False
        self.conversation = fold_event(self.conversation, event)
        if isinstance(event, ConfirmNeededEvent):
            self.pending[event.confirmation.tool_call_id] = event.confirmation
        elif is_terminal(event):
            self.state = Idle()
            self.pending.clear()
        return True

    def confirm_tool(self, tool_call_id: str, approved: bool) -> None:
        self.client.confirm(tool_call_id, approved)
        self.pending.pop(tool_call_id, None)

    def cancel(self) -> None:
        if isinstance(self.state, Running):
            self.client.cancel(self.state.request_id)
            logger.info("chat_session event=cancel request_id=%s", self.state.request_id)
        self.state = Idle()
        self.pending.clear()

    def exit(self) -> None:
        self.cancel()
        self.conversation = ()
        self.draft = ""

    def start(self, query: str) -> str | None:
        """Open a fresh conversation with ``query`` when a provider is available."""
        if not self.client.is_available():
            logger.info("chat_session event=start_refused reason=no_provider")
            return None
        self.exit()
        return self.submit(query)

    def retry(self) -> str | None:
        if not self.can_retry:
            return None
        query = last_query(self.conversation)
        if query is None:
            return None
        return self.submit(query)

    async def listen(self, events: AsyncIterable[AgentEvent]) -> None:
        async for event in events:
            self.handle_event(event)

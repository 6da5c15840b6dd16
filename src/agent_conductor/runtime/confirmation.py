"""Rendezvous between a suspended tool call and the human approving it.

Waits are keyed by tool-call id and tagged with the request id that owns them.
Each wait resolves exactly once: approve, deny, or cancellation of its task
(which counts as a denial). Late or unknown resolutions are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from agent_conductor.runtime.cancellation import CancellationSignal

logger = logging.getLogger(__name__)


@dataclass
class _PendingWait:
    request_id: str
    future: asyncio.Future[bool]


class ConfirmationGate:
    def __init__(self) -> None:
        self._pending: dict[str, _PendingWait] = {}

    def pending_ids(self, request_id: str | None = None) -> list[str]:
        return [
            tool_call_id
            for tool_call_id, pending in self._pending.items()
            if request_id is None or pending.request_id == request_id
        ]

    async def wait(
        self,
        tool_call_id: str,
        *,
        request_id: str,
        signal: CancellationSignal | None = None,
    ) -> bool:
        """Suspend until ``tool_call_id`` is approved or denied.

        Returns False when the owning task is cancelled first.
        """
        if tool_call_id in self._pending:
            raise RuntimeError(f"Confirmation for tool call {tool_call_id} is already pending")
        if signal is not None and signal.cancelled:
            return False

        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[tool_call_id] = _PendingWait(request_id=request_id, future=future)
        watcher: asyncio.Task[None] | None = None
        if signal is not None:
            watcher = asyncio.ensure_future(self._deny_on_cancel(tool_call_id, future, signal))
        try:
            return await future
        finally:
            if watcher is not None:
                watcher.cancel()
            current = self._pending.get(tool_call_id)
            if current is not None and current.future is future:
                del self._pending[tool_call_id]

    def resolve(self, tool_call_id: str, approved: bool) -> bool:
        """Deliver a human decision. Returns False for unknown or settled ids."""
        pending = self._pending.pop(tool_call_id, None)
        if pending is None or pending.future.done():
            logger.info("confirmation event=ignored tool_call_id=%s", tool_call_id)
            return False
        pending.future.set_result(bool(approved))
        logger.info(
            "confirmation event=resolved request_id=%s tool_call_id=%s approved=%s",
            pending.request_id,
            tool_call_id,
            bool(approved),
        )
        return True

    def abort(self, request_id: str) -> int:
        """Deny every wait owned by ``request_id``."""
        denied = 0
        for tool_call_id in self.pending_ids(request_id):
            if self.resolve(tool_call_id, False):
                denied += 1
        return denied

    async def _deny_on_cancel(
        self,
        tool_call_id: str,
        future: asyncio.Future[bool],
        signal: CancellationSignal,
    ) -> None:
        await signal.wait()
        if not future.done():
            self.resolve(tool_call_id, False)

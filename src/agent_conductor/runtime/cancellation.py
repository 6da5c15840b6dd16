"""Per-task cancellation flag."""

from __future__ import annotations

import asyncio


class CancellationSignal:
    """Single-writer, multi-reader flag. Once set it stays set."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> bool:
        """Set the flag. Returns False when it was already set."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

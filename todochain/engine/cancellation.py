"""Cooperative cancellation for execution runs."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Flag shared between whoever started a run and the executor.

    The executor checks :attr:`cancelled` at every task boundary and waits
    on :meth:`wait` alongside an in-flight agent call so the call can be
    aborted.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

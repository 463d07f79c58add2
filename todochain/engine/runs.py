"""Bookkeeping of active execution runs -- at most one per plan."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from todochain.engine.cancellation import CancellationToken
from todochain.utils.logging import get_logger

logger = get_logger("engine.runs")

T = TypeVar("T")


@dataclass
class _ActiveRun:
    token: CancellationToken
    task: asyncio.Task


class RunRegistry:
    """Tracks the active run of every plan.

    Starting a run for a plan that already has one cancels the active run
    and waits for it to settle before the new one begins, so two runs never
    mutate the same task list at once.
    """

    def __init__(self) -> None:
        self._active: dict[str, _ActiveRun] = {}
        self._lock = asyncio.Lock()

    def is_active(self, plan_id: str) -> bool:
        return plan_id in self._active

    def cancel(self, plan_id: str, reason: str = "cancelled") -> bool:
        """Request cancellation of the plan's active run, if any."""
        active = self._active.get(plan_id)
        if active is None:
            return False
        active.token.cancel(reason)
        logger.info("run_cancel_requested", plan_id=plan_id, reason=reason)
        return True

    async def start(
        self,
        plan_id: str,
        runner: Callable[[CancellationToken], Awaitable[T]],
    ) -> T:
        """Run ``runner(token)`` as the plan's active run and return its result."""
        async with self._lock:
            previous = self._active.get(plan_id)
            if previous is not None:
                previous.token.cancel("superseded")
                logger.info("run_superseded", plan_id=plan_id)
                await asyncio.wait({previous.task})

            token = CancellationToken()
            entry = _ActiveRun(token=token, task=asyncio.ensure_future(runner(token)))
            self._active[plan_id] = entry

        try:
            return await entry.task
        finally:
            if self._active.get(plan_id) is entry:
                del self._active[plan_id]

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to settle."""
        entries = list(self._active.values())
        for entry in entries:
            entry.token.cancel("shutdown")
        if entries:
            await asyncio.wait({e.task for e in entries})

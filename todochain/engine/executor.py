"""Chain executor -- runs a plan's tasks one at a time.

The :class:`ChainExecutor` is the state machine at the heart of the engine.
For every run it:

1. Normalizes dependency references and orders the tasks.
2. Walks the run sequence, skipping tasks whose dependencies have not
   completed and re-using the stored output of tasks that already have.
3. Invokes the Agent Invocation Service for every other task, feeding the
   previous output forward as the next input.
4. Halts on the first failure and honours cooperative cancellation at task
   boundaries (and, when ``abort_in_flight`` is on, during an agent call).
5. Persists the plan and returns the :class:`ExecutionRun` record.

Only one task is ever ``in_progress``; there is no parallel fan-out.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from todochain.core.agents.base import (
    AgentInvocationService,
    InvocationRequest,
    InvocationResult,
)
from todochain.core.task.models import (
    ChainMetadata,
    Plan,
    Task,
    TaskStatus,
    utcnow,
)
from todochain.core.task.normalizer import normalize_tasks
from todochain.core.task.scheduler import TaskScheduler
from todochain.engine.cancellation import CancellationToken
from todochain.storage.plan_store import PlanStore
from todochain.utils.exceptions import TaskNotFoundError
from todochain.utils.logging import get_logger

TaskCompletedCallback = Callable[[Task, InvocationResult], Any]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    HALTED = "halted"


class ExecutionRun(BaseModel):
    """Explicit state of one execution run.

    Attributes:
        run_id: Identifier of this run.
        plan_id: The plan being executed.
        initial_input: Caller-supplied seed input (normally the last user
            message).
        current_input: Input the next invoked task will receive.
        state: Global run state.
        completed_task_ids: Tasks known to be completed during this run.
        skipped_task_ids: Tasks skipped because a dependency had not
            completed.  They stay ``pending``.
        invoked_task_ids: Tasks actually dispatched to the agent service.
        failed_task_id: The task that halted the run, if any.
        error: Error text of the failing task.
        tasks: Snapshot of the plan's tasks when the run ended.
    """

    model_config = {"arbitrary_types_allowed": True}

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    plan_id: str
    initial_input: str
    current_input: str
    state: RunState = RunState.IDLE
    completed_task_ids: set[str] = set()
    skipped_task_ids: list[str] = []
    invoked_task_ids: list[str] = []
    failed_task_id: str | None = None
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    tasks: list[Task] = []
    cancel_token: CancellationToken = Field(
        default_factory=CancellationToken, exclude=True
    )


class _Outcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class _InvocationAborted(Exception):
    """The in-flight agent call was aborted by cancellation."""


def output_to_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class ChainExecutor:
    """Sequential executor for a :class:`Plan`.

    Parameters
    ----------
    service:
        The Agent Invocation Service that executes one task per call.
    store:
        Optional plan store; the plan is saved after every terminal task
        transition and when the run ends.
    scheduler:
        Produces the run sequence.  Defaults to Kahn's algorithm.
    on_task_completed:
        Outward notification fired once per completed task.  Plain callables
        run inline; coroutine functions are scheduled in the background and
        never awaited by the run.  Their outcome never influences scheduling.
    abort_in_flight:
        When ``True`` a cancellation during an agent call aborts the call and
        puts the task back to the status it had before.  When ``False`` the
        call is allowed to settle and its outcome is recorded.
    """

    def __init__(
        self,
        service: AgentInvocationService,
        store: PlanStore | None = None,
        scheduler: TaskScheduler | None = None,
        on_task_completed: TaskCompletedCallback | None = None,
        abort_in_flight: bool = True,
    ) -> None:
        self.service = service
        self.store = store
        self.scheduler = scheduler or TaskScheduler()
        self.on_task_completed = on_task_completed
        self.abort_in_flight = abort_in_flight
        self.logger = get_logger("engine.executor")
        self._pending_notifications: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        plan: Plan,
        initial_input: str,
        cancel_token: CancellationToken | None = None,
        on_task_completed: TaskCompletedCallback | None = None,
    ) -> ExecutionRun:
        """Execute *plan* as a chain seeded with *initial_input*.

        Raises :class:`CyclicDependencyError` (before touching any task) when
        the dependency graph cannot be ordered.
        """
        run = ExecutionRun(
            plan_id=plan.plan_id,
            initial_input=initial_input,
            current_input=initial_input,
        )
        if cancel_token is not None:
            run.cancel_token = cancel_token
        callback = on_task_completed or self.on_task_completed

        for task, normalized in zip(plan.tasks, normalize_tasks(plan.tasks)):
            task.dependencies = normalized.dependencies
        sequence = self.scheduler.order(plan.tasks)

        run.state = RunState.RUNNING
        run.started_at = utcnow()
        self.logger.info(
            "run_start",
            run_id=run.run_id,
            plan_id=plan.plan_id,
            total_tasks=len(sequence),
        )

        for task in sequence:
            if run.cancel_token.cancelled:
                run.state = RunState.CANCELLED
                break

            unmet = [d for d in task.dependencies if d not in run.completed_task_ids]
            if unmet:
                self.logger.warning(
                    "task_dependencies_unmet",
                    run_id=run.run_id,
                    task_id=task.id,
                    unmet=unmet,
                )
                run.skipped_task_ids.append(task.id)
                continue

            if task.status == TaskStatus.COMPLETED:
                run.completed_task_ids.add(task.id)
                run.current_input = self._forward(task.output, run.current_input)
                self.logger.debug("task_reused", run_id=run.run_id, task_id=task.id)
                continue

            outcome = await self._execute(plan, task, run, callback)
            if outcome == _Outcome.ABORTED:
                run.state = RunState.CANCELLED
                break
            if outcome == _Outcome.FAILED:
                run.state = RunState.HALTED
                break
        else:
            run.state = RunState.FINISHED

        return await self._finish(plan, run)

    async def execute_task(
        self,
        plan: Plan,
        task_id: str,
        initial_input: str,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionRun:
        """Execute one task of *plan* on its own, outside of a chain.

        Dependencies are not checked.  A completed task is run again.
        """
        task = plan.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        run = ExecutionRun(
            plan_id=plan.plan_id,
            initial_input=initial_input,
            current_input=initial_input,
            state=RunState.RUNNING,
            started_at=utcnow(),
        )
        if cancel_token is not None:
            run.cancel_token = cancel_token

        outcome = await self._execute(plan, task, run, self.on_task_completed)
        run.state = {
            _Outcome.COMPLETED: RunState.FINISHED,
            _Outcome.FAILED: RunState.HALTED,
            _Outcome.ABORTED: RunState.CANCELLED,
        }[outcome]
        return await self._finish(plan, run)

    async def aclose(self) -> None:
        """Cancel completion notifications that are still running."""
        pending = list(self._pending_notifications)
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.wait(pending)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _execute(
        self,
        plan: Plan,
        task: Task,
        run: ExecutionRun,
        callback: TaskCompletedCallback | None,
    ) -> _Outcome:
        """Dispatch one task and record its terminal state."""
        previous_status = task.status
        task.status = TaskStatus.IN_PROGRESS
        run.invoked_task_ids.append(task.id)
        self.logger.info(
            "task_start",
            run_id=run.run_id,
            task_id=task.id,
            agent_id=task.agent_id,
        )

        request = InvocationRequest(
            task_id=task.id,
            current_input=run.current_input,
            task=task.model_copy(deep=True),
            plan_id=plan.plan_id,
        )
        start = time.monotonic()

        try:
            result = await self._invoke(request, run.cancel_token)
        except _InvocationAborted:
            task.status = previous_status
            self.logger.info("task_aborted", run_id=run.run_id, task_id=task.id)
            return _Outcome.ABORTED
        except asyncio.CancelledError:
            task.status = previous_status
            raise
        except Exception as exc:
            self._mark_failed(task, run, str(exc) or type(exc).__name__)
            await self._persist(plan)
            return _Outcome.FAILED

        if not result.success:
            self._mark_failed(task, run, result.error or "Failed to execute task")
            await self._persist(plan)
            return _Outcome.FAILED

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        self._mark_completed(task, run, result, elapsed_ms)
        await self._persist(plan)

        if callback is not None:
            self._notify(callback, task, result)
        return _Outcome.COMPLETED

    async def _invoke(
        self,
        request: InvocationRequest,
        token: CancellationToken,
    ) -> InvocationResult:
        """Await the agent call, racing it against cancellation."""
        invocation = asyncio.ensure_future(self.service.invoke(request))
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {invocation, cancel_wait},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            invocation.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if invocation in done:
            return invocation.result()

        if not self.abort_in_flight:
            self.logger.info("task_cancel_deferred", task_id=request.task_id)
            return await invocation

        invocation.cancel()
        try:
            await invocation
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            self.logger.debug(
                "aborted_invocation_error",
                task_id=request.task_id,
                error=str(exc),
            )
        raise _InvocationAborted(request.task_id)

    def _mark_completed(
        self,
        task: Task,
        run: ExecutionRun,
        result: InvocationResult,
        elapsed_ms: float,
    ) -> None:
        updated = result.task
        if updated is not None:
            task.output = updated.output
            task.duration = updated.duration
            task.cost = updated.cost
            task.token_usage = updated.token_usage
            task.response_format = updated.response_format
        if task.duration is None:
            task.duration = elapsed_ms

        now = utcnow()
        task.status = TaskStatus.COMPLETED
        task.completed_at = now
        task.chain_metadata = ChainMetadata(
            input=run.current_input,
            executed_at=now,
            output=task.output,
        )

        run.completed_task_ids.add(task.id)
        run.current_input = self._forward(task.output, run.current_input)
        self.logger.info(
            "task_complete",
            run_id=run.run_id,
            task_id=task.id,
            duration=task.duration,
        )

    def _mark_failed(self, task: Task, run: ExecutionRun, error: str) -> None:
        metadata = task.chain_metadata or ChainMetadata()
        task.status = TaskStatus.FAILED
        task.chain_metadata = metadata.model_copy(
            update={
                "input": run.current_input,
                "executed_at": utcnow(),
                "error": error,
            }
        )
        run.failed_task_id = task.id
        run.error = error
        self.logger.error(
            "task_failed",
            run_id=run.run_id,
            task_id=task.id,
            error=error,
        )

    def _notify(
        self,
        callback: TaskCompletedCallback,
        task: Task,
        result: InvocationResult,
    ) -> None:
        """Fire the completion callback without waiting on its outcome."""
        try:
            outcome = callback(task.model_copy(deep=True), result)
        except Exception:
            self.logger.warning(
                "task_completed_callback_error",
                task_id=task.id,
                exc_info=True,
            )
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._pending_notifications.add(future)
            future.add_done_callback(
                functools.partial(self._notification_done, task.id)
            )

    def _notification_done(self, task_id: str, future: asyncio.Future) -> None:
        self._pending_notifications.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.warning(
                "task_completed_callback_error",
                task_id=task_id,
                error=str(exc) or type(exc).__name__,
            )

    @staticmethod
    def _forward(output: Any, current_input: str) -> str:
        """Next input after a task produced *output*; empty output keeps the old one."""
        if output is None or output == "":
            return current_input
        return output_to_text(output)

    async def _persist(self, plan: Plan) -> None:
        if self.store is not None:
            await self.store.save(plan)

    async def _finish(
        self,
        plan: Plan,
        run: ExecutionRun,
    ) -> ExecutionRun:
        run.finished_at = utcnow()
        run.tasks = [t.model_copy(deep=True) for t in plan.tasks]
        await self._persist(plan)

        self.logger.info(
            "run_complete",
            run_id=run.run_id,
            plan_id=plan.plan_id,
            state=run.state.value,
            invoked=len(run.invoked_task_ids),
            skipped=len(run.skipped_task_ids),
            failed_task_id=run.failed_task_id,
        )
        return run

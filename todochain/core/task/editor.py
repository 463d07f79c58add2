"""Plan editing -- insert, edit, delete and reorder tasks.

Structural operations (add / delete / reorder) always finish by rebuilding
the dependency list of every task into a strict linear chain over the
resulting display order: the first task depends on nothing, every other
task depends solely on its predecessor.  Field edits leave dependencies
alone.

Every successful mutation is written to the :class:`PlanStore` before the
method returns, so the change is durable before the next execution run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from todochain.core.task.models import (
    AUTO_AGENT_ID,
    Plan,
    Task,
    TaskPatch,
    TaskStatus,
)
from todochain.utils.exceptions import (
    DuplicateTaskError,
    FrozenTaskError,
    InvalidReorderError,
    PlanLockedError,
    TaskNotFoundError,
)
from todochain.utils.logging import get_logger

if TYPE_CHECKING:
    from todochain.storage.plan_store import PlanStore

logger = get_logger("task.editor")

_MOVABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.FAILED)


def linear_chain_dependencies(tasks: list[Task]) -> list[list[str]]:
    """Dependency lists of the strict linear chain over *tasks*."""
    return [[] if idx == 0 else [tasks[idx - 1].id] for idx in range(len(tasks))]


def rebuild_linear_chain(tasks: list[Task]) -> list[Task]:
    """Rewrite dependencies in place so *tasks* form a strict linear chain."""
    for task, deps in zip(tasks, linear_chain_dependencies(tasks)):
        task.dependencies = deps
    return tasks


def is_linear_chain(tasks: list[Task]) -> bool:
    return all(
        task.dependencies == deps
        for task, deps in zip(tasks, linear_chain_dependencies(tasks))
    )


class PlanEditor:
    """Applies user edits to a :class:`Plan` and persists the result.

    Parameters
    ----------
    store:
        The plan store every mutation is reported to.
    """

    def __init__(self, store: PlanStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    async def add_task(self, plan: Plan, task: Task, index: int | None = None) -> Task:
        """Insert *task* at *index* (append when ``None``)."""
        self._ensure_editable(plan)
        if plan.get_task(task.id) is not None:
            raise DuplicateTaskError(task.id)

        if index is None or index >= len(plan.tasks):
            plan.tasks.append(task)
        else:
            plan.tasks.insert(max(index, 0), task)

        rebuild_linear_chain(plan.tasks)
        await self.store.save(plan)
        logger.info(
            "task_added",
            plan_id=plan.plan_id,
            task_id=task.id,
            index=plan.index_of(task.id),
        )
        return task

    async def delete_task(self, plan: Plan, task_id: str) -> Task:
        """Remove a task and re-chain the remaining ones."""
        self._ensure_editable(plan)
        index = plan.index_of(task_id)
        if index < 0:
            raise TaskNotFoundError(task_id)

        removed = plan.tasks.pop(index)
        rebuild_linear_chain(plan.tasks)
        await self.store.save(plan)
        logger.info("task_deleted", plan_id=plan.plan_id, task_id=task_id)
        return removed

    async def reorder(self, plan: Plan, from_index: int, to_index: int) -> list[Task]:
        """Move the task at *from_index* to *to_index*.

        Only ``pending`` and ``failed`` tasks move.  Positions held by
        ``in_progress`` or ``completed`` tasks are frozen, so every task in
        the affected range has to be movable.
        """
        self._ensure_editable(plan)
        size = len(plan.tasks)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise InvalidReorderError(from_index, to_index, size)
        if from_index == to_index:
            return plan.tasks

        low, high = sorted((from_index, to_index))
        for task in plan.tasks[low : high + 1]:
            if task.status not in _MOVABLE_STATUSES:
                raise FrozenTaskError(task.id, task.status.value)

        moved = plan.tasks.pop(from_index)
        plan.tasks.insert(to_index, moved)

        rebuild_linear_chain(plan.tasks)
        await self.store.save(plan)
        logger.info(
            "task_reordered",
            plan_id=plan.plan_id,
            task_id=moved.id,
            from_index=from_index,
            to_index=to_index,
        )
        return plan.tasks

    async def ensure_linear_chain(self, plan: Plan) -> bool:
        """Re-chain *plan* if its dependencies do not already form the chain.

        Returns ``True`` when the plan was changed (and saved).
        """
        if not plan.tasks or is_linear_chain(plan.tasks):
            return False
        rebuild_linear_chain(plan.tasks)
        await self.store.save(plan)
        logger.info("plan_rechained", plan_id=plan.plan_id, tasks=len(plan.tasks))
        return True

    async def replace_tasks(
        self,
        plan: Plan,
        tasks: list[Task],
        rechain: bool = True,
    ) -> Plan:
        """Swap in a whole new task list, e.g. a freshly generated plan.

        Task ids must be unique.  With *rechain* the list is turned into the
        strict linear chain; otherwise dependencies are stored as given.
        """
        seen: set[str] = set()
        for task in tasks:
            if task.id in seen:
                raise DuplicateTaskError(task.id)
            seen.add(task.id)

        plan.tasks = tasks
        if rechain:
            rebuild_linear_chain(plan.tasks)
        await self.store.save(plan)
        logger.info(
            "plan_replaced",
            plan_id=plan.plan_id,
            tasks=len(plan.tasks),
            rechained=rechain,
        )
        return plan

    # ------------------------------------------------------------------
    # Field edits
    # ------------------------------------------------------------------

    async def edit_task(self, plan: Plan, task_id: str, patch: TaskPatch) -> Task:
        """Apply the fields set on *patch*.  Status and dependencies stay as is."""
        self._ensure_editable(plan)
        task = plan.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        changes = patch.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if value is None and field in ("title", "description"):
                continue
            if field == "agent_id" and not value:
                value = AUTO_AGENT_ID
            setattr(task, field, value)

        await self.store.save(plan)
        logger.info(
            "task_edited",
            plan_id=plan.plan_id,
            task_id=task_id,
            fields=sorted(changes),
        )
        return task

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_editable(plan: Plan) -> None:
        if plan.get_tasks_by_status(TaskStatus.IN_PROGRESS):
            raise PlanLockedError(plan.plan_id, "a task is in progress")

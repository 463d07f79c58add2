"""Execution ordering for a plan's tasks.

Takes the (normalized) task list of a plan and produces the run sequence
consumed by the chain executor.  Display order is never changed; only the
returned sequence is reordered.

Two strategies are available:

``topological``
    Kahn's algorithm.  Among tasks whose dependencies are satisfied the one
    with the lowest display index goes first, so independent tasks keep
    their display order.  A cycle raises :class:`CyclicDependencyError`.

``pairwise``
    The legacy comparator: ``a`` sorts after ``b`` when ``a`` depends on
    ``b`` (by id or title), before it when ``b`` depends on ``a``, and equal
    otherwise.  It only looks at direct pairs, so it is not globally
    consistent for transitive chains, and it never rejects cycles.
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from enum import Enum
from functools import cmp_to_key

from todochain.core.task.models import Task
from todochain.utils.exceptions import CyclicDependencyError
from todochain.utils.logging import get_logger

logger = get_logger("task.scheduler")


class OrderingStrategy(str, Enum):
    TOPOLOGICAL = "topological"
    PAIRWISE = "pairwise"


class TaskScheduler:
    """Produces the execution order for a list of tasks.

    Parameters
    ----------
    strategy:
        Which ordering algorithm to use.  Defaults to Kahn's algorithm.
    """

    def __init__(
        self,
        strategy: OrderingStrategy | str = OrderingStrategy.TOPOLOGICAL,
    ) -> None:
        self.strategy = OrderingStrategy(strategy)

    def order(self, tasks: list[Task]) -> list[Task]:
        """Return *tasks* in execution order.

        Dependency references that do not name a task in *tasks* are ignored
        for ordering purposes.
        """
        if not tasks:
            return []

        if self.strategy == OrderingStrategy.PAIRWISE:
            ordered = self._pairwise_sort(tasks)
        else:
            ordered = self._topological_sort(tasks)

        logger.debug(
            "execution_order",
            strategy=self.strategy.value,
            order=[t.id for t in ordered],
        )
        return ordered

    # ----- Internal helpers -------------------------------------------------

    @staticmethod
    def _topological_sort(tasks: list[Task]) -> list[Task]:
        """Kahn's algorithm with display index as the tie-breaker.

        Raises :class:`CyclicDependencyError` if the graph has a cycle.
        """
        position: dict[str, int] = {t.id: idx for idx, t in enumerate(tasks)}

        in_degree: dict[str, int] = {t.id: 0 for t in tasks}
        dependents: dict[str, list[str]] = defaultdict(list)

        for task in tasks:
            for dep_id in set(task.dependencies):
                if dep_id in position and dep_id != task.id:
                    in_degree[task.id] += 1
                    dependents[dep_id].append(task.id)

        ready: list[int] = [
            position[tid] for tid, deg in in_degree.items() if deg == 0
        ]
        heapq.heapify(ready)

        ordered: list[Task] = []
        while ready:
            task = tasks[heapq.heappop(ready)]
            ordered.append(task)
            for dependent_id in dependents[task.id]:
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    heapq.heappush(ready, position[dependent_id])

        if len(ordered) != len(tasks):
            stuck = sorted(tid for tid, deg in in_degree.items() if deg > 0)
            raise CyclicDependencyError(
                f"Cyclic dependency detected among tasks: "
                f"processed {len(ordered)}/{len(tasks)} "
                f"(blocked: {', '.join(stuck)})."
            )

        return ordered

    @staticmethod
    def _pairwise_sort(tasks: list[Task]) -> list[Task]:
        def depends_on(a: Task, b: Task) -> bool:
            return any(dep == b.id or dep == b.title for dep in a.dependencies)

        def compare(a: Task, b: Task) -> int:
            if depends_on(a, b):
                return 1
            if depends_on(b, a):
                return -1
            return 0

        return sorted(tasks, key=cmp_to_key(compare))

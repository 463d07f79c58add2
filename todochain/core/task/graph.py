"""Graph view of a plan -- nodes per task, ``depends-on`` edges.

Used by clients that draw the plan as a node graph instead of a list.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from todochain.core.task.models import Plan, TaskStatus
from todochain.core.task.normalizer import normalize_tasks

DEPENDS_ON = "depends-on"

_STATUS_STYLE: dict[TaskStatus, tuple[str, str, str]] = {
    # status -> (node type id, colour, icon)
    TaskStatus.PENDING: ("todo-pending", "slate", "clock"),
    TaskStatus.IN_PROGRESS: ("todo-in-progress", "sky", "loader-2"),
    TaskStatus.COMPLETED: ("todo-completed", "emerald", "check-circle"),
    TaskStatus.FAILED: ("todo-failed", "rose", "x-circle"),
}


class GraphNode(BaseModel):
    id: str
    node_type_id: str
    title: str
    incomplete: bool
    payload: dict[str, Any] = {}


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str
    relation_type_id: str = DEPENDS_ON


class PlanGraph(BaseModel):
    nodes: list[GraphNode] = []
    edges: list[GraphEdge] = []


def plan_to_graph(plan: Plan, executing_task_id: str | None = None) -> PlanGraph:
    """Convert *plan* into graph nodes and edges.

    *executing_task_id* marks a task as in progress even if its stored status
    has not caught up yet.  Dependencies that do not resolve to a task in the
    plan produce no edge.
    """
    tasks = normalize_tasks(plan.tasks)
    known = {t.id for t in tasks}

    nodes: list[GraphNode] = []
    for task in tasks:
        is_executing = task.id == executing_task_id or task.status == TaskStatus.IN_PROGRESS
        effective = TaskStatus.IN_PROGRESS if is_executing else task.status
        node_type_id, colour, icon = _STATUS_STYLE[effective]
        nodes.append(
            GraphNode(
                id=task.id,
                node_type_id=node_type_id,
                title=task.title,
                incomplete=effective != TaskStatus.COMPLETED,
                payload={
                    "status": effective.value,
                    "original_status": task.status.value,
                    "description": task.description,
                    "agent_id": task.agent_id,
                    "duration": task.duration,
                    "status_color": colour,
                    "status_icon": icon,
                    "is_executing": is_executing,
                },
            )
        )

    edges: list[GraphEdge] = []
    seen: set[str] = set()
    for task in tasks:
        for dep_id in task.dependencies:
            edge_id = f"{dep_id}-{task.id}"
            if dep_id not in known or edge_id in seen:
                continue
            seen.add(edge_id)
            edges.append(GraphEdge(id=edge_id, source=dep_id, target=task.id))

    return PlanGraph(nodes=nodes, edges=edges)

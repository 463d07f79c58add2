"""Task model, dependency normalization, ordering and plan editing."""

from todochain.core.task.editor import PlanEditor, rebuild_linear_chain
from todochain.core.task.models import (
    AUTO_AGENT_ID,
    ChainMetadata,
    Plan,
    Task,
    TaskPatch,
    TaskStatus,
    aggregate_status,
)
from todochain.core.task.normalizer import normalize_tasks
from todochain.core.task.scheduler import OrderingStrategy, TaskScheduler

__all__ = [
    "AUTO_AGENT_ID",
    "ChainMetadata",
    "OrderingStrategy",
    "Plan",
    "PlanEditor",
    "Task",
    "TaskPatch",
    "TaskScheduler",
    "TaskStatus",
    "aggregate_status",
    "normalize_tasks",
    "rebuild_linear_chain",
]

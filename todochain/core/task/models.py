"""Task-related data models for the todo chain engine.

Defines the structures used to represent individual todo tasks, their
execution provenance, and the plan (ordered task list) that owns them.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

AUTO_AGENT_ID = "auto"

STEP_REFERENCE_PATTERN = re.compile(r"^step\s*(\d+)$", re.IGNORECASE)
ORDINAL_REFERENCE_PATTERN = re.compile(r"^(\d+)$")


def new_task_id() -> str:
    # The prefix keeps generated ids from ever parsing as an ordinal reference.
    return f"todo_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle states for a single task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ChainMetadata(BaseModel):
    """Provenance recorded on a task each time the executor runs it.

    Attributes:
        input: The concrete input the task was invoked with.
        executed_at: When the invocation settled.
        output: The output produced on success.
        error: Error text when the invocation failed.
    """

    input: str | None = None
    executed_at: datetime | None = None
    output: Any = None
    error: str | None = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Task(BaseModel):
    """A single todo step bound to an agent.

    Attributes:
        id: Stable unique identifier, never reused.
        title: Short user-facing label.
        description: Longer user-facing explanation.
        status: Current lifecycle state.
        agent_id: Agent Invocation Service target; ``"auto"`` routes to the
            orchestrator.
        dependencies: Raw or normalized references to other tasks (ordinal
            step number, title or id).
        input: Opaque payload handed to the agent.
        output: Opaque payload returned by the agent.
        chain_metadata: Provenance of the last execution.
    """

    id: str = Field(default_factory=new_task_id)
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    agent_id: str = AUTO_AGENT_ID
    dependencies: list[str] = []
    input: Any = None
    output: Any = None
    chain_metadata: ChainMetadata | None = None

    duration: float | None = None
    cost: float | None = None
    token_usage: TokenUsage | None = None
    response_format: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @field_validator("id")
    @classmethod
    def _id_is_not_a_step_reference(cls, value: str) -> str:
        # Dependencies resolve step numbers before ids; an id like "2" would
        # be read back as a position on the next normalization pass.
        if STEP_REFERENCE_PATTERN.match(value) or ORDINAL_REFERENCE_PATTERN.match(value):
            raise ValueError(f"task id {value!r} reads as a step reference")
        return value


class TaskPatch(BaseModel):
    """Field-level edit applied by the plan editor.

    Only the fields explicitly set on the patch are applied.
    """

    title: str | None = None
    description: str | None = None
    agent_id: str | None = None
    input: Any = None


def aggregate_status(tasks: list[Task]) -> TaskStatus:
    """Derive the overall execution plan status from task statuses."""
    if not tasks:
        return TaskStatus.PENDING
    if any(t.status == TaskStatus.IN_PROGRESS for t in tasks):
        return TaskStatus.IN_PROGRESS
    if all(t.status == TaskStatus.COMPLETED for t in tasks):
        return TaskStatus.COMPLETED
    if any(t.status == TaskStatus.FAILED for t in tasks):
        return TaskStatus.FAILED
    return TaskStatus.PENDING


class Plan(BaseModel):
    """The ordered set of tasks belonging to one conversation turn.

    Attributes:
        plan_id: Identifier of the owning conversation / turn.
        tasks: Tasks in display order.
    """

    plan_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    tasks: list[Task] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def get_task(self, task_id: str) -> Task | None:
        """Look up a task by its ID.  Returns ``None`` when not found."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def index_of(self, task_id: str) -> int:
        """Display index of *task_id*, or ``-1`` when absent."""
        for idx, task in enumerate(self.tasks):
            if task.id == task_id:
                return idx
        return -1

    def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        """Return all tasks that currently have the given *status*."""
        return [t for t in self.tasks if t.status == status]

    @property
    def status(self) -> TaskStatus:
        return aggregate_status(self.tasks)

    @property
    def total_duration(self) -> float:
        """Sum of ``duration`` over completed tasks."""
        return sum(
            t.duration or 0
            for t in self.tasks
            if t.status == TaskStatus.COMPLETED and t.duration is not None
        )

    @property
    def can_execute(self) -> bool:
        """``True`` when every dependency names an existing task by id or title."""
        from todochain.core.task.normalizer import normalize_tasks

        if not self.tasks:
            return False
        known = {t.id for t in self.tasks} | {t.title for t in self.tasks}
        return all(
            dep in known
            for t in normalize_tasks(self.tasks)
            for dep in t.dependencies
        )

    def touch(self) -> None:
        self.updated_at = utcnow()

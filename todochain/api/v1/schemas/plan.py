"""Request/response schemas for plan editing and execution."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from todochain.core.task.models import AUTO_AGENT_ID, Plan, Task, TaskStatus
from todochain.engine.executor import ExecutionRun, RunState


class PlanResponse(BaseModel):
    """Serialised view of a plan with its derived status fields."""

    plan_id: str
    status: TaskStatus
    total_duration: float
    can_execute: bool
    tasks: list[Task]
    updated_at: datetime

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            plan_id=plan.plan_id,
            status=plan.status,
            total_duration=plan.total_duration,
            can_execute=plan.can_execute,
            tasks=plan.tasks,
            updated_at=plan.updated_at,
        )


class PlanUpdateRequest(BaseModel):
    """Full replacement of a plan's task list."""

    tasks: list[Task]


class AddTaskRequest(BaseModel):
    title: str
    description: str = ""
    agent_id: str = AUTO_AGENT_ID
    input: Any = None
    index: int | None = None


class ReorderRequest(BaseModel):
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class ExecuteRequest(BaseModel):
    """Trigger a run; *initial_input* is normally the last user message."""

    initial_input: str = Field(min_length=1)


class RunResponse(BaseModel):
    run_id: str
    state: RunState
    failed_task_id: str | None = None
    error: str | None = None
    skipped_task_ids: list[str] = []
    invoked_task_ids: list[str] = []
    final_output: str
    plan: PlanResponse

    @classmethod
    def from_run(cls, run: ExecutionRun, plan: Plan) -> "RunResponse":
        return cls(
            run_id=run.run_id,
            state=run.state,
            failed_task_id=run.failed_task_id,
            error=run.error,
            skipped_task_ids=run.skipped_task_ids,
            invoked_task_ids=run.invoked_task_ids,
            final_output=run.current_input,
            plan=PlanResponse.from_plan(plan),
        )


class CancelResponse(BaseModel):
    plan_id: str
    cancelled: bool

"""Plan inspection, editing and execution endpoints.

Plans are keyed by the id of the conversation turn that produced them.
Editing is refused while a run is active for the plan; starting a run
while another is active cancels the active one first.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from todochain.api.v1.schemas.common import ErrorResponse
from todochain.api.v1.schemas.plan import (
    AddTaskRequest,
    CancelResponse,
    ExecuteRequest,
    PlanResponse,
    PlanUpdateRequest,
    ReorderRequest,
    RunResponse,
)
from todochain.core.task.editor import PlanEditor
from todochain.core.task.graph import PlanGraph, plan_to_graph
from todochain.core.task.models import Plan, Task, TaskPatch
from todochain.dependencies import (
    get_executor,
    get_plan_editor,
    get_plan_store,
    get_run_registry,
)
from todochain.engine.cancellation import CancellationToken
from todochain.engine.executor import ChainExecutor, ExecutionRun
from todochain.engine.runs import RunRegistry
from todochain.storage.plan_store import PlanStore
from todochain.utils.exceptions import PlanLockedError, PlanNotFoundError

router = APIRouter(prefix="/plans")

_NOT_FOUND = {404: {"model": ErrorResponse}}
_LOCKED = {409: {"model": ErrorResponse}}


async def _load_plan(store: PlanStore, plan_id: str) -> Plan:
    plan = await store.get(plan_id)
    if plan is None:
        raise PlanNotFoundError(plan_id)
    return plan


def _ensure_idle(registry: RunRegistry, plan_id: str) -> None:
    if registry.is_active(plan_id):
        raise PlanLockedError(plan_id)


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


@router.get(
    "/{plan_id}",
    response_model=PlanResponse,
    responses=_NOT_FOUND,
    summary="Get a plan",
)
async def get_plan(
    plan_id: str,
    store: PlanStore = Depends(get_plan_store),
) -> PlanResponse:
    return PlanResponse.from_plan(await _load_plan(store, plan_id))


@router.get(
    "/{plan_id}/graph",
    response_model=PlanGraph,
    responses=_NOT_FOUND,
    summary="Get a plan as a dependency graph",
)
async def get_plan_graph(
    plan_id: str,
    store: PlanStore = Depends(get_plan_store),
) -> PlanGraph:
    return plan_to_graph(await _load_plan(store, plan_id))


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


@router.put(
    "/{plan_id}",
    response_model=PlanResponse,
    responses=_LOCKED,
    summary="Create or replace a plan",
    description=(
        "Stores the supplied task list.  Unless ``rechain=false`` the "
        "dependencies are re-derived into a strict linear chain.  Task ids "
        "must be unique."
    ),
)
async def put_plan(
    plan_id: str,
    body: PlanUpdateRequest,
    rechain: bool = True,
    store: PlanStore = Depends(get_plan_store),
    editor: PlanEditor = Depends(get_plan_editor),
    registry: RunRegistry = Depends(get_run_registry),
) -> PlanResponse:
    _ensure_idle(registry, plan_id)
    plan = await store.get(plan_id) or Plan(plan_id=plan_id)
    await editor.replace_tasks(plan, body.tasks, rechain=rechain)
    return PlanResponse.from_plan(plan)


@router.post(
    "/{plan_id}/tasks",
    response_model=PlanResponse,
    responses={**_NOT_FOUND, **_LOCKED},
    summary="Add a task",
)
async def add_task(
    plan_id: str,
    body: AddTaskRequest,
    store: PlanStore = Depends(get_plan_store),
    editor: PlanEditor = Depends(get_plan_editor),
    registry: RunRegistry = Depends(get_run_registry),
) -> PlanResponse:
    _ensure_idle(registry, plan_id)
    plan = await _load_plan(store, plan_id)
    task = Task(
        title=body.title,
        description=body.description,
        agent_id=body.agent_id,
        input=body.input,
    )
    await editor.add_task(plan, task, index=body.index)
    return PlanResponse.from_plan(plan)


@router.patch(
    "/{plan_id}/tasks/{task_id}",
    response_model=PlanResponse,
    responses={**_NOT_FOUND, **_LOCKED},
    summary="Edit task fields",
)
async def edit_task(
    plan_id: str,
    task_id: str,
    patch: TaskPatch,
    store: PlanStore = Depends(get_plan_store),
    editor: PlanEditor = Depends(get_plan_editor),
    registry: RunRegistry = Depends(get_run_registry),
) -> PlanResponse:
    _ensure_idle(registry, plan_id)
    plan = await _load_plan(store, plan_id)
    await editor.edit_task(plan, task_id, patch)
    return PlanResponse.from_plan(plan)


@router.delete(
    "/{plan_id}/tasks/{task_id}",
    response_model=PlanResponse,
    responses={**_NOT_FOUND, **_LOCKED},
    summary="Delete a task",
)
async def delete_task(
    plan_id: str,
    task_id: str,
    store: PlanStore = Depends(get_plan_store),
    editor: PlanEditor = Depends(get_plan_editor),
    registry: RunRegistry = Depends(get_run_registry),
) -> PlanResponse:
    _ensure_idle(registry, plan_id)
    plan = await _load_plan(store, plan_id)
    await editor.delete_task(plan, task_id)
    return PlanResponse.from_plan(plan)


@router.post(
    "/{plan_id}/reorder",
    response_model=PlanResponse,
    responses={**_NOT_FOUND, **_LOCKED, 422: {"model": ErrorResponse}},
    summary="Move a task to a new position",
)
async def reorder_tasks(
    plan_id: str,
    body: ReorderRequest,
    store: PlanStore = Depends(get_plan_store),
    editor: PlanEditor = Depends(get_plan_editor),
    registry: RunRegistry = Depends(get_run_registry),
) -> PlanResponse:
    _ensure_idle(registry, plan_id)
    plan = await _load_plan(store, plan_id)
    await editor.reorder(plan, body.from_index, body.to_index)
    return PlanResponse.from_plan(plan)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@router.post(
    "/{plan_id}/execute",
    response_model=RunResponse,
    responses=_NOT_FOUND,
    summary="Execute a plan as a chain",
    description=(
        "Runs every task in dependency order, one at a time, feeding each "
        "output into the next task.  Completed tasks are reused, so a "
        "re-run resumes from the first task that has not completed."
    ),
)
async def execute_plan(
    plan_id: str,
    body: ExecuteRequest,
    store: PlanStore = Depends(get_plan_store),
    executor: ChainExecutor = Depends(get_executor),
    registry: RunRegistry = Depends(get_run_registry),
) -> RunResponse:
    await _load_plan(store, plan_id)
    holder: dict[str, Plan] = {}

    async def runner(token: CancellationToken) -> ExecutionRun:
        # Reload after any superseded run has settled.
        plan = await _load_plan(store, plan_id)
        holder["plan"] = plan
        return await executor.run(plan, body.initial_input, cancel_token=token)

    run = await registry.start(plan_id, runner)
    return RunResponse.from_run(run, holder["plan"])


@router.post(
    "/{plan_id}/tasks/{task_id}/execute",
    response_model=RunResponse,
    responses={**_NOT_FOUND, **_LOCKED},
    summary="Execute a single task",
)
async def execute_single_task(
    plan_id: str,
    task_id: str,
    body: ExecuteRequest,
    store: PlanStore = Depends(get_plan_store),
    executor: ChainExecutor = Depends(get_executor),
    registry: RunRegistry = Depends(get_run_registry),
) -> RunResponse:
    _ensure_idle(registry, plan_id)
    plan = await _load_plan(store, plan_id)

    async def runner(token: CancellationToken) -> ExecutionRun:
        return await executor.execute_task(
            plan, task_id, body.initial_input, cancel_token=token
        )

    run = await registry.start(plan_id, runner)
    return RunResponse.from_run(run, plan)


@router.post(
    "/{plan_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel the active run of a plan",
)
async def cancel_plan_run(
    plan_id: str,
    registry: RunRegistry = Depends(get_run_registry),
) -> CancelResponse:
    return CancelResponse(plan_id=plan_id, cancelled=registry.cancel(plan_id))

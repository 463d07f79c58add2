"""FastAPI dependency functions for injection into endpoint handlers.

Long-lived services (plan store, agent invoker, executor, run registry) are
created once during the app lifespan and stored on ``app.state``; the
functions here simply look them up.  The plan editor is a thin wrapper and
is built per call.
"""

from __future__ import annotations

from fastapi import Request

from todochain.config import Settings, settings
from todochain.core.agents.base import AgentInvocationService
from todochain.core.agents.client import HttpAgentInvoker
from todochain.core.task.editor import PlanEditor
from todochain.core.task.scheduler import TaskScheduler
from todochain.engine.executor import ChainExecutor
from todochain.engine.runs import RunRegistry
from todochain.storage.plan_store import PlanStore, create_plan_store
from todochain.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Service construction (called from the app lifespan)
# ---------------------------------------------------------------------------

def build_plan_store(config: Settings = settings) -> PlanStore:
    return create_plan_store(config.plan_store_backend, config.plan_store_path)


def build_agent_service(config: Settings = settings) -> AgentInvocationService:
    return HttpAgentInvoker(
        config.agent_service_url,
        timeout_seconds=config.agent_timeout_seconds,
        invoke_path=config.agent_invoke_path,
    )


def build_executor(
    service: AgentInvocationService,
    store: PlanStore,
    config: Settings = settings,
) -> ChainExecutor:
    return ChainExecutor(
        service,
        store=store,
        scheduler=TaskScheduler(config.ordering_strategy),
        abort_in_flight=config.abort_in_flight,
    )


# ---------------------------------------------------------------------------
# Request-scoped lookups
# ---------------------------------------------------------------------------

def get_plan_store(request: Request) -> PlanStore:
    """Return the plan store stored on ``app.state``."""
    return request.app.state.plan_store


def get_executor(request: Request) -> ChainExecutor:
    return request.app.state.executor


def get_run_registry(request: Request) -> RunRegistry:
    return request.app.state.run_registry


def get_plan_editor(request: Request) -> PlanEditor:
    """Construct a :class:`PlanEditor` bound to the app's plan store."""
    return PlanEditor(get_plan_store(request))

import asyncio

import pytest

from todochain.core.agents.base import (
    AgentInvocationService,
    InvocationRequest,
    InvocationResult,
)
from todochain.core.task.models import Plan, Task
from todochain.storage.plan_store import InMemoryPlanStore


class FakeAgentService(AgentInvocationService):
    """Agent stub: output is ``"<title> <input>"``.

    Tasks whose title is in *fail_titles* report failure; titles in
    *raise_titles* raise a transport-style error.  When *gate* is set, every
    call waits on it before answering.
    """

    def __init__(self, fail_titles=(), raise_titles=(), gate: asyncio.Event | None = None):
        self.fail_titles = set(fail_titles)
        self.raise_titles = set(raise_titles)
        self.gate = gate
        self.calls: list[InvocationRequest] = []
        self.started = asyncio.Event()

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        self.calls.append(request)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        title = request.task.title
        if title in self.raise_titles:
            raise ConnectionError(f"connection reset while running {title}")
        if title in self.fail_titles:
            return InvocationResult(success=False, error=f"{title} exploded")
        updated = request.task.model_copy(deep=True)
        updated.output = f"{title} {request.current_input}"
        updated.duration = 10.0
        return InvocationResult(success=True, task=updated)

    @property
    def invoked_titles(self) -> list[str]:
        return [c.task.title for c in self.calls]


def make_chain(*titles: str, plan_id: str = "plan-1") -> Plan:
    """Build a strict linear chain of pending tasks."""
    tasks: list[Task] = []
    for title in titles:
        deps = [tasks[-1].id] if tasks else []
        tasks.append(Task(title=title, dependencies=deps))
    return Plan(plan_id=plan_id, tasks=tasks)


@pytest.fixture
def fake_service():
    return FakeAgentService()


@pytest.fixture
def store():
    return InMemoryPlanStore()


@pytest.fixture
def chain():
    return make_chain("A", "B", "C", "D")


@pytest.fixture
def chain_factory():
    return make_chain


@pytest.fixture
def agent_factory():
    return FakeAgentService

"""Tests for the plan editor and the strict linear chain invariant."""
import pytest

from todochain.core.task.editor import PlanEditor, is_linear_chain
from todochain.core.task.models import Plan, Task, TaskPatch, TaskStatus
from todochain.utils.exceptions import (
    DuplicateTaskError,
    FrozenTaskError,
    InvalidReorderError,
    PlanLockedError,
    TaskNotFoundError,
)


def _assert_linear(plan: Plan):
    for idx, task in enumerate(plan.tasks):
        expected = [] if idx == 0 else [plan.tasks[idx - 1].id]
        assert task.dependencies == expected


class TestStructuralEdits:
    @pytest.mark.asyncio
    async def test_add_appends_and_chains(self, store, chain):
        editor = PlanEditor(store)
        task = await editor.add_task(chain, Task(title="E"))
        assert chain.tasks[-1] is task
        _assert_linear(chain)

    @pytest.mark.asyncio
    async def test_add_at_index(self, store, chain):
        editor = PlanEditor(store)
        task = await editor.add_task(chain, Task(title="First"), index=0)
        assert chain.tasks[0] is task
        assert task.dependencies == []
        _assert_linear(chain)

    @pytest.mark.asyncio
    async def test_add_duplicate_id(self, store, chain):
        editor = PlanEditor(store)
        with pytest.raises(DuplicateTaskError):
            await editor.add_task(chain, Task(id=chain.tasks[0].id, title="again"))

    @pytest.mark.asyncio
    async def test_delete_rechains_remaining(self, store, chain):
        editor = PlanEditor(store)
        deleted_id = chain.tasks[1].id
        await editor.delete_task(chain, deleted_id)

        assert len(chain.tasks) == 3
        _assert_linear(chain)
        assert all(deleted_id not in t.dependencies for t in chain.tasks)

    @pytest.mark.asyncio
    async def test_delete_first_task(self, store, chain):
        editor = PlanEditor(store)
        await editor.delete_task(chain, chain.tasks[0].id)
        assert [t.title for t in chain.tasks] == ["B", "C", "D"]
        _assert_linear(chain)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, store, chain):
        with pytest.raises(TaskNotFoundError):
            await PlanEditor(store).delete_task(chain, "nope")

    @pytest.mark.asyncio
    async def test_reorder(self, store, chain):
        editor = PlanEditor(store)
        await editor.reorder(chain, 3, 1)
        assert [t.title for t in chain.tasks] == ["A", "D", "B", "C"]
        _assert_linear(chain)

    @pytest.mark.asyncio
    async def test_reorder_completed_task_refused(self, store, chain):
        chain.tasks[0].status = TaskStatus.COMPLETED
        with pytest.raises(FrozenTaskError):
            await PlanEditor(store).reorder(chain, 0, 2)

    @pytest.mark.asyncio
    async def test_reorder_across_frozen_position_refused(self, store, chain):
        chain.tasks[1].status = TaskStatus.COMPLETED
        with pytest.raises(FrozenTaskError):
            await PlanEditor(store).reorder(chain, 3, 0)

    @pytest.mark.asyncio
    async def test_failed_task_may_move(self, store, chain):
        chain.tasks[0].status = TaskStatus.COMPLETED
        chain.tasks[2].status = TaskStatus.FAILED
        await PlanEditor(store).reorder(chain, 2, 3)
        assert [t.title for t in chain.tasks] == ["A", "B", "D", "C"]

    @pytest.mark.asyncio
    async def test_reorder_out_of_range(self, store, chain):
        with pytest.raises(InvalidReorderError):
            await PlanEditor(store).reorder(chain, 0, 9)

    @pytest.mark.asyncio
    async def test_locked_while_in_progress(self, store, chain):
        chain.tasks[2].status = TaskStatus.IN_PROGRESS
        with pytest.raises(PlanLockedError):
            await PlanEditor(store).delete_task(chain, chain.tasks[0].id)

    @pytest.mark.asyncio
    async def test_mutations_are_persisted(self, store, chain):
        editor = PlanEditor(store)
        await editor.reorder(chain, 0, 1)
        stored = await store.get(chain.plan_id)
        assert [t.title for t in stored.tasks] == ["B", "A", "C", "D"]
        assert is_linear_chain(stored.tasks)


class TestFieldEdits:
    @pytest.mark.asyncio
    async def test_only_patched_fields_change(self, store, chain):
        target = chain.tasks[2]
        target.dependencies = ["custom"]
        original_description = target.description

        await PlanEditor(store).edit_task(chain, target.id, TaskPatch(title="Renamed"))

        assert target.title == "Renamed"
        assert target.description == original_description
        assert target.dependencies == ["custom"]

    @pytest.mark.asyncio
    async def test_editing_completed_task_keeps_status(self, store, chain):
        target = chain.tasks[0]
        target.status = TaskStatus.COMPLETED
        await PlanEditor(store).edit_task(
            chain, target.id, TaskPatch(description="new", input={"body": {"q": "x"}})
        )
        assert target.status == TaskStatus.COMPLETED
        assert target.input == {"body": {"q": "x"}}

    @pytest.mark.asyncio
    async def test_clearing_agent_falls_back_to_auto(self, store, chain):
        target = chain.tasks[0]
        target.agent_id = "summariser"
        await PlanEditor(store).edit_task(chain, target.id, TaskPatch(agent_id=None))
        assert target.agent_id == "auto"


class TestEnsureLinearChain:
    @pytest.mark.asyncio
    async def test_noop_when_aligned(self, store, chain):
        assert await PlanEditor(store).ensure_linear_chain(chain) is False
        assert await store.get(chain.plan_id) is None

    @pytest.mark.asyncio
    async def test_rechains_generated_plan(self, store):
        plan = Plan(
            plan_id="p",
            tasks=[Task(title="A"), Task(title="B", dependencies=["Step 1"]), Task(title="C")],
        )
        assert await PlanEditor(store).ensure_linear_chain(plan) is True
        _assert_linear(plan)
        assert await store.get("p") is not None


class TestReplaceTasks:
    @pytest.mark.asyncio
    async def test_replaces_and_rechains(self, store, chain):
        new_tasks = [Task(title="X"), Task(title="Y", dependencies=["Step 1"])]
        await PlanEditor(store).replace_tasks(chain, new_tasks)

        assert [t.title for t in chain.tasks] == ["X", "Y"]
        _assert_linear(chain)
        assert [t.title for t in (await store.get(chain.plan_id)).tasks] == ["X", "Y"]

    @pytest.mark.asyncio
    async def test_keeps_dependencies_without_rechain(self, store, chain):
        new_tasks = [Task(title="X"), Task(title="Y", dependencies=["Step 1"])]
        await PlanEditor(store).replace_tasks(chain, new_tasks, rechain=False)
        assert chain.tasks[1].dependencies == ["Step 1"]

    @pytest.mark.asyncio
    async def test_duplicate_ids_refused(self, store, chain):
        original = list(chain.tasks)
        new_tasks = [Task(id="x", title="X"), Task(id="x", title="Y")]

        with pytest.raises(DuplicateTaskError):
            await PlanEditor(store).replace_tasks(chain, new_tasks)
        assert chain.tasks == original
        assert await store.get(chain.plan_id) is None

"""Tests for the chain executor state machine."""
import asyncio

import pytest

from todochain.core.task.models import Plan, Task, TaskStatus
from todochain.core.task.scheduler import TaskScheduler
from todochain.engine.cancellation import CancellationToken
from todochain.engine.executor import ChainExecutor, RunState
from todochain.utils.exceptions import CyclicDependencyError, TaskNotFoundError


def _titles(tasks):
    return [t.title for t in tasks]


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_linear_chain_forwards_outputs(self, fake_service, chain):
        run = await ChainExecutor(fake_service).run(chain, "x")

        assert run.state == RunState.FINISHED
        assert all(t.status == TaskStatus.COMPLETED for t in chain.tasks)
        assert fake_service.invoked_titles == ["A", "B", "C", "D"]
        assert chain.tasks[0].chain_metadata.input == "x"
        for prev, task in zip(chain.tasks, chain.tasks[1:]):
            assert task.chain_metadata.input == prev.output
        assert chain.tasks[-1].output == "D C B A x"
        assert run.current_input == "D C B A x"
        assert chain.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_worked_example_chains_sequentially(self, fake_service):
        a = Task(id="a", title="A")
        b = Task(id="b", title="B", dependencies=["Step 1"])
        c = Task(id="c", title="C", dependencies=["A"])
        plan = Plan(tasks=[a, b, c])

        await ChainExecutor(fake_service).run(plan, "x")

        assert [t.dependencies for t in plan.tasks] == [[], ["a"], ["a"]]
        assert a.output == "A x"
        assert b.output == "B A x"
        # C depends on A but consumes B's output: execution is a single chain.
        assert c.output == "C B A x"

    @pytest.mark.asyncio
    async def test_structured_output_forwarded_as_json(self, agent_factory):
        class StructuredService(agent_factory):
            async def invoke(self, request):
                result = await super().invoke(request)
                if request.task.title == "A":
                    result.task.output = {"rows": [1, 2]}
                return result

        plan = Plan(tasks=[Task(id="a", title="A"), Task(title="B", dependencies=["a"])])
        service = StructuredService()
        await ChainExecutor(service).run(plan, "x")
        assert service.calls[1].current_input == '{"rows": [1, 2]}'

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, fake_service, chain):
        await ChainExecutor(fake_service).run(chain, "x")
        task = chain.tasks[0]
        assert task.duration == 10.0
        assert task.completed_at is not None
        assert task.chain_metadata.executed_at is not None
        assert task.chain_metadata.error is None


class TestFailure:
    @pytest.mark.asyncio
    async def test_reported_failure_halts(self, agent_factory, chain):
        service = agent_factory(fail_titles={"B"})
        run = await ChainExecutor(service).run(chain, "x")

        assert run.state == RunState.HALTED
        assert run.failed_task_id == chain.tasks[1].id
        assert [t.status for t in chain.tasks] == [
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.PENDING,
            TaskStatus.PENDING,
        ]
        assert chain.tasks[1].chain_metadata.error == "B exploded"
        assert chain.tasks[1].chain_metadata.input == "A x"
        assert service.invoked_titles == ["A", "B"]
        assert chain.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_exception_halts(self, agent_factory, chain):
        service = agent_factory(raise_titles={"A"})
        run = await ChainExecutor(service).run(chain, "x")

        assert run.state == RunState.HALTED
        assert chain.tasks[0].status == TaskStatus.FAILED
        assert "connection reset" in chain.tasks[0].chain_metadata.error
        assert _titles(t for t in chain.tasks if t.status == TaskStatus.PENDING) == ["B", "C", "D"]

    @pytest.mark.asyncio
    async def test_rerun_resumes_from_failed_task(self, agent_factory, chain):
        failing = agent_factory(fail_titles={"C"})
        await ChainExecutor(failing).run(chain, "x")

        healthy = agent_factory()
        run = await ChainExecutor(healthy).run(chain, "x")

        assert run.state == RunState.FINISHED
        assert healthy.invoked_titles == ["C", "D"]
        assert healthy.calls[0].current_input == "B A x"
        assert chain.tasks[2].chain_metadata.error is None


class TestResume:
    @pytest.mark.asyncio
    async def test_completed_tasks_are_reused(self, fake_service, chain):
        chain.tasks[0].status = TaskStatus.COMPLETED
        chain.tasks[0].output = "stored A"
        chain.tasks[1].status = TaskStatus.COMPLETED
        chain.tasks[1].output = "stored B"

        run = await ChainExecutor(fake_service).run(chain, "x")

        assert fake_service.invoked_titles == ["C", "D"]
        assert fake_service.calls[0].current_input == "stored B"
        assert run.completed_task_ids == {t.id for t in chain.tasks}

    @pytest.mark.asyncio
    async def test_completed_task_without_output_keeps_input(self, fake_service, chain):
        chain.tasks[0].status = TaskStatus.COMPLETED
        await ChainExecutor(fake_service).run(chain, "x")
        assert fake_service.calls[0].current_input == "x"


class TestUnmetDependencies:
    @pytest.mark.asyncio
    async def test_unresolvable_dependency_skips_task(self, fake_service):
        plan = Plan(
            tasks=[
                Task(id="a", title="A"),
                Task(id="b", title="B", dependencies=["missing"]),
                Task(id="c", title="C", dependencies=["a"]),
            ]
        )
        run = await ChainExecutor(fake_service).run(plan, "x")

        assert run.state == RunState.FINISHED
        assert run.skipped_task_ids == ["b"]
        assert plan.get_task("b").status == TaskStatus.PENDING
        assert fake_service.invoked_titles == ["A", "C"]

    @pytest.mark.asyncio
    async def test_cycle_rejected_before_execution(self, fake_service):
        plan = Plan(
            tasks=[
                Task(id="a", title="A", dependencies=["b"]),
                Task(id="b", title="B", dependencies=["a"]),
            ]
        )
        with pytest.raises(CyclicDependencyError):
            await ChainExecutor(fake_service).run(plan, "x")
        assert fake_service.calls == []
        assert all(t.status == TaskStatus.PENDING for t in plan.tasks)

    @pytest.mark.asyncio
    async def test_pairwise_strategy_skips_cycle(self, fake_service):
        plan = Plan(
            tasks=[
                Task(id="a", title="A", dependencies=["b"]),
                Task(id="b", title="B", dependencies=["a"]),
            ]
        )
        executor = ChainExecutor(fake_service, scheduler=TaskScheduler("pairwise"))
        run = await executor.run(plan, "x")
        assert run.state == RunState.FINISHED
        assert sorted(run.skipped_task_ids) == ["a", "b"]
        assert fake_service.calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_first_task(self, fake_service, chain):
        token = CancellationToken()
        token.cancel()
        run = await ChainExecutor(fake_service).run(chain, "x", cancel_token=token)

        assert run.state == RunState.CANCELLED
        assert fake_service.calls == []
        assert all(t.status == TaskStatus.PENDING for t in chain.tasks)

    @pytest.mark.asyncio
    async def test_cancel_at_task_boundary(self, fake_service, chain):
        token = CancellationToken()

        def on_completed(task, result):
            if task.title == "B":
                token.cancel()

        run = await ChainExecutor(fake_service).run(
            chain, "x", cancel_token=token, on_task_completed=on_completed
        )

        assert run.state == RunState.CANCELLED
        assert _titles(t for t in chain.tasks if t.status == TaskStatus.COMPLETED) == ["A", "B"]
        assert _titles(t for t in chain.tasks if t.status == TaskStatus.PENDING) == ["C", "D"]

    @pytest.mark.asyncio
    async def test_abort_in_flight_restores_status(self, agent_factory, chain):
        gate = asyncio.Event()
        service = agent_factory(gate=gate)
        token = CancellationToken()

        execution = asyncio.create_task(
            ChainExecutor(service).run(chain, "x", cancel_token=token)
        )
        await service.started.wait()
        assert chain.tasks[0].status == TaskStatus.IN_PROGRESS
        token.cancel()
        run = await execution

        assert run.state == RunState.CANCELLED
        assert all(t.status == TaskStatus.PENDING for t in chain.tasks)
        assert len(service.calls) == 1

    @pytest.mark.asyncio
    async def test_deferred_cancel_lets_call_finish(self, agent_factory, chain):
        gate = asyncio.Event()
        service = agent_factory(gate=gate)
        token = CancellationToken()

        executor = ChainExecutor(service, abort_in_flight=False)
        execution = asyncio.create_task(executor.run(chain, "x", cancel_token=token))
        await service.started.wait()
        token.cancel()
        gate.set()
        run = await execution

        assert run.state == RunState.CANCELLED
        assert chain.tasks[0].status == TaskStatus.COMPLETED
        assert _titles(t for t in chain.tasks if t.status == TaskStatus.PENDING) == ["B", "C", "D"]


class TestNotificationsAndPersistence:
    @pytest.mark.asyncio
    async def test_callback_once_per_completed_task(self, fake_service, chain):
        seen = []
        executor = ChainExecutor(fake_service, on_task_completed=lambda t, r: seen.append(t.title))
        await executor.run(chain, "x")
        assert seen == ["A", "B", "C", "D"]

    @pytest.mark.asyncio
    async def test_async_callback_failure_does_not_stop_run(self, fake_service, chain):
        async def broken(task, result):
            raise RuntimeError("chat unavailable")

        executor = ChainExecutor(fake_service, on_task_completed=broken)
        run = await executor.run(chain, "x")
        assert run.state == RunState.FINISHED

        await asyncio.sleep(0.01)
        assert not executor._pending_notifications

    @pytest.mark.asyncio
    async def test_hanging_async_callback_does_not_block_run(self, fake_service, store, chain):
        never = asyncio.Event()
        seen = []

        async def hangs(task, result):
            seen.append(task.title)
            await never.wait()

        executor = ChainExecutor(fake_service, store=store, on_task_completed=hangs)
        run = await asyncio.wait_for(executor.run(chain, "x"), timeout=1.0)

        assert run.state == RunState.FINISHED
        assert run.finished_at is not None
        stored = await store.get(chain.plan_id)
        assert all(t.status == TaskStatus.COMPLETED for t in stored.tasks)

        await asyncio.sleep(0.01)
        assert seen == ["A", "B", "C", "D"]
        assert len(executor._pending_notifications) == 4

        await executor.aclose()
        assert not executor._pending_notifications

    @pytest.mark.asyncio
    async def test_plan_persisted(self, fake_service, store, chain):
        await ChainExecutor(fake_service, store=store).run(chain, "x")
        stored = await store.get(chain.plan_id)
        assert all(t.status == TaskStatus.COMPLETED for t in stored.tasks)

    @pytest.mark.asyncio
    async def test_failure_persisted(self, agent_factory, store, chain):
        service = agent_factory(fail_titles={"A"})
        await ChainExecutor(service, store=store).run(chain, "x")
        stored = await store.get(chain.plan_id)
        assert stored.tasks[0].status == TaskStatus.FAILED
        assert stored.tasks[0].chain_metadata.error == "A exploded"


class TestExecuteSingleTask:
    @pytest.mark.asyncio
    async def test_runs_one_task(self, fake_service, chain):
        target = chain.tasks[2]
        run = await ChainExecutor(fake_service).execute_task(chain, target.id, "hello")

        assert run.state == RunState.FINISHED
        assert target.output == "C hello"
        assert [t.status for t in chain.tasks].count(TaskStatus.COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_unknown_task(self, fake_service, chain):
        with pytest.raises(TaskNotFoundError):
            await ChainExecutor(fake_service).execute_task(chain, "nope", "hello")

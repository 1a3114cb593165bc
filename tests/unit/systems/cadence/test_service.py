"""Unit tests for the attention cycle service wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from ecan.config import CadenceConfig
from ecan.systems.attention.monitor import AttentionMonitor
from ecan.systems.cadence.clock import CycleScheduler, ManualClock
from ecan.systems.cadence.service import AttentionCycleService, to_distributed_task
from ecan.systems.coordinator.coordinator import AttentionCoordinator
from ecan.systems.episodic.sink import InMemoryEpisodicSink
from ecan.systems.gate.gate import TaskGate
from ecan.systems.gate.types import TaskMessage, TaskStatus


def _make_task(task_id: int, kernels: list[str], **kwargs) -> TaskMessage:
    kwargs.setdefault("priority", 0.6)
    kwargs.setdefault("estimated_resources", {"compute": 10, "memory": 10, "bandwidth": 0})
    return TaskMessage(task_id=task_id, query=f"task {task_id}", required_kernels=kernels, **kwargs)


def _make_service(**kwargs) -> tuple[AttentionCycleService, InMemoryEpisodicSink]:
    sink = InMemoryEpisodicSink()
    return AttentionCycleService(episodic_sink=sink, **kwargs), sink


class TestProjection:
    def test_to_distributed_task(self):
        task = _make_task(7, ["task-manager", ""], priority=3.0, deadline=123.0, category="cpu")
        distributed = to_distributed_task(task)
        assert distributed.id == "7"
        assert distributed.name == "task 7"
        assert distributed.priority == 1.0
        assert distributed.required_kernels == ["task-manager"]
        assert distributed.total_resources == pytest.approx(20.0)
        assert distributed.deadline == 123.0
        assert distributed.context["category"] == "cpu"


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_admitted_tasks_feed_coordinator(self):
        service, sink = _make_service()
        queue = [
            _make_task(1, ["task-manager"]),
            _make_task(2, ["semantic-memory"], dependencies=[1], priority=0.9),
        ]

        report = await service.run_cycle(queue)

        assert report.cycle_number == 1
        assert report.gate.executed == 1
        assert report.gate.deferred == 1
        assert report.admitted == ["1"]
        assert report.allocation.task_ids == ["1"]
        assert set(report.allocation.demand) == {"task-manager"}
        assert 0.0 <= report.verification.optimization_score <= 1.0
        assert queue[1].status == TaskStatus.DEFERRED
        assert sink.latest("allocation_cycle") is not None

    @pytest.mark.asyncio
    async def test_deferred_task_admitted_next_cycle(self):
        service, _ = _make_service()
        queue = [
            _make_task(1, ["task-manager"]),
            _make_task(2, ["semantic-memory"], dependencies=[1], priority=0.9),
        ]
        await service.run_cycle(queue)
        # Completed tasks leave the queue between cycles
        remaining = [t for t in queue if t.status != TaskStatus.COMPLETED]

        report = await service.run_cycle(remaining)

        assert report.cycle_number == 2
        assert report.admitted == ["2"]
        assert service.stats()["cycles"] == 2
        assert service.stats()["admitted"] == 2

    @pytest.mark.asyncio
    async def test_repeated_id_hands_on_the_task_that_ran(self):
        service, _ = _make_service()
        high = _make_task(1, ["task-manager"], priority=0.9)
        low = _make_task(1, ["semantic-memory"], priority=0.1)

        report = await service.run_cycle([high, low])

        assert high.status == TaskStatus.COMPLETED
        assert low.status == TaskStatus.PENDING
        assert report.admitted == ["1"]
        assert list(report.allocation.demand) == ["task-manager"]

    @pytest.mark.asyncio
    async def test_failed_execution_still_handed_on(self):
        executor = AsyncMock(side_effect=RuntimeError("boom"))
        service, _ = _make_service(gate=TaskGate(executor=executor))
        task = _make_task(1, ["task-manager"], max_retries=0)

        report = await service.run_cycle([task])

        # Dispatched tasks are handed on even when their body failed
        assert report.gate.failed == 1
        assert report.admitted == ["1"]
        assert task.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_monitor_report_attached_when_monitored(self):
        monitor = AttentionMonitor()
        service, _ = _make_service(coordinator=AttentionCoordinator(monitor=monitor))

        report = await service.run_cycle([_make_task(1, ["task-manager"])])

        assert report.monitor is not None
        assert report.monitor.result_id == report.allocation.id
        assert monitor.stats()["observed"] == 1

        unmonitored, _ = _make_service()
        assert (await unmonitored.run_cycle([])).monitor is None

    @pytest.mark.asyncio
    async def test_empty_queue_still_allocates(self):
        service, _ = _make_service()
        report = await service.run_cycle([])
        assert report.admitted == []
        assert len(report.allocation.allocations) == 4
        assert service.last_report is report


class TestScheduling:
    @pytest.mark.asyncio
    async def test_attach_runs_on_cadence(self):
        clock = ManualClock()
        scheduler = CycleScheduler(clock=clock)
        service, _ = _make_service(config=CadenceConfig(cycle_interval_s=5.0))
        batches = [[_make_task(1, ["task-manager"])], [_make_task(2, ["ai-coordinator"])]]

        handle = service.attach(scheduler, lambda: batches.pop(0) if batches else [])
        assert handle.interval_s == 5.0

        clock.advance(5.0)
        await scheduler.tick()
        assert service.last_report.admitted == ["1"]

        clock.advance(5.0)
        await scheduler.tick()
        assert service.last_report.admitted == ["2"]
        assert handle.runs == 2

    @pytest.mark.asyncio
    async def test_attach_accepts_async_source(self):
        clock = ManualClock()
        scheduler = CycleScheduler(clock=clock)
        service, _ = _make_service()

        async def source() -> list[TaskMessage]:
            return [_make_task(9, ["autonomy-monitor"])]

        service.attach(scheduler, source, interval_s=1.0)
        clock.advance(1.0)
        await scheduler.tick()
        assert service.last_report.admitted == ["9"]

    @pytest.mark.asyncio
    async def test_source_failure_is_contained(self):
        clock = ManualClock()
        scheduler = CycleScheduler(clock=clock)
        service, _ = _make_service()

        def source() -> list[TaskMessage]:
            raise ConnectionError("queue offline")

        handle = service.attach(scheduler, source, interval_s=1.0)
        clock.advance(1.0)
        await scheduler.tick()
        assert handle.errors == 1
        assert service.last_report is None

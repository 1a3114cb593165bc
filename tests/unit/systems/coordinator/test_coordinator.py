"""
Unit tests for the distributed task coordinator.

Demand derivation, allocation read-back, bottleneck diagnosis, attention
shifting, verification scoring and episodic recording.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from ecan.config import AttentionConfig, CoordinatorConfig
from ecan.systems.attention.descriptor import KernelRegistry
from ecan.systems.attention.kernel import AttentionKernel
from ecan.systems.attention.types import Goal
from ecan.systems.coordinator import (
    AllocationResult,
    AttentionCoordinator,
    DistributedTask,
    KernelAllocation,
    ResourceOptimization,
    StaticKernel,
    default_kernels,
)
from ecan.systems.episodic.sink import InMemoryEpisodicSink

NOW = 1_700_000_000.0


# ─── Helpers ──────────────────────────────────────────────────────


def _make_coordinator(**kwargs) -> AttentionCoordinator:
    kwargs.setdefault("clock", lambda: NOW)
    return AttentionCoordinator(**kwargs)


def _make_task(task_id: str, kernels: list[str], priority: float = 0.5, **kwargs) -> DistributedTask:
    return DistributedTask(
        id=task_id,
        name=task_id,
        priority=priority,
        required_kernels=kernels,
        estimated_resources=kwargs.pop("resources", {"compute": 10, "memory": 5, "bandwidth": 5}),
        **kwargs,
    )


def _make_kernel(efficiency: float) -> StaticKernel:
    return StaticKernel(
        "k",
        performance={"efficiency": efficiency, "accuracy": 0.8},
        state={"load": 1},
        usage={"cpu": 0.2, "memory": 0.2, "bandwidth": 0.2},
        output={"quality": 0.8, "throughput": 50},
    )


async def _processed() -> tuple[AttentionCoordinator, AllocationResult]:
    coordinator = _make_coordinator()
    return coordinator, await coordinator.process_distributed_tasks([])


# ─── Batch Processing ─────────────────────────────────────────────


class TestProcessDistributedTasks:
    @pytest.mark.asyncio
    async def test_empty_batch_allocates_every_registered_kernel(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks([])
        assert set(result.allocations) == set(default_kernels())
        assert 0.0 <= result.optimization.efficiency <= 1.0
        assert result.demand == {}
        assert result.task_ids == []

    @pytest.mark.asyncio
    async def test_none_tasks_and_goals(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks(None, None)
        assert len(result.allocations) == 4

    @pytest.mark.asyncio
    async def test_allocation_values_bounded(self):
        coordinator = _make_coordinator()
        tasks = [_make_task("t1", ["semantic-memory", "task-manager"], priority=0.9)]
        result = await coordinator.process_distributed_tasks(tasks)
        for allocation in result.allocations.values():
            for value in (allocation.sti, allocation.lti, allocation.activation, allocation.utility):
                assert 0.0 <= value <= 1.0
            assert allocation.granted_resources >= 0.0
        assert result.optimization.allocation.keys() == result.allocations.keys()
        assert result.field.active_kernels == 4

    @pytest.mark.asyncio
    async def test_allocations_limited_to_field_capacity(self):
        kernel = AttentionKernel(config=AttentionConfig(max_kernels=2))
        coordinator = _make_coordinator(kernel=kernel)
        result = await coordinator.process_distributed_tasks([])
        assert len(result.allocations) == 2

    @pytest.mark.asyncio
    async def test_malformed_tasks_skipped_or_repaired(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks(
            [
                "not-a-task",
                42,
                {"id": "ok", "priority": 7, "required_kernels": ["task-manager", "", None, "task-manager"]},
            ]
        )
        assert result.task_ids == ["ok"]
        assert result.demand["task-manager"].priority == pytest.approx(1.0)
        assert result.demand["task-manager"].task_ids == ["ok"]

    @pytest.mark.asyncio
    async def test_invalid_name_and_context_ignored_not_task(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks(
            [
                {
                    "id": "t",
                    "name": None,
                    "priority": 0.9,
                    "required_kernels": ["semantic-memory"],
                    "context": "x",
                },
                {"id": "u", "name": 12, "context": [("a", 1)], "required_kernels": ["task-manager"]},
            ]
        )
        assert result.task_ids == ["t", "u"]
        assert result.demand["semantic-memory"].priority == pytest.approx(0.9)
        assert result.demand["semantic-memory"].task_ids == ["t"]

        task = DistributedTask.model_validate({"name": 12, "context": [("a", 1)]})
        assert task.name == "12"
        assert task.context == {}

    @pytest.mark.asyncio
    async def test_unregistered_kernel_reported(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks([_make_task("t1", ["ghost"])])
        assert "ghost" not in result.allocations
        assert any(b.startswith("ghost:") and "not registered" in b for b in result.optimization.bottlenecks)
        assert "Task t1: Insufficient attention allocation" in result.optimization.bottlenecks
        assert "Register the missing kernels or reroute their tasks" in result.optimization.recommendations

    @pytest.mark.asyncio
    async def test_oversubscribed_kernel_reported(self):
        coordinator = _make_coordinator()
        task = _make_task(
            "big", ["task-manager"], resources={"compute": 5000, "memory": 0, "bandwidth": 0}
        )
        result = await coordinator.process_distributed_tasks([task])
        assert any("task-manager: Over-subscribed" in b for b in result.optimization.bottlenecks)
        assert result.optimization.utilization == pytest.approx(1.0)
        assert any("saturation" in r for r in result.optimization.recommendations)

    @pytest.mark.asyncio
    async def test_low_efficiency_recommendations(self):
        coordinator = _make_coordinator(kernels={"k": _make_kernel(0.2)})
        result = await coordinator.process_distributed_tasks([])
        assert result.optimization.efficiency == pytest.approx(0.2)
        assert result.optimization.recommendations[:2] == [
            "Consider redistributing attention to higher-performing kernels",
            "Investigate low-utility kernel configurations",
        ]
        assert "Low efficiency detected - attention allocation needs improvement" in (
            result.meta_analysis.insights
        )

    @pytest.mark.asyncio
    async def test_effectiveness_is_mean_of_efficiency_and_utilization(self):
        coordinator = _make_coordinator()
        result = await coordinator.process_distributed_tasks([_make_task("t1", ["task-manager"])])
        opt = result.optimization
        assert result.meta_analysis.effectiveness == pytest.approx((opt.efficiency + opt.utilization) / 2)

    @pytest.mark.asyncio
    async def test_efficiency_trend_insight(self):
        coordinator = _make_coordinator(kernels={"k": _make_kernel(0.95)})
        first = await coordinator.process_distributed_tasks([])
        assert "High efficiency achieved - attention allocation is well-optimized" in first.meta_analysis.insights

        coordinator.register_kernel("k", _make_kernel(0.3))
        second = await coordinator.process_distributed_tasks([])
        assert (
            "Attention allocation efficiency declining - consider policy adjustments"
            in second.meta_analysis.insights
        )
        assert len(coordinator.optimization_history) == 2

    @pytest.mark.asyncio
    async def test_concurrent_batches_serialised(self):
        coordinator = _make_coordinator()
        results = await asyncio.gather(
            *(coordinator.process_distributed_tasks([_make_task(f"t{i}", ["task-manager"])]) for i in range(5))
        )
        assert len({r.id for r in results}) == 5
        assert coordinator.get_current_state().batches_processed == 5
        assert coordinator.kernel.passes == 5


# ─── Demand ───────────────────────────────────────────────────────


class TestDemand:
    @pytest.mark.asyncio
    async def test_priorities_combine_per_kernel(self):
        coordinator = _make_coordinator()
        tasks = [
            _make_task("a", ["task-manager", "semantic-memory"], priority=0.5),
            _make_task("b", ["task-manager"], priority=0.5),
        ]
        result = await coordinator.process_distributed_tasks(tasks)
        assert result.demand["task-manager"].priority == pytest.approx(0.75)
        assert result.demand["semantic-memory"].priority == pytest.approx(0.5)
        # a's 20 units split over two kernels, plus all of b's
        assert result.demand["task-manager"].resources == pytest.approx(30.0)
        assert result.demand["task-manager"].task_ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_demand_goals_passed_to_kernel(self):
        coordinator = _make_coordinator()
        spy = MagicMock(wraps=coordinator.kernel.allocate_attention)
        coordinator.kernel.allocate_attention = spy
        system_goal = Goal(id="g", priority=0.4, tags=["memory"])

        await coordinator.process_distributed_tasks([_make_task("a", ["task-manager"], priority=0.6)], [system_goal])

        spy.assert_called_once()
        goals = spy.call_args.args[1]
        assert goals[0] is system_goal
        demand_goal = goals[1]
        assert demand_goal.id == "demand:task-manager"
        assert demand_goal.target_kernels == ["task-manager"]
        assert demand_goal.priority == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_deadline_boost(self):
        coordinator = _make_coordinator()
        tasks = [
            _make_task("due", ["task-manager"], priority=0.5, deadline=NOW),
            _make_task("late", ["semantic-memory"], priority=0.5, deadline=NOW - 100),
            _make_task("far", ["ai-coordinator"], priority=0.5, deadline=NOW + 10 * 3600),
            _make_task("half", ["autonomy-monitor"], priority=0.5, deadline=NOW + 1800),
        ]
        result = await coordinator.process_distributed_tasks(tasks)
        assert result.demand["task-manager"].priority == pytest.approx(0.75)
        assert result.demand["semantic-memory"].priority == pytest.approx(0.75)
        assert result.demand["ai-coordinator"].priority == pytest.approx(0.5)
        assert result.demand["autonomy-monitor"].priority == pytest.approx(0.625)

    @pytest.mark.asyncio
    async def test_deadline_boost_disabled(self):
        coordinator = _make_coordinator(config=CoordinatorConfig(max_deadline_boost=0.0))
        result = await coordinator.process_distributed_tasks(
            [_make_task("due", ["task-manager"], priority=0.5, deadline=NOW)]
        )
        assert result.demand["task-manager"].priority == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_demand_raises_attention(self):
        quiet = _make_coordinator()
        busy = _make_coordinator()
        baseline = await quiet.process_distributed_tasks([])
        demanded = await busy.process_distributed_tasks(
            [_make_task("a", ["autonomy-monitor"], priority=1.0)]
        )
        assert (
            demanded.allocations["autonomy-monitor"].goal_alignment
            > baseline.allocations["autonomy-monitor"].goal_alignment
        )


# ─── Attention Shifting ───────────────────────────────────────────


class TestAttentionShifting:
    @pytest.mark.asyncio
    async def test_new_urgent_task_shifts_attention(self):
        coordinator = _make_coordinator()
        task_a = _make_task("a", ["semantic-memory"], priority=0.4)
        task_b = _make_task("b", ["ai-coordinator", "autonomy-monitor"], priority=0.95)

        shift = await coordinator.simulate_attention_shifting([task_a], [task_b])

        analysis = shift.shift_analysis
        assert analysis.total_shift > 0
        assert len(analysis.kernel_shifts) > 0
        assert 0.0 <= analysis.adaptability <= 1.0
        assert analysis.max_shift <= analysis.total_shift
        assert analysis.demand_change > 0
        assert shift.shifted.task_ids == ["a", "b"]
        assert shift.initial.task_ids == ["a"]

    @pytest.mark.asyncio
    async def test_unchanged_demand_has_zero_adaptability(self):
        coordinator = _make_coordinator()
        shift = await coordinator.simulate_attention_shifting([], [])
        assert shift.shift_analysis.demand_change == 0.0
        assert shift.shift_analysis.adaptability == 0.0

    @pytest.mark.asyncio
    async def test_field_decays_between_batches(self):
        coordinator = _make_coordinator()
        spy = MagicMock(wraps=coordinator.kernel.decay_field)
        coordinator.kernel.decay_field = spy
        await coordinator.simulate_attention_shifting([], [])
        spy.assert_called_once_with(1)


# ─── Verification ─────────────────────────────────────────────────


class TestVerification:
    @pytest.mark.asyncio
    async def test_all_criteria_met(self):
        coordinator, base = await _processed()
        candidate = base.model_copy(
            update={"optimization": ResourceOptimization(efficiency=0.8, utilization=0.5)}
        )
        report = coordinator.verify_resource_optimization(candidate, [])
        assert report.verified is True
        assert report.optimization_score == pytest.approx(1.0)
        assert set(report.details) == {"efficiency", "utilization", "bottlenecks", "task_coverage"}
        assert report.details["task_coverage"].value == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_partial_credit(self):
        coordinator, base = await _processed()
        candidate = base.model_copy(
            update={
                "optimization": ResourceOptimization(
                    efficiency=0.3,
                    utilization=0.975,
                    bottlenecks=[f"b{i}" for i in range(10)],
                )
            }
        )
        report = coordinator.verify_resource_optimization(candidate, [])
        assert report.verified is False
        assert report.details["efficiency"].met is False
        assert report.details["utilization"].met is False
        assert report.details["bottlenecks"].met is False
        # (0.5 + 0.5 + 0.5 + 1.0) / 4
        assert report.optimization_score == pytest.approx(0.625)

    @pytest.mark.asyncio
    async def test_task_coverage(self):
        coordinator, base = await _processed()
        candidate = base.model_copy(
            update={
                "allocations": {"a": KernelAllocation(kernel_id="a", activation=0.4)},
                "optimization": ResourceOptimization(efficiency=0.8, utilization=0.5),
            }
        )
        tasks = [{"id": "t", "priority": 1.0, "required_kernels": ["a", "missing"]}]
        report = coordinator.verify_resource_optimization(candidate, tasks)
        assert report.details["task_coverage"].value == pytest.approx(0.2)
        assert report.verified is False
        # (1 + 1 + 1 + 0.25) / 4
        assert report.optimization_score == pytest.approx(0.8125)

    @pytest.mark.asyncio
    async def test_score_bounded_for_real_result(self):
        coordinator = _make_coordinator()
        tasks = [_make_task("t1", ["task-manager"]), _make_task("t2", ["ghost"])]
        result = await coordinator.process_distributed_tasks(tasks)
        report = coordinator.verify_resource_optimization(result, tasks)
        assert 0.0 <= report.optimization_score <= 1.0


# ─── State & Wiring ───────────────────────────────────────────────


class TestState:
    @pytest.mark.asyncio
    async def test_current_state_snapshot(self):
        coordinator = _make_coordinator()
        state = coordinator.get_current_state()
        assert state.batches_processed == 0
        assert state.allocations == {}

        await coordinator.process_distributed_tasks([])
        state = coordinator.get_current_state()
        assert state.batches_processed == 1
        assert sorted(state.registered_kernels) == sorted(default_kernels())
        assert len(state.allocations) == 4
        assert state.field.passes == 1

        # Snapshots are detached copies
        state.economics.policies.taxation = 0.99
        assert coordinator.kernel.economics.policies.taxation != 0.99

    def test_register_and_unregister(self):
        coordinator = _make_coordinator(kernels={})
        coordinator.register_kernel("k", _make_kernel(0.5))
        assert "k" in coordinator.kernels
        assert coordinator.unregister_kernel("k") is True
        assert coordinator.unregister_kernel("k") is False

    def test_registers_descriptor(self):
        registry = KernelRegistry()
        _make_coordinator(registry=registry)
        assert "ecan-attention" in registry

    @pytest.mark.asyncio
    async def test_records_allocation_cycle_episode(self):
        sink = InMemoryEpisodicSink()
        coordinator = _make_coordinator(episodic_sink=sink)
        result = await coordinator.process_distributed_tasks([_make_task("t1", ["ghost"])])

        entry = sink.latest("allocation_cycle")
        assert entry is not None
        assert entry.metadata.extra["result_id"] == result.id
        assert "allocation_cycle" in entry.metadata.tags
        assert any("not registered" in o for o in entry.content.observations)
        assert 0.0 <= entry.metadata.importance <= 1.0

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_break_batch(self):
        sink = MagicMock()
        sink.record.side_effect = RuntimeError("disk full")
        coordinator = _make_coordinator(episodic_sink=sink)
        result = await coordinator.process_distributed_tasks([])
        assert len(result.allocations) == 4

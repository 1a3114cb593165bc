"""
ECAN — Distributed Task Coordinator

Maps a batch of distributed tasks onto kernel attention.

Each batch:
  1. sanitise tasks and derive a per-kernel demand vector
     (priority, boosted as deadlines approach)
  2. run one attention pass with the system goals plus one synthetic
     ``demand:<kernel>`` goal per demanded kernel
  3. read per-kernel allocations back from the field
  4. diagnose efficiency, utilisation and bottlenecks, and recommend
  5. meta-analyse attention patterns against the previous batch
  6. record an ``allocation_cycle`` episode and hand the result to the
     attention monitor, when one is attached

Batches are serialised per instance with an asyncio lock.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from ecan.config import CoordinatorConfig
from ecan.primitives.common import clamp
from ecan.systems.attention.descriptor import KernelRegistry, attention_kernel_definition
from ecan.systems.attention.kernel import AttentionKernel
from ecan.systems.attention.monitor import AttentionMonitor
from ecan.systems.attention.types import Goal
from ecan.systems.coordinator.kernels import default_kernels
from ecan.systems.coordinator.types import (
    AllocationResult,
    AttentionPattern,
    CoordinatorState,
    CriterionResult,
    DistributedTask,
    KernelAllocation,
    KernelDemand,
    KernelShift,
    MetaAnalysis,
    ResourceOptimization,
    ShiftAnalysis,
    ShiftResult,
    VerificationResult,
)
from ecan.systems.episodic.sink import (
    EpisodicContent,
    EpisodicEntry,
    EpisodicMetadata,
    EpisodicSink,
)

logger = structlog.get_logger("ecan.systems.coordinator.coordinator")

DEMAND_GOAL_PREFIX = "demand:"

# Bottleneck rules
_HIGH_ACTIVATION = 0.8
_LOW_UTILITY = 0.6
_HIGH_NOVELTY = 0.7
_LOW_STI = 0.5
_TASK_ATTENTION_FLOOR = 0.5

# Pattern rules
_PATTERN_ACTIVATION = 0.7
_PATTERN_NOVELTY = 0.6
_PATTERN_NOVELTY_STI = 0.5
_PATTERN_UTILITY = 0.7
_PATTERN_UTILITY_LTI = 0.6

_TREND_DELTA = 0.05


class AttentionCoordinator:
    """
    Drives the attention kernel from batches of distributed tasks.

    Usage:
        coordinator = AttentionCoordinator()
        result = await coordinator.process_distributed_tasks(tasks, goals)
        report = coordinator.verify_resource_optimization(result, tasks)
    """

    def __init__(
        self,
        kernel: AttentionKernel | None = None,
        kernels: Mapping[str, Any] | None = None,
        config: CoordinatorConfig | None = None,
        episodic_sink: EpisodicSink | None = None,
        registry: KernelRegistry | None = None,
        monitor: AttentionMonitor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kernel = kernel or AttentionKernel(episodic_sink=episodic_sink)
        self._kernels: dict[str, Any] = dict(kernels) if kernels is not None else dict(default_kernels())
        self._config = config or CoordinatorConfig()
        self._sink = episodic_sink
        self._registry = registry
        self._monitor = monitor
        self._clock = clock
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="attention_coordinator")

        self._optimization_history: deque[ResourceOptimization] = deque(
            maxlen=self._config.optimization_history_limit
        )
        self._last_result: AllocationResult | None = None
        self._batches: int = 0

        if self._registry is not None:
            self._registry.register(attention_kernel_definition(self._kernel.field.shape))

    # ─── Kernel Management ────────────────────────────────────────────

    @property
    def kernel(self) -> AttentionKernel:
        return self._kernel

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    @property
    def registry(self) -> KernelRegistry | None:
        return self._registry

    @property
    def monitor(self) -> AttentionMonitor | None:
        return self._monitor

    @property
    def kernels(self) -> dict[str, Any]:
        return dict(self._kernels)

    def register_kernel(self, kernel_id: str, record: Any) -> None:
        self._kernels[kernel_id] = record
        self._logger.info("kernel_registered", kernel_id=kernel_id)

    def unregister_kernel(self, kernel_id: str) -> bool:
        removed = self._kernels.pop(kernel_id, None) is not None
        if removed:
            self._logger.info("kernel_unregistered", kernel_id=kernel_id)
        return removed

    # ─── Batch Processing ─────────────────────────────────────────────

    async def process_distributed_tasks(
        self,
        tasks: Iterable[DistributedTask | Mapping[str, Any]] | None,
        goals: Iterable[Goal | Mapping[str, Any]] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> AllocationResult:
        async with self._lock:
            return self._process(tasks, goals, context or {})

    def _process(
        self,
        raw_tasks: Iterable[DistributedTask | Mapping[str, Any]] | None,
        raw_goals: Iterable[Goal | Mapping[str, Any]] | None,
        context: Mapping[str, Any],
    ) -> AllocationResult:
        tasks = self._sanitise_tasks(raw_tasks)
        demand = self._demand_vector(tasks)
        goals = self._goal_set(raw_goals, demand)

        kernel_context = {**context, "source": "coordinator", "tasks": len(tasks)}
        self._kernel.allocate_attention(self._kernels, goals, kernel_context)

        allocations = self._extract_allocations()
        optimization = self._optimize(allocations, tasks, demand)
        previous = self._optimization_history[-1] if self._optimization_history else None
        meta_analysis = self._meta_analyse(allocations, optimization, previous)
        self._optimization_history.append(optimization)

        result = AllocationResult(
            allocations=allocations,
            field=self._kernel.field.snapshot(),
            demand=demand,
            optimization=optimization,
            meta_analysis=meta_analysis,
            task_ids=[t.id for t in tasks],
        )
        self._last_result = result
        self._batches += 1

        self._logger.info(
            "distributed_tasks_processed",
            tasks=len(tasks),
            kernels=len(allocations),
            efficiency=round(optimization.efficiency, 4),
            utilization=round(optimization.utilization, 4),
            bottlenecks=len(optimization.bottlenecks),
            phase=context.get("phase"),
        )
        self._record_episode(result, len(tasks), context.get("phase"))
        self._observe(result)
        return result

    def _sanitise_tasks(self, raw_tasks: Any) -> list[DistributedTask]:
        if raw_tasks is None:
            return []
        tasks: list[DistributedTask] = []
        for raw in raw_tasks:
            if isinstance(raw, DistributedTask):
                # Re-validate so hand-mutated fields get the same repairs
                raw = raw.model_dump()
            elif not isinstance(raw, Mapping):
                self._logger.warning("distributed_task_ignored", type=type(raw).__name__)
                continue
            try:
                tasks.append(DistributedTask.model_validate(raw))
            except ValidationError as exc:
                self._logger.warning("distributed_task_ignored", error=str(exc)[:200])
        return tasks

    def _effective_priority(self, task: DistributedTask, now: float) -> float:
        if task.deadline is None:
            return task.priority
        remaining = task.deadline - now
        horizon = self._config.deadline_horizon_s
        urgency = clamp(1.0 - remaining / horizon)
        boost = self._config.max_deadline_boost * urgency
        return clamp(task.priority + boost * (1.0 - task.priority))

    def _demand_vector(self, tasks: list[DistributedTask]) -> dict[str, KernelDemand]:
        now = self._clock()
        demand: dict[str, KernelDemand] = {}
        # Priorities combine as independent claims: 1 - prod(1 - p)
        unmet: dict[str, float] = {}
        for task in tasks:
            if not task.required_kernels:
                continue
            priority = self._effective_priority(task, now)
            share = task.total_resources / len(task.required_kernels)
            for kernel_id in task.required_kernels:
                entry = demand.setdefault(kernel_id, KernelDemand(kernel_id=kernel_id))
                entry.resources += share
                entry.task_ids.append(task.id)
                unmet[kernel_id] = unmet.get(kernel_id, 1.0) * (1.0 - priority)
        for kernel_id, entry in demand.items():
            entry.priority = clamp(1.0 - unmet[kernel_id])
        return demand

    def _goal_set(self, raw_goals: Any, demand: dict[str, KernelDemand]) -> list[Any]:
        goals: list[Any] = []
        if raw_goals is not None and not isinstance(raw_goals, (str, bytes)):
            try:
                goals.extend(raw_goals)
            except TypeError:
                self._logger.warning("goals_not_iterable", type=type(raw_goals).__name__)
        for kernel_id, entry in demand.items():
            goals.append(
                Goal(
                    id=f"{DEMAND_GOAL_PREFIX}{kernel_id}",
                    description=f"Task demand on {kernel_id}",
                    priority=entry.priority,
                    target_kernels=[kernel_id],
                )
            )
        return goals

    def _extract_allocations(self) -> dict[str, KernelAllocation]:
        field = self._kernel.field
        values = self._kernel.last_values
        allocations: dict[str, KernelAllocation] = {}
        for kernel_id in self._kernels:
            key = str(kernel_id).strip()
            factors = field.current(key)
            if factors is None:
                continue
            granted = values[key].granted_resources if key in values else 0.0
            allocations[key] = KernelAllocation(
                kernel_id=key,
                granted_resources=granted,
                **factors,
            )
        return allocations

    # ─── Optimisation ─────────────────────────────────────────────────

    def _optimize(
        self,
        allocations: dict[str, KernelAllocation],
        tasks: list[DistributedTask],
        demand: dict[str, KernelDemand],
    ) -> ResourceOptimization:
        capacity = self._kernel.economics.resources.capacity
        task_demand = sum(t.total_resources for t in tasks)
        utilization = clamp(task_demand / capacity) if capacity > 0 else (1.0 if task_demand else 0.0)
        efficiency = self._allocation_efficiency(allocations)
        bottlenecks = self._identify_bottlenecks(allocations, tasks, demand)
        recommendations = self._recommend(efficiency, utilization, bottlenecks, allocations)
        return ResourceOptimization(
            efficiency=efficiency,
            utilization=utilization,
            allocation={k: a.granted_resources for k, a in allocations.items()},
            bottlenecks=bottlenecks,
            recommendations=recommendations,
        )

    def _allocation_efficiency(self, allocations: dict[str, KernelAllocation]) -> float:
        """Activation-weighted mean of reported kernel efficiency."""
        views = self._kernel.last_views
        weighted = 0.0
        weight = 0.0
        for kernel_id, allocation in allocations.items():
            view = views.get(kernel_id)
            if view is None:
                continue
            weighted += view.efficiency * allocation.activation
            weight += allocation.activation
        return clamp(weighted / weight) if weight > 0 else 0.0

    def _identify_bottlenecks(
        self,
        allocations: dict[str, KernelAllocation],
        tasks: list[DistributedTask],
        demand: dict[str, KernelDemand],
    ) -> list[str]:
        bottlenecks: list[str] = []
        for kernel_id, a in allocations.items():
            if a.activation > _HIGH_ACTIVATION and a.utility < _LOW_UTILITY:
                bottlenecks.append(f"{kernel_id}: High activation but low utility")
            if a.novelty > _HIGH_NOVELTY and a.sti < _LOW_STI:
                bottlenecks.append(f"{kernel_id}: High novelty but low short-term importance")

        for kernel_id, entry in demand.items():
            allocation = allocations.get(kernel_id)
            if allocation is None:
                bottlenecks.append(
                    f"{kernel_id}: Required by {len(entry.task_ids)} task(s) but not registered"
                )
            elif entry.resources > allocation.granted_resources:
                bottlenecks.append(
                    f"{kernel_id}: Over-subscribed (demand {entry.resources:.1f} "
                    f"> granted {allocation.granted_resources:.1f})"
                )

        for task in tasks:
            if not task.required_kernels:
                continue
            available = sum(
                allocations[k].activation for k in task.required_kernels if k in allocations
            )
            if available < task.priority * _TASK_ATTENTION_FLOOR:
                bottlenecks.append(f"Task {task.id}: Insufficient attention allocation")
        return bottlenecks

    def _recommend(
        self,
        efficiency: float,
        utilization: float,
        bottlenecks: list[str],
        allocations: dict[str, KernelAllocation],
    ) -> list[str]:
        low_efficiency = efficiency < self._config.low_efficiency_threshold
        if not bottlenecks and not low_efficiency:
            return []

        recommendations: list[str] = []
        if low_efficiency:
            recommendations.append("Consider redistributing attention to higher-performing kernels")
            recommendations.append("Investigate low-utility kernel configurations")

        if utilization > 0.9:
            recommendations.append("System approaching resource saturation - consider load balancing")
        elif utilization < 0.5:
            recommendations.append("System underutilized - opportunity for increased throughput")

        if bottlenecks:
            recommendations.append("Address identified bottlenecks to improve overall performance")
            if any("High activation but low utility" in b for b in bottlenecks):
                recommendations.append("Optimize kernel efficiency or reduce activation threshold")
            if any("High novelty but low short-term importance" in b for b in bottlenecks):
                recommendations.append("Adjust novelty weighting in attention calculation")
            if any("not registered" in b for b in bottlenecks):
                recommendations.append("Register the missing kernels or reroute their tasks")
            if any("Over-subscribed" in b for b in bottlenecks):
                recommendations.append("Spread demand across kernels or raise the attention budget")

        if allocations:
            mean_activation = sum(a.activation for a in allocations.values()) / len(allocations)
            if mean_activation < 0.3:
                recommendations.append(
                    "Overall attention activation low - consider increasing system engagement"
                )
        return recommendations

    # ─── Meta-Analysis ────────────────────────────────────────────────

    def _meta_analyse(
        self,
        allocations: dict[str, KernelAllocation],
        optimization: ResourceOptimization,
        previous: ResourceOptimization | None,
    ) -> MetaAnalysis:
        patterns = self._identify_patterns(allocations)
        insights: list[str] = []

        if optimization.efficiency > 0.8:
            insights.append("High efficiency achieved - attention allocation is well-optimized")
        elif optimization.efficiency < 0.5:
            insights.append("Low efficiency detected - attention allocation needs improvement")

        for pattern in patterns:
            kernels = ", ".join(pattern.kernels)
            if pattern.type == "high_activation":
                insights.append(f"High activation pattern detected in kernels: {kernels}")
            elif pattern.type == "novelty_driven":
                insights.append(f"Novelty-driven attention allocation active for: {kernels}")
            elif pattern.type == "utility_based":
                insights.append(f"Utility-based allocation optimizing: {kernels}")

        if optimization.utilization > 0.8:
            insights.append("High resource utilization - system operating near capacity")

        if previous is not None:
            trend = optimization.efficiency - previous.efficiency
            if trend > _TREND_DELTA:
                insights.append("Attention allocation efficiency improving over time")
            elif trend < -_TREND_DELTA:
                insights.append("Attention allocation efficiency declining - consider policy adjustments")

        return MetaAnalysis(
            effectiveness=clamp((optimization.efficiency + optimization.utilization) / 2.0),
            patterns=patterns,
            insights=insights,
        )

    def _identify_patterns(self, allocations: dict[str, KernelAllocation]) -> list[AttentionPattern]:
        patterns: list[AttentionPattern] = []

        high = [a for a in allocations.values() if a.activation > _PATTERN_ACTIVATION]
        if high:
            patterns.append(
                AttentionPattern(
                    type="high_activation",
                    kernels=[a.kernel_id for a in high],
                    strength=clamp(sum(a.activation for a in high) / len(high)),
                    description="Kernels with high attention activation",
                    recommendations=["Monitor these kernels for resource saturation"],
                )
            )

        novel = [
            a for a in allocations.values()
            if a.novelty > _PATTERN_NOVELTY and a.sti > _PATTERN_NOVELTY_STI
        ]
        if novel:
            patterns.append(
                AttentionPattern(
                    type="novelty_driven",
                    kernels=[a.kernel_id for a in novel],
                    strength=clamp(sum(a.novelty for a in novel) / len(novel)),
                    description="Kernels receiving attention due to novelty",
                    recommendations=["Confirm novel states are worth sustained attention"],
                )
            )

        useful = [
            a for a in allocations.values()
            if a.utility > _PATTERN_UTILITY and a.lti > _PATTERN_UTILITY_LTI
        ]
        if useful:
            patterns.append(
                AttentionPattern(
                    type="utility_based",
                    kernels=[a.kernel_id for a in useful],
                    strength=clamp(sum(a.utility for a in useful) / len(useful)),
                    description="Kernels receiving attention due to high utility",
                    recommendations=["Keep long-term importance of these kernels stable"],
                )
            )
        return patterns

    # ─── Attention Shifting ───────────────────────────────────────────

    async def simulate_attention_shifting(
        self,
        initial_tasks: Iterable[DistributedTask | Mapping[str, Any]],
        new_tasks: Iterable[DistributedTask | Mapping[str, Any]],
        goals: Iterable[Goal | Mapping[str, Any]] | None = None,
    ) -> ShiftResult:
        """
        Allocate for ``initial_tasks``, let the field decay, then allocate
        for ``initial_tasks + new_tasks`` and measure the change.
        """
        initial_list = list(initial_tasks or [])
        new_list = list(new_tasks or [])
        goal_list = list(goals or [])

        async with self._lock:
            initial = self._process(initial_list, goal_list, {"phase": "initial"})
            self._kernel.decay_field(self._config.shift_decay_steps)
            shifted = self._process(initial_list + new_list, goal_list, {"phase": "shifted"})

        analysis = self._analyse_shift(initial, shifted)
        self._logger.info(
            "attention_shift_analysed",
            new_tasks=len(new_list),
            total_shift=round(analysis.total_shift, 4),
            adaptability=round(analysis.adaptability, 4),
        )
        return ShiftResult(initial=initial, shifted=shifted, shift_analysis=analysis)

    @staticmethod
    def _analyse_shift(initial: AllocationResult, shifted: AllocationResult) -> ShiftAnalysis:
        analysis = ShiftAnalysis()
        for kernel_id, before in initial.allocations.items():
            after = shifted.allocations.get(kernel_id)
            if after is None:
                continue
            sti_shift = after.sti - before.sti
            activation_shift = abs(after.activation - before.activation)
            utility_shift = abs(after.utility - before.utility)
            analysis.kernel_shifts[kernel_id] = KernelShift(
                sti_shift=sti_shift,
                activation_shift=activation_shift,
                utility_shift=utility_shift,
                total_shift=abs(sti_shift) + activation_shift + utility_shift,
            )
            analysis.total_shift += abs(sti_shift)
            analysis.max_shift = max(analysis.max_shift, abs(sti_shift))

        kernels = set(initial.demand) | set(shifted.demand)
        if kernels:
            analysis.demand_change = sum(
                abs(
                    (shifted.demand[k].priority if k in shifted.demand else 0.0)
                    - (initial.demand[k].priority if k in initial.demand else 0.0)
                )
                for k in kernels
            ) / len(kernels)

        if analysis.kernel_shifts and analysis.demand_change > 1e-9:
            allocation_change = analysis.total_shift / len(analysis.kernel_shifts)
            analysis.adaptability = clamp(allocation_change / analysis.demand_change)
        return analysis

    # ─── Verification ─────────────────────────────────────────────────

    def verify_resource_optimization(
        self,
        result: AllocationResult,
        tasks: Iterable[DistributedTask | Mapping[str, Any]],
    ) -> VerificationResult:
        criteria = self._config.criteria
        optimization = result.optimization
        task_list = self._sanitise_tasks(tasks)

        efficiency_met = optimization.efficiency >= criteria.min_efficiency
        utilization_met = (
            criteria.min_utilization <= optimization.utilization <= criteria.max_utilization
        )
        bottleneck_count = len(optimization.bottlenecks)
        bottlenecks_met = bottleneck_count <= criteria.max_bottlenecks
        coverage = self._task_coverage(result.allocations, task_list)
        coverage_met = coverage >= criteria.min_task_coverage

        scores = [
            1.0 if efficiency_met else _ratio(optimization.efficiency, criteria.min_efficiency),
            1.0 if utilization_met else self._utilization_credit(optimization.utilization),
            1.0 if bottlenecks_met else criteria.max_bottlenecks / max(1, bottleneck_count),
            1.0 if coverage_met else _ratio(coverage, criteria.min_task_coverage),
        ]
        verified = efficiency_met and utilization_met and bottlenecks_met and coverage_met

        return VerificationResult(
            verified=verified,
            optimization_score=clamp(sum(scores) / len(scores)),
            details={
                "efficiency": CriterionResult(
                    met=efficiency_met, value=optimization.efficiency, threshold=criteria.min_efficiency
                ),
                "utilization": CriterionResult(
                    met=utilization_met, value=optimization.utilization, threshold=criteria.max_utilization
                ),
                "bottlenecks": CriterionResult(
                    met=bottlenecks_met, value=float(bottleneck_count), threshold=float(criteria.max_bottlenecks)
                ),
                "task_coverage": CriterionResult(
                    met=coverage_met, value=coverage, threshold=criteria.min_task_coverage
                ),
            },
        )

    def _utilization_credit(self, utilization: float) -> float:
        criteria = self._config.criteria
        if utilization > criteria.max_utilization:
            return clamp(_ratio(1.0 - utilization, 1.0 - criteria.max_utilization))
        return _ratio(utilization, criteria.min_utilization)

    @staticmethod
    def _task_coverage(
        allocations: dict[str, KernelAllocation],
        tasks: list[DistributedTask],
    ) -> float:
        """
        Priority-weighted mean over tasks of the mean activation of their
        required kernels. Unregistered kernels count as zero.
        """
        covered = [t for t in tasks if t.required_kernels]
        if not covered:
            return 1.0
        weighted = 0.0
        weight = 0.0
        for task in covered:
            activation = sum(
                allocations[k].activation for k in task.required_kernels if k in allocations
            ) / len(task.required_kernels)
            task_weight = task.priority if task.priority > 0 else 1e-3
            weighted += task_weight * activation
            weight += task_weight
        return clamp(weighted / weight)

    # ─── State & Episodic ─────────────────────────────────────────────

    def get_current_state(self) -> CoordinatorState:
        return CoordinatorState(
            field=self._kernel.field.snapshot(),
            economics=self._kernel.get_economics(),
            meta_cognition=self._kernel.meta.state.model_copy(deep=True),
            allocations=dict(self._last_result.allocations) if self._last_result else {},
            registered_kernels=list(self._kernels),
            batches_processed=self._batches,
        )

    @property
    def optimization_history(self) -> list[ResourceOptimization]:
        return list(self._optimization_history)

    def _record_episode(self, result: AllocationResult, task_count: int, phase: Any) -> None:
        if self._sink is None:
            return
        optimization = result.optimization
        entry = EpisodicEntry(
            type="allocation_cycle",
            content=EpisodicContent(
                observations=[
                    f"Allocated attention across {len(result.allocations)} kernels for {task_count} tasks",
                    f"Efficiency {optimization.efficiency:.3f}, utilization {optimization.utilization:.3f}",
                    *optimization.bottlenecks,
                ],
                patterns=[p.type for p in result.meta_analysis.patterns],
                improvements=list(optimization.recommendations),
            ),
            metadata=EpisodicMetadata(
                importance=clamp(1.0 - result.meta_analysis.effectiveness + 0.05 * len(optimization.bottlenecks)),
                tags=["ecan", "allocation_cycle"] + ([str(phase)] if phase else []),
                extra={"result_id": result.id},
            ),
        )
        try:
            self._sink.record(entry)
        except Exception as exc:
            self._logger.warning("episodic_record_failed", error=str(exc))


    def _observe(self, result: AllocationResult) -> None:
        if self._monitor is None:
            return
        try:
            self._monitor.observe(result, self._kernel.get_policy_history())
        except Exception as exc:
            self._logger.warning("attention_monitor_failed", error=str(exc))


def _ratio(value: float, threshold: float) -> float:
    if threshold <= 0:
        return 1.0
    return clamp(value / threshold)

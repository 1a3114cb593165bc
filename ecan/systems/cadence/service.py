"""
ECAN — Attention Cycle Service

One attention cycle end to end:

  task queue → TaskGate.admit (admit / defer / fail)
             → dispatched tasks become DistributedTasks
             → AttentionCoordinator batch (one kernel pass)
             → verification
             → episodic record and monitor report (by the coordinator)

``attach()`` registers the cycle on a ``CycleScheduler`` so it runs at the
configured cadence, pulling its queue from a task source each time.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from ecan.config import CadenceConfig
from ecan.systems.cadence.types import CycleReport
from ecan.systems.coordinator.coordinator import AttentionCoordinator
from ecan.systems.coordinator.types import DistributedTask
from ecan.systems.gate.gate import TaskGate
from ecan.systems.gate.types import GateOptions, MemoryState, TaskMessage

if TYPE_CHECKING:
    from ecan.systems.attention.types import Goal
    from ecan.systems.cadence.clock import CycleScheduler, ScheduleHandle
    from ecan.systems.episodic.sink import EpisodicSink

logger = structlog.get_logger("ecan.systems.cadence.service")

TaskSource = Callable[[], list[TaskMessage] | Awaitable[list[TaskMessage]]]


def to_distributed_task(task: TaskMessage) -> DistributedTask:
    """Project a dispatched gate task onto the coordinator's task shape."""
    return DistributedTask(
        id=str(task.task_id),
        name=task.query,
        priority=task.priority,
        required_kernels=task.required_kernels,
        estimated_resources=task.estimated_resources,
        deadline=task.deadline,
        context={**task.context, "category": task.category, "status": task.status.value},
    )


class AttentionCycleService:
    """Wires the gate, the coordinator and the episodic sink into cycles."""

    def __init__(
        self,
        gate: TaskGate | None = None,
        coordinator: AttentionCoordinator | None = None,
        episodic_sink: EpisodicSink | None = None,
        config: CadenceConfig | None = None,
    ) -> None:
        self._gate = gate or TaskGate()
        self._coordinator = coordinator or AttentionCoordinator(episodic_sink=episodic_sink)
        self._config = config or CadenceConfig()
        self._logger = logger.bind(component="attention_cycle")

        self._cycles: int = 0
        self._admitted_total: int = 0
        self._last_report: CycleReport | None = None

    @property
    def gate(self) -> TaskGate:
        return self._gate

    @property
    def coordinator(self) -> AttentionCoordinator:
        return self._coordinator

    @property
    def config(self) -> CadenceConfig:
        return self._config

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    async def run_cycle(
        self,
        task_queue: list[TaskMessage],
        memory_state: MemoryState | None = None,
        goals: Iterable[Goal | Mapping[str, Any]] | None = None,
        options: GateOptions | None = None,
    ) -> CycleReport:
        t0 = time.monotonic()
        cycle_number = self._cycles + 1

        gate_stats = await self._gate.admit(task_queue, memory_state, options)

        admitted = [to_distributed_task(t) for t in gate_stats.dispatched_tasks]

        result = await self._coordinator.process_distributed_tasks(
            admitted, goals, {"cycle": cycle_number}
        )
        verification = self._coordinator.verify_resource_optimization(result, admitted)
        monitor = self._coordinator.monitor
        monitor_report = monitor.last_report if monitor is not None else None
        if monitor_report is not None and monitor_report.result_id != result.id:
            monitor_report = None

        elapsed_ms = (time.monotonic() - t0) * 1000.0
        report = CycleReport(
            cycle_number=cycle_number,
            elapsed_ms=round(elapsed_ms, 3),
            gate=gate_stats,
            admitted=[t.id for t in admitted],
            allocation=result,
            verification=verification,
            monitor=monitor_report,
        )
        self._cycles = cycle_number
        self._admitted_total += len(admitted)
        self._last_report = report

        self._logger.info(
            "attention_cycle_complete",
            cycle=cycle_number,
            queued=len(task_queue),
            admitted=len(admitted),
            deferred=gate_stats.deferred,
            failed=gate_stats.failed,
            verified=verification.verified,
            score=round(verification.optimization_score, 4),
            alerts=len(monitor_report.alerts) if monitor_report else 0,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return report

    def attach(
        self,
        scheduler: CycleScheduler,
        task_source: TaskSource,
        goals: Iterable[Goal | Mapping[str, Any]] | None = None,
        interval_s: float | None = None,
        name: str = "attention_cycle",
    ) -> ScheduleHandle:
        """Run a cycle on ``scheduler`` every ``interval_s`` (config default)."""
        goal_list = list(goals or [])

        async def _cycle() -> None:
            queue = task_source()
            if inspect.isawaitable(queue):
                queue = await queue
            await self.run_cycle(list(queue), goals=goal_list)

        return scheduler.schedule(name, interval_s or self._config.cycle_interval_s, _cycle)

    def stats(self) -> dict[str, Any]:
        return {
            "cycles": self._cycles,
            "admitted": self._admitted_total,
            "gate": self._gate.stats(),
            "last_verified": self._last_report.verification.verified if self._last_report else None,
        }

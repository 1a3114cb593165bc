"""
ECAN — Task Readiness & Resource Gate

Decides, once per pass, whether each queued task executes, defers or fails.

Tasks are visited in descending priority (stable on queue order), each id
at most once. For every task the first matching rule wins:

  1. skip if already visited or not pending/deferred
  2. fail once the retry allowance is spent
  3. defer on unfinished dependencies
  4. defer on an unmet condition expression (errors counted, fail_fast aborts)
  5. defer on an unmet simple condition
  6. defer on low availability or a refused reservation
  7. defer under system load when the task is expensive and not critical
  8. execute under a timeout, retrying on failure

Whatever was reserved for a task is released exactly once when its visit
ends, on every exit path.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from ecan.config import GateConfig
from ecan.errors import GateAbortedError, TaskTimeoutError
from ecan.primitives.common import utc_now
from ecan.systems.gate.conditions import ConditionEvaluator
from ecan.systems.gate.resources import ResourceMonitor, SystemResourceMonitor
from ecan.systems.gate.types import (
    GateError,
    GateOptions,
    GateStats,
    MemoryState,
    TaskExecutor,
    TaskMessage,
    TaskStatus,
)

logger = structlog.get_logger("ecan.systems.gate.gate")


async def _noop_executor(task: TaskMessage) -> None:
    return None


class TaskGate:
    """
    Admission control between the task queue and execution.

    Collaborators are injected: the resource monitor that owns capacity
    accounting and the async executor that runs a task body.
    """

    def __init__(
        self,
        resource_monitor: ResourceMonitor | None = None,
        executor: TaskExecutor | None = None,
        config: GateConfig | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._resources: ResourceMonitor = resource_monitor or SystemResourceMonitor()
        self._executor: TaskExecutor = executor or _noop_executor
        self._config = config or GateConfig()
        self._evaluator = evaluator or ConditionEvaluator()
        self._logger = logger.bind(component="task_gate")
        # task_id -> [(category, amount)] held during the current visit
        self._reservations: dict[int, list[tuple[str, float]]] = {}

        self._total_passes: int = 0
        self._total_executed: int = 0
        self._total_completed: int = 0
        self._total_failed: int = 0
        self._total_deferred: int = 0

    @property
    def resource_monitor(self) -> ResourceMonitor:
        return self._resources

    @property
    def config(self) -> GateConfig:
        return self._config

    # ─── Pass ─────────────────────────────────────────────────────────

    async def admit(
        self,
        task_queue: list[TaskMessage],
        memory_state: MemoryState | None = None,
        options: GateOptions | None = None,
    ) -> GateStats:
        """
        Run one gate pass over ``task_queue``, mutating task statuses in place.

        Raises ``GateAbortedError`` only under ``fail_fast``, for a condition
        evaluation error or a non-timeout terminal execution failure.
        """
        memory_state = memory_state or MemoryState()
        options = options or GateOptions()
        stats = GateStats()
        processed: set[int] = set()

        by_id: dict[int, TaskMessage] = {}
        for task in task_queue:
            by_id.setdefault(task.task_id, task)

        # sorted() is stable, so equal priorities keep queue order
        ordered = sorted(task_queue, key=lambda t: -(t.priority or 0.0))

        self._total_passes += 1
        try:
            for task in ordered:
                if task.task_id in processed:
                    continue
                processed.add(task.task_id)
                if task.status not in (TaskStatus.PENDING, TaskStatus.DEFERRED):
                    continue
                await self._visit(task, by_id, memory_state, options, stats)
        finally:
            self._total_executed += stats.executed
            self._total_completed += stats.completed
            self._total_failed += stats.failed
            self._total_deferred += stats.deferred

        self._logger.info(
            "gate_pass_complete",
            tasks=len(task_queue),
            executed=stats.executed,
            completed=stats.completed,
            deferred=stats.deferred,
            failed=stats.failed,
            errors=len(stats.errors),
        )
        return stats

    async def _visit(
        self,
        task: TaskMessage,
        by_id: dict[int, TaskMessage],
        memory_state: MemoryState,
        options: GateOptions,
        stats: GateStats,
    ) -> None:
        max_retries = self._max_retries(task, options)

        # `>` rather than `>=`: exactly max_retries + 1 attempts, so a task
        # arriving with retry_count == max_retries still gets its last attempt.
        if task.retry_count > max_retries:
            self._logger.warning(
                "task_retries_exhausted",
                task_id=task.task_id,
                max_retries=max_retries,
            )
            task.set_status(TaskStatus.FAILED, "Maximum retry attempts exceeded")
            stats.failed += 1
            return

        unmet = [
            dep
            for dep in task.dependencies
            if dep in by_id and by_id[dep].status != TaskStatus.COMPLETED
        ]
        if unmet:
            dep_list = ", ".join(str(d) for d in unmet)
            self._defer(task, stats, f"Waiting for dependencies: {dep_list}")
            return

        if task.condition_expression is not None:
            outcome = self._evaluator.evaluate_detailed(task.condition_expression, memory_state)
            if outcome.error is not None:
                message = f"Condition evaluation error: {outcome.error}"
                stats.errors.append(
                    GateError(task_id=task.task_id, kind="condition", message=message)
                )
                if options.fail_fast:
                    raise GateAbortedError(message)
            if not outcome.satisfied:
                operator = getattr(task.condition_expression, "operator", "unknown")
                self._defer(task, stats, f"Complex condition ({operator}) not satisfied")
                return
        elif task.condition is not None:
            if not self._evaluator.evaluate(task.condition, memory_state):
                self._defer(
                    task,
                    stats,
                    f"Waiting for prerequisite: {task.condition.prerequisite}",
                )
                return

        try:
            if task.category:
                availability = self._resources.get_resource_availability(task.category)
                if availability < self._config.min_resource_availability:
                    self._defer(
                        task,
                        stats,
                        f"Insufficient resources in category {task.category} "
                        f"(availability {availability:.0%})",
                    )
                    return
                cost = (
                    task.resource_cost
                    if task.resource_cost is not None
                    else self._config.default_resource_cost
                )
                if not self._resources.reserve_resources(task.category, cost):
                    self._defer(
                        task, stats, f"Failed to reserve {cost:g} units of {task.category}"
                    )
                    return
                self._reservations.setdefault(task.task_id, []).append((task.category, cost))

            system_load = self._resources.get_system_load()
            if (
                system_load > self._config.load_shed_threshold
                and (task.resource_cost or 0.0) > self._config.high_cost_threshold
                and not task.is_system_critical
            ):
                self._release(task.task_id)
                self._defer(
                    task,
                    stats,
                    f"System load too high ({system_load:.0%}) for resource-intensive task",
                )
                return

            await self._execute(task, max_retries, options, stats)
        finally:
            self._release(task.task_id)

    async def _execute(
        self,
        task: TaskMessage,
        max_retries: int,
        options: GateOptions,
        stats: GateStats,
    ) -> None:
        timeout_ms = (
            task.execution_timeout
            or options.default_timeout_ms
            or self._config.default_timeout_ms
        )
        attempt = task.retry_count + 1
        task.last_execution_attempt = utc_now()
        task.set_status(TaskStatus.PENDING, "Executing")
        stats.executed += 1
        stats.dispatched.append(task.task_id)
        stats.dispatched_tasks.append(task)
        self._logger.info(
            "task_executing",
            task_id=task.task_id,
            attempt=attempt,
            max_attempts=max_retries + 1,
        )

        try:
            scope = asyncio.timeout(timeout_ms / 1000.0)
            try:
                async with scope:
                    await self._executor(task)
            except TimeoutError as exc:
                # A TimeoutError raised by the task body is an ordinary failure
                if scope.expired():
                    raise TaskTimeoutError(task.task_id, timeout_ms) from exc
                raise
        except Exception as exc:
            timed_out = isinstance(exc, TaskTimeoutError)
            stats.errors.append(
                GateError(
                    task_id=task.task_id,
                    kind="timeout" if timed_out else "execution",
                    message=str(exc),
                )
            )
            self._logger.error(
                "task_execution_failed",
                task_id=task.task_id,
                attempt=attempt,
                timed_out=timed_out,
                error=str(exc),
            )
            if task.retry_count < max_retries:
                task.retry_count += 1
                task.set_status(
                    TaskStatus.PENDING, f"Execution failed: {exc}. Scheduled for retry."
                )
                return
            task.set_status(
                TaskStatus.FAILED, f"Failed after {max_retries + 1} attempts: {exc}"
            )
            stats.failed += 1
            if options.fail_fast and not timed_out:
                raise GateAbortedError(f"Task execution failed with error: {exc}") from exc
            return

        task.set_status(TaskStatus.COMPLETED, "Task completed successfully")
        stats.completed += 1

    # ─── Helpers ──────────────────────────────────────────────────────

    def _max_retries(self, task: TaskMessage, options: GateOptions) -> int:
        if task.max_retries is not None:
            return task.max_retries
        if options.max_retries is not None:
            return options.max_retries
        return self._config.max_retries

    def _defer(self, task: TaskMessage, stats: GateStats, reason: str) -> None:
        task.set_status(TaskStatus.DEFERRED, reason)
        stats.deferred += 1
        self._logger.info("task_deferred", task_id=task.task_id, reason=reason)

    def _release(self, task_id: int) -> None:
        """Release everything held for ``task_id``. Safe to call repeatedly."""
        for category, amount in self._reservations.pop(task_id, []):
            self._resources.release_resources(category, amount)

    def stats(self) -> dict[str, Any]:
        return {
            "passes": self._total_passes,
            "executed": self._total_executed,
            "completed": self._total_completed,
            "failed": self._total_failed,
            "deferred": self._total_deferred,
            "held_reservations": len(self._reservations),
        }


async def execute_tasks(
    task_queue: list[TaskMessage],
    memory_state: MemoryState | None = None,
    resource_monitor: ResourceMonitor | None = None,
    options: GateOptions | None = None,
    executor: TaskExecutor | None = None,
) -> GateStats:
    """One-shot gate pass with a fresh ``TaskGate``."""
    gate = TaskGate(resource_monitor=resource_monitor, executor=executor)
    return await gate.admit(task_queue, memory_state, options)

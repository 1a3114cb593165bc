"""
ECAN — Gate Type Definitions

Task messages, readiness conditions, memory snapshots and the statistics a
gate pass returns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
import enum
from typing import Any, Literal, Union

from pydantic import Field

from ecan.primitives.common import ECANBaseModel, utc_now


# ─── Status ───────────────────────────────────────────────────────────


class TaskStatus(enum.StrEnum):
    PENDING = "pending"
    DEFERRED = "deferred"
    COMPLETED = "completed"
    FAILED = "failed"


class ConditionOperator(enum.StrEnum):
    AND = "and"
    OR = "or"
    NOT = "not"
    THRESHOLD = "threshold"


# ─── Conditions ───────────────────────────────────────────────────────


class TaskCondition(ECANBaseModel):
    """Leaf condition: satisfied once ``prerequisite`` is a completed topic."""

    type: Literal["deferred"] = "deferred"
    prerequisite: str


class ConditionExpression(ECANBaseModel):
    """
    Boolean expression node over leaves and nested expressions.

    ``operator`` is kept as a plain string so that an unknown operator
    survives parsing and fails closed at evaluation time.
    """

    operator: str
    conditions: list[ConditionNode] = Field(default_factory=list)
    condition: ConditionNode | None = None
    threshold: int | None = None


ConditionNode = Union[TaskCondition, ConditionExpression]

ConditionExpression.model_rebuild()


def parse_condition(raw: Any) -> ConditionNode:
    """
    Build a condition node from a plain mapping.

    A mapping with an ``operator`` key is an expression; anything else is
    validated as a leaf. Already-built nodes are returned unchanged.
    """
    if isinstance(raw, (TaskCondition, ConditionExpression)):
        return raw
    if isinstance(raw, dict) and "operator" in raw:
        return ConditionExpression.model_validate(raw)
    return TaskCondition.model_validate(raw)


class MemoryState(ECANBaseModel):
    """Snapshot of what the memory subsystem has completed so far."""

    completed_topics: set[str] = Field(default_factory=set)


# ─── Tasks ────────────────────────────────────────────────────────────


class EstimatedResources(ECANBaseModel):
    compute: float = 0.0
    memory: float = 0.0
    bandwidth: float = 0.0


class TaskMessage(ECANBaseModel):
    """A unit of work waiting on the gate."""

    task_id: int
    query: str = ""
    priority: float = 0.0
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[int] = Field(default_factory=list)
    condition: TaskCondition | None = None
    condition_expression: ConditionExpression | None = None
    category: str | None = None
    resource_cost: float | None = None
    retry_count: int = 0
    max_retries: int | None = None
    # Milliseconds; falls back to the gate default
    execution_timeout: float | None = None
    is_system_critical: bool = False
    status_reason: str = ""
    status_updated_at: datetime | None = None
    last_execution_attempt: datetime | None = None
    # Consumed by the coordinator once the task is dispatched
    required_kernels: list[str] = Field(default_factory=list)
    estimated_resources: EstimatedResources = Field(default_factory=EstimatedResources)
    deadline: float | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    def set_status(self, status: TaskStatus, reason: str = "") -> None:
        self.status = status
        self.status_reason = reason
        self.status_updated_at = utc_now()


TaskExecutor = Callable[[TaskMessage], Awaitable[Any]]


# ─── Pass Options & Statistics ────────────────────────────────────────


class GateOptions(ECANBaseModel):
    fail_fast: bool = False
    max_retries: int | None = None
    default_timeout_ms: float | None = None


class GateError(ECANBaseModel):
    """One error recorded during a gate pass."""

    task_id: int
    kind: Literal["condition", "execution", "timeout"]
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class GateStats(ECANBaseModel):
    """
    Outcome of one gate pass.

    ``executed`` counts tasks dispatched to execution in this pass;
    ``completed`` is the subset that succeeded. ``deferred``, ``failed`` and
    ``completed`` are mutually exclusive per task.
    """

    executed: int = 0
    deferred: int = 0
    failed: int = 0
    completed: int = 0
    errors: list[GateError] = Field(default_factory=list)
    # Task ids in dispatch order, for downstream wiring
    dispatched: list[int] = Field(default_factory=list)
    # The dispatched messages themselves; ids may repeat across a queue
    dispatched_tasks: list[TaskMessage] = Field(default_factory=list, exclude=True)

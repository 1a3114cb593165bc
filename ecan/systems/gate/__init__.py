"""
ECAN — Task Readiness & Resource Gate

Condition evaluation, resource accounting and per-pass task admission.
"""

from ecan.systems.gate.conditions import ConditionEvaluator, ConditionOutcome
from ecan.systems.gate.gate import TaskGate, execute_tasks
from ecan.systems.gate.resources import (
    ResourceCategory,
    ResourceMonitor,
    ResourceSnapshot,
    SystemResourceMonitor,
)
from ecan.systems.gate.types import (
    ConditionExpression,
    ConditionNode,
    ConditionOperator,
    EstimatedResources,
    GateError,
    GateOptions,
    GateStats,
    MemoryState,
    TaskCondition,
    TaskExecutor,
    TaskMessage,
    TaskStatus,
    parse_condition,
)

__all__ = [
    "ConditionEvaluator",
    "ConditionExpression",
    "ConditionNode",
    "ConditionOperator",
    "ConditionOutcome",
    "EstimatedResources",
    "GateError",
    "GateOptions",
    "GateStats",
    "MemoryState",
    "ResourceCategory",
    "ResourceMonitor",
    "ResourceSnapshot",
    "SystemResourceMonitor",
    "TaskCondition",
    "TaskExecutor",
    "TaskGate",
    "TaskMessage",
    "TaskStatus",
    "execute_tasks",
    "parse_condition",
]

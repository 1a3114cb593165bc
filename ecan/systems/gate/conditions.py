"""
ECAN — Condition Evaluator

Evaluates task-readiness expressions against a memory snapshot.

Evaluation is pure and total: no branch mutates its inputs, and nothing
escapes as an exception. An unknown operator fails closed with a warning;
a malformed node fails closed with an error, and ``evaluate_detailed``
reports that error so the gate can count it.
"""

from __future__ import annotations

import math
from typing import Any, NamedTuple

import structlog

from ecan.errors import ConditionEvaluationError
from ecan.systems.gate.types import (
    ConditionExpression,
    ConditionOperator,
    MemoryState,
    TaskCondition,
)

logger = structlog.get_logger("ecan.systems.gate.conditions")


class ConditionOutcome(NamedTuple):
    satisfied: bool
    error: str | None = None


class ConditionEvaluator:
    """Recursive evaluator over ``TaskCondition`` leaves and expression nodes."""

    def __init__(self, debug: bool = False) -> None:
        self._debug = debug
        self._logger = logger.bind(component="condition_evaluator")

    def evaluate(self, expr: Any, memory_state: MemoryState) -> bool:
        return self.evaluate_detailed(expr, memory_state).satisfied

    def evaluate_detailed(self, expr: Any, memory_state: MemoryState) -> ConditionOutcome:
        try:
            return ConditionOutcome(self._eval_node(expr, memory_state))
        except ConditionEvaluationError as exc:
            self._logger.error("condition_evaluation_failed", error=str(exc))
            return ConditionOutcome(False, str(exc))
        except Exception as exc:
            self._logger.error(
                "condition_evaluation_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ConditionOutcome(False, f"{type(exc).__name__}: {exc}")

    # ─── Node dispatch ────────────────────────────────────────────────

    def _eval_node(self, node: Any, memory_state: MemoryState) -> bool:
        if isinstance(node, TaskCondition):
            return self._eval_leaf(node, memory_state)
        if isinstance(node, ConditionExpression):
            return self._eval_expression(node, memory_state)
        raise ConditionEvaluationError(
            f"Malformed condition node of type {type(node).__name__}"
        )

    def _eval_leaf(self, leaf: TaskCondition, memory_state: MemoryState) -> bool:
        if leaf.type != "deferred":
            raise ConditionEvaluationError(f"Unknown condition type: {leaf.type!r}")
        result = leaf.prerequisite in memory_state.completed_topics
        if self._debug:
            self._logger.debug(
                "condition_leaf_evaluated",
                prerequisite=leaf.prerequisite,
                result=result,
            )
        return result

    def _eval_expression(
        self, expr: ConditionExpression, memory_state: MemoryState
    ) -> bool:
        op = expr.operator
        children = list(expr.conditions or [])

        if op == ConditionOperator.AND:
            # all() of an empty sequence is True
            result = all([self._eval_node(c, memory_state) for c in children])
        elif op == ConditionOperator.OR:
            result = any([self._eval_node(c, memory_state) for c in children])
        elif op == ConditionOperator.NOT:
            if expr.condition is None:
                result = True
            else:
                result = not self._eval_node(expr.condition, memory_state)
        elif op == ConditionOperator.THRESHOLD:
            if not children:
                result = False
            else:
                needed = expr.threshold
                if needed is None:
                    needed = math.ceil(len(children) / 2)
                met = sum(1 for c in children if self._eval_node(c, memory_state))
                result = met >= needed
        else:
            self._logger.warning("unknown_condition_operator", operator=op)
            return False

        if self._debug:
            self._logger.debug(
                "condition_expression_evaluated",
                operator=str(op),
                children=len(children),
                result=result,
            )
        return result

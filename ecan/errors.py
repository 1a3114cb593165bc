"""
ECAN — Error Hierarchy

Input malformation is never an exception in ECAN: it is recovered by
defaulting at the boundary. The classes here cover the cases that are
surfaced, either as counted errors in gate statistics or, under
``fail_fast``, as an aborted batch.
"""

from __future__ import annotations


class ECANError(RuntimeError):
    """Base for all ECAN errors."""


class ConditionEvaluationError(ECANError):
    """A condition expression tree could not be evaluated (malformed node)."""


class TaskExecutionError(ECANError):
    """A task body raised during execution."""

    def __init__(self, task_id: int, message: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class TaskTimeoutError(TaskExecutionError):
    """
    A task body exceeded its execution timeout.

    Treated like any other execution failure for retry purposes, but never
    escalated under ``fail_fast``.
    """

    def __init__(self, task_id: int, timeout_ms: float) -> None:
        super().__init__(task_id, f"Task execution timed out after {timeout_ms:g}ms")
        self.timeout_ms = timeout_ms


class GateAbortedError(ECANError):
    """Raised out of a gate pass when ``fail_fast`` escalates an error."""

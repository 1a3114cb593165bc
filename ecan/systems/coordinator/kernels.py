"""
ECAN — Static Kernel Records

Fixed-metric kernel records. A coordinator built without explicit kernels
starts with ``default_kernels()``: the four core cognitive kernels with
representative performance, state, usage and output figures.
"""

from __future__ import annotations

from typing import Any


class StaticKernel:
    """Kernel record whose capability accessors return fixed values."""

    def __init__(
        self,
        kernel_id: str,
        performance: dict[str, float],
        state: dict[str, Any],
        usage: dict[str, float],
        output: dict[str, float],
        category: str | None = None,
        capabilities: list[str] | None = None,
    ) -> None:
        self.id = kernel_id
        self.category = category
        self.capabilities = list(capabilities or [])
        self._performance = dict(performance)
        self._state = dict(state)
        self._usage = dict(usage)
        self._output = dict(output)

    def get_performance_metrics(self) -> dict[str, float]:
        return dict(self._performance)

    def get_current_state(self) -> dict[str, Any]:
        return dict(self._state)

    def get_resource_usage(self) -> dict[str, float]:
        return dict(self._usage)

    def get_output_metrics(self) -> dict[str, float]:
        return dict(self._output)

    def update_state(self, **values: Any) -> None:
        self._state.update(values)

    def __repr__(self) -> str:
        return f"StaticKernel({self.id!r})"


def default_kernels() -> dict[str, StaticKernel]:
    return {
        "semantic-memory": StaticKernel(
            "semantic-memory",
            performance={"efficiency": 0.8, "accuracy": 0.9},
            state={"concept_count": 5000, "query_rate": 100},
            usage={"cpu": 0.3, "memory": 0.4, "bandwidth": 0.2},
            output={"quality": 0.85, "throughput": 120},
            category="memory",
            capabilities=["recall", "semantic_search"],
        ),
        "task-manager": StaticKernel(
            "task-manager",
            performance={"efficiency": 0.7, "accuracy": 0.8},
            state={"active_tasks": 25, "queue_length": 10},
            usage={"cpu": 0.5, "memory": 0.3, "bandwidth": 0.4},
            output={"quality": 0.75, "throughput": 50},
            category="tasks",
            capabilities=["scheduling", "planning"],
        ),
        "ai-coordinator": StaticKernel(
            "ai-coordinator",
            performance={"efficiency": 0.9, "accuracy": 0.85},
            state={"contexts": 100, "active_queries": 5},
            usage={"cpu": 0.6, "memory": 0.5, "bandwidth": 0.7},
            output={"quality": 0.9, "throughput": 30},
            category="reasoning",
            capabilities=["inference", "generation"],
        ),
        "autonomy-monitor": StaticKernel(
            "autonomy-monitor",
            performance={"efficiency": 0.85, "accuracy": 0.9},
            state={"events": 1000, "alerts": 3},
            usage={"cpu": 0.2, "memory": 0.3, "bandwidth": 0.1},
            output={"quality": 0.9, "throughput": 200},
            category="monitoring",
            capabilities=["health", "self_repair"],
        ),
    }

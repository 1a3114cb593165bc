"""
ECAN — Resource Monitor

The gate consumes resource accounting through the ``ResourceMonitor``
protocol. ``SystemResourceMonitor`` is the in-process default: a fixed set
of capacity-tracked categories with a weighted system-load figure.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import Field

from ecan.primitives.common import ECANBaseModel, clamp

logger = structlog.get_logger("ecan.systems.gate.resources")

# Availability reported for a category the monitor does not track
_UNKNOWN_AVAILABILITY = 0.7

# Contribution of each category to the overall system load
_LOAD_WEIGHTS: dict[str, float] = {
    "cpu": 0.3,
    "memory": 0.25,
    "network": 0.15,
    "io": 0.15,
    "ai": 0.15,
}
_UNKNOWN_LOAD_WEIGHT = 0.1


@runtime_checkable
class ResourceMonitor(Protocol):
    """What the gate needs from resource accounting."""

    def get_resource_availability(self, category: str) -> float: ...

    def get_system_load(self) -> float: ...

    def reserve_resources(self, category: str, amount: float) -> bool: ...

    def release_resources(self, category: str, amount: float) -> None: ...


class ResourceCategory(ECANBaseModel):
    max_capacity: float = 100.0
    current_usage: float = 0.0
    # Headroom held back for critical work
    reserved_capacity: float = 10.0

    @property
    def current_load(self) -> float:
        if self.max_capacity <= 0:
            return 1.0
        return clamp(self.current_usage / self.max_capacity)


def _default_categories() -> dict[str, ResourceCategory]:
    return {
        "cpu": ResourceCategory(current_usage=10.0, reserved_capacity=20.0),
        "memory": ResourceCategory(current_usage=20.0, reserved_capacity=15.0),
        "network": ResourceCategory(current_usage=5.0, reserved_capacity=10.0),
        "io": ResourceCategory(current_usage=10.0, reserved_capacity=5.0),
        "ai": ResourceCategory(current_usage=30.0, reserved_capacity=25.0),
    }


class ResourceSnapshot(ECANBaseModel):
    system_load: float
    categories: dict[str, ResourceCategory] = Field(default_factory=dict)


class SystemResourceMonitor:
    """
    Capacity accounting over named resource categories.

    Availability is the free capacity relative to the non-reserved
    capacity, clamped to ``[0, 1]``. A reservation succeeds only when the
    free capacity covers it; releases never drive usage below zero.
    """

    def __init__(self, categories: dict[str, ResourceCategory] | None = None) -> None:
        self._categories = categories if categories is not None else _default_categories()
        self._system_load = 0.0
        self._logger = logger.bind(component="resource_monitor")
        self._update_system_load()

    def get_resource_availability(self, category: str) -> float:
        info = self._categories.get(category)
        if info is None:
            return _UNKNOWN_AVAILABILITY
        usable = info.max_capacity - info.reserved_capacity
        if usable <= 0:
            return 0.0
        return clamp((info.max_capacity - info.current_usage) / usable)

    def get_system_load(self) -> float:
        return self._system_load

    def reserve_resources(self, category: str, amount: float) -> bool:
        info = self._categories.get(category)
        if info is None:
            return False
        if info.max_capacity - info.current_usage < amount:
            self._logger.debug(
                "reservation_refused",
                category=category,
                amount=amount,
                usage=info.current_usage,
            )
            return False
        info.current_usage += amount
        self._update_system_load()
        return True

    def release_resources(self, category: str, amount: float) -> None:
        info = self._categories.get(category)
        if info is None:
            return
        info.current_usage = max(0.0, info.current_usage - amount)
        self._update_system_load()

    def set_resource_load(self, category: str, load: float) -> None:
        """Force a category's load. Unknown categories are created."""
        load = clamp(load)
        info = self._categories.get(category)
        if info is None:
            self._categories[category] = ResourceCategory(current_usage=load * 100.0)
        else:
            info.current_usage = load * info.max_capacity
        self._update_system_load()

    def snapshot(self) -> ResourceSnapshot:
        return ResourceSnapshot(
            system_load=self._system_load,
            categories={k: v.model_copy() for k, v in self._categories.items()},
        )

    def stats(self) -> dict[str, Any]:
        return {
            "system_load": round(self._system_load, 4),
            "categories": {
                name: round(info.current_load, 4)
                for name, info in self._categories.items()
            },
        }

    def _update_system_load(self) -> None:
        total_weight = 0.0
        weighted = 0.0
        for name, info in self._categories.items():
            weight = _LOAD_WEIGHTS.get(name, _UNKNOWN_LOAD_WEIGHT)
            weighted += info.current_load * weight
            total_weight += weight
        self._system_load = clamp(weighted / total_weight) if total_weight > 0 else 0.0

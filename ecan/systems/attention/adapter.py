"""
ECAN — Kernel Capability Adapter

Kernels are arbitrary objects. Each of the four capability accessors is
optional, as are the ``category`` and ``capabilities`` attributes, and any
of them may return partial, non-numeric or out-of-range data, or raise.

``KernelView.ingest`` reads a kernel once and substitutes defaults for
everything missing, so the allocation logic only ever sees clean numbers.
"""

from __future__ import annotations

from collections.abc import Mapping
import math
from typing import Any, Protocol

import structlog
from pydantic import Field

from ecan.primitives.common import ECANBaseModel, as_float, clamp

logger = structlog.get_logger("ecan.systems.attention.adapter")

DEFAULT_EFFICIENCY = 0.5
DEFAULT_ACCURACY = 0.5
DEFAULT_QUALITY = 0.5
DEFAULT_THROUGHPUT = 0.0
DEFAULT_USAGE = 0.5


class KernelRecord(Protocol):
    """
    Capability interface a kernel may expose. Every member is optional.

    get_performance_metrics() -> {efficiency, accuracy}
    get_current_state()       -> mapping of state features
    get_resource_usage()      -> {cpu, memory, bandwidth} as fractions
    get_output_metrics()      -> {quality, throughput}
    """

    def get_performance_metrics(self) -> Any: ...

    def get_current_state(self) -> Any: ...

    def get_resource_usage(self) -> Any: ...

    def get_output_metrics(self) -> Any: ...


def _call(record: Any, method: str, kernel_id: str) -> Any:
    fn = getattr(record, method, None)
    if not callable(fn):
        return None
    try:
        return fn()
    except Exception as exc:
        logger.debug(
            "kernel_accessor_failed",
            kernel_id=kernel_id,
            method=method,
            error=str(exc),
        )
        return None


def _field(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _fraction(source: Any, key: str, default: float) -> float:
    value = _field(source, key)
    if value is None:
        return default
    return clamp(as_float(value, default))


def _state_features(state: Any) -> dict[str, float]:
    """Numeric, finite, non-bool entries of a state mapping."""
    if isinstance(state, Mapping):
        items = state.items()
    elif state is not None and hasattr(state, "__dict__"):
        items = vars(state).items()
    else:
        return {}
    features: dict[str, float] = {}
    for key, value in items:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isnan(value) or math.isinf(value):
            continue
        features[str(key)] = float(value)
    return features


class KernelView(ECANBaseModel):
    """Defaulted, read-once snapshot of a kernel's capabilities."""

    kernel_id: str
    efficiency: float = DEFAULT_EFFICIENCY
    accuracy: float = DEFAULT_ACCURACY
    quality: float = DEFAULT_QUALITY
    throughput: float = DEFAULT_THROUGHPUT
    cpu: float = DEFAULT_USAGE
    memory: float = DEFAULT_USAGE
    bandwidth: float = DEFAULT_USAGE
    state: dict[str, float] = Field(default_factory=dict)
    category: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    # Whether the kernel actually reported these, as opposed to defaults
    has_performance: bool = False
    has_output: bool = False

    @classmethod
    def ingest(cls, kernel_id: str, record: Any) -> KernelView:
        performance = _call(record, "get_performance_metrics", kernel_id)
        state = _call(record, "get_current_state", kernel_id)
        usage = _call(record, "get_resource_usage", kernel_id)
        output = _call(record, "get_output_metrics", kernel_id)

        throughput = as_float(_field(output, "throughput"), DEFAULT_THROUGHPUT)

        category = getattr(record, "category", None)
        capabilities = getattr(record, "capabilities", None)
        if isinstance(capabilities, str) or not isinstance(capabilities, (list, tuple, set, frozenset)):
            capabilities = []

        return cls(
            kernel_id=kernel_id,
            efficiency=_fraction(performance, "efficiency", DEFAULT_EFFICIENCY),
            accuracy=_fraction(performance, "accuracy", DEFAULT_ACCURACY),
            quality=_fraction(output, "quality", DEFAULT_QUALITY),
            throughput=max(0.0, throughput),
            cpu=_fraction(usage, "cpu", DEFAULT_USAGE),
            memory=_fraction(usage, "memory", DEFAULT_USAGE),
            bandwidth=_fraction(usage, "bandwidth", DEFAULT_USAGE),
            state=_state_features(state),
            category=category if isinstance(category, str) and category else None,
            capabilities=[str(c) for c in capabilities if str(c)],
            has_performance=performance is not None,
            has_output=output is not None,
        )

    @property
    def tags(self) -> set[str]:
        tags = set(self.capabilities)
        if self.category:
            tags.add(self.category)
        return tags

    def resource_pressure(self, compute: float, memory: float, bandwidth: float) -> float:
        """Weighted mean usage across the three resource dimensions."""
        total = compute + memory + bandwidth
        if total <= 0:
            return clamp((self.cpu + self.memory + self.bandwidth) / 3.0)
        return clamp(
            (compute * self.cpu + memory * self.memory + bandwidth * self.bandwidth) / total
        )

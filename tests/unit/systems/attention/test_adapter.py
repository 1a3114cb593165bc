"""Unit tests for KernelView ingestion and the kernel registry."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from ecan.systems.attention.adapter import KernelView
from ecan.systems.attention.descriptor import (
    KernelDefinition,
    KernelRegistry,
    attention_kernel_definition,
)


class TestKernelView:
    def test_defaults_for_bare_object(self):
        view = KernelView.ingest("k", object())
        assert view.efficiency == 0.5
        assert view.throughput == 0.0
        assert view.cpu == view.memory == view.bandwidth == 0.5
        assert view.state == {}
        assert view.has_performance is False
        assert view.has_output is False

    def test_reads_attribute_style_metrics(self):
        record = SimpleNamespace(
            get_performance_metrics=lambda: SimpleNamespace(efficiency=0.9, accuracy=0.7),
            get_output_metrics=lambda: {"quality": 0.6, "throughput": 30},
            category="memory",
            capabilities=("recall", "store"),
        )
        view = KernelView.ingest("k", record)
        assert view.efficiency == 0.9
        assert view.accuracy == 0.7
        assert view.throughput == 30.0
        assert view.tags == {"memory", "recall", "store"}

    def test_clamps_and_filters(self):
        record = SimpleNamespace(
            get_resource_usage=lambda: {"cpu": 4.0, "memory": -1, "bandwidth": None},
            get_current_state=lambda: {"depth": 3, "ok": True, "name": "x", "bad": float("nan")},
            get_output_metrics=lambda: {"throughput": -10},
            capabilities="not-a-list",
        )
        view = KernelView.ingest("k", record)
        assert view.cpu == 1.0
        assert view.memory == 0.0
        assert view.bandwidth == 0.5
        assert view.state == {"depth": 3.0}
        assert view.throughput == 0.0
        assert view.capabilities == []

    def test_raising_accessor_defaults(self):
        def boom():
            raise ValueError("nope")

        view = KernelView.ingest("k", SimpleNamespace(get_performance_metrics=boom))
        assert view.efficiency == 0.5
        assert view.has_performance is False

    def test_weighted_pressure(self):
        view = KernelView(kernel_id="k", cpu=1.0, memory=0.0, bandwidth=0.0)
        assert view.resource_pressure(0.5, 0.25, 0.25) == pytest.approx(0.5)
        assert view.resource_pressure(0.0, 0.0, 0.0) == pytest.approx(1 / 3)


class TestKernelRegistry:
    def test_register_and_lookup(self):
        registry = KernelRegistry()
        registry.register(attention_kernel_definition((10, 6, 8)))
        assert "ecan-attention" in registry
        assert registry.get("ecan-attention").tensor_shape == (10, 6, 8)
        assert len(registry.by_category("attention")) == 1

    def test_missing_dependencies(self):
        registry = KernelRegistry()
        registry.register(attention_kernel_definition((10, 6, 8)))
        registry.register(
            KernelDefinition(id="task-manager", name="Task Manager", category="tasks", tensor_shape=(1,))
        )
        assert registry.missing_dependencies("ecan-attention") == [
            "autonomy-monitor",
            "memory-coordinator",
        ]
        assert registry.missing_dependencies("unknown") == []

    def test_replacing_definition(self):
        registry = KernelRegistry()
        registry.register(attention_kernel_definition((10, 6, 8)))
        registry.register(attention_kernel_definition((20, 6, 8)))
        assert len(registry) == 1
        assert registry.get("ecan-attention").tensor_shape == (20, 6, 8)

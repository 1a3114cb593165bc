"""
ECAN — Attention Allocation Kernel

One allocation pass:
  1. ingest kernels through ``KernelView`` (defaults for anything missing)
  2. score utility, novelty, goal alignment and resource pressure
  3. STI = 0.3 * utility + 0.3 * novelty + 0.4 * goal_alignment
  4. integrate the scores into the attention field (decay / amplification)
  5. settle the economics ledger (scarcity scale-down, taxation, demand)
  6. log the pass and hand the field to the meta-cognitive controller

Field, economics and policy history persist across passes, so the kernel
is deliberately not a pure function of its inputs. Passes are serialised
by an instance lock. Malformed input is defaulted, never raised.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
import threading
from typing import Any

import numpy as np
import structlog
from pydantic import ValidationError

from ecan.config import AttentionConfig, MetaCognitionConfig
from ecan.primitives.common import clamp
from ecan.systems.attention.adapter import KernelView
from ecan.systems.attention.descriptor import KernelDefinition, attention_kernel_definition
from ecan.systems.attention.field import AttentionField
from ecan.systems.attention.meta import MetaCognitiveController
from ecan.systems.attention.types import (
    NUM_FACTORS,
    STI_GOAL_WEIGHT,
    STI_NOVELTY_WEIGHT,
    STI_UTILITY_WEIGHT,
    AttentionEconomics,
    AttentionFactor,
    AttentionValues,
    EconomicPolicies,
    EconomicResources,
    FieldDynamics,
    Goal,
    MarketState,
    PolicyRecord,
)
from ecan.systems.episodic.sink import EpisodicSink

logger = structlog.get_logger("ecan.systems.attention.kernel")

# Demand above this ratio of capacity raises the tax rate
_SCARCITY_TAX_TRIGGER = 1.2
_TAX_GROWTH = 1.1
# How fast demand relaxes back toward baseline once scarcity ends
_DEMAND_RELAXATION = 0.5
_ACTIVATION_GAIN = 1.5
_NOVELTY_EPS = 1e-9


def compute_sti(utility: float, novelty: float, goal_alignment: float) -> float:
    return clamp(
        STI_UTILITY_WEIGHT * utility
        + STI_NOVELTY_WEIGHT * novelty
        + STI_GOAL_WEIGHT * goal_alignment
    )


class AttentionKernel:
    """
    Economic attention allocator over a set of competing kernels.

    Usage:
        kernel = AttentionKernel(AttentionConfig())
        field = kernel.allocate_attention({"semantic-memory": record}, goals)
        kernel.get_attention_value("semantic-memory").sti
    """

    def __init__(
        self,
        config: AttentionConfig | None = None,
        meta_config: MetaCognitionConfig | None = None,
        episodic_sink: EpisodicSink | None = None,
    ) -> None:
        self._config = config or AttentionConfig()
        cfg = self._config

        self.field = AttentionField(
            max_kernels=cfg.max_kernels,
            temporal_slots=cfg.temporal_slots,
            dynamics=FieldDynamics(
                decay=cfg.decay,
                amplification=cfg.amplification,
                coherence=cfg.coherence,
                diffusion=cfg.diffusion,
                high_activation_threshold=cfg.high_activation_threshold,
            ),
        )
        self.economics = AttentionEconomics(
            resources=EconomicResources(
                total=cfg.total_resources,
                reserved=cfg.reserved_resources,
                emergency=cfg.emergency_resources,
            ),
            policies=EconomicPolicies(taxation=cfg.taxation),
            market=MarketState(demand=cfg.initial_demand),
        )
        self.meta = MetaCognitiveController(
            meta_config,
            episodic_sink=episodic_sink,
            monitoring_logging=cfg.logging_enabled,
            monitoring_visualization=cfg.visualization_enabled,
        )

        self._lock = threading.Lock()
        self._novelty_history: dict[str, deque[dict[str, float]]] = {}
        self._last_values: dict[str, AttentionValues] = {}
        self._last_views: dict[str, KernelView] = {}
        self._passes: int = 0
        self._total_dropped: int = 0
        self._logger = logger.bind(component="attention_kernel")

    # ─── Allocation ───────────────────────────────────────────────────

    def allocate_attention(
        self,
        kernels: Mapping[str, Any] | None = None,
        goals: Iterable[Goal | Mapping[str, Any]] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> AttentionField:
        """Run one allocation pass and return the (live) attention field."""
        with self._lock:
            self._allocate(kernels, goals, context or {})
        return self.field

    def _allocate(
        self,
        kernels: Mapping[str, Any] | None,
        goals: Iterable[Goal | Mapping[str, Any]] | None,
        context: Mapping[str, Any],
    ) -> None:
        views, dropped = self._ingest(kernels)
        goal_list = self._parse_goals(goals)

        values: dict[str, AttentionValues] = {}
        for row, view in views:
            values[view.kernel_id] = self._score(view, row, goal_list)

        self.field.integrate({v.row: v.as_factors() for v in values.values()})
        self._settle_economics(values)
        self._last_values = values
        self._last_views = {view.kernel_id: view for _, view in views}
        self._passes += 1

        resources = self.economics.resources
        if self.meta.state.monitoring.logging:
            self._logger.info(
                "attention_allocated",
                pass_number=self._passes,
                kernels=len(values),
                dropped=dropped,
                goals=len(goal_list),
                field_shape=list(self.field.shape),
                total=resources.total,
                reserved=round(resources.reserved, 3),
                allocated=round(resources.allocated, 3),
                demand=round(self.economics.market.demand, 4),
                taxation=round(self.economics.policies.taxation, 4),
                source=context.get("source"),
            )

        self.meta.check_and_adapt(self.field, self.economics)

    def _ingest(self, kernels: Any) -> tuple[list[tuple[int, KernelView]], int]:
        if kernels is None:
            return [], 0
        if not isinstance(kernels, Mapping):
            self._logger.warning("kernels_not_a_mapping", type=type(kernels).__name__)
            return [], 0

        views: list[tuple[int, KernelView]] = []
        dropped = 0
        for raw_id, record in kernels.items():
            kernel_id = str(raw_id).strip() if raw_id is not None else ""
            if not kernel_id:
                continue
            row = self.field.assign(kernel_id)
            if row is None:
                dropped += 1
                continue
            views.append((row, KernelView.ingest(kernel_id, record)))

        if dropped:
            self._total_dropped += dropped
            self._logger.warning(
                "kernels_beyond_field_capacity",
                dropped=dropped,
                capacity=self.field.capacity,
            )
        return views, dropped

    def _parse_goals(self, goals: Any) -> list[Goal]:
        if goals is None or isinstance(goals, (str, bytes)):
            return []
        try:
            items = list(goals)
        except TypeError:
            return []
        parsed: list[Goal] = []
        for item in items:
            if isinstance(item, Goal):
                parsed.append(item)
                continue
            try:
                parsed.append(Goal.model_validate(item))
            except ValidationError:
                self._logger.debug("goal_ignored", goal=repr(item)[:80])
        return parsed

    # ─── Scoring ──────────────────────────────────────────────────────

    def _score(self, view: KernelView, row: int, goals: list[Goal]) -> AttentionValues:
        weights = self.field.allocation
        utility = self._utility(view)
        novelty = self._novelty(view)
        goal_alignment = self._goal_alignment(view, goals)
        pressure = view.resource_pressure(weights.compute, weights.memory, weights.bandwidth)

        sti = compute_sti(utility, novelty, goal_alignment)
        resource_efficiency = utility * (1.0 - 0.5 * pressure)
        lti = clamp(0.5 * resource_efficiency + 0.5 * goal_alignment)
        activation = clamp(min(1.0, _ACTIVATION_GAIN * sti) * (1.0 - 0.5 * pressure))

        return AttentionValues(
            kernel_id=view.kernel_id,
            row=row,
            sti=sti,
            lti=lti,
            novelty=novelty,
            utility=utility,
            goal_alignment=goal_alignment,
            activation=activation,
            resource_pressure=pressure,
        )

    def _utility(self, view: KernelView) -> float:
        """Mean of reported performance and normalised output quality."""
        parts: list[float] = []
        if view.has_performance or not view.has_output:
            parts.append(view.efficiency * view.accuracy)
        if view.has_output:
            half = self._config.throughput_half_saturation
            parts.append(view.quality * (view.throughput / (view.throughput + half)))
        return clamp(sum(parts) / len(parts))

    def _novelty(self, view: KernelView) -> float:
        """
        Minimum relative distance between the current state and any state
        seen for this kernel. Unseen kernels score 1, empty states the default.
        """
        if not view.state:
            return self._config.default_novelty

        history = self._novelty_history.get(view.kernel_id)
        if history is None:
            history = deque(maxlen=self._config.novelty_history)
            self._novelty_history[view.kernel_id] = history
            novelty = 1.0
        else:
            novelty = min(
                (_relative_distance(view.state, seen) for seen in history),
                default=1.0,
            )
        history.append(dict(view.state))
        return clamp(novelty)

    def _goal_alignment(self, view: KernelView, goals: list[Goal]) -> float:
        """Priority-weighted match, normalised once total priority exceeds 1."""
        if not goals:
            return self._config.default_goal_alignment
        tags = view.tags
        weighted = 0.0
        total_priority = 0.0
        for goal in goals:
            total_priority += goal.priority
            if view.kernel_id in goal.target_kernels:
                match = 1.0
            elif goal.tags and tags:
                match = len(tags.intersection(goal.tags)) / len(set(goal.tags))
            else:
                match = 0.0
            weighted += goal.priority * match
        return clamp(weighted / max(total_priority, 1.0))

    # ─── Economics ────────────────────────────────────────────────────

    def _settle_economics(self, values: dict[str, AttentionValues]) -> None:
        resources = self.economics.resources
        policies = self.economics.policies
        market = self.economics.market
        weights = self.field.allocation

        # Grants are per cycle: release the previous cycle's first
        resources.allocated = 0.0

        unit = self._config.resource_unit_cost
        requested = 0.0
        for v in values.values():
            boost = 1.0 + policies.investment * v.lti + weights.priority * v.goal_alignment
            v.requested_resources = (
                unit * v.sti * (1.0 + v.resource_pressure) * boost * (1.0 - policies.conservation)
            )
            requested += v.requested_resources

        capacity = resources.capacity
        if requested > capacity and requested > 0:
            scale = (capacity / requested) * (1.0 - policies.taxation)
            for v in values.values():
                v.granted_resources = v.requested_resources * scale
            market.demand = requested / max(capacity, 1.0)
            market.supply = capacity / requested
            market.competition = clamp(1.0 - market.supply)
            if market.demand > _SCARCITY_TAX_TRIGGER:
                policies.taxation = min(
                    self._config.max_taxation, policies.taxation * _TAX_GROWTH
                )
        else:
            for v in values.values():
                v.granted_resources = v.requested_resources
            market.demand += (self._config.initial_demand - market.demand) * _DEMAND_RELAXATION
            market.supply = 1.0

        granted = sum(v.granted_resources for v in values.values())
        resources.allocated = min(resources.total, max(0.0, granted))

    # ─── Reads ────────────────────────────────────────────────────────

    @property
    def config(self) -> AttentionConfig:
        return self._config

    @property
    def passes(self) -> int:
        return self._passes

    @property
    def last_values(self) -> dict[str, AttentionValues]:
        return dict(self._last_values)

    @property
    def last_views(self) -> dict[str, KernelView]:
        """Capability snapshots taken during the last pass."""
        return dict(self._last_views)

    def get_attention_value(self, kernel_id: str) -> AttentionValues | None:
        return self._last_values.get(kernel_id)

    def get_economics(self) -> AttentionEconomics:
        return self.economics.model_copy(deep=True)

    def get_policy_history(self) -> list[PolicyRecord]:
        return list(self.meta.policy_history)

    def decay_field(self, steps: int = 1) -> None:
        """Let time pass without observations."""
        with self._lock:
            self.field.decay(steps)

    def visualize(self, top_n: int = 10) -> list[dict[str, Any]]:
        """Kernels ranked by current field STI, for dashboards."""
        if not self.meta.state.monitoring.visualization:
            return []
        ranked = []
        for kernel_id in self.field.kernel_ids:
            factors = self.field.current(kernel_id) or {}
            ranked.append({"kernel_id": kernel_id, **factors})
        ranked.sort(key=lambda r: r.get("sti", 0.0), reverse=True)
        return ranked[: max(0, top_n)]

    def stats(self) -> dict[str, Any]:
        sti = self.field.factor_column(AttentionFactor.STI)
        return {
            "passes": self._passes,
            "active_kernels": len(self.field),
            "dropped_kernels": self._total_dropped,
            "mean_sti": float(np.mean(sti)) if sti.size else 0.0,
            "allocated": self.economics.resources.allocated,
            "utilisation": self.economics.utilisation,
            "meta": self.meta.stats(),
        }

    @staticmethod
    def create_kernel_definition(config: AttentionConfig | None = None) -> KernelDefinition:
        cfg = config or AttentionConfig()
        return attention_kernel_definition((cfg.max_kernels, NUM_FACTORS, cfg.temporal_slots))


def _relative_distance(current: dict[str, float], seen: dict[str, float]) -> float:
    """L1 distance over the union of keys, scaled into [0, 1]."""
    keys = current.keys() | seen.keys()
    diff = 0.0
    scale = 0.0
    for key in keys:
        a = current.get(key, 0.0)
        b = seen.get(key, 0.0)
        diff += abs(a - b)
        scale += abs(a) + abs(b)
    if scale <= _NOVELTY_EPS:
        return 0.0
    return diff / scale

"""
ECAN — Meta-Cognitive Controller

Watches allocation efficiency after every pass and, when it stays low over
a rolling window, applies one self-modification strategy to the field
dynamics, the economics policies or the allocation weights.

Strategies rotate round-robin. Each application is appended to a bounded
policy history; its ``efficiency_after`` is filled on the following pass.

Adaptation is advisory. Every failure inside the controller is logged and
swallowed so that an allocation pass can never fail because of it.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from ecan.config import MetaCognitionConfig
from ecan.primitives.common import clamp
from ecan.systems.attention.types import (
    AttentionEconomics,
    AttentionFactor,
    MetaCognitionState,
    ModificationStrategy,
    PolicyRecord,
    SelfModificationState,
)

from ecan.systems.episodic.sink import (
    EpisodicContent,
    EpisodicEntry,
    EpisodicMetadata,
    EpisodicSink,
)

if TYPE_CHECKING:
    from ecan.systems.attention.field import AttentionField

logger = structlog.get_logger("ecan.systems.attention.meta")

# Bounds the strategies move parameters within
_MAX_AMPLIFICATION = 2.0
_MAX_INVESTMENT = 0.5
_MIN_THRESHOLD = 0.5
_MAX_THRESHOLD = 0.9
_MIN_DECAY = 0.001
_MAX_COMPUTE_WEIGHT = 0.6
_MAX_PRIORITY_WEIGHT = 0.3


class MetaCognitiveController:
    """
    Self-modification loop over an attention kernel's tunables.

    Usage:
        controller = MetaCognitiveController(config)
        record = controller.check_and_adapt(field, economics)
    """

    def __init__(
        self,
        config: MetaCognitionConfig | None = None,
        episodic_sink: EpisodicSink | None = None,
        monitoring_logging: bool = True,
        monitoring_visualization: bool = True,
    ) -> None:
        self._config = config or MetaCognitionConfig()
        self._sink = episodic_sink
        self._logger = logger.bind(component="meta_cognition")

        strategies = [ModificationStrategy(s) for s in self._config.strategies]
        self.state = MetaCognitionState(
            self_modification=SelfModificationState(
                enabled=self._config.enabled,
                threshold=self._config.efficiency_threshold,
                strategies=strategies,
            ),
        )
        self.state.monitoring.logging = monitoring_logging
        self.state.monitoring.visualization = monitoring_visualization

        self._window: deque[float] = deque(maxlen=self._config.window_size)
        self._next_strategy: int = 0
        self._awaiting_after: PolicyRecord | None = None
        self._last_efficiency: float | None = None

    @property
    def policy_history(self) -> list[PolicyRecord]:
        return self.state.policy_history

    @property
    def last_efficiency(self) -> float | None:
        return self._last_efficiency

    # ─── Efficiency ───────────────────────────────────────────────────

    @staticmethod
    def measure_efficiency(field: AttentionField, economics: AttentionEconomics) -> float:
        """Half mean STI of assigned rows, half resource utilisation."""
        sti = field.factor_column(AttentionFactor.STI)
        mean_sti = float(np.mean(sti)) if sti.size else 0.0
        return clamp(0.5 * mean_sti + 0.5 * economics.utilisation)

    # ─── Main Loop ────────────────────────────────────────────────────

    def check_and_adapt(
        self,
        field: AttentionField,
        economics: AttentionEconomics,
    ) -> PolicyRecord | None:
        """Observe one pass. Returns the record if a strategy fired."""
        try:
            return self._check_and_adapt(field, economics)
        except Exception as exc:
            self._logger.error("meta_cognition_failed", error=str(exc), exc_info=True)
            return None

    def _check_and_adapt(
        self,
        field: AttentionField,
        economics: AttentionEconomics,
    ) -> PolicyRecord | None:
        efficiency = self.measure_efficiency(field, economics)
        self._last_efficiency = efficiency

        if self._awaiting_after is not None:
            self._awaiting_after.efficiency_after = efficiency
            self._awaiting_after = None

        modification = self.state.self_modification
        if not modification.enabled or not modification.strategies:
            return None

        self._window.append(efficiency)
        if len(self._window) < self._config.min_observations:
            return None

        window_mean = float(np.mean(self._window))
        if window_mean >= modification.threshold:
            return None

        strategy = modification.strategies[self._next_strategy % len(modification.strategies)]
        self._next_strategy += 1
        parameters = self._apply(strategy, field, economics)

        record = PolicyRecord(
            strategy=strategy,
            efficiency_before=efficiency,
            parameters=parameters,
        )
        self._append(record)
        self._awaiting_after = record
        self._window.clear()

        self._logger.info(
            "self_modification_applied",
            strategy=str(strategy),
            efficiency=round(efficiency, 4),
            window_mean=round(window_mean, 4),
            total_modifications=self.state.total_modifications,
        )
        self._record_episode(record, window_mean)
        return record

    def _append(self, record: PolicyRecord) -> None:
        history = self.state.policy_history
        history.append(record)
        overflow = len(history) - self._config.policy_history_limit
        if overflow > 0:
            del history[:overflow]
        self.state.total_modifications += 1

    # ─── Strategies ───────────────────────────────────────────────────

    def _apply(
        self,
        strategy: ModificationStrategy,
        field: AttentionField,
        economics: AttentionEconomics,
    ) -> dict[str, float]:
        dynamics = field.dynamics
        policies = economics.policies
        resources = economics.resources
        weights = field.allocation

        if strategy == ModificationStrategy.POLICY_ADJUSTMENT:
            dynamics.amplification = min(_MAX_AMPLIFICATION, dynamics.amplification * 1.05)
            policies.investment = min(_MAX_INVESTMENT, policies.investment + 0.05)
            policies.conservation = max(0.0, policies.conservation - 0.01)
            return {
                "amplification": dynamics.amplification,
                "investment": policies.investment,
                "conservation": policies.conservation,
            }

        if strategy == ModificationStrategy.THRESHOLD_TUNING:
            dynamics.high_activation_threshold = min(
                _MAX_THRESHOLD,
                max(_MIN_THRESHOLD, dynamics.high_activation_threshold - 0.05),
            )
            dynamics.decay = max(_MIN_DECAY, dynamics.decay * 0.9)
            return {
                "high_activation_threshold": dynamics.high_activation_threshold,
                "decay": dynamics.decay,
            }

        # RESOURCE_REALLOCATION
        resources.reserved = max(
            min(resources.emergency, resources.reserved), resources.reserved * 0.9
        )
        weights.compute = min(_MAX_COMPUTE_WEIGHT, weights.compute + 0.05)
        weights.priority = min(_MAX_PRIORITY_WEIGHT, weights.priority + 0.02)
        total = weights.compute + weights.memory + weights.bandwidth + weights.priority
        if total > 0:
            weights.compute /= total
            weights.memory /= total
            weights.bandwidth /= total
            weights.priority /= total
        return {
            "reserved": resources.reserved,
            "compute_weight": weights.compute,
            "priority_weight": weights.priority,
        }

    # ─── Episodic ─────────────────────────────────────────────────────

    def _record_episode(self, record: PolicyRecord, window_mean: float) -> None:
        if self._sink is None:
            return
        entry = EpisodicEntry(
            type="improvement_cycle",
            content=EpisodicContent(
                observations=[
                    f"Allocation efficiency averaged {window_mean:.3f} over the window",
                ],
                patterns=[f"efficiency_below_threshold:{self.state.self_modification.threshold:.2f}"],
                improvements=[f"{record.strategy}: {record.parameters}"],
            ),
            metadata=EpisodicMetadata(
                importance=clamp(1.0 - window_mean),
                tags=["ecan", "meta_cognition", str(record.strategy)],
            ),
        )
        try:
            self._sink.record(entry)
        except Exception as exc:
            self._logger.warning("episodic_record_failed", error=str(exc))

    def stats(self) -> dict[str, Any]:
        return {
            "enabled": self.state.self_modification.enabled,
            "total_modifications": self.state.total_modifications,
            "history_length": len(self.state.policy_history),
            "last_efficiency": self._last_efficiency,
            "window": list(self._window),
        }

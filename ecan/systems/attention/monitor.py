"""
ECAN — Attention Monitor

Watches the stream of allocation results and reports on it.

For every observed result the monitor:
  1. keeps a compact snapshot (efficiency, utilisation, per-kernel vectors)
  2. raises alerts on low efficiency, high utilisation or many bottlenecks
  3. fits a least-squares line through recent effectiveness readings to
     call the trend and how much to trust it (R²)
  4. scores pattern stability as the similarity of consecutive snapshots
  5. writes a report with learning insights

Snapshots and reports live in bounded histories that can be exported.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from ecan.config import MonitorConfig
from ecan.primitives.common import clamp, utc_now
from ecan.systems.attention.types import (
    AlertKind,
    AttentionAlert,
    MonitorReport,
    MonitorSnapshot,
    PolicyRecord,
    TrendAnalysis,
    TrendDirection,
)

if TYPE_CHECKING:
    from ecan.systems.coordinator.types import AllocationResult

logger = structlog.get_logger("ecan.systems.attention.monitor")

_VECTOR_FIELDS = ("sti", "lti", "activation", "novelty", "utility")

# Insight rules
_EFFECTIVENESS_DELTA = 0.05
_MODIFICATION_WINDOW = 5
_MODIFICATION_EFFECTIVE = 0.8
_MODIFICATION_WEAK = 0.5
_HIGH_UTILIZATION = 0.9
_LOW_UTILIZATION = 0.3
_STABLE = 0.8
_UNSTABLE = 0.4
_REPORTED_MODIFICATIONS = 10


class AttentionMonitor:
    """
    Alerting, trend and stability reporting over allocation results.

    Usage:
        monitor = AttentionMonitor(config)
        report = monitor.observe(result, kernel.get_policy_history())
        if report.alerts: ...
    """

    def __init__(self, config: MonitorConfig | None = None) -> None:
        self._config = config or MonitorConfig()
        self._snapshots: deque[MonitorSnapshot] = deque(maxlen=self._config.history_limit)
        self._reports: deque[MonitorReport] = deque(maxlen=self._config.report_history_limit)
        self._total_observed: int = 0
        self._total_alerts: int = 0
        self._logger = logger.bind(component="attention_monitor")

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def snapshots(self) -> list[MonitorSnapshot]:
        return list(self._snapshots)

    @property
    def reports(self) -> list[MonitorReport]:
        return list(self._reports)

    @property
    def last_report(self) -> MonitorReport | None:
        return self._reports[-1] if self._reports else None

    # ─── Observation ──────────────────────────────────────────────────

    def observe(
        self,
        result: AllocationResult,
        policy_history: Sequence[PolicyRecord] | None = None,
    ) -> MonitorReport:
        """Record one allocation result and return the report for it."""
        snapshot = self._snapshot(result)
        previous = self._reports[-1] if self._reports else None
        self._snapshots.append(snapshot)
        self._total_observed += 1

        alerts = self.check_alerts(result)
        trend = self.trend(snapshot.effectiveness)
        stability = self.pattern_stability()
        history = list(policy_history or [])

        report = MonitorReport(
            result_id=result.id,
            effectiveness=snapshot.effectiveness,
            patterns=[p.type for p in result.meta_analysis.patterns],
            self_modifications=history[-_REPORTED_MODIFICATIONS:],
            insights=self._insights(snapshot, previous, history, stability),
            alerts=alerts,
            trend=trend,
            stability=stability,
        )
        self._reports.append(report)

        for alert in alerts:
            self._logger.warning(
                "attention_alert",
                kind=str(alert.kind),
                value=round(alert.value, 4),
                threshold=alert.threshold,
            )
        self._logger.debug(
            "allocation_observed",
            result_id=result.id,
            trend=str(trend.direction),
            confidence=round(trend.confidence, 3),
            stability=round(stability, 3),
        )
        return report

    def _snapshot(self, result: AllocationResult) -> MonitorSnapshot:
        vectors = {
            kernel_id: [float(getattr(allocation, name)) for name in _VECTOR_FIELDS]
            for kernel_id, allocation in result.allocations.items()
        }
        allocations = list(result.allocations.values())

        def mean(name: str) -> float:
            if not allocations:
                return 0.0
            return float(np.mean([getattr(a, name) for a in allocations]))

        optimization = result.optimization
        return MonitorSnapshot(
            result_id=result.id,
            timestamp=result.timestamp,
            efficiency=optimization.efficiency,
            utilization=optimization.utilization,
            effectiveness=result.meta_analysis.effectiveness,
            bottlenecks=len(optimization.bottlenecks),
            kernel_vectors=vectors,
            mean_activation=mean("activation"),
            mean_novelty=mean("novelty"),
            mean_utility=mean("utility"),
        )

    # ─── Alerts ───────────────────────────────────────────────────────

    def check_alerts(self, result: AllocationResult) -> list[AttentionAlert]:
        config = self._config
        optimization = result.optimization
        alerts: list[AttentionAlert] = []

        if optimization.efficiency < config.efficiency_alert:
            alerts.append(
                AttentionAlert(
                    kind=AlertKind.EFFICIENCY,
                    value=optimization.efficiency,
                    threshold=config.efficiency_alert,
                    message=f"Low efficiency alert: {optimization.efficiency:.3f}",
                )
            )
        if optimization.utilization > config.utilization_alert:
            alerts.append(
                AttentionAlert(
                    kind=AlertKind.UTILIZATION,
                    value=optimization.utilization,
                    threshold=config.utilization_alert,
                    message=f"High utilization alert: {optimization.utilization:.3f}",
                )
            )
        count = len(optimization.bottlenecks)
        if count > config.bottleneck_alert:
            alerts.append(
                AttentionAlert(
                    kind=AlertKind.BOTTLENECKS,
                    value=float(count),
                    threshold=float(config.bottleneck_alert),
                    message=f"Multiple bottlenecks detected: {count}",
                )
            )

        self._total_alerts += len(alerts)
        return alerts

    # ─── Trend ────────────────────────────────────────────────────────

    def trend(self, current: float | None = None) -> TrendAnalysis:
        """
        Trend over the last ``trend_window`` effectiveness readings.

        ``current``, when given, is appended as the newest reading. Fewer
        than three readings report a stable trend at confidence 0.5.
        """
        readings = [r.effectiveness for r in self._reports]
        if current is not None:
            readings.append(current)
        readings = readings[-self._config.trend_window:]

        if len(readings) < 3:
            return TrendAnalysis(samples=len(readings))

        slope, r_squared = fit_trend(readings)
        threshold = self._config.trend_threshold
        if slope > threshold:
            direction = TrendDirection.IMPROVING
        elif slope < -threshold:
            direction = TrendDirection.DECLINING
        else:
            direction = TrendDirection.STABLE

        return TrendAnalysis(
            direction=direction,
            slope=slope,
            confidence=r_squared,
            projected_next=readings[-1] + slope,
            samples=len(readings),
        )

    # ─── Stability ────────────────────────────────────────────────────

    def pattern_stability(self) -> float:
        recent = list(self._snapshots)[-self._config.stability_window:]
        if len(recent) < 2:
            return 1.0
        similarities = [
            snapshot_similarity(a, b) for a, b in zip(recent, recent[1:])
        ]
        return float(np.mean(similarities))

    # ─── Insights ─────────────────────────────────────────────────────

    def _insights(
        self,
        snapshot: MonitorSnapshot,
        previous: MonitorReport | None,
        policy_history: list[PolicyRecord],
        stability: float,
    ) -> list[str]:
        insights: list[str] = []

        if previous is not None:
            delta = snapshot.effectiveness - previous.effectiveness
            if delta > _EFFECTIVENESS_DELTA:
                insights.append("Attention allocation effectiveness is improving")
            elif delta < -_EFFECTIVENESS_DELTA:
                insights.append(
                    "Attention allocation effectiveness is declining - investigate causes"
                )

        # Only modifications whose outcome has been measured
        outcomes = [
            r.efficiency_after
            for r in policy_history[-_MODIFICATION_WINDOW:]
            if r.efficiency_after is not None
        ]
        if outcomes:
            mean_outcome = float(np.mean(outcomes))
            if mean_outcome > _MODIFICATION_EFFECTIVE:
                insights.append("Self-modification strategies are highly effective")
            elif mean_outcome < _MODIFICATION_WEAK:
                insights.append("Self-modification strategies need improvement")

        if snapshot.utilization > _HIGH_UTILIZATION:
            insights.append(
                "System approaching resource limits - consider scaling or optimization"
            )
        elif snapshot.utilization < _LOW_UTILIZATION:
            insights.append(
                "System underutilized - opportunity for increased task complexity"
            )

        if len(self._snapshots) >= self._config.stability_window:
            if stability > _STABLE:
                insights.append("Attention patterns are stable and predictable")
            elif stability < _UNSTABLE:
                insights.append(
                    "Attention patterns are highly variable - may indicate system instability"
                )

        return insights

    # ─── Export ───────────────────────────────────────────────────────

    def export(self) -> dict[str, Any]:
        """JSON-ready dump of thresholds and both histories."""
        return {
            "metadata": {
                "exported_at": utc_now().isoformat(),
                "thresholds": {
                    "efficiency": self._config.efficiency_alert,
                    "utilization": self._config.utilization_alert,
                    "bottlenecks": self._config.bottleneck_alert,
                },
                "history_length": {
                    "snapshots": len(self._snapshots),
                    "reports": len(self._reports),
                },
            },
            "snapshots": [s.model_dump(mode="json") for s in self._snapshots],
            "reports": [r.model_dump(mode="json") for r in self._reports],
        }

    def stats(self) -> dict[str, Any]:
        last = self._reports[-1] if self._reports else None
        return {
            "observed": self._total_observed,
            "alerts": self._total_alerts,
            "snapshots": len(self._snapshots),
            "reports": len(self._reports),
            "trend": str(last.trend.direction) if last else None,
            "stability": last.stability if last else None,
        }


def fit_trend(values: Sequence[float]) -> tuple[float, float]:
    """Least-squares slope per step and the fit's R², clamped to [0, 1]."""
    y = np.asarray(values, dtype=np.float64)
    if y.size < 2:
        return 0.0, 0.0
    x = np.arange(y.size, dtype=np.float64)
    slope, intercept = np.polyfit(x, y, 1)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot <= 0.0:
        return float(slope), 0.0
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    return float(slope), clamp(1.0 - ss_res / ss_tot)


def snapshot_similarity(a: MonitorSnapshot, b: MonitorSnapshot) -> float:
    """Mean of 1 - |Δ| over every factor of the kernels both snapshots share."""
    if not a.kernel_vectors and not b.kernel_vectors:
        return 1.0
    shared = a.kernel_vectors.keys() & b.kernel_vectors.keys()
    if not shared:
        return 0.0
    diffs = [
        abs(x - y)
        for kernel_id in shared
        for x, y in zip(a.kernel_vectors[kernel_id], b.kernel_vectors[kernel_id])
    ]
    return clamp(1.0 - float(np.mean(diffs)))

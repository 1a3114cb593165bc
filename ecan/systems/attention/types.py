"""
ECAN — Attention Type Definitions

Data types for the attention field, per-kernel attention values, the
resource-economics ledger, and meta-cognitive policy history.
"""

from __future__ import annotations

from datetime import datetime
import enum
from typing import Any

from pydantic import Field, field_validator

from ecan.primitives.common import ECANBaseModel, clamp, new_id, utc_now


# ─── Field Layout ─────────────────────────────────────────────────────


class AttentionFactor(enum.IntEnum):
    """Index of each factor along the field's second axis."""

    STI = 0
    LTI = 1
    NOVELTY = 2
    UTILITY = 3
    GOAL_ALIGNMENT = 4
    ACTIVATION = 5


NUM_FACTORS = len(AttentionFactor)

# Load-bearing STI weighting. Self-modification never touches these.
STI_UTILITY_WEIGHT = 0.3
STI_NOVELTY_WEIGHT = 0.3
STI_GOAL_WEIGHT = 0.4


class FieldDynamics(ECANBaseModel):
    decay: float = 0.01
    amplification: float = 1.2
    # Weight of the previous value when integrating a new observation
    coherence: float = 0.8
    # Smoothing between adjacent history slots
    diffusion: float = 0.1
    high_activation_threshold: float = 0.7


class AllocationWeights(ECANBaseModel):
    """Relative weight of each resource dimension in pressure and requests."""

    compute: float = 0.4
    memory: float = 0.3
    bandwidth: float = 0.2
    priority: float = 0.1


# ─── Goals ────────────────────────────────────────────────────────────


class Goal(ECANBaseModel):
    """
    An active goal competing for attention.

    A kernel matches a goal fully when it is listed in ``target_kernels``,
    and partially by overlap between its category/capabilities and ``tags``.
    """

    id: str = Field(default_factory=new_id)
    description: str = ""
    priority: float = 0.5
    target_kernels: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, v: Any) -> float:
        try:
            return clamp(float(v))
        except (TypeError, ValueError):
            return 0.5


# ─── Per-kernel Values ────────────────────────────────────────────────


class AttentionValues(ECANBaseModel):
    """Scores computed for one kernel in one allocation pass."""

    kernel_id: str
    row: int
    sti: float = 0.0
    lti: float = 0.0
    novelty: float = 0.0
    utility: float = 0.0
    goal_alignment: float = 0.0
    activation: float = 0.0
    resource_pressure: float = 0.0
    requested_resources: float = 0.0
    granted_resources: float = 0.0

    def as_factors(self) -> list[float]:
        """Observation vector in field-axis order."""
        return [
            self.sti,
            self.lti,
            self.novelty,
            self.utility,
            self.goal_alignment,
            self.activation,
        ]


# ─── Economics ────────────────────────────────────────────────────────


class EconomicResources(ECANBaseModel):
    total: float = 1000.0
    reserved: float = 100.0
    allocated: float = 0.0
    emergency: float = 50.0

    @property
    def capacity(self) -> float:
        """Budget open to allocation."""
        return max(0.0, self.total - self.reserved)


class EconomicPolicies(ECANBaseModel):
    taxation: float = 0.1
    inflation: float = 0.02
    investment: float = 0.15
    conservation: float = 0.05


class MarketState(ECANBaseModel):
    demand: float = 1.0
    supply: float = 1.0
    competition: float = 0.5
    collaboration: float = 0.7


class AttentionEconomics(ECANBaseModel):
    resources: EconomicResources = Field(default_factory=EconomicResources)
    policies: EconomicPolicies = Field(default_factory=EconomicPolicies)
    market: MarketState = Field(default_factory=MarketState)

    @property
    def utilisation(self) -> float:
        capacity = self.resources.capacity
        if capacity <= 0:
            return 0.0
        return clamp(self.resources.allocated / capacity)


# ─── Meta-Cognition ───────────────────────────────────────────────────


class ModificationStrategy(enum.StrEnum):
    POLICY_ADJUSTMENT = "policy_adjustment"
    THRESHOLD_TUNING = "threshold_tuning"
    RESOURCE_REALLOCATION = "resource_reallocation"


class PolicyRecord(ECANBaseModel):
    """One self-modification event."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    strategy: ModificationStrategy
    efficiency_before: float
    # Filled in on the pass after the modification
    efficiency_after: float | None = None
    parameters: dict[str, float] = Field(default_factory=dict)


class SelfModificationState(ECANBaseModel):
    enabled: bool = True
    threshold: float = 0.6
    strategies: list[ModificationStrategy] = Field(
        default_factory=lambda: list(ModificationStrategy)
    )


class MonitoringState(ECANBaseModel):
    logging: bool = True
    visualization: bool = True


class MetaCognitionState(ECANBaseModel):
    self_modification: SelfModificationState = Field(default_factory=SelfModificationState)
    monitoring: MonitoringState = Field(default_factory=MonitoringState)
    policy_history: list[PolicyRecord] = Field(default_factory=list)
    total_modifications: int = 0


# ─── Snapshots ────────────────────────────────────────────────────────


class KernelFieldSnapshot(ECANBaseModel):
    """Current (slot 0) field values for one kernel."""

    kernel_id: str
    row: int
    factors: dict[str, float] = Field(default_factory=dict)


class FieldSnapshot(ECANBaseModel):
    shape: tuple[int, ...]
    active_kernels: int
    passes: int
    kernels: list[KernelFieldSnapshot] = Field(default_factory=list)


# ─── Monitoring ───────────────────────────────────────────────────────


class AlertKind(enum.StrEnum):
    EFFICIENCY = "efficiency"
    UTILIZATION = "utilization"
    BOTTLENECKS = "bottlenecks"


class AttentionAlert(ECANBaseModel):
    kind: AlertKind
    value: float
    threshold: float
    message: str


class TrendDirection(enum.StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class TrendAnalysis(ECANBaseModel):
    """Least-squares trend over recent effectiveness readings."""

    direction: TrendDirection = TrendDirection.STABLE
    # Effectiveness change per cycle
    slope: float = 0.0
    # R² of the fitted line, 0.5 until enough readings exist
    confidence: float = 0.5
    projected_next: float | None = None
    samples: int = 0


class MonitorSnapshot(ECANBaseModel):
    """What the monitor keeps from one allocation result."""

    result_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    efficiency: float = 0.0
    utilization: float = 0.0
    effectiveness: float = 0.0
    bottlenecks: int = 0
    # kernel_id -> [sti, lti, activation, novelty, utility]
    kernel_vectors: dict[str, list[float]] = Field(default_factory=dict)
    mean_activation: float = 0.0
    mean_novelty: float = 0.0
    mean_utility: float = 0.0


class MonitorReport(ECANBaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    result_id: str
    effectiveness: float = 0.0
    patterns: list[str] = Field(default_factory=list)
    self_modifications: list[PolicyRecord] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    alerts: list[AttentionAlert] = Field(default_factory=list)
    trend: TrendAnalysis = Field(default_factory=TrendAnalysis)
    # Mean similarity of consecutive snapshots, 1.0 with too little history
    stability: float = 1.0

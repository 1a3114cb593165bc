"""
ECAN — Coordinator Type Definitions

Distributed tasks as submitted by callers, and everything a coordination
pass reports back: per-kernel allocations, optimisation diagnostics,
meta-analysis, attention-shift analysis and verification.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from ecan.primitives.common import ECANBaseModel, as_float, clamp, new_id, utc_now
from ecan.systems.attention.types import AttentionEconomics, FieldSnapshot, MetaCognitionState
from ecan.systems.gate.types import EstimatedResources


# ─── Tasks ────────────────────────────────────────────────────────────


class DistributedTask(ECANBaseModel):
    """
    External unit of work declaring the kernels and resources it needs.

    Malformed fields are repaired rather than rejected: priority is clamped
    into [0, 1], negative resource estimates become 0, blank or duplicate
    kernel ids are dropped, and a missing name or non-mapping context falls
    back to empty.
    """

    id: str = Field(default_factory=new_id)
    name: str = ""
    priority: float = 0.5
    required_kernels: list[str] = Field(default_factory=list)
    estimated_resources: EstimatedResources = Field(default_factory=EstimatedResources)
    # Epoch seconds
    deadline: float | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        return new_id() if v is None or str(v).strip() == "" else str(v)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("context", mode="before")
    @classmethod
    def _coerce_context(cls, v: Any) -> dict[str, Any]:
        if not isinstance(v, Mapping):
            return {}
        return {str(key): value for key, value in v.items()}

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, v: Any) -> float:
        return clamp(as_float(v, 0.0))

    @field_validator("required_kernels", mode="before")
    @classmethod
    def _clean_kernels(cls, v: Any) -> list[str]:
        if v is None or isinstance(v, (str, bytes)):
            return []
        try:
            items = list(v)
        except TypeError:
            return []
        seen: list[str] = []
        for item in items:
            if item is None:
                continue
            kernel_id = str(item).strip()
            if kernel_id and kernel_id not in seen:
                seen.append(kernel_id)
        return seen

    @field_validator("estimated_resources", mode="before")
    @classmethod
    def _clamp_resources(cls, v: Any) -> Any:
        if isinstance(v, EstimatedResources):
            v = v.model_dump()
        if not isinstance(v, dict):
            return {}
        return {
            key: max(0.0, as_float(v.get(key), 0.0))
            for key in ("compute", "memory", "bandwidth")
        }

    @field_validator("deadline", mode="before")
    @classmethod
    def _coerce_deadline(cls, v: Any) -> float | None:
        if v is None:
            return None
        if isinstance(v, datetime):
            return v.timestamp()
        value = as_float(v, -1.0)
        return value if value >= 0 else None

    @property
    def total_resources(self) -> float:
        r = self.estimated_resources
        return r.compute + r.memory + r.bandwidth


class KernelDemand(ECANBaseModel):
    """Aggregated demand on one kernel from a task batch."""

    kernel_id: str
    # Combined effective priority of the tasks requiring the kernel
    priority: float = 0.0
    # Resource units routed to this kernel (each task's estimate split evenly)
    resources: float = 0.0
    task_ids: list[str] = Field(default_factory=list)


# ─── Results ──────────────────────────────────────────────────────────


class KernelAllocation(ECANBaseModel):
    """Current field values and resource grant for one kernel."""

    kernel_id: str
    sti: float = 0.0
    lti: float = 0.0
    novelty: float = 0.0
    utility: float = 0.0
    goal_alignment: float = 0.0
    activation: float = 0.0
    granted_resources: float = 0.0


class ResourceOptimization(ECANBaseModel):
    efficiency: float = 0.0
    utilization: float = 0.0
    # kernel_id -> granted resource units
    allocation: dict[str, float] = Field(default_factory=dict)
    bottlenecks: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class AttentionPattern(ECANBaseModel):
    type: str
    kernels: list[str] = Field(default_factory=list)
    strength: float = 0.0
    description: str = ""
    recommendations: list[str] = Field(default_factory=list)


class MetaAnalysis(ECANBaseModel):
    effectiveness: float = 0.0
    patterns: list[AttentionPattern] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)


class AllocationResult(ECANBaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    allocations: dict[str, KernelAllocation] = Field(default_factory=dict)
    field: FieldSnapshot
    demand: dict[str, KernelDemand] = Field(default_factory=dict)
    optimization: ResourceOptimization = Field(default_factory=ResourceOptimization)
    meta_analysis: MetaAnalysis = Field(default_factory=MetaAnalysis)
    task_ids: list[str] = Field(default_factory=list)


# ─── Attention Shifting ───────────────────────────────────────────────


class KernelShift(ECANBaseModel):
    # Signed: positive when the kernel gained attention
    sti_shift: float = 0.0
    activation_shift: float = 0.0
    utility_shift: float = 0.0
    total_shift: float = 0.0


class ShiftAnalysis(ECANBaseModel):
    kernel_shifts: dict[str, KernelShift] = Field(default_factory=dict)
    # Sum of absolute STI deltas
    total_shift: float = 0.0
    max_shift: float = 0.0
    demand_change: float = 0.0
    adaptability: float = 0.0


class ShiftResult(ECANBaseModel):
    initial: AllocationResult
    shifted: AllocationResult
    shift_analysis: ShiftAnalysis


# ─── Verification ─────────────────────────────────────────────────────


class CriterionResult(ECANBaseModel):
    met: bool
    value: float
    threshold: float


class VerificationResult(ECANBaseModel):
    verified: bool
    optimization_score: float
    details: dict[str, CriterionResult] = Field(default_factory=dict)


# ─── State ────────────────────────────────────────────────────────────


class CoordinatorState(ECANBaseModel):
    field: FieldSnapshot
    economics: AttentionEconomics
    meta_cognition: MetaCognitionState
    allocations: dict[str, KernelAllocation] = Field(default_factory=dict)
    registered_kernels: list[str] = Field(default_factory=list)
    batches_processed: int = 0

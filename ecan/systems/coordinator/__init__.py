"""
ECAN — Distributed Task Coordinator

Task batches in, kernel allocations and diagnostics out.
"""

from ecan.systems.coordinator.coordinator import DEMAND_GOAL_PREFIX, AttentionCoordinator
from ecan.systems.coordinator.kernels import StaticKernel, default_kernels
from ecan.systems.coordinator.types import (
    AllocationResult,
    AttentionPattern,
    CoordinatorState,
    CriterionResult,
    DistributedTask,
    KernelAllocation,
    KernelDemand,
    KernelShift,
    MetaAnalysis,
    ResourceOptimization,
    ShiftAnalysis,
    ShiftResult,
    VerificationResult,
)

__all__ = [
    "AllocationResult",
    "AttentionCoordinator",
    "AttentionPattern",
    "CoordinatorState",
    "CriterionResult",
    "DEMAND_GOAL_PREFIX",
    "DistributedTask",
    "KernelAllocation",
    "KernelDemand",
    "KernelShift",
    "MetaAnalysis",
    "ResourceOptimization",
    "ShiftAnalysis",
    "ShiftResult",
    "StaticKernel",
    "VerificationResult",
    "default_kernels",
]

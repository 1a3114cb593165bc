"""
ECAN — Attention Allocation

The attention field, the allocation kernel with its economics ledger, the
meta-cognitive controller that tunes it, and the monitor that reports on
allocation results.
"""

from ecan.systems.attention.adapter import KernelRecord, KernelView
from ecan.systems.attention.descriptor import (
    KernelDefinition,
    KernelInterface,
    KernelRegistry,
    attention_kernel_definition,
)
from ecan.systems.attention.field import AttentionField
from ecan.systems.attention.kernel import AttentionKernel, compute_sti
from ecan.systems.attention.meta import MetaCognitiveController
from ecan.systems.attention.monitor import AttentionMonitor, fit_trend, snapshot_similarity
from ecan.systems.attention.types import (
    AlertKind,
    AllocationWeights,
    AttentionAlert,
    AttentionEconomics,
    AttentionFactor,
    AttentionValues,
    FieldDynamics,
    Goal,
    MetaCognitionState,
    ModificationStrategy,
    MonitorReport,
    MonitorSnapshot,
    PolicyRecord,
    TrendAnalysis,
    TrendDirection,
)

__all__ = [
    "AlertKind",
    "AllocationWeights",
    "AttentionAlert",
    "AttentionEconomics",
    "AttentionFactor",
    "AttentionField",
    "AttentionKernel",
    "AttentionMonitor",
    "AttentionValues",
    "FieldDynamics",
    "Goal",
    "KernelDefinition",
    "KernelInterface",
    "KernelRecord",
    "KernelRegistry",
    "KernelView",
    "MetaCognitionState",
    "MetaCognitiveController",
    "ModificationStrategy",
    "MonitorReport",
    "MonitorSnapshot",
    "PolicyRecord",
    "TrendAnalysis",
    "TrendDirection",
    "attention_kernel_definition",
    "compute_sti",
    "fit_trend",
    "snapshot_similarity",
]

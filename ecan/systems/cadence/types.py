"""
ECAN — Cadence Type Definitions
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from ecan.primitives.common import ECANBaseModel, utc_now
from ecan.systems.attention.types import MonitorReport
from ecan.systems.coordinator.types import AllocationResult, VerificationResult
from ecan.systems.gate.types import GateStats


class CycleReport(ECANBaseModel):
    """Everything one attention cycle produced."""

    cycle_number: int
    started_at: datetime = Field(default_factory=utc_now)
    elapsed_ms: float = 0.0
    gate: GateStats
    # Ids of the dispatched tasks handed to the coordinator
    admitted: list[str] = Field(default_factory=list)
    allocation: AllocationResult
    verification: VerificationResult
    # Present when the coordinator has an attention monitor attached
    monitor: MonitorReport | None = None

"""
ECAN — Cadence

Recurring scheduling on an injectable clock, and the attention cycle it drives.
"""

from ecan.systems.cadence.clock import (
    ClockSource,
    CycleScheduler,
    ManualClock,
    MonotonicClock,
    ScheduleHandle,
    ScheduledCallback,
)
from ecan.systems.cadence.service import AttentionCycleService, to_distributed_task
from ecan.systems.cadence.types import CycleReport

__all__ = [
    "AttentionCycleService",
    "ClockSource",
    "CycleReport",
    "CycleScheduler",
    "ManualClock",
    "MonotonicClock",
    "ScheduleHandle",
    "ScheduledCallback",
    "to_distributed_task",
]

"""
ECAN — Attention Field

The field is a ``[max_kernels, 6, temporal_slots]`` tensor. Each kernel
owns one row, assigned on first sight and kept for the kernel's lifetime.
Along the temporal axis slot 0 holds the current integrated value and
slots 1.. hold earlier passes' slot-0 values, most recent first.

Per pass (``integrate``):
  1. history shifts one slot and every history cell decays
  2. each observed row blends its prior value with the new observation
     (``coherence`` weights the prior), decays, and is amplified when its
     activation exceeds the high-activation threshold
  3. rows not observed this pass decay in place
  4. the whole field is clipped to [0, 1]

Stable low inputs therefore drift strictly downward, while consistently
high-activation rows grow until they saturate.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import numpy as np
import structlog

from ecan.primitives.tensor import Tensor
from ecan.systems.attention.types import (
    NUM_FACTORS,
    AllocationWeights,
    AttentionFactor,
    FieldDynamics,
    FieldSnapshot,
    KernelFieldSnapshot,
)

logger = structlog.get_logger("ecan.systems.attention.field")


class AttentionField:
    """Per-kernel, per-factor, per-timeslot attention values in [0, 1]."""

    def __init__(
        self,
        max_kernels: int = 10000,
        temporal_slots: int = 8,
        dynamics: FieldDynamics | None = None,
        allocation: AllocationWeights | None = None,
    ) -> None:
        self._tensor = Tensor.zeros((max_kernels, NUM_FACTORS, temporal_slots))
        self.dynamics = dynamics or FieldDynamics()
        self.allocation = allocation or AllocationWeights()
        self._rows: dict[str, int] = {}
        self._initialised = np.zeros(max_kernels, dtype=bool)
        self._passes: int = 0

    # ─── Layout ───────────────────────────────────────────────────────

    @property
    def tensor(self) -> Tensor:
        return self._tensor

    @property
    def shape(self) -> tuple[int, ...]:
        return self._tensor.shape

    @property
    def capacity(self) -> int:
        return self.shape[0]

    @property
    def temporal_slots(self) -> int:
        return self.shape[2]

    @property
    def passes(self) -> int:
        return self._passes

    @property
    def kernel_ids(self) -> list[str]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, kernel_id: object) -> bool:
        return kernel_id in self._rows

    def row_of(self, kernel_id: str) -> int | None:
        return self._rows.get(kernel_id)

    def assign(self, kernel_id: str) -> int | None:
        """Return the kernel's row, assigning one if free. ``None`` when full."""
        row = self._rows.get(kernel_id)
        if row is not None:
            return row
        if len(self._rows) >= self.capacity:
            return None
        row = len(self._rows)
        self._rows[kernel_id] = row
        return row

    # ─── Dynamics ─────────────────────────────────────────────────────

    def integrate(self, observations: Mapping[int, Sequence[float]]) -> None:
        """Apply one pass of field dynamics with new per-row observations."""
        active = len(self._rows)
        if active == 0:
            self._passes += 1
            return

        d = self.dynamics
        keep = 1.0 - d.decay
        data = self._tensor.data[:active]
        prior = data[:, :, 0].copy()

        self._shift_history(data, keep)
        data[:, :, 0] *= keep

        for row, observation in observations.items():
            if row >= active:
                continue
            obs = np.clip(np.asarray(observation, dtype=np.float32), 0.0, 1.0)
            base = prior[row] if self._initialised[row] else obs
            gain = keep
            if obs[AttentionFactor.ACTIVATION] > d.high_activation_threshold:
                gain *= d.amplification
            data[row, :, 0] = gain * (d.coherence * base + (1.0 - d.coherence) * obs)
            self._initialised[row] = True

        np.clip(data, 0.0, 1.0, out=data)
        self._passes += 1

    def decay(self, steps: int = 1) -> None:
        """Idle-time decay: shift and decay without new observations."""
        active = len(self._rows)
        if active == 0 or steps <= 0:
            return
        keep = 1.0 - self.dynamics.decay
        data = self._tensor.data[:active]
        for _ in range(steps):
            self._shift_history(data, keep)
            data[:, :, 0] *= keep
        np.clip(data, 0.0, 1.0, out=data)

    def _shift_history(self, data: np.ndarray, keep: float) -> None:
        if data.shape[2] < 2:
            return
        data[:, :, 1:] = data[:, :, :-1].copy()
        diffusion = self.dynamics.diffusion
        if diffusion > 0 and data.shape[2] > 2:
            older = data[:, :, 2:]
            older += diffusion * (data[:, :, 1:-1] - older)
        data[:, :, 1:] *= keep

    # ─── Reads ────────────────────────────────────────────────────────

    def current(self, kernel_id: str) -> dict[str, float] | None:
        """Slot-0 factor values for a kernel, or ``None`` if it has no row."""
        row = self._rows.get(kernel_id)
        if row is None:
            return None
        values = self._tensor.data[row, :, 0]
        return {f.name.lower(): float(values[f]) for f in AttentionFactor}

    def history(self, kernel_id: str, factor: AttentionFactor = AttentionFactor.STI) -> list[float]:
        row = self._rows.get(kernel_id)
        if row is None:
            return []
        return [float(v) for v in self._tensor.data[row, factor, :]]

    def factor_column(self, factor: AttentionFactor) -> np.ndarray:
        """Slot-0 values of one factor for every assigned row."""
        return self._tensor.data[: len(self._rows), factor, 0].copy()

    def snapshot(self) -> FieldSnapshot:
        return FieldSnapshot(
            shape=self.shape,
            active_kernels=len(self._rows),
            passes=self._passes,
            kernels=[
                KernelFieldSnapshot(kernel_id=kid, row=row, factors=self.current(kid) or {})
                for kid, row in self._rows.items()
            ],
        )

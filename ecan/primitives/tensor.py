"""
ECAN — Tensor Primitive

Fixed-shape float32 buffer shared by the attention field and anything else
that needs a dense numeric grid. Thin wrapper over a numpy array: the shape
is set at construction and never changes.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

TensorShape = tuple[int, ...]


class Tensor:
    """A fixed-shape multi-dimensional numeric buffer."""

    __slots__ = ("_data",)

    def __init__(self, data: np.ndarray) -> None:
        self._data = np.asarray(data, dtype=np.float32)

    # ─── Construction ────────────────────────────────────────────────

    @classmethod
    def zeros(cls, shape: Sequence[int]) -> Tensor:
        return cls(np.zeros(_validate_shape(shape), dtype=np.float32))

    @classmethod
    def random(
        cls,
        shape: Sequence[int],
        seed: int | None = None,
        low: float = 0.0,
        high: float = 1.0,
    ) -> Tensor:
        """Uniform random initialisation in ``[low, high)``."""
        if high < low:
            raise ValueError(f"high ({high}) must be >= low ({low})")
        rng = np.random.default_rng(seed)
        values = rng.uniform(low, high, size=_validate_shape(shape))
        return cls(values.astype(np.float32))

    # ─── Accessors ───────────────────────────────────────────────────

    @property
    def shape(self) -> TensorShape:
        return tuple(int(d) for d in self._data.shape)

    @property
    def size(self) -> int:
        return int(self._data.size)

    @property
    def data(self) -> np.ndarray:
        """The underlying array. Mutations write through."""
        return self._data

    def copy(self) -> Tensor:
        return Tensor(self._data.copy())

    # ─── Elementwise ops (in place, return self for chaining) ────────

    def add(self, other: Tensor | float) -> Tensor:
        if isinstance(other, Tensor):
            if other.shape != self.shape:
                raise ValueError(
                    f"Shape mismatch: {self.shape} vs {other.shape}"
                )
            self._data += other.data
        else:
            self._data += np.float32(other)
        return self

    def scale(self, factor: float) -> Tensor:
        self._data *= np.float32(factor)
        return self

    def clamp(self, lo: float = 0.0, hi: float = 1.0) -> Tensor:
        np.clip(self._data, lo, hi, out=self._data)
        return self

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape})"


def _validate_shape(shape: Sequence[int]) -> TensorShape:
    dims = tuple(int(d) for d in shape)
    if not dims or any(d <= 0 for d in dims):
        raise ValueError(f"Invalid tensor shape: {tuple(shape)}")
    return dims

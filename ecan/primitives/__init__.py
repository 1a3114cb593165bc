"""ECAN shared primitives."""

from ecan.primitives.common import (
    ECANBaseModel,
    Identified,
    Timestamped,
    as_float,
    clamp,
    new_id,
    utc_now,
)
from ecan.primitives.tensor import Tensor, TensorShape

__all__ = [
    "ECANBaseModel",
    "Identified",
    "Timestamped",
    "Tensor",
    "TensorShape",
    "as_float",
    "clamp",
    "new_id",
    "utc_now",
]

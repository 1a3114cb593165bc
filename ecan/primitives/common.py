"""
ECAN — Common Primitives

Shared base models and small numeric utilities used across all systems.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp ``value`` to ``[lo, hi]``. NaN collapses to ``lo``."""
    if value != value:  # NaN
        return lo
    return max(lo, min(hi, value))


def as_float(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float, falling back to ``default``."""
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


# ─── Base Models ──────────────────────────────────────────────────


class ECANBaseModel(BaseModel):
    """Base model for all ECAN primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}


class Timestamped(ECANBaseModel):
    """Mixin for models with creation timestamps."""

    created_at: datetime = Field(default_factory=utc_now)


class Identified(ECANBaseModel):
    """Mixin for models with ULID IDs."""

    id: str = Field(default_factory=new_id)

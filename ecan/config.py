"""
ECAN — Configuration System

All configuration is Pydantic-validated and loaded from:
1. a YAML file (defaults)
2. Environment variables (overrides, ``ECAN_`` prefix, ``__`` nesting)

Every tunable parameter of the allocation core lives here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class AttentionConfig(BaseModel):
    # Field shape: [max_kernels, 6 factors, temporal_slots]
    max_kernels: int = Field(10000, ge=1)
    temporal_slots: int = Field(8, ge=1)
    # Field dynamics
    decay: float = Field(0.01, ge=0.0, lt=1.0)
    amplification: float = Field(1.2, ge=1.0)
    coherence: float = Field(0.8, ge=0.0, le=1.0)  # weight of history in slot 0
    diffusion: float = Field(0.1, ge=0.0, le=1.0)
    high_activation_threshold: float = Field(0.7, ge=0.0, le=1.0)
    # Economics
    total_resources: float = Field(1000.0, gt=0.0)
    reserved_resources: float = Field(100.0, ge=0.0)
    emergency_resources: float = Field(50.0, ge=0.0)
    taxation: float = Field(0.1, ge=0.0, lt=1.0)
    max_taxation: float = Field(0.5, ge=0.0, lt=1.0)
    initial_demand: float = Field(1.0, ge=0.0)
    resource_unit_cost: float = Field(100.0, ge=0.0)  # cost of one unit of STI
    # Scoring
    novelty_history: int = Field(16, ge=1)
    default_novelty: float = Field(0.5, ge=0.0, le=1.0)
    default_goal_alignment: float = Field(0.5, ge=0.0, le=1.0)
    throughput_half_saturation: float = Field(50.0, gt=0.0)
    # Monitoring
    logging_enabled: bool = True
    visualization_enabled: bool = True

    @model_validator(mode="after")
    def _reserved_within_total(self) -> AttentionConfig:
        if self.reserved_resources > self.total_resources:
            raise ValueError("reserved_resources cannot exceed total_resources")
        return self


class MetaCognitionConfig(BaseModel):
    enabled: bool = True
    efficiency_threshold: float = Field(0.6, ge=0.0, le=1.0)
    window_size: int = Field(5, ge=1)
    min_observations: int = Field(3, ge=1)
    policy_history_limit: int = Field(256, ge=1)
    strategies: list[str] = Field(
        default_factory=lambda: [
            "policy_adjustment",
            "threshold_tuning",
            "resource_reallocation",
        ]
    )


class GateConfig(BaseModel):
    max_retries: int = Field(3, ge=0)
    default_timeout_ms: float = Field(30000.0, gt=0.0)
    min_resource_availability: float = Field(0.3, ge=0.0, le=1.0)
    default_resource_cost: float = Field(10.0, ge=0.0)
    load_shed_threshold: float = Field(0.8, ge=0.0, le=1.0)
    high_cost_threshold: float = Field(50.0, ge=0.0)


class VerificationCriteria(BaseModel):
    min_efficiency: float = 0.6
    min_utilization: float = 0.0
    max_utilization: float = 0.95
    max_bottlenecks: int = 5
    min_task_coverage: float = 0.8


class CoordinatorConfig(BaseModel):
    # Deadlines closer than this horizon boost effective priority
    deadline_horizon_s: float = Field(3600.0, gt=0.0)
    max_deadline_boost: float = Field(0.5, ge=0.0)
    low_efficiency_threshold: float = Field(0.7, ge=0.0, le=1.0)
    optimization_history_limit: int = Field(100, ge=1)
    shift_decay_steps: int = Field(1, ge=0)
    criteria: VerificationCriteria = Field(default_factory=VerificationCriteria)


class MonitorConfig(BaseModel):
    # Alert when efficiency drops below, utilisation rises above, or the
    # bottleneck count exceeds these
    efficiency_alert: float = Field(0.5, ge=0.0, le=1.0)
    utilization_alert: float = Field(0.9, ge=0.0, le=1.0)
    bottleneck_alert: int = Field(5, ge=0)
    history_limit: int = Field(100, ge=1)
    report_history_limit: int = Field(50, ge=1)
    stability_window: int = Field(5, ge=2)
    trend_window: int = Field(5, ge=2)
    # Minimum |slope| per cycle before a trend counts as moving
    trend_threshold: float = Field(0.02, ge=0.0)


class CadenceConfig(BaseModel):
    cycle_interval_s: float = Field(5.0, gt=0.0)
    poll_interval_s: float = Field(0.25, gt=0.0)


class EpisodicConfig(BaseModel):
    max_entries: int = Field(1000, ge=1)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"
    colors: bool = True
    # Per-logger level overrides, e.g. {"ecan.systems.gate": "WARNING"}
    levels: dict[str, str] = Field(default_factory=dict)


# ─── Root Configuration ──────────────────────────────────────────


class ECANConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ECAN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "ecan-default"

    attention: AttentionConfig = Field(default_factory=AttentionConfig)
    meta: MetaCognitionConfig = Field(default_factory=MetaCognitionConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    cadence: CadenceConfig = Field(default_factory=CadenceConfig)
    episodic: EpisodicConfig = Field(default_factory=EpisodicConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _env_overrides() -> dict[str, Any]:
    """Collect ``ECAN_SECTION__FIELD`` variables into a nested dict."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith("ECAN_"):
            continue
        path = key[len("ECAN_"):].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return overrides


def load_config(config_path: str | Path | None = None) -> ECANConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Env wins over YAML. BaseSettings gives init kwargs priority over env,
    # so the merge has to happen here.
    raw = _deep_merge(raw, _env_overrides())

    return ECANConfig(**raw)

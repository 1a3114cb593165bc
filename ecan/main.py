"""
ECAN — Application Entry Point

Builds the attention system from one ``ECANConfig`` and runs its cycle
scheduler for the lifetime of a context:

    async with lifespan() as system:
        system.service.attach(system.scheduler, task_source)
        ...
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import structlog

from ecan.config import ECANConfig, load_config
from ecan.systems.attention.descriptor import KernelRegistry
from ecan.systems.attention.kernel import AttentionKernel
from ecan.systems.attention.monitor import AttentionMonitor
from ecan.systems.cadence.clock import ClockSource, CycleScheduler
from ecan.systems.cadence.service import AttentionCycleService
from ecan.systems.coordinator.coordinator import AttentionCoordinator
from ecan.systems.episodic.sink import InMemoryEpisodicSink
from ecan.systems.gate.gate import TaskGate
from ecan.telemetry.logging import setup_logging

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/default.yaml"


@dataclass
class ECANSystem:
    """Every component built for one instance, sharing one episodic sink."""

    config: ECANConfig
    sink: InMemoryEpisodicSink
    registry: KernelRegistry
    kernel: AttentionKernel
    monitor: AttentionMonitor
    coordinator: AttentionCoordinator
    gate: TaskGate
    scheduler: CycleScheduler
    service: AttentionCycleService


def build_system(
    config: ECANConfig | None = None,
    clock: ClockSource | None = None,
    configure_logging: bool = True,
) -> ECANSystem:
    config = config or ECANConfig()

    # ── 1. Logging ────────────────────────────────────────────
    if configure_logging:
        setup_logging(config.logging, instance_id=config.instance_id)

    # ── 2. Episodic memory ────────────────────────────────────
    sink = InMemoryEpisodicSink(max_entries=config.episodic.max_entries)

    # ── 3. Attention kernel, monitor and coordinator ──────────
    kernel = AttentionKernel(
        config=config.attention,
        meta_config=config.meta,
        episodic_sink=sink,
    )
    monitor = AttentionMonitor(config.monitor)
    registry = KernelRegistry()
    coordinator = AttentionCoordinator(
        kernel=kernel,
        config=config.coordinator,
        episodic_sink=sink,
        registry=registry,
        monitor=monitor,
    )

    # ── 4. Gate and cadence ───────────────────────────────────
    gate = TaskGate(config=config.gate)
    scheduler = CycleScheduler(clock=clock, poll_interval_s=config.cadence.poll_interval_s)
    service = AttentionCycleService(
        gate=gate,
        coordinator=coordinator,
        episodic_sink=sink,
        config=config.cadence,
    )

    logger.info(
        "ecan_system_built",
        instance_id=config.instance_id,
        max_kernels=config.attention.max_kernels,
        cycle_interval_s=config.cadence.cycle_interval_s,
    )
    return ECANSystem(
        config=config,
        sink=sink,
        registry=registry,
        kernel=kernel,
        monitor=monitor,
        coordinator=coordinator,
        gate=gate,
        scheduler=scheduler,
        service=service,
    )


def build_cycle_service(
    config: ECANConfig | None = None,
    clock: ClockSource | None = None,
) -> tuple[AttentionCycleService, CycleScheduler]:
    system = build_system(config, clock=clock)
    return system.service, system.scheduler


@asynccontextmanager
async def lifespan(config_path: str | Path | None = None) -> AsyncIterator[ECANSystem]:
    """
    Load configuration, build the system and keep its scheduler running
    until the context exits.
    """
    path = config_path or os.environ.get("ECAN_CONFIG_PATH", DEFAULT_CONFIG_PATH)
    config = load_config(path)
    system = build_system(config)
    logger.info("ecan_starting", instance_id=config.instance_id, config_path=str(path))

    system.scheduler.start()
    try:
        yield system
    finally:
        await system.scheduler.stop()
        logger.info(
            "ecan_stopped",
            instance_id=config.instance_id,
            cycles=system.service.stats()["cycles"],
        )

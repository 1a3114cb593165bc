"""
ECAN — Kernel Definition Descriptor

Static registration metadata: which interfaces a kernel type declares and
which other kernels it depends on. External orchestrators use this to wire
kernel graphs. No runtime behaviour hangs off it.
"""

from __future__ import annotations

import structlog
from pydantic import Field

from ecan.primitives.common import ECANBaseModel

logger = structlog.get_logger("ecan.systems.attention.descriptor")


class KernelInterface(ECANBaseModel):
    name: str
    description: str = ""


class KernelDefinition(ECANBaseModel):
    id: str
    name: str
    category: str
    description: str = ""
    tensor_shape: tuple[int, ...]
    interfaces: list[KernelInterface] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    @property
    def interface_names(self) -> list[str]:
        return [i.name for i in self.interfaces]


ATTENTION_INTERFACES: tuple[KernelInterface, ...] = (
    KernelInterface(name="allocate_attention", description="Run one attention allocation pass"),
    KernelInterface(name="monitor_field", description="Read the current attention field"),
    KernelInterface(name="manage_economics", description="Inspect the resource-economics ledger"),
    KernelInterface(name="self_modify", description="Meta-cognitive policy adaptation"),
    KernelInterface(name="log_policies", description="Read the self-modification history"),
    KernelInterface(name="visualize_attention", description="Ranked attention summary"),
)

ATTENTION_DEPENDENCIES: tuple[str, ...] = (
    "autonomy-monitor",
    "memory-coordinator",
    "task-manager",
)


def attention_kernel_definition(tensor_shape: tuple[int, ...]) -> KernelDefinition:
    return KernelDefinition(
        id="ecan-attention",
        name="ECAN Attention Allocation",
        category="attention",
        description=(
            "Economic attention allocation over competing kernels with "
            "field dynamics and meta-cognitive self-modification"
        ),
        tensor_shape=tensor_shape,
        interfaces=list(ATTENTION_INTERFACES),
        dependencies=list(ATTENTION_DEPENDENCIES),
    )


class KernelRegistry:
    """In-process table of kernel definitions."""

    def __init__(self) -> None:
        self._definitions: dict[str, KernelDefinition] = {}
        self._logger = logger.bind(component="kernel_registry")

    def register(self, definition: KernelDefinition) -> None:
        if definition.id in self._definitions:
            self._logger.info("kernel_definition_replaced", kernel_id=definition.id)
        self._definitions[definition.id] = definition

    def get(self, kernel_id: str) -> KernelDefinition | None:
        return self._definitions.get(kernel_id)

    def by_category(self, category: str) -> list[KernelDefinition]:
        return [d for d in self._definitions.values() if d.category == category]

    def missing_dependencies(self, kernel_id: str) -> list[str]:
        """Declared dependencies of ``kernel_id`` that are not registered."""
        definition = self._definitions.get(kernel_id)
        if definition is None:
            return []
        return [dep for dep in definition.dependencies if dep not in self._definitions]

    def __contains__(self, kernel_id: object) -> bool:
        return kernel_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

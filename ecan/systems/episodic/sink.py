"""
ECAN — Episodic Sink

Allocation cycles and improvement cycles are recorded as structured
episodic entries. The core only needs an append-capable sink; storage is
someone else's concern. ``InMemoryEpisodicSink`` is a bounded in-process
implementation for tests and single-process deployments.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import Field

from ecan.primitives.common import ECANBaseModel, Identified, Timestamped, clamp

logger = structlog.get_logger("ecan.systems.episodic.sink")


class EpisodicContent(ECANBaseModel):
    observations: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)


class EpisodicMetadata(ECANBaseModel):
    importance: float = 0.5
    tags: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class EpisodicEntry(Identified, Timestamped):
    """``{id, type, content, metadata}`` record of one cycle."""

    type: str
    content: EpisodicContent = Field(default_factory=EpisodicContent)
    metadata: EpisodicMetadata = Field(default_factory=EpisodicMetadata)


@runtime_checkable
class EpisodicSink(Protocol):
    def record(self, entry: EpisodicEntry) -> None: ...


class InMemoryEpisodicSink:
    """Bounded append-only log. Oldest entries fall off past ``max_entries``."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: deque[EpisodicEntry] = deque(maxlen=max_entries)
        self._total_recorded: int = 0
        self._logger = logger.bind(component="episodic_sink")

    def record(self, entry: EpisodicEntry) -> None:
        entry.metadata.importance = clamp(entry.metadata.importance)
        self._entries.append(entry)
        self._total_recorded += 1
        self._logger.debug("episode_recorded", type=entry.type, id=entry.id)

    def entries(self, type: str | None = None) -> list[EpisodicEntry]:
        if type is None:
            return list(self._entries)
        return [e for e in self._entries if e.type == type]

    def latest(self, type: str | None = None) -> EpisodicEntry | None:
        for entry in reversed(self._entries):
            if type is None or entry.type == type:
                return entry
        return None

    @property
    def max_entries(self) -> int | None:
        return self._entries.maxlen

    @property
    def total_recorded(self) -> int:
        return self._total_recorded

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EpisodicEntry]:
        return iter(list(self._entries))

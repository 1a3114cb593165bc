from ecan.systems.episodic.sink import (
    EpisodicContent,
    EpisodicEntry,
    EpisodicMetadata,
    EpisodicSink,
    InMemoryEpisodicSink,
)

__all__ = [
    "EpisodicContent",
    "EpisodicEntry",
    "EpisodicMetadata",
    "EpisodicSink",
    "InMemoryEpisodicSink",
]

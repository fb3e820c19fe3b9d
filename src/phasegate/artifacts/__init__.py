"""Artifact stores shared between jobs of a run."""

from phasegate.artifacts.store import (
    Artifact,
    ArtifactStore,
    FileSystemArtifactStore,
    MemoryArtifactStore,
)

__all__ = ["Artifact", "ArtifactStore", "FileSystemArtifactStore", "MemoryArtifactStore"]

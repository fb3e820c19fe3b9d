"""Artifact stores — named byte blobs handed from producer jobs to consumers."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("phasegate.artifacts")


@dataclass(frozen=True)
class Artifact:
    key: str
    producer_job_id: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ArtifactStore(ABC):
    """Base class for artifact stores. Artifacts are scoped by run id."""

    @abstractmethod
    async def put(self, run_id: str, artifact: Artifact) -> None:
        ...

    @abstractmethod
    async def get(self, run_id: str, key: str) -> Artifact | None:
        """Return the artifact, or None if no job has produced it."""
        ...

    @abstractmethod
    async def keys(self, run_id: str) -> list[str]:
        ...

    @abstractmethod
    async def clear(self, run_id: str) -> None:
        """Drop every artifact of a run (run teardown)."""
        ...

    async def exists(self, run_id: str, key: str) -> bool:
        return await self.get(run_id, key) is not None


class MemoryArtifactStore(ArtifactStore):
    """In-process store; nothing survives the process."""

    def __init__(self):
        self._runs: dict[str, dict[str, Artifact]] = {}

    async def put(self, run_id: str, artifact: Artifact) -> None:
        self._runs.setdefault(run_id, {})[artifact.key] = artifact

    async def get(self, run_id: str, key: str) -> Artifact | None:
        return self._runs.get(run_id, {}).get(key)

    async def keys(self, run_id: str) -> list[str]:
        return sorted(self._runs.get(run_id, {}))

    async def clear(self, run_id: str) -> None:
        self._runs.pop(run_id, None)


class FileSystemArtifactStore(ArtifactStore):
    """Stores each artifact as a file under `<root>/<run_id>/`.

    With `retain=True`, `clear()` keeps the files so runs can be inspected later.
    """

    def __init__(self, root: str | Path, retain: bool = False):
        self.root = Path(root)
        self.retain = retain

    def _run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    @staticmethod
    def _filename(key: str) -> str:
        # Keys are free-form; hash them for a safe, collision-free file name.
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]

    def _write(self, run_id: str, artifact: Artifact) -> None:
        run_dir = self._run_dir(run_id)
        run_dir.mkdir(parents=True, exist_ok=True)
        name = self._filename(artifact.key)
        (run_dir / f"{name}.bin").write_bytes(artifact.data)
        (run_dir / f"{name}.json").write_text(
            json.dumps({"key": artifact.key, "producer_job_id": artifact.producer_job_id})
        )

    def _read(self, run_id: str, key: str) -> Artifact | None:
        name = self._filename(key)
        data_path = self._run_dir(run_id) / f"{name}.bin"
        meta_path = self._run_dir(run_id) / f"{name}.json"
        if not data_path.exists() or not meta_path.exists():
            return None
        meta = json.loads(meta_path.read_text())
        return Artifact(key=meta["key"], producer_job_id=meta["producer_job_id"], data=data_path.read_bytes())

    def _list(self, run_id: str) -> list[str]:
        run_dir = self._run_dir(run_id)
        if not run_dir.exists():
            return []
        return sorted(json.loads(p.read_text())["key"] for p in run_dir.glob("*.json"))

    async def put(self, run_id: str, artifact: Artifact) -> None:
        await asyncio.to_thread(self._write, run_id, artifact)

    async def get(self, run_id: str, key: str) -> Artifact | None:
        return await asyncio.to_thread(self._read, run_id, key)

    async def keys(self, run_id: str) -> list[str]:
        return await asyncio.to_thread(self._list, run_id)

    async def clear(self, run_id: str) -> None:
        if self.retain:
            logger.info(f"Retaining artifacts for run {run_id} in {self._run_dir(run_id)}")
            return
        await asyncio.to_thread(shutil.rmtree, self._run_dir(run_id), True)

"""Tests for artifact stores."""

import pytest

from phasegate.artifacts import Artifact, FileSystemArtifactStore, MemoryArtifactStore


@pytest.fixture(params=["memory", "filesystem"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryArtifactStore()
    return FileSystemArtifactStore(tmp_path / "artifacts")


class TestArtifactStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self, any_store):
        await any_store.put("run-1", Artifact(key="dist", producer_job_id="build", data=b"\x00bundle"))
        artifact = await any_store.get("run-1", "dist")
        assert artifact.data == b"\x00bundle"
        assert artifact.producer_job_id == "build"
        assert artifact.size == 7

    @pytest.mark.asyncio
    async def test_missing(self, any_store):
        assert await any_store.get("run-1", "dist") is None
        assert not await any_store.exists("run-1", "dist")

    @pytest.mark.asyncio
    async def test_scoped_by_run(self, any_store):
        await any_store.put("run-1", Artifact(key="dist", producer_job_id="build", data=b"a"))
        assert await any_store.get("run-2", "dist") is None

    @pytest.mark.asyncio
    async def test_keys(self, any_store):
        for key in ("coverage/unit.xml", "dist"):
            await any_store.put("run-1", Artifact(key=key, producer_job_id="j", data=b"x"))
        assert await any_store.keys("run-1") == ["coverage/unit.xml", "dist"]

    @pytest.mark.asyncio
    async def test_clear(self, any_store):
        await any_store.put("run-1", Artifact(key="dist", producer_job_id="build", data=b"a"))
        await any_store.clear("run-1")
        assert await any_store.keys("run-1") == []
        # clearing an unknown run is a no-op
        await any_store.clear("run-unknown")


class TestFileSystemArtifactStore:
    @pytest.mark.asyncio
    async def test_files_under_run_dir(self, tmp_path):
        store = FileSystemArtifactStore(tmp_path)
        await store.put("run-1", Artifact(key="../escape", producer_job_id="build", data=b"a"))
        files = sorted(p.suffix for p in (tmp_path / "run-1").iterdir())
        assert files == [".bin", ".json"]

    @pytest.mark.asyncio
    async def test_retain_keeps_files(self, tmp_path):
        store = FileSystemArtifactStore(tmp_path, retain=True)
        await store.put("run-1", Artifact(key="dist", producer_job_id="build", data=b"a"))
        await store.clear("run-1")
        assert await store.keys("run-1") == ["dist"]

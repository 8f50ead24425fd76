"""
Integration tests for database and file checkpoint stores
"""

import json
import os
import threading

import pytest

from core.exceptions import CheckpointError
from models.base import utcnow
from schemas.checkpoint import CheckpointState
from ingestion.checkpoint import DatabaseCheckpointStore, FileCheckpointStore
from ingestion.loaders.batch_writer import BatchWriter
from ingestion.resolver import EntityResolver
from ingestion.streams import BansStream, RecordsStream


@pytest.fixture(params=["database", "file"])
def store(request, session_maker, tmp_path):
    if request.param == "database":
        return DatabaseCheckpointStore(session_maker)
    return FileCheckpointStore(session_maker, tmp_path / "checkpoints")


class TestCheckpointStores:
    """Behavior shared by both backends"""

    @pytest.mark.asyncio
    async def test_save_then_read(self, store):
        state = CheckpointState(stream_name="records", cursor=1200, records_inserted=40, updated_at=utcnow())

        await store.save(state)
        loaded = await store.read("records")

        assert loaded.cursor == 1200
        assert loaded.records_inserted == 40

    @pytest.mark.asyncio
    async def test_save_overwrites(self, store):
        state = CheckpointState(stream_name="bans", cursor=0)
        await store.save(state)
        await store.save(state.advance(1000, processed=1000, inserted=990, skipped=10))

        loaded = await store.read("bans")

        assert loaded.cursor == 1000
        assert loaded.records_processed == 1000
        assert loaded.records_skipped == 10
        assert loaded.total_batches == 1

    @pytest.mark.asyncio
    async def test_reset(self, store):
        await store.save(CheckpointState(stream_name="maps", cursor=3))

        await store.reset("maps")

        assert await store.read("maps") is None

    @pytest.mark.asyncio
    async def test_streams_are_independent(self, store):
        await store.save(CheckpointState(stream_name="records", cursor=10))
        await store.save(CheckpointState(stream_name="bans", cursor=20))

        assert (await store.read("records")).cursor == 10
        assert (await store.read("bans")).cursor == 20

    @pytest.mark.asyncio
    async def test_load_bootstraps_empty_storage(self, store):
        state = await store.load(RecordsStream())

        assert state.cursor == 1
        assert (await store.read("records")).cursor == 1

    @pytest.mark.asyncio
    async def test_load_bootstraps_after_existing_records(self, store, session_maker, record_payload):
        stream = RecordsStream()
        batch = stream.normalize([record_payload(500), record_payload(731)])
        async with session_maker() as session:
            async with session.begin():
                resolved = await stream.resolve(session, EntityResolver(), batch)
                await stream.write(session, BatchWriter(), batch, resolved)

        state = await store.load(stream)

        assert state.cursor == 732

    @pytest.mark.asyncio
    async def test_paged_stream_bootstraps_at_zero(self, store):
        assert (await store.load(BansStream())).cursor == 0


class TestFileCheckpointStore:
    """File backend specifics"""

    @pytest.mark.asyncio
    async def test_file_layout(self, session_maker, tmp_path):
        directory = tmp_path / "checkpoints"
        store = FileCheckpointStore(session_maker, directory)

        await store.save(CheckpointState(stream_name="records", cursor=77))

        path = directory / "records_checkpoint.json"
        assert store.path_for("records") == path
        assert json.loads(path.read_text())["cursor"] == 77
        assert [p.name for p in directory.iterdir()] == ["records_checkpoint.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, session_maker, tmp_path):
        store = FileCheckpointStore(session_maker, tmp_path)
        store.path_for("records").write_text("{not json")

        with pytest.raises(CheckpointError):
            await store.read("records")

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_state(self, session_maker, tmp_path, monkeypatch):
        directory = tmp_path / "checkpoints"
        store = FileCheckpointStore(session_maker, directory)
        await store.save(CheckpointState(stream_name="records", cursor=5))

        def broken_fsync(fd):
            raise OSError("disk full")

        monkeypatch.setattr("ingestion.checkpoint.os.fsync", broken_fsync)
        with pytest.raises(CheckpointError):
            await store.save(CheckpointState(stream_name="records", cursor=9))

        assert (await store.read("records")).cursor == 5
        assert [p.name for p in directory.iterdir()] == ["records_checkpoint.json"]

    @pytest.mark.asyncio
    async def test_unwritable_directory_raises(self, session_maker, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        store = FileCheckpointStore(session_maker, blocker / "checkpoints")

        with pytest.raises(CheckpointError):
            await store.save(CheckpointState(stream_name="records", cursor=1))

    @pytest.mark.asyncio
    async def test_file_io_runs_off_the_event_loop_thread(self, session_maker, tmp_path, monkeypatch):
        store = FileCheckpointStore(session_maker, tmp_path / "checkpoints")
        fsync_threads = []
        real_fsync = os.fsync

        def recording_fsync(fd):
            fsync_threads.append(threading.get_ident())
            real_fsync(fd)

        monkeypatch.setattr("ingestion.checkpoint.os.fsync", recording_fsync)
        await store.save(CheckpointState(stream_name="records", cursor=3))

        assert fsync_threads
        assert threading.get_ident() not in fsync_threads
        assert (await store.read("records")).cursor == 3

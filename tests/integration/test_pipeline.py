"""
End-to-end tests: fake API → controller → SQLite
"""

import pytest
from sqlalchemy import func, select

from models.ban import Ban
from models.checkpoint import IngestionCheckpoint
from models.personal_best import PersonalBest
from models.player import Player
from models.record import Record
from schemas.checkpoint import CheckpointState
from ingestion.checkpoint import DatabaseCheckpointStore
from ingestion.loaders.batch_writer import BatchWriter
from ingestion.resolver import EntityResolver
from ingestion.runner import IngestionController, PipelineState
from ingestion.streams import BansStream, RecordsStream

REAL = "76561198000000001"


async def no_sleep(seconds):
    return None


async def count(session_maker, model) -> int:
    async with session_maker() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def run_stream(make_fetcher, session_maker):
    async def _run(stream, **options):
        store = options.pop("store", None) or DatabaseCheckpointStore(session_maker)
        async with make_fetcher() as fetcher:
            controller = IngestionController(
                stream=stream,
                fetcher=fetcher,
                session_maker=session_maker,
                checkpoint_store=store,
                interval=0.0,
                sleep=no_sleep,
                **options,
            )
            stats = await controller.run()
        return controller, stats

    return _run


class TestThreeElementBatch:
    """Normalize → resolve → write over a batch with a placeholder and a duplicate"""

    @pytest.mark.asyncio
    async def test_scenario(self, session_maker):
        payloads = [
            {"id": 1, "steamid64": None, "map_name": "kz_x", "time": 30.0, "teleports": 0},
            {"id": 2, "steamid64": REAL, "map_name": "kz_x", "time": 25.0, "teleports": 0},
            {"id": 1, "steamid64": "76561198000000002", "map_name": "kz_x", "time": 10.0, "teleports": 0},
        ]
        stream = RecordsStream()

        batch = stream.normalize(payloads)
        async with session_maker() as session:
            async with session.begin():
                resolved = await stream.resolve(session, EntityResolver(), batch)
                outcome = await stream.write(session, BatchWriter(), batch, resolved)

        assert batch.duplicates == 1
        assert outcome.write.inserted == 2
        assert await count(session_maker, Record) == 2

        async with session_maker() as session:
            players = set((await session.execute(select(Player.steamid64))).scalars().all())
            pb = (await session.execute(
                select(PersonalBest).join(Player, Player.id == PersonalBest.player_id)
                .where(Player.steamid64 == REAL)
            )).scalar_one()
            record_one = (await session.execute(
                select(Record).where(Record.original_id == 1)
            )).scalar_one()

        assert players == {"999900000001", REAL}
        assert pb.pro_time == 25.0
        assert pb.tp_time is None
        assert record_one.time == 30.0
        assert record_one.steamid64 == "999900000001"


class TestControllerOverStorage:
    """Full runs against the fake API"""

    @pytest.mark.asyncio
    async def test_ingests_all_records_and_checkpoints(
        self, fake_api, record_payload, run_stream, session_maker
    ):
        for record_id in range(1, 6):
            fake_api.records[record_id] = record_payload(record_id, time=20.0 + record_id)

        controller, stats = await run_stream(RecordsStream(window_size=2))

        assert controller.state == PipelineState.DONE
        assert stats.inserted == 5
        assert await count(session_maker, Record) == 5
        assert (await DatabaseCheckpointStore(session_maker).read("records")).cursor == 6

        async with session_maker() as session:
            pb = (await session.execute(select(PersonalBest))).scalar_one()
        assert pb.pro_time == 21.0

    @pytest.mark.asyncio
    async def test_reprocessing_window_is_idempotent(
        self, fake_api, record_payload, run_stream, session_maker
    ):
        for record_id in range(1, 6):
            fake_api.records[record_id] = record_payload(record_id)

        await run_stream(RecordsStream(window_size=2))
        _, stats = await run_stream(RecordsStream(window_size=2), start_cursor=1)

        assert stats.inserted == 0
        assert stats.skipped == 5
        assert await count(session_maker, Record) == 5
        assert await count(session_maker, Player) == 1

    @pytest.mark.asyncio
    async def test_restart_after_write_before_checkpoint(
        self, fake_api, record_payload, run_stream, session_maker
    ):
        """Test a batch committed without its checkpoint is replayed without duplicates"""
        for record_id in range(1, 5):
            fake_api.records[record_id] = record_payload(record_id)
        store = DatabaseCheckpointStore(session_maker)
        await store.save(CheckpointState(stream_name="records", cursor=1))

        # The batch for [1, 2] reached storage but the process died before checkpointing
        stream = RecordsStream(window_size=2)
        batch = stream.normalize([record_payload(1), record_payload(2)])
        async with session_maker() as session:
            async with session.begin():
                resolved = await stream.resolve(session, EntityResolver(), batch)
                await stream.write(session, BatchWriter(), batch, resolved)

        _, stats = await run_stream(RecordsStream(window_size=2), store=store)

        assert fake_api.requests[0].url.path.endswith("/records/1")
        assert stats.skipped == 2
        assert stats.inserted == 2
        assert await count(session_maker, Record) == 4
        assert (await store.read("records")).cursor == 5

    @pytest.mark.asyncio
    async def test_dry_run_leaves_storage_untouched(
        self, fake_api, record_payload, run_stream, session_maker
    ):
        for record_id in range(1, 4):
            fake_api.records[record_id] = record_payload(record_id)

        _, stats = await run_stream(RecordsStream(window_size=2), dry_run=True)

        assert stats.processed == 3
        assert await count(session_maker, Record) == 0
        assert await count(session_maker, Player) == 0
        assert await count(session_maker, IngestionCheckpoint) == 0

    @pytest.mark.asyncio
    async def test_paged_bans_stream(self, fake_api, run_stream, session_maker):
        fake_api.listings["bans"] = [
            {"id": i, "ban_type": "bhop_hack", "steamid64": f"7656119800000{i:04d}"}
            for i in range(1, 6)
        ]

        controller, stats = await run_stream(BansStream(window_size=2))

        assert controller.state == PipelineState.DONE
        assert await count(session_maker, Ban) == 5
        assert stats.inserted == 5
        assert (await DatabaseCheckpointStore(session_maker).read("bans")).cursor == 5
        # limit/offset pages: 0, 2, 4
        assert [r.url.params["offset"] for r in fake_api.requests] == ["0", "2", "4"]

    @pytest.mark.asyncio
    async def test_paged_stream_refreshes_existing_rows(self, fake_api, run_stream, session_maker):
        fake_api.listings["bans"] = [{"id": 1, "notes": "before"}]
        await run_stream(BansStream(window_size=10))

        fake_api.listings["bans"] = [{"id": 1, "notes": "after"}]
        _, stats = await run_stream(BansStream(window_size=10), start_cursor=0)

        async with session_maker() as session:
            ban = (await session.execute(select(Ban))).scalar_one()
        assert ban.notes == "after"
        assert stats.inserted == 0

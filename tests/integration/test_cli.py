"""
Integration tests for the command-line entry point and its exit codes
"""

import asyncio
import functools

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from core.config import settings
from models.base import Base
from models.record import Record
from schemas.checkpoint import CheckpointState
from ingestion import cli
from ingestion.checkpoint import DatabaseCheckpointStore
from ingestion.extractors.api_extractor import RateLimitedFetcher
from core.database import create_session_maker


async def _prepare(url, checkpoint=None):
    engine = create_async_engine(url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if checkpoint is not None:
        await DatabaseCheckpointStore(create_session_maker(engine)).save(checkpoint)
    await engine.dispose()


async def _count_records(url):
    engine = create_async_engine(url, poolclass=NullPool)
    async with engine.connect() as conn:
        total = await conn.scalar(select(func.count()).select_from(Record))
    await engine.dispose()
    return total


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(settings, "DATABASE_URL", url)
    return url


@pytest.fixture
def wired_cli(monkeypatch, fake_api, api_base_url):
    """Point the CLI's fetcher at the fake API and keep logging configuration untouched"""

    async def no_sleep(seconds):
        return None

    monkeypatch.setattr(cli, "setup_logging", lambda level=None: None)
    monkeypatch.setattr(cli, "RateLimitedFetcher", functools.partial(
        RateLimitedFetcher,
        base_url=api_base_url,
        client_factory=fake_api.client_factory,
        sleep=no_sleep,
    ))
    return cli


class TestArguments:
    """Argument parsing"""

    def test_aliases(self):
        args = cli.parse_args(["--concurrency", "8", "--start-id", "100", "--final-id", "200"])

        assert args.batch_size == 8
        assert args.start_cursor == 100
        assert args.final_cursor == 200
        assert args.stream == "records"

    def test_cursor_aliases_for_paged_streams(self):
        args = cli.parse_args(["--stream", "bans", "--start-cursor", "0", "--final-cursor", "4000"])

        assert args.stream == "bans"
        assert (args.start_cursor, args.final_cursor) == (0, 4000)

    def test_invalid_ranges_rejected(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["--start-id", "10", "--final-id", "5"])
        with pytest.raises(SystemExit):
            cli.parse_args(["--batch-size", "0"])
        with pytest.raises(SystemExit):
            cli.parse_args(["--stream", "jumpstats"])


class TestExitCodes:
    """Process exit status"""

    def test_successful_run(self, database_url, wired_cli, fake_api, record_payload):
        asyncio.run(_prepare(database_url))
        fake_api.records[1] = record_payload(1)
        fake_api.records[2] = record_payload(2)

        code = wired_cli.main(["--batch-size", "2", "--interval", "0", "--final-id", "2"])

        assert code == 0
        assert asyncio.run(_count_records(database_url)) == 2

    def test_unreachable_database(self, tmp_path, monkeypatch, wired_cli):
        monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'kz.db'}")

        assert wired_cli.main(["--interval", "0"]) == 1

    def test_checkpoint_storage_failure(self, tmp_path, database_url, wired_cli, monkeypatch):
        asyncio.run(_prepare(database_url))
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monkeypatch.setattr(settings, "CHECKPOINT_DIR", str(blocker / "checkpoints"))

        code = wired_cli.main(["--checkpoint-backend", "file", "--interval", "0"])

        assert code == 1

    def test_reset_checkpoint(self, database_url, wired_cli, fake_api, record_payload):
        asyncio.run(_prepare(database_url, CheckpointState(stream_name="records", cursor=100)))
        fake_api.records[1] = record_payload(1)

        code = wired_cli.main(["--reset-checkpoint", "--interval", "0"])

        assert code == 0
        assert asyncio.run(_count_records(database_url)) == 1

    def test_dry_run(self, database_url, wired_cli, fake_api, record_payload):
        asyncio.run(_prepare(database_url))
        fake_api.records[1] = record_payload(1)

        code = wired_cli.main(["--dry-run", "--interval", "0"])

        assert code == 0
        assert asyncio.run(_count_records(database_url)) == 0

    def test_rejected_payloads_do_not_change_exit_code(self, database_url, wired_cli, fake_api, record_payload):
        asyncio.run(_prepare(database_url))
        fake_api.records[1] = {"id": "garbage"}
        fake_api.records[2] = record_payload(2)

        code = wired_cli.main(["--batch-size", "2", "--interval", "0"])

        assert code == 0
        assert asyncio.run(_count_records(database_url)) == 1

    def test_unknown_checkpoint_backend(self, database_url, wired_cli, monkeypatch):
        asyncio.run(_prepare(database_url))
        monkeypatch.setattr(settings, "CHECKPOINT_BACKEND", "redis")

        assert wired_cli.main(["--interval", "0"]) == 1

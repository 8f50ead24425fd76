"""
Command-line entry point for the ingestion pipeline.

Usage:
    python -m ingestion.cli --stream records
    python -m ingestion.cli --stream records --start-id 1000 --final-id 2000
    python -m ingestion.cli --stream bans --batch-size 500 --follow
    python -m ingestion.cli --stream records --dry-run

Exit codes:
    0  the run finished or was stopped gracefully
    1  fatal startup or checkpoint storage failure
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional
import logging

from core.config import settings
from core.database import check_connection, create_engine, create_session_maker
from core.exceptions import CheckpointError, DatabaseConnectionError, FatalIngestionError
from core.logging import setup_logging
from models.base import CheckpointBackend, StreamName
from ingestion.checkpoint import CheckpointStore, DatabaseCheckpointStore, FileCheckpointStore
from ingestion.extractors.api_extractor import RateLimitedFetcher
from ingestion.proxy_pool import ProxyPool
from ingestion.runner import IngestionController, RunStats
from ingestion.streams import build_stream

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_ingestion",
        description="Resumable GlobalKZ leaderboard ingestion",
    )
    parser.add_argument(
        "--stream",
        choices=[s.value for s in StreamName],
        default=StreamName.RECORDS.value,
        help="Resource to ingest (default: records)",
    )
    parser.add_argument(
        "--batch-size", "--concurrency",
        dest="batch_size",
        type=int,
        default=None,
        help="Window size: record ids per batch, or page size for paged streams",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help=f"Seconds between batches (default: {settings.BATCH_INTERVAL})",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help=f"Seconds to wait after each successful request (default: {settings.REQUEST_DELAY})",
    )
    parser.add_argument(
        "--start-id", "--start-cursor",
        dest="start_cursor",
        type=int,
        default=None,
        help="Start at this cursor instead of the stored checkpoint",
    )
    parser.add_argument(
        "--final-id", "--final-cursor",
        dest="final_cursor",
        type=int,
        default=None,
        help="Stop once this cursor has been processed",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and normalize only; never write data or checkpoints",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the stored checkpoint and overwrite existing records",
    )
    parser.add_argument(
        "--follow",
        action="store_true",
        help="Keep polling for new data instead of finishing when the source is exhausted",
    )
    parser.add_argument(
        "--reset-checkpoint",
        action="store_true",
        help="Delete the stored checkpoint for the stream before starting",
    )
    parser.add_argument(
        "--checkpoint-backend",
        choices=[b.value for b in CheckpointBackend],
        default=None,
        help=f"Where checkpoints are kept (default: {settings.CHECKPOINT_BACKEND})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: {settings.LOG_LEVEL})",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    if args.batch_size is not None and args.batch_size < 1:
        raise SystemExit("--batch-size must be at least 1")
    if (
        args.start_cursor is not None
        and args.final_cursor is not None
        and args.final_cursor < args.start_cursor
    ):
        raise SystemExit("--final-id must not be lower than --start-id")
    return args


def build_checkpoint_store(backend: Optional[str], session_maker) -> CheckpointStore:
    value = backend or settings.CHECKPOINT_BACKEND
    try:
        backend = CheckpointBackend(value)
    except ValueError:
        raise FatalIngestionError(
            f"Unknown checkpoint backend: {value}",
            context={"choices": ", ".join(b.value for b in CheckpointBackend)}
        ) from None
    if backend == CheckpointBackend.FILE:
        return FileCheckpointStore(session_maker, settings.CHECKPOINT_DIR)
    return DatabaseCheckpointStore(session_maker)


def _install_signal_handlers(controller: IngestionController) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.request_stop)
        except (NotImplementedError, RuntimeError):
            # Event loops without signal support fall back to KeyboardInterrupt
            logger.debug(f"Signal handler for {sig.name} not installed")


async def run_ingestion(args: argparse.Namespace, engine=None) -> RunStats:
    """
    Wire the pipeline from parsed arguments and run it to completion.

    Raises:
        DatabaseConnectionError: Storage unreachable at startup
        CheckpointError: Checkpoint storage cannot be read or written
    """
    own_engine = engine is None
    engine = engine or create_engine()
    try:
        await check_connection(engine)
        session_maker = create_session_maker(engine)

        stream = build_stream(args.stream, args.batch_size)
        store = build_checkpoint_store(args.checkpoint_backend, session_maker)
        if args.reset_checkpoint:
            if args.dry_run:
                logger.info(f"[DRY RUN] Would reset checkpoint for {stream.name}")
            else:
                await store.reset(stream.name)

        pool = ProxyPool.from_settings()
        async with RateLimitedFetcher(pool, request_delay=args.delay) as fetcher:
            controller = IngestionController(
                stream=stream,
                fetcher=fetcher,
                session_maker=session_maker,
                checkpoint_store=store,
                batch_size=args.batch_size,
                interval=args.interval,
                start_cursor=args.start_cursor,
                final_cursor=args.final_cursor,
                dry_run=args.dry_run,
                force=args.force,
                follow=args.follow,
            )
            _install_signal_handlers(controller)
            return await controller.run()
    finally:
        if own_engine:
            await engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        asyncio.run(run_ingestion(args))
    except (DatabaseConnectionError, CheckpointError, FatalIngestionError) as e:
        logger.error(f"Ingestion aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0

    logger.info("Ingestion finished")
    return 0


if __name__ == "__main__":
    sys.exit(main())

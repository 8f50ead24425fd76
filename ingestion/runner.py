# ============================================================================
# File: ingestion/runner.py
# Description: Resumable ingestion controller driving one stream
# ============================================================================
"""
Ingestion Controller - drives fetch → normalize → resolve → write → checkpoint.

This module provides the pipeline loop with:
- An explicit state machine with observable transitions
- Parallel fetch fan-out when several proxies are configured
- Window-level retries that never advance the cursor past unfetched data
- One transaction per batch, retried with capped backoff on storage errors
- A checkpoint save after every committed batch and on shutdown
- Periodic and final run summaries
"""

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from core.config import settings
from core.exceptions import FetchError, RateLimitError, TransientFetchError, WriteError
from models.base import utcnow
from schemas.checkpoint import CheckpointState
from ingestion.base import BatchOutcome, IngestionStream
from ingestion.checkpoint import CheckpointStore
from ingestion.extractors.api_extractor import FetchOutcome, FetchRequest, FetchResult, RateLimitedFetcher
from ingestion.loaders.batch_writer import BatchWriter
from ingestion.resolver import EntityResolver
from ingestion.transformers.normalizer import NormalizedBatch

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    RESOLVING = "resolving"
    WRITING = "writing"
    CHECKPOINTING = "checkpointing"
    SLEEPING = "sleeping"
    STOPPING = "stopping"
    DONE = "done"


ALLOWED_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.FETCHING},
    PipelineState.FETCHING: {PipelineState.NORMALIZING, PipelineState.SLEEPING, PipelineState.DONE},
    PipelineState.NORMALIZING: {PipelineState.RESOLVING, PipelineState.SLEEPING, PipelineState.DONE},
    PipelineState.RESOLVING: {PipelineState.WRITING, PipelineState.SLEEPING},
    PipelineState.WRITING: {PipelineState.CHECKPOINTING, PipelineState.SLEEPING},
    PipelineState.CHECKPOINTING: {PipelineState.SLEEPING, PipelineState.DONE},
    PipelineState.SLEEPING: {PipelineState.FETCHING, PipelineState.RESOLVING},
    PipelineState.STOPPING: set(),
    PipelineState.DONE: set(),
}


@dataclass
class RunStats:
    """Counters for one process run"""
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    rejected: int = 0
    not_found: int = 0
    errors: int = 0
    rate_limits: int = 0
    api_calls: int = 0
    batches: int = 0
    personal_bests: int = 0
    world_records: int = 0
    started_at: float = 0.0
    elapsed: float = 0.0

    @property
    def throughput(self) -> float:
        """Processed payloads per second"""
        return self.processed / self.elapsed if self.elapsed > 0 else 0.0

    def summary(self) -> str:
        return (
            f"processed={self.processed} inserted={self.inserted} updated={self.updated} "
            f"skipped={self.skipped} rejected={self.rejected} not_found={self.not_found} "
            f"errors={self.errors} rate_limits={self.rate_limits} api_calls={self.api_calls} "
            f"batches={self.batches} pbs={self.personal_bests} wrs={self.world_records} "
            f"rate={self.throughput:.1f}/s"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "not_found": self.not_found,
            "errors": self.errors,
            "rate_limits": self.rate_limits,
            "api_calls": self.api_calls,
            "batches": self.batches,
            "throughput": round(self.throughput, 2),
        }


@dataclass
class _Window:
    cursor: int
    size: int
    results: List[FetchResult] = field(default_factory=list)


class IngestionController:
    """
    Single-process controller for one ingestion stream.

    Responsibilities:
    - Own the loop and its state machine
    - Decide window retries, done conditions and sleeps
    - Run resolve + write in one transaction per batch
    - Advance the checkpoint only after a batch has committed

    Sleep and clock are injectable so backoff timing can be tested without
    real delays.
    """

    def __init__(
        self,
        stream: IngestionStream,
        fetcher: RateLimitedFetcher,
        session_maker: async_sessionmaker,
        checkpoint_store: CheckpointStore,
        resolver: Optional[EntityResolver] = None,
        writer: Optional[BatchWriter] = None,
        batch_size: Optional[int] = None,
        interval: Optional[float] = None,
        start_cursor: Optional[int] = None,
        final_cursor: Optional[int] = None,
        dry_run: bool = False,
        force: bool = False,
        follow: bool = False,
        progress_every: Optional[int] = None,
        write_retry_ceiling: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.stream = stream
        self.fetcher = fetcher
        self.session_maker = session_maker
        self.checkpoint_store = checkpoint_store
        self.resolver = resolver or EntityResolver(read_only=dry_run)
        self.writer = writer or BatchWriter()
        self.batch_size = batch_size or stream.window_size
        self.interval = settings.BATCH_INTERVAL if interval is None else interval
        self.start_cursor = start_cursor
        self.final_cursor = final_cursor
        self.dry_run = dry_run
        self.force = force
        self.follow = follow
        self.progress_every = max(1, progress_every or settings.PROGRESS_LOG_EVERY)
        self.write_retry_ceiling = (
            settings.WRITE_RETRY_CEILING if write_retry_ceiling is None else write_retry_ceiling
        )

        self._sleep = sleep
        self._clock = clock
        self._stop_requested = False

        self.state = PipelineState.IDLE
        self.transitions: List[PipelineState] = [PipelineState.IDLE]
        self.stats = RunStats()
        self.checkpoint: Optional[CheckpointState] = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, new_state: PipelineState) -> None:
        if new_state != PipelineState.STOPPING and new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {new_state.value}")
        logger.debug(f"{self.stream.name}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.transitions.append(new_state)

    def request_stop(self) -> None:
        """Ask the loop to stop after the in-flight sub-phase"""
        if not self._stop_requested:
            logger.info(f"Stop requested for {self.stream.name}, finishing current step")
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RunStats:
        """
        Run until the source is exhausted, the final cursor is passed or a
        stop is requested.

        Returns:
            Final RunStats

        Raises:
            CheckpointError: Checkpoint storage cannot be read or written
        """
        self.stats.started_at = self._clock()
        try:
            cursor = await self._initial_cursor()
            logger.info(
                f"Starting {self.stream.name} ingestion at cursor {cursor} "
                f"(window={self.batch_size}, routes={self.fetcher.pool.size}, "
                f"{'parallel' if self.fetcher.pool.is_parallel else 'sequential'}"
                f"{', dry run' if self.dry_run else ''}{', force refresh' if self.force else ''})"
            )
            await self._loop(cursor)

            if self._stop_requested and self.state != PipelineState.DONE:
                self._transition(PipelineState.STOPPING)
                if self.checkpoint is not None and not self.dry_run:
                    await self.checkpoint_store.save(self.checkpoint)
        finally:
            self._sync_fetch_stats()
            self.stats.elapsed = self._clock() - self.stats.started_at
            logger.info(f"Final summary [{self.stream.name}] {self.stats.summary()}")
        return self.stats

    async def _initial_cursor(self) -> int:
        if self.force or self.dry_run:
            stored = None
            if not self.force:
                stored = await self._peek_checkpoint()
            cursor = stored.cursor if stored else self.stream.initial_cursor
            self.checkpoint = stored or CheckpointState(stream_name=self.stream.name, cursor=cursor)
        else:
            self.checkpoint = await self.checkpoint_store.load(self.stream)
            cursor = self.checkpoint.cursor

        if self.start_cursor is not None:
            cursor = self.start_cursor
            self.checkpoint = self.checkpoint.model_copy(update={"cursor": cursor})
        return cursor

    async def _peek_checkpoint(self) -> Optional[CheckpointState]:
        """Read-only view of the stored checkpoint for dry runs"""
        return await self.checkpoint_store.read(self.stream.name)

    async def _loop(self, cursor: int) -> None:
        window_failures = 0

        while not self._stop_requested:
            if self.final_cursor is not None and cursor > self.final_cursor:
                logger.info(f"Reached final cursor {self.final_cursor}")
                self._transition(PipelineState.FETCHING)
                self._transition(PipelineState.DONE)
                return

            size = self.batch_size
            if self.final_cursor is not None:
                size = min(size, self.final_cursor - cursor + 1)

            # --------------------------------------------------
            # FETCHING
            # --------------------------------------------------
            self._transition(PipelineState.FETCHING)
            window = _Window(cursor, size)
            window.results = await self._fetch_window(self.stream.build_requests(cursor, size))

            failed = [
                r for r in window.results
                if r.outcome in (FetchOutcome.RATE_LIMITED, FetchOutcome.ERROR)
            ]
            if failed:
                window_failures += 1
                self.stats.errors += 1
                delay = self._window_backoff(window_failures, failed)
                error = self._window_error(window, failed)
                logger.warning(f"{error} | retrying window in {delay:.1f}s")
                self._transition(PipelineState.SLEEPING)
                await self._sleep(delay)
                continue
            window_failures = 0

            payloads = self.stream.extract_payloads(window.results)
            exhausted = self.stream.is_exhausted(window.results, size)
            next_cursor = self.stream.next_cursor(cursor, size, window.results)
            not_found = self.stream.skipped_not_found(window.results, next_cursor)

            if exhausted and not payloads:
                if self.follow:
                    logger.info(f"No new data at {cursor}, polling again in {self.interval}s")
                    self._transition(PipelineState.SLEEPING)
                    await self._sleep(self.interval)
                    continue
                logger.info(f"Source exhausted at cursor {cursor}")
                self._transition(PipelineState.DONE)
                return

            if self._stop_requested:
                return

            # --------------------------------------------------
            # NORMALIZING
            # --------------------------------------------------
            self._transition(PipelineState.NORMALIZING)
            batch = self.stream.normalize(payloads)

            if self._stop_requested:
                return

            if self.dry_run:
                await self._preview(batch, cursor)
                outcome = BatchOutcome()
            else:
                outcome = await self._write_with_retry(batch, cursor)
                if outcome is None:
                    return

            self._record_batch(batch, outcome, not_found)

            # --------------------------------------------------
            # CHECKPOINTING
            # --------------------------------------------------
            if not self.dry_run:
                self._transition(PipelineState.CHECKPOINTING)
                self.checkpoint = self.checkpoint.advance(
                    next_cursor,
                    processed=len(payloads),
                    inserted=outcome.write.inserted,
                    updated=outcome.write.updated,
                    skipped=outcome.write.skipped + batch.duplicates,
                    failed=batch.rejected,
                    not_found=not_found,
                    at=utcnow(),
                )
                await self.checkpoint_store.save(self.checkpoint)
            else:
                self.checkpoint = self.checkpoint.model_copy(update={"cursor": next_cursor})

            if self.stats.batches % self.progress_every == 0:
                self._log_progress(next_cursor)

            cursor = next_cursor
            if exhausted and not self.follow:
                logger.info(f"Source exhausted after cursor {cursor}")
                self._transition(PipelineState.DONE)
                return
            if self.final_cursor is not None and cursor > self.final_cursor:
                logger.info(f"Reached final cursor {self.final_cursor}")
                self._transition(PipelineState.DONE)
                return
            if self._stop_requested:
                return

            self._transition(PipelineState.SLEEPING)
            await self._sleep(self.interval)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _fetch_window(self, requests: List[FetchRequest]) -> List[FetchResult]:
        """Fan out over the pool when it has several routes, otherwise one by one"""
        if self.fetcher.pool.is_parallel:
            semaphore = asyncio.Semaphore(self.fetcher.pool.size)

            async def bounded(request: FetchRequest) -> FetchResult:
                async with semaphore:
                    return await self.fetcher.fetch(request)

            return list(await asyncio.gather(*(bounded(r) for r in requests)))

        results = []
        for request in requests:
            results.append(await self.fetcher.fetch(request))
        return results

    def _window_error(self, window: _Window, failed: List[FetchResult]) -> FetchError:
        context = {
            "stream": self.stream.name,
            "cursor": window.cursor,
            "failed": f"{len(failed)}/{len(window.results)}",
            "outcome": failed[0].outcome.value,
        }
        message = f"Window fetch failed: {failed[0].error}"
        if any(r.outcome == FetchOutcome.RATE_LIMITED for r in failed):
            return RateLimitError(message, context=context, retry_after=self.fetcher.rate_limit_cooldown)
        return TransientFetchError(message, context=context)

    def _window_backoff(self, failures: int, failed: List[FetchResult]) -> float:
        if any(r.outcome == FetchOutcome.RATE_LIMITED for r in failed):
            delay = self.fetcher.rate_limit_cooldown
        else:
            delay = self.fetcher.backoff(failures)
        return min(self.write_retry_ceiling, max(delay, self.interval))

    async def _preview(self, batch: NormalizedBatch, cursor: int) -> None:
        async with self.session_maker() as session:
            report = await self.stream.preview(session, self.resolver, batch)
        logger.info(
            f"[DRY RUN] window at {cursor}: {report}, rejected={batch.rejected}, "
            f"duplicates={batch.duplicates}"
        )

    async def _write_with_retry(self, batch: NormalizedBatch, cursor: int) -> Optional[BatchOutcome]:
        """
        Resolve and write a batch in one transaction.

        Storage errors roll the batch back and retry it with exponential
        backoff capped at write_retry_ceiling. Returns None when a stop is
        requested before the batch could be committed.
        """
        attempt = 0
        while True:
            self._transition(PipelineState.RESOLVING)
            try:
                async with self.session_maker() as session:
                    async with session.begin():
                        resolved = await self.stream.resolve(session, self.resolver, batch)
                        self._transition(PipelineState.WRITING)
                        return await self.stream.write(
                            session, self.writer, batch, resolved, force=self.force
                        )
            except (SQLAlchemyError, OSError) as e:
                attempt += 1
                self.stats.errors += 1
                # Ids cached during the rolled-back transaction may not exist
                self.resolver.cache.clear()
                error = WriteError(
                    "Batch write failed",
                    context={"stream": self.stream.name, "cursor": cursor, "attempt": attempt},
                    original_exception=e
                )
                delay = min(self.write_retry_ceiling, self.fetcher.retry_delay * (2 ** (attempt - 1)))
                if attempt >= 2:
                    logger.warning(f"{error} | retrying in {delay:.1f}s")
                else:
                    logger.info(f"{error} | retrying in {delay:.1f}s")

                if self._stop_requested:
                    return None
                self._transition(PipelineState.SLEEPING)
                await self._sleep(delay)
                if self._stop_requested:
                    return None

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _record_batch(self, batch: NormalizedBatch, outcome: BatchOutcome, not_found: int) -> None:
        self.stats.batches += 1
        self.stats.processed += len(batch.rows) + batch.rejected + batch.duplicates
        self.stats.inserted += outcome.write.inserted
        self.stats.updated += outcome.write.updated
        self.stats.skipped += outcome.write.skipped + batch.duplicates
        self.stats.rejected += batch.rejected
        self.stats.not_found += not_found
        self.stats.personal_bests += outcome.personal_bests
        self.stats.world_records += outcome.world_records

    def _sync_fetch_stats(self) -> None:
        self.stats.api_calls = self.fetcher.stats.api_calls
        self.stats.rate_limits = self.fetcher.stats.rate_limit_hits

    def _log_progress(self, cursor: int) -> None:
        self._sync_fetch_stats()
        self.stats.elapsed = self._clock() - self.stats.started_at
        logger.info(f"Progress [{self.stream.name}] cursor={cursor} {self.stats.summary()}")

"""
Concrete ingestion streams: records by id, and offset-paged bans, players,
servers and maps
"""

from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from models.base import StreamName
from models.record import Record
from ingestion.base import BatchOutcome, IngestionStream
from ingestion.extractors.api_extractor import FetchOutcome, FetchRequest, FetchResult
from ingestion.loaders.batch_writer import BatchWriter
from ingestion.resolver import EntityResolver, ResolvedBatch
from ingestion.transformers.normalizer import (
    NormalizedBatch,
    normalize,
    normalize_ban,
    normalize_batch,
    normalize_map,
    normalize_player,
    normalize_server,
)
import logging

logger = logging.getLogger(__name__)


class RecordsStream(IngestionStream):
    """
    GET /records/{id} for consecutive ids.

    The cursor is the next record id. 404s inside a window are gaps and are
    skipped; 404s after the last record found may simply not be published
    yet, so the next window starts right after that record. A window where
    every id is 404 leaves the cursor where it was.
    """

    name = StreamName.RECORDS.value
    initial_cursor = 1

    def __init__(self, window_size: Optional[int] = None):
        super().__init__(window_size or settings.ETL_BATCH_SIZE)

    def build_requests(self, cursor: int, size: int) -> List[FetchRequest]:
        return [
            FetchRequest(resource=self.name, path=f"records/{record_id}", element=record_id)
            for record_id in range(cursor, cursor + size)
        ]

    def extract_payloads(self, results: List[FetchResult]) -> List[Any]:
        return [r.payload for r in results if r.ok]

    def is_exhausted(self, results: List[FetchResult], size: int) -> bool:
        return bool(results) and all(r.outcome == FetchOutcome.NOT_FOUND for r in results)

    def next_cursor(self, cursor: int, size: int, results: List[FetchResult]) -> int:
        found = [r.request.element for r in results if r.ok]
        if not found:
            return cursor
        return max(found) + 1

    def normalize(self, payloads: List[Any]) -> NormalizedBatch:
        return normalize_batch(payloads, normalize)

    async def bootstrap_cursor(self, session: AsyncSession) -> int:
        result = await session.execute(select(func.max(Record.original_id)))
        return (result.scalar() or 0) + 1

    async def resolve(
        self,
        session: AsyncSession,
        resolver: EntityResolver,
        batch: NormalizedBatch
    ) -> Optional[ResolvedBatch]:
        return await resolver.resolve_batch(session, batch.rows)

    async def write(
        self,
        session: AsyncSession,
        writer: BatchWriter,
        batch: NormalizedBatch,
        resolved: Optional[ResolvedBatch],
        force: bool = False
    ) -> BatchOutcome:
        """
        Insert records, then merge personal bests and world records.

        Only rows written by this batch feed the merges, so re-fetched
        duplicates never touch the derived tables.
        """
        if not batch.rows:
            return BatchOutcome()

        result, written = await writer.write_records(session, batch.rows, resolved, force=force)
        fresh = [row for row in batch.rows if row.original_id in written]

        personal_bests = await writer.write_personal_bests(session, fresh, resolved)
        world_records = await writer.write_world_records(session, fresh, resolved)
        return BatchOutcome(write=result, personal_bests=personal_bests, world_records=world_records)

    async def preview(
        self,
        session: AsyncSession,
        resolver: EntityResolver,
        batch: NormalizedBatch
    ) -> Dict[str, int]:
        resolved = await resolver.resolve_batch(session, batch.rows)
        return {
            "rows": len(batch.rows),
            "new_players": resolved.missing.get("players", 0),
            "new_maps": resolved.missing.get("maps", 0),
            "new_servers": resolved.missing.get("servers", 0),
        }


class PagedStream(IngestionStream):
    """
    GET /{resource}?limit=&offset= pages.

    The cursor is the offset of the next page. A short or empty page marks
    the end of the listing.
    """

    initial_cursor = 0
    normalizer: Callable[[Any], Any] = None

    def __init__(self, window_size: Optional[int] = None):
        super().__init__(window_size or settings.PAGE_SIZE)

    def build_requests(self, cursor: int, size: int) -> List[FetchRequest]:
        return [
            FetchRequest(
                resource=self.name,
                path=self.name,
                params={"limit": size, "offset": cursor},
                element=cursor,
            )
        ]

    def _page(self, result: FetchResult) -> List[Any]:
        if not result.ok:
            return []
        if isinstance(result.payload, list):
            return result.payload
        logger.warning(f"Unexpected {self.name} page shape: {type(result.payload).__name__}")
        return []

    def extract_payloads(self, results: List[FetchResult]) -> List[Any]:
        payloads: List[Any] = []
        for result in results:
            payloads.extend(self._page(result))
        return payloads

    def is_exhausted(self, results: List[FetchResult], size: int) -> bool:
        return len(self.extract_payloads(results)) < size

    def next_cursor(self, cursor: int, size: int, results: List[FetchResult]) -> int:
        return cursor + len(self.extract_payloads(results))

    def normalize(self, payloads: List[Any]) -> NormalizedBatch:
        return normalize_batch(payloads, self.normalizer)

    async def bootstrap_cursor(self, session: AsyncSession) -> int:
        return 0


class BansStream(PagedStream):
    name = StreamName.BANS.value
    normalizer = staticmethod(normalize_ban)

    async def write(self, session, writer, batch, resolved, force=False) -> BatchOutcome:
        return BatchOutcome(write=await writer.write_bans(session, batch.rows))


class PlayersStream(PagedStream):
    name = StreamName.PLAYERS.value
    normalizer = staticmethod(normalize_player)

    async def write(self, session, writer, batch, resolved, force=False) -> BatchOutcome:
        return BatchOutcome(write=await writer.write_players(session, batch.rows))


class ServersStream(PagedStream):
    name = StreamName.SERVERS.value
    normalizer = staticmethod(normalize_server)

    async def write(self, session, writer, batch, resolved, force=False) -> BatchOutcome:
        return BatchOutcome(write=await writer.write_servers(session, batch.rows))


class MapsStream(PagedStream):
    name = StreamName.MAPS.value
    normalizer = staticmethod(normalize_map)

    async def write(self, session, writer, batch, resolved, force=False) -> BatchOutcome:
        return BatchOutcome(write=await writer.write_maps(session, batch.rows))


STREAMS = {
    StreamName.RECORDS.value: RecordsStream,
    StreamName.BANS.value: BansStream,
    StreamName.PLAYERS.value: PlayersStream,
    StreamName.SERVERS.value: ServersStream,
    StreamName.MAPS.value: MapsStream,
}


def build_stream(name: str, window_size: Optional[int] = None) -> IngestionStream:
    try:
        return STREAMS[name](window_size)
    except KeyError:
        raise ValueError(f"Unknown stream: {name}") from None

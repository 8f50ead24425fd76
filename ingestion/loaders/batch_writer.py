"""
Batched, idempotent writes with per-table conflict rules.

- Records: insert-ignore on original_id (force refresh overwrites instead)
- Bans, players, servers, maps: last-write-wins upserts
- Personal bests and the world-record cache: overwrite a variant only when
  the incoming time is strictly smaller
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Sequence, Set, Tuple
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.database import dialect_insert
from models.base import utcnow
from models.ban import Ban
from models.map import Map
from models.personal_best import PersonalBest, WorldRecord
from models.player import Player
from models.record import Record
from models.server import Server
from schemas.normalized import (
    NormalizedBan,
    NormalizedMap,
    NormalizedPlayer,
    NormalizedRecord,
    NormalizedServer,
)
from ingestion.resolver import ResolvedBatch
import logging

logger = logging.getLogger(__name__)

VARIANTS = ("pro", "tp")
VARIANT_COLUMNS = ("time", "teleports", "points", "record_id", "created_on")

RECORD_COLUMNS = (
    "player_id", "steamid64", "map_id", "server_id", "mode", "stage", "time",
    "teleports", "points", "tickrate", "record_filter_id", "replay_id",
    "updated_by", "created_on", "updated_on",
)


@dataclass
class WriteResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def __add__(self, other: "WriteResult") -> "WriteResult":
        return WriteResult(
            self.inserted + other.inserted,
            self.updated + other.updated,
            self.skipped + other.skipped,
        )

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped


def estimate_upsert_counts(affected_rows: int, batch_size: int, existing: int) -> WriteResult:
    """
    Split an upsert's affected-row count into inserted / updated / skipped.

    This is an estimate. existing comes from a key lookup made just before
    the statement, so rows created concurrently in between are attributed to
    "updated" rather than "inserted", and drivers that report no row count
    make every pre-existing row look updated. Use the figures as telemetry
    only.
    """
    existing = max(0, min(existing, batch_size))
    inserted = batch_size - existing
    if affected_rows < 0:
        affected_rows = batch_size
    updated = max(0, min(existing, affected_rows - inserted))
    return WriteResult(inserted=inserted, updated=updated, skipped=batch_size - inserted - updated)


def _better(excluded, table, prefix: str):
    """Incoming variant time exists and beats the stored one (or none is stored)"""
    incoming = excluded[f"{prefix}_time"]
    stored = table.c[f"{prefix}_time"]
    return and_(incoming.isnot(None), or_(stored.is_(None), incoming < stored))


def _merge_if_better_set(stmt, model, extra_columns: Sequence[str] = ()) -> Dict[str, Any]:
    table = model.__table__
    excluded = stmt.excluded
    set_: Dict[str, Any] = {}
    for prefix in VARIANTS:
        better = _better(excluded, table, prefix)
        for column in tuple(VARIANT_COLUMNS) + tuple(extra_columns):
            name = f"{prefix}_{column}"
            set_[name] = case((better, excluded[name]), else_=table.c[name])
    set_["updated_at"] = utcnow()
    return set_


def _empty_variants(prefixes=VARIANTS, extra: Sequence[str] = ()) -> Dict[str, Any]:
    return {f"{p}_{c}": None for p in prefixes for c in tuple(VARIANT_COLUMNS) + tuple(extra)}


def reduce_best(
    candidates: Iterable[Tuple[Any, NormalizedRecord, Dict[str, Any]]],
    extra: Callable[[NormalizedRecord], Dict[str, Any]] = lambda row: {}
) -> List[Dict[str, Any]]:
    """
    Collapse candidate runs to one row per key holding the fastest run of
    each variant. Runs without a positive time never qualify.

    Args:
        candidates: (key, record row, key column values) triples
        extra: additional per-variant columns for a run (e.g. holder id)
    """
    best: Dict[Any, Dict[str, Any]] = {}
    for key, row, key_values in candidates:
        if row.time <= 0:
            continue
        prefix = "pro" if row.is_pro else "tp"
        entry = best.get(key)
        if entry is None:
            entry = dict(key_values)
            entry.update(_empty_variants(extra=tuple(extra(row).keys())))
            best[key] = entry

        stored = entry[f"{prefix}_time"]
        if stored is not None and row.time >= stored:
            continue
        entry[f"{prefix}_time"] = row.time
        entry[f"{prefix}_teleports"] = row.teleports
        entry[f"{prefix}_points"] = row.points
        entry[f"{prefix}_record_id"] = row.original_id
        entry[f"{prefix}_created_on"] = row.created_on
        for column, value in extra(row).items():
            entry[f"{prefix}_{column}"] = value
    return list(best.values())


class BatchWriter:
    """
    Write normalized rows in chunks of chunk_size rows per statement.

    Runs inside the caller's transaction; nothing here commits.
    """

    def __init__(self, chunk_size: int = None):
        self.chunk_size = chunk_size or settings.WRITE_CHUNK_SIZE

    def _chunks(self, rows: List) -> Iterable[List]:
        for i in range(0, len(rows), self.chunk_size):
            yield rows[i:i + self.chunk_size]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def write_records(
        self,
        session: AsyncSession,
        rows: List[NormalizedRecord],
        resolved: ResolvedBatch,
        force: bool = False
    ) -> Tuple[WriteResult, Set[int]]:
        """
        Insert records, ignoring ids that are already stored.

        Returns:
            (counts, original ids written by this call). In force mode the
            ids include overwritten rows.
        """
        result = WriteResult()
        written: Set[int] = set()

        for chunk in self._chunks(rows):
            values = []
            for row in chunk:
                player_id, map_id, server_id = resolved.ids_for(row)
                values.append({
                    "original_id": row.original_id,
                    "player_id": player_id,
                    "steamid64": row.steamid64,
                    "map_id": map_id,
                    "server_id": server_id,
                    "mode": row.mode,
                    "stage": row.stage,
                    "time": row.time,
                    "teleports": row.teleports,
                    "points": row.points,
                    "tickrate": row.tickrate,
                    "record_filter_id": row.record_filter_id,
                    "replay_id": row.replay_id,
                    "updated_by": row.updated_by,
                    "created_on": row.created_on,
                    "updated_on": row.updated_on,
                })

            stmt = dialect_insert(session, Record).values(values)
            if force:
                existing = await self._count_existing(
                    session, Record.original_id, [r.original_id for r in chunk]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["original_id"],
                    set_={c: stmt.excluded[c] for c in RECORD_COLUMNS},
                )
                returned = await session.execute(stmt.returning(Record.original_id))
                ids = set(returned.scalars().all())
                result += estimate_upsert_counts(len(ids), len(chunk), existing)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=["original_id"])
                returned = await session.execute(stmt.returning(Record.original_id))
                ids = set(returned.scalars().all())
                result += WriteResult(inserted=len(ids), skipped=len(chunk) - len(ids))
            written |= ids

        logger.debug(
            f"Records: {result.inserted} inserted, {result.updated} updated, {result.skipped} skipped"
        )
        return result, written

    # ------------------------------------------------------------------
    # Last-write-wins upserts
    # ------------------------------------------------------------------

    async def _count_existing(self, session: AsyncSession, column, keys: List) -> int:
        if not keys:
            return 0
        result = await session.execute(select(func.count(column)).where(column.in_(keys)))
        return result.scalar_one()

    async def _overwrite(
        self,
        session: AsyncSession,
        model,
        values: List[Dict[str, Any]],
        index_elements: List[str],
        existing_for: Callable[[List[Dict[str, Any]]], Any]
    ) -> WriteResult:
        result = WriteResult()
        for chunk in self._chunks(values):
            existing = await existing_for(chunk)
            stmt = dialect_insert(session, model).values(chunk)
            set_ = {
                c: stmt.excluded[c]
                for c in chunk[0].keys()
                if c not in index_elements
            }
            set_["updated_at"] = utcnow()
            outcome = await session.execute(
                stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)
            )
            result += estimate_upsert_counts(outcome.rowcount, len(chunk), existing)
        return result

    async def write_bans(self, session: AsyncSession, rows: List[NormalizedBan]) -> WriteResult:
        """Upsert bans, overwriting every field"""
        values = [row.model_dump() for row in rows]
        result = await self._overwrite(
            session, Ban, values, ["id"],
            lambda chunk: self._count_existing(session, Ban.id, [v["id"] for v in chunk]),
        )
        logger.debug(f"Bans: {result.inserted} inserted, {result.updated} updated (estimated)")
        return result

    async def write_players(self, session: AsyncSession, rows: List[NormalizedPlayer]) -> WriteResult:
        values = [row.model_dump() for row in rows]
        return await self._overwrite(
            session, Player, values, ["steamid64"],
            lambda chunk: self._count_existing(session, Player.steamid64, [v["steamid64"] for v in chunk]),
        )

    async def write_servers(self, session: AsyncSession, rows: List[NormalizedServer]) -> WriteResult:
        values = [row.model_dump() for row in rows]
        return await self._overwrite(
            session, Server, values, ["server_id"],
            lambda chunk: self._count_existing(session, Server.server_id, [v["server_id"] for v in chunk]),
        )

    async def write_maps(self, session: AsyncSession, rows: List[NormalizedMap]) -> WriteResult:
        values = [row.model_dump() for row in rows]

        async def existing_maps(chunk):
            pairs = {(v["map_id"], v["map_name"]) for v in chunk}
            found = await session.execute(
                select(Map.map_id, Map.map_name).where(Map.map_name.in_([v["map_name"] for v in chunk]))
            )
            return sum(1 for pair in found.all() if tuple(pair) in pairs)

        return await self._overwrite(session, Map, values, ["map_id", "map_name"], existing_maps)

    # ------------------------------------------------------------------
    # Merge-only-if-better upserts
    # ------------------------------------------------------------------

    async def _merge_best(
        self,
        session: AsyncSession,
        model,
        values: List[Dict[str, Any]],
        index_elements: List[str],
        extra_columns: Sequence[str] = ()
    ) -> int:
        merged = 0
        for chunk in self._chunks(values):
            stmt = dialect_insert(session, model).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=index_elements,
                set_=_merge_if_better_set(stmt, model, extra_columns),
            )
            await session.execute(stmt)
            merged += len(chunk)
        return merged

    async def write_personal_bests(
        self,
        session: AsyncSession,
        rows: List[NormalizedRecord],
        resolved: ResolvedBatch
    ) -> int:
        """
        Merge runs into kz_player_map_pbs.

        Pro (zero-teleport) and TP variants are merged independently; a
        stored time is only replaced by a strictly smaller one. Returns the
        number of keys merged.
        """
        candidates = []
        for row in rows:
            player_id, map_id, _ = resolved.ids_for(row)
            key = (player_id, map_id, row.mode, row.stage)
            candidates.append((key, row, {
                "player_id": player_id, "map_id": map_id, "mode": row.mode, "stage": row.stage,
            }))
        values = reduce_best(candidates)
        if not values:
            return 0
        return await self._merge_best(
            session, PersonalBest, values, ["player_id", "map_id", "mode", "stage"]
        )

    async def write_world_records(
        self,
        session: AsyncSession,
        rows: List[NormalizedRecord],
        resolved: ResolvedBatch
    ) -> int:
        """Merge runs by genuine players into kz_worldrecords_cache; returns keys merged"""
        candidates = []
        for row in rows:
            if row.synthetic_player:
                continue
            _, map_id, _ = resolved.ids_for(row)
            key = (map_id, row.mode, row.stage)
            candidates.append((key, row, {"map_id": map_id, "mode": row.mode, "stage": row.stage}))
        values = reduce_best(candidates, extra=lambda row: {"player_id": resolved.players[row.steamid64]})
        if not values:
            return 0
        return await self._merge_best(
            session, WorldRecord, values, ["map_id", "mode", "stage"], extra_columns=("player_id",)
        )

"""
Get-or-create resolution of natural keys to surrogate ids.

Players, maps and servers referenced by records are resolved in bulk per
batch: cached keys are answered locally, unknown keys get one insert-ignore
and one select per chunk, and the results are cached for the rest of the run.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.database import dialect_insert
from models.player import Player
from models.map import Map
from models.server import Server
from schemas.normalized import NormalizedRecord, PlayerKey, MapKey, ServerKey
import logging

logger = logging.getLogger(__name__)


def _chunks(items: List, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class EntityCache:
    """
    Natural key to surrogate id maps for one pipeline run.

    Owned by a single EntityResolver; discarded with the process.
    """

    def __init__(self):
        self.players: Dict[str, int] = {}
        self.maps: Dict[MapKey, int] = {}
        self.servers: Dict[int, int] = {}

    def stats(self) -> Dict[str, int]:
        return {
            "players": len(self.players),
            "maps": len(self.maps),
            "servers": len(self.servers),
        }

    def clear(self) -> None:
        self.players.clear()
        self.maps.clear()
        self.servers.clear()


@dataclass
class ResolvedBatch:
    """Surrogate ids for every entity a batch of records references"""
    players: Dict[str, int] = field(default_factory=dict)
    maps: Dict[MapKey, int] = field(default_factory=dict)
    servers: Dict[int, int] = field(default_factory=dict)
    missing: Dict[str, int] = field(default_factory=dict)

    def ids_for(self, row: NormalizedRecord) -> Tuple[int, int, int]:
        """(player_id, map_id, server_id) for a record row"""
        return (
            self.players[row.steamid64],
            self.maps[row.map_key],
            self.servers[row.server_id],
        )


class EntityResolver:
    """
    Resolve players, maps and servers with caching.

    With read_only=True nothing is inserted; keys not yet stored are left
    out of the returned mapping and counted in ResolvedBatch.missing.
    """

    def __init__(
        self,
        cache: Optional[EntityCache] = None,
        chunk_size: Optional[int] = None,
        read_only: bool = False
    ):
        self.cache = cache if cache is not None else EntityCache()
        self.chunk_size = chunk_size or settings.WRITE_CHUNK_SIZE
        self.read_only = read_only

    async def resolve_players(self, session: AsyncSession, keys: Iterable[PlayerKey]) -> Dict[str, int]:
        wanted: Dict[str, PlayerKey] = {}
        for key in keys:
            wanted.setdefault(key.steamid64, key)

        unknown = [k for k in wanted.values() if k.steamid64 not in self.cache.players]
        for chunk in _chunks(unknown, self.chunk_size):
            if not self.read_only:
                stmt = dialect_insert(session, Player).values([
                    {"steamid64": k.steamid64, "steam_id": k.steam_id, "player_name": k.player_name}
                    for k in chunk
                ])
                await session.execute(stmt.on_conflict_do_nothing(index_elements=["steamid64"]))

            result = await session.execute(
                select(Player.steamid64, Player.id).where(
                    Player.steamid64.in_([k.steamid64 for k in chunk])
                )
            )
            for steamid64, player_id in result.all():
                self.cache.players[steamid64] = player_id

        if unknown:
            logger.debug(f"Resolved {len(unknown)} uncached players")
        return {s: self.cache.players[s] for s in wanted if s in self.cache.players}

    async def resolve_maps(self, session: AsyncSession, keys: Iterable[MapKey]) -> Dict[MapKey, int]:
        wanted = list(dict.fromkeys(MapKey(*k) for k in keys))

        unknown = [k for k in wanted if k not in self.cache.maps]
        for chunk in _chunks(unknown, self.chunk_size):
            if not self.read_only:
                stmt = dialect_insert(session, Map).values([
                    {"map_id": k.map_id, "map_name": k.map_name} for k in chunk
                ])
                await session.execute(stmt.on_conflict_do_nothing(index_elements=["map_id", "map_name"]))

            chunk_keys = set(chunk)
            result = await session.execute(
                select(Map.map_id, Map.map_name, Map.id).where(
                    Map.map_name.in_(list({k.map_name for k in chunk}))
                )
            )
            for map_id, map_name, surrogate in result.all():
                key = MapKey(map_id, map_name)
                if key in chunk_keys:
                    self.cache.maps[key] = surrogate

        if unknown:
            logger.debug(f"Resolved {len(unknown)} uncached maps")
        return {k: self.cache.maps[k] for k in wanted if k in self.cache.maps}

    async def resolve_servers(self, session: AsyncSession, keys: Iterable[ServerKey]) -> Dict[int, int]:
        wanted: Dict[int, ServerKey] = {}
        for key in keys:
            wanted.setdefault(key.server_id, key)

        unknown = [k for k in wanted.values() if k.server_id not in self.cache.servers]
        for chunk in _chunks(unknown, self.chunk_size):
            if not self.read_only:
                stmt = dialect_insert(session, Server).values([
                    {"server_id": k.server_id, "server_name": k.server_name} for k in chunk
                ])
                await session.execute(stmt.on_conflict_do_nothing(index_elements=["server_id"]))

            result = await session.execute(
                select(Server.server_id, Server.id).where(
                    Server.server_id.in_([k.server_id for k in chunk])
                )
            )
            for server_id, surrogate in result.all():
                self.cache.servers[server_id] = surrogate

        if unknown:
            logger.debug(f"Resolved {len(unknown)} uncached servers")
        return {s: self.cache.servers[s] for s in wanted if s in self.cache.servers}

    async def resolve_batch(self, session: AsyncSession, rows: List[NormalizedRecord]) -> ResolvedBatch:
        """Resolve every entity referenced by a batch before any record is written"""
        players = await self.resolve_players(session, (r.player_key for r in rows))
        maps = await self.resolve_maps(session, (r.map_key for r in rows))
        servers = await self.resolve_servers(session, (r.server_key for r in rows))

        missing = {
            "players": len({r.steamid64 for r in rows} - set(players)),
            "maps": len({r.map_key for r in rows} - set(maps)),
            "servers": len({r.server_id for r in rows} - set(servers)),
        }
        return ResolvedBatch(players=players, maps=maps, servers=servers, missing=missing)

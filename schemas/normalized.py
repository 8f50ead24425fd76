"""
Pydantic schemas for storage-ready rows produced by the normalizer
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import NamedTuple, Optional
from datetime import datetime
import enum


class RejectReason(str, enum.Enum):
    """Why a payload could not be turned into a row"""
    NOT_AN_OBJECT = "not_an_object"
    MISSING_RECORD_ID = "missing_record_id"
    INVALID_RECORD_ID = "invalid_record_id"
    MISSING_BAN_ID = "missing_ban_id"
    MISSING_STEAMID64 = "missing_steamid64"
    MISSING_SERVER_ID = "missing_server_id"
    MISSING_MAP_IDENTITY = "missing_map_identity"


# ============================================================================
# Natural keys used by the entity resolver
# ============================================================================

class PlayerKey(NamedTuple):
    steamid64: str
    steam_id: str
    player_name: str


class MapKey(NamedTuple):
    map_id: int
    map_name: str


class ServerKey(NamedTuple):
    server_id: int
    server_name: str


class NormalizedRow(BaseModel):
    """Base for rows; frozen so rows can be shared between batches safely"""

    model_config = ConfigDict(frozen=True)


class NormalizedRecord(NormalizedRow):
    """
    A record with every field coerced and defaulted.

    Player/map/server fields hold natural keys; surrogate ids are attached
    by the resolver.
    """

    original_id: int = Field(..., ge=0)

    steamid64: str
    steam_id: str
    player_name: str
    synthetic_player: bool = False

    map_id: int
    map_name: str
    server_id: int
    server_name: str

    mode: str
    stage: int
    time: float
    teleports: int
    points: int
    tickrate: int
    record_filter_id: int
    replay_id: int
    updated_by: int
    created_on: datetime
    updated_on: datetime

    @property
    def player_key(self) -> PlayerKey:
        return PlayerKey(self.steamid64, self.steam_id, self.player_name)

    @property
    def map_key(self) -> MapKey:
        return MapKey(self.map_id, self.map_name)

    @property
    def server_key(self) -> ServerKey:
        return ServerKey(self.server_id, self.server_name)

    @property
    def is_pro(self) -> bool:
        """Zero-teleport run"""
        return self.teleports == 0


class NormalizedBan(NormalizedRow):
    id: int
    ban_type: str
    expires_on: Optional[datetime] = None
    ip: Optional[str] = None
    steamid64: Optional[str] = None
    player_name: Optional[str] = None
    steam_id: Optional[str] = None
    notes: Optional[str] = None
    stats: Optional[str] = None
    server_id: Optional[int] = None
    updated_by_id: Optional[str] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None


class NormalizedPlayer(NormalizedRow):
    steamid64: str
    steam_id: str
    player_name: str
    is_banned: bool = False
    total_records: int = 0


class NormalizedServer(NormalizedRow):
    server_id: int
    server_name: str
    api_key: Optional[str] = None
    port: Optional[int] = None
    ip: Optional[str] = None
    owner_steamid64: Optional[str] = None
    approval_status: Optional[int] = None
    approved_by_steamid64: Optional[str] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None


class NormalizedMap(NormalizedRow):
    map_id: int
    map_name: str
    filesize: Optional[int] = None
    validated: Optional[bool] = None
    difficulty: Optional[int] = None
    approved_by_steamid64: Optional[str] = None
    workshop_url: Optional[str] = None
    download_url: Optional[str] = None
    global_created_on: Optional[datetime] = None
    global_updated_on: Optional[datetime] = None

"""
Pydantic models for raw payloads returned by the remote API.

Every field is optional and loosely typed. Values are only checked for
presence here; coercion and defaulting happen in
ingestion.transformers.normalizer.
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, Optional


class ExternalPayload(BaseModel):
    """Base for untrusted API payloads; unknown keys are kept"""

    model_config = ConfigDict(extra="allow")


class ExternalRecord(ExternalPayload):
    """One leaderboard entry from GET /records/{id}"""

    id: Optional[Any] = None
    steamid64: Optional[Any] = None
    player_name: Optional[Any] = None
    steam_id: Optional[Any] = None
    server_id: Optional[Any] = None
    server_name: Optional[Any] = None
    map_id: Optional[Any] = None
    map_name: Optional[Any] = None
    stage: Optional[Any] = None
    mode: Optional[Any] = None
    tickrate: Optional[Any] = None
    time: Optional[Any] = None
    teleports: Optional[Any] = None
    points: Optional[Any] = None
    record_filter_id: Optional[Any] = None
    replay_id: Optional[Any] = None
    updated_by: Optional[Any] = None
    created_on: Optional[Any] = None
    updated_on: Optional[Any] = None


class ExternalBan(ExternalPayload):
    """One entry from GET /bans"""

    id: Optional[Any] = None
    ban_type: Optional[Any] = None
    expires_on: Optional[Any] = None
    ip: Optional[Any] = None
    steamid64: Optional[Any] = None
    player_name: Optional[Any] = None
    steam_id: Optional[Any] = None
    notes: Optional[Any] = None
    stats: Optional[Any] = None
    server_id: Optional[Any] = None
    updated_by_id: Optional[Any] = None
    created_on: Optional[Any] = None
    updated_on: Optional[Any] = None


class ExternalPlayer(ExternalPayload):
    """One entry from GET /players"""

    steamid64: Optional[Any] = None
    steam_id: Optional[Any] = None
    name: Optional[Any] = None
    is_banned: Optional[Any] = None
    total_records: Optional[Any] = None


class ExternalServer(ExternalPayload):
    """One entry from GET /servers"""

    id: Optional[Any] = None
    name: Optional[Any] = None
    api_key: Optional[Any] = None
    port: Optional[Any] = None
    ip: Optional[Any] = None
    owner_steamid64: Optional[Any] = None
    approval_status: Optional[Any] = None
    approved_by_steamid64: Optional[Any] = None
    created_on: Optional[Any] = None
    updated_on: Optional[Any] = None


class ExternalMap(ExternalPayload):
    """One entry from GET /maps"""

    id: Optional[Any] = None
    name: Optional[Any] = None
    filesize: Optional[Any] = None
    validated: Optional[Any] = None
    difficulty: Optional[Any] = None
    approved_by_steamid64: Optional[Any] = None
    workshop_url: Optional[Any] = None
    download_url: Optional[Any] = None
    created_on: Optional[Any] = None
    updated_on: Optional[Any] = None

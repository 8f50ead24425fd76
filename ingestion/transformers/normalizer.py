"""
Turn raw API payloads into storage-ready rows with defaults and clamping
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar, Union
from pydantic import ValidationError
from core.exceptions import RecordRejectedError
from schemas.external import ExternalRecord, ExternalBan, ExternalPlayer, ExternalServer, ExternalMap
from schemas.normalized import (
    NormalizedRecord,
    NormalizedBan,
    NormalizedPlayer,
    NormalizedServer,
    NormalizedMap,
    RejectReason,
)
from ingestion.transformers.sanitize import (
    DEFAULT_MODE,
    INT64_MAX,
    UNKNOWN_MAP_ID,
    UNKNOWN_MAP_NAME,
    UNKNOWN_SERVER_ID,
    UNKNOWN_SERVER_NAME,
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_steamid64,
    is_synthetic_steamid64,
    parse_timestamp,
    sanitize_string,
    synthetic_steamid64,
)
import logging

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


@dataclass
class NormalizedBatch(Generic[RowT]):
    """Result of normalizing one fetched window"""
    rows: List[RowT] = field(default_factory=list)
    rejects: List[Tuple[Any, RejectReason]] = field(default_factory=list)
    duplicates: int = 0

    @property
    def rejected(self) -> int:
        return len(self.rejects)


def _server_identity(raw_id: Any, raw_name: Any) -> Tuple[int, str]:
    server_id = coerce_int(raw_id, default=None)
    if server_id is None or server_id == UNKNOWN_SERVER_ID:
        return UNKNOWN_SERVER_ID, UNKNOWN_SERVER_NAME
    return server_id, sanitize_string(raw_name, 255, f"Unknown Server (ID: {server_id})")


def _parse(model, raw: Any):
    """Validate a payload dict against its model; None when it is not an object"""
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None


def normalize(raw: Any) -> Union[NormalizedRecord, RejectReason]:
    """
    Normalize one /records payload.

    Only the record id is mandatory. Missing player, map and server
    identities get placeholders; numeric fields are defaulted and clamped to
    their column ranges; timestamps are clamped to the storable range.
    """
    payload = _parse(ExternalRecord, raw)
    if payload is None:
        return RejectReason.NOT_AN_OBJECT

    if payload.id is None or payload.id == "":
        return RejectReason.MISSING_RECORD_ID
    original_id = coerce_int(payload.id, default=None, minimum=-INT64_MAX, maximum=INT64_MAX)
    if original_id is None or original_id <= 0:
        return RejectReason.INVALID_RECORD_ID

    steamid64 = coerce_steamid64(payload.steamid64)
    if steamid64 is None:
        steamid64 = synthetic_steamid64(original_id)

    server_id, server_name = _server_identity(payload.server_id, payload.server_name)
    created_on = parse_timestamp(payload.created_on)

    return NormalizedRecord(
        original_id=original_id,
        steamid64=steamid64,
        steam_id=sanitize_string(payload.steam_id, 32, f"STEAM_ID_MISSING_{original_id}"),
        player_name=sanitize_string(payload.player_name, 100, f"Unknown Player ({original_id})"),
        synthetic_player=is_synthetic_steamid64(steamid64),
        map_id=coerce_int(payload.map_id, default=UNKNOWN_MAP_ID),
        map_name=sanitize_string(payload.map_name, 255, UNKNOWN_MAP_NAME),
        server_id=server_id,
        server_name=server_name,
        mode=sanitize_string(payload.mode, 32, DEFAULT_MODE),
        stage=coerce_int(payload.stage, 0, 0, 255),
        time=coerce_float(payload.time, 0.0),
        teleports=coerce_int(payload.teleports, 0, 0, 65535),
        points=coerce_int(payload.points, 0),
        tickrate=coerce_int(payload.tickrate, 128, 0, 65535),
        record_filter_id=coerce_int(payload.record_filter_id, 0),
        replay_id=coerce_int(payload.replay_id, 0),
        updated_by=coerce_int(payload.updated_by, 0, 0, INT64_MAX),
        created_on=created_on,
        updated_on=parse_timestamp(payload.updated_on),
    )


def normalize_ban(raw: Any) -> Union[NormalizedBan, RejectReason]:
    """Normalize one /bans payload; nullable timestamps stay None when absent"""
    payload = _parse(ExternalBan, raw)
    if payload is None:
        return RejectReason.NOT_AN_OBJECT

    ban_id = coerce_int(payload.id, default=None, minimum=-INT64_MAX, maximum=INT64_MAX)
    if ban_id is None or ban_id <= 0:
        return RejectReason.MISSING_BAN_ID

    return NormalizedBan(
        id=ban_id,
        ban_type=sanitize_string(payload.ban_type, 50, "none"),
        expires_on=parse_timestamp(payload.expires_on, default=None),
        ip=sanitize_string(payload.ip, 45),
        steamid64=coerce_steamid64(payload.steamid64),
        player_name=sanitize_string(payload.player_name, 100),
        steam_id=sanitize_string(payload.steam_id, 32),
        notes=sanitize_string(payload.notes, 65535),
        stats=sanitize_string(payload.stats, 65535),
        server_id=coerce_int(payload.server_id, default=None),
        updated_by_id=coerce_steamid64(payload.updated_by_id),
        created_on=parse_timestamp(payload.created_on, default=None),
        updated_on=parse_timestamp(payload.updated_on, default=None),
    )


def normalize_player(raw: Any) -> Union[NormalizedPlayer, RejectReason]:
    payload = _parse(ExternalPlayer, raw)
    if payload is None:
        return RejectReason.NOT_AN_OBJECT

    steamid64 = coerce_steamid64(payload.steamid64)
    if steamid64 is None:
        return RejectReason.MISSING_STEAMID64

    return NormalizedPlayer(
        steamid64=steamid64,
        steam_id=sanitize_string(payload.steam_id, 32, f"STEAM_ID_MISSING_{steamid64}"),
        player_name=sanitize_string(payload.name, 100, f"Unknown Player ({steamid64})"),
        is_banned=coerce_bool(payload.is_banned, False),
        total_records=coerce_int(payload.total_records, 0, 0),
    )


def normalize_server(raw: Any) -> Union[NormalizedServer, RejectReason]:
    payload = _parse(ExternalServer, raw)
    if payload is None:
        return RejectReason.NOT_AN_OBJECT

    if coerce_int(payload.id, default=None) is None:
        return RejectReason.MISSING_SERVER_ID
    server_id, server_name = _server_identity(payload.id, payload.name)

    return NormalizedServer(
        server_id=server_id,
        server_name=server_name,
        api_key=sanitize_string(payload.api_key, 50),
        port=coerce_int(payload.port, None, 0, 65535),
        ip=sanitize_string(payload.ip, 45),
        owner_steamid64=coerce_steamid64(payload.owner_steamid64),
        approval_status=coerce_int(payload.approval_status, None),
        approved_by_steamid64=coerce_steamid64(payload.approved_by_steamid64),
        created_on=parse_timestamp(payload.created_on, default=None),
        updated_on=parse_timestamp(payload.updated_on, default=None),
    )


def normalize_map(raw: Any) -> Union[NormalizedMap, RejectReason]:
    payload = _parse(ExternalMap, raw)
    if payload is None:
        return RejectReason.NOT_AN_OBJECT

    map_id = coerce_int(payload.id, default=None)
    map_name = sanitize_string(payload.name, 255)
    if map_id is None and map_name is None:
        return RejectReason.MISSING_MAP_IDENTITY

    return NormalizedMap(
        map_id=UNKNOWN_MAP_ID if map_id is None else map_id,
        map_name=map_name or UNKNOWN_MAP_NAME,
        filesize=coerce_int(payload.filesize, None, 0, INT64_MAX),
        validated=coerce_bool(payload.validated, None),
        difficulty=coerce_int(payload.difficulty, None),
        approved_by_steamid64=coerce_steamid64(payload.approved_by_steamid64),
        workshop_url=sanitize_string(payload.workshop_url, 255),
        download_url=sanitize_string(payload.download_url, 255),
        global_created_on=parse_timestamp(payload.created_on, default=None),
        global_updated_on=parse_timestamp(payload.updated_on, default=None),
    )


def natural_key(row: Any) -> Any:
    """Identity used to drop in-batch duplicates, per row kind"""
    if isinstance(row, NormalizedRecord):
        return row.original_id
    if isinstance(row, NormalizedBan):
        return row.id
    if isinstance(row, NormalizedPlayer):
        return row.steamid64
    if isinstance(row, NormalizedServer):
        return row.server_id
    if isinstance(row, NormalizedMap):
        return (row.map_id, row.map_name)
    raise TypeError(f"No natural key for {type(row).__name__}")


def normalize_batch(
    raws: List[Any],
    normalizer: Callable[[Any], Any] = normalize,
    key: Optional[Callable[[Any], Any]] = natural_key
) -> NormalizedBatch:
    """
    Normalize a window of payloads.

    Rejected payloads are collected with their reason and never raise.
    Rows whose natural key already appeared earlier in the window are
    dropped (first occurrence wins).
    """
    batch = NormalizedBatch()
    seen: Dict[Any, int] = {}

    for raw in raws:
        result = normalizer(raw)
        if isinstance(result, RejectReason):
            element = raw.get("id") if isinstance(raw, dict) else None
            logger.warning(str(RecordRejectedError(
                "Rejected payload", reason=result.value, context={"element": element}
            )))
            batch.rejects.append((raw, result))
            continue

        if key is not None:
            identity = key(result)
            if identity in seen:
                logger.debug(f"Dropping in-batch duplicate {identity}")
                batch.duplicates += 1
                continue
            seen[identity] = len(batch.rows)

        batch.rows.append(result)

    return batch

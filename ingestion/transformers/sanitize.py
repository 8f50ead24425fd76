"""
Field-level coercion helpers and placeholder identities for untrusted payloads
"""

from typing import Any, Optional
from datetime import datetime, timezone
import math
import random
import re

# Synthetic steamid64 values live below the genuine range
RESERVED_PLAYER_BASE = 999_900_000_000
RESERVED_PLAYER_SPAN = 99_999_999
STEAMID64_MIN = 76_561_197_960_265_728

UNKNOWN_MAP_ID = -1
UNKNOWN_MAP_NAME = "unknown_map"
UNKNOWN_SERVER_ID = -1
UNKNOWN_SERVER_NAME = "Unknown Server (Missing ID)"
DEFAULT_MODE = "kz_timer"

# Range of a 32-bit UNIX timestamp
TIMESTAMP_FLOOR = datetime(1970, 1, 1, 0, 0, 1)
TIMESTAMP_CEILING = datetime(2038, 1, 19, 3, 14, 7)

INT32_MIN = -2_147_483_648
INT32_MAX = 2_147_483_647
INT64_MAX = 9_223_372_036_854_775_807

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_string(value: Any, max_length: int, default: Optional[str] = None) -> Optional[str]:
    """
    Clean a free-text field.

    Strips NUL and control characters (tab, newline and carriage return
    are kept), trims whitespace, truncates to max_length and falls back to
    default when nothing is left.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return default

    cleaned = _CONTROL_CHARS.sub("", value).strip()
    if not cleaned:
        return default
    return cleaned[:max_length]


def coerce_int(
    value: Any,
    default: Optional[int] = 0,
    minimum: int = INT32_MIN,
    maximum: int = INT32_MAX
) -> Optional[int]:
    """Parse an integer from an int, float or numeric string and clamp it"""
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return default
        result = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            result = int(text)
        except ValueError:
            try:
                parsed = float(text)
            except ValueError:
                return default
            if not math.isfinite(parsed):
                return default
            result = int(parsed)
    else:
        return default

    return max(minimum, min(maximum, result))


def coerce_float(
    value: Any,
    default: Optional[float] = 0.0,
    minimum: float = 0.0,
    maximum: float = 9_999_999.999
) -> Optional[float]:
    """Parse a float, clamp it and round to millisecond precision"""
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return default
    else:
        return default

    if not math.isfinite(result):
        return default
    return round(max(minimum, min(maximum, result)), 3)


def coerce_bool(value: Any, default: Optional[bool] = False) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no"):
            return False
    return default


def clamp_timestamp(value: datetime) -> datetime:
    """Clamp a naive UTC datetime into the storable range"""
    if value < TIMESTAMP_FLOOR:
        return TIMESTAMP_FLOOR
    if value > TIMESTAMP_CEILING:
        return TIMESTAMP_CEILING
    return value


def parse_timestamp(value: Any, default: Optional[datetime] = TIMESTAMP_FLOOR) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into naive UTC.

    A trailing "Z" and explicit offsets are accepted; naive input is taken
    as UTC. Out-of-range values are clamped to TIMESTAMP_FLOOR /
    TIMESTAMP_CEILING, unparseable ones return default.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return default
    else:
        return default

    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            return TIMESTAMP_FLOOR if parsed.year < 1970 else TIMESTAMP_CEILING

    return clamp_timestamp(parsed)


def coerce_steamid64(value: Any) -> Optional[str]:
    """Return the steamid64 as a decimal string, or None when unusable"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        return None
    if number <= 0 or number > INT64_MAX:
        return None
    return str(number)


def synthetic_steamid64(record_id: Optional[int], rng: Optional[random.Random] = None) -> str:
    """
    Placeholder steamid64 for a record without a usable one.

    Derived from the record id so re-ingesting the same record resolves to
    the same player. Random within the reserved range only when there is no
    record id to derive from.
    """
    if record_id is not None:
        return str(RESERVED_PLAYER_BASE + record_id)
    rng = rng or random
    return str(RESERVED_PLAYER_BASE + rng.randint(0, RESERVED_PLAYER_SPAN))


def is_synthetic_steamid64(steamid64: str) -> bool:
    """True for ids that cannot belong to a genuine account"""
    try:
        return int(steamid64) < STEAMID64_MIN
    except ValueError:
        return True

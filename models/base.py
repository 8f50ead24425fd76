from datetime import datetime, timezone
from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()

# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DATETIME columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# ENUMS
# ============================================================================

class StreamName(str, enum.Enum):
    """Ingestion streams sharing the controller"""
    RECORDS = "records"
    BANS = "bans"
    PLAYERS = "players"
    SERVERS = "servers"
    MAPS = "maps"


class CheckpointBackend(str, enum.Enum):
    """Where checkpoint state is persisted"""
    DATABASE = "database"
    FILE = "file"

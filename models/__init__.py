"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (StreamName, CheckpointBackend)
    player: Players keyed by steamid64
    map: Maps keyed by (map_id, map_name)
    server: Servers keyed by server_id
    record: Leaderboard runs keyed by the remote record id
    ban: Bans keyed by the remote ban id
    personal_best: Personal bests and the world-record cache
    checkpoint: Per-stream ingestion checkpoints

Database Schema:
    All models inherit from the Base declarative class. Column types stay
    portable so the same metadata serves PostgreSQL (asyncpg) and SQLite
    (aiosqlite). Importing this package registers every table on
    Base.metadata.

Usage:
    from models import Player, Record, IngestionCheckpoint
    from models.base import Base, StreamName

Relationships:
    - Record → Player, Map, Server (many-to-one by surrogate key)
    - PersonalBest → Player, Map
    - WorldRecord → Map
"""

from models.base import Base, StreamName, CheckpointBackend
from models.player import Player
from models.map import Map
from models.server import Server
from models.record import Record
from models.ban import Ban
from models.personal_best import PersonalBest, WorldRecord
from models.checkpoint import IngestionCheckpoint

__all__ = [
    "Base",
    "StreamName",
    "CheckpointBackend",
    "Player",
    "Map",
    "Server",
    "Record",
    "Ban",
    "PersonalBest",
    "WorldRecord",
    "IngestionCheckpoint",
]

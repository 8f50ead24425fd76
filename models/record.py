from sqlalchemy import Column, String, Integer, BigInteger, Numeric, DateTime, ForeignKey, Index
from models.base import Base, BigIntPK, utcnow


class Record(Base):
    """
    A single leaderboard run.

    Purpose:
    - Append-only fact table, one row per remote record id
    - References player/map/server by surrogate key

    Design:
    - original_id is unique; re-ingestion is insert-ignore
    - time is seconds with millisecond precision
    """
    __tablename__ = "kz_records"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    original_id = Column(BigInteger, nullable=False, unique=True)

    player_id = Column(BigInteger, ForeignKey("kz_players.id"), nullable=False)
    steamid64 = Column(String(20), nullable=False)
    map_id = Column(BigInteger, ForeignKey("kz_maps.id"), nullable=False)
    server_id = Column(BigInteger, ForeignKey("kz_servers.id"), nullable=False)

    mode = Column(String(32), nullable=False)
    stage = Column(Integer, nullable=False, default=0)
    time = Column(Numeric(10, 3, asdecimal=False), nullable=False)
    teleports = Column(Integer, nullable=False, default=0)
    points = Column(Integer, nullable=False, default=0)
    tickrate = Column(Integer, nullable=False, default=128)
    record_filter_id = Column(Integer, nullable=False, default=0)
    replay_id = Column(Integer, nullable=False, default=0)
    updated_by = Column(BigInteger, nullable=False, default=0)

    created_on = Column(DateTime, nullable=False)
    updated_on = Column(DateTime, nullable=False)
    inserted_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_records_player", "player_id"),
        Index("idx_records_map_mode_stage", "map_id", "mode", "stage"),
    )

    def __repr__(self):
        return f"<Record(original_id={self.original_id}, time={self.time}, teleports={self.teleports})>"

from sqlalchemy import Column, String, Integer, BigInteger, Numeric, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, BigIntPK, utcnow


class PersonalBest(Base):
    """
    Best time per (player, map, mode, stage).

    Two independent variants:
    - pro_*: runs with zero teleports
    - tp_*: runs with one or more teleports

    Stored times only ever decrease; see
    ingestion.loaders.batch_writer.write_personal_bests.
    """
    __tablename__ = "kz_player_map_pbs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    player_id = Column(BigInteger, ForeignKey("kz_players.id"), nullable=False)
    map_id = Column(BigInteger, ForeignKey("kz_maps.id"), nullable=False)
    mode = Column(String(32), nullable=False)
    stage = Column(Integer, nullable=False, default=0)

    pro_time = Column(Numeric(10, 3, asdecimal=False), nullable=True)
    pro_teleports = Column(Integer, nullable=True)
    pro_points = Column(Integer, nullable=True)
    pro_record_id = Column(BigInteger, nullable=True)
    pro_created_on = Column(DateTime, nullable=True)

    tp_time = Column(Numeric(10, 3, asdecimal=False), nullable=True)
    tp_teleports = Column(Integer, nullable=True)
    tp_points = Column(Integer, nullable=True)
    tp_record_id = Column(BigInteger, nullable=True)
    tp_created_on = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("player_id", "map_id", "mode", "stage", name="uq_kz_pbs_key"),
    )


class WorldRecord(Base):
    """
    Fastest time per (map, mode, stage) across genuine players.

    Same pro/tp layout as PersonalBest plus the holder of each variant.
    """
    __tablename__ = "kz_worldrecords_cache"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    map_id = Column(BigInteger, ForeignKey("kz_maps.id"), nullable=False)
    mode = Column(String(32), nullable=False)
    stage = Column(Integer, nullable=False, default=0)

    pro_time = Column(Numeric(10, 3, asdecimal=False), nullable=True)
    pro_teleports = Column(Integer, nullable=True)
    pro_points = Column(Integer, nullable=True)
    pro_record_id = Column(BigInteger, nullable=True)
    pro_player_id = Column(BigInteger, nullable=True)
    pro_created_on = Column(DateTime, nullable=True)

    tp_time = Column(Numeric(10, 3, asdecimal=False), nullable=True)
    tp_teleports = Column(Integer, nullable=True)
    tp_points = Column(Integer, nullable=True)
    tp_record_id = Column(BigInteger, nullable=True)
    tp_player_id = Column(BigInteger, nullable=True)
    tp_created_on = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("map_id", "mode", "stage", name="uq_kz_worldrecords_key"),
    )

from sqlalchemy import Column, String, Integer, BigInteger, Boolean, DateTime, UniqueConstraint
from models.base import Base, BigIntPK, utcnow


class Map(Base):
    """
    Map identity keyed by the (map_id, map_name) pair.

    map_id is -1 when a record carries only a name. Metadata columns are
    filled by the maps stream.
    """
    __tablename__ = "kz_maps"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    map_id = Column(Integer, nullable=False, default=-1)
    map_name = Column(String(255), nullable=False)

    # Metadata from /maps
    filesize = Column(BigInteger, nullable=True)
    validated = Column(Boolean, nullable=True)
    difficulty = Column(Integer, nullable=True)
    approved_by_steamid64 = Column(String(20), nullable=True)
    workshop_url = Column(String(255), nullable=True)
    download_url = Column(String(255), nullable=True)
    global_created_on = Column(DateTime, nullable=True)
    global_updated_on = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("map_id", "map_name", name="uq_kz_maps_identity"),
    )

    def __repr__(self):
        return f"<Map(id={self.id}, map_id={self.map_id}, name={self.map_name})>"

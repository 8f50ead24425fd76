from sqlalchemy import Column, String, Integer, Boolean, DateTime
from models.base import Base, BigIntPK, utcnow


class Player(Base):
    """
    Canonical player identity.

    Design:
    - steamid64 is the natural key; records without a usable one get a
      synthetic id in the reserved range (see ingestion.transformers.sanitize)
    - steam_id / player_name are display values refreshed by the players stream
    """
    __tablename__ = "kz_players"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    steamid64 = Column(String(20), nullable=False, unique=True)
    steam_id = Column(String(32), nullable=True)
    player_name = Column(String(100), nullable=True)

    is_banned = Column(Boolean, nullable=False, default=False)
    total_records = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Player(id={self.id}, steamid64={self.steamid64}, name={self.player_name})>"

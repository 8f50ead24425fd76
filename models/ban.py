from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Text
from models.base import Base, utcnow


class Ban(Base):
    """
    Ban keyed by the remote ban id.

    Bans change upstream (expiry, notes), so every fetch overwrites the row.
    """
    __tablename__ = "kz_bans"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    ban_type = Column(String(50), nullable=False)
    expires_on = Column(DateTime, nullable=True)
    ip = Column(String(45), nullable=True)
    steamid64 = Column(String(20), nullable=True, index=True)
    player_name = Column(String(100), nullable=True)
    steam_id = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    stats = Column(Text, nullable=True)
    server_id = Column(Integer, nullable=True)
    updated_by_id = Column(String(20), nullable=True)
    created_on = Column(DateTime, nullable=True)
    updated_on = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Ban(id={self.id}, steamid64={self.steamid64}, type={self.ban_type})>"

from sqlalchemy import Column, String, Integer, DateTime
from models.base import Base, BigIntPK, utcnow


class Server(Base):
    """
    Game server keyed by its external server_id.

    All records without a server id share the single server_id = -1 row.
    """
    __tablename__ = "kz_servers"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    server_id = Column(Integer, nullable=False, unique=True)
    server_name = Column(String(255), nullable=False)

    api_key = Column(String(50), nullable=True)
    port = Column(Integer, nullable=True)
    ip = Column(String(45), nullable=True)
    owner_steamid64 = Column(String(20), nullable=True)
    approval_status = Column(Integer, nullable=True)
    approved_by_steamid64 = Column(String(20), nullable=True)
    created_on = Column(DateTime, nullable=True)
    updated_on = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Server(id={self.id}, server_id={self.server_id}, name={self.server_name})>"

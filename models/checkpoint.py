from sqlalchemy import Column, Integer, BigInteger, String, DateTime
from models.base import Base, utcnow


class IngestionCheckpoint(Base):
    """
    Tracks resumable ingestion state per stream.

    Purpose:
    - Resume from the last committed batch after a crash or stop
    - Keep cumulative counters across runs

    Design:
    - One row per stream, keyed by stream_name
    - cursor is the next record id (records) or the next offset (paged streams)
    - Rows are only removed by an explicit reset
    """
    __tablename__ = "ingestion_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stream_name = Column(String(50), nullable=False, unique=True)
    cursor = Column(BigInteger, nullable=False, default=0)

    # Cumulative counters
    records_processed = Column(BigInteger, nullable=False, default=0)
    records_inserted = Column(BigInteger, nullable=False, default=0)
    records_updated = Column(BigInteger, nullable=False, default=0)
    records_skipped = Column(BigInteger, nullable=False, default=0)
    records_failed = Column(BigInteger, nullable=False, default=0)
    not_found = Column(BigInteger, nullable=False, default=0)
    total_batches = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

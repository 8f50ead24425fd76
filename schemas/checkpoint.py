"""
Checkpoint state shared by the database and file checkpoint stores
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CheckpointState(BaseModel):
    """
    Durable progress of one ingestion stream.

    cursor is the next element to fetch: a record id for the records
    stream, an offset for paged streams.
    """

    stream_name: str = Field(..., min_length=1, max_length=50)
    cursor: int = Field(0, ge=0)

    records_processed: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    not_found: int = 0
    total_batches: int = 0

    updated_at: Optional[datetime] = None

    def advance(
        self,
        cursor: int,
        processed: int = 0,
        inserted: int = 0,
        updated: int = 0,
        skipped: int = 0,
        failed: int = 0,
        not_found: int = 0,
        at: Optional[datetime] = None
    ) -> "CheckpointState":
        """Return the state after one committed batch"""
        return self.model_copy(update={
            "cursor": cursor,
            "records_processed": self.records_processed + processed,
            "records_inserted": self.records_inserted + inserted,
            "records_updated": self.records_updated + updated,
            "records_skipped": self.records_skipped + skipped,
            "records_failed": self.records_failed + failed,
            "not_found": self.not_found + not_found,
            "total_batches": self.total_batches + 1,
            "updated_at": at or self.updated_at,
        })

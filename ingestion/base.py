"""
Abstract base class for ingestion streams
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from ingestion.extractors.api_extractor import FetchOutcome, FetchRequest, FetchResult
from ingestion.loaders.batch_writer import BatchWriter, WriteResult
from ingestion.resolver import EntityResolver, ResolvedBatch
from ingestion.transformers.normalizer import NormalizedBatch
import logging

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """What one committed batch wrote"""
    write: WriteResult = field(default_factory=WriteResult)
    personal_bests: int = 0
    world_records: int = 0


class IngestionStream(ABC):
    """
    One kind of remote resource flowing through the shared controller.

    Responsibilities:
    - Map a cursor window to API requests
    - Decide when the source is exhausted and where the next window starts
    - Normalize payloads and write them inside the controller's transaction
    - Compute a starting cursor when no checkpoint exists

    The controller owns retries, transactions and checkpoints; streams never
    commit.
    """

    name: str = ""
    initial_cursor: int = 0

    def __init__(self, window_size: int):
        self.window_size = window_size

    @abstractmethod
    def build_requests(self, cursor: int, size: int) -> List[FetchRequest]:
        """Requests covering elements [cursor, cursor + size)"""
        pass

    @abstractmethod
    def extract_payloads(self, results: List[FetchResult]) -> List[Any]:
        """Raw payloads from the successful results, in cursor order"""
        pass

    @abstractmethod
    def is_exhausted(self, results: List[FetchResult], size: int) -> bool:
        """True when the window shows the source has no more data"""
        pass

    @abstractmethod
    def next_cursor(self, cursor: int, size: int, results: List[FetchResult]) -> int:
        pass

    @abstractmethod
    def normalize(self, payloads: List[Any]) -> NormalizedBatch:
        pass

    @abstractmethod
    async def bootstrap_cursor(self, session: AsyncSession) -> int:
        """Safe starting cursor derived from what storage already holds"""
        pass

    async def resolve(
        self,
        session: AsyncSession,
        resolver: EntityResolver,
        batch: NormalizedBatch
    ) -> Optional[ResolvedBatch]:
        """Resolve referenced entities; streams without references return None"""
        return None

    @abstractmethod
    async def write(
        self,
        session: AsyncSession,
        writer: BatchWriter,
        batch: NormalizedBatch,
        resolved: Optional[ResolvedBatch],
        force: bool = False
    ) -> BatchOutcome:
        pass

    async def preview(
        self,
        session: AsyncSession,
        resolver: EntityResolver,
        batch: NormalizedBatch
    ) -> Dict[str, int]:
        """Dry-run report for a batch; never writes"""
        return {"rows": len(batch.rows)}

    @staticmethod
    def skipped_not_found(results: List[FetchResult], next_cursor: int) -> int:
        """404s the cursor moves past; those at or beyond next_cursor are fetched again"""
        return sum(
            1 for r in results
            if r.outcome == FetchOutcome.NOT_FOUND
            and (r.request.element is None or r.request.element < next_cursor)
        )

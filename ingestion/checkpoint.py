"""
Durable per-stream checkpoints.

Two backends share one contract:
- DatabaseCheckpointStore: one row per stream in ingestion_checkpoints
- FileCheckpointStore: one JSON file per stream, replaced atomically

load() returns the stored state, or bootstraps a new one from what is
already in storage. save() is only called after a batch has committed.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.database import dialect_insert
from core.exceptions import CheckpointError
from models.base import utcnow
from models.checkpoint import IngestionCheckpoint
from schemas.checkpoint import CheckpointState
import asyncio
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

STATE_COLUMNS = (
    "cursor", "records_processed", "records_inserted", "records_updated",
    "records_skipped", "records_failed", "not_found", "total_batches",
)


class CheckpointStore(ABC):
    """
    Persist ingestion progress per stream.

    Raises:
        CheckpointError: The backing storage cannot be read or written
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def load(self, stream) -> CheckpointState:
        """Stored state for the stream, or a new state bootstrapped from storage"""
        state = await self.read(stream.name)
        if state is not None:
            logger.info(f"Resuming {stream.name} from checkpoint cursor {state.cursor}")
            return state

        try:
            async with self.session_maker() as session:
                cursor = await stream.bootstrap_cursor(session)
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Cannot bootstrap checkpoint from storage",
                context={"stream": stream.name, "operation": "bootstrap"},
                original_exception=e
            )

        state = CheckpointState(stream_name=stream.name, cursor=cursor, updated_at=utcnow())
        await self.save(state)
        logger.info(f"No checkpoint for {stream.name}, starting at cursor {cursor}")
        return state

    @abstractmethod
    async def read(self, stream_name: str) -> Optional[CheckpointState]:
        pass

    @abstractmethod
    async def save(self, state: CheckpointState) -> None:
        pass

    @abstractmethod
    async def reset(self, stream_name: str) -> None:
        pass


class DatabaseCheckpointStore(CheckpointStore):
    """Checkpoints in the ingestion_checkpoints table, each save in its own transaction"""

    async def read(self, stream_name: str) -> Optional[CheckpointState]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(IngestionCheckpoint).where(IngestionCheckpoint.stream_name == stream_name)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Cannot read checkpoint",
                context={"stream": stream_name, "operation": "load"},
                original_exception=e
            )

        if row is None:
            return None
        return CheckpointState(
            stream_name=row.stream_name,
            updated_at=row.updated_at,
            **{c: getattr(row, c) for c in STATE_COLUMNS}
        )

    async def save(self, state: CheckpointState) -> None:
        values = {c: getattr(state, c) for c in STATE_COLUMNS}
        values["updated_at"] = state.updated_at or utcnow()
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    stmt = dialect_insert(session, IngestionCheckpoint).values(
                        stream_name=state.stream_name, **values
                    )
                    await session.execute(
                        stmt.on_conflict_do_update(index_elements=["stream_name"], set_=values)
                    )
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Cannot write checkpoint",
                context={"stream": state.stream_name, "operation": "save", "cursor": state.cursor},
                original_exception=e
            )
        logger.debug(f"Checkpoint saved: {state.stream_name} cursor={state.cursor}")

    async def reset(self, stream_name: str) -> None:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(
                        delete(IngestionCheckpoint).where(IngestionCheckpoint.stream_name == stream_name)
                    )
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Cannot reset checkpoint",
                context={"stream": stream_name, "operation": "reset"},
                original_exception=e
            )
        logger.info(f"Checkpoint reset for {stream_name}")


class FileCheckpointStore(CheckpointStore):
    """
    Checkpoints as <directory>/<stream>_checkpoint.json.

    Writes go to a temporary file in the same directory, are fsynced and
    then renamed over the previous file, so a crash leaves either the old
    or the new state, never a partial one. File I/O runs in a worker thread
    so the event loop keeps serving in-flight fetches.
    """

    def __init__(self, session_maker: async_sessionmaker, directory: Union[str, Path]):
        super().__init__(session_maker)
        self.directory = Path(directory)

    def path_for(self, stream_name: str) -> Path:
        return self.directory / f"{stream_name}_checkpoint.json"

    @staticmethod
    def _read_file(path: Path) -> Optional[CheckpointState]:
        if not path.exists():
            return None
        return CheckpointState.model_validate_json(path.read_text(encoding="utf-8"))

    def _replace_file(self, path: Path, content: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory,
                prefix=f".{path.stem}_", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read(self, stream_name: str) -> Optional[CheckpointState]:
        path = self.path_for(stream_name)
        try:
            return await asyncio.to_thread(self._read_file, path)
        except (OSError, ValidationError) as e:
            raise CheckpointError(
                "Cannot read checkpoint file",
                context={"stream": stream_name, "operation": "load", "path": str(path)},
                original_exception=e
            )

    async def save(self, state: CheckpointState) -> None:
        path = self.path_for(state.stream_name)
        if state.updated_at is None:
            state = state.model_copy(update={"updated_at": utcnow()})
        try:
            await asyncio.to_thread(self._replace_file, path, state.model_dump_json(indent=2))
        except OSError as e:
            raise CheckpointError(
                "Cannot write checkpoint file",
                context={"stream": state.stream_name, "operation": "save", "path": str(path)},
                original_exception=e
            )
        logger.debug(f"Checkpoint saved: {state.stream_name} cursor={state.cursor} ({path})")

    async def reset(self, stream_name: str) -> None:
        path = self.path_for(stream_name)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise CheckpointError(
                "Cannot remove checkpoint file",
                context={"stream": stream_name, "operation": "reset", "path": str(path)},
                original_exception=e
            )
        logger.info(f"Checkpoint reset for {stream_name}")

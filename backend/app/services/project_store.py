"""
Project Store — saves and loads the persisted project form.

The snapshot is the ledger's JSON form (drawing references stripped) kept in
``projects.state_snapshot``. Snapshots above ``MAX_SNAPSHOT_BYTES`` are refused
with StorageQuotaExceeded; the in-memory ledger is never touched by a failed save.
"""
import json
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import MAX_SNAPSHOT_BYTES, MSG_STORAGE_FULL
from app.db import AsyncSessionLocal
from app.models.orm_models import ProjectRecord
from app.models.schemas import ProjectState, now_ms
from app.services.ledger import ProjectLedger

logger = logging.getLogger("vesselcost-store")


class StorageQuotaExceeded(Exception):
    """Snapshot too large to persist; the user should export a backup."""

    def __init__(self, size: int, limit: int):
        super().__init__(MSG_STORAGE_FULL)
        self.size = size
        self.limit = limit


class ProjectStore:

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        max_bytes: int = MAX_SNAPSHOT_BYTES,
    ):
        self.session_factory = session_factory
        self.max_bytes = max_bytes

    async def save(self, ledger: ProjectLedger) -> int:
        """Upsert the ledger's snapshot; returns the ``lastSaved`` timestamp."""
        saved_at = now_ms()
        snapshot = ledger.snapshot(last_saved=saved_at)
        size = len(json.dumps(snapshot, ensure_ascii=False).encode("utf-8"))
        if size > self.max_bytes:
            logger.warning(f"Project {ledger.id}: snapshot {size} bytes exceeds quota {self.max_bytes}")
            raise StorageQuotaExceeded(size, self.max_bytes)

        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, ledger.id)
            if record is None:
                session.add(ProjectRecord(
                    id=ledger.id, name=ledger.name,
                    state_snapshot=snapshot, last_saved=saved_at,
                ))
            else:
                record.name = ledger.name
                record.state_snapshot = snapshot
                record.last_saved = saved_at
            await session.commit()

        ledger.last_saved = saved_at
        logger.info(f"Project {ledger.id} saved ({size} bytes, {len(snapshot['equipments'])} equipment)")
        return saved_at

    async def load(self, project_id: str) -> Optional[ProjectLedger]:
        """
        Rebuild the saved ledger, or None when nothing usable is stored.

        A snapshot that no longer validates is logged and deleted.
        """
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project_id)
            if record is None or record.state_snapshot is None:
                return None
            try:
                state = ProjectState.model_validate(record.state_snapshot)
            except ValidationError as e:
                logger.error(f"Corrupted snapshot for project {project_id}, discarding: {e}")
                await self._discard(session, record)
                return None

        logger.info(f"Project {project_id} loaded ({len(state.equipments)} equipment)")
        return ProjectLedger.from_state(state)

    async def delete(self, project_id: str) -> bool:
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project_id)
            if record is None:
                return False
            await self._discard(session, record)
            return True

    async def _discard(self, session: AsyncSession, record: ProjectRecord) -> None:
        await session.delete(record)
        await session.commit()

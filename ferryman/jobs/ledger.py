"""Durable record of batch progress for crash recovery.

Each batch writes one ``mirror_jobs`` row. Every finished item is appended to
``completed_item_ids`` before progress is reported, so after a crash the
ledger always knows a subset of what actually finished, never more.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import typing as typ

from sqlalchemy import select, update

from ferryman.common.time import utcnow
from ferryman.errors import LedgerCorruptionError, RecordNotFoundError
from ferryman.logging import get_logger, log_debug
from ferryman.records import MirrorJobRecord

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession

    from ferryman.records import SessionFactory

logger = get_logger(__name__)


class JobType(enum.StrEnum):
    """Kinds of batch the ledger can resume."""

    MIRROR_REPOSITORIES = "mirror-repositories"
    SYNC_REPOSITORIES = "sync-repositories"


class JobStatus(enum.StrEnum):
    """Outcome recorded on a ledger entry."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclasses.dataclass(frozen=True, slots=True)
class JobSnapshot:
    """Read-only view of a ledger entry."""

    id: str
    job_type: str
    status: str
    config_id: str | None
    item_ids: tuple[str, ...] | None
    completed_item_ids: tuple[str, ...]
    failed_item_ids: tuple[str, ...]
    total_items: int
    completed_items: int
    in_progress: bool
    message: str | None
    started_at: dt.datetime
    last_checkpoint: dt.datetime
    completed_at: dt.datetime | None

    @classmethod
    def from_record(cls, record: MirrorJobRecord) -> JobSnapshot:
        """Build a snapshot from an ORM row."""
        return cls(
            id=record.id,
            job_type=record.job_type,
            status=record.status,
            config_id=record.config_id,
            item_ids=None if record.item_ids is None else tuple(record.item_ids),
            completed_item_ids=tuple(record.completed_item_ids or ()),
            failed_item_ids=tuple(record.failed_item_ids or ()),
            total_items=record.total_items,
            completed_items=record.completed_items,
            in_progress=record.in_progress,
            message=record.message,
            started_at=record.started_at,
            last_checkpoint=record.last_checkpoint,
            completed_at=record.completed_at,
        )

    def remaining_item_ids(self) -> list[str]:
        """Return item ids not yet completed, in their original order.

        Raises
        ------
        LedgerCorruptionError
            If the item list is missing or the completed ids are not a subset
            of it.

        """
        if not self.item_ids:
            raise LedgerCorruptionError(self.id, "entry has no item list")
        unknown = set(self.completed_item_ids) - set(self.item_ids)
        if unknown:
            raise LedgerCorruptionError(
                self.id, f"completed ids not in item list: {sorted(unknown)}"
            )
        done = set(self.completed_item_ids)
        return [item_id for item_id in self.item_ids if item_id not in done]


class JobLedger:
    """Write and query ``mirror_jobs`` entries."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the ledger to a session factory."""
        self._session_factory = session_factory
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, batch_id: str) -> asyncio.Lock:
        lock = self._locks.get(batch_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[batch_id] = lock
        return lock

    async def start(
        self,
        job_type: JobType,
        item_ids: cabc.Sequence[str],
        *,
        config_id: str | None = None,
    ) -> str:
        """Create an in-progress entry for ``item_ids`` and return its id."""
        record = MirrorJobRecord(
            job_type=job_type.value,
            status=JobStatus.RUNNING.value,
            config_id=config_id,
            item_ids=list(item_ids),
            completed_item_ids=[],
            failed_item_ids=[],
            total_items=len(item_ids),
            completed_items=0,
            in_progress=True,
        )
        async with self._session_factory() as session, session.begin():
            session.add(record)
            await session.flush()
            return record.id

    async def record_item(
        self, batch_id: str, item_id: str, *, succeeded: bool
    ) -> JobSnapshot:
        """Append ``item_id`` to the completed ids and advance the checkpoint.

        Failed items count as completed for recovery purposes and are also
        listed in ``failed_item_ids``. Recording the same id twice is a no-op.

        Raises
        ------
        LedgerCorruptionError
            If ``item_id`` is not one of the entry's items.

        """
        async with self._lock_for(batch_id):
            async with self._session_factory() as session, session.begin():
                record = await self._require(session, batch_id)
                if item_id not in (record.item_ids or ()):
                    raise LedgerCorruptionError(
                        batch_id, f"item {item_id} is not part of the batch"
                    )
                completed = list(record.completed_item_ids or ())
                if item_id not in completed:
                    # JSON columns only register reassignment, not mutation.
                    record.completed_item_ids = [*completed, item_id]
                    record.completed_items = len(completed) + 1
                    if not succeeded:
                        record.failed_item_ids = [
                            *(record.failed_item_ids or ()),
                            item_id,
                        ]
                record.last_checkpoint = utcnow()
                await session.flush()
                snapshot = JobSnapshot.from_record(record)
        log_debug(
            logger,
            "[ledger] batch_id=%s item_id=%s succeeded=%s completed=%d/%d",
            batch_id,
            item_id,
            succeeded,
            snapshot.completed_items,
            snapshot.total_items,
        )
        return snapshot

    async def finish(self, batch_id: str, message: str | None = None) -> None:
        """Close the entry as completed."""
        await self._close(batch_id, JobStatus.COMPLETED, message)

    async def mark_failed(self, batch_id: str, reason: str) -> None:
        """Close the entry as failed with ``reason``."""
        await self._close(batch_id, JobStatus.FAILED, reason)

    async def claim(self, batch_id: str, *, stale_before: dt.datetime) -> bool:
        """Take ownership of a stale entry for recovery.

        The claim is a single conditional update that moves
        ``last_checkpoint`` to now, so only one caller can claim an entry per
        staleness window.
        """
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(MirrorJobRecord)
                .where(
                    MirrorJobRecord.id == batch_id,
                    MirrorJobRecord.in_progress.is_(True),
                    MirrorJobRecord.last_checkpoint < stale_before,
                )
                .values(last_checkpoint=utcnow())
            )
            return result.rowcount == 1

    async def find_interrupted(self, stale_before: dt.datetime) -> list[JobSnapshot]:
        """Return in-progress entries whose last checkpoint is older than given."""
        async with self._session_factory() as session:
            records = await session.scalars(
                select(MirrorJobRecord)
                .where(
                    MirrorJobRecord.in_progress.is_(True),
                    MirrorJobRecord.last_checkpoint < stale_before,
                )
                .order_by(MirrorJobRecord.started_at)
            )
            return [JobSnapshot.from_record(record) for record in records]

    async def get(self, batch_id: str) -> JobSnapshot:
        """Return the snapshot for ``batch_id``."""
        async with self._session_factory() as session:
            return JobSnapshot.from_record(await self._require(session, batch_id))

    async def _close(
        self, batch_id: str, status: JobStatus, message: str | None
    ) -> None:
        async with self._lock_for(batch_id):
            async with self._session_factory() as session, session.begin():
                record = await self._require(session, batch_id)
                record.status = status.value
                record.in_progress = False
                record.completed_at = utcnow()
                if message is not None:
                    record.message = message
        self._locks.pop(batch_id, None)

    @staticmethod
    async def _require(session: AsyncSession, batch_id: str) -> MirrorJobRecord:
        record = await session.get(MirrorJobRecord, batch_id)
        if record is None:
            raise RecordNotFoundError("Job", batch_id)
        return record

"""Resume batches interrupted by a crash or restart."""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

from ferryman.common.periodic import PeriodicService
from ferryman.common.time import utcnow
from ferryman.errors import LedgerCorruptionError
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import get_logger, log_exception, log_info

from .ledger import JobType

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .ledger import JobLedger, JobSnapshot

logger = get_logger(__name__)

type ResumeHandler = cabc.Callable[[JobSnapshot, list[str]], cabc.Awaitable[None]]

DEFAULT_STALE_THRESHOLD = dt.timedelta(minutes=10)


@dataclasses.dataclass(slots=True)
class RecoveryReport:
    """What one recovery pass did."""

    resumed: list[str] = dataclasses.field(default_factory=list)
    closed: list[str] = dataclasses.field(default_factory=list)
    failed: list[str] = dataclasses.field(default_factory=list)
    skipped: list[str] = dataclasses.field(default_factory=list)


class JobRecovery:
    """Find stale in-progress ledger entries and resubmit their remaining items.

    Handlers are registered per :class:`JobType`. A handler receives the
    entry and the ids still to do, and must process them under the same
    batch id (see :meth:`ResilientBatchRunner.run`'s ``batch_id``).
    """

    def __init__(
        self,
        ledger: JobLedger,
        handlers: cabc.Mapping[JobType, ResumeHandler],
        *,
        publisher: MirrorEventPublisher | None = None,
        stale_threshold: dt.timedelta = DEFAULT_STALE_THRESHOLD,
    ) -> None:
        """Configure recovery with a ledger and resume handlers."""
        self._ledger = ledger
        self._handlers = dict(handlers)
        self._publisher = publisher or MirrorEventPublisher()
        self._stale_threshold = stale_threshold

    async def recover(self, now: dt.datetime | None = None) -> RecoveryReport:
        """Run one recovery pass over entries stale as of ``now``."""
        stale_before = (now or utcnow()) - self._stale_threshold
        report = RecoveryReport()
        for job in await self._ledger.find_interrupted(stale_before):
            if not await self._ledger.claim(job.id, stale_before=stale_before):
                log_info(
                    logger, "[recovery] batch_id=%s claimed elsewhere", job.id
                )
                report.skipped.append(job.id)
                continue
            await self._recover_one(job, report)
        return report

    async def _recover_one(self, job: JobSnapshot, report: RecoveryReport) -> None:
        try:
            remaining = job.remaining_item_ids()
            handler = self._handler_for(job)
        except LedgerCorruptionError as exc:
            await self._fail(job, str(exc), report)
            return

        if not remaining:
            await self._ledger.finish(job.id, "all items completed before restart")
            report.closed.append(job.id)
            return

        self._publisher.emit(
            MirrorEventType.JOB_RECOVERED,
            job.id,
            job_type=job.job_type,
            remaining=len(remaining),
            completed=len(job.completed_item_ids),
        )
        try:
            await handler(job, remaining)
        except Exception as exc:  # noqa: BLE001
            log_exception(logger, f"[recovery] batch_id={job.id} resume failed", exc)
            await self._fail(job, f"resume failed: {exc}", report)
            return
        report.resumed.append(job.id)

    def _handler_for(self, job: JobSnapshot) -> ResumeHandler:
        try:
            job_type = JobType(job.job_type)
        except ValueError as exc:
            raise LedgerCorruptionError(
                job.id, f"unknown job type {job.job_type!r}"
            ) from exc
        handler = self._handlers.get(job_type)
        if handler is None:
            raise LedgerCorruptionError(job.id, f"no handler for {job_type}")
        return handler

    async def _fail(
        self, job: JobSnapshot, reason: str, report: RecoveryReport
    ) -> None:
        await self._ledger.mark_failed(job.id, reason)
        self._publisher.emit(
            MirrorEventType.JOB_RECOVERY_FAILED, job.id, reason, job_type=job.job_type
        )
        report.failed.append(job.id)


class RecoveryService(PeriodicService):
    """Run :meth:`JobRecovery.recover` every ``interval_s`` seconds.

    Entries that go stale after startup are picked up by a later pass. Each
    entry is claimed before it is resumed, so overlapping passes never resume
    it twice.
    """

    name = "recovery"

    def __init__(
        self,
        recovery: JobRecovery,
        *,
        interval_s: float,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Wrap ``recovery`` in a loop that runs every ``interval_s`` seconds."""
        super().__init__(interval_s)
        self._recovery = recovery
        self._clock = clock
        self.last_report: RecoveryReport | None = None

    async def run_once(self) -> None:
        """Run one recovery pass at the clock's current time."""
        report = await self._recovery.recover(self._clock())
        self.last_report = report
        if report.resumed or report.closed or report.failed:
            log_info(
                logger,
                "[recovery] pass resumed=%d closed=%d failed=%d skipped=%d",
                len(report.resumed),
                len(report.closed),
                len(report.failed),
                len(report.skipped),
            )

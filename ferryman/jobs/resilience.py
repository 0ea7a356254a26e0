"""Batch execution backed by the job ledger."""

from __future__ import annotations

import dataclasses
import typing as typ

from ferryman.batch import BatchOptions, BatchResult, process_with_retry
from ferryman.events import MirrorEventPublisher, MirrorEventType

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.batch import ItemOutcome

    from .ledger import JobLedger, JobType


@dataclasses.dataclass(frozen=True, slots=True)
class ResilientBatchResult:
    """Outcome of a ledger-backed batch."""

    batch_id: str
    result: BatchResult


class ResilientBatchRunner:
    """Run a batch through :func:`process_with_retry` with ledger checkpoints.

    Every terminal item outcome is written to the ledger before progress is
    reported. If the ledger write fails the batch halts and the entry is left
    in progress so recovery can resume it later.
    """

    def __init__(
        self, ledger: JobLedger, publisher: MirrorEventPublisher | None = None
    ) -> None:
        """Bind the runner to a ledger and an event publisher."""
        self._ledger = ledger
        self._publisher = publisher or MirrorEventPublisher()

    @property
    def ledger(self) -> JobLedger:
        """Return the ledger entries are written to."""
        return self._ledger

    async def run[T](
        self,
        *,
        job_type: JobType,
        config_id: str | None,
        items: cabc.Sequence[T],
        operation: cabc.Callable[[T], cabc.Awaitable[typ.Any]],
        item_id: cabc.Callable[[T], str],
        options: BatchOptions | None = None,
        batch_id: str | None = None,
    ) -> ResilientBatchResult:
        """Process ``items`` and record each outcome under one ledger entry.

        Parameters
        ----------
        job_type : JobType
            Kind of batch, used by recovery to pick a resume handler.
        config_id : str | None
            Configuration the items belong to.
        items : Sequence[T]
            Work items, processed in order.
        operation : Callable[[T], Awaitable[Any]]
            Coroutine function applied to each item.
        item_id : Callable[[T], str]
            Returns the stable id recorded in the ledger for an item.
        options : BatchOptions, optional
            Concurrency and retry settings. A ``checkpoint`` hook here runs
            after the ledger write.
        batch_id : str, optional
            Existing entry to continue, used when recovery resumes a batch.

        """
        opts = options or BatchOptions()
        ids = [item_id(item) for item in items]
        if batch_id is None:
            batch_id = await self._ledger.start(job_type, ids, config_id=config_id)
        self._publisher.emit(
            MirrorEventType.JOB_STARTED,
            batch_id,
            job_type=job_type,
            config_id=config_id,
            total=len(ids),
        )

        user_checkpoint = opts.checkpoint
        user_progress = opts.on_progress

        async def checkpoint(outcome: ItemOutcome) -> None:
            await self._ledger.record_item(
                batch_id, item_id(outcome.item), succeeded=outcome.ok
            )
            if user_checkpoint is not None:
                await user_checkpoint(outcome)

        def progress(completed: int, total: int, outcome: ItemOutcome) -> None:
            self._publisher.emit(
                MirrorEventType.JOB_PROGRESS,
                batch_id,
                completed=completed,
                total=total,
                item=item_id(outcome.item),
                ok=outcome.ok,
            )
            if user_progress is not None:
                user_progress(completed, total, outcome)

        result = await process_with_retry(
            items,
            operation,
            dataclasses.replace(opts, checkpoint=checkpoint, on_progress=progress),
        )
        message = f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
        await self._ledger.finish(batch_id, message)
        self._publisher.emit(
            MirrorEventType.JOB_COMPLETED,
            batch_id,
            message,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return ResilientBatchResult(batch_id=batch_id, result=result)

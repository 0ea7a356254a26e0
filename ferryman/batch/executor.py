"""Bounded-concurrency batch execution with per-item retry.

:func:`process_with_retry` is the only place the engine limits concurrency.
Every bulk operation (repositories in a cycle, issues in a repository,
comments on an issue) runs through it with its own limit.

Each invocation starts at most ``concurrency_limit`` workers that pull items
from a shared iterator in input order, so a limit of one processes items
strictly sequentially.
"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from ferryman.logging import get_logger, log_error

from .retry import RetryPolicy, retry_async

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

type ProgressCallback = cabc.Callable[[int, int, ItemOutcome], None]
type ItemRetryCallback = cabc.Callable[[typ.Any, BaseException, int], None]
type CheckpointHook = cabc.Callable[[ItemOutcome], cabc.Awaitable[None]]


@dataclasses.dataclass(frozen=True, slots=True)
class ItemOutcome:
    """Terminal result of one item: a value or the error that exhausted it."""

    item: typ.Any
    index: int
    value: typ.Any = None
    error: Exception | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        """Return True when the item succeeded."""
        return self.error is None


@dataclasses.dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcomes of one batch, ordered like the input items."""

    outcomes: tuple[ItemOutcome, ...] = ()

    @property
    def succeeded(self) -> list[ItemOutcome]:
        """Return the successful outcomes."""
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[ItemOutcome]:
        """Return the outcomes that ended in an error."""
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def total(self) -> int:
        """Return the number of items processed."""
        return len(self.outcomes)


@dataclasses.dataclass(frozen=True, slots=True)
class BatchOptions:
    """Tuning and callbacks for :func:`process_with_retry`.

    Attributes
    ----------
    concurrency_limit
        Maximum number of items in flight at once.
    retry
        Retry limit and delay schedule applied to every item.
    on_progress
        ``(completed, total, outcome)`` after every terminal outcome.
    on_retry
        ``(item, error, retry_number)`` before each retry.
    checkpoint
        Awaited for every terminal outcome before ``on_progress`` fires.
        Used by the job ledger so persisted progress never trails what has
        been reported.
    should_retry
        Overrides the default retryability check.

    """

    concurrency_limit: int = 3
    retry: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    on_progress: ProgressCallback | None = None
    on_retry: ItemRetryCallback | None = None
    checkpoint: CheckpointHook | None = None
    should_retry: cabc.Callable[[BaseException], bool] | None = None

    def __post_init__(self) -> None:
        """Validate the concurrency limit."""
        if self.concurrency_limit < 1:
            msg = f"concurrency_limit must be >= 1, got {self.concurrency_limit}"
            raise ValueError(msg)


async def _run_item[T](
    index: int,
    item: T,
    operation: cabc.Callable[[T], cabc.Awaitable[typ.Any]],
    options: BatchOptions,
) -> ItemOutcome:
    attempts = 0

    async def attempt() -> typ.Any:
        nonlocal attempts
        attempts += 1
        return await operation(item)

    def notify(error: BaseException, retry_number: int) -> None:
        if options.on_retry is not None:
            options.on_retry(item, error, retry_number)

    try:
        value = await retry_async(
            attempt,
            options.retry,
            should_retry=options.should_retry,
            on_retry=notify,
        )
    except Exception as exc:  # noqa: BLE001 - failures are reported per item
        return ItemOutcome(item=item, index=index, error=exc, attempts=attempts)
    return ItemOutcome(item=item, index=index, value=value, attempts=attempts)


async def process_with_retry[T](
    items: cabc.Iterable[T],
    operation: cabc.Callable[[T], cabc.Awaitable[typ.Any]],
    options: BatchOptions | None = None,
) -> BatchResult:
    """Run ``operation`` over ``items`` with bounded parallelism and retries.

    One item exhausting its retries never stops its siblings. If a checkpoint
    or progress callback raises, workers finish the items they hold, take no
    new ones, and the first such error is re-raised.

    Parameters
    ----------
    items : Iterable[T]
        Work items, consumed in order.
    operation : Callable[[T], Awaitable[Any]]
        Coroutine function applied to each item.
    options : BatchOptions, optional
        Concurrency, retry and callback settings.

    Returns
    -------
    BatchResult
        One outcome per item, in input order.

    """
    opts = options or BatchOptions()
    pending = list(items)
    total = len(pending)
    if total == 0:
        return BatchResult()

    outcomes: list[ItemOutcome | None] = [None] * total
    queue = iter(enumerate(pending))
    report_lock = asyncio.Lock()
    completed = 0
    halted: list[BaseException] = []

    async def report(outcome: ItemOutcome) -> None:
        nonlocal completed
        async with report_lock:
            if opts.checkpoint is not None:
                await opts.checkpoint(outcome)
            completed += 1
            if opts.on_progress is not None:
                opts.on_progress(completed, total, outcome)

    async def worker() -> None:
        for index, item in queue:
            outcome = await _run_item(index, item, operation, opts)
            outcomes[index] = outcome
            try:
                await report(outcome)
            except Exception as exc:
                log_error(
                    logger,
                    "Batch halted after item %d of %d: %s",
                    index + 1,
                    total,
                    exc,
                    exc_info=exc,
                )
                halted.append(exc)
            if halted:
                return

    worker_count = min(opts.concurrency_limit, total)
    await asyncio.gather(*(worker() for _ in range(worker_count)))

    if halted:
        raise halted[0]
    return BatchResult(
        tuple(typ.cast("ItemOutcome", outcome) for outcome in outcomes)
    )

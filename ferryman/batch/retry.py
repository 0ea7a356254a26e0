"""Retry policy and the retry loop shared by every remote operation."""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from ferryman.errors import is_retryable

if typ.TYPE_CHECKING:
    import collections.abc as cabc

type RetryPredicate = cabc.Callable[[BaseException], bool]
type RetryCallback = cabc.Callable[[BaseException, int], None]


@dataclasses.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to retry a failed call and how long to wait between.

    Attributes
    ----------
    max_retries
        Retries after the first attempt; ``0`` disables retrying.
    delay
        Seconds to wait before the first retry.
    backoff_factor
        Multiplier applied to the delay for each later retry. ``1.0`` gives a
        constant delay, anything larger an exponential one.
    max_delay
        Upper bound for any single wait.

    """

    max_retries: int = 2
    delay: float = 1.0
    backoff_factor: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        """Reject policies that could never terminate or wait negatively."""
        if self.max_retries < 0:
            msg = f"max_retries must be >= 0, got {self.max_retries}"
            raise ValueError(msg)
        if self.delay < 0 or self.max_delay < 0:
            msg = "retry delays must not be negative"
            raise ValueError(msg)
        if self.backoff_factor < 1:
            msg = f"backoff_factor must be >= 1, got {self.backoff_factor}"
            raise ValueError(msg)

    def delay_for(self, retry_number: int) -> float:
        """Return the wait before retry ``retry_number`` (1-based)."""
        raw = self.delay * self.backoff_factor ** max(retry_number - 1, 0)
        return min(raw, self.max_delay)


NO_RETRY = RetryPolicy(max_retries=0, delay=0.0)


async def retry_async[T](
    operation: cabc.Callable[[], cabc.Awaitable[T]],
    policy: RetryPolicy,
    *,
    should_retry: RetryPredicate | None = None,
    on_retry: RetryCallback | None = None,
) -> T:
    """Await ``operation`` until it succeeds or ``policy`` is exhausted.

    Parameters
    ----------
    operation : Callable[[], Awaitable[T]]
        Zero-argument coroutine factory; called once per attempt.
    policy : RetryPolicy
        Retry limit and delay schedule.
    should_retry : RetryPredicate, optional
        Predicate deciding whether an error is worth another attempt.
        Defaults to :func:`ferryman.errors.is_retryable`.
    on_retry : RetryCallback, optional
        Called with the error and the 1-based retry number before waiting.

    Returns
    -------
    T
        The first successful result.

    Raises
    ------
    Exception
        The last error, once retries are exhausted or the error is not
        retryable.

    """
    check = should_retry or is_retryable
    retries = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if retries >= policy.max_retries or not check(exc):
                raise
            retries += 1
            if on_retry is not None:
                on_retry(exc, retries)
            await asyncio.sleep(policy.delay_for(retries))

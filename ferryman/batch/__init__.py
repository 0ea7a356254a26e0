"""Concurrency-controlled batch execution.

Usage
-----
Mirror issues three at a time, retrying transient failures twice::

    from ferryman.batch import BatchOptions, RetryPolicy, process_with_retry

    result = await process_with_retry(
        issues,
        mirror_issue,
        BatchOptions(concurrency_limit=3, retry=RetryPolicy(max_retries=2)),
    )
    for outcome in result.failed:
        print(outcome.item, outcome.error)

"""

from ferryman.batch.executor import (
    BatchOptions,
    BatchResult,
    ItemOutcome,
    process_with_retry,
)
from ferryman.batch.retry import NO_RETRY, RetryPolicy, retry_async

__all__ = [
    "NO_RETRY",
    "BatchOptions",
    "BatchResult",
    "ItemOutcome",
    "RetryPolicy",
    "process_with_retry",
    "retry_async",
]

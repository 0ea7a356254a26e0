"""Job ledger, ledger-backed batches and crash recovery.

Usage
-----
Run a batch that survives restarts, then resume leftovers on startup and
periodically after that::

    ledger = JobLedger(session_factory)
    runner = ResilientBatchRunner(ledger, publisher)
    await runner.run(
        job_type=JobType.MIRROR_REPOSITORIES,
        config_id=config.id,
        items=repositories,
        operation=transfer,
        item_id=lambda repo: repo.id,
    )

    recovery = JobRecovery(ledger, {JobType.MIRROR_REPOSITORIES: resume})
    await recovery.recover()
    RecoveryService(recovery, interval_s=300).start()

"""

from __future__ import annotations

from .ledger import JobLedger, JobSnapshot, JobStatus, JobType
from .recovery import (
    DEFAULT_STALE_THRESHOLD,
    JobRecovery,
    RecoveryReport,
    RecoveryService,
    ResumeHandler,
)
from .resilience import ResilientBatchResult, ResilientBatchRunner

__all__ = [
    "DEFAULT_STALE_THRESHOLD",
    "JobLedger",
    "JobRecovery",
    "JobSnapshot",
    "JobStatus",
    "JobType",
    "RecoveryReport",
    "RecoveryService",
    "ResilientBatchResult",
    "ResilientBatchRunner",
    "ResumeHandler",
]

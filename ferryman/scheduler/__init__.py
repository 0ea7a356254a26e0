"""Scheduler cycles and the dispatcher that runs mirror batches.

Usage
-----
Drive one tick by hand, as the engine's background loop does::

    dispatcher = MirrorDispatcher(
        configs=configs,
        repositories=repositories,
        organizations=organizations,
        runner=ResilientBatchRunner(ledger, publisher),
        client_factory=default_client_factory,
    )
    scheduler = MirrorScheduler(
        configs, repositories, discovery, dispatcher, default_client_factory
    )
    await scheduler.tick()

"""

from __future__ import annotations

from .dispatch import MirrorDispatcher
from .service import (
    DEFAULT_CYCLE_INTERVAL,
    DEFAULT_RECOVERY_THRESHOLD,
    CycleReport,
    DueRepositories,
    MirrorScheduler,
    cycle_interval,
    select_due,
)

__all__ = [
    "DEFAULT_CYCLE_INTERVAL",
    "DEFAULT_RECOVERY_THRESHOLD",
    "CycleReport",
    "DueRepositories",
    "MirrorDispatcher",
    "MirrorScheduler",
    "cycle_interval",
    "select_due",
]

"""Orphan cleanup for mirrors whose source repository has gone.

Usage
-----
Preview what would be archived for one configuration::

    service = OrphanCleanupService(config_store, repository_store, factory)
    result = await service.run_for_config(config)
    if not result.aborted:
        print(result.orphans)

"""

from __future__ import annotations

from .service import (
    ARCHIVED_MESSAGE,
    CleanupResult,
    OrphanCleanupService,
    cleanup_interval,
)

__all__ = [
    "ARCHIVED_MESSAGE",
    "CleanupResult",
    "OrphanCleanupService",
    "cleanup_interval",
]

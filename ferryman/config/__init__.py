"""Mirror configuration snapshots and engine settings."""

from __future__ import annotations

from .models import (
    CleanupSettings,
    ConcurrencySettings,
    FlatUser,
    MetadataSettings,
    MirrorConfig,
    MirrorStrategy,
    Mixed,
    OrganizationRetrySettings,
    OrphanAction,
    Preserve,
    RepositoryFilters,
    ScheduleSettings,
    SingleOrg,
    SourceSettings,
    TargetSettings,
)
from .settings import EngineSettings

__all__ = [
    "CleanupSettings",
    "ConcurrencySettings",
    "EngineSettings",
    "FlatUser",
    "MetadataSettings",
    "MirrorConfig",
    "MirrorStrategy",
    "Mixed",
    "OrganizationRetrySettings",
    "OrphanAction",
    "Preserve",
    "RepositoryFilters",
    "ScheduleSettings",
    "SingleOrg",
    "SourceSettings",
    "TargetSettings",
]

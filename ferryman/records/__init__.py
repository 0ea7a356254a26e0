"""Persisted configuration, repository, organization and job records.

Usage
-----
Create the schema and move a repository through its lifecycle::

    from ferryman.records import MirrorStatus, RepositoryStore, init_storage

    await init_storage(engine)
    store = RepositoryStore(session_factory)
    await store.transition(repo_id, MirrorStatus.TRANSFERRING)
    await store.transition(
        repo_id, MirrorStatus.TRANSFERRED, mirrored_location="mirrors/alpha"
    )

"""

from __future__ import annotations

from .models import (
    ConfigSnapshot,
    OrganizationInfo,
    RepositoryDraft,
    RepositoryInfo,
    RunWindow,
)
from .status import (
    ORGANIZATION_TRANSITIONS,
    REPOSITORY_TRANSITIONS,
    MirrorStatus,
    can_transition,
    check_transition,
)
from .storage import (
    Base,
    ConfigurationRecord,
    MirrorJobRecord,
    OrganizationRecord,
    RepositoryRecord,
    UTCDateTime,
    init_storage,
)
from .store import ConfigStore, OrganizationStore, RepositoryStore, SessionFactory

__all__ = [
    "ORGANIZATION_TRANSITIONS",
    "REPOSITORY_TRANSITIONS",
    "Base",
    "ConfigSnapshot",
    "ConfigStore",
    "ConfigurationRecord",
    "MirrorJobRecord",
    "MirrorStatus",
    "OrganizationInfo",
    "OrganizationRecord",
    "OrganizationStore",
    "RepositoryDraft",
    "RepositoryInfo",
    "RepositoryRecord",
    "RepositoryStore",
    "RunWindow",
    "SessionFactory",
    "UTCDateTime",
    "can_transition",
    "check_transition",
    "init_storage",
]

"""Immutable views of persisted records handed to engine components."""

from __future__ import annotations

import dataclasses
import typing as typ

from .status import MirrorStatus

if typ.TYPE_CHECKING:
    import datetime as dt

    from ferryman.config import MirrorConfig

    from .storage import OrganizationRecord, RepositoryRecord


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Snapshot of a repository row.

    Components never hold ORM instances; they receive this snapshot and write
    changes back through :class:`ferryman.records.RepositoryStore`.
    """

    id: str
    config_id: str
    name: str
    full_name: str
    owner: str
    clone_url: str
    status: MirrorStatus = MirrorStatus.DISCOVERED
    organization: str | None = None
    url: str = ""
    description: str | None = None
    default_branch: str = "main"
    is_private: bool = False
    is_fork: bool = False
    is_starred: bool = False
    is_archived: bool = False
    has_lfs: bool = False
    mirrored_location: str = ""
    destination_override: str | None = None
    error_message: str | None = None
    metadata_state: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    last_mirrored_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @classmethod
    def from_record(cls, record: RepositoryRecord) -> RepositoryInfo:
        """Build a snapshot from an ORM row."""
        return cls(
            id=record.id,
            config_id=record.config_id,
            name=record.name,
            full_name=record.full_name,
            owner=record.owner,
            clone_url=record.clone_url,
            status=MirrorStatus(record.status),
            organization=record.organization,
            url=record.url,
            description=record.description,
            default_branch=record.default_branch,
            is_private=record.is_private,
            is_fork=record.is_fork,
            is_starred=record.is_starred,
            is_archived=record.is_archived,
            has_lfs=record.has_lfs,
            mirrored_location=record.mirrored_location,
            destination_override=record.destination_override,
            error_message=record.error_message,
            metadata_state=dict(record.metadata_state or {}),
            last_mirrored_at=record.last_mirrored_at,
            updated_at=record.updated_at,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryDraft:
    """A newly discovered source repository that is not persisted yet."""

    name: str
    full_name: str
    owner: str
    clone_url: str
    organization: str | None = None
    url: str = ""
    description: str | None = None
    default_branch: str = "main"
    is_private: bool = False
    is_fork: bool = False
    is_starred: bool = False
    is_archived: bool = False
    has_lfs: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class OrganizationInfo:
    """Snapshot of an organization row."""

    id: str
    config_id: str
    name: str
    status: MirrorStatus = MirrorStatus.DISCOVERED
    destination_override: str | None = None
    repository_count: int = 0
    error_message: str | None = None
    last_mirrored_at: dt.datetime | None = None

    @classmethod
    def from_record(cls, record: OrganizationRecord) -> OrganizationInfo:
        """Build a snapshot from an ORM row."""
        return cls(
            id=record.id,
            config_id=record.config_id,
            name=record.name,
            status=MirrorStatus(record.status),
            destination_override=record.destination_override,
            repository_count=record.repository_count,
            error_message=record.error_message,
            last_mirrored_at=record.last_mirrored_at,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class RunWindow:
    """When a periodic activity last ran and when it is next due."""

    last_run: dt.datetime | None = None
    next_run: dt.datetime | None = None

    def is_due(self, now: dt.datetime) -> bool:
        """Return True when no run is scheduled or the scheduled time passed."""
        return self.next_run is None or now >= self.next_run


@dataclasses.dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    """A decoded configuration plus its schedule and cleanup bookkeeping."""

    config: MirrorConfig
    schedule: RunWindow
    cleanup: RunWindow

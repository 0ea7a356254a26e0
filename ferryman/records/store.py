"""Async stores for configurations, repositories and organizations.

Every mutation is a single-row update keyed by id in its own transaction, so
independent state machines never need cross-row locking.
"""

from __future__ import annotations

import typing as typ

import msgspec
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ferryman.common.time import utcnow
from ferryman.config import MirrorConfig
from ferryman.errors import RecordNotFoundError

from .models import (
    ConfigSnapshot,
    OrganizationInfo,
    RepositoryDraft,
    RepositoryInfo,
    RunWindow,
)
from .status import (
    LOCATED_STATUSES,
    ORGANIZATION_TRANSITIONS,
    MirrorStatus,
    check_transition,
)
from .storage import (
    ConfigurationRecord,
    OrganizationRecord,
    RepositoryRecord,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

type SessionFactory = async_sessionmaker[AsyncSession]

# Sentinel distinguishing "leave unchanged" from an explicit None.
_UNSET: typ.Final = object()


def _decode_config(record: ConfigurationRecord) -> MirrorConfig:
    payload = dict(record.settings or {})
    payload["id"] = record.id
    payload.setdefault("name", record.name)
    return msgspec.convert(payload, type=MirrorConfig)


def _snapshot(record: ConfigurationRecord) -> ConfigSnapshot:
    return ConfigSnapshot(
        config=_decode_config(record),
        schedule=RunWindow(record.schedule_last_run, record.schedule_next_run),
        cleanup=RunWindow(record.cleanup_last_run, record.cleanup_next_run),
    )


class ConfigStore:
    """Read configuration snapshots and record scheduler bookkeeping."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the store to a session factory."""
        self._session_factory = session_factory

    async def save(self, config: MirrorConfig, *, is_active: bool = True) -> str:
        """Insert or replace the configuration row for ``config.id``."""
        settings = msgspec.to_builtins(config)
        settings.pop("id", None)
        async with self._session_factory() as session, session.begin():
            record = await session.get(ConfigurationRecord, config.id)
            if record is None:
                record = ConfigurationRecord(id=config.id)
                session.add(record)
            record.name = config.name
            record.settings = settings
            record.is_active = is_active
        return config.id

    async def get(self, config_id: str) -> ConfigSnapshot:
        """Return the snapshot for ``config_id``.

        Raises
        ------
        RecordNotFoundError
            If no configuration has that id.

        """
        async with self._session_factory() as session:
            record = await session.get(ConfigurationRecord, config_id)
            if record is None:
                raise RecordNotFoundError("Configuration", config_id)
            return _snapshot(record)

    async def list_active(self) -> list[ConfigSnapshot]:
        """Return snapshots of every active configuration."""
        async with self._session_factory() as session:
            records = await session.scalars(
                select(ConfigurationRecord)
                .where(ConfigurationRecord.is_active.is_(True))
                .order_by(ConfigurationRecord.created_at)
            )
            return [_snapshot(record) for record in records]

    async def record_schedule_run(
        self, config_id: str, *, last_run: dt.datetime, next_run: dt.datetime
    ) -> None:
        """Persist the scheduler's last and next run for a configuration."""
        async with self._session_factory() as session, session.begin():
            record = await self._require(session, config_id)
            record.schedule_last_run = last_run
            record.schedule_next_run = next_run

    async def record_cleanup_run(
        self, config_id: str, *, last_run: dt.datetime, next_run: dt.datetime
    ) -> None:
        """Persist the cleanup service's last and next run."""
        async with self._session_factory() as session, session.begin():
            record = await self._require(session, config_id)
            record.cleanup_last_run = last_run
            record.cleanup_next_run = next_run

    @staticmethod
    async def _require(session: AsyncSession, config_id: str) -> ConfigurationRecord:
        record = await session.get(ConfigurationRecord, config_id)
        if record is None:
            raise RecordNotFoundError("Configuration", config_id)
        return record


class RepositoryStore:
    """Read repository snapshots and apply validated status transitions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the store to a session factory."""
        self._session_factory = session_factory

    async def get(self, repository_id: str) -> RepositoryInfo:
        """Return the snapshot for ``repository_id``."""
        async with self._session_factory() as session:
            record = await session.get(RepositoryRecord, repository_id)
            if record is None:
                raise RecordNotFoundError("Repository", repository_id)
            return RepositoryInfo.from_record(record)

    async def get_many(
        self, repository_ids: cabc.Sequence[str]
    ) -> list[RepositoryInfo]:
        """Return snapshots for the ids that exist, in the order requested."""
        if not repository_ids:
            return []
        async with self._session_factory() as session:
            records = await session.scalars(
                select(RepositoryRecord).where(
                    RepositoryRecord.id.in_(list(repository_ids))
                )
            )
            by_id = {
                record.id: RepositoryInfo.from_record(record) for record in records
            }
        return [by_id[repo_id] for repo_id in repository_ids if repo_id in by_id]

    async def list_for_config(
        self,
        config_id: str,
        *,
        statuses: cabc.Collection[MirrorStatus] | None = None,
        organization: str | None = None,
    ) -> list[RepositoryInfo]:
        """Return repositories of a configuration, optionally filtered."""
        query = select(RepositoryRecord).where(RepositoryRecord.config_id == config_id)
        if statuses is not None:
            query = query.where(
                RepositoryRecord.status.in_([status.value for status in statuses])
            )
        if organization is not None:
            query = query.where(RepositoryRecord.organization == organization)
        async with self._session_factory() as session:
            records = await session.scalars(query.order_by(RepositoryRecord.full_name))
            return [RepositoryInfo.from_record(record) for record in records]

    async def add_discovered(
        self, config_id: str, drafts: cabc.Iterable[RepositoryDraft]
    ) -> list[RepositoryInfo]:
        """Insert drafts whose ``full_name`` is new for the configuration.

        Existing rows are left untouched, except that a repository seen again
        as starred gains the starred flag.

        Returns
        -------
        list[RepositoryInfo]
            Snapshots of the rows actually inserted.

        """
        added: list[RepositoryRecord] = []
        async with self._session_factory() as session, session.begin():
            existing = {
                record.full_name.casefold(): record
                for record in await session.scalars(
                    select(RepositoryRecord).where(
                        RepositoryRecord.config_id == config_id
                    )
                )
            }
            for draft in drafts:
                key = draft.full_name.casefold()
                current = existing.get(key)
                if current is not None:
                    if draft.is_starred and not current.is_starred:
                        current.is_starred = True
                    continue
                record = RepositoryRecord(
                    config_id=config_id,
                    name=draft.name,
                    full_name=draft.full_name,
                    owner=draft.owner,
                    organization=draft.organization,
                    clone_url=draft.clone_url,
                    url=draft.url,
                    description=draft.description,
                    default_branch=draft.default_branch,
                    is_private=draft.is_private,
                    is_fork=draft.is_fork,
                    is_starred=draft.is_starred,
                    is_archived=draft.is_archived,
                    has_lfs=draft.has_lfs,
                    status=MirrorStatus.DISCOVERED.value,
                )
                session.add(record)
                existing[key] = record
                added.append(record)
            await session.flush()
            return [RepositoryInfo.from_record(record) for record in added]

    async def transition(
        self,
        repository_id: str,
        status: MirrorStatus,
        *,
        mirrored_location: str | None = None,
        error_message: str | None | object = _UNSET,
    ) -> RepositoryInfo:
        """Move a repository to ``status`` after validating the transition.

        Parameters
        ----------
        repository_id : str
            Row to update.
        status : MirrorStatus
            Requested status.
        mirrored_location : str, optional
            New ``owner/name`` on the target. Only accepted together with a
            transition into ``transferred`` or ``synced``.
        error_message : str | None, optional
            Message to store. Defaults to clearing the message on successful
            statuses and leaving it alone otherwise.

        Raises
        ------
        InvalidTransitionError
            If the current status may not move to ``status``.
        ValueError
            If a location is supplied for a status that does not carry one.

        """
        if mirrored_location is not None and status not in LOCATED_STATUSES:
            msg = f"mirrored_location cannot change on a move to {status.value!r}"
            raise ValueError(msg)

        async with self._session_factory() as session, session.begin():
            record = await session.get(RepositoryRecord, repository_id)
            if record is None:
                raise RecordNotFoundError("Repository", repository_id)
            check_transition(
                record.full_name, MirrorStatus(record.status), status
            )
            record.status = status.value
            if mirrored_location is not None:
                record.mirrored_location = mirrored_location
            if status in LOCATED_STATUSES:
                record.last_mirrored_at = utcnow()
            if error_message is not _UNSET:
                record.error_message = typ.cast("str | None", error_message)
            elif status in LOCATED_STATUSES:
                record.error_message = None
            await session.flush()
            return RepositoryInfo.from_record(record)

    async def save_metadata_state(
        self, repository_id: str, state: dict[str, typ.Any]
    ) -> None:
        """Replace the metadata replication state of a repository."""
        async with self._session_factory() as session, session.begin():
            record = await session.get(RepositoryRecord, repository_id)
            if record is None:
                raise RecordNotFoundError("Repository", repository_id)
            record.metadata_state = dict(state)

    async def delete(self, repository_id: str) -> None:
        """Remove a repository row."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(RepositoryRecord).where(RepositoryRecord.id == repository_id)
            )


class OrganizationStore:
    """Read organization snapshots and apply validated status transitions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the store to a session factory."""
        self._session_factory = session_factory

    async def get(self, organization_id: str) -> OrganizationInfo:
        """Return the snapshot for ``organization_id``."""
        async with self._session_factory() as session:
            record = await session.get(OrganizationRecord, organization_id)
            if record is None:
                raise RecordNotFoundError("Organization", organization_id)
            return OrganizationInfo.from_record(record)

    async def list_for_config(self, config_id: str) -> list[OrganizationInfo]:
        """Return every organization of a configuration."""
        async with self._session_factory() as session:
            records = await session.scalars(
                select(OrganizationRecord)
                .where(OrganizationRecord.config_id == config_id)
                .order_by(OrganizationRecord.name)
            )
            return [OrganizationInfo.from_record(record) for record in records]

    async def destination_overrides(self, config_id: str) -> dict[str, str]:
        """Map organization name to its destination override, where one is set."""
        return {
            organization.name: organization.destination_override
            for organization in await self.list_for_config(config_id)
            if organization.destination_override
        }

    async def add_discovered(
        self, config_id: str, names: cabc.Iterable[str]
    ) -> list[OrganizationInfo]:
        """Insert organizations not yet known for the configuration."""
        added: list[OrganizationRecord] = []
        async with self._session_factory() as session, session.begin():
            known = {
                name.casefold()
                for name in await session.scalars(
                    select(OrganizationRecord.name).where(
                        OrganizationRecord.config_id == config_id
                    )
                )
            }
            for name in names:
                if name.casefold() in known:
                    continue
                record = OrganizationRecord(config_id=config_id, name=name)
                session.add(record)
                known.add(name.casefold())
                added.append(record)
            await session.flush()
            return [OrganizationInfo.from_record(record) for record in added]

    async def transition(
        self,
        organization_id: str,
        status: MirrorStatus,
        *,
        error_message: str | None | object = _UNSET,
        repository_count: int | None = None,
    ) -> OrganizationInfo:
        """Move an organization to ``status`` after validating the transition."""
        async with self._session_factory() as session, session.begin():
            record = await session.get(OrganizationRecord, organization_id)
            if record is None:
                raise RecordNotFoundError("Organization", organization_id)
            check_transition(
                record.name,
                MirrorStatus(record.status),
                status,
                ORGANIZATION_TRANSITIONS,
            )
            record.status = status.value
            if repository_count is not None:
                record.repository_count = repository_count
            if status is MirrorStatus.TRANSFERRED:
                record.last_mirrored_at = utcnow()
            if error_message is not _UNSET:
                record.error_message = typ.cast("str | None", error_message)
            elif status is MirrorStatus.TRANSFERRED:
                record.error_message = None
            await session.flush()
            return OrganizationInfo.from_record(record)

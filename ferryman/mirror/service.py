"""Per-repository mirror state machine.

``RepositoryMirror`` drives one repository through::

    discovered -> transferring -> transferred -> syncing -> synced

persisting each status before the remote call it guards, so a crash always
leaves the row describing the step that was in flight. Remote calls retry
transient failures on the tenant's retry policy. Anything that still fails
moves the repository to ``failed`` with the error recorded, and the caller
receives a :class:`~ferryman.errors.MirrorOperationError`; the scheduler
picks failed repositories up again on its next cycle.
"""

from __future__ import annotations

import functools
import typing as typ
import urllib.parse

from ferryman.batch import retry_async
from ferryman.common.durations import format_duration, parse_duration
from ferryman.common.slug import join_location, same_location, split_location
from ferryman.errors import (
    ConflictError,
    FerrymanError,
    InvalidTransitionError,
    MirrorOperationError,
    NotFoundError,
)
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import get_logger, log_exception, log_warning
from ferryman.records import MirrorStatus, can_transition
from ferryman.remote import MigrationRequest
from ferryman.routing import resolve_destination

from .metadata import MetadataReplicator, MetadataReport
from .owners import OwnerProvisioner

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.config import MirrorConfig
    from ferryman.records import RepositoryInfo, RepositoryStore
    from ferryman.remote import RemoteClients, TargetRepository

    from .metadata import MetadataComponent

logger = get_logger(__name__)

_DEFAULT_MIRROR_INTERVAL = "8h"


def mirror_interval(config: MirrorConfig) -> str:
    """Return the target's pull-mirror interval in normalised shorthand."""
    try:
        return format_duration(parse_duration(config.target.mirror_interval))
    except ValueError:
        log_warning(
            logger,
            "[mirror] invalid mirror_interval=%r config_id=%s; using %s",
            config.target.mirror_interval,
            config.id,
            _DEFAULT_MIRROR_INTERVAL,
        )
        return _DEFAULT_MIRROR_INTERVAL


def clone_address(repository: RepositoryInfo, config: MirrorConfig) -> str:
    """Return the URL the target clones from.

    Private repositories embed the source token so the target can
    authenticate when it pulls.
    """
    token = config.source.token.strip()
    if not repository.is_private or not token:
        return repository.clone_url
    parts = urllib.parse.urlsplit(repository.clone_url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urllib.parse.urlunsplit(parts._replace(netloc=f"{token}@{host}"))


class RepositoryMirror:
    """Transfer and sync repositories into the target host."""

    def __init__(
        self,
        store: RepositoryStore,
        clients: RemoteClients,
        *,
        publisher: MirrorEventPublisher | None = None,
        owners: OwnerProvisioner | None = None,
        metadata: MetadataReplicator | None = None,
    ) -> None:
        """Bind the state machine to a store and the tenant's remote clients."""
        self._store = store
        self._target = clients.target
        self._publisher = publisher or MirrorEventPublisher()
        self._owners = owners or OwnerProvisioner(
            clients.target, publisher=self._publisher
        )
        self._metadata = metadata or MetadataReplicator(
            clients.source, clients.target, store, publisher=self._publisher
        )

    @property
    def owners(self) -> OwnerProvisioner:
        """Return the provisioner shared with organization mirroring."""
        return self._owners

    async def transfer(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        *,
        organization_override: str | None = None,
    ) -> RepositoryInfo:
        """Create the mirror of ``repository`` on the target.

        Parameters
        ----------
        repository : RepositoryInfo
            Snapshot of the repository to mirror.
        config : MirrorConfig
            Tenant configuration.
        organization_override : str, optional
            Destination override of the repository's source organization.

        Returns
        -------
        RepositoryInfo
            The repository in ``transferred`` status.

        Raises
        ------
        InvalidTransitionError
            If the repository's status does not allow a transfer.
        MirrorOperationError
            If the transfer failed; the repository is now ``failed``.

        """
        if not can_transition(repository.status, MirrorStatus.TRANSFERRING):
            raise InvalidTransitionError(
                repository.full_name, repository.status, MirrorStatus.TRANSFERRING
            )
        try:
            transferred = await self._transfer(
                repository, config, organization_override
            )
        except Exception as exc:
            await self._fail(repository, exc)
            raise MirrorOperationError(repository.full_name, exc) from exc

        if config.metadata.any_enabled and transferred.is_new:
            await self._replicate_quietly(transferred.info, config)
        return transferred.info

    async def sync(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        *,
        organization_override: str | None = None,
    ) -> RepositoryInfo:
        """Ask the target to pull the latest changes into an existing mirror.

        The mirror is looked for at its recorded location first, then at
        the location the resolver gives now.
        Metadata components left unfinished by an earlier replication are
        run again once the sync succeeds.

        Raises
        ------
        InvalidTransitionError
            If the repository's status does not allow a sync.
        MirrorOperationError
            If the sync failed; the repository is now ``failed``.

        """
        if not can_transition(repository.status, MirrorStatus.SYNCING):
            raise InvalidTransitionError(
                repository.full_name, repository.status, MirrorStatus.SYNCING
            )
        try:
            info = await self._sync(repository, config, organization_override)
        except Exception as exc:
            await self._fail(repository, exc)
            raise MirrorOperationError(repository.full_name, exc) from exc

        if config.metadata.any_enabled and "last_synced_at" in info.metadata_state:
            unfinished = self._metadata.unfinished_components(info, config)
            if unfinished:
                await self._replicate_quietly(info, config, components=unfinished)
        return info

    async def replicate_metadata(
        self, repository: RepositoryInfo, config: MirrorConfig
    ) -> MetadataReport:
        """Replicate enabled metadata components into the existing mirror."""
        return await self._metadata.replicate(repository, config)

    async def _transfer(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        organization_override: str | None,
    ) -> _Transferred:
        owner = resolve_destination(
            repository, config, organization_override=organization_override
        )
        existing = await self._lookup(repository, config, owner)
        if existing is not None:
            return await self._adopt(repository, existing, owner, note=None)

        resolution = await self._owners.ensure(owner, config)
        if resolution.fell_back:
            owner = resolution.owner
            existing = await self._lookup(repository, config, owner)
            if existing is not None:
                return await self._adopt(
                    repository, existing, owner, note=resolution.note
                )

        await self._move(repository, MirrorStatus.TRANSFERRING)
        request = MigrationRequest(
            clone_addr=clone_address(repository, config),
            repo_name=repository.name,
            repo_owner=owner,
            mirror=True,
            mirror_interval=mirror_interval(config),
            private=repository.is_private or config.target.private_by_default,
            description=repository.description or "",
            wiki=config.target.wiki,
            lfs=config.target.lfs or repository.has_lfs,
        )
        try:
            await self._call(
                repository, config, lambda: self._target.migrate_repository(request)
            )
        except ConflictError:
            # A concurrent writer may have created it between lookup and migrate.
            existing = await self._lookup(repository, config, owner)
            if existing is None:
                raise
            return await self._adopt(
                repository, existing, owner, note=resolution.note
            )

        location = join_location(owner, repository.name)
        info = await self._move(
            repository,
            MirrorStatus.TRANSFERRED,
            mirrored_location=location,
            error_message=resolution.note,
        )
        self._publisher.emit(
            MirrorEventType.ITEM_MIRRORED,
            repository.full_name,
            location=location,
            fallback=resolution.fell_back,
        )
        return _Transferred(info, is_new=True)

    async def _adopt(
        self,
        repository: RepositoryInfo,
        existing: TargetRepository,
        owner: str,
        *,
        note: str | None,
    ) -> _Transferred:
        location = join_location(owner, repository.name)
        if not existing.mirror:
            raise ConflictError.not_a_mirror(location)
        info = await self._move(
            repository,
            MirrorStatus.TRANSFERRED,
            mirrored_location=location,
            error_message=note,
        )
        self._publisher.emit(
            MirrorEventType.ITEM_MIRRORED,
            repository.full_name,
            "mirror already present on target",
            location=location,
            adopted=True,
        )
        return _Transferred(info, is_new=False)

    async def _sync(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        organization_override: str | None,
    ) -> RepositoryInfo:
        await self._move(repository, MirrorStatus.SYNCING)
        candidates: list[str] = []
        if repository.mirrored_location:
            candidates.append(repository.mirrored_location)
        resolved = join_location(
            resolve_destination(
                repository, config, organization_override=organization_override
            ),
            repository.name,
        )
        if not any(same_location(resolved, known) for known in candidates):
            candidates.append(resolved)

        for location in candidates:
            owner, name = split_location(location)
            found = await self._call(
                repository,
                config,
                functools.partial(self._target.get_repository, owner, name),
            )
            if found is None:
                continue
            if not found.mirror:
                raise ConflictError.not_a_mirror(location)
            await self._call(
                repository,
                config,
                functools.partial(self._target.mirror_sync, owner, name),
            )
            info = await self._move(
                repository, MirrorStatus.SYNCED, mirrored_location=location
            )
            self._publisher.emit(
                MirrorEventType.ITEM_SYNCED, repository.full_name, location=location
            )
            return info
        raise NotFoundError.repository_missing(
            repository.full_name, tuple(candidates)
        )

    async def _lookup(
        self, repository: RepositoryInfo, config: MirrorConfig, owner: str
    ) -> TargetRepository | None:
        return await self._call(
            repository,
            config,
            lambda: self._target.get_repository(owner, repository.name),
        )

    async def _call[T](
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        operation: cabc.Callable[[], cabc.Awaitable[T]],
    ) -> T:
        def announce(exc: BaseException, retry_number: int) -> None:
            self._publisher.emit(
                MirrorEventType.ITEM_RETRY,
                repository.full_name,
                str(exc),
                retry=retry_number,
            )

        return await retry_async(
            operation, config.concurrency.retry_policy(), on_retry=announce
        )

    async def _move(
        self,
        repository: RepositoryInfo,
        status: MirrorStatus,
        **changes: typ.Any,  # noqa: ANN401
    ) -> RepositoryInfo:
        info = await self._store.transition(repository.id, status, **changes)
        self._publisher.emit(
            MirrorEventType.ITEM_TRANSITIONED,
            repository.full_name,
            status=status,
        )
        return info

    async def _fail(self, repository: RepositoryInfo, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        try:
            await self._store.transition(
                repository.id, MirrorStatus.FAILED, error_message=message
            )
        except FerrymanError as record_exc:
            log_exception(
                logger,
                f"[mirror] could not mark {repository.full_name} failed",
                record_exc,
            )
        self._publisher.emit(
            MirrorEventType.ITEM_FAILED,
            repository.full_name,
            message,
            error_type=type(exc).__name__,
        )

    async def _replicate_quietly(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        *,
        components: cabc.Collection[MetadataComponent] | None = None,
    ) -> None:
        try:
            await self._metadata.replicate(repository, config, components=components)
        except FerrymanError as exc:
            log_exception(
                logger,
                f"[mirror] metadata skipped for {repository.full_name}: {exc}",
                exc,
            )


class _Transferred(typ.NamedTuple):
    info: RepositoryInfo
    is_new: bool

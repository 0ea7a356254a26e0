"""Find and retire mirrors whose source repository no longer exists.

Deletion is irreversible, so the live source set must be complete before
anything is compared against it. Any error while listing the source aborts
the run for that configuration with zero orphans; a listing that succeeds
but is empty while mirrors exist is treated the same way.
"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from ferryman.common.durations import parse_duration
from ferryman.common.periodic import PeriodicService
from ferryman.common.slug import split_location
from ferryman.common.time import utcnow
from ferryman.discovery import collect_source_repositories
from ferryman.errors import NotFoundError, PermissionDeniedError, RemoteError
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import (
    get_logger,
    log_critical,
    log_exception,
    log_info,
    log_warning,
)
from ferryman.records import MirrorStatus, can_transition

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from ferryman.config import MirrorConfig
    from ferryman.records import (
        ConfigSnapshot,
        ConfigStore,
        RepositoryInfo,
        RepositoryStore,
    )
    from ferryman.remote import RemoteClientFactory, SourceClient, TargetClient

logger = get_logger(__name__)

ARCHIVED_MESSAGE = "Repository archived - no longer in source"
_DEFAULT_CLEANUP_INTERVAL = "24h"


@dataclasses.dataclass(slots=True)
class CleanupResult:
    """What one cleanup run found and did."""

    config_id: str
    dry_run: bool = True
    aborted: bool = False
    orphans: list[str] = dataclasses.field(default_factory=list)
    archived: list[str] = dataclasses.field(default_factory=list)
    deleted: list[str] = dataclasses.field(default_factory=list)
    skipped: list[str] = dataclasses.field(default_factory=list)
    errors: list[str] = dataclasses.field(default_factory=list)


def _is_protected(repository: RepositoryInfo, protected: tuple[str, ...]) -> bool:
    folded = {name.casefold() for name in protected}
    return (
        repository.name.casefold() in folded
        or repository.full_name.casefold() in folded
    )


def cleanup_interval(config: MirrorConfig) -> dt.timedelta:
    """Return the configured cleanup cadence, defaulting to a day."""
    try:
        return parse_duration(config.cleanup.interval)
    except ValueError:
        log_warning(
            logger,
            "[cleanup] invalid interval=%r config_id=%s; using %s",
            config.cleanup.interval,
            config.id,
            _DEFAULT_CLEANUP_INTERVAL,
        )
        return parse_duration(_DEFAULT_CLEANUP_INTERVAL)


class OrphanCleanupService(PeriodicService):
    """Archive or delete mirrors of repositories removed from the source."""

    name = "cleanup"

    def __init__(
        self,
        configs: ConfigStore,
        repositories: RepositoryStore,
        client_factory: RemoteClientFactory,
        *,
        publisher: MirrorEventPublisher | None = None,
        interval_s: float = 3600.0,
        sleep: cabc.Callable[[float], cabc.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Wire the service to the stores and a remote client factory."""
        super().__init__(interval_s)
        self._configs = configs
        self._repositories = repositories
        self._client_factory = client_factory
        self._publisher = publisher or MirrorEventPublisher()
        self._sleep = sleep
        self._config_locks: dict[str, asyncio.Lock] = {}

    async def run_once(self) -> None:
        """Run cleanup for every active configuration that is due."""
        now = utcnow()
        for snapshot in await self._configs.list_active():
            await self.run_if_due(snapshot, now)

    async def run_if_due(
        self, snapshot: ConfigSnapshot, now: dt.datetime
    ) -> CleanupResult | None:
        """Run cleanup for one configuration when enabled and due.

        The scheduler calls this during its cycle, and the service's own loop
        calls it on its cadence; a per-configuration lock keeps the two from
        overlapping.
        """
        config = snapshot.config
        if not config.cleanup.enabled or not config.has_credentials:
            return None
        if not snapshot.cleanup.is_due(now):
            return None
        lock = self._config_locks.setdefault(config.id, asyncio.Lock())
        if lock.locked():
            log_info(logger, "[cleanup] config_id=%s already running", config.id)
            return None
        async with lock:
            try:
                return await self.run_for_config(config)
            finally:
                await self._configs.record_cleanup_run(
                    config.id,
                    last_run=now,
                    next_run=now + cleanup_interval(config),
                )

    async def run_for_config(self, config: MirrorConfig) -> CleanupResult:
        """Detect orphans for ``config`` and apply its configured action."""
        result = CleanupResult(config_id=config.id, dry_run=config.cleanup.dry_run)
        clients = self._client_factory(config)
        try:
            live = await self._live_source_names(config, clients.source, result)
            if live is None:
                return result
            persisted = await self._repositories.list_for_config(config.id)
            if not live and persisted:
                self._abort(
                    config,
                    result,
                    "source returned no repositories while mirrors exist",
                )
                return result
            orphans = [
                repository
                for repository in persisted
                if repository.full_name.casefold() not in live
            ]
            result.orphans = [repository.full_name for repository in orphans]
            log_info(
                logger,
                "[cleanup] config_id=%s persisted=%d orphans=%d "
                "action=%s dry_run=%s",
                config.id,
                len(persisted),
                len(orphans),
                config.cleanup.action,
                config.cleanup.dry_run,
            )
            await self._dispose_all(config, orphans, clients.target, result)
        finally:
            await clients.aclose()
        return result

    async def _live_source_names(
        self, config: MirrorConfig, source: SourceClient, result: CleanupResult
    ) -> set[str] | None:
        try:
            repositories = await collect_source_repositories(source, config)
        except RemoteError as exc:
            if isinstance(exc, NotFoundError | PermissionDeniedError):
                log_critical(
                    logger,
                    "[cleanup] config_id=%s source account inaccessible: %s",
                    config.id,
                    exc,
                )
            else:
                log_warning(
                    logger,
                    "[cleanup] config_id=%s source listing failed: %s",
                    config.id,
                    exc,
                )
            self._abort(config, result, str(exc))
            return None
        return {repository.full_name.casefold() for repository in repositories}

    def _abort(
        self, config: MirrorConfig, result: CleanupResult, reason: str
    ) -> None:
        result.aborted = True
        result.orphans = []
        self._publisher.emit(
            MirrorEventType.CLEANUP_ABORTED, config.id, reason, config_name=config.name
        )

    async def _dispose_all(
        self,
        config: MirrorConfig,
        orphans: list[RepositoryInfo],
        target: TargetClient,
        result: CleanupResult,
    ) -> None:
        batch_size = max(config.cleanup.batch_size, 1)
        for start in range(0, len(orphans), batch_size):
            if start:
                await self._sleep(config.cleanup.pause_between_batches)
            for repository in orphans[start : start + batch_size]:
                try:
                    await self._dispose(config, repository, target, result)
                except Exception as exc:  # noqa: BLE001
                    await self._record_failure(repository, exc, result)

    async def _dispose(
        self,
        config: MirrorConfig,
        repository: RepositoryInfo,
        target: TargetClient,
        result: CleanupResult,
    ) -> None:
        action = config.cleanup.action
        subject = repository.full_name
        if _is_protected(repository, config.cleanup.protected_repos):
            self._skip(repository, result, "protected")
            return
        if action == "skip":
            self._skip(repository, result, "action is skip")
            return
        if action == "archive" and repository.status is MirrorStatus.ARCHIVED:
            self._skip(repository, result, "already archived")
            return
        if config.cleanup.dry_run:
            log_info(
                logger,
                "[cleanup] dry_run repository=%s would_%s location=%s",
                subject,
                action,
                repository.mirrored_location or "-",
            )
            self._skip(repository, result, f"dry run ({action})")
            return

        if action == "archive":
            if repository.mirrored_location:
                owner, name = split_location(repository.mirrored_location)
                try:
                    await target.archive_repository(owner, name)
                except NotFoundError:
                    log_info(logger, "[cleanup] %s already gone on target", subject)
            await self._repositories.transition(
                repository.id, MirrorStatus.ARCHIVED, error_message=ARCHIVED_MESSAGE
            )
            result.archived.append(subject)
            self._publisher.emit(
                MirrorEventType.ORPHAN_ARCHIVED,
                subject,
                location=repository.mirrored_location or "-",
            )
            return

        if repository.mirrored_location:
            owner, name = split_location(repository.mirrored_location)
            try:
                await target.delete_repository(owner, name)
            except NotFoundError:
                log_info(logger, "[cleanup] %s already gone on target", subject)
        await self._repositories.delete(repository.id)
        result.deleted.append(subject)
        self._publisher.emit(
            MirrorEventType.ORPHAN_DELETED,
            subject,
            location=repository.mirrored_location or "-",
        )

    def _skip(
        self, repository: RepositoryInfo, result: CleanupResult, reason: str
    ) -> None:
        result.skipped.append(repository.full_name)
        self._publisher.emit(
            MirrorEventType.ORPHAN_SKIPPED, repository.full_name, reason
        )

    async def _record_failure(
        self, repository: RepositoryInfo, exc: Exception, result: CleanupResult
    ) -> None:
        message = f"Cleanup failed: {exc}"
        log_exception(logger, f"[cleanup] repository={repository.full_name}", exc)
        result.errors.append(f"{repository.full_name}: {exc}")
        if can_transition(repository.status, MirrorStatus.FAILED):
            await self._repositories.transition(
                repository.id, MirrorStatus.FAILED, error_message=message
            )

"""Periodic mirror cycles for every active configuration.

Each tick loads the active configurations and runs a cycle for those that
are enabled, credentialed and due. A cycle records its next run first, so a
crash mid-cycle does not make the configuration due again immediately, then
imports new source repositories, gives orphan cleanup a chance to run, and
finally hands due repositories to the dispatcher in fixed-size batches.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import typing as typ

from ferryman.common.durations import parse_duration
from ferryman.common.periodic import PeriodicService
from ferryman.common.time import is_older_than, utcnow
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import (
    get_logger,
    log_debug,
    log_exception,
    log_info,
    log_warning,
)
from ferryman.records import MirrorStatus

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.cleanup import OrphanCleanupService
    from ferryman.config import MirrorConfig
    from ferryman.discovery import RepositoryDiscovery
    from ferryman.jobs import ResilientBatchResult
    from ferryman.records import (
        ConfigSnapshot,
        ConfigStore,
        RepositoryInfo,
        RepositoryStore,
    )
    from ferryman.remote import RemoteClientFactory

    from .dispatch import MirrorDispatcher

logger = get_logger(__name__)

DEFAULT_CYCLE_INTERVAL = dt.timedelta(hours=1)
DEFAULT_RECOVERY_THRESHOLD = dt.timedelta(minutes=10)

_TRANSFER_STATUSES = frozenset({MirrorStatus.DISCOVERED, MirrorStatus.FAILED})
_SYNC_STATUSES = frozenset({MirrorStatus.TRANSFERRED, MirrorStatus.SYNCED})


def cycle_interval(
    config: MirrorConfig, default: dt.timedelta = DEFAULT_CYCLE_INTERVAL
) -> dt.timedelta:
    """Return the time between cycles for ``config``.

    ``schedule.interval`` wins over the target's ``mirror_interval``; an
    unparsable value falls back to ``default`` with a warning.
    """
    text = config.schedule.interval or config.target.mirror_interval
    try:
        return parse_duration(text)
    except ValueError:
        log_warning(
            logger,
            "[scheduler] invalid interval=%r config_id=%s; using %s",
            text,
            config.id,
            default,
        )
        return default


def _recent_threshold(config: MirrorConfig) -> dt.timedelta | None:
    try:
        return parse_duration(config.schedule.recent_threshold)
    except ValueError:
        log_warning(
            logger,
            "[scheduler] invalid recent_threshold=%r config_id=%s; not skipping",
            config.schedule.recent_threshold,
            config.id,
        )
        return None


@dataclasses.dataclass(frozen=True, slots=True)
class DueRepositories:
    """Repositories a cycle hands to the dispatcher."""

    transfer: tuple[RepositoryInfo, ...] = ()
    sync: tuple[RepositoryInfo, ...] = ()


def select_due(
    repositories: cabc.Iterable[RepositoryInfo],
    config: MirrorConfig,
    *,
    now: dt.datetime,
    stale_after: dt.timedelta = DEFAULT_RECOVERY_THRESHOLD,
) -> DueRepositories:
    """Split ``repositories`` into transfers and syncs that are due at ``now``.

    ``discovered`` and ``failed`` repositories are transferred and
    ``transferred`` and ``synced`` ones synced. Rows left ``transferring`` or
    ``syncing`` for longer than ``stale_after`` were interrupted and are
    retried with the same operation. Archived rows are never selected.
    """
    recent = (
        _recent_threshold(config) if config.schedule.skip_recently_mirrored else None
    )
    transfer: list[RepositoryInfo] = []
    sync: list[RepositoryInfo] = []
    for repository in repositories:
        status = repository.status
        stale = is_older_than(repository.updated_at, stale_after, now=now)
        if status in _TRANSFER_STATUSES or (
            status is MirrorStatus.TRANSFERRING and stale
        ):
            transfer.append(repository)
        elif status in _SYNC_STATUSES:
            if recent is not None and not is_older_than(
                repository.last_mirrored_at, recent, now=now
            ):
                continue
            sync.append(repository)
        elif status is MirrorStatus.SYNCING and stale:
            sync.append(repository)
    return DueRepositories(transfer=tuple(transfer), sync=tuple(sync))


@dataclasses.dataclass(slots=True)
class CycleReport:
    """Counts from one configuration's cycle."""

    config_id: str
    discovered: int = 0
    transferred: int = 0
    synced: int = 0
    failed: int = 0
    batch_ids: list[str] = dataclasses.field(default_factory=list)

    def add(self, run: ResilientBatchResult, *, sync: bool) -> None:
        """Fold one batch into the report."""
        self.batch_ids.append(run.batch_id)
        succeeded = len(run.result.succeeded)
        if sync:
            self.synced += succeeded
        else:
            self.transferred += succeeded
        self.failed += len(run.result.failed)


class MirrorScheduler(PeriodicService):
    """Run mirror cycles on each configuration's cadence."""

    name = "scheduler"

    def __init__(  # noqa: PLR0913
        self,
        configs: ConfigStore,
        repositories: RepositoryStore,
        discovery: RepositoryDiscovery,
        dispatcher: MirrorDispatcher,
        client_factory: RemoteClientFactory,
        *,
        cleanup: OrphanCleanupService | None = None,
        publisher: MirrorEventPublisher | None = None,
        interval_s: float = 60.0,
        stale_after: dt.timedelta = DEFAULT_RECOVERY_THRESHOLD,
        default_interval: dt.timedelta = DEFAULT_CYCLE_INTERVAL,
        sleep: cabc.Callable[[float], cabc.Awaitable[None]] = asyncio.sleep,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Wire the scheduler to its stores, discovery and dispatcher."""
        super().__init__(interval_s)
        self._configs = configs
        self._repositories = repositories
        self._discovery = discovery
        self._dispatcher = dispatcher
        self._client_factory = client_factory
        self._cleanup = cleanup
        self._publisher = publisher or MirrorEventPublisher()
        self._stale_after = stale_after
        self._default_interval = default_interval
        self._sleep = sleep
        self._clock = clock

    async def run_once(self) -> None:
        """Run a cycle for each active configuration that is due."""
        now = self._clock()
        for snapshot in await self._configs.list_active():
            config = snapshot.config
            if not config.schedule.enabled:
                log_debug(logger, "[scheduler] config_id=%s disabled", config.id)
                continue
            if not config.has_credentials:
                self._publisher.emit(
                    MirrorEventType.SCHEDULER_CYCLE_SKIPPED,
                    config.id,
                    "missing credentials",
                    config_name=config.name,
                )
                continue
            if not snapshot.schedule.is_due(now):
                log_debug(
                    logger,
                    "[scheduler] config_id=%s next_run=%s not due",
                    config.id,
                    snapshot.schedule.next_run,
                )
                continue
            try:
                await self.run_cycle(snapshot, now)
            except Exception as exc:  # noqa: BLE001
                log_exception(logger, f"[scheduler] config_id={config.id}", exc)

    async def run_cycle(
        self, snapshot: ConfigSnapshot, now: dt.datetime
    ) -> CycleReport:
        """Run one full cycle for a configuration."""
        config = snapshot.config
        report = CycleReport(config_id=config.id)
        await self._configs.record_schedule_run(
            config.id,
            last_run=now,
            next_run=now + cycle_interval(config, self._default_interval),
        )
        self._publisher.emit(
            MirrorEventType.SCHEDULER_CYCLE_STARTED, config.id, config_name=config.name
        )

        if config.schedule.auto_import:
            report.discovered = await self._discover(config)
        if self._cleanup is not None:
            await self._cleanup.run_if_due(snapshot, now)

        due = select_due(
            await self._repositories.list_for_config(config.id),
            config,
            now=now,
            stale_after=self._stale_after,
        )
        log_info(
            logger,
            "[scheduler] config_id=%s transfer=%d sync=%d",
            config.id,
            len(due.transfer),
            len(due.sync),
        )
        await self._run_batches(config, due.transfer, report, sync=False)
        await self._run_batches(config, due.sync, report, sync=True)

        self._publisher.emit(
            MirrorEventType.SCHEDULER_CYCLE_COMPLETED,
            config.id,
            discovered=report.discovered,
            transferred=report.transferred,
            synced=report.synced,
            failed=report.failed,
        )
        return report

    async def _discover(self, config: MirrorConfig) -> int:
        clients = self._client_factory(config)
        try:
            result = await self._discovery.discover(config, clients.source)
        except Exception as exc:  # noqa: BLE001
            log_exception(logger, f"[scheduler] discovery config_id={config.id}", exc)
            return 0
        finally:
            await clients.aclose()
        return len(result.repositories)

    async def _run_batches(
        self,
        config: MirrorConfig,
        repositories: tuple[RepositoryInfo, ...],
        report: CycleReport,
        *,
        sync: bool,
    ) -> None:
        batch_size = max(config.schedule.batch_size, 1)
        for start in range(0, len(repositories), batch_size):
            if start:
                await self._sleep(config.schedule.pause_between_batches)
            chunk = repositories[start : start + batch_size]
            if sync:
                run = await self._dispatcher.sync_repositories(config, chunk)
            else:
                run = await self._dispatcher.transfer_repositories(config, chunk)
            report.add(run, sync=sync)

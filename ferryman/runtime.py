"""Ferryman engine process.

Wires the record stores, job ledger, scheduler and cleanup service around a
single SQLAlchemy engine, resumes batches interrupted by a previous crash and
then runs the scheduler, cleanup and recovery loops until SIGINT or SIGTERM.

Configuration is driven by environment variables (see
:meth:`ferryman.config.EngineSettings.from_env`):

- ``FERRYMAN_DATABASE_URL``: SQLAlchemy async URL (required)
- ``FERRYMAN_LOG_LEVEL``: Log level (default ``INFO``)
- ``FERRYMAN_SCHEDULER_TICK_SECONDS`` and ``FERRYMAN_CLEANUP_TICK_SECONDS``
- ``FERRYMAN_RECOVERY_THRESHOLD_SECONDS`` and ``FERRYMAN_RECOVERY_TICK_SECONDS``
- ``FERRYMAN_DEFAULT_INTERVAL_SECONDS``

Run the engine with ``ferryman`` or ``python -m ferryman.runtime``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ferryman.cleanup import OrphanCleanupService
from ferryman.config import EngineSettings
from ferryman.discovery import RepositoryDiscovery
from ferryman.errors import ConfigurationError
from ferryman.events import MirrorEventPublisher
from ferryman.jobs import (
    JobLedger,
    JobRecovery,
    JobType,
    RecoveryService,
    ResilientBatchRunner,
)
from ferryman.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from ferryman.records import (
    ConfigStore,
    OrganizationStore,
    RepositoryStore,
    init_storage,
)
from ferryman.remote import default_client_factory
from ferryman.scheduler import MirrorDispatcher, MirrorScheduler

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.jobs import RecoveryReport
    from ferryman.records import SessionFactory
    from ferryman.remote import RemoteClientFactory

__all__ = ["MirrorEngine", "main"]

logger = get_logger(__name__)


@dataclasses.dataclass(slots=True)
class MirrorEngine:
    """Every long-lived engine component, built around one session factory."""

    configs: ConfigStore
    repositories: RepositoryStore
    organizations: OrganizationStore
    ledger: JobLedger
    publisher: MirrorEventPublisher
    dispatcher: MirrorDispatcher
    scheduler: MirrorScheduler
    cleanup: OrphanCleanupService
    recovery: JobRecovery
    recovery_service: RecoveryService

    @classmethod
    def build(
        cls,
        session_factory: SessionFactory,
        settings: EngineSettings,
        *,
        client_factory: RemoteClientFactory = default_client_factory,
        publisher: MirrorEventPublisher | None = None,
        sleep: cabc.Callable[[float], cabc.Awaitable[None]] = asyncio.sleep,
    ) -> MirrorEngine:
        """Compose the engine from a session factory and process settings."""
        publisher = publisher or MirrorEventPublisher()
        configs = ConfigStore(session_factory)
        repositories = RepositoryStore(session_factory)
        organizations = OrganizationStore(session_factory)
        ledger = JobLedger(session_factory)
        dispatcher = MirrorDispatcher(
            configs=configs,
            repositories=repositories,
            organizations=organizations,
            runner=ResilientBatchRunner(ledger, publisher),
            client_factory=client_factory,
            publisher=publisher,
        )
        cleanup = OrphanCleanupService(
            configs,
            repositories,
            client_factory,
            publisher=publisher,
            interval_s=settings.cleanup_tick_seconds,
            sleep=sleep,
        )
        scheduler = MirrorScheduler(
            configs,
            repositories,
            RepositoryDiscovery(repositories, organizations),
            dispatcher,
            client_factory,
            cleanup=cleanup,
            publisher=publisher,
            interval_s=settings.scheduler_tick_seconds,
            stale_after=settings.recovery_threshold,
            default_interval=settings.default_interval,
            sleep=sleep,
        )
        recovery = JobRecovery(
            ledger,
            {
                JobType.MIRROR_REPOSITORIES: dispatcher.resume,
                JobType.SYNC_REPOSITORIES: dispatcher.resume,
            },
            publisher=publisher,
            stale_threshold=settings.recovery_threshold,
        )
        return cls(
            configs=configs,
            repositories=repositories,
            organizations=organizations,
            ledger=ledger,
            publisher=publisher,
            dispatcher=dispatcher,
            scheduler=scheduler,
            cleanup=cleanup,
            recovery=recovery,
            recovery_service=RecoveryService(
                recovery, interval_s=settings.recovery_tick_seconds
            ),
        )

    async def run(self, stop_event: asyncio.Event) -> RecoveryReport:
        """Recover interrupted batches, then loop until ``stop_event`` is set.

        Recovery repeats on its own loop after the startup pass. In-flight
        passes are awaited on the way out so their ledger writes complete.
        """
        report = await self.recovery.recover()
        log_info(
            logger,
            "[runtime] recovery resumed=%d closed=%d failed=%d skipped=%d",
            len(report.resumed),
            len(report.closed),
            len(report.failed),
            len(report.skipped),
        )
        self.scheduler.start()
        self.cleanup.start()
        self.recovery_service.start()
        try:
            await stop_event.wait()
        finally:
            await asyncio.shield(self._stop_services())
        return report

    async def _stop_services(self) -> None:
        await self.scheduler.stop()
        await self.cleanup.stop()
        await self.recovery_service.stop()


async def serve(settings: EngineSettings) -> None:
    """Open the database, build the engine and run it until signalled."""
    engine = create_async_engine(settings.database_url)
    try:
        await init_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        mirror_engine = MirrorEngine.build(session_factory, settings)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)

        await mirror_engine.run(stop_event)
    finally:
        await engine.dispose()
    log_info(logger, "[runtime] stopped")


def main() -> None:
    """Start the engine process."""
    try:
        settings = EngineSettings.from_env()
    except ConfigurationError as exc:
        configure_logging(None)
        log_error(logger, "[runtime] invalid configuration: %s", exc)
        raise SystemExit(1) from exc

    normalized_level, invalid_level = configure_logging(settings.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid FERRYMAN_LOG_LEVEL %r, falling back to %s",
            settings.log_level,
            normalized_level,
        )
    log_info(
        logger,
        "[runtime] starting scheduler_tick=%ds cleanup_tick=%ds log_level=%s",
        settings.scheduler_tick_seconds,
        settings.cleanup_tick_seconds,
        normalized_level,
    )
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()

"""Dramatiq actors for on-demand mirror batches.

The engine process runs batches on its own schedule; these actors let
another process queue the same work for specific repositories or an
organization. Every batch goes through the job ledger, so an actor killed
mid-batch is resumed by the engine's startup recovery.

Usage
-----
Queue a transfer of two repositories:

>>> mirror_repositories_job.send(
...     database_url="postgresql+asyncpg://...",
...     config_id="cfg-1",
...     repository_ids=["repo-a", "repo-b"],
... )

Queue a whole organization:

>>> mirror_organization_job.send(
...     database_url="postgresql+asyncpg://...",
...     config_id="cfg-1",
...     organization_id="org-1",
... )

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ferryman._broker import ensure_broker_configured
from ferryman.events import MirrorEventPublisher
from ferryman.jobs import JobLedger, ResilientBatchRunner
from ferryman.logging import get_logger, log_info, log_warning
from ferryman.records import ConfigStore, OrganizationStore, RepositoryStore
from ferryman.remote import default_client_factory
from ferryman.scheduler import MirrorDispatcher

if typ.TYPE_CHECKING:
    from ferryman.remote import RemoteClientFactory

type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

ensure_broker_configured()

# Module-level caches reused across actor invocations
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for ``database_url``.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            if database_url not in _ENGINE_CACHE:
                _ENGINE_CACHE[database_url] = create_async_engine(database_url)
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                _ENGINE_CACHE[database_url], expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def _build_dispatcher(
    session_factory: SessionFactory,
    client_factory: RemoteClientFactory,
    publisher: MirrorEventPublisher | None = None,
) -> MirrorDispatcher:
    publisher = publisher or MirrorEventPublisher()
    return MirrorDispatcher(
        configs=ConfigStore(session_factory),
        repositories=RepositoryStore(session_factory),
        organizations=OrganizationStore(session_factory),
        runner=ResilientBatchRunner(JobLedger(session_factory), publisher),
        client_factory=client_factory,
        publisher=publisher,
    )


async def _mirror_repositories_async(
    session_factory: SessionFactory,
    config_id: str,
    repository_ids: list[str],
    *,
    sync: bool = False,
    client_factory: RemoteClientFactory = default_client_factory,
    publisher: MirrorEventPublisher | None = None,
) -> str | None:
    """Transfer (or sync) the given repositories as one ledger batch.

    Parameters
    ----------
    session_factory : SessionFactory
        Async session factory for the record store.
    config_id : str
        Configuration the repositories belong to.
    repository_ids : list[str]
        Repository row ids. Unknown ids are logged and skipped.
    sync : bool, optional
        Sync existing mirrors instead of transferring.
    client_factory : RemoteClientFactory, optional
        Builds the remote clients for the configuration.
    publisher : MirrorEventPublisher, optional
        Event publisher shared with the batch.

    Returns
    -------
    str | None
        The ledger batch id, or None when no repository was found.

    Raises
    ------
    RecordNotFoundError
        If the configuration does not exist.

    """
    snapshot = await ConfigStore(session_factory).get(config_id)
    repositories = await RepositoryStore(session_factory).get_many(repository_ids)
    found = {repository.id for repository in repositories}
    unknown = [item for item in repository_ids if item not in found]
    if unknown:
        log_warning(
            logger,
            "[actors] config_id=%s unknown repository_ids=%s",
            config_id,
            ",".join(unknown),
        )
    if not repositories:
        return None

    dispatcher = _build_dispatcher(session_factory, client_factory, publisher)
    if sync:
        run = await dispatcher.sync_repositories(snapshot.config, repositories)
    else:
        run = await dispatcher.transfer_repositories(snapshot.config, repositories)
    log_info(
        logger,
        "[actors] batch_id=%s succeeded=%d failed=%d",
        run.batch_id,
        len(run.result.succeeded),
        len(run.result.failed),
    )
    return run.batch_id


async def _mirror_organization_async(
    session_factory: SessionFactory,
    config_id: str,
    organization_id: str,
    *,
    client_factory: RemoteClientFactory = default_client_factory,
    publisher: MirrorEventPublisher | None = None,
) -> str | None:
    """Mirror one organization and return its batch id, if it had work."""
    snapshot = await ConfigStore(session_factory).get(config_id)
    organization = await OrganizationStore(session_factory).get(organization_id)
    dispatcher = _build_dispatcher(session_factory, client_factory, publisher)
    result = await dispatcher.mirror_organization(snapshot.config, organization)
    return result.batch_id


@dramatiq.actor
def mirror_repositories_job(
    database_url: str, config_id: str, repository_ids: list[str]
) -> str | None:
    """Dramatiq actor transferring repositories to the target."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(
        _mirror_repositories_async(session_factory, config_id, repository_ids)
    )


@dramatiq.actor
def sync_repositories_job(
    database_url: str, config_id: str, repository_ids: list[str]
) -> str | None:
    """Dramatiq actor syncing existing mirrors."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(
        _mirror_repositories_async(
            session_factory, config_id, repository_ids, sync=True
        )
    )


@dramatiq.actor
def mirror_organization_job(
    database_url: str, config_id: str, organization_id: str
) -> str | None:
    """Dramatiq actor mirroring a whole source organization."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(
        _mirror_organization_async(session_factory, config_id, organization_id)
    )

"""Unit tests for orphan detection and cleanup."""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

import pytest

from ferryman.cleanup import ARCHIVED_MESSAGE, OrphanCleanupService
from ferryman.config import CleanupSettings
from ferryman.errors import (
    NotFoundError,
    PermissionDeniedError,
    RecordNotFoundError,
    RemoteRequestError,
)
from ferryman.events import MirrorEvent, MirrorEventPublisher, MirrorEventType
from ferryman.records import ConfigStore, MirrorStatus, RepositoryStore
from tests.helpers.fake_remotes import make_config, source_repository
from tests.helpers.records import seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig, OrphanAction
    from ferryman.records import RepositoryInfo, SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory


def _config(
    action: OrphanAction = "archive",
    *,
    dry_run: bool = False,
    **extra: typ.Any,  # noqa: ANN401
) -> MirrorConfig:
    return make_config(
        cleanup=CleanupSettings(
            enabled=True,
            action=action,
            dry_run=dry_run,
            pause_between_batches=0.0,
            **extra,
        )
    )


@dataclasses.dataclass
class _Setup:
    service: OrphanCleanupService
    store: RepositoryStore
    events: list[MirrorEvent]
    alpha: RepositoryInfo
    beta: RepositoryInfo


async def _setup(
    session_factory: SessionFactory,
    remotes: FakeClientFactory,
    config: MirrorConfig,
) -> _Setup:
    """Mirror octo/alpha and octo/beta, then drop beta from the source."""
    alpha, beta = await seed_repositories(
        session_factory,
        config,
        "octo/alpha",
        "octo/beta",
        status=MirrorStatus.TRANSFERRED,
    )
    remotes.target.add_repository("mirrors", "alpha")
    remotes.target.add_repository("mirrors", "beta")
    remotes.source.user_repositories = [source_repository("octo/alpha")]

    publisher = MirrorEventPublisher()
    events: list[MirrorEvent] = []
    publisher.subscribe(events.append)
    store = RepositoryStore(session_factory)
    service = OrphanCleanupService(
        ConfigStore(session_factory), store, remotes, publisher=publisher
    )
    return _Setup(service, store, events, alpha, beta)


@pytest.mark.asyncio
async def test_archives_orphans(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Repositories gone from the source are archived on the target."""
    config = _config()
    setup = await _setup(session_factory, remotes, config)

    result = await setup.service.run_for_config(config)

    assert result.orphans == ["octo/beta"]
    assert result.archived == ["octo/beta"]
    assert remotes.target.archived == ["mirrors/beta"]
    stored = await setup.store.get(setup.beta.id)
    assert stored.status is MirrorStatus.ARCHIVED
    assert stored.error_message == ARCHIVED_MESSAGE
    assert (await setup.store.get(setup.alpha.id)).status is MirrorStatus.TRANSFERRED
    assert remotes.source.closed and remotes.target.closed


@pytest.mark.asyncio
async def test_deletes_orphans(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """The delete action removes the target repository and the row."""
    config = _config("delete")
    setup = await _setup(session_factory, remotes, config)

    result = await setup.service.run_for_config(config)

    assert result.deleted == ["octo/beta"]
    assert remotes.target.deleted == ["mirrors/beta"]
    with pytest.raises(RecordNotFoundError):
        await setup.store.get(setup.beta.id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "config",
    [
        _config(dry_run=True),
        _config("delete", protected_repos=("BETA",)),
        _config("skip"),
    ],
    ids=["dry-run", "protected", "skip-action"],
)
async def test_orphans_left_alone(
    session_factory: SessionFactory,
    remotes: FakeClientFactory,
    config: MirrorConfig,
) -> None:
    """Dry runs, protected names and the skip action change nothing."""
    setup = await _setup(session_factory, remotes, config)

    result = await setup.service.run_for_config(config)

    assert result.orphans == ["octo/beta"]
    assert result.skipped == ["octo/beta"]
    assert remotes.target.archived == remotes.target.deleted == []
    assert (await setup.store.get(setup.beta.id)).status is MirrorStatus.TRANSFERRED
    assert [event.type for event in setup.events] == [MirrorEventType.ORPHAN_SKIPPED]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        PermissionDeniedError.for_action("list repositories", 401),
        NotFoundError.for_action("list repositories of user octo"),
    ],
    ids=["unauthorized", "not-found"],
)
async def test_source_failure_aborts_without_orphans(
    session_factory: SessionFactory,
    remotes: FakeClientFactory,
    error: Exception,
) -> None:
    """A listing error never turns every mirror into an orphan."""
    config = _config("delete")
    setup = await _setup(session_factory, remotes, config)
    remotes.source.listing_error = error

    result = await setup.service.run_for_config(config)

    assert result.aborted
    assert result.orphans == []
    assert remotes.target.deleted == []
    assert [event.type for event in setup.events] == [MirrorEventType.CLEANUP_ABORTED]


@pytest.mark.asyncio
async def test_empty_source_aborts_while_mirrors_exist(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """An empty listing is treated as suspect when mirrors are recorded."""
    config = _config("delete")
    setup = await _setup(session_factory, remotes, config)
    remotes.source.user_repositories = []

    result = await setup.service.run_for_config(config)

    assert result.aborted
    assert remotes.target.deleted == []


@pytest.mark.asyncio
async def test_target_failure_marks_repository_failed(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """A rejected archive is recorded against the repository."""
    config = _config()
    setup = await _setup(session_factory, remotes, config)
    remotes.target.fail_next["archive_repository"] = [
        RemoteRequestError.http_status("archive mirrors/beta", 422)
    ]

    result = await setup.service.run_for_config(config)

    assert result.archived == []
    assert len(result.errors) == 1
    stored = await setup.store.get(setup.beta.id)
    assert stored.status is MirrorStatus.FAILED
    assert stored.error_message is not None
    assert stored.error_message.startswith("Cleanup failed:")


@pytest.mark.asyncio
async def test_run_if_due_records_next_run(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """A due configuration runs once and is not due again until its interval."""
    config = _config(interval="12h")
    setup = await _setup(session_factory, remotes, config)
    configs = ConfigStore(session_factory)
    now = dt.datetime(2026, 3, 1, tzinfo=dt.UTC)

    first = await setup.service.run_if_due(await configs.get(config.id), now)
    snapshot = await configs.get(config.id)
    second = await setup.service.run_if_due(snapshot, now + dt.timedelta(hours=1))

    assert first is not None
    assert first.archived == ["octo/beta"]
    assert snapshot.cleanup.next_run == now + dt.timedelta(hours=12)
    assert second is None


@pytest.mark.asyncio
async def test_run_if_due_ignores_disabled_cleanup(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Configurations with cleanup switched off are never touched."""
    config = make_config()
    setup = await _setup(session_factory, remotes, config)
    snapshot = await ConfigStore(session_factory).get(config.id)

    assert await setup.service.run_if_due(snapshot, dt.datetime.now(dt.UTC)) is None
    assert remotes.opened == 0

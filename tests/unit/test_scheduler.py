"""Unit tests for due selection, cycle intervals and the mirror scheduler."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest

from ferryman.common.periodic import PeriodicService
from ferryman.config import (
    EngineSettings,
    ScheduleSettings,
    SourceSettings,
    TargetSettings,
)
from ferryman.events import MirrorEvent, MirrorEventPublisher, MirrorEventType
from ferryman.records import ConfigStore, MirrorStatus, RepositoryInfo, RepositoryStore
from ferryman.runtime import MirrorEngine
from ferryman.scheduler import cycle_interval, select_due
from tests.helpers.fake_remotes import make_config, source_repository
from tests.helpers.records import seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig
    from ferryman.records import SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory

NOW = dt.datetime(2026, 5, 1, 12, tzinfo=dt.UTC)


def _info(
    name: str,
    status: MirrorStatus,
    *,
    updated_ago: dt.timedelta = dt.timedelta(0),
    mirrored_ago: dt.timedelta | None = None,
) -> RepositoryInfo:
    return RepositoryInfo(
        id=name,
        config_id="cfg-1",
        name=name,
        full_name=f"octo/{name}",
        owner="octo",
        clone_url=f"https://github.com/octo/{name}.git",
        status=status,
        updated_at=NOW - updated_ago,
        last_mirrored_at=None if mirrored_ago is None else NOW - mirrored_ago,
    )


class TestSelectDue:
    """Tests for select_due."""

    def test_splits_by_status(self) -> None:
        """Statuses map onto transfers, syncs or nothing."""
        repos = [
            _info("new", MirrorStatus.DISCOVERED),
            _info("broken", MirrorStatus.FAILED),
            _info("done", MirrorStatus.TRANSFERRED),
            _info("fresh", MirrorStatus.SYNCED),
            _info("busy", MirrorStatus.TRANSFERRING),
            _info("gone", MirrorStatus.ARCHIVED),
        ]

        due = select_due(repos, make_config(), now=NOW)

        assert [repo.name for repo in due.transfer] == ["new", "broken"]
        assert [repo.name for repo in due.sync] == ["done", "fresh"]

    def test_reselects_stale_in_flight_rows(self) -> None:
        """Rows stuck transferring or syncing past the threshold are retried."""
        stuck = dt.timedelta(hours=1)
        repos = [
            _info("t", MirrorStatus.TRANSFERRING, updated_ago=stuck),
            _info("s", MirrorStatus.SYNCING, updated_ago=stuck),
            _info("live", MirrorStatus.SYNCING, updated_ago=dt.timedelta(minutes=1)),
        ]

        due = select_due(
            repos, make_config(), now=NOW, stale_after=dt.timedelta(minutes=10)
        )

        assert [repo.name for repo in due.transfer] == ["t"]
        assert [repo.name for repo in due.sync] == ["s"]

    def test_skips_recently_mirrored_when_enabled(self) -> None:
        """Recently mirrored repositories wait for the threshold to pass."""
        config = make_config(
            schedule=ScheduleSettings(
                enabled=True, skip_recently_mirrored=True, recent_threshold="2h"
            )
        )
        repos = [
            _info("recent", MirrorStatus.SYNCED, mirrored_ago=dt.timedelta(hours=1)),
            _info("old", MirrorStatus.SYNCED, mirrored_ago=dt.timedelta(hours=3)),
            _info("never", MirrorStatus.TRANSFERRED),
        ]

        due = select_due(repos, config, now=NOW)

        assert [repo.name for repo in due.sync] == ["old", "never"]


@pytest.mark.parametrize(
    ("schedule_interval", "mirror_interval", "expected"),
    [
        ("30m", "8h", dt.timedelta(minutes=30)),
        ("", "8h", dt.timedelta(hours=8)),
        ("soon", "8h", dt.timedelta(hours=2)),
    ],
)
def test_cycle_interval(
    schedule_interval: str, mirror_interval: str, expected: dt.timedelta
) -> None:
    """The schedule interval wins; garbage falls back to the default."""
    config = make_config(
        schedule=ScheduleSettings(enabled=True, interval=schedule_interval),
        target=TargetSettings(url="u", token="t", mirror_interval=mirror_interval),
    )
    assert cycle_interval(config, dt.timedelta(hours=2)) == expected


class _Harness:
    def __init__(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        self.pauses: list[float] = []
        self.events: list[MirrorEvent] = []
        publisher = MirrorEventPublisher()
        publisher.subscribe(self.events.append)

        async def sleep(seconds: float) -> None:
            self.pauses.append(seconds)

        self.engine = MirrorEngine.build(
            session_factory,
            EngineSettings(database_url="sqlite+aiosqlite://"),
            client_factory=remotes,
            publisher=publisher,
            sleep=sleep,
        )
        self.configs = ConfigStore(session_factory)
        self.repositories = RepositoryStore(session_factory)

    def types(self) -> list[MirrorEventType]:
        return [event.type for event in self.events]


@pytest.fixture
def harness(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> _Harness:
    """Return an engine wired to the fake remotes."""
    return _Harness(session_factory, remotes)


async def _statuses(harness: _Harness, config: MirrorConfig) -> dict[str, str]:
    return {
        repo.full_name: f"{repo.status}@{repo.mirrored_location}"
        for repo in await harness.repositories.list_for_config(config.id)
    }


class TestMirrorScheduler:
    """Tests for MirrorScheduler."""

    @pytest.mark.asyncio
    async def test_cycle_discovers_and_transfers(
        self, harness: _Harness, remotes: FakeClientFactory
    ) -> None:
        """A first cycle imports the source and mirrors every repository."""
        config = make_config()
        await harness.configs.save(config)
        remotes.source.user_repositories = [
            source_repository("octo/alpha"),
            source_repository("octo/beta"),
        ]

        await harness.engine.scheduler.run_once()

        assert await _statuses(harness, config) == {
            "octo/alpha": "transferred@mirrors/alpha",
            "octo/beta": "transferred@mirrors/beta",
        }
        snapshot = await harness.configs.get(config.id)
        assert snapshot.schedule.next_run is not None
        assert MirrorEventType.SCHEDULER_CYCLE_STARTED in harness.types()
        completed = next(
            event
            for event in harness.events
            if event.type is MirrorEventType.SCHEDULER_CYCLE_COMPLETED
        )
        assert completed.details == {
            "discovered": 2,
            "transferred": 2,
            "synced": 0,
            "failed": 0,
        }

    @pytest.mark.asyncio
    async def test_not_due_until_interval_passes(
        self, harness: _Harness, remotes: FakeClientFactory
    ) -> None:
        """A second tick inside the interval does nothing."""
        config = make_config()
        await harness.configs.save(config)
        remotes.source.user_repositories = [source_repository("octo/alpha")]

        await harness.engine.scheduler.run_once()
        opened = remotes.opened
        await harness.engine.scheduler.run_once()

        assert remotes.opened == opened
        assert remotes.target.synced == []

    @pytest.mark.asyncio
    async def test_next_cycle_syncs_transferred_mirrors(
        self, harness: _Harness, remotes: FakeClientFactory
    ) -> None:
        """Transferred repositories are synced on the following cycle."""
        config = make_config()
        await harness.configs.save(config)
        remotes.source.user_repositories = [source_repository("octo/alpha")]
        scheduler = harness.engine.scheduler

        await scheduler.run_cycle(await harness.configs.get(config.id), NOW)
        later = NOW + dt.timedelta(hours=2)
        report = await scheduler.run_cycle(await harness.configs.get(config.id), later)

        assert report.synced == 1
        assert report.discovered == 0
        assert remotes.target.synced == ["mirrors/alpha"]

    @pytest.mark.asyncio
    async def test_missing_credentials_skip_the_cycle(
        self, harness: _Harness, remotes: FakeClientFactory
    ) -> None:
        """Configurations without tokens are reported and left alone."""
        await harness.configs.save(make_config(source=SourceSettings()))

        await harness.engine.scheduler.run_once()

        assert harness.types() == [MirrorEventType.SCHEDULER_CYCLE_SKIPPED]
        assert remotes.opened == 0

    @pytest.mark.asyncio
    async def test_disabled_schedule_is_ignored(
        self, harness: _Harness, remotes: FakeClientFactory
    ) -> None:
        """Configurations with scheduling switched off never run."""
        await harness.configs.save(make_config(schedule=ScheduleSettings()))

        await harness.engine.scheduler.run_once()

        assert harness.events == []
        assert remotes.opened == 0

    @pytest.mark.asyncio
    async def test_runs_fixed_size_batches_with_pauses(
        self,
        session_factory: SessionFactory,
        harness: _Harness,
        remotes: FakeClientFactory,
    ) -> None:
        """Due repositories are dispatched batch_size at a time."""
        config = make_config(
            schedule=ScheduleSettings(
                enabled=True,
                interval="1h",
                auto_import=False,
                batch_size=2,
                pause_between_batches=7.5,
            )
        )
        await seed_repositories(
            session_factory, config, "octo/a", "octo/b", "octo/c"
        )

        report = await harness.engine.scheduler.run_cycle(
            await harness.configs.get(config.id), NOW
        )

        assert len(report.batch_ids) == 2
        assert report.transferred == 3
        assert harness.pauses == [7.5]

    @pytest.mark.asyncio
    async def test_discovery_failure_still_mirrors_known_rows(
        self,
        session_factory: SessionFactory,
        harness: _Harness,
        remotes: FakeClientFactory,
    ) -> None:
        """A failed source listing is logged and the cycle carries on."""
        config = make_config()
        await seed_repositories(session_factory, config, "octo/alpha")
        remotes.source.listing_error = RuntimeError("github down")

        report = await harness.engine.scheduler.run_cycle(
            await harness.configs.get(config.id), NOW
        )

        assert report.discovered == 0
        assert report.transferred == 1


class _Blocking(PeriodicService):
    name = "blocking"

    def __init__(self) -> None:
        super().__init__(interval_s=0.01)
        self.release = asyncio.Event()
        self.passes = 0

    async def run_once(self) -> None:
        self.passes += 1
        await self.release.wait()


class TestPeriodicService:
    """Tests for the shared periodic loop."""

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self) -> None:
        """A tick while a pass is in flight returns without running."""
        service = _Blocking()
        first = asyncio.create_task(service.tick())
        await asyncio.sleep(0)

        assert await service.tick() is False
        service.release.set()
        assert await first is True
        assert service.passes == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """The loop runs passes until stopped."""
        service = _Blocking()
        service.release.set()
        service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        assert service.passes >= 1
        assert not service.is_running()

    def test_rejects_non_positive_interval(self) -> None:
        """Intervals must be positive."""
        with pytest.raises(ValueError, match="interval"):
            PeriodicService(0)

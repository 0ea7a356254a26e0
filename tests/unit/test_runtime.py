"""Unit tests for the ferryman.runtime module."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from ferryman import runtime
from ferryman.config import EngineSettings
from ferryman.jobs import JobLedger, JobType
from ferryman.records import MirrorStatus, RepositoryStore
from ferryman.runtime import MirrorEngine
from tests.helpers.fake_remotes import make_config
from tests.helpers.records import age_job, seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.records import SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory


def _engine(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> MirrorEngine:
    async def sleep(seconds: float) -> None:
        del seconds

    return MirrorEngine.build(
        session_factory,
        EngineSettings(database_url="sqlite+aiosqlite://"),
        client_factory=remotes,
        sleep=sleep,
    )


class TestMirrorEngine:
    """Tests for MirrorEngine wiring and its run loop."""

    @pytest.mark.asyncio
    async def test_loops_use_configured_ticks(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """Tick settings drive the scheduler, cleanup and recovery intervals."""
        settings = EngineSettings(
            database_url="sqlite+aiosqlite://",
            scheduler_tick_seconds=5,
            cleanup_tick_seconds=90,
            recovery_tick_seconds=30,
        )

        engine = MirrorEngine.build(session_factory, settings, client_factory=remotes)

        assert engine.scheduler.interval_s == 5
        assert engine.cleanup.interval_s == 90
        assert engine.recovery_service.interval_s == 30

    @pytest.mark.asyncio
    async def test_run_recovers_interrupted_batches_first(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """Stale ledger entries are resumed before the loops start."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        ledger = JobLedger(session_factory)
        batch_id = await ledger.start(
            JobType.MIRROR_REPOSITORIES, [repo.id], config_id=config.id
        )
        await age_job(session_factory, batch_id)
        engine = _engine(session_factory, remotes)
        stop_event = asyncio.Event()
        stop_event.set()

        report = await engine.run(stop_event)

        assert report.resumed == [batch_id]
        assert not (await ledger.get(batch_id)).in_progress
        (stored,) = await RepositoryStore(session_factory).get_many([repo.id])
        assert stored.status == MirrorStatus.TRANSFERRED
        assert not engine.scheduler.is_running()
        assert not engine.cleanup.is_running()
        assert not engine.recovery_service.is_running()

    @pytest.mark.asyncio
    async def test_run_with_nothing_to_recover(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """An empty ledger produces an empty recovery report."""
        engine = _engine(session_factory, remotes)
        stop_event = asyncio.Event()
        stop_event.set()

        report = await engine.run(stop_event)

        assert report.resumed == []
        assert report.failed == []


class TestMain:
    """Tests for the process entry point."""

    def test_missing_database_url_exits_non_zero(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Startup fails fast when the record store is not configured."""
        monkeypatch.delenv("FERRYMAN_DATABASE_URL", raising=False)
        monkeypatch.setattr(
            runtime, "configure_logging", lambda level, **_: ("INFO", False)
        )

        with pytest.raises(SystemExit) as excinfo:
            runtime.main()

        assert excinfo.value.code == 1

    def test_starts_serving_with_settings(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Valid settings configure logging and run the engine."""
        monkeypatch.setenv("FERRYMAN_DATABASE_URL", "sqlite+aiosqlite://")
        monkeypatch.setenv("FERRYMAN_LOG_LEVEL", "debug")
        levels: list[str | None] = []
        served: list[EngineSettings] = []

        def fake_configure(level: str | None, **_: object) -> tuple[str, bool]:
            levels.append(level)
            return "DEBUG", False

        async def fake_serve(settings: EngineSettings) -> None:
            served.append(settings)

        monkeypatch.setattr(runtime, "configure_logging", fake_configure)
        monkeypatch.setattr(runtime, "serve", fake_serve)

        runtime.main()

        assert levels == ["debug"]
        assert served[0].database_url == "sqlite+aiosqlite://"

"""Unit tests for the mirror Dramatiq actors."""

from __future__ import annotations

import typing as typ

import pytest

from ferryman.config import Preserve
from ferryman.jobs import JobLedger
from ferryman.records import MirrorStatus, OrganizationStore, RepositoryStore
from tests.helpers.fake_remotes import make_config
from tests.helpers.records import seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.records import SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory


class TestMirrorRepositoriesJob:
    """Tests for the repository actors' async bodies."""

    @pytest.mark.asyncio
    async def test_transfers_known_repositories(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """Known ids are transferred as one batch; unknown ids are skipped."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")

        from ferryman.actors import _mirror_repositories_async

        batch_id = await _mirror_repositories_async(
            session_factory,
            config.id,
            [repo.id, "missing"],
            client_factory=remotes,
        )

        assert batch_id is not None
        snapshot = await JobLedger(session_factory).get(batch_id)
        assert snapshot.item_ids == (repo.id,)
        stored = await RepositoryStore(session_factory).get(repo.id)
        assert stored.status is MirrorStatus.TRANSFERRED

    @pytest.mark.asyncio
    async def test_syncs_when_requested(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """The sync flavour asks the target to pull."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )
        remotes.target.add_repository("mirrors", "alpha")

        from ferryman.actors import _mirror_repositories_async

        await _mirror_repositories_async(
            session_factory, config.id, [repo.id], sync=True, client_factory=remotes
        )

        assert remotes.target.synced == ["mirrors/alpha"]

    @pytest.mark.asyncio
    async def test_returns_none_without_repositories(
        self, session_factory: SessionFactory, remotes: FakeClientFactory
    ) -> None:
        """No batch is started when none of the ids exist."""
        config = make_config()
        await seed_repositories(session_factory, config)

        from ferryman.actors import _mirror_repositories_async

        assert (
            await _mirror_repositories_async(
                session_factory, config.id, ["nope"], client_factory=remotes
            )
            is None
        )
        assert remotes.opened == 0


@pytest.mark.asyncio
async def test_mirror_organization_job(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """The organization actor mirrors every repository of the organization."""
    config = make_config(strategy=Preserve())
    await seed_repositories(session_factory, config, "team/one", organization="team")
    (team,) = await OrganizationStore(session_factory).add_discovered(
        config.id, ["team"]
    )

    from ferryman.actors import _mirror_organization_async

    batch_id = await _mirror_organization_async(
        session_factory, config.id, team.id, client_factory=remotes
    )

    assert batch_id is not None
    assert [request.repo_owner for request in remotes.target.migrations] == ["team"]


def test_actors_are_registered_with_the_broker() -> None:
    """Importing the module declares the three actors."""
    import dramatiq

    from ferryman import actors

    broker = dramatiq.get_broker()
    for actor in (
        actors.mirror_repositories_job,
        actors.sync_repositories_job,
        actors.mirror_organization_job,
    ):
        assert actor.actor_name in broker.get_declared_actors()

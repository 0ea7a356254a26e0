"""Unit tests for the repository mirror state machine and owner provisioning."""

from __future__ import annotations

import dataclasses
import typing as typ

import pytest

from ferryman.config import (
    MetadataSettings,
    OrganizationRetrySettings,
    SourceSettings,
    TargetSettings,
)
from ferryman.errors import (
    ConflictError,
    InvalidTransitionError,
    MirrorOperationError,
    NotFoundError,
    PermissionDeniedError,
    TransientRemoteError,
)
from ferryman.events import MirrorEvent, MirrorEventPublisher, MirrorEventType
from ferryman.mirror import OwnerProvisioner, RepositoryMirror, clone_address
from ferryman.records import MirrorStatus, RepositoryInfo, RepositoryStore
from ferryman.remote.models import SourceLabel, SourceRelease, TargetOrganization
from tests.helpers.fake_remotes import make_config
from tests.helpers.records import seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.records import SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory


@dataclasses.dataclass
class _Harness:
    store: RepositoryStore
    mirror: RepositoryMirror
    events: list[MirrorEvent]

    def types(self) -> list[MirrorEventType]:
        return [event.type for event in self.events]


@pytest.fixture
def harness(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> _Harness:
    """Return a mirror wired to the fake remotes with events captured."""
    publisher = MirrorEventPublisher()
    events: list[MirrorEvent] = []
    publisher.subscribe(events.append)
    store = RepositoryStore(session_factory)
    mirror = RepositoryMirror(store, remotes(make_config()), publisher=publisher)
    return _Harness(store=store, mirror=mirror, events=events)


class TestTransfer:
    """Tests for RepositoryMirror.transfer."""

    @pytest.mark.asyncio
    async def test_creates_mirror_under_resolved_owner(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A discovered repository is migrated into the strategy's owner."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")

        info = await harness.mirror.transfer(repo, config)

        assert info.status is MirrorStatus.TRANSFERRED
        assert info.mirrored_location == "mirrors/alpha"
        (request,) = remotes.target.migrations
        assert request.repo_owner == "mirrors"
        assert request.mirror is True
        assert request.mirror_interval == "8h"
        assert "mirrors" in remotes.target.organizations
        assert MirrorEventType.ITEM_MIRRORED in harness.types()

    @pytest.mark.asyncio
    async def test_adopts_existing_mirror(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A mirror already at the destination is adopted without migrating."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        remotes.target.add_repository("Mirrors", "Alpha")

        info = await harness.mirror.transfer(repo, config)

        assert info.status is MirrorStatus.TRANSFERRED
        assert remotes.target.migrations == []

    @pytest.mark.asyncio
    async def test_existing_plain_repository_fails_the_transfer(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A non-mirror repository in the way is a conflict and marks failure."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        remotes.target.add_repository("mirrors", "alpha", mirror=False)

        with pytest.raises(MirrorOperationError) as excinfo:
            await harness.mirror.transfer(repo, config)

        assert isinstance(excinfo.value.cause, ConflictError)
        stored = await harness.store.get(repo.id)
        assert stored.status is MirrorStatus.FAILED
        assert stored.error_message is not None
        assert "not a mirror" in stored.error_message
        assert MirrorEventType.ITEM_FAILED in harness.types()

    @pytest.mark.asyncio
    async def test_retries_transient_migration_errors(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A 502 from the target is retried on the tenant's policy."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        remotes.target.fail_next["migrate_repository"] = [
            TransientRemoteError.http_status("migrate", 502)
        ]

        info = await harness.mirror.transfer(repo, config)

        assert info.status is MirrorStatus.TRANSFERRED
        assert remotes.target.calls.count("migrate_repository") == 2
        assert MirrorEventType.ITEM_RETRY in harness.types()

    @pytest.mark.asyncio
    async def test_repeat_transfer_of_transferred_repository_is_a_no_op(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A transferred mirror at its destination is not migrated again."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )
        remotes.target.add_repository("mirrors", "alpha")

        info = await harness.mirror.transfer(repo, config)

        assert info.status is MirrorStatus.TRANSFERRED
        assert info.mirrored_location == "mirrors/alpha"
        assert remotes.target.migrations == []
        assert "migrate_repository" not in remotes.target.calls
        stored = await harness.store.get(repo.id)
        assert stored.status is MirrorStatus.TRANSFERRED

    @pytest.mark.asyncio
    async def test_rejects_transfer_from_synced(
        self, session_factory: SessionFactory, harness: _Harness
    ) -> None:
        """Synced repositories cannot be transferred again."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.SYNCED
        )
        with pytest.raises(InvalidTransitionError):
            await harness.mirror.transfer(repo, config)

    @pytest.mark.asyncio
    async def test_permission_denied_falls_back_to_default_owner(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """If the organization cannot be created the default owner is used."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        remotes.target.deny_organizations = PermissionDeniedError.for_action(
            "create organization mirrors", 403
        )

        info = await harness.mirror.transfer(repo, config)

        assert info.mirrored_location == "admin/alpha"
        assert info.error_message is not None
        assert "mirrored under admin" in info.error_message
        assert MirrorEventType.ORGANIZATION_FALLBACK in harness.types()


class TestSync:
    """Tests for RepositoryMirror.sync."""

    @pytest.mark.asyncio
    async def test_syncs_recorded_location(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A transferred repository is synced where it was recorded."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )
        remotes.target.add_repository("mirrors", "alpha")

        info = await harness.mirror.sync(repo, config)

        assert info.status is MirrorStatus.SYNCED
        assert remotes.target.synced == ["mirrors/alpha"]

    @pytest.mark.asyncio
    async def test_falls_back_to_resolved_location(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """A mirror moved since transfer is found at the current destination."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory,
            config,
            "octo/alpha",
            status=MirrorStatus.TRANSFERRED,
            location_owner="old",
        )
        remotes.target.add_repository("mirrors", "alpha")

        info = await harness.mirror.sync(repo, config)

        assert info.mirrored_location == "mirrors/alpha"
        assert remotes.target.synced == ["mirrors/alpha"]

    @pytest.mark.asyncio
    async def test_missing_mirror_fails(
        self, session_factory: SessionFactory, harness: _Harness
    ) -> None:
        """A mirror absent from every candidate marks the repository failed."""
        config = make_config()
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )

        with pytest.raises(MirrorOperationError) as excinfo:
            await harness.mirror.sync(repo, config)

        assert isinstance(excinfo.value.cause, NotFoundError)
        assert (await harness.store.get(repo.id)).status is MirrorStatus.FAILED

    @pytest.mark.asyncio
    async def test_reruns_unfinished_metadata_components(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """Components that failed on an earlier replication run after a sync."""
        config = make_config(
            metadata=MetadataSettings(labels=True, releases=True)
        )
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )
        await harness.store.save_metadata_state(
            repo.id,
            {
                "components": {"labels": True},
                "last_synced_at": "2026-01-01T00:00:00+00:00",
            },
        )
        repo = await harness.store.get(repo.id)
        remotes.target.add_repository("mirrors", "alpha")
        remotes.source.labels["octo/alpha"] = [SourceLabel(name="bug")]
        remotes.source.releases["octo/alpha"] = [SourceRelease(tag_name="v1.0")]

        info = await harness.mirror.sync(repo, config)

        assert info.status is MirrorStatus.SYNCED
        assert [r.tag_name for r in remotes.target.releases["mirrors/alpha"]] == [
            "v1.0"
        ]
        assert "mirrors/alpha" not in remotes.target.labels
        state = (await harness.store.get(repo.id)).metadata_state
        assert state["components"] == {"labels": True, "releases": True}

    @pytest.mark.asyncio
    async def test_never_replicated_mirror_gets_no_metadata_on_sync(
        self,
        session_factory: SessionFactory,
        remotes: FakeClientFactory,
        harness: _Harness,
    ) -> None:
        """Metadata is only resumed for mirrors that were replicated before."""
        config = make_config(metadata=MetadataSettings(releases=True))
        (repo,) = await seed_repositories(
            session_factory, config, "octo/alpha", status=MirrorStatus.TRANSFERRED
        )
        remotes.target.add_repository("mirrors", "alpha")
        remotes.source.releases["octo/alpha"] = [SourceRelease(tag_name="v1.0")]

        await harness.mirror.sync(repo, config)

        assert "create_release" not in remotes.target.calls

    @pytest.mark.asyncio
    async def test_rejects_sync_before_transfer(
        self, session_factory: SessionFactory, harness: _Harness
    ) -> None:
        """Discovered repositories have nothing to sync yet."""
        config = make_config()
        (repo,) = await seed_repositories(session_factory, config, "octo/alpha")
        with pytest.raises(InvalidTransitionError):
            await harness.mirror.sync(repo, config)


class TestOwnerProvisioner:
    """Tests for OwnerProvisioner."""

    @pytest.mark.asyncio
    async def test_requeries_after_conflict(self, remotes: FakeClientFactory) -> None:
        """A duplicate create is followed by lookups until the org appears."""
        target = remotes.target
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)
            if len(delays) == 2:
                target.organizations["mirrors"] = TargetOrganization(
                    id=99, username="mirrors"
                )

        target.fail_next["create_organization"] = [
            ConflictError.already_exists("create organization mirrors")
        ]
        provisioner = OwnerProvisioner(target, sleep=sleep)

        resolution = await provisioner.ensure("mirrors", make_config())

        assert resolution.owner == "mirrors"
        assert not resolution.fell_back
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_when_org_never_appears(
        self, remotes: FakeClientFactory
    ) -> None:
        """Lookups stop after the configured attempts."""
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)

        remotes.target.fail_next["create_organization"] = [
            ConflictError.already_exists("create organization mirrors")
        ]
        config = make_config(
            organization_retry=OrganizationRetrySettings(attempts=2, delay=0.5)
        )

        with pytest.raises(ConflictError, match="after 2 lookups"):
            await OwnerProvisioner(remotes.target, sleep=sleep).ensure(
                "mirrors", config
            )
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retries_transient_lookup_and_create(
        self, remotes: FakeClientFactory
    ) -> None:
        """Organization lookups and creates follow the tenant's retry policy."""
        target = remotes.target
        target.fail_next["get_organization"] = [
            TransientRemoteError.http_status("get organization mirrors", 502)
        ]
        target.fail_next["create_organization"] = [
            TransientRemoteError.http_status("create organization mirrors", 503)
        ]

        resolution = await OwnerProvisioner(target).ensure("mirrors", make_config())

        assert resolution.owner == "mirrors"
        assert not resolution.fell_back
        assert target.calls == [
            "get_organization",
            "get_organization",
            "create_organization",
            "create_organization",
        ]
        assert "mirrors" in target.organizations

    @pytest.mark.asyncio
    async def test_resolves_each_owner_once(self, remotes: FakeClientFactory) -> None:
        """Repeat requests for an owner reuse the first resolution."""
        provisioner = OwnerProvisioner(remotes.target)
        config = make_config()

        await provisioner.ensure("mirrors", config)
        await provisioner.ensure("MIRRORS", config)

        assert remotes.target.calls.count("create_organization") == 1

    @pytest.mark.asyncio
    async def test_default_owner_is_never_created(
        self, remotes: FakeClientFactory
    ) -> None:
        """The default owner is a user account and needs no provisioning."""
        resolution = await OwnerProvisioner(remotes.target).ensure(
            "admin", make_config()
        )
        assert resolution.owner == "admin"
        assert remotes.target.calls == []

    @pytest.mark.asyncio
    async def test_permission_denied_without_default_owner_raises(
        self, remotes: FakeClientFactory
    ) -> None:
        """Without a fallback owner the permission error propagates."""
        remotes.target.deny_organizations = PermissionDeniedError.for_action(
            "create organization", 403
        )
        config = make_config(
            target=TargetSettings(url="https://gitea.example", token="gt-token")
        )
        with pytest.raises(PermissionDeniedError):
            await OwnerProvisioner(remotes.target).ensure("mirrors", config)


def test_clone_address_embeds_token_for_private_repositories() -> None:
    """Private repositories are cloned with the source token."""
    repo = RepositoryInfo(
        id="r",
        config_id="cfg-1",
        name="alpha",
        full_name="octo/alpha",
        owner="octo",
        clone_url="https://github.com/octo/alpha.git",
        is_private=True,
    )
    config = make_config(source=SourceSettings(token="secret", username="octo"))

    assert clone_address(repo, config) == "https://secret@github.com/octo/alpha.git"
    public = dataclasses.replace(repo, is_private=False)
    assert clone_address(public, config) == repo.clone_url

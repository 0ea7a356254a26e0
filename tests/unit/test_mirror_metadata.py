"""Unit tests for metadata replication into existing mirrors."""

from __future__ import annotations

import typing as typ

import pytest

from ferryman.config import MetadataSettings
from ferryman.errors import (
    PreconditionError,
    RemoteRequestError,
    TransientRemoteError,
)
from ferryman.events import MirrorEvent, MirrorEventPublisher, MirrorEventType
from ferryman.mirror import MetadataComponent, MetadataReplicator, issue_body
from ferryman.records import MirrorStatus, RepositoryStore
from ferryman.remote.models import (
    SourceAsset,
    SourceBranchRef,
    SourceComment,
    SourceIssue,
    SourceLabel,
    SourceMilestone,
    SourcePullRequest,
    SourceRelease,
    SourceUser,
)
from tests.helpers.fake_remotes import make_config
from tests.helpers.records import seed_repositories

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig
    from ferryman.records import RepositoryInfo, SessionFactory
    from tests.helpers.fake_remotes import FakeClientFactory

FULL = "octo/alpha"
TARGET = "mirrors/alpha"
ALL_COMPONENTS = MetadataSettings(
    releases=True,
    release_assets=True,
    issues=True,
    pull_requests=True,
    labels=True,
    milestones=True,
)


def _populate_source(remotes: FakeClientFactory) -> None:
    source = remotes.source
    bug = SourceLabel(name="bug", color="d73a4a")
    source.labels[FULL] = [bug]
    source.milestones[FULL] = [SourceMilestone(number=1, title="v1")]
    source.releases[FULL] = [
        SourceRelease(
            tag_name="v1.0",
            assets=[
                SourceAsset(name="alpha.tar.gz", browser_download_url="https://dl/1")
            ],
        )
    ]
    source.assets["https://dl/1"] = b"tarball"
    source.issues[FULL] = [
        SourceIssue(
            number=1,
            title="Crash on start",
            body="Stack trace attached.",
            user=SourceUser(login="reporter"),
            labels=[bug],
            milestone=SourceMilestone(number=1, title="v1"),
        )
    ]
    source.comments[(FULL, 1)] = [
        SourceComment(id=10, body="Confirmed.", user=SourceUser(login="dev")),
        SourceComment(id=11, body="Fixed in main."),
    ]
    source.pull_requests[FULL] = [
        SourcePullRequest(
            number=7,
            title="Fix crash",
            state="closed",
            user=SourceUser(login="dev"),
            head=SourceBranchRef(ref="fix", label="dev:fix"),
            base=SourceBranchRef(ref="main", label="octo:main"),
            merged_at="2026-01-02T00:00:00Z",
        )
    ]


async def _mirrored(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> tuple[MirrorConfig, RepositoryInfo]:
    config = make_config(metadata=ALL_COMPONENTS)
    (repo,) = await seed_repositories(
        session_factory, config, FULL, status=MirrorStatus.TRANSFERRED
    )
    remotes.target.add_repository("mirrors", "alpha")
    return config, repo


def _replicator(
    session_factory: SessionFactory,
    remotes: FakeClientFactory,
    events: list[MirrorEvent] | None = None,
) -> MetadataReplicator:
    publisher = MirrorEventPublisher()
    if events is not None:
        publisher.subscribe(events.append)
    return MetadataReplicator(
        remotes.source,
        remotes.target,
        RepositoryStore(session_factory),
        publisher=publisher,
    )


@pytest.mark.asyncio
async def test_replicates_every_enabled_component(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Labels, milestones, releases, issues and pull requests are copied."""
    _populate_source(remotes)
    config, repo = await _mirrored(session_factory, remotes)

    report = await _replicator(session_factory, remotes).replicate(repo, config)

    target = remotes.target
    assert report.failed_components == []
    assert [label.name for label in target.labels[TARGET]] == ["bug"]
    assert [milestone.title for milestone in target.milestones[TARGET]] == ["v1"]
    assert [release.tag_name for release in target.releases[TARGET]] == ["v1.0"]
    assert [(name, content) for _, name, content in target.uploads] == [
        ("alpha.tar.gz", b"tarball")
    ]
    issue, pull = target.issues[TARGET]
    assert issue.title == "Crash on start"
    assert issue.body.startswith("Originally created by @reporter on GitHub.")
    assert issue.milestone is not None
    assert pull.title == "[PR #7] Fix crash"
    assert pull.closed is True
    assert "Merging `dev:fix` into `octo:main`" in pull.body
    assert target.comments[(TARGET, 1)] == [
        "@dev commented on GitHub:\n\nConfirmed.",
        "@ghost commented on GitHub:\n\nFixed in main.",
    ]

    state = (await RepositoryStore(session_factory).get(repo.id)).metadata_state
    assert state["issue_map"] == {"1": 1}
    assert state["pull_request_map"] == {"7": 2}
    assert set(state["components"]) == {
        component.value for component in MetadataComponent
    }


@pytest.mark.asyncio
async def test_rerun_only_creates_new_items(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Items recorded in the state maps or present on the target are skipped."""
    _populate_source(remotes)
    config, repo = await _mirrored(session_factory, remotes)
    replicator = _replicator(session_factory, remotes)
    await replicator.replicate(repo, config)

    remotes.source.issues[FULL].append(SourceIssue(number=2, title="Second"))
    refreshed = await RepositoryStore(session_factory).get(repo.id)
    report = await replicator.replicate(refreshed, config)

    created = {outcome.component: outcome.created for outcome in report.outcomes}
    assert created == {
        MetadataComponent.LABELS: 0,
        MetadataComponent.MILESTONES: 0,
        MetadataComponent.RELEASES: 0,
        MetadataComponent.ISSUES: 1,
        MetadataComponent.PULL_REQUESTS: 0,
    }
    assert [draft.title for draft in remotes.target.issues[TARGET]][-1] == "Second"


@pytest.mark.asyncio
async def test_failing_component_does_not_stop_the_others(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """A rejected release is reported while the other components complete."""
    _populate_source(remotes)
    config, repo = await _mirrored(session_factory, remotes)
    remotes.target.fail_next["create_release"] = [
        RemoteRequestError.http_status("create release v1.0", 422)
    ]
    events: list[MirrorEvent] = []

    report = await _replicator(session_factory, remotes, events).replicate(
        repo, config
    )

    assert report.failed_components == [MetadataComponent.RELEASES]
    assert len(remotes.target.issues[TARGET]) == 2
    assert [event.details["component"] for event in events] == [
        MetadataComponent.RELEASES
    ]
    assert all(
        event.type is MirrorEventType.METADATA_COMPONENT_FAILED for event in events
    )
    state = (await RepositoryStore(session_factory).get(repo.id)).metadata_state
    assert "releases" not in state["components"]


@pytest.mark.asyncio
async def test_retried_items_are_not_created_twice(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """A retry after a comment or asset failure reuses the created item."""
    _populate_source(remotes)
    config, repo = await _mirrored(session_factory, remotes)
    remotes.source.fail_next["list_issue_comments"] = [
        TransientRemoteError.http_status("list comments on octo/alpha#1", 502)
    ]
    remotes.target.fail_next["upload_release_asset"] = [
        TransientRemoteError.http_status("upload alpha.tar.gz", 503)
    ]

    report = await _replicator(session_factory, remotes).replicate(repo, config)

    target = remotes.target
    assert report.failed_components == []
    assert [draft.title for draft in target.issues[TARGET]] == [
        "Crash on start",
        "[PR #7] Fix crash",
    ]
    assert [release.tag_name for release in target.releases[TARGET]] == ["v1.0"]
    (release,) = target.releases[TARGET]
    assert target.uploads == [(release.id, "alpha.tar.gz", b"tarball")]
    assert len(target.comments[(TARGET, 1)]) == 2


@pytest.mark.asyncio
async def test_resumes_comments_left_behind(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Comments that failed on an earlier run are posted without repeats."""
    _populate_source(remotes)
    config, repo = await _mirrored(session_factory, remotes)
    rejected = RemoteRequestError.http_status("comment on mirrors/alpha#1", 422)
    remotes.target.fail_next["create_issue_comment"] = [rejected]
    replicator = _replicator(session_factory, remotes)

    first = await replicator.replicate(repo, config)
    refreshed = await RepositoryStore(session_factory).get(repo.id)
    second = await replicator.replicate(refreshed, config)

    assert first.failed_components == [MetadataComponent.ISSUES]
    assert second.failed_components == []
    assert len(remotes.target.issues[TARGET]) == 2
    assert sorted(remotes.target.comments[(TARGET, 1)]) == [
        "@dev commented on GitHub:\n\nConfirmed.",
        "@ghost commented on GitHub:\n\nFixed in main.",
    ]
    state = (await RepositoryStore(session_factory).get(repo.id)).metadata_state
    assert state["comment_backlog"] == {}


@pytest.mark.asyncio
async def test_requires_repository_on_target(
    session_factory: SessionFactory, remotes: FakeClientFactory
) -> None:
    """Replication refuses to run against a mirror that is not there."""
    config = make_config(metadata=ALL_COMPONENTS)
    (repo,) = await seed_repositories(
        session_factory, config, FULL, status=MirrorStatus.TRANSFERRED
    )

    with pytest.raises(PreconditionError, match=TARGET):
        await _replicator(session_factory, remotes).replicate(repo, config)


def test_issue_body_lists_assignees() -> None:
    """Assignees are credited after the author line."""
    body = issue_body(
        SourceIssue(
            number=3,
            title="t",
            assignees=[SourceUser(login="a"), SourceUser(login="b")],
        )
    )
    assert body == (
        "Originally created by @ghost on GitHub.\n\n"
        "Originally assigned to: @a, @b on GitHub.\n\n"
    )

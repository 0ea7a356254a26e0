"""Copy releases, labels, milestones, issues and pull requests to a mirror.

Git mirroring carries commits, branches and tags only. Everything else is
replicated here as a set of independent components, each a batch of its own
with its own concurrency limit. A failing component is logged and reported;
it never fails the repository or the other components.

Progress lives in the repository's ``metadata_state``::

    {
        "components": {"labels": true, "issues": true},
        "component_last_synced": {"labels": "2026-01-01T00:00:00+00:00"},
        "last_synced_at": "2026-01-01T00:00:00+00:00",
        "issue_map": {"1": 1, "2": 2},
        "pull_request_map": {"7": 3},
        "comment_backlog": {"2": 2},
        "posted_comments": {"2": [101]},
        "release_map": {"v1.0": 12},
        "release_assets": {"v1.0": ["app.tar.gz"]}
    }

The maps pair source keys with the target item created for them, so a
re-run or a retried item only creates what is new. ``comment_backlog`` holds
issues whose comments are not all copied yet.
"""

from __future__ import annotations

import copy
import dataclasses
import enum
import typing as typ

from ferryman.batch import BatchOptions, process_with_retry
from ferryman.common.slug import split_location
from ferryman.common.time import utcnow
from ferryman.errors import PreconditionError
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import get_logger, log_exception, log_info
from ferryman.remote import IssueDraft, ReleaseDraft

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.config import MirrorConfig
    from ferryman.records import RepositoryInfo, RepositoryStore
    from ferryman.remote import (
        SourceAsset,
        SourceClient,
        SourceComment,
        SourceIssue,
        SourceLabel,
        SourceMilestone,
        SourcePullRequest,
        SourceRelease,
        TargetClient,
    )

logger = get_logger(__name__)

type _Handler = cabc.Callable[[_Run], cabc.Awaitable[tuple[int, int]]]


class MetadataComponent(enum.StrEnum):
    """Replicated metadata components, in the order they run."""

    LABELS = "labels"
    MILESTONES = "milestones"
    RELEASES = "releases"
    ISSUES = "issues"
    PULL_REQUESTS = "pull_requests"


@dataclasses.dataclass(frozen=True, slots=True)
class ComponentOutcome:
    """Result of one component run."""

    component: MetadataComponent
    created: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when every item of the component succeeded."""
        return self.error is None and self.failed == 0


@dataclasses.dataclass(slots=True)
class MetadataReport:
    """Per-component outcomes for one repository."""

    repository: str
    outcomes: list[ComponentOutcome] = dataclasses.field(default_factory=list)

    @property
    def failed_components(self) -> list[MetadataComponent]:
        """Return the components that did not fully succeed."""
        return [outcome.component for outcome in self.outcomes if not outcome.ok]


@dataclasses.dataclass(frozen=True, slots=True)
class _Run:
    repository: RepositoryInfo
    config: MirrorConfig
    source_owner: str
    source_name: str
    target_owner: str
    target_name: str
    state: dict[str, typ.Any]

    def options(self, concurrency: int) -> BatchOptions:
        return BatchOptions(
            concurrency_limit=max(concurrency, 1),
            retry=self.config.concurrency.retry_policy(),
        )

    def mapping(self, key: str) -> dict[str, int]:
        return self.state.setdefault(key, {})


def issue_body(issue: SourceIssue) -> str:
    """Return the target issue body with attribution for ``issue``."""
    author = issue.user.login if issue.user else "ghost"
    parts = [f"Originally created by @{author} on GitHub."]
    if issue.assignees:
        names = ", ".join(f"@{assignee.login}" for assignee in issue.assignees)
        parts.append(f"Originally assigned to: {names} on GitHub.")
    parts.append(issue.body or "")
    return "\n\n".join(parts)


def comment_body(comment: SourceComment) -> str:
    """Return the target comment body with attribution for ``comment``."""
    author = comment.user.login if comment.user else "ghost"
    return f"@{author} commented on GitHub:\n\n{comment.body or ''}"


def pull_request_body(pull: SourcePullRequest) -> str:
    """Return the body of the issue that stands in for ``pull``."""
    author = pull.user.login if pull.user else "ghost"
    lines = [
        f"Originally opened by @{author} on GitHub as pull request #{pull.number}.",
        f"Merging `{pull.head.label or pull.head.ref}` into "
        f"`{pull.base.label or pull.base.ref}`.",
    ]
    if pull.merged_at:
        lines.append(f"Merged on GitHub at {pull.merged_at}.")
    if pull.html_url:
        lines.append(f"Source: {pull.html_url}")
    return "\n".join(lines) + "\n\n" + (pull.body or "")


class MetadataReplicator:
    """Replicate enabled metadata components for a mirrored repository."""

    def __init__(
        self,
        source: SourceClient,
        target: TargetClient,
        store: RepositoryStore,
        *,
        publisher: MirrorEventPublisher | None = None,
    ) -> None:
        """Bind the replicator to both hosts and the repository store."""
        self._source = source
        self._target = target
        self._store = store
        self._publisher = publisher or MirrorEventPublisher()

    def unfinished_components(
        self, repository: RepositoryInfo, config: MirrorConfig
    ) -> list[MetadataComponent]:
        """Return the enabled components not yet completed for ``repository``."""
        done = repository.metadata_state.get("components", {})
        return [
            component
            for component, _ in self._enabled_components(config)
            if not done.get(component.value)
        ]

    async def replicate(
        self,
        repository: RepositoryInfo,
        config: MirrorConfig,
        *,
        components: cabc.Collection[MetadataComponent] | None = None,
    ) -> MetadataReport:
        """Run every enabled component for ``repository``.

        Parameters
        ----------
        repository : RepositoryInfo
            Snapshot with a recorded mirror location.
        config : MirrorConfig
            Tenant configuration; its metadata settings pick the components.
        components : Collection[MetadataComponent], optional
            Restrict the run to these components. Defaults to all enabled.

        Raises
        ------
        PreconditionError
            If the repository has no recorded location or is absent from
            the target.

        """
        if not repository.mirrored_location:
            raise PreconditionError.repository_absent(repository.full_name)
        target_owner, target_name = split_location(repository.mirrored_location)
        if await self._target.get_repository(target_owner, target_name) is None:
            raise PreconditionError.repository_absent(repository.mirrored_location)

        source_owner, source_name = split_location(repository.full_name)
        run = _Run(
            repository=repository,
            config=config,
            source_owner=source_owner,
            source_name=source_name,
            target_owner=target_owner,
            target_name=target_name,
            state=copy.deepcopy(repository.metadata_state),
        )
        report = MetadataReport(repository=repository.full_name)
        for component, handler in self._enabled_components(config):
            if components is not None and component not in components:
                continue
            outcome = await self._run_component(run, component, handler)
            report.outcomes.append(outcome)

        run.state["last_synced_at"] = utcnow().isoformat()
        await self._store.save_metadata_state(repository.id, run.state)
        log_info(
            logger,
            "[metadata] repository=%s components=%d failed=%s",
            repository.full_name,
            len(report.outcomes),
            ",".join(report.failed_components) or "none",
        )
        return report

    def _enabled_components(
        self, config: MirrorConfig
    ) -> list[tuple[MetadataComponent, _Handler]]:
        settings = config.metadata
        table = (
            (MetadataComponent.LABELS, settings.labels, self._labels),
            (MetadataComponent.MILESTONES, settings.milestones, self._milestones),
            (MetadataComponent.RELEASES, settings.releases, self._releases),
            (MetadataComponent.ISSUES, settings.issues, self._issues),
            (
                MetadataComponent.PULL_REQUESTS,
                settings.pull_requests,
                self._pull_requests,
            ),
        )
        return [(component, handler) for component, on, handler in table if on]

    async def _run_component(
        self,
        run: _Run,
        component: MetadataComponent,
        handler: _Handler,
    ) -> ComponentOutcome:
        subject = run.repository.full_name
        try:
            created, failed = await handler(run)
        except Exception as exc:  # noqa: BLE001
            log_exception(
                logger, f"[metadata] repository={subject} component={component}", exc
            )
            self._publisher.emit(
                MirrorEventType.METADATA_COMPONENT_FAILED,
                subject,
                str(exc),
                component=component,
            )
            return ComponentOutcome(component=component, error=str(exc))

        outcome = ComponentOutcome(component=component, created=created, failed=failed)
        if outcome.ok:
            run.state.setdefault("components", {})[component.value] = True
            run.state.setdefault("component_last_synced", {})[component.value] = (
                utcnow().isoformat()
            )
        else:
            self._publisher.emit(
                MirrorEventType.METADATA_COMPONENT_FAILED,
                subject,
                f"{failed} item(s) failed",
                component=component,
                created=created,
            )
        return outcome

    async def _labels(self, run: _Run) -> tuple[int, int]:
        wanted = await self._source.list_labels(run.source_owner, run.source_name)
        existing = {
            label.name.casefold()
            for label in await self._target.list_labels(
                run.target_owner, run.target_name
            )
        }
        missing = [label for label in wanted if label.name.casefold() not in existing]

        async def create(label: SourceLabel) -> None:
            await self._target.create_label(
                run.target_owner,
                run.target_name,
                label=label.name,
                color=label.color,
                description=label.description or "",
            )

        result = await process_with_retry(
            missing, create, run.options(run.config.concurrency.issues)
        )
        return len(result.succeeded), len(result.failed)

    async def _milestones(self, run: _Run) -> tuple[int, int]:
        wanted = await self._source.list_milestones(run.source_owner, run.source_name)
        existing = {
            milestone.title
            for milestone in await self._target.list_milestones(
                run.target_owner, run.target_name
            )
        }
        missing = [item for item in wanted if item.title not in existing]

        async def create(milestone: SourceMilestone) -> None:
            await self._target.create_milestone(
                run.target_owner,
                run.target_name,
                title=milestone.title,
                description=milestone.description or "",
                state=milestone.state,
                due_on=milestone.due_on,
            )

        result = await process_with_retry(
            missing, create, run.options(run.config.concurrency.issues)
        )
        return len(result.succeeded), len(result.failed)

    async def _releases(self, run: _Run) -> tuple[int, int]:
        wanted = await self._source.list_releases(run.source_owner, run.source_name)
        existing = {
            release.tag_name
            for release in await self._target.list_releases(
                run.target_owner, run.target_name
            )
        }
        release_map = run.mapping("release_map")
        uploaded: dict[str, list[str]] = run.state.setdefault("release_assets", {})
        with_assets = run.config.metadata.release_assets

        def outstanding(release: SourceRelease) -> list[SourceAsset]:
            if not with_assets:
                return []
            done = set(uploaded.get(release.tag_name, ()))
            return [asset for asset in release.assets if asset.name not in done]

        missing = [
            item
            for item in wanted
            if item.tag_name not in existing
            or (item.tag_name in release_map and outstanding(item))
        ]

        async def create(release: SourceRelease) -> None:
            release_id = release_map.get(release.tag_name)
            if release_id is None:
                created = await self._target.create_release(
                    run.target_owner,
                    run.target_name,
                    ReleaseDraft(
                        tag_name=release.tag_name,
                        target_commitish=release.target_commitish,
                        name=release.name or release.tag_name,
                        body=release.body or "",
                        draft=release.draft,
                        prerelease=release.prerelease,
                    ),
                )
                release_id = release_map[release.tag_name] = created.id
            for asset in outstanding(release):
                content = await self._source.download_asset(asset.browser_download_url)
                await self._target.upload_release_asset(
                    run.target_owner,
                    run.target_name,
                    release_id,
                    filename=asset.name,
                    content=content,
                )
                uploaded.setdefault(release.tag_name, []).append(asset.name)

        result = await process_with_retry(
            missing, create, run.options(run.config.concurrency.releases)
        )
        return len(result.succeeded), len(result.failed)

    async def _target_label_ids(
        self, run: _Run, names: cabc.Iterable[tuple[str, str]]
    ) -> dict[str, int]:
        """Return label ids by folded name, creating labels that are missing."""
        ids = {
            label.name.casefold(): label.id
            for label in await self._target.list_labels(
                run.target_owner, run.target_name
            )
        }
        for name, color in names:
            if name.casefold() in ids:
                continue
            created = await self._target.create_label(
                run.target_owner, run.target_name, label=name, color=color
            )
            ids[name.casefold()] = created.id
        return ids

    async def _issues(self, run: _Run) -> tuple[int, int]:
        issues = await self._source.list_issues(run.source_owner, run.source_name)
        issue_map = run.mapping("issue_map")
        # Issues created on the target whose comments are not all copied yet.
        comment_backlog = run.mapping("comment_backlog")
        posted: dict[str, list[int]] = run.state.setdefault("posted_comments", {})
        pending = [
            issue
            for issue in issues
            if str(issue.number) not in issue_map
            or str(issue.number) in comment_backlog
        ]
        if not pending:
            return (0, 0)

        label_ids = await self._target_label_ids(
            run,
            {
                label.name: label.color
                for issue in pending
                for label in issue.labels
            }.items(),
        )
        milestone_ids = {
            milestone.title: milestone.id
            for milestone in await self._target.list_milestones(
                run.target_owner, run.target_name
            )
        }

        comment_failures = 0

        async def create(issue: SourceIssue) -> None:
            nonlocal comment_failures
            key = str(issue.number)
            target_number = issue_map.get(key)
            if target_number is None:
                milestone = issue.milestone.title if issue.milestone else None
                created = await self._target.create_issue(
                    run.target_owner,
                    run.target_name,
                    IssueDraft(
                        title=issue.title,
                        body=issue_body(issue),
                        closed=issue.state == "closed",
                        labels=[
                            label_ids[label.name.casefold()] for label in issue.labels
                        ],
                        milestone=milestone_ids.get(milestone) if milestone else None,
                    ),
                )
                target_number = issue_map[key] = created.number
                comment_backlog[key] = target_number
            failed = await self._comments(
                run, issue.number, target_number, posted.setdefault(key, [])
            )
            if failed:
                comment_failures += failed
                return
            comment_backlog.pop(key, None)
            posted.pop(key, None)

        result = await process_with_retry(
            pending, create, run.options(run.config.concurrency.issues)
        )
        return len(result.succeeded), len(result.failed) + comment_failures

    async def _comments(
        self,
        run: _Run,
        source_number: int,
        target_number: int,
        posted: list[int],
    ) -> int:
        """Copy comments not yet in ``posted`` in order; return how many failed."""
        comments = await self._source.list_issue_comments(
            run.source_owner, run.source_name, source_number
        )
        done = set(posted)
        todo = [comment for comment in comments if comment.id not in done]

        async def post(comment: SourceComment) -> None:
            await self._target.create_issue_comment(
                run.target_owner, run.target_name, target_number, comment_body(comment)
            )
            posted.append(comment.id)

        result = await process_with_retry(
            todo, post, run.options(run.config.concurrency.comments)
        )
        for outcome in result.failed:
            log_exception(
                logger,
                f"[metadata] comment {outcome.index + 1} "
                f"on issue #{source_number} failed",
                typ.cast("Exception", outcome.error),
            )
        return len(result.failed)

    async def _pull_requests(self, run: _Run) -> tuple[int, int]:
        pulls = await self._source.list_pull_requests(
            run.source_owner, run.source_name
        )
        pull_map = run.mapping("pull_request_map")
        pending = [pull for pull in pulls if str(pull.number) not in pull_map]
        if not pending:
            return (0, 0)
        label_ids = await self._target_label_ids(
            run,
            {
                label.name: label.color for pull in pending for label in pull.labels
            }.items(),
        )

        async def create(pull: SourcePullRequest) -> None:
            created = await self._target.create_issue(
                run.target_owner,
                run.target_name,
                IssueDraft(
                    title=f"[PR #{pull.number}] {pull.title}",
                    body=pull_request_body(pull),
                    closed=pull.state == "closed",
                    labels=[label_ids[label.name.casefold()] for label in pull.labels],
                ),
            )
            pull_map[str(pull.number)] = created.number

        result = await process_with_retry(
            pending, create, run.options(run.config.concurrency.pull_requests)
        )
        return len(result.succeeded), len(result.failed)

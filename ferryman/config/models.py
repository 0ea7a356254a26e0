"""Typed per-tenant mirror configuration.

Configuration rows are stored as JSON and decoded into these frozen structs
with :func:`msgspec.convert` at the start of every scheduler tick, so one
engine invocation always works against an immutable snapshot.
"""

from __future__ import annotations

import typing as typ

import msgspec

from ferryman.batch.retry import RetryPolicy

OrphanAction = typ.Literal["skip", "archive", "delete"]


class Preserve(msgspec.Struct, frozen=True, tag="preserve"):
    """Keep the source layout: organization repos under the same org name."""


class SingleOrg(msgspec.Struct, frozen=True, tag="single-org"):
    """Place every repository under one target organization."""

    name: str = ""


class FlatUser(msgspec.Struct, frozen=True, tag="flat-user"):
    """Place every repository under the target account itself."""


class Mixed(msgspec.Struct, frozen=True, tag="mixed"):
    """Keep organization repos, gather personal repos into one organization."""

    personal_org: str = ""


MirrorStrategy = Preserve | SingleOrg | FlatUser | Mixed


class SourceSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Credentials and inclusion flags for the source (GitHub) account.

    Attributes
    ----------
    token : str
        Personal access token; only its presence matters to the scheduler.
    username : str
        Source account login.
    api_url : str
        REST API base URL.
    include_starred, include_forks, include_private, include_archived : bool
        Which classes of repository discovery imports.
    organizations : tuple[str, ...]
        Restrict organization discovery to these names; empty means all
        organizations the token can see.

    """

    token: str = ""
    username: str = ""
    api_url: str = "https://api.github.com"
    include_starred: bool = False
    include_forks: bool = True
    include_private: bool = True
    include_archived: bool = False
    organizations: tuple[str, ...] = ()


class TargetSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Connection details and mirror defaults for the target (Gitea) host."""

    url: str = ""
    token: str = ""
    default_owner: str = ""
    starred_org: str = "starred"
    mirror_interval: str = "8h"
    wiki: bool = True
    lfs: bool = False
    private_by_default: bool = False


class MetadataSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Toggles for the metadata components replicated after a transfer."""

    releases: bool = False
    release_assets: bool = False
    issues: bool = False
    pull_requests: bool = False
    labels: bool = False
    milestones: bool = False

    @property
    def any_enabled(self) -> bool:
        """Return True when at least one component is switched on."""
        return any(
            (
                self.releases,
                self.issues,
                self.pull_requests,
                self.labels,
                self.milestones,
            )
        )


class ScheduleSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Scheduler cadence and cycle shape."""

    enabled: bool = False
    interval: str = ""
    auto_import: bool = True
    batch_size: int = 10
    pause_between_batches: float = 5.0
    skip_recently_mirrored: bool = False
    recent_threshold: str = "1h"


class CleanupSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Orphan cleanup policy."""

    enabled: bool = False
    action: OrphanAction = "archive"
    dry_run: bool = True
    protected_repos: tuple[str, ...] = ()
    interval: str = "24h"
    batch_size: int = 10
    pause_between_batches: float = 2.0


class ConcurrencySettings(msgspec.Struct, kw_only=True, frozen=True):
    """Independent concurrency knobs per remote endpoint class."""

    repositories: int = 3
    issues: int = 3
    comments: int = 1
    pull_requests: int = 3
    releases: int = 2
    max_retries: int = 2
    retry_delay: float = 2.0
    backoff_factor: float = 1.0

    def retry_policy(self) -> RetryPolicy:
        """Return the retry policy applied to every batch for this tenant."""
        return RetryPolicy(
            max_retries=self.max_retries,
            delay=self.retry_delay,
            backoff_factor=self.backoff_factor,
        )


class OrganizationRetrySettings(msgspec.Struct, kw_only=True, frozen=True):
    """How long to keep re-querying an organization after a duplicate conflict."""

    attempts: int = 3
    delay: float = 1.0
    backoff_factor: float = 2.0

    def retry_policy(self) -> RetryPolicy:
        """Return the lookup schedule as a :class:`RetryPolicy`."""
        return RetryPolicy(
            max_retries=self.attempts,
            delay=self.delay,
            backoff_factor=self.backoff_factor,
        )


class RepositoryFilters(msgspec.Struct, kw_only=True, frozen=True):
    """Glob patterns matched against ``owner/name`` during discovery."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


class MirrorConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Immutable snapshot of one tenant's mirror configuration."""

    id: str
    name: str = "default"
    source: SourceSettings = msgspec.field(default_factory=SourceSettings)
    target: TargetSettings = msgspec.field(default_factory=TargetSettings)
    strategy: MirrorStrategy = msgspec.field(default_factory=Preserve)
    metadata: MetadataSettings = msgspec.field(default_factory=MetadataSettings)
    schedule: ScheduleSettings = msgspec.field(default_factory=ScheduleSettings)
    cleanup: CleanupSettings = msgspec.field(default_factory=CleanupSettings)
    concurrency: ConcurrencySettings = msgspec.field(
        default_factory=ConcurrencySettings
    )
    organization_retry: OrganizationRetrySettings = msgspec.field(
        default_factory=OrganizationRetrySettings
    )
    filters: RepositoryFilters = msgspec.field(default_factory=RepositoryFilters)

    @property
    def has_credentials(self) -> bool:
        """Return True when both hosts can be reached with a token."""
        return bool(
            self.source.token.strip()
            and self.target.token.strip()
            and self.target.url.strip()
        )

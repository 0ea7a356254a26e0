"""Interfaces the engine consumes from the source and target hosts."""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig

    from .models import (
        IssueDraft,
        MigrationRequest,
        ReleaseDraft,
        SourceComment,
        SourceIssue,
        SourceLabel,
        SourceMilestone,
        SourceOrganization,
        SourcePullRequest,
        SourceRelease,
        SourceRepository,
        TargetIssue,
        TargetLabel,
        TargetMilestone,
        TargetOrganization,
        TargetRelease,
        TargetRepository,
    )


class SourceClient(typ.Protocol):
    """Read-only access to the source host. Listing calls paginate fully."""

    async def list_user_repositories(self) -> list[SourceRepository]:
        """Return repositories owned by the authenticated account."""
        ...

    async def list_starred_repositories(self) -> list[SourceRepository]:
        """Return repositories the account has starred."""
        ...

    async def list_organizations(self) -> list[SourceOrganization]:
        """Return organizations the account belongs to."""
        ...

    async def list_organization_repositories(
        self, organization: str
    ) -> list[SourceRepository]:
        """Return every repository of ``organization``."""
        ...

    async def list_releases(self, owner: str, name: str) -> list[SourceRelease]:
        """Return releases of a repository."""
        ...

    async def list_issues(self, owner: str, name: str) -> list[SourceIssue]:
        """Return issues of a repository, excluding pull requests."""
        ...

    async def list_issue_comments(
        self, owner: str, name: str, number: int
    ) -> list[SourceComment]:
        """Return comments on one issue, oldest first."""
        ...

    async def list_labels(self, owner: str, name: str) -> list[SourceLabel]:
        """Return labels defined on a repository."""
        ...

    async def list_milestones(self, owner: str, name: str) -> list[SourceMilestone]:
        """Return open and closed milestones of a repository."""
        ...

    async def list_pull_requests(
        self, owner: str, name: str
    ) -> list[SourcePullRequest]:
        """Return open and closed pull requests of a repository."""
        ...

    async def download_asset(self, url: str) -> bytes:
        """Return the raw bytes of a release asset."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...


class TargetClient(typ.Protocol):
    """Read/write access to the mirror target host."""

    async def get_organization(self, name: str) -> TargetOrganization | None:
        """Return the organization, or None when it does not exist."""
        ...

    async def create_organization(
        self, name: str, *, description: str = "", visibility: str = "public"
    ) -> TargetOrganization:
        """Create an organization."""
        ...

    async def get_repository(self, owner: str, name: str) -> TargetRepository | None:
        """Return the repository, or None when it does not exist."""
        ...

    async def migrate_repository(self, request: MigrationRequest) -> TargetRepository:
        """Create a pull mirror of a remote repository."""
        ...

    async def mirror_sync(self, owner: str, name: str) -> None:
        """Ask the target to pull the mirror now."""
        ...

    async def archive_repository(self, owner: str, name: str) -> None:
        """Mark a repository archived."""
        ...

    async def delete_repository(self, owner: str, name: str) -> None:
        """Delete a repository."""
        ...

    async def list_labels(self, owner: str, name: str) -> list[TargetLabel]:
        """Return labels defined on a repository."""
        ...

    async def create_label(
        self, owner: str, name: str, *, label: str, color: str, description: str = ""
    ) -> TargetLabel:
        """Create a label."""
        ...

    async def list_milestones(self, owner: str, name: str) -> list[TargetMilestone]:
        """Return milestones of a repository."""
        ...

    async def create_milestone(
        self,
        owner: str,
        name: str,
        *,
        title: str,
        description: str = "",
        state: str = "open",
        due_on: str | None = None,
    ) -> TargetMilestone:
        """Create a milestone."""
        ...

    async def create_issue(
        self, owner: str, name: str, draft: IssueDraft
    ) -> TargetIssue:
        """Create an issue."""
        ...

    async def create_issue_comment(
        self, owner: str, name: str, number: int, body: str
    ) -> None:
        """Add a comment to an issue."""
        ...

    async def list_releases(self, owner: str, name: str) -> list[TargetRelease]:
        """Return releases of a repository."""
        ...

    async def create_release(
        self, owner: str, name: str, draft: ReleaseDraft
    ) -> TargetRelease:
        """Create a release."""
        ...

    async def upload_release_asset(
        self, owner: str, name: str, release_id: int, *, filename: str, content: bytes
    ) -> None:
        """Attach an asset to a release."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...


@dataclasses.dataclass(slots=True)
class RemoteClients:
    """The pair of clients opened for one configuration."""

    source: SourceClient
    target: TargetClient

    async def aclose(self) -> None:
        """Close both clients."""
        try:
            await self.source.aclose()
        finally:
            await self.target.aclose()


class RemoteClientFactory(typ.Protocol):
    """Open the clients for a configuration's credentials."""

    def __call__(self, config: MirrorConfig) -> RemoteClients:
        """Return freshly opened clients."""
        ...

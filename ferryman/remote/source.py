"""GitHub REST v3 implementation of :class:`SourceClient`."""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx

from ferryman.errors import ConfigurationError

from ._http import decode, send
from .models import (
    SourceComment,
    SourceIssue,
    SourceLabel,
    SourceMilestone,
    SourceOrganization,
    SourcePullRequest,
    SourceRelease,
    SourceRepository,
)

if typ.TYPE_CHECKING:
    from ferryman.config import SourceSettings

_PAGE_SIZE = 100


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubSourceConfig:
    """Connection settings for the GitHub REST API."""

    token: str
    api_url: str = "https://api.github.com"
    timeout_s: float = 30.0
    user_agent: str = "ferryman/0.1"

    @classmethod
    def from_settings(cls, settings: SourceSettings) -> GitHubSourceConfig:
        """Build the client configuration from a tenant's source settings."""
        token = settings.token.strip()
        if not token:
            raise ConfigurationError.missing_field("source.token")
        return cls(token=token, api_url=settings.api_url.rstrip("/"))


class GitHubSourceClient:
    """Paginated read access to GitHub repositories and their metadata."""

    def __init__(
        self,
        config: GitHubSourceConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client, creating an HTTP client unless one is given."""
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            follow_redirects=True,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def _paginate[T](
        self,
        path: str,
        item_type: type[T],
        *,
        action: str,
        params: dict[str, str] | None = None,
    ) -> list[T]:
        """Follow ``Link: rel="next"`` headers and collect every page."""
        items: list[T] = []
        url: str | None = path
        query: dict[str, str] | None = {
            "per_page": str(_PAGE_SIZE),
            **(params or {}),
        }
        while url is not None:
            response = await send(
                self._client, "GET", url, action=action, params=query
            )
            items.extend(decode(response, list[item_type], action=action))
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string.
            query = None
        return items

    async def list_user_repositories(self) -> list[SourceRepository]:
        """Return repositories owned by the authenticated account."""
        return await self._paginate(
            "/user/repos",
            SourceRepository,
            action="list user repositories",
            params={"affiliation": "owner", "visibility": "all"},
        )

    async def list_starred_repositories(self) -> list[SourceRepository]:
        """Return starred repositories, flagged as such."""
        starred = await self._paginate(
            "/user/starred", SourceRepository, action="list starred repositories"
        )
        for repository in starred:
            repository.starred = True
        return starred

    async def list_organizations(self) -> list[SourceOrganization]:
        """Return organizations the account belongs to."""
        return await self._paginate(
            "/user/orgs", SourceOrganization, action="list organizations"
        )

    async def list_organization_repositories(
        self, organization: str
    ) -> list[SourceRepository]:
        """Return every repository of ``organization``."""
        return await self._paginate(
            f"/orgs/{organization}/repos",
            SourceRepository,
            action=f"list repositories of {organization}",
            params={"type": "all"},
        )

    async def list_releases(self, owner: str, name: str) -> list[SourceRelease]:
        """Return releases of a repository."""
        return await self._paginate(
            f"/repos/{owner}/{name}/releases",
            SourceRelease,
            action=f"list releases of {owner}/{name}",
        )

    async def list_issues(self, owner: str, name: str) -> list[SourceIssue]:
        """Return open and closed issues, oldest first, without pull requests."""
        issues = await self._paginate(
            f"/repos/{owner}/{name}/issues",
            SourceIssue,
            action=f"list issues of {owner}/{name}",
            params={"state": "all", "sort": "created", "direction": "asc"},
        )
        return [issue for issue in issues if not issue.is_pull_request]

    async def list_issue_comments(
        self, owner: str, name: str, number: int
    ) -> list[SourceComment]:
        """Return comments on one issue, oldest first."""
        return await self._paginate(
            f"/repos/{owner}/{name}/issues/{number}/comments",
            SourceComment,
            action=f"list comments of {owner}/{name}#{number}",
        )

    async def list_labels(self, owner: str, name: str) -> list[SourceLabel]:
        """Return labels defined on a repository."""
        return await self._paginate(
            f"/repos/{owner}/{name}/labels",
            SourceLabel,
            action=f"list labels of {owner}/{name}",
        )

    async def list_milestones(self, owner: str, name: str) -> list[SourceMilestone]:
        """Return open and closed milestones of a repository."""
        return await self._paginate(
            f"/repos/{owner}/{name}/milestones",
            SourceMilestone,
            action=f"list milestones of {owner}/{name}",
            params={"state": "all"},
        )

    async def list_pull_requests(
        self, owner: str, name: str
    ) -> list[SourcePullRequest]:
        """Return open and closed pull requests, oldest first."""
        return await self._paginate(
            f"/repos/{owner}/{name}/pulls",
            SourcePullRequest,
            action=f"list pull requests of {owner}/{name}",
            params={"state": "all", "sort": "created", "direction": "asc"},
        )

    async def download_asset(self, url: str) -> bytes:
        """Return the raw bytes of a release asset."""
        response = await send(
            self._client,
            "GET",
            url,
            action=f"download asset {url}",
            headers={"Accept": "application/octet-stream"},
        )
        return response.content

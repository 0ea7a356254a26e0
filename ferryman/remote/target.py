"""Gitea API v1 implementation of :class:`TargetClient`."""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx
import msgspec

from ferryman.errors import ConfigurationError, NotFoundError

from ._http import decode, send
from .models import (
    IssueDraft,
    MigrationRequest,
    ReleaseDraft,
    TargetIssue,
    TargetLabel,
    TargetMilestone,
    TargetOrganization,
    TargetRelease,
    TargetRepository,
)

if typ.TYPE_CHECKING:
    from ferryman.config import TargetSettings

_PAGE_SIZE = 50


@dataclasses.dataclass(frozen=True, slots=True)
class GiteaTargetConfig:
    """Connection settings for a Gitea server."""

    url: str
    token: str
    timeout_s: float = 120.0
    user_agent: str = "ferryman/0.1"

    @property
    def api_url(self) -> str:
        """Return the API v1 base URL."""
        return f"{self.url.rstrip('/')}/api/v1"

    @classmethod
    def from_settings(cls, settings: TargetSettings) -> GiteaTargetConfig:
        """Build the client configuration from a tenant's target settings."""
        if not settings.url.strip():
            raise ConfigurationError.missing_field("target.url")
        if not settings.token.strip():
            raise ConfigurationError.missing_field("target.token")
        return cls(url=settings.url.strip(), token=settings.token.strip())


class GiteaTargetClient:
    """Create, inspect and retire mirrors on a Gitea server."""

    def __init__(
        self,
        config: GiteaTargetConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client, creating an HTTP client unless one is given."""
        self._config = config
        self._owns_client = http_client is None
        # Migrations clone the whole repository before answering.
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            headers={
                "Authorization": f"token {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, *, action: str, body: object = None
    ) -> httpx.Response:
        if body is None:
            return await send(self._client, method, path, action=action)
        return await send(
            self._client,
            method,
            path,
            action=action,
            content=msgspec.json.encode(body),
            headers={"Content-Type": "application/json"},
        )

    async def _get_optional[T](
        self, path: str, type_: type[T], *, action: str
    ) -> T | None:
        try:
            response = await self._request("GET", path, action=action)
        except NotFoundError:
            return None
        return decode(response, type_, action=action)

    async def _list[T](
        self,
        path: str,
        item_type: type[T],
        *,
        action: str,
        params: dict[str, str | int] | None = None,
    ) -> list[T]:
        items: list[T] = []
        page = 1
        while True:
            response = await send(
                self._client,
                "GET",
                path,
                action=action,
                params={**(params or {}), "page": page, "limit": _PAGE_SIZE},
            )
            batch = decode(response, list[item_type], action=action)
            items.extend(batch)
            if len(batch) < _PAGE_SIZE:
                return items
            page += 1

    async def get_organization(self, name: str) -> TargetOrganization | None:
        """Return the organization, or None when it does not exist."""
        return await self._get_optional(
            f"/orgs/{name}", TargetOrganization, action=f"get organization {name}"
        )

    async def create_organization(
        self, name: str, *, description: str = "", visibility: str = "public"
    ) -> TargetOrganization:
        """Create an organization."""
        action = f"create organization {name}"
        response = await self._request(
            "POST",
            "/orgs",
            action=action,
            body={
                "username": name,
                "full_name": name,
                "description": description,
                "visibility": visibility,
            },
        )
        return decode(response, TargetOrganization, action=action)

    async def get_repository(self, owner: str, name: str) -> TargetRepository | None:
        """Return the repository, or None when it does not exist."""
        return await self._get_optional(
            f"/repos/{owner}/{name}",
            TargetRepository,
            action=f"get repository {owner}/{name}",
        )

    async def migrate_repository(self, request: MigrationRequest) -> TargetRepository:
        """Create a pull mirror of a remote repository."""
        action = f"migrate {request.repo_owner}/{request.repo_name}"
        response = await self._request(
            "POST", "/repos/migrate", action=action, body=request
        )
        return decode(response, TargetRepository, action=action)

    async def mirror_sync(self, owner: str, name: str) -> None:
        """Ask the target to pull the mirror now."""
        await self._request(
            "POST",
            f"/repos/{owner}/{name}/mirror-sync",
            action=f"mirror-sync {owner}/{name}",
        )

    async def archive_repository(self, owner: str, name: str) -> None:
        """Mark a repository archived."""
        await self._request(
            "PATCH",
            f"/repos/{owner}/{name}",
            action=f"archive {owner}/{name}",
            body={"archived": True},
        )

    async def delete_repository(self, owner: str, name: str) -> None:
        """Delete a repository."""
        await self._request(
            "DELETE", f"/repos/{owner}/{name}", action=f"delete {owner}/{name}"
        )

    async def list_labels(self, owner: str, name: str) -> list[TargetLabel]:
        """Return labels defined on a repository."""
        return await self._list(
            f"/repos/{owner}/{name}/labels",
            TargetLabel,
            action=f"list labels of {owner}/{name}",
        )

    async def create_label(
        self, owner: str, name: str, *, label: str, color: str, description: str = ""
    ) -> TargetLabel:
        """Create a label; ``color`` may be given with or without ``#``."""
        action = f"create label {label!r} on {owner}/{name}"
        response = await self._request(
            "POST",
            f"/repos/{owner}/{name}/labels",
            action=action,
            body={
                "name": label,
                "color": f"#{color.lstrip('#')}",
                "description": description,
            },
        )
        return decode(response, TargetLabel, action=action)

    async def list_milestones(self, owner: str, name: str) -> list[TargetMilestone]:
        """Return open and closed milestones of a repository."""
        return await self._list(
            f"/repos/{owner}/{name}/milestones",
            TargetMilestone,
            action=f"list milestones of {owner}/{name}",
            params={"state": "all"},
        )

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
        action = f"create milestone {title!r} on {owner}/{name}"
        body: dict[str, object] = {
            "title": title,
            "description": description,
            "state": state,
        }
        if due_on:
            body["due_on"] = due_on
        response = await self._request(
            "POST", f"/repos/{owner}/{name}/milestones", action=action, body=body
        )
        return decode(response, TargetMilestone, action=action)

    async def create_issue(
        self, owner: str, name: str, draft: IssueDraft
    ) -> TargetIssue:
        """Create an issue."""
        action = f"create issue {draft.title!r} on {owner}/{name}"
        response = await self._request(
            "POST", f"/repos/{owner}/{name}/issues", action=action, body=draft
        )
        return decode(response, TargetIssue, action=action)

    async def create_issue_comment(
        self, owner: str, name: str, number: int, body: str
    ) -> None:
        """Add a comment to an issue."""
        await self._request(
            "POST",
            f"/repos/{owner}/{name}/issues/{number}/comments",
            action=f"comment on {owner}/{name}#{number}",
            body={"body": body},
        )

    async def list_releases(self, owner: str, name: str) -> list[TargetRelease]:
        """Return releases of a repository."""
        return await self._list(
            f"/repos/{owner}/{name}/releases",
            TargetRelease,
            action=f"list releases of {owner}/{name}",
        )

    async def create_release(
        self, owner: str, name: str, draft: ReleaseDraft
    ) -> TargetRelease:
        """Create a release."""
        action = f"create release {draft.tag_name} on {owner}/{name}"
        response = await self._request(
            "POST", f"/repos/{owner}/{name}/releases", action=action, body=draft
        )
        return decode(response, TargetRelease, action=action)

    async def upload_release_asset(
        self, owner: str, name: str, release_id: int, *, filename: str, content: bytes
    ) -> None:
        """Attach an asset to a release as a multipart upload."""
        await send(
            self._client,
            "POST",
            f"/repos/{owner}/{name}/releases/{release_id}/assets",
            action=f"upload {filename} to {owner}/{name} release {release_id}",
            params={"name": filename},
            files={"attachment": (filename, content, "application/octet-stream")},
        )

"""Import source repositories and organizations into the store."""

from __future__ import annotations

import dataclasses
import fnmatch
import typing as typ

from ferryman.logging import get_logger, log_info
from ferryman.records import RepositoryDraft

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig
    from ferryman.records import (
        OrganizationInfo,
        OrganizationStore,
        RepositoryInfo,
        RepositoryStore,
    )
    from ferryman.remote import SourceClient, SourceRepository

logger = get_logger(__name__)


def _matches(full_name: str, patterns: tuple[str, ...]) -> bool:
    folded = full_name.casefold()
    return any(fnmatch.fnmatchcase(folded, pattern.casefold()) for pattern in patterns)


def _wanted(repository: SourceRepository, config: MirrorConfig) -> bool:
    source = config.source
    if repository.fork and not source.include_forks:
        return False
    if repository.private and not source.include_private:
        return False
    if repository.archived and not source.include_archived:
        return False
    filters = config.filters
    if filters.include and not _matches(repository.full_name, filters.include):
        return False
    return not _matches(repository.full_name, filters.exclude)


async def list_source_organizations(
    source: SourceClient, config: MirrorConfig
) -> list[str]:
    """Return the organization names discovery covers for ``config``."""
    if config.source.organizations:
        return list(config.source.organizations)
    return [organization.login for organization in await source.list_organizations()]


async def collect_source_repositories(
    source: SourceClient, config: MirrorConfig
) -> list[SourceRepository]:
    """Return every source repository ``config`` mirrors.

    Owned repositories, organization repositories and (when enabled) starred
    repositories are merged by case-insensitive ``full_name``; a repository
    that is both owned and starred keeps its starred flag. Inclusion flags
    and glob filters are applied afterwards, so a repository that no longer
    matches them counts as gone for orphan detection.

    Raises
    ------
    RemoteError
        If any listing call fails. Callers deciding what is orphaned rely on
        a failed listing never looking like an empty one.

    """
    merged: dict[str, SourceRepository] = {}

    def add(repositories: list[SourceRepository]) -> None:
        for repository in repositories:
            key = repository.full_name.casefold()
            current = merged.get(key)
            if current is None or (repository.starred and not current.starred):
                merged[key] = repository

    add(await source.list_user_repositories())
    for organization in await list_source_organizations(source, config):
        add(await source.list_organization_repositories(organization))
    if config.source.include_starred:
        add(await source.list_starred_repositories())

    return [
        repository
        for _key, repository in sorted(merged.items())
        if _wanted(repository, config)
    ]


def draft_from_source(repository: SourceRepository) -> RepositoryDraft:
    """Build the store draft for a source repository."""
    return RepositoryDraft(
        name=repository.name,
        full_name=repository.full_name,
        owner=repository.owner.login,
        clone_url=repository.clone_url,
        organization=repository.organization,
        url=repository.html_url,
        description=repository.description,
        default_branch=repository.default_branch,
        is_private=repository.private,
        is_fork=repository.fork,
        is_starred=repository.starred,
        is_archived=repository.archived,
    )


@dataclasses.dataclass(frozen=True, slots=True)
class DiscoveryResult:
    """Rows added by one discovery pass."""

    seen: int
    repositories: tuple[RepositoryInfo, ...] = ()
    organizations: tuple[OrganizationInfo, ...] = ()


class RepositoryDiscovery:
    """Insert newly seen source repositories as ``discovered``."""

    def __init__(
        self, repositories: RepositoryStore, organizations: OrganizationStore
    ) -> None:
        """Bind discovery to the repository and organization stores."""
        self._repositories = repositories
        self._organizations = organizations

    async def discover(
        self, config: MirrorConfig, source: SourceClient
    ) -> DiscoveryResult:
        """Import new repositories and organizations for ``config``."""
        found = await collect_source_repositories(source, config)
        added = await self._repositories.add_discovered(
            config.id, [draft_from_source(repository) for repository in found]
        )
        organization_names = sorted(
            {
                repository.organization
                for repository in found
                if repository.organization
            }
        )
        organizations = await self._organizations.add_discovered(
            config.id, organization_names
        )
        log_info(
            logger,
            "[discovery] config_id=%s seen=%d new_repositories=%d "
            "new_organizations=%d",
            config.id,
            len(found),
            len(added),
            len(organizations),
        )
        return DiscoveryResult(
            seen=len(found),
            repositories=tuple(added),
            organizations=tuple(organizations),
        )

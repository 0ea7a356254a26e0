"""API clients for the source and target hosts.

Usage
-----
Open both clients for a configuration and close them when done::

    from ferryman.remote import default_client_factory

    clients = default_client_factory(config)
    try:
        repos = await clients.source.list_user_repositories()
    finally:
        await clients.aclose()

Tests substitute any callable matching :class:`RemoteClientFactory`.
"""

from __future__ import annotations

import typing as typ

from ._http import classify_response
from .models import (
    IssueDraft,
    MigrationRequest,
    ReleaseDraft,
    SourceAsset,
    SourceComment,
    SourceIssue,
    SourceLabel,
    SourceMilestone,
    SourceOrganization,
    SourcePullRequest,
    SourceRelease,
    SourceRepository,
    SourceUser,
    TargetIssue,
    TargetLabel,
    TargetMilestone,
    TargetOrganization,
    TargetOwner,
    TargetRelease,
    TargetRepository,
)
from .protocols import RemoteClientFactory, RemoteClients, SourceClient, TargetClient
from .source import GitHubSourceClient, GitHubSourceConfig
from .target import GiteaTargetClient, GiteaTargetConfig

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig


def default_client_factory(config: MirrorConfig) -> RemoteClients:
    """Open a GitHub source client and a Gitea target client for ``config``.

    Raises
    ------
    ConfigurationError
        If either side lacks credentials.

    """
    target_config = GiteaTargetConfig.from_settings(config.target)
    source = GitHubSourceClient(GitHubSourceConfig.from_settings(config.source))
    return RemoteClients(source=source, target=GiteaTargetClient(target_config))


__all__ = [
    "GitHubSourceClient",
    "GitHubSourceConfig",
    "GiteaTargetClient",
    "GiteaTargetConfig",
    "IssueDraft",
    "MigrationRequest",
    "ReleaseDraft",
    "RemoteClientFactory",
    "RemoteClients",
    "SourceAsset",
    "SourceClient",
    "SourceComment",
    "SourceIssue",
    "SourceLabel",
    "SourceMilestone",
    "SourceOrganization",
    "SourcePullRequest",
    "SourceRelease",
    "SourceRepository",
    "SourceUser",
    "TargetClient",
    "TargetIssue",
    "TargetLabel",
    "TargetMilestone",
    "TargetOrganization",
    "TargetOwner",
    "TargetRelease",
    "TargetRepository",
    "classify_response",
    "default_client_factory",
]

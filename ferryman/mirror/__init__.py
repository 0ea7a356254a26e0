"""Repository and organization mirror state machines.

Usage
-----
Transfer a discovered repository, then keep it in sync::

    mirror = RepositoryMirror(repository_store, clients, publisher=publisher)
    repository = await mirror.transfer(repository, config)
    repository = await mirror.sync(repository, config)

"""

from __future__ import annotations

from ferryman.records import MirrorStatus

from .metadata import (
    ComponentOutcome,
    MetadataComponent,
    MetadataReplicator,
    MetadataReport,
    comment_body,
    issue_body,
    pull_request_body,
)
from .organizations import OrganizationMirror, OrganizationMirrorResult
from .owners import OwnerProvisioner, OwnerResolution
from .service import RepositoryMirror, clone_address, mirror_interval

__all__ = [
    "ComponentOutcome",
    "MetadataComponent",
    "MetadataReplicator",
    "MetadataReport",
    "MirrorStatus",
    "OrganizationMirror",
    "OrganizationMirrorResult",
    "OwnerProvisioner",
    "OwnerResolution",
    "RepositoryMirror",
    "clone_address",
    "comment_body",
    "issue_body",
    "mirror_interval",
    "pull_request_body",
]

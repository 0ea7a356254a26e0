"""Typed payloads exchanged with the source and target APIs.

Only the fields the engine reads are declared; everything else in a response
is ignored when decoding. Optional fields default so partial payloads (an
issue without a body, a comment without a user) still decode.
"""

from __future__ import annotations

import msgspec


class SourceUser(msgspec.Struct, kw_only=True):
    """A source account reference."""

    login: str = "ghost"
    type: str = "User"


class SourceRepository(msgspec.Struct, kw_only=True):
    """A repository as listed by the source API."""

    name: str
    full_name: str
    owner: SourceUser
    clone_url: str
    html_url: str = ""
    description: str | None = None
    default_branch: str = "main"
    private: bool = False
    fork: bool = False
    archived: bool = False
    # Filled in by discovery; the API does not send it.
    starred: bool = False

    @property
    def organization(self) -> str | None:
        """Return the owning organization, or None for personal repositories."""
        if self.owner.type == "Organization":
            return self.owner.login
        return None


class SourceOrganization(msgspec.Struct, kw_only=True):
    """An organization the source account belongs to."""

    login: str
    description: str | None = None


class SourceLabel(msgspec.Struct, kw_only=True):
    """An issue label."""

    name: str
    color: str = "ededed"
    description: str | None = None


class SourceMilestone(msgspec.Struct, kw_only=True):
    """A milestone."""

    number: int
    title: str
    description: str | None = None
    state: str = "open"
    due_on: str | None = None


class SourceIssue(msgspec.Struct, kw_only=True):
    """An issue; pull requests also arrive on this endpoint."""

    number: int
    title: str
    body: str | None = None
    state: str = "open"
    user: SourceUser | None = None
    assignees: list[SourceUser] = msgspec.field(default_factory=list)
    labels: list[SourceLabel] = msgspec.field(default_factory=list)
    milestone: SourceMilestone | None = None
    created_at: str | None = None
    pull_request: dict[str, object] | None = None

    @property
    def is_pull_request(self) -> bool:
        """Return True when the entry is a pull request."""
        return self.pull_request is not None


class SourceComment(msgspec.Struct, kw_only=True):
    """An issue comment."""

    id: int
    body: str | None = None
    user: SourceUser | None = None
    created_at: str | None = None


class SourceBranchRef(msgspec.Struct, kw_only=True):
    """The head or base of a pull request."""

    ref: str = ""
    label: str = ""


class SourcePullRequest(msgspec.Struct, kw_only=True):
    """A pull request."""

    number: int
    title: str
    body: str | None = None
    state: str = "open"
    user: SourceUser | None = None
    html_url: str = ""
    merged_at: str | None = None
    created_at: str | None = None
    head: SourceBranchRef = msgspec.field(default_factory=SourceBranchRef)
    base: SourceBranchRef = msgspec.field(default_factory=SourceBranchRef)
    labels: list[SourceLabel] = msgspec.field(default_factory=list)


class SourceAsset(msgspec.Struct, kw_only=True):
    """A release asset."""

    name: str
    browser_download_url: str
    size: int = 0
    content_type: str = "application/octet-stream"


class SourceRelease(msgspec.Struct, kw_only=True):
    """A release."""

    tag_name: str
    name: str | None = None
    body: str | None = None
    target_commitish: str = ""
    draft: bool = False
    prerelease: bool = False
    assets: list[SourceAsset] = msgspec.field(default_factory=list)


class TargetUser(msgspec.Struct, kw_only=True):
    """The account the target token belongs to."""

    id: int
    login: str


class TargetOrganization(msgspec.Struct, kw_only=True):
    """An organization on the target."""

    id: int
    username: str
    visibility: str = "public"


class TargetOwner(msgspec.Struct, kw_only=True):
    """Owner reference inside a target repository payload."""

    login: str = ""
    username: str = ""

    @property
    def name(self) -> str:
        """Return whichever name field the server populated."""
        return self.login or self.username


class TargetRepository(msgspec.Struct, kw_only=True):
    """A repository on the target."""

    id: int
    name: str
    full_name: str
    owner: TargetOwner = msgspec.field(default_factory=TargetOwner)
    mirror: bool = False
    archived: bool = False
    private: bool = False


class TargetLabel(msgspec.Struct, kw_only=True):
    """A label on the target."""

    id: int
    name: str
    color: str = ""


class TargetMilestone(msgspec.Struct, kw_only=True):
    """A milestone on the target."""

    id: int
    title: str


class TargetIssue(msgspec.Struct, kw_only=True):
    """An issue created on the target."""

    id: int
    number: int
    title: str = ""


class TargetRelease(msgspec.Struct, kw_only=True):
    """A release on the target."""

    id: int
    tag_name: str


class MigrationRequest(msgspec.Struct, kw_only=True):
    """Body of the target's repository migration call."""

    clone_addr: str
    repo_name: str
    repo_owner: str
    mirror: bool = True
    mirror_interval: str = "8h"
    private: bool = False
    description: str = ""
    wiki: bool = True
    lfs: bool = False
    service: str = "git"


class IssueDraft(msgspec.Struct, kw_only=True, omit_defaults=True):
    """Body of the target's create-issue call."""

    title: str
    body: str = ""
    closed: bool = False
    labels: list[int] = msgspec.field(default_factory=list)
    milestone: int | None = None


class ReleaseDraft(msgspec.Struct, kw_only=True, omit_defaults=True):
    """Body of the target's create-release call."""

    tag_name: str
    target_commitish: str = ""
    name: str = ""
    body: str = ""
    draft: bool = False
    prerelease: bool = False

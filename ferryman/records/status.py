"""Mirror lifecycle statuses and the transitions allowed between them."""

from __future__ import annotations

import enum

from ferryman.errors import InvalidTransitionError


class MirrorStatus(enum.StrEnum):
    """Lifecycle of a repository or organization on the target."""

    DISCOVERED = "discovered"
    TRANSFERRING = "transferring"
    TRANSFERRED = "transferred"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    ARCHIVED = "archived"


_S = MirrorStatus

# Nothing returns to DISCOVERED; ARCHIVED is terminal. Self-transitions on the
# in-flight states let an interrupted operation be resumed.
REPOSITORY_TRANSITIONS: dict[MirrorStatus, frozenset[MirrorStatus]] = {
    _S.DISCOVERED: frozenset({_S.TRANSFERRING, _S.TRANSFERRED, _S.FAILED, _S.ARCHIVED}),
    _S.TRANSFERRING: frozenset(
        {_S.TRANSFERRING, _S.TRANSFERRED, _S.FAILED, _S.ARCHIVED}
    ),
    _S.TRANSFERRED: frozenset(
        {_S.TRANSFERRED, _S.TRANSFERRING, _S.SYNCING, _S.FAILED, _S.ARCHIVED}
    ),
    _S.SYNCING: frozenset({_S.SYNCING, _S.SYNCED, _S.FAILED, _S.ARCHIVED}),
    _S.SYNCED: frozenset({_S.SYNCED, _S.SYNCING, _S.FAILED, _S.ARCHIVED}),
    _S.FAILED: frozenset(
        {_S.FAILED, _S.TRANSFERRING, _S.TRANSFERRED, _S.SYNCING, _S.ARCHIVED}
    ),
    _S.ARCHIVED: frozenset(),
}

ORGANIZATION_TRANSITIONS: dict[MirrorStatus, frozenset[MirrorStatus]] = {
    _S.DISCOVERED: frozenset({_S.TRANSFERRING, _S.FAILED}),
    _S.TRANSFERRING: frozenset({_S.TRANSFERRING, _S.TRANSFERRED, _S.FAILED}),
    _S.TRANSFERRED: frozenset({_S.TRANSFERRING, _S.FAILED}),
    _S.FAILED: frozenset({_S.TRANSFERRING, _S.FAILED}),
    _S.SYNCING: frozenset(),
    _S.SYNCED: frozenset(),
    _S.ARCHIVED: frozenset(),
}

# Statuses that carry a confirmed target location.
LOCATED_STATUSES = frozenset({_S.TRANSFERRED, _S.SYNCED})


def can_transition(
    current: MirrorStatus,
    requested: MirrorStatus,
    table: dict[MirrorStatus, frozenset[MirrorStatus]] = REPOSITORY_TRANSITIONS,
) -> bool:
    """Return whether ``current`` may move to ``requested`` under ``table``."""
    return requested in table[current]


def check_transition(
    subject: str,
    current: MirrorStatus,
    requested: MirrorStatus,
    table: dict[MirrorStatus, frozenset[MirrorStatus]] = REPOSITORY_TRANSITIONS,
) -> None:
    """Raise :class:`InvalidTransitionError` unless the move is allowed."""
    if not can_transition(current, requested, table):
        raise InvalidTransitionError(subject, current.value, requested.value)

"""Helpers for ``owner/name`` repository locations.

A location identifies a repository on either host. Locations use ``/`` as a
separator but are not paths, so they are built and split here rather than
with :mod:`pathlib`.
"""

from __future__ import annotations


def join_location(owner: str, name: str) -> str:
    """Build an ``owner/name`` location.

    Examples
    --------
    >>> join_location("mirrors", "alpha")
    'mirrors/alpha'

    """
    return f"{owner}/{name}"


def split_location(location: str) -> tuple[str, str]:
    """Split an ``owner/name`` location into its parts.

    Raises
    ------
    ValueError
        If ``location`` does not contain exactly one separator with text on
        both sides.

    Examples
    --------
    >>> split_location("mirrors/alpha")
    ('mirrors', 'alpha')

    """
    owner, sep, name = location.partition("/")
    if not sep or not owner or not name or "/" in name:
        msg = f"Invalid repository location: expected 'owner/name', got {location!r}"
        raise ValueError(msg)
    return owner, name


def same_location(left: str, right: str) -> bool:
    """Compare two locations the way both hosts do: case-insensitively."""
    return left.casefold() == right.casefold()

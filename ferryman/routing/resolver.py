"""Decide which target owner a repository or organization is mirrored into.

Resolution is pure: no I/O and no side effects. Only this module inspects the
configured :data:`~ferryman.config.MirrorStrategy`; every other component
works with the owner name it returns.
"""

from __future__ import annotations

import typing as typ

from ferryman.config import FlatUser, Mixed, Preserve, SingleOrg
from ferryman.errors import ConfigurationError

if typ.TYPE_CHECKING:
    from ferryman.config import MirrorConfig
    from ferryman.records import OrganizationInfo, RepositoryInfo


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ConfigurationError.missing_field(field)
    return value.strip()


def _strategy_default(repository: RepositoryInfo, config: MirrorConfig) -> str:
    match config.strategy:
        case Preserve():
            if repository.organization:
                return repository.organization
            return _require(config.target.default_owner, "target.default_owner")
        case SingleOrg(name=name):
            return _require(name, "strategy.name")
        case FlatUser():
            return _require(config.target.default_owner, "target.default_owner")
        case Mixed(personal_org=personal_org):
            if repository.organization:
                return repository.organization
            return _require(personal_org, "strategy.personal_org")
    msg = f"Unsupported mirror strategy: {config.strategy!r}"
    raise ConfigurationError(msg)


def resolve_destination(
    repository: RepositoryInfo,
    config: MirrorConfig,
    *,
    organization_override: str | None = None,
) -> str:
    """Return the target owner for ``repository``.

    The first matching rule wins:

    1. starred repositories go to the configured starred organization;
    2. the repository's own destination override;
    3. ``organization_override``, the override of its source organization;
    4. the strategy default.

    Parameters
    ----------
    repository : RepositoryInfo
        Repository snapshot to place.
    config : MirrorConfig
        Tenant configuration supplying the strategy and target defaults.
    organization_override : str, optional
        Destination override configured on the repository's source
        organization, if any.

    Returns
    -------
    str
        Owner name on the target.

    Raises
    ------
    ConfigurationError
        If the matching rule needs a configuration field that is empty.

    Examples
    --------
    >>> from ferryman.config import MirrorConfig, SingleOrg
    >>> from ferryman.records import RepositoryInfo
    >>> repo = RepositoryInfo(
    ...     id="r1", config_id="c1", name="beta", full_name="team/beta",
    ...     owner="team", clone_url="https://github.com/team/beta.git",
    ...     organization="team",
    ... )
    >>> resolve_destination(repo, MirrorConfig(id="c1", strategy=SingleOrg("mirrors")))
    'mirrors'

    """
    if repository.is_starred:
        return _require(config.target.starred_org, "target.starred_org")
    if repository.destination_override and repository.destination_override.strip():
        return repository.destination_override.strip()
    if organization_override and organization_override.strip():
        return organization_override.strip()
    return _strategy_default(repository, config)


def resolve_organization_destination(
    organization: OrganizationInfo, config: MirrorConfig
) -> str:
    """Return the target owner that receives a whole source organization."""
    if organization.destination_override and organization.destination_override.strip():
        return organization.destination_override.strip()
    match config.strategy:
        case Preserve() | Mixed():
            return organization.name
        case SingleOrg(name=name):
            return _require(name, "strategy.name")
        case FlatUser():
            return _require(config.target.default_owner, "target.default_owner")
    msg = f"Unsupported mirror strategy: {config.strategy!r}"
    raise ConfigurationError(msg)

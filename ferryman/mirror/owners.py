"""Make sure a target owner exists before repositories are created under it."""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from ferryman.batch import retry_async
from ferryman.errors import ConflictError, PermissionDeniedError
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.config import MirrorConfig
    from ferryman.remote import TargetClient, TargetOrganization

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class OwnerResolution:
    """The owner repositories will actually be created under."""

    requested: str
    owner: str
    note: str | None = None

    @property
    def fell_back(self) -> bool:
        """Return True when the requested owner was replaced."""
        return self.owner != self.requested


class OwnerProvisioner:
    """Get or create target organizations, once per owner.

    Concurrent callers asking for the same owner share one lookup. A create
    rejected as a duplicate (another writer won the race, or the server
    reports a duplicate key) is followed by re-queries on the configured
    organization retry schedule. A permission failure falls back to the
    configured default owner.
    """

    def __init__(
        self,
        target: TargetClient,
        *,
        publisher: MirrorEventPublisher | None = None,
        sleep: cabc.Callable[[float], cabc.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Bind the provisioner to a target client."""
        self._target = target
        self._publisher = publisher or MirrorEventPublisher()
        self._sleep = sleep
        self._resolved: dict[tuple[str, str], OwnerResolution] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def ensure(self, owner: str, config: MirrorConfig) -> OwnerResolution:
        """Return where repositories meant for ``owner`` should be created.

        Raises
        ------
        ConflictError
            If the organization is reported as existing but never becomes
            visible within the retry schedule.
        PermissionDeniedError
            If creation is denied and no default owner is configured.

        """
        default_owner = config.target.default_owner.strip()
        if default_owner and owner.casefold() == default_owner.casefold():
            return OwnerResolution(requested=owner, owner=default_owner)

        key = (config.id, owner.casefold())
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._resolved.get(key)
            if cached is not None:
                return cached
            resolution = await self._provision(owner, config)
            self._resolved[key] = resolution
            return resolution

    async def _provision(self, owner: str, config: MirrorConfig) -> OwnerResolution:
        try:
            await self._get_or_create(owner, config)
        except PermissionDeniedError as exc:
            default_owner = config.target.default_owner.strip()
            if not default_owner:
                raise
            note = (
                f"Organization {owner} could not be created ({exc}); "
                f"mirrored under {default_owner} instead"
            )
            self._publisher.emit(
                MirrorEventType.ORGANIZATION_FALLBACK,
                owner,
                note,
                fallback=default_owner,
            )
            return OwnerResolution(requested=owner, owner=default_owner, note=note)
        return OwnerResolution(requested=owner, owner=owner)

    async def _get_or_create(self, owner: str, config: MirrorConfig) -> None:
        if await self._lookup(owner, config) is not None:
            log_debug(logger, "[owners] organization=%s exists", owner)
            return
        visibility = "private" if config.target.private_by_default else "public"
        try:
            await retry_async(
                lambda: self._target.create_organization(owner, visibility=visibility),
                config.concurrency.retry_policy(),
            )
        except ConflictError:
            await self._await_conflicting(owner, config)
            return
        log_info(logger, "[owners] organization=%s created", owner)

    async def _lookup(
        self, owner: str, config: MirrorConfig
    ) -> TargetOrganization | None:
        return await retry_async(
            lambda: self._target.get_organization(owner),
            config.concurrency.retry_policy(),
        )

    async def _await_conflicting(self, owner: str, config: MirrorConfig) -> None:
        policy = config.organization_retry.retry_policy()
        attempts = config.organization_retry.attempts
        for attempt in range(1, attempts + 1):
            await self._sleep(policy.delay_for(attempt))
            if await self._lookup(owner, config) is not None:
                log_info(
                    logger,
                    "[owners] organization=%s visible after conflict attempt=%d",
                    owner,
                    attempt,
                )
                return
        raise ConflictError.organization_unresolved(owner, attempts)

"""Mirror every repository of a source organization in one batch."""

from __future__ import annotations

import dataclasses
import typing as typ

from ferryman.batch import NO_RETRY, BatchOptions
from ferryman.errors import MirrorOperationError
from ferryman.events import MirrorEventPublisher, MirrorEventType
from ferryman.jobs import JobType
from ferryman.logging import get_logger, log_exception, log_info
from ferryman.records import MirrorStatus, can_transition
from ferryman.routing import resolve_organization_destination

if typ.TYPE_CHECKING:
    from ferryman.batch import BatchResult
    from ferryman.config import MirrorConfig
    from ferryman.jobs import ResilientBatchRunner
    from ferryman.records import (
        OrganizationInfo,
        OrganizationStore,
        RepositoryInfo,
        RepositoryStore,
    )

    from .service import RepositoryMirror

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class OrganizationMirrorResult:
    """Outcome of mirroring one organization."""

    organization: OrganizationInfo
    owner: str
    batch_id: str | None
    result: BatchResult | None
    fell_back: bool = False


class OrganizationMirror:
    """Establish a target organization and mirror its repositories into it."""

    def __init__(
        self,
        organizations: OrganizationStore,
        repositories: RepositoryStore,
        mirror: RepositoryMirror,
        runner: ResilientBatchRunner,
        *,
        publisher: MirrorEventPublisher | None = None,
    ) -> None:
        """Wire the organization mirror to its collaborators."""
        self._organizations = organizations
        self._repositories = repositories
        self._mirror = mirror
        self._runner = runner
        self._publisher = publisher or MirrorEventPublisher()

    async def mirror(
        self, organization: OrganizationInfo, config: MirrorConfig
    ) -> OrganizationMirrorResult:
        """Mirror ``organization`` and every repository discovered under it.

        Individual repository failures are recorded on the repositories and
        do not fail the organization.

        Raises
        ------
        MirrorOperationError
            If the target organization could not be established; the
            organization is now ``failed``.

        """
        await self._organizations.transition(
            organization.id, MirrorStatus.TRANSFERRING
        )
        try:
            requested = resolve_organization_destination(organization, config)
            resolution = await self._mirror.owners.ensure(requested, config)
        except Exception as exc:
            log_exception(
                logger, f"[organization] {organization.name} not established", exc
            )
            await self._organizations.transition(
                organization.id, MirrorStatus.FAILED, error_message=str(exc)
            )
            self._publisher.emit(
                MirrorEventType.ITEM_FAILED,
                organization.name,
                str(exc),
                kind="organization",
            )
            raise MirrorOperationError(organization.name, exc) from exc

        repositories = await self._repositories.list_for_config(
            config.id, organization=organization.name
        )
        pending = [
            repository
            for repository in repositories
            if can_transition(repository.status, MirrorStatus.TRANSFERRING)
        ]

        async def transfer(repository: RepositoryInfo) -> RepositoryInfo:
            return await self._mirror.transfer(
                repository, config, organization_override=resolution.owner
            )

        batch_id: str | None = None
        result: BatchResult | None = None
        if pending:
            run = await self._runner.run(
                job_type=JobType.MIRROR_REPOSITORIES,
                config_id=config.id,
                items=pending,
                operation=transfer,
                item_id=lambda repository: repository.id,
                options=BatchOptions(
                    concurrency_limit=config.concurrency.repositories,
                    retry=NO_RETRY,
                ),
            )
            batch_id, result = run.batch_id, run.result

        info = await self._organizations.transition(
            organization.id,
            MirrorStatus.TRANSFERRED,
            repository_count=len(repositories),
            error_message=resolution.note,
        )
        log_info(
            logger,
            "[organization] name=%s owner=%s repositories=%d pending=%d",
            organization.name,
            resolution.owner,
            len(repositories),
            len(pending),
        )
        return OrganizationMirrorResult(
            organization=info,
            owner=resolution.owner,
            batch_id=batch_id,
            result=result,
            fell_back=resolution.fell_back,
        )

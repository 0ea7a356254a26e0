"""Hand repository batches to the mirror state machine under the job ledger."""

from __future__ import annotations

import contextlib
import typing as typ

from ferryman.batch import NO_RETRY, BatchOptions
from ferryman.errors import LedgerCorruptionError, RecordNotFoundError
from ferryman.events import MirrorEventPublisher
from ferryman.jobs import JobType
from ferryman.logging import get_logger, log_warning
from ferryman.mirror import OrganizationMirror, RepositoryMirror

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from ferryman.config import MirrorConfig
    from ferryman.jobs import JobSnapshot, ResilientBatchResult, ResilientBatchRunner
    from ferryman.mirror import OrganizationMirrorResult
    from ferryman.records import (
        ConfigStore,
        OrganizationInfo,
        OrganizationStore,
        RepositoryInfo,
        RepositoryStore,
    )
    from ferryman.remote import RemoteClientFactory

logger = get_logger(__name__)


class MirrorDispatcher:
    """Open clients for a configuration and run ledger-backed mirror batches.

    Used by the scheduler for each cycle, by the dramatiq actors, and by
    recovery as the resume handler for both repository job types.
    """

    def __init__(
        self,
        *,
        configs: ConfigStore,
        repositories: RepositoryStore,
        organizations: OrganizationStore,
        runner: ResilientBatchRunner,
        client_factory: RemoteClientFactory,
        publisher: MirrorEventPublisher | None = None,
    ) -> None:
        """Wire the dispatcher to stores, the batch runner and a client factory."""
        self._configs = configs
        self._repositories = repositories
        self._organizations = organizations
        self._runner = runner
        self._client_factory = client_factory
        self._publisher = publisher or MirrorEventPublisher()

    @contextlib.asynccontextmanager
    async def _mirror_for(
        self, config: MirrorConfig
    ) -> cabc.AsyncIterator[RepositoryMirror]:
        clients = self._client_factory(config)
        try:
            yield RepositoryMirror(
                self._repositories, clients, publisher=self._publisher
            )
        finally:
            await clients.aclose()

    async def transfer_repositories(
        self,
        config: MirrorConfig,
        repositories: cabc.Sequence[RepositoryInfo],
        *,
        batch_id: str | None = None,
    ) -> ResilientBatchResult:
        """Transfer ``repositories`` as one ledger batch."""
        overrides = await self._organizations.destination_overrides(config.id)
        async with self._mirror_for(config) as mirror:

            async def transfer(repository: RepositoryInfo) -> RepositoryInfo:
                return await mirror.transfer(
                    repository,
                    config,
                    organization_override=_override_for(repository, overrides),
                )

            return await self._run(
                JobType.MIRROR_REPOSITORIES, config, repositories, transfer, batch_id
            )

    async def sync_repositories(
        self,
        config: MirrorConfig,
        repositories: cabc.Sequence[RepositoryInfo],
        *,
        batch_id: str | None = None,
    ) -> ResilientBatchResult:
        """Sync ``repositories`` as one ledger batch."""
        overrides = await self._organizations.destination_overrides(config.id)
        async with self._mirror_for(config) as mirror:

            async def sync(repository: RepositoryInfo) -> RepositoryInfo:
                return await mirror.sync(
                    repository,
                    config,
                    organization_override=_override_for(repository, overrides),
                )

            return await self._run(
                JobType.SYNC_REPOSITORIES, config, repositories, sync, batch_id
            )

    async def mirror_organization(
        self, config: MirrorConfig, organization: OrganizationInfo
    ) -> OrganizationMirrorResult:
        """Mirror a whole source organization."""
        async with self._mirror_for(config) as mirror:
            organizations = OrganizationMirror(
                self._organizations,
                self._repositories,
                mirror,
                self._runner,
                publisher=self._publisher,
            )
            return await organizations.mirror(organization, config)

    async def resume(self, job: JobSnapshot, remaining: list[str]) -> None:
        """Continue an interrupted batch with its ``remaining`` item ids.

        Ids whose repository row has since been deleted are recorded as
        failed items so the entry can still close.

        Raises
        ------
        LedgerCorruptionError
            If the entry has no configuration or it no longer exists.

        """
        if job.config_id is None:
            raise LedgerCorruptionError(job.id, "entry has no configuration id")
        try:
            snapshot = await self._configs.get(job.config_id)
        except RecordNotFoundError as exc:
            raise LedgerCorruptionError(job.id, str(exc)) from exc

        repositories = await self._repositories.get_many(remaining)
        found = {repository.id for repository in repositories}
        for missing in (item for item in remaining if item not in found):
            log_warning(
                logger,
                "[dispatch] batch_id=%s repository_id=%s no longer exists",
                job.id,
                missing,
            )
            await self._runner.ledger.record_item(job.id, missing, succeeded=False)
        if not repositories:
            await self._runner.ledger.finish(job.id, "no remaining repositories")
            return

        if JobType(job.job_type) is JobType.SYNC_REPOSITORIES:
            await self.sync_repositories(
                snapshot.config, repositories, batch_id=job.id
            )
        else:
            await self.transfer_repositories(
                snapshot.config, repositories, batch_id=job.id
            )

    async def _run(
        self,
        job_type: JobType,
        config: MirrorConfig,
        repositories: cabc.Sequence[RepositoryInfo],
        operation: cabc.Callable[[RepositoryInfo], cabc.Awaitable[RepositoryInfo]],
        batch_id: str | None,
    ) -> ResilientBatchResult:
        return await self._runner.run(
            job_type=job_type,
            config_id=config.id,
            items=repositories,
            operation=operation,
            item_id=lambda repository: repository.id,
            options=BatchOptions(
                concurrency_limit=max(config.concurrency.repositories, 1),
                # The state machine retries remote calls itself.
                retry=NO_RETRY,
            ),
            batch_id=batch_id,
        )


def _override_for(
    repository: RepositoryInfo, overrides: cabc.Mapping[str, str]
) -> str | None:
    if repository.organization is None:
        return None
    return overrides.get(repository.organization)

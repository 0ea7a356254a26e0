"""Persistence models for mirror configurations, targets and job ledger entries."""

from __future__ import annotations

import datetime as dt
import typing as typ
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ferryman.common.time import utcnow

from .status import MirrorStatus

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base for every ferryman table."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware DateTime that reads back as UTC on every backend."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Reject naive datetimes and store aware ones in UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "ferryman only persists timezone-aware datetimes"
            raise ValueError(msg)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Attach UTC to values SQLite hands back without tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class ConfigurationRecord(Base):
    """One tenant's mirror configuration and its run bookkeeping.

    ``settings`` holds the JSON form of :class:`ferryman.config.MirrorConfig`
    (without its id). The run timestamps live in their own columns because
    the engine updates them while the settings stay immutable.
    """

    __tablename__ = "mirror_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), default="default")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    settings: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    schedule_last_run: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    schedule_next_run: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    cleanup_last_run: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    cleanup_next_run: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class RepositoryRecord(Base):
    """A source repository and its mirror state on the target."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("config_id", "full_name", name="uq_repositories_full_name"),
        Index("ix_repositories_config_status", "config_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("mirror_configs.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(512))
    owner: Mapped[str] = mapped_column(String(255))
    organization: Mapped[str | None] = mapped_column(String(255), default=None)
    clone_url: Mapped[str] = mapped_column(String(1024))
    url: Mapped[str] = mapped_column(String(1024), default="")
    description: Mapped[str | None] = mapped_column(Text(), default=None)
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    is_fork: Mapped[bool] = mapped_column(Boolean, default=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    has_lfs: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(
        String(32), default=MirrorStatus.DISCOVERED.value
    )
    mirrored_location: Mapped[str] = mapped_column(String(512), default="")
    destination_override: Mapped[str | None] = mapped_column(
        String(255), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    metadata_state: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    last_mirrored_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class OrganizationRecord(Base):
    """A source organization and its mirror state on the target."""

    __tablename__ = "organizations"
    __table_args__ = (
        UniqueConstraint("config_id", "name", name="uq_organizations_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("mirror_configs.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    destination_override: Mapped[str | None] = mapped_column(
        String(255), default=None
    )
    status: Mapped[str] = mapped_column(
        String(32), default=MirrorStatus.DISCOVERED.value
    )
    repository_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    last_mirrored_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class MirrorJobRecord(Base):
    """Ledger entry for one batch so an interrupted run can be resumed."""

    __tablename__ = "mirror_jobs"
    __table_args__ = (Index("ix_mirror_jobs_in_progress", "in_progress"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    config_id: Mapped[str | None] = mapped_column(String(36), default=None)
    job_type: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), default="running")
    item_ids: Mapped[list[str] | None] = mapped_column(JSON, default=list)
    completed_item_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    failed_item_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    completed_items: Mapped[int] = mapped_column(Integer, default=0)
    in_progress: Mapped[bool] = mapped_column(Boolean, default=True)
    message: Mapped[str | None] = mapped_column(Text(), default=None)
    started_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_checkpoint: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


async def init_storage(engine: AsyncEngine) -> None:
    """Create every ferryman table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

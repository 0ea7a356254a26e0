"""Structured lifecycle events for mirror operations.

Every event is written to femtologging as a ``[event.type] key=value`` line
and then handed to any subscribed listeners, so operators get the same
record whether they tail logs or attach a listener.

Usage
-----
Subscribe to failures and publish an event::

    publisher = MirrorEventPublisher()
    publisher.subscribe(lambda event: failures.append(event))
    publisher.publish(
        MirrorEvent(
            type=MirrorEventType.ITEM_FAILED,
            subject="octo/alpha",
            message="migrate octo/alpha failed with HTTP 500",
        )
    )

"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import datetime as dt
import enum

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from ferryman.common.time import utcnow
from ferryman.errors import (
    ConfigurationError,
    ConflictError,
    InvalidTransitionError,
    LedgerCorruptionError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionError,
    RemoteRequestError,
    TransientRemoteError,
)
from ferryman.logging import (
    get_logger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)

logger = get_logger(__name__)


class MirrorEventType(enum.StrEnum):
    """Event identifiers emitted by the engine."""

    JOB_STARTED = "job.started"
    JOB_PROGRESS = "job.progress"
    JOB_COMPLETED = "job.completed"
    JOB_RECOVERED = "job.recovered"
    JOB_RECOVERY_FAILED = "job.recovery_failed"
    ITEM_TRANSITIONED = "item.transitioned"
    ITEM_MIRRORED = "item.mirrored"
    ITEM_SYNCED = "item.synced"
    ITEM_FAILED = "item.failed"
    ITEM_RETRY = "item.retry"
    METADATA_COMPONENT_FAILED = "metadata.component_failed"
    ORGANIZATION_FALLBACK = "organization.fallback"
    ORPHAN_ARCHIVED = "orphan.archived"
    ORPHAN_DELETED = "orphan.deleted"
    ORPHAN_SKIPPED = "orphan.skipped"
    CLEANUP_ABORTED = "cleanup.aborted"
    SCHEDULER_CYCLE_STARTED = "scheduler.cycle.started"
    SCHEDULER_CYCLE_COMPLETED = "scheduler.cycle.completed"
    SCHEDULER_CYCLE_SKIPPED = "scheduler.cycle.skipped"


_WARNING_EVENTS = frozenset(
    {
        MirrorEventType.ITEM_RETRY,
        MirrorEventType.METADATA_COMPONENT_FAILED,
        MirrorEventType.ORGANIZATION_FALLBACK,
        MirrorEventType.SCHEDULER_CYCLE_SKIPPED,
    }
)
_ERROR_EVENTS = frozenset(
    {
        MirrorEventType.ITEM_FAILED,
        MirrorEventType.JOB_RECOVERY_FAILED,
        MirrorEventType.CLEANUP_ABORTED,
    }
)


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    CONFLICT = "conflict"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CLIENT_ERROR = "client_error"
    PRECONDITION = "precondition"
    CONFIGURATION = "configuration"
    STATE = "state"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (TransientRemoteError, ErrorCategory.TRANSIENT),
    (ConflictError, ErrorCategory.CONFLICT),
    (PermissionDeniedError, ErrorCategory.PERMISSION),
    (NotFoundError, ErrorCategory.NOT_FOUND),
    (RemoteRequestError, ErrorCategory.CLIENT_ERROR),
    (PreconditionError, ErrorCategory.PRECONDITION),
    (ConfigurationError, ErrorCategory.CONFIGURATION),
    (InvalidTransitionError, ErrorCategory.STATE),
    (LedgerCorruptionError, ErrorCategory.STATE),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alert routing.

    ``MirrorOperationError`` wrappers are unwrapped to their cause first.
    """
    cause = getattr(exc, "cause", None)
    if isinstance(cause, BaseException):
        exc = cause
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.UNKNOWN


@dataclasses.dataclass(frozen=True, slots=True)
class MirrorEvent:
    """One lifecycle event."""

    type: MirrorEventType
    subject: str
    message: str = ""
    details: dict[str, object] = dataclasses.field(default_factory=dict)
    occurred_at: dt.datetime = dataclasses.field(default_factory=utcnow)


type EventListener = cabc.Callable[[MirrorEvent], None]


def _format_details(details: cabc.Mapping[str, object]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(details.items()))


class MirrorEventPublisher:
    """Log events and fan them out to listeners."""

    def __init__(self) -> None:
        """Initialise with no listeners."""
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        """Register ``listener`` for every subsequent event."""
        self._listeners.append(listener)

    def publish(self, event: MirrorEvent) -> None:
        """Log ``event`` and deliver it to each listener.

        A listener that raises is logged and does not prevent delivery to
        the remaining listeners.
        """
        self._log(event)
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                log_exception(
                    logger,
                    f"Event listener failed for {event.type} subject={event.subject}",
                    exc,
                )

    def emit(
        self,
        event_type: MirrorEventType,
        subject: str,
        message: str = "",
        **details: object,
    ) -> MirrorEvent:
        """Build and publish an event, returning it."""
        event = MirrorEvent(
            type=event_type, subject=subject, message=message, details=details
        )
        self.publish(event)
        return event

    @staticmethod
    def _log(event: MirrorEvent) -> None:
        if event.type in _ERROR_EVENTS:
            emit = log_error
        elif event.type in _WARNING_EVENTS:
            emit = log_warning
        else:
            emit = log_info
        template = "[%s] subject=%s"
        args: list[object] = [event.type, event.subject]
        if event.details:
            template += " %s"
            args.append(_format_details(event.details))
        if event.message:
            template += " message=%s"
            args.append(event.message)
        emit(logger, template, *args)


__all__ = [
    "ErrorCategory",
    "EventListener",
    "MirrorEvent",
    "MirrorEventPublisher",
    "MirrorEventType",
    "categorize_error",
]

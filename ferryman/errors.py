"""Error taxonomy for the mirror engine.

Remote failures are classified into these types at the API-client boundary,
so orchestration code branches on the kind of error rather than on message
text. ``retryable`` tells the batch executor whether another attempt can
help.
"""

from __future__ import annotations


class FerrymanError(Exception):
    """Base class for every error raised by ferryman."""

    retryable: bool = False


class ConfigurationError(FerrymanError):
    """Raised when required configuration is absent or malformed."""

    @classmethod
    def missing_field(cls, field: str) -> ConfigurationError:
        """Return an error naming a required configuration field."""
        return cls(f"Missing required configuration field: {field}")

    @classmethod
    def invalid_env(cls, name: str, reason: str) -> ConfigurationError:
        """Return an error for an invalid environment variable."""
        return cls(f"{name} {reason}")


class RemoteError(FerrymanError):
    """Raised when a source or target API call fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and the HTTP status, when one exists."""
        self.status_code = status_code
        super().__init__(message)


class TransientRemoteError(RemoteError):
    """Network failure, timeout, rate limit or 5xx response."""

    retryable = True

    @classmethod
    def network(cls, action: str, cause: BaseException) -> TransientRemoteError:
        """Return an error for a transport-level failure."""
        return cls(f"{action} failed: {type(cause).__name__}: {cause}")

    @classmethod
    def http_status(cls, action: str, status_code: int) -> TransientRemoteError:
        """Return an error for a retryable HTTP status."""
        return cls(f"{action} failed with HTTP {status_code}", status_code=status_code)


class ConflictError(RemoteError):
    """The target already holds a conflicting resource."""

    @classmethod
    def already_exists(
        cls, action: str, status_code: int | None = None
    ) -> ConflictError:
        """Return an error for a duplicate-resource rejection."""
        return cls(
            f"{action} failed: resource already exists", status_code=status_code
        )

    @classmethod
    def not_a_mirror(cls, location: str) -> ConflictError:
        """Return an error for a target repository that is not a mirror."""
        return cls(f"Repository {location} already exists and is not a mirror")

    @classmethod
    def organization_unresolved(cls, name: str, attempts: int) -> ConflictError:
        """Return an error when a conflicting organization never becomes visible."""
        return cls(
            f"Organization {name} reported as existing but was not found "
            f"after {attempts} lookups"
        )


class PermissionDeniedError(RemoteError):
    """The credentials in use may not perform the operation."""

    @classmethod
    def for_action(cls, action: str, status_code: int) -> PermissionDeniedError:
        """Return an error for a 401/403 response."""
        return cls(
            f"{action} failed: permission denied (HTTP {status_code})",
            status_code=status_code,
        )


class NotFoundError(RemoteError):
    """A remote resource the operation depends on does not exist."""

    @classmethod
    def for_action(cls, action: str, status_code: int = 404) -> NotFoundError:
        """Return an error for a 404 response."""
        return cls(f"{action} failed: not found", status_code=status_code)

    @classmethod
    def repository_missing(
        cls, full_name: str, candidates: tuple[str, ...]
    ) -> NotFoundError:
        """Return an error when a mirror is absent from every expected location."""
        tried = ", ".join(candidates) or "no candidate locations"
        return cls(f"Repository {full_name} not found on target (tried {tried})")


class RemoteRequestError(RemoteError):
    """Any other client-side rejection from a remote API."""

    @classmethod
    def http_status(
        cls, action: str, status_code: int, detail: str = ""
    ) -> RemoteRequestError:
        """Return an error for a non-retryable 4xx response."""
        suffix = f": {detail}" if detail else ""
        return cls(
            f"{action} failed with HTTP {status_code}{suffix}",
            status_code=status_code,
        )


class PreconditionError(FerrymanError):
    """An operation's required target state does not hold."""

    @classmethod
    def repository_absent(cls, location: str) -> PreconditionError:
        """Return an error when metadata replication finds no target repository."""
        return cls(f"Target repository {location} does not exist; metadata skipped")


class InvalidTransitionError(FerrymanError):
    """A persisted status change is not allowed."""

    def __init__(self, subject: str, current: str, requested: str) -> None:
        """Initialise with the subject id and the rejected transition."""
        self.subject = subject
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move {subject} from {current!r} to {requested!r}"
        )


class RecordNotFoundError(FerrymanError):
    """A persisted record looked up by id does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        """Initialise with the record kind and id."""
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class LedgerCorruptionError(FerrymanError):
    """A job ledger entry cannot be interpreted for recovery."""

    def __init__(self, batch_id: str, reason: str) -> None:
        """Initialise with the batch id and what is wrong with it."""
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(f"Job {batch_id} cannot be recovered: {reason}")


class MirrorOperationError(FerrymanError):
    """A repository or organization operation ended in ``failed``.

    The underlying cause has already been persisted as the subject's
    ``error_message``; the executor must not retry it.
    """

    def __init__(self, subject: str, cause: BaseException) -> None:
        """Initialise with the subject name and causing error."""
        self.subject = subject
        self.cause = cause
        super().__init__(f"{subject}: {cause}")


def is_retryable(exc: BaseException) -> bool:
    """Return whether the batch executor should attempt ``exc`` again.

    Errors outside the taxonomy are treated as retryable; typed errors carry
    their own verdict.
    """
    if isinstance(exc, FerrymanError):
        return exc.retryable
    return isinstance(exc, Exception)


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "FerrymanError",
    "InvalidTransitionError",
    "LedgerCorruptionError",
    "MirrorOperationError",
    "NotFoundError",
    "PermissionDeniedError",
    "PreconditionError",
    "RecordNotFoundError",
    "RemoteError",
    "RemoteRequestError",
    "TransientRemoteError",
    "is_retryable",
]

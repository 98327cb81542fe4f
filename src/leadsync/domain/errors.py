"""Error taxonomy shared by the platform client, the engine and the backlog."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    AUTH_FAILED = "auth_failed"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    INVALID_RESPONSE = "invalid_response"
    REJECTED = "rejected"


# Kinds that a later attempt (inline or from the backlog) can plausibly fix.
RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.TRANSIENT,
        ErrorKind.INVALID_RESPONSE,
        ErrorKind.REJECTED,
    }
)


@dataclass(slots=True, frozen=True)
class Ok[T]:
    value: T


@dataclass(slots=True, frozen=True)
class Err:
    kind: ErrorKind
    message: str
    status_code: int | None = None
    retry_after: float | None = None


type Result[T] = Ok[T] | Err


class PlatformError(RuntimeError):
    """Raised when the messaging platform cannot fulfil a request."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class AuthenticationError(PlatformError):
    """Credentials were refused; the client is unusable until reconfigured."""

    kind = ErrorKind.AUTH_FAILED


class RateLimitedError(PlatformError):
    kind = ErrorKind.RATE_LIMITED


class TransientPlatformError(PlatformError):
    kind = ErrorKind.TRANSIENT


class InvalidResponseError(PlatformError):
    """The platform answered with a body that is not JSON (usually an HTML error page)."""

    kind = ErrorKind.INVALID_RESPONSE


class RejectedRequestError(PlatformError):
    """The platform answered successfully at HTTP level but refused the operation."""

    kind = ErrorKind.REJECTED


class TagNotRegisteredError(PlatformError):
    """A tag name has no counterpart in the platform's tag catalogue."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, tag_name: str) -> None:
        super().__init__(
            f"Tag {tag_name!r} is not registered on the platform; create it there before syncing"
        )
        self.tag_name = tag_name


class MappingConfigurationError(RuntimeError):
    """The stage/tag directory violates its own invariants."""

    kind = ErrorKind.CONFIGURATION


_ERRORS_BY_KIND: dict[ErrorKind, type[PlatformError]] = {
    ErrorKind.AUTH_FAILED: AuthenticationError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.TRANSIENT: TransientPlatformError,
    ErrorKind.INVALID_RESPONSE: InvalidResponseError,
    ErrorKind.REJECTED: RejectedRequestError,
}


def error_from_result(err: Err) -> PlatformError:
    """Translate a failed request result into the matching exception."""

    error_cls = _ERRORS_BY_KIND.get(err.kind, PlatformError)
    return error_cls(err.message, status_code=err.status_code)


class SyncFailure(Exception):
    """A reconciliation attempt that could not complete.

    ``retryable`` tells the ledger whether the backlog should replay it.
    """

    def __init__(self, reason: str, *, kind: ErrorKind, retryable: bool) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind
        self.retryable = retryable

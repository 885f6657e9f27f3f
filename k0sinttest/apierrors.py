"""Status errors as reported by a Kubernetes API server, and helpers to inspect them."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

__all__ = [
    "StatusReason",
    "Status",
    "StatusError",
    "UnexpectedObjectError",
    "from_object",
    "new_timeout_error",
    "new_resource_expired",
    "new_bad_request",
    "new_too_many_requests",
    "is_resource_expired",
    "reason_for_error",
    "suggests_client_delay",
]

STATUS_FAILURE = "Failure"


class StatusReason(str, enum.Enum):
    """Machine-readable reason carried by a failed API status."""

    UNKNOWN = ""
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    CONFLICT = "Conflict"
    GONE = "Gone"
    INVALID = "Invalid"
    SERVER_TIMEOUT = "ServerTimeout"
    TIMEOUT = "Timeout"
    TOO_MANY_REQUESTS = "TooManyRequests"
    BAD_REQUEST = "BadRequest"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"
    NOT_ACCEPTABLE = "NotAcceptable"
    REQUEST_ENTITY_TOO_LARGE = "RequestEntityTooLarge"
    UNSUPPORTED_MEDIA_TYPE = "UnsupportedMediaType"
    INTERNAL_ERROR = "InternalError"
    EXPIRED = "Expired"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"


@dataclass(frozen=True)
class Status:
    """A status object as returned by the API server.

    ``retry_after_seconds`` is ``None`` when the status carries no details.
    """

    status: str = STATUS_FAILURE
    message: str = ""
    reason: StatusReason = StatusReason.UNKNOWN
    code: int = 0
    retry_after_seconds: Optional[int] = None
    resource_version: str = ""


class StatusError(Exception):
    """An error that wraps an API status."""

    def __init__(self, status: Status) -> None:
        super().__init__(status.message)
        self.status = status

    def __str__(self) -> str:
        return self.status.message


class UnexpectedObjectError(Exception):
    """Raised when an object of an unexpected kind was received."""

    def __init__(self, obj: Any) -> None:
        super().__init__(obj)
        self.object = obj

    def __str__(self) -> str:
        return f"unexpected object: {self.object!r}"


def _find_status_error(err: Optional[BaseException]) -> Optional[StatusError]:
    """Find a StatusError in the chain of explicit causes of ``err``."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, StatusError):
            return err
        seen.add(id(err))
        err = err.__cause__
    return None


def from_object(obj: Any) -> Exception:
    """Turn an object received from the server into an error."""
    if isinstance(obj, Status):
        return StatusError(obj)
    return UnexpectedObjectError(obj)


def new_timeout_error(message: str, retry_after_seconds: int) -> StatusError:
    """An error saying the request could not be completed in time."""
    return StatusError(
        Status(
            message=f"Timeout: {message}",
            reason=StatusReason.TIMEOUT,
            code=504,
            retry_after_seconds=retry_after_seconds,
        )
    )


def new_resource_expired(message: str) -> StatusError:
    """An error saying the requested resource version is too old."""
    return StatusError(
        Status(message=message, reason=StatusReason.EXPIRED, code=410)
    )


def new_bad_request(reason: str) -> StatusError:
    """An error saying the request was malformed."""
    return StatusError(
        Status(message=reason, reason=StatusReason.BAD_REQUEST, code=400)
    )


def new_too_many_requests(message: str, retry_after_seconds: int) -> StatusError:
    """An error saying the server throttled the request."""
    return StatusError(
        Status(
            message=message,
            reason=StatusReason.TOO_MANY_REQUESTS,
            code=429,
            retry_after_seconds=retry_after_seconds,
        )
    )


def reason_for_error(err: Optional[BaseException]) -> StatusReason:
    """The status reason of ``err`` or of one of its causes, else UNKNOWN."""
    found = _find_status_error(err)
    if found is None:
        return StatusReason.UNKNOWN
    return found.status.reason


def is_resource_expired(err: Optional[BaseException]) -> bool:
    """Whether ``err`` says that a resource version has expired."""
    return reason_for_error(err) is StatusReason.EXPIRED


def suggests_client_delay(err: Optional[BaseException]) -> Optional[int]:
    """The number of seconds the server asks the client to wait, or None."""
    found = _find_status_error(err)
    if found is None:
        return None
    status = found.status
    if status.retry_after_seconds is None:
        return None
    if status.reason is StatusReason.SERVER_TIMEOUT:
        return status.retry_after_seconds
    if status.retry_after_seconds > 0:
        return status.retry_after_seconds
    return None
"""Error taxonomy for the request tracker core.

Every failure resolves to a view state; nothing here is fatal to the process.
``SchemaMismatch`` is a diagnostic record handed to an observability sink and
is never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class TrackerError(Exception):
    """Base class for request tracker failures."""

    default_code = "tracker_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class NetworkFailure(TrackerError):
    """Raised when the remote store could not be reached at all."""

    default_code = "network_failure"


class RemoteError(TrackerError):
    """Raised when the remote store answers with a non-success status."""

    default_code = "remote_error"

    def __init__(
        self,
        status: int,
        body: Any = None,
        message: str | None = None,
        code: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.detail = _extract_detail(body)
        if message is None:
            message = f"HTTP error {status}"
            if self.detail:
                message = f"{message}: {self.detail}"
        super().__init__(message, code)


class DuplicateConflict(RemoteError):
    """Raised when Create reports that the request already exists."""

    default_code = "duplicate_conflict"


class ValidationError(TrackerError):
    """Local precondition failure, detected before any network call."""

    default_code = "invalid_value"


class HostFailure(TrackerError):
    """Raised when the host mail client cannot supply requested data."""

    default_code = "host_failure"


@dataclass(frozen=True)
class SchemaMismatch:
    """A raw record field the normalizer could not interpret."""

    field: str
    raw_value: Any
    fallback: Any
    reason: str = "unrecognized value"

    def describe(self) -> str:
        return (
            f"{self.field}: {self.reason} ({self.raw_value!r}), "
            f"using {self.fallback!r}"
        )


def _extract_detail(body: Any) -> str | None:
    """Pull a human readable message out of a structured error body."""
    if body is None:
        return None
    if isinstance(body, str):
        text = body.strip()
        return text[:500] or None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            for key in ("message", "detail", "code"):
                value = error.get(key)
                if value:
                    return str(value)
        elif isinstance(error, str) and error:
            return error
        for key in ("message", "detail", "title"):
            value = body.get(key)
            if value:
                return str(value)
    return None


def error_code_of(body: Any) -> str | None:
    """Return the machine readable code carried by a structured error body."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("code"):
        return str(error["code"])
    if body.get("code"):
        return str(body["code"])
    return None

"""HTTP client for the remote request workflows (Lookup, Create, Update)."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from triage_tracker.config import EndpointSettings
from triage_tracker.errors import (
    DuplicateConflict,
    NetworkFailure,
    RemoteError,
    error_code_of,
)
from triage_tracker.host.mail import CorrelationMode
from triage_tracker.remote.payloads import build_lookup_payload
from triage_tracker.utils.http import redact_url
from triage_tracker.utils.masking import redact_sensitive_fields
from triage_tracker.utils.serialization import json_default

logger = logging.getLogger(__name__)

_RECORD_LIST_KEYS = ("value", "requests", "items", "body", "results")
_CONFLICT_CODES = frozenset({"conflict", "duplicate", "duplicaterequest", "alreadyexists"})


class TrackerRemote(Protocol):
    async def lookup(self, correlation_key: str) -> list[object]: ...

    async def create(self, payload: dict[str, Any]) -> Any: ...

    async def update(self, payload: dict[str, Any]) -> Any: ...


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _records_from(status: int, body: Any) -> list[object]:
    if body is None or body == "":
        return []
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in _RECORD_LIST_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    raise RemoteError(status, body, message="Unexpected lookup response shape")


def _is_conflict_code(code: str | None) -> bool:
    if not code:
        return False
    return code.replace("_", "").replace("-", "").lower() in _CONFLICT_CODES


class TrackerClient:
    """Calls the three remote workflow endpoints over HTTP.

    Transport failures surface as ``NetworkFailure``; non-2xx responses as
    ``RemoteError``, or ``DuplicateConflict`` for a Create the store rejects
    as a duplicate.
    """

    def __init__(
        self,
        lookup_url: str,
        create_url: str,
        update_url: str,
        *,
        timeout: float = 30.0,
        correlation_mode: CorrelationMode = "message",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._lookup_url = lookup_url
        self._create_url = create_url
        self._update_url = update_url
        self._correlation_mode = correlation_mode
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls,
        endpoints: EndpointSettings,
        *,
        correlation_mode: CorrelationMode = "message",
        http_client: httpx.AsyncClient | None = None,
    ) -> "TrackerClient":
        if not endpoints.complete:
            raise RuntimeError(
                "Invalid configuration: TRACKER_LOOKUP_URL, TRACKER_CREATE_URL and "
                "TRACKER_UPDATE_URL are required"
            )
        return cls(
            endpoints.lookup_url or "",
            endpoints.create_url or "",
            endpoints.update_url or "",
            timeout=endpoints.timeout_seconds,
            correlation_mode=correlation_mode,
            http_client=http_client,
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _post(self, operation: str, url: str, payload: dict[str, Any]) -> httpx.Response:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s -> %s %s",
                operation,
                redact_url(url),
                json.dumps(redact_sensitive_fields(payload), default=json_default),
            )
        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("%s timed out: %s", operation, exc)
            raise NetworkFailure(f"{operation} request timed out", code="timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise NetworkFailure(f"{operation} request failed: {exc}") from exc

        if response.is_success:
            return response

        error = RemoteError(response.status_code, _decode_body(response))
        logger.warning("%s returned %s", operation, error.message)
        raise error

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def lookup(self, correlation_key: str) -> list[object]:
        payload = build_lookup_payload(correlation_key, self._correlation_mode)
        response = await self._post("lookup", self._lookup_url, payload)
        records = _records_from(response.status_code, _decode_body(response))
        logger.debug("lookup returned %d record(s) for %s", len(records), correlation_key)
        return records

    async def create(self, payload: dict[str, Any]) -> Any:
        try:
            response = await self._post("create", self._create_url, payload)
        except RemoteError as exc:
            if exc.status == 409 or _is_conflict_code(error_code_of(exc.body)):
                raise DuplicateConflict(exc.status, exc.body) from exc
            raise
        return _decode_body(response)

    async def update(self, payload: dict[str, Any]) -> Any:
        response = await self._post("update", self._update_url, payload)
        return _decode_body(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

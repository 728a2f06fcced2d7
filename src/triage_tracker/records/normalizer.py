"""Normalization of remote request records into the canonical ``Request``.

The remote store returns the same logical field either as a plain scalar or
wrapped in a tagged-field object (``{"Value": "New"}``,
``{"Url": "...", "Description": "..."}``). Everything is unwrapped here, at the
single boundary where records enter the cache, so wrapper shapes never leak
past it. Normalization never raises: fields that cannot be interpreted fall
back to their defaults and a ``SchemaMismatch`` is reported to the sink.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Callable, Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from triage_tracker.domain.models import (
    Category,
    Priority,
    Request,
    Status,
)
from triage_tracker.errors import SchemaMismatch

logger = logging.getLogger(__name__)

DiagnosticSink = Callable[[SchemaMismatch], None]

_MAX_UNWRAP_DEPTH = 5
_VALUE_KEYS = ("value", "label", "title")
_LINK_KEYS = ("url", "href", "value")
_PERSON_KEYS = ("email", "emailaddress", "value", "displayname", "title")
_SCALARS = (str, int, float, bool, datetime, date, Enum)
_MS_DATE_RE = re.compile(r"^/Date\((-?\d+)\)/$")

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "identity": ("id", "identity", "requestid", "itemid"),
    "category": ("requesttype", "category", "type"),
    "status": ("requeststatus", "status"),
    "priority": ("priority",),
    "notes": ("notes", "note", "comments"),
    "report_link": ("reportlink", "reporturl", "report_link"),
    "created_at": ("trackeddate", "createdat", "created_at", "created"),
    "completed_at": ("completiondate", "completeddate", "completedat", "completed_at"),
    "correlation_key": (
        "correlationkey",
        "correlation_key",
        "messageid",
        "internetmessageid",
        "conversationid",
    ),
    "is_placeholder": ("isplaceholder", "is_placeholder"),
    "reports_requested": ("reportsrequested", "reports_requested"),
    "due_date": ("duedate", "due_date"),
    "assigned_to": ("assignedto", "assigned_to"),
}

_MISSING = object()


def _log_mismatch(mismatch: SchemaMismatch) -> None:
    logger.warning("Schema mismatch in request record: %s", mismatch.describe())


def normalize(raw: object, *, sink: DiagnosticSink | None = None) -> Request:
    """Convert a raw remote record into a canonical ``Request``."""
    if isinstance(raw, Request):
        return raw
    return _RecordReader(_field_map(raw), sink or _log_mismatch).read()


def normalize_all(
    records: object, *, sink: DiagnosticSink | None = None
) -> list[Request]:
    if records is None:
        return []
    if isinstance(records, (Mapping, Request)) or not isinstance(records, (list, tuple)):
        records = [records]
    return [normalize(record, sink=sink) for record in records]


def denormalize(request: Request, *, wrapped: bool = False) -> dict[str, Any]:
    """Encode a request the way the remote store may return it.

    ``wrapped=True`` produces tagged-field wrappers, ``False`` plain scalars.
    """

    def wrap(value: Any) -> Any:
        return {"Value": value} if wrapped else value

    link: Any = request.report_link
    if link and wrapped:
        link = {"Url": link, "Description": link}

    return {
        "Id": request.identity,
        "RequestType": wrap(request.category.value),
        "RequestStatus": wrap(request.status.value),
        "Priority": wrap(request.priority.value),
        "Notes": request.notes,
        "ReportLink": link,
        "TrackedDate": request.created_at.isoformat() if request.created_at else None,
        "CompletionDate": (
            request.completed_at.isoformat() if request.completed_at else None
        ),
        "CorrelationKey": request.correlation_key,
        "IsPlaceholder": request.is_placeholder,
        "ReportsRequested": request.reports_requested,
        "DueDate": request.due_date.isoformat() if request.due_date else None,
        "AssignedTo": wrap(request.assigned_to) if request.assigned_to else "",
    }


def _field_map(raw: object) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        source: Mapping[Any, Any] = raw
    elif hasattr(raw, "__dict__"):
        source = vars(raw)
    else:
        return {}
    return {str(key).casefold(): value for key, value in source.items()}


def _unwrap(value: Any, keys: tuple[str, ...] = _VALUE_KEYS) -> Any:
    for _ in range(_MAX_UNWRAP_DEPTH):
        if value is None or isinstance(value, _SCALARS):
            return value
        if isinstance(value, Mapping):
            lowered = {str(key).casefold(): item for key, item in value.items()}
            for key in keys:
                if key in lowered:
                    value = lowered[key]
                    break
            else:
                return value
            continue
        if isinstance(value, (list, tuple)):
            if not value:
                return None
            value = value[0]
            continue
        for key in keys:
            if hasattr(value, key):
                value = getattr(value, key)
                break
            if hasattr(value, key.capitalize()):
                value = getattr(value, key.capitalize())
                break
        else:
            return value
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        match = _MS_DATE_RE.match(text)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"unsupported timestamp type {type(value).__name__}")


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10 and text[10] in "T ":
            return _parse_datetime(text).date()
        return date.fromisoformat(text)
    raise ValueError(f"unsupported date type {type(value).__name__}")


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


class _RecordReader:
    """Reads one raw record field by field, reporting what it cannot use."""

    def __init__(self, fields: dict[str, Any], sink: DiagnosticSink) -> None:
        self._fields = fields
        self._sink = sink

    def _get(self, name: str) -> Any:
        for alias in _FIELD_ALIASES[name]:
            if alias in self._fields:
                return self._fields[alias]
        return _MISSING

    def _report(self, name: str, raw: Any, fallback: Any, reason: str) -> None:
        self._sink(SchemaMismatch(field=name, raw_value=raw, fallback=fallback, reason=reason))

    def read(self) -> Request:
        return Request(
            identity=self._identity(),
            category=self._enum("category", Category, Category.UNKNOWN, required=True),
            status=self._enum("status", Status, Status.NEW, required=True),
            priority=self._priority(),
            notes=self._text("notes"),
            report_link=self._link(),
            created_at=self._timestamp("created_at"),
            completed_at=self._timestamp("completed_at"),
            correlation_key=self._text("correlation_key").strip(),
            is_placeholder=self._flag("is_placeholder"),
            reports_requested=self._count("reports_requested"),
            due_date=self._date("due_date"),
            assigned_to=self._person("assigned_to"),
        )

    def _identity(self) -> str:
        raw = self._get("identity")
        value = _unwrap(raw) if raw is not _MISSING else None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            text = str(value).strip()
            if text:
                return text
        digest = hashlib.sha256(
            json.dumps(self._fields, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:12]
        fallback = f"unidentified-{digest}"
        self._report(
            "identity",
            None if raw is _MISSING else raw,
            fallback,
            "missing" if raw is _MISSING else "unrecognized value",
        )
        return fallback

    def _enum(self, name: str, enum_cls: type, default: Enum, *, required: bool) -> Any:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None or value == "":
            if required:
                self._report(name, None if raw is _MISSING else raw, default, "missing")
            return default
        parsed = enum_cls.parse(value) if isinstance(value, (str, Enum)) else None
        if parsed is None:
            self._report(name, raw, default, "unrecognized value")
            return default
        return parsed

    def _priority(self) -> Priority:
        raw = self._get("priority")
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None or value == "":
            return Priority.MEDIUM
        code = _as_int(value)
        if code is not None:
            parsed = Priority.from_code(code)
        elif isinstance(value, (str, Enum)):
            parsed = Priority.parse(value)
        else:
            parsed = None
        if parsed is None:
            self._report("priority", raw, Priority.MEDIUM, "unrecognized value")
            return Priority.MEDIUM
        return parsed

    def _text(self, name: str) -> str:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        self._report(name, raw, "", "unrecognized value")
        return ""

    def _link(self) -> str | None:
        raw = self._get("report_link")
        value = _unwrap(raw, _LINK_KEYS) if raw is not _MISSING else None
        if value is None:
            return None
        if isinstance(value, str):
            return value.strip() or None
        self._report("report_link", raw, None, "unrecognized value")
        return None

    def _timestamp(self, name: str) -> datetime | None:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None or value == "":
            return None
        try:
            return _parse_datetime(value)
        except (ValueError, OverflowError, OSError):
            self._report(name, raw, None, "unparseable timestamp")
            return None

    def _date(self, name: str) -> date | None:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None or value == "":
            return None
        try:
            return _parse_date(value)
        except (ValueError, OverflowError, OSError):
            self._report(name, raw, None, "unparseable date")
            return None

    def _count(self, name: str) -> int | None:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if value is None or value == "":
            return None
        count = _as_int(value)
        if count is None:
            self._report(name, raw, None, "not an integer")
        return count

    def _flag(self, name: str) -> bool:
        raw = self._get(name)
        value = _unwrap(raw) if raw is not _MISSING else None
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes"}
        return False

    def _person(self, name: str) -> str:
        raw = self._get(name)
        value = _unwrap(raw, _PERSON_KEYS) if raw is not _MISSING else None
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        self._report(name, raw, "", "unrecognized value")
        return ""

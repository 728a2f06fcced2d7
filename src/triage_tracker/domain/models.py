"""Canonical tracked-request model."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import uuid4

PLACEHOLDER_PREFIX = "new-"
_PLACEHOLDER_RE = re.compile(r"^new-[0-9a-f]{32}$")

_COMPACT_RE = re.compile(r"[\s_\-]+")


def compact_label(value: object) -> str:
    """Case- and separator-insensitive form of a label, used for matching."""
    if isinstance(value, Enum):
        value = value.value
    return _COMPACT_RE.sub("", str(value)).casefold()


class _LabelEnum(str, Enum):
    """String enum whose members can be parsed from loosely formatted labels."""

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value: object) -> "_LabelEnum | None":
        if isinstance(value, cls):
            return value
        key = compact_label(value)
        if not key:
            return None
        for member in cls:
            if key in (compact_label(member.value), compact_label(member.name)):
                return member
        alias = cls._aliases().get(key)
        if alias is not None:
            return cls(alias)
        return None

    def __str__(self) -> str:
        return self.value


class Category(_LabelEnum):
    COMPLIANCE_REQUEST = "Compliance Request"
    CONTRACT_EXTENSION = "Contract Extension"
    CONTRACT_TERMINATION = "Contract Termination"
    DEAL_REPORTING = "Deal Reporting"
    DATA_REQUEST = "Data Request"
    DATA_PRIVACY_REQUEST = "Data Privacy Request"
    RECORDS_DELETION = "Records Deletion"
    GENERAL_INQUIRY = "General Inquiry"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class Status(_LabelEnum):
    NEW = "New"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {
            "canceled": "Cancelled",
            "complete": "Completed",
            "done": "Completed",
            "open": "New",
        }

    @property
    def slug(self) -> str:
        return self.value.lower().replace(" ", "-")


class Priority(_LabelEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {"normal": "Medium", "urgent": "High"}

    @classmethod
    def from_code(cls, code: int) -> "Priority | None":
        return _PRIORITY_CODES.get(code)


_PRIORITY_CODES = {1: Priority.HIGH, 2: Priority.MEDIUM, 3: Priority.LOW}


def new_placeholder_identity() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid4().hex}"


def is_placeholder_identity(identity: str) -> bool:
    """Whether ``identity`` has the exact shape of a locally minted placeholder.

    Only records the client inserted itself are treated as placeholders;
    remote identities are never classified by their shape.
    """
    return bool(_PLACEHOLDER_RE.match(identity))


def requires_report_link(category: Category, status: Status) -> bool:
    return category is Category.COMPLIANCE_REQUEST and status is Status.COMPLETED


@dataclass(frozen=True)
class RequestPatch:
    """Fields an update submission may change."""

    status: Status
    priority: Priority
    notes: str
    report_link: str | None
    completed_at: datetime | None


@dataclass(frozen=True)
class Request:
    identity: str
    category: Category
    status: Status = Status.NEW
    priority: Priority = Priority.MEDIUM
    notes: str = ""
    report_link: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    correlation_key: str = ""
    is_placeholder: bool = False
    reports_requested: int | None = None
    due_date: date | None = None
    assigned_to: str = ""

    @property
    def updatable(self) -> bool:
        return not self.is_placeholder

    def apply(self, patch: RequestPatch) -> "Request":
        return dataclasses.replace(
            self,
            status=patch.status,
            priority=patch.priority,
            notes=patch.notes,
            report_link=patch.report_link,
            completed_at=patch.completed_at,
        )

    def reflects(self, patch: RequestPatch) -> bool:
        """Whether this record already carries the patched values."""
        return (
            self.status is patch.status
            and self.priority is patch.priority
            and (self.report_link or None) == (patch.report_link or None)
            and patch.notes.strip() in self.notes
        )

    def with_correlation_key(self, correlation_key: str) -> "Request":
        """Bind the record to the email it was looked up for."""
        if not correlation_key or self.correlation_key == correlation_key:
            return self
        return dataclasses.replace(self, correlation_key=correlation_key)

"""Form values for creating and updating requests, and their validation.

Forms hold exactly what the user entered (strings) so a rejected submission
can be re-rendered unchanged. Validation turns them into typed values and
raises ``ValidationError`` before any network call.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from urllib.parse import urlparse

from triage_tracker.domain.models import (
    Category,
    Priority,
    Request,
    RequestPatch,
    Status,
    requires_report_link,
)
from triage_tracker.domain.notes import append_note
from triage_tracker.errors import ValidationError
from triage_tracker.host.mail import EmailMetadata, UserProfile
from triage_tracker.utils.time import format_date

STILL_PROCESSING_MESSAGE = (
    "This request is still processing. Please wait until it is confirmed before updating it."
)


@dataclass(frozen=True)
class NewRequestForm:
    subject: str = ""
    sender_name: str = ""
    sender_email: str = ""
    sent_date: str = ""
    category: str = ""
    status: str = ""
    priority: str = Priority.MEDIUM.value
    notes: str = ""
    reports_requested: str = ""
    due_date: str = ""
    report_link: str = ""

    @classmethod
    def from_email(cls, metadata: EmailMetadata) -> "NewRequestForm":
        """Blank form pre-filled from the open email."""
        return cls(
            subject=metadata.subject or "(No subject)",
            sender_name=metadata.sender_name or "(Unknown sender)",
            sender_email=metadata.sender_email or "(Unknown email)",
            sent_date=format_date(metadata.sent_at, include_time=True) or "(Unknown date)",
        )

    @property
    def shows_reports_requested(self) -> bool:
        return Category.parse(self.category) is Category.COMPLIANCE_REQUEST

    def with_category(self, category: str) -> "NewRequestForm":
        form = dataclasses.replace(self, category=category)
        if form.shows_reports_requested:
            return dataclasses.replace(form, reports_requested=form.reports_requested or "1")
        return dataclasses.replace(form, reports_requested="")


@dataclass(frozen=True)
class ValidatedNewRequest:
    category: Category
    status: Status
    priority: Priority
    notes: str
    reports_requested: int | None
    due_date: date | None
    report_link: str | None


@dataclass(frozen=True)
class UpdateRequestForm:
    identity: str
    status: str = ""
    priority: str = Priority.MEDIUM.value
    note: str = ""
    report_link: str = ""

    @classmethod
    def from_request(cls, request: Request) -> "UpdateRequestForm":
        return cls(
            identity=request.identity,
            status=request.status.value,
            priority=request.priority.value,
            report_link=request.report_link or "",
        )

    @property
    def shows_report_link(self) -> bool:
        return Status.parse(self.status) is Status.COMPLETED


@dataclass(frozen=True)
class ValidatedUpdate:
    status: Status
    priority: Priority
    note: str
    report_link: str | None

    def to_patch(self, request: Request, user: UserProfile, at: datetime) -> RequestPatch:
        if self.status is Status.COMPLETED:
            completed_at = (
                request.completed_at
                if request.status is Status.COMPLETED and request.completed_at
                else at
            )
        else:
            completed_at = None
        notes = append_note(
            request.notes,
            self.note,
            author_name=user.display_name,
            author_address=user.email_address,
            at=at,
        )
        return RequestPatch(
            status=self.status,
            priority=self.priority,
            notes=notes,
            report_link=self.report_link,
            completed_at=completed_at,
        )


def _parse_priority(value: str) -> Priority:
    if not value.strip():
        return Priority.MEDIUM
    priority = Priority.parse(value)
    if priority is None:
        raise ValidationError(f"Unknown priority: {value}", code="invalid_value")
    return priority


def _parse_link(value: str) -> str | None:
    link = value.strip()
    if not link:
        return None
    parsed = urlparse(link)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise ValidationError("Report link must be an http(s) URL.", code="invalid_value")
    return link


def validate_new_request(form: NewRequestForm) -> ValidatedNewRequest:
    if not form.category.strip() or not form.status.strip():
        raise ValidationError("Request Type and Status are required.", code="missing_field")

    category = Category.parse(form.category)
    if category is None or category is Category.UNKNOWN:
        raise ValidationError(f"Unknown request type: {form.category}", code="invalid_value")
    status = Status.parse(form.status)
    if status is None:
        raise ValidationError(f"Unknown status: {form.status}", code="invalid_value")
    priority = _parse_priority(form.priority)

    reports_requested: int | None = None
    if form.reports_requested.strip():
        try:
            reports_requested = int(form.reports_requested.strip())
        except ValueError:
            reports_requested = None
        if reports_requested is None or reports_requested < 1:
            raise ValidationError(
                "Reports requested must be a positive number.", code="invalid_value"
            )

    due_date: date | None = None
    if form.due_date.strip():
        try:
            due_date = date.fromisoformat(form.due_date.strip())
        except ValueError as exc:
            raise ValidationError(
                "Due date must be a date (YYYY-MM-DD).", code="invalid_value"
            ) from exc

    report_link = _parse_link(form.report_link)
    if requires_report_link(category, status) and not report_link:
        raise ValidationError(
            "A Report Link is required for 'Completed' status.",
            code="report_link_required",
        )

    return ValidatedNewRequest(
        category=category,
        status=status,
        priority=priority,
        notes=form.notes.strip(),
        reports_requested=reports_requested,
        due_date=due_date,
        report_link=report_link,
    )


def validate_update(form: UpdateRequestForm, request: Request) -> ValidatedUpdate:
    if request.is_placeholder:
        raise ValidationError(STILL_PROCESSING_MESSAGE, code="still_processing")
    if not form.status.strip():
        raise ValidationError("Please select a status.", code="missing_field")
    status = Status.parse(form.status)
    if status is None:
        raise ValidationError(f"Unknown status: {form.status}", code="invalid_value")
    priority = _parse_priority(form.priority)
    report_link = _parse_link(form.report_link)
    if requires_report_link(request.category, status) and not report_link:
        raise ValidationError(
            "A Report Link is required for 'Completed' status.",
            code="report_link_required",
        )
    return ValidatedUpdate(
        status=status,
        priority=priority,
        note=form.note.strip(),
        report_link=report_link,
    )

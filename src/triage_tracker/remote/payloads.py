"""JSON bodies for the Lookup, Create and Update workflow calls."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from triage_tracker.domain.models import Request, Status
from triage_tracker.host.mail import CorrelationMode, EmailMetadata, UserProfile
from triage_tracker.view.forms import ValidatedNewRequest, ValidatedUpdate

_MODE_FIELDS = {"message": "messageId", "conversation": "conversationId"}


def build_lookup_payload(correlation_key: str, mode: CorrelationMode = "message") -> dict[str, Any]:
    return {"correlationKey": correlation_key, _MODE_FIELDS[mode]: correlation_key}


def build_create_payload(
    request: ValidatedNewRequest,
    *,
    metadata: EmailMetadata,
    user: UserProfile,
    correlation_key: str,
    email_body: str,
    tracked_at: datetime,
) -> dict[str, Any]:
    return {
        "subject": metadata.subject or "(No subject)",
        "senderName": metadata.sender_name,
        "senderEmail": metadata.sender_email,
        "sentDate": metadata.sent_at.isoformat() if metadata.sent_at else None,
        "requestType": request.category.value,
        "reportsRequested": request.reports_requested,
        "requestStatus": request.status.value,
        "notes": request.notes,
        "priority": request.priority.value,
        "dueDate": request.due_date.isoformat() if request.due_date else None,
        "reportLink": request.report_link or "",
        "trackedDate": tracked_at.isoformat(),
        "assignedTo": user.identity,
        "trackedBy": user.identity,
        "conversationId": metadata.conversation_id,
        "messageId": metadata.internet_message_id or metadata.item_id,
        "correlationKey": correlation_key,
        "emailBody": email_body or "",
    }


def build_update_payload(
    request: Request,
    update: ValidatedUpdate,
    *,
    notes: str,
    user: UserProfile,
    correlation_key: str,
    completed_at: datetime | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "requestId": int(request.identity) if request.identity.isdigit() else request.identity,
        "requestStatus": update.status.value,
        "priority": update.priority.value,
        "notes": notes,
        "reportUrl": update.report_link or "",
        "correlationKey": correlation_key,
        "updatedBy": user.identity,
    }
    if update.status is Status.COMPLETED and request.status is not Status.COMPLETED:
        payload["completionDate"] = completed_at.isoformat() if completed_at else None
    return payload

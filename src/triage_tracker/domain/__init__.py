"""Canonical request model."""

from triage_tracker.domain.models import (
    Category,
    Priority,
    Request,
    RequestPatch,
    Status,
    is_placeholder_identity,
    new_placeholder_identity,
    requires_report_link,
)

__all__ = [
    "Category",
    "Priority",
    "Request",
    "RequestPatch",
    "Status",
    "is_placeholder_identity",
    "new_placeholder_identity",
    "requires_report_link",
]

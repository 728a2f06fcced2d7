"""Client-side duplicate detection for new requests.

The remote store may not enforce one request per category per email, so
every candidate is checked against the cache, placeholders included, before
any Create call is made.
"""

from __future__ import annotations

from collections.abc import Iterable

from triage_tracker.domain.models import Category, Request, compact_label
from triage_tracker.utils.time import format_date


def category_key(category: Category | str) -> str:
    parsed = Category.parse(category)
    if parsed is not None:
        return compact_label(parsed)
    return compact_label(str(category).strip())


def has_conflict(
    records: Iterable[Request],
    correlation_key: str,
    category: Category | str,
) -> Request | None:
    """Return the first cached request for the same email and category."""
    key = correlation_key.strip()
    wanted = category_key(category)
    if not wanted:
        return None
    for record in records:
        if record.correlation_key.strip() != key:
            continue
        if category_key(record.category) == wanted:
            return record
    return None


def duplicate_conflict_message(
    category: Category | str, conflict: Request | None = None
) -> str:
    """User-facing message shared by the local guard and a remote 409."""
    parsed = Category.parse(category)
    label = parsed.value if parsed is not None else str(category).strip()
    message = f"A {label} request already exists for this email."
    if conflict is None:
        return message
    if conflict.is_placeholder:
        return f"{message} It was just submitted and is still processing."
    created = format_date(conflict.created_at)
    details = f"Status: {conflict.status.value}"
    if created:
        details = f"{details}, created {created}"
    return f"{message} {details}. Open it from the list instead of creating a new one."

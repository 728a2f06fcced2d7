"""Append-only notes log attached to a tracked request."""

from __future__ import annotations

from datetime import datetime

from triage_tracker.utils.time import format_date

ENTRY_SEPARATOR = "\n\n"


def attribution_header(author_name: str, author_address: str, at: datetime) -> str:
    author = author_name.strip() or author_address.strip() or "Unknown User"
    if author_address.strip() and author_address.strip() != author:
        author = f"{author} <{author_address.strip()}>"
    return f"[{format_date(at, include_time=True)}] {author}"


def append_note(
    existing: str,
    text: str,
    *,
    author_name: str,
    author_address: str,
    at: datetime,
) -> str:
    """Prepend a new attributed entry; earlier entries are kept verbatim."""
    entry = text.strip()
    if not entry:
        return existing
    header = attribution_header(author_name, author_address, at)
    block = f"{header}\n{entry}"
    if not existing:
        return block
    return f"{block}{ENTRY_SEPARATOR}{existing}"

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

import pytest

from triage_tracker.domain.models import (
    Category,
    Priority,
    Request,
    RequestPatch,
    Status,
    new_placeholder_identity,
)
from triage_tracker.records.cache import OverlayCache

KEY = "<msg-1@client.example>"
NOW = datetime(2024, 3, 4, 10, 30, tzinfo=timezone.utc)


def _raw(identity: str, category: str, status: str = "New", **extra) -> dict:
    return {"Id": identity, "RequestType": category, "RequestStatus": status, **extra}


def _placeholder(category: Category = Category.COMPLIANCE_REQUEST) -> Request:
    return Request(
        identity=new_placeholder_identity(),
        category=category,
        created_at=NOW,
        correlation_key=KEY,
        is_placeholder=True,
    )


def _patch(status: Status = Status.IN_PROGRESS) -> RequestPatch:
    return RequestPatch(
        status=status,
        priority=Priority.HIGH,
        notes="[2024-03-04 10:30 UTC] Riley\nstarted",
        report_link=None,
        completed_at=None,
    )


def test_replace_all_binds_records_to_the_lookup_key() -> None:
    cache = OverlayCache()

    generation = cache.replace_all(
        [_raw("1", "Deal Reporting"), _raw("2", "Other", CorrelationKey="<else@x>")],
        correlation_key=KEY,
    )

    assert generation == 1
    assert [r.identity for r in cache.all()] == ["1", "2"]
    assert cache.find("1").correlation_key == KEY
    assert cache.find("2").correlation_key == KEY
    assert [r.identity for r in cache.for_key(KEY)] == ["1", "2"]


def test_replace_all_drops_duplicate_identities() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other"), _raw("1", "Deal Reporting")], correlation_key=KEY)
    assert len(cache) == 1
    assert cache.find("1").category is Category.OTHER


def test_all_is_an_immutable_snapshot() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    snapshot = cache.all()

    cache.insert_placeholder(_placeholder())

    assert len(snapshot) == 1
    assert len(cache.all()) == 2


def test_insert_placeholder_rejects_non_placeholders_and_reuse() -> None:
    cache = OverlayCache()
    with pytest.raises(ValueError):
        cache.insert_placeholder(Request(identity="7", category=Category.OTHER))

    placeholder = _placeholder()
    cache.insert_placeholder(placeholder)
    with pytest.raises(ValueError):
        cache.insert_placeholder(placeholder)


def test_insert_placeholder_returns_confirmed_counterpart() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("20", "Compliance Request")], correlation_key=KEY)

    result = cache.insert_placeholder(_placeholder())

    assert result.identity == "20"
    assert cache.placeholders() == ()


def test_reconcile_empty_result_preserves_placeholders() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    placeholder = _placeholder()
    cache.insert_placeholder(placeholder)

    assert cache.reconcile([]) is True

    assert cache.all() == (placeholder,)
    assert cache.has_pending(KEY)


def test_reconcile_replaces_placeholder_with_confirmed_record() -> None:
    cache = OverlayCache()
    cache.replace_all([], correlation_key=KEY)
    cache.insert_placeholder(_placeholder())
    ticket = cache.begin_lookup(KEY)

    applied = cache.reconcile([_raw("31", "Compliance Request")], ticket)

    assert applied is True
    assert [r.identity for r in cache.all()] == ["31"]
    assert cache.placeholders() == ()
    assert not cache.has_pending(KEY)


def test_reconcile_keeps_placeholder_without_counterpart() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    placeholder = _placeholder(Category.CONTRACT_EXTENSION)
    cache.insert_placeholder(placeholder)

    cache.reconcile([_raw("1", "Other")], cache.begin_lookup(KEY))

    assert [r.identity for r in cache.all()] == ["1", placeholder.identity]


def test_reconcile_never_duplicates_remote_identities() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    cache.insert_placeholder(_placeholder())

    for _ in range(3):
        cache.reconcile(
            [_raw("1", "Other"), _raw("2", "Compliance Request"), _raw("2", "Other")],
            cache.begin_lookup(KEY),
        )

    identities = [r.identity for r in cache.all()]
    assert sorted(identities) == ["1", "2"]


def test_stale_ticket_from_previous_generation_is_dropped() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    ticket = cache.begin_lookup(KEY)
    cache.replace_all([_raw("2", "Other")], correlation_key=KEY)

    assert cache.reconcile([_raw("9", "Other")], ticket) is False
    assert [r.identity for r in cache.all()] == ["2"]


def test_superseded_ticket_is_dropped() -> None:
    cache = OverlayCache()
    cache.replace_all([], correlation_key=KEY)
    first = cache.begin_lookup(KEY)
    second = cache.begin_lookup(KEY)

    assert cache.reconcile([_raw("2", "Other")], second) is True
    assert cache.reconcile([_raw("1", "Other")], first) is False
    assert [r.identity for r in cache.all()] == ["2"]


def test_apply_patch_and_revert() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    original = cache.find("1")

    handle = cache.apply_patch("1", _patch())

    assert cache.find("1").status is Status.IN_PROGRESS
    assert cache.pending_patch("1") is not None
    assert cache.has_pending(KEY)

    cache.revert_patch(handle)

    assert cache.find("1") == original
    assert cache.pending_patch("1") is None


def test_apply_patch_rejects_unknown_and_placeholder() -> None:
    cache = OverlayCache()
    placeholder = _placeholder()
    cache.insert_placeholder(placeholder)

    with pytest.raises(KeyError):
        cache.apply_patch("missing", _patch())
    with pytest.raises(ValueError):
        cache.apply_patch(placeholder.identity, _patch())


def test_reconcile_reapplies_unconfirmed_patch() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    cache.apply_patch("1", _patch())

    cache.reconcile([_raw("1", "Other", "New")], cache.begin_lookup(KEY))

    assert cache.find("1").status is Status.IN_PROGRESS
    assert cache.has_pending(KEY)

    cache.reconcile(
        [_raw("1", "Other", "In Progress", Priority="High", Notes=_patch().notes)],
        cache.begin_lookup(KEY),
    )

    assert cache.find("1").status is Status.IN_PROGRESS
    assert not cache.has_pending(KEY)


def test_revert_after_full_replace_is_ignored() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other")], correlation_key=KEY)
    handle = cache.apply_patch("1", _patch())
    cache.replace_all([_raw("1", "Other", "On Hold")], correlation_key=KEY)

    cache.revert_patch(handle)

    assert cache.find("1").status is Status.ON_HOLD


def test_reconcile_keeps_patch_until_notes_arrive() -> None:
    cache = OverlayCache()
    cache.replace_all([_raw("1", "Other", Notes="older")], correlation_key=KEY)
    patch = dataclasses.replace(_patch(), notes=f"{_patch().notes}\n\nolder")
    cache.apply_patch("1", patch)

    cache.reconcile(
        [_raw("1", "Other", "In Progress", Priority="High", Notes="older")],
        cache.begin_lookup(KEY),
    )

    assert cache.find("1").notes == patch.notes
    assert cache.pending_patch("1") == patch

    cache.reconcile(
        [_raw("1", "Other", "In Progress", Priority="High", Notes=patch.notes)],
        cache.begin_lookup(KEY),
    )

    assert cache.pending_patch("1") is None


def test_remote_identity_with_placeholder_prefix_stays_confirmed() -> None:
    cache = OverlayCache()
    cache.replace_all([], correlation_key=KEY)
    placeholder = _placeholder(Category.CONTRACT_EXTENSION)
    cache.insert_placeholder(placeholder)

    cache.reconcile(
        [_raw("new-york-42", "Other"), _raw("new-7", "Deal Reporting", IsPlaceholder=True)],
        cache.begin_lookup(KEY),
    )

    assert [r.identity for r in cache.all()] == ["new-york-42", "new-7", placeholder.identity]
    assert not cache.find("new-york-42").is_placeholder
    assert not cache.find("new-7").is_placeholder
    assert cache.placeholders(KEY) == (placeholder,)


def test_reconcile_matches_placeholder_despite_record_key_fields() -> None:
    cache = OverlayCache()
    cache.replace_all([], correlation_key="conv-1")
    placeholder = dataclasses.replace(_placeholder(), correlation_key="conv-1")
    cache.insert_placeholder(placeholder)

    cache.reconcile(
        [_raw("31", "Compliance Request", MessageId=KEY, ConversationId="conv-1")],
        cache.begin_lookup("conv-1"),
    )

    assert [r.identity for r in cache.all()] == ["31"]
    assert cache.find("31").correlation_key == "conv-1"

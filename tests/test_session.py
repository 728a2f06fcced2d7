from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from conftest import FakeRemote

from triage_tracker.domain.models import Category, Status
from triage_tracker.errors import DuplicateConflict, NetworkFailure, RemoteError
from triage_tracker.host.mail import EmailMetadata, StaticMailHost, UserProfile
from triage_tracker.session import (
    CREATE_SUCCESS_MESSAGE,
    LOOKUP_FAILED_MESSAGE,
    NETWORK_FAILURE_MESSAGE,
    UPDATE_SUCCESS_MESSAGE,
    TriageSession,
)
from triage_tracker.utils.time import ManualClock
from triage_tracker.view.forms import NewRequestForm, UpdateRequestForm
from triage_tracker.view.state_machine import ViewState

KEY = "<msg-1@client.example>"


def _record(identity: str, category: str, status: str = "New", **extra) -> dict:
    return {
        "Id": identity,
        "RequestType": {"Value": category},
        "RequestStatus": {"Value": status},
        "TrackedDate": "2024-03-01T09:00:00Z",
        **extra,
    }


def _session(host: StaticMailHost, remote: FakeRemote, clock: ManualClock) -> TriageSession:
    return TriageSession(host, remote, clock=clock, success_banner_seconds=4.0)


def _new_form(session: TriageSession, category: str, status: str = "New", **extra):
    return replace(session.snapshot.new_form, category=category, status=status, **extra)


@pytest.mark.asyncio
async def test_empty_lookup_shows_prefilled_form(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)

    snapshot = await session.start()

    assert remote.lookups == [KEY]
    assert snapshot.state is ViewState.FORM
    assert snapshot.new_form.subject == "Q1 compliance pack"
    assert snapshot.new_form.sender_email == "dana@client.example"
    assert snapshot.new_form.sent_date == "2024-03-04 08:15 UTC"
    await session.aclose()


@pytest.mark.asyncio
async def test_wrapped_lookup_record_shows_list(host, clock) -> None:
    remote = FakeRemote([[_record("7", "Deal Reporting", "New")]])
    session = _session(host, remote, clock)

    snapshot = await session.start()

    assert snapshot.state is ViewState.LIST
    assert len(snapshot.items) == 1
    assert snapshot.items[0].status == "New"
    assert session.cache.find("7").status is Status.NEW
    await session.aclose()


@pytest.mark.asyncio
async def test_lookup_failure_shows_form_with_error(host, clock) -> None:
    remote = FakeRemote([NetworkFailure("offline")])
    session = _session(host, remote, clock)

    snapshot = await session.start()

    assert snapshot.state is ViewState.FORM
    assert snapshot.error == LOOKUP_FAILED_MESSAGE
    await session.aclose()


@pytest.mark.asyncio
async def test_missing_correlation_key_skips_lookup(user, clock) -> None:
    remote = FakeRemote()
    session = _session(StaticMailHost(EmailMetadata(subject="x"), user), remote, clock)

    snapshot = await session.start()

    assert remote.lookups == []
    assert snapshot.state is ViewState.FORM
    assert snapshot.error
    after = await session.submit_new(_new_form(session, "Other"))
    assert after.state is ViewState.FORM
    assert remote.creates == []
    await session.aclose()


@pytest.mark.asyncio
async def test_conversation_mode_keys_by_conversation(host, clock) -> None:
    remote = FakeRemote([[]])
    session = TriageSession(host, remote, correlation_mode="conversation", clock=clock)

    await session.start()

    assert remote.lookups == ["conv-1"]
    await session.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("mode", "key_fields"),
    [
        ("conversation", {"ConversationId": "conv-1", "MessageId": KEY}),
        ("message", {"ConversationId": "conv-1"}),
    ],
)
async def test_duplicate_detected_when_records_carry_other_key_fields(
    host, clock, mode, key_fields
) -> None:
    remote = FakeRemote([[_record("7", "Compliance Request", **key_fields)]])
    session = TriageSession(host, remote, correlation_mode=mode, clock=clock)
    await session.start()
    session.open_create_form()

    snapshot = await session.submit_new(
        _new_form(session, "Compliance Request", reports_requested="1")
    )

    assert remote.creates == []
    assert snapshot.state is ViewState.LIST
    assert snapshot.selected == "7"
    assert session.cache.find("7").correlation_key == session.correlation_key
    await session.aclose()


@pytest.mark.asyncio
async def test_conversation_mode_placeholder_confirmed_by_lookup(host, clock) -> None:
    confirmed = _record("31", "Compliance Request", ConversationId="conv-1", MessageId=KEY)
    remote = FakeRemote([[], [confirmed]])
    session = TriageSession(
        host, remote, correlation_mode="conversation", reconcile_delays=(2.5,), clock=clock
    )
    await session.start()

    await session.submit_new(_new_form(session, "Compliance Request", reports_requested="1"))
    assert remote.creates[0]["correlationKey"] == "conv-1"
    assert len(session.cache.placeholders("conv-1")) == 1

    await clock.advance(2.5)

    assert remote.lookups == ["conv-1", "conv-1"]
    assert [r.identity for r in session.cache.all()] == ["31"]
    assert session.snapshot.items[0].processing is False
    await session.aclose()


@pytest.mark.asyncio
async def test_refused_navigation_shows_error_banner(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()

    snapshot = session.select("7")

    assert snapshot.state is ViewState.FORM
    assert snapshot.error == "Selection is only possible on the request list"
    assert session.open_update_form().state is ViewState.FORM
    await session.aclose()


@pytest.mark.asyncio
async def test_create_inserts_placeholder_then_reconciles(host, clock) -> None:
    remote = FakeRemote([[], [], [_record("31", "Compliance Request")]])
    session = _session(host, remote, clock)
    await session.start()

    snapshot = await session.submit_new(
        _new_form(session, "Compliance Request", reports_requested="1")
    )

    assert snapshot.state is ViewState.LIST
    assert snapshot.success == CREATE_SUCCESS_MESSAGE
    assert len(remote.creates) == 1
    assert remote.creates[0]["emailBody"] == "Please send the quarterly reports."
    assert remote.creates[0]["correlationKey"] == KEY
    (placeholder,) = session.cache.all()
    assert placeholder.is_placeholder
    assert placeholder.identity.startswith("new-")
    assert snapshot.items[0].processing is True
    assert session.scheduler.is_scheduled(KEY)

    await clock.advance(2.5)
    assert len(session.cache.placeholders()) == 1
    assert session.snapshot.items[0].processing is True

    await clock.advance(5.0)

    assert [r.identity for r in session.cache.all()] == ["31"]
    assert session.snapshot.items[0].identity == "31"
    assert session.snapshot.items[0].processing is False
    assert not session.scheduler.is_scheduled(KEY)
    await session.aclose()


@pytest.mark.asyncio
async def test_remote_duplicate_conflict_stays_on_form(host, clock) -> None:
    remote = FakeRemote([[]], create_error=DuplicateConflict(409, {"message": "exists"}))
    session = _session(host, remote, clock)
    await session.start()
    form = _new_form(session, "Deal Reporting", notes="keep me")

    snapshot = await session.submit_new(form)

    assert snapshot.state is ViewState.FORM
    assert snapshot.error == "A Deal Reporting request already exists for this email."
    assert snapshot.new_form == form
    assert snapshot.busy is False
    assert session.cache.all() == ()
    assert not session.scheduler.is_scheduled(KEY)
    await session.aclose()


@pytest.mark.asyncio
async def test_update_of_placeholder_rejected_without_network(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    await session.submit_new(_new_form(session, "Other"))
    placeholder = session.cache.all()[0]
    calls_before = remote.call_count

    session.select(placeholder.identity)
    refused = session.open_update_form()
    snapshot = await session.submit_update(
        UpdateRequestForm(identity=placeholder.identity, status="In Progress")
    )

    assert refused.state is ViewState.LIST
    assert "still processing" in refused.error
    assert "still processing" in snapshot.error
    assert remote.call_count == calls_before
    await session.aclose()


@pytest.mark.asyncio
async def test_two_categories_coexist(host, clock) -> None:
    remote = FakeRemote(
        [
            [],
            [_record("31", "ComplianceRequest"), _record("32", "ContractExtension")],
        ]
    )
    session = _session(host, remote, clock)
    await session.start()

    await session.submit_new(_new_form(session, "ComplianceRequest", reports_requested="1"))
    session.open_create_form()
    second = await session.submit_new(_new_form(session, "ContractExtension"))

    assert second.success == CREATE_SUCCESS_MESSAGE
    assert len(remote.creates) == 2
    assert len(session.cache.placeholders(KEY)) == 2

    await clock.advance(2.5)

    records = session.cache.all()
    assert sorted(r.identity for r in records) == ["31", "32"]
    assert {r.category for r in records} == {
        Category.COMPLIANCE_REQUEST,
        Category.CONTRACT_EXTENSION,
    }
    assert not any(r.is_placeholder for r in records)
    await session.aclose()


@pytest.mark.asyncio
async def test_local_duplicate_blocks_create(host, clock) -> None:
    remote = FakeRemote([[_record("7", "Deal Reporting", "In Progress")]])
    session = _session(host, remote, clock)
    await session.start()
    session.open_create_form()

    snapshot = await session.submit_new(_new_form(session, "deal reporting"))

    assert remote.creates == []
    assert snapshot.state is ViewState.LIST
    assert snapshot.selected == "7"
    assert "Status: In Progress, created 2024-03-01" in snapshot.error
    await session.aclose()


@pytest.mark.asyncio
async def test_duplicate_of_own_placeholder_blocks_second_create(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    await session.submit_new(_new_form(session, "Other"))
    session.open_create_form()

    snapshot = await session.submit_new(_new_form(session, "Other"))

    assert len(remote.creates) == 1
    assert "still processing" in snapshot.error
    await session.aclose()


@pytest.mark.asyncio
async def test_completion_without_link_rejected_locally(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    calls_before = remote.call_count

    snapshot = await session.submit_new(_new_form(session, "Compliance Request", "Completed"))

    assert snapshot.state is ViewState.FORM
    assert snapshot.error == "A Report Link is required for 'Completed' status."
    assert remote.call_count == calls_before
    await session.aclose()


@pytest.mark.asyncio
async def test_host_body_failure_keeps_form(metadata, user, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(StaticMailHost(metadata, user, body=None), remote, clock)
    await session.start()

    snapshot = await session.submit_new(_new_form(session, "Other"))

    assert snapshot.state is ViewState.FORM
    assert snapshot.error == "Could not retrieve email body."
    assert remote.creates == []
    await session.aclose()


@pytest.mark.asyncio
async def test_create_remote_and_network_failures(host, clock) -> None:
    remote = FakeRemote([[]], create_error=RemoteError(500, "flow crashed"))
    session = _session(host, remote, clock)
    await session.start()

    snapshot = await session.submit_new(_new_form(session, "Other"))
    assert snapshot.error == "Submission failed. Status: 500. Details: flow crashed"

    remote.create_error = NetworkFailure("offline")
    snapshot = await session.submit_new(_new_form(session, "Other"))
    assert snapshot.error == NETWORK_FAILURE_MESSAGE
    assert session.cache.all() == ()
    await session.aclose()


@pytest.mark.asyncio
async def test_busy_guard_suppresses_repeated_submit(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    release = asyncio.Event()

    async def slow_body() -> str:
        await release.wait()
        return "body"

    host.get_body_text = slow_body  # type: ignore[method-assign]
    form = _new_form(session, "Other")

    first = asyncio.create_task(session.submit_new(form))
    await asyncio.sleep(0)
    assert session.view.busy

    ignored = await session.submit_new(form)
    release.set()
    await first

    assert ignored.busy is True
    assert len(remote.creates) == 1
    assert session.view.busy is False
    await session.aclose()


@pytest.mark.asyncio
async def test_success_banner_expires(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    await session.submit_new(_new_form(session, "Other"))

    await clock.advance(3.9)
    assert session.snapshot.success == CREATE_SUCCESS_MESSAGE

    await clock.advance(0.1)
    assert session.snapshot.banner is None
    await session.aclose()


@pytest.mark.asyncio
async def test_update_success_applies_patch_and_reconciles(host, clock) -> None:
    remote = FakeRemote(
        [
            [_record("7", "Deal Reporting", "New")],
            [_record("7", "Deal Reporting", "New")],
            [_record("7", "Deal Reporting", "Completed", Priority="High")],
        ]
    )
    session = _session(host, remote, clock)
    await session.start()
    session.select("7")
    opened = session.open_update_form()
    assert opened.state is ViewState.UPDATE_FORM

    snapshot = await session.submit_update(
        replace(opened.update_form, status="Completed", priority="High", note="sent")
    )

    assert snapshot.state is ViewState.LIST
    assert snapshot.success == UPDATE_SUCCESS_MESSAGE
    payload = remote.updates[0]
    assert payload["requestId"] == 7
    assert payload["requestStatus"] == "Completed"
    assert payload["completionDate"] == clock.now().isoformat()
    assert payload["notes"].startswith("[2024-03-04 10:30 UTC] Riley Analyst")
    assert payload["updatedBy"] == "riley@firm.example"
    record = session.cache.find("7")
    assert record.status is Status.COMPLETED
    assert session.cache.pending_patch("7") is not None
    assert session.scheduler.is_scheduled(KEY)

    await clock.advance(2.5)

    assert session.cache.pending_patch("7") is None
    assert not session.scheduler.is_scheduled(KEY)
    await session.aclose()


@pytest.mark.asyncio
async def test_update_failure_rolls_back(host, clock) -> None:
    remote = FakeRemote(
        [[_record("7", "Deal Reporting", "New")]], update_error=RemoteError(502, None)
    )
    session = _session(host, remote, clock)
    await session.start()
    session.select("7")
    opened = session.open_update_form()
    edited = replace(opened.update_form, status="On Hold")

    snapshot = await session.submit_update(edited)

    assert snapshot.state is ViewState.UPDATE_FORM
    assert snapshot.error == "Update failed. Status: 502."
    assert snapshot.update_form == edited
    assert session.cache.find("7").status is Status.NEW
    assert session.cache.pending_patch("7") is None
    await session.aclose()


@pytest.mark.asyncio
async def test_refresh_discards_optimistic_state(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()
    await session.submit_new(_new_form(session, "Other"))
    assert session.scheduler.is_scheduled(KEY)

    snapshot = await session.refresh()

    assert not session.scheduler.is_scheduled(KEY)
    assert session.cache.all() == ()
    assert snapshot.state is ViewState.FORM
    await session.aclose()


@pytest.mark.asyncio
async def test_change_category_toggles_reports_requested(host, clock) -> None:
    session = _session(host, FakeRemote([[]]), clock)
    await session.start()

    snapshot = session.change_category("Compliance Request")

    assert snapshot.new_form.reports_requested == "1"
    assert session.reset_form().new_form.category == ""
    await session.aclose()


@pytest.mark.asyncio
async def test_aclose_closes_remote(host, clock) -> None:
    remote = FakeRemote([[]])
    session = _session(host, remote, clock)
    await session.start()

    await session.aclose()

    assert remote.closed is True


def test_user_identity_fallback() -> None:
    assert UserProfile().identity == "Unknown User"

from __future__ import annotations

import asyncio
import contextlib
import os
from datetime import datetime, timezone
from typing import Any

import pytest

from triage_tracker.errors import TrackerError
from triage_tracker.host.mail import EmailMetadata, StaticMailHost, UserProfile
from triage_tracker.utils.time import ManualClock


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep unit runs independent of any local endpoint configuration.
    for key in ("TRACKER_LOOKUP_URL", "TRACKER_CREATE_URL", "TRACKER_UPDATE_URL"):
        os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


class FakeRemote:
    """In-memory remote that records every call.

    ``lookup_results`` is consumed front to back; the last entry repeats.
    Entries that are exceptions are raised instead of returned.
    """

    def __init__(
        self,
        lookup_results: list[Any] | None = None,
        *,
        create_error: TrackerError | None = None,
        update_error: TrackerError | None = None,
    ) -> None:
        self.lookup_results = list(lookup_results or [[]])
        self.create_error = create_error
        self.update_error = update_error
        self.lookups: list[str] = []
        self.creates: list[dict[str, Any]] = []
        self.updates: list[dict[str, Any]] = []
        self.closed = False

    async def lookup(self, correlation_key: str) -> list[object]:
        self.lookups.append(correlation_key)
        result = self.lookup_results[0]
        if len(self.lookup_results) > 1:
            self.lookup_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def create(self, payload: dict[str, Any]) -> Any:
        self.creates.append(payload)
        if self.create_error is not None:
            raise self.create_error
        return {"ok": True}

    async def update(self, payload: dict[str, Any]) -> Any:
        self.updates.append(payload)
        if self.update_error is not None:
            raise self.update_error
        return {"ok": True}

    async def aclose(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.lookups) + len(self.creates) + len(self.updates)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2024, 3, 4, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def metadata() -> EmailMetadata:
    return EmailMetadata(
        subject="Q1 compliance pack",
        sender_name="Dana Client",
        sender_email="dana@client.example",
        sent_at=datetime(2024, 3, 4, 8, 15, tzinfo=timezone.utc),
        item_id="AAMkItem1",
        internet_message_id="<msg-1@client.example>",
        conversation_id="conv-1",
    )


@pytest.fixture
def user() -> UserProfile:
    return UserProfile(display_name="Riley Analyst", email_address="riley@firm.example")


@pytest.fixture
def host(metadata: EmailMetadata, user: UserProfile) -> StaticMailHost:
    return StaticMailHost(metadata, user, body="Please send the quarterly reports.")


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()

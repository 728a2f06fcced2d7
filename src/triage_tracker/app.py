"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from triage_tracker.config import Settings, load_settings
from triage_tracker.host.mail import MailHost
from triage_tracker.remote.client import TrackerClient, TrackerRemote
from triage_tracker.session import TriageSession
from triage_tracker.utils.time import Clock


@dataclass
class AppContext:
    """Process-wide dependencies shared by every session.

    Initialized once at startup and cached for the lifetime of the process.
    """

    settings: Settings


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the application context."""
    return AppContext(settings=load_settings())


def create_session(
    host: MailHost,
    *,
    settings: Settings | None = None,
    remote: TrackerRemote | None = None,
    clock: Clock | None = None,
) -> TriageSession:
    """Build a session for the email exposed by ``host``.

    Without an explicit ``remote`` an HTTP client is created from the endpoint
    settings, which raises ``RuntimeError`` when any endpoint is missing.
    """
    settings = settings or get_app_context().settings
    mode = settings.session.correlation_key_mode
    if remote is None:
        remote = TrackerClient.from_settings(settings.endpoints, correlation_mode=mode)
    return TriageSession(
        host,
        remote,
        correlation_mode=mode,
        reconcile_delays=settings.reconciliation.delays_seconds,
        success_banner_seconds=settings.session.success_banner_seconds,
        clock=clock,
    )

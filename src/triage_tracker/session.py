"""Session owning the per-email state and orchestrating user operations.

One ``TriageSession`` exists per open email. It owns the overlay cache, the
reconciliation scheduler, the view state machine and the collaborators, so no
module keeps mutable globals.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from triage_tracker.domain.models import Request, Status, new_placeholder_identity
from triage_tracker.errors import (
    DuplicateConflict,
    HostFailure,
    NetworkFailure,
    RemoteError,
    TrackerError,
    ValidationError,
)
from triage_tracker.host.mail import CorrelationMode, MailHost, correlation_key_for
from triage_tracker.records.cache import OverlayCache
from triage_tracker.records.duplicate_guard import duplicate_conflict_message, has_conflict
from triage_tracker.records.normalizer import DiagnosticSink
from triage_tracker.reconciliation.scheduler import ReconciliationScheduler
from triage_tracker.remote.client import TrackerRemote
from triage_tracker.remote.payloads import build_create_payload, build_update_payload
from triage_tracker.utils.time import Clock, SystemClock
from triage_tracker.view.forms import (
    NewRequestForm,
    UpdateRequestForm,
    validate_new_request,
    validate_update,
)
from triage_tracker.view.state_machine import (
    NOT_FOUND_MESSAGE,
    InvalidTransition,
    ViewSnapshot,
    ViewState,
    ViewStateMachine,
)

logger = logging.getLogger(__name__)

LOADING_MESSAGE = "Checking for existing requests..."
LOOKUP_FAILED_MESSAGE = "Could not check for existing requests. Please try again."
NO_CORRELATION_KEY_MESSAGE = (
    "Could not identify this email. Existing requests cannot be checked."
)
UNTRACKABLE_EMAIL_MESSAGE = "This email has no identifier, so a request cannot be tracked."
NETWORK_FAILURE_MESSAGE = "Could not reach the request service. Please try again."
CREATE_SUCCESS_MESSAGE = "Request created successfully!"
UPDATE_SUCCESS_MESSAGE = "Request updated successfully!"


def _failure_message(action: str, exc: TrackerError) -> str:
    if isinstance(exc, NetworkFailure):
        return NETWORK_FAILURE_MESSAGE
    if isinstance(exc, RemoteError):
        message = f"{action} failed. Status: {exc.status}."
        if exc.detail:
            message = f"{message} Details: {exc.detail}"
        return message
    return exc.message


class TriageSession:
    """Everything the add-in knows about the currently open email."""

    def __init__(
        self,
        host: MailHost,
        remote: TrackerRemote,
        *,
        correlation_mode: CorrelationMode = "message",
        reconcile_delays: Sequence[float] = (2.5, 5.0),
        success_banner_seconds: float = 4.0,
        clock: Clock | None = None,
        sink: DiagnosticSink | None = None,
    ) -> None:
        self._host = host
        self._remote = remote
        self._clock = clock or SystemClock()
        self._success_banner_seconds = success_banner_seconds
        self._banner_tasks: set[asyncio.Task[None]] = set()

        self.correlation_key = correlation_key_for(host.metadata, correlation_mode)
        self.cache = OverlayCache(sink=sink)
        self.view = ViewStateMachine(prefill=NewRequestForm.from_email(host.metadata))
        self.scheduler = ReconciliationScheduler(
            self.cache,
            remote.lookup,
            delays=reconcile_delays,
            clock=self._clock,
            on_reconciled=self._on_reconciled,
        )

    @property
    def snapshot(self) -> ViewSnapshot:
        return self.view.snapshot

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    async def start(self) -> ViewSnapshot:
        """Initial lookup for the open email."""
        return await self._load()

    async def refresh(self) -> ViewSnapshot:
        """User-initiated full reload; discards optimistic state."""
        return await self._load()

    async def _load(self) -> ViewSnapshot:
        key = self.correlation_key
        if key:
            self.scheduler.cancel(key)
        self.view.show_loading(LOADING_MESSAGE)
        if not key:
            logger.warning("Open email has no correlation key; skipping lookup")
            return self.view.lookup_failed(NO_CORRELATION_KEY_MESSAGE)

        try:
            records = await self._remote.lookup(key)
        except TrackerError as exc:
            logger.warning("Lookup for %s failed: %s", key, exc)
            return self.view.lookup_failed(LOOKUP_FAILED_MESSAGE)

        self.cache.replace_all(records, correlation_key=key)
        logger.info("Found %d existing request(s) for %s", len(self.cache), key)
        return self.view.lookup_completed(self.cache.all())

    def _on_reconciled(self, correlation_key: str) -> None:
        self.view.refresh_items(self.cache.all())

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------
    def _navigate(self, move: Callable[[], ViewSnapshot]) -> ViewSnapshot:
        """Run a view transition; a refused one stays put with an error banner."""
        try:
            return move()
        except InvalidTransition as exc:
            logger.info("Navigation refused in %s: %s", self.view.state.value, exc)
            return self.view.show_error(str(exc))

    def select(self, identity: str | None) -> ViewSnapshot:
        return self._navigate(lambda: self.view.select(identity))

    def open_update_form(self) -> ViewSnapshot:
        selected = self.view.snapshot.selected
        request = self.cache.find(selected) if selected else None
        return self._navigate(lambda: self.view.open_update_form(request))

    def open_create_form(self) -> ViewSnapshot:
        return self._navigate(self.view.open_create_form)

    def back_to_list(self) -> ViewSnapshot:
        return self._navigate(self.view.back_to_list)

    def change_category(self, category: str) -> ViewSnapshot:
        form = self.view.snapshot.new_form.with_category(category)
        return self._navigate(lambda: self.view.edit_new_form(form))

    def reset_form(self) -> ViewSnapshot:
        return self._navigate(self.view.reset_new_form)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    async def submit_new(self, form: NewRequestForm) -> ViewSnapshot:
        """Validate, guard against duplicates, create and insert a placeholder."""
        if self.view.busy:
            logger.debug("Create ignored: a submission is already in flight")
            return self.view.snapshot
        self.view.edit_new_form(form)

        try:
            validated = validate_new_request(form)
        except ValidationError as exc:
            return self.view.create_failed(form, exc.message)

        key = self.correlation_key
        if not key:
            return self.view.create_failed(form, UNTRACKABLE_EMAIL_MESSAGE)

        conflict = has_conflict(self.cache.all(), key, validated.category)
        if conflict is not None:
            logger.info(
                "Create blocked: %s already tracked as %s",
                validated.category.value,
                conflict.identity,
            )
            return self.view.create_rejected_duplicate(
                self.cache.all(),
                conflict,
                duplicate_conflict_message(validated.category, conflict),
            )

        self.view.set_busy(True)
        user = self._host.user
        tracked_at = self._clock.now()
        try:
            body = await self._host.get_body_text()
            payload = build_create_payload(
                validated,
                metadata=self._host.metadata,
                user=user,
                correlation_key=key,
                email_body=body,
                tracked_at=tracked_at,
            )
            await self._remote.create(payload)
        except DuplicateConflict:
            logger.info("Create for %s rejected by the store as duplicate", key)
            return self.view.create_failed(
                form, duplicate_conflict_message(validated.category)
            )
        except HostFailure as exc:
            logger.warning("Email body unavailable: %s", exc)
            return self.view.create_failed(form, exc.message)
        except TrackerError as exc:
            return self.view.create_failed(form, _failure_message("Submission", exc))
        except Exception:
            self.view.set_busy(False)
            raise

        placeholder = Request(
            identity=new_placeholder_identity(),
            category=validated.category,
            status=validated.status,
            priority=validated.priority,
            notes=validated.notes,
            report_link=validated.report_link,
            created_at=tracked_at,
            completed_at=tracked_at if validated.status is Status.COMPLETED else None,
            correlation_key=key,
            is_placeholder=True,
            reports_requested=validated.reports_requested,
            due_date=validated.due_date,
            assigned_to=user.identity,
        )
        self.cache.insert_placeholder(placeholder)
        snapshot = self.view.create_succeeded(self.cache.all(), CREATE_SUCCESS_MESSAGE)
        self.scheduler.schedule(key)
        self._expire_success_banner(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------
    def _reject_update(self, form: UpdateRequestForm, message: str) -> ViewSnapshot:
        if self.view.state is ViewState.UPDATE_FORM:
            return self.view.update_failed(form, message)
        return self.view.show_error(message)

    async def submit_update(self, form: UpdateRequestForm) -> ViewSnapshot:
        """Optimistically patch the record, send the update and reconcile."""
        if self.view.busy:
            logger.debug("Update ignored: a submission is already in flight")
            return self.view.snapshot
        if self.view.state is ViewState.UPDATE_FORM:
            self.view.edit_update_form(form)

        request = self.cache.find(form.identity)
        if request is None:
            return self._reject_update(form, NOT_FOUND_MESSAGE)
        try:
            validated = validate_update(form, request)
        except ValidationError as exc:
            return self._reject_update(form, exc.message)

        key = request.correlation_key or self.correlation_key
        user = self._host.user
        patch = validated.to_patch(request, user, self._clock.now())
        payload = build_update_payload(
            request,
            validated,
            notes=patch.notes,
            user=user,
            correlation_key=key,
            completed_at=patch.completed_at,
        )
        handle = self.cache.apply_patch(request.identity, patch)
        self.view.set_busy(True)
        try:
            await self._remote.update(payload)
        except TrackerError as exc:
            logger.warning("Update of %s failed: %s", request.identity, exc)
            self.cache.revert_patch(handle)
            return self.view.update_failed(form, _failure_message("Update", exc))
        except Exception:
            self.cache.revert_patch(handle)
            self.view.set_busy(False)
            raise

        ticket = self.cache.begin_lookup(key)
        try:
            records = await self._remote.lookup(key)
        except TrackerError as exc:
            logger.info("Lookup after updating %s failed: %s", request.identity, exc)
        else:
            self.cache.reconcile(records, ticket)

        snapshot = self.view.update_succeeded(self.cache.all(), UPDATE_SUCCESS_MESSAGE)
        if self.cache.has_pending(key):
            self.scheduler.schedule(key)
        self._expire_success_banner(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # banners and lifecycle
    # ------------------------------------------------------------------
    def _expire_success_banner(self, snapshot: ViewSnapshot) -> None:
        banner = snapshot.banner
        if banner is None or self._success_banner_seconds <= 0:
            return
        task = asyncio.get_running_loop().create_task(self._expire_later(banner.serial))
        self._banner_tasks.add(task)
        task.add_done_callback(self._banner_tasks.discard)

    async def _expire_later(self, serial: int) -> None:
        await self._clock.sleep(self._success_banner_seconds)
        self.view.expire_banner(serial)

    async def aclose(self) -> None:
        tasks = list(self._banner_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.scheduler.aclose()
        close = getattr(self._remote, "aclose", None)
        if close is not None:
            await close()

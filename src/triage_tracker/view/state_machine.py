"""State machine selecting the active surface of the add-in.

States are ``Loading``, ``Form`` (create), ``List`` and ``UpdateForm``. A
banner (error or success) is shown orthogonally to the state. Every change is
published as an immutable ``ViewSnapshot`` to subscribed listeners, which is
all a renderer needs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from triage_tracker.domain.models import Request
from triage_tracker.utils.time import format_date
from triage_tracker.view.forms import (
    STILL_PROCESSING_MESSAGE,
    NewRequestForm,
    UpdateRequestForm,
)

logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    LOADING = "loading"
    FORM = "form"
    LIST = "list"
    UPDATE_FORM = "update_form"


class BannerKind(str, Enum):
    ERROR = "error"
    SUCCESS = "success"


class InvalidTransition(RuntimeError):
    """Raised when a transition is not allowed from the current state."""


@dataclass(frozen=True)
class Banner:
    kind: BannerKind
    message: str
    serial: int


@dataclass(frozen=True)
class ListItem:
    identity: str
    category: str
    status: str
    status_slug: str
    priority: str
    created: str
    processing: bool

    @classmethod
    def from_request(cls, request: Request) -> "ListItem":
        return cls(
            identity=request.identity,
            category=request.category.value,
            status=request.status.value,
            status_slug=request.status.slug,
            priority=request.priority.value,
            created=format_date(request.created_at),
            processing=request.is_placeholder,
        )


@dataclass(frozen=True)
class ViewSnapshot:
    state: ViewState
    banner: Banner | None = None
    items: tuple[ListItem, ...] = ()
    selected: str | None = None
    new_form: NewRequestForm = field(default_factory=NewRequestForm)
    update_form: UpdateRequestForm | None = None
    busy: bool = False
    loading_message: str = ""

    @property
    def error(self) -> str | None:
        if self.banner is not None and self.banner.kind is BannerKind.ERROR:
            return self.banner.message
        return None

    @property
    def success(self) -> str | None:
        if self.banner is not None and self.banner.kind is BannerKind.SUCCESS:
            return self.banner.message
        return None

    def item(self, identity: str) -> ListItem | None:
        for item in self.items:
            if item.identity == identity:
                return item
        return None


Listener = Callable[[ViewSnapshot], None]

_TRANSITIONS: dict[ViewState, frozenset[ViewState]] = {
    ViewState.LOADING: frozenset({ViewState.LOADING, ViewState.FORM, ViewState.LIST}),
    ViewState.FORM: frozenset({ViewState.FORM, ViewState.LIST, ViewState.LOADING}),
    ViewState.LIST: frozenset(
        {ViewState.LIST, ViewState.FORM, ViewState.UPDATE_FORM, ViewState.LOADING}
    ),
    ViewState.UPDATE_FORM: frozenset(
        {ViewState.UPDATE_FORM, ViewState.LIST, ViewState.FORM, ViewState.LOADING}
    ),
}

NO_SELECTION_MESSAGE = "Please select a request to update."
NOT_FOUND_MESSAGE = "Could not find the selected request."


class ViewStateMachine:
    """Drives the view from cache contents and operation outcomes."""

    def __init__(self, prefill: NewRequestForm | None = None) -> None:
        self._prefill = prefill or NewRequestForm()
        self._snapshot = ViewSnapshot(
            state=ViewState.LOADING,
            new_form=self._prefill,
            loading_message="Loading...",
        )
        self._serial = 0
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    @property
    def snapshot(self) -> ViewSnapshot:
        return self._snapshot

    @property
    def state(self) -> ViewState:
        return self._snapshot.state

    @property
    def busy(self) -> bool:
        return self._snapshot.busy

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _banner(self, kind: BannerKind, message: str) -> Banner:
        self._serial += 1
        return Banner(kind=kind, message=message, serial=self._serial)

    def _publish(self, snapshot: ViewSnapshot) -> ViewSnapshot:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def _move(
        self,
        target: ViewState,
        *,
        error: str | None = None,
        success: str | None = None,
        navigation: bool = False,
        **changes: object,
    ) -> ViewSnapshot:
        current = self._snapshot
        if target not in _TRANSITIONS[current.state]:
            raise InvalidTransition(f"Cannot move from {current.state.value} to {target.value}")

        banner = current.banner
        if error is not None:
            banner = self._banner(BannerKind.ERROR, error)
        elif success is not None:
            banner = self._banner(BannerKind.SUCCESS, success)
        elif navigation and banner is not None and banner.kind is BannerKind.ERROR:
            banner = None

        if target is not current.state:
            logger.debug("View %s -> %s", current.state.value, target.value)
        return self._publish(replace(current, state=target, banner=banner, **changes))

    @staticmethod
    def _items(records: Iterable[Request]) -> tuple[ListItem, ...]:
        return tuple(ListItem.from_request(record) for record in records)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    def show_loading(self, message: str = "Loading...") -> ViewSnapshot:
        return self._move(ViewState.LOADING, loading_message=message, update_form=None)

    def lookup_completed(self, records: Iterable[Request]) -> ViewSnapshot:
        """Show the list when requests exist, otherwise the pre-filled form."""
        items = self._items(records)
        if items:
            return self._move(ViewState.LIST, items=items, selected=None)
        return self._move(ViewState.FORM, items=items, selected=None, new_form=self._prefill)

    def lookup_failed(self, message: str) -> ViewSnapshot:
        return self._move(
            ViewState.FORM, error=message, items=(), selected=None, new_form=self._prefill
        )

    def refresh_items(self, records: Iterable[Request]) -> ViewSnapshot:
        """Background redraw; replays the current banner untouched."""
        items = self._items(records)
        current = self._snapshot
        selected = current.selected if any(i.identity == current.selected for i in items) else None
        if current.state is ViewState.LIST and not items:
            return self._move(ViewState.FORM, items=items, selected=None, new_form=self._prefill)
        return self._move(current.state, items=items, selected=selected)

    # ------------------------------------------------------------------
    # list interactions
    # ------------------------------------------------------------------
    def select(self, identity: str | None) -> ViewSnapshot:
        if self.state is not ViewState.LIST:
            raise InvalidTransition("Selection is only possible on the request list")
        if identity is not None and self._snapshot.item(identity) is None:
            identity = None
        return self._move(ViewState.LIST, selected=identity)

    def open_update_form(self, request: Request | None) -> ViewSnapshot:
        """``List -> UpdateForm``; refused with an error for placeholders."""
        if self.state is not ViewState.LIST:
            raise InvalidTransition("The update form opens from the request list")
        if self._snapshot.selected is None:
            return self._move(ViewState.LIST, error=NO_SELECTION_MESSAGE)
        if request is None:
            return self._move(ViewState.LIST, error=NOT_FOUND_MESSAGE)
        if not request.updatable:
            return self._move(ViewState.LIST, error=STILL_PROCESSING_MESSAGE)
        return self._move(
            ViewState.UPDATE_FORM,
            navigation=True,
            update_form=UpdateRequestForm.from_request(request),
        )

    def open_create_form(self) -> ViewSnapshot:
        return self._move(ViewState.FORM, navigation=True, new_form=self._prefill)

    def back_to_list(self) -> ViewSnapshot:
        if not self._snapshot.items:
            return self._move(ViewState.FORM, navigation=True)
        return self._move(ViewState.LIST, navigation=True, update_form=None)

    # ------------------------------------------------------------------
    # forms
    # ------------------------------------------------------------------
    def edit_new_form(self, form: NewRequestForm) -> ViewSnapshot:
        return self._move(ViewState.FORM, new_form=form)

    def reset_new_form(self) -> ViewSnapshot:
        return self._move(ViewState.FORM, navigation=True, new_form=self._prefill)

    def edit_update_form(self, form: UpdateRequestForm) -> ViewSnapshot:
        return self._move(ViewState.UPDATE_FORM, update_form=form)

    def set_busy(self, busy: bool) -> ViewSnapshot:
        return self._move(self.state, busy=busy)

    def create_succeeded(self, records: Iterable[Request], message: str) -> ViewSnapshot:
        return self._move(
            ViewState.LIST,
            success=message,
            items=self._items(records),
            selected=None,
            new_form=self._prefill,
            busy=False,
        )

    def create_rejected_duplicate(
        self, records: Iterable[Request], conflict: Request, message: str
    ) -> ViewSnapshot:
        """Send the user to the existing request instead of a duplicate."""
        return self._move(
            ViewState.LIST,
            error=message,
            items=self._items(records),
            selected=conflict.identity,
            busy=False,
        )

    def create_failed(self, form: NewRequestForm, message: str) -> ViewSnapshot:
        return self._move(ViewState.FORM, error=message, new_form=form, busy=False)

    def update_succeeded(self, records: Iterable[Request], message: str) -> ViewSnapshot:
        current = self._snapshot
        items = self._items(records)
        selected = current.selected if any(i.identity == current.selected for i in items) else None
        return self._move(
            ViewState.LIST,
            success=message,
            items=items,
            selected=selected,
            update_form=None,
            busy=False,
        )

    def update_failed(self, form: UpdateRequestForm, message: str) -> ViewSnapshot:
        return self._move(ViewState.UPDATE_FORM, error=message, update_form=form, busy=False)

    # ------------------------------------------------------------------
    # banners
    # ------------------------------------------------------------------
    def show_error(self, message: str) -> ViewSnapshot:
        return self._move(self.state, error=message)

    def show_success(self, message: str) -> ViewSnapshot:
        return self._move(self.state, success=message)

    def expire_banner(self, serial: int) -> ViewSnapshot:
        """Hide a banner unless it was replaced in the meantime."""
        banner = self._snapshot.banner
        if banner is None or banner.serial != serial:
            return self._snapshot
        return self._publish(replace(self._snapshot, banner=None))


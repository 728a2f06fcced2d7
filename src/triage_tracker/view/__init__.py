"""View state machine and the form models it carries."""

from triage_tracker.view.forms import (
    NewRequestForm,
    UpdateRequestForm,
    ValidatedNewRequest,
    ValidatedUpdate,
    validate_new_request,
    validate_update,
)
from triage_tracker.view.state_machine import (
    Banner,
    BannerKind,
    InvalidTransition,
    ListItem,
    ViewSnapshot,
    ViewState,
    ViewStateMachine,
)

__all__ = [
    "Banner",
    "BannerKind",
    "InvalidTransition",
    "ListItem",
    "NewRequestForm",
    "UpdateRequestForm",
    "ValidatedNewRequest",
    "ValidatedUpdate",
    "ViewSnapshot",
    "ViewState",
    "ViewStateMachine",
    "validate_new_request",
    "validate_update",
]

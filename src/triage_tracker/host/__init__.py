"""Host mail client collaborator boundary."""

from triage_tracker.host.mail import (
    EmailMetadata,
    MailHost,
    StaticMailHost,
    UserProfile,
    correlation_key_for,
)

__all__ = [
    "EmailMetadata",
    "MailHost",
    "StaticMailHost",
    "UserProfile",
    "correlation_key_for",
]

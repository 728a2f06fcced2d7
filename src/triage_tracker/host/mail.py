"""Boundary to the host mail client.

The host supplies read-only metadata for the open email and its body text.
Callback-style host APIs are wrapped by implementations of ``MailHost`` into
a single awaitable with an explicit failure (``HostFailure``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

from triage_tracker.errors import HostFailure

CorrelationMode = Literal["message", "conversation"]


@dataclass(frozen=True)
class EmailMetadata:
    subject: str = ""
    sender_name: str = ""
    sender_email: str = ""
    sent_at: datetime | None = None
    item_id: str = ""
    internet_message_id: str = ""
    conversation_id: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EmailMetadata":
        sent_at = data.get("sent_at") or data.get("sentDate")
        if isinstance(sent_at, str) and sent_at.strip():
            sent_at = datetime.fromisoformat(sent_at.strip().replace("Z", "+00:00"))
        elif not isinstance(sent_at, datetime):
            sent_at = None
        return cls(
            subject=str(data.get("subject") or ""),
            sender_name=str(data.get("sender_name") or data.get("senderName") or ""),
            sender_email=str(data.get("sender_email") or data.get("senderEmail") or ""),
            sent_at=sent_at,
            item_id=str(data.get("item_id") or data.get("itemId") or ""),
            internet_message_id=str(
                data.get("internet_message_id") or data.get("internetMessageId") or ""
            ),
            conversation_id=str(
                data.get("conversation_id") or data.get("conversationId") or ""
            ),
        )


@dataclass(frozen=True)
class UserProfile:
    display_name: str = ""
    email_address: str = ""

    @property
    def identity(self) -> str:
        return self.email_address or "Unknown User"


def correlation_key_for(metadata: EmailMetadata, mode: CorrelationMode = "message") -> str:
    """Identity associating tracked requests with this email; empty if unknown."""
    if mode == "conversation":
        return metadata.conversation_id.strip()
    return (metadata.internet_message_id or metadata.item_id).strip()


class MailHost(Protocol):
    @property
    def metadata(self) -> EmailMetadata: ...

    @property
    def user(self) -> UserProfile: ...

    async def get_body_text(self) -> str: ...


class StaticMailHost:
    """Mail host backed by values captured up front."""

    def __init__(
        self,
        metadata: EmailMetadata,
        user: UserProfile | None = None,
        body: str | None = "",
    ) -> None:
        self._metadata = metadata
        self._user = user or UserProfile()
        self._body = body

    @property
    def metadata(self) -> EmailMetadata:
        return self._metadata

    @property
    def user(self) -> UserProfile:
        return self._user

    async def get_body_text(self) -> str:
        if self._body is None:
            raise HostFailure("Could not retrieve email body.")
        return self._body

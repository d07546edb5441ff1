"""Data models for the mailbox engine.

This module contains the data classes passed between the provider client,
the pollers, the session registry and the notification sink.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ...core.enums import InboxStatus, TerminationReason


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MailboxSession:
    """
    Authenticated binding between a disposable address and its owner.

    Attributes:
        user_id: Owning user (Telegram chat id)
        address: Mailbox address
        secret: Password used to re-authenticate; never logged or sent to the sink
        token: Current bearer token (None before authentication)
        recovery_address: Optional secondary address linked by the user
        last_access: Last successful provider interaction
    """

    user_id: int
    address: str
    secret: str = field(repr=False)
    token: Optional[str] = field(default=None, repr=False)
    recovery_address: Optional[str] = None
    last_access: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        """Record a successful provider interaction."""
        self.last_access = utcnow()


@dataclass(frozen=True)
class MessageSummary:
    """Inbox listing entry as returned by the provider."""

    id: str
    sender: str
    subject: str
    intro: str = ""
    created_at: Optional[str] = None
    seen: bool = False
    has_attachments: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MessageSummary":
        """Build from a Hydra ``/messages`` member."""
        sender = data.get("from")
        if not isinstance(sender, dict):
            sender = {}
        return cls(
            id=str(data["id"]),
            sender=sender.get("address") or "Unknown",
            subject=data.get("subject") or "No Subject",
            intro=data.get("intro") or "",
            created_at=data.get("createdAt"),
            seen=bool(data.get("seen", False)),
            has_attachments=bool(data.get("hasAttachments", False)),
        )

    @property
    def body(self) -> str:
        return self.intro


@dataclass(frozen=True)
class MessageDetail(MessageSummary):
    """Full message content fetched lazily for unseen ids."""

    text: str = ""
    html: str = ""
    recipients: List[str] = field(default_factory=list)
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MessageDetail":
        """Build from a ``/messages/{id}`` response."""
        summary = MessageSummary.from_api(data)
        html = data.get("html") or ""
        # mail.tm returns html as a list of parts
        if isinstance(html, list):
            html = "\n".join(part for part in html if part)
        return cls(
            id=summary.id,
            sender=summary.sender,
            subject=summary.subject,
            intro=summary.intro,
            created_at=summary.created_at,
            seen=summary.seen,
            has_attachments=summary.has_attachments,
            text=data.get("text") or "",
            html=html,
            recipients=[r.get("address", "") for r in data.get("to") or [] if isinstance(r, dict)],
            attachments=list(data.get("attachments") or []),
        )

    @property
    def body(self) -> str:
        return self.text or self.html or self.intro


@dataclass(frozen=True)
class NewMessageEvent:
    """Ready-to-display notification for one newly observed message."""

    user_id: int
    message_id: str
    sender: str
    subject: str
    body_preview: str
    otp: Optional[str] = None


@dataclass(frozen=True)
class SessionTerminatedEvent:
    """A poller gave up on its session."""

    user_id: int
    reason: TerminationReason


@dataclass(frozen=True)
class TokenRefreshedEvent:
    """A poller re-authenticated; the new token should be persisted."""

    user_id: int
    address: str
    token: str = field(repr=False)


PollerEvent = Union[NewMessageEvent, SessionTerminatedEvent, TokenRefreshedEvent]


@dataclass
class InboxView:
    """Result of an on-demand inbox read."""

    status: InboxStatus
    address: Optional[str] = None
    messages: List[MessageSummary] = field(default_factory=list)

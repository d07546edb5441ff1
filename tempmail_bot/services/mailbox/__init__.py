"""Mailbox engine: provisioning, token refresh, inbox polling and OTP extraction.

Public API:
- MailboxService: Facade used by the chat front-end
- SessionRegistry: Owner of per-user pollers and the event dispatcher
- InboxPoller: Recurring inbox check for one mailbox session
- MailTmClient: mail.tm provider client
- extract_otp: Heuristic one-time passcode extraction
"""

from .models import (
    InboxView,
    MailboxSession,
    MessageDetail,
    MessageSummary,
    NewMessageEvent,
    SessionTerminatedEvent,
    TokenRefreshedEvent,
)
from .pattern_matcher import OTPPatternMatcher, OTPRule, extract_otp, html_to_text
from .provider import MailProvider, MailTmClient
from .provisioner import CredentialProvisioner
from .token_authority import TokenAuthority
from .poller import BoundedIdSet, InboxPoller
from .session_registry import SessionRegistry
from .service import MailboxService, build_poller_factory

__all__ = [
    "InboxView",
    "MailboxSession",
    "MessageDetail",
    "MessageSummary",
    "NewMessageEvent",
    "SessionTerminatedEvent",
    "TokenRefreshedEvent",
    "OTPPatternMatcher",
    "OTPRule",
    "extract_otp",
    "html_to_text",
    "MailProvider",
    "MailTmClient",
    "CredentialProvisioner",
    "TokenAuthority",
    "BoundedIdSet",
    "InboxPoller",
    "SessionRegistry",
    "MailboxService",
    "build_poller_factory",
]

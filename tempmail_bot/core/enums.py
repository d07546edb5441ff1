"""Centralized enum definitions for TempMail Bot."""

from enum import Enum


class ProvisionFailure(str, Enum):
    """Step at which mailbox provisioning failed."""
    NO_DOMAINS_AVAILABLE = "no_domains_available"
    ACCOUNT_CREATION_FAILED = "account_creation_failed"
    TOKEN_ACQUISITION_FAILED = "token_acquisition_failed"


class TerminationReason(str, Enum):
    """Why a poller tore down its session."""
    AUTH_EXPIRED = "auth_expired"
    PROVIDER_UNREACHABLE = "provider_unreachable"


class PollerStatus(str, Enum):
    """Inbox poller lifecycle states."""
    STOPPED = "stopped"
    FIRST_CYCLE = "first_cycle"
    STEADY = "steady"


class InboxStatus(str, Enum):
    """Outcome of an on-demand inbox read, for the command layer."""
    OK = "ok"
    NO_MAILBOX = "no_mailbox"
    PROVIDER_UNREACHABLE = "provider_unreachable"
    EXPIRED = "expired"


class RecoveryMode(str, Enum):
    """Behaviour of recovery-by-known-address."""
    REAUTHENTICATE = "reauthenticate"
    LINK = "link"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class RecoveryOutcome(str, Enum):
    """Result of a recovery request."""
    RESUMED = "resumed"
    LINKED = "linked"
    INVALID_ADDRESS = "invalid_address"
    FAILED = "failed"

"""Custom exception classes for TempMail Bot."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .enums import ProvisionFailure


class TempMailError(Exception):
    """Base exception for TempMail Bot."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize TempMail Bot error.

        Args:
            message: Error message
            recoverable: Whether the error is recoverable with retry
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Mail provider errors
class ProviderError(TempMailError):
    """Mail provider returned an unexpected response."""

    def __init__(
        self,
        message: str = "Mail provider error",
        status: Optional[int] = None,
        recoverable: bool = False,
    ):
        self.status = status
        super().__init__(message, recoverable, details={"status": status} if status else {})


class AuthError(ProviderError):
    """Authentication-class failure (401/403 or rejected credentials)."""

    def __init__(
        self,
        message: str = "Authentication failed",
        status: Optional[int] = None,
        refresh_failed: bool = False,
    ):
        super().__init__(message, status=status, recoverable=not refresh_failed)
        self.refresh_failed = refresh_failed
        self.details["refresh_failed"] = refresh_failed


class TransientError(ProviderError):
    """Network, timeout, rate limit or 5xx failure. Safe to retry on the next cycle."""

    def __init__(self, message: str = "Mail provider unreachable", status: Optional[int] = None):
        super().__init__(message, status=status, recoverable=True)


class ConflictError(ProviderError):
    """Account already exists or was rejected by the provider's validation."""

    def __init__(self, message: str = "Address already in use", status: Optional[int] = None):
        super().__init__(message, status=status, recoverable=True)


class ProvisionError(TempMailError):
    """Mailbox provisioning failed. No partial session exists."""

    def __init__(
        self,
        reason: ProvisionFailure,
        message: str = "",
        conflict: bool = False,
    ):
        """
        Initialize provisioning error.

        Args:
            reason: Which provisioning step failed
            message: Diagnostic message reported by the provider
            conflict: True when the address collided with an existing account
        """
        self.reason = reason
        self.conflict = conflict
        text = f"{reason.value}: {message}" if message else reason.value
        super().__init__(
            text,
            recoverable=conflict or reason is ProvisionFailure.NO_DOMAINS_AVAILABLE,
            details={"reason": reason.value, "provider_message": message, "conflict": conflict},
        )


class SessionNotFoundError(TempMailError):
    """No mailbox session exists for the user."""

    def __init__(self, user_id: Any):
        super().__init__(
            f"No mailbox session for user '{user_id}'",
            recoverable=False,
            details={"user_id": str(user_id)},
        )


# Database Errors
class DatabaseError(TempMailError):
    """Base class for database-related errors."""

    def __init__(
        self,
        message: str = "Database error occurred",
        recoverable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class DatabaseNotConnectedError(DatabaseError):
    """Raised when operation attempted without connection."""

    def __init__(self):
        super().__init__(
            "Database connection is not established. Call connect() first.", recoverable=False
        )


class DatabasePoolTimeoutError(DatabaseError):
    """Raised when database connection pool is exhausted and timeout occurs."""

    def __init__(self, timeout: float, pool_size: int):
        super().__init__(
            f"Database connection pool exhausted after {timeout}s (pool size: {pool_size}). "
            "Consider increasing DB_POOL_SIZE.",
            recoverable=True,
            details={"timeout": timeout, "pool_size": pool_size},
        )

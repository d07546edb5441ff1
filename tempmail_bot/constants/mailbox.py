"""Mailbox and OTP related constants."""

from typing import Final, Tuple


class Provisioning:
    """Disposable address generation."""

    ADDRESS_PREFIXES: Final[Tuple[str, ...]] = (
        "temp",
        "quick",
        "fast",
        "instant",
        "rapid",
        "swift",
        "flash",
        "zen",
        "cool",
        "neo",
    )
    SUFFIX_MIN: Final[int] = 100000
    SUFFIX_MAX: Final[int] = 999999
    SECRET_LENGTH: Final[int] = 16
    SECRET_SYMBOLS: Final[str] = "!@#$%&*"


class Polling:
    """Inbox poller defaults."""

    INTERVAL_SECONDS: Final[float] = 5.0
    REQUEST_TIMEOUT_SECONDS: Final[float] = 8.0
    SEEN_IDS_CAP: Final[int] = 100
    MAX_CONSECUTIVE_FAILURES: Final[int] = 20
    PREVIEW_LENGTH: Final[int] = 200


class OTP:
    """OTP extraction bounds."""

    MIN_LENGTH: Final[int] = 4
    MAX_LENGTH: Final[int] = 8

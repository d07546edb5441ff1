"""Input validation utilities for TempMail Bot."""

import re
import unicodedata

MAX_EMAIL_LENGTH = 254


def sanitize_input(value: str, max_length: int = 255) -> str:
    """
    Strip control characters, normalize unicode and truncate user input.

    Args:
        value: Input value to sanitize
        max_length: Maximum length kept

    Returns:
        Sanitized string
    """
    if not value:
        return ""

    value = value.replace("\x00", "")
    value = "".join(char for char in value if unicodedata.category(char) != "Cc")
    value = unicodedata.normalize("NFKC", value)
    return value[:max_length].strip()


def validate_email(email: str) -> bool:
    """
    Validate email format.

    Args:
        email: Email address to validate

    Returns:
        True if email format is valid, False otherwise
    """
    pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
    return bool(re.match(pattern, email))


def sanitize_email(email: str) -> str:
    """Sanitize and validate email address."""
    email = sanitize_input(email, max_length=MAX_EMAIL_LENGTH)
    if not validate_email(email):
        raise ValueError(f"Invalid email format: {email}")
    return email.lower()

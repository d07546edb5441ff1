"""Application settings with Pydantic validation."""

from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..enums import RecoveryMode


class TempMailSettings(BaseSettings):
    """Application settings with validation and environment variable support."""

    # Environment
    env: str = Field(
        default="production", description="Environment (production, development, testing)"
    )

    @model_validator(mode="before")
    @classmethod
    def default_env_for_pytest(cls, data: Any) -> Any:
        """Auto-detect testing environment when running under pytest."""
        import sys

        if not isinstance(data, dict):
            return data

        if ("env" not in data or not data.get("env")) and "pytest" in sys.modules:
            data["env"] = "testing"

        return data

    # Mail provider
    mail_api_base: str = Field(
        default="https://api.mail.tm", description="Base URL of the mail.tm compatible API"
    )
    request_timeout_seconds: float = Field(
        default=8.0,
        gt=0,
        lt=10,
        description="Total timeout for a single provider request (single-digit seconds)",
    )

    # Polling
    poll_interval_seconds: float = Field(
        default=5.0, gt=0, description="Delay between two inbox poll cycles of one mailbox"
    )
    seen_ids_cap: int = Field(
        default=100, ge=1, description="Maximum message ids remembered per poller"
    )
    max_consecutive_failures: int = Field(
        default=20,
        ge=0,
        description=(
            "Consecutive transient poll failures before the session is reported as "
            "provider-unreachable (0 disables)"
        ),
    )
    provision_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts when a generated address collides"
    )

    # Recovery
    recovery_mode: RecoveryMode = Field(
        default=RecoveryMode.REAUTHENTICATE,
        description="reauthenticate: resume a stored mailbox; link: only record the address",
    )

    # Telegram
    telegram_bot_token: Optional[SecretStr] = Field(
        default=None, description="Telegram bot token used by the notification sink"
    )

    # Database Configuration
    database_url: str = Field(
        default="postgresql://localhost:5432/tempmail_bot",
        description="PostgreSQL database connection URL",
    )
    db_pool_size: int = Field(default=10, ge=1, le=100, description="Database connection pool size")

    # Encryption of mailbox secrets at rest
    encryption_key: Optional[SecretStr] = Field(
        default=None,
        description=(
            "Base64-encoded Fernet key used to encrypt mailbox secrets at rest. "
            'Generate with: python -c "from cryptography.fernet import Fernet; '
            'print(Fernet.generate_key().decode())"'
        ),
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(default=True, description="Write the log file as JSON lines")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("mail_api_base")
    @classmethod
    def validate_api_base(cls, v: str) -> str:
        """Validate provider URL and drop a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("MAIL_API_BASE must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("recovery_mode", mode="before")
    @classmethod
    def validate_recovery_mode(cls, v: Any) -> Any:
        """Accept recovery mode case-insensitively."""
        if isinstance(v, str):
            if v.lower() not in RecoveryMode.values():
                raise ValueError(f'RECOVERY_MODE must be one of: {", ".join(RecoveryMode.values())}')
            return v.lower()
        return v

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["production", "development", "testing", "staging"]
        if v.lower() not in allowed:
            raise ValueError(f'ENV must be one of: {", ".join(allowed)}')
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    @model_validator(mode="after")
    def ensure_encryption_key(self) -> "TempMailSettings":
        """
        Ensure encryption_key is set.

        In production/staging the key is required; in testing/development a
        throwaway key is generated.

        Raises:
            ValueError: If the key is missing in production/staging
        """
        from cryptography.fernet import Fernet

        if self.encryption_key is None:
            if self.env in ("testing", "development"):
                self.encryption_key = SecretStr(Fernet.generate_key().decode())
            else:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production/staging. "
                    'Generate with: python -c "from cryptography.fernet import Fernet; '
                    'print(Fernet.generate_key().decode())"'
                )
        return self

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env == "production"


# Singleton instance
_settings: Optional[TempMailSettings] = None


def get_settings() -> TempMailSettings:
    """
    Get application settings singleton.

    Raises:
        ValidationError: If required settings are missing or invalid
    """
    global _settings
    if _settings is None:
        _settings = TempMailSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None

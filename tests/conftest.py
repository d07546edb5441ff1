"""Pytest configuration and common fixtures."""

import asyncio
import os
import sys
import warnings
from pathlib import Path

from dotenv import load_dotenv

# Try to load test-specific environment file if it exists
test_env_file = Path(__file__).parent / ".env.test"
if test_env_file.exists():
    load_dotenv(test_env_file)

# Bootstrap variables required at import time, before fixtures can run.
# Per-test isolation is provided by the setup_test_environment fixture.
os.environ.setdefault("ENV", "testing")

from cryptography.fernet import Fernet

if not os.getenv("ENCRYPTION_KEY"):
    os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from tempmail_bot.core.exceptions import AuthError, ConflictError
from tempmail_bot.services.mailbox.models import MailboxSession, MessageDetail, MessageSummary
from tempmail_bot.services.mailbox.provider import MailProvider
from tempmail_bot.services.notification.base import NotificationSink


def pytest_configure(config):
    """Configure pytest environment before tests run."""
    warnings.filterwarnings("ignore", message="coroutine.*was never awaited")


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Automatically set up test environment for all tests."""
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.delenv("ENCRYPTION_KEY_OLD", raising=False)
    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost:5432/tempmail_bot_test")

    # Reset settings singleton so each test gets fresh settings
    from tempmail_bot.core.config.settings import reset_settings

    reset_settings()
    yield
    reset_settings()


def summary(message_id: str, subject: str = "Hello", intro: str = "") -> MessageSummary:
    """Inbox listing entry for tests."""
    return MessageSummary(id=message_id, sender="noreply@example.com", subject=subject, intro=intro)


class FakeProvider(MailProvider):
    """
    In-memory mail provider.

    ``inbox`` holds the listing returned by ``list_messages``; ``bodies``
    maps message ids to the text returned by ``fetch_message``. Tokens are
    valid until ``expire_token()`` is called.
    """

    def __init__(self, domains: Optional[List[str]] = None):
        self.domains = ["example.com"] if domains is None else domains
        self.accounts: Dict[str, str] = {}
        self.inbox: List[MessageSummary] = []
        self.bodies: Dict[str, str] = {}
        self.valid_tokens: set = set()
        self.reject_credentials = False
        self.list_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.token_calls = 0
        self.list_calls = 0
        self.deleted: List[str] = []
        self._counter = 0

    def expire_token(self) -> None:
        self.valid_tokens.clear()

    def _check(self, token: str) -> None:
        if token not in self.valid_tokens:
            raise AuthError("Invalid JWT Token", status=401)

    async def list_domains(self) -> List[str]:
        return list(self.domains)

    async def create_account(self, address: str, secret: str) -> None:
        if address in self.accounts:
            raise ConflictError("address: This value is already used.", status=422)
        self.accounts[address] = secret

    async def issue_token(self, address: str, secret: str) -> str:
        self.token_calls += 1
        if self.reject_credentials or self.accounts.get(address) != secret:
            raise AuthError("Invalid credentials.", status=401)
        self._counter += 1
        token = f"token-{self._counter}"
        self.valid_tokens.add(token)
        return token

    async def list_messages(self, token: str) -> List[MessageSummary]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        self._check(token)
        return list(self.inbox)

    async def fetch_message(self, token: str, message_id: str) -> MessageDetail:
        if self.fetch_error is not None:
            raise self.fetch_error
        self._check(token)
        base = next(m for m in self.inbox if m.id == message_id)
        return MessageDetail(
            id=base.id,
            sender=base.sender,
            subject=base.subject,
            intro=base.intro,
            text=self.bodies.get(message_id, ""),
        )

    async def delete_message(self, token: str, message_id: str) -> None:
        self._check(token)
        self.deleted.append(message_id)
        self.inbox = [m for m in self.inbox if m.id != message_id]


@pytest.fixture
def provider() -> FakeProvider:
    """In-memory provider."""
    return FakeProvider()


@pytest.fixture
def mailbox_session(provider: FakeProvider) -> MailboxSession:
    """A session whose account exists on the fake provider and holds a valid token."""
    provider.accounts["swift123456@example.com"] = "S3cret!pass"
    provider.valid_tokens.add("token-0")
    return MailboxSession(
        user_id=42, address="swift123456@example.com", secret="S3cret!pass", token="token-0"
    )


@pytest.fixture
def channel() -> asyncio.Queue:
    """Event channel shared by pollers and the registry."""
    return asyncio.Queue()


@pytest.fixture
def mock_sink() -> MagicMock:
    """Notification sink recording every call."""
    sink = MagicMock(spec=NotificationSink)
    sink.on_new_message = AsyncMock(return_value=True)
    sink.on_session_terminated = AsyncMock(return_value=True)
    return sink


async def no_sleep(_seconds: float) -> None:
    """Sleep replacement that only yields to the event loop."""
    await asyncio.sleep(0)

"""Tests for session persistence with a mocked asyncpg connection."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.fernet import Fernet

from tempmail_bot.core.exceptions import DatabaseNotConnectedError
from tempmail_bot.models.database import Database
from tempmail_bot.repositories.session_repository import SessionRepository, _parse_command_tag
from tempmail_bot.services.mailbox.models import MailboxSession
from tempmail_bot.utils.encryption import SecretCipher


def async_context(value) -> MagicMock:
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=value)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.transaction = MagicMock(return_value=async_context(None))
    return conn


@pytest.fixture
def cipher():
    return SecretCipher(Fernet.generate_key().decode())


@pytest.fixture
def repository(conn, cipher):
    db = MagicMock(spec=Database)
    db.get_connection = MagicMock(side_effect=lambda *a, **kw: async_context(conn))
    return SessionRepository(db, cipher)


def row(cipher, user_id=42, address="swift123456@example.com", secret="S3cret!pass"):
    return {
        "user_id": user_id,
        "address": address,
        "secret": cipher.encrypt(secret),
        "token": "jwt",
        "recovery_address": None,
        "last_access": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


class TestSessionRepository:
    """Tests for SessionRepository."""

    @pytest.mark.asyncio
    async def test_get_current_decrypts_secret(self, repository, conn, cipher):
        conn.fetchrow.return_value = row(cipher)

        session = await repository.get_current(42)

        assert session.secret == "S3cret!pass"
        assert session.token == "jwt"
        query, user_id = conn.fetchrow.await_args.args
        assert "is_current" in query
        assert user_id == 42

    @pytest.mark.asyncio
    async def test_get_current_missing(self, repository):
        assert await repository.get_current(42) is None

    @pytest.mark.asyncio
    async def test_find_is_case_insensitive(self, repository, conn, cipher):
        conn.fetchrow.return_value = row(cipher)
        session = await repository.find(42, "Swift123456@example.com")
        assert session.address == "swift123456@example.com"
        assert "lower(address) = lower($2)" in conn.fetchrow.await_args.args[0]

    @pytest.mark.asyncio
    async def test_save_current_encrypts_and_demotes_others(self, repository, conn, cipher):
        session = MailboxSession(
            user_id=42, address="neo100200@example.com", secret="S3cret!pass", token="jwt"
        )

        await repository.save_current(session)

        conn.transaction.assert_called_once()
        demote, upsert = conn.execute.await_args_list
        assert "is_current = FALSE" in demote.args[0]
        assert demote.args[1:] == (42, "neo100200@example.com")
        assert "ON CONFLICT (user_id, address)" in upsert.args[0]
        stored_secret = upsert.args[3]
        assert stored_secret != "S3cret!pass"
        assert cipher.decrypt(stored_secret) == "S3cret!pass"

    @pytest.mark.asyncio
    async def test_get_all_current_skips_undecryptable_rows(self, repository, conn, cipher):
        foreign = SecretCipher(Fernet.generate_key().decode())
        conn.fetch.return_value = [row(cipher, user_id=1), row(foreign, user_id=2)]

        sessions = await repository.get_all_current()

        assert [s.user_id for s in sessions] == [1]

    @pytest.mark.asyncio
    async def test_update_token(self, repository, conn):
        assert await repository.update_token(42, "a@b.com", "new") is True
        args = conn.execute.await_args.args
        assert args[1:4] == (42, "a@b.com", "new")

    @pytest.mark.asyncio
    async def test_update_token_no_row(self, repository, conn):
        conn.execute.return_value = "UPDATE 0"
        assert await repository.update_token(42, "a@b.com", "new") is False

    @pytest.mark.asyncio
    async def test_set_recovery_address(self, repository, conn):
        assert await repository.set_recovery_address(42, "me@gmail.com") is True
        assert conn.execute.await_args.args[1:] == (42, "me@gmail.com")

    @pytest.mark.parametrize(
        "tag,expected", [("UPDATE 3", 3), ("INSERT 0 1", 1), ("", 0), (None, 0)]
    )
    def test_parse_command_tag(self, tag, expected):
        assert _parse_command_tag(tag) == expected


class TestDatabase:
    """Tests for Database without a server."""

    def test_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL")
        with pytest.raises(RuntimeError):
            Database()

    def test_reads_url_from_environment(self):
        assert Database().database_url == "postgresql://localhost:5432/tempmail_bot_test"

    @pytest.mark.asyncio
    async def test_get_connection_before_connect(self):
        db = Database("postgresql://localhost/x")
        with pytest.raises(DatabaseNotConnectedError):
            async with db.get_connection():
                pass

    @pytest.mark.asyncio
    async def test_connect_retries_then_gives_up(self):
        db = Database("postgresql://localhost/x", connect_attempts=3, retry_delay=0)
        db._open_pool = AsyncMock(side_effect=OSError("connection refused"))

        with pytest.raises(OSError):
            await db.connect()
        assert db._open_pool.await_count == 3

    @pytest.mark.asyncio
    async def test_connect_succeeds_after_retry(self):
        db = Database("postgresql://localhost/x", connect_attempts=3, retry_delay=0)
        db._open_pool = AsyncMock(side_effect=[OSError("refused"), None])

        await db.connect()
        assert db._open_pool.await_count == 2

    @pytest.mark.asyncio
    async def test_health_check_without_pool(self):
        assert await Database("postgresql://localhost/x").health_check() is False

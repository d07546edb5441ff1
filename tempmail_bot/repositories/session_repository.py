"""Mailbox session repository.

Rows are keyed by ``(user_id, address)``. Exactly one row per user is
flagged ``is_current``; superseded mailboxes are kept so a user can recover
them later. Secrets are encrypted with Fernet before they are stored.
"""

from datetime import datetime
from typing import Any, List, Mapping, Optional

from loguru import logger

from ..models.database import Database
from ..services.mailbox.models import MailboxSession
from ..utils.encryption import SecretCipher
from ..utils.masking import mask_email


class SessionRepository:
    """Repository for mailbox session records."""

    def __init__(self, database: Database, cipher: SecretCipher):
        """
        Initialize session repository.

        Args:
            database: Database instance
            cipher: Encrypts secrets at rest
        """
        self.db = database
        self._cipher = cipher

    def _to_session(self, row: Mapping[str, Any]) -> MailboxSession:
        return MailboxSession(
            user_id=row["user_id"],
            address=row["address"],
            secret=self._cipher.decrypt(row["secret"]),
            token=row["token"],
            recovery_address=row["recovery_address"],
            last_access=row["last_access"],
        )

    async def get_current(self, user_id: int) -> Optional[MailboxSession]:
        """Current mailbox of a user, if any."""
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, address, secret, token, recovery_address, last_access
                FROM user_sessions
                WHERE user_id = $1 AND is_current
                """,
                user_id,
            )
        return self._to_session(row) if row else None

    async def find(self, user_id: int, address: str) -> Optional[MailboxSession]:
        """A mailbox this user owned at some point, current or superseded."""
        async with self.db.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, address, secret, token, recovery_address, last_access
                FROM user_sessions
                WHERE user_id = $1 AND lower(address) = lower($2)
                """,
                user_id,
                address,
            )
        return self._to_session(row) if row else None

    async def get_all_current(self) -> List[MailboxSession]:
        """Every user's current mailbox, used to rehydrate pollers on startup."""
        async with self.db.get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, address, secret, token, recovery_address, last_access
                FROM user_sessions
                WHERE is_current
                ORDER BY last_access DESC
                """
            )
        sessions = []
        for row in rows:
            try:
                sessions.append(self._to_session(row))
            except ValueError as e:
                logger.error(f"Skipping session of user {row['user_id']}: {e}")
        return sessions

    async def save_current(self, session: MailboxSession) -> None:
        """Store ``session`` and make it the user's current mailbox."""
        async with self.db.get_connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "UPDATE user_sessions SET is_current = FALSE "
                    "WHERE user_id = $1 AND address <> $2",
                    session.user_id,
                    session.address,
                )
                await conn.execute(
                    """
                    INSERT INTO user_sessions
                        (user_id, address, secret, token, recovery_address, is_current, last_access)
                    VALUES ($1, $2, $3, $4, $5, TRUE, $6)
                    ON CONFLICT (user_id, address) DO UPDATE SET
                        secret = EXCLUDED.secret,
                        token = EXCLUDED.token,
                        recovery_address = COALESCE(EXCLUDED.recovery_address,
                                                    user_sessions.recovery_address),
                        is_current = TRUE,
                        last_access = EXCLUDED.last_access
                    """,
                    session.user_id,
                    session.address,
                    self._cipher.encrypt(session.secret),
                    session.token,
                    session.recovery_address,
                    session.last_access,
                )
        logger.debug(f"Session saved for user {session.user_id} ({mask_email(session.address)})")

    async def update_token(
        self, user_id: int, address: str, token: str, last_access: Optional[datetime] = None
    ) -> bool:
        """Persist a refreshed token. Returns True if a row was updated."""
        async with self.db.get_connection() as conn:
            result = await conn.execute(
                """
                UPDATE user_sessions
                SET token = $3, last_access = COALESCE($4, NOW())
                WHERE user_id = $1 AND address = $2
                """,
                user_id,
                address,
                token,
                last_access,
            )
        return _parse_command_tag(result) > 0

    async def set_recovery_address(self, user_id: int, recovery_address: str) -> bool:
        """Link a recovery address to the user's current mailbox."""
        async with self.db.get_connection() as conn:
            result = await conn.execute(
                "UPDATE user_sessions SET recovery_address = $2 WHERE user_id = $1 AND is_current",
                user_id,
                recovery_address,
            )
        return _parse_command_tag(result) > 0


def _parse_command_tag(command_tag: str) -> int:
    """
    Parse affected row count from an asyncpg command tag.

    Example: "UPDATE 1" -> 1
    """
    try:
        return int(command_tag.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0

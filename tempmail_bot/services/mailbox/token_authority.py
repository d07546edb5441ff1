"""Reactive re-authentication for mailbox sessions."""

from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from ...core.exceptions import AuthError
from ...utils.masking import mask_email
from .models import MailboxSession
from .provider import MailProvider

T = TypeVar("T")

TokenOperation = Callable[[str], Awaitable[T]]
RefreshCallback = Callable[[str], None]


class TokenAuthority:
    """
    Holds no timers: a token is only refreshed after the provider rejects it.

    Any operation run through :meth:`call_with_refresh` gets exactly one
    refresh-and-retry on an authentication failure. Transient failures pass
    through untouched and never trigger a refresh.
    """

    def __init__(self, provider: MailProvider):
        self._provider = provider

    async def refresh(self, address: str, secret: str) -> str:
        """
        Issue a new token from the stored credentials.

        Raises:
            AuthError: with ``refresh_failed=True`` if the provider rejects the credentials
            TransientError: if the provider could not be reached
        """
        try:
            return await self._provider.issue_token(address, secret)
        except AuthError as e:
            logger.warning(f"Token refresh rejected for {mask_email(address)}: {e.message}")
            raise AuthError(
                f"Token refresh failed: {e.message}", status=e.status, refresh_failed=True
            ) from e

    async def _reauthenticate(
        self, session: MailboxSession, on_refresh: Optional[RefreshCallback]
    ) -> None:
        session.token = await self.refresh(session.address, session.secret)
        session.touch()
        logger.info(f"Token refreshed for {mask_email(session.address)}")
        if on_refresh is not None:
            on_refresh(session.token)

    async def call_with_refresh(
        self,
        session: MailboxSession,
        operation: TokenOperation,
        on_refresh: Optional[RefreshCallback] = None,
    ):
        """
        Run ``operation(token)`` with at most one refresh-and-retry.

        Args:
            session: Session whose token is used and updated
            operation: Coroutine function taking the bearer token
            on_refresh: Called with the new token after a successful refresh

        Returns:
            Whatever ``operation`` returns

        Raises:
            AuthError: ``refresh_failed=True`` once the single refresh is exhausted
            TransientError, ProviderError: non-auth failures, unchanged
        """
        refreshed = False
        if not session.token:
            await self._reauthenticate(session, on_refresh)
            refreshed = True

        try:
            result = await operation(session.token)
        except AuthError as e:
            if refreshed:
                raise AuthError(
                    f"Rejected after refresh: {e.message}", status=e.status, refresh_failed=True
                ) from e
            logger.debug(f"Auth failure ({e.status}) for {mask_email(session.address)}, refreshing")
            await self._reauthenticate(session, on_refresh)
            try:
                result = await operation(session.token)
            except AuthError as retry_error:
                raise AuthError(
                    f"Rejected after refresh: {retry_error.message}",
                    status=retry_error.status,
                    refresh_failed=True,
                ) from retry_error

        session.touch()
        return result

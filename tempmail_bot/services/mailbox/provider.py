"""Mail provider contract and the mail.tm API client.

The engine depends only on :class:`MailProvider`. :class:`MailTmClient`
implements it against the mail.tm Hydra API and maps HTTP outcomes onto the
engine's error taxonomy:

* 401/403 -> :class:`AuthError`
* 409/422 on account creation -> :class:`ConflictError`
* 429, 5xx, connection errors, timeouts and undecodable bodies
  -> :class:`TransientError`
* any other unexpected status -> :class:`ProviderError`
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from loguru import logger

from ...constants import Polling
from ...core.exceptions import AuthError, ConflictError, ProviderError, TransientError
from .models import MessageDetail, MessageSummary


class MailProvider(ABC):
    """Abstract mail provider the engine consumes."""

    @abstractmethod
    async def list_domains(self) -> List[str]:
        """Return currently advertised, active domains."""

    @abstractmethod
    async def create_account(self, address: str, secret: str) -> None:
        """Register a mailbox. Raises ConflictError if the address is taken."""

    @abstractmethod
    async def issue_token(self, address: str, secret: str) -> str:
        """Exchange credentials for a bearer token. Raises AuthError."""

    @abstractmethod
    async def list_messages(self, token: str) -> List[MessageSummary]:
        """List inbox summaries, newest first as returned by the provider."""

    @abstractmethod
    async def fetch_message(self, token: str, message_id: str) -> MessageDetail:
        """Fetch full content of a single message."""

    @abstractmethod
    async def delete_message(self, token: str, message_id: str) -> None:
        """Delete a single message."""


def _members(payload: Any) -> List[Dict[str, Any]]:
    """Unwrap a Hydra collection (or a plain JSON list), keeping only objects."""
    if isinstance(payload, dict):
        payload = payload.get("hydra:member")
    if not isinstance(payload, list):
        return []
    return [member for member in payload if isinstance(member, dict)]


class MailTmClient(MailProvider):
    """aiohttp client for the mail.tm API."""

    AUTH_STATUSES = (401, 403)
    CONFLICT_STATUSES = (409, 422)

    def __init__(
        self,
        base_url: str = "https://api.mail.tm",
        timeout: float = Polling.REQUEST_TIMEOUT_SECONDS,
    ):
        """
        Initialize mail.tm client.

        Args:
            base_url: API base URL
            timeout: Total timeout per request in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "MailTmClient":
        """Async context manager entry."""
        await self._init_http_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def _init_http_session(self) -> None:
        """Initialize HTTP session with connection pooling."""
        if self._http_session is None:
            connector = aiohttp.TCPConnector(
                limit=50,
                limit_per_host=20,
                ttl_dns_cache=120,
                keepalive_timeout=30,
            )
            self._http_session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept": "application/ld+json", "Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            logger.info(f"Mail provider HTTP session initialized ({self.base_url})")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        """Extract the provider's diagnostic message from an error response."""
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return response.reason or f"HTTP {response.status}"
        if isinstance(data, dict):
            for key in ("message", "hydra:description", "detail"):
                if data.get(key):
                    return str(data[key])
        return response.reason or f"HTTP {response.status}"

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        expected: Sequence[int] = (200,),
    ) -> Any:
        """
        Perform a request and map failures onto the error taxonomy.

        Returns:
            Decoded JSON body, or None for 204 responses
        """
        await self._init_http_session()
        assert self._http_session is not None

        headers = {"Authorization": f"Bearer {token}"} if token else None
        url = f"{self.base_url}{path}"
        try:
            async with self._http_session.request(
                method, url, json=json, headers=headers
            ) as response:
                status = response.status
                if status in self.AUTH_STATUSES:
                    raise AuthError(await self._error_message(response), status=status)
                if status == 429 or status >= 500:
                    raise TransientError(
                        f"{method} {path} returned {status}", status=status
                    )
                if status not in expected:
                    raise ProviderError(await self._error_message(response), status=status)
                if status == 204:
                    return None
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    # maintenance and proxy error pages arrive as 200 HTML
                    raise TransientError(
                        f"{method} {path} returned an undecodable body", status=status
                    ) from e
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise TransientError(f"{method} {path} failed: {e.__class__.__name__}") from e

    async def list_domains(self) -> List[str]:
        data = await self._request("GET", "/domains")
        return [
            d["domain"]
            for d in _members(data)
            if d.get("domain") and d.get("isActive", True)
        ]

    async def create_account(self, address: str, secret: str) -> None:
        try:
            await self._request(
                "POST",
                "/accounts",
                json={"address": address, "password": secret},
                expected=(200, 201),
            )
        except ProviderError as e:
            if e.status in self.CONFLICT_STATUSES:
                raise ConflictError(e.message, status=e.status) from e
            raise

    async def issue_token(self, address: str, secret: str) -> str:
        data = await self._request(
            "POST", "/token", json={"address": address, "password": secret}
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("Token response did not contain a token")
        return token

    async def list_messages(self, token: str) -> List[MessageSummary]:
        data = await self._request("GET", "/messages", token=token)
        return [MessageSummary.from_api(m) for m in _members(data) if m.get("id")]

    async def fetch_message(self, token: str, message_id: str) -> MessageDetail:
        data = await self._request("GET", f"/messages/{message_id}", token=token)
        if not isinstance(data, dict) or not data.get("id"):
            raise TransientError(f"Message {message_id} response was not a message")
        return MessageDetail.from_api(data)

    async def delete_message(self, token: str, message_id: str) -> None:
        await self._request(
            "DELETE", f"/messages/{message_id}", token=token, expected=(200, 204)
        )

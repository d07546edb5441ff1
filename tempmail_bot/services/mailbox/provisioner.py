"""Disposable mailbox provisioning."""

import secrets
import string
from typing import Optional, Sequence

from loguru import logger

from ...constants import Provisioning
from ...core.enums import ProvisionFailure
from ...core.exceptions import ConflictError, ProviderError, ProvisionError
from ...utils.masking import mask_email
from .models import MailboxSession
from .provider import MailProvider

_rng = secrets.SystemRandom()


def generate_local_part(prefixes: Sequence[str] = Provisioning.ADDRESS_PREFIXES) -> str:
    """Random human-readable prefix plus a random 6 digit suffix, e.g. ``swift482913``."""
    suffix = _rng.randint(Provisioning.SUFFIX_MIN, Provisioning.SUFFIX_MAX)
    return f"{_rng.choice(prefixes)}{suffix}"


def generate_secret(length: int = Provisioning.SECRET_LENGTH) -> str:
    """Password with at least one upper, lower, digit and symbol character."""
    if length < 4:
        raise ValueError("Secret length must be at least 4")
    symbols = Provisioning.SECRET_SYMBOLS
    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(symbols),
    ]
    alphabet = string.ascii_letters + string.digits + symbols
    chars = required + [secrets.choice(alphabet) for _ in range(length - len(required))]
    _rng.shuffle(chars)
    return "".join(chars)


class CredentialProvisioner:
    """Creates a mailbox identity and its first access token."""

    def __init__(self, provider: MailProvider):
        self._provider = provider

    async def provision(self, user_id: int, domain: Optional[str] = None) -> MailboxSession:
        """
        Provision a new mailbox for ``user_id``.

        All-or-nothing: either a fully authenticated session is returned or
        :class:`ProvisionError` is raised.

        Args:
            user_id: Owner of the new mailbox
            domain: Force a domain instead of picking one at random

        Raises:
            ProvisionError: tagged with the failing step; ``conflict=True`` for
                address collisions, which callers may retry
        """
        if domain is None:
            try:
                domains = await self._provider.list_domains()
            except ProviderError as e:
                raise ProvisionError(ProvisionFailure.NO_DOMAINS_AVAILABLE, e.message) from e
            if not domains:
                raise ProvisionError(
                    ProvisionFailure.NO_DOMAINS_AVAILABLE, "Provider advertises no domains"
                )
            domain = _rng.choice(domains)

        address = f"{generate_local_part()}@{domain}"
        secret = generate_secret()

        try:
            await self._provider.create_account(address, secret)
        except ConflictError as e:
            logger.warning(f"Address collision for {mask_email(address)}: {e.message}")
            raise ProvisionError(
                ProvisionFailure.ACCOUNT_CREATION_FAILED, e.message, conflict=True
            ) from e
        except ProviderError as e:
            raise ProvisionError(ProvisionFailure.ACCOUNT_CREATION_FAILED, e.message) from e

        try:
            token = await self._provider.issue_token(address, secret)
        except ProviderError as e:
            raise ProvisionError(ProvisionFailure.TOKEN_ACQUISITION_FAILED, e.message) from e

        logger.info(f"Provisioned mailbox {mask_email(address)} for user {user_id}")
        return MailboxSession(user_id=user_id, address=address, secret=secret, token=token)

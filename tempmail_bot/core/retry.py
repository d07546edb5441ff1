"""Retry strategies for different exception types."""

import logging as stdlib_logging
from typing import Tuple, Type, Union

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .exceptions import ProvisionError

# Stdlib logger needed for tenacity's before_sleep_log
_stdlib_logger = stdlib_logging.getLogger(__name__)


def _make_retry(
    attempts: int,
    wait_strategy: object,
    exception_types: Union[Type[Exception], Tuple[Type[Exception], ...]],
) -> object:
    """
    Factory for creating retry decorators with consistent configuration.

    Args:
        attempts: Maximum number of retry attempts
        wait_strategy: Tenacity wait strategy
        exception_types: Exception type(s) to retry on

    Returns:
        Configured retry decorator
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(exception_types),
        before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
        reraise=True,
    )


def _is_address_collision(exc: BaseException) -> bool:
    return isinstance(exc, ProvisionError) and exc.conflict


def get_provision_retry(attempts: int = 3, wait_max: float = 2.0):
    """
    Get retry strategy for mailbox provisioning.

    Only address collisions are retried; a fresh address is generated on
    every attempt.

    Args:
        attempts: Maximum number of attempts
        wait_max: Upper bound of the random jitter between attempts (seconds)

    Returns:
        Retry decorator configured for provisioning conflicts
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_random(0, wait_max),
        retry=retry_if_exception(_is_address_collision),
        before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
        reraise=True,
    )


def get_telegram_retry():
    """
    Get retry strategy for Telegram API calls.

    Returns:
        Retry decorator configured for transport errors
    """
    from telegram.error import NetworkError

    return _make_retry(
        attempts=3,
        wait_strategy=wait_exponential(multiplier=1, min=1, max=10),
        exception_types=(NetworkError, ConnectionError, TimeoutError),
    )

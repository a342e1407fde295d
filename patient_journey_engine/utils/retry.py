"""
Retry utilities with backoff for store connectivity and API calls.

Journey steps themselves are never retried: a failing step fails its run.
"""

from typing import Optional, Tuple, Type
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)
import httpx
import logging

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# Custom exceptions for retry categorization
class RetryableError(Exception):
    """Base class for errors that should trigger a retry."""
    pass


class TransientError(RetryableError):
    """Temporary network or server error."""
    pass


class PermanentError(Exception):
    """Error that should not be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def create_retry_decorator(
    max_attempts: int = 4,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        RetryableError,
        httpx.TimeoutException,
        httpx.NetworkError,
    )
):
    """
    Create a retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        retryable_exceptions: Tuple of exception types to retry on

    Returns:
        A retry decorator configured with the specified parameters
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


def create_store_connect_retry(attempts: int = 3, wait_seconds: float = 3.0):
    """
    Retry decorator for the startup store connectivity check.

    Fixed wait between attempts; the last failure is re-raised so that
    startup aborts without a working store.
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type((StoreUnavailableError, OSError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


# Pre-configured decorator for CLI calls to the journey API
retry_api = create_retry_decorator(
    max_attempts=3,
    min_wait=1.0,
    max_wait=8.0
)


def handle_http_error(response: httpx.Response) -> None:
    """
    Convert HTTP errors to appropriate exception types.

    Args:
        response: The HTTP response to check

    Raises:
        TransientError: For 429 and 5xx responses
        PermanentError: For other 4xx responses
    """
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientError(
            f"Server error: {response.status_code} - {response.text[:200]}"
        )
    elif response.status_code >= 400:
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("error") if isinstance(body, dict) else None
        raise PermanentError(
            f"{response.status_code}: {detail or response.text[:200]}",
            status_code=response.status_code
        )

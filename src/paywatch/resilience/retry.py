"""
Retry Strategies using Tenacity.

Standard retry policies for calls to external price and ledger services.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from paywatch.core.exceptions import NetworkError

logger = logging.getLogger(__name__)


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient network/infrastructure error."""
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    if isinstance(exception, NetworkError):
        return exception.is_rate_limited() or exception.is_server_error()

    msg = str(exception).lower()
    return any(
        x in msg
        for x in [
            "timeout",
            "connection refused",
            "502",
            "503",
            "504",
            "rate limit",
        ]
    )


def _log_retry(retry_state) -> None:
    logger.warning(f"Retrying external call... (Attempt {retry_state.attempt_number})")


async def execute_with_retry(
    func: Callable[..., Any],
    *args,
    attempts: int = 3,
    **kwargs,
) -> Any:
    """
    Execute an async function, retrying transient errors.

    Exponential backoff between 0.5s and 4s; non-transient errors propagate
    on the first attempt.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(attempts),
        reraise=True,
        before_sleep=_log_retry,
    ):
        with attempt:
            return await func(*args, **kwargs)

"""Tests for the retry policy."""

from unittest.mock import AsyncMock

import httpx
import pytest

from paywatch.core.exceptions import LedgerQueryFailed, ValidationError
from paywatch.resilience.retry import execute_with_retry, is_transient_error


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example/simple/price")
    return httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(status, request=request)
    )


@pytest.mark.parametrize(
    "error, transient",
    [
        (httpx.ConnectTimeout("timed out"), True),
        (_status_error(429), True),
        (_status_error(503), True),
        (_status_error(404), False),
        (LedgerQueryFailed("bad gateway", status_code=502), True),
        (ValidationError("bad input"), False),
    ],
)
def test_is_transient_error(error, transient):
    assert is_transient_error(error) is transient


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds():
    func = AsyncMock(side_effect=[httpx.ConnectError("refused"), {"ripple": {"usd": 0.5}}])

    result = await execute_with_retry(func, "ripple")

    assert result == {"ripple": {"usd": 0.5}}
    assert func.await_count == 2


@pytest.mark.asyncio
async def test_does_not_retry_permanent_errors():
    func = AsyncMock(side_effect=_status_error(400))

    with pytest.raises(httpx.HTTPStatusError):
        await execute_with_retry(func)

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    func = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(httpx.ReadTimeout):
        await execute_with_retry(func, attempts=2)

    assert func.await_count == 2

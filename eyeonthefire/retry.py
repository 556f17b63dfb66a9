"""Bounded exponential-backoff retries for upstream HTTP calls."""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

import httpx

from eyeonthefire.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY, jitter: bool = False) -> float:
    """Delay after failed attempt number ``attempt`` (1-based): base * 2^(attempt-1)."""
    delay = base_delay * (2 ** (attempt - 1))
    if jitter:
        delay += random.uniform(0, delay)
    return delay


async def fetch_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    jitter: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: Optional[str] = None,
) -> httpx.Response:
    """
    Call ``send`` until it returns a 2xx response or the attempts run out.

    Args:
        send: Zero-argument coroutine function performing one request
        max_attempts: Total number of calls allowed
        base_delay: Seconds to wait after the first failure, doubled each time
        jitter: Add a random fraction of the delay to each wait
        sleep: Awaitable sleep, replaceable in tests
        description: What is being fetched, for log lines

    Returns:
        The first successful response

    Raises:
        UpstreamError: if the last attempt got a non-2xx status
        httpx.HTTPError: if the last attempt failed at the network level
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    label = description or "request"
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            response = await send()
            if response.is_success:
                if attempt > 1:
                    logger.info(f"{label} succeeded on attempt {attempt}")
                return response
            last_error = UpstreamError(
                response.status_code,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )
        except httpx.HTTPError as e:
            last_error = e

        if attempt < max_attempts:
            delay = backoff_delay(attempt, base_delay, jitter)
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_attempts}): {last_error}; "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    logger.error(f"{label} failed after {max_attempts} attempts: {last_error}")
    raise last_error

"""Request guards for the proxy: per-client rate limiting and Turnstile checks."""
import logging
import math
import time
from typing import Callable, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

# Forget idle clients once the table grows past this size
MAX_TRACKED_CLIENTS = 10000


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(self, max_requests: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self.clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window > 0

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Count one request for ``key``.

        Returns:
            (allowed, seconds until the window resets when not allowed)
        """
        if not self.enabled:
            return True, 0

        now = self.clock()
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window:
            start, count = now, 0
        count += 1
        self._windows[key] = (start, count)

        if len(self._windows) > MAX_TRACKED_CLIENTS:
            self._forget_idle(now)

        if count > self.max_requests:
            return False, max(1, math.ceil(self.window - (now - start)))
        return True, 0

    def _forget_idle(self, now: float) -> None:
        self._windows = {
            key: value for key, value in self._windows.items()
            if now - value[0] < self.window
        }


async def verify_turnstile_token(
    client: httpx.AsyncClient,
    secret: str,
    token: str,
    verify_url: str,
    remote_ip: Optional[str] = None,
) -> bool:
    """Ask Cloudflare whether a Turnstile token is valid."""
    if not secret:
        logger.warning("Turnstile secret key not configured, skipping verification")
        return True

    data = {'secret': secret, 'response': token}
    if remote_ip:
        data['remoteip'] = remote_ip

    try:
        response = await client.post(verify_url, data=data)
        result = response.json()
        return isinstance(result, dict) and result.get('success') is True
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Turnstile verification error: {e}")
        return False

"""
Retrying HTTP client

Posts JSON to the relay (or any JSON API) and retries rate-limited and
server-error responses with capped exponential backoff plus jitter.
"""

import logging
import random
import time
from typing import Callable, Optional

import requests

from .errors import MalformedResponseError, StylistError, TransportError, VideoTimeoutError, error_from_status

logger = logging.getLogger(__name__)

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 10000
JITTER_MS = 1000


def base_backoff_ms(attempt: int) -> int:
    """Backoff before jitter: 1000, 2000, 4000 ... capped at 10000 ms"""
    return min(BACKOFF_BASE_MS * (2 ** attempt), BACKOFF_CAP_MS)


def backoff_delay(attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
    """
    Delay in milliseconds before the retry following ``attempt``.

    Args:
        attempt: Zero-based attempt number that just failed
        rand: Jitter source, called as rand(0, JITTER_MS)

    Returns:
        float: Delay in milliseconds
    """
    return base_backoff_ms(attempt) + rand(0, JITTER_MS)


def is_retryable(error: StylistError) -> bool:
    if isinstance(error, TransportError):
        return True
    # The relay already waited out its own polling deadline
    if isinstance(error, VideoTimeoutError):
        return False
    return error.status_code == 429 or error.status_code >= 500


class RetryingClient:
    """
    JSON-over-POST client with bounded retries.

    Args:
        base_url: Prefix prepended to every endpoint
        timeout: Per-request timeout in seconds
        session: Optional requests.Session (injected in tests)
        sleep: Called with a delay in seconds between attempts
        rand: Jitter source
    """

    def __init__(
        self,
        base_url: str = '',
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[float, float], float] = random.uniform,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep
        self.rand = rand

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith('http://') or endpoint.startswith('https://'):
            return endpoint
        return f"{self.base_url}{endpoint}"

    def call(self, endpoint: str, payload: dict, max_attempts: int = 3, timeout: Optional[float] = None) -> dict:
        """
        POST ``payload`` as JSON and return the decoded JSON body.

        Retries on 429, 5xx and transport failures, up to ``max_attempts``
        total tries. Any other non-2xx status raises immediately.

        Raises:
            StylistError: The last error once retries are exhausted
            MalformedResponseError: If a 2xx body is not JSON
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        url = self.url_for(endpoint)
        last_error = None

        for attempt in range(max_attempts):
            try:
                response = self.session.post(url, json=payload, timeout=timeout or self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = TransportError(f"Request to {endpoint} failed: {e}")
            else:
                if response.ok:
                    try:
                        return response.json()
                    except ValueError:
                        raise MalformedResponseError(f"Non-JSON response from {endpoint}", status_code=502)
                last_error = self._error_from_response(response)

            if not is_retryable(last_error) or attempt == max_attempts - 1:
                break

            delay_ms = backoff_delay(attempt, self.rand)
            logger.warning(
                "%s on %s. Retrying in %.0fms... (Attempt %d/%d)",
                last_error.code, endpoint, delay_ms, attempt + 1, max_attempts
            )
            self.sleep(delay_ms / 1000.0)

        raise last_error

    @staticmethod
    def _error_from_response(response: requests.Response) -> StylistError:
        body = response.text
        message = body or response.reason or ''
        code = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            if data.get('error'):
                message = str(data['error'])
            code = data.get('code')
        return error_from_status(response.status_code, f"{response.status_code}: {message}", code)

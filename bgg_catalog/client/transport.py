"""
HTTP transport for the BoardGameGeek XML API.

Every request passes through the shared token bucket and the debouncer,
and failed requests are retried according to the retry policy.
"""

import logging
import random
import time
from typing import Callable, Dict, Iterable, Optional, Union

import requests

from ..config import BGG_API_BASE_URL, USER_AGENT
from ..error_handling import HttpError, RateLimited, TransportError
from .rate_limit import Debouncer, RetryPolicy, TokenBucket

logger = logging.getLogger(__name__)

IdList = Union[int, str, Iterable[Union[int, str]]]


def _join_ids(ids: IdList) -> str:
    if isinstance(ids, (int, str)):
        return str(ids)
    return ",".join(str(i) for i in ids)


def _retry_after_seconds(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class RateLimitedTransport:
    """
    Throttled, retrying fetcher for the catalog service.
    """

    def __init__(self, bucket: Optional[TokenBucket] = None,
                 debouncer: Optional[Debouncer] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 base_url: str = BGG_API_BASE_URL,
                 timeout: Optional[float] = None,
                 api_token: Optional[str] = None,
                 user_agent: str = USER_AGENT,
                 sleep: Callable[[float], None] = time.sleep,
                 rng: Optional[random.Random] = None):
        """
        Initialize the transport.

        Args:
            bucket: Shared token bucket (one per process)
            debouncer: Minimum spacing between consecutive calls
            retry_policy: Backoff settings for failed attempts
            session: requests session to reuse connections
            base_url: Root of the XML API
            timeout: Per-request timeout in seconds, None to wait indefinitely
            api_token: Bearer token for the XML API, if required
            sleep: Sleep function used between retries
        """
        self.bucket = bucket or TokenBucket()
        self.debouncer = debouncer or Debouncer()
        self.retry_policy = retry_policy or RetryPolicy()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._sleep = sleep
        self._rng = rng

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        if api_token:
            self.session.headers.update({"Authorization": f"Bearer {api_token}"})

    def fetch(self, url: str, params: Optional[Dict[str, str]] = None) -> bytes:
        """
        Fetch raw bytes from the catalog service.

        Raises:
            HttpError: immediately for 4xx responses other than 429, or once
                attempts are exhausted for 5xx responses
            RateLimited: once attempts are exhausted while throttled
            TransportError: once attempts are exhausted on connection errors
        """
        policy = self.retry_policy
        last_error: Optional[TransportError] = None

        for attempt in range(policy.max_attempts):
            self.bucket.acquire()
            self.debouncer.wait()
            retry_after = None
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_error = TransportError(f"Request to {url} failed: {e}", url)
            else:
                status = response.status_code
                if status == 429:
                    self.bucket.drain()
                    retry_after = _retry_after_seconds(response)
                    last_error = RateLimited(url, retry_after)
                elif status == 202 or status >= 400:
                    # 202: accepted, but the response has not been built yet
                    error = HttpError(status, url)
                    if not error.retryable:
                        logger.error(f"Catalog request to {url} failed with HTTP {status}")
                        raise error
                    last_error = error
                else:
                    return response.content

            if attempt < policy.max_attempts - 1:
                delay_ms = policy.jittered_delay(attempt, self._rng)
                if retry_after is not None:
                    delay_ms = max(delay_ms, retry_after * 1000.0)
                logger.warning(f"Catalog fetch attempt {attempt + 1}/{policy.max_attempts} failed "
                               f"({last_error}); retrying in {delay_ms:.0f}ms")
                self._sleep(delay_ms / 1000.0)

        logger.error(f"All {policy.max_attempts} catalog fetch attempts failed for {url}")
        raise last_error

    def fetch_thing(self, ids: IdList, stats: bool = True) -> bytes:
        """Fetch one or more items (games, expansions, accessories)."""
        params = {"id": _join_ids(ids)}
        if stats:
            params["stats"] = "1"
        return self.fetch(f"{self.base_url}/thing", params)

    def fetch_family(self, ids: IdList) -> bytes:
        """Fetch one or more family records."""
        return self.fetch(f"{self.base_url}/family", {"id": _join_ids(ids)})

    def search(self, query: str, types: Iterable[str] = ("boardgame", "boardgameexpansion"),
               exact: bool = False) -> bytes:
        """Search the catalog by name."""
        params = {
            "query": query,
            "type": ",".join(types),
            "exact": "1" if exact else "0",
        }
        return self.fetch(f"{self.base_url}/search", params)

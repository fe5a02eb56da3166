"""
Rate-limited page fetcher.

fetch(url) returns a FetchedPage (final URL after redirects + HTML) and
fetch_page(url) just the HTML. Both raise one of:
  FetchTimeout       -- request exceeded the hard timeout
  FetchHTTPStatus    -- non-2xx response (status_code attribute)
  FetchNetworkError  -- DNS, TLS, connection reset, bad URL, etc.

Politeness: DomainRateLimiter keeps the last request time per hostname and
sleeps out the remainder of the minimum delay before the next request to the
same host. The timestamp is refreshed whether the request succeeded or not,
so a failing host is still throttled on retry.
"""
import logging
import threading
import time
from typing import Callable, NamedTuple, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("campustour.tours")

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "ru-RU,ru;q=0.9,en;q=0.8",
}


class FetchedPage(NamedTuple):
    url: str
    html: str


class FetchError(RuntimeError):
    """Raised when a page cannot be fetched in full."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class FetchTimeout(FetchError):
    pass


class FetchHTTPStatus(FetchError):
    def __init__(self, url: str, status_code: int):
        super().__init__(url, f"HTTP {status_code} for {url}")
        self.status_code = status_code


class FetchNetworkError(FetchError):
    pass


class DomainRateLimiter:
    """Per-domain minimum delay. Clock and sleep are injectable for tests."""

    def __init__(
        self,
        min_delay: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._last_request: dict[str, float] = {}
        self._lock = threading.Lock()

    def wait(self, domain: str) -> float:
        """Sleep until domain is outside its politeness window. Returns seconds slept."""
        with self._lock:
            last = self._last_request.get(domain)
        if last is None:
            return 0.0
        remaining = self.min_delay - (self._clock() - last)
        if remaining > 0:
            self._sleep(remaining)
            return remaining
        return 0.0

    def mark(self, domain: str) -> None:
        with self._lock:
            self._last_request[domain] = self._clock()

    def last_request(self, domain: str) -> Optional[float]:
        with self._lock:
            return self._last_request.get(domain)


class PageFetcher:
    def __init__(
        self,
        *,
        min_delay: float = 1.5,
        timeout: float = 30.0,
        limiter: Optional[DomainRateLimiter] = None,
    ):
        self.timeout = timeout
        self.limiter = limiter or DomainRateLimiter(min_delay)

    def fetch_page(self, url: str) -> str:
        """Fetch url and return its HTML. Raises a FetchError subclass on any failure."""
        return self.fetch(url).html

    def fetch(self, url: str) -> FetchedPage:
        """Fetch url, following redirects. The returned url is where the page was actually served from."""
        try:
            domain = (urlparse(url).hostname or "").lower()
        except ValueError as e:
            raise FetchNetworkError(url, f"Invalid URL {url!r}: {e}") from e
        if not domain:
            raise FetchNetworkError(url, f"Invalid URL {url!r}: no hostname")

        self.limiter.wait(domain)
        try:
            with httpx.Client(timeout=self.timeout, headers=_HEADERS, follow_redirects=True) as client:
                response = client.get(url)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout fetching {url}")
            raise FetchTimeout(url, f"Timed out after {self.timeout:.0f}s fetching {url}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Network error fetching {url}: {e}")
            raise FetchNetworkError(url, f"{type(e).__name__} fetching {url}: {e}") from e
        finally:
            self.limiter.mark(domain)

        if not response.is_success:
            raise FetchHTTPStatus(url, response.status_code)
        return FetchedPage(url=str(response.url), html=response.text)

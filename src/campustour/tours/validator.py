"""
Tour link validation.

Source-level checks (pure, no network) are shared with the aggregator:
  validate_url()          -- parses, scheme is http/https, has a host
  validate_coordinates()  -- both finite and within [-90,90] x [-180,180]
  validate_source_url()   -- validate_url() + host in the provider's allowlist
  validate_tour_source()  -- a stored TourSource slot passes all of the above

LinkValidator adds the liveness probe: a HEAD request with a short timeout.
Redirects are followed (http -> https, short links, moved pages) and the
final status decides. 2xx is alive. So are the provider's configured non-2xx
statuses (302 and 403 by default) because Google/Yandex/2GIS answer
unauthenticated HEAD probes with login redirects or 403s. That rule is a
heuristic; a site that 403s every bot also passes it. Override per provider
with TOUR_LIVE_STATUSES.

A failed check never raises. It comes back as valid=False with an error
string so that one dead link does not stop the rest of the batch.
"""
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx

from campustour.tours.coordinates import coordinates_in_range
from campustour.tours.models import LinkCandidate, LinkValidationResult, TourProvider, TourSource
from campustour.tours.providers import is_allowed_host, live_statuses_for

logger = logging.getLogger("campustour.tours")

_PROBE_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; CampusTourBot/1.0; +virtual tour link check)",
}


def validate_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def validate_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    return coordinates_in_range(lat, lng)


def validate_source_url(url: Optional[str], provider: TourProvider) -> bool:
    return validate_url(url) and is_allowed_host(url, provider)


def validate_tour_source(source: Optional[TourSource], provider: TourProvider) -> bool:
    """Field-level sanity of a stored slot: URL, provider host, coordinates. No liveness."""
    if source is None:
        return False
    if not validate_source_url(source.url, provider):
        return False
    return validate_coordinates(source.latitude, source.longitude)


class LinkValidator:
    def __init__(
        self,
        *,
        timeout: float = 5.0,
        pause: float = 0.3,
        live_status_overrides: Optional[dict[str, list[int]]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.pause = pause
        self.live_status_overrides = live_status_overrides or {}
        self._sleep = sleep

    def _result(self, candidate: LinkCandidate, *, valid: bool, error: Optional[str] = None) -> LinkValidationResult:
        return LinkValidationResult(
            valid=valid,
            url=candidate.url,
            provider=candidate.provider,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            address=candidate.address,
            error=error,
        )

    def check_static(self, candidate: LinkCandidate) -> Optional[str]:
        """Return an error string if the candidate fails a non-network check, else None."""
        if not validate_url(candidate.url):
            return "Invalid URL format"
        if not is_allowed_host(candidate.url, candidate.provider):
            return f"Host not allowed for provider {candidate.provider.value}"
        has_lat = candidate.latitude is not None
        has_lng = candidate.longitude is not None
        if has_lat or has_lng:
            if not validate_coordinates(candidate.latitude, candidate.longitude):
                return "Invalid coordinates"
        return None

    def probe(self, url: str, provider: Optional[TourProvider]) -> Optional[str]:
        """HEAD url, following redirects. Returns None when the final response is alive, an error string otherwise."""
        try:
            with httpx.Client(timeout=self.timeout, headers=_PROBE_HEADERS, follow_redirects=True) as client:
                response = client.head(url)
        except httpx.TimeoutException:
            return f"Timed out after {self.timeout:g}s"
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return f"{type(e).__name__}: {e}" if str(e) else type(e).__name__

        if response.is_success:
            return None
        if response.status_code in live_statuses_for(provider, self.live_status_overrides):
            return None
        return f"HTTP {response.status_code}"

    def validate(self, candidate: LinkCandidate) -> LinkValidationResult:
        error = self.check_static(candidate)
        if error is None:
            error = self.probe(candidate.url, candidate.provider)
        if error:
            logger.debug(f"Rejected {candidate.url}: {error}")
            return self._result(candidate, valid=False, error=error)
        return self._result(candidate, valid=True)

    def validate_links(self, candidates: list[LinkCandidate]) -> list[LinkValidationResult]:
        """Validate sequentially with a fixed pause between candidates."""
        results = []
        for i, candidate in enumerate(candidates):
            if i > 0 and self.pause > 0:
                self._sleep(self.pause)
            results.append(self.validate(candidate))
        return results

    def filter_valid_links(self, candidates: list[LinkCandidate]) -> list[LinkValidationResult]:
        return [r for r in self.validate_links(candidates) if r.valid]

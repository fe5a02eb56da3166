"""
Map provider table -- one row per panorama host family.

Every provider-specific fact lives here so that the link extractor, the
coordinate extractor, the validator and the aggregator read the same data:

  hosts          -- domain families the provider serves (suffix match on hostname)
  map_hosts      -- hosts where any path is a map page
  map_paths      -- path prefixes that mark a map page on the other hosts
                    (empty tuple = any path on any host counts)
  patterns       -- regexes with two numeric groups, tried in order
  lat_first      -- axis order of the two groups
  live_statuses  -- non-2xx HEAD statuses accepted as "alive"

Axis order:
  google  -- "@43.24,76.95"        latitude first
  yandex  -- "ll=76.95,43.24"      longitude first
  twogis  -- "m=76.95,43.24/17"    longitude first

Google's own legacy "ll=" parameter is latitude first, which is exactly why the
patterns are keyed by provider and not by parameter name.
"""
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from campustour.tours.models import TourProvider

_NUM = r"(-?\d+(?:\.\d+)?)"
_SEP = r"(?:,|%2C|%2c)"


@dataclass(frozen=True)
class ProviderSpec:
    provider: TourProvider
    slot: str
    label: str
    hosts: tuple[str, ...]
    map_hosts: tuple[str, ...]
    map_paths: tuple[str, ...]
    patterns: tuple[re.Pattern, ...]
    lat_first: bool
    live_statuses: frozenset[int]


PROVIDERS: dict[TourProvider, ProviderSpec] = {
    TourProvider.GOOGLE: ProviderSpec(
        provider=TourProvider.GOOGLE,
        slot="google_maps",
        label="Google Maps Street View",
        hosts=("google.com", "google.kz", "google.ru", "goo.gl"),
        map_hosts=("maps.google.com", "maps.google.kz", "maps.google.ru", "maps.app.goo.gl", "goo.gl"),
        map_paths=("/maps",),
        patterns=(
            re.compile(rf"@{_NUM},{_NUM}"),
            re.compile(rf"[?&](?:q|ll|query|location|viewpoint)={_NUM}{_SEP}{_NUM}"),
        ),
        lat_first=True,
        live_statuses=frozenset({302, 403}),
    ),
    TourProvider.YANDEX: ProviderSpec(
        provider=TourProvider.YANDEX,
        slot="yandex_panorama",
        label="Yandex Panoramas",
        hosts=("yandex.com", "yandex.ru", "yandex.kz", "yandex.by"),
        map_hosts=(),
        map_paths=("/maps", "/map-widget"),
        patterns=(
            re.compile(rf"panorama(?:\[|%5B|%5b)point(?:\]|%5D|%5d)={_NUM}{_SEP}{_NUM}"),
            re.compile(rf"[?&]ll={_NUM}{_SEP}{_NUM}"),
        ),
        lat_first=False,
        live_statuses=frozenset({302, 403}),
    ),
    TourProvider.TWOGIS: ProviderSpec(
        provider=TourProvider.TWOGIS,
        slot="twogis",
        label="2GIS",
        hosts=("2gis.kz", "2gis.com", "2gis.ru"),
        map_hosts=(),
        map_paths=(),
        patterns=(
            re.compile(rf"[?&]m={_NUM}{_SEP}{_NUM}"),
            re.compile(rf"[?&]center={_NUM}{_SEP}{_NUM}"),
            re.compile(rf"/geo/(?:[^/?#]+/)?{_NUM}{_SEP}{_NUM}"),
        ),
        lat_first=False,
        live_statuses=frozenset({302, 403}),
    ),
}

# Discovery order tie-breaks and display priority (google > yandex > twogis)
PROVIDER_PRIORITY: tuple[TourProvider, ...] = tuple(PROVIDERS)

SLOT_BY_PROVIDER: dict[TourProvider, str] = {p: spec.slot for p, spec in PROVIDERS.items()}


def _hostname(url: str) -> str:
    try:
        return (urlparse(url.strip()).hostname or "").lower()
    except ValueError:
        return ""


def _host_matches(hostname: str, domains: tuple[str, ...]) -> bool:
    return any(hostname == d or hostname.endswith("." + d) for d in domains)


def provider_for_host(hostname: str) -> TourProvider | None:
    """Return the provider whose domain family contains hostname, or None."""
    hostname = hostname.lower()
    for provider, spec in PROVIDERS.items():
        if _host_matches(hostname, spec.hosts):
            return provider
    return None


def detect_provider(url: str) -> TourProvider | None:
    """
    Return the provider for a map URL, or None if the URL is not a map page.

    Host matching only -- no HTTP requests. A provider host alone is not
    enough for Google and Yandex (google.com/search, yandex.ru/news are not
    maps), so the path must also look like a map page there.
    """
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return None

    for provider, spec in PROVIDERS.items():
        if not _host_matches(hostname, spec.hosts):
            continue
        if not spec.map_paths or hostname in spec.map_hosts:
            return provider
        path = parsed.path.lower()
        if any(path.startswith(prefix) for prefix in spec.map_paths):
            return provider
        return None
    return None


def is_allowed_host(url: str, provider: TourProvider) -> bool:
    """True if url's hostname belongs to provider's domain allowlist."""
    return _host_matches(_hostname(url), PROVIDERS[provider].hosts)


def live_statuses_for(provider: TourProvider | None, overrides: dict[str, list[int]] | None = None) -> frozenset[int]:
    """Non-2xx statuses accepted as alive for provider, honouring configured overrides."""
    if provider is None:
        return frozenset()
    if overrides and provider.value in overrides:
        return frozenset(overrides[provider.value])
    return PROVIDERS[provider].live_statuses

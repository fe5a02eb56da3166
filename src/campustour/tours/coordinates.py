"""
Coordinate extraction from map provider URLs.

The two numbers in a map URL mean different things depending on who produced
it: Google writes latitude first, Yandex and 2GIS write longitude first. A
swapped pair is still a valid-looking pair for most of Central Asia, so the
provider must be known before the numbers are assigned.
"""
import math
from typing import Optional

from campustour.tours.models import Coordinates, TourProvider
from campustour.tours.providers import PROVIDERS, detect_provider


def coordinates_in_range(lat: Optional[float], lng: Optional[float]) -> bool:
    """True if both values are finite numbers within [-90,90] x [-180,180]."""
    if lat is None or lng is None:
        return False
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def extract_coordinates(url: str, provider: Optional[TourProvider] = None) -> Optional[Coordinates]:
    """
    Recover (lat, lng) from a map URL.

    Args:
        url: Provider URL, e.g. "https://yandex.kz/maps/?ll=69.58,42.34&z=17".
        provider: Known provider; detected from the hostname when omitted.

    Returns:
        Coordinates, or None when the provider is unknown, no pattern matches,
        or the recovered pair is out of range (rejected, never clamped).
    """
    if not url:
        return None
    if provider is None:
        provider = detect_provider(url)
    if provider is None:
        return None

    spec = PROVIDERS[provider]
    for pattern in spec.patterns:
        match = pattern.search(url)
        if not match:
            continue
        first, second = float(match.group(1)), float(match.group(2))
        lat, lng = (first, second) if spec.lat_first else (second, first)
        if coordinates_in_range(lat, lng):
            return Coordinates(lat=lat, lng=lng)
        return None
    return None

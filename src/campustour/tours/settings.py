"""Tunables for the tour scanner. Override any field with a TOUR_* env var."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ScannerSettings(BaseSettings):
    # Fetcher
    fetch_min_delay: float = 1.5      # seconds between requests to one domain
    fetch_timeout: float = 30.0
    subpage_limit: int = 3

    # Liveness probe
    probe_timeout: float = 5.0
    probe_pause: float = 0.3

    # Inference service
    ai_timeout: float = 120.0
    ai_excerpt_chars: int = 15000
    ai_temperature: float = 0.1
    ai_max_tokens: int = 2000

    # Batch
    university_pause: float = 2.0

    # Non-2xx statuses that count as "alive" per provider. A key replaces that
    # provider's default set (it does not add to it); missing keys keep the
    # provider table default.
    live_statuses: dict[str, list[int]] = {}

    model_config = SettingsConfigDict(env_prefix="TOUR_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> ScannerSettings:
    return ScannerSettings()

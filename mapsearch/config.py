from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App configuration (env-friendly).

    Tip: create a .env file (it is already in .gitignore) and override settings there.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "Map Search API"
    version: str = "0.1.0"
    log_level: str = "INFO"

    nominatim_base_url: AnyHttpUrl = "https://nominatim.openstreetmap.org/search"
    nominatim_reverse_url: AnyHttpUrl = "https://nominatim.openstreetmap.org/reverse"

    # Nominatim's usage policy expects a proper User-Agent and (optionally) contact info.
    user_agent: str = "map-search/0.1.0 (local-dev)"
    nominatim_email: Optional[str] = None

    # No key means the intent service is unavailable and searches degrade to the raw query.
    gemini_api_key: Optional[str] = None
    gemini_base_url: AnyHttpUrl = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_model: str = "gemini-2.5-flash"
    intent_temperature: float = 0.4
    intent_timeout_s: float = 30.0

    # Already-projected station GeoJSON (FeatureCollection of Point features).
    stations_url: AnyHttpUrl = "http://localhost:3000/api/underground/stations"

    http_timeout_s: float = 20.0
    geocode_timeout_s: float = 5.0

    search_radius_km: float = Field(10.0, gt=0)
    geocode_box_km: float = Field(10.0, gt=0)
    result_limit: int = Field(20, ge=1, le=50)
    station_match_limit: int = Field(3, ge=0)

    url_probe_timeout_s: float = 3.0
    url_probe_concurrency: int = Field(5, ge=1)

    cache_ttl_s: float = 86400.0
    cache_max_size: int = 256

    # Each client session (X-Session-Id header) gets its own coordinator and result cache.
    session_ttl_s: float = 3600.0
    max_sessions: int = Field(1024, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()

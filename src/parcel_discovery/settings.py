from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


DEFAULT_PROPERTY_API_URL = "https://api.gateway.attomdata.com/propertyapi/v1.0.0"
DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org/reverse"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once from the environment.

    Every value has a default so the engine can be built without any env vars
    (demo mode, tests).
    """

    property_api_url: str
    property_api_key: str
    geocoder_url: str
    user_agent: str
    http_timeout_s: float
    fit_padding: int
    click_zoom: int
    history_url: Optional[str]
    history_sample_size: int
    demo: bool

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            property_api_url=(
                os.getenv("PDE_PROPERTY_API_URL") or DEFAULT_PROPERTY_API_URL
            ).rstrip("/"),
            property_api_key=os.getenv("PDE_PROPERTY_API_KEY") or "",
            geocoder_url=os.getenv("PDE_GEOCODER_URL") or DEFAULT_GEOCODER_URL,
            user_agent=os.getenv("PDE_HTTP_USER_AGENT")
            or "parcel-discovery/0.1 (+https://example.invalid)",
            http_timeout_s=_env_float("PDE_HTTP_TIMEOUT_S", 10.0),
            fit_padding=_env_int("PDE_FIT_PADDING", 50),
            click_zoom=_env_int("PDE_CLICK_ZOOM", 16),
            history_url=(os.getenv("PDE_HISTORY_URL") or "").strip() or None,
            history_sample_size=max(0, _env_int("PDE_HISTORY_SAMPLE_SIZE", 5)),
            demo=_env_bool("PDE_DEMO", False),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()

"""Immutable configuration shared by the client and its pollers."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from .models import BoundingBox, DEFAULT_BOUNDS

DEFAULT_API_BASE_URL = "https://sg-bus-data-api.vercel.app/api"


@dataclass(frozen=True)
class BusTrackConfig:
    """Settings for talking to the bus data API.

    Attributes:
        api_base_url: Upstream base URL, endpoints are appended to it.
        proxy_url: Optional CORS forwarding proxy. When set, every upstream URL
            is passed to it as ``?url=<encoded upstream URL>``.
        refresh_interval_ms: Delay between poll cycles.
        bbox_radius: Half-width in degrees of nearby-stop queries.
        default_bounds: Region used when no valid coordinate is available.
        request_timeout: Per-request timeout in seconds.
        realtime_positions_available: Whether the upstream serves ``/realtime``.
        stop_query_limit: Optional ``limit`` sent with bus-stop queries.
    """
    api_base_url: str = DEFAULT_API_BASE_URL
    proxy_url: Optional[str] = None
    refresh_interval_ms: int = 30000
    bbox_radius: float = 0.01
    default_bounds: BoundingBox = DEFAULT_BOUNDS
    request_timeout: float = 10.0
    realtime_positions_available: bool = False
    stop_query_limit: Optional[int] = None

    def __post_init__(self):
        if self.refresh_interval_ms <= 0:
            raise ValueError(f"refresh_interval_ms must be positive, got {self.refresh_interval_ms}")
        if self.bbox_radius <= 0:
            raise ValueError(f"bbox_radius must be positive, got {self.bbox_radius}")

    @property
    def refresh_interval(self) -> float:
        """Refresh interval in seconds."""
        return self.refresh_interval_ms / 1000.0

    @classmethod
    def from_env(cls) -> "BusTrackConfig":
        """Build a config from ``BUSTRACK_*`` environment variables.

        Recognized variables:
        * ``BUSTRACK_API_BASE_URL``
        * ``BUSTRACK_PROXY_URL``
        * ``BUSTRACK_REFRESH_INTERVAL_MS``
        * ``BUSTRACK_BBOX_RADIUS``
        * ``BUSTRACK_REQUEST_TIMEOUT``
        * ``BUSTRACK_REALTIME_POSITIONS`` - ``1``/``true``/``yes`` to enable.

        Unset variables keep their defaults.
        """
        kwargs: Dict[str, Any] = {}

        base_url = (os.getenv("BUSTRACK_API_BASE_URL") or "").strip()
        if base_url:
            kwargs["api_base_url"] = base_url
        proxy_url = (os.getenv("BUSTRACK_PROXY_URL") or "").strip()
        if proxy_url:
            kwargs["proxy_url"] = proxy_url

        numeric = (
            ("BUSTRACK_REFRESH_INTERVAL_MS", "refresh_interval_ms", int),
            ("BUSTRACK_BBOX_RADIUS", "bbox_radius", float),
            ("BUSTRACK_REQUEST_TIMEOUT", "request_timeout", float),
        )
        for env_name, attr, convert in numeric:
            raw = (os.getenv(env_name) or "").strip()
            if not raw:
                continue
            try:
                kwargs[attr] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}") from None

        realtime = (os.getenv("BUSTRACK_REALTIME_POSITIONS") or "").strip().lower()
        if realtime:
            kwargs["realtime_positions_available"] = realtime in ("1", "true", "yes", "on")

        return cls(**kwargs)

    def get_api_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build the full URL for an endpoint.

        Args:
            endpoint: Path relative to the base URL (e.g. "/arrivals").
            params: Query parameters; ``None`` values are dropped.

        Returns:
            Upstream URL, wrapped in the proxy URL when one is configured.
        """
        url = self.api_base_url.rstrip("/") + endpoint
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if query:
            url = f"{url}?{urlencode(query)}"
        if self.proxy_url:
            return f"{self.proxy_url}?url={quote(url, safe='')}"
        return url


DEFAULT_CONFIG = BusTrackConfig()

"""HTTP client for the bus data API."""

import logging
from typing import Any, Dict, List, Optional

import requests

from .config import BusTrackConfig, DEFAULT_CONFIG
from .errors import CapabilityUnavailableError, ResponseFormatError, TransportError
from .models import Arrival, BoundingBox, Route, Stop, VehiclePosition
from .normalizer import normalize_arrivals, normalize_positions, normalize_route, normalize_stops

logger = logging.getLogger(__name__)

POSITIONS_UNAVAILABLE = "Real-time bus positions not available in this API"


class BusDataClient:
    """Fetches bus data and returns normalized models."""

    def __init__(self, config: BusTrackConfig = DEFAULT_CONFIG, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            config: API configuration.
            session: Optional requests session to reuse (a new one is created otherwise).
        """
        self.config = config
        self._session = session or requests.Session()
        self._owns_session = session is None

    def get_arrivals(self, stop_code: str, service_no: Optional[str] = None) -> List[Arrival]:
        """
        Get upcoming arrivals at a stop.

        Args:
            stop_code: Bus stop code (e.g., "65011").
            service_no: Optional service number to keep (e.g., "10").

        Returns:
            List of Arrival objects.
        """
        payload = self._get_json("/arrivals", {"busStopCode": stop_code})
        return normalize_arrivals(payload, service_no=service_no)

    def get_stops(
        self,
        bbox: BoundingBox,
        limit: Optional[int] = None,
        service: Optional[str] = None,
    ) -> List[Stop]:
        """
        Get bus stops inside a bounding box.

        Args:
            bbox: Area to search.
            limit: Optional maximum number of stops.
            service: Optional service number to restrict to.

        Returns:
            List of Stop objects with valid coordinates.
        """
        params = {"bbox": bbox.to_bbox_param(), "limit": limit, "service": service}
        payload = self._get_json("/bus-stops", params)
        return normalize_stops(payload)

    def get_route(self, service_no: str) -> Optional[Route]:
        """
        Get route geometry for a service.

        The GeoJSON form is requested first; deployments that reject it get
        the plain request instead.

        Returns:
            Route, or None if the service has no route.
        """
        try:
            payload = self._get_json("/bus-routes", {"service": service_no, "format": "geojson"})
        except TransportError as e:
            if e.status_code is None:
                raise
            logger.debug(f"GeoJSON route request failed ({e}), retrying plain format")
            payload = self._get_json("/bus-routes", {"service": service_no})
        return normalize_route(payload, service_no)

    def get_positions(self, service_no: str) -> List[VehiclePosition]:
        """
        Get live vehicle positions for a service.

        Raises:
            CapabilityUnavailableError: If the configured upstream has no
                realtime endpoint.
        """
        if not self.config.realtime_positions_available:
            raise CapabilityUnavailableError(POSITIONS_UNAVAILABLE)
        payload = self._get_json("/realtime", {"serviceNo": service_no})
        return normalize_positions(payload, service_no=service_no)

    def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Any:
        """
        Issue a GET request and decode the JSON body.

        Raises:
            TransportError: On network failure or a non-2xx status.
            ResponseFormatError: If the body is not JSON.
        """
        url = self.config.get_api_url(endpoint, params)
        logger.debug(f"Fetching {url}")
        try:
            response = self._session.get(
                url,
                headers={"Cache-Control": "no-cache"},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {url}: {e}")
            raise TransportError(f"Failed to fetch {endpoint}: {e}") from e

        if not response.ok:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Invalid JSON from {endpoint}") from e

    def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._owns_session:
            self._session.close()

"""Main BusTracker class."""

import logging
from typing import Any, Dict, List, Optional

from .api_client import BusDataClient
from .config import BusTrackConfig, DEFAULT_CONFIG
from .geo import compute_bounds, is_valid_coordinate
from .models import (
    Arrival,
    BoundingBox,
    Route,
    Stop,
    SubscriptionKey,
    VehiclePosition,
)
from .poller import (
    ArrivalsPoller,
    NearbyStopsPoller,
    Poller,
    PollerState,
    PositionsPoller,
    RoutePoller,
)
from .store import Snapshot, SnapshotStore

logger = logging.getLogger(__name__)


class BusTracker:
    """
    Keeps bus arrivals, stops, routes and positions fresh for presentation code.

    This class provides methods to:
    - Subscribe to arrivals, nearby stops, routes and vehicle positions
    - Read the latest snapshot and poll state of each subscription
    - Compute map bounds for whatever a subscription currently holds
    """

    def __init__(
        self,
        config: BusTrackConfig = DEFAULT_CONFIG,
        client: Optional[BusDataClient] = None,
        store: Optional[SnapshotStore] = None,
    ):
        """
        Initialize the tracker.

        Args:
            config: API and polling configuration.
            client: Optional client to use instead of building one from ``config``.
            store: Optional snapshot store to share with other trackers.
        """
        self.config = config
        self.client = client or BusDataClient(config)
        self.store = store or SnapshotStore()
        self._pollers: Dict[SubscriptionKey, Poller] = {}

    def subscribe_arrivals(
        self, stop_code: str, service_no: Optional[str] = None, start: bool = True
    ) -> ArrivalsPoller:
        """
        Follow arrivals at a stop.

        Args:
            stop_code: Bus stop code (e.g., "65011").
            service_no: Optional service number to keep (e.g., "10").
            start: Begin polling immediately.
        """
        poller = ArrivalsPoller(self.client, self.store, stop_code=stop_code, service_no=service_no, config=self.config)
        return self._subscribe(poller, start)

    def subscribe_nearby_stops(
        self,
        latitude: float,
        longitude: float,
        radius: Optional[float] = None,
        limit: Optional[int] = None,
        start: bool = True,
    ) -> NearbyStopsPoller:
        """Follow the stops around a point (radius defaults to ``config.bbox_radius``)."""
        poller = NearbyStopsPoller(
            self.client, self.store,
            latitude=latitude, longitude=longitude, radius=radius, limit=limit,
            config=self.config,
        )
        return self._subscribe(poller, start)

    def subscribe_route(self, service_no: str, start: bool = True) -> RoutePoller:
        """Follow the route geometry of a service."""
        poller = RoutePoller(self.client, self.store, service_no=service_no, config=self.config)
        return self._subscribe(poller, start)

    def subscribe_positions(self, service_no: str, start: bool = True) -> PositionsPoller:
        """Follow live vehicle positions of a service."""
        poller = PositionsPoller(self.client, self.store, service_no=service_no, config=self.config)
        return self._subscribe(poller, start)

    def _subscribe(self, poller: Poller, start: bool) -> Any:
        key = poller.key
        existing = self._pollers.get(key)
        if existing is not None:
            if start:
                existing.start()
            return existing

        self._pollers[key] = poller
        logger.info(f"Subscribed to {key}")
        if start:
            poller.start()
        return poller

    def resubscribe(self, key: SubscriptionKey, **params: Any) -> SubscriptionKey:
        """
        Change the parameters of an existing subscription.

        The old cycle is cancelled and its snapshot discarded.

        Args:
            key: Current subscription key.
            **params: Parameters to change (e.g., ``stop_code="65019"``).

        Returns:
            The subscription's new key.

        Raises:
            KeyError: If ``key`` is not subscribed.
            ValueError: If the new key belongs to another subscription.
            TypeError: If a parameter is not one the subscription takes.
        """
        poller = self._pollers[key]
        new_key = poller.key_for(**params)
        if new_key != key and new_key in self._pollers:
            raise ValueError(f"Already subscribed to {new_key}")

        poller.update(**params)
        if new_key != key:
            del self._pollers[key]
            self.store.discard(key)
            self._pollers[new_key] = poller
        logger.info(f"Resubscribed {key} as {new_key}")
        return new_key

    def unsubscribe(self, key: SubscriptionKey) -> bool:
        """Stop a subscription and drop its snapshot. Returns False if unknown."""
        poller = self._pollers.pop(key, None)
        if poller is None:
            return False
        poller.stop()
        self.store.discard(key)
        logger.info(f"Unsubscribed from {key}")
        return True

    def subscriptions(self) -> List[SubscriptionKey]:
        return list(self._pollers)

    def poller(self, key: SubscriptionKey) -> Optional[Poller]:
        return self._pollers.get(key)

    def snapshot(self, key: SubscriptionKey) -> Optional[Snapshot]:
        return self.store.get(key)

    def data(self, key: SubscriptionKey, default: Any = None) -> Any:
        return self.store.data(key, default)

    def state(self, key: SubscriptionKey) -> Optional[PollerState]:
        poller = self._pollers.get(key)
        return poller.state if poller else None

    def bounds(self, key: SubscriptionKey) -> BoundingBox:
        """
        Bounds of the coordinates currently held for a subscription.

        Falls back to ``config.default_bounds`` when there is nothing valid
        to cover.
        """
        return compute_bounds(self._coordinates(self.store.data(key)), self.config.default_bounds)

    @staticmethod
    def _coordinates(data: Any) -> List[Any]:
        if data is None:
            return []
        if isinstance(data, Route):
            return data.coordinates()

        coords = []
        for item in data:
            if isinstance(item, (Stop, VehiclePosition)):
                coords.append(item.coordinate)
            elif isinstance(item, Arrival):
                coords.extend(bus.coordinate for bus in item.buses if bus.coordinate)
        return coords

    def live_vehicles(self, key: SubscriptionKey) -> List[VehiclePosition]:
        """
        Buses with valid coordinates, flattened from an arrivals snapshot.

        Scheduled buses are included when they report a position; check
        ``monitored`` to tell them apart.

        Args:
            key: Key of an arrivals subscription.

        Returns:
            One VehiclePosition per bus that reported valid coordinates.
        """
        vehicles: List[VehiclePosition] = []
        for arrival in self.store.data(key, []):
            for bus in arrival.buses:
                if not is_valid_coordinate(bus.longitude, bus.latitude):
                    continue
                vehicles.append(
                    VehiclePosition(
                        service_no=arrival.service_no,
                        latitude=bus.latitude,
                        longitude=bus.longitude,
                        monitored=bus.monitored,
                        load=bus.load,
                        vehicle_type=bus.vehicle_type,
                        visit_number=bus.visit_number,
                    )
                )
        return vehicles

    def get_arrivals(self, stop_code: str, service_no: Optional[str] = None) -> List[Arrival]:
        """Fetch arrivals once, without subscribing."""
        return self.client.get_arrivals(stop_code, service_no=service_no)

    def close(self) -> None:
        """Stop every subscription and release the HTTP session."""
        for key in list(self._pollers):
            self.unsubscribe(key)
        self.client.close()
        logger.info("Closed tracker")

    def __enter__(self) -> "BusTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

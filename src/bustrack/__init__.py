"""bustrack - Polling client that keeps bus stop, arrival and route data fresh."""

__version__ = "0.1.0"

from .models import (
    Arrival,
    BoundingBox,
    BusVisit,
    LoadLevel,
    Route,
    RoutePattern,
    Stop,
    SubscriptionKey,
    SubscriptionKind,
    VehiclePosition,
    VehicleType,
)
from .errors import (
    BusTrackError,
    CapabilityUnavailableError,
    DecodeError,
    ResponseFormatError,
    TransportError,
)
from .config import BusTrackConfig, DEFAULT_CONFIG
from .geo import compute_bounds, filter_valid, is_valid_coordinate
from .polyline import decode_polyline
from .api_client import BusDataClient
from .store import Snapshot, SnapshotStore
from .poller import (
    ArrivalsPoller,
    NearbyStopsPoller,
    PollStatus,
    PollerState,
    PositionsPoller,
    RoutePoller,
)
from .bus_tracker import BusTracker

__all__ = [
    "BusTracker",
    "BusDataClient",
    "BusTrackConfig",
    "DEFAULT_CONFIG",
    "SnapshotStore",
    "Snapshot",
    "ArrivalsPoller",
    "NearbyStopsPoller",
    "RoutePoller",
    "PositionsPoller",
    "PollStatus",
    "PollerState",
    "Arrival",
    "BusVisit",
    "LoadLevel",
    "VehicleType",
    "Stop",
    "Route",
    "RoutePattern",
    "VehiclePosition",
    "BoundingBox",
    "SubscriptionKey",
    "SubscriptionKind",
    "BusTrackError",
    "TransportError",
    "ResponseFormatError",
    "DecodeError",
    "CapabilityUnavailableError",
    "compute_bounds",
    "filter_valid",
    "is_valid_coordinate",
    "decode_polyline",
]

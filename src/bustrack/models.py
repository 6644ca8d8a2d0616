"""Data models for bus stops, arrivals, routes and vehicle positions."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

Coordinate = Tuple[float, float]  # (longitude, latitude)

# Route pattern palette, indexed by pattern number
PATTERN_COLORS = ("#ff7800", "#00ff78", "#7800ff", "#ff0078", "#78ff00")


class LoadLevel(IntEnum):
    """Bus occupancy, ordered from emptiest to fullest."""
    SEATS_AVAILABLE = 0
    STANDING_AVAILABLE = 1
    LIMITED_STANDING = 2

    @property
    def label(self) -> str:
        return _LOAD_LABELS[self]


_LOAD_LABELS = {
    LoadLevel.SEATS_AVAILABLE: "Seats Available",
    LoadLevel.STANDING_AVAILABLE: "Standing Available",
    LoadLevel.LIMITED_STANDING: "Limited Standing",
}


class VehicleType(Enum):
    """Bus body type as reported by the arrivals feed."""
    SINGLE_DECK = "SD"
    DOUBLE_DECK = "DD"
    BENDY = "BD"


class SubscriptionKind(Enum):
    ARRIVALS = "arrivals"
    NEARBY_STOPS = "nearby-stops"
    ROUTE = "route"
    POSITIONS = "positions"


@dataclass(frozen=True)
class SubscriptionKey:
    """Identity of one poll cycle: a kind plus its query parameters."""
    kind: SubscriptionKind
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(cls, kind: SubscriptionKind, **params) -> "SubscriptionKey":
        """Build a key from keyword parameters, ignoring unset ones."""
        items = tuple(sorted((k, v) for k, v in params.items() if v is not None))
        return cls(kind=kind, params=items)

    def __str__(self) -> str:
        args = ",".join(f"{k}={v}" for k, v in self.params)
        return f"{self.kind.value}({args})"


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle in degrees. Derived on demand, never stored."""
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @classmethod
    def around(cls, latitude: float, longitude: float, radius: float) -> "BoundingBox":
        """Square box of +/- radius degrees centred on a point."""
        return cls(
            min_lat=latitude - radius,
            min_lon=longitude - radius,
            max_lat=latitude + radius,
            max_lon=longitude + radius,
        )

    def corners(self) -> List[List[float]]:
        """Return [[min_lat, min_lon], [max_lat, max_lon]] for map fitting."""
        return [[self.min_lat, self.min_lon], [self.max_lat, self.max_lon]]

    def to_bbox_param(self) -> str:
        """Format as the ``bbox`` query parameter: minLon,minLat,maxLon,maxLat."""
        return ",".join(str(v) for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat))


DEFAULT_BOUNDS = BoundingBox(min_lat=1.2, min_lon=103.6, max_lat=1.5, max_lon=104.0)


@dataclass
class Stop:
    """Represents a bus stop."""
    code: str
    name: str
    road: str
    longitude: float
    latitude: float
    services: List[str] = field(default_factory=list)  # Empty when the endpoint omits it

    @property
    def coordinate(self) -> Coordinate:
        return (self.longitude, self.latitude)

    def to_feature(self) -> Dict[str, Any]:
        """Render as a GeoJSON Point feature."""
        return {
            "type": "Feature",
            "properties": {
                "code": self.code,
                "name": self.name,
                "road": self.road,
                "services": list(self.services),
            },
            "geometry": {"type": "Point", "coordinates": [self.longitude, self.latitude]},
        }


@dataclass
class BusVisit:
    """One upcoming bus at a stop."""
    minutes_away: Optional[int]
    latitude: Optional[float] = None  # None for schedule-derived estimates
    longitude: Optional[float] = None
    load: Optional[LoadLevel] = None
    vehicle_type: Optional[VehicleType] = None
    features: Tuple[str, ...] = ()
    monitored: bool = False
    visit_number: Optional[int] = None
    estimated_arrival: Optional[str] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.longitude, self.latitude)

    @property
    def wheelchair_accessible(self) -> bool:
        return "WAB" in self.features


@dataclass
class Arrival:
    """Upcoming buses of one service at one stop."""
    service_no: str
    operator: Optional[str]
    buses: List[BusVisit] = field(default_factory=list)

    @property
    def next_bus(self) -> Optional[BusVisit]:
        return self.buses[0] if self.buses else None


@dataclass
class VehiclePosition:
    """Live position of a single bus."""
    service_no: Optional[str]
    latitude: float
    longitude: float
    monitored: bool = True
    load: Optional[LoadLevel] = None
    vehicle_type: Optional[VehicleType] = None
    visit_number: Optional[int] = None

    @property
    def coordinate(self) -> Coordinate:
        return (self.longitude, self.latitude)


@dataclass
class RoutePattern:
    """One directional variant of a service's route geometry."""
    service_no: str
    pattern: int
    direction: str
    path: List[Coordinate] = field(default_factory=list)  # Empty when geometry is unknown
    stops: List[str] = field(default_factory=list)

    def style(self) -> Dict[str, Any]:
        """Line style for this pattern, picked from the shared palette."""
        return {
            "color": PATTERN_COLORS[self.pattern % len(PATTERN_COLORS)],
            "weight": 4,
            "opacity": 0.8,
            "dash_array": "10, 5" if self.pattern > 0 else None,
        }

    def to_feature(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {
            "pattern": self.pattern,
            "serviceNo": self.service_no,
            "direction": self.direction,
        }
        if self.stops:
            properties["stops"] = list(self.stops)
        return {
            "type": "Feature",
            "properties": properties,
            "geometry": {"type": "LineString", "coordinates": [list(c) for c in self.path]},
        }


@dataclass
class Route:
    """All known patterns of one bus service."""
    service_no: str
    patterns: List[RoutePattern] = field(default_factory=list)

    def coordinates(self) -> List[Coordinate]:
        return [coord for pattern in self.patterns for coord in pattern.path]

    def to_feature_collection(self) -> Dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [pattern.to_feature() for pattern in self.patterns],
        }

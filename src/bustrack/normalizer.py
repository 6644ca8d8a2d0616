"""Translate raw API payloads into bustrack models.

The upstream has shipped more than one response shape per endpoint over time:
a keyed/positional form (``{"stops": {code: [lon, lat, name, road]}}``) and a
GeoJSON feature collection. Each normalizer detects which one arrived and
produces the same models either way.
"""

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, List, Optional

from .errors import DecodeError, ResponseFormatError
from .geo import filter_valid, is_valid_coordinate, is_valid_stop_record, is_valid_vehicle_record
from .models import (
    Arrival,
    BusVisit,
    LoadLevel,
    Route,
    RoutePattern,
    Stop,
    VehiclePosition,
    VehicleType,
)
from .polyline import decode

logger = logging.getLogger(__name__)

GEOJSON = "geojson"
KEYED = "keyed"
POSITIONAL = "positional"

# Letter codes used by LTA DataMall for bus load
_LOAD_CODES = {
    "SEA": LoadLevel.SEATS_AVAILABLE,
    "SDA": LoadLevel.STANDING_AVAILABLE,
    "LSD": LoadLevel.LIMITED_STANDING,
}


def detect_shape(data: Any, key: str) -> Optional[str]:
    """
    Work out which response shape a ``data`` object uses.

    Args:
        data: The ``data`` member of an API response.
        key: Endpoint-specific member holding the legacy shape (e.g. "stops").

    Returns:
        "geojson" when a ``features`` list is present, "keyed" when ``key``
        holds a mapping, "positional" when it holds a list, else None.
    """
    if not isinstance(data, Mapping):
        return None
    if isinstance(data.get("features"), list):
        return GEOJSON
    value = data.get(key)
    if isinstance(value, Mapping):
        return KEYED
    if isinstance(value, list):
        return POSITIONAL
    return None


def _unwrap(payload: Any, require_success: bool = False) -> Mapping:
    """Return the ``data`` member, raising ResponseFormatError when unusable."""
    if not isinstance(payload, Mapping):
        raise ResponseFormatError("Invalid response format")

    success = payload.get("success") if require_success else payload.get("success", True)
    if not success:
        error = payload.get("error")
        message = error.get("message") if isinstance(error, Mapping) else None
        raise ResponseFormatError(message or "Invalid response format")

    data = payload.get("data")
    if not isinstance(data, Mapping):
        raise ResponseFormatError("Response is missing 'data'")
    return data


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _parse_load(value: Any) -> Optional[LoadLevel]:
    if isinstance(value, str):
        code = value.strip().upper()
        if code in _LOAD_CODES:
            return _LOAD_CODES[code]
    level = _as_int(value)
    if level is None:
        return None
    try:
        return LoadLevel(level)
    except ValueError:
        return None


def _parse_vehicle_type(value: Any) -> Optional[VehicleType]:
    if not isinstance(value, str):
        return None
    try:
        return VehicleType(value.strip().upper())
    except ValueError:
        return None


def _parse_features(value: Any) -> tuple:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(part) for part in value if part)
    return ()


def _minutes_until(estimated_arrival: Any, now: Optional[datetime] = None) -> Optional[int]:
    """Whole minutes until an ISO-8601 timestamp, rounded up, never negative."""
    if not isinstance(estimated_arrival, str) or not estimated_arrival:
        return None
    try:
        eta = datetime.fromisoformat(estimated_arrival.replace("Z", "+00:00"))
    except ValueError:
        return None
    if eta.tzinfo is None:
        eta = eta.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds_away = (eta - now).total_seconds()
    if seconds_away <= 0:
        return 0
    return math.ceil(seconds_away / 60)


def _parse_bus(raw: Any) -> BusVisit:
    if not isinstance(raw, Mapping):
        return BusVisit(minutes_away=None)

    minutes_away = _as_int(raw.get("minutesAway"))
    if minutes_away is None:
        minutes_away = _minutes_until(raw.get("estimatedArrival"))
    elif minutes_away < 0:
        minutes_away = 0

    latitude = raw.get("latitude")
    longitude = raw.get("longitude")
    if not is_valid_coordinate(longitude, latitude):
        latitude = longitude = None

    return BusVisit(
        minutes_away=minutes_away,
        latitude=latitude,
        longitude=longitude,
        load=_parse_load(raw.get("load")),
        vehicle_type=_parse_vehicle_type(raw.get("type")),
        features=_parse_features(raw.get("feature")),
        monitored=_as_bool(raw.get("monitored")),
        visit_number=_as_int(raw.get("visitNumber")),
        estimated_arrival=_as_str(raw.get("estimatedArrival")),
    )


def normalize_arrivals(payload: Any, service_no: Optional[str] = None) -> List[Arrival]:
    """
    Normalize an ``/arrivals`` response.

    Args:
        payload: Decoded JSON body.
        service_no: If given, keep only arrivals for this service.

    Returns:
        List of Arrival objects, in upstream order.

    Raises:
        ResponseFormatError: If ``success`` is falsy or ``data.arrivals`` is missing.
    """
    data = _unwrap(payload, require_success=True)
    raw_arrivals = data.get("arrivals")
    if not isinstance(raw_arrivals, list):
        raise ResponseFormatError("Invalid response format")

    arrivals: List[Arrival] = []
    for raw in raw_arrivals:
        if not isinstance(raw, Mapping):
            continue
        buses = raw.get("buses")
        arrivals.append(
            Arrival(
                service_no=_as_str(raw.get("serviceNo")) or "",
                operator=_as_str(raw.get("operator")),
                buses=[_parse_bus(bus) for bus in buses] if isinstance(buses, list) else [],
            )
        )

    if service_no is not None:
        wanted = str(service_no)
        arrivals = [arrival for arrival in arrivals if arrival.service_no == wanted]

    return arrivals


def _stop_from_feature(feature: Any) -> Optional[Stop]:
    if not isinstance(feature, Mapping):
        return None
    geometry = feature.get("geometry")
    properties = feature.get("properties")
    if not isinstance(geometry, Mapping) or not isinstance(properties, Mapping):
        return None
    coords = geometry.get("coordinates")
    if not filter_valid([coords]):
        return None

    code = properties.get("code", properties.get("number"))
    if code is None:
        return None
    services = properties.get("services")
    return Stop(
        code=str(code),
        name=_as_str(properties.get("name")) or "",
        road=_as_str(properties.get("road")) or "",
        longitude=coords[0],
        latitude=coords[1],
        services=[str(s) for s in services] if isinstance(services, list) else [],
    )


def normalize_stops(payload: Any) -> List[Stop]:
    """
    Normalize a ``/bus-stops`` response in either known shape.

    Keyed records (``code -> [lon, lat, name, road]``) carry no service list,
    so those stops get an empty ``services``.

    Raises:
        ResponseFormatError: If the response reports failure or neither
            ``stops`` nor ``features`` is present.
    """
    data = _unwrap(payload)
    shape = detect_shape(data, "stops")
    stops: List[Stop] = []
    skipped = 0

    if shape == KEYED:
        for code, record in data["stops"].items():
            if not is_valid_stop_record(record):
                skipped += 1
                continue
            stops.append(
                Stop(
                    code=str(code),
                    name=_as_str(record[2]) or "",
                    road=_as_str(record[3]) or "",
                    longitude=record[0],
                    latitude=record[1],
                    services=[],
                )
            )
    elif shape == GEOJSON:
        for feature in data["features"]:
            stop = _stop_from_feature(feature)
            if stop is None:
                skipped += 1
                continue
            stops.append(stop)
    else:
        raise ResponseFormatError("Response has neither 'stops' nor 'features'")

    if skipped:
        logger.warning(f"Skipped {skipped} bus stop records with invalid data")
    logger.debug(f"Normalized {len(stops)} stops from {shape} response")
    return stops


def _direction_label(index: int) -> str:
    return f"Direction {index + 1}"


def _route_from_keyed(service_no: str, route_info: Mapping) -> Route:
    patterns: List[RoutePattern] = []

    polylines = route_info.get("polylines")
    if isinstance(polylines, list):
        for index, encoded in enumerate(polylines):
            try:
                path = filter_valid(decode(encoded))
            except DecodeError as e:
                logger.warning(f"Dropping pattern {index} of service {service_no}: {e}")
                continue
            patterns.append(
                RoutePattern(
                    service_no=service_no,
                    pattern=index,
                    direction=_direction_label(index),
                    path=path,
                )
            )

    # Topology without geometry: keep the stop sequences with empty paths
    stop_sequences = route_info.get("stops")
    if not patterns and isinstance(stop_sequences, list):
        for index, sequence in enumerate(stop_sequences):
            stops = [str(code) for code in sequence] if isinstance(sequence, list) else []
            patterns.append(
                RoutePattern(
                    service_no=service_no,
                    pattern=index,
                    direction=_direction_label(index),
                    path=[],
                    stops=stops,
                )
            )

    return Route(service_no=service_no, patterns=patterns)


def _route_from_features(service_no: str, features: List[Any]) -> Optional[Route]:
    patterns: List[RoutePattern] = []
    matched = False

    for index, feature in enumerate(features):
        if not isinstance(feature, Mapping):
            continue
        properties = feature.get("properties")
        if not isinstance(properties, Mapping):
            properties = {}
        number = properties.get("serviceNo", properties.get("number", properties.get("service")))
        if number is not None and str(number) != service_no:
            continue
        matched = True

        geometry = feature.get("geometry")
        coords = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
        pattern = _as_int(properties.get("pattern"))
        if pattern is None:
            pattern = index
        patterns.append(
            RoutePattern(
                service_no=service_no,
                pattern=pattern,
                direction=_as_str(properties.get("direction")) or _direction_label(pattern),
                path=[tuple(c[:2]) for c in filter_valid(coords)],
            )
        )

    if not matched:
        return None
    return Route(service_no=service_no, patterns=patterns)


def normalize_route(payload: Any, service_no: str) -> Optional[Route]:
    """
    Normalize a ``/bus-routes`` response for one service.

    Each encoded polyline becomes one pattern. A polyline that fails to
    decode drops only its own pattern. When no polyline survives but stop
    sequences are present, one pattern per sequence is emitted with an empty
    path.

    Args:
        payload: Decoded JSON body.
        service_no: Service number that was queried.

    Returns:
        Route for the service, or None if the response does not mention it.

    Raises:
        ResponseFormatError: If the response reports failure or has no ``data``.
    """
    service_no = str(service_no)
    data = _unwrap(payload)
    shape = detect_shape(data, "routes")

    if shape == KEYED:
        route_info = data["routes"].get(service_no)
        if not isinstance(route_info, Mapping):
            logger.info(f"No route found for service {service_no}")
            return None
        route = _route_from_keyed(service_no, route_info)
    elif shape == GEOJSON:
        route = _route_from_features(service_no, data["features"])
        if route is None:
            logger.info(f"No route found for service {service_no}")
            return None
    else:
        logger.info(f"No route found for service {service_no}")
        return None

    logger.debug(f"Normalized {len(route.patterns)} patterns for service {service_no}")
    return route


def _position_from_record(record: Mapping, service_no: Optional[str]) -> VehiclePosition:
    return VehiclePosition(
        service_no=_as_str(record.get("serviceNo")) or service_no,
        latitude=record["latitude"],
        longitude=record["longitude"],
        monitored=_as_bool(record.get("monitored", True)),
        load=_parse_load(record.get("load")),
        vehicle_type=_parse_vehicle_type(record.get("type")),
        visit_number=_as_int(record.get("visitNumber")),
    )


def normalize_positions(payload: Any, service_no: Optional[str] = None) -> List[VehiclePosition]:
    """
    Normalize a ``/realtime`` response.

    Accepts either ``data.positions`` (list of vehicle mappings) or GeoJSON
    Point features. Vehicles without a usable position are dropped.

    Raises:
        ResponseFormatError: If the response reports failure or has neither shape.
    """
    data = _unwrap(payload)
    shape = detect_shape(data, "positions")
    records: List[Mapping] = []

    if shape == POSITIONAL:
        records = [r for r in data["positions"] if isinstance(r, Mapping)]
    elif shape == GEOJSON:
        for feature in data["features"]:
            if not isinstance(feature, Mapping):
                continue
            geometry = feature.get("geometry")
            properties = feature.get("properties")
            coords = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
            if not filter_valid([coords]):
                continue
            record = dict(properties) if isinstance(properties, Mapping) else {}
            record["longitude"], record["latitude"] = coords[0], coords[1]
            records.append(record)
    else:
        raise ResponseFormatError("Response has neither 'positions' nor 'features'")

    positions = [
        _position_from_record(record, service_no)
        for record in records
        if is_valid_vehicle_record(record)
    ]
    if service_no is not None:
        wanted = str(service_no)
        positions = [p for p in positions if p.service_no in (None, wanted)]
    return positions

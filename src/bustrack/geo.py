"""Coordinate validation and bounding-box helpers.

Zero is treated as a "missing" sentinel rather than the equator or prime
meridian; the upstream feeds use it for buses without a GPS fix.
"""

import math
from collections.abc import Mapping
from numbers import Real
from typing import Any, Iterable, List

from .models import BoundingBox, DEFAULT_BOUNDS


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def is_valid_coordinate(lon: Any, lat: Any) -> bool:
    """Return True if both components are finite, non-zero numbers."""
    for value in (lon, lat):
        if not _is_number(value):
            return False
        if not math.isfinite(value) or value == 0:
            return False
    return True


def _is_valid_pair(coord: Any) -> bool:
    return (
        isinstance(coord, (list, tuple))
        and len(coord) >= 2
        and is_valid_coordinate(coord[0], coord[1])
    )


def filter_valid(coords: Iterable[Any]) -> List[Any]:
    """
    Drop entries that are not valid [lon, lat, ...] pairs.

    Args:
        coords: Iterable of coordinate pairs. Anything else is skipped.

    Returns:
        Surviving entries in their original order.
    """
    if coords is None:
        return []
    try:
        return [coord for coord in coords if _is_valid_pair(coord)]
    except TypeError:
        return []


def is_valid_stop_record(record: Any) -> bool:
    """Check a positional stop record laid out as [lon, lat, name, road, ...]."""
    return (
        isinstance(record, (list, tuple))
        and len(record) >= 4
        and is_valid_coordinate(record[0], record[1])
    )


def is_valid_vehicle_record(record: Any) -> bool:
    """Check that a vehicle mapping carries usable latitude/longitude fields."""
    if not isinstance(record, Mapping):
        return False
    return is_valid_coordinate(record.get("longitude"), record.get("latitude"))


def compute_bounds(coords: Iterable[Any], fallback: BoundingBox = DEFAULT_BOUNDS) -> BoundingBox:
    """
    Smallest box covering the valid coordinates.

    Invalid points are filtered out first so they never widen the box.

    Args:
        coords: Iterable of [lon, lat] pairs.
        fallback: Returned when no valid coordinate remains.

    Returns:
        BoundingBox over the valid coordinates, or ``fallback``.
    """
    valid = filter_valid(coords)
    if not valid:
        return fallback

    lons = [coord[0] for coord in valid]
    lats = [coord[1] for coord in valid]
    return BoundingBox(
        min_lat=min(lats),
        min_lon=min(lons),
        max_lat=max(lats),
        max_lon=max(lons),
    )

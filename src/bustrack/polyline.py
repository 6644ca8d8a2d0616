"""Decoder for Google encoded polylines."""

import logging
from typing import List

from .errors import DecodeError
from .models import Coordinate

logger = logging.getLogger(__name__)


def decode(encoded: str, precision: int = 5) -> List[Coordinate]:
    """
    Decode an encoded polyline.

    Each point is stored as a zig-zag encoded latitude/longitude delta from
    the previous point, split into 5-bit chunks offset by 63.

    Args:
        encoded: Polyline string.
        precision: Number of decimal digits encoded (5 for Google/OSRM).

    Returns:
        List of (longitude, latitude) tuples.

    Raises:
        DecodeError: If the string is empty, truncated or contains characters
            outside the polyline alphabet.
    """
    if not isinstance(encoded, str) or not encoded:
        raise DecodeError("Empty polyline")

    factor = 10 ** precision
    length = len(encoded)
    coordinates: List[Coordinate] = []
    index = 0
    lat = 0
    lon = 0

    while index < length:
        deltas = []
        for _ in range(2):
            result = 0
            shift = 0
            while True:
                if index >= length:
                    raise DecodeError(f"Polyline truncated at offset {index}")
                chunk = ord(encoded[index]) - 63
                if chunk < 0 or chunk > 63:
                    raise DecodeError(f"Invalid polyline character {encoded[index]!r} at offset {index}")
                index += 1
                result |= (chunk & 0x1F) << shift
                shift += 5
                if chunk < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)

        lat += deltas[0]
        lon += deltas[1]
        coordinates.append((lon / factor, lat / factor))

    return coordinates


def decode_polyline(encoded: str, precision: int = 5) -> List[Coordinate]:
    """Decode a polyline, returning an empty path (and logging) on failure."""
    try:
        return decode(encoded, precision)
    except DecodeError as e:
        logger.warning(f"Failed to decode polyline: {e}")
        return []

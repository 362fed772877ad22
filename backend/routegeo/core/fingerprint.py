"""Spatial fingerprint: a GPS-noise tolerant cache key for an origin/destination pair."""

import hashlib

from routegeo.core.geo import GeoPoint

DEFAULT_PRECISION = 4  # 4 decimals ≈ 11 m


def _quantize(value: float, precision: int) -> str:
    # Adding 0.0 folds -0.0 into 0.0 so both sides of the equator/meridian share a cell
    return f"{round(value, precision) + 0.0:.{precision}f}"


def route_fingerprint(
    origin: GeoPoint,
    dest: GeoPoint,
    precision: int = DEFAULT_PRECISION,
    variant: str = "",
) -> str:
    """Return a 32-char hex key for the pair, equal iff both endpoints share a grid cell.

    Coordinates are not validated here; callers reject NaN and out-of-range
    values before fingerprinting. ``variant`` separates different payload kinds
    stored for the same pair (e.g. an itinerary option index).
    """
    raw = "{},{}->{},{}".format(
        _quantize(origin.lat, precision), _quantize(origin.lon, precision),
        _quantize(dest.lat, precision), _quantize(dest.lon, precision),
    )
    if variant:
        raw = f"{raw}|{variant}"
    digest = hashlib.sha256(raw.encode("utf-8")).digest()
    return digest[:16].hex()

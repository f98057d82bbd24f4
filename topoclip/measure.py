"""Geodesic length and area of view geometries, and unit formatting."""

from pyproj import Geod

from .geometry import Geometry, boundary, is_areal, outer_ring
from .projection import to_lon_lat

_GEOD = Geod(ellps="WGS84")

# unit -> (factor from metres, decimals, suffix)
LENGTH_UNITS: dict[str, tuple[float, int, str]] = {
    "m":  (1.0, 2, "m"),
    "km": (1 / 1000, 2, "km"),
    "ft": (3.280839895, 2, "ft"),
    "mi": (1 / 1609.344, 3, "mi"),
}

# unit -> (factor from square metres, decimals, suffix)
AREA_UNITS: dict[str, tuple[float, int, str]] = {
    "sqm":  (1.0, 2, "m²"),
    "ha":   (1 / 10_000, 2, "ha"),
    "sqkm": (1 / 1_000_000, 2, "km²"),
    "ac":   (1 / 4046.8564224, 2, "ac"),
}


def unit_kind(unit: str) -> str:
    """Return "length" or "area" for a unit code."""
    if unit in LENGTH_UNITS:
        return "length"
    if unit in AREA_UNITS:
        return "area"
    raise ValueError(f"Unknown unit: {unit!r}")


def _lon_lat(coords):
    pairs = [to_lon_lat(x, y) for x, y in coords]
    return [p[0] for p in pairs], [p[1] for p in pairs]


def length(geom: Geometry) -> float:
    """Geodesic length in metres of a line, or of a polygon's outer boundary."""
    path = boundary(geom)
    if len(path) < 2:
        return 0.0
    lons, lats = _lon_lat(path)
    return float(_GEOD.line_length(lons, lats))


def area(geom: Geometry) -> float:
    """Geodesic area in square metres of a polygon's outer ring."""
    if not is_areal(geom):
        raise TypeError(f"area() needs a polygon, got {type(geom).__name__}")
    ring = outer_ring(geom)
    if len(ring) < 4:
        return 0.0
    lons, lats = _lon_lat(ring)
    poly_area, _ = _GEOD.polygon_area_perimeter(lons, lats)
    return abs(float(poly_area))


def _lookup(table: dict, unit: str) -> tuple[float, int, str]:
    try:
        return table[unit]
    except KeyError:
        raise ValueError(f"Unknown unit: {unit!r}") from None


def format_length(meters: float, unit: str = "m") -> str:
    factor, decimals, suffix = _lookup(LENGTH_UNITS, unit)
    return f"{meters * factor:.{decimals}f} {suffix}"


def format_area(square_meters: float, unit: str = "sqm") -> str:
    factor, decimals, suffix = _lookup(AREA_UNITS, unit)
    return f"{square_meters * factor:.{decimals}f} {suffix}"

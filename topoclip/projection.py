"""Coordinate transforms between WGS84, the Merchich Lambert zones and Web Mercator.

Three frames are involved:

* geodetic  - WGS84 longitude/latitude in degrees (EPSG:4326)
* zone      - metres in one of the regional Lambert conformal conic grids
* internal  - Web Mercator metres (EPSG:3857), the map view's rendering plane

Transforms that cannot produce a trustworthy result return ``None`` instead of
raising, so batch callers can drop a single bad row and carry on.

Note: every pyproj transformer is built with always_xy=True, so coordinates are
always ordered (easting/longitude, northing/latitude).
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache

from pyproj import Transformer
from pyproj.exceptions import ProjError

from .config import ENVELOPE

logger = logging.getLogger(__name__)

GEODETIC = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"

# Size of one screen pixel at 96 DPI, in metres.
METERS_PER_PIXEL = 0.0254 / 96


@dataclass(frozen=True)
class GeodeticPoint:
    lon: float
    lat: float


@dataclass(frozen=True)
class ZonePoint:
    x: float
    y: float


@dataclass(frozen=True)
class Envelope:
    """Geographic box a zone result must fall in to be accepted."""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lon: float, lat: float) -> bool:
        return (self.min_lat <= lat <= self.max_lat
                and self.min_lng <= lon <= self.max_lng)


# Only catches gross misuse: (0, 0) in zones 1-3 still lands inside the box
# (around -10.6,30.5 / -10.4,26.9 / -17.0,22.0); in zone 4 it falls outside.
VALIDITY_ENVELOPE = Envelope(*ENVELOPE)


@dataclass(frozen=True)
class Zone:
    """One Lambert conformal conic zone on the Clarke 1880 (IGN) ellipsoid."""
    code: str
    label: str
    lat_0: float
    lon_0: float
    k_0: float
    x_0: float
    y_0: float
    towgs84: tuple[float, float, float] = (31.0, 146.0, 47.0)
    a: float = 6378249.2
    b: float = 6356515.0

    @property
    def proj_string(self) -> str:
        dx, dy, dz = self.towgs84
        return (
            f"+proj=lcc +lat_1={self.lat_0} +lat_0={self.lat_0} +lon_0={self.lon_0} "
            f"+k_0={self.k_0} +x_0={self.x_0} +y_0={self.y_0} "
            f"+a={self.a} +b={self.b} +towgs84={dx},{dy},{dz},0,0,0,0 "
            f"+units=m +no_defs"
        )


# Keyed by identifier. The geodetic frame itself is a valid "zone" with no
# Lambert parameters, so it maps to None.
ZONES: dict[str, Zone | None] = {
    GEODETIC: None,
    "EPSG:26191": Zone("EPSG:26191", "Merchich Zone 1", 33.3, -5.4, 0.999625769, 500000, 300000),
    "EPSG:26192": Zone("EPSG:26192", "Merchich Zone 2", 29.7, -5.4, 0.999615596, 500000, 300000),
    "EPSG:26194": Zone("EPSG:26194", "Merchich Zone 3", 26.1, -5.4, 0.999616304, 1200000, 400000),
    "EPSG:26195": Zone("EPSG:26195", "Merchich Zone 4", 22.5, -5.4, 0.999616437, 1500000, 400000),
}

ZONE_LABELS = {
    code: ("WGS 84" if zone is None else zone.label) for code, zone in ZONES.items()
}


def get_zone(zone_id: str) -> Zone | None:
    """Return the zone definition; KeyError for an unknown identifier."""
    return ZONES[zone_id]


@lru_cache(maxsize=None)
def _transformer(src: str, dst: str) -> Transformer:
    def crs(code: str) -> str:
        zone = ZONES.get(code)
        return zone.proj_string if zone is not None else code
    return Transformer.from_crs(crs(src), crs(dst), always_xy=True)


def _finite(*values: float) -> bool:
    return all(isinstance(v, (int, float)) and math.isfinite(v) for v in values)


def _valid_geodetic(lon: float, lat: float) -> bool:
    return _finite(lon, lat) and abs(lat) <= 90 and abs(lon) <= 180


def _pair(point, first: str, second: str):
    """Unpack a dataclass point or a 2-sequence; None if it is neither."""
    if hasattr(point, first) and hasattr(point, second):
        return getattr(point, first), getattr(point, second)
    try:
        a, b = point
    except (TypeError, ValueError):
        return None
    return a, b


def _known_zone(zone_id) -> bool:
    return isinstance(zone_id, str) and zone_id in ZONES


def to_geodetic(point: ZonePoint | tuple[float, float], zone_id: str) -> GeodeticPoint | None:
    """Inverse-project a zone point to WGS84, or None if it can't be trusted.

    For the geodetic zone the input is only range-checked. For a Lambert zone the
    result must land inside VALIDITY_ENVELOPE: a plausible-looking number far from
    the zones' design area means the input was not really in that zone.
    """
    pair = _pair(point, "x", "y")
    if pair is None or not _known_zone(zone_id) or not _finite(*pair):
        logger.debug("Rejected %r in %s", point, zone_id)
        return None
    x, y = pair

    if ZONES[zone_id] is None:
        return GeodeticPoint(x, y) if _valid_geodetic(x, y) else None

    try:
        lon, lat = _transformer(zone_id, GEODETIC).transform(x, y)
    except ProjError as exc:
        logger.debug("Projection of %r from %s failed: %s", (x, y), zone_id, exc)
        return None

    if not _finite(lon, lat) or not VALIDITY_ENVELOPE.contains(lon, lat):
        logger.debug("Rejected %r in %s: lands at (%s, %s)", (x, y), zone_id, lon, lat)
        return None
    return GeodeticPoint(lon, lat)


def to_zone(point: GeodeticPoint | tuple[float, float], zone_id: str) -> ZonePoint | None:
    """Forward-project a WGS84 point into a zone grid."""
    pair = _pair(point, "lon", "lat")
    if pair is None or not _known_zone(zone_id) or not _valid_geodetic(*pair):
        return None
    lon, lat = pair

    if ZONES[zone_id] is None:
        return ZonePoint(lon, lat)

    try:
        x, y = _transformer(GEODETIC, zone_id).transform(lon, lat)
    except ProjError as exc:
        logger.debug("Projection of %r to %s failed: %s", (lon, lat), zone_id, exc)
        return None
    if not _finite(x, y):
        return None
    return ZonePoint(x, y)


# --- Internal (Web Mercator) plane ---

def to_lon_lat(x: float, y: float) -> tuple[float, float]:
    """Web Mercator metres -> (lon, lat) degrees."""
    return _transformer(WEB_MERCATOR, GEODETIC).transform(x, y)


def from_lon_lat(lon: float, lat: float) -> tuple[float, float]:
    """(lon, lat) degrees -> Web Mercator metres."""
    return _transformer(GEODETIC, WEB_MERCATOR).transform(lon, lat)


# --- Scale <-> resolution ---

def scale_to_resolution(scale: float, lat: float) -> float:
    """Map resolution (internal units per pixel) showing 1:scale at latitude lat.

    Web Mercator stretches east-west distances by 1/cos(lat), so the same ground
    size per pixel needs more internal units away from the equator.
    """
    return (scale * METERS_PER_PIXEL) / math.cos(math.radians(lat))


def resolution_to_scale(resolution: float, lat: float) -> float:
    """Scale denominator shown by a map resolution at latitude lat."""
    ground_resolution = resolution * math.cos(math.radians(lat))
    return ground_resolution / METERS_PER_PIXEL

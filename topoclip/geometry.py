"""Geometry variants held by the map view, in internal (Web Mercator) coordinates.

The set of kinds is closed: Point, LineString, Polygon and Rectangle. Helpers
below dispatch on all four and raise TypeError for anything else, so a new kind
fails loudly wherever it is not handled yet.
"""

from dataclasses import dataclass, field
from enum import Enum

Coord = tuple[float, float]
Extent = tuple[float, float, float, float]  # min_x, min_y, max_x, max_y


class GeometryKind(Enum):
    POINT = "Point"
    LINE_STRING = "LineString"
    POLYGON = "Polygon"
    RECTANGLE = "Rectangle"


@dataclass
class Point:
    coordinate: Coord
    label: str | None = None
    kind = GeometryKind.POINT


@dataclass
class LineString:
    coordinates: list[Coord] = field(default_factory=list)
    kind = GeometryKind.LINE_STRING


@dataclass
class Polygon:
    """First ring is the outer boundary; further rings are holes."""
    rings: list[list[Coord]] = field(default_factory=list)
    kind = GeometryKind.POLYGON


@dataclass
class Rectangle:
    """Axis-aligned box spanned by two opposite corners."""
    start: Coord
    end: Coord
    kind = GeometryKind.RECTANGLE

    @property
    def rings(self) -> list[list[Coord]]:
        min_x, min_y, max_x, max_y = _bounds([self.start, self.end])
        return [[(min_x, min_y), (max_x, min_y), (max_x, max_y), (min_x, max_y), (min_x, min_y)]]


Geometry = Point | LineString | Polygon | Rectangle


def _unsupported(geom) -> TypeError:
    return TypeError(f"Unsupported geometry: {type(geom).__name__}")


def _bounds(coords: list[Coord]) -> Extent:
    xs = [c[0] for c in coords]
    ys = [c[1] for c in coords]
    return min(xs), min(ys), max(xs), max(ys)


def vertices(geom: Geometry) -> list[Coord]:
    """Every vertex of the geometry, all rings included."""
    if isinstance(geom, Point):
        return [geom.coordinate]
    if isinstance(geom, LineString):
        return list(geom.coordinates)
    if isinstance(geom, (Polygon, Rectangle)):
        return [c for ring in geom.rings for c in ring]
    raise _unsupported(geom)


def outer_ring(geom: Polygon | Rectangle) -> list[Coord]:
    """Closed outer ring. Holes are ignored by area, perimeter and clipping."""
    if not isinstance(geom, (Polygon, Rectangle)):
        raise _unsupported(geom)
    if not geom.rings or not geom.rings[0]:
        return []
    ring = list(geom.rings[0])
    if ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def boundary(geom: Geometry) -> list[Coord]:
    """The path whose length is measured: a line itself or a polygon's outer ring."""
    if isinstance(geom, Point):
        return []
    if isinstance(geom, LineString):
        return list(geom.coordinates)
    if isinstance(geom, (Polygon, Rectangle)):
        return outer_ring(geom)
    raise _unsupported(geom)


def is_areal(geom: Geometry) -> bool:
    if isinstance(geom, (Polygon, Rectangle)):
        return True
    if isinstance(geom, (Point, LineString)):
        return False
    raise _unsupported(geom)


def extent_of(geom: Geometry) -> Extent | None:
    coords = vertices(geom)
    if not coords:
        return None
    return _bounds(coords)


def union_extent(geoms) -> Extent | None:
    """Bounding box of several geometries, or None when there are no vertices."""
    coords = [c for g in geoms for c in vertices(g)]
    if not coords:
        return None
    return _bounds(coords)


def extent_center(extent: Extent) -> Coord:
    return (extent[0] + extent[2]) / 2, (extent[1] + extent[3]) / 2

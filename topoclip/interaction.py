"""Draw/measure tool state machine on top of a MapView.

One tool is active at a time. Selection tools produce a SelectionResult for the
host, the point tool labels points and asks a lookup collaborator about them,
and measurement tools keep a live tooltip while sketching that turns into a
MeasurementRecord when the sketch ends.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from shapely.geometry import Polygon as ShapelyPolygon

from .config import DEFAULT_ZONE
from .geometry import (
    Coord,
    Extent,
    Geometry,
    GeometryKind,
    LineString,
    Point,
    boundary,
    extent_center,
    extent_of,
    is_areal,
    outer_ring,
    union_extent,
)
from .importer import ImportedPoint
from .measure import area, format_area, format_length, length, unit_kind
from .projection import (
    GeodeticPoint,
    ZonePoint,
    from_lon_lat,
    resolution_to_scale,
    scale_to_resolution,
    to_geodetic,
    to_lon_lat,
    to_zone,
)
from .view import DrawInteraction, MapView, Role, Subscription

logger = logging.getLogger(__name__)


class Tool(Enum):
    NONE = "none"
    SELECT_RECTANGLE = "rectangle"
    SELECT_POLYGON = "polygon"
    SELECT_POINT = "point"
    MEASURE_LENGTH = "length"
    MEASURE_AREA = "area"


SELECTION_TOOLS = {Tool.SELECT_RECTANGLE, Tool.SELECT_POLYGON}
MEASURE_TOOLS = {Tool.MEASURE_LENGTH, Tool.MEASURE_AREA}

# tool -> (sketch kind, collection the finished geometry lands in)
TOOL_DRAWS: dict[Tool, tuple[GeometryKind, Role]] = {
    Tool.SELECT_RECTANGLE: (GeometryKind.RECTANGLE, Role.SELECTION),
    Tool.SELECT_POLYGON:   (GeometryKind.POLYGON, Role.SELECTION),
    Tool.SELECT_POINT:     (GeometryKind.POINT, Role.POINTS),
    Tool.MEASURE_LENGTH:   (GeometryKind.LINE_STRING, Role.MEASUREMENTS),
    Tool.MEASURE_AREA:     (GeometryKind.POLYGON, Role.MEASUREMENTS),
}


class MeasureKind(Enum):
    LENGTH = "length"
    AREA = "area"


@dataclass(frozen=True)
class SelectionResult:
    center: GeodeticPoint
    scale: int
    extent: Extent
    area: str | None = None
    perimeter: str | None = None
    zone: str | None = None


@dataclass
class Tooltip:
    text: str = ""
    position: Coord | None = None
    final: bool = False


@dataclass(eq=False)
class MeasurementRecord:
    """A finished measurement. The geometry is the one held by the view."""
    geometry: Geometry
    kind: MeasureKind
    tooltip: Tooltip = field(default_factory=Tooltip)

    @property
    def value(self) -> float:
        """Metres for a length, square metres for an area."""
        if self.kind is MeasureKind.AREA:
            return area(self.geometry)
        return length(self.geometry)

    def refresh(self, unit: str) -> None:
        if self.kind is MeasureKind.AREA:
            self.tooltip.text = format_area(self.value, unit)
        else:
            self.tooltip.text = format_length(self.value, unit)


@dataclass(frozen=True)
class PointLookupRequest:
    label: str
    geodetic: GeodeticPoint
    zone: str
    zone_point: ZonePoint | None


@dataclass(eq=False)
class PointRecord:
    geometry: Point
    request: PointLookupRequest
    info: dict | None = None


PointLookup = Callable[[PointLookupRequest, Callable[[dict], None]], None]


def _anchor(geom: Geometry) -> Coord | None:
    """Where a measurement tooltip sits: interior point of an area, last vertex of a line."""
    if is_areal(geom):
        ring = outer_ring(geom)
        if len(set(ring)) >= 3:
            point = ShapelyPolygon(ring).representative_point()
            return point.x, point.y
    path = boundary(geom) if isinstance(geom, LineString) else outer_ring(geom)[:-1]
    return path[-1] if path else None


class DrawController:
    """Attaches one draw interaction at a time and reports what was drawn."""

    def __init__(self, view: MapView | None,
                 on_selection: Callable[[SelectionResult], None] | None = None,
                 point_lookup: PointLookup | None = None,
                 on_point_resolved: Callable[[PointRecord], None] | None = None,
                 zone: str = DEFAULT_ZONE,
                 length_unit: str = "m",
                 area_unit: str = "sqm"):
        self.view = view
        self.on_selection = on_selection
        self.point_lookup = point_lookup
        self.on_point_resolved = on_point_resolved
        self.zone = zone
        self.length_unit = length_unit
        self.area_unit = area_unit

        self.active_tool = Tool.NONE
        self.selection: SelectionResult | None = None
        self.measurements: list[MeasurementRecord] = []
        self.points: list[PointRecord] = []
        self.live_tooltip: Tooltip | None = None

        self._interaction: DrawInteraction | None = None
        self._pointer: Subscription | None = None
        self._sketch: Geometry | None = None
        self._point_counter = 1

    # --- Tool lifecycle ---

    def set_tool(self, tool: Tool) -> None:
        if self.view is None:
            return
        self._detach()
        self.active_tool = tool

        if tool in SELECTION_TOOLS:
            self._clear_selection()
        if tool is Tool.NONE:
            return

        kind, role = TOOL_DRAWS[tool]
        self._interaction = DrawInteraction(kind, role, self.on_draw_start, self.on_draw_end)
        self.view.add_interaction(self._interaction)

    def _detach(self) -> None:
        if self._interaction is not None:
            self.view.remove_interaction(self._interaction)
            self._interaction = None
        self._stop_tracking()
        self._sketch = None

    def _stop_tracking(self) -> None:
        if self._pointer is not None:
            self._pointer.dispose()
            self._pointer = None
        self.live_tooltip = None

    def _clear_selection(self) -> None:
        self.view.collections[Role.SELECTION].clear()
        self.view.collections[Role.IMPORTED].clear()
        self.selection = None

    # --- Draw events ---

    def on_draw_start(self, geom: Geometry) -> None:
        if self.view is None:
            return
        self._sketch = geom
        if self.active_tool in SELECTION_TOOLS:
            self._clear_selection()
        elif self.active_tool in MEASURE_TOOLS:
            self._stop_tracking()
            self.live_tooltip = Tooltip()
            self._pointer = self.view.on_pointer_move(self._on_pointer_move)
            self._refresh_live_tooltip()

    def _on_pointer_move(self, _coord: Coord) -> None:
        self._refresh_live_tooltip()

    def _refresh_live_tooltip(self) -> None:
        if self._sketch is None or self.live_tooltip is None:
            return
        self.live_tooltip.text = self._format(self._sketch)
        self.live_tooltip.position = _anchor(self._sketch)

    def on_draw_end(self, geom: Geometry) -> None:
        if self.view is None:
            return
        self._sketch = None
        if self.active_tool in SELECTION_TOOLS:
            self._emit_selection(extent_of(geom), geom)
        elif self.active_tool is Tool.SELECT_POINT:
            self._register_point(geom)
        elif self.active_tool in MEASURE_TOOLS:
            self._finish_measurement(geom)

    def _format(self, geom: Geometry) -> str:
        if self.active_tool is Tool.MEASURE_AREA:
            return format_area(area(geom), self.area_unit)
        return format_length(length(geom), self.length_unit)

    def _finish_measurement(self, geom: Geometry) -> None:
        kind = MeasureKind.AREA if self.active_tool is Tool.MEASURE_AREA else MeasureKind.LENGTH
        tooltip = self.live_tooltip or Tooltip()
        record = MeasurementRecord(geom, kind, tooltip)
        record.refresh(self.area_unit if kind is MeasureKind.AREA else self.length_unit)
        tooltip.position = _anchor(geom)
        tooltip.final = True
        self.measurements.append(record)
        # the tooltip now belongs to the record
        self.live_tooltip = None
        self._stop_tracking()

    def _emit_selection(self, extent: Extent | None,
                        geom: Geometry | None = None) -> SelectionResult | None:
        if extent is None:
            return None

        lon, lat = to_lon_lat(*extent_center(extent))
        scale = round(resolution_to_scale(self.view.resolution, lat))
        area_text = perimeter_text = None
        if geom is not None and is_areal(geom):
            area_text = format_area(area(geom), self.area_unit)
            perimeter_text = format_length(length(geom), self.length_unit)

        result = SelectionResult(
            center=GeodeticPoint(lon, lat),
            scale=scale,
            extent=tuple(extent),
            area=area_text,
            perimeter=perimeter_text,
            zone=self.zone,
        )
        self.selection = result
        logger.info("Selection at (%.6f, %.6f), 1:%d", lon, lat, scale)
        if self.on_selection:
            self.on_selection(result)
        return result

    # --- Points ---

    def _register_point(self, point: Point) -> PointRecord:
        point.label = point.label or f"pt {self._point_counter:02d}"
        self._point_counter += 1

        lon, lat = to_lon_lat(*point.coordinate)
        geodetic = GeodeticPoint(lon, lat)
        request = PointLookupRequest(point.label, geodetic, self.zone, to_zone(geodetic, self.zone))
        record = PointRecord(point, request)
        self.points.append(record)

        if self.point_lookup is not None:
            def resolve(info: dict) -> None:
                record.info = info
                if self.on_point_resolved:
                    self.on_point_resolved(record)
            self.point_lookup(request, resolve)
        return record

    def add_manual_point(self, x: float, y: float) -> PointRecord | None:
        """Place a point typed in the active zone's coordinates."""
        if self.view is None:
            return None
        geo = to_geodetic((x, y), self.zone)
        if geo is None:
            return None
        point = Point(from_lon_lat(geo.lon, geo.lat))
        self.view.collections[Role.POINTS].add(point)
        return self._register_point(point)

    # --- Imports ---

    def import_features(self, geoms: list[Geometry]) -> SelectionResult | None:
        """Replace selection and imported geometry with `geoms` (internal coordinates)."""
        if self.view is None:
            return None
        self.set_tool(Tool.NONE)
        self._clear_selection()
        if not geoms:
            return None
        self.view.collections[Role.IMPORTED].extend(geoms)
        return self._emit_selection(union_extent(geoms))

    def import_points(self, points: list[ImportedPoint]) -> SelectionResult | None:
        if self.view is None:
            return None
        collection = self.view.collections[Role.POINTS]
        collection.clear()
        self.points = []
        if not points:
            return None
        collection.extend(Point(from_lon_lat(p.lon, p.lat), label=p.label) for p in points)
        return self._emit_selection(collection.extent())

    # --- Units, scale, reset ---

    def update_unit(self, unit: str) -> None:
        """Switch the length or area display unit and re-label live measurements."""
        kind = unit_kind(unit)
        if kind == "length":
            self.length_unit = unit
        else:
            self.area_unit = unit

        wanted = MeasureKind.LENGTH if kind == "length" else MeasureKind.AREA
        for record in self.measurements:
            if record.kind is wanted:
                record.refresh(unit)

        if self.active_tool in MEASURE_TOOLS:
            self.set_tool(self.active_tool)

    def resolution_for_scale(self, scale: float) -> float | None:
        """Resolution showing 1:scale at the view's current center latitude."""
        if self.view is None:
            return None
        _, lat = to_lon_lat(*self.view.center)
        return scale_to_resolution(scale, lat)

    def clear_all(self) -> None:
        if self.view is None:
            return
        self._detach()
        self.active_tool = Tool.NONE
        for collection in self.view.collections.values():
            collection.clear()
        self.selection = None
        self.measurements = []
        self.points = []

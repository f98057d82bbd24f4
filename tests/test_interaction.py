"""
Tests for the draw/measure controller.
"""

import pytest
from shapely.geometry import Point as ShapelyPoint
from shapely.geometry import Polygon as ShapelyPolygon

from topoclip.geometry import LineString
from topoclip.importer import ImportedPoint
from topoclip.interaction import DrawController, MeasureKind, Tool
from topoclip.projection import METERS_PER_PIXEL, from_lon_lat, resolution_to_scale, to_lon_lat
from topoclip.view import Role


@pytest.fixture
def selections():
    return []


@pytest.fixture
def controller(view, selections):
    return DrawController(view, on_selection=selections.append)


def draw_rectangle(view, start, end):
    view.begin_sketch(start)
    view.pointer_move(end)
    return view.finish_sketch()


class TestSelection:
    """Rectangle and polygon selection."""

    def test_rectangle_selection(self, view, controller, selections):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        draw_rectangle(view, (0.0, 0.0), (1000.0, 1000.0))

        assert len(selections) == 1
        result = selections[0]
        assert result.extent == (0.0, 0.0, 1000.0, 1000.0)
        _, lat = to_lon_lat(500.0, 500.0)
        assert result.scale == round(resolution_to_scale(1.0, lat))
        assert result.center.lat == pytest.approx(lat)
        assert result.area.endswith("m²")
        assert result.perimeter.endswith(" m")
        assert result.zone == "EPSG:26191"
        assert controller.selection is result

    def test_new_selection_replaces_old(self, view, controller):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        draw_rectangle(view, (0.0, 0.0), (10.0, 10.0))
        view.collections[Role.IMPORTED].add(LineString([(0.0, 0.0), (5.0, 5.0)]))

        view.begin_sketch((100.0, 100.0))
        assert len(view.collections[Role.SELECTION]) == 0
        assert len(view.collections[Role.IMPORTED]) == 0
        view.pointer_move((200.0, 300.0))
        view.finish_sketch()

        assert len(view.collections[Role.SELECTION]) == 1
        assert controller.selection.extent == (100.0, 100.0, 200.0, 300.0)

    def test_activating_selection_tool_clears_previous(self, view, controller):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        draw_rectangle(view, (0.0, 0.0), (10.0, 10.0))
        controller.set_tool(Tool.SELECT_POLYGON)
        assert len(view.collections[Role.SELECTION]) == 0
        assert controller.selection is None

    def test_polygon_selection(self, view, controller, selections):
        controller.set_tool(Tool.SELECT_POLYGON)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move((100.0, 0.0))
        view.add_vertex((100.0, 0.0))
        view.pointer_move((100.0, 100.0))
        view.add_vertex((100.0, 100.0))
        polygon = view.finish_sketch()

        assert polygon.rings[0] == [(0.0, 0.0), (100.0, 0.0), (100.0, 100.0), (0.0, 0.0)]
        assert selections[0].extent == (0.0, 0.0, 100.0, 100.0)
        assert selections[0].area is not None

    def test_only_one_interaction_attached(self, view, controller):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        controller.set_tool(Tool.MEASURE_LENGTH)
        controller.set_tool(Tool.SELECT_POLYGON)
        assert len(view.interactions) == 1

        controller.set_tool(Tool.NONE)
        assert view.interactions == []


class TestMeasurement:
    """Live tooltips, finished records and unit changes."""

    def test_length_measurement(self, view, controller):
        a = (0.0, 0.0)
        b = from_lon_lat(0.01, 0.0)
        controller.set_tool(Tool.MEASURE_LENGTH)

        view.begin_sketch(a)
        assert view.pointer_listener_count == 1
        assert controller.live_tooltip.text == "0.00 m"

        view.pointer_move(b)
        assert controller.live_tooltip.text == "1113.19 m"
        assert controller.live_tooltip.position == b

        view.finish_sketch()
        assert view.pointer_listener_count == 0
        assert controller.live_tooltip is None

        (record,) = controller.measurements
        assert record.kind is MeasureKind.LENGTH
        assert record.tooltip.final
        assert record.tooltip.text == "1113.19 m"
        assert len(view.collections[Role.MEASUREMENTS]) == 1

    def test_unit_change_relabels_without_changing_value(self, view, controller):
        controller.set_tool(Tool.MEASURE_LENGTH)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move(from_lon_lat(0.01, 0.0))
        view.finish_sketch()
        record = controller.measurements[0]
        before = record.value
        coords = list(record.geometry.coordinates)

        controller.update_unit("km")

        assert record.tooltip.text == "1.11 km"
        assert record.value == before
        assert record.geometry.coordinates == coords

        controller.update_unit("mi")
        assert record.tooltip.text == "0.692 mi"

    def test_no_leaked_listeners(self, view, controller):
        controller.set_tool(Tool.MEASURE_LENGTH)
        for _ in range(3):
            view.begin_sketch((0.0, 0.0))
            view.pointer_move((10.0, 0.0))
            view.finish_sketch()
        assert view.pointer_listener_count == 0
        assert len(controller.measurements) == 3

    def test_switching_tool_mid_sketch_disposes_listener(self, view, controller):
        controller.set_tool(Tool.MEASURE_LENGTH)
        view.begin_sketch((0.0, 0.0))
        assert view.pointer_listener_count == 1

        controller.set_tool(Tool.NONE)
        assert view.pointer_listener_count == 0
        assert view.sketch is None
        assert controller.live_tooltip is None

    def test_area_tooltip_sits_inside_polygon(self, view, controller):
        controller.set_tool(Tool.MEASURE_AREA)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move((1000.0, 0.0))
        view.add_vertex((1000.0, 0.0))
        view.pointer_move((1000.0, 1000.0))

        x, y = controller.live_tooltip.position
        triangle = ShapelyPolygon([(0, 0), (1000, 0), (1000, 1000)])
        assert triangle.contains(ShapelyPoint(x, y))
        assert controller.live_tooltip.text.endswith("m²")

        view.finish_sketch()
        record = controller.measurements[0]
        assert record.kind is MeasureKind.AREA
        assert record.value == pytest.approx(500_000, rel=0.01)

    def test_area_unit_leaves_lengths_alone(self, view, controller):
        controller.set_tool(Tool.MEASURE_LENGTH)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move(from_lon_lat(0.01, 0.0))
        view.finish_sketch()

        controller.update_unit("ha")
        assert controller.area_unit == "ha"
        assert controller.length_unit == "m"
        assert controller.measurements[0].tooltip.text == "1113.19 m"

    def test_unit_change_restarts_active_measure_tool(self, view, controller):
        controller.set_tool(Tool.MEASURE_LENGTH)
        first = view.interactions[0]
        controller.update_unit("km")
        assert controller.active_tool is Tool.MEASURE_LENGTH
        assert len(view.interactions) == 1
        assert view.interactions[0] is not first

    def test_unknown_unit(self, controller):
        with pytest.raises(ValueError):
            controller.update_unit("cubit")


class TestPoints:
    """Point tool, manual entry and lookups."""

    def test_points_are_labelled_and_looked_up(self, view):
        pending = []
        resolved = []
        controller = DrawController(
            view,
            point_lookup=lambda request, resolve: pending.append((request, resolve)),
            on_point_resolved=resolved.append,
        )
        controller.set_tool(Tool.SELECT_POINT)
        coord = from_lon_lat(-7.59, 33.57)
        for _ in range(2):
            view.begin_sketch(coord)
            view.finish_sketch()

        assert [r.geometry.label for r in controller.points] == ["pt 01", "pt 02"]
        request, resolve = pending[0]
        assert request.label == "pt 01"
        assert request.geodetic.lon == pytest.approx(-7.59)
        assert request.zone_point is not None

        # the answer arrives later
        assert controller.points[0].info is None
        resolve({"elevation": 52.0})
        assert controller.points[0].info == {"elevation": 52.0}
        assert resolved == [controller.points[0]]

    def test_manual_point_in_zone(self, view, controller):
        record = controller.add_manual_point(500000, 300000)
        assert record is not None
        assert record.request.geodetic.lon == pytest.approx(-5.4, abs=0.01)
        assert len(view.collections[Role.POINTS]) == 1

    def test_manual_point_outside_zone(self, view, controller):
        assert controller.add_manual_point(3_000_000, 3_000_000) is None
        assert len(view.collections[Role.POINTS]) == 0


class TestImports:

    def test_import_features(self, view, controller, selections):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        draw_rectangle(view, (0.0, 0.0), (10.0, 10.0))

        result = controller.import_features([
            LineString([(0.0, 0.0), (100.0, 50.0)]),
            LineString([(200.0, -10.0), (300.0, 20.0)]),
        ])

        assert result.extent == (0.0, -10.0, 300.0, 50.0)
        assert result.area is None
        assert controller.active_tool is Tool.NONE
        assert len(view.collections[Role.SELECTION]) == 0
        assert len(view.collections[Role.IMPORTED]) == 2
        assert selections[-1] is result

    def test_import_nothing(self, controller):
        assert controller.import_features([]) is None

    def test_import_points(self, view, controller):
        result = controller.import_points([
            ImportedPoint(-7.6, 33.5, "A"),
            ImportedPoint(-7.5, 33.6, "B"),
        ])
        labels = [p.label for p in view.collections[Role.POINTS]]
        assert labels == ["A", "B"]
        assert result.center.lon == pytest.approx(-7.55)


class TestLifecycle:

    def test_no_view_is_a_no_op(self):
        controller = DrawController(None)
        controller.set_tool(Tool.SELECT_RECTANGLE)
        assert controller.active_tool is Tool.NONE
        assert controller.import_features([LineString([(0.0, 0.0), (1.0, 1.0)])]) is None
        assert controller.add_manual_point(500000, 300000) is None
        assert controller.resolution_for_scale(1000) is None
        controller.clear_all()

    def test_clear_all(self, view, controller):
        controller.set_tool(Tool.SELECT_RECTANGLE)
        draw_rectangle(view, (0.0, 0.0), (10.0, 10.0))
        controller.set_tool(Tool.MEASURE_LENGTH)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move((5.0, 0.0))
        view.finish_sketch()
        controller.add_manual_point(500000, 300000)

        controller.clear_all()

        assert all(len(c) == 0 for c in view.collections.values())
        assert controller.measurements == []
        assert controller.points == []
        assert controller.active_tool is Tool.NONE
        assert view.interactions == []

    def test_resolution_for_scale_leaves_view_alone(self, view, controller):
        before = view.state
        resolution = controller.resolution_for_scale(1000)
        assert resolution == pytest.approx(1000 * METERS_PER_PIXEL, rel=1e-6)
        assert view.state == before

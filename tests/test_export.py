"""
Tests for raster export: sizing, view restoration, compositing and georeferencing.
"""

import asyncio
import math

import pytest
from PIL import Image

from topoclip.export import (
    PROJECTION_WKT,
    ExportError,
    ExportInProgressError,
    ExportTooLargeError,
    RasterExporter,
    export_raster,
    pixel_grid,
)
from topoclip.geometry import LineString, Point, Polygon, Rectangle
from topoclip.interaction import DrawController, Tool
from topoclip.projection import from_lon_lat, scale_to_resolution, to_lon_lat
from topoclip.styles import STYLES
from topoclip.view import MapView, Role

EARTH_RADIUS = 6378137.0


class DeferredView(MapView):
    """View whose renders complete only when the test says so."""

    def request_render(self):
        self.pending = True

    def complete_render(self):
        self.pending = False
        super().request_render()


def add_selection(view, start, end):
    view.collections[Role.SELECTION].add(Rectangle(start, end))


class TestPixelGrid:

    def test_exact_fit_has_no_extra_pixel(self):
        assert pixel_grid((0.0, 0.0, 1000.0, 500.0), 1.0) == (1000, 500)

    def test_partial_pixel_rounds_up(self):
        assert pixel_grid((0.0, 0.0, 1000.5, 10.0), 1.0) == (1001, 10)

    def test_float_noise_is_ignored(self):
        assert pixel_grid((0.0, 0.0, 0.3, 0.3), 0.1) == (3, 3)


class TestExport:
    """End-to-end export against an in-memory view."""

    def test_nothing_to_export(self, view):
        before = view.state
        assert export_raster(view, 1000) is None
        assert view.state == before

    def test_degenerate_extent(self, view):
        view.collections[Role.POINTS].add(Point((5.0, 5.0)))
        assert export_raster(view) is None

    def test_selection_then_export(self, view, fill_layer):
        layer = fill_layer()
        view.layers.append(layer)
        controller = DrawController(view)
        controller.set_tool(Tool.SELECT_RECTANGLE)
        view.begin_sketch((0.0, 0.0))
        view.pointer_move((1000.0, 1000.0))
        view.finish_sketch()
        result = controller.selection
        before = view.state

        artifact = export_raster(view, result.scale)

        assert (artifact.width, artifact.height) == (1000, 1000)
        assert artifact.bitmap.size == (1000, 1000)
        assert artifact.projection == PROJECTION_WKT
        assert view.state == before

        # the layer was rendered at the export state, not the user's
        (state,) = layer.calls
        _, lat = to_lon_lat(500.0, 500.0)
        assert state.size == (1000, 1000)
        assert state.center == (500.0, 500.0)
        assert state.resolution == pytest.approx(scale_to_resolution(result.scale, lat))

        px, rot1, rot2, py, west, north = artifact.world_file
        degrees_per_metre = math.degrees(1 / EARTH_RADIUS)
        assert px == pytest.approx(1000 * degrees_per_metre / 1000, rel=1e-9)
        assert px == pytest.approx(state.resolution * degrees_per_metre, rel=1e-3)
        assert rot1 == rot2 == 0.0
        assert py < 0
        assert -py == pytest.approx(px, rel=1e-6)
        assert west == pytest.approx(0.0, abs=1e-12)
        assert north == pytest.approx(to_lon_lat(0.0, 1000.0)[1])

    def test_too_large_is_rejected_before_touching_view(self, view, fill_layer):
        layer = fill_layer()
        view.layers.append(layer)
        add_selection(view, (0.0, 0.0), (20000.0, 5000.0))
        before = view.state

        with pytest.raises(ExportTooLargeError) as excinfo:
            export_raster(view)

        assert excinfo.value.width == 20000
        assert excinfo.value.height == 5000
        assert "1:2500" in str(excinfo.value)
        assert layer.calls == []
        assert view.state == before

    def test_imagery_clipped_to_selection(self, view, fill_layer):
        view.layers.append(fill_layer((0, 128, 0, 255)))
        view.collections[Role.SELECTION].add(Polygon([[(0.0, 0.0), (100.0, 0.0), (0.0, 100.0)]]))

        artifact = export_raster(view)

        assert artifact.bitmap.size == (100, 100)
        assert artifact.bitmap.getpixel((20, 80)) == (0, 128, 0, 255)
        assert artifact.bitmap.getpixel((90, 10))[3] == 0

    def test_selection_outline_drawn(self, view):
        add_selection(view, (0.0, 0.0), (100.0, 100.0))
        artifact = export_raster(view)
        assert artifact.bitmap.getpixel((50, 0)) == STYLES[Role.SELECTION].stroke
        assert artifact.bitmap.getpixel((50, 50))[3] == 0

    def test_no_selection_means_no_clip(self, view, fill_layer):
        view.layers.append(fill_layer((0, 0, 255, 255)))
        view.collections[Role.IMPORTED].add(LineString([(0.0, 0.0), (100.0, 100.0)]))

        artifact = export_raster(view)

        assert artifact.bitmap.getpixel((5, 5)) == (0, 0, 255, 255)
        assert artifact.bitmap.getpixel((95, 95)) == (0, 0, 255, 255)

    def test_layer_opacity(self, view, fill_layer):
        view.layers.append(fill_layer((0, 0, 255, 255), opacity=0.5))
        view.collections[Role.IMPORTED].add(LineString([(0.0, 0.0), (100.0, 100.0)]))

        artifact = export_raster(view)

        assert artifact.bitmap.getpixel((10, 10))[3] in (127, 128)

    def test_layer_transform(self, view, fill_layer):
        view.layers.append(fill_layer((0, 0, 255, 255), transform=(1, 0, 0, 1, 50, 0)))
        view.collections[Role.IMPORTED].add(LineString([(0.0, 0.0), (100.0, 100.0)]))

        artifact = export_raster(view)

        assert artifact.bitmap.getpixel((10, 50))[3] == 0
        assert artifact.bitmap.getpixel((60, 50)) == (0, 0, 255, 255)

    def test_smaller_surface_is_stretched(self, view, fill_layer):
        view.layers.append(fill_layer((0, 0, 255, 255), scale=0.5))
        view.collections[Role.IMPORTED].add(LineString([(0.0, 0.0), (100.0, 100.0)]))

        artifact = export_raster(view)

        assert artifact.bitmap.getpixel((10, 10)) == (0, 0, 255, 255)
        assert artifact.bitmap.getpixel((80, 80)) == (0, 0, 255, 255)

    def test_point_markers_on_top(self, view, fill_layer):
        view.layers.append(fill_layer((0, 128, 0, 255)))
        for coord in [(0.0, 0.0), (50.0, 50.0), (100.0, 100.0)]:
            view.collections[Role.POINTS].add(Point(coord))

        artifact = export_raster(view)

        assert artifact.bitmap.getpixel((50, 50)) == STYLES[Role.POINTS].fill
        assert artifact.bitmap.getpixel((25, 75)) == (0, 128, 0, 255)

    def test_view_restored_after_failure(self, view, monkeypatch):
        add_selection(view, (0.0, 0.0), (100.0, 100.0))
        before = view.state

        def boom(*args, **kwargs):
            raise MemoryError("no room")

        monkeypatch.setattr(Image, "new", boom)
        with pytest.raises(ExportError) as excinfo:
            export_raster(view)

        assert isinstance(excinfo.value.__cause__, MemoryError)
        assert view.state == before

    def test_one_export_at_a_time(self):
        view = DeferredView(center=(0.0, 0.0), resolution=1.0, size=(10, 10))
        add_selection(view, (0.0, 0.0), (100.0, 100.0))
        exporter = RasterExporter(view)

        async def scenario():
            first = asyncio.ensure_future(exporter.export())
            await asyncio.sleep(0)
            assert exporter.busy
            assert view.size == (100, 100)
            with pytest.raises(ExportInProgressError):
                await exporter.export()
            view.complete_render()
            return await first

        artifact = asyncio.run(scenario())

        assert artifact.width == 100
        assert not exporter.busy
        assert view.size == (10, 10)

    def test_failing_layer_becomes_export_error(self, view):
        class BrokenLayer:
            def render(self, state):
                raise RuntimeError("tile cache corrupted")

        view.layers.append(BrokenLayer())
        add_selection(view, (0.0, 0.0), (100.0, 100.0))
        before = view.state
        exporter = RasterExporter(view)

        with pytest.raises(ExportError) as excinfo:
            asyncio.run(exporter.export())

        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert view.state == before
        assert not exporter.busy
        assert view._once.get("rendercomplete", []) == []

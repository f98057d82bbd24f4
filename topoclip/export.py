"""Georeferenced raster export of the map view.

The view is resized to the exact pixel grid that shows the selection at the
requested scale, rendered once, composited into a bitmap together with the
vector overlays, and put back exactly as it was. The bitmap's extent is then
turned into world file parameters in WGS84 degrees.
"""

import asyncio
import logging
import math
from dataclasses import dataclass

from PIL import Image, ImageChops, ImageDraw

from .config import MAX_EXPORT_PIXELS
from .geometry import (
    Coord,
    Extent,
    LineString,
    Point,
    Polygon,
    Rectangle,
    extent_center,
    outer_ring,
)
from .projection import scale_to_resolution, to_lon_lat
from .styles import DRAW_ORDER, OverlayStyle, get_style
from .view import LayerSurface, MapView, Role, preserved_view_state

logger = logging.getLogger(__name__)

PROJECTION_WKT = (
    'GEOGCS["GCS_WGS_1984",DATUM["D_WGS_1984",SPHEROID["WGS_1984",6378137.0,298.257223563]],'
    'PRIMEM["Greenwich",0.0],UNIT["Degree",0.0174532925199433]]'
)

# Pixel counts within this of an integer are float noise, not a partial pixel.
PIXEL_EPSILON = 1e-9

# Collections that can define the export extent, by priority.
EXTENT_ROLES = [Role.SELECTION, Role.IMPORTED, Role.POINTS]


class ExportError(RuntimeError):
    """The export could not be produced."""


class ExportTooLargeError(ExportError):
    def __init__(self, width: int, height: int, limit: int = MAX_EXPORT_PIXELS):
        self.width = width
        self.height = height
        self.limit = limit
        super().__init__(
            f"Export of {width}x{height} px exceeds the {limit} px limit; "
            f"choose a coarser scale (e.g. 1:2500)."
        )


class ExportInProgressError(ExportError):
    """An export is already running on this view."""


@dataclass
class ExportArtifact:
    bitmap: Image.Image
    width: int
    height: int
    world_file: tuple[float, float, float, float, float, float]
    projection: str
    extent: Extent


def pixel_grid(extent: Extent, resolution: float) -> tuple[int, int]:
    """Pixels needed to cover `extent` at `resolution` internal units per pixel."""
    width = math.ceil((extent[2] - extent[0]) / resolution - PIXEL_EPSILON)
    height = math.ceil((extent[3] - extent[1]) / resolution - PIXEL_EPSILON)
    return width, height


def world_file_parameters(extent: Extent, width: int,
                          height: int) -> tuple[float, float, float, float, float, float]:
    """[pixel x size, 0, 0, -pixel y size, west, north] in WGS84 degrees."""
    min_lon, min_lat = to_lon_lat(extent[0], extent[1])
    max_lon, max_lat = to_lon_lat(extent[2], extent[3])
    pixel_x = (max_lon - min_lon) / width
    pixel_y = (max_lat - min_lat) / height
    return (pixel_x, 0.0, 0.0, -pixel_y, min_lon, max_lat)


def export_extent(view: MapView) -> Extent | None:
    """Selection box first, then imported data, then points."""
    for role in EXTENT_ROLES:
        collection = view.collections[role]
        if len(collection):
            return collection.extent()
    return None


def _invert_affine(m):
    """Inverse of x' = a*x + c*y + e, y' = b*x + d*y + f, in PIL AFFINE order."""
    a, b, c, d, e, f = m
    det = a * d - b * c
    if det == 0:
        return None
    return (d / det, -c / det, (c * f - d * e) / det,
            -b / det, a / det, (b * e - a * f) / det)


def _composite_surface(target: Image.Image, surface: LayerSurface) -> None:
    image = surface.image
    if image.width == 0 or image.height == 0:
        return
    image = image.convert("RGBA")
    width, height = target.size
    matrix = surface.transform or (width / image.width, 0, 0, height / image.height, 0, 0)

    if tuple(matrix) != (1, 0, 0, 1, 0, 0) or image.size != target.size:
        inverse = _invert_affine(matrix)
        if inverse is None:
            logger.warning("Skipping layer with singular transform %s", matrix)
            return
        image = image.transform((width, height), Image.Transform.AFFINE, inverse,
                                resample=Image.Resampling.BILINEAR)

    if surface.opacity < 1:
        opacity = max(0.0, surface.opacity)
        image.putalpha(image.getchannel("A").point(lambda v: round(v * opacity)))
    target.alpha_composite(image)


class RasterExporter:
    """Runs exports against one view, one at a time."""

    def __init__(self, view: MapView, max_pixels: int = MAX_EXPORT_PIXELS):
        self.view = view
        self.max_pixels = max_pixels
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def export(self, target_scale: float | None = None) -> ExportArtifact | None:
        """Export the selection at 1:target_scale, or at the current resolution.

        Returns None when there is nothing to export. Raises ExportTooLargeError
        before touching the view when the pixel grid is over the limit.
        """
        if self._in_flight:
            raise ExportInProgressError("An export is already running")
        view = self.view

        if not any(len(c) for c in view.collections.values()):
            logger.info("Nothing to export")
            return None

        extent = export_extent(view)
        if extent is None or extent[2] <= extent[0] or extent[3] <= extent[1]:
            logger.info("No usable export extent: %s", extent)
            return None

        center = extent_center(extent)
        _, lat = to_lon_lat(*center)
        resolution = scale_to_resolution(target_scale, lat) if target_scale else view.resolution
        width, height = pixel_grid(extent, resolution)
        if width > self.max_pixels or height > self.max_pixels:
            raise ExportTooLargeError(width, height, self.max_pixels)

        logger.info("Exporting %dx%d px at resolution %.6f", width, height, resolution)
        self._in_flight = True
        try:
            with preserved_view_state(view):
                view.center = center
                view.resolution = resolution
                view.size = (width, height)
                await self._render()
                bitmap = self._compose(extent, resolution, width, height)
        finally:
            self._in_flight = False

        return ExportArtifact(
            bitmap=bitmap,
            width=width,
            height=height,
            world_file=world_file_parameters(extent, width, height),
            projection=PROJECTION_WKT,
            extent=extent,
        )

    async def _render(self) -> None:
        done = asyncio.get_running_loop().create_future()

        def on_complete():
            if not done.done():
                done.set_result(None)

        self.view.once("rendercomplete", on_complete)
        try:
            self.view.request_render()
        except Exception as exc:
            self.view.discard_once("rendercomplete", on_complete)
            logger.error("Rendering the export view failed: %s", exc)
            raise ExportError("The view could not be rendered for export") from exc
        await done

    def _compose(self, extent: Extent, resolution: float, width: int, height: int) -> Image.Image:
        min_x, max_y = extent[0], extent[3]

        def to_px(coord: Coord) -> Coord:
            return (coord[0] - min_x) / resolution, (max_y - coord[1]) / resolution

        size = (width, height)
        try:
            bitmap = Image.new("RGBA", size, (0, 0, 0, 0))
            overlay = Image.new("RGBA", size, (0, 0, 0, 0))
            draw = ImageDraw.Draw(overlay)
        except (ValueError, MemoryError, OSError) as exc:
            logger.error("Could not allocate a %dx%d output bitmap: %s", width, height, exc)
            raise ExportError(f"Could not allocate a {width}x{height} output bitmap") from exc

        # --- Vector overlays ---
        for role in DRAW_ORDER:
            style = get_style(role)
            for geom in self.view.collections[role]:
                _draw_geometry(draw, geom, style, to_px)

        # --- Imagery, clipped to the selection outline ---
        imagery = Image.new("RGBA", size, (0, 0, 0, 0))
        for surface in self.view.rendered_surfaces():
            _composite_surface(imagery, surface)

        clip = self._clip_mask(size, to_px)
        if clip is not None:
            imagery.putalpha(ImageChops.multiply(imagery.getchannel("A"), clip))

        bitmap.alpha_composite(imagery)
        bitmap.alpha_composite(overlay)

        # --- Point markers on top of everything ---
        marker_draw = ImageDraw.Draw(bitmap)
        for collection in self.view.collections.values():
            for geom in collection:
                if isinstance(geom, Point):
                    _draw_marker(marker_draw, to_px(geom.coordinate), get_style(Role.POINTS))
        return bitmap

    def _clip_mask(self, size: tuple[int, int], to_px) -> Image.Image | None:
        selection = [g for g in self.view.collections[Role.SELECTION]
                     if isinstance(g, (Polygon, Rectangle))]
        if not selection:
            return None
        mask = Image.new("L", size, 0)
        mask_draw = ImageDraw.Draw(mask)
        for geom in selection:
            ring = outer_ring(geom)
            if len(ring) >= 4:
                mask_draw.polygon([to_px(c) for c in ring], fill=255)
        return mask


def _draw_geometry(draw: ImageDraw.ImageDraw, geom, style: OverlayStyle, to_px) -> None:
    if isinstance(geom, Point):
        # markers go on last, see _compose
        return
    if isinstance(geom, LineString):
        if len(geom.coordinates) > 1:
            draw.line([to_px(c) for c in geom.coordinates], fill=style.stroke,
                      width=style.width, joint="curve")
        return
    if isinstance(geom, (Polygon, Rectangle)):
        rings = [[to_px(c) for c in ring] for ring in geom.rings if len(ring) > 1]
        if not rings:
            return
        if style.fill is not None and len(rings[0]) >= 3:
            draw.polygon(rings[0], fill=style.fill)
        for ring in rings:
            if ring[0] != ring[-1]:
                ring = ring + [ring[0]]
            draw.line(ring, fill=style.stroke, width=style.width, joint="curve")
        return
    raise TypeError(f"Unsupported geometry: {type(geom).__name__}")


def _draw_marker(draw: ImageDraw.ImageDraw, center: Coord, style: OverlayStyle) -> None:
    x, y = center
    r = style.radius
    draw.ellipse((x - r, y - r, x + r, y + r), fill=style.fill,
                 outline=style.marker_stroke, width=style.width)


def export_raster(view: MapView, target_scale: float | None = None) -> ExportArtifact | None:
    """Blocking wrapper around RasterExporter.export for synchronous callers."""
    return asyncio.run(RasterExporter(view).export(target_scale))

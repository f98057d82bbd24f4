"""XYZ tile layer: download and stitch Web Mercator tiles for a view state."""

import io
import logging
import math

import requests
from PIL import Image

from .config import MAX_TILES, TILE_TIMEOUT, USER_AGENT
from .view import LayerSurface, ViewState

logger = logging.getLogger(__name__)

# Tile sources the user can choose from
TILE_SOURCES = {
    "osm": {
        "url": "https://tile.openstreetmap.org/{z}/{x}/{y}.png",
        "label": "OpenStreetMap",
        "max_zoom": 19,
    },
    "esri_satellite": {
        "url": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
        "label": "Esri Satellite",
        "max_zoom": 18,
    },
}

HEADERS = {
    "User-Agent": USER_AGENT,
}

TILE_SIZE = 256
# Half the width of the Web Mercator plane, in metres.
WORLD_HALF = 20037508.342789244


def _tile_resolution(zoom: int) -> float:
    """Metres per pixel of a tile at `zoom`."""
    return 2 * WORLD_HALF / (TILE_SIZE * 2 ** zoom)


def _pick_zoom(resolution: float, max_zoom: int) -> int:
    """Lowest zoom whose tiles are at least as sharp as `resolution`."""
    if resolution <= 0:
        return max_zoom
    zoom = math.ceil(math.log2(2 * WORLD_HALF / (TILE_SIZE * resolution)) - 1e-9)
    return max(0, min(max_zoom, zoom))


def _tile_index(x: float, y: float, zoom: int) -> tuple[int, int]:
    """Tile column/row holding Web Mercator point (x, y)."""
    n = 2 ** zoom
    span = 2 * WORLD_HALF / n
    tx = int((x + WORLD_HALF) // span)
    ty = int((WORLD_HALF - y) // span)
    return max(0, min(n - 1, tx)), max(0, min(n - 1, ty))


def _view_bounds(state: ViewState) -> tuple[float, float, float, float]:
    cx, cy = state.center
    half_w = state.size[0] * state.resolution / 2
    half_h = state.size[1] * state.resolution / 2
    return cx - half_w, cy - half_h, cx + half_w, cy + half_h


class TileLayer:
    """Renders one tile source into a surface matching the view exactly."""

    def __init__(self, source: str = "esri_satellite", opacity: float = 1.0,
                 timeout: int = TILE_TIMEOUT, max_tiles: int = MAX_TILES,
                 session: requests.Session | None = None):
        if source not in TILE_SOURCES:
            raise ValueError(f"Unknown tile source: {source!r}")
        self.source = source
        self.opacity = opacity
        self.timeout = timeout
        self.max_tiles = max_tiles
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)

    def render(self, state: ViewState) -> LayerSurface | None:
        width, height = state.size
        if width <= 0 or height <= 0:
            return None
        cfg = TILE_SOURCES[self.source]
        min_x, min_y, max_x, max_y = _view_bounds(state)

        zoom = _pick_zoom(state.resolution, cfg["max_zoom"])
        while True:
            x0, y0 = _tile_index(min_x, max_y, zoom)   # NW corner
            x1, y1 = _tile_index(max_x, min_y, zoom)   # SE corner
            if (x1 - x0 + 1) * (y1 - y0 + 1) <= self.max_tiles or zoom == 0:
                break
            zoom -= 1

        nx = x1 - x0 + 1
        ny = y1 - y0 + 1
        canvas = Image.new("RGBA", (nx * TILE_SIZE, ny * TILE_SIZE))
        for ty in range(y0, y1 + 1):
            for tx in range(x0, x1 + 1):
                tile = self._fetch(cfg["url"].format(z=zoom, x=tx, y=ty))
                if tile is not None:
                    canvas.paste(tile, ((tx - x0) * TILE_SIZE, (ty - y0) * TILE_SIZE))

        # Map the view rectangle into canvas pixels, then resample to the view size
        tile_res = _tile_resolution(zoom)
        origin_x = -WORLD_HALF + x0 * TILE_SIZE * tile_res
        origin_y = WORLD_HALF - y0 * TILE_SIZE * tile_res
        box = (
            (min_x - origin_x) / tile_res,
            (origin_y - max_y) / tile_res,
            (max_x - origin_x) / tile_res,
            (origin_y - min_y) / tile_res,
        )
        image = canvas.transform((width, height), Image.Transform.EXTENT, box,
                                 resample=Image.Resampling.BILINEAR)
        return LayerSurface(image, self.opacity)

    def _fetch(self, url: str) -> Image.Image | None:
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            return Image.open(io.BytesIO(resp.content)).convert("RGBA")
        except (requests.RequestException, OSError) as exc:
            # leave the tile transparent
            logger.warning("Tile %s unavailable: %s", url, exc)
            return None

"""Map view: rendering state, geometry collections, draw interactions and layers.

The view is the collaborator the controller and the exporter talk to. It owns
the mutable {center, resolution, size} triple, one geometry collection per
role, the active draw interactions and the surfaces its layers rendered last.
Pointer and draw events are pushed in by the host (or by tests) through
begin_sketch / add_vertex / pointer_move / finish_sketch.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from PIL import Image

from .geometry import (
    Coord,
    Geometry,
    GeometryKind,
    LineString,
    Point,
    Polygon,
    Rectangle,
    union_extent,
)

logger = logging.getLogger(__name__)


class Role(Enum):
    SELECTION = "selection"
    IMPORTED = "imported"
    POINTS = "points"
    MEASUREMENTS = "measurements"


@dataclass(frozen=True)
class ViewState:
    center: Coord
    resolution: float
    size: tuple[int, int]


@dataclass
class LayerSurface:
    """A layer's rendered pixels and how they sit on the view.

    transform is a 2D affine (a, b, c, d, e, f) mapping surface pixels to view
    pixels as x' = a*x + c*y + e, y' = b*x + d*y + f. None means the surface is
    stretched to fill the view.
    """
    image: Image.Image
    opacity: float = 1.0
    transform: tuple[float, float, float, float, float, float] | None = None


class Layer(Protocol):
    def render(self, state: ViewState) -> LayerSurface | None: ...


class GeometryCollection:
    """Mutable, ordered set of geometries for one role."""

    def __init__(self, role: Role):
        self.role = role
        self._items: list[Geometry] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def add(self, geom: Geometry) -> None:
        self._items.append(geom)

    def extend(self, geoms) -> None:
        self._items.extend(geoms)

    def remove(self, geom: Geometry) -> None:
        self._items.remove(geom)

    def clear(self) -> None:
        self._items.clear()

    def extent(self):
        return union_extent(self._items)


class Subscription:
    """Handle for a listener; dispose() detaches it. Safe to call twice."""

    def __init__(self, listeners: list, callback: Callable):
        self._listeners = listeners
        self._callback = callback
        listeners.append(callback)

    @property
    def active(self) -> bool:
        return self._callback in self._listeners

    def dispose(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


@dataclass(eq=False)
class DrawInteraction:
    """Turns sketch events into a geometry of `kind` stored under `role`."""
    kind: GeometryKind
    role: Role
    on_start: Callable[[Geometry], None] | None = None
    on_end: Callable[[Geometry], None] | None = None


@dataclass
class MapView:
    center: Coord = (0.0, 0.0)
    resolution: float = 1.0
    size: tuple[int, int] = (1024, 768)
    layers: list = field(default_factory=list)

    def __post_init__(self):
        self.collections = {role: GeometryCollection(role) for role in Role}
        self.interactions: list[DrawInteraction] = []
        self._pointer_listeners: list[Callable[[Coord], None]] = []
        self._once: dict[str, list[Callable[[], None]]] = {}
        self._surfaces: list[LayerSurface] = []
        self._sketch: Geometry | None = None
        self._sketch_interaction: DrawInteraction | None = None

    # --- Rendering state ---

    @property
    def state(self) -> ViewState:
        return ViewState(self.center, self.resolution, self.size)

    def apply_state(self, state: ViewState) -> None:
        self.center = state.center
        self.resolution = state.resolution
        self.size = state.size

    def once(self, event: str, callback: Callable[[], None]) -> None:
        """Call `callback` the next time `event` fires, then forget it."""
        self._once.setdefault(event, []).append(callback)

    def discard_once(self, event: str, callback: Callable[[], None]) -> None:
        """Drop a pending once() callback that will not be needed."""
        pending = self._once.get(event, [])
        if callback in pending:
            pending.remove(callback)

    def _fire(self, event: str) -> None:
        for callback in self._once.pop(event, []):
            callback()

    def request_render(self) -> None:
        """Render every layer at the current state, then fire "rendercomplete"."""
        state = self.state
        surfaces = []
        for layer in self.layers:
            surface = layer.render(state)
            if surface is not None:
                surfaces.append(surface)
        self._surfaces = surfaces
        self._fire("rendercomplete")

    def rendered_surfaces(self) -> list[LayerSurface]:
        return list(self._surfaces)

    # --- Interactions and pointer events ---

    def add_interaction(self, interaction: DrawInteraction) -> None:
        self.interactions.append(interaction)

    def remove_interaction(self, interaction: DrawInteraction) -> None:
        if interaction in self.interactions:
            self.interactions.remove(interaction)
        if self._sketch_interaction is interaction:
            self._sketch = None
            self._sketch_interaction = None

    def on_pointer_move(self, callback: Callable[[Coord], None]) -> Subscription:
        return Subscription(self._pointer_listeners, callback)

    @property
    def pointer_listener_count(self) -> int:
        return len(self._pointer_listeners)

    @property
    def sketch(self) -> Geometry | None:
        return self._sketch

    def begin_sketch(self, coord: Coord) -> Geometry | None:
        """Start drawing at `coord` with the most recently added interaction."""
        if not self.interactions:
            return None
        interaction = self.interactions[-1]
        self._sketch = _new_sketch(interaction.kind, coord)
        self._sketch_interaction = interaction
        if interaction.on_start:
            interaction.on_start(self._sketch)
        return self._sketch

    def add_vertex(self, coord: Coord) -> None:
        """Fix the floating vertex at `coord` and start a new one."""
        sketch = self._sketch
        if isinstance(sketch, LineString):
            sketch.coordinates[-1] = coord
            sketch.coordinates.append(coord)
        elif isinstance(sketch, Polygon):
            ring = sketch.rings[0]
            ring[-2] = coord
            ring.insert(-1, coord)

    def pointer_move(self, coord: Coord) -> None:
        sketch = self._sketch
        if isinstance(sketch, LineString):
            sketch.coordinates[-1] = coord
        elif isinstance(sketch, Polygon):
            sketch.rings[0][-2] = coord
        elif isinstance(sketch, Rectangle):
            sketch.end = coord
        for listener in list(self._pointer_listeners):
            listener(coord)

    def finish_sketch(self) -> Geometry | None:
        """Store the sketch in its role's collection and notify the interaction."""
        sketch, interaction = self._sketch, self._sketch_interaction
        if sketch is None or interaction is None:
            return None
        self._sketch = None
        self._sketch_interaction = None
        # A floating vertex sitting on the last fixed one is a double click.
        if isinstance(sketch, LineString):
            coords = sketch.coordinates
            if len(coords) > 2 and coords[-1] == coords[-2]:
                coords.pop()
        elif isinstance(sketch, Polygon):
            ring = sketch.rings[0]
            if len(ring) > 4 and ring[-2] == ring[-3]:
                del ring[-2]
        self.collections[interaction.role].add(sketch)
        if interaction.on_end:
            interaction.on_end(sketch)
        return sketch


def _new_sketch(kind: GeometryKind, coord: Coord) -> Geometry:
    if kind is GeometryKind.POINT:
        return Point(coord)
    if kind is GeometryKind.LINE_STRING:
        return LineString([coord, coord])
    if kind is GeometryKind.POLYGON:
        # start vertex, floating vertex, closing vertex
        return Polygon([[coord, coord, coord]])
    if kind is GeometryKind.RECTANGLE:
        return Rectangle(coord, coord)
    raise TypeError(f"Unsupported sketch kind: {kind}")


@contextmanager
def preserved_view_state(view: MapView):
    """Save the view state, run the block, then put the exact values back."""
    saved = view.state
    try:
        yield saved
    finally:
        view.apply_state(saved)
        logger.debug("Restored view state %s", saved)

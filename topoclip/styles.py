"""Overlay styles for geometries drawn into an export, keyed by collection role."""

from dataclasses import dataclass

from .view import Role

RGBA = tuple[int, int, int, int]


@dataclass(frozen=True)
class OverlayStyle:
    stroke: RGBA
    width: int            # pixels
    fill: RGBA | None = None
    radius: int = 0       # point markers only
    marker_stroke: RGBA | None = None


STYLES: dict[Role, OverlayStyle] = {
    Role.SELECTION:    OverlayStyle((255, 0, 0, 255), 3),                           # red
    Role.IMPORTED:     OverlayStyle((245, 158, 11, 255), 3, fill=(245, 158, 11, 13)),  # amber
    Role.MEASUREMENTS: OverlayStyle((255, 204, 51, 255), 2),                        # yellow
    Role.POINTS:       OverlayStyle((14, 165, 233, 255), 2, fill=(14, 165, 233, 255),
                                    radius=6, marker_stroke=(255, 255, 255, 255)),  # sky blue
}

# Order overlays are drawn in; later entries end up on top.
DRAW_ORDER = [Role.IMPORTED, Role.MEASUREMENTS, Role.SELECTION, Role.POINTS]


def get_style(role: Role) -> OverlayStyle:
    return STYLES[role]

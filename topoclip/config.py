"""Runtime settings, read once from the environment."""

import os

LOG_LEVEL = os.environ.get("TOPOCLIP_LOG_LEVEL", "INFO").upper()

# Largest width or height (pixels) an export may have.
MAX_EXPORT_PIXELS = int(os.environ.get("TOPOCLIP_MAX_EXPORT_PIXELS", 16384))

TILE_TIMEOUT = int(os.environ.get("TOPOCLIP_TILE_TIMEOUT", 30))
MAX_TILES = int(os.environ.get("TOPOCLIP_MAX_TILES", 256))

USER_AGENT = os.environ.get("TOPOCLIP_USER_AGENT", "topoclip/1.0 (georeferenced map clips)")

DEFAULT_ZONE = os.environ.get("TOPOCLIP_DEFAULT_ZONE", "EPSG:26191")


def _envelope_from_env(raw: str | None) -> tuple[float, float, float, float]:
    """Parse "min_lat,max_lat,min_lng,max_lng"; fall back to the Morocco box."""
    if not raw:
        return (20.0, 38.0, -19.0, 1.0)
    parts = [float(p) for p in raw.split(",")]
    if len(parts) != 4:
        raise ValueError("TOPOCLIP_ENVELOPE must be min_lat,max_lat,min_lng,max_lng")
    return parts[0], parts[1], parts[2], parts[3]


ENVELOPE = _envelope_from_env(os.environ.get("TOPOCLIP_ENVELOPE"))

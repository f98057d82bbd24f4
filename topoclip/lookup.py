"""Point lookup collaborator: elevation and projected coordinates of a point."""

import logging

import requests

from .config import USER_AGENT
from .interaction import PointLookupRequest

logger = logging.getLogger(__name__)

ELEVATION_URL = "https://api.open-elevation.com/api/v1/lookup"


def fetch_elevation(lat: float, lon: float, timeout: int = 10) -> float | None:
    """Ground elevation in metres, or None if the service can't answer."""
    try:
        resp = requests.get(ELEVATION_URL, params={"locations": f"{lat},{lon}"},
                            timeout=timeout, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
        results = resp.json().get("results") or []
        if not results:
            return None
        return float(results[0]["elevation"])
    except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Elevation lookup failed for (%s, %s): %s", lat, lon, exc)
        return None


def lookup_point(request: PointLookupRequest, resolve) -> None:
    """Resolve a point-tool request with its elevation and zone coordinates."""
    geo = request.geodetic
    info = {
        "label": request.label,
        "lon": geo.lon,
        "lat": geo.lat,
        "zone": request.zone,
        "x": request.zone_point.x if request.zone_point else None,
        "y": request.zone_point.y if request.zone_point else None,
        "elevation": fetch_elevation(geo.lat, geo.lon),
    }
    resolve(info)

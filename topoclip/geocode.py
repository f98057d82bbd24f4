"""Reverse geocoding used to name export bundles."""

import logging

import requests

from .config import USER_AGENT

logger = logging.getLogger(__name__)

NOMINATIM_URLS = [
    "https://nominatim.openstreetmap.org/reverse",
]

DEFAULT_NAME = "location"

# Address keys tried in order, most specific settlement first.
ADDRESS_KEYS = ["city", "town", "village", "municipality", "county", "state"]


def _fetch_reverse(lat: float, lon: float, timeout: int) -> dict:
    """Query Nominatim, trying each mirror in turn."""
    last_err = None
    params = {"lat": lat, "lon": lon, "format": "json", "zoom": 10}
    for url in NOMINATIM_URLS:
        try:
            resp = requests.get(url, params=params, timeout=timeout,
                                headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            last_err = exc
            continue
    raise last_err  # type: ignore[misc]


def location_name(lat: float, lon: float, timeout: int = 10) -> str:
    """Settlement name near (lat, lon), or "location" if none can be found."""
    try:
        data = _fetch_reverse(lat, lon, timeout)
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Reverse geocoding failed for (%s, %s): %s", lat, lon, exc)
        return DEFAULT_NAME

    address = data.get("address", {}) if isinstance(data, dict) else {}
    for key in ADDRESS_KEYS:
        if address.get(key):
            return str(address[key])
    return DEFAULT_NAME

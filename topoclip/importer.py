"""Batch import of points and lines given in a zone's coordinates.

Rows or vertices that fail to parse or to project are dropped one by one; a bad
row never aborts the rest of the batch.
"""

import logging
import math
import re
from dataclasses import dataclass

from .projection import to_geodetic

logger = logging.getLogger(__name__)

X_COLUMN = re.compile(r"^(x|lng|lon|longitude|easting)$", re.IGNORECASE)
Y_COLUMN = re.compile(r"^(y|lat|latitude|northing)$", re.IGNORECASE)
LABEL_COLUMN = re.compile(r"^(id|name|nom|label|point)$", re.IGNORECASE)


@dataclass(frozen=True)
class ImportedPoint:
    lon: float
    lat: float
    label: str


def parse_coordinate_value(value) -> float:
    """Parse a spreadsheet cell into a float; NaN if it isn't a number.

    Handles "33 500,25" style cells: whitespace and non-breaking spaces are
    removed and the first comma is read as the decimal point.
    """
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if not value:
        return math.nan
    text = re.sub(r"\s", "", str(value))  # \s covers non-breaking spaces
    text = text.replace(",", ".", 1)
    try:
        return float(text)
    except ValueError:
        return math.nan


def find_column(row: dict, pattern: re.Pattern) -> str | None:
    """First key of `row` whose name matches `pattern`."""
    for key in row:
        if pattern.match(str(key).strip()):
            return key
    return None


def points_from_rows(rows: list[dict], zone_id: str) -> tuple[list[ImportedPoint], int]:
    """Project tabular rows to WGS84 points.

    Returns (points, dropped). Unlabelled points are named P1, P2, ... after
    their position among the accepted points.
    """
    points: list[ImportedPoint] = []
    dropped = 0
    for row in rows:
        x_key = find_column(row, X_COLUMN)
        y_key = find_column(row, Y_COLUMN)
        if x_key is None or y_key is None:
            dropped += 1
            continue

        x = parse_coordinate_value(row[x_key])
        y = parse_coordinate_value(row[y_key])
        geo = None if math.isnan(x) or math.isnan(y) else to_geodetic((x, y), zone_id)
        if geo is None:
            dropped += 1
            continue

        label_key = find_column(row, LABEL_COLUMN)
        label = str(row[label_key]) if label_key is not None and row[label_key] != "" else f"P{len(points) + 1}"
        points.append(ImportedPoint(geo.lon, geo.lat, label))

    if dropped:
        logger.info("Dropped %d of %d rows outside %s", dropped, len(rows), zone_id)
    return points, dropped


def lines_from_vertices(lines: list[list[tuple[float, float]]],
                        zone_id: str) -> tuple[list[list[tuple[float, float]]], int]:
    """Project polylines to WGS84 (lon, lat) vertex lists.

    Vertices that fail to project are skipped; a line left with fewer than two
    vertices is dropped. Returns (lines, dropped_lines).
    """
    result = []
    dropped = 0
    for line in lines:
        coords = []
        for x, y in line:
            geo = to_geodetic((x, y), zone_id)
            if geo is not None:
                coords.append((geo.lon, geo.lat))
        if len(coords) > 1:
            result.append(coords)
        else:
            dropped += 1

    if dropped:
        logger.info("Dropped %d of %d lines outside %s", dropped, len(lines), zone_id)
    return result, dropped

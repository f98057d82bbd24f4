"""Flask application exposing projection, measurement, import and export."""

import io
import logging
import math

from flask import Flask, jsonify, request, send_file

from .bundle import EXPORT_SCALES, MAP_SCALES, base_name, build_bundle
from .export import ExportError, ExportTooLargeError, export_raster
from .geocode import location_name
from .geometry import LineString, Point, Polygon
from .importer import lines_from_vertices, points_from_rows
from .interaction import DrawController
from .lookup import lookup_point
from .measure import AREA_UNITS, LENGTH_UNITS, area, format_area, format_length, length
from .projection import (
    ZONE_LABELS,
    ZONES,
    from_lon_lat,
    resolution_to_scale,
    scale_to_resolution,
    to_geodetic,
    to_zone,
)
from .tiles import TILE_SOURCES, TileLayer
from .view import MapView, Role

logger = logging.getLogger(__name__)

app = Flask(__name__)


def _lon_lat_list(raw, min_len: int) -> list[tuple[float, float]]:
    """Validate a [[lon, lat], ...] list and convert it to internal coordinates."""
    if not isinstance(raw, list) or len(raw) < min_len:
        raise ValueError(f"expected a list of at least {min_len} [lon, lat] pairs")
    coords = []
    for pair in raw:
        lon, lat = float(pair[0]), float(pair[1])
        if not (math.isfinite(lon) and math.isfinite(lat)) or abs(lat) > 85 or abs(lon) > 180:
            raise ValueError(f"coordinate out of range: {pair}")
        coords.append(from_lon_lat(lon, lat))
    return coords


def _valid_zone(zone) -> bool:
    return isinstance(zone, str) and zone in ZONES


@app.route("/api/zones")
def zones():
    return jsonify([{"code": code, "label": label} for code, label in ZONE_LABELS.items()])


@app.route("/api/project", methods=["POST"])
def project():
    data = request.get_json(force=True)
    try:
        x = float(data["x"])
        y = float(data["y"])
        zone = data.get("zone", "EPSG:4326")
        direction = data.get("direction", "to_geodetic")
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400

    if not _valid_zone(zone):
        return jsonify({"error": f"zone must be one of {list(ZONES)}"}), 400

    if direction == "to_geodetic":
        geo = to_geodetic((x, y), zone)
        if geo is None:
            return jsonify({"error": "Coordinates are outside the zone's area."}), 422
        return jsonify({"lon": geo.lon, "lat": geo.lat})
    if direction == "to_zone":
        point = to_zone((x, y), zone)
        if point is None:
            return jsonify({"error": "Invalid geographic coordinates."}), 422
        return jsonify({"x": point.x, "y": point.y, "zone": zone})
    return jsonify({"error": "direction must be 'to_geodetic' or 'to_zone'"}), 400


@app.route("/api/scales")
def scales():
    return jsonify({
        "map": MAP_SCALES,
        "export": [{"scale": s, "label": label} for s, label in EXPORT_SCALES.items()],
    })


@app.route("/api/scale")
def scale():
    try:
        lat = float(request.args["lat"])
        to_resolution = "scale" in request.args
        value = float(request.args["scale" if to_resolution else "resolution"])
        if not (math.isfinite(lat) and math.isfinite(value)) or value <= 0 or abs(lat) >= 90:
            raise ValueError("lat must be within (-90, 90) and the value positive and finite")
    except (KeyError, ValueError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400

    if to_resolution:
        return jsonify({"resolution": scale_to_resolution(value, lat)})
    return jsonify({"scale": round(resolution_to_scale(value, lat))})


@app.route("/api/measure", methods=["POST"])
def measure():
    data = request.get_json(force=True)
    try:
        kind = data.get("type", "LineString")
        length_unit = data.get("length_unit", "m")
        area_unit = data.get("area_unit", "sqm")
        if kind == "Polygon":
            geom = Polygon([_lon_lat_list(data["coordinates"], 3)])
        elif kind == "LineString":
            geom = LineString(_lon_lat_list(data["coordinates"], 2))
        else:
            raise ValueError("type must be 'LineString' or 'Polygon'")
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400

    if length_unit not in LENGTH_UNITS or area_unit not in AREA_UNITS:
        return jsonify({"error": "Unknown unit"}), 400

    result = {"length": format_length(length(geom), length_unit)}
    if isinstance(geom, Polygon):
        result["area"] = format_area(area(geom), area_unit)
    return jsonify(result)


@app.route("/api/import-points", methods=["POST"])
def import_points():
    data = request.get_json(force=True)
    rows = data.get("rows") if isinstance(data, dict) else None
    zone = data.get("zone", "EPSG:4326") if isinstance(data, dict) else None
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        return jsonify({"error": "rows must be a list of objects"}), 400
    if not _valid_zone(zone):
        return jsonify({"error": f"zone must be one of {list(ZONES)}"}), 400

    points, dropped = points_from_rows(rows, zone)
    if not points:
        return jsonify({"error": "No valid points found. Check the X and Y column names."}), 404
    return jsonify({
        "points": [{"lon": p.lon, "lat": p.lat, "label": p.label} for p in points],
        "dropped": dropped,
    })


@app.route("/api/import-lines", methods=["POST"])
def import_lines():
    data = request.get_json(force=True)
    try:
        zone = data.get("zone", "EPSG:4326")
        lines = [[(float(v[0]), float(v[1])) for v in line] for line in data["lines"]]
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400
    if not _valid_zone(zone):
        return jsonify({"error": f"zone must be one of {list(ZONES)}"}), 400

    projected, dropped = lines_from_vertices(lines, zone)
    if not projected:
        return jsonify({"error": "No valid lines found in the selected zone."}), 404

    controller = DrawController(MapView(), zone=zone)
    result = controller.import_features(
        [LineString([from_lon_lat(lon, lat) for lon, lat in line]) for line in projected]
    )
    return jsonify({
        "lines": [[list(v) for v in line] for line in projected],
        "dropped": dropped,
        "center": {"lon": result.center.lon, "lat": result.center.lat},
    })


@app.route("/api/points", methods=["POST"])
def add_point():
    """Place a point typed in zone coordinates and look up its elevation."""
    data = request.get_json(force=True)
    try:
        x = float(data["x"])
        y = float(data["y"])
        zone = data.get("zone", "EPSG:4326")
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400
    if not _valid_zone(zone):
        return jsonify({"error": f"zone must be one of {list(ZONES)}"}), 400

    controller = DrawController(MapView(), point_lookup=lookup_point, zone=zone)
    record = controller.add_manual_point(x, y)
    if record is None:
        return jsonify({"error": "Coordinates are outside the zone's area."}), 422
    return jsonify(record.info)


@app.route("/api/export", methods=["POST"])
def export():
    data = request.get_json(force=True)
    try:
        target_scale = int(data["scale"])
        imagery = data.get("imagery", "esri_satellite")
        view = MapView()
        if data.get("selection"):
            view.collections[Role.SELECTION].add(Polygon([_lon_lat_list(data["selection"], 3)]))
        for line in data.get("imported", []):
            view.collections[Role.IMPORTED].add(LineString(_lon_lat_list(line, 2)))
        for pt in data.get("points", []):
            (coord,) = _lon_lat_list([[pt["lon"], pt["lat"]]], 1)
            view.collections[Role.POINTS].add(Point(coord, label=pt.get("label")))
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
        return jsonify({"error": f"Invalid parameters: {exc}"}), 400

    if target_scale <= 0:
        return jsonify({"error": "scale must be positive"}), 400
    if imagery not in ("none", *TILE_SOURCES.keys()):
        return jsonify({"error": f"imagery must be 'none' or one of {list(TILE_SOURCES.keys())}"}), 400
    if imagery != "none":
        view.layers.append(TileLayer(imagery))

    try:
        artifact = export_raster(view, target_scale)
    except ExportTooLargeError as exc:
        return jsonify({"error": str(exc)}), 413
    except ExportError as exc:
        logger.error("Export failed: %s", exc)
        return jsonify({"error": "Export failed."}), 500

    if artifact is None:
        return jsonify({"error": "Nothing to export in the selected area."}), 404

    west, north = artifact.world_file[4], artifact.world_file[5]
    lon = west + artifact.world_file[0] * artifact.width / 2
    lat = north + artifact.world_file[3] * artifact.height / 2
    location = data.get("location") or location_name(lat, lon)
    name = base_name(location, target_scale, lat, lon)

    return send_file(
        io.BytesIO(build_bundle(artifact, name)),
        download_name=f"{name}.zip",
        as_attachment=True,
        mimetype="application/zip",
    )

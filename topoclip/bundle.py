"""Serialize an export into the image + world file + projection file trio."""

import io
import re
import zipfile
from datetime import datetime

from .export import ExportArtifact

# Scale denominators offered for export, labelled by the ground size they give.
EXPORT_SCALES: dict[int, str] = {
    1_000_000_000: "10000 km",
    500_000_000: "5000 km",
    200_000_000: "2000 km",
    100_000_000: "1000 km",
    50_000_000: "500 km",
    20_000_000: "200 km",
    10_000_000: "100 km",
    5_000_000: "50 km",
    2_500_000: "25 km",
    2_000_000: "20 km",
    1_000_000: "10 km",
    500_000: "5 km",
    200_000: "2 km",
    100_000: "1 km",
    50_000: "500 m",
    25_000: "250 m",
    20_000: "200 m",
    10_000: "100 m",
    5_000: "50 m",
    2_000: "20 m",
    1_000: "10 m",
    500: "5 m",
}

# Map display scales (1:N).
MAP_SCALES = [500, 1000, 2000, 2500, 5000, 10000, 25000, 50000, 100000, 250000]

SUFFIX = "topoclip"


def world_file_text(params) -> str:
    """Six lines, 12 decimals each, in world file order."""
    if len(params) != 6:
        raise ValueError(f"World file needs 6 parameters, got {len(params)}")
    # + 0.0 turns -0.0 into 0.0
    return "\n".join(f"{(v + 0.0):.12f}" for v in params)


def encode_tiff(artifact: ExportArtifact) -> bytes:
    buf = io.BytesIO()
    artifact.bitmap.save(buf, format="TIFF")
    return buf.getvalue()


def _slug(text: str) -> str:
    slug = re.sub(r"[^\w\-]+", "_", text.strip(), flags=re.UNICODE).strip("_")
    return slug or "location"


def base_name(location: str, scale: int, lat: float, lng: float,
              when: datetime | None = None) -> str:
    """e.g. "rabat_10m_n33_w006_05.24_topoclip"."""
    when = when or datetime.now()
    scale_label = EXPORT_SCALES.get(scale, str(scale)).replace(" ", "")
    lat_dir = "n" if lat >= 0 else "s"
    lng_dir = "e" if lng >= 0 else "w"
    coords = f"{lat_dir}{int(abs(lat))}_{lng_dir}{int(abs(lng)):03d}"
    date = when.strftime("%m.%y")
    return f"{_slug(location)}_{scale_label}_{coords}_{date}_{SUFFIX}"


def build_bundle(artifact: ExportArtifact, name: str) -> bytes:
    """Zip holding <name>.tif, <name>.tfw and <name>.prj."""
    zip_buffer = io.BytesIO()
    with zipfile.ZipFile(zip_buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(f"{name}.tif", encode_tiff(artifact))
        zf.writestr(f"{name}.tfw", world_file_text(artifact.world_file))
        zf.writestr(f"{name}.prj", artifact.projection)
    return zip_buffer.getvalue()

from __future__ import annotations

"""
Run configuration.

Values come from, in order of precedence: command-line overrides, the YAML
params file (config/params.yaml by default), built-in DEFAULT_PARAMS.

    bbox: {min_lon: .., min_lat: .., max_lon: .., max_lat: ..}
    zoom: {start: 17, end: 19}
    output: outputFile.mbtiles
    source: google
    sources:
      osm: {url: "https://tile.openstreetmap.org/{z}/{x}/{y}.png", format: image/png}
    fetch: {workers: 20, timeout_s: 30, queue_size: 0, user_agent: null}
    metadata: {enabled: true, name: null, description: null}
    logging: {level: INFO, format: json}

Source URLs may reference environment variables as ${NAME} (API tokens).
"""

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import yaml

from common.geo import MAX_LATITUDE
from common.types import (
    JPEG_IMAGE_FORMAT,
    JPG_IMAGE_FORMAT,
    PNG_IMAGE_FORMAT,
    BoundingBox,
    ZoomRange,
    tile_extension,
)
from mbtiler.errors import ConfigError


DEFAULT_CONFIG_PATH = "config/params.yaml"
DEFAULT_WORKERS = 20
PLACEHOLDERS = ("{z}", "{x}", "{y}")
IMAGE_FORMATS = (PNG_IMAGE_FORMAT, JPG_IMAGE_FORMAT, JPEG_IMAGE_FORMAT)

DEFAULT_PARAMS: Dict[str, Any] = {
    "bbox": {"min_lon": 55.397945, "min_lat": 25.291090, "max_lon": 55.402741, "max_lat": 25.292889},
    "zoom": {"start": 17, "end": 19},
    "output": "outputFile.mbtiles",
    "source": "google",
    "sources": {
        "google": {"url": "http://mt2.google.com/vt/lyrs=y&x={x}&y={y}&z={z}", "format": JPG_IMAGE_FORMAT},
        "osm": {"url": "https://tile.openstreetmap.org/{z}/{x}/{y}.png", "format": PNG_IMAGE_FORMAT},
        "mapbox-satellite-streets": {
            "url": "https://api.mapbox.com/v4/mapbox.satellite/{z}/{x}/{y}.png?access_token=${MAPBOX_ACCESS_TOKEN}",
            "format": PNG_IMAGE_FORMAT,
        },
    },
    "fetch": {"workers": DEFAULT_WORKERS, "timeout_s": 30.0, "queue_size": 0, "user_agent": None},
    "metadata": {"enabled": True, "name": None, "description": None},
    "logging": {"level": "INFO", "format": "json"},
}


@dataclass(frozen=True, slots=True)
class TileSource:
    """A resolved tile source: the URL template plus the image type it serves."""
    name: str
    url_template: str
    image_format: str = PNG_IMAGE_FORMAT

    @property
    def extension(self) -> str:
        return tile_extension(self.image_format)


@dataclass(frozen=True, slots=True)
class RunConfig:
    """
    Everything one download run needs, already validated.

    Attributes:
        bbox: area to cover (degrees).
        zooms: inclusive zoom range.
        output: archive path; an existing file is replaced.
        source: tile source to fetch from.
        workers: number of concurrent fetch threads.
        timeout_s: per-request timeout; None waits forever.
        queue_size: 0 buffers the whole run in memory, >0 bounds in-flight tiles.
        user_agent: User-Agent header override.
        write_metadata: write the metadata table before the tiles.
        name, description: metadata values; random ids when None.
    """
    bbox: BoundingBox
    zooms: ZoomRange
    output: Path
    source: TileSource
    workers: int = DEFAULT_WORKERS
    timeout_s: Optional[float] = 30.0
    queue_size: int = 0
    user_agent: Optional[str] = None
    write_metadata: bool = True
    name: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        validate_bbox(self.bbox)
        validate_source(self.source)
        if self.workers < 1:
            raise ConfigError("workers must be >= 1")
        if self.queue_size < 0:
            raise ConfigError("queue_size must be >= 0")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigError("timeout_s must be > 0")


# ----------------------------
# Validation
# ----------------------------
def validate_bbox(bbox: BoundingBox) -> None:
    if not (-180.0 <= bbox.min_lon <= 180.0 and -180.0 <= bbox.max_lon <= 180.0):
        raise ConfigError("longitudes must be within [-180, 180]")
    if not (-90.0 <= bbox.min_lat <= 90.0 and -90.0 <= bbox.max_lat <= 90.0):
        raise ConfigError("latitudes must be within [-90, 90]")
    if bbox.min_lon > bbox.max_lon:
        raise ConfigError(f"min longitude {bbox.min_lon} is greater than max longitude {bbox.max_lon}")
    if bbox.min_lat > bbox.max_lat:
        raise ConfigError(f"min latitude {bbox.min_lat} is greater than max latitude {bbox.max_lat}")


def validate_source(source: TileSource) -> None:
    missing = [p for p in PLACEHOLDERS if p not in source.url_template]
    if missing:
        raise ConfigError(f"tile source {source.name!r} URL lacks placeholder(s) {', '.join(missing)}")
    if "${" in source.url_template:
        raise ConfigError(f"tile source {source.name!r} URL references an unset environment variable")
    if urlparse(source.url_template).scheme not in ("http", "https"):
        raise ConfigError(f"tile source {source.name!r} URL must be http(s): {source.url_template}")
    if source.image_format not in IMAGE_FORMATS:
        raise ConfigError(f"tile source {source.name!r} has unsupported format {source.image_format!r}")


def make_zoom_range(start: int, end: int) -> ZoomRange:
    try:
        return ZoomRange(int(start), int(end))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid zoom range {start}..{end}: {e}") from e


# ----------------------------
# Params file
# ----------------------------
def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_params(path: Optional[str] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Read the YAML params file layered over DEFAULT_PARAMS. A missing file at
    the default location is not an error; an explicitly named one is.
    """
    if not path:
        return copy.deepcopy(DEFAULT_PARAMS)
    p = Path(path)
    if not p.exists():
        if path == DEFAULT_CONFIG_PATH:
            return copy.deepcopy(DEFAULT_PARAMS)
        raise ConfigError(f"config file not found: {path}")
    try:
        with p.open("r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path} must contain a mapping at top level")
    return _merge(DEFAULT_PARAMS, data)


def resolve_source(params: Mapping[str, Any], name: str) -> TileSource:
    sources = params.get("sources") or {}
    if name not in sources:
        raise ConfigError(f"unknown tile source {name!r}; known: {', '.join(sorted(sources))}")
    entry = sources[name]
    if isinstance(entry, str):
        entry = {"url": entry}
    url = os.path.expandvars(str(entry.get("url", "")))
    return TileSource(name=name, url_template=url, image_format=str(entry.get("format", PNG_IMAGE_FORMAT)))


def build_config(params: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None) -> RunConfig:
    """
    Turn params (see module docstring) plus flat overrides into a RunConfig.

    Recognised overrides (None values are ignored): min_lon, min_lat,
    max_lon, max_lat, zoom_start, zoom_end, output, source, url_template,
    image_format, workers, timeout_s, queue_size, user_agent, write_metadata,
    name, description.
    """
    o = {k: v for k, v in (overrides or {}).items() if v is not None}
    b = params.get("bbox", {})
    z = params.get("zoom", {})
    fetch = params.get("fetch", {})
    meta = params.get("metadata", {})

    try:
        bbox = BoundingBox(
            min_lon=float(o.get("min_lon", b.get("min_lon"))),
            min_lat=float(o.get("min_lat", b.get("min_lat"))),
            max_lon=float(o.get("max_lon", b.get("max_lon"))),
            max_lat=float(o.get("max_lat", b.get("max_lat"))),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"bounding box needs four numbers: {e}") from e

    zooms = make_zoom_range(o.get("zoom_start", z.get("start", 0)), o.get("zoom_end", z.get("end", 0)))

    if "url_template" in o:
        source = TileSource(
            name="custom",
            url_template=str(o["url_template"]),
            image_format=str(o.get("image_format", PNG_IMAGE_FORMAT)),
        )
    else:
        source = resolve_source(params, str(o.get("source", params.get("source", ""))))
        if "image_format" in o:
            source = TileSource(source.name, source.url_template, str(o["image_format"]))

    timeout = o.get("timeout_s", fetch.get("timeout_s"))
    try:
        workers = int(o.get("workers", fetch.get("workers", DEFAULT_WORKERS)))
        queue_size = int(o.get("queue_size", fetch.get("queue_size", 0)))
        timeout_s = None if timeout is None else float(timeout)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"fetch settings need numbers: {e}") from e

    return RunConfig(
        bbox=bbox,
        zooms=zooms,
        output=Path(str(o.get("output", params.get("output", DEFAULT_PARAMS["output"])))),
        source=source,
        workers=workers,
        timeout_s=timeout_s,
        queue_size=queue_size,
        user_agent=o.get("user_agent", fetch.get("user_agent")),
        write_metadata=bool(o.get("write_metadata", meta.get("enabled", True))),
        name=o.get("name", meta.get("name")),
        description=o.get("description", meta.get("description")),
    )


def clip_latitude_note(bbox: BoundingBox) -> Optional[str]:
    """Message for boxes reaching past the Mercator limit, which clip to the edge rows."""
    if bbox.max_lat > MAX_LATITUDE or bbox.min_lat < -MAX_LATITUDE:
        return f"latitudes beyond +-{MAX_LATITUDE} are clipped to the first/last tile row"
    return None

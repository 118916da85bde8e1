from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Dict, Iterator, Optional, Tuple
import uuid

from common.geo import MAX_ZOOM, flip_row


MBTILES_VERSION = "1.2"
LAYER_TYPE = "overlay"

PNG_IMAGE_FORMAT = "image/png"
JPG_IMAGE_FORMAT = "image/jpg"
JPEG_IMAGE_FORMAT = "image/jpeg"

_EXTENSIONS = {
    PNG_IMAGE_FORMAT: "png",
    JPG_IMAGE_FORMAT: "jpg",
    JPEG_IMAGE_FORMAT: "jpg",
}


def tile_extension(image_format: str) -> str:
    """File extension recorded in the archive metadata; unknown formats fall back to png."""
    return _EXTENSIONS.get(image_format, "png")


@dataclass(frozen=True, slots=True)
class TileCoordinate:
    """
    One cell of the quad-tree grid, XYZ row convention (row grows southward).

    Attributes:
        zoom: level, the world is 2**zoom x 2**zoom tiles.
        column: x index, west to east.
        row: y index, north to south.
    """
    zoom: int
    column: int
    row: int

    @property
    def zxy(self) -> Tuple[int, int, int]:
        return (self.zoom, self.column, self.row)

    @property
    def tms_row(self) -> int:
        """Row in the archive's north-up convention."""
        return flip_row(self.zoom, self.row)

    def __str__(self) -> str:
        return f"{self.zoom}/{self.column}/{self.row}"


@dataclass(slots=True)
class Tile:
    """A coordinate plus the raw bytes served for it (never decoded)."""
    coordinate: TileCoordinate
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """
    Geographic rectangle in WGS84 degrees.

    Nothing is validated here: an inverted box is legal and simply enumerates
    to zero (or nonsensical) tiles. Use mbtiler.config for validated input.
    """
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def top_left(self) -> Tuple[float, float]:
        return (self.min_lon, self.max_lat)

    @property
    def bottom_right(self) -> Tuple[float, float]:
        return (self.max_lon, self.min_lat)

    def bounds_string(self) -> str:
        # matches printf("%f,%f,%f,%f")
        return f"{self.min_lon:f},{self.min_lat:f},{self.max_lon:f},{self.max_lat:f}"


@dataclass(frozen=True, slots=True)
class ZoomRange:
    """Inclusive range of zoom levels."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError("zoom start must be >= 0")
        if self.end < self.start:
            raise ValueError(f"zoom start {self.start} is greater than zoom end {self.end}")
        if self.end > MAX_ZOOM:
            raise ValueError(f"zoom end must be <= {MAX_ZOOM}")

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return self.end - self.start + 1


@dataclass(slots=True)
class StoreMetadata:
    """
    Descriptive key/value pairs written to the archive's metadata table
    before any tile.
    """
    name: str
    description: str
    format: str
    bounds: str
    minzoom: int
    maxzoom: int
    version: str = MBTILES_VERSION
    type: str = LAYER_TYPE

    @classmethod
    def for_run(
        cls,
        bbox: BoundingBox,
        zooms: ZoomRange,
        image_format: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "StoreMetadata":
        # name/description are required keys; a random id keeps them unique per run
        uid = str(uuid.uuid4())
        return cls(
            name=name or uid,
            description=description or uid,
            format=tile_extension(image_format),
            bounds=bbox.bounds_string(),
            minzoom=zooms.start,
            maxzoom=zooms.end,
        )

    def items(self) -> Dict[str, str]:
        return {k: str(v) for k, v in asdict(self).items()}

from __future__ import annotations

from typing import Tuple
import math


# --- Web-Mercator constants ---
TILE_SIZE = 256                    # edge length of a raster tile (px)
MAX_LATITUDE = 85.0511287798       # latitude where the square Mercator world ends (deg)
MAX_ZOOM = 30                      # deepest level addressable with 32-bit tile indices


# -------------------------
# Tile grid helpers
# -------------------------
def tiles_per_side(zoom: int) -> int:
    """Number of tiles along one axis of the square grid at `zoom`."""
    return 1 << int(zoom)


def flip_row(zoom: int, row: int) -> int:
    """
    Convert a tile row between the XYZ (south-increasing) and TMS
    (north-increasing) conventions. Applying it twice returns `row`.
    """
    return tiles_per_side(zoom) - 1 - int(row)


def in_grid(zoom: int, column: int, row: int) -> bool:
    n = tiles_per_side(zoom)
    return 0 <= column < n and 0 <= row < n


# -------------------------
# Inverse projection
# -------------------------
def tile_corner_lonlat(zoom: int, column: float, row: float) -> Tuple[float, float]:
    """
    North-west corner (lon, lat) in degrees of XYZ tile (column, row).

    Fractional indices are accepted, so tile_corner_lonlat(z, x + 1, y + 1)
    is the south-east corner of the same tile.
    """
    n = float(tiles_per_side(zoom))
    lon = column / n * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1.0 - 2.0 * row / n))))
    return lon, lat


def tile_bounds(zoom: int, column: int, row: int) -> Tuple[float, float, float, float]:
    """[lon_min, lat_min, lon_max, lat_max] covered by an XYZ tile."""
    west, north = tile_corner_lonlat(zoom, column, row)
    east, south = tile_corner_lonlat(zoom, column + 1, row + 1)
    return (west, south, east, north)

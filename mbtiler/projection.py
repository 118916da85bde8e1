from __future__ import annotations

"""
Spherical Web-Mercator ("slippy map") projection and tile enumeration.

Pixel space at zoom z is a square of side c = 256 * 2**z with the origin at
the north-west corner. A geographic rectangle is projected through its
top-left (min_lon, max_lat) and bottom-right (max_lon, min_lat) corners;
every tile between the two corner tiles, inclusive, is emitted.

Indices outside [0, 2**z) are dropped rather than wrapped, so a box that
crosses the antimeridian is clipped at the grid edge and a box beyond
+-85.05 deg collapses onto the first/last row.
"""

import math
from typing import List, Tuple

import numpy as np

from common.geo import TILE_SIZE, tiles_per_side
from common.types import BoundingBox, TileCoordinate, ZoomRange
from common.utils import clamp, round_half_away


# sin(lat) is clamped to this to keep ln((1+f)/(1-f)) finite at the poles
SIN_LAT_LIMIT = 0.9999

TileRange = Tuple[int, int]


class Projection:
    def __init__(self, zooms: ZoomRange, tile_size: int = TILE_SIZE):
        """
        Precompute per-level scale constants for levels 0..zooms.end.

        Params:
            zooms: inclusive zoom range the tile list covers
            tile_size: tile edge length in pixels
        """
        self.zooms = zooms
        self.tile_size = int(tile_size)

        # world edge length in pixels per level: tile_size, 2*tile_size, 4*tile_size, ...
        world = self.tile_size * np.power(2.0, np.arange(zooms.end + 1))
        self._lon_scale = world / 360.0            # px per degree of longitude
        self._lat_scale = world / (2.0 * math.pi)  # Mercator radius in px
        self._origin = world / 2.0                 # px offset of (0, 0)

    # ----------------------------
    # Public API
    # ----------------------------
    def project_pixels(self, lon: float, lat: float, zoom: int) -> Tuple[float, float]:
        """
        Geographic point -> integral pixel coordinates (x, y) at `zoom`.
        y grows southward. Rounding is half away from zero. Only levels
        0..zooms.end have scale constants.
        """
        if not 0 <= zoom <= self.zooms.end:
            raise ValueError(f"zoom {zoom} outside precomputed levels 0..{self.zooms.end}")
        origin = float(self._origin[zoom])
        x = round_half_away(origin + lon * float(self._lon_scale[zoom]))
        f = clamp(math.sin(math.radians(lat)), -SIN_LAT_LIMIT, SIN_LAT_LIMIT)
        y = round_half_away(origin + 0.5 * math.log((1 + f) / (1 - f)) * -float(self._lat_scale[zoom]))
        return x, y

    def tile_ranges(self, bbox: BoundingBox, zoom: int) -> Tuple[TileRange, TileRange]:
        """
        Inclusive (x_start, x_end), (y_start, y_end) tile-index ranges for
        `bbox` at `zoom`, before clipping to the grid. Division truncates
        toward zero.
        """
        x0, y0 = self.project_pixels(*bbox.top_left, zoom)
        x1, y1 = self.project_pixels(*bbox.bottom_right, zoom)
        return (
            (int(x0 / self.tile_size), int(x1 / self.tile_size)),
            (int(y0 / self.tile_size), int(y1 / self.tile_size)),
        )

    def tiles_for_zoom(self, bbox: BoundingBox, zoom: int) -> List[TileCoordinate]:
        """Tiles overlapping `bbox` at one level, column-major, clipped to the grid."""
        n = tiles_per_side(zoom)
        (x_start, x_end), (y_start, y_end) = self.tile_ranges(bbox, zoom)
        tiles: List[TileCoordinate] = []
        for x in range(x_start, x_end + 1):
            if x < 0 or x >= n:
                continue
            for y in range(y_start, y_end + 1):
                if y < 0 or y >= n:
                    continue
                tiles.append(TileCoordinate(zoom=zoom, column=x, row=y))
        return tiles

    def tile_list(self, bbox: BoundingBox) -> List[TileCoordinate]:
        """
        Every tile overlapping `bbox` across the zoom range: ascending zoom,
        then column, then row. An empty list means there is nothing to fetch.
        """
        tiles: List[TileCoordinate] = []
        for zoom in self.zooms:
            tiles.extend(self.tiles_for_zoom(bbox, zoom))
        return tiles


def enumerate_tiles(bbox: BoundingBox, zooms: ZoomRange) -> List[TileCoordinate]:
    return Projection(zooms).tile_list(bbox)

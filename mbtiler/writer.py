from __future__ import annotations

import logging

from common.geo import flip_row
from common.types import Tile
from mbtiler.store import MBTilesStore


log = logging.getLogger(__name__)


class TileWriter:
    """
    Persists fetched tiles into the archive. Tiles arrive with XYZ rows and
    are stored under the TMS row; the flip happens here and nowhere else.

    Only one thread may call write(): the archive connection is unlocked.
    """

    def __init__(self, store: MBTilesStore):
        self.store = store
        self.written = 0

    def write(self, tile: Tile) -> None:
        c = tile.coordinate
        row = flip_row(c.zoom, c.row)
        self.store.insert_tile(c.zoom, c.column, row, tile.content)
        self.written += 1
        log.debug("stored %s as row %d", c, row)

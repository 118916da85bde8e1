"""
mbtiler — offline raster tile archiver

Downloads every Web-Mercator tile covering a bounding box over a zoom range
from one XYZ tile source and stores them in an MBTiles (SQLite) archive:
- projection: bbox + zoom range -> ordered tile coordinates
- fetcher: HTTP retrieval of one tile (requests)
- writer/store: single-writer inserts into the archive, TMS rows
- pipeline: 20 fetch threads + 1 writer, completion by acknowledgement count

Entry point:
    python -m mbtiler --source osm --zoom 12 --max-zoom 14 --output city.mbtiles
"""
__version__ = "0.2.0"

from .projection import Projection, enumerate_tiles
from .pipeline import TilePipeline, build_mbtiles

__all__ = ["Projection", "TilePipeline", "build_mbtiles", "enumerate_tiles", "__version__"]

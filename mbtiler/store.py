from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from mbtiler.errors import StoreError


log = logging.getLogger(__name__)

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS tiles (zoom_level INTEGER, tile_column INTEGER, tile_row INTEGER, tile_data BLOB);",
    "CREATE TABLE IF NOT EXISTS metadata (name TEXT, value TEXT);",
    "CREATE UNIQUE INDEX IF NOT EXISTS name ON metadata (name);",
    "CREATE UNIQUE INDEX IF NOT EXISTS tile_index ON tiles (zoom_level, tile_column, tile_row);",
)

# bulk-load tuning: the archive is rebuilt from scratch on every run
PRAGMAS = (
    "PRAGMA synchronous=0",
    "PRAGMA locking_mode=EXCLUSIVE",
    "PRAGMA journal_mode=DELETE",
)


class MBTilesStore:
    """
    SQLite tile archive in the MBTiles layout.

        tiles(zoom_level, tile_column, tile_row, tile_data)   unique (z, x, y)
        metadata(name, value)                                 unique name

    Rows are stored in the TMS convention (north-up); callers hand in rows
    that are already flipped. The connection is in autocommit mode, so each
    insert is its own durable write. It is not locked: exactly one thread may
    write at a time.
    """

    def __init__(self, path: Union[str, Path], conn: sqlite3.Connection):
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = conn

    # -------- lifecycle --------

    @classmethod
    def create(cls, path: Union[str, Path]) -> "MBTilesStore":
        """Start a fresh archive at `path`, replacing any existing file."""
        path = Path(path)
        try:
            if path.exists():
                os.remove(path)
            if path.parent and not path.parent.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
            for stmt in PRAGMAS:
                conn.execute(stmt)
            for stmt in SCHEMA:
                conn.execute(stmt)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot create archive {path}: {e}") from e
        log.debug("created archive %s", path)
        return cls(path, conn)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "MBTilesStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError(f"archive {self.path} is closed")
        return self._conn

    # -------- writes --------

    def write_metadata(self, items: Mapping[str, str]) -> None:
        for name, value in items.items():
            try:
                self.conn.execute("INSERT INTO metadata (name, value) VALUES (?, ?)", (name, str(value)))
            except sqlite3.Error as e:
                raise StoreError(f"cannot write metadata {name!r}: {e}") from e

    def insert_tile(self, zoom: int, column: int, row: int, data: bytes) -> None:
        """Insert one tile; a second insert for the same (zoom, column, row) fails."""
        try:
            self.conn.execute(
                "INSERT INTO tiles (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
                (int(zoom), int(column), int(row), sqlite3.Binary(data)),
            )
        except sqlite3.Error as e:
            raise StoreError(f"cannot insert tile {zoom}/{column}/{row}: {e}") from e

    def optimize(self) -> None:
        """Rebuild statistics and reclaim free pages once loading is finished."""
        try:
            self.conn.execute("ANALYZE;")
            self.conn.execute("VACUUM;")
        except sqlite3.Error as e:
            raise StoreError(f"cannot optimize archive {self.path}: {e}") from e
        log.debug("optimized archive %s", self.path)

    # -------- reads --------

    def count_tiles(self, zoom: Optional[int] = None) -> int:
        if zoom is None:
            row = self.conn.execute("SELECT COUNT(*) FROM tiles").fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM tiles WHERE zoom_level = ?", (int(zoom),)).fetchone()
        return int(row[0])

    def get_tile(self, zoom: int, column: int, row: int) -> Optional[bytes]:
        """Tile data by archive (TMS) row, or None."""
        r = self.conn.execute(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (int(zoom), int(column), int(row)),
        ).fetchone()
        return None if r is None else bytes(r[0])

    def metadata(self) -> Dict[str, str]:
        return {name: value for name, value in self.conn.execute("SELECT name, value FROM metadata")}

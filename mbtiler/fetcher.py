from __future__ import annotations

"""
Tile retrieval over HTTP.

Usage:
    fetcher = TileFetcher("https://tile.openstreetmap.org/{z}/{x}/{y}.png")
    tile = fetcher.fetch(TileCoordinate(zoom=4, column=2, row=1))
    # tile.content -> raw PNG bytes, never decoded

Failures are not retried: any transport error or non-2xx answer raises
FetchError and the pipeline aborts the whole run.
"""

import logging
import threading
from typing import Dict, List, Optional

import requests

from common.types import Tile, TileCoordinate
from mbtiler import __version__
from mbtiler.errors import FetchError


log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
DEFAULT_USER_AGENT = f"mbtiler/{__version__} (+offline tile archiver)"


def render_url(template: str, zoom: int, column: int, row: int) -> str:
    """
    Substitute {z}, {x} and {y} with decimal integers. Every occurrence is
    replaced, in any order; a token missing from the template is skipped.
    """
    url = template.replace("{x}", str(int(column)))
    url = url.replace("{y}", str(int(row)))
    url = url.replace("{z}", str(int(zoom)))
    return url


class TileFetcher:
    def __init__(
        self,
        url_template: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_S,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Params:
            url_template: source URL containing {z}, {x}, {y}
            session: optional shared requests.Session; by default each
                calling thread gets its own
            timeout: seconds per request (connect and read), None waits forever
            headers: extra request headers; User-Agent defaults to mbtiler's
        """
        self.url_template = url_template
        self.timeout = timeout
        self.headers = {"User-Agent": DEFAULT_USER_AGENT}
        if headers:
            self.headers.update(headers)
        self._session = session
        self._local = threading.local()
        self._owned: List[requests.Session] = []
        self._lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            s.headers.update(self.headers)
            self._local.session = s
            with self._lock:
                self._owned.append(s)
        return s

    def resolve_url(self, coord: TileCoordinate) -> str:
        return render_url(self.url_template, coord.zoom, coord.column, coord.row)

    def fetch(self, coord: TileCoordinate) -> Tile:
        """One blocking GET; the body is fully buffered before returning."""
        url = self.resolve_url(coord)
        try:
            r = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"error fetching tile {coord}: {e}", coordinate=coord, url=url) from e

        if not 200 <= r.status_code < 300:
            raise FetchError(
                f"tile {coord} answered HTTP {r.status_code}: {r.text[:200]}",
                coordinate=coord,
                url=url,
                status=r.status_code,
            )
        log.debug("fetched %s (%d bytes)", coord, len(r.content))
        return Tile(coordinate=coord, content=r.content)

    def close(self) -> None:
        """Close the per-thread sessions; an injected session is left to its owner."""
        with self._lock:
            owned, self._owned = self._owned, []
        for s in owned:
            s.close()

from __future__ import annotations

"""
Fetch -> write pipeline.

    coords --> [work] --> N fetch threads --> [fetched] --> 1 writer --> [acks] --> orchestrator

The orchestrator submits every coordinate, then waits for exactly one
acknowledgement per tile; once all are in, the finalize step runs once.

Every blocking point polls a shared threading.Event. The first failure in any
thread is recorded and sets the event, so the other threads wind down and the
orchestrator raises PipelineAborted instead of finalizing. Setting the event
from outside (signal handler) cancels the run the same way.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from common.types import StoreMetadata, Tile, TileCoordinate
from common.utils import Stopwatch
from mbtiler.config import RunConfig
from mbtiler.errors import ConfigError, PipelineAborted, PipelineCancelled
from mbtiler.fetcher import TileFetcher
from mbtiler.projection import Projection
from mbtiler.store import MBTilesStore
from mbtiler.writer import TileWriter


log = logging.getLogger(__name__)

POLL_S = 0.1         # how often blocked threads look at the stop event
JOIN_TIMEOUT_S = 5.0     # total wait for all threads after stop


class RunState(str, Enum):
    ENUMERATING = "enumerating"
    DISPATCHING = "dispatching"
    AWAITING_COMPLETION = "awaiting_completion"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


class Fetcher(Protocol):
    def fetch(self, coord: TileCoordinate) -> Tile: ...


class Writer(Protocol):
    def write(self, tile: Tile) -> None: ...


@dataclass
class PipelineResult:
    total: int
    acknowledged: int
    finalized: bool


@dataclass
class _Failure:
    stage: str
    coordinate: Optional[TileCoordinate]
    error: BaseException


def _take(q: "queue.Queue", stop: threading.Event):
    """Next item from `q`, or None once `stop` is set."""
    while not stop.is_set():
        try:
            return q.get(timeout=POLL_S)
        except queue.Empty:
            continue
    return None


def _give(q: "queue.Queue", item, stop: threading.Event) -> bool:
    """Put `item` on `q`; False if `stop` was set while waiting for room."""
    while not stop.is_set():
        try:
            q.put(item, timeout=POLL_S)
            return True
        except queue.Full:
            continue
    return False


class TilePipeline:
    def __init__(
        self,
        fetcher: Fetcher,
        writer: Writer,
        *,
        workers: int = 20,
        queue_size: int = 0,
        stop_event: Optional[threading.Event] = None,
        finalize: Optional[Callable[[], None]] = None,
    ):
        """
        Params:
            fetcher: object with fetch(coord) -> Tile, shared by all fetch threads
            writer: object with write(tile), only ever called from one thread
            workers: number of fetch threads
            queue_size: 0 sizes the work/fetched queues to the whole run;
                a positive value bounds them so fetchers block when the
                writer falls behind
            stop_event: shared cancellation flag, created if not given
            finalize: called once after every tile has been acknowledged
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.fetcher = fetcher
        self.writer = writer
        self.workers = int(workers)
        self.queue_size = int(queue_size)
        self.stop = stop_event or threading.Event()
        self.finalize = finalize
        self.state = RunState.ENUMERATING
        self._failure: Optional[_Failure] = None
        self._lock = threading.Lock()

    # ----------------------------
    # Public API
    # ----------------------------
    def run(self, coords: Sequence[TileCoordinate]) -> PipelineResult:
        """
        Fetch and write every coordinate, then finalize.

        Raises:
            PipelineAborted: a fetch, write or finalize step failed
            PipelineCancelled: the stop event was set from outside
        """
        if self.state is not RunState.ENUMERATING:
            raise RuntimeError("a TilePipeline runs only once")
        n = len(coords)
        if n == 0:
            self.state = RunState.DONE
            return PipelineResult(total=0, acknowledged=0, finalized=False)

        cap = self.queue_size or n
        work: "queue.Queue[TileCoordinate]" = queue.Queue(maxsize=cap)
        fetched: "queue.Queue[Tile]" = queue.Queue(maxsize=cap)
        acks: "queue.Queue[Tile]" = queue.Queue(maxsize=n)

        self.state = RunState.DISPATCHING
        threads: List[threading.Thread] = [
            threading.Thread(target=self._fetch_loop, args=(work, fetched), name=f"fetch-{i}", daemon=True)
            for i in range(self.workers)
        ]
        threads.append(threading.Thread(target=self._write_loop, args=(fetched, acks), name="writer", daemon=True))
        for t in threads:
            t.start()

        log.info("Dispatching tiles", extra={"extra": {"tiles": n, "workers": self.workers, "queue_size": cap}})
        for coord in coords:
            if not _give(work, coord, self.stop):
                break

        self.state = RunState.AWAITING_COMPLETION
        acknowledged = 0
        while acknowledged < n:
            tile = _take(acks, self.stop)
            if tile is None:
                break
            acknowledged += 1

        # release idle threads (or the survivors of a failure)
        self.stop.set()
        deadline = time.monotonic() + JOIN_TIMEOUT_S
        for t in threads:
            t.join(timeout=max(0.0, deadline - time.monotonic()))
            if t.is_alive():
                log.warning("thread %s still busy after stop", t.name)

        failure = self._failure
        if failure is not None:
            self.state = RunState.ABORTED
            where = f" at tile {failure.coordinate}" if failure.coordinate else ""
            raise PipelineAborted(
                f"{failure.stage} failed{where}: {failure.error}",
                stage=failure.stage,
                coordinate=failure.coordinate,
            ) from failure.error
        if acknowledged < n:
            self.state = RunState.ABORTED
            raise PipelineCancelled(f"cancelled after {acknowledged} of {n} tiles", stage="dispatch")

        self.state = RunState.FINALIZING
        if self.finalize is not None:
            try:
                self.finalize()
            except Exception as e:
                self.state = RunState.ABORTED
                raise PipelineAborted(f"finalize failed: {e}", stage="finalize") from e

        self.state = RunState.DONE
        return PipelineResult(total=n, acknowledged=acknowledged, finalized=self.finalize is not None)

    # ----------------------------
    # Threads
    # ----------------------------
    def _fail(self, stage: str, coord: Optional[TileCoordinate], error: BaseException) -> None:
        with self._lock:
            if self._failure is None:
                self._failure = _Failure(stage, coord, error)
                log.error("%s failed for tile %s: %s", stage, coord, error)
        self.stop.set()

    def _fetch_loop(self, work: "queue.Queue", fetched: "queue.Queue") -> None:
        while True:
            coord = _take(work, self.stop)
            if coord is None:
                return
            try:
                tile = self.fetcher.fetch(coord)
            except Exception as e:
                self._fail("fetch", coord, e)
                return
            if not _give(fetched, tile, self.stop):
                return

    def _write_loop(self, fetched: "queue.Queue", acks: "queue.Queue") -> None:
        while True:
            tile = _take(fetched, self.stop)
            if tile is None:
                return
            try:
                self.writer.write(tile)
            except Exception as e:
                self._fail("write", tile.coordinate, e)
                return
            if not _give(acks, tile, self.stop):
                return


# ----------------------------
# One-shot archive build
# ----------------------------
@dataclass
class BuildResult:
    path: Path
    tiles: int
    elapsed_s: float
    metadata: Optional[StoreMetadata] = None


def build_mbtiles(config: RunConfig, stop_event: Optional[threading.Event] = None, session=None) -> BuildResult:
    """
    Enumerate, download and store every tile described by `config`, then
    compact the archive.

    Raises:
        ConfigError: the box and zoom range select no tiles (nothing is written)
        PipelineAborted / PipelineCancelled: see TilePipeline.run
        StoreError: the archive could not be created or the metadata written
    """
    sw = Stopwatch()
    tiles = Projection(config.zooms).tile_list(config.bbox)
    if not tiles:
        raise ConfigError(
            f"no tiles for bounds {config.bbox.bounds_string()} at zoom {config.zooms.start}-{config.zooms.end}"
        )
    log.info(
        "Tile list ready",
        extra={"extra": {"output": str(config.output), "zoom": [config.zooms.start, config.zooms.end], "tiles": len(tiles)}},
    )

    headers = {"User-Agent": config.user_agent} if config.user_agent else None
    fetcher = TileFetcher(config.source.url_template, session=session, timeout=config.timeout_s, headers=headers)
    store = MBTilesStore.create(config.output)
    metadata: Optional[StoreMetadata] = None
    try:
        if config.write_metadata:
            metadata = StoreMetadata.for_run(
                config.bbox, config.zooms, config.source.image_format, name=config.name, description=config.description
            )
            store.write_metadata(metadata.items())
        pipeline = TilePipeline(
            fetcher,
            TileWriter(store),
            workers=config.workers,
            queue_size=config.queue_size,
            stop_event=stop_event,
            finalize=store.optimize,
        )
        result = pipeline.run(tiles)
    finally:
        fetcher.close()
        store.close()

    return BuildResult(path=config.output, tiles=result.acknowledged, elapsed_s=sw.elapsed_s, metadata=metadata)

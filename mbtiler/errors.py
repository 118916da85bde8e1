from __future__ import annotations

from typing import Optional

from common.types import TileCoordinate


class MBTilerError(RuntimeError):
    """Base class for every failure that aborts a run."""


class ConfigError(MBTilerError, ValueError):
    """Invalid run parameters, or parameters that select no tiles at all."""


class FetchError(MBTilerError):
    """A tile could not be retrieved (transport failure or non-2xx response)."""

    def __init__(
        self,
        message: str,
        *,
        coordinate: Optional[TileCoordinate] = None,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.coordinate = coordinate
        self.url = url
        self.status = status


class StoreError(MBTilerError):
    """The archive rejected a write, including duplicate tile keys."""


class PipelineAborted(MBTilerError):
    """
    The first failure observed by the pipeline. The original exception is
    chained as __cause__.

    Attributes:
        stage: "fetch", "write" or "finalize".
        coordinate: tile being processed when the failure happened, if any.
    """

    def __init__(self, message: str, *, stage: str, coordinate: Optional[TileCoordinate] = None):
        super().__init__(message)
        self.stage = stage
        self.coordinate = coordinate


class PipelineCancelled(PipelineAborted):
    """The stop event was set from outside (signal) before all tiles were written."""

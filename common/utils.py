from __future__ import annotations

import math
import time
from dataclasses import dataclass


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def round_half_away(v: float) -> float:
    """
    Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3).

    Python's round() is banker's rounding, which shifts pixel coordinates that
    land exactly on .5 boundaries; tile ranges depend on this.
    """
    if v < 0:
        return float(math.ceil(v - 0.5))
    return float(math.floor(v + 0.5))


@dataclass(slots=True)
class Stopwatch:
    """
    Wall-clock timer for run summaries.

    Usage:
        sw = Stopwatch()
        ...
        log.info("done", extra={"extra": {"elapsed_s": sw.elapsed_s}})
    """
    t0: float = 0.0

    def __post_init__(self) -> None:
        self.t0 = time.perf_counter()

    @property
    def elapsed_s(self) -> float:
        return round(time.perf_counter() - self.t0, 3)

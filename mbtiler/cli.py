from __future__ import annotations

"""
Command-line entry point.

Examples:
  # default area and zooms from config/params.yaml (or built-in defaults)
  python -m mbtiler --output dubai.mbtiles

  # OpenStreetMap tiles for a box, zoom 12..14, 8 fetch threads
  python -m mbtiler --source osm --xmin 13.3 --ymin 52.4 --xmax 13.5 --ymax 52.6 \
      --zoom 12 --max-zoom 14 --workers 8 --output berlin.mbtiles

  # any XYZ server
  python -m mbtiler --url-template "https://tiles.example.com/{z}/{x}/{y}.jpg" --format image/jpeg ...

Exit status: 0 on success, 1 on any configuration, download or archive
error, 130 when interrupted.
"""

import argparse
import os
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from common.logging_setup import get_logger, setup_logging
from mbtiler import __version__
from mbtiler.config import DEFAULT_CONFIG_PATH, IMAGE_FORMATS, build_config, clip_latitude_note, load_params
from mbtiler.errors import MBTilerError, PipelineCancelled
from mbtiler.pipeline import build_mbtiles


log = get_logger("mbtiler")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="mbtiler", description="Download map tiles for a bounding box into an MBTiles archive")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML params file")
    ap.add_argument("--xmin", type=float, help="Minimum longitude")
    ap.add_argument("--ymin", type=float, help="Minimum latitude")
    ap.add_argument("--xmax", type=float, help="Maximum longitude")
    ap.add_argument("--ymax", type=float, help="Maximum latitude")
    ap.add_argument("--zoom", type=int, help="First zoom level")
    ap.add_argument("--max-zoom", type=int, help="Last zoom level (inclusive)")
    ap.add_argument("--output", "-o", help="Archive to generate (replaced if it exists)")

    gsrc = ap.add_mutually_exclusive_group()
    gsrc.add_argument("--source", help="Tile source name from the params file")
    gsrc.add_argument("--url-template", help="Tile URL with {z}, {x} and {y} placeholders")
    ap.add_argument("--format", dest="image_format", choices=IMAGE_FORMATS, help="Image type served by the source")

    ap.add_argument("--workers", type=int, help="Concurrent fetch threads")
    ap.add_argument("--timeout", type=float, help="Per-request timeout (s)")
    ap.add_argument("--queue-size", type=int, help="Bound on in-flight tiles (0 = whole run)")
    ap.add_argument("--user-agent", help="User-Agent header sent to the tile server")

    ap.add_argument("--no-metadata", action="store_true", help="Skip the metadata table")
    ap.add_argument("--name", help="Metadata name (random id if omitted)")
    ap.add_argument("--description", help="Metadata description (random id if omitted)")

    ap.add_argument("--log-level", help="DEBUG/INFO/WARNING/ERROR")
    ap.add_argument("--log-format", choices=["json", "text"], help="Log line format")
    ap.add_argument("--list-sources", action="store_true", help="Print the configured tile sources and exit")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


@contextmanager
def stop_on_signals(stop: threading.Event) -> Iterator[None]:
    """Set `stop` on SIGINT/SIGTERM for the duration of the block."""
    def _handler(signum, frame):
        log.warning("Exit signal received", extra={"extra": {"signal": signal.Signals(signum).name}})
        stop.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, h in previous.items():
            signal.signal(sig, h)


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        params = load_params(args.config)
    except MBTilerError as e:
        setup_logging(args.log_level, args.log_format, force=True)
        log.error(str(e))
        raise SystemExit(EXIT_FAILURE)

    log_cfg = params.get("logging", {})
    setup_logging(args.log_level or log_cfg.get("level"), args.log_format or log_cfg.get("format"), force=True)

    if args.list_sources:
        for name, entry in sorted((params.get("sources") or {}).items()):
            url = entry.get("url") if isinstance(entry, dict) else entry
            print(f"{name}\t{url}")
        raise SystemExit(EXIT_OK)

    log.info("mbtiler starting", extra={"extra": {"version": __version__, "cpus": os.cpu_count()}})

    overrides = {
        "min_lon": args.xmin,
        "min_lat": args.ymin,
        "max_lon": args.xmax,
        "max_lat": args.ymax,
        "zoom_start": args.zoom,
        "zoom_end": args.max_zoom,
        "output": args.output,
        "source": args.source,
        "url_template": args.url_template,
        "image_format": args.image_format,
        "workers": args.workers,
        "timeout_s": args.timeout,
        "queue_size": args.queue_size,
        "user_agent": args.user_agent,
        "write_metadata": False if args.no_metadata else None,
        "name": args.name,
        "description": args.description,
    }

    stop = threading.Event()
    try:
        config = build_config(params, overrides)
        note = clip_latitude_note(config.bbox)
        if note:
            log.warning(note)
        with stop_on_signals(stop):
            result = build_mbtiles(config, stop_event=stop)
    except PipelineCancelled as e:
        log.error(str(e))
        raise SystemExit(EXIT_INTERRUPTED)
    except MBTilerError as e:
        log.error(str(e))
        log.debug("failure detail", exc_info=True)
        raise SystemExit(EXIT_FAILURE)

    log.info(
        f"Generated {result.path}",
        extra={"extra": {"tiles": result.tiles, "elapsed_s": result.elapsed_s, "source": config.source.name}},
    )


if __name__ == "__main__":
    main()

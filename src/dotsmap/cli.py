"""CLI entrypoint for the dotsmap classification engine."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .cache import ResultCache
from .config import EngineConfig, load_config
from .engine import DotMapEngine
from .messages import LookupComplete, LookupProgress
from .models import QueryParams
from .projection import PROJECTIONS
from .util import setup_logging, write_json

LOGGER = logging.getLogger("dotsmap.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dotsmap",
        description="Classify screen-space dot grids by country.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, help="Path to YAML config (defaults when omitted).")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    def add_query(p: argparse.ArgumentParser) -> None:
        p.add_argument("--features", required=True, help="GeoJSON (or other vector) country file.")
        p.add_argument(
            "--projection",
            default="equirectangular",
            help="Projection name: " + ", ".join(sorted(PROJECTIONS)) + ".",
        )
        p.add_argument("--width", type=int, default=960, help="Screen width in pixels.")
        p.add_argument("--height", type=int, default=500, help="Screen height in pixels.")

    classify_p = subparsers.add_parser("classify", help="Classify a dot grid and write JSON.")
    add_common(classify_p)
    add_query(classify_p)
    classify_p.add_argument("--spacing", type=int, default=5, help="Dot spacing in pixels.")
    classify_p.add_argument(
        "--include-ocean",
        action="store_true",
        help="Keep dots that fall outside every country.",
    )
    classify_p.add_argument(
        "--use-lookup",
        action="store_true",
        help="Build a lookup map first and classify through it.",
    )
    classify_p.add_argument("--resolution", type=int, default=None, help="Lookup map resolution.")
    classify_p.add_argument("--output", default=None, help="Write dots JSON to this path.")

    lookup_p = subparsers.add_parser("build-lookup", help="Build a lookup map and report progress.")
    add_common(lookup_p)
    add_query(lookup_p)
    lookup_p.add_argument("--resolution", type=int, default=None, help="Lookup map resolution.")

    stats_p = subparsers.add_parser("cache-stats", help="Print result cache statistics.")
    add_common(stats_p)

    clear_p = subparsers.add_parser("cache-clear", help="Remove every cached result.")
    add_common(clear_p)

    return parser


def _load_and_setup(args: argparse.Namespace) -> EngineConfig:
    cfg = load_config(args.config) if args.config else EngineConfig.default()
    setup_logging(cfg.logging.log_file, verbose=args.verbose)
    return cfg


def _query_from_args(args: argparse.Namespace) -> QueryParams:
    return QueryParams(
        width=args.width,
        height=args.height,
        projection_name=args.projection,
        spacing=getattr(args, "spacing", 1),
        include_ocean_dots=bool(getattr(args, "include_ocean", False)),
        resolution=args.resolution,
    )


def _log_lookup_event(event: LookupProgress | LookupComplete) -> None:
    if isinstance(event, LookupProgress):
        LOGGER.info("Lookup map progress: %.1f%%", event.progress)
    else:
        LOGGER.info("Lookup map complete on worker %d", event.worker_id)


def _run_classify(cfg: EngineConfig, args: argparse.Namespace) -> int:
    query = _query_from_args(args)
    with DotMapEngine(cfg) as engine:
        engine.load_file(args.features)
        if args.use_lookup:
            engine.build_lookup_map(query, _log_lookup_event)
        result = engine.compute_dots(query, lambda pct: LOGGER.debug("Chunks finished: %d%%", pct))
    payload = result.to_dict()
    for key, value in payload["debugInfo"].items():
        LOGGER.info("%s: %s", key, value)
    LOGGER.info("Dots: %d", len(result.dots))
    if args.output:
        output = Path(args.output)
        write_json(output, payload)
        LOGGER.info("Dots written to %s", output)
    return 0


def _run_build_lookup(cfg: EngineConfig, args: argparse.Namespace) -> int:
    query = _query_from_args(args)
    with DotMapEngine(cfg) as engine:
        engine.load_file(args.features)
        built = engine.build_lookup_map(query, _log_lookup_event)
    if not built:
        LOGGER.info("Lookup map was already built")
    return 0


def _run_cache_stats(cfg: EngineConfig) -> int:
    stats = ResultCache(cfg.cache).stats()
    for key, value in stats.to_dict().items():
        LOGGER.info("%s: %s", key, value)
    if cfg.cache.directory is None:
        LOGGER.info("No cache directory configured; only the in-process memory tier exists")
    return 0


def _run_cache_clear(cfg: EngineConfig) -> int:
    ResultCache(cfg.cache).clear()
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    command = str(args.command)
    try:
        cfg = _load_and_setup(args)
        if command == "classify":
            return _run_classify(cfg, args)
        if command == "build-lookup":
            return _run_build_lookup(cfg, args)
        if command == "cache-stats":
            return _run_cache_stats(cfg)
        if command == "cache-clear":
            return _run_cache_clear(cfg)
    except Exception as exc:
        LOGGER.error("[ERROR] %s failed: %s", command, exc)
        return 1
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())

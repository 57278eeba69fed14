#!/usr/bin/env python3
"""
Warm the derivative cache outside the server.

Runs the same precache pass the server launches at startup, one collection
at a time, and exits non-zero if any file failed.

Examples:
  python scripts/precache.py
  python scripts/precache.py --collection Logos --format webp
  python scripts/precache.py --images data/images --cache data/cache --json
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import List

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.logging_setup import setup_logging
from common.types import ImageFormat, PrecacheReport
from image_server.config import load_config
from image_server.derivative_cache import DerivativeCache
from image_server.encoder import PillowEncoder
from image_server.precache import PrecacheWalker


async def run_all(walker: PrecacheWalker, collections) -> List[PrecacheReport]:
    reports = []
    for c in collections:
        reports.append(await walker.run(c))
    return reports


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--images", default="", help="Source images root (default: IMAGES_FOLDER)")
    ap.add_argument("--cache", default="", help="Cache root (default: CACHE_FOLDER)")
    ap.add_argument("--collection", nargs="+", default=[], help="Collections to warm (default: COLLECTIONS)")
    ap.add_argument("--format", default="", help="Target format (default: PRECACHE_FORMAT)")
    ap.add_argument("--failure-log-dir", default="", help="Where failure logs go (default: FAILURE_LOG_DIR)")
    ap.add_argument("--json", action="store_true", help="Print reports as JSON")
    args = ap.parse_args()

    config = load_config()
    overrides = {}
    if args.images:
        overrides["images_root"] = Path(args.images)
    if args.cache:
        overrides["cache_root"] = Path(args.cache)
    if args.collection:
        overrides["collection_names"] = tuple(args.collection)
    if args.format:
        overrides["precache_format"] = ImageFormat.parse(args.format)
    if args.failure_log_dir:
        overrides["failure_log_dir"] = Path(args.failure_log_dir)
    config = dataclasses.replace(config, **overrides)
    setup_logging(config.log_level, debug=config.debug, force=True)

    cache = DerivativeCache(PillowEncoder(quality=config.jpeg_quality))
    walker = PrecacheWalker(cache, fmt=config.precache_format, failure_log_dir=config.failure_log_dir)
    reports = asyncio.run(run_all(walker, config.collections))

    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2))
    else:
        for r in reports:
            print(f"[{'ok' if not r.failed else 'fail'}] {r.collection}: {r.total} files, "
                  f"{r.converted} converted, {r.cached} cached, {r.failed} failed ({r.elapsed_s:.2f}s)")
            if r.failure_log:
                print(f"       failures listed in {r.failure_log}")
    return 1 if any(r.failed for r in reports) else 0


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Iterator, List, Optional

from common.types import AssetCollection, ImageFormat, Outcome, PrecacheReport
from common.utils import dir_usage, human_bytes
from image_server.derivative_cache import DerivativeCache


log = logging.getLogger(__name__)


def iter_source_files(root: Path) -> Iterator[Path]:
    """Depth-first walk yielding every regular file under `root`, in name order."""
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as e:
        log.warning("cannot list %s: %s", root, e)
        return
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                yield from iter_source_files(Path(entry.path))
            elif entry.is_file():
                yield Path(entry.path)
        except OSError as e:
            log.warning("cannot stat %s: %s", entry.path, e)


class PrecacheWalker:
    """
    Eagerly warms the derivative cache for a whole collection.

    Every regular file under the source root is pushed through
    `DerivativeCache.get_or_create` with one fixed lossy format. Per-file
    failures are recorded and the walk continues. The failure list is
    written to `<failure_log_dir>/<collection>.txt` after each run,
    replacing the previous run's log.
    """

    def __init__(
        self,
        cache: DerivativeCache,
        fmt: ImageFormat = ImageFormat.JPG,
        failure_log_dir: Optional[Path] = None,
        measure_sizes: bool = True,
    ):
        if fmt.is_passthrough:
            raise ValueError("precache format must not be the pass-through format")
        self.cache = cache
        self.fmt = fmt
        self.failure_log_dir = Path(failure_log_dir) if failure_log_dir else None
        self.measure_sizes = measure_sizes

    def failure_log_path(self, collection: AssetCollection) -> Optional[Path]:
        if self.failure_log_dir is None:
            return None
        return self.failure_log_dir / f"{collection.name}.txt"

    async def run(self, collection: AssetCollection) -> PrecacheReport:
        report = PrecacheReport(collection=collection.name, fmt=self.fmt)
        root = collection.source_root
        if not root.is_dir():
            log.warning("precache skipped, missing source root %s", root)
            return report

        log.info("precache started for %s (%s)", collection.name, self.fmt.value)
        t0 = time.perf_counter()
        files: List[Path] = await asyncio.to_thread(lambda: list(iter_source_files(root)))
        for source in files:
            report.total += 1
            relative = source.relative_to(root)
            try:
                result = await self.cache.get_or_create(collection, relative, self.fmt)
            except Exception:
                log.exception("precache crashed on %s", source)
                report.failures.append(source)
                continue

            if result.outcome is Outcome.SUCCESS:
                if result.hit:
                    report.cached += 1
                else:
                    report.converted += 1
            else:
                if result.outcome is Outcome.PROCESSING_ERROR:
                    log.warning("precache failed on %s: %s", source, result.error)
                else:
                    log.warning("precache source vanished: %s", source)
                report.failures.append(source)
        report.elapsed_s = time.perf_counter() - t0

        report.failure_log = await asyncio.to_thread(self._persist_failures, collection, report.failures)
        if self.measure_sizes:
            _, report.source_bytes = await asyncio.to_thread(dir_usage, collection.source_root)
            _, report.cache_bytes = await asyncio.to_thread(dir_usage, collection.cache_root)
        self._log_summary(report)
        return report

    # -------- internals --------

    def _persist_failures(self, collection: AssetCollection, failures: List[Path]) -> Optional[Path]:
        path = self.failure_log_path(collection)
        if path is None:
            return None
        if not failures:
            # logs describe only the latest run
            path.unlink(missing_ok=True)
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(f"{p}\n" for p in failures), encoding="utf-8")
        return path

    def _log_summary(self, report: PrecacheReport) -> None:
        msg = "precache %s done: %d files, %d converted, %d cached, %d failed in %.2fs"
        args = [report.collection, report.total, report.converted, report.cached, report.failed, report.elapsed_s]
        if self.measure_sizes:
            msg += " (source %s, cache %s)"
            args += [human_bytes(report.source_bytes), human_bytes(report.cache_bytes)]
        log.info(msg, *args, extra={"extra": report.to_dict()})
        if report.failure_log:
            log.warning("precache %s: failure log written to %s", report.collection, report.failure_log)

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union

from common.errors import PathViolation, ProcessingError, RequestError
from common.types import AssetCollection, CacheResult, ImageFormat, Outcome
from image_server.encoder import Encoder
from image_server.path_guard import is_contained


log = logging.getLogger(__name__)

# Tried in order when the requested file name is absent, so that
# `logo.jpg?type=jpg` can be produced from `logo.png`.
SOURCE_SUFFIXES: Tuple[str, ...] = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp", ".tif", ".tiff")


def _readable(p: Path) -> bool:
    return p.is_file() and os.access(p, os.R_OK)


class DerivativeCache:
    """
    Lazily materialized cache of re-encoded assets.

        cache_root/
          └─ {seg}/.../{stem}.{fmt}   (one file per source × non-pass-through format)

    The layout mirrors the collection's source tree. Entries are written
    once via temp-file + rename and never refreshed when the source changes.
    Pass-through requests bypass the cache entirely.
    """

    def __init__(self, encoder: Encoder):
        self.encoder = encoder

    # -------- public API --------

    def cache_path_for(self, collection: AssetCollection, relative: Union[str, Path], fmt: ImageFormat) -> Path:
        rel = Path(relative)
        return collection.cache_root / rel.parent / f"{rel.stem}{fmt.suffix}"

    def source_path_for(self, collection: AssetCollection, relative: Union[str, Path]) -> Path:
        source = collection.source_root / Path(relative)
        if not is_contained(collection.source_root, source):
            raise PathViolation(collection.source_root, source)
        return source

    async def get_or_create(
        self, collection: AssetCollection, relative: Union[str, Path], fmt: ImageFormat
    ) -> CacheResult:
        """
        Return the file to serve for (`relative`, `fmt`), creating the
        derivative on first access.

        Outcomes:
          SUCCESS           path is the source (pass-through) or the cache entry
          NOT_FOUND         no readable source
          PROCESSING_ERROR  read, encode or write failed; `error` holds the cause
        """
        source = self.source_path_for(collection, relative)

        if fmt.is_passthrough:
            found = await asyncio.to_thread(self.locate_source, source)
            if found is None:
                return CacheResult(Outcome.NOT_FOUND)
            return CacheResult(Outcome.SUCCESS, path=found, hit=True)

        target = self.cache_path_for(collection, relative, fmt)
        if not is_contained(collection.cache_root, target):
            raise PathViolation(collection.cache_root, target)

        if await asyncio.to_thread(_readable, target):
            log.debug("cache hit %s", target)
            return CacheResult(Outcome.SUCCESS, path=target, hit=True)

        found = await asyncio.to_thread(self.locate_source, source)
        if found is None:
            return CacheResult(Outcome.NOT_FOUND)

        try:
            await asyncio.to_thread(self._materialize, found, target, fmt)
        except ProcessingError as e:
            return CacheResult(Outcome.PROCESSING_ERROR, error=e)
        log.debug("cache miss %s -> %s", found, target)
        return CacheResult(Outcome.SUCCESS, path=target, hit=False)

    def evict(self, collection: AssetCollection, relative: Union[str, Path], fmt: ImageFormat) -> bool:
        """
        Remove the derivative for (`relative`, `fmt`). Sources are never
        touched. Returns True if a file was removed; a missing entry is not
        an error.
        """
        if fmt.is_passthrough:
            raise RequestError(fmt.value, "Pass-through format has no derivative")
        target = self.cache_path_for(collection, relative, fmt)
        if not is_contained(collection.cache_root, target):
            raise PathViolation(collection.cache_root, target)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        log.info("evicted %s", target)
        return True

    # -------- internals --------

    @staticmethod
    def locate_source(source: Path) -> Optional[Path]:
        if _readable(source):
            return source
        for suffix in SOURCE_SUFFIXES:
            alt = source.with_suffix(suffix)
            if alt != source and _readable(alt):
                return alt
        return None

    def _materialize(self, source: Path, target: Path, fmt: ImageFormat) -> None:
        try:
            data = source.read_bytes()
        except OSError as e:
            raise ProcessingError(source, f"read failed: {e}") from e
        encoded = self.encoder.encode(data, fmt, source=source)

        try:
            self._write_atomic(target, encoded)
        except OSError as e:
            raise ProcessingError(source, f"write failed: {e}") from e

    @staticmethod
    def _write_atomic(target: Path, encoded: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(encoded)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o644)
            # concurrent writers of the same key race here; last rename wins
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.errors import RequestError
from common.utils import lexical_path


class ImageFormat(str, Enum):
    """
    Closed set of output formats a client may request with `?type=`.

    PNG is the pass-through format: the original file is served as-is and
    the derivative cache is never touched.
    """
    PNG = "png"
    JPEG = "jpeg"
    JPG = "jpg"
    WEBP = "webp"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ImageFormat":
        """Map a query value to a format; absent means pass-through."""
        if value is None or value == "":
            return cls.PNG
        try:
            return cls(value)
        except ValueError:
            raise RequestError(value) from None

    @property
    def is_passthrough(self) -> bool:
        return self is ImageFormat.PNG

    @property
    def suffix(self) -> str:
        return f".{self.value}"

    @property
    def pillow_format(self) -> str:
        return {"png": "PNG", "jpeg": "JPEG", "jpg": "JPEG", "webp": "WEBP"}[self.value]

    @property
    def is_lossy(self) -> bool:
        return self.pillow_format in ("JPEG", "WEBP")


@dataclass(frozen=True)
class AssetCollection:
    """
    A named group of assets (e.g. "Logos") with a read-only source root and
    a writable cache root for its derivatives.

    Attributes:
        name: collection name; also the first URL segment after the prefix.
        source_root: absolute directory holding the original assets.
        cache_root: absolute directory holding re-encoded derivatives.
    """
    name: str
    source_root: Path
    cache_root: Path

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name or self.name in (".", ".."):
            raise ValueError(f"invalid collection name: {self.name!r}")
        src = lexical_path(self.source_root)
        dst = lexical_path(self.cache_root)
        if src == dst or src in dst.parents or dst in src.parents:
            raise ValueError("source_root and cache_root must be distinct, non-nested directories")
        object.__setattr__(self, "source_root", src)
        object.__setattr__(self, "cache_root", dst)

    @classmethod
    def under(cls, name: str, images_root: Path, cache_root: Path) -> "AssetCollection":
        return cls(name=name, source_root=Path(images_root) / name, cache_root=Path(cache_root) / name)


class Outcome(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    PROCESSING_ERROR = "processing_error"


@dataclass
class CacheResult:
    """Result of DerivativeCache.get_or_create."""
    outcome: Outcome
    path: Optional[Path] = None
    hit: bool = False
    error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass
class PrecacheReport:
    """
    Summary of one precache pass over a collection.

    `failures` is ordered by walk order and holds the source paths whose
    derivative could not be produced.
    """
    collection: str
    fmt: ImageFormat
    total: int = 0
    converted: int = 0
    cached: int = 0
    failures: List[Path] = field(default_factory=list)
    elapsed_s: float = 0.0
    source_bytes: int = 0
    cache_bytes: int = 0
    failure_log: Optional[Path] = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["fmt"] = self.fmt.value
        d["failures"] = [str(p) for p in self.failures]
        d["failure_log"] = str(self.failure_log) if self.failure_log else None
        d["failed"] = self.failed
        return d

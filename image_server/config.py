from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from common.types import AssetCollection, ImageFormat
from common.utils import lexical_path


log = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


def _flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.strip().strip("/")
    return f"/{prefix}" if prefix else ""


@dataclass(frozen=True)
class ServerConfig:
    """
    Immutable server settings, read once at process start and handed to
    every component. Nothing below the app factory reads the environment.
    """
    images_root: Path = Path("images")
    cache_root: Path = Path("cache")
    host: str = "0.0.0.0"
    port: int = 8000
    url_prefix: str = ""
    debug: bool = False
    log_level: Optional[str] = None
    delete_token: Optional[str] = field(default=None, repr=False)
    collection_names: Tuple[str, ...] = ("Logos", "Screenshots")
    precache_format: ImageFormat = ImageFormat.JPG
    precache_on_startup: bool = True
    failure_log_dir: Path = Path("logs")
    jpeg_quality: int = 85

    def __post_init__(self) -> None:
        object.__setattr__(self, "images_root", lexical_path(self.images_root))
        object.__setattr__(self, "cache_root", lexical_path(self.cache_root))
        object.__setattr__(self, "failure_log_dir", lexical_path(self.failure_log_dir))
        object.__setattr__(self, "url_prefix", _normalize_prefix(self.url_prefix))
        if self.precache_format.is_passthrough:
            raise ValueError("precache_format must be a re-encoded format, not the pass-through format")
        if not (1 <= self.jpeg_quality <= 100):
            raise ValueError("jpeg_quality must be in 1..100")
        if not self.collection_names:
            raise ValueError("at least one collection is required")

    @property
    def collections(self) -> Tuple[AssetCollection, ...]:
        return tuple(AssetCollection.under(n, self.images_root, self.cache_root) for n in self.collection_names)

    def summary(self) -> dict:
        """Loggable view of the config (token presence only)."""
        return {
            "images_root": str(self.images_root),
            "cache_root": str(self.cache_root),
            "port": self.port,
            "url_prefix": self.url_prefix,
            "debug": self.debug,
            "collections": list(self.collection_names),
            "precache_format": self.precache_format.value,
            "precache_on_startup": self.precache_on_startup,
            "delete_token": "set" if self.delete_token else "missing",
        }


def config_from_env(env: Mapping[str, str]) -> ServerConfig:
    """Build a ServerConfig from a mapping of environment variables."""
    names = tuple(n.strip() for n in env.get("COLLECTIONS", "Logos,Screenshots").split(",") if n.strip())
    return ServerConfig(
        images_root=Path(env.get("IMAGES_FOLDER") or "images"),
        cache_root=Path(env.get("CACHE_FOLDER") or "cache"),
        host=env.get("HOST") or "0.0.0.0",
        port=int(env.get("PORT") or 8000),
        url_prefix=env.get("URL_PREFIX", ""),
        debug=_flag(env, "DEBUG", False),
        log_level=env.get("LOG_LEVEL") or None,
        delete_token=env.get("DELETE_TOKEN") or None,
        collection_names=names,
        precache_format=ImageFormat.parse(env.get("PRECACHE_FORMAT") or "jpg"),
        precache_on_startup=_flag(env, "PRECACHE_ON_STARTUP", True),
        failure_log_dir=Path(env.get("FAILURE_LOG_DIR") or "logs"),
        jpeg_quality=int(env.get("JPEG_QUALITY") or 85),
    )


def load_config(env_file: Optional[str] = ".env") -> ServerConfig:
    """
    Load `.env` (if present, without overriding real env vars), then read
    the process environment.
    """
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)
        log.debug("loaded environment from %s", env_file)
    return config_from_env(os.environ)

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response

from common.errors import AuthorizationError, PathViolation, RequestError
from common.logging_setup import setup_logging
from common.types import AssetCollection, ImageFormat, Outcome
from common.utils import dir_usage, iso_now_ms
from image_server.config import ServerConfig, load_config
from image_server.derivative_cache import DerivativeCache
from image_server.encoder import Encoder, PillowEncoder
from image_server.path_guard import resolve_under
from image_server.precache import PrecacheWalker


log = logging.getLogger(__name__)

ROOT_TEXT = "Image asset server"


def _text(status: int, body: str) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status)


def _check_token(authorization: Optional[str], expected: Optional[str]) -> None:
    """Raise AuthorizationError unless `authorization` is `Bearer <expected>`."""
    if not expected:
        raise AuthorizationError("no delete token configured")
    if not authorization:
        raise AuthorizationError("missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthorizationError("expected a Bearer token")
    if not secrets.compare_digest(token.strip().encode(), expected.encode()):
        raise AuthorizationError("token mismatch")


def _register_collection(app: FastAPI, collection: AssetCollection, cache: DerivativeCache, config: ServerConfig) -> None:
    """Mount GET/DELETE for `<prefix>/<collection>/{f1}/{f2}/{filename}`."""
    route = f"{config.url_prefix}/{collection.name}/{{f1}}/{{f2}}/{{filename}}"

    async def read_asset(
        f1: str,
        f2: str,
        filename: str,
        fmt: Optional[str] = Query(None, alias="type"),
    ) -> Response:
        try:
            image_format = ImageFormat.parse(fmt)
        except RequestError as e:
            return _text(400, str(e))
        try:
            source = resolve_under(collection.source_root, f1, f2, filename)
        except PathViolation as e:
            log.warning("path violation on read", extra={"extra": {"collection": collection.name, "path": str(e.candidate)}})
            return _text(404, "Not Found")

        relative = source.relative_to(collection.source_root)
        try:
            result = await cache.get_or_create(collection, relative, image_format)
        except PathViolation as e:
            log.warning("path violation on read", extra={"extra": {"collection": collection.name, "path": str(e.candidate)}})
            return _text(404, "Not Found")
        except Exception:
            log.exception("unexpected error serving %s/%s", collection.name, relative)
            return _text(500, "Error processing image")

        if result.outcome is Outcome.NOT_FOUND:
            return _text(404, "Not Found")
        if result.outcome is Outcome.PROCESSING_ERROR:
            log.error("failed processing %s/%s as %s: %s", collection.name, relative, image_format.value, result.error,
                      exc_info=result.error)
            return _text(500, "Failed processing image")
        return FileResponse(result.path)

    async def delete_asset(
        f1: str,
        f2: str,
        filename: str,
        fmt: Optional[str] = Query(None, alias="type"),
        authorization: Optional[str] = Header(None),
    ) -> Response:
        try:
            _check_token(authorization, config.delete_token)
        except AuthorizationError as e:
            log.info("rejected delete on %s: %s", collection.name, e)
            return _text(401, "Unauthorized")

        try:
            image_format = ImageFormat.parse(fmt) if fmt else config.precache_format
            relative = resolve_under(collection.cache_root, f1, f2, filename).relative_to(collection.cache_root)
            removed = await asyncio.to_thread(cache.evict, collection, relative, image_format)
        except RequestError as e:
            return _text(400, str(e))
        except PathViolation as e:
            log.warning("path violation on delete", extra={"extra": {"collection": collection.name, "path": str(e.candidate)}})
            return _text(400, "Invalid path")
        except OSError:
            log.exception("failed deleting derivative in %s", collection.name)
            return _text(500, "Error deleting image")
        return JSONResponse({"deleted": removed, "path": str(relative), "type": image_format.value})

    app.add_api_route(route, read_asset, methods=["GET"], name=f"read_{collection.name}")
    app.add_api_route(route, delete_asset, methods=["DELETE"], name=f"delete_{collection.name}")


async def _precache_collection(app: FastAPI, walker: PrecacheWalker, collection: AssetCollection) -> None:
    try:
        report = await walker.run(collection)
    except Exception:
        log.exception("precache aborted for %s", collection.name)
        app.state.precache_reports[collection.name] = {"error": "aborted"}
        return
    app.state.precache_reports[collection.name] = report.to_dict()


def create_app(config: Optional[ServerConfig] = None, encoder: Optional[Encoder] = None) -> FastAPI:
    """
    Build the asset server.

    Usable as a uvicorn factory:
        uvicorn image_server.server:create_app --factory
    """
    if config is None:
        config = load_config()
    collections = config.collections
    cache = DerivativeCache(encoder or PillowEncoder(quality=config.jpeg_quality))
    walker = PrecacheWalker(cache, fmt=config.precache_format, failure_log_dir=config.failure_log_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("starting image server", extra={"extra": config.summary()})
        for c in collections:
            c.cache_root.mkdir(parents=True, exist_ok=True)
            if not c.source_root.is_dir():
                log.warning("source root for %s does not exist: %s", c.name, c.source_root)
        tasks: Dict[str, asyncio.Task] = {}
        if config.precache_on_startup:
            for c in collections:
                tasks[c.name] = asyncio.create_task(_precache_collection(app, walker, c), name=f"precache-{c.name}")
        app.state.precache_tasks = tasks
        yield
        pending = [t for t in tasks.values() if not t.done()]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    app = FastAPI(title="Image Asset Server", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.cache = cache
    app.state.walker = walker
    app.state.started_at = iso_now_ms()
    app.state.precache_tasks = {}
    app.state.precache_reports = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return ROOT_TEXT

    @app.get("/health")
    def health():
        tasks = app.state.precache_tasks
        return {
            "status": "ok",
            "started_at": app.state.started_at,
            "collections": [c.name for c in collections],
            "precache": {
                name: {
                    "running": not t.done(),
                    "report": app.state.precache_reports.get(name),
                }
                for name, t in tasks.items()
            },
        }

    @app.get("/stats")
    def stats():
        out = {}
        for c in collections:
            src_files, src_bytes = dir_usage(c.source_root)
            cache_files, cache_bytes = dir_usage(c.cache_root)
            out[c.name] = {
                "source": {"files": src_files, "bytes": src_bytes},
                "cache": {"files": cache_files, "bytes": cache_bytes},
            }
        return {"collections": out}

    for c in collections:
        _register_collection(app, c, cache, config)
    return app


# -------- local dev entrypoint --------
def main() -> None:
    config = load_config()
    setup_logging(config.log_level, debug=config.debug, force=True)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="debug" if config.debug else "info")


if __name__ == "__main__":
    main()

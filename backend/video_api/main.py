import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from video_api.api import exports, files, podcast, proxy
from video_api.config import Settings, get_settings
from video_api.exceptions import VideoApiError
from video_api.services.asset_store import AssetStore
from video_api.services.export_service import ExportService
from video_api.services.job_registry import JobRegistry
from video_api.services.remote_fetch import RemoteFetcher
from video_api.services.source_resolver import SourceResolver
from video_api.services.sweeper import SweepContext, Sweeper
from video_api.services.upload_sessions import UploadSessionManager

logger = logging.getLogger(__name__)

CHUNK_HEADERS = ["x-session-id", "x-chunk-index", "x-total-chunks", "x-file-ext"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    settings: Settings = app.state.settings
    store = AssetStore(settings)
    uploads = UploadSessionManager(settings, store)
    registry = JobRegistry(store, uploads)
    resolver = SourceResolver(settings, store, uploads)
    fetcher = RemoteFetcher(settings, transport=app.state.http_transport)
    export_service = ExportService(settings, store, registry, resolver, fetcher)
    sweeper = Sweeper(SweepContext(settings=settings, store=store, registry=registry, resolver=resolver))

    sweeper.startup_wipe()
    sweeper.start()

    app.state.store = store
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.fetcher = fetcher
    app.state.exports = export_service
    app.state.sweeper = sweeper

    logger.info(f"{settings.app_name} v{settings.app_version} ready on {settings.host}:{settings.port}")
    logger.info(f"  ffmpeg: {settings.ffmpeg_path}  yt-dlp: {settings.yt_dlp_path}")
    logger.info(f"  data: {settings.data_dir}  outputs: {settings.output_url_prefix}")
    yield
    # Shutdown
    await sweeper.stop()
    await export_service.shutdown()
    await fetcher.aclose()


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Request validation failed"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "header", "path")]
    msg = first.get("msg", "Validation error")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def create_app(
    settings: Optional[Settings] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_transport = http_transport

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", *CHUNK_HEADERS],
        max_age=86400,
    )

    @app.exception_handler(VideoApiError)
    async def video_api_error_handler(request: Request, exc: VideoApiError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Validation failures are plain 400s with a readable message."""
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    app.include_router(exports.router)
    app.include_router(podcast.router)
    app.include_router(proxy.router)
    if settings.serve_outputs:
        app.include_router(files.router, prefix=settings.output_url_prefix.rstrip("/"))

    return app


app = create_app()

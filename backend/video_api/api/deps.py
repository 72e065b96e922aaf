from typing import Annotated

from fastapi import Depends, Request

from video_api.config import Settings
from video_api.exceptions import PayloadTooLargeError
from video_api.services.export_service import ExportService
from video_api.services.job_registry import JobRegistry
from video_api.services.remote_fetch import RemoteFetcher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def get_export_service(request: Request) -> ExportService:
    return request.app.state.exports


def get_fetcher(request: Request) -> RemoteFetcher:
    return request.app.state.fetcher


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Registry = Annotated[JobRegistry, Depends(get_registry)]
Exports = Annotated[ExportService, Depends(get_export_service)]
Fetcher = Annotated[RemoteFetcher, Depends(get_fetcher)]


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


async def limit_json_body(request: Request, settings: AppSettings) -> None:
    """Reject oversized JSON bodies before they are parsed."""
    length = _declared_length(request)
    if length is not None and length > settings.max_json_body_bytes:
        raise PayloadTooLargeError(
            f"Request body too large ({length} bytes, limit {settings.max_json_body_bytes})"
        )


async def read_chunk_body(request: Request, settings: AppSettings) -> bytes:
    """Read a raw binary body, enforcing the per-chunk cap while streaming."""
    limit = settings.max_chunk_bytes
    length = _declared_length(request)
    if length is not None and length > limit:
        raise PayloadTooLargeError(f"Chunk too large ({length} bytes, limit {limit})")

    body = bytearray()
    async for piece in request.stream():
        body.extend(piece)
        if len(body) > limit:
            raise PayloadTooLargeError(f"Chunk too large (limit {limit} bytes)")
    return bytes(body)


ChunkBody = Annotated[bytes, Depends(read_chunk_body)]

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from video_api.api.deps import AppSettings, Fetcher
from video_api.services.remote_fetch import validate_http_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

PROXY_MAX_REDIRECTS = 1
PROXY_CACHE_CONTROL = "public, max-age=3600"


@router.get("/image-proxy")
async def image_proxy(fetcher: Fetcher, settings: AppSettings, url: Optional[str] = None) -> StreamingResponse:
    """Fetch an external image server-side and stream it back (one redirect followed)."""
    target = validate_http_url(url)
    upstream = await fetcher.open(target, max_redirects=PROXY_MAX_REDIRECTS, timeout=settings.image_proxy_timeout_s)
    content_type = upstream.headers.get("content-type", "application/octet-stream")
    logger.debug(f"[PROXY] {target} -> {upstream.status_code} {content_type}")
    return StreamingResponse(
        upstream.aiter_bytes(),
        status_code=upstream.status_code,
        media_type=content_type,
        headers={"Cache-Control": PROXY_CACHE_CONTROL},
        background=BackgroundTask(upstream.aclose),
    )

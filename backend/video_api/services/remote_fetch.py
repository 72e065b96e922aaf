"""Outbound HTTP for the image proxy and GIF export.

Redirects are followed by hand so each caller can bound the number of hops.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from video_api.config import Settings
from video_api.exceptions import InvalidRequestError, UpstreamFetchError

logger = logging.getLogger(__name__)


def validate_http_url(url: Optional[str]) -> str:
    if not url:
        raise InvalidRequestError("Missing ?url= parameter")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidRequestError("Only http/https URLs allowed")
    return url


class RemoteFetcher:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=False,
            headers={"User-Agent": settings.user_agent},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def open(self, url: str, *, max_redirects: int, timeout: float) -> httpx.Response:
        """Send a streamed GET, following at most ``max_redirects`` hops.

        The returned response is not read; the caller must ``aclose()`` it.
        If the hop budget runs out, the last redirect response is returned as is.

        Raises:
            UpstreamFetchError: connection failure or timeout.
        """
        hops = 0
        while True:
            request = self._client.build_request("GET", url, timeout=timeout)
            try:
                response = await self._client.send(request, stream=True)
            except httpx.HTTPError as e:
                raise UpstreamFetchError(f"Upstream fetch failed: {e}") from e

            location = response.headers.get("location")
            if not (response.is_redirect and location) or hops >= max_redirects:
                return response
            await response.aclose()
            url = str(response.url.join(location))
            hops += 1
            logger.debug(f"[PROXY] Redirect {hops} -> {url}")

    async def download(self, url: str, target: Path, *, max_redirects: int, timeout: float) -> int:
        """Save a remote resource to ``target``. Returns the byte count.

        Raises:
            UpstreamFetchError: fetch failed or did not end in HTTP 200.
        """
        response = await self.open(url, max_redirects=max_redirects, timeout=timeout)
        try:
            if response.is_redirect:
                raise UpstreamFetchError("Too many redirects")
            if response.status_code != 200:
                raise UpstreamFetchError(f"HTTP {response.status_code}")
            size = 0
            with target.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    fh.write(chunk)
                    size += len(chunk)
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"Upstream fetch failed: {e}") from e
        finally:
            await response.aclose()
        return size

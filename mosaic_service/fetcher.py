import asyncio
import logging
from urllib.parse import quote

import httpx

from mosaic_service.config import Settings
from mosaic_service.errors import FetchError, FetchErrorKind

logger = logging.getLogger(__name__)


class ImageFetcher:
    """Downloads source images from the upstream image host.

    The URL for an image is derived from the request's context identifier and
    the image reference alone; nothing is looked up. One fetcher (and its
    ``httpx.AsyncClient``) is shared by all requests in the process.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.headers = {
            "User-Agent": settings.user_agent,
            "Accept": "image/avif,image/webp,image/png,image/*;q=0.8,*/*;q=0.5",
            "Referer": "https://twitter.com/",
        }

    def build_url(self, context_id: str, image_ref: str) -> str:
        return self.settings.source_url_template.format(
            context_id=quote(context_id, safe=""),
            image_ref=quote(image_ref, safe=""),
        )

    async def fetch(self, context_id: str, image_ref: str) -> bytes:
        """Return the raw bytes for ``image_ref`` or raise FetchError.

        Each attempt, body included, must finish within
        ``fetch_timeout_seconds``. Connection-level failures are retried
        ``fetch_retries`` times. Timeouts and HTTP error statuses are never
        retried.
        """
        url = self.build_url(context_id, image_ref)
        retries_left = self.settings.fetch_retries

        while True:
            try:
                async with asyncio.timeout(self.settings.fetch_timeout_seconds):
                    return await self._download(url, image_ref)
            except (httpx.TimeoutException, TimeoutError):
                logger.warning(f"Timed out fetching image {image_ref}")
                raise FetchError(FetchErrorKind.TIMEOUT, image_ref) from None
            except httpx.TransportError as e:
                if retries_left <= 0:
                    logger.warning(f"Giving up on image {image_ref}: {e!r}")
                    raise FetchError(FetchErrorKind.UNREACHABLE, image_ref) from None
                retries_left -= 1
                logger.warning(f"Retrying image {image_ref} after network error: {e!r}")

    async def _download(self, url: str, image_ref: str) -> bytes:
        limit = self.settings.max_source_bytes

        async with self.client.stream("GET", url, headers=self.headers) as response:
            if not response.is_success:
                logger.warning(f"Image host returned {response.status_code} for image {image_ref}")
                raise FetchError(FetchErrorKind.HTTP_STATUS, image_ref, response.status_code)

            declared = response.headers.get("content-length")
            if declared is not None and declared.isdigit() and int(declared) > limit:
                raise FetchError(FetchErrorKind.TOO_LARGE, image_ref)

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > limit:
                    raise FetchError(FetchErrorKind.TOO_LARGE, image_ref)

        return bytes(body)

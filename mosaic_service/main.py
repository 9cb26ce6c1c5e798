import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response

from mosaic_service import __version__
from mosaic_service.config import Settings, get_settings
from mosaic_service.errors import MosaicError
from mosaic_service.fetcher import ImageFetcher
from mosaic_service.models import parse_request
from mosaic_service.pipeline import ConcurrencyLimiter, MosaicPipeline

logging.basicConfig(level=get_settings().log_level.upper())
logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    ``upstream_transport`` replaces the network transport of the shared image
    host client; tests pass an ``httpx.MockTransport`` here.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = httpx.AsyncClient(
            transport=upstream_transport,
            timeout=httpx.Timeout(settings.fetch_timeout_seconds),
            follow_redirects=True,
        )
        limiter = ConcurrencyLimiter(
            settings.max_concurrent_requests, settings.queue_timeout_seconds,
        )
        app.state.pipeline = MosaicPipeline(ImageFetcher(client, settings), limiter, settings)
        logger.info(f"Mosaic service started, {settings.max_concurrent_requests} request slots")
        try:
            yield
        finally:
            await client.aclose()
            logger.info("Mosaic service shutting down")

    app = FastAPI(title="Mosaic Service", version=__version__, lifespan=lifespan)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "mosaic", "version": __version__}

    @app.get("/{image_format}/{context_id}/{image_refs:path}")
    async def mosaic(image_format: str, context_id: str, image_refs: str, request: Request):
        """
        Render a mosaic of 2-4 images as JPEG or WebP.

        Path:
            image_format: "jpeg" or "webp".
            context_id: Identifier used to build the source image URLs.
            image_refs: 2 to 4 image references separated by "/".

        Returns:
            The encoded image with a matching Content-Type.
        """
        try:
            mosaic_request = parse_request(image_format, context_id, image_refs)
            encoded = await request.app.state.pipeline.render(mosaic_request)
            return Response(content=encoded.data, media_type=encoded.content_type)
        except MosaicError as e:
            logger.warning(f"Mosaic failed for {request.url.path}: {e.reason} ({e.http_status})")
            raise HTTPException(status_code=e.http_status, detail=e.reason)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unexpected error rendering {request.url.path}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Mosaic could not be generated")

    return app


app = create_app()

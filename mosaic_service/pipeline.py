"""Request orchestration: limiter, concurrent fetch/decode, compose, encode."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Sequence, TypeVar

import numpy as np

from mosaic_service import layout
from mosaic_service.compositor import composite
from mosaic_service.config import Settings
from mosaic_service.decoder import decode
from mosaic_service.encoder import encode
from mosaic_service.errors import OverloadedError
from mosaic_service.fetcher import ImageFetcher
from mosaic_service.models import EncodedOutput, MosaicRequest, SourceImage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """Process-wide cap on requests holding decoded images in memory.

    Callers wait up to ``queue_timeout`` seconds for a permit (forever when
    None) and are shed with OverloadedError after that.
    """

    def __init__(self, max_concurrent: int, queue_timeout: float | None = None):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0")
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout
        self.in_flight = 0
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @asynccontextmanager
    async def slot(self):
        try:
            async with asyncio.timeout(self.queue_timeout):
                await self._semaphore.acquire()
        except TimeoutError:
            logger.warning(f"Shedding request, all {self.max_concurrent} slots busy")
            raise OverloadedError() from None

        self.in_flight += 1
        try:
            yield
        finally:
            self.in_flight -= 1
            self._semaphore.release()


async def gather_or_cancel(*aws: Awaitable[T]) -> list[T]:
    """
    Run ``aws`` concurrently and return their results in input order.

    As soon as one fails, the unfinished siblings are cancelled and awaited,
    then the failure is re-raised. When several have failed by then, the one
    earliest in input order wins. If the caller itself is cancelled, every
    child is cancelled too.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    failures = [t.exception() for t in tasks if not t.cancelled() and t.exception() is not None]
    if failures:
        raise failures[0]
    return [task.result() for task in tasks]


class MosaicPipeline:
    """Turns a parsed MosaicRequest into encoded image bytes.

    Holds only process-wide collaborators (fetcher, limiter, settings); all
    images and canvases live and die inside a single ``render`` call.
    """

    def __init__(self, fetcher: ImageFetcher, limiter: ConcurrencyLimiter, settings: Settings):
        self.fetcher = fetcher
        self.limiter = limiter
        self.settings = settings

    async def load_image(self, context_id: str, image_ref: str) -> SourceImage:
        data = await self.fetcher.fetch(context_id, image_ref)
        return await asyncio.to_thread(
            decode, data, image_ref, self.settings.max_source_dimension,
        )

    async def load_images(self, request: MosaicRequest) -> list[SourceImage]:
        """Fetch and decode every image at once; order follows ``image_refs``."""
        return await gather_or_cancel(*(
            self.load_image(request.context_id, ref) for ref in request.image_refs
        ))

    def build_mosaic(self, images: Sequence[SourceImage]) -> tuple[layout.LayoutPlan, np.ndarray]:
        mosaic_plan = layout.plan(
            [image.size for image in images],
            gutter=self.settings.gutter_px,
            grid_downscale_threshold=self.settings.grid_downscale_threshold,
            max_dimension=self.settings.max_canvas_dimension,
        )
        canvas = composite(images, mosaic_plan, workers=self.settings.compositor_workers)
        return mosaic_plan, canvas

    async def render(self, request: MosaicRequest) -> EncodedOutput:
        async with self.limiter.slot():
            start = time.perf_counter()
            images = await self.load_images(request)
            download_time = time.perf_counter() - start

            mosaic_start = time.perf_counter()
            mosaic_plan, canvas = await asyncio.to_thread(self.build_mosaic, images)
            mosaic_time = time.perf_counter() - mosaic_start
            del images

            encoding_start = time.perf_counter()
            encoded = await asyncio.to_thread(
                encode,
                canvas,
                request.format,
                self.settings.jpeg_quality,
                self.settings.webp_quality,
                self.settings.webp_method,
            )
            encoding_time = time.perf_counter() - encoding_start

        logger.info(
            f"Took {(time.perf_counter() - start) * 1000:.0f}ms "
            f"(download: {download_time * 1000:.0f}ms, mosaic: {mosaic_time * 1000:.0f}ms, "
            f"encoding: {encoding_time * 1000:.0f}ms) to process: {', '.join(request.image_refs)}. "
            f"Image size: {mosaic_plan.canvas_width}x{mosaic_plan.canvas_height} "
            f"({mosaic_plan.arrangement.value}, {request.format.value}, {len(encoded.data)} bytes)."
        )
        return encoded

"""Shared fixtures: in-memory test images, a fake image host, an API client.

The fake image host is an ``httpx.MockTransport`` handler, so the real
fetcher, decoder and pipeline run unmodified against it.
"""

import asyncio
import io

import httpx
import numpy as np
import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from mosaic_service.config import Settings
from mosaic_service.main import create_app
from mosaic_service.models import SourceImage

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
PURPLE = (128, 0, 128)
BLACK = (0, 0, 0)


def image_bytes(width: int, height: int, colour=RED, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), colour).save(buffer, format=fmt)
    return buffer.getvalue()


def noise_bytes(width: int, height: int, fmt: str = "JPEG", seed: int = 0) -> bytes:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


def source_image(width: int, height: int, colour=RED, ref: str = "img") -> SourceImage:
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:] = (*colour, 255)
    return SourceImage(ref=ref, pixels=pixels)


def pixel(image: Image.Image, x: int, y: int) -> tuple:
    return image.convert("RGB").getpixel((x, y))


def close_to(actual, expected, tolerance: int = 12) -> bool:
    """JPEG is lossy; compare colours channel by channel with some slack."""
    return all(abs(int(a) - int(e)) <= tolerance for a, e in zip(actual, expected))


class FakeImageHost:
    """Serves registered images by the last path segment of the request URL.

    ``delays`` holds per-ref sleeps; refs cancelled while sleeping are
    recorded in ``cancelled``. Unknown refs get a 404.
    """

    def __init__(self):
        self.images: dict[str, bytes] = {}
        self.delays: dict[str, float] = {}
        self.statuses: dict[str, int] = {}
        self.requested: list[str] = []
        self.completed: list[str] = []
        self.cancelled: list[str] = []

    def add(self, ref: str, data: bytes, delay: float = 0.0):
        self.images[ref] = data
        if delay:
            self.delays[ref] = delay

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        ref = request.url.path.rsplit("/", 1)[-1]
        self.requested.append(ref)

        delay = self.delays.get(ref)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled.append(ref)
                raise

        self.completed.append(ref)
        if ref in self.statuses:
            return httpx.Response(self.statuses[ref], text="nope")
        if ref not in self.images:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=self.images[ref], headers={"Content-Type": "image/png"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def settings():
    return Settings(
        source_url_template="https://images.test/{context_id}/{image_ref}",
        fetch_timeout_seconds=2.0,
        compositor_workers=2,
        max_concurrent_requests=4,
        queue_timeout_seconds=1.0,
    )


@pytest.fixture
def image_host():
    return FakeImageHost()


@pytest.fixture
async def client(settings, image_host):
    """API client bound to an app whose image host is ``image_host``."""
    app = create_app(settings, upstream_transport=image_host.transport())
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c

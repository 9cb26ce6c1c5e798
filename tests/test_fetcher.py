"""Fetcher — URL construction, size limits, the deadline and the retry policy."""

import asyncio
import time

import httpx
import pytest

from mosaic_service.errors import FetchError, FetchErrorKind
from mosaic_service.fetcher import ImageFetcher

from tests.conftest import image_bytes


@pytest.fixture
async def make_fetcher():
    """Builds fetchers on a MockTransport and closes their clients afterwards."""
    clients = []

    def factory(settings, handler=None) -> ImageFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler or unreachable))
        clients.append(client)
        return ImageFetcher(client, settings)

    yield factory
    for client in clients:
        await client.aclose()


def unreachable(request):
    raise AssertionError(f"unexpected request to {request.url}")


async def test_url_is_built_from_context_and_ref(settings, make_fetcher):
    fetcher = make_fetcher(settings)
    assert fetcher.build_url("123", "abc") == "https://images.test/123/abc"


async def test_url_parts_are_escaped(settings, make_fetcher):
    fetcher = make_fetcher(settings)
    assert fetcher.build_url("1 2", "../a?b") == "https://images.test/1%202/..%2Fa%3Fb"


async def test_default_template_ignores_context(settings, make_fetcher):
    settings = settings.model_copy(update={
        "source_url_template": "https://pbs.twimg.com/media/{image_ref}?format=png&name=large",
    })
    fetcher = make_fetcher(settings)
    assert fetcher.build_url("999", "Fx1") == "https://pbs.twimg.com/media/Fx1?format=png&name=large"


async def test_returns_body(settings, make_fetcher):
    data = image_bytes(4, 4)
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=data)

    assert await make_fetcher(settings, handler).fetch("1", "a") == data
    assert seen[0].headers["user-agent"] == settings.user_agent


async def test_http_error_status_is_not_retried(settings, make_fetcher):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")

    assert exc_info.value.kind is FetchErrorKind.HTTP_STATUS
    assert exc_info.value.status_code == 503
    assert exc_info.value.http_status == 502
    assert len(calls) == 1


async def test_network_error_is_retried_once(settings, make_fetcher):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"ok")

    assert await make_fetcher(settings, handler).fetch("1", "a") == b"ok"
    assert len(calls) == 2


async def test_network_error_gives_up_after_retry(settings, make_fetcher):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")

    assert exc_info.value.kind is FetchErrorKind.UNREACHABLE
    assert len(calls) == 2


async def test_timeout_is_not_retried(settings, make_fetcher):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")

    assert exc_info.value.kind is FetchErrorKind.TIMEOUT
    assert exc_info.value.http_status == 504
    assert len(calls) == 1


async def test_declared_oversize_body_fails_fast(settings, make_fetcher):
    settings = settings.model_copy(update={"max_source_bytes": 10})

    def handler(request):
        return httpx.Response(200, content=b"x" * 11)

    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")
    assert exc_info.value.kind is FetchErrorKind.TOO_LARGE


async def test_streamed_oversize_body_fails(settings, make_fetcher):
    settings = settings.model_copy(update={"max_source_bytes": 10})

    async def chunks():
        for _ in range(5):
            yield b"xxxx"

    def handler(request):
        return httpx.Response(200, content=chunks())

    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")
    assert exc_info.value.kind is FetchErrorKind.TOO_LARGE


async def test_body_at_limit_is_accepted(settings, make_fetcher):
    settings = settings.model_copy(update={"max_source_bytes": 10})

    def handler(request):
        return httpx.Response(200, content=b"x" * 10)

    assert await make_fetcher(settings, handler).fetch("1", "a") == b"x" * 10


async def test_slow_body_hits_the_fetch_deadline(settings, make_fetcher):
    settings = settings.model_copy(update={"fetch_timeout_seconds": 0.2})
    calls = []

    async def trickle():
        for _ in range(20):
            await asyncio.sleep(0.05)
            yield b"x"

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=trickle())

    start = time.perf_counter()
    with pytest.raises(FetchError) as exc_info:
        await make_fetcher(settings, handler).fetch("1", "a")

    assert exc_info.value.kind is FetchErrorKind.TIMEOUT
    assert exc_info.value.http_status == 504
    assert time.perf_counter() - start < 0.8
    assert len(calls) == 1

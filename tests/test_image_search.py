"""
Unit tests for the stock-photo search client.
"""
from typing import Any, Dict, List

import httpx
import pytest

from multimodal.core.config import ImageSearchSettings
from multimodal.core.errors import ErrorCode, ProviderError
from multimodal.services.search.images import ImageSearchClient


def photo(index: int, description=None, alt_description="alt text") -> Dict[str, Any]:
    return {
        "id": f"photo-{index}",
        "width": 4000,
        "height": 3000,
        "description": description,
        "alt_description": alt_description,
        "urls": {
            "regular": f"https://images.unsplash.com/photo-{index}?w=1080",
            "thumb": f"https://images.unsplash.com/photo-{index}?w=200",
        },
        "links": {"html": f"https://unsplash.com/photos/photo-{index}"},
        "user": {
            "name": f"Photographer {index}",
            "links": {"html": f"https://unsplash.com/@user{index}"},
        },
    }


class UnsplashStub:
    def __init__(self, status_code: int = 200, payload=None, error: Exception = None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {"results": []}
        self.error = error
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.payload)


def make_client(stub: UnsplashStub, **overrides) -> ImageSearchClient:
    options = {"access_key": "unsplash-key"}
    options.update(overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return ImageSearchClient(ImageSearchSettings(**options), http_client=http_client)


@pytest.mark.asyncio
async def test_search_images_maps_photos():
    stub = UnsplashStub(payload={"results": [photo(1, description="Eiffel Tower at dusk")]})
    client = make_client(stub)

    images = await client.search_images("eiffel tower")

    assert len(images) == 1
    image = images[0]
    assert image.source == "unsplash"
    assert image.id == "photo-1"
    assert image.url == "https://images.unsplash.com/photo-1?w=1080"
    assert image.thumbnail_url == "https://images.unsplash.com/photo-1?w=200"
    assert image.description == "Eiffel Tower at dusk"
    assert image.photographer == "Photographer 1"
    assert image.photographer_url == "https://unsplash.com/@user1"
    assert image.source_page_url == "https://unsplash.com/photos/photo-1"
    assert (image.width, image.height) == (4000, 3000)

    request = stub.requests[0]
    assert request.headers["Authorization"] == "Client-ID unsplash-key"
    assert request.headers["Accept-Version"] == "v1"
    assert request.url.params["query"] == "eiffel tower"
    assert request.url.params["per_page"] == "3"
    await client.aclose()


@pytest.mark.asyncio
async def test_description_falls_back_to_alt_text():
    stub = UnsplashStub(payload={"results": [photo(1, description=None, alt_description="a tower")]})
    client = make_client(stub)

    images = await client.search_images("tower")

    assert images[0].description == "a tower"
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("upstream_count", [0, 2, 3, 10, 20])
async def test_result_count_never_exceeds_cap(upstream_count):
    stub = UnsplashStub(payload={"results": [photo(i) for i in range(upstream_count)]})
    client = make_client(stub, max_results=3)

    fresh = await client.search_images("mountains", max_results=20)
    cached = await client.search_images("mountains", max_results=20)

    assert len(fresh) == min(upstream_count, 3)
    assert len(cached) == len(fresh)
    assert len(stub.requests) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_negative_requested_count_is_clamped():
    stub = UnsplashStub(payload={"results": [photo(i) for i in range(20)]})
    client = make_client(stub)

    images = await client.search_images("mountains", max_results=-1)

    assert len(images) == 1
    assert stub.requests[0].url.params["per_page"] == "1"
    await client.aclose()


@pytest.mark.asyncio
async def test_orientation_is_forwarded_and_keyed():
    stub = UnsplashStub(payload={"results": [photo(1)]})
    client = make_client(stub)

    await client.search_images("beach", orientation="landscape")
    await client.search_images("beach")

    assert stub.requests[0].url.params["orientation"] == "landscape"
    assert "orientation" not in stub.requests[1].url.params
    await client.aclose()


@pytest.mark.asyncio
async def test_empty_results_are_cached():
    stub = UnsplashStub(payload={"results": []})
    client = make_client(stub)

    assert await client.search_images("nothing here") == []
    assert await client.search_images("nothing here") == []

    assert len(stub.requests) == 1
    stats = client.get_usage_stats()
    assert stats.total_searches == 1
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_api_error_propagates():
    stub = UnsplashStub(status_code=401, payload={"errors": ["OAuth error: The access token is invalid"]})
    client = make_client(stub)

    with pytest.raises(ProviderError) as exc_info:
        await client.search_images("cats")

    assert exc_info.value.code == ErrorCode.UNSPLASH_API_ERROR
    assert exc_info.value.retryable is False
    assert exc_info.value.message == "OAuth error: The access token is invalid"
    await client.aclose()


@pytest.mark.asyncio
async def test_server_error_is_retryable():
    client = make_client(UnsplashStub(status_code=502, payload={}))

    with pytest.raises(ProviderError) as exc_info:
        await client.search_images("cats")

    assert exc_info.value.retryable is True
    await client.aclose()


@pytest.mark.asyncio
async def test_network_error():
    client = make_client(UnsplashStub(error=httpx.ConnectTimeout("timed out")))

    with pytest.raises(ProviderError) as exc_info:
        await client.search_images("cats")

    assert exc_info.value.code == ErrorCode.NETWORK_ERROR
    assert exc_info.value.retryable is True
    await client.aclose()


def test_missing_access_key():
    with pytest.raises(ProviderError) as exc_info:
        ImageSearchClient(ImageSearchSettings())

    assert exc_info.value.code == ErrorCode.SERVICE_UNAVAILABLE

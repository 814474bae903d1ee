"""
Tests for the catalog HTTP client.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from contentops.services.providers.catalog_client import (
    CatalogClient,
    build_product_update,
    extract_attribute_value,
)

# Configure anyio for async tests
pytestmark = pytest.mark.anyio


def _response(data=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"{status_code} error", request=MagicMock(), response=response
        )
    return response


@pytest.fixture
def http():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client_class.return_value.__aenter__.return_value = mock_client
        yield mock_client


@pytest.fixture
def catalog():
    return CatalogClient(base_url="https://catalog.test/", token="secret")


class TestHelpers:

    def test_build_product_update_for_each_attribute(self):
        assert build_product_update("name", "Tee") == {"name": "Tee"}
        assert build_product_update("description", "Soft") == {"plainDescription": "<p>Soft</p>"}
        title = build_product_update("seoTitle", "Best tee")
        assert title["seoData"]["tags"][0] == {"type": "title", "children": "Best tee"}
        meta = build_product_update("seoDescription", "Buy now")
        assert meta["seoData"]["tags"][0]["props"] == {"name": "description", "content": "Buy now"}

    def test_build_product_update_unknown_attribute(self):
        with pytest.raises(ValueError):
            build_product_update("price", "9")

    def test_extract_description_prefers_rich_content(self):
        product = {
            "content": {"sections": [{"content": {"plainText": "Rich"}}]},
            "description": "Legacy",
        }

        assert extract_attribute_value(product, "description") == "Rich"
        assert extract_attribute_value({"description": "Legacy"}, "description") == "Legacy"

    def test_extract_seo_values(self):
        product = {"seoData": {"tags": {"title": "T", "description": "D"}}}

        assert extract_attribute_value(product, "seoTitle") == "T"
        assert extract_attribute_value(product, "seoDescription") == "D"
        assert extract_attribute_value({}, "seoTitle") == ""


class TestReads:

    async def test_get_product_unwraps_envelope(self, http, catalog):
        http.get = AsyncMock(return_value=_response({"product": {"id": "p1", "name": "Tee"}}))

        product = await catalog.get_product("p1", "store-1")

        assert product == {"id": "p1", "name": "Tee"}
        url = http.get.call_args[0][0]
        headers = http.get.call_args[1]["headers"]
        assert url == "https://catalog.test/products/p1"
        assert headers["Authorization"] == "Bearer secret"
        assert headers["X-Tenant-ID"] == "store-1"

    async def test_list_collection_products_follows_cursor(self, http, catalog):
        http.get = AsyncMock(
            side_effect=[
                _response({"productIds": ["p1", "p2"], "nextCursor": "c2"}),
                _response({"productIds": ["p3"]}),
            ]
        )

        ids = await catalog.list_collection_products("col-1")

        assert ids == ["p1", "p2", "p3"]
        assert http.get.await_count == 2
        assert http.get.call_args_list[1][1]["params"] == {"cursor": "c2"}

    async def test_http_error_propagates(self, http, catalog):
        http.get = AsyncMock(return_value=_response(status_code=404))

        with pytest.raises(httpx.HTTPStatusError):
            await catalog.get_product("missing")


class TestPushResult:

    async def test_text_result_patches_product(self, http, catalog):
        http.patch = AsyncMock(return_value=_response())

        ref = await catalog.push_result(
            "text_optimization",
            {"product_id": "p1", "attribute": "name"},
            {"before": "Old", "after": "New"},
        )

        assert ref == "p1"
        assert http.patch.call_args[0][0] == "https://catalog.test/products/p1"
        assert http.patch.call_args[1]["json"] == {"product": {"name": "New"}}

    async def test_image_result_replaces_media(self, http, catalog):
        http.post = AsyncMock(return_value=_response())

        ref = await catalog.push_result(
            "image_optimization",
            {"product_id": "p1", "image_url": "https://img/1.jpg", "media_id": "m-7"},
            {"image_url": "https://out/1.jpg"},
        )

        assert ref == "p1"
        assert http.post.call_args[0][0] == "https://catalog.test/products/p1/media"
        assert http.post.call_args[1]["json"] == {"url": "https://out/1.jpg", "replaceMediaId": "m-7"}

    async def test_blog_result_creates_draft_post(self, http, catalog):
        http.post = AsyncMock(return_value=_response({"draftPost": {"id": "post-42"}}))

        ref = await catalog.push_result(
            "blog_generation",
            {"idea": "Care guide"},
            {"title": "Care guide", "content": "<p>Wash cold</p>"},
        )

        assert ref == "post-42"
        body = http.post.call_args[1]["json"]
        assert body["draftPost"] == {"title": "Care guide", "content": "<p>Wash cold</p>"}

    async def test_rejected_push_raises(self, http, catalog):
        http.patch = AsyncMock(return_value=_response(status_code=503))

        with pytest.raises(httpx.HTTPStatusError):
            await catalog.push_result(
                "text_optimization",
                {"product_id": "p1", "attribute": "name"},
                {"after": "New"},
            )

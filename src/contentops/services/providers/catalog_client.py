# src/contentops/services/providers/catalog_client.py

"""
HTTP client for the tenant's external catalog/CMS.

Reads products and collections for job creation and applies finished
results on publish. The catalog's schema is only known here; the core passes
opaque payload/result dicts.
"""

import logging
from typing import Any

import httpx
from opentelemetry import trace

from contentops import config
from contentops.models.job import JobKind

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_product_update(attribute: str, value: str) -> dict:
    """Catalog update body for one optimized product attribute."""
    if attribute == "name":
        return {"name": value}
    if attribute == "description":
        return {"plainDescription": f"<p>{value}</p>"}
    if attribute == "seoTitle":
        return {"seoData": {"tags": [{"type": "title", "children": value}]}}
    if attribute == "seoDescription":
        return {
            "seoData": {
                "tags": [
                    {
                        "type": "meta",
                        "props": {"name": "description", "content": value},
                    }
                ]
            }
        }
    raise ValueError(f"Unknown attribute type: {attribute}")


def extract_attribute_value(product: dict, attribute: str) -> str:
    """Current value of a product attribute as plain text."""
    if attribute == "name":
        return product.get("name") or ""

    if attribute == "description":
        sections = (product.get("content") or {}).get("sections") or []
        content = sections[0].get("content", {}) if sections else {}
        if content.get("plainText"):
            return content["plainText"]
        legacy = product.get("description")
        return legacy if isinstance(legacy, str) else ""

    tags = (product.get("seoData") or {}).get("tags") or {}
    if attribute == "seoTitle":
        return tags.get("title", "") if isinstance(tags, dict) else ""
    if attribute == "seoDescription":
        return tags.get("description", "") if isinstance(tags, dict) else ""

    raise ValueError(f"Unknown attribute: {attribute}")


class CatalogClient:
    """Thin async wrapper around the catalog REST API."""

    def __init__(self, base_url: str | None = None, token: str | None = None, timeout: float = 30.0):
        self.base_url = (base_url or config.CATALOG_API_URL).rstrip("/")
        self.token = token if token is not None else config.CATALOG_API_TOKEN
        self.timeout = timeout

    def _headers(self, tenant_id: str | None = None) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if tenant_id:
            headers["X-Tenant-ID"] = tenant_id
        return headers

    async def get_product(self, product_id: str, tenant_id: str | None = None) -> dict[str, Any]:
        with tracer.start_as_current_span("catalog.get_product") as span:
            span.set_attribute("product_id", product_id)

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/products/{product_id}",
                    headers=self._headers(tenant_id),
                )
                response.raise_for_status()
                data = response.json()

        return data.get("product", data)

    async def list_collection_products(self, collection_id: str, tenant_id: str | None = None) -> list[str]:
        """All product ids in a collection, following pagination cursors."""
        with tracer.start_as_current_span("catalog.list_collection_products") as span:
            span.set_attribute("collection_id", collection_id)

            product_ids: list[str] = []
            cursor = None
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                while True:
                    params = {"cursor": cursor} if cursor else {}
                    response = await client.get(
                        f"{self.base_url}/collections/{collection_id}/products",
                        headers=self._headers(tenant_id),
                        params=params,
                    )
                    response.raise_for_status()
                    data = response.json()

                    product_ids.extend(data.get("productIds", []))
                    cursor = data.get("nextCursor")
                    if not cursor:
                        break

            span.set_attribute("product_count", len(product_ids))

        logger.debug("Collection %s has %d products", collection_id, len(product_ids))
        return product_ids

    async def push_result(self, kind: str, payload: dict, result: dict, tenant_id: str | None = None) -> str:
        """
        Apply a finished item to the catalog.

        Returns the catalog's reference for what was written (product id or
        draft post id). Raises httpx errors on failure.
        """
        kind = JobKind(kind)

        with tracer.start_as_current_span("catalog.push_result") as span:
            span.set_attribute("job.kind", kind.value)

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if kind is JobKind.TEXT_OPTIMIZATION:
                    product_id = payload["product_id"]
                    response = await client.patch(
                        f"{self.base_url}/products/{product_id}",
                        headers=self._headers(tenant_id),
                        json={"product": build_product_update(payload["attribute"], result["after"])},
                    )
                    response.raise_for_status()
                    return product_id

                if kind is JobKind.IMAGE_OPTIMIZATION:
                    product_id = payload["product_id"]
                    response = await client.post(
                        f"{self.base_url}/products/{product_id}/media",
                        headers=self._headers(tenant_id),
                        json={
                            "url": result["image_url"],
                            "replaceMediaId": payload.get("media_id"),
                        },
                    )
                    response.raise_for_status()
                    return product_id

                response = await client.post(
                    f"{self.base_url}/blog/draft-posts",
                    headers=self._headers(tenant_id),
                    json={
                        "draftPost": {
                            "title": result["title"],
                            "content": result["content"],
                        },
                        "publish": True,
                    },
                )
                response.raise_for_status()
                post = response.json().get("draftPost", {})

        logger.info("Published blog post %s", post.get("id"))
        return post.get("id", "")

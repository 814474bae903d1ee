# src/contentops/services/providers/text_optimizer.py

"""
Synchronous text optimization.

Reads the product's current attribute value from the catalog and asks Claude
for an optimized replacement. Fast enough to run inside one worker step, so
items of this kind skip the PROCESSING state.
"""

from __future__ import annotations

import logging

import anthropic
from opentelemetry import trace

from contentops import config
from contentops.errors import GenerationFailure
from contentops.services.providers.catalog_client import CatalogClient, extract_attribute_value

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_OUTPUT_TOKENS = 1000


class TextOptimizer:

    def __init__(self, catalog: CatalogClient, client: anthropic.AsyncAnthropic | None = None):
        self.catalog = catalog
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not config.ANTHROPIC_API_KEY:
                raise GenerationFailure("ANTHROPIC_API_KEY not configured")
            self._client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
        return self._client

    async def process(self, payload: dict) -> dict:
        """
        Returns ``{"before": ..., "after": ...}`` for one product attribute.
        """
        attribute = payload["attribute"]

        with tracer.start_as_current_span("provider.optimize_text") as span:
            span.set_attribute("product_id", payload["product_id"])
            span.set_attribute("attribute", attribute)

            product = await self.catalog.get_product(payload["product_id"], payload.get("tenant_id"))
            before = extract_attribute_value(product, attribute)

            prompt = build_optimization_prompt(
                product_title=product.get("name") or "Untitled Product",
                attribute=attribute,
                before_value=before,
                target_lang=payload.get("target_lang", "en"),
                user_prompt=payload.get("user_prompt", ""),
            )

            try:
                message = await self.client.messages.create(
                    model=config.ANTHROPIC_MODEL,
                    max_tokens=MAX_OUTPUT_TOKENS,
                    messages=[{"role": "user", "content": prompt}],
                )
            except anthropic.APIError as e:
                raise GenerationFailure(f"Text optimization failed: {e}") from e

            after = message.content[0].text.strip() if message.content else ""
            if not after:
                raise GenerationFailure("Model returned an empty response")

            span.set_attribute("result.length", len(after))

        return {"before": before, "after": after}


def build_optimization_prompt(
    *,
    product_title: str,
    attribute: str,
    before_value: str,
    target_lang: str,
    user_prompt: str,
) -> str:
    guidance = {
        "name": "a concise, compelling product name (max 80 characters)",
        "description": "a persuasive product description of 2-4 short paragraphs",
        "seoTitle": "an SEO page title under 60 characters",
        "seoDescription": "an SEO meta description under 160 characters",
    }.get(attribute, f"an improved {attribute}")

    prompt = f"""You are optimizing e-commerce product content.

Product: {product_title}
Field: {attribute}
Current value:
{before_value or "(empty)"}

Write {guidance} in language "{target_lang}".
"""
    if user_prompt:
        prompt += f"\nAdditional instructions from the store owner:\n{user_prompt}\n"

    prompt += "\nReturn only the new value, with no quotes or commentary.\n"
    return prompt

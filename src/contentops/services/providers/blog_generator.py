"""
Blog post generation over the Anthropic Message Batches API.

Each blog item is one batch with a single request. Batches finish within
minutes to hours, which is why blog items go through PROCESSING and are
picked up later by the poll sweep.
"""

from __future__ import annotations

import json
import logging

import anthropic
from opentelemetry import trace

from contentops import config
from contentops.errors import GenerationFailure
from contentops.services.providers.base import PollResult, PollStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_OUTPUT_TOKENS = 4000


def build_blog_prompt(payload: dict) -> str:
    idea = payload.get("idea") or payload.get("title") or "a topic relevant to the store's products"
    target_lang = payload.get("target_lang", "en")

    prompt = f"""Write a blog post for an online store.

Topic: {idea}
Language: {target_lang}
"""
    if payload.get("product_name"):
        prompt += f"Feature this product: {payload['product_name']}\n"
    if payload.get("user_prompt"):
        prompt += f"\nAdditional instructions:\n{payload['user_prompt']}\n"

    prompt += """
Respond with JSON only, in this shape:
{"title": "...", "content": "... HTML body ..."}
"""
    return prompt


def parse_blog_output(text: str) -> dict:
    """Extract ``{"title", "content"}`` from the model's reply."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Model ignored the format: first line as title, rest as body
        title, _, body = text.strip().partition("\n")
        return {"title": title.lstrip("# ").strip(), "content": body.strip()}

    if not data.get("title") or not data.get("content"):
        raise GenerationFailure("Blog output is missing title or content")
    return {"title": data["title"], "content": data["content"]}


class AnthropicBlogGenerator:

    def __init__(self, client: anthropic.AsyncAnthropic | None = None):
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not config.ANTHROPIC_API_KEY:
                raise GenerationFailure("ANTHROPIC_API_KEY not configured")
            self._client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
        return self._client

    async def submit(self, payload: dict) -> str:
        with tracer.start_as_current_span("provider.blog.submit"):
            try:
                batch = await self.client.messages.batches.create(
                    requests=[
                        {
                            "custom_id": "blog",
                            "params": {
                                "model": config.ANTHROPIC_MODEL,
                                "max_tokens": MAX_OUTPUT_TOKENS,
                                "messages": [
                                    {"role": "user", "content": build_blog_prompt(payload)}
                                ],
                            },
                        }
                    ]
                )
            except anthropic.APIError as e:
                raise GenerationFailure(f"Blog batch submission failed: {e}") from e

        logger.info("Submitted blog batch %s", batch.id)
        return batch.id

    async def poll(self, correlation_id: str) -> PollResult:
        with tracer.start_as_current_span("provider.blog.poll") as span:
            span.set_attribute("batch_id", correlation_id)

            batch = await self.client.messages.batches.retrieve(correlation_id)
            span.set_attribute("batch_status", batch.processing_status)

            if batch.processing_status != "ended":
                return PollResult(status=PollStatus.RUNNING)

            async for entry in await self.client.messages.batches.results(correlation_id):
                result = entry.result
                if result.type != "succeeded":
                    return PollResult(status=PollStatus.FAILED, error=f"Batch request {result.type}")

                content = result.message.content
                text = content[0].text if content else ""
                try:
                    return PollResult(status=PollStatus.SUCCEEDED, result=parse_blog_output(text))
                except GenerationFailure as e:
                    return PollResult(status=PollStatus.FAILED, error=str(e))

        return PollResult(status=PollStatus.FAILED, error="Batch ended without results")

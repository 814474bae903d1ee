"""
Image optimization over the Replicate predictions HTTP API.

submit() starts a prediction and returns its id; poll() maps Replicate's
prediction status onto PollResult.
"""

import logging

import httpx
from opentelemetry import trace

from contentops import config
from contentops.errors import GenerationFailure
from contentops.services.providers.base import PollResult, PollStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_RUNNING = ("starting", "processing")
_FAILED = ("failed", "canceled")

DEFAULT_PROMPT = (
    "Enhance this product photo for an online store: clean background, "
    "even lighting, sharp focus. Keep the product itself unchanged."
)


class ReplicateImageGenerator:

    def __init__(
        self,
        api_url: str | None = None,
        token: str | None = None,
        model: str | None = None,
        timeout: float = 30.0,
    ):
        self.api_url = (api_url or config.REPLICATE_API_URL).rstrip("/")
        self.token = token if token is not None else config.REPLICATE_API_TOKEN
        self.model = model or config.REPLICATE_MODEL
        self.timeout = timeout

    def _headers(self) -> dict:
        if not self.token:
            raise GenerationFailure("REPLICATE_API_TOKEN not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def submit(self, payload: dict) -> str:
        image_url = payload.get("image_url")
        if not image_url:
            raise GenerationFailure("Image item has no source image_url")

        prompt = payload.get("user_prompt") or DEFAULT_PROMPT

        with tracer.start_as_current_span("provider.image.submit") as span:
            span.set_attribute("product_id", payload.get("product_id", ""))

            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.api_url}/models/{self.model}/predictions",
                        headers=self._headers(),
                        json={
                            "input": {
                                "prompt": prompt,
                                "image_input": [image_url],
                                "aspect_ratio": payload.get("aspect_ratio", "match_input_image"),
                                "output_format": "jpg",
                            }
                        },
                    )
                    response.raise_for_status()
                    prediction = response.json()
            except httpx.HTTPStatusError as e:
                raise GenerationFailure(
                    f"Replicate HTTP {e.response.status_code}: {e.response.text[:200]}"
                ) from e
            except httpx.HTTPError as e:
                raise GenerationFailure(f"Replicate request failed: {e}") from e

            prediction_id = prediction.get("id")
            if not prediction_id:
                raise GenerationFailure("Replicate returned no prediction id")

            span.set_attribute("prediction_id", prediction_id)

        logger.info("Submitted image prediction %s", prediction_id)
        return prediction_id

    async def poll(self, correlation_id: str) -> PollResult:
        with tracer.start_as_current_span("provider.image.poll") as span:
            span.set_attribute("prediction_id", correlation_id)

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.api_url}/predictions/{correlation_id}",
                    headers=self._headers(),
                )
                response.raise_for_status()
                prediction = response.json()

            status = prediction.get("status")
            span.set_attribute("prediction_status", status or "")

        if status in _RUNNING:
            return PollResult(status=PollStatus.RUNNING)

        if status == "succeeded":
            output = prediction.get("output")
            image_url = output[0] if isinstance(output, list) and output else output
            if not image_url:
                return PollResult(status=PollStatus.FAILED, error="Prediction succeeded without output")
            return PollResult(status=PollStatus.SUCCEEDED, result={"image_url": image_url})

        if status in _FAILED:
            return PollResult(
                status=PollStatus.FAILED,
                error=prediction.get("error") or f"Prediction {status}",
            )

        logger.warning("Unknown prediction status %r for %s", status, correlation_id)
        return PollResult(status=PollStatus.RUNNING)

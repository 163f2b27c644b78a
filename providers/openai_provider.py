"""
OpenAI vision provider — gpt-4o-mini / gpt-4o prompted to return labels.

Pricing (as of early 2025):
  gpt-4o:       $5.00 / 1M input tokens,  $15.00 / 1M output tokens
  gpt-4o-mini:  $0.15 / 1M input tokens,  $0.60 / 1M output tokens
  Low-detail images are a flat 85 tokens, plenty for labelling.
"""
from __future__ import annotations

import base64
import logging
import time

import openai
from openai import AsyncOpenAI

from providers.base import (
    SYSTEM_PROMPT, USER_PROMPT,
    LabelDetectionError, LabelDetectionTransientError, LabelProvider, LabelResult,
    detect_mime, normalise_labels, parse_json_response,
)

logger = logging.getLogger(__name__)

_LOW_DETAIL_IMAGE_TOKENS = 85

_PRICING = {
    # model: ($/1k_input, $/1k_output)
    "gpt-4o":      (0.005,   0.015),
    "gpt-4o-mini": (0.00015, 0.0006),
}


class OpenAIProvider(LabelProvider):

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.name = "openai"
        self.model_id = model
        self._client = AsyncOpenAI(api_key=api_key)
        self._in_rate, self._out_rate = _PRICING.get(model, _PRICING["gpt-4o"])
        self.cost_per_image = _LOW_DETAIL_IMAGE_TOKENS / 1000 * self._in_rate

    async def detect_labels(self, image_bytes: bytes) -> LabelResult:
        b64 = base64.b64encode(image_bytes).decode()
        mime = detect_mime(image_bytes)
        t0 = time.monotonic()

        try:
            response = await self._client.chat.completions.create(
                model=self.model_id,
                max_tokens=200,
                temperature=0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime};base64,{b64}", "detail": "low"},
                            },
                            {"type": "text", "text": USER_PROMPT},
                        ],
                    },
                ],
            )
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as exc:
            # APITimeoutError is a subclass of APIConnectionError
            raise LabelDetectionTransientError(f"[{self.full_name}] {exc}") from exc
        except openai.APIError as exc:
            raise LabelDetectionError(f"[{self.full_name}] {exc}") from exc

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = response.choices[0].message.content
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 300
        output_tokens = usage.completion_tokens if usage else 60

        data = parse_json_response(raw, self.full_name)
        return LabelResult(
            provider_name=self.full_name,
            labels=normalise_labels(data.get("labels")),
            latency_ms=latency_ms,
            cost_usd=input_tokens / 1000 * self._in_rate + output_tokens / 1000 * self._out_rate,
        )

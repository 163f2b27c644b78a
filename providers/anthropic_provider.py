"""
Anthropic vision provider — claude-3-haiku prompted to return labels.

Pricing (as of early 2025):
  claude-3-haiku-20240307:    $0.25 / 1M input,  $1.25  / 1M output
  claude-3-5-sonnet-20241022: $3.00 / 1M input,  $15.00 / 1M output
  Images: ~1600 tokens per standard product photo
"""
from __future__ import annotations

import base64
import logging
import time

import anthropic

from providers.base import (
    SYSTEM_PROMPT, USER_PROMPT,
    LabelDetectionError, LabelDetectionTransientError, LabelProvider, LabelResult,
    detect_mime, normalise_labels, parse_json_response,
)

logger = logging.getLogger(__name__)

_ANTHROPIC_IMAGE_TOKENS = 1600  # approximate tokens per image for Claude


class AnthropicProvider(LabelProvider):

    def __init__(self, api_key: str, model: str = "claude-3-haiku-20240307"):
        self.name = "anthropic"
        self.model_id = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

        _pricing = {
            "claude-3-haiku-20240307":    (0.00025, 0.00125),
            "claude-3-5-sonnet-20241022": (0.003,   0.015),
        }
        self._in_rate, self._out_rate = _pricing.get(model, (0.003, 0.015))
        self.cost_per_image = _ANTHROPIC_IMAGE_TOKENS / 1000 * self._in_rate

    async def detect_labels(self, image_bytes: bytes) -> LabelResult:
        b64 = base64.b64encode(image_bytes).decode()
        t0 = time.monotonic()

        try:
            message = await self._client.messages.create(
                model=self.model_id,
                max_tokens=200,
                system=SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": detect_mime(image_bytes),
                                    "data": b64,
                                },
                            },
                            {"type": "text", "text": USER_PROMPT},
                        ],
                    }
                ],
            )
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as exc:
            raise LabelDetectionTransientError(f"[{self.full_name}] {exc}") from exc
        except anthropic.APIError as exc:
            raise LabelDetectionError(f"[{self.full_name}] {exc}") from exc

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = message.content[0].text
        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens

        data = parse_json_response(raw, self.full_name)
        return LabelResult(
            provider_name=self.full_name,
            labels=normalise_labels(data.get("labels")),
            latency_ms=latency_ms,
            cost_usd=input_tokens / 1000 * self._in_rate + output_tokens / 1000 * self._out_rate,
        )

"""
Google Gemini vision provider — uses the google-genai SDK (v1 API).

Pricing (as of early 2025):
  gemini-2.0-flash:      $0.10  / 1M input,  $0.40 / 1M output,  $0.00004 / image
  gemini-1.5-flash:      $0.075 / 1M input,  $0.30 / 1M output,  $0.00002 / image
  gemini-2.0-flash-lite: $0.075 / 1M input,  $0.30 / 1M output,  $0.00002 / image

By far the cheapest way to label thousands of catalog photos.
"""
from __future__ import annotations

import logging
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from providers.base import (
    SYSTEM_PROMPT, USER_PROMPT,
    LabelDetectionError, LabelDetectionTransientError, LabelProvider, LabelResult,
    detect_mime, normalise_labels, parse_json_response,
)

logger = logging.getLogger(__name__)

_PRICING: dict[str, tuple[float, float, float]] = {
    # model_id: ($/1k_input_tokens, $/1k_output_tokens, $/image)
    "gemini-1.5-flash":      (0.000075, 0.0003, 0.00002),
    "gemini-2.0-flash":      (0.0001,   0.0004, 0.00004),
    "gemini-2.0-flash-lite": (0.000075, 0.0003, 0.00002),
}


class GeminiProvider(LabelProvider):

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        self.name     = "google"
        self.model_id = model
        # Force v1 (stable) API: v1beta doesn't expose gemini-1.5-* by bare name
        self._client  = genai.Client(api_key=api_key, http_options={"api_version": "v1"})

        rates = _PRICING.get(model, _PRICING["gemini-2.0-flash"])
        self._in_rate, self._out_rate, self.cost_per_image = rates

    async def detect_labels(self, image_bytes: bytes) -> LabelResult:
        gen_config = genai_types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            temperature=0,
            max_output_tokens=200,
        )

        t0 = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model_id,
                contents=[
                    genai_types.Part.from_bytes(data=image_bytes, mime_type=detect_mime(image_bytes)),
                    USER_PROMPT,
                ],
                config=gen_config,
            )
        except genai_errors.ServerError as exc:
            raise LabelDetectionTransientError(f"[{self.full_name}] {exc}") from exc
        except genai_errors.ClientError as exc:
            if getattr(exc, "code", None) == 429:
                raise LabelDetectionTransientError(f"[{self.full_name}] {exc}", status=429) from exc
            raise LabelDetectionError(f"[{self.full_name}] {exc}") from exc

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = response.text

        usage         = response.usage_metadata
        input_tokens  = getattr(usage, "prompt_token_count",     None) or 300
        output_tokens = getattr(usage, "candidates_token_count", None) or 60

        data = parse_json_response(raw, self.full_name)
        return LabelResult(
            provider_name = self.full_name,
            labels        = normalise_labels(data.get("labels")),
            latency_ms    = latency_ms,
            cost_usd      = (
                self.cost_per_image
                + input_tokens / 1000 * self._in_rate
                + output_tokens / 1000 * self._out_rate
            ),
        )

"""
Google Cloud Vision label detection — the purpose-built label service.

REST endpoint (API key auth, no SDK needed):
  POST https://vision.googleapis.com/v1/images:annotate?key=API_KEY
  {"requests": [{"image": {"content": "<base64>"},
                 "features": [{"type": "LABEL_DETECTION", "maxResults": 15}]}]}

Response:
  {"responses": [{"labelAnnotations": [{"description": "Blanket", "score": 0.93}, ...]}]}
  Per-image failures come back as responses[0].error with a gRPC code.

Pricing: first 1,000 units/month free, then $1.50 / 1,000 images.
"""
from __future__ import annotations

import base64
import logging
import time

import aiohttp

from providers.base import (
    MAX_LABELS,
    LabelDetectionError,
    LabelDetectionTransientError,
    LabelProvider,
    LabelResult,
    normalise_labels,
)
from retry import is_transient_status

logger = logging.getLogger(__name__)

ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"

# gRPC codes: RESOURCE_EXHAUSTED, UNAVAILABLE, DEADLINE_EXCEEDED, INTERNAL
_TRANSIENT_GRPC_CODES = {8, 14, 4, 13}


class GoogleVisionProvider(LabelProvider):

    def __init__(self, api_key: str, timeout: float = 15) -> None:
        self.name = "google"
        self.model_id = "vision"
        self.cost_per_image = 0.0015
        self._key = api_key
        self._timeout = timeout

    async def detect_labels(self, image_bytes: bytes) -> LabelResult:
        payload = {
            "requests": [{
                "image":    {"content": base64.b64encode(image_bytes).decode()},
                "features": [{"type": "LABEL_DETECTION", "maxResults": MAX_LABELS}],
            }]
        }
        t0 = time.monotonic()

        async with aiohttp.ClientSession() as session:
            async with session.post(
                ANNOTATE_URL,
                params={"key": self._key},
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    message = f"Vision API error {resp.status}: {text[:200]}"
                    if is_transient_status(resp.status):
                        raise LabelDetectionTransientError(message, status=resp.status)
                    raise LabelDetectionError(message)
                data = await resp.json()

        latency_ms = int((time.monotonic() - t0) * 1000)
        response = (data.get("responses") or [{}])[0]

        error = response.get("error")
        if error:
            message = f"Vision API image error {error.get('code')}: {error.get('message', '')}"
            if error.get("code") in _TRANSIENT_GRPC_CODES:
                raise LabelDetectionTransientError(message)
            raise LabelDetectionError(message)

        annotations = response.get("labelAnnotations") or []
        labels = normalise_labels([a.get("description") for a in annotations])
        best: dict[str, float] = {}
        for a in annotations:
            label = str(a.get("description") or "").strip().lower()
            best.setdefault(label, float(a.get("score") or 0))
        scores = [best.get(label, 0.0) for label in labels]

        return LabelResult(
            provider_name=self.full_name,
            labels=labels,
            scores=scores,
            latency_ms=latency_ms,
            cost_usd=self.cost_per_image,
        )

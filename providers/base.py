"""
Shared types and base class for all label detection providers.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from retry import TransientError

logger = logging.getLogger(__name__)

# ── Prompt (shared across the LLM vision providers) ───────────────────────────

SYSTEM_PROMPT = """You are an image labelling assistant for an e-commerce catalog.
Look at the product photo and return ONLY a valid JSON object — no markdown, no prose.

JSON schema:
{
  "labels": ["up to 15 short lower-case labels, most prominent first"]
}

Rules:
- Labels are generic object / material / category words, e.g. "blanket",
  "textile", "fleece", "dog", "lamp", "furniture"
- Include the main product first, then materials, then setting
- No brand names, no sentences
"""

USER_PROMPT = "Label this product photo and return the JSON."

MAX_LABELS = 15


# ── Errors ────────────────────────────────────────────────────────────────────

class LabelDetectionError(RuntimeError):
    """The provider rejected the image or returned something unusable."""


class LabelDetectionTransientError(LabelDetectionError, TransientError):
    """Rate limited / overloaded / unreachable — worth retrying."""

    def __init__(self, message: str, status: int | None = None) -> None:
        TransientError.__init__(self, message, status)


# ── Shared result type ────────────────────────────────────────────────────────

@dataclass
class LabelResult:
    """Result from a single label provider."""
    provider_name: str          # e.g. "google/vision"
    labels: list[str]           # lower-case, most prominent first
    scores: list[float] = field(default_factory=list)   # parallel to labels when known
    latency_ms: int = 0
    cost_usd: float = 0.0

    @property
    def cost_str(self) -> str:
        if self.cost_usd < 0.001:
            return f"${self.cost_usd * 1000:.3f}m"   # show in milli-dollars
        return f"${self.cost_usd:.4f}"


def parse_json_response(raw: str, provider_name: str) -> dict:
    """
    Parse JSON from a model response, handling markdown fences gracefully.
    Raises LabelDetectionError on parse failure.
    """
    text = (raw or "").strip()
    # Strip ```json ... ``` or ``` ... ``` fences if present
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", provider_name, (raw or "")[:300])
        raise LabelDetectionError(f"[{provider_name}] JSON parse error: {exc}") from exc


def normalise_labels(raw_labels) -> list[str]:
    """Lower-case, strip, de-duplicate (keeping rank order), cap at MAX_LABELS."""
    seen: list[str] = []
    for label in raw_labels or []:
        if not isinstance(label, str):
            continue
        cleaned = label.strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen[:MAX_LABELS]


def detect_mime(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"


# ── Abstract base ─────────────────────────────────────────────────────────────

class LabelProvider(ABC):
    """Base class all label providers must implement."""

    name: str           # e.g. "openai"
    model_id: str       # e.g. "gpt-4o-mini"
    cost_per_image: float = 0.0

    @abstractmethod
    async def detect_labels(self, image_bytes: bytes) -> LabelResult:
        """Return ranked labels for image_bytes."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

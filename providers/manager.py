"""
Provider Manager — initialises and runs the enabled label providers.
Keys are read from config on first use; reset_providers() drops the cache so a
changed key takes effect on the next call.

Modes (config.LABEL_MODE):
  cheapest  — run only the cheapest available provider (default)
  merge     — run all enabled providers in parallel and union their labels
  single:X  — run only provider named X (e.g. "single:google/vision")

Per-model enable/disable via environment variables (all default to true):
  ENABLE_GOOGLE_VISION=true/false
  ENABLE_GPT_4O_MINI=true/false
  ENABLE_CLAUDE_3_HAIKU_20240307=true/false
  ENABLE_GEMINI_2_0_FLASH=true/false
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import config
from providers.base import LabelProvider, LabelResult, normalise_labels

logger = logging.getLogger(__name__)

# Module-level cache, reset with reset_providers() when a key changes
_providers: dict[str, LabelProvider] = {}


class NoProvidersError(RuntimeError):
    """No label provider is configured — the image stage cannot run."""


def _model_enabled(env_key: str, default: bool = True) -> bool:
    """
    Check whether a specific model is enabled via an environment variable.
    Default is True for most models; pass default=False to require explicit opt-in.
    """
    raw = os.getenv(env_key, "true" if default else "false")
    return raw.strip().lower() not in ("false", "0", "no")


def _build_providers() -> dict[str, LabelProvider]:
    """
    Instantiate every provider whose API key is configured AND whose
    per-model toggle is enabled. Returns dict keyed by full_name.
    """
    providers: dict[str, LabelProvider] = {}

    # ── Google Cloud Vision (dedicated label detection) ───────────────────────
    if config.GOOGLE_VISION_API_KEY:
        if _model_enabled("ENABLE_GOOGLE_VISION"):
            from providers.google_vision_provider import GoogleVisionProvider
            p = GoogleVisionProvider(config.GOOGLE_VISION_API_KEY)
            providers[p.full_name] = p
            logger.info("Loaded provider: %s", p.full_name)
        else:
            logger.info("Skipped provider google/vision (disabled by ENABLE_GOOGLE_VISION)")

    # ── OpenAI ────────────────────────────────────────────────────────────────
    if config.OPENAI_API_KEY:
        from providers.openai_provider import OpenAIProvider
        for model, env_flag, default_on in [
            ("gpt-4o-mini", "ENABLE_GPT_4O_MINI", True),
            # Overkill for labelling; opt-in only
            ("gpt-4o",      "ENABLE_GPT_4O",      False),
        ]:
            if _model_enabled(env_flag, default=default_on):
                p = OpenAIProvider(config.OPENAI_API_KEY, model)
                providers[p.full_name] = p
                logger.info("Loaded provider: %s", p.full_name)
            else:
                logger.info("Skipped provider openai/%s (disabled by %s)", model, env_flag)

    # ── Anthropic ─────────────────────────────────────────────────────────────
    if config.ANTHROPIC_API_KEY:
        if _model_enabled("ENABLE_CLAUDE_3_HAIKU_20240307"):
            from providers.anthropic_provider import AnthropicProvider
            p = AnthropicProvider(config.ANTHROPIC_API_KEY, "claude-3-haiku-20240307")
            providers[p.full_name] = p
            logger.info("Loaded provider: %s", p.full_name)
        else:
            logger.info("Skipped provider anthropic/claude-3-haiku (disabled)")

    # ── Google Gemini ─────────────────────────────────────────────────────────
    if config.GOOGLE_API_KEY:
        from providers.gemini_provider import GeminiProvider
        for model, env_flag in [
            ("gemini-2.0-flash",      "ENABLE_GEMINI_2_0_FLASH"),
            ("gemini-2.0-flash-lite", "ENABLE_GEMINI_2_0_FLASH_LITE"),
        ]:
            if _model_enabled(env_flag):
                p = GeminiProvider(config.GOOGLE_API_KEY, model)
                providers[p.full_name] = p
                logger.info("Loaded provider: %s", p.full_name)
            else:
                logger.info("Skipped provider google/%s (disabled by %s)", model, env_flag)

    if not providers:
        raise NoProvidersError(
            "No label providers available. Set at least one of "
            "GOOGLE_VISION_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY or GOOGLE_API_KEY."
        )

    return providers


def get_providers() -> dict[str, LabelProvider]:
    global _providers
    if not _providers:
        _providers = _build_providers()
    return _providers


def reset_providers() -> None:
    global _providers
    _providers = {}


def cheapest_provider() -> LabelProvider:
    return min(get_providers().values(), key=lambda p: p.cost_per_image)


# ── Core detection function ───────────────────────────────────────────────────

async def detect_labels(image_bytes: bytes, mode: Optional[str] = None) -> LabelResult:
    """
    Run label detection using the requested mode.

    Raises NoProvidersError when nothing is configured, and the provider's own
    error when a single-provider mode fails. In merge mode the call only fails
    when every provider fails; the first error is re-raised.
    """
    mode = mode or config.LABEL_MODE
    providers = get_providers()

    if mode.startswith("single:"):
        name = mode[len("single:"):]
        if name not in providers:
            available = ", ".join(providers)
            raise NoProvidersError(f"Provider '{name}' not available. Available: {available}")
        return await providers[name].detect_labels(image_bytes)

    if mode != "merge":
        return await cheapest_provider().detect_labels(image_bytes)

    targets = list(providers.values())
    raw_results = await asyncio.gather(
        *[p.detect_labels(image_bytes) for p in targets],
        return_exceptions=True,
    )

    results: list[LabelResult] = []
    errors: list[BaseException] = []
    for provider, outcome in zip(targets, raw_results):
        if isinstance(outcome, BaseException):
            logger.error("[%s] Failed: %s", provider.full_name, outcome)
            errors.append(outcome)
        else:
            results.append(outcome)

    if not results:
        raise errors[0]

    return LabelResult(
        provider_name="+".join(r.provider_name for r in results),
        labels=normalise_labels([label for r in results for label in r.labels]),
        latency_ms=max(r.latency_ms for r in results),
        cost_usd=sum(r.cost_usd for r in results),
    )

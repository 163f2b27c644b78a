"""
image_classifier.py — does the product photo actually show what was searched?

For one item:
  1. download the image (IMAGE_DOWNLOAD_TIMEOUT)
  2. send it to the label detector (providers/manager.py)
  3. compare the labels with the keyword's expected set
     (keyword tokens ∪ their expansions from keyword_expansion.py)

Matching is fuzzy: a label passes when it contains, or is contained in, any
expected entry ("polar fleece" ~ "fleece", "textile" ~ "textiles"), or when a
keyword token appears inside a label.

Errors never drop an item:
  • no provider configured            → pass
  • transient error after all retries → pass
  • anything else (404 image, bad data) → pass, with the error recorded
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

import aiohttp

import config
from keyword_expansion import expected_labels, keyword_tokens
from providers import manager
from providers.base import LabelResult
from retry import TransientError, is_transient, is_transient_status, retry_with_backoff

logger = logging.getLogger(__name__)

LabelDetector = Callable[[bytes], Awaitable[LabelResult]]

_MAX_IMAGE_BYTES = 10 * 1024 * 1024     # Vision API request limit is ~10 MB


class ImageDownloadError(RuntimeError):
    """The image URL is broken or not an image."""


class ImageDownloadTransientError(ImageDownloadError, TransientError):

    def __init__(self, message: str, status: int | None = None) -> None:
        TransientError.__init__(self, message, status)


@dataclass
class Classification:
    passed: bool
    labels: list[str] = field(default_factory=list)
    error: Optional[str] = None         # set when we passed the item because of a failure

    @property
    def fail_open(self) -> bool:
        return self.error is not None


def labels_match(labels: Iterable[str], keyword: str) -> bool:
    """Two-way fuzzy containment between detected labels and the expected set."""
    expected = expected_labels(keyword)
    tokens = keyword_tokens(keyword)
    for label in labels:
        label = label.lower().strip()
        if not label:
            continue
        if any(token in label for token in tokens):
            return True
        if any(label in entry or entry in label for entry in expected):
            return True
    return False


async def _default_detector(image_bytes: bytes) -> LabelResult:
    return await manager.detect_labels(image_bytes)


class ImageClassifier:

    def __init__(
        self,
        detector: Optional[LabelDetector] = None,
        *,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        download_timeout: Optional[float] = None,
    ) -> None:
        self._detect = detector or _default_detector
        self._attempts = config.RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self._base_delay = config.RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self._download_timeout = (
            config.IMAGE_DOWNLOAD_TIMEOUT if download_timeout is None else download_timeout
        )

    async def is_relevant(self, image_url: str, keyword: str) -> bool:
        return (await self.classify(image_url, keyword)).passed

    async def classify(self, image_url: str, keyword: str) -> Classification:
        try:
            result = await retry_with_backoff(
                lambda: self._download_and_detect(image_url),
                attempts=self._attempts,
                base_delay=self._base_delay,
                label=f"classify {image_url[:80]}",
            )
        except manager.NoProvidersError as exc:
            logger.debug("Label detection unavailable, passing item: %s", exc)
            return Classification(passed=True, error=f"unavailable: {exc}")
        except Exception as exc:
            kind = "transient" if is_transient(exc) else "error"
            logger.warning("Image check failed (%s) for %s — passing item: %s", kind, image_url, exc)
            return Classification(passed=True, error=f"{kind}: {exc or type(exc).__name__}")

        passed = labels_match(result.labels, keyword)
        logger.debug(
            "'%s' %s → %s %s via %s (%s)",
            keyword, image_url, "PASS" if passed else "FAIL", result.labels,
            result.provider_name, result.cost_str,
        )
        return Classification(passed=passed, labels=list(result.labels))

    async def _download_and_detect(self, image_url: str) -> LabelResult:
        image_bytes = await self._download(image_url)
        return await self._detect(image_bytes)

    async def _download(self, image_url: str) -> bytes:
        if not image_url or not image_url.startswith(("http://", "https://")):
            raise ImageDownloadError(f"not an http(s) URL: {image_url!r}")

        async with aiohttp.ClientSession() as session:
            async with session.get(
                image_url,
                timeout=aiohttp.ClientTimeout(total=self._download_timeout),
            ) as resp:
                if resp.status != 200:
                    message = f"image download HTTP {resp.status}"
                    if is_transient_status(resp.status):
                        raise ImageDownloadTransientError(message, status=resp.status)
                    raise ImageDownloadError(message)
                data = await resp.read()

        if not data:
            raise ImageDownloadError("empty image body")
        if len(data) > _MAX_IMAGE_BYTES:
            raise ImageDownloadError(f"image too large ({len(data)} bytes)")
        return data

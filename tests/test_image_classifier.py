"""
Tests for image_classifier.py.

Covers:
  - labels_match(): token containment and two-way fuzzy expansion matching
  - classify(): pass / fail on labels
  - fail-open: no providers, transient errors after retries, hard errors
  - image download errors (HTTP status, bad URL, empty body)
"""
from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from image_classifier import Classification, ImageClassifier, labels_match
from providers.base import LabelDetectionError, LabelDetectionTransientError, LabelResult
from providers.manager import NoProvidersError

IMAGE_URL = "https://cc-west-usa.oss.cjdropshipping.com/blanket.jpg"


def make_result(labels: list[str]) -> LabelResult:
    return LabelResult(provider_name="google/vision", labels=labels)


def fake_session(status: int = 200, data: bytes = b"\xff\xd8\xff fake jpeg"):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.read = AsyncMock(return_value=data)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.get = MagicMock(return_value=mock_resp)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


def make_classifier(detector, attempts: int = 3) -> ImageClassifier:
    return ImageClassifier(detector, retry_attempts=attempts, retry_base_delay=0, download_timeout=5)


# ── labels_match ──────────────────────────────────────────────────────────────

class TestLabelsMatch:
    def test_expansion_label(self):
        # photos of blankets rarely come back labelled "blanket"
        assert labels_match(["textile", "comfort"], "sherpa blanket") is True

    def test_token_inside_label(self):
        assert labels_match(["sherpa jacket"], "sherpa blanket") is True

    def test_label_inside_expected_entry(self):
        assert labels_match(["bed"], "sherpa blanket") is True     # "bed" ⊂ "bedding"

    def test_expected_entry_inside_label(self):
        assert labels_match(["polar fleece"], "sherpa blanket") is True

    def test_unrelated_labels(self):
        assert labels_match(["car", "wheel", "tire"], "sherpa blanket") is False

    def test_empty_labels(self):
        assert labels_match([], "sherpa blanket") is False

    def test_case_and_whitespace(self):
        assert labels_match(["  Textile "], "blanket") is True

    def test_blank_labels_ignored(self):
        assert labels_match(["", "  "], "blanket") is False


# ── classify ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClassify:
    async def test_pass(self):
        detector = AsyncMock(return_value=make_result(["textile", "bed"]))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert verdict == Classification(passed=True, labels=["textile", "bed"])
        assert verdict.fail_open is False
        detector.assert_awaited_once_with(b"\xff\xd8\xff fake jpeg")

    async def test_fail(self):
        detector = AsyncMock(return_value=make_result(["car", "wheel"]))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert verdict.passed is False
        assert verdict.error is None
        assert verdict.labels == ["car", "wheel"]

    async def test_verdict_logged_with_provider_cost(self, caplog):
        result = LabelResult(provider_name="google/vision", labels=["textile"], cost_usd=0.0015)
        detector = AsyncMock(return_value=result)
        with caplog.at_level(logging.DEBUG, logger="image_classifier"):
            with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
                await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert "PASS" in caplog.text
        assert f"via google/vision ({result.cost_str})" in caplog.text

    async def test_is_relevant(self):
        detector = AsyncMock(return_value=make_result(["car"]))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            assert await make_classifier(detector).is_relevant(IMAGE_URL, "sherpa blanket") is False

    async def test_no_providers_fails_open(self):
        detector = AsyncMock(side_effect=NoProvidersError("no keys"))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert verdict.passed is True
        assert verdict.error.startswith("unavailable")
        assert detector.await_count == 1

    async def test_transient_errors_retried_then_fail_open(self):
        detector = AsyncMock(side_effect=LabelDetectionTransientError("429", status=429))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector, attempts=3).classify(IMAGE_URL, "sherpa blanket")

        assert detector.await_count == 3
        assert verdict.passed is True
        assert verdict.error.startswith("transient")

    async def test_transient_then_success(self):
        detector = AsyncMock(side_effect=[
            LabelDetectionTransientError("503", status=503),
            make_result(["car"]),
        ])
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert detector.await_count == 2
        assert verdict.passed is False
        assert verdict.error is None

    async def test_hard_error_not_retried_and_fails_open(self):
        detector = AsyncMock(side_effect=LabelDetectionError("bad image"))
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        assert detector.await_count == 1
        assert verdict.passed is True
        assert verdict.error.startswith("error")

    async def test_image_404_fails_open(self):
        detector = AsyncMock()
        session = fake_session(status=404)
        with patch("image_classifier.aiohttp.ClientSession", return_value=session):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        detector.assert_not_awaited()
        assert session.get.call_count == 1
        assert verdict.passed is True
        assert "404" in verdict.error

    async def test_image_503_retried(self):
        detector = AsyncMock()
        session = fake_session(status=503)
        with patch("image_classifier.aiohttp.ClientSession", return_value=session):
            verdict = await make_classifier(detector, attempts=2).classify(IMAGE_URL, "sherpa blanket")

        assert session.get.call_count == 2
        assert verdict.passed is True
        assert verdict.error.startswith("transient")

    async def test_empty_body_fails_open(self):
        detector = AsyncMock()
        with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session(data=b"")):
            verdict = await make_classifier(detector).classify(IMAGE_URL, "sherpa blanket")

        detector.assert_not_awaited()
        assert verdict.passed is True
        assert verdict.fail_open is True

    async def test_non_http_url_fails_open(self):
        detector = AsyncMock()
        verdict = await make_classifier(detector).classify("ftp://example.com/a.jpg", "lamp")
        assert verdict.passed is True
        assert "http" in verdict.error

    async def test_default_detector_uses_manager(self):
        with patch("image_classifier.manager.detect_labels",
                   new=AsyncMock(return_value=make_result(["lamp"]))) as detect:
            with patch("image_classifier.aiohttp.ClientSession", return_value=fake_session()):
                verdict = await ImageClassifier(retry_base_delay=0).classify(IMAGE_URL, "desk lamp")
        detect.assert_awaited_once()
        assert verdict.passed is True

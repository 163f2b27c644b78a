"""
Tests for web_server.py — the HTTP job-control surface.

Runs the real aiohttp app against an in-memory catalog with
aiohttp.test_utils (no network, ephemeral port).

Covers:
  - /health
  - POST /api/search: success, validation errors, duplicate job id, catalog failure
  - POST /api/batch
  - job cancellation endpoints and GET /api/jobs
  - GET /api/categories
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

from aiohttp import test_utils
import pytest

import config
from batch_scheduler import BatchScheduler
from discovery import DiscoveryPipeline
from fetcher import PaginatedFetcher
from image_classifier import Classification
from jobs import JobRegistry
from search_backends.base import CatalogBackend, CatalogError, CatalogItem, CatalogPage
from web_server import build_web_app

TREE = [{
    "categoryFirstName": "Home & Garden",
    "categoryFirstList": [{
        "categorySecondName": "Home Textile",
        "categorySecondList": [{"categoryId": "C-THROW", "categoryName": "Throw Blankets"}],
    }],
}]


class FakeBackend(CatalogBackend):

    def __init__(self, titles=("Sherpa Throw Blanket", "Garden Hose"), fail_keywords=()) -> None:
        self.titles = list(titles)
        self.fail_keywords = set(fail_keywords)

    @property
    def name(self) -> str:
        return "fake"

    async def search_page(self, keyword, page, page_size, params=None):
        if keyword in self.fail_keywords:
            raise CatalogError("CJ API error 1600001: Invalid token")
        items = [
            CatalogItem(
                pid=f"P{i}", title=title, price=5.0, price_text="5.00",
                image_url=f"https://img/P{i}.jpg", sku="", category_id="", listed_count=0,
            )
            for i, title in enumerate(self.titles)
        ]
        return CatalogPage(page_num=page, page_size=page_size, total=len(items), items=items)

    async def get_categories(self):
        return TREE


class PassAll:
    async def classify(self, image_url: str, keyword: str) -> Classification:
        return Classification(passed=True, labels=["textile"])


def make_app(backend=None, registry=None):
    backend = backend or FakeBackend()
    registry = JobRegistry() if registry is None else registry
    pipeline = DiscoveryPipeline(
        backend,
        registry,
        fetcher=PaginatedFetcher(backend, page_delay=0, retry_base_delay=0),
        scheduler=BatchScheduler(PassAll(), batch_delay=0),
    )
    return build_web_app(pipeline)


@pytest.fixture(autouse=True)
def no_batch_delay(monkeypatch):
    monkeypatch.setattr(config, "BATCH_SEARCH_DELAY", 0)


@pytest.mark.asyncio
class TestHealth:
    async def test_health(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            text = await resp.text()
        assert text.startswith("OK")
        assert "fake" in text
        assert "0 job(s) running" in text


@pytest.mark.asyncio
class TestSearchEndpoint:
    async def test_success(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/search", json={"keyword": "sherpa blanket", "job_id": "web-1"})
            assert resp.status == 200
            data = await resp.json()

        assert data["success"] is True
        assert data["job_id"] == "web-1"
        assert [p["title"] for p in data["products"]] == ["Sherpa Throw Blanket"]
        assert data["stats"]["total_fetched"] == 2
        assert data["stats"]["text_passed"] == 1
        assert data["stats"]["pass_rate"] == "50.0%"

    async def test_unknown_key_rejected(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/search", json={"keyword": "lamp", "sort": "price"})
            assert resp.status == 400
            data = await resp.json()
        assert data["success"] is False
        assert "sort" in data["error"]

    async def test_invalid_json(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/search", data="{oops", headers={"Content-Type": "application/json"})
            assert resp.status == 400

    async def test_bad_job_id(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/search", json={"keyword": "lamp", "job_id": 7})
            assert resp.status == 400

    async def test_duplicate_job_id(self):
        registry = JobRegistry()
        registry.start("busy")
        async with test_utils.TestClient(test_utils.TestServer(make_app(registry=registry))) as client:
            resp = await client.post("/api/search", json={"keyword": "lamp", "job_id": "busy"})
            assert resp.status == 409

    async def test_catalog_failure(self):
        backend = FakeBackend(fail_keywords={"lamp"})
        async with test_utils.TestClient(test_utils.TestServer(make_app(backend=backend))) as client:
            resp = await client.post("/api/search", json={"keyword": "lamp"})
            assert resp.status == 502
            data = await resp.json()
        assert "Invalid token" in data["error"]

    async def test_malformed_first_page_is_502(self):
        backend = FakeBackend()
        backend.search_page = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        async with test_utils.TestClient(test_utils.TestServer(make_app(backend=backend))) as client:
            resp = await client.post("/api/search", json={"keyword": "sherpa"})
            assert resp.status == 502
            data = await resp.json()
        assert data["success"] is False
        assert data["keyword"] == "sherpa"


@pytest.mark.asyncio
class TestBatchEndpoint:
    async def test_batch(self):
        backend = FakeBackend(fail_keywords={"garden hose"})
        async with test_utils.TestClient(test_utils.TestServer(make_app(backend=backend))) as client:
            resp = await client.post("/api/batch", json={"searches": [
                {"keyword": "sherpa blanket"},
                {"keyword": "garden hose"},
            ]})
            assert resp.status == 200
            data = await resp.json()

        assert data["completed"] == 1
        assert data["results"][0]["success"] is True
        assert data["results"][1] == {
            "success": False,
            "keyword": "garden hose",
            "error": "CJ API error 1600001: Invalid token",
        }

    async def test_empty_batch(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/batch", json={"searches": []})
            assert resp.status == 400

    async def test_batch_too_large(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/batch", json={"searches": [{"keyword": "lamp"}] * 21})
            assert resp.status == 400

    async def test_batch_entry_validated(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/batch", json={"searches": [{"keyword": ""}]})
            assert resp.status == 400


@pytest.mark.asyncio
class TestJobEndpoints:
    async def test_cancel_running_job(self):
        registry = JobRegistry()
        session = registry.start("abc")
        async with test_utils.TestClient(test_utils.TestServer(make_app(registry=registry))) as client:
            resp = await client.post("/api/jobs/abc/cancel")
            data = await resp.json()
        assert data == {"job_id": "abc", "cancelled": True}
        assert session.cancelled is True

    async def test_cancel_unknown_job(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.post("/api/jobs/nope/cancel")
            data = await resp.json()
        assert data["cancelled"] is False

    async def test_cancel_all(self):
        registry = JobRegistry()
        registry.start("a")
        registry.start("b")
        async with test_utils.TestClient(test_utils.TestServer(make_app(registry=registry))) as client:
            resp = await client.post("/api/jobs/cancel-all")
            data = await resp.json()
        assert data == {"cancelled": 2}

    async def test_list_jobs(self):
        registry = JobRegistry()
        registry.start("a").record_page(100)
        async with test_utils.TestClient(test_utils.TestServer(make_app(registry=registry))) as client:
            resp = await client.get("/api/jobs")
            data = await resp.json()
        assert [j["job_id"] for j in data["jobs"]] == ["a"]
        assert data["jobs"][0]["fetched"] == 100


@pytest.mark.asyncio
class TestCategoriesEndpoint:
    async def test_requires_keyword(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.get("/api/categories")
            assert resp.status == 400

    async def test_suggestions(self):
        async with test_utils.TestClient(test_utils.TestServer(make_app())) as client:
            resp = await client.get("/api/categories", params={"keyword": "throw"})
            assert resp.status == 200
            data = await resp.json()
        assert data["categories"][0]["category_id"] == "C-THROW"

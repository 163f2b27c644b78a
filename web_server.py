"""
web_server.py — HTTP job control for discovery jobs.

Runs as an aiohttp web server. A search request holds its connection open
until the job finishes; pass your own "job_id" in the body if you want to
cancel it from another request while it runs.

Endpoints:
  POST /api/search                 → run a job, return products + stats + job id
  POST /api/batch                  → run several keywords sequentially
  POST /api/jobs/{job_id}/cancel   → flag one job for cancellation
  POST /api/jobs/cancel-all        → flag every live job
  GET  /api/jobs                   → live jobs with progress counters
  GET  /api/categories?keyword=…   → category id suggestions for a keyword
  GET  /health                     → plain-text health check

Errors:
  400  malformed request (unknown keys, bad filters, empty keyword)
  409  job_id already running
  502  catalog failed before any page was retrieved
"""
from __future__ import annotations

import json
import logging

from aiohttp import web

import config
from categories import suggest_categories
from discovery import DiscoveryPipeline
from jobs import DuplicateJobError, JobRegistry
from models import InvalidRequestError, SearchRequest
from search_backends.base import CatalogError

logger = logging.getLogger(__name__)

PIPELINE_KEY = web.AppKey("pipeline", DiscoveryPipeline)

_MAX_BATCH = 20


def _pipeline(request: web.Request) -> DiscoveryPipeline:
    return request.app[PIPELINE_KEY]


def _error(status: int, message: str, **extra) -> web.Response:
    return web.json_response({"success": False, "error": message, **extra}, status=status)


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except json.JSONDecodeError as exc:
        raise InvalidRequestError(f"body is not valid JSON: {exc}") from exc


# ── Request handlers ──────────────────────────────────────────────────────────

async def handle_search(request: web.Request) -> web.Response:
    try:
        body = await _read_json(request)
        job_id = body.pop("job_id", None) if isinstance(body, dict) else None
        if job_id is not None and (not isinstance(job_id, str) or not job_id.strip()):
            raise InvalidRequestError("job_id must be a non-empty string")
        search = SearchRequest.from_dict(body)
    except InvalidRequestError as exc:
        return _error(400, str(exc))

    try:
        result = await _pipeline(request).run(search, job_id=job_id)
    except DuplicateJobError as exc:
        return _error(409, str(exc), job_id=job_id)
    except CatalogError as exc:
        logger.error("Search '%s' failed: %s", search.keyword, exc)
        return _error(502, str(exc), keyword=search.keyword)

    return web.json_response(result.to_dict())


async def handle_batch(request: web.Request) -> web.Response:
    try:
        body = await _read_json(request)
        raw = body.get("searches") if isinstance(body, dict) else None
        if not isinstance(raw, list) or not raw:
            raise InvalidRequestError("searches must be a non-empty list")
        if len(raw) > _MAX_BATCH:
            raise InvalidRequestError(f"at most {_MAX_BATCH} searches per batch")
        searches = [SearchRequest.from_dict(item) for item in raw]
    except InvalidRequestError as exc:
        return _error(400, str(exc))

    entries = await _pipeline(request).run_batch(searches)
    return web.json_response({
        "success":   True,
        "completed": sum(1 for e in entries if e.success),
        "results":   [e.to_dict() for e in entries],
    })


async def handle_cancel(request: web.Request) -> web.Response:
    job_id = request.match_info["job_id"]
    found = _pipeline(request).registry.cancel(job_id)
    return web.json_response({"job_id": job_id, "cancelled": found})


async def handle_cancel_all(request: web.Request) -> web.Response:
    count = _pipeline(request).registry.cancel_all()
    return web.json_response({"cancelled": count})


async def handle_jobs(request: web.Request) -> web.Response:
    registry = _pipeline(request).registry
    jobs = [registry.get(job_id) for job_id in registry.active()]
    return web.json_response({"jobs": [s.progress() for s in jobs if s is not None]})


async def handle_categories(request: web.Request) -> web.Response:
    keyword = request.query.get("keyword", "").strip()
    if not keyword:
        return _error(400, "keyword is required")
    try:
        matches = await suggest_categories(_pipeline(request).backend, keyword)
    except CatalogError as exc:
        return _error(502, str(exc))
    return web.json_response({"keyword": keyword, "categories": matches})


async def handle_health(request: web.Request) -> web.Response:
    pipeline = _pipeline(request)
    live = len(pipeline.registry)
    return web.Response(
        text=f"OK — {pipeline.backend.name}, {live} job(s) running",
        content_type="text/plain",
    )


# ── App factory ───────────────────────────────────────────────────────────────

def build_web_app(pipeline: DiscoveryPipeline) -> web.Application:
    app = web.Application()
    app[PIPELINE_KEY] = pipeline
    app.router.add_get("/health",                    handle_health)
    app.router.add_post("/api/search",               handle_search)
    app.router.add_post("/api/batch",                handle_batch)
    app.router.add_post("/api/jobs/cancel-all",      handle_cancel_all)
    app.router.add_post("/api/jobs/{job_id}/cancel", handle_cancel)
    app.router.add_get("/api/jobs",                  handle_jobs)
    app.router.add_get("/api/categories",            handle_categories)
    return app


async def start_server(pipeline: DiscoveryPipeline) -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app(pipeline)
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT)
    await site.start()
    logger.info("🔎 Discovery API listening on %s:%d", config.SERVER_HOST, config.SERVER_PORT)
    return runner


def build_pipeline() -> DiscoveryPipeline:
    from discovery import get_backend
    return DiscoveryPipeline(get_backend(), JobRegistry())

"""
discovery.py — public interface for product discovery jobs.

The web server and scripts import only from here:
  from discovery import DiscoveryPipeline, get_backend

One job = one DiscoveryPipeline.run() call:

  SearchRequest ──► PaginatedFetcher ──► TextFilter ──► BatchScheduler ──► ResultSet
                         │                                   │
                         └────── JobSession (registry) ──────┘
                              cancellation + timeout checkpoints

The session is registered before the first page and removed when run()
returns, whether the job finished, was cancelled, timed out or failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import config
from batch_scheduler import BatchResult, BatchScheduler
from fetcher import FetchResult, PaginatedFetcher
from image_classifier import ImageClassifier
from jobs import JobRegistry
from models import JobStats, ResultSet, SearchRequest
from search_backends.base import CatalogBackend
from text_filter import TextFilter

logger = logging.getLogger(__name__)

__all__ = ["DiscoveryPipeline", "BatchEntry", "get_backend"]

_backend: Optional[CatalogBackend] = None


def get_backend() -> CatalogBackend:
    """Return the catalog backend, building it once on first call."""
    global _backend
    if _backend is not None:
        return _backend
    if not config.CJ_ACCESS_TOKEN:
        raise RuntimeError(
            "CJ_ACCESS_TOKEN is not set.\n"
            "Get one at developers.cjdropshipping.com and add it to .env"
        )
    from search_backends.cj_backend import CJBackend
    _backend = CJBackend(config.CJ_ACCESS_TOKEN)
    logger.info("Catalog backend: %s", _backend.name)
    return _backend


@dataclass
class BatchEntry:
    """Outcome of one keyword inside run_batch()."""
    keyword: str
    result: Optional[ResultSet] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict:
        if self.result is not None:
            return self.result.to_dict()
        return {"success": False, "keyword": self.keyword, "error": self.error}


class DiscoveryPipeline:

    def __init__(
        self,
        backend: CatalogBackend,
        registry: JobRegistry,
        *,
        fetcher: Optional[PaginatedFetcher] = None,
        scheduler: Optional[BatchScheduler] = None,
        classifier: Optional[ImageClassifier] = None,
        job_timeout: Optional[float] = None,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self._fetcher = fetcher or PaginatedFetcher(backend)
        self._scheduler = scheduler or BatchScheduler(classifier or ImageClassifier())
        self._job_timeout = config.JOB_TIMEOUT if job_timeout is None else job_timeout

    async def run(self, request: SearchRequest, job_id: Optional[str] = None) -> ResultSet:
        """
        Run one discovery job to completion.

        Raises:
            InvalidRequestError  if the request is malformed (before any I/O)
            CatalogError         if the very first page cannot be fetched
        """
        if not isinstance(request, SearchRequest):
            request = SearchRequest.from_dict(request)
        text_filter = TextFilter(request.text_mode)

        session = self.registry.start(job_id, timeout=self._job_timeout)
        t0 = time.monotonic()
        try:
            logger.info(
                "[%s] Discovery '%s' (page size %d, text=%s, image=%s)",
                session.job_id, request.keyword, request.page_size,
                request.text_mode, "on" if request.image_filter else "off",
            )

            fetched = await self._fetcher.fetch(
                request.keyword, request.page_size, session, request.filters.to_params(),
            )

            outcomes = text_filter.evaluate(fetched.items, request.keyword)
            survivors = [o for o in outcomes if o.passed_text]
            session.record_text_passed(len(survivors))
            logger.info(
                "[%s] Text filter (%s): %d/%d passed",
                session.job_id, request.text_mode, len(survivors), len(fetched.items),
            )

            stats = _base_stats(fetched, len(survivors))
            stats.cancelled = fetched.stop_reason == "cancelled"

            if request.image_filter and survivors:
                batch = await self._run_image_stage(survivors, request.keyword, session)
                if batch is None:
                    final = survivors
                    stats.partial = True
                    stats.image_not_evaluated = len(survivors)
                else:
                    final = batch.passed
                    _apply_batch_stats(stats, batch)
            else:
                final = survivors

            stats.final_count = len(final)
            stats.duration_ms = int((time.monotonic() - t0) * 1000)

            logger.info(
                "[%s] Done: %d fetched → %d text → %d final (%.1f%%)%s",
                session.job_id, stats.total_fetched, stats.text_passed,
                stats.final_count, stats.pass_rate * 100,
                " [partial]" if stats.partial else "",
            )
            return ResultSet(
                job_id=session.job_id,
                keyword=request.keyword,
                items=[o.item for o in final],
                stats=stats,
                outcomes=outcomes,
            )
        finally:
            self.registry.end(session.job_id)

    async def _run_image_stage(self, survivors, keyword: str, session) -> Optional[BatchResult]:
        """Returns None if the stage crashed; the caller keeps the text survivors."""
        try:
            return await self._scheduler.run(survivors, keyword, session)
        except Exception as exc:
            logger.exception("[%s] Image stage crashed, keeping text survivors: %s", session.job_id, exc)
            return None

    async def run_batch(self, requests: list[SearchRequest]) -> list[BatchEntry]:
        """
        Run several searches one after another.
        A failing keyword is recorded and the batch moves on.
        """
        entries: list[BatchEntry] = []
        for index, request in enumerate(requests):
            try:
                result = await self.run(request)
                entries.append(BatchEntry(keyword=request.keyword, result=result))
            except Exception as exc:
                logger.error("Batch search '%s' failed: %s", request.keyword, exc)
                entries.append(BatchEntry(keyword=request.keyword, error=str(exc)))

            if index < len(requests) - 1 and config.BATCH_SEARCH_DELAY > 0:
                await asyncio.sleep(config.BATCH_SEARCH_DELAY)
        return entries


# ── Stats assembly ────────────────────────────────────────────────────────────

def _base_stats(fetched: FetchResult, text_passed: int) -> JobStats:
    return JobStats(
        total_found=fetched.total_found,
        total_fetched=len(fetched.items),
        pages_fetched=fetched.pages_fetched,
        page_size=fetched.page_size,
        text_passed=text_passed,
        partial=fetched.partial,
        timed_out=fetched.stop_reason == "timeout",
        stop_reason=fetched.stop_reason,
    )


def _apply_batch_stats(stats: JobStats, batch: BatchResult) -> None:
    stats.image_evaluated = batch.evaluated
    stats.image_passed = len(batch.passed)
    stats.image_not_evaluated = batch.not_evaluated
    stats.image_errors = batch.errors
    stats.cancelled = stats.cancelled or batch.cancelled
    stats.timed_out = stats.timed_out or batch.timed_out
    stats.partial = stats.partial or batch.partial
    if batch.cancelled:
        stats.stop_reason = "cancelled"
    elif batch.timed_out:
        stats.stop_reason = "timeout"

"""
fetcher.py — walks the catalog's result pages for one keyword.

Pagination is an explicit loop, one request in flight at a time:

  page 1 ──► read total + the page size the catalog actually used
     │       total_pages = min(ceil(total / page_size), MAX_OFFSET // page_size)
     ▼
  page 2 … N, pausing PAGE_DELAY between requests

It stops at the first of:
  • the last page (by catalog total)          → "exhausted"
  • a page with no items                      → "empty_page"
  • the offset ceiling                        → "offset_ceiling"  (partial)
  • OffsetTooLargeError from the catalog      → "offset_error"    (partial, never retried)
  • any other failure on page ≥ 2             → "page_error"      (partial)
  • the session's cancellation flag           → "cancelled"       (partial)
  • the session's wall-clock limit            → "timeout"         (partial)

A failure on page 1 propagates as CatalogError — with no data at all the job
cannot succeed.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import aiohttp

import config
from jobs import JobSession
from retry import retry_with_backoff
from search_backends.base import CatalogBackend, CatalogError, CatalogItem, OffsetTooLargeError

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    items: list[CatalogItem] = field(default_factory=list)
    total_found: int = 0            # catalog total for the query
    pages_fetched: int = 0
    page_size: int = 0              # catalog-reported page size
    total_pages: int = 0            # pages we planned to fetch after the ceiling
    partial: bool = False
    stop_reason: str = ""


def max_pages_for_offset(page_size: int, max_offset: int) -> int:
    """Deepest page whose last item still sits within the offset ceiling."""
    if page_size <= 0:
        return 0
    return max(1, max_offset // page_size)


def plan_total_pages(total: int, page_size: int, max_offset: int) -> tuple[int, bool]:
    """
    Pages to fetch for *total* matches, and whether the ceiling cut them short.

    >>> plan_total_pages(50_000, 200, 6000)
    (30, True)
    """
    if total <= 0 or page_size <= 0:
        return 0, False
    natural = math.ceil(total / page_size)
    ceiling = max_pages_for_offset(page_size, max_offset)
    return min(natural, ceiling), natural > ceiling


class PaginatedFetcher:

    def __init__(
        self,
        backend: CatalogBackend,
        *,
        max_offset: Optional[int] = None,
        page_delay: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ) -> None:
        self._backend = backend
        self._max_offset = config.MAX_OFFSET if max_offset is None else max_offset
        self._page_delay = config.PAGE_DELAY if page_delay is None else page_delay
        self._attempts = config.RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self._base_delay = config.RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay

    async def fetch(
        self,
        keyword: str,
        page_size: int,
        session: JobSession,
        params: Optional[dict] = None,
    ) -> FetchResult:
        result = FetchResult(page_size=page_size)
        page = 1
        truncated = False

        while True:
            if session.cancelled:
                logger.info("[%s] Cancelled before page %d", session.job_id, page)
                result.partial = True
                result.stop_reason = "cancelled"
                break
            if session.expired():
                logger.warning(
                    "[%s] Job timeout (%.0fs) before page %d, keeping %d items",
                    session.job_id, session.timeout or 0, page, len(result.items),
                )
                result.partial = True
                result.stop_reason = "timeout"
                break

            try:
                catalog_page = await self._request_page(keyword, page, result.page_size, params)
            except OffsetTooLargeError as exc:
                logger.info("[%s] Offset ceiling hit at page %d: %s", session.job_id, page, exc)
                if page == 1:
                    raise
                result.partial = True
                result.stop_reason = "offset_error"
                break
            except Exception as exc:
                if page == 1:
                    logger.error("[%s] First page failed: %s", session.job_id, exc)
                    if isinstance(exc, CatalogError):
                        raise
                    raise CatalogError(f"catalog page 1 failed: {exc}") from exc
                logger.warning(
                    "[%s] Page %d failed, keeping %d items: %s",
                    session.job_id, page, len(result.items), exc,
                )
                result.partial = True
                result.stop_reason = "page_error"
                break

            if page == 1:
                result.total_found = catalog_page.total
                result.page_size = catalog_page.page_size or page_size
                result.total_pages, truncated = plan_total_pages(
                    catalog_page.total, result.page_size, self._max_offset,
                )
                logger.info(
                    "[%s] '%s': %d matches, page size %d → %d page(s)%s",
                    session.job_id, keyword, result.total_found, result.page_size,
                    result.total_pages, " (capped by offset ceiling)" if truncated else "",
                )

            if not catalog_page.items:
                result.stop_reason = "empty_page"
                break

            result.items.extend(catalog_page.items)
            result.pages_fetched += 1
            session.record_page(len(catalog_page.items))

            if page >= result.total_pages:
                if truncated:
                    result.partial = True
                    result.stop_reason = "offset_ceiling"
                else:
                    result.stop_reason = "exhausted"
                break

            page += 1
            await self._pace()

        logger.info(
            "[%s] Fetched %d items over %d page(s) — %s",
            session.job_id, len(result.items), result.pages_fetched, result.stop_reason,
        )
        return result

    async def _request_page(self, keyword: str, page: int, page_size: int, params: Optional[dict]):
        try:
            return await retry_with_backoff(
                lambda: self._backend.search_page(keyword, page, page_size, params),
                attempts=self._attempts,
                base_delay=self._base_delay,
                label=f"catalog page {page}",
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise CatalogError(f"catalog page {page} unreachable: {exc or type(exc).__name__}") from exc

    async def _pace(self) -> None:
        """Rate-limit pause between page requests."""
        if self._page_delay > 0:
            await asyncio.sleep(self._page_delay)

"""
CJ Dropshipping catalog backend (official API v2.0).

API docs: https://developers.cjdropshipping.com/api2.0/v1/product/list

Uses /product/list rather than /product/listV2:
  • list    → exact keyword matching on productNameEn (what we want)
  • listV2  → elasticsearch relevance, far noisier for our filters

Response envelope (every endpoint):
  {"code": 200, "result": true, "message": "Success",
   "data": {"pageNum": 1, "pageSize": 200, "total": 50000, "list": [...]}}

Error handling:
  • HTTP 429 / 5xx, or envelope code 429/1600200 ("too many requests")
      → CatalogTransientError, retried by the fetcher
  • message mentioning the offset / page limit
      → OffsetTooLargeError, pagination stops, never retried
  • any other non-200 envelope code, or a body that is not a JSON envelope
      → CatalogError
"""
from __future__ import annotations

import logging
import re
from typing import Optional

import aiohttp

import config
from retry import is_transient_status
from search_backends.base import (
    CatalogBackend,
    CatalogError,
    CatalogItem,
    CatalogPage,
    CatalogTransientError,
    OffsetTooLargeError,
)

logger = logging.getLogger(__name__)

PRODUCT_LIST_PATH = "/product/list"
CATEGORY_PATH     = "/product/getCategory"

# Envelope codes CJ uses for rate limiting
_RATE_LIMIT_CODES = {429, 1600200}

# Phrases CJ puts in the message when a page lies past the offset ceiling
_OFFSET_MARKERS = ("offset", "exceeds the maximum", "page number is too large")


class CJBackend(CatalogBackend):

    def __init__(self, access_token: str, base_url: str | None = None) -> None:
        self._token = access_token
        self._base = (base_url or config.CJ_API_BASE).rstrip("/")
        self._headers = {
            "CJ-Access-Token": access_token,
            "Content-Type":    "application/json",
        }

    @property
    def name(self) -> str:
        return "CJ Dropshipping API"

    async def search_page(
        self,
        keyword: str,
        page: int,
        page_size: int,
        params: Optional[dict] = None,
    ) -> CatalogPage:
        query = {
            "productNameEn": keyword,
            "pageNum":       str(page),
            "pageSize":      str(min(page_size, config.MAX_PAGE_SIZE)),
        }
        for key, value in (params or {}).items():
            query[key] = str(value)

        data = await self._get(PRODUCT_LIST_PATH, query) or {}
        if not isinstance(data, dict):
            raise CatalogError(f"CJ product list has an unexpected data field: {type(data).__name__}")
        raw_list = data.get("list") or []

        items: list[CatalogItem] = []
        for raw in raw_list:
            item = _parse_product(raw)
            if item:
                items.append(item)

        reported_size = _to_int(data.get("pageSize")) or page_size
        total = _to_int(data.get("total"))
        if total is None:
            total = len(raw_list)

        logger.info(
            "CJ page %d for '%s' → %d items (total=%d, pageSize=%d)",
            page, keyword, len(items), total, reported_size,
        )
        return CatalogPage(page_num=page, page_size=reported_size, total=total, items=items)

    async def get_categories(self) -> list[dict]:
        data = await self._get(CATEGORY_PATH, {})
        return data or []

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _get(self, path: str, params: dict):
        """Single HTTP call. Returns the envelope's data field."""
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"{self._base}{path}",
                headers=self._headers,
                params=params,
                timeout=aiohttp.ClientTimeout(total=config.CATALOG_TIMEOUT),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    message = f"CJ API HTTP {resp.status}: {text[:200]}"
                    if is_transient_status(resp.status):
                        raise CatalogTransientError(message, status=resp.status)
                    _raise_for_message(text, message)
                    raise CatalogError(message)
                try:
                    body = await resp.json(content_type=None)
                except ValueError as exc:
                    raise CatalogError(f"CJ API returned a non-JSON body: {exc}") from exc

        if not isinstance(body, dict):
            raise CatalogError(f"CJ API returned an unexpected body: {type(body).__name__}")
        code = body.get("code")
        if code != 200:
            text = str(body.get("message") or "Unknown error")
            message = f"CJ API error {code}: {text}"
            if code in _RATE_LIMIT_CODES or "too many requests" in text.lower():
                raise CatalogTransientError(message, status=429)
            _raise_for_message(text, message)
            raise CatalogError(message)
        return body.get("data")


# ── Parser ────────────────────────────────────────────────────────────────────

def _parse_product(raw: dict) -> Optional[CatalogItem]:
    try:
        if not raw or not isinstance(raw, dict):
            return None
        pid = raw.get("pid") or ""
        if not pid:
            return None

        title = (raw.get("productNameEn") or raw.get("productName") or "").strip()
        price_text = str(raw.get("sellPrice") or "").strip()

        return CatalogItem(
            pid=pid,
            title=title,
            price=_parse_price(price_text),
            price_text=price_text,
            image_url=raw.get("productImage") or None,
            sku=raw.get("productSku") or "",
            category_id=raw.get("categoryId") or "",
            listed_count=_to_int(raw.get("listedNum")) or 0,
            variants=tuple(raw.get("variants") or ()),
        )
    except Exception as exc:
        logger.warning("Failed to parse CJ product %s: %s", (raw or {}).get("pid", "?"), exc)
        return None


# ── Helpers ───────────────────────────────────────────────────────────────────

def _raise_for_message(text: str, message: str) -> None:
    lowered = text.lower()
    if any(marker in lowered for marker in _OFFSET_MARKERS):
        raise OffsetTooLargeError(message)


def _parse_price(price_str: str) -> Optional[float]:
    """Lowest numeric value from '12.5', '$12.50' or a range like '12.50 -- 14.00'."""
    values = []
    for part in re.findall(r"\d[\d,]*(?:\.\d+)?", str(price_str or "")):
        try:
            values.append(float(part.replace(",", "")))
        except ValueError:
            continue
    return min(values) if values else None


def _to_int(value) -> Optional[int]:
    try:
        return int(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None

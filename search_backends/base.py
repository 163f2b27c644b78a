"""
Abstract base for catalog search backends.

Every backend returns the same CatalogPage / CatalogItem shapes — the fetcher
and the filters don't care which catalog is behind them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from retry import TransientError


# ── Errors ────────────────────────────────────────────────────────────────────

class CatalogError(RuntimeError):
    """The catalog refused or failed a page request."""


class CatalogTransientError(CatalogError, TransientError):
    """Rate limited, 5xx or similar — retry with backoff."""

    def __init__(self, message: str, status: int | None = None) -> None:
        TransientError.__init__(self, message, status)


class OffsetTooLargeError(CatalogError):
    """
    The requested page lies beyond the catalog's maximum retrievable offset.
    This is expected truncation, not a failure, and is never retried.
    """


# ── Data types ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CatalogItem:
    pid: str
    title: str
    price: Optional[float]          # lowest price when the catalog gives a range
    price_text: str                 # as shown upstream, e.g. "12.50 -- 14.00"
    image_url: Optional[str]
    sku: str
    category_id: str
    listed_count: int               # how many stores already list this product
    variants: tuple = field(default=(), repr=False)

    @property
    def url(self) -> str:
        return f"https://www.cjdropshipping.com/product/{self.pid}.html"

    def to_dict(self) -> dict:
        return {
            "pid":          self.pid,
            "title":        self.title,
            "price":        self.price,
            "price_text":   self.price_text,
            "image_url":    self.image_url,
            "sku":          self.sku,
            "category_id":  self.category_id,
            "listed_count": self.listed_count,
            "url":          self.url,
            "variants":     list(self.variants),
        }


@dataclass(frozen=True)
class CatalogPage:
    page_num: int
    page_size: int          # the page size the catalog actually used
    total: int              # total matches the catalog reports for the query
    items: list[CatalogItem]


class CatalogBackend(ABC):
    """All backends must implement this interface."""

    @abstractmethod
    async def search_page(
        self,
        keyword: str,
        page: int,
        page_size: int,
        params: Optional[dict] = None,
    ) -> CatalogPage:
        """
        Fetch a single results page (1-based).

        Raises:
            CatalogTransientError  on rate limiting / 5xx / network trouble
            OffsetTooLargeError    when the page is past the offset ceiling
            CatalogError           on any other upstream refusal
        """
        ...

    @abstractmethod
    async def get_categories(self) -> list[dict]:
        """Return the raw category tree."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name for logs/display."""
        ...

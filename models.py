"""
models.py — request, outcome and result types for one discovery job.

SearchRequest is built once per job (usually via from_dict() on a JSON body)
and never changes afterwards. Unknown keys are rejected rather than forwarded
to the catalog, so every filter the catalog sees is one we validated here.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import config
from search_backends.base import CatalogItem

TEXT_MODES = ("relaxed", "strict")

_CATEGORY_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,64}$")
_MAX_KEYWORD_LEN = 200


class InvalidRequestError(ValueError):
    """Malformed search request — rejected immediately, never retried."""


# ── Request ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SearchFilters:
    verified_warehouse: Optional[bool] = None
    min_inventory: Optional[int] = None
    max_inventory: Optional[int] = None
    category_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.verified_warehouse is not None and not isinstance(self.verified_warehouse, bool):
            raise InvalidRequestError("verified_warehouse must be true, false or null")
        for name in ("min_inventory", "max_inventory"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidRequestError(f"{name} must be a non-negative integer")
        if (
            self.min_inventory is not None
            and self.max_inventory is not None
            and self.min_inventory > self.max_inventory
        ):
            raise InvalidRequestError("min_inventory must not exceed max_inventory")
        if self.category_id is not None and (
            not isinstance(self.category_id, str) or not _CATEGORY_ID_RE.match(self.category_id)
        ):
            raise InvalidRequestError(f"category_id {self.category_id!r} is not a valid catalog id")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SearchFilters":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidRequestError("filters must be an object")
        _reject_unknown(data, ("verified_warehouse", "min_inventory", "max_inventory", "category_id"), "filter")
        return cls(**data)

    def to_params(self) -> dict[str, Any]:
        """Catalog query parameters for the filters that are set."""
        params: dict[str, Any] = {}
        if self.verified_warehouse is not None:
            # CJ: 1 = verified warehouse, 2 = unverified
            params["verifiedWarehouse"] = 1 if self.verified_warehouse else 2
        if self.min_inventory is not None:
            params["startWarehouseInventory"] = self.min_inventory
        if self.max_inventory is not None:
            params["endWarehouseInventory"] = self.max_inventory
        if self.category_id:
            params["categoryId"] = self.category_id
        return params


@dataclass(frozen=True)
class SearchRequest:
    keyword: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    page_size: int = config.DEFAULT_PAGE_SIZE
    image_filter: bool = True
    text_mode: str = "relaxed"

    def __post_init__(self) -> None:
        if not isinstance(self.keyword, str):
            raise InvalidRequestError("keyword is required")
        keyword = self.keyword.strip()
        if not keyword:
            raise InvalidRequestError("keyword is required")
        if len(keyword) > _MAX_KEYWORD_LEN:
            raise InvalidRequestError(f"keyword longer than {_MAX_KEYWORD_LEN} characters")
        object.__setattr__(self, "keyword", keyword)

        if not isinstance(self.filters, SearchFilters):
            raise InvalidRequestError("filters must be a SearchFilters")
        if (
            isinstance(self.page_size, bool)
            or not isinstance(self.page_size, int)
            or not 1 <= self.page_size <= config.MAX_PAGE_SIZE
        ):
            raise InvalidRequestError(f"page_size must be between 1 and {config.MAX_PAGE_SIZE}")
        if not isinstance(self.image_filter, bool):
            raise InvalidRequestError("image_filter must be true or false")
        if self.text_mode not in TEXT_MODES:
            raise InvalidRequestError(f"text_mode must be one of {', '.join(TEXT_MODES)}")

    @classmethod
    def from_dict(cls, data: Any) -> "SearchRequest":
        if not isinstance(data, dict):
            raise InvalidRequestError("request body must be a JSON object")
        _reject_unknown(data, ("keyword", "filters", "page_size", "image_filter", "text_mode"), "request")
        kwargs = dict(data)
        kwargs["filters"] = SearchFilters.from_dict(data.get("filters"))
        if "keyword" not in kwargs:
            raise InvalidRequestError("keyword is required")
        kwargs.setdefault("page_size", config.DEFAULT_PAGE_SIZE)
        kwargs.setdefault("text_mode", config.TEXT_FILTER_MODE)
        return cls(**kwargs)


def _reject_unknown(data: dict, allowed: tuple[str, ...], what: str) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise InvalidRequestError(f"unrecognised {what} key(s): {', '.join(unknown)}")


# ── Per-item outcome ──────────────────────────────────────────────────────────

@dataclass
class FilterOutcome:
    item: CatalogItem
    passed_text: bool
    passed_image: Optional[bool] = None     # None → image stage never ran for this item
    labels: list[str] = field(default_factory=list)
    image_error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.passed_text and self.passed_image is not False


# ── Result ────────────────────────────────────────────────────────────────────

def pass_rate(passed: int, total: int) -> float:
    """Fraction in [0, 1]; 0 when nothing was evaluated."""
    return passed / total if total else 0.0


def _pct(rate: float) -> str:
    return f"{rate * 100:.1f}%"


@dataclass
class JobStats:
    total_found: int = 0            # what the catalog says exists
    total_fetched: int = 0          # what we actually retrieved
    pages_fetched: int = 0
    page_size: int = 0              # catalog-reported page size
    text_passed: int = 0
    image_evaluated: int = 0
    image_passed: int = 0
    image_not_evaluated: int = 0    # text survivors dropped by the cost cap or a stop
    image_errors: int = 0           # classified with an error and passed through
    final_count: int = 0
    partial: bool = False
    cancelled: bool = False
    timed_out: bool = False
    stop_reason: str = ""
    duration_ms: int = 0

    @property
    def text_pass_rate(self) -> float:
        return pass_rate(self.text_passed, self.total_fetched)

    @property
    def image_pass_rate(self) -> float:
        return pass_rate(self.image_passed, self.image_evaluated)

    @property
    def pass_rate(self) -> float:
        return pass_rate(self.final_count, self.total_fetched)

    def to_dict(self) -> dict:
        return {
            "total_found":         self.total_found,
            "total_fetched":       self.total_fetched,
            "pages_fetched":       self.pages_fetched,
            "page_size":           self.page_size,
            "text_passed":         self.text_passed,
            "image_evaluated":     self.image_evaluated,
            "image_passed":        self.image_passed,
            "image_not_evaluated": self.image_not_evaluated,
            "image_errors":        self.image_errors,
            "final_count":         self.final_count,
            "text_pass_rate":      _pct(self.text_pass_rate),
            "image_pass_rate":     _pct(self.image_pass_rate),
            "pass_rate":           _pct(self.pass_rate),
            "partial":             self.partial,
            "cancelled":           self.cancelled,
            "timed_out":           self.timed_out,
            "stop_reason":         self.stop_reason,
            "duration_ms":         self.duration_ms,
        }


@dataclass
class ResultSet:
    job_id: str
    keyword: str
    items: list[CatalogItem]
    stats: JobStats
    outcomes: list[FilterOutcome] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        return {
            "success":  True,
            "job_id":   self.job_id,
            "keyword":  self.keyword,
            "products": [i.to_dict() for i in self.items],
            "stats":    self.stats.to_dict(),
        }

"""
categories.py — CJ category lookup for narrowing a search by category id.

The catalog's category tree has three levels; only level-3 entries carry an
id usable as the categoryId filter. The flattened index is cached as JSON in
DATA_DIR for CATEGORY_CACHE_HOURS so we hit /product/getCategory at most once
a day. Cache file reads and writes run in a worker thread.

Match scores for a keyword:
  exact name          100
  name ⊃ keyword       80
  keyword ⊃ name       60
  word overlap         40 per overlapping word
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import config
from search_backends.base import CatalogBackend

logger = logging.getLogger(__name__)

_CACHE_NAME = "cj-categories.json"
_WORD_SPLIT = re.compile(r"[\s&]+")


def _cache_path() -> Path:
    return Path(config.DATA_DIR) / _CACHE_NAME


def build_category_index(tree: list[dict]) -> dict[str, dict]:
    """Flatten the raw three-level tree into {level-3 name (lower): info}."""
    index: dict[str, dict] = {}
    for level1 in tree or []:
        for level2 in level1.get("categoryFirstList") or []:
            for level3 in level2.get("categorySecondList") or []:
                name = (level3.get("categoryName") or "").strip()
                if not name:
                    continue
                index[name.lower()] = {
                    "category_id": level3.get("categoryId"),
                    "full_path":   " > ".join([
                        level1.get("categoryFirstName", ""),
                        level2.get("categorySecondName", ""),
                        name,
                    ]),
                    "level1": level1.get("categoryFirstName", ""),
                    "level2": level2.get("categorySecondName", ""),
                    "level3": name,
                }
    logger.info("Built category index with %d searchable categories", len(index))
    return index


def search_categories(index: dict[str, dict], keyword: str) -> list[dict]:
    """Matching categories for *keyword*, best first."""
    keyword_lower = (keyword or "").lower().strip()
    if not keyword_lower:
        return []
    keyword_words = [w for w in _WORD_SPLIT.split(keyword_lower) if w]

    matches: list[dict] = []
    for name, data in index.items():
        if name == keyword_lower:
            matches.append({**data, "score": 100, "match_type": "exact"})
        elif keyword_lower in name:
            matches.append({**data, "score": 80, "match_type": "contains"})
        elif name in keyword_lower:
            matches.append({**data, "score": 60, "match_type": "reverse"})
        else:
            name_words = [w for w in _WORD_SPLIT.split(name) if w]
            overlap = [w for w in name_words if any(k in w or w in k for k in keyword_words)]
            if overlap:
                matches.append({**data, "score": 40 * len(overlap), "match_type": "word_overlap"})

    matches.sort(key=lambda m: m["score"], reverse=True)
    return matches


def _load_cache() -> Optional[dict]:
    path = _cache_path()
    try:
        age = time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return None
    if age >= config.CATEGORY_CACHE_HOURS * 3600:
        logger.info("Category cache expired (%.0f min old)", age / 60)
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable category cache: %s", exc)
        return None
    logger.info("Using cached categories (%.0f min old)", age / 60)
    return data


def _save_cache(data: dict) -> None:
    path = _cache_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to cache categories: %s", exc)


async def get_category_index(backend: CatalogBackend) -> dict[str, dict]:
    """Category index from the cache, or from the catalog when stale."""
    cached = await asyncio.to_thread(_load_cache)
    if cached and isinstance(cached.get("index"), dict):
        return cached["index"]

    tree = await backend.get_categories()
    index = build_category_index(tree)
    await asyncio.to_thread(_save_cache, {
        "index":      index,
        "fetched_at": datetime.now(timezone.utc).isoformat(),
    })
    return index


async def suggest_categories(backend: CatalogBackend, keyword: str, limit: int = 10) -> list[dict]:
    index = await get_category_index(backend)
    return search_categories(index, keyword)[:limit]

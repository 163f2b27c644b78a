"""
text_filter.py — cheap title-vs-keyword relevance check.

Two policies:

  relaxed (default)  at least one keyword token appears in the title.
  strict             every keyword token appears in the title, and the title
                     mentions no unrelated product category from DENYLIST.
                     A denied word is forgiven when the user searched for it,
                     or when it directly qualifies a keyword token or one of
                     PASS_THROUGH: "Sherpa Dog Throw Blanket" passes for
                     "sherpa blanket".

Pure functions, no I/O.
"""
from __future__ import annotations

import logging

from keyword_expansion import DENYLIST, PASS_THROUGH, keyword_tokens
from models import TEXT_MODES, FilterOutcome, InvalidRequestError
from search_backends.base import CatalogItem

logger = logging.getLogger(__name__)


def relevant(title: str, keyword: str, mode: str = "relaxed") -> bool:
    if mode not in TEXT_MODES:
        raise InvalidRequestError(f"unknown text filter mode {mode!r}")

    lower_title = (title or "").lower()
    tokens = keyword_tokens(keyword)
    if not tokens:
        return False

    if mode == "relaxed":
        return any(token in lower_title for token in tokens)

    if not all(token in lower_title for token in tokens):
        return False
    return not _denied(lower_title, tokens)


def _denied(lower_title: str, tokens: list[str]) -> bool:
    for word in DENYLIST:
        if word not in lower_title:
            continue
        if word in tokens:
            continue
        if any(f"{word} {follower}" in lower_title for follower in (*tokens, *PASS_THROUGH)):
            continue
        return True
    return False


class TextFilter:

    def __init__(self, mode: str = "relaxed") -> None:
        if mode not in TEXT_MODES:
            raise InvalidRequestError(f"unknown text filter mode {mode!r}")
        self.mode = mode

    def __call__(self, title: str, keyword: str) -> bool:
        return relevant(title, keyword, self.mode)

    def evaluate(self, items: list[CatalogItem], keyword: str) -> list[FilterOutcome]:
        """Tag every item with its text verdict, preserving input order."""
        outcomes = [FilterOutcome(item=i, passed_text=self(i.title, keyword)) for i in items]
        rejected = [o.item.title for o in outcomes if not o.passed_text]
        if rejected:
            logger.debug("Text filter (%s) rejected %d, e.g. %s", self.mode, len(rejected), rejected[:5])
        return outcomes

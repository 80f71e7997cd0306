"""Candidate pool with run-scoped deduplication and listing prefilters."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from .models import Candidate, SearchDebug
from .validators import is_blocked_listing

LOGGER = logging.getLogger(__name__)


class CandidateCollector:
    def __init__(
        self,
        min_price: float = 0.0,
        max_price: float = 0.0,
        min_popularity: int = 0,
        free_shipping_only: bool = False,
        blocked_keywords: Iterable[str] = (),
        headroom: float = 2.0,
        debug: Optional[SearchDebug] = None,
    ) -> None:
        self.min_price = min_price
        self.max_price = max_price
        self.min_popularity = min_popularity
        self.free_shipping_only = free_shipping_only
        self.categories = {"blocked_keywords": list(blocked_keywords)}
        self.headroom = headroom
        self.debug = debug or SearchDebug()
        self.pool: List[Candidate] = []
        self.consumed = 0
        self._seen: Set[str] = set()

    def add(self, candidate: Candidate) -> bool:
        """Accept a listing unless it was seen before or fails a prefilter."""
        if candidate.product_id in self._seen:
            self.debug.count_filter("duplicate")
            return False
        self._seen.add(candidate.product_id)

        reason = self.reject_reason(candidate)
        if reason:
            self.debug.count_filter(reason)
            return False

        self.pool.append(candidate)
        self.debug.candidates_found += 1
        return True

    def reject_reason(self, candidate: Candidate) -> str:
        if self.min_price and candidate.price < self.min_price:
            return "price"
        if self.max_price and candidate.price > self.max_price:
            return "price"
        if self.min_popularity and candidate.listed_num < self.min_popularity:
            return "popularity"
        if self.free_shipping_only and not candidate.free_shipping:
            return "free_shipping"
        if is_blocked_listing(candidate, self.categories):
            return "blocked_keyword"
        return ""

    @property
    def available(self) -> int:
        return len(self.pool) - self.consumed

    def needs_more(self, still_needed: int) -> bool:
        return still_needed > 0 and self.available < self.headroom * still_needed

    def take(self, count: int) -> List[Candidate]:
        batch = self.pool[self.consumed:self.consumed + count]
        self.consumed += len(batch)
        return batch

"""Round-robin pagination over the requested categories."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .errors import UpstreamError
from .fields import as_int, as_price, as_str, chain
from .models import Candidate, CategoryCursor

LOGGER = logging.getLogger(__name__)

MAX_PAGES = 100
MAX_PAGE_ERRORS = 3

LISTING_ID = chain("product_id", ["id", "pid", "productId"])
LISTING_SKU = chain("sku", ["sku", "productSku"], default="")
LISTING_NAME = chain("name", ["nameEn", "productNameEn", "productName", "name"], default="")
LISTING_PRICE = chain("price", ["sellPrice", "nowPrice", "productSellPrice", "discountPrice"], accessor=as_price)
LISTING_POPULARITY = chain("listed_num", ["listedNum", "listingCount"], accessor=as_int, default=0)
LISTING_STOCK = chain("listed_stock", ["warehouseInventoryNum", "inventoryNum", "totalInventory"], accessor=as_int)
LISTING_FREE_SHIPPING = chain("free_shipping", ["addMarkStatus", "isFreeShipping"], accessor=as_int, default=0)
LISTING_IMAGE = chain("image", ["bigImage", "productImage", "image"], default="")
LISTING_TOTAL = chain("total", ["totalRecords", "total"], accessor=as_int)


def listing_items(data: Any) -> List[Dict[str, Any]]:
    """Flatten both listing payload shapes into a list of item dicts.

    listV2 nests items as ``content[].productList[]``; the older list endpoint
    returns them under ``list``.
    """
    if not isinstance(data, dict):
        return []
    items: List[Dict[str, Any]] = []
    for block in data.get("content") or []:
        if isinstance(block, dict):
            items.extend(i for i in block.get("productList") or [] if isinstance(i, dict))
    if not items:
        items = [i for i in data.get("list") or [] if isinstance(i, dict)]
    return items


def to_candidate(item: Dict[str, Any], category_id: str) -> Optional[Candidate]:
    product_id = LISTING_ID.extract(item)
    price = LISTING_PRICE.extract(item)
    if not product_id or price is None:
        return None
    return Candidate(
        product_id=product_id,
        sku=LISTING_SKU.extract(item),
        name=LISTING_NAME.extract(item),
        price=price,
        category_id=category_id,
        listed_num=LISTING_POPULARITY.extract(item),
        free_shipping=LISTING_FREE_SHIPPING.extract(item) == 1,
        listed_stock=LISTING_STOCK.extract(item),
        image_url=LISTING_IMAGE.extract(item),
    )


class CategoryCrawler:
    """Keeps one cursor per category and fetches one page per category per cycle."""

    def __init__(self, client, category_ids: Iterable[str], page_size: int = 50, max_pages: int = MAX_PAGES) -> None:
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages
        seen = set()
        self.cursors: List[CategoryCursor] = []
        for category_id in category_ids:
            category_id = category_id.strip()
            if category_id and category_id not in seen:
                seen.add(category_id)
                self.cursors.append(CategoryCursor(category_id=category_id))
        self._errors: Dict[str, int] = {}
        self.listing_errors = 0
        self.last_cycle_errors = 0

    @property
    def exhausted(self) -> bool:
        return all(c.exhausted for c in self.cursors)

    def active_cursors(self) -> List[CategoryCursor]:
        return [c for c in self.cursors if not c.exhausted]

    def exhausted_categories(self) -> List[str]:
        return [c.category_id for c in self.cursors if c.exhausted]

    def fetch_next_page(self, cursor: CategoryCursor) -> List[Candidate]:
        if cursor.exhausted:
            return []
        page = cursor.next_page
        try:
            data = self.client.list_by_category(cursor.category_id, page, self.page_size)
        except UpstreamError as e:
            failures = self._errors.get(cursor.category_id, 0) + 1
            self._errors[cursor.category_id] = failures
            self.listing_errors += 1
            self.last_cycle_errors += 1
            LOGGER.warning(
                "Listing fetch failed for category %s page %d (%d/%d): %s",
                cursor.category_id, page, failures, MAX_PAGE_ERRORS, e,
            )
            if failures >= MAX_PAGE_ERRORS:
                cursor.exhausted = True
            return []

        self._errors.pop(cursor.category_id, None)
        items = listing_items(data)
        cursor.pages_fetched += 1
        if not items:
            LOGGER.info("Category %s exhausted at page %d", cursor.category_id, page)
            cursor.exhausted = True
            return []

        cursor.next_page = page + 1
        total = LISTING_TOTAL.extract(data) if isinstance(data, dict) else None
        if cursor.next_page > self.max_pages:
            LOGGER.info("Category %s reached the %d page ceiling", cursor.category_id, self.max_pages)
            cursor.exhausted = True
        elif total is not None and page * self.page_size >= total:
            cursor.exhausted = True

        candidates = []
        for item in items:
            candidate = to_candidate(item, cursor.category_id)
            if candidate is None:
                LOGGER.debug("Skipping listing item without id or price: %s", as_str(item.get("id")))
                continue
            candidates.append(candidate)
        return candidates

    def crawl_cycle(self, collector) -> int:
        """Fetch one page from every active category; returns the number accepted.

        Listing failures in the cycle are counted in ``last_cycle_errors``.
        """
        added = 0
        self.last_cycle_errors = 0
        for cursor in self.active_cursors():
            for candidate in self.fetch_next_page(cursor):
                if collector.add(candidate):
                    added += 1
        LOGGER.info(
            "Crawl cycle added %d candidates (%d/%d categories active)",
            added, len(self.active_cursors()), len(self.cursors),
        )
        return added

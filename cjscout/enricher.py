"""Candidate enrichment: detail, variants, ratings and inventory merged into one record.

Every upstream lookup is independent. A failed lookup degrades its fields to
unknown and is listed in ``EnrichedProduct.degraded_fields``; the candidate is
never dropped here. This module is the only place that reads the raw detail,
variant, comment and inventory payloads.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .circuit import RateLimitBreaker
from .crawler import LISTING_ID, listing_items
from .errors import RateLimitError, RateLimitTimeout, UpstreamError
from .fields import (
    as_float,
    as_int,
    as_list,
    as_max_float,
    as_price,
    as_str,
    chain,
    normalize_key,
    parse_variant_key,
    strip_cjk,
)
from .models import Candidate, EnrichedProduct, StockLevel, Variant, WarehouseStock

LOGGER = logging.getLogger(__name__)

DETAIL_NAME = chain("name", ["productNameEn", "nameEn", "productName", "name"])
DETAIL_DESCRIPTION = chain("description", ["description", "productDescription", "descriptionEn", "productDescEn", "desc"])
DETAIL_CATEGORY = chain("category", ["categoryName", "categoryNameEn", "threeCategoryName", "category"], default="")
DETAIL_WEIGHT = chain(
    "weight",
    ["packWeight", "packingWeight", "productWeight", "weight", "grossWeight", "netWeight"],
    accessor=as_max_float,
)
DETAIL_LENGTH = chain("length", ["packLength", "length"], accessor=as_float)
DETAIL_WIDTH = chain("width", ["packWidth", "width"], accessor=as_float)
DETAIL_HEIGHT = chain("height", ["packHeight", "height"], accessor=as_float)
DETAIL_VARIANTS = chain("variants", ["variants", "variantList"], accessor=as_list)

VARIANT_ID = chain("variant_id", ["vid", "variantId", "id"], default="")
VARIANT_SKU = chain("sku", ["variantSku", "cjSku", "sku"], default="")
VARIANT_NAME = chain("name", ["variantNameEn", "variantName", "variantKey"], default="")
VARIANT_KEY = chain("variant_key", ["variantKey", "variantNameEn", "variantName"], default="")
VARIANT_PRICE = chain("price", ["variantSellPrice", "sellPrice", "variantPrice", "price"], accessor=as_price)
VARIANT_WEIGHT = chain("weight", ["variantWeight", "packWeight", "weight"], accessor=as_max_float)
VARIANT_IMAGE = chain("image", ["variantImage", "image"], default="")

STOCK_CJ = chain("cj_stock", ["cjInventoryNum", "cjInventory", "cjStock", "verifiedInventory"], accessor=as_int)
STOCK_FACTORY = chain(
    "factory_stock",
    ["factoryInventoryNum", "factoryInventory", "factoryStock", "unVerifiedInventory"],
    accessor=as_int,
)
STOCK_TOTAL = chain("total", ["totalInventoryNum", "totalInventory", "storageNum", "inventoryNum", "totalStock"], accessor=as_int)
WAREHOUSE_AREA = chain("area", ["areaEn", "area", "warehouseName"], default="")
WAREHOUSE_COUNTRY = chain("country", ["countryCode", "country"], default="")
STOCK_ROW_KEYS = ["variantSku", "sku", "vid", "variantId", "variantKey", "variantName", "variantNameEn"]
MIN_FUZZY_KEY_LENGTH = 4

COMMENT_SCORE = chain("score", ["score", "rating", "star"], accessor=as_float)
COMMENT_TOTAL = chain("total", ["total", "totalCount", "count"], accessor=as_int)
COMMENT_LIST = chain("list", ["list", "content", "comments"], accessor=as_list)

SEARCH_DESCRIPTION = chain("description", ["description", "productDescription", "descriptionEn"])

# (minimum listed count, rating) checked top down
POPULARITY_RATINGS = [
    (2000, 4.8),
    (1000, 4.7),
    (500, 4.5),
    (200, 4.3),
    (100, 4.2),
    (50, 4.0),
    (20, 3.9),
]
BASELINE_RATING = 3.8

RECOVERABLE_ERRORS = (UpstreamError, RateLimitTimeout)


def as_images(value: Any) -> Optional[List[str]]:
    single = as_str(value)
    return as_list(value) or ([single] if single else None)


DETAIL_IMAGES = chain("images", ["productImageSet", "productImages", "imageSet", "productImage"], accessor=as_images)


def estimate_rating(listed_num: int) -> float:
    for threshold, rating in POPULARITY_RATINGS:
        if listed_num >= threshold:
            return rating
    return BASELINE_RATING


def to_grams(value: Optional[float]) -> Optional[float]:
    """Weights under 30 are taken to be kilograms."""
    if not value or value <= 0:
        return None
    return value * 1000 if value < 30 else value


def read_stock(row: Dict[str, Any]) -> StockLevel:
    cj_stock = STOCK_CJ.extract(row)
    factory_stock = STOCK_FACTORY.extract(row)
    if cj_stock is None and factory_stock is None:
        total = STOCK_TOTAL.extract(row)
        if total is None:
            return StockLevel()
        return StockLevel(cj_stock=max(total, 0), factory_stock=0)
    return StockLevel(
        cj_stock=max(cj_stock, 0) if cj_stock is not None else None,
        factory_stock=max(factory_stock, 0) if factory_stock is not None else None,
    )


def add_stock(a: StockLevel, b: StockLevel) -> StockLevel:
    if not a.known:
        return b
    if not b.known:
        return a
    return StockLevel(
        cj_stock=(a.cj_stock or 0) + (b.cj_stock or 0),
        factory_stock=(a.factory_stock or 0) + (b.factory_stock or 0),
    )


class StockIndex:
    """Per-variant stock reachable under every identifier a row carries.

    Lookups try exact normalized keys in the caller's priority order, then
    substring containment in either direction.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, StockLevel] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def add(self, identifiers: Iterable[Any], stock: StockLevel) -> None:
        for key in {normalize_key(i) for i in identifiers}:
            if key:
                self._rows[key] = add_stock(self._rows[key], stock) if key in self._rows else stock

    def lookup(self, identifiers: Iterable[Any], fuzzy_identifiers: Optional[Iterable[Any]] = None) -> Optional[StockLevel]:
        """Exact match on ``identifiers``, then containment on ``fuzzy_identifiers``.

        Both are tried in the caller's priority order. Containment only
        considers keys of at least MIN_FUZZY_KEY_LENGTH characters on both
        sides, so short size or color keys never pick up another variant's row.
        """
        identifiers = list(identifiers)
        keys = [k for k in (normalize_key(i) for i in identifiers) if k]
        for key in keys:
            if key in self._rows:
                return self._rows[key]
        if fuzzy_identifiers is None:
            fuzzy_identifiers = identifiers
        fuzzy_keys = [
            k for k in (normalize_key(i) for i in fuzzy_identifiers) if len(k) >= MIN_FUZZY_KEY_LENGTH
        ]
        for key in fuzzy_keys:
            for stored_key, stock in self._rows.items():
                if len(stored_key) < MIN_FUZZY_KEY_LENGTH:
                    continue
                if key in stored_key or stored_key in key:
                    return stock
        return None

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "StockIndex":
        """Rows are per variant and warehouse; rows sharing an identifier are summed."""
        index = cls()
        for row in rows:
            if not isinstance(row, dict):
                continue
            stock = read_stock(row)
            if stock.known:
                index.add((row.get(k) for k in STOCK_ROW_KEYS), stock)
        return index


class ProductEnricher:
    def __init__(
        self,
        client,
        breaker: Optional[RateLimitBreaker] = None,
        rating_concurrency: int = 3,
    ) -> None:
        self.client = client
        self.breaker = breaker
        self.rating_concurrency = max(1, rating_concurrency)

    def enrich(
        self,
        candidate: Candidate,
        ratings: Optional[Dict[str, Tuple[Optional[float], int]]] = None,
    ) -> EnrichedProduct:
        degraded: List[str] = []
        pid = candidate.product_id

        detail = self._lookup("detail", pid, degraded, self.client.get_product_detail, pid)
        detail = detail if isinstance(detail, dict) else {}

        raw_variants = self._lookup("variants", pid, degraded, self.client.get_variants, pid)
        if not isinstance(raw_variants, list) or not raw_variants:
            raw_variants = DETAIL_VARIANTS.extract(detail) or []

        product_stock, warehouses, stock_index = self.fetch_inventory(pid, degraded)

        if ratings is None:
            ratings = self.fetch_ratings([pid])
        rating, review_count = ratings.get(pid, (None, 0))
        rating_estimated = False
        if rating is None:
            rating = estimate_rating(candidate.listed_num)
            rating_estimated = True

        description = DETAIL_DESCRIPTION.extract(detail)
        if not description:
            description = self.backfill_description(candidate)
            if not description:
                degraded.append("description")

        weight_g = to_grams(DETAIL_WEIGHT.extract(detail))
        variants = [
            self.map_variant(row, candidate, weight_g)
            for row in raw_variants
            if isinstance(row, dict)
        ]
        if not variants:
            variants = [
                Variant(
                    variant_id="",
                    sku=candidate.sku,
                    name=candidate.name,
                    price=candidate.price,
                    weight_g=weight_g,
                    image_url=candidate.image_url,
                )
            ]
        for variant in variants:
            self.assign_stock(variant, stock_index, product_stock)

        if not product_stock.known and candidate.listed_stock is not None:
            product_stock = StockLevel(cj_stock=candidate.listed_stock, factory_stock=0)

        if degraded:
            LOGGER.warning("Product %s enriched with unknown %s", pid, ", ".join(degraded))
        return EnrichedProduct(
            candidate=candidate,
            name=strip_cjk(DETAIL_NAME.extract(detail) or candidate.name) or candidate.name,
            images=self._images(detail, candidate),
            description=description or "",
            category_name=DETAIL_CATEGORY.extract(detail),
            weight_g=weight_g,
            length_cm=DETAIL_LENGTH.extract(detail),
            width_cm=DETAIL_WIDTH.extract(detail),
            height_cm=DETAIL_HEIGHT.extract(detail),
            rating=rating,
            review_count=review_count,
            rating_estimated=rating_estimated,
            variants=variants,
            stock=product_stock,
            warehouses=warehouses,
            degraded_fields=degraded,
        )

    def map_variant(self, row: Dict[str, Any], candidate: Candidate, product_weight: Optional[float]) -> Variant:
        variant_key = strip_cjk(VARIANT_KEY.extract(row))
        color, size = parse_variant_key(variant_key)
        return Variant(
            variant_id=VARIANT_ID.extract(row),
            sku=VARIANT_SKU.extract(row),
            name=strip_cjk(VARIANT_NAME.extract(row)) or variant_key or candidate.name,
            price=VARIANT_PRICE.extract(row) or candidate.price,
            variant_key=variant_key,
            size=size,
            color=color,
            weight_g=to_grams(VARIANT_WEIGHT.extract(row)) or product_weight,
            image_url=VARIANT_IMAGE.extract(row),
        )

    def assign_stock(self, variant: Variant, index: StockIndex, product_stock: StockLevel) -> None:
        stock = index.lookup(
            [variant.sku, variant.variant_id, variant.variant_key, variant.name],
            fuzzy_identifiers=[variant.sku, variant.variant_id],
        )
        if stock is not None:
            variant.stock = stock
            variant.stock_source = "variant"
        elif product_stock.known:
            variant.stock = product_stock
            variant.stock_source = "product"

    def fetch_inventory(self, pid: str, degraded: List[str]) -> Tuple[StockLevel, List[WarehouseStock], StockIndex]:
        product_stock = StockLevel()
        warehouses: List[WarehouseStock] = []
        variant_rows: List[Dict[str, Any]] = []
        if self.breaker is not None and self.breaker.is_open():
            degraded.append("inventory")
            return product_stock, warehouses, StockIndex()

        data = self._lookup("inventory", pid, degraded, self.client.get_inventory, pid)
        if isinstance(data, dict):
            for row in as_list(data.get("inventories")) or []:
                if not isinstance(row, dict):
                    continue
                stock = read_stock(row)
                if not stock.known:
                    continue
                warehouses.append(
                    WarehouseStock(
                        area=WAREHOUSE_AREA.extract(row),
                        country_code=WAREHOUSE_COUNTRY.extract(row),
                        cj_stock=stock.cj_stock or 0,
                        factory_stock=stock.factory_stock or 0,
                    )
                )
                product_stock = add_stock(product_stock, stock)
            variant_rows = as_list(data.get("variantInventories")) or []
            if not warehouses:
                product_stock = read_stock(data)

        rows = self._lookup("variant_inventory", pid, degraded, self.client.get_variant_inventory, pid)
        if isinstance(rows, dict):
            rows = as_list(rows.get("list")) or []
        if isinstance(rows, list) and rows:
            variant_rows = rows

        index = StockIndex.from_rows(variant_rows)
        if not product_stock.known and variant_rows:
            for row in variant_rows:
                if isinstance(row, dict):
                    product_stock = add_stock(product_stock, read_stock(row))
        return product_stock, warehouses, index

    def fetch_ratings(self, product_ids: List[str]) -> Dict[str, Tuple[Optional[float], int]]:
        """Average comment score and review count per product, fetched with a small pool."""
        if not product_ids:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.rating_concurrency, len(product_ids))) as pool:
            results = list(pool.map(self._rating_for, product_ids))
        return dict(zip(product_ids, results))

    def _rating_for(self, pid: str) -> Tuple[Optional[float], int]:
        try:
            data = self.client.get_product_comments(pid)
        except RECOVERABLE_ERRORS as e:
            LOGGER.warning("Rating lookup failed for %s: %s", pid, e)
            return None, 0
        comments = COMMENT_LIST.extract(data) or []
        scores = [s for s in (COMMENT_SCORE.extract(c) for c in comments) if s is not None]
        total = COMMENT_TOTAL.extract(data)
        if not scores:
            return None, total or 0
        return sum(scores) / len(scores), total if total is not None else len(scores)

    def backfill_description(self, candidate: Candidate) -> str:
        keyword = candidate.sku or candidate.name
        if not keyword:
            return ""
        try:
            data = self.client.search_by_keyword(keyword)
        except RECOVERABLE_ERRORS as e:
            LOGGER.debug("Description backfill failed for %s: %s", candidate.product_id, e)
            return ""
        for item in listing_items(data):
            if LISTING_ID.extract(item) == candidate.product_id:
                return SEARCH_DESCRIPTION.extract(item) or ""
        return ""

    def _images(self, detail: Dict[str, Any], candidate: Candidate) -> List[str]:
        images: List[str] = []
        for url in (DETAIL_IMAGES.extract(detail) or []) + [candidate.image_url]:
            url = as_str(url)
            if url and url not in images:
                images.append(url)
        return images

    def _lookup(self, field: str, pid: str, degraded: List[str], fn, *args) -> Any:
        try:
            return fn(*args)
        except RateLimitError as e:
            LOGGER.warning("%s lookup rate limited for %s: %s", field, pid, e)
            if self.breaker is not None:
                self.breaker.record_rate_limit()
        except RECOVERABLE_ERRORS as e:
            LOGGER.warning("%s lookup failed for %s: %s", field, pid, e)
        degraded.append(field)
        return None

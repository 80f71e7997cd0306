"""Data models used across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


# Stop reasons reported by the pipeline
STOP_TARGET_REACHED = "target_reached"
STOP_EXHAUSTED = "exhausted"
STOP_TIMED_OUT = "timed_out"
STOP_CIRCUIT_OPEN = "circuit_open"
STOP_NO_CANDIDATES = "no_candidates"

UNKNOWN = "unknown"


@dataclass
class Credential:
    access_token: str = ""
    access_expiry: float = 0.0
    refresh_token: str = ""
    refresh_expiry: float = 0.0
    last_auth_call_at: float = 0.0

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        return bool(self.access_token) and self.access_expiry - margin > now

    def can_refresh(self, now: float) -> bool:
        return bool(self.refresh_token) and self.refresh_expiry > now


@dataclass
class CategoryCursor:
    category_id: str
    next_page: int = 1
    exhausted: bool = False
    pages_fetched: int = 0


@dataclass(frozen=True)
class Candidate:
    product_id: str
    sku: str
    name: str
    price: float
    currency: str = "USD"
    category_id: str = ""
    listed_num: int = 0
    free_shipping: bool = False
    listed_stock: Optional[int] = None
    image_url: str = ""


@dataclass
class WarehouseStock:
    area: str
    country_code: str
    cj_stock: int
    factory_stock: int

    @property
    def total(self) -> int:
        return self.cj_stock + self.factory_stock


@dataclass
class StockLevel:
    """Per-variant or product-level stock split. None means unknown, never zero."""
    cj_stock: Optional[int] = None
    factory_stock: Optional[int] = None

    @property
    def known(self) -> bool:
        return self.cj_stock is not None or self.factory_stock is not None

    @property
    def total(self) -> Optional[int]:
        if not self.known:
            return None
        return (self.cj_stock or 0) + (self.factory_stock or 0)


@dataclass
class Variant:
    variant_id: str
    sku: str
    name: str
    price: float
    variant_key: str = ""
    size: str = ""
    color: str = ""
    weight_g: Optional[float] = None
    image_url: str = ""
    stock: StockLevel = field(default_factory=StockLevel)
    stock_source: str = UNKNOWN  # "variant", "product", or "unknown"


@dataclass
class EnrichedProduct:
    candidate: Candidate
    name: str
    images: List[str]
    description: str
    category_name: str
    weight_g: Optional[float]
    length_cm: Optional[float]
    width_cm: Optional[float]
    height_cm: Optional[float]
    rating: Optional[float]
    review_count: int
    rating_estimated: bool
    variants: List[Variant]
    stock: StockLevel
    warehouses: List[WarehouseStock] = field(default_factory=list)
    degraded_fields: List[str] = field(default_factory=list)

    @property
    def product_id(self) -> str:
        return self.candidate.product_id


@dataclass
class ShippingQuote:
    variant_id: str
    origin: str
    destination: str
    carrier: str
    price: float
    currency: str = "USD"
    min_days: Optional[int] = None
    max_days: Optional[int] = None
    estimated: bool = False

    @property
    def delivery_days(self) -> str:
        if self.min_days is None:
            return UNKNOWN
        if self.max_days and self.max_days != self.min_days:
            return f"{self.min_days}-{self.max_days}"
        return str(self.min_days)


@dataclass
class PriceBreakdown:
    landed_cost: float
    retail_price: float
    profit: float
    vat: float = 0.0
    payment_fee: float = 0.0
    needs_review: bool = False
    review_reason: str = ""


@dataclass
class PricedVariant:
    variant: Variant
    quote: ShippingQuote
    landed_cost: float
    retail_price: float
    profit: float
    available: bool
    needs_review: bool = False
    review_reason: str = ""

    def to_dict(self) -> Dict:
        stock = self.variant.stock
        return {
            "variant_id": self.variant.variant_id,
            "sku": self.variant.sku,
            "name": self.variant.name,
            "size": self.variant.size,
            "color": self.variant.color,
            "image": self.variant.image_url,
            "unit_price_usd": round(self.variant.price, 2),
            "shipping_usd": round(self.quote.price, 2),
            "shipping_estimated": self.quote.estimated,
            "carrier": self.quote.carrier,
            "delivery_days": self.quote.delivery_days,
            "landed_cost": round(self.landed_cost, 2),
            "retail_price": round(self.retail_price, 2),
            "profit": round(self.profit, 2),
            "available": self.available,
            "stock": stock.total if stock.known else UNKNOWN,
            "cj_stock": stock.cj_stock if stock.cj_stock is not None else UNKNOWN,
            "factory_stock": stock.factory_stock if stock.factory_stock is not None else UNKNOWN,
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
        }


@dataclass
class PricedProduct:
    product: EnrichedProduct
    variants: List[PricedVariant]
    shipping: ShippingQuote

    @property
    def retail_prices(self) -> List[float]:
        return [v.retail_price for v in self.variants]

    @property
    def min_price(self) -> Optional[float]:
        prices = self.retail_prices
        return min(prices) if prices else None

    @property
    def max_price(self) -> Optional[float]:
        prices = self.retail_prices
        return max(prices) if prices else None

    @property
    def avg_price(self) -> Optional[float]:
        prices = self.retail_prices
        return sum(prices) / len(prices) if prices else None

    def to_dict(self) -> Dict:
        product = self.product
        return {
            "product_id": product.product_id,
            "sku": product.candidate.sku,
            "name": product.name,
            "images": product.images,
            "description": product.description,
            "category": product.category_name,
            "weight_g": product.weight_g,
            "rating": product.rating if product.rating is not None else UNKNOWN,
            "review_count": product.review_count,
            "rating_estimated": product.rating_estimated,
            "listed_num": product.candidate.listed_num,
            "stock": product.stock.total if product.stock.known else UNKNOWN,
            "shipping": {
                "carrier": self.shipping.carrier,
                "price_usd": round(self.shipping.price, 2),
                "estimated": self.shipping.estimated,
                "delivery_days": self.shipping.delivery_days,
                "variant_id": self.shipping.variant_id,
            },
            "min_price": _round_or_none(self.min_price),
            "max_price": _round_or_none(self.max_price),
            "avg_price": _round_or_none(self.avg_price),
            "variants": [v.to_dict() for v in self.variants],
            "degraded_fields": product.degraded_fields,
        }


def _round_or_none(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


@dataclass
class SearchRequest:
    category_ids: List[str]
    quantity: int = 25
    min_price: float = 0.0
    max_price: float = 0.0
    min_stock: int = 0
    margin_percent: Optional[float] = None
    min_popularity: int = 0
    min_rating: float = 0.0
    free_shipping_only: bool = False
    sizes: List[str] = field(default_factory=list)
    job_id: str = ""
    destination_country: str = ""


@dataclass
class SearchJob:
    job_id: str
    found: int = 0
    processed: int = 0
    status: str = "running"
    message: str = ""


@dataclass
class SearchDebug:
    candidates_found: int = 0
    candidates_processed: int = 0
    filtered: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, int] = field(default_factory=dict)
    categories_exhausted: List[str] = field(default_factory=list)
    priced: int = 0

    @property
    def success_rate(self) -> float:
        if not self.candidates_processed:
            return 0.0
        return self.priced / self.candidates_processed

    def count_filter(self, reason: str) -> None:
        self.filtered[reason] = self.filtered.get(reason, 0) + 1

    def count_error(self, kind: str) -> None:
        self.errors[kind] = self.errors.get(kind, 0) + 1


@dataclass
class SearchResult:
    ok: bool
    products: List[PricedProduct]
    duration_seconds: float
    stop_reason: str
    message: str
    debug: SearchDebug

    @property
    def count(self) -> int:
        return len(self.products)

    def to_dict(self) -> Dict:
        return {
            "ok": self.ok,
            "products": [p.to_dict() for p in self.products],
            "count": self.count,
            "duration_seconds": round(self.duration_seconds, 2),
            "stop_reason": self.stop_reason,
            "message": self.message,
            "debug": {
                "candidates_found": self.debug.candidates_found,
                "candidates_processed": self.debug.candidates_processed,
                "success_rate": round(self.debug.success_rate, 4),
                "filtered": dict(self.debug.filtered),
                "errors": dict(self.debug.errors),
                "categories_exhausted": list(self.debug.categories_exhausted),
            },
        }

"""Shared fakes for the upstream client and clocks."""

import threading

import pytest

from cjscout.circuit import RateLimitBreaker
from cjscout.enricher import ProductEnricher
from cjscout.pipeline import Orchestrator
from cjscout.pricing import PricingEngine
from cjscout.shipping import ShippingResolver

DEFAULT_FREIGHT = [
    {"logisticName": "CJPacket Ordinary", "logisticPrice": 5.0, "logisticAging": "7-15"},
    {"logisticName": "YunExpress", "logisticPrice": 3.5, "logisticAging": "10-20"},
]


class FakeClock:
    """Manually advanced clock, usable as both ``clock`` and ``sleep``."""

    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []
        self._lock = threading.Lock()

    def __call__(self):
        return self.now

    def advance(self, seconds):
        with self._lock:
            self.now += seconds

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.advance(seconds)


def listing_item(pid, price=10.0, name=None, listed_num=100, free_shipping=False, stock=None):
    item = {
        "id": pid,
        "sku": f"SKU-{pid}",
        "nameEn": name or f"Product {pid}",
        "sellPrice": price,
        "listedNum": listed_num,
        "addMarkStatus": 1 if free_shipping else 0,
        "bigImage": f"https://img.example.com/{pid}.jpg",
    }
    if stock is not None:
        item["warehouseInventoryNum"] = stock
    return item


def _respond(value):
    if isinstance(value, Exception):
        raise value
    if callable(value):
        return value()
    return value


class FakeCJClient:
    """In-memory stand-in for CJClient.

    Tables map ids to payloads; an Exception value is raised and a callable is
    called. Missing ids fall back to simple generated payloads.
    """

    def __init__(self, pages=None, clock=None, freight_seconds=0.0):
        self.pages = pages or {}
        self.details = {}
        self.variants = {}
        self.inventory = {}
        self.variant_inventory = {}
        self.comments = {}
        self.freight = {}
        self.search_items = []
        self.default_freight = DEFAULT_FREIGHT
        self.clock = clock
        self.freight_seconds = freight_seconds
        self.list_calls = []
        self.detail_calls = []
        self.freight_calls = []
        self._lock = threading.Lock()

    def list_by_category(self, category_id, page, page_size=50):
        self.list_calls.append((category_id, page))
        pages = _respond(self.pages.get(category_id, []))
        items = pages[page - 1] if page <= len(pages) else []
        return {"content": [{"productList": items}]}

    def search_by_keyword(self, keyword, page_size=10):
        return {"content": [{"productList": self.search_items}]}

    def get_product_detail(self, product_id):
        with self._lock:
            self.detail_calls.append(product_id)
        default = {"productNameEn": f"Product {product_id}", "description": "A product", "packWeight": 200}
        return _respond(self.details.get(product_id, default))

    def get_variants(self, product_id):
        default = [
            {
                "vid": f"{product_id}-v1",
                "variantSku": f"SKU-{product_id}-BLACK-L",
                "variantKey": "Black-L",
                "variantSellPrice": 10.0,
                "variantWeight": 200,
            }
        ]
        return _respond(self.variants.get(product_id, default))

    def get_product_comments(self, product_id, page_size=50):
        return _respond(self.comments.get(product_id, {"total": 0, "list": []}))

    def get_inventory(self, product_id):
        default = {"inventories": [{"areaEn": "China", "countryCode": "CN", "cjInventoryNum": 40, "factoryInventoryNum": 60}]}
        return _respond(self.inventory.get(product_id, default))

    def get_variant_inventory(self, product_id):
        return _respond(self.variant_inventory.get(product_id, []))

    def freight_calculate(self, variant_id, destination_country, quantity=1, origin_country="CN"):
        with self._lock:
            self.freight_calls.append(variant_id)
        if self.clock is not None and self.freight_seconds:
            self.clock.advance(self.freight_seconds)
        return _respond(self.freight.get(variant_id, self.default_freight))


def make_orchestrator(client, clock=None, breaker=None, pricing_rules=None, **kwargs):
    breaker = breaker or RateLimitBreaker(threshold=3)
    resolver = ShippingResolver(
        client,
        breaker,
        shipping_rules={"preferred_carriers": ["CJPacket Ordinary"]},
        quote_delay=0,
        sleep=lambda seconds: None,
    )
    options = {"batch_size": 10, "time_budget": 600.0, "workers": 4}
    options.update(kwargs)
    return Orchestrator(
        client,
        ProductEnricher(client, breaker=breaker),
        resolver,
        PricingEngine(fx_rate=1.0),
        breaker,
        pricing_rules=pricing_rules or {"default": {"margin_percent": 8}},
        clock=clock or FakeClock(),
        **options,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeCJClient()

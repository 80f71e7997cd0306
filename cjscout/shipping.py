"""Freight selection for enriched products."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from .circuit import RateLimitBreaker, RetryBudget
from .errors import RateLimitError, RateLimitTimeout, UpstreamError
from .fields import as_float, chain, parse_day_range
from .models import EnrichedProduct, ShippingQuote, Variant
from .weight_estimator import estimate_billed_weight, estimate_shipping_usd

LOGGER = logging.getLogger(__name__)

ESTIMATE_CARRIER = "estimate"

CARRIER_NAME = chain("carrier", ["logisticName", "logisticsName", "name"])
CARRIER_PRICE = chain("price", ["logisticPrice", "price", "totalPostage"], accessor=as_float)
CARRIER_DAYS = chain("days", ["logisticAging", "aging", "deliveryDays"])


class ShippingResolver:
    """Picks one freight quote per product.

    Multi-variant products quote the ``heaviest_sample`` heaviest variants and
    keep the most expensive quote. When no live quote is available the
    heaviest variant gets a weight/price tier estimate.
    """

    def __init__(
        self,
        client,
        breaker: RateLimitBreaker,
        destination_country: str = "SA",
        origin_country: str = "CN",
        shipping_rules: Optional[Dict] = None,
        heaviest_sample: int = 2,
        quote_delay: float = 0.2,
        max_attempts: int = 2,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.breaker = breaker
        self.destination_country = destination_country
        self.origin_country = origin_country
        self.shipping_rules = shipping_rules or {}
        self.heaviest_sample = max(1, heaviest_sample)
        self.quote_delay = quote_delay
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.preferred_carriers = [
            c.lower() for c in self.shipping_rules.get("preferred_carriers") or []
        ]

    def resolve(self, product: EnrichedProduct, destination: Optional[str] = None) -> ShippingQuote:
        """Quote for ``destination``, or the resolver's default country."""
        destination = destination or self.destination_country
        variants = product.variants
        if len(variants) <= 1:
            target = variants[0] if variants else None
            quote = self.quote_variant(target, destination) if target is not None else None
            return quote or self.estimate(product, target, destination)

        ordered = heaviest_first(variants, product.weight_g)
        quotes: List[ShippingQuote] = []
        for index, variant in enumerate(ordered[: self.heaviest_sample]):
            if self.breaker.is_open():
                break
            if index and self.quote_delay:
                self._sleep(self.quote_delay)
            quote = self.quote_variant(variant, destination)
            if quote is not None:
                quotes.append(quote)

        if quotes:
            return max(quotes, key=lambda q: q.price)
        return self.estimate(product, ordered[0], destination)

    def quote_variant(self, variant: Optional[Variant], destination: Optional[str] = None) -> Optional[ShippingQuote]:
        """Live quote for one variant, or None once the retry budget is spent."""
        destination = destination or self.destination_country
        if variant is None or not variant.variant_id:
            return None
        budget = RetryBudget(max_attempts=self.max_attempts, backoff_base=self.backoff_seconds)
        while budget.should_retry():
            if self.breaker.is_open():
                return None
            budget.record_attempt()
            try:
                options = self.client.freight_calculate(
                    variant.variant_id,
                    destination,
                    quantity=1,
                    origin_country=self.origin_country,
                )
            except RateLimitError as e:
                LOGGER.warning("Freight quote rate limited for %s: %s", variant.variant_id, e)
                if self.breaker.record_rate_limit():
                    return None
            except (UpstreamError, RateLimitTimeout) as e:
                LOGGER.warning("Freight quote failed for %s: %s", variant.variant_id, e)
            else:
                self.breaker.record_success()
                return self.select_option(variant.variant_id, options, destination)

            if budget.should_retry():
                self._sleep(budget.get_backoff_delay())
        return None

    def select_option(
        self, variant_id: str, options: Sequence[Dict], destination: Optional[str] = None
    ) -> Optional[ShippingQuote]:
        """Preferred carrier when offered, else the cheapest priced option."""
        quotes = []
        for option in options or []:
            price = CARRIER_PRICE.extract(option)
            if price is None or price < 0:
                continue
            min_days, max_days = parse_day_range(CARRIER_DAYS.extract(option))
            quotes.append(
                ShippingQuote(
                    variant_id=variant_id,
                    origin=self.origin_country,
                    destination=destination or self.destination_country,
                    carrier=CARRIER_NAME.extract(option) or "",
                    price=price,
                    min_days=min_days,
                    max_days=max_days,
                )
            )
        if not quotes:
            return None
        for preferred in self.preferred_carriers:
            for quote in quotes:
                if quote.carrier.lower() == preferred:
                    return quote
        return min(quotes, key=lambda q: q.price)

    def estimate(
        self, product: EnrichedProduct, variant: Optional[Variant], destination: Optional[str] = None
    ) -> ShippingQuote:
        weight_g = (variant.weight_g if variant else None) or product.weight_g
        unit_price = (variant.price if variant else 0) or product.candidate.price
        weight = estimate_billed_weight(
            weight_g,
            product.length_cm,
            product.width_cm,
            product.height_cm,
            divisor=float(self.shipping_rules.get("volumetric_divisor") or 6000),
        )
        price = estimate_shipping_usd(unit_price, weight, self.shipping_rules)
        LOGGER.info(
            "Using estimated freight %.2f USD for %s (%s weight)",
            price,
            product.product_id,
            weight.estimation_basis,
        )
        return ShippingQuote(
            variant_id=variant.variant_id if variant else "",
            origin=self.origin_country,
            destination=destination or self.destination_country,
            carrier=ESTIMATE_CARRIER,
            price=price,
            estimated=True,
        )


def heaviest_first(variants: Sequence[Variant], fallback_weight: Optional[float] = None) -> List[Variant]:
    """Variants sorted by weight, heaviest first; ties keep listing order."""
    return sorted(variants, key=lambda v: -(v.weight_g or fallback_weight or 0))


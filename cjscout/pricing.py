"""Landed-cost pricing utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .models import PriceBreakdown

DEFAULT_FX_RATE = 3.75


@dataclass
class PricingRule:
    margin_percent: float
    min_profit: float = 0.0
    vat_rate: float = 0.0
    payment_fee_rate: float = 0.0
    smart_round: bool = False
    max_price: Optional[float] = None


def _rule_from_dict(row: Dict, margin_percent: Optional[float] = None) -> PricingRule:
    return PricingRule(
        margin_percent=float(margin_percent if margin_percent is not None else row.get("margin_percent", 8)),
        min_profit=float(row.get("min_profit", 0) or 0),
        vat_rate=float(row.get("vat_rate", 0) or 0),
        payment_fee_rate=float(row.get("payment_fee_rate", 0) or 0),
        smart_round=bool(row.get("smart_round", False)),
        max_price=float(row["max_price"]) if row.get("max_price") else None,
    )


def rule_for_category(
    pricing_rules: Dict,
    category_name: str = "",
    margin_percent: Optional[float] = None,
) -> PricingRule:
    """Pick the first category rule whose key appears in the category name.

    ``margin_percent`` from the search request overrides the rule's margin.
    """
    normalized = (category_name or "").lower().strip()
    if normalized:
        for key, row in (pricing_rules.get("categories") or {}).items():
            if key.lower() in normalized:
                return _rule_from_dict(row, margin_percent)
    return _rule_from_dict(pricing_rules.get("default") or {}, margin_percent)


def smart_round(price: float, points: Sequence[float]) -> float:
    """Nearest configured price point at or above ``price``, else the ceiling."""
    for point in sorted(points):
        if price <= point:
            return float(point)
    return float(math.ceil(price))


class PricingEngine:
    """Converts USD cost + shipping into a local retail price with a guaranteed margin.

    The margin is a fraction of the retail price: retail = landed / (1 - margin).
    Nothing is rounded here except by smart rounding; presentation rounds.
    """

    def __init__(self, fx_rate: float = DEFAULT_FX_RATE, smart_round_points: Optional[List[float]] = None) -> None:
        if fx_rate <= 0:
            raise ValueError("fx_rate must be positive")
        self.fx_rate = fx_rate
        self.smart_round_points = list(smart_round_points or [])

    def to_local(self, amount: float) -> float:
        return amount * self.fx_rate

    def price(
        self,
        product_cost: float,
        shipping_cost: float,
        margin_percent: float,
        rule: Optional[PricingRule] = None,
    ) -> PriceBreakdown:
        if not 0 <= margin_percent < 100:
            raise ValueError("margin_percent must be in [0, 100)")
        rule = rule or PricingRule(margin_percent=margin_percent)
        fee_rate = rule.payment_fee_rate
        if not 0 <= fee_rate < 1:
            raise ValueError("payment_fee_rate must be in [0, 1)")

        landed = self.to_local(product_cost) + self.to_local(shipping_cost)
        vat = landed * rule.vat_rate
        cost_base = landed + vat
        margin = margin_percent / 100

        retail = cost_base / (1 - margin) / (1 - fee_rate)
        profit = retail - retail * fee_rate - cost_base

        reasons = []
        if profit < rule.min_profit:
            retail = (cost_base + rule.min_profit) / (1 - fee_rate)
            reasons.append(f"Profit {profit:.2f} below minimum {rule.min_profit:.2f}; price raised")
        if rule.max_price and retail > rule.max_price:
            reasons.append(f"Price {retail:.2f} exceeds category maximum {rule.max_price:.2f}")
        needs_review = bool(reasons)
        review_reason = " | ".join(reasons)

        if rule.smart_round and self.smart_round_points:
            retail = smart_round(retail, self.smart_round_points)

        payment_fee = retail * fee_rate
        profit = retail - payment_fee - cost_base
        return PriceBreakdown(
            landed_cost=landed,
            retail_price=retail,
            profit=profit,
            vat=vat,
            payment_fee=payment_fee,
            needs_review=needs_review,
            review_reason=review_reason,
        )

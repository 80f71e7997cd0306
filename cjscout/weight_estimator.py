"""Billed weight and fallback freight estimation.

Used when no live freight quote is available. The estimate follows these rules:
1. Volumetric weight = L x W x H / divisor (cm, result in kg)
2. Billed weight = max(actual weight, volumetric weight)
3. Known billed weight -> weight tier table, extrapolated above the top tier
4. Unknown weight -> price tier table on the product's unit price
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_DIVISOR = 6000

DEFAULT_WEIGHT_TIERS = [
    {"max_kg": 0.5, "price": 6.5},
    {"max_kg": 1.0, "price": 9.5},
    {"max_kg": 1.5, "price": 12.0},
    {"max_kg": 2.0, "price": 14.5},
    {"max_kg": 3.0, "price": 20.0},
    {"max_kg": 5.0, "price": 29.0},
]

DEFAULT_PRICE_TIERS = [
    {"max_price": 10, "price": 4.99},
    {"max_price": 20, "price": 6.99},
    {"max_price": None, "price": 8.99},
]


@dataclass
class WeightEstimate:
    """Weight estimation result."""
    actual_kg: Optional[float]
    volumetric_kg: Optional[float]
    billed_kg: Optional[float]
    estimation_basis: str  # "actual", "volumetric" or "unknown"


def estimate_billed_weight(
    weight_g: Optional[float],
    length_cm: Optional[float] = None,
    width_cm: Optional[float] = None,
    height_cm: Optional[float] = None,
    divisor: float = DEFAULT_DIVISOR,
) -> WeightEstimate:
    actual_kg = weight_g / 1000 if weight_g else None
    volumetric_kg = None
    if length_cm and width_cm and height_cm and divisor > 0:
        volumetric_kg = round(length_cm * width_cm * height_cm / divisor, 3)

    if actual_kg is None and volumetric_kg is None:
        return WeightEstimate(None, None, None, "unknown")
    if volumetric_kg is not None and (actual_kg is None or volumetric_kg > actual_kg):
        return WeightEstimate(actual_kg, volumetric_kg, volumetric_kg, "volumetric")
    return WeightEstimate(actual_kg, volumetric_kg, round(actual_kg, 3), "actual")


def price_for_weight(billed_kg: float, tiers: List[Dict]) -> float:
    """First tier covering the weight; linear extrapolation beyond the last tier."""
    ordered = sorted(tiers, key=lambda t: float(t["max_kg"]))
    for tier in ordered:
        if billed_kg <= float(tier["max_kg"]) + 1e-9:
            return float(tier["price"])
    last = ordered[-1]
    prev = ordered[-2] if len(ordered) > 1 else {"max_kg": 0, "price": 0}
    step_kg = max(float(last["max_kg"]) - float(prev["max_kg"]), 1.0)
    per_kg = (float(last["price"]) - float(prev["price"])) / step_kg
    extra_kg = billed_kg - float(last["max_kg"])
    return round(float(last["price"]) + per_kg * extra_kg, 2)


def price_for_unit_price(unit_price: float, tiers: List[Dict]) -> float:
    for tier in tiers:
        ceiling = tier.get("max_price")
        if ceiling is None or unit_price <= float(ceiling):
            return float(tier["price"])
    return float(tiers[-1]["price"])


def estimate_shipping_usd(
    unit_price: float,
    weight: WeightEstimate,
    shipping_rules: Optional[Dict] = None,
) -> float:
    rules = shipping_rules or {}
    if weight.billed_kg:
        return price_for_weight(weight.billed_kg, rules.get("weight_tiers") or DEFAULT_WEIGHT_TIERS)
    return price_for_unit_price(unit_price, rules.get("price_tiers") or DEFAULT_PRICE_TIERS)

"""Tests for fallback freight estimation."""

from cjscout.weight_estimator import (
    DEFAULT_PRICE_TIERS,
    DEFAULT_WEIGHT_TIERS,
    estimate_billed_weight,
    estimate_shipping_usd,
    price_for_unit_price,
    price_for_weight,
)


def test_volumetric_weight_wins_when_heavier():
    """Test billed weight for a light but bulky parcel."""
    weight = estimate_billed_weight(200, 30, 20, 20)
    assert weight.volumetric_kg == 2.0
    assert weight.billed_kg == 2.0
    assert weight.estimation_basis == "volumetric"


def test_actual_weight_wins_when_heavier():
    """Test billed weight for a dense parcel."""
    weight = estimate_billed_weight(1500, 10, 10, 10)
    assert weight.billed_kg == 1.5
    assert weight.estimation_basis == "actual"


def test_unknown_weight():
    """Test that missing weight and dimensions stay unknown."""
    weight = estimate_billed_weight(None)
    assert weight.billed_kg is None
    assert weight.estimation_basis == "unknown"


def test_weight_tiers_and_extrapolation():
    """Test tier lookup and linear extrapolation past the top tier."""
    assert price_for_weight(0.5, DEFAULT_WEIGHT_TIERS) == 6.5
    assert price_for_weight(0.8, DEFAULT_WEIGHT_TIERS) == 9.5
    assert price_for_weight(7.0, DEFAULT_WEIGHT_TIERS) == 38.0


def test_price_tiers():
    """Test the unit-price fallback table."""
    assert price_for_unit_price(10, DEFAULT_PRICE_TIERS) == 4.99
    assert price_for_unit_price(15, DEFAULT_PRICE_TIERS) == 6.99
    assert price_for_unit_price(25, DEFAULT_PRICE_TIERS) == 8.99


def test_estimate_uses_price_tiers_without_weight():
    """Test that unknown weight falls back to price tiers."""
    assert estimate_shipping_usd(12.0, estimate_billed_weight(None)) == 6.99

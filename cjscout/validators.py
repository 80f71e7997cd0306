"""Listing and request validation rules."""

from __future__ import annotations

from typing import Dict

from .models import Candidate, SearchRequest


def is_blocked_listing(listing: Candidate, categories: Dict) -> bool:
    blocked_keywords = [k.lower() for k in categories.get("blocked_keywords", [])]
    title = listing.name.lower()
    return any(word in title for word in blocked_keywords)


def validate_request(request: SearchRequest) -> None:
    if not request.category_ids:
        raise ValueError("category_ids: at least one category is required")
    if request.quantity < 1:
        raise ValueError("quantity: must be >= 1")
    if request.min_price < 0 or request.max_price < 0:
        raise ValueError("min_price/max_price: must be >= 0")
    if request.max_price and request.min_price > request.max_price:
        raise ValueError("min_price: must not exceed max_price")
    if request.min_stock < 0:
        raise ValueError("min_stock: must be >= 0")
    if request.margin_percent is not None and not 0 <= request.margin_percent < 100:
        raise ValueError("margin_percent: must be in [0, 100)")
    if request.min_rating < 0 or request.min_rating > 5:
        raise ValueError("min_rating: must be between 0 and 5")

"""Tests for the candidate pool."""

from cjscout.collector import CandidateCollector
from cjscout.models import Candidate, SearchDebug


def candidate(pid, price=10.0, name="Desk lamp", listed_num=100, free_shipping=False):
    return Candidate(
        product_id=pid,
        sku=f"SKU-{pid}",
        name=name,
        price=price,
        listed_num=listed_num,
        free_shipping=free_shipping,
    )


def test_duplicate_product_kept_once():
    """Test that adding the same product id twice keeps one candidate."""
    collector = CandidateCollector()
    assert collector.add(candidate("p1")) is True
    assert collector.add(candidate("p1", price=12.0)) is False
    assert len(collector.pool) == 1
    assert collector.debug.filtered == {"duplicate": 1}


def test_price_range_prefilter():
    """Test the inclusive [min, max] price filter."""
    collector = CandidateCollector(min_price=5, max_price=20)
    assert collector.add(candidate("low", price=4.99)) is False
    assert collector.add(candidate("high", price=20.01)) is False
    assert collector.add(candidate("edge", price=20.0)) is True
    assert collector.debug.filtered["price"] == 2


def test_popularity_free_shipping_and_blocked_keywords():
    """Test the listing-level filters."""
    debug = SearchDebug()
    collector = CandidateCollector(
        min_popularity=50,
        free_shipping_only=True,
        blocked_keywords=["vape"],
        debug=debug,
    )
    assert collector.add(candidate("a", listed_num=10, free_shipping=True)) is False
    assert collector.add(candidate("b", free_shipping=False)) is False
    assert collector.add(candidate("c", name="Vape Pen", free_shipping=True)) is False
    assert collector.add(candidate("d", free_shipping=True)) is True
    assert debug.filtered == {"popularity": 1, "free_shipping": 1, "blocked_keyword": 1}
    assert debug.candidates_found == 1


def test_needs_more_uses_headroom():
    """Test that crawling continues until the pool holds twice what is still needed."""
    collector = CandidateCollector(headroom=2)
    for i in range(9):
        collector.add(candidate(f"p{i}"))
    assert collector.needs_more(5) is True
    collector.add(candidate("p9"))
    assert collector.needs_more(5) is False
    assert collector.needs_more(0) is False


def test_take_consumes_in_order():
    """Test that batches come out in insertion order without repeats."""
    collector = CandidateCollector()
    for i in range(5):
        collector.add(candidate(f"p{i}"))
    assert [c.product_id for c in collector.take(3)] == ["p0", "p1", "p2"]
    assert [c.product_id for c in collector.take(3)] == ["p3", "p4"]
    assert collector.take(3) == []
    assert collector.available == 0

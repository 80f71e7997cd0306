"""Tests for round-robin category crawling."""

from conftest import FakeCJClient, listing_item
from cjscout.collector import CandidateCollector
from cjscout.crawler import CategoryCrawler, listing_items, to_candidate
from cjscout.errors import UpstreamError


def pages_of(prefix, count, per_page=2):
    return [
        [listing_item(f"{prefix}{p}-{i}") for i in range(per_page)]
        for p in range(count)
    ]


def test_round_robin_fetches_one_page_per_category():
    """Test that each cycle takes one page from every category in order."""
    client = FakeCJClient(pages={"A": pages_of("a", 3), "B": pages_of("b", 3)})
    crawler = CategoryCrawler(client, ["A", "B"])
    collector = CandidateCollector()
    crawler.crawl_cycle(collector)
    crawler.crawl_cycle(collector)
    assert client.list_calls == [("A", 1), ("B", 1), ("A", 2), ("B", 2)]
    assert len(collector.pool) == 8


def test_empty_page_exhausts_category_and_skips_it():
    """Test that an empty page 3 marks the category exhausted for good."""
    client = FakeCJClient(pages={"X": pages_of("x", 2), "Y": pages_of("y", 5)})
    crawler = CategoryCrawler(client, ["X", "Y"])
    collector = CandidateCollector()
    for _ in range(4):
        crawler.crawl_cycle(collector)
    x_pages = [page for category, page in client.list_calls if category == "X"]
    assert x_pages == [1, 2, 3]
    assert crawler.exhausted_categories() == ["X"]
    assert [c.category_id for c in crawler.active_cursors()] == ["Y"]


def test_page_ceiling_exhausts_category():
    """Test the hard page-count ceiling."""
    client = FakeCJClient(pages={"A": pages_of("a", 5)})
    crawler = CategoryCrawler(client, ["A"], max_pages=2)
    collector = CandidateCollector()
    crawler.crawl_cycle(collector)
    crawler.crawl_cycle(collector)
    crawler.crawl_cycle(collector)
    assert client.list_calls == [("A", 1), ("A", 2)]
    assert crawler.exhausted is True


def test_cycle_of_duplicates_adds_zero():
    """Test that a cycle adding only known products reports zero."""
    page = [listing_item("same")]
    client = FakeCJClient(pages={"A": [page], "B": [page]})
    crawler = CategoryCrawler(client, ["A", "B"])
    collector = CandidateCollector()
    assert crawler.crawl_cycle(collector) == 1
    assert crawler.crawl_cycle(collector) == 0


def test_repeated_listing_errors_exhaust_category():
    """Test that a persistently failing category is given up on."""
    client = FakeCJClient(pages={"A": UpstreamError("502")})
    crawler = CategoryCrawler(client, ["A"])
    collector = CandidateCollector()
    for _ in range(3):
        crawler.crawl_cycle(collector)
    assert crawler.exhausted is True
    assert len(client.list_calls) == 3


def test_duplicate_category_ids_collapsed():
    """Test that repeated category ids share one cursor."""
    crawler = CategoryCrawler(FakeCJClient(), ["A", " A", "B", ""])
    assert [c.category_id for c in crawler.cursors] == ["A", "B"]


def test_legacy_list_shape():
    """Test mapping of the older list payload shape."""
    data = {"list": [{"pid": "p1", "productNameEn": "Lamp", "sellPrice": "3.20 -- 5.80", "productSku": "CJ1"}]}
    items = listing_items(data)
    candidate = to_candidate(items[0], "cat")
    assert candidate.product_id == "p1"
    assert candidate.name == "Lamp"
    assert candidate.price == 3.2
    assert candidate.sku == "CJ1"


def test_item_without_price_is_skipped():
    """Test that unusable listing items do not become candidates."""
    assert to_candidate({"id": "p1", "nameEn": "Lamp"}, "cat") is None


class ScriptedListingClient(FakeCJClient):
    """Serves listing responses from a script; Exception entries are raised."""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)

    def list_by_category(self, category_id, page, page_size=50):
        self.list_calls.append((category_id, page))
        response = self.script.pop(0)
        if isinstance(response, Exception):
            raise response
        return {"content": [{"productList": response}]}


def test_listing_errors_must_be_consecutive_to_exhaust():
    """Test that a good page resets the per-category error count."""
    client = ScriptedListingClient(
        [UpstreamError("502"), UpstreamError("502"), [listing_item("a1")], UpstreamError("502"), UpstreamError("502")]
    )
    crawler = CategoryCrawler(client, ["A"])
    collector = CandidateCollector()
    for _ in range(5):
        crawler.crawl_cycle(collector)
    assert crawler.exhausted is False
    assert crawler.listing_errors == 4
    assert crawler.last_cycle_errors == 1
    assert client.list_calls[-1] == ("A", 2)

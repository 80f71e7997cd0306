"""Tests for the local sinks and the progress reporter."""

import csv

from cjscout.models import (
    Candidate,
    EnrichedProduct,
    PricedProduct,
    PricedVariant,
    SearchJob,
    ShippingQuote,
    StockLevel,
    Variant,
)
from cjscout.sheets_client import PRICED_HEADERS, LocalSheetsClient, ProgressReporter, priced_rows


def make_priced_product():
    quote = ShippingQuote(variant_id="v1", origin="CN", destination="SA", carrier="CJPacket Ordinary", price=5.0)
    variants = [
        Variant(variant_id="v1", sku="S-M", name="Red-M", price=10.0, size="M", color="Red"),
        Variant(variant_id="v2", sku="S-L", name="Red-L", price=11.0, size="L", color="Red", stock=StockLevel(3, 0)),
    ]
    product = EnrichedProduct(
        candidate=Candidate(product_id="p1", sku="S", name="Tee", price=10.0),
        name="Tee",
        images=[],
        description="",
        category_name="Clothing",
        weight_g=None,
        length_cm=None,
        width_cm=None,
        height_cm=None,
        rating=4.2,
        review_count=3,
        rating_estimated=False,
        variants=variants,
        stock=StockLevel(),
    )
    priced = [
        PricedVariant(variant=v, quote=quote, landed_cost=v.price + 5.0, retail_price=(v.price + 5.0) / 0.92,
                      profit=(v.price + 5.0) / 0.92 - (v.price + 5.0), available=True)
        for v in variants
    ]
    return PricedProduct(product=product, variants=priced, shipping=quote)


def test_priced_rows_one_per_variant():
    """Test flattening a priced product into variant rows."""
    rows = priced_rows("job-1", [make_priced_product()])
    assert len(rows) == 2
    assert rows[0]["product_id"] == "p1"
    assert rows[0]["stock"] == "unknown"
    assert rows[1]["stock"] == "3"
    assert list(rows[0].keys()) == PRICED_HEADERS


def test_local_client_writes_job_progress(tmp_path):
    """Test that the job row is overwritten on each write."""
    client = LocalSheetsClient(str(tmp_path))
    client.write_job(SearchJob(job_id="job-1", found=10))
    client.write_job(SearchJob(job_id="job-1", found=20, processed=10, status="completed"))
    row = client.read_job("job-1")
    assert row["found"] == "20"
    assert row["status"] == "completed"
    assert client.read_job("missing") is None


def test_local_client_appends_priced_csv(tmp_path):
    """Test that priced variants are appended below one header row."""
    client = LocalSheetsClient(str(tmp_path))
    client.append_priced("job-1", [make_priced_product()])
    client.append_priced("job-2", [make_priced_product()])
    with (tmp_path / "Priced.csv").open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 4
    assert rows[2]["job_id"] == "job-2"


class BrokenSink:
    def __init__(self):
        self.calls = 0

    def write_job(self, job):
        self.calls += 1
        raise OSError("sheet unavailable")


def test_progress_failures_never_propagate():
    """Test that a failing progress sink does not raise."""
    sink = BrokenSink()
    reporter = ProgressReporter(sink, "job-1")
    reporter.update(found=5, processed=2)
    reporter.fail("boom")
    reporter.close()
    assert sink.calls == 2


def test_progress_without_sink_is_noop():
    """Test that a reporter without a sink only tracks state."""
    reporter = ProgressReporter(None, "job-1")
    reporter.update(found=1, processed=1)
    reporter.finish("done")
    reporter.close()
    assert reporter.job.status == "completed"
    assert reporter.job.message == "done"

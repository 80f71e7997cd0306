"""Tests for CLI argument handling and the run summary."""

from cjscout.main import build_parser, request_from_args
from cjscout.models import SearchDebug, SearchResult
from cjscout.notifier import Notifier, run_summary


def test_request_from_args():
    """Test mapping CLI flags to a search request."""
    args = build_parser().parse_args(
        [
            "--categories", "A, B,,C",
            "--quantity", "12",
            "--max-price", "30",
            "--margin", "15",
            "--sizes", "S,M",
            "--free-shipping-only",
            "--job-id", "job-9",
        ]
    )
    request = request_from_args(args)
    assert request.category_ids == ["A", "B", "C"]
    assert request.quantity == 12
    assert request.max_price == 30.0
    assert request.margin_percent == 15.0
    assert request.sizes == ["S", "M"]
    assert request.free_shipping_only is True
    assert request.job_id == "job-9"


def test_margin_defaults_to_rule():
    """Test that an omitted margin defers to the pricing rules."""
    request = request_from_args(build_parser().parse_args(["--categories", "A"]))
    assert request.margin_percent is None
    assert request.job_id


def test_run_summary_and_notifier(capsys):
    """Test the printed run summary."""
    debug = SearchDebug(candidates_processed=4, priced=0, errors={"rate_limit": 3})
    result = SearchResult(ok=False, products=[], duration_seconds=12.0, stop_reason="circuit_open",
                          message="Upstream rate limit reached; try again later", debug=debug)
    assert "rate_limit=3" in run_summary(result)
    Notifier().send_result("job-1", result)
    assert "Search job-1 FAILED" in capsys.readouterr().out

"""Command line entry point for the product discovery pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .cj_client import CJClient
from .config_loader import ConfigBundle, load_all_configs
from .errors import ConfigurationError
from .models import STOP_CIRCUIT_OPEN, SearchRequest
from .notifier import DiscordNotifier, Notifier
from .pipeline import build_orchestrator
from .rate_limiter import RateLimiter
from .sheets_client import GoogleSheetsClient, LocalSheetsClient, ProgressReporter
from .token_manager import TokenManager
from .token_store import JsonFileTokenStore

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CIRCUIT_OPEN = 2


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover and price CJ Dropshipping products")
    parser.add_argument("--categories", required=True, help="Comma-separated category ids")
    parser.add_argument("--quantity", type=int, default=25)
    parser.add_argument("--min-price", type=float, default=0.0)
    parser.add_argument("--max-price", type=float, default=0.0)
    parser.add_argument("--min-stock", type=int, default=0)
    parser.add_argument("--margin", type=float, default=None, help="Margin percent of retail price")
    parser.add_argument("--min-popularity", type=int, default=0)
    parser.add_argument("--min-rating", type=float, default=0.0)
    parser.add_argument("--free-shipping-only", action="store_true")
    parser.add_argument("--sizes", default="", help="Comma-separated sizes, e.g. S,M,L")
    parser.add_argument("--job-id", default="")
    parser.add_argument("--export", action="store_true", help="Append priced variants to the results sheet")
    parser.add_argument("--config-dir", default="config")
    parser.add_argument("--json", action="store_true", help="Print the full response as JSON")
    return parser


def request_from_args(args: argparse.Namespace) -> SearchRequest:
    return SearchRequest(
        category_ids=_split(args.categories),
        quantity=args.quantity,
        min_price=args.min_price,
        max_price=args.max_price,
        min_stock=args.min_stock,
        margin_percent=args.margin,
        min_popularity=args.min_popularity,
        min_rating=args.min_rating,
        free_shipping_only=args.free_shipping_only,
        sizes=_split(args.sizes),
        job_id=args.job_id or uuid.uuid4().hex[:12],
    )


def service_account_path() -> Optional[str]:
    """Accepts either a file path or the JSON content itself (CI secrets)."""
    value = os.getenv("SHEETS_SERVICE_ACCOUNT_FILE")
    if not value:
        return None
    if value.strip().startswith("{"):
        temp_sa_file = Path(tempfile.gettempdir()) / "service_account.json"
        temp_sa_file.write_text(value, encoding="utf-8")
        return str(temp_sa_file)
    return value


def build_sheets():
    spreadsheet_id = os.getenv("SHEETS_SPREADSHEET_ID")
    sa_path = service_account_path()
    if spreadsheet_id and sa_path:
        return GoogleSheetsClient(service_account_file=sa_path, spreadsheet_url=spreadsheet_id)
    return LocalSheetsClient(base_dir=os.getenv("JOB_STORE_DIR", "data"))


def build_client(config: ConfigBundle) -> CJClient:
    pipeline = config.pipeline
    limiter_cfg = pipeline.get("rate_limiter") or {}
    token_cfg = pipeline.get("token") or {}
    client = CJClient(
        timeout=float((pipeline.get("http") or {}).get("timeout_seconds", 20)),
        rate_limiter=RateLimiter(interval=float(limiter_cfg.get("interval_seconds", 1.0))),
        acquire_timeout=float(limiter_cfg.get("acquire_timeout_seconds", 30)),
    )
    api_key = os.getenv("CJ_API_KEY")
    if not api_key:
        raise ConfigurationError("CJ_API_KEY is not set")
    store = JsonFileTokenStore(os.getenv("CJ_TOKEN_FILE", "data/cj_token.json"))
    client.bind_token_manager(
        TokenManager(
            client,
            store,
            api_key,
            cooldown_seconds=float(token_cfg.get("cooldown_seconds", 300)),
            safety_margin=float(token_cfg.get("safety_margin_seconds", 60)),
        )
    )
    return client


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    request = request_from_args(args)
    notifier = DiscordNotifier() if os.getenv("DISCORD_WEBHOOK_URL") else Notifier()

    sheets = None
    try:
        sheets = build_sheets()
    except Exception as e:  # noqa: BLE001
        LOGGER.warning("Progress sink unavailable, continuing without it: %s", e)
    reporter = ProgressReporter(sheets, request.job_id)

    try:
        config = load_all_configs(args.config_dir)
        client = build_client(config)
        result = build_orchestrator(client, config).run(request, reporter)
    except (ConfigurationError, ValueError, OSError) as e:
        LOGGER.error("Search %s failed: %s", request.job_id, e)
        reporter.fail(str(e))
        reporter.close()
        print(json.dumps({"ok": False, "error": str(e), "job_id": request.job_id}))
        return EXIT_FATAL
    reporter.close()

    if args.export and sheets is not None and result.products:
        try:
            written = sheets.append_priced(request.job_id, result.products)
            LOGGER.info("Exported %d priced variants", written)
        except Exception as e:  # noqa: BLE001
            LOGGER.warning("Export failed: %s", e)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        for product in result.products:
            print(
                f"{product.product.product_id}  {product.product.name[:60]:<60}  "
                f"{product.min_price:.2f}-{product.max_price:.2f}"
            )
        print(result.message)

    if not result.ok or result.stop_reason == STOP_CIRCUIT_OPEN:
        notifier.send_result(request.job_id, result)
    if not result.ok:
        return EXIT_CIRCUIT_OPEN
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

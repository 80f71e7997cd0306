"""Discovery-and-pricing run: crawl, enrich in batches, quote freight, price."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from .circuit import RateLimitBreaker
from .collector import CandidateCollector
from .config_loader import ConfigBundle
from .crawler import MAX_PAGES, CategoryCrawler
from .enricher import ProductEnricher
from .errors import CJError, ConfigurationError
from .models import (
    STOP_CIRCUIT_OPEN,
    STOP_EXHAUSTED,
    STOP_NO_CANDIDATES,
    STOP_TARGET_REACHED,
    STOP_TIMED_OUT,
    Candidate,
    PricedProduct,
    PricedVariant,
    SearchDebug,
    SearchRequest,
    SearchResult,
)
from .pricing import PricingEngine, rule_for_category
from .sheets_client import ProgressReporter
from .shipping import ShippingResolver
from .validators import validate_request

LOGGER = logging.getLogger(__name__)

CRAWLING = "crawling"
ENRICHING = "enriching"
DONE = "done"

Ratings = Dict[str, Tuple[Optional[float], int]]


class Orchestrator:
    """Drives one search run.

    Stop checks (target, circuit breaker, time budget) run between batches;
    a batch in flight always completes.
    """

    def __init__(
        self,
        client,
        enricher: ProductEnricher,
        resolver: ShippingResolver,
        pricing: PricingEngine,
        breaker: RateLimitBreaker,
        pricing_rules: Optional[Dict] = None,
        blocked_keywords: Optional[List[str]] = None,
        batch_size: int = 10,
        time_budget: float = 600.0,
        page_size: int = 50,
        max_pages: int = MAX_PAGES,
        headroom: float = 2.0,
        workers: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.enricher = enricher
        self.resolver = resolver
        self.pricing = pricing
        self.breaker = breaker
        self.pricing_rules = pricing_rules or {}
        self.blocked_keywords = blocked_keywords or []
        self.batch_size = max(1, batch_size)
        self.time_budget = time_budget
        self.page_size = page_size
        self.max_pages = max_pages
        self.headroom = headroom
        self.workers = max(1, workers)
        self._clock = clock
        self.state = DONE

    def run(self, request: SearchRequest, reporter: Optional[ProgressReporter] = None) -> SearchResult:
        validate_request(request)
        self.breaker.reset()
        reporter = reporter or ProgressReporter(None, request.job_id)
        started = self._clock()
        debug = SearchDebug()
        crawler = CategoryCrawler(self.client, request.category_ids, self.page_size, self.max_pages)
        collector = CandidateCollector(
            min_price=request.min_price,
            max_price=request.max_price,
            min_popularity=request.min_popularity,
            free_shipping_only=request.free_shipping_only,
            blocked_keywords=self.blocked_keywords,
            headroom=self.headroom,
            debug=debug,
        )
        products: List[PricedProduct] = []
        crawl_done = False
        stop_reason = ""

        while True:
            still_needed = request.quantity - len(products)
            if still_needed <= 0:
                stop_reason = STOP_TARGET_REACHED
                break

            self.state = CRAWLING
            while not crawl_done and collector.needs_more(still_needed):
                if crawler.exhausted or self._timed_out(started):
                    break
                added = crawler.crawl_cycle(collector)
                if added == 0 and not crawler.last_cycle_errors:
                    LOGGER.info("Crawl cycle added nothing, crawling finished")
                    crawl_done = True
            if self._timed_out(started):
                stop_reason = STOP_TIMED_OUT
                break

            batch = collector.take(self.batch_size)
            if not batch:
                found_any = debug.candidates_found or crawler.listing_errors
                stop_reason = STOP_EXHAUSTED if found_any else STOP_NO_CANDIDATES
                break

            self.state = ENRICHING
            priced = self._process_batch(batch, request, debug)
            products.extend(priced[:still_needed])
            debug.priced = len(products)
            LOGGER.info(
                "Batch done: %d/%d priced, %d candidates processed",
                len(products), request.quantity, debug.candidates_processed,
            )
            reporter.update(
                found=debug.candidates_found,
                processed=debug.candidates_processed,
                message=f"{len(products)}/{request.quantity} products priced",
            )

            if len(products) >= request.quantity:
                stop_reason = STOP_TARGET_REACHED
                break
            if self.breaker.is_open():
                stop_reason = STOP_CIRCUIT_OPEN
                break
            if self._timed_out(started):
                stop_reason = STOP_TIMED_OUT
                break

        self.state = DONE
        debug.categories_exhausted = crawler.exhausted_categories()
        if self.breaker.total_errors:
            debug.errors["rate_limit"] = self.breaker.total_errors
        if crawler.listing_errors:
            debug.errors["listing"] = crawler.listing_errors
        ok = not (stop_reason == STOP_CIRCUIT_OPEN and not products)
        message = self._message(stop_reason, len(products), request.quantity, debug)
        LOGGER.info("Run stopped: %s (%s)", stop_reason, message)
        reporter.finish(message, found=debug.candidates_found, processed=debug.candidates_processed)
        return SearchResult(
            ok=ok,
            products=products,
            duration_seconds=self._clock() - started,
            stop_reason=stop_reason,
            message=message,
            debug=debug,
        )

    def _timed_out(self, started: float) -> bool:
        return self._clock() - started >= self.time_budget

    def _process_batch(self, batch: List[Candidate], request: SearchRequest, debug: SearchDebug) -> List[PricedProduct]:
        ratings = self.enricher.fetch_ratings([c.product_id for c in batch])
        with ThreadPoolExecutor(max_workers=min(self.workers, len(batch))) as pool:
            futures = [pool.submit(self.process_candidate, c, request, ratings) for c in batch]
            outcomes = [f.result() for f in futures]

        priced: List[PricedProduct] = []
        for product, reason in outcomes:
            debug.candidates_processed += 1
            if product is None:
                if reason.startswith("error:"):
                    debug.count_error(reason[len("error:"):])
                else:
                    debug.count_filter(reason)
                continue
            for field in product.product.degraded_fields:
                debug.count_error(f"unknown_{field}")
            if product.shipping.estimated:
                debug.count_error("shipping_estimated")
            priced.append(product)
        return priced

    def process_candidate(
        self, candidate: Candidate, request: SearchRequest, ratings: Optional[Ratings] = None
    ) -> Tuple[Optional[PricedProduct], str]:
        """Enrich, filter, quote and price one candidate.

        Returns the priced product, or None with a filter reason or
        ``error:<kind>``.
        """
        if self.breaker.is_open():
            return None, "error:circuit_open"
        try:
            product = self.enricher.enrich(candidate, ratings)
        except ConfigurationError:
            raise
        except CJError as e:
            LOGGER.warning("Enrichment failed for %s: %s", candidate.product_id, e)
            return None, f"error:{type(e).__name__}"
        if self.breaker.is_open():
            return None, "error:circuit_open"

        if request.min_rating and product.rating is not None and product.rating < request.min_rating:
            return None, "rating"
        if request.min_stock and product.stock.known and product.stock.total < request.min_stock:
            return None, "stock"
        if request.sizes:
            wanted = {s.strip().upper() for s in request.sizes if s.strip()}
            matching = [v for v in product.variants if v.size.upper() in wanted]
            if not matching:
                return None, "size"
            product = replace(product, variants=matching)

        quote = self.resolver.resolve(product, request.destination_country or None)
        rule = rule_for_category(self.pricing_rules, product.category_name, request.margin_percent)
        priced_variants = []
        for variant in product.variants:
            breakdown = self.pricing.price(variant.price, quote.price, rule.margin_percent, rule)
            stock_total = variant.stock.total
            priced_variants.append(
                PricedVariant(
                    variant=variant,
                    quote=quote,
                    landed_cost=breakdown.landed_cost,
                    retail_price=breakdown.retail_price,
                    profit=breakdown.profit,
                    available=stock_total is None or stock_total > 0,
                    needs_review=breakdown.needs_review,
                    review_reason=breakdown.review_reason,
                )
            )
        return PricedProduct(product=product, variants=priced_variants, shipping=quote), ""

    def _message(self, stop_reason: str, found: int, wanted: int, debug: SearchDebug) -> str:
        if stop_reason == STOP_TARGET_REACHED:
            return f"Found {found} products"
        if stop_reason == STOP_NO_CANDIDATES:
            return "No products matched the filters"
        if stop_reason == STOP_CIRCUIT_OPEN:
            if not found:
                return "Upstream rate limit reached; try again later"
            return f"Found {found} of {wanted} products; stopped after repeated upstream rate limiting"
        if stop_reason == STOP_TIMED_OUT:
            return f"Found {found} of {wanted} products; time budget of {int(self.time_budget)}s exceeded"
        exhausted = ", ".join(debug.categories_exhausted) or "all categories"
        if debug.errors.get("listing"):
            return (
                f"Found {found} of {wanted} products; no more candidates in {exhausted} "
                f"after {debug.errors['listing']} failed listing fetches"
            )
        return f"Found {found} of {wanted} products; no more candidates in {exhausted}"


def build_orchestrator(client, config: ConfigBundle, clock: Callable[[], float] = time.monotonic) -> Orchestrator:
    """Wire an Orchestrator from the YAML configuration."""
    pipeline = config.pipeline
    shipping_cfg = pipeline.get("shipping") or {}
    breaker = RateLimitBreaker(threshold=int((pipeline.get("circuit_breaker") or {}).get("threshold", 3)))
    enrichment = pipeline.get("enrichment") or {}
    enricher = ProductEnricher(
        client,
        breaker=breaker,
        rating_concurrency=int(enrichment.get("rating_concurrency", 3)),
    )
    resolver = ShippingResolver(
        client,
        breaker,
        destination_country=pipeline.get("destination_country", "SA"),
        origin_country=pipeline.get("origin_country", "CN"),
        shipping_rules=config.shipping,
        heaviest_sample=int(shipping_cfg.get("heaviest_sample", 2)),
        quote_delay=float(shipping_cfg.get("quote_delay_seconds", 0.2)),
        max_attempts=int(shipping_cfg.get("max_attempts", 2)),
        backoff_seconds=float(shipping_cfg.get("backoff_seconds", 2.0)),
    )
    pricing = PricingEngine(
        fx_rate=float(pipeline.get("fx_rate", 3.75)),
        smart_round_points=config.pricing_rules.get("smart_round_points"),
    )
    return Orchestrator(
        client,
        enricher,
        resolver,
        pricing,
        breaker,
        pricing_rules=config.pricing_rules,
        blocked_keywords=config.categories.get("blocked_keywords") or [],
        batch_size=int(pipeline.get("batch_size", 10)),
        time_budget=float(pipeline.get("time_budget_seconds", 600)),
        page_size=int(pipeline.get("page_size", 50)),
        max_pages=int(pipeline.get("max_pages", MAX_PAGES)),
        headroom=float(pipeline.get("candidate_headroom", 2)),
        workers=int(enrichment.get("workers", 4)),
        clock=clock,
    )

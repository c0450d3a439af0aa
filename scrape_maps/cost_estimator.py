"""
Maps Listing Scraper - Cost Estimator

Tracks operation counts for a run and converts them into an estimated USD
cost. Every charging method increments its counter unconditionally and
returns whether budget remains; the caller decides what to skip.

A max_cost of 0 means unlimited.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CostWeights:
    """Per-unit cost factors (USD)."""

    per_search: float = 0.005
    per_listing_batch: float = 0.001  # per started batch of 10 listings
    per_detail_page: float = 0.01
    per_contact_extraction: float = 0.02
    listing_batch_size: int = 10


class CostEstimator:
    """Budget ledger for a crawl run."""

    def __init__(self, max_cost: float = 0, weights: Optional[CostWeights] = None):
        self.searches = 0
        self.listings_found = 0
        self.detail_pages = 0.0
        self.contact_extractions = 0
        self.max_cost = max_cost or 0
        self.weights = weights or CostWeights()

    def set_max_cost(self, max_cost: float):
        """Set the maximum cost limit (0 = unlimited)."""
        self.max_cost = max_cost or 0

    # Charging operations

    def add_search(self, count: int = 1):
        """Record search page visits."""
        self.searches += count

    def add_listings(self, count: int = 1):
        """Record listings discovered on search pages."""
        self.listings_found += count

    def add_place(self, count: int = 1) -> bool:
        """Charge full detail page visits and check budget."""
        self.detail_pages += count
        return self.check_budget()

    def add_details(self, count: int = 1) -> bool:
        """Charge a detail sub-extraction (half a detail page) and check budget."""
        self.detail_pages += count * 0.5
        return self.check_budget()

    def add_contact(self, count: int = 1) -> bool:
        """Charge website contact extractions and check budget."""
        self.contact_extractions += count
        return self.check_budget()

    # Budget queries

    def _search_cost(self) -> float:
        return self.searches * self.weights.per_search

    def _listings_cost(self) -> float:
        batches = math.ceil(self.listings_found / self.weights.listing_batch_size)
        return batches * self.weights.per_listing_batch

    def _detail_cost(self) -> float:
        return self.detail_pages * self.weights.per_detail_page

    def _contact_cost(self) -> float:
        return self.contact_extractions * self.weights.per_contact_extraction

    @property
    def current_cost(self) -> float:
        """Estimated cost so far (USD)."""
        return self._search_cost() + self._listings_cost() + self._detail_cost() + self._contact_cost()

    def check_budget(self) -> bool:
        """True while the estimated cost is below max_cost (always True if unlimited)."""
        if self.max_cost <= 0:
            return True
        return self.current_cost < self.max_cost

    def is_cost_limit_reached(self) -> bool:
        """True once the estimated cost meets or exceeds max_cost."""
        if self.max_cost <= 0:
            return False
        return self.current_cost >= self.max_cost

    # Reporting and persistence

    def get_summary(self) -> Dict[str, Any]:
        """
        Summarize operations, costs and limits.

        Returns:
            Dict with operations, costs (4 dp strings) and limits sections
        """
        return {
            "operations": {
                "searches": self.searches,
                "listingsFound": self.listings_found,
                "detailPagesScrapes": self.detail_pages,
                "contactExtractions": self.contact_extractions,
            },
            "costs": {
                "searchCost": f"{self._search_cost():.4f}",
                "listingsCost": f"{self._listings_cost():.4f}",
                "detailPagesCost": f"{self._detail_cost():.4f}",
                "contactExtractionsCost": f"{self._contact_cost():.4f}",
                "totalCost": f"{self.current_cost:.4f}",
            },
            "limits": {
                "maxCost": f"{self.max_cost:.2f}" if self.max_cost > 0 else "Unlimited",
                "costLimitReached": self.is_cost_limit_reached(),
            },
        }

    def snapshot(self) -> Dict[str, float]:
        """Counter values for RunState persistence."""
        return {
            "searches": self.searches,
            "listingsFound": self.listings_found,
            "detailPages": self.detail_pages,
            "contactExtractions": self.contact_extractions,
        }

    def restore(self, counters: Optional[Dict[str, Any]]):
        """Load counter values persisted by snapshot()."""
        if not counters:
            return
        self.searches = int(counters.get("searches", 0))
        self.listings_found = int(counters.get("listingsFound", 0))
        self.detail_pages = float(counters.get("detailPages", 0))
        self.contact_extractions = int(counters.get("contactExtractions", 0))

    def log_report(self, kv_store, logger, key: str = "COST_SUMMARY") -> Dict[str, Any]:
        """
        Write the summary to the key-value store.

        Args:
            kv_store: Object with set(key, value)
            logger: MapsScraperLogger
            key: Key-value store key

        Returns:
            The summary dict
        """
        summary = self.get_summary()
        logger.info(
            f"Cost Summary: ${summary['costs']['totalCost']} "
            f"({summary['operations']['detailPagesScrapes']} detail pages, "
            f"{summary['operations']['contactExtractions']} contact extractions)"
        )
        logger.cost_report(summary)
        kv_store.set(key, summary)
        return summary

"""
Unit tests for the run cost estimator.

Tests:
- Cost formula (searches, listing batches, detail pages, contacts)
- Budget gate semantics with and without a limit
- Summary formatting and counter persistence
"""

import pytest

from scrape_maps.cost_estimator import CostEstimator, CostWeights


class RecordingStore:
    def __init__(self):
        self.values = {}

    def set(self, key, value):
        self.values[key] = value


class RecordingLogger:
    def __init__(self):
        self.messages = []
        self.reports = []

    def info(self, message, extra_data=None):
        self.messages.append(message)

    def cost_report(self, summary):
        self.reports.append(summary)


def test_cost_formula_matches_weights():
    """Listings are charged per started batch of ten."""
    estimator = CostEstimator()
    estimator.add_search(2)
    estimator.add_listings(11)
    estimator.add_place(3)
    estimator.add_details(2)
    estimator.add_contact(1)

    expected = 2 * 0.005 + 2 * 0.001 + (3 + 1) * 0.01 + 1 * 0.02
    assert estimator.current_cost == pytest.approx(expected)


def test_add_details_charges_half_a_detail_page():
    estimator = CostEstimator()
    estimator.add_details()
    assert estimator.detail_pages == 0.5
    assert estimator.current_cost == pytest.approx(0.005)


def test_unlimited_budget_never_blocks():
    estimator = CostEstimator(max_cost=0)
    for _ in range(1000):
        assert estimator.add_place() is True
    assert estimator.is_cost_limit_reached() is False


def test_budget_gate_flips_once_limit_is_met():
    """check_budget is strict (<), is_cost_limit_reached is inclusive (>=)."""
    estimator = CostEstimator(max_cost=0.02)
    assert estimator.add_place() is True
    assert estimator.is_cost_limit_reached() is False

    assert estimator.add_place() is False
    assert estimator.check_budget() is False
    assert estimator.is_cost_limit_reached() is True


def test_set_max_cost_applies_to_existing_counters():
    estimator = CostEstimator()
    estimator.add_place(2)
    assert estimator.check_budget() is True

    estimator.set_max_cost(0.01)
    assert estimator.check_budget() is False

    estimator.set_max_cost(None)
    assert estimator.max_cost == 0
    assert estimator.check_budget() is True


def test_charging_methods_always_increment():
    """A refused charge is still counted."""
    estimator = CostEstimator(max_cost=0.001)
    assert estimator.add_contact() is False
    assert estimator.add_contact() is False
    assert estimator.contact_extractions == 2


def test_custom_weights():
    estimator = CostEstimator(weights=CostWeights(per_search=1.0, per_listing_batch=0.5, listing_batch_size=5))
    estimator.add_search()
    estimator.add_listings(6)
    assert estimator.current_cost == pytest.approx(2.0)


def test_summary_format():
    estimator = CostEstimator(max_cost=1.5)
    estimator.add_search()
    estimator.add_listings(3)
    estimator.add_place()

    summary = estimator.get_summary()
    assert summary["operations"] == {
        "searches": 1,
        "listingsFound": 3,
        "detailPagesScrapes": 1,
        "contactExtractions": 0,
    }
    assert summary["costs"]["searchCost"] == "0.0050"
    assert summary["costs"]["listingsCost"] == "0.0010"
    assert summary["costs"]["detailPagesCost"] == "0.0100"
    assert summary["costs"]["totalCost"] == "0.0160"
    assert summary["limits"] == {"maxCost": "1.50", "costLimitReached": False}


def test_summary_reports_unlimited():
    assert CostEstimator().get_summary()["limits"]["maxCost"] == "Unlimited"


def test_snapshot_and_restore_round_trip_counters():
    original = CostEstimator()
    original.add_search(3)
    original.add_listings(25)
    original.add_details(3)
    original.add_contact(2)

    restored = CostEstimator()
    restored.restore(original.snapshot())

    assert restored.current_cost == pytest.approx(original.current_cost)
    assert restored.detail_pages == 1.5


def test_restore_ignores_missing_state():
    estimator = CostEstimator()
    estimator.restore(None)
    estimator.restore({})
    assert estimator.current_cost == 0


def test_log_report_writes_summary():
    estimator = CostEstimator()
    estimator.add_search()
    store = RecordingStore()
    logger = RecordingLogger()

    summary = estimator.log_report(store, logger)

    assert store.values["COST_SUMMARY"] == summary
    assert logger.reports == [summary]
    assert "Cost Summary: $0.0050" in logger.messages[0]

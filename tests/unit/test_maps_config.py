"""
Unit tests for run input parsing, validation and error classification.

Tests:
- camelCase input mapping and defaults
- Input validation errors
- Cost-optimized overrides
- Environment overrides
- Session-blocking error classifier
"""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from scrape_maps.maps_config import (
    ABORT_RESOURCE_TYPES_DEFAULT,
    ABORT_RESOURCE_TYPES_LIGHT,
    CustomGeolocation,
    GeoPoint,
    MapsConfig,
    RunInput,
)
from scrape_maps.maps_errors import (
    BlockedError,
    CaptchaDetectedError,
    ConfigurationError,
    PageStructureError,
    is_session_blocking,
)


def test_from_dict_maps_keys_and_defaults():
    run_input = RunInput.from_dict({
        "searchStringsArray": ["coffee"],
        "searchLocation": "Seattle",
        "maxCrawledPlaces": "10",
        "maxCostPerRun": 2.5,
        "scrapeContacts": False,
        "proxyConfig": {"proxyUrls": ["http://u:p@proxy.test:8000", ""]},
    })

    assert run_input.search_strings == ["coffee"]
    assert run_input.max_crawled_places == 10
    assert run_input.max_crawled_places_per_search == 0
    assert run_input.max_cost_per_run == 2.5
    assert run_input.scrape_contacts is False
    assert run_input.max_images == 5
    assert run_input.max_reviews == 5
    assert run_input.reviews_sort == "newest"
    assert run_input.language == "en"
    assert run_input.save_failed_requests is True
    assert run_input.proxy_urls == ["http://u:p@proxy.test:8000"]


@pytest.mark.parametrize("data", [
    {},
    {"searchStringsArray": ["coffee"]},
    {"searchLocation": "Seattle"},
    {"searchStringsArray": [], "customGeolocation": {"coordinates": [1, 2]}},
])
def test_validate_requires_start_urls_or_located_terms(data):
    with pytest.raises(ConfigurationError, match="startUrls"):
        RunInput.from_dict(data).validate()


@pytest.mark.parametrize("data", [
    {"startUrls": ["https://www.google.com/maps/place/X"]},
    {"searchStringsArray": ["coffee"], "searchLocation": "Seattle"},
    {"searchStringsArray": ["coffee"], "customGeolocation": {"coordinates": [-122.3, 47.6]}},
])
def test_validate_accepts_valid_combinations(data):
    RunInput.from_dict(data).validate()


def test_validate_rejects_bad_review_sort_and_negative_caps():
    with pytest.raises(ConfigurationError, match="reviewsSort"):
        RunInput.from_dict({"startUrls": ["u"], "reviewsSort": "oldest"}).validate()
    with pytest.raises(ConfigurationError, match="maxImages"):
        RunInput.from_dict({"startUrls": ["u"], "maxImages": -1}).validate()


def test_cost_optimized_mode_overrides():
    run_input = RunInput.from_dict({"startUrls": ["u"], "costOptimizedMode": True, "maxImages": 10, "maxReviews": 0})

    assert run_input.effective_max_images == 1
    assert run_input.effective_max_reviews == 0
    assert run_input.effective_scrape_contacts is False
    assert run_input.navigation_timeout_ms == 45000
    assert run_input.handler_timeout_secs == 120
    assert run_input.feed_scroll_limit == 5
    assert run_input.review_scroll_limit == 2
    assert run_input.contact_timeout_ms == 15000
    assert run_input.contact_blocked_resources == ABORT_RESOURCE_TYPES_DEFAULT


def test_normal_mode_settings():
    run_input = RunInput.from_dict({"startUrls": ["u"]})

    assert run_input.effective_scrape_contacts is True
    assert run_input.navigation_timeout_ms == 90000
    assert run_input.handler_timeout_secs == 240
    assert run_input.feed_scroll_limit == 25
    assert run_input.contact_blocked_resources == ABORT_RESOURCE_TYPES_LIGHT


def test_skip_contact_extraction_disables_contacts():
    run_input = RunInput.from_dict({"startUrls": ["u"], "skipContactExtraction": True})
    assert run_input.effective_scrape_contacts is False


@pytest.mark.parametrize("coordinates, point", [
    ([-122.33, 47.6], GeoPoint(lat=47.6, lng=-122.33)),
    ([0, 0], GeoPoint(lat=0.0, lng=0.0)),
    (["-122.33", 47.6], None),
    ([True, 47.6], None),
    ([float("nan"), 47.6], None),
    ([1.0], None),
])
def test_custom_geolocation_point(coordinates, point):
    assert CustomGeolocation(coordinates=coordinates).point() == point


def test_custom_geolocation_default_radius():
    geolocation = CustomGeolocation.from_dict({"coordinates": [1, 2]})
    assert geolocation.radius_km == 5
    assert CustomGeolocation.from_dict(None) is None


def test_maps_config_from_env(monkeypatch):
    monkeypatch.setenv("MAPS_SCRAPER_HEADLESS", "false")
    monkeypatch.setenv("MAPS_SCRAPER_MAX_RETRIES", "5")
    monkeypatch.setenv("RUN_TIMEOUT_SECS", "30")

    config = MapsConfig.from_env()

    assert config.playwright.headless is False
    assert config.scraping.max_retries == 5
    assert config.run_timeout == 30
    assert config.scraping.checkpoint_every == 20


# Error classification

@pytest.mark.parametrize("error, blocking", [
    (CaptchaDetectedError("https://www.google.com/sorry/index"), True),
    (BlockedError("Request blocked with status 429", status=429), True),
    (PlaywrightTimeoutError("Timeout 90000ms exceeded."), True),
    (PlaywrightError("page.goto: Navigation timeout of 90000 ms exceeded"), True),
    (PlaywrightError("net::ERR_CONNECTION_RESET at https://x.test"), True),
    (PlaywrightError("Target closed"), True),
    (RuntimeError("upstream returned status 403"), True),
    (PageStructureError("Could not find search results container"), False),
    (asyncio.TimeoutError(), False),
    (ValueError("bad value"), False),
])
def test_is_session_blocking(error, blocking):
    assert is_session_blocking(error) is blocking


def test_captcha_error_message():
    error = CaptchaDetectedError("https://www.google.com/maps/place/X")
    assert str(error) == "CAPTCHA detected at https://www.google.com/maps/place/X"
    assert isinstance(error, BlockedError)

"""
Maps Listing Scraper - Configuration Management

Two layers of configuration:
- RunInput: the per-run JSON input object (search terms, caps, toggles)
- MapsConfig: environment-level settings (browser, pacing, storage, logging)

Cost-optimized mode is resolved here so the crawler only ever reads the
effective_* values.
"""

import math
import os
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from scrape_maps.maps_errors import ConfigurationError


load_dotenv()


REVIEW_SORT_OPTIONS = ("mostRelevant", "newest", "highestRanking", "lowestRanking")

# Resource types aborted by the contact miner
ABORT_RESOURCE_TYPES_DEFAULT = ["image", "stylesheet", "font", "media"]
ABORT_RESOURCE_TYPES_LIGHT = ["image", "font"]

DEFAULT_RADIUS_KM = 5


@dataclass
class GeoPoint:
    """A latitude/longitude pair."""

    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass
class CustomGeolocation:
    """Search anchor given as [lng, lat] plus a radius."""

    coordinates: List[Any]
    radius_km: float = DEFAULT_RADIUS_KM

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["CustomGeolocation"]:
        if not data:
            return None
        return cls(
            coordinates=list(data.get("coordinates") or []),
            radius_km=data.get("radiusKm") or DEFAULT_RADIUS_KM,
        )

    def point(self) -> Optional[GeoPoint]:
        """
        Return the anchor point, or None if the coordinates are unusable.

        Coordinates are GeoJSON ordered: [longitude, latitude].
        """
        if len(self.coordinates) != 2:
            return None
        lng, lat = self.coordinates
        if isinstance(lng, bool) or isinstance(lat, bool):
            return None
        if not isinstance(lng, (int, float)) or not isinstance(lat, (int, float)):
            return None
        if math.isnan(lng) or math.isnan(lat):
            return None
        return GeoPoint(lat=float(lat), lng=float(lng))


@dataclass
class RunInput:
    """
    The JSON input object for a single run.

    Field names mirror the camelCase JSON keys; use from_dict() to build one.
    """

    start_urls: List[Any] = field(default_factory=list)
    search_strings: List[str] = field(default_factory=list)
    search_location: str = ""
    custom_geolocation: Optional[CustomGeolocation] = None
    max_crawled_places_per_search: int = 0  # 0 = unlimited
    max_crawled_places: int = 0  # 0 = unlimited
    max_cost_per_run: float = 0  # 0 = unlimited
    scrape_contacts: bool = True
    scrape_place_detail_page: bool = True
    skip_closed_places: bool = False
    max_images: int = 5
    max_reviews: int = 5
    reviews_sort: str = "newest"
    language: str = "en"
    proxy_config: Dict[str, Any] = field(default_factory=dict)
    cost_optimized_mode: bool = False
    skip_contact_extraction: bool = False
    save_failed_requests: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunInput":
        """
        Build a RunInput from the JSON input object.

        Args:
            data: Parsed JSON input (camelCase keys)

        Returns:
            RunInput instance with defaults for missing keys
        """
        defaults = cls()
        return cls(
            start_urls=list(data.get("startUrls") or []),
            search_strings=list(data.get("searchStringsArray") or []),
            search_location=data.get("searchLocation") or "",
            custom_geolocation=CustomGeolocation.from_dict(data.get("customGeolocation")),
            max_crawled_places_per_search=int(data.get("maxCrawledPlacesPerSearch") or 0),
            max_crawled_places=int(data.get("maxCrawledPlaces") or 0),
            max_cost_per_run=float(data.get("maxCostPerRun") or 0),
            scrape_contacts=data.get("scrapeContacts", defaults.scrape_contacts),
            scrape_place_detail_page=data.get("scrapePlaceDetailPage", defaults.scrape_place_detail_page),
            skip_closed_places=data.get("skipClosedPlaces", defaults.skip_closed_places),
            max_images=int(data.get("maxImages", defaults.max_images)),
            max_reviews=int(data.get("maxReviews", defaults.max_reviews)),
            reviews_sort=data.get("reviewsSort") or defaults.reviews_sort,
            language=data.get("language") or defaults.language,
            proxy_config=dict(data.get("proxyConfig") or {}),
            cost_optimized_mode=data.get("costOptimizedMode", defaults.cost_optimized_mode),
            skip_contact_extraction=data.get("skipContactExtraction", defaults.skip_contact_extraction),
            save_failed_requests=data.get("saveFailedRequests", defaults.save_failed_requests),
        )

    def validate(self):
        """
        Check the input combination before any browser work starts.

        Raises:
            ConfigurationError: If neither start URLs nor search terms with a
                location or geolocation are supplied
        """
        has_geo = bool(self.search_location) or self.custom_geolocation is not None
        if not self.start_urls and (not self.search_strings or not has_geo):
            raise ConfigurationError(
                'Input error: Provide "startUrls", or "searchStringsArray" with '
                '"searchLocation" or "customGeolocation".'
            )
        if self.reviews_sort not in REVIEW_SORT_OPTIONS:
            raise ConfigurationError(
                f"Input error: reviewsSort must be one of {', '.join(REVIEW_SORT_OPTIONS)}"
            )
        if self.max_images < 0 or self.max_reviews < 0:
            raise ConfigurationError("Input error: maxImages and maxReviews must be >= 0")

    # Effective settings (cost-optimized mode overrides)

    @property
    def effective_max_images(self) -> int:
        return min(self.max_images, 1) if self.cost_optimized_mode else self.max_images

    @property
    def effective_max_reviews(self) -> int:
        return min(self.max_reviews, 1) if self.cost_optimized_mode else self.max_reviews

    @property
    def effective_scrape_contacts(self) -> bool:
        if self.cost_optimized_mode or self.skip_contact_extraction:
            return False
        return self.scrape_contacts

    @property
    def navigation_timeout_ms(self) -> int:
        return (45 if self.cost_optimized_mode else 90) * 1000

    @property
    def handler_timeout_secs(self) -> int:
        return 120 if self.cost_optimized_mode else 240

    @property
    def feed_scroll_limit(self) -> int:
        return 5 if self.cost_optimized_mode else 25

    @property
    def review_scroll_limit(self) -> int:
        return 2 if self.cost_optimized_mode else 5

    @property
    def contact_timeout_ms(self) -> int:
        return 15000 if self.cost_optimized_mode else 30000

    @property
    def contact_blocked_resources(self) -> List[str]:
        if self.cost_optimized_mode:
            return list(ABORT_RESOURCE_TYPES_DEFAULT)
        return list(ABORT_RESOURCE_TYPES_LIGHT)

    @property
    def proxy_urls(self) -> List[str]:
        return [url for url in self.proxy_config.get("proxyUrls") or [] if url]

    def summary(self) -> Dict[str, Any]:
        """Key input values for logging."""
        return {
            "start_urls": len(self.start_urls),
            "search_strings": self.search_strings,
            "search_location": self.search_location,
            "max_crawled_places": self.max_crawled_places,
            "max_crawled_places_per_search": self.max_crawled_places_per_search,
            "max_cost_per_run": self.max_cost_per_run,
            "cost_optimized_mode": self.cost_optimized_mode,
            "scrape_contacts": self.effective_scrape_contacts,
            "max_images": self.effective_max_images,
            "max_reviews": self.effective_max_reviews,
            "language": self.language,
        }


@dataclass
class RateLimitConfig:
    """Pacing between browser actions (seconds)."""

    # Pause before extracting a detail page
    min_detail_delay: float = 0.5
    max_detail_delay: float = 1.5

    # Pause after clicking a consent button
    min_consent_delay: float = 2.0
    max_consent_delay: float = 3.0

    # Pause between feed scrolls
    min_scroll_delay: float = 1.5
    max_scroll_delay: float = 2.5

    # Pause between review scrolls and after review pane clicks
    min_review_delay: float = 1.0
    max_review_delay: float = 2.0

    def get_detail_delay(self) -> float:
        """Get randomized delay before detail extraction."""
        return random.uniform(self.min_detail_delay, self.max_detail_delay)

    def get_consent_delay(self) -> float:
        """Get randomized delay after a consent click."""
        return random.uniform(self.min_consent_delay, self.max_consent_delay)

    def get_scroll_delay(self) -> float:
        """Get randomized delay between feed scrolls."""
        return random.uniform(self.min_scroll_delay, self.max_scroll_delay)

    def get_review_delay(self) -> float:
        """Get randomized delay inside the reviews pane."""
        return random.uniform(self.min_review_delay, self.max_review_delay)

    @classmethod
    def no_delay(cls) -> "RateLimitConfig":
        """All delays set to zero."""
        return cls(0, 0, 0, 0, 0, 0, 0, 0)


@dataclass
class PlaywrightConfig:
    """Playwright browser configuration."""

    headless: bool = True

    browser_args: List[str] = field(default_factory=lambda: [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
    ])

    # Wait for the results feed on SEARCH pages (ms)
    feed_timeout: int = 20000

    # Default timeout for actions (ms)
    default_timeout: int = 30000

    # Page load wait strategy
    wait_until: str = "domcontentloaded"

    locale: str = "en-US"

    # Pages served by one browser context before it is replaced
    max_session_usage: int = 50


@dataclass
class ScrapingConfig:
    """Crawl behavior configuration."""

    # Retries per task before it is terminally failed
    max_retries: int = 3

    # Persist RunState every N emitted listings
    checkpoint_every: int = 20

    # Key-value store keys
    state_key: str = "STATE"
    cost_summary_key: str = "COST_SUMMARY"

    # Dataset names
    dataset_name: str = "default"
    failed_dataset_name: str = "FAILED_REQUESTS"

    # Website levels followed by the contact miner: home -> contact -> about/team
    contact_max_depth: int = 2


@dataclass
class DatabaseConfig:
    """Storage connection configuration."""

    url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///data/maps_scrape.db")
    )

    def get_connection_string(self) -> str:
        """Get the SQLAlchemy connection string."""
        return self.url


@dataclass
class MapsConfig:
    """
    Master configuration for the Maps listing scraper.

    Combines all sub-configurations with environment overrides.
    """

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    playwright: PlaywrightConfig = field(default_factory=PlaywrightConfig)
    scraping: ScrapingConfig = field(default_factory=ScrapingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    # Logging
    log_dir: str = field(default_factory=lambda: os.getenv("LOG_DIR", "logs"))
    log_level: str = "INFO"

    # Global watchdog (seconds)
    run_timeout: int = 600

    @classmethod
    def from_env(cls) -> "MapsConfig":
        """
        Create configuration from environment variables.

        Returns:
            MapsConfig instance
        """
        config = cls()

        if os.getenv("MAPS_SCRAPER_HEADLESS"):
            config.playwright.headless = os.getenv("MAPS_SCRAPER_HEADLESS").lower() == "true"

        if os.getenv("MAPS_SCRAPER_LOG_LEVEL"):
            config.log_level = os.getenv("MAPS_SCRAPER_LOG_LEVEL")

        if os.getenv("MAPS_SCRAPER_MAX_RETRIES"):
            config.scraping.max_retries = int(os.getenv("MAPS_SCRAPER_MAX_RETRIES"))

        if os.getenv("RUN_TIMEOUT_SECS"):
            config.run_timeout = int(os.getenv("RUN_TIMEOUT_SECS"))

        return config

    def summary(self) -> Dict[str, Any]:
        """
        Get configuration summary for logging.

        Returns:
            Dictionary with key configuration values
        """
        return {
            "playwright": {
                "headless": self.playwright.headless,
                "max_session_usage": self.playwright.max_session_usage,
            },
            "scraping": {
                "max_retries": self.scraping.max_retries,
                "checkpoint_every": self.scraping.checkpoint_every,
            },
            "run_timeout": self.run_timeout,
            "log_dir": self.log_dir,
        }


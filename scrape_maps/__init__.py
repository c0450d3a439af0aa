"""
Maps Listing Scraper Module

Playwright-based scraper for business listings on Google Maps.

Components:
- maps_config.py: Run input and runtime configuration
- maps_logger.py: Structured JSON event logging
- maps_errors.py: Error taxonomy and session-blocking classifier
- cost_estimator.py: Run cost accounting and budget gate
- maps_tasks.py: Task model and search URL seeding
- request_queue.py: De-duplicating task queue
- browser_pool.py: Browser with rotating sessions
- maps_stealth.py: Anti-detection, consent and CAPTCHA handling
- maps_scroll.py: Scroll-until-stable loops
- maps_parse.py: Listing, hours, image and review extraction
- maps_crawl.py: Orchestration layer

The crawler itself lives in scrape_maps.maps_crawl; it is not re-exported
here because it depends on scrape_site, which depends on this package.
"""

__version__ = '0.1.0'

from .maps_config import MapsConfig, RunInput
from .maps_errors import ConfigurationError, ScrapeError
from .maps_logger import MapsScraperLogger
from .cost_estimator import CostEstimator

__all__ = [
    'MapsConfig',
    'RunInput',
    'ConfigurationError',
    'ScrapeError',
    'MapsScraperLogger',
    'CostEstimator',
]

"""
Maps Listing Scraper - Stealth & Anti-Bot Handling

Browser fingerprint randomization for new sessions, plus the pre-check run
on every page before label dispatch: dismiss a consent wall if one is shown,
then look for a CAPTCHA challenge.
"""

import asyncio
import random
from typing import Callable, Dict, Optional

from playwright.async_api import BrowserContext, Page

from runner.logging_setup import get_logger


logger = get_logger("maps_stealth")


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]

TIMEZONES = [
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
]

# Consent wall buttons, most specific first
CONSENT_SELECTORS = [
    'button[aria-label*="Accept all"]',
    'button[aria-label*="Agree"]',
    'button[jsname="b3VHJd"]',
    'form[action*="consent"] button',
]

CAPTCHA_SELECTOR = 'iframe[src*="recaptcha"], #captcha-form, form[action*="sorry"]'
CAPTCHA_URL_MARKERS = ("/sorry/", "google.com/sorry")


class StealthConfig:
    """Randomized fingerprint for one browser session."""

    def __init__(self, locale: str = "en-US", language: str = "en"):
        self.user_agent = random.choice(USER_AGENTS)
        self.viewport = random.choice(VIEWPORTS)
        self.timezone = random.choice(TIMEZONES)
        self.locale = locale
        self.language = language
        self.headers = self._generate_headers()

    def _generate_headers(self) -> Dict[str, str]:
        return {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": f"{self.locale},{self.language};q=0.9",
            "Upgrade-Insecure-Requests": "1",
        }

    def context_options(self) -> Dict:
        """Keyword arguments for Browser.new_context()."""
        return {
            "user_agent": self.user_agent,
            "viewport": self.viewport,
            "timezone_id": self.timezone,
            "locale": self.locale,
        }


async def apply_stealth(context: BrowserContext, config: StealthConfig):
    """
    Apply stealth measures to a browser context.

    Args:
        context: Playwright browser context
        config: Stealth configuration
    """
    await context.set_extra_http_headers(config.headers)

    # Mask the most common automation indicators
    await context.add_init_script("""
        Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
        Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
        window.chrome = {runtime: {}, loadTimes: function() {}, csi: function() {}, app: {}};
    """)


async def dismiss_consent(page: Page, wait: Optional[Callable[[], float]] = None) -> bool:
    """
    Click through a consent wall if one is displayed.

    Args:
        page: Playwright page
        wait: Returns seconds to pause after the click

    Returns:
        True if a consent button was clicked
    """
    for selector in CONSENT_SELECTORS:
        button = await page.query_selector(selector)
        if not button:
            continue
        logger.info(f"Consent screen detected (selector: {selector}), clicking")
        await button.click()
        if wait is not None:
            await asyncio.sleep(wait())
        return True
    return False


async def detect_captcha(page: Page) -> bool:
    """
    Check for a CAPTCHA challenge or the Google 'sorry' interstitial.

    Returns:
        True if the page is a CAPTCHA
    """
    if any(marker in (page.url or "") for marker in CAPTCHA_URL_MARKERS):
        return True
    return await page.query_selector(CAPTCHA_SELECTOR) is not None

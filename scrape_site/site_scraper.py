#!/usr/bin/env python3
"""
Business website contact miner for maps-scrape-bot.

Crawls a shallow, level-by-level set of pages on a business website:
- Level 0: the website URL itself
- Level 1: pages linked with contact keywords
- Level 2: pages linked with about/team keywords (when max_depth allows)

A page that fails to load or parse is recorded (first failure only) and
skipped; the traversal never raises for a single bad page.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from urllib.parse import urldefrag

from playwright.async_api import Page, Route

from runner.logging_setup import get_logger
from scrape_maps.maps_errors import ScrapeError
from scrape_site.site_parse import (
    dedupe,
    finalize_emails,
    finalize_phones,
    find_keyword_links,
    parse_contact_page,
)


# Initialize logger
logger = get_logger("site_scraper")

CONTACT_KEYWORDS = ["contact", "contact-us", "get-in-touch", "reach-us", "kontakt", "contacto"]
ABOUT_KEYWORDS = ["about", "about-us", "who-we-are", "our-story", "team", "our-team", "staff"]

# Keywords used to find the next level's pages, indexed by current level
LEVEL_KEYWORDS = [CONTACT_KEYWORDS, ABOUT_KEYWORDS]


@dataclass
class ContactOptions:
    """Contact miner settings."""

    timeout_ms: int = 30000
    max_depth: int = 2
    blocked_resource_types: list[str] = field(default_factory=lambda: ["image", "font"])
    max_links_per_level: int = 3


@dataclass
class ContactResult:
    """Contact details mined from a website."""

    email: Optional[str] = None
    emails: list[str] = field(default_factory=list)
    phone: Optional[str] = None
    phones: list[str] = field(default_factory=list)
    social_profiles: dict = field(default_factory=dict)
    contact_persons: list[str] = field(default_factory=list)
    scanned_pages: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "emails": self.emails,
            "phone": self.phone,
            "phones": self.phones,
            "socialProfiles": self.social_profiles,
            "contactPersons": self.contact_persons,
            "scannedPages": self.scanned_pages,
            "error": self.error,
        }


def _visit_key(url: str) -> str:
    return urldefrag(url)[0].rstrip("/").lower()


async def _load_html(page: Page, url: str, timeout_ms: int) -> str:
    response = await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
    if response is not None and response.status >= 400:
        raise ScrapeError(f"HTTP {response.status} for {url}")
    return await page.content()


async def extract_contact_details(
    website_url: str,
    new_page: Callable[[], Awaitable[Page]],
    options: Optional[ContactOptions] = None,
) -> ContactResult:
    """
    Mine a business website for emails, phones, social links and people.

    Args:
        website_url: Homepage URL found on the listing
        new_page: Coroutine function returning a fresh browser page
        options: Traversal settings

    Returns:
        ContactResult; error holds the first page failure, if any
    """
    options = options or ContactOptions()
    result = ContactResult()

    email_candidates = []
    phone_candidates = []
    persons = []
    visited = set()
    level_urls = [website_url]

    page = await new_page()
    try:
        if options.blocked_resource_types:
            blocked = set(options.blocked_resource_types)

            async def abort_blocked(route: Route):
                if route.request.resource_type in blocked:
                    await route.abort()
                else:
                    await route.continue_()

            await page.route("**/*", abort_blocked)

        for depth in range(options.max_depth + 1):
            next_level = []

            for url in level_urls:
                key = _visit_key(url)
                if key in visited:
                    continue
                visited.add(key)

                try:
                    html = await _load_html(page, url, options.timeout_ms)
                    contacts = parse_contact_page(html, url)
                    links = []
                    if depth < options.max_depth and depth < len(LEVEL_KEYWORDS):
                        links = find_keyword_links(html, url, LEVEL_KEYWORDS[depth])
                except Exception as e:
                    logger.warning(f"Contact page failed: {url}: {e}")
                    if result.error is None:
                        result.error = f"{url}: {e}"
                    continue

                result.scanned_pages.append(url)
                email_candidates.extend(contacts["emails"])
                phone_candidates.extend(contacts["phones"])
                persons.extend(contacts["contact_persons"])
                for platform, profile_url in contacts["social_profiles"].items():
                    result.social_profiles.setdefault(platform, profile_url)

                for link in links[:options.max_links_per_level]:
                    if _visit_key(link) not in visited and link not in next_level:
                        next_level.append(link)

            level_urls = next_level
            if not level_urls:
                break
    finally:
        await page.close()

    result.emails = finalize_emails(email_candidates)
    result.phones = finalize_phones(phone_candidates)
    result.contact_persons = dedupe(persons)
    result.email = result.emails[0] if result.emails else None
    result.phone = result.phones[0] if result.phones else None

    logger.info(
        f"Contact extraction for {website_url}: {len(result.scanned_pages)} pages, "
        f"{len(result.emails)} emails, {len(result.social_profiles)} social profiles"
    )
    return result

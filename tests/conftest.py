"""
Pytest configuration and shared fixtures for scraper tests.

Provides a scripted fake browser (pages rendered from canned HTML),
per-test SQLite storage, zero-delay configuration and HTML builders for
Maps search and place pages.
"""

import os
import tempfile

# Keep module-level loggers out of the working tree
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="maps-scrape-logs-"))

import pytest
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from db import DatasetSink, KeyValueStore, create_session_factory
from scrape_maps.browser_pool import BrowserSession
from scrape_maps.maps_config import MapsConfig, RateLimitConfig, RunInput
from scrape_maps.maps_crawl import MapsCrawler
from scrape_maps.maps_logger import MapsScraperLogger
from scrape_maps.maps_scroll import SCROLL_AND_COUNT_JS, SCROLL_CONTAINER_JS


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that run the full crawl loop against a fake browser"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# Fake browser

class FakeResource:
    """One canned response: HTML with a status, or an error raised by goto()."""

    def __init__(self, html="<html><body></body></html>", status=200, error=None, final_url=None):
        self.html = html
        self.status = status
        self.error = error
        self.final_url = final_url


class FakeResponse:
    def __init__(self, status):
        self.status = status


class FakeElement:
    def __init__(self, page, tag):
        self.page = page
        self.tag = tag

    async def click(self):
        self.page.clicks.append(self.tag.name)

    async def get_attribute(self, name):
        return self.tag.get(name)


class FakeSite:
    """
    URL substring -> resource(s).

    The longest matching key wins. A list of resources is served in order,
    repeating the last one once exhausted.
    """

    def __init__(self, routes):
        self.routes = dict(routes)
        self.hits = {}
        self.visited = []

    def resolve(self, url):
        self.visited.append(url)
        matches = [key for key in self.routes if key in url]
        if not matches:
            return FakeResource(error=PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}"))
        key = max(matches, key=len)
        resource = self.routes[key]
        if isinstance(resource, list):
            index = min(self.hits.get(key, 0), len(resource) - 1)
            self.hits[key] = self.hits.get(key, 0) + 1
            resource = resource[index]
        if isinstance(resource, str):
            resource = FakeResource(resource)
        return resource


class FakePage:
    """Subset of the Playwright Page API backed by BeautifulSoup."""

    def __init__(self, site):
        self.site = site
        self.url = "about:blank"
        self.html = "<html><body></body></html>"
        self.closed = False
        self.clicks = []
        self.routes = []
        self.goto_calls = []

    def _soup(self):
        return BeautifulSoup(self.html, "lxml")

    async def goto(self, url, timeout=None, wait_until=None):
        self.goto_calls.append({"url": url, "timeout": timeout, "wait_until": wait_until})
        resource = self.site.resolve(url)
        if resource.error is not None:
            raise resource.error
        self.url = resource.final_url or url
        self.html = resource.html
        return FakeResponse(resource.status)

    async def content(self):
        return self.html

    async def query_selector(self, selector):
        tag = self._soup().select_one(selector)
        return FakeElement(self, tag) if tag is not None else None

    async def query_selector_all(self, selector):
        return [FakeElement(self, tag) for tag in self._soup().select(selector)]

    async def wait_for_selector(self, selector, timeout=None):
        element = await self.query_selector(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return element

    async def evaluate(self, expression, arg=None):
        soup = self._soup()
        if expression == SCROLL_CONTAINER_JS:
            container = soup.select_one(arg)
            return -1 if container is None else len(str(container))
        if expression == SCROLL_AND_COUNT_JS:
            container = soup.select_one(arg[0])
            return -1 if container is None else len(container.select(arg[1]))
        return None

    async def route(self, pattern, handler):
        self.routes.append(pattern)

    async def close(self):
        self.closed = True


class FakeBrowserPool:
    """Drop-in for BrowserPool that serves FakePages from a FakeSite."""

    def __init__(self, site):
        self.site = site
        self.session = None
        self.sessions = []
        self.pages = []
        self.retired_count = 0

    async def acquire_session(self):
        if self.session is None or self.session.retired:
            self.session = BrowserSession(id=len(self.sessions) + 1, context=None)
            self.sessions.append(self.session)
        return self.session

    async def retire_session(self, session):
        if session.retired:
            return
        session.retired = True
        self.retired_count += 1
        if self.session is session:
            self.session = None

    async def new_page(self, session):
        session.usage += 1
        page = FakePage(self.site)
        self.pages.append(page)
        return page


# Configuration and storage fixtures

@pytest.fixture
def maps_config(tmp_path):
    """MapsConfig without pacing delays, logging under tmp_path."""
    return MapsConfig(rate_limit=RateLimitConfig.no_delay(), log_dir=str(tmp_path / "logs"))


@pytest.fixture
def session_factory(tmp_path):
    """Session factory for a throwaway SQLite database."""
    return create_session_factory(f"sqlite:///{tmp_path / 'maps_test.db'}")


@pytest.fixture
def kv_store(session_factory):
    return KeyValueStore(session_factory)


@pytest.fixture
def make_crawler(maps_config, session_factory, kv_store):
    """Factory building a MapsCrawler over a FakeSite."""

    def _make(input_data, routes, **kwargs):
        site = FakeSite(routes)
        return MapsCrawler(
            RunInput.from_dict(input_data),
            FakeBrowserPool(site),
            DatasetSink(session_factory, name=maps_config.scraping.dataset_name),
            kv_store,
            config=maps_config,
            logger=MapsScraperLogger(log_dir=maps_config.log_dir),
            failed_dataset=DatasetSink(session_factory, name=maps_config.scraping.failed_dataset_name),
            **kwargs,
        )

    return _make


@pytest.fixture
def fake_site():
    """Factory for FakeSite instances."""
    return FakeSite


@pytest.fixture
def fake_browser():
    """Factory building a FakeBrowserPool over the given routes."""

    def _make(routes):
        return FakeBrowserPool(FakeSite(routes))

    return _make


@pytest.fixture
def fake_resource():
    """Factory for FakeResource instances."""
    return FakeResource


@pytest.fixture
def fake_page():
    """Factory building a FakePage already showing the given HTML."""

    def _make(html, url="https://www.google.com/maps/place/Test"):
        page = FakePage(FakeSite({}))
        page.html = html
        page.url = url
        return page

    return _make


# HTML builders

def place_url(slug, place_id="0x5490:0x1", lat=47.6101, lng=-122.3331):
    return (
        f"https://www.google.com/maps/place/{slug}/@{lat},{lng},17z/"
        f"data=!3m1!4b1!4m6!3m5!1s{place_id}!8m2!3d{lat}!4d{lng}"
    )


@pytest.fixture
def make_place_url():
    return place_url


@pytest.fixture
def search_page_html():
    """Builder for a results page listing the given place URLs."""

    def _build(urls):
        articles = "\n".join(
            f'<div role="article"><a class="hfpxzc" href="{url}" aria-label="Place {i}">Place {i}</a></div>'
            for i, url in enumerate(urls)
        )
        return f"""
        <html><body>
          <div role="feed" aria-label="Results for coffee shop">
            {articles}
          </div>
        </body></html>
        """

    return _build


@pytest.fixture
def place_page_html():
    """Builder for a rendered place page."""

    def _build(
        name="Cafe One",
        category="Coffee shop",
        address="123 Pike St, Seattle, WA 98101",
        phone="(206) 555-0100",
        website=None,
        status_text=None,
        facebook=None,
        reviews=(),
        images=(),
    ):
        website_html = (
            f'<a data-item-id="authority" href="{website}" aria-label="Website: {website}">Website</a>'
            if website else ""
        )
        status_html = f'<span class="JZ9JDb">{status_text}</span>' if status_text else ""
        facebook_html = f'<a href="{facebook}">Facebook</a>' if facebook else ""
        images_html = "\n".join(
            f'<img src="https://lh5.googleusercontent.com/p/{image}=w80-h106-k-no">' for image in images
        )
        review_nodes = "\n".join(
            f"""
            <div jsaction="mouseover:pane.review.in" data-review-id="r{i}">
              <div class="d4r55">{author}</div>
              <span class="kvMYJc" role="img" aria-label="{rating} stars"></span>
              <span class="rsqaWe">{i + 1} weeks ago</span>
              <span class="wiI7pd">{text}</span>
            </div>
            """
            for i, (author, rating, text) in enumerate(reviews)
        )
        reviews_button = (
            '<button jsaction="pane.rating.moreReviews" aria-label="123 reviews">123 reviews</button>'
            if reviews else ""
        )
        return f"""
        <html><body>
          <h1 class="DUwDvf">{name}</h1>
          <button class="DkEaL" jsaction="pane.rating.category">{category}</button>
          {status_html}
          <button data-item-id="address" aria-label="Address: {address}">&#xe0c8; {address}</button>
          <button data-item-id="phone:tel:2065550100" aria-label="Phone: {phone}">{phone}</button>
          {website_html}
          <button data-item-id="plus_code">JVCJ+2R Seattle, Washington</button>
          <div class="OMl5r hH0dDd" aria-label="Open · Closes 6 PM"></div>
          <table class="eK4R0e">
            <tr><td>Monday</td><td aria-label="6 AM to 6 PM">6 AM–6 PM</td></tr>
            <tr><td>Tuesday</td><td aria-label="6 AM to 6 PM">6 AM–6 PM</td></tr>
          </table>
          {facebook_html}
          {images_html}
          {reviews_button}
          <div role="feed" aria-label="Reviews for {name}">
            {review_nodes}
          </div>
        </body></html>
        """

    return _build

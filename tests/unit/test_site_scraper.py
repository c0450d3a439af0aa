"""
Unit tests for the website contact miner.

Tests:
- Home -> contact traversal bounded by max_depth
- Primary email/phone selection and finalization
- Page failures recorded without aborting the traversal
"""

import pytest

from scrape_site import ContactOptions, extract_contact_details, site_scraper


HOME_HTML = """
<html><body>
  <a href="/contact">Contact us</a>
  <a href="/about">About</a>
  <a href="https://www.instagram.com/cafeone">Instagram</a>
  <p>Questions? noreply@cafeone-seattle.com</p>
</body></html>
"""

CONTACT_HTML = """
<html><body>
  <a href="mailto:hello@cafeone-seattle.com">hello@cafeone-seattle.com</a>
  <a href="tel:+12065550100">Call</a>
  <a href="https://www.facebook.com/cafeone.site">Facebook</a>
  <a href="https://www.instagram.com/other">Instagram</a>
  <a href="/team">Our team</a>
  <script type="application/ld+json">{"@type": "Person", "name": "Dana Reyes"}</script>
</body></html>
"""


@pytest.fixture
def website_routes(fake_resource):
    return {
        "cafeone-seattle.com/": HOME_HTML,
        "cafeone-seattle.com/contact": CONTACT_HTML,
        "cafeone-seattle.com/team": fake_resource("<p>team@cafeone-seattle.com</p>"),
    }


@pytest.mark.asyncio
async def test_mines_home_and_contact_pages(fake_browser, website_routes):
    browser = fake_browser(website_routes)
    session = await browser.acquire_session()

    result = await extract_contact_details(
        "https://cafeone-seattle.com/",
        lambda: browser.new_page(session),
        ContactOptions(timeout_ms=5000, max_depth=1),
    )

    assert result.email == "hello@cafeone-seattle.com"
    assert result.emails == ["hello@cafeone-seattle.com"]
    assert result.phone == "+12065550100"
    assert result.social_profiles == {
        "instagram": "https://www.instagram.com/cafeone",
        "facebook": "https://www.facebook.com/cafeone.site",
    }
    assert result.contact_persons == ["Dana Reyes"]
    assert result.scanned_pages == ["https://cafeone-seattle.com/", "https://cafeone-seattle.com/contact"]
    assert result.error is None

    # /team is a third-level page and is never visited at depth 1
    assert not any(url.endswith("/team") for url in browser.site.visited)

    page = browser.pages[0]
    assert page.closed
    assert page.routes == ["**/*"]
    assert page.goto_calls[0]["timeout"] == 5000


@pytest.mark.asyncio
async def test_depth_zero_scans_only_homepage(fake_browser, website_routes):
    browser = fake_browser(website_routes)
    session = await browser.acquire_session()

    result = await extract_contact_details(
        "https://cafeone-seattle.com/",
        lambda: browser.new_page(session),
        ContactOptions(max_depth=0),
    )

    assert result.scanned_pages == ["https://cafeone-seattle.com/"]
    assert result.email is None
    assert result.emails == []


@pytest.mark.asyncio
async def test_failed_page_is_recorded_and_skipped(fake_browser, fake_resource):
    browser = fake_browser({
        "cafeone-seattle.com/": HOME_HTML,
        "cafeone-seattle.com/contact": fake_resource("<p>gone</p>", status=404),
    })
    session = await browser.acquire_session()

    result = await extract_contact_details("https://cafeone-seattle.com/", lambda: browser.new_page(session))

    assert result.scanned_pages == ["https://cafeone-seattle.com/"]
    assert "HTTP 404" in result.error
    assert result.social_profiles == {"instagram": "https://www.instagram.com/cafeone"}


@pytest.mark.asyncio
async def test_unreachable_site_reports_error(fake_browser):
    browser = fake_browser({})
    session = await browser.acquire_session()

    result = await extract_contact_details("https://nowhere.test/", lambda: browser.new_page(session))

    assert result.scanned_pages == []
    assert "ERR_NAME_NOT_RESOLVED" in result.error
    assert result.to_dict()["email"] is None


ABOUT_ROUTES = {
    "acmeplumbing.com/": '<html><body><a href="/contact">Contact</a></body></html>',
    "acmeplumbing.com/contact": '<html><body><form></form><a href="/about-us">About us</a></body></html>',
    "acmeplumbing.com/about-us": "<html><body><p>Write to owner@acmeplumbing.com</p></body></html>",
}


@pytest.mark.asyncio
async def test_default_depth_reaches_about_page_linked_from_contact(fake_browser):
    browser = fake_browser(ABOUT_ROUTES)
    session = await browser.acquire_session()

    result = await extract_contact_details("https://acmeplumbing.com/", lambda: browser.new_page(session))

    assert result.email == "owner@acmeplumbing.com"
    assert result.scanned_pages == [
        "https://acmeplumbing.com/",
        "https://acmeplumbing.com/contact",
        "https://acmeplumbing.com/about-us",
    ]


@pytest.mark.asyncio
async def test_parse_failure_is_recorded_and_earlier_findings_kept(fake_browser, monkeypatch):
    parse = site_scraper.parse_contact_page

    def parse_or_fail(html, url):
        if url.endswith("/contact"):
            raise ValueError("malformed markup")
        return parse(html, url)

    monkeypatch.setattr(site_scraper, "parse_contact_page", parse_or_fail)
    browser = fake_browser({
        "cafeone-seattle.com/": '<html><body><p>hello@cafeone-seattle.com</p><a href="/contact">Contact</a></body></html>',
        "cafeone-seattle.com/contact": "<html><body><p>events@cafeone-seattle.com</p></body></html>",
    })
    session = await browser.acquire_session()

    result = await extract_contact_details("https://cafeone-seattle.com/", lambda: browser.new_page(session))

    assert result.email == "hello@cafeone-seattle.com"
    assert result.scanned_pages == ["https://cafeone-seattle.com/"]
    assert result.error == "https://cafeone-seattle.com/contact: malformed markup"
    assert browser.pages[0].closed

"""
Maps Listing Scraper - Extraction Heuristics

Field extractors for Maps place pages and search result pages.

Each field is described by a SelectorCascade: an ordered list of CSS
selectors plus an extraction transform. The first selector that yields a
non-empty value wins, and a field that finds nothing never blocks the
others. The parsing functions work on rendered HTML so they can be tested
without a browser; the async helpers at the bottom drive the live page
(clicking, scrolling) before handing its HTML to the parsers.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urljoin, urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError, Page

from runner.logging_setup import get_logger
from scrape_maps.maps_config import GeoPoint
from scrape_maps.maps_scroll import scroll_node_count


logger = get_logger("maps_parse")


class PlaceStatus(str, Enum):
    OPERATIONAL = "Operational"
    TEMPORARILY_CLOSED = "Temporarily closed"
    PERMANENTLY_CLOSED = "Permanently closed"


# Leading icon glyph (private-use character) or field label before a value
ICON_LABEL_PATTERN = re.compile(
    r'^(?:[^\w\s(+]+|(?:Address|Phone|Plus code|Website)\s*:)\s*',
    re.IGNORECASE
)

URL_AT_COORDS_PATTERN = re.compile(r'@(-?\d+\.\d+),(-?\d+\.\d+)')
URL_PIN_COORDS_PATTERN = re.compile(r'!3d(-?\d+\.\d+)!4d(-?\d+\.\d+)')
JSON_LAT_PATTERN = re.compile(r'"(?:latitude|lat)"\s*:\s*"?(-?\d+\.\d+)')
JSON_LNG_PATTERN = re.compile(r'"(?:longitude|lng|lon)"\s*:\s*"?(-?\d+\.\d+)')
PLACE_ID_PATTERN = re.compile(r'!1s([^!?&#/]+)')
RATING_TOKEN_PATTERN = re.compile(r'(\d+(?:[.,]\d+)?)')
IMAGE_SIZE_PATTERN = re.compile(r'=w\d+-h\d+')
HIGH_RES_IMAGE_SIZE = "=w1024-h768"

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


# Social platform URL patterns, shared with the website contact miner
SOCIAL_PATTERNS = {
    "facebook": re.compile(r'https?://(?:[a-z]{1,3}\.)?facebook\.com/[A-Za-z0-9_.\-]+', re.IGNORECASE),
    "instagram": re.compile(r'https?://(?:www\.)?instagram\.com/[A-Za-z0-9_.\-]+', re.IGNORECASE),
    "twitter": re.compile(r'https?://(?:www\.)?(?:twitter|x)\.com/[A-Za-z0-9_]+', re.IGNORECASE),
    "linkedin": re.compile(r'https?://(?:[a-z]{2,3}\.)?linkedin\.com/(?:company|in)/[A-Za-z0-9_.\-]+', re.IGNORECASE),
    "youtube": re.compile(r'https?://(?:www\.)?youtube\.com/(?:@|c/|channel/|user/)[A-Za-z0-9_.\-]+', re.IGNORECASE),
    "tiktok": re.compile(r'https?://(?:www\.)?tiktok\.com/@[A-Za-z0-9_.\-]+', re.IGNORECASE),
}

# Path segments that are share widgets rather than profiles
SOCIAL_EXCLUDED_HANDLES = {
    "sharer", "sharer.php", "share", "share.php", "intent", "plugins",
    "dialog", "tr", "home", "login", "hashtag", "p", "watch",
}


@dataclass(frozen=True)
class SelectorCascade:
    """
    Ordered selector fallbacks for one field.

    attribute=None extracts element text; otherwise the named attribute.
    transform cleans the raw value and may return None to reject it.
    """

    name: str
    selectors: Tuple[str, ...]
    attribute: Optional[str] = None
    transform: Optional[Callable[[str], Optional[str]]] = None

    def resolve(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in self.selectors:
            for element in soup.select(selector):
                if self.attribute:
                    raw = element.get(self.attribute)
                else:
                    raw = element.get_text(" ", strip=True)
                if not raw:
                    continue
                value = self.transform(raw) if self.transform else clean_text(raw)
                if value:
                    return value
        return None


# Cleaning helpers

def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if not text:
        return None
    text = re.sub(r'\s+', ' ', text).strip()
    return text or None


def strip_icon_label(text: Optional[str]) -> Optional[str]:
    """Remove a leading icon glyph or 'Address:'-style label."""
    text = clean_text(text)
    if not text:
        return None
    text = ICON_LABEL_PATTERN.sub('', text, count=1)
    text = re.sub(r'(Copy address|Copy phone number|Get directions)', '', text, flags=re.IGNORECASE)
    return clean_text(text)


def unwrap_google_redirect(url: Optional[str]) -> Optional[str]:
    """Turn https://www.google.com/url?q=<target> into <target>."""
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.path == "/url" and ("google." in parsed.netloc or not parsed.netloc):
        target = parse_qs(parsed.query).get("q") or parse_qs(parsed.query).get("url")
        if target:
            return target[0]
    return url


def clean_website(url: str) -> Optional[str]:
    url = unwrap_google_redirect(url.strip())
    if not url or not url.startswith(("http://", "https://")):
        return None
    host = urlparse(url).netloc.lower()
    if host.endswith(("google.com", "gstatic.com", "googleapis.com")):
        return None
    return url


def derive_status(status_text: Optional[str]) -> PlaceStatus:
    """Map a status banner text to a PlaceStatus; anything unrecognised is Operational."""
    lowered = (status_text or "").lower()
    if "permanently closed" in lowered:
        return PlaceStatus.PERMANENTLY_CLOSED
    if "temporarily closed" in lowered:
        return PlaceStatus.TEMPORARILY_CLOSED
    return PlaceStatus.OPERATIONAL


def parse_place_id(url: Optional[str]) -> Optional[str]:
    """Extract the place identifier from a '!1s<token>' URL segment."""
    if not url:
        return None
    match = PLACE_ID_PATTERN.search(url)
    return unquote(match.group(1)) if match else None


def parse_rating(label: Optional[str]) -> Optional[float]:
    """Parse '4 stars' / '4,5 étoiles' / '5/5' into a float in [1, 5]."""
    if not label:
        return None
    match = RATING_TOKEN_PATTERN.search(label)
    if not match:
        return None
    rating = float(match.group(1).replace(",", "."))
    if 1 <= rating <= 5:
        return rating
    return None


def upgrade_image_url(url: str) -> str:
    """Rewrite the '=wNNN-hNNN' size token to the high resolution variant."""
    return IMAGE_SIZE_PATTERN.sub(HIGH_RES_IMAGE_SIZE, url, count=1)


# Coordinates

def _valid_point(lat: float, lng: float) -> Optional[GeoPoint]:
    if -90 <= lat <= 90 and -180 <= lng <= 180:
        return GeoPoint(lat=lat, lng=lng)
    return None


def parse_url_coordinates(url: Optional[str]) -> Optional[GeoPoint]:
    """Coordinates from an '@lat,lng' segment, falling back to '!3d<lat>!4d<lng>'."""
    if not url:
        return None
    url = unquote(url)
    for pattern in (URL_AT_COORDS_PATTERN, URL_PIN_COORDS_PATTERN):
        match = pattern.search(url)
        if match:
            point = _valid_point(float(match.group(1)), float(match.group(2)))
            if point:
                return point
    return None


def parse_center_param(url: Optional[str]) -> Optional[GeoPoint]:
    """Coordinates from a static map image's 'center=lat,lng' parameter."""
    if not url:
        return None
    center = parse_qs(urlparse(url).query).get("center")
    if not center:
        return None
    parts = center[0].split(",")
    if len(parts) != 2:
        return None
    try:
        return _valid_point(float(parts[0]), float(parts[1]))
    except ValueError:
        return None


def parse_json_coordinates(text: Optional[str]) -> Optional[GeoPoint]:
    """Coordinates from 'latitude'/'longitude' keys in embedded JSON or script text."""
    if not text:
        return None
    lat_match = JSON_LAT_PATTERN.search(text)
    lng_match = JSON_LNG_PATTERN.search(text)
    if not lat_match or not lng_match:
        return None
    return _valid_point(float(lat_match.group(1)), float(lng_match.group(1)))


def extract_coordinates(soup: BeautifulSoup, page_url: Optional[str]) -> Optional[GeoPoint]:
    """
    Derive coordinates in priority order.

    1. '@lat,lng' in the current page URL
    2. 'center=' parameter of an embedded map preview image
    3. '@lat,lng' in a directions link
    4. latitude/longitude keys in script or JSON metadata
    """
    point = parse_url_coordinates(page_url)
    if point:
        return point

    for img in soup.select('img[src*="center="]'):
        point = parse_center_param(img.get("src"))
        if point:
            return point

    for link in soup.select('a[href*="/maps/dir/"], a[data-item-id*="directions"], a[href*="@"]'):
        point = parse_url_coordinates(link.get("href"))
        if point:
            return point

    for script in soup.select('script'):
        point = parse_json_coordinates(script.string or script.get_text())
        if point:
            return point

    return None


def coordinates_from_html(html: str, page_url: Optional[str] = None) -> Optional[GeoPoint]:
    """extract_coordinates() for raw HTML."""
    return extract_coordinates(BeautifulSoup(html, "lxml"), page_url)


# Core fields

CORE_CASCADES = {
    "name": SelectorCascade("name", ('h1.DUwDvf', 'h1', '.DUwDvf')),
    "category": SelectorCascade("category", ('button[jsaction*="category"]', 'button.DkEaL')),
    "address": SelectorCascade(
        "address",
        ('button[data-item-id="address"]', '[data-tooltip*="address"]', '[data-item-id*="address"]'),
        transform=strip_icon_label,
    ),
    "phone": SelectorCascade(
        "phone",
        ('button[data-item-id^="phone"]', '[data-tooltip*="phone"]', 'a[href^="tel:"]'),
        transform=strip_icon_label,
    ),
    "website": SelectorCascade(
        "website",
        ('a[data-item-id="authority"]', 'a[aria-label*="Website"]', 'a[data-tooltip*="Open website"]'),
        attribute="href",
        transform=clean_website,
    ),
    "plus_code": SelectorCascade(
        "plus_code",
        ('button[data-item-id="plus_code"]', '[data-tooltip*="Plus code"]'),
        transform=strip_icon_label,
    ),
    "status_text": SelectorCascade("status_text", ('.JZ9JDb', '.mgr77e')),
    "opening_hours_status": SelectorCascade(
        "opening_hours_status",
        ('.OMl5r.hH0dDd', '.OMl5r[aria-label]', 'div[jsaction*="openhours"][aria-label]'),
        attribute="aria-label",
    ),
}


@dataclass
class CoreFields:
    """Always-extracted fields of a place page."""

    name: Optional[str] = None
    category: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    plus_code: Optional[str] = None
    status_text: Optional[str] = None
    status: PlaceStatus = PlaceStatus.OPERATIONAL
    opening_hours_status: Optional[str] = None
    coordinates: Optional[GeoPoint] = None
    place_id: Optional[str] = None

    def populated_fields(self) -> List[str]:
        return [key for key, value in vars(self).items() if value]


def extract_core_fields(html: str, page_url: Optional[str] = None) -> CoreFields:
    """
    Extract the core fields of a rendered place page.

    Args:
        html: Rendered page HTML
        page_url: Current page URL (coordinates and place id are read from it)

    Returns:
        CoreFields with None for every field that could not be found
    """
    soup = BeautifulSoup(html, "lxml")
    values = {name: cascade.resolve(soup) for name, cascade in CORE_CASCADES.items()}

    return CoreFields(
        name=values["name"],
        category=values["category"],
        address=values["address"],
        phone=values["phone"],
        website=values["website"],
        plus_code=values["plus_code"],
        status_text=values["status_text"],
        status=derive_status(values["status_text"]),
        opening_hours_status=values["opening_hours_status"],
        coordinates=extract_coordinates(soup, page_url),
        place_id=parse_place_id(page_url),
    )


# Opening hours

def _parse_hours_text(hours_text: str) -> Dict[str, str]:
    """Parse 'Monday 9 AM–5 PM Tuesday ...' style text into day -> hours."""
    hours = {}
    hours_text = re.sub(
        r"(Hide open hours for the week|Copy open hours|Suggest new hours)", "", hours_text, flags=re.IGNORECASE
    )
    day_pattern = (
        r'(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday)[,:\s]+(.*?)'
        r'(?=[;.]?\s*(?:Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday)|[;.]?\s*$)'
    )
    for match in re.finditer(day_pattern, hours_text, re.IGNORECASE):
        day = match.group(1).capitalize()
        value = clean_text(match.group(2).strip(" ,;."))
        if value and day not in hours:
            hours[day] = value
    return hours


def extract_opening_hours(html: str) -> Optional[Dict[str, str]]:
    """
    Extract the weekly schedule as day -> hours text.

    Tries the hours table rows first, then the aria-label summary of the
    hours widget, then free text of any hours container.

    Returns:
        Dict keyed by day name, or None if no schedule is present
    """
    soup = BeautifulSoup(html, "lxml")

    hours = {}
    for row in soup.select('table.eK4R0e tr, div[aria-label*="Hours"] table tr, table[aria-label*="Hours"] tr'):
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        day = clean_text(cells[0].get_text(" ", strip=True))
        value = clean_text(cells[1].get("aria-label") or cells[1].get_text(" ", strip=True))
        if day and value and day.capitalize() in DAY_NAMES:
            hours.setdefault(day.capitalize(), value)
    if hours:
        return hours

    for element in soup.select('div.t39EBf[aria-label], [aria-label*="Monday"]'):
        hours = _parse_hours_text(element.get("aria-label", ""))
        if hours:
            return hours

    for element in soup.select('div[aria-label*="Hours"], table[aria-label*="Hours"], div.t39EBf'):
        hours = _parse_hours_text(element.get_text(" ", strip=True))
        if hours:
            return hours

    return None


# Images

IMAGE_SELECTORS = (
    'button[jsaction*="pane.heroHeaderImage.click"] img[src*="googleusercontent"]',
    'img[src*="googleusercontent.com/p/"]',
)


def parse_images(html: str, max_images: int) -> List[str]:
    """
    Collect up to max_images high resolution photo URLs.

    Returns:
        De-duplicated URLs in page order
    """
    if max_images <= 0:
        return []
    soup = BeautifulSoup(html, "lxml")
    urls: List[str] = []
    for selector in IMAGE_SELECTORS:
        for img in soup.select(selector):
            src = img.get("src")
            if not src:
                continue
            url = upgrade_image_url(src)
            if url not in urls:
                urls.append(url)
            if len(urls) >= max_images:
                return urls
        if urls:
            break
    return urls


# Reviews

REVIEW_BUTTON_SELECTORS = (
    'button[jsaction*="pane.rating.moreReviews"]',
    'button[jsaction*="pane.reviewChart.moreReviews"]',
    'button[aria-label*="Reviews"]',
)
REVIEW_FEED_SELECTOR = 'div[role="feed"][aria-label*="Reviews"], div.m6QErb[aria-label*="Reviews"]'
REVIEW_NODE_SELECTOR = 'div[jsaction*="mouseover:pane.review.in"]'
REVIEW_MORE_BUTTON_SELECTOR = 'button[jsaction="click:TiglPc"], button[jsaction*="review.expandReview"]'
REVIEW_SORT_BUTTON_SELECTORS = (
    'button[aria-label*="Sort reviews"]',
    'button[aria-label*="Most relevant"]',
    'button[data-value="Sort"]',
)
REVIEW_SORT_MENU_ITEM_SELECTOR = 'div[role="menuitemradio"]'
REVIEW_SORT_INDEX = {
    "mostRelevant": 0,
    "newest": 1,
    "highestRanking": 2,
    "lowestRanking": 3,
}

REVIEW_CASCADES = {
    "author_name": SelectorCascade("author_name", ('.d4r55', '.WNxzHc a')),
    "rating": SelectorCascade(
        "rating",
        ('.kvMYJc[aria-label]', '.kvMYJc [aria-label*="star"]', 'span[role="img"][aria-label*="star"]'),
        attribute="aria-label",
    ),
    "rating_text": SelectorCascade("rating_text", ('.fzvQIb',)),
    "date": SelectorCascade("date", ('.rsqaWe', '.xRkPPb')),
}
REVIEW_BODY_SELECTOR = '.wiI7pd, .MyEned span'
OWNER_REPLY_SELECTOR = '.CDe7pd'


@dataclass
class Review:
    author_name: Optional[str] = None
    rating: Optional[float] = None
    date: Optional[str] = None
    text: Optional[str] = None
    owner_reply: Optional[str] = None
    review_id: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.author_name, self.rating, self.date, self.text))

    def to_dict(self) -> Dict[str, Optional[object]]:
        return {
            "authorName": self.author_name,
            "rating": self.rating,
            "date": self.date,
            "text": self.text,
            "ownerReply": self.owner_reply,
        }


def _parse_review_node(node) -> Review:
    values = {name: cascade.resolve(node) for name, cascade in REVIEW_CASCADES.items()}

    reply_container = node.select_one(OWNER_REPLY_SELECTOR)
    owner_reply = None
    if reply_container is not None:
        reply_body = reply_container.select_one('.wiI7pd')
        owner_reply = clean_text((reply_body or reply_container).get_text(" ", strip=True))

    text = None
    for element in node.select(REVIEW_BODY_SELECTOR):
        if reply_container is not None and any(parent is reply_container for parent in element.parents):
            continue
        text = clean_text(element.get_text(" ", strip=True))
        if text:
            break

    return Review(
        author_name=values["author_name"],
        rating=parse_rating(values["rating"]) or parse_rating(values["rating_text"]),
        date=values["date"],
        text=text,
        owner_reply=owner_reply,
        review_id=node.get("data-review-id"),
    )


def parse_reviews(html: str, max_reviews: int) -> List[Review]:
    """
    Parse review nodes from the reviews pane.

    Nodes with none of author, rating, date or text are dropped, and nodes
    sharing a data-review-id are kept once.

    Returns:
        At most max_reviews Review objects in page order
    """
    if max_reviews <= 0:
        return []
    soup = BeautifulSoup(html, "lxml")
    container = soup.select_one(REVIEW_FEED_SELECTOR) or soup

    reviews: List[Review] = []
    seen_ids = set()
    for node in container.select(REVIEW_NODE_SELECTOR):
        review = _parse_review_node(node)
        if review.is_empty():
            continue
        if review.review_id:
            if review.review_id in seen_ids:
                continue
            seen_ids.add(review.review_id)
        reviews.append(review)
        if len(reviews) >= max_reviews:
            break
    return reviews


# Social profiles

def match_social_url(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Match a URL against the social platform table.

    Returns:
        (platform, profile_url) or None for non-profile URLs
    """
    url = unwrap_google_redirect(url)
    if not url:
        return None
    for platform, pattern in SOCIAL_PATTERNS.items():
        match = pattern.match(url)
        if not match:
            continue
        profile_url = match.group(0).rstrip("/.")
        handle = profile_url.rsplit("/", 1)[-1].lower()
        if handle in SOCIAL_EXCLUDED_HANDLES:
            return None
        return platform, profile_url
    return None


def find_social_profiles(urls: Iterable[str], found: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Keep the first profile URL per platform."""
    profiles = dict(found or {})
    for url in urls:
        matched = match_social_url(url)
        if matched and matched[0] not in profiles:
            profiles[matched[0]] = matched[1]
    return profiles


def extract_social_profiles(html: str) -> Dict[str, str]:
    """Social profile links present on a place page."""
    soup = BeautifulSoup(html, "lxml")
    return find_social_profiles(a.get("href") for a in soup.select('a[href]'))


# Search result pages

def listing_link_cascade(feed_selector: str) -> Tuple[str, ...]:
    return (
        f'{feed_selector} div[role="article"] a[href*="/maps/place/"]',
        f'{feed_selector} a[href*="/maps/place/"]',
        'a[href*="/maps/place/"]',
    )


def parse_listing_links(html: str, feed_selector: str, base_url: str) -> List[str]:
    """
    Unique listing URLs from a search results page.

    Stops at the first selector of the cascade that yields any link.

    Returns:
        Absolute URLs in encounter order
    """
    soup = BeautifulSoup(html, "lxml")
    for selector in listing_link_cascade(feed_selector):
        links: List[str] = []
        for anchor in soup.select(selector):
            href = anchor.get("href")
            if not href:
                continue
            url = urljoin(base_url, href)
            if url not in links:
                links.append(url)
        if links:
            return links
    return []


# Live page helpers

async def extract_images(page: Page, max_images: int) -> List[str]:
    """Images from the place page header."""
    return parse_images(await page.content(), max_images)


async def apply_review_sort(page: Page, sort: str, wait: Callable[[], float]) -> bool:
    """
    Select a sort order in the reviews pane.

    Returns:
        True if the sort menu item was clicked
    """
    index = REVIEW_SORT_INDEX.get(sort)
    if index is None:
        return False

    for selector in REVIEW_SORT_BUTTON_SELECTORS:
        button = await page.query_selector(selector)
        if not button:
            continue
        try:
            await button.click()
            await asyncio.sleep(wait())
            items = await page.query_selector_all(REVIEW_SORT_MENU_ITEM_SELECTOR)
            if len(items) > index:
                await items[index].click()
                await asyncio.sleep(wait())
                return True
        except PlaywrightError as e:
            logger.warning(f"Could not apply review sort '{sort}': {e}")
        return False

    logger.debug("Review sort control not found")
    return False


async def extract_reviews(
    page: Page,
    max_reviews: int,
    sort: str = "newest",
    scroll_limit: int = 5,
    wait: Optional[Callable[[], float]] = None,
) -> List[Review]:
    """
    Open the reviews pane, load up to max_reviews reviews and parse them.

    Args:
        page: Playwright page showing a place
        max_reviews: Review cap
        sort: One of REVIEW_SORT_INDEX keys
        scroll_limit: Maximum scroll attempts inside the pane
        wait: Returns seconds to pause after clicks and between scrolls

    Returns:
        List of Review objects (empty if the pane cannot be opened)
    """
    if max_reviews <= 0:
        return []
    wait = wait or (lambda: 0)

    clicked = False
    for selector in REVIEW_BUTTON_SELECTORS:
        button = await page.query_selector(selector)
        if button:
            await button.click()
            await asyncio.sleep(wait())
            clicked = True
            logger.debug(f"Clicked reviews button: {selector}")
            break

    if not clicked:
        logger.warning("Could not find or click the reviews button")
        return []

    await apply_review_sort(page, sort, wait)

    await scroll_node_count(
        page,
        REVIEW_FEED_SELECTOR,
        REVIEW_NODE_SELECTOR,
        max_scrolls=scroll_limit,
        target=max_reviews,
        wait=wait,
    )

    await page.evaluate(
        "(selector) => document.querySelectorAll(selector).forEach((button) => button.click())",
        REVIEW_MORE_BUTTON_SELECTOR,
    )

    return parse_reviews(await page.content(), max_reviews)

"""
Maps Listing Scraper - Task Model & Seeding

A Task is one unit of crawl work. Its label is fixed by the payload type:
- SearchPayload -> SEARCH (enumerate listings on a results page)
- DetailPayload -> DETAIL (extract one listing)
- AnchorPayload -> EXTRACT_AND_SEARCH (derive a geo anchor, then search)

Also builds the Maps search URLs the run is seeded with.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl, quote, unquote_plus, urlencode, urlparse, urlunparse

from runner.logging_setup import get_logger
from scrape_maps.maps_config import DEFAULT_RADIUS_KM, GeoPoint, RunInput
from scrape_maps.maps_errors import ConfigurationError


logger = get_logger("maps_tasks")


MAPS_SEARCH_BASE = "https://www.google.com/maps/search/"
SEARCH_DATA_SUFFIX = "data=!4m2!2m1!6e5"
MAX_ZOOM = 21

SEARCH_PATH_PATTERN = re.compile(r'/maps/search/([^/@?]+)')
PLACE_PATH_PATTERN = re.compile(r'/maps/place/([^/@?]+)')


class Label(str, Enum):
    SEARCH = "SEARCH"
    DETAIL = "DETAIL"
    EXTRACT_AND_SEARCH = "EXTRACT_AND_SEARCH"


@dataclass
class SearchPayload:
    search_term: str
    places_found: int = 0
    coordinates: Optional[GeoPoint] = None
    radius_km: Optional[float] = None
    location: Optional[str] = None


@dataclass
class DetailPayload:
    place_name: Optional[str] = None
    search_terms: Optional[str] = None


@dataclass
class AnchorPayload:
    search_terms: List[str] = field(default_factory=list)
    radius_km: float = DEFAULT_RADIUS_KM


Payload = Union[SearchPayload, DetailPayload, AnchorPayload]

PAYLOAD_LABELS = {
    SearchPayload: Label.SEARCH,
    DetailPayload: Label.DETAIL,
    AnchorPayload: Label.EXTRACT_AND_SEARCH,
}


@dataclass
class Task:
    url: str
    payload: Payload
    retry_count: int = 0

    @property
    def label(self) -> Label:
        return PAYLOAD_LABELS[type(self.payload)]


# URL helpers

def zoom_for_radius(radius_km: Optional[float]) -> int:
    """Map zoom level covering radius_km: max(10, 16 - floor(log2(r))), capped at 21."""
    if not radius_km or radius_km <= 0:
        radius_km = DEFAULT_RADIUS_KM
    return min(MAX_ZOOM, max(10, 16 - math.floor(math.log2(radius_km))))


def build_search_url(
    term: str,
    language: str,
    coordinates: Optional[GeoPoint] = None,
    radius_km: Optional[float] = None,
    location: Optional[str] = None,
) -> str:
    """
    Build a Maps search URL from the best available geo context.

    Priority: coordinates + radius, then free-text location, then the bare term.
    """
    encoded_term = quote(term.strip(), safe="")
    lang = quote(language, safe="")
    if coordinates is not None:
        zoom = zoom_for_radius(radius_km)
        return (
            f"{MAPS_SEARCH_BASE}{encoded_term}/@{coordinates.lat},{coordinates.lng},{zoom}z/"
            f"{SEARCH_DATA_SUFFIX}?hl={lang}"
        )
    if location:
        encoded_location = quote(location.strip(), safe="")
        return f"{MAPS_SEARCH_BASE}{encoded_term}+in+{encoded_location}/{SEARCH_DATA_SUFFIX}?hl={lang}"
    return f"{MAPS_SEARCH_BASE}{encoded_term}/{SEARCH_DATA_SUFFIX}?hl={lang}"


def with_language(url: str, language: str) -> str:
    """Set the 'hl' query parameter, replacing any existing value."""
    parsed = urlparse(url)
    query = [(key, value) for key, value in parse_qsl(parsed.query, keep_blank_values=True) if key != "hl"]
    query.append(("hl", language))
    return urlunparse(parsed._replace(query=urlencode(query, safe="!:,")))


def _decode_path_segment(match: Optional[re.Match], default: str) -> str:
    if not match:
        return default
    return unquote_plus(match.group(1)).strip() or default


def place_name_from_url(url: str, default: Optional[str] = None) -> Optional[str]:
    """Decoded place name from a '/maps/place/<name>' URL."""
    return _decode_path_segment(PLACE_PATH_PATTERN.search(url), default)


def infer_label(url: str) -> Label:
    """Label a start URL by its path shape."""
    if "/maps/search/" in url:
        return Label.SEARCH
    if "/maps/place/" in url:
        return Label.DETAIL
    logger.warning(f"Could not determine label for start URL: {url}. Assuming DETAIL.")
    return Label.DETAIL


# Seeding

def _start_url_entry(entry: Any) -> Optional[Dict[str, Any]]:
    if isinstance(entry, str):
        return {"url": entry.strip(), "userData": {}}
    if isinstance(entry, dict) and entry.get("url"):
        return {"url": str(entry["url"]).strip(), "userData": dict(entry.get("userData") or {})}
    return None


def task_for_start_url(url: str, label: Label, user_data: Dict[str, Any], run_input: RunInput) -> Task:
    """Build the Task for one start URL with a resolved label."""
    if label == Label.SEARCH:
        term = user_data.get("search") or _decode_path_segment(
            SEARCH_PATH_PATTERN.search(url), "Unknown Search"
        )
        return Task(url=url, payload=SearchPayload(search_term=term))

    if label == Label.EXTRACT_AND_SEARCH:
        radius = DEFAULT_RADIUS_KM
        if run_input.custom_geolocation is not None:
            radius = run_input.custom_geolocation.radius_km
        return Task(url=url, payload=AnchorPayload(
            search_terms=[term.strip() for term in run_input.search_strings if term.strip()],
            radius_km=radius,
        ))

    name = user_data.get("placeName") or _decode_path_segment(
        PLACE_PATH_PATTERN.search(url), "Unknown Place"
    )
    return Task(url=url, payload=DetailPayload(
        place_name=name,
        search_terms=user_data.get("searchTerms"),
    ))


def seed_tasks(run_input: RunInput) -> List[Task]:
    """
    Turn the run input into the initial task list.

    Start URLs come first, labelled by URL shape unless a label is given.
    When search terms accompany start URLs but no location or geolocation,
    place start URLs become EXTRACT_AND_SEARCH anchors for those terms.
    Each search term then gets a SEARCH task built from the available geo
    context; terms are only searched bare when nothing can anchor them.

    Returns:
        List of Task objects in seeding order
    """
    tasks: List[Task] = []
    terms = [term.strip() for term in run_input.search_strings if term and term.strip()]
    has_geo = bool(run_input.search_location) or run_input.custom_geolocation is not None
    anchored = False

    for entry in run_input.start_urls:
        request = _start_url_entry(entry)
        if not request:
            continue
        url, user_data = request["url"], request["userData"]

        label_name = user_data.get("label")
        if label_name:
            try:
                label = Label(label_name)
            except ValueError:
                raise ConfigurationError(f"Input error: unknown label '{label_name}' for start URL {url}")
        else:
            label = infer_label(url)
            if label == Label.DETAIL and terms and not has_geo:
                label = Label.EXTRACT_AND_SEARCH

        task = task_for_start_url(url, label, user_data, run_input)
        anchored = anchored or label == Label.EXTRACT_AND_SEARCH
        logger.info(f"Adding start URL: {url} (Label: {label.value})")
        tasks.append(task)

    if terms and (has_geo or not anchored):
        for term in terms:
            task = search_task_for_term(term, run_input)
            if task:
                tasks.append(task)

    return tasks


def search_task_for_term(term: str, run_input: RunInput) -> Optional[Task]:
    """SEARCH task for one term, or None if the custom geolocation is invalid."""
    geolocation = run_input.custom_geolocation
    if geolocation is not None:
        point = geolocation.point()
        if point is None:
            logger.error(f"Invalid customGeolocation coordinates: {geolocation.coordinates}")
            return None
        url = build_search_url(term, run_input.language, coordinates=point, radius_km=geolocation.radius_km)
        logger.info(f"Adding search URL with coordinates: {url}")
        return Task(url=url, payload=SearchPayload(
            search_term=term, coordinates=point, radius_km=geolocation.radius_km,
        ))

    if run_input.search_location:
        url = build_search_url(term, run_input.language, location=run_input.search_location)
        logger.info(f"Adding search URL with location: {url}")
        return Task(url=url, payload=SearchPayload(search_term=term, location=run_input.search_location))

    url = build_search_url(term, run_input.language)
    logger.info(f"Adding search URL with only keywords: {url}")
    return Task(url=url, payload=SearchPayload(search_term=term))


def anchored_search_task(term: str, anchor: GeoPoint, radius_km: float, language: str) -> Task:
    """SEARCH task centred on coordinates derived from a start URL."""
    url = build_search_url(term, language, coordinates=anchor, radius_km=radius_km)
    return Task(url=url, payload=SearchPayload(search_term=term, coordinates=anchor, radius_km=radius_km))

#!/usr/bin/env python3
"""
Website contact parser for maps-scrape-bot.

This module extracts contact information from a business website's HTML:
- Email addresses (text, mailto: links, "[at]"/"[dot]" obfuscation)
- Phone numbers (tel: links, text patterns)
- Social profile links
- Contact person names from schema.org JSON-LD
- Links to contact/about pages on the same site

It also holds the finalization rules that turn raw candidates into the
published email and phone lists.
"""

import json
import re
from typing import Optional
from urllib.parse import urldefrag, urljoin, urlparse

import tldextract
from bs4 import BeautifulSoup

from runner.logging_setup import get_logger
from scrape_maps.maps_parse import SOCIAL_PATTERNS, find_social_profiles


# Initialize logger
logger = get_logger("site_parse")

# Offline extractor: uses the public suffix snapshot bundled with tldextract
_TLD_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

# Phone regex patterns
PHONE_PATTERNS = [
    r'\(\d{3}\)\s*\d{3}[-.\s]?\d{4}',  # (555) 123-4567
    r'\b1[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b',  # 1-555-123-4567
    r'\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b',  # 555-123-4567 or 555.123.4567
    r'\+\d{1,3}[\s.-]?\(?\d{1,4}\)?(?:[\s.-]?\d{2,4}){2,4}',  # +44 20 7946 0958
]

# Email regex pattern
EMAIL_PATTERN = re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}')

# "name [at] domain [dot] com" style obfuscation
OBFUSCATED_SUBSTITUTIONS = [
    (re.compile(r'\s*[\[\(\{]\s*at\s*[\]\)\}]\s*', re.IGNORECASE), "@"),
    (re.compile(r'\s*[\[\(\{]\s*dot\s*[\]\)\}]\s*', re.IGNORECASE), "."),
]

# Domains that only ever appear in templates, widgets or error trackers
PLACEHOLDER_EMAIL_DOMAINS = (
    "example.com",
    "example.org",
    "domain.com",
    "email.com",
    "yourdomain.com",
    "yoursite.com",
    "company.com",
    "wixpress.com",
    "sentry.io",
    "sentry-next.wixpress.com",
)

# Matches that are really asset file names ("logo@2x.png")
EMAIL_FILE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js", ".ico")

# Role addresses that never reach a person
FUNCTIONAL_EMAIL_PREFIXES = (
    "noreply",
    "no-reply",
    "donotreply",
    "do-not-reply",
    "admin",
    "postmaster",
    "webmaster",
    "mailer-daemon",
    "abuse",
    "hostmaster",
    "root",
)

MIN_PHONE_DIGITS = 7

# JSON-LD keys on an organization that hold people
PERSON_KEYS = ("employee", "employees", "founder", "founders", "member", "contactPoint")


def domain_from_url(url: str) -> str:
    """
    Registered domain of a URL ('www.acme.co.uk' -> 'acme.co.uk').

    Falls back to the host for IPs and hosts without a public suffix.
    """
    host = urlparse(url).hostname or ""
    extracted = _TLD_EXTRACT(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host.lower()


def extract_json_ld(soup: BeautifulSoup) -> list[dict]:
    """
    Extract JSON-LD structured data from HTML.

    Args:
        soup: BeautifulSoup object

    Returns:
        List of parsed JSON-LD objects (with @graph entries flattened)
    """
    json_ld_data = []

    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug(f"Failed to parse JSON-LD: {e}")
            continue

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            json_ld_data.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                json_ld_data.extend(entry for entry in graph if isinstance(entry, dict))

    return json_ld_data


def _types_of(item: dict) -> list[str]:
    types = item.get("@type") or []
    return [types] if isinstance(types, str) else [t for t in types if isinstance(t, str)]


def deobfuscate(text: str) -> str:
    for pattern, replacement in OBFUSCATED_SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text


def extract_emails(soup: BeautifulSoup) -> list[str]:
    """
    Raw email candidates in page order.

    Checks:
    1. mailto: links
    2. Text content
    3. Text content with "[at]"/"[dot]" obfuscation undone
    """
    candidates = []

    for link in soup.select('a[href^="mailto:"]'):
        address = link.get("href", "")[len("mailto:"):].split("?")[0].strip()
        if address:
            candidates.append(address)

    text = soup.get_text(" ")
    candidates.extend(EMAIL_PATTERN.findall(text))
    candidates.extend(EMAIL_PATTERN.findall(deobfuscate(text)))

    return candidates


def extract_phones(soup: BeautifulSoup) -> list[str]:
    """
    Raw phone candidates in page order.

    Checks:
    1. tel: links
    2. Text content matching phone patterns

    Text matches never overlap: where patterns compete for the same digits,
    the match starting first (then the longest) is kept, so "+1 206 555 0100"
    is one candidate rather than three partial ones.
    """
    candidates = []

    for link in soup.select('a[href^="tel:"]'):
        number = link.get("href", "")[len("tel:"):].strip()
        if number:
            candidates.append(number)

    text = soup.get_text(" ")
    matches = sorted(
        (match for pattern in PHONE_PATTERNS for match in re.finditer(pattern, text)),
        key=lambda match: (match.start(), -len(match.group(0))),
    )
    last_end = -1
    for match in matches:
        if match.start() < last_end:
            continue
        candidates.append(match.group(0))
        last_end = match.end()

    return candidates


def extract_social_links(soup: BeautifulSoup, html: str) -> dict:
    """
    First profile link per social platform.

    Anchor hrefs win over URLs found anywhere in the raw HTML.
    """
    profiles = find_social_profiles(link.get("href") for link in soup.select("a[href]"))

    raw_urls = []
    for pattern in SOCIAL_PATTERNS.values():
        raw_urls.extend(match.group(0) for match in pattern.finditer(html))
    return find_social_profiles(raw_urls, found=profiles)


def _person_names(value) -> list[str]:
    if isinstance(value, list):
        names = []
        for entry in value:
            names.extend(_person_names(entry))
        return names
    if isinstance(value, dict):
        name = value.get("name")
        return [name.strip()] if isinstance(name, str) and name.strip() else []
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def extract_contact_persons(soup: BeautifulSoup) -> list[str]:
    """Names of people listed in schema.org JSON-LD."""
    names = []
    for item in extract_json_ld(soup):
        if "Person" in _types_of(item):
            names.extend(_person_names(item))
            continue
        for key in PERSON_KEYS:
            if key in item:
                names.extend(_person_names(item[key]))
    return dedupe(names)


def find_keyword_links(html: str, base_url: str, keywords: list[str]) -> list[str]:
    """
    Same-site links whose text or URL path mention one of the keywords.

    Args:
        html: HTML content of the page
        base_url: URL the HTML was loaded from
        keywords: Lowercase keywords ("contact", "about-us", ...)

    Returns:
        Absolute URLs (fragment removed) in page order
    """
    soup = BeautifulSoup(html, "lxml")
    base_domain = domain_from_url(base_url)
    found = []

    for link in soup.find_all("a", href=True):
        href = link.get("href", "").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue

        absolute_url = urldefrag(urljoin(base_url, href))[0]
        parsed = urlparse(absolute_url)
        if parsed.scheme not in ("http", "https"):
            continue
        if domain_from_url(absolute_url) != base_domain:
            continue

        text = link.get_text(" ", strip=True).lower()
        path = parsed.path.lower()
        if any(kw in text or kw in path for kw in keywords):
            if absolute_url not in found:
                found.append(absolute_url)

    return found


def parse_contact_page(html: str, base_url: str) -> dict:
    """
    Harvest raw contact candidates from one page.

    Args:
        html: Raw HTML content
        base_url: URL of the page

    Returns:
        Dict with emails, phones, social_profiles, contact_persons
    """
    soup = BeautifulSoup(html, "lxml")
    result = {
        "emails": extract_emails(soup),
        "phones": extract_phones(soup),
        "social_profiles": extract_social_links(soup, html),
        "contact_persons": extract_contact_persons(soup),
    }
    logger.debug(
        f"Parsed {base_url}: {len(result['emails'])} email candidates, "
        f"{len(result['phones'])} phone candidates, {len(result['social_profiles'])} social links"
    )
    return result


# Finalization

def dedupe(values: list[str]) -> list[str]:
    """Remove duplicates, keeping first occurrence order."""
    seen = set()
    unique = []
    for value in values:
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


def is_valid_email(email: str) -> bool:
    """
    Check an email candidate against the exclusion rules.

    Rejects asset file names, placeholder/tracker domains, functional
    prefixes (noreply@, admin@, ...) and domains without a dot.
    """
    email = email.strip().lower()
    if email.count("@") != 1:
        return False

    local, domain = email.split("@")
    if not local or "." not in domain:
        return False

    if email.endswith(EMAIL_FILE_SUFFIXES):
        return False

    if any(domain == bad or domain.endswith("." + bad) for bad in PLACEHOLDER_EMAIL_DOMAINS):
        return False

    if local.split("+")[0] in FUNCTIONAL_EMAIL_PREFIXES:
        return False

    return True


def finalize_emails(candidates: list[str]) -> list[str]:
    """Valid, lowercased, de-duplicated emails in discovery order."""
    cleaned = [c.strip().strip(".").lower() for c in candidates if c]
    return dedupe([email for email in cleaned if is_valid_email(email)])


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Keep digits and '+()-.' characters; require at least 7 digits.

    Args:
        phone: Raw phone string

    Returns:
        Normalized phone or None
    """
    if not phone:
        return None
    normalized = re.sub(r'[^\d+()\-.]', '', phone)
    digits = re.sub(r'\D', '', normalized)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return normalized


def finalize_phones(candidates: list[str]) -> list[str]:
    """Normalized phones in discovery order, one per distinct digit string."""
    phones = []
    seen_digits = set()
    for phone in (normalize_phone(c) for c in candidates):
        if not phone:
            continue
        digits = re.sub(r'\D', '', phone)
        if digits in seen_digits:
            continue
        seen_digits.add(digits)
        phones.append(phone)
    return phones

"""
Website contact mining for maps-scrape-bot.
"""

from scrape_site.site_scraper import ContactOptions, ContactResult, extract_contact_details

__all__ = [
    "ContactOptions",
    "ContactResult",
    "extract_contact_details",
]

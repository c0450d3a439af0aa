"""
Maps Listing Scraper - Error Taxonomy

Exception classes raised by the crawl pipeline, plus the classifier the
orchestrator uses to decide whether a failure must retire the browser session.

Hierarchy:
- ConfigurationError: bad run input, raised before any browser work
- ScrapeError: task-level failure, retried by the orchestrator
    - PageStructureError: expected container missing, no "no results" signal
    - BlockedError: 403/429 and other blocking responses
        - CaptchaDetectedError: CAPTCHA page served instead of content
"""

from typing import Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


# Error text fragments that indicate a flagged identity or a dead browser.
SESSION_BLOCKING_SIGNATURES = [
    "Navigation timeout",
    "net::ERR_",
    "CAPTCHA",
    "Target closed",
    "has been closed",
]

BLOCKING_STATUS_CODES = (403, 429)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


class ScrapeError(Exception):
    """Base class for failures of a single crawl task."""


class PageStructureError(ScrapeError):
    """Raised when a page lacks the container the handler expects."""


class BlockedError(ScrapeError):
    """Raised when the target site refuses to serve the page."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class CaptchaDetectedError(BlockedError):
    """Raised when a CAPTCHA challenge is detected on the page."""

    def __init__(self, url: str):
        super().__init__(f"CAPTCHA detected at {url}")
        self.url = url


def is_session_blocking(error: BaseException) -> bool:
    """
    Decide whether a task failure should rotate the browser session.

    Args:
        error: Exception raised while handling a task

    Returns:
        True if the current session must be retired before retrying
    """
    if isinstance(error, (BlockedError, PlaywrightTimeoutError)):
        return True

    status = getattr(error, "status", None)
    if status in BLOCKING_STATUS_CODES:
        return True

    message = str(error)
    if any(signature in message for signature in SESSION_BLOCKING_SIGNATURES):
        return True

    return any(f"status {code}" in message for code in BLOCKING_STATUS_CODES)

"""
Maps Listing Scraper - Scroll Until Stable

Bounded polling loop shared by feed scrolling (SEARCH) and review scrolling
(DETAIL). Each iteration performs one scroll step and returns a progress
signal; the loop stops when the signal stops changing, when a caller target
is met, when the container disappears, or when the iteration cap is hit.
Reaching the cap is a normal outcome, never an error.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

from runner.logging_setup import get_logger


logger = get_logger("maps_scroll")


STOP_STABLE = "stable"
STOP_LIMIT = "limit"
STOP_TARGET = "target"
STOP_MISSING = "missing"


# Scrolls the container to its bottom and returns its scrollHeight, or -1 if absent.
SCROLL_CONTAINER_JS = """
(selector) => {
    const element = document.querySelector(selector);
    if (!element) return -1;
    element.scrollBy(0, element.scrollHeight);
    return element.scrollHeight;
}
"""

# Scrolls the container to its bottom and returns the number of matching child nodes.
SCROLL_AND_COUNT_JS = """
([containerSelector, nodeSelector]) => {
    const element = document.querySelector(containerSelector);
    if (!element) return -1;
    element.scrollBy(0, element.scrollHeight);
    return element.querySelectorAll(nodeSelector).length;
}
"""


@dataclass
class ScrollOutcome:
    """Result of a scroll_until_stable run."""

    iterations: int
    last_value: Optional[int]
    reason: str


async def scroll_until_stable(
    step: Callable[[], Awaitable[Optional[int]]],
    max_iterations: int,
    wait: Optional[Callable[[], float]] = None,
    target: Optional[int] = None,
) -> ScrollOutcome:
    """
    Scroll repeatedly until the progress signal stops changing.

    Args:
        step: Coroutine performing one scroll and returning the progress
            signal (height or node count); -1 or None means the container
            is gone
        max_iterations: Hard cap on the number of steps
        wait: Returns the seconds to sleep between steps
        target: Stop as soon as the signal reaches this value

    Returns:
        ScrollOutcome with the number of steps performed and why it stopped
    """
    iterations = 0
    last_value = None

    while iterations < max_iterations:
        value = await step()
        iterations += 1

        if value is None or value == -1:
            return ScrollOutcome(iterations, last_value, STOP_MISSING)

        if value == last_value:
            return ScrollOutcome(iterations, value, STOP_STABLE)

        last_value = value

        if target is not None and value >= target:
            return ScrollOutcome(iterations, value, STOP_TARGET)

        if iterations < max_iterations and wait is not None:
            delay = wait()
            if delay > 0:
                await asyncio.sleep(delay)

    return ScrollOutcome(iterations, last_value, STOP_LIMIT)


async def scroll_feed(page: Page, selector: str, max_scrolls: int, wait=None) -> ScrollOutcome:
    """
    Scroll a results feed until its scrollHeight stops growing.

    Args:
        page: Playwright page
        selector: CSS selector of the scrollable container
        max_scrolls: Iteration cap
        wait: Delay callable between scrolls

    Returns:
        ScrollOutcome
    """
    async def step():
        return await page.evaluate(SCROLL_CONTAINER_JS, selector)

    outcome = await scroll_until_stable(step, max_scrolls, wait=wait)
    if outcome.reason == STOP_MISSING:
        logger.warning(f"Scroll element {selector} not found")
    else:
        logger.info(
            f"Finished scrolling {selector} after {outcome.iterations} steps "
            f"({outcome.reason}, last height {outcome.last_value})"
        )
    return outcome


async def scroll_node_count(
    page: Page,
    container_selector: str,
    node_selector: str,
    max_scrolls: int,
    target: Optional[int] = None,
    wait=None,
) -> ScrollOutcome:
    """
    Scroll a container until the count of matching nodes stops growing.

    Args:
        page: Playwright page
        container_selector: CSS selector of the scrollable container
        node_selector: CSS selector of counted nodes, relative to the container
        max_scrolls: Iteration cap
        target: Stop once this many nodes are visible
        wait: Delay callable between scrolls

    Returns:
        ScrollOutcome
    """
    async def step():
        return await page.evaluate(SCROLL_AND_COUNT_JS, [container_selector, node_selector])

    outcome = await scroll_until_stable(step, max_scrolls, wait=wait, target=target)
    logger.debug(f"Review scroll stopped: {outcome.reason} after {outcome.iterations} steps")
    return outcome

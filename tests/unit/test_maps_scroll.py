"""
Unit tests for the scroll-until-stable loop.

Tests:
- Stops when the progress signal repeats
- Stops at the iteration cap without error
- Stops when a target count is met or the container disappears
"""

import pytest

from scrape_maps.maps_scroll import (
    STOP_LIMIT,
    STOP_MISSING,
    STOP_STABLE,
    STOP_TARGET,
    scroll_feed,
    scroll_node_count,
    scroll_until_stable,
)


def scripted(values):
    """Step coroutine returning the given values in order."""
    values = list(values)
    calls = []

    async def step():
        calls.append(len(calls))
        return values[min(len(calls) - 1, len(values) - 1)]

    return step, calls


@pytest.mark.asyncio
async def test_stops_when_height_stops_growing():
    step, calls = scripted([100, 200, 300, 300, 400])
    outcome = await scroll_until_stable(step, max_iterations=25)

    assert outcome.reason == STOP_STABLE
    assert outcome.iterations == 4
    assert outcome.last_value == 300
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_iteration_cap_is_a_normal_outcome():
    step, calls = scripted(range(1, 100))
    outcome = await scroll_until_stable(step, max_iterations=5)

    assert outcome.reason == STOP_LIMIT
    assert outcome.iterations == 5
    assert len(calls) == 5


@pytest.mark.asyncio
async def test_target_stops_early():
    step, _ = scripted([3, 6, 9, 12])
    outcome = await scroll_until_stable(step, max_iterations=10, target=8)

    assert outcome.reason == STOP_TARGET
    assert outcome.last_value == 9


@pytest.mark.asyncio
async def test_missing_container():
    step, _ = scripted([-1])
    outcome = await scroll_until_stable(step, max_iterations=10)

    assert outcome.reason == STOP_MISSING
    assert outcome.iterations == 1
    assert outcome.last_value is None


@pytest.mark.asyncio
async def test_wait_called_only_between_steps():
    waits = []
    step, _ = scripted([1, 2, 3])

    def wait():
        waits.append(1)
        return 0

    await scroll_until_stable(step, max_iterations=3, wait=wait)
    assert len(waits) == 2


@pytest.mark.asyncio
async def test_scroll_feed_on_static_page_is_stable(fake_page, search_page_html):
    page = fake_page(search_page_html(["https://www.google.com/maps/place/A"]))
    outcome = await scroll_feed(page, 'div[role="feed"]', max_scrolls=25)

    assert outcome.reason == STOP_STABLE
    assert outcome.iterations == 2


@pytest.mark.asyncio
async def test_scroll_feed_missing_container(fake_page):
    page = fake_page("<html><body><p>nothing</p></body></html>")
    outcome = await scroll_feed(page, 'div[role="feed"]', max_scrolls=25)
    assert outcome.reason == STOP_MISSING


@pytest.mark.asyncio
async def test_scroll_node_count_reaches_target(fake_page, place_page_html):
    reviews = [("Ann", 5, "Great"), ("Bob", 4, "Good"), ("Cy", 3, "Fine")]
    page = fake_page(place_page_html(reviews=reviews))

    outcome = await scroll_node_count(
        page,
        'div[role="feed"][aria-label*="Reviews"]',
        'div[jsaction*="mouseover:pane.review.in"]',
        max_scrolls=5,
        target=2,
    )

    assert outcome.reason == STOP_TARGET
    assert outcome.last_value == 3

"""
Maps Listing Scraper - Crawl Orchestration

Drives a run: seeds the request queue from the input, then processes one
task at a time in a browser page:

    dequeue -> navigate -> anti-bot pre-check -> dispatch by label
        SEARCH             scroll the results feed, enqueue DETAIL tasks
        DETAIL             extract the listing, mine its website, emit
        EXTRACT_AND_SEARCH derive coordinates, enqueue anchored SEARCH tasks

Failures are retried up to ScrapingConfig.max_retries. Blocking signals
(CAPTCHA, 403/429, navigation timeouts, network errors) also retire the
browser session first. A task that exhausts its retries is logged and the
run continues. Progress (RunState) is checkpointed to the key-value store.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from playwright.async_api import Error as PlaywrightError, Page, Response
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from scrape_maps.browser_pool import BrowserPool, BrowserSession
from scrape_maps.cost_estimator import CostEstimator
from scrape_maps.maps_config import MapsConfig, RunInput
from scrape_maps.maps_errors import (
    BLOCKING_STATUS_CODES,
    BlockedError,
    CaptchaDetectedError,
    ConfigurationError,
    PageStructureError,
    is_session_blocking,
)
from scrape_maps.maps_logger import MapsScraperLogger
from scrape_maps.maps_parse import (
    CoreFields,
    PlaceStatus,
    coordinates_from_html,
    extract_core_fields,
    extract_images,
    extract_opening_hours,
    extract_reviews,
    extract_social_profiles,
    parse_listing_links,
    parse_place_id,
)
from scrape_maps.maps_scroll import scroll_feed
from scrape_maps.maps_stealth import detect_captcha, dismiss_consent
from scrape_maps.maps_tasks import (
    AnchorPayload,
    DetailPayload,
    Label,
    SearchPayload,
    Task,
    anchored_search_task,
    place_name_from_url,
    seed_tasks,
    with_language,
)
from scrape_maps.request_queue import RequestQueue, unique_key
from scrape_site.site_scraper import ContactOptions, extract_contact_details


FEED_SELECTOR = 'div[role="feed"]'
PLACE_LINK_SELECTOR = 'a[href*="/maps/place/"]'

NO_RESULTS_PHRASES = (
    "No results found",
    "Nu s-au găsit rezultate",
    "Google Maps can't find",
)


@dataclass
class RunState:
    """Counters persisted across resumptions of a run."""

    scraped_items_count: int = 0
    cost_counters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunState":
        data = data or {}
        return cls(
            scraped_items_count=int(data.get("scrapedItemsCount", 0)),
            cost_counters=dict(data.get("costCounters") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scrapedItemsCount": self.scraped_items_count,
            "costCounters": self.cost_counters,
        }


@dataclass
class RunSummary:
    """Outcome of MapsCrawler.run()."""

    scraped_items_count: int
    emitted_this_run: int
    failed_tasks: int
    handled_tasks: int
    duration_seconds: float
    cost_summary: Dict[str, Any]


@dataclass
class TaskContext:
    """Everything a label handler needs for one task."""

    task: Task
    page: Page
    session: BrowserSession
    response: Optional[Response] = None


class MapsCrawler:
    """
    Orchestrates a Maps listing crawl.

    Collaborators are injected so the crawl loop can run against any
    browser pool, queue and storage with the same interfaces.
    """

    def __init__(
        self,
        run_input: RunInput,
        browser: BrowserPool,
        dataset,
        kv_store,
        config: MapsConfig = None,
        logger: MapsScraperLogger = None,
        queue: RequestQueue = None,
        failed_dataset=None,
        cost_estimator: CostEstimator = None,
        contact_miner: Callable = extract_contact_details,
    ):
        """
        Initialize the crawler.

        Args:
            run_input: Validated run input
            browser: Session pool providing pages
            dataset: Sink with push(record) for listings
            kv_store: Store with get(key, default) / set(key, value)
            config: MapsConfig instance
            logger: MapsScraperLogger instance
            queue: RequestQueue (a fresh one by default)
            failed_dataset: Sink for terminally failed tasks
            cost_estimator: CostEstimator (built from maxCostPerRun by default)
            contact_miner: Coroutine function mining a website for contacts
        """
        self.run_input = run_input
        self.browser = browser
        self.dataset = dataset
        self.kv_store = kv_store
        self.config = config or MapsConfig.from_env()
        self.logger = logger or MapsScraperLogger(log_dir=self.config.log_dir)
        self.queue = queue or RequestQueue()
        self.failed_dataset = failed_dataset
        self.cost = cost_estimator or CostEstimator(run_input.max_cost_per_run)
        self.contact_miner = contact_miner

        self.state = RunState()

        # DETAIL tasks enqueued by searches and not yet resolved
        self._reserved_details: Set[str] = set()

        self.stats = {
            "searches_processed": 0,
            "details_enqueued": 0,
            "listings_emitted": 0,
            "listings_skipped": 0,
            "retries": 0,
            "failed": 0,
            "sessions_retired": 0,
        }

    # Run loop

    async def run(self) -> RunSummary:
        """
        Execute the crawl until the queue is empty.

        Returns:
            RunSummary

        Raises:
            ConfigurationError: On invalid input or when nothing can be seeded
        """
        self.run_input.validate()
        start_time = time.time()
        self.logger.run_started(self.run_input.summary())

        self._load_state()

        seeded = sum(1 for task in seed_tasks(self.run_input) if self.queue.add_task(task))
        if seeded == 0:
            raise ConfigurationError("No valid start URLs or search parameters provided.")
        self.logger.info(f"Request queue initialized with {seeded} request(s)")

        while True:
            task = self.queue.fetch_next()
            if task is None:
                break
            await self._process(task)

        cost_summary = self.cost.log_report(
            self.kv_store, self.logger, key=self.config.scraping.cost_summary_key
        )
        self._save_state()

        duration = time.time() - start_time
        self.logger.run_summary(
            scraped=self.state.scraped_items_count,
            failed=self.stats["failed"],
            duration_seconds=duration,
            current_cost=self.cost.current_cost,
        )
        self.logger.info(
            f"Run finished. Total items scraped: {self.state.scraped_items_count}. "
            f"Estimated cost: ${self.cost.current_cost:.3f}"
        )

        return RunSummary(
            scraped_items_count=self.state.scraped_items_count,
            emitted_this_run=self.stats["listings_emitted"],
            failed_tasks=self.stats["failed"],
            handled_tasks=self.queue.handled_count,
            duration_seconds=duration,
            cost_summary=cost_summary,
        )

    async def _process(self, task: Task):
        """Run one task through navigation, pre-check and its label handler."""
        self.logger.set_context(url=task.url, label=task.label.value)
        self.logger.task_started(task.url, task.label.value, task.retry_count)

        if task.label == Label.DETAIL and not self._detail_allowed(task):
            self._resolve(task)
            self.logger.clear_context()
            return

        session = None
        page = None
        try:
            session = await self.browser.acquire_session()
            page = await self.browser.new_page(session)
            context = TaskContext(task=task, page=page, session=session)
            await asyncio.wait_for(self._handle(context), timeout=self.run_input.handler_timeout_secs)
        except Exception as e:
            await self._handle_failure(task, session, e)
        else:
            self._resolve(task)
        finally:
            if page is not None:
                await self._close_page(page)
            self.logger.clear_context()

    async def _handle(self, ctx: TaskContext):
        started = time.monotonic()
        ctx.response = await ctx.page.goto(
            ctx.task.url,
            timeout=self.run_input.navigation_timeout_ms,
            wait_until=self.config.playwright.wait_until,
        )
        status = ctx.response.status if ctx.response is not None else None
        self.logger.page_loaded(ctx.task.url, int((time.monotonic() - started) * 1000), status)

        if status in BLOCKING_STATUS_CODES:
            raise BlockedError(f"Request blocked with status {status}", status=status)

        await self._anti_bot_check(ctx)

        if ctx.task.label == Label.SEARCH:
            await self._handle_search(ctx)
        elif ctx.task.label == Label.DETAIL:
            await self._handle_detail(ctx)
        else:
            await self._handle_anchor(ctx)

    async def _anti_bot_check(self, ctx: TaskContext):
        """
        Dismiss a consent wall, then fail the task if a CAPTCHA is shown.

        Raises:
            CaptchaDetectedError: After retiring the task's session
        """
        try:
            await dismiss_consent(ctx.page, wait=self.config.rate_limit.get_consent_delay)
        except PlaywrightError as e:
            self.logger.warning(f"Error during consent handling: {e}")

        if await detect_captcha(ctx.page):
            self.logger.captcha_detected(ctx.task.url)
            await self._retire(ctx.session, "CAPTCHA detected")
            raise CaptchaDetectedError(ctx.task.url)

    # Failure handling

    async def _retire(self, session: Optional[BrowserSession], reason: str):
        if session is None or session.retired:
            return
        try:
            await self.browser.retire_session(session)
        except PlaywrightError as e:
            self.logger.warning(f"Error closing retired session {session.id}: {e}")
        self.stats["sessions_retired"] += 1
        self.logger.session_retired(session.id, reason)

    async def _handle_failure(self, task: Task, session: Optional[BrowserSession], error: Exception):
        """Rotate the session on blocking errors, then retry or terminally fail the task."""
        if is_session_blocking(error):
            await self._retire(session, str(error))

        if task.retry_count < self.config.scraping.max_retries:
            self.stats["retries"] += 1
            self.logger.task_retry(task.url, task.label.value, task.retry_count, error)
            self.queue.reclaim(task)
            return

        self.stats["failed"] += 1
        self.logger.request_failed(task.url, task.label.value, task.retry_count, error)
        if self.run_input.save_failed_requests and self.failed_dataset is not None:
            self.failed_dataset.push({
                "url": task.url,
                "label": task.label.value,
                "retryCount": task.retry_count,
                "error": f"{type(error).__name__}: {error}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
        self._resolve(task)

    def _resolve(self, task: Task):
        self.queue.mark_handled(task)
        self._reserved_details.discard(unique_key(task.url))

    async def _close_page(self, page: Page):
        try:
            await page.close()
        except PlaywrightError as e:
            self.logger.debug(f"Page close failed: {e}")

    # Limits

    def _total_cap_reached(self) -> bool:
        cap = self.run_input.max_crawled_places
        if cap <= 0:
            return False
        return self.state.scraped_items_count + len(self._reserved_details) >= cap

    def _detail_allowed(self, task: Task) -> bool:
        """Budget and total-cap gate run before a DETAIL page is opened."""
        cap = self.run_input.max_crawled_places
        if cap > 0 and self.state.scraped_items_count >= cap:
            self.stats["listings_skipped"] += 1
            self.logger.listing_skipped(task.url, "total place limit reached")
            return False

        if not self.cost.add_place():
            self.stats["listings_skipped"] += 1
            self.logger.budget_exhausted("detail page", self.cost.current_cost)
            self.logger.listing_skipped(task.url, "budget exhausted")
            return False

        return True

    # SEARCH

    async def _handle_search(self, ctx: TaskContext):
        """Scroll the results feed and enqueue a DETAIL task per listing."""
        payload: SearchPayload = ctx.task.payload
        page = ctx.page
        self.cost.add_search()
        self.stats["searches_processed"] += 1
        self.logger.info(f'Processing search results for: "{payload.search_term}"')

        feed_found = True
        try:
            await page.wait_for_selector(FEED_SELECTOR, timeout=self.config.playwright.feed_timeout)
        except PlaywrightTimeoutError:
            feed_found = False
            if await page.query_selector(PLACE_LINK_SELECTOR):
                self.logger.warning(
                    f"Results feed '{FEED_SELECTOR}' not found, but place links exist. Proceeding."
                )
            else:
                html = await page.content()
                if any(phrase in html for phrase in NO_RESULTS_PHRASES):
                    self.logger.info(f'No results found for search: "{payload.search_term}"')
                    return
                snapshot_key = f"ERROR_SEARCH_PAGE_{int(time.time() * 1000)}"
                self.kv_store.set(snapshot_key, html)
                self.logger.error(
                    "Search results container missing",
                    context={"url": ctx.task.url, "snapshot_key": snapshot_key},
                )
                raise PageStructureError(
                    f"Could not find search results container ('{FEED_SELECTOR}') or fallback links. "
                    f"Page saved as {snapshot_key}"
                )

        if feed_found:
            await scroll_feed(
                page,
                FEED_SELECTOR,
                self.run_input.feed_scroll_limit,
                wait=self.config.rate_limit.get_scroll_delay,
            )

        links = parse_listing_links(await page.content(), FEED_SELECTOR, page.url or ctx.task.url)
        self.logger.info(f"Found {len(links)} unique place links")

        enqueued = self._enqueue_details(payload, links)
        self.logger.listings_discovered(payload.search_term, len(links), enqueued)

    def _enqueue_details(self, payload: SearchPayload, links) -> int:
        per_search_cap = self.run_input.max_crawled_places_per_search
        enqueued = 0

        for url in links:
            if self._total_cap_reached():
                self.logger.info(f"Total place limit ({self.run_input.max_crawled_places}) reached")
                break
            if per_search_cap > 0 and payload.places_found >= per_search_cap:
                self.logger.info(f'Limit per search ({per_search_cap}) reached for "{payload.search_term}"')
                break
            if not self.cost.check_budget():
                self.logger.budget_exhausted("search enqueue", self.cost.current_cost)
                break

            detail_url = with_language(url, self.run_input.language)
            task = Task(url=detail_url, payload=DetailPayload(
                place_name=place_name_from_url(detail_url, f"Place from search: {payload.search_term}"),
                search_terms=payload.search_term,
            ))
            if not self.queue.add_task(task):
                continue

            self._reserved_details.add(unique_key(detail_url))
            self.cost.add_listings(1)
            payload.places_found += 1
            enqueued += 1
            self.stats["details_enqueued"] += 1

        return enqueued

    # EXTRACT_AND_SEARCH

    async def _handle_anchor(self, ctx: TaskContext):
        """Derive a coordinate anchor from the page and enqueue anchored searches."""
        payload: AnchorPayload = ctx.task.payload
        anchor = coordinates_from_html(await ctx.page.content(), ctx.page.url or ctx.task.url)
        if anchor is None:
            self.logger.warning(f"Could not derive coordinates from {ctx.task.url}; dropping anchor task")
            return

        added = 0
        for term in payload.search_terms:
            task = anchored_search_task(term, anchor, payload.radius_km, self.run_input.language)
            if self.queue.add_task(task):
                added += 1
        self.logger.info(
            f"Anchored {added} search(es) at {anchor.lat},{anchor.lng}",
            {"anchor": anchor.to_dict(), "search_terms": payload.search_terms},
        )

    # DETAIL

    def _new_record(self, task: Task, core: CoreFields) -> Dict[str, Any]:
        payload: DetailPayload = task.payload
        return {
            "scrapedUrl": task.url,
            "name": core.name or payload.place_name,
            "category": core.category,
            "address": core.address,
            "phone": core.phone,
            "website": core.website,
            "googleUrl": task.url,
            "placeId": core.place_id or parse_place_id(task.url),
            "coordinates": core.coordinates.to_dict() if core.coordinates else None,
            "openingHoursStatus": core.opening_hours_status,
            "openingHours": None,
            "plusCode": core.plus_code,
            "status": core.status.value,
            "imageUrls": [],
            "reviews": [],
            "email": None,
            "socialProfiles": {},
            "contactPersons": [],
            "searchTerms": payload.search_terms,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "_error": None,
        }

    def _soft_fail(self, record: Dict[str, Any], note: str, error: Exception):
        self.logger.soft_failure(note, error)
        message = f"{note}: {error}"
        record["_error"] = f"{record['_error']}; {message}" if record["_error"] else message

    async def _handle_detail(self, ctx: TaskContext):
        """Extract one listing, enrich it and emit the record."""
        task, page = ctx.task, ctx.page
        run_input = self.run_input

        await asyncio.sleep(self.config.rate_limit.get_detail_delay())

        html = await page.content()
        core = extract_core_fields(html, page.url or task.url)
        record = self._new_record(task, core)

        if run_input.skip_closed_places and core.status == PlaceStatus.PERMANENTLY_CLOSED:
            self.stats["listings_skipped"] += 1
            self.logger.listing_skipped(task.url, "permanently closed")
            return

        record["socialProfiles"] = extract_social_profiles(html)

        if run_input.scrape_place_detail_page:
            if self.cost.check_budget():
                try:
                    record["openingHours"] = extract_opening_hours(html)
                except Exception as e:
                    self._soft_fail(record, "Opening hours extraction failed", e)
            else:
                self.logger.budget_exhausted("opening hours", self.cost.current_cost)

        if run_input.scrape_place_detail_page and run_input.effective_max_images > 0:
            if not self.cost.add_details():
                self.logger.budget_exhausted("images", self.cost.current_cost)
            else:
                try:
                    record["imageUrls"] = await extract_images(page, run_input.effective_max_images)
                except Exception as e:
                    self._soft_fail(record, "Image extraction failed", e)

        if run_input.scrape_place_detail_page and run_input.effective_max_reviews > 0:
            if not self.cost.add_details():
                self.logger.budget_exhausted("reviews", self.cost.current_cost)
            else:
                try:
                    reviews = await extract_reviews(
                        page,
                        run_input.effective_max_reviews,
                        sort=run_input.reviews_sort,
                        scroll_limit=run_input.review_scroll_limit,
                        wait=self.config.rate_limit.get_review_delay,
                    )
                    record["reviews"] = [review.to_dict() for review in reviews]
                except Exception as e:
                    self._soft_fail(record, "Review extraction failed", e)

        if run_input.effective_scrape_contacts and record["website"]:
            if not self.cost.add_contact():
                self.logger.budget_exhausted("contacts", self.cost.current_cost)
            else:
                await self._add_contacts(ctx, record)

        self._emit(record)

    async def _add_contacts(self, ctx: TaskContext, record: Dict[str, Any]):
        options = ContactOptions(
            timeout_ms=self.run_input.contact_timeout_ms,
            max_depth=self.config.scraping.contact_max_depth,
            blocked_resource_types=self.run_input.contact_blocked_resources,
        )
        try:
            contact = await self.contact_miner(
                record["website"],
                lambda: self.browser.new_page(ctx.session),
                options,
            )
        except Exception as e:
            self._soft_fail(record, "Contact extraction failed", e)
            return

        record["email"] = contact.email
        record["contactPersons"] = contact.contact_persons
        # Profiles found on the Maps page win over ones found on the website
        record["socialProfiles"] = {**contact.social_profiles, **record["socialProfiles"]}
        if not record["phone"] and contact.phone:
            record["phone"] = contact.phone
        if contact.error:
            note = f"Contact extraction note: {contact.error}"
            record["_error"] = f"{record['_error']}; {note}" if record["_error"] else note

    # Output and state

    def _emit(self, record: Dict[str, Any]):
        self.dataset.push(record)
        self.state.scraped_items_count += 1
        self.stats["listings_emitted"] += 1
        self.logger.listing_emitted(record["name"], record["placeId"], self.state.scraped_items_count)

        if self.state.scraped_items_count % self.config.scraping.checkpoint_every == 0:
            self._save_state()

    def _load_state(self):
        data = self.kv_store.get(self.config.scraping.state_key)
        self.state = RunState.from_dict(data)
        self.cost.restore(self.state.cost_counters)
        if self.state.scraped_items_count:
            self.logger.info(f"Resuming with {self.state.scraped_items_count} items already scraped")

    def _save_state(self):
        self.state.cost_counters = self.cost.snapshot()
        self.kv_store.set(self.config.scraping.state_key, self.state.to_dict())
        self.logger.state_checkpoint(self.state.scraped_items_count)

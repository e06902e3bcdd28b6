"""
Crawl Orchestrator
==================
Politeness-aware scheduling loop over the URL frontier.

Architecture:
- One orchestrator per crawl session; it owns the frontier, the robots
  gate and the rate limiter (or receives them injected)
- A dispatcher coroutine pulls URLs from the frontier (FIFO) and routes
  each one to its domain's lane
- One lane (asyncio.Queue + task) per domain: requests to a domain are
  strictly sequential
- asyncio.Semaphore bounds how many lanes process a page at once
- Results stream out through an async iterator as they are produced

Per URL::

    robots gate -> extractor lookup -> link pause -> rate limiter
        -> fetch (hard timeout) -> extract | discover links
        -> mark completed / failed -> emit one output item

Category pages are expanded into product-page URLs; the discovered link
list is truncated to ``max_products_per_category`` before anything is
enqueued.  There is no automatic retry: a failure is terminal for that URL
and never stops the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from numbers import Number
from typing import (
    AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple, Union,
)

from .errors import (
    CrawlCancelled,
    CrawlError,
    ExtractionError,
    NavigationError,
    PolicyViolation,
    UnsupportedRetailer,
)
from .extractors.base import ProductExtractor
from .extractors.registry import ExtractorRegistry
from .fetcher import FetchedPage, FetchOptions, PageFetcher
from .frontier import URLFrontier
from .models import (
    CategoryPage,
    CrawlFailure,
    FrontierEntry,
    FrontierStats,
    PageKind,
    Product,
    UrlState,
)
from .rate_limiter import DEFAULT_REQUESTS_PER_MINUTE, RateLimiter, sleep_or_stop
from .robots import DEFAULT_AGENT_NAMES, DEFAULT_USER_AGENT, RobotsGate

logger = logging.getLogger(__name__)

CrawlItem = Union[Product, CrawlFailure, CategoryPage]

# Extra seconds on top of the fetcher's own timeout before we give up on it
_FETCH_TIMEOUT_GRACE = 5.0

_DONE = object()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class CrawlOptions:
    """Session options."""
    # Category expansion
    max_products_per_category: int = 20
    link_delay: float = 2.0               # pause before each discovered product page

    # Rate limiting: one number for every domain, or {domain: rpm}
    requests_per_minute_per_domain: Optional[Union[float, Mapping[str, float]]] = None
    default_requests_per_minute: float = DEFAULT_REQUESTS_PER_MINUTE

    # Concurrency (domains crawled in parallel)
    max_workers: int = 4

    # Fetching
    fetch_timeout: float = 30.0           # seconds
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Tuple[int, int] = (1280, 800)

    # Robots
    respect_robots: bool = True
    robots_agent_names: Tuple[str, ...] = DEFAULT_AGENT_NAMES
    robots_timeout: float = 10.0

    def __post_init__(self):
        if self.max_products_per_category < 0:
            raise ValueError(
                f"max_products_per_category must be >= 0, got {self.max_products_per_category}"
            )
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.link_delay < 0:
            raise ValueError(f"link_delay must be >= 0, got {self.link_delay}")
        if self.fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be positive, got {self.fetch_timeout}")
        rpm = self.requests_per_minute_per_domain
        if isinstance(rpm, Number) and rpm <= 0:
            raise ValueError(f"requests_per_minute_per_domain must be positive, got {rpm}")


@dataclass
class CrawlReport:
    """Everything one session produced, collected in memory."""
    products: List[Product] = field(default_factory=list)
    failures: List[CrawlFailure] = field(default_factory=list)
    categories: List[CategoryPage] = field(default_factory=list)
    stats: FrontierStats = field(default_factory=FrontierStats)
    elapsed_sec: float = 0.0

    def failures_by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for failure in self.failures:
            counts[failure.kind] = counts.get(failure.kind, 0) + 1
        return counts


@dataclass
class _DomainLane:
    domain: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class CrawlOrchestrator:
    """
    Drives one crawl session.

    Usage::

        orchestrator = CrawlOrchestrator(ExtractorRegistry.default(), fetcher,
                                         CrawlOptions(max_products_per_category=5))
        async for item in orchestrator.crawl(seed_urls):
            if isinstance(item, Product):
                ...
        print(orchestrator.get_stats())
    """

    def __init__(
        self,
        extractors: Union[ExtractorRegistry, Mapping[str, ProductExtractor]],
        fetcher: PageFetcher,
        options: CrawlOptions = None,
        *,
        robots: RobotsGate = None,
        rate_limiter: RateLimiter = None,
        frontier: URLFrontier = None,
    ):
        self.options = options or CrawlOptions()
        if isinstance(extractors, ExtractorRegistry):
            self.registry = extractors
        else:
            self.registry = ExtractorRegistry.from_mapping(extractors)
        self.fetcher = fetcher

        self.frontier = frontier or URLFrontier()
        self.robots = robots or RobotsGate(
            user_agent=self.options.user_agent,
            agent_names=self.options.robots_agent_names,
            timeout=self.options.robots_timeout,
            respect_robots=self.options.respect_robots,
        )
        self.rate_limiter = rate_limiter or RateLimiter(self._default_rpm())
        self._apply_rate_limits()

        # Session primitives
        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max(1, self.options.max_workers))
        self._lanes: Dict[str, _DomainLane] = {}
        self._outcomes: Optional[asyncio.Queue] = None
        self._started = False
        self._start_time = 0.0

    def _default_rpm(self) -> float:
        rpm = self.options.requests_per_minute_per_domain
        if isinstance(rpm, Number):
            return float(rpm)
        return self.options.default_requests_per_minute

    def _apply_rate_limits(self) -> None:
        rpm = self.options.requests_per_minute_per_domain
        if isinstance(rpm, Mapping):
            for domain, limit in rpm.items():
                self.rate_limiter.set_limit(domain, limit)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_stats(self) -> FrontierStats:
        """Frontier counts for progress reporting."""
        return self.frontier.stats()

    def stop(self) -> None:
        """Request graceful stop: no new fetches start, in-flight work drains."""
        if not self._stop_event.is_set():
            self._stop_event.set()
            logger.info("[CRAWL] Stop requested")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def crawl(self, seed_urls: Iterable[str]) -> AsyncIterator[CrawlItem]:
        """
        Run the session, yielding one item per finished URL.

        Yields ``Product`` for extracted product pages, ``CategoryPage`` for
        expanded category pages and ``CrawlFailure`` for failed URLs.  The
        iterator ends when the frontier is drained or the session is stopped.
        """
        if self._started:
            raise RuntimeError("A CrawlOrchestrator runs exactly one session")
        self._started = True
        self._start_time = time.monotonic()
        self._outcomes = asyncio.Queue()

        seeds = self.frontier.enqueue(seed_urls)
        self._log_banner(seeds)

        runner = asyncio.create_task(self._run())
        try:
            while True:
                item = await self._outcomes.get()
                if item is _DONE:
                    break
                yield item
            await runner
        finally:
            if not runner.done():
                self.stop()
                runner.cancel()
                await asyncio.gather(runner, return_exceptions=True)
            self._log_summary()

    async def collect(self, seed_urls: Iterable[str]) -> CrawlReport:
        """Run the session and gather every item into a ``CrawlReport``."""
        report = CrawlReport()
        async for item in self.crawl(seed_urls):
            if isinstance(item, Product):
                report.products.append(item)
            elif isinstance(item, CrawlFailure):
                report.failures.append(item)
            else:
                report.categories.append(item)
        report.stats = self.get_stats()
        report.elapsed_sec = round(time.monotonic() - self._start_time, 2)
        return report

    def run(self, seed_urls: Iterable[str]) -> CrawlReport:
        """Sync wrapper: manage the fetcher and run the whole session."""
        async def _main() -> CrawlReport:
            async with self.fetcher:
                return await self.collect(seed_urls)
        return asyncio.run(_main())

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._dispatch()
            await self._close_lanes()
        except asyncio.CancelledError:
            tasks = [lane.task for lane in self._lanes.values() if lane.task]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            self._outcomes.put_nowait(_DONE)

    async def _dispatch(self) -> None:
        """Route queued URLs to domain lanes until drained or stopped."""
        while not self._stop_event.is_set():
            self._wakeup.clear()
            url = self.frontier.dequeue()
            if url is not None:
                self._route(url)
                continue
            if self.frontier.stats().in_flight == 0:
                logger.info("[CRAWL] Frontier drained")
                return
            await self._wait_for_progress()

    async def _wait_for_progress(self) -> None:
        waiters = [
            asyncio.ensure_future(self._wakeup.wait()),
            asyncio.ensure_future(self._stop_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _route(self, url: str) -> None:
        entry = self.frontier.get(url)
        lane = self._lanes.get(entry.domain)
        if lane is None:
            lane = _DomainLane(domain=entry.domain)
            lane.task = asyncio.create_task(self._lane_worker(lane))
            self._lanes[entry.domain] = lane
            logger.debug(f"[CRAWL] Opened lane for {entry.domain}")
        lane.queue.put_nowait(url)

    async def _close_lanes(self) -> None:
        for lane in self._lanes.values():
            lane.queue.put_nowait(None)
        await asyncio.gather(*(lane.task for lane in self._lanes.values()))

    async def _lane_worker(self, lane: _DomainLane) -> None:
        """Process one domain's URLs strictly in order."""
        while True:
            url = await lane.queue.get()
            if url is None:
                return
            entry = self.frontier.get(url)
            async with self._semaphore:
                if self._stop_event.is_set():
                    self._record_failure(
                        entry, CrawlCancelled("Crawl stopped before page was fetched", url)
                    )
                    continue
                try:
                    await self._process(entry)
                except Exception as e:
                    self._record_unexpected(entry, e)

    # ------------------------------------------------------------------
    # Per-URL processing
    # ------------------------------------------------------------------

    async def _process(self, entry: FrontierEntry) -> None:
        url = entry.url
        try:
            extractor = await self._admit(entry)
            is_category = self._is_category(entry, extractor)
            await self._wait_politeness(entry)
            document = await self._fetch(url, self._fetch_options(extractor, is_category))
            final_url = document.url or url
            try:
                if is_category:
                    links = await self._run_extractor(extractor.discover_links, document, url)
                else:
                    product = await self._run_extractor(extractor.extract, document, url)
            finally:
                await document.close()
        except CrawlError as e:
            self._record_failure(entry, e)
            return

        # No awaits from here on: enqueue, completion and emit are atomic.
        # Anything raised before mark_completed leaves the entry IN_FLIGHT
        # for the lane to record as a failure.
        if is_category:
            links = list(links or [])
            capped = links[: self.options.max_products_per_category]
            added = self.frontier.enqueue(
                capped, base_url=final_url, kind=PageKind.PRODUCT, parent_url=url
            )
            self.frontier.mark_completed(url)
            logger.info(
                f"[CRAWL] Category {url}: {len(links)} links found, "
                f"{len(capped)} kept, {len(added)} new"
            )
            self._emit(CategoryPage(url=url, discovered=len(links), enqueued=tuple(added)))
        else:
            if product.source_url != url:
                # Keyed by the frontier URL, not wherever the page redirected
                product = replace(product, source_url=url)
            self.frontier.mark_completed(url)
            logger.info(f"[CRAWL] Product: {product.title} ({url})")
            self._emit(product)

    async def _admit(self, entry: FrontierEntry) -> ProductExtractor:
        if not await self.robots.is_allowed(entry.url):
            raise PolicyViolation("Disallowed by robots.txt", entry.url)
        extractor = self.registry.for_url(entry.url)
        if extractor is None:
            raise UnsupportedRetailer(f"No extractor registered for {entry.domain}", entry.url)
        return extractor

    @staticmethod
    def _is_category(entry: FrontierEntry, extractor: ProductExtractor) -> bool:
        if entry.kind is not None:
            return entry.kind is PageKind.CATEGORY
        return extractor.is_category_url(entry.url)

    async def _wait_politeness(self, entry: FrontierEntry) -> None:
        """Inter-link pause, then the stricter of rate limit and crawl delay."""
        if entry.parent_url is not None and self.options.link_delay > 0:
            if await sleep_or_stop(self.options.link_delay, self._stop_event):
                raise CrawlCancelled("Crawl stopped during inter-link pause", entry.url)
        crawl_delay = await self.robots.crawl_delay_for(entry.domain)
        await self.rate_limiter.await_turn(
            entry.url, min_interval=crawl_delay, stop_event=self._stop_event
        )

    def _fetch_options(self, extractor: ProductExtractor, is_category: bool) -> FetchOptions:
        return FetchOptions(
            timeout=self.options.fetch_timeout,
            user_agent=self.options.user_agent,
            viewport=self.options.viewport,
            wait_for_selector=None if is_category else extractor.ready_selector,
            scroll_passes=extractor.category_scroll_passes if is_category else 0,
        )

    async def _fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        limit = self.options.fetch_timeout + _FETCH_TIMEOUT_GRACE
        try:
            return await asyncio.wait_for(self.fetcher.fetch(url, options), timeout=limit)
        except asyncio.TimeoutError as e:
            raise NavigationError(f"Fetch timed out after {limit:.0f}s", url) from e
        except CrawlError:
            raise
        except Exception as e:
            logger.error(f"[FETCH] Unexpected error for {url}: {e}", exc_info=True)
            raise NavigationError(f"Fetch failed: {e}", url) from e

    @staticmethod
    async def _run_extractor(method, document: FetchedPage, url: str):
        try:
            return await method(document)
        except CrawlError:
            raise
        except Exception as e:
            logger.error(f"[EXTRACT] Unexpected error for {url}: {e}", exc_info=True)
            raise ExtractionError(f"Extraction failed: {e}", url) from e

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _record_failure(self, entry: FrontierEntry, error: CrawlError) -> None:
        if error.url is None:
            error.url = entry.url
        self.frontier.mark_failed(entry.url, error)
        logger.warning(f"[CRAWL] Failed {entry.url}: {error.kind}: {error}")
        self._emit(CrawlFailure.from_error(entry.url, error))

    def _record_unexpected(self, entry: FrontierEntry, error: Exception) -> None:
        """A bug escaped ``_process``; keep the lane and the session alive."""
        logger.error(f"[CRAWL] Unexpected error for {entry.url}: {error}", exc_info=True)
        if self.frontier.get(entry.url).state is UrlState.IN_FLIGHT:
            self._record_failure(
                entry, ExtractionError(f"Unexpected error: {error}", entry.url)
            )
        else:
            self._wakeup.set()

    def _emit(self, item: CrawlItem) -> None:
        self._outcomes.put_nowait(item)
        self._wakeup.set()

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _log_banner(self, seeds: List[str]) -> None:
        rpm = self.options.requests_per_minute_per_domain
        logger.info("=" * 65)
        logger.info("CRAWL SESSION STARTED")
        logger.info(f"Seeds: {len(seeds)}")
        logger.info(f"Retailers: {', '.join(self.registry.retailers()) or 'none'}")
        logger.info(f"Workers: {self.options.max_workers}")
        logger.info(f"Max products/category: {self.options.max_products_per_category}")
        logger.info(f"Rate: {rpm if rpm is not None else self._default_rpm()} rpm/domain")
        logger.info(f"Timeout: {self.options.fetch_timeout}s/page")
        logger.info("=" * 65)

    def _log_summary(self) -> None:
        stats = self.frontier.stats()
        elapsed = time.monotonic() - self._start_time
        reason = "stopped" if self.stopped else "drained"
        logger.info(
            f"[CRAWL] Session {reason} after {elapsed:.1f}s — "
            f"completed={stats.completed} failed={stats.failed} "
            f"queued={stats.queued} in_flight={stats.in_flight}"
        )


def start_crawl(
    seed_urls: Iterable[str],
    extractors: Union[ExtractorRegistry, Mapping[str, ProductExtractor]],
    fetcher: PageFetcher,
    options: CrawlOptions = None,
) -> AsyncIterator[CrawlItem]:
    """
    Start a one-off session and return its output iterator.

    Build a ``CrawlOrchestrator`` directly when progress stats or ``stop()``
    are needed.
    """
    return CrawlOrchestrator(extractors, fetcher, options).crawl(seed_urls)

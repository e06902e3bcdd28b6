"""
Page Fetchers
=============
Load a URL and hand back a document the extractors can query.

Two implementations share the ``PageFetcher`` contract:

- ``PlaywrightFetcher``: headless Chromium, one fresh context per page
  (realistic user agent + viewport), ``networkidle`` navigation with an
  explicit timeout, optional ready-selector wait and scroll passes for
  lazy-loaded listings.  Images, media, fonts and analytics scripts are
  blocked for speed.
- ``StaticFetcher``: plain ``requests`` for sites that render server-side.

Both return a ``FetchedPage`` holding the final HTML; extractors parse it
with BeautifulSoup.  Failures surface as ``NavigationError``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple

import requests
from bs4 import BeautifulSoup
from playwright.async_api import async_playwright, Browser
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import NavigationError
from .robots import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

# Resource types to block for speed
_BLOCKED_RESOURCE_TYPES = frozenset([
    "image", "media", "font",
])

# URL patterns for analytics/tracking scripts to block
_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"facebook\.net", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
    re.compile(r"hotjar\.", re.IGNORECASE),
    re.compile(r"segment\.(com|io)", re.IGNORECASE),
]


@dataclass
class FetchOptions:
    """Per-request navigation settings."""
    timeout: float = 30.0                      # seconds
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Tuple[int, int] = (1280, 800)
    wait_for_selector: Optional[str] = None
    selector_timeout: float = 5.0
    scroll_passes: int = 0
    scroll_pause: float = 1.0


@dataclass
class FetchedPage:
    """A loaded document: final URL plus rendered HTML."""
    url: str
    html: str
    requested_url: str = ""
    status: int = 200
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False)
    closed: bool = False

    def soup(self) -> BeautifulSoup:
        """Parsed DOM, built once on first use."""
        if self._soup is None:
            self._soup = BeautifulSoup(self.html or "", _BS_PARSER)
        return self._soup

    async def close(self) -> None:
        """Release the parsed tree."""
        self._soup = None
        self.closed = True


class PageFetcher(ABC):
    """Capability: load a URL within a timeout."""

    async def start(self) -> None:
        """Acquire resources (browser, connection pool)."""

    async def close(self) -> None:
        """Release resources."""

    @abstractmethod
    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        """Load *url*; raise ``NavigationError`` on failure."""
        ...

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

class PlaywrightFetcher(PageFetcher):
    """
    Headless-browser fetcher.

    Usage::

        async with PlaywrightFetcher() as fetcher:
            page = await fetcher.fetch(url, FetchOptions())
    """

    def __init__(self, headless: bool = True, block_resources: bool = True):
        self.headless = headless
        self.block_resources = block_resources
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    '--disable-gpu',
                    '--no-sandbox',
                    '--disable-dev-shm-usage',
                    '--disable-extensions',
                    '--no-first-run',
                ]
            )
            logger.info(f"[FETCH] Browser initialized (headless={self.headless})")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("[FETCH] Browser closed")

    async def _route_handler(self, route) -> None:
        """Block unnecessary resources for speed."""
        request = route.request
        if request.resource_type in _BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        if request.resource_type == "script":
            for pattern in _BLOCKED_URL_PATTERNS:
                if pattern.search(request.url):
                    await route.abort()
                    return
        await route.continue_()

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        if self._browser is None:
            await self.start()

        width, height = options.viewport
        context = await self._browser.new_context(
            user_agent=options.user_agent,
            viewport={'width': width, 'height': height},
        )
        try:
            if self.block_resources:
                await context.route("**/*", self._route_handler)
            page = await context.new_page()

            logger.info(f"[FETCH] Navigating to {url}")
            response = await page.goto(
                url,
                wait_until='networkidle',
                timeout=options.timeout * 1000,
            )
            if response is not None and response.status >= 400:
                raise NavigationError(f"HTTP {response.status}", url)

            if options.wait_for_selector:
                try:
                    await page.wait_for_selector(
                        options.wait_for_selector,
                        timeout=options.selector_timeout * 1000,
                    )
                except PlaywrightTimeout:
                    # The extractor reports what is actually missing
                    logger.debug(f"[FETCH] {options.wait_for_selector} not found on {url}")

            for _ in range(options.scroll_passes):
                await page.evaluate("window.scrollBy(0, window.innerHeight)")
                await page.wait_for_timeout(options.scroll_pause * 1000)

            html = await page.content()
            logger.info(f"[FETCH] Loaded {url}")
            return FetchedPage(
                url=page.url,
                html=html,
                requested_url=url,
                status=response.status if response is not None else 200,
            )
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timeout after {options.timeout}s", url) from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation failed: {e}", url) from e
        finally:
            await context.close()


# ---------------------------------------------------------------------------
# Static (requests)
# ---------------------------------------------------------------------------

class StaticFetcher(PageFetcher):
    """Fetcher for server-rendered pages; no JavaScript is executed."""

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()
        self._session.headers.update({
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.9',
        })

    def _get(self, url: str, options: FetchOptions) -> FetchedPage:
        try:
            response = self._session.get(
                url,
                headers={'User-Agent': options.user_agent},
                timeout=options.timeout,
                allow_redirects=True,
            )
        except requests.Timeout as e:
            raise NavigationError(f"Request timeout after {options.timeout}s", url) from e
        except requests.RequestException as e:
            raise NavigationError(f"Request failed: {e}", url) from e

        if response.status_code >= 400:
            raise NavigationError(f"HTTP {response.status_code}", url)
        return FetchedPage(
            url=response.url or url,
            html=response.text,
            requested_url=url,
            status=response.status_code,
        )

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        logger.info(f"[FETCH] GET {url}")
        return await asyncio.to_thread(self._get, url, options)

    async def close(self) -> None:
        self._session.close()

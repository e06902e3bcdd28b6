"""
Product Extractor Contract
==========================
Defines what every retailer-specific extractor must provide.

To add a new retailer:
    1. Create ``<retailer>.py`` with a subclass of ``ProductExtractor``
    2. Implement ``extract`` and ``discover_links``
    3. Register an instance with ``ExtractorRegistry.register()``
    4. No changes to the orchestrator are needed.

Extractors are stateless: they only read the ``FetchedPage`` they are
given.  Nothing is shared between retailers beyond this interface.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..errors import ExtractionError
from ..fetcher import FetchedPage
from ..models import Product
from ..utils import clean_text, parse_price

logger = logging.getLogger(__name__)


class ProductExtractor(ABC):
    """Abstract base for retailer extractors.

    Subclasses set:
        - ``retailer_id``            registry key (e.g. ``"cotton_on"``)
        - ``site_name``              human readable name stored on products
        - ``domains``                hosts this extractor owns
        - ``ready_selector``         element to wait for on product pages
        - ``category_scroll_passes`` lazy-load scrolls on category pages
    """

    retailer_id: str = ""
    site_name: str = ""
    domains: Tuple[str, ...] = ()
    currency: str = "AUD"
    ready_selector: Optional[str] = None
    category_scroll_passes: int = 0

    # ── Routing ───────────────────────────────────────────────────

    def detect(self, url: str) -> bool:
        """Return True if *url* belongs to one of this retailer's hosts."""
        host = (urlparse(url).hostname or "").lower()
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def is_category_url(self, url: str) -> bool:
        """Category (listing) page vs. product page; product pages end in .html."""
        return not urlparse(url).path.lower().endswith(".html")

    # ── Extraction ────────────────────────────────────────────────

    @abstractmethod
    async def extract(self, document: FetchedPage) -> Product:
        """Build a ``Product`` from a product page.

        Raises:
            ExtractionError: required data is missing or malformed.
        """
        ...

    @abstractmethod
    async def discover_links(self, document: FetchedPage) -> List[str]:
        """Product-page links on a category page, in page order."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.retailer_id}>"


# ---------------------------------------------------------------------------
# Helpers for BeautifulSoup-based extractors
# ---------------------------------------------------------------------------

def select_text(soup: BeautifulSoup, selector: str) -> str:
    """Cleaned text of the first match, or ``""``."""
    node = soup.select_one(selector)
    return clean_text(node.get_text(" ")) if node is not None else ""


def require_text(soup: BeautifulSoup, selector: str, url: str) -> str:
    """Cleaned text of the first match; missing or empty is an error."""
    text = select_text(soup, selector)
    if not text:
        raise ExtractionError(f"Missing required element {selector!r}", url)
    return text


def require_price(soup: BeautifulSoup, selector: str, url: str) -> float:
    price = parse_price(require_text(soup, selector, url))
    if price is None:
        raise ExtractionError(f"Malformed price in {selector!r}", url)
    return price


def optional_price(soup: BeautifulSoup, selector: str) -> Optional[float]:
    return parse_price(select_text(soup, selector))


def select_attrs(soup: BeautifulSoup, selector: str, attr: str) -> List[str]:
    """Attribute values of all matches, blanks dropped."""
    values = []
    for node in soup.select(selector):
        value = (node.get(attr) or "").strip()
        if value:
            values.append(value)
    return values


def select_texts(soup: BeautifulSoup, selector: str) -> List[str]:
    return [t for t in (clean_text(n.get_text(" ")) for n in soup.select(selector)) if t]


def absolute(urls: List[str], base_url: str) -> List[str]:
    return [urljoin(base_url, u) for u in urls]

"""
Data Model
==========
Records shared by the frontier, the robots gate, the orchestrator and the
extractors.

Products are immutable once built; ownership passes to whoever consumes
the crawl output.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple


class UrlState(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"


class PageKind(str, Enum):
    CATEGORY = "category"
    PRODUCT = "product"


class Gender(str, Enum):
    MEN = "men"
    WOMEN = "women"
    UNISEX = "unisex"


def _ordered_unique(values: Iterable[str]) -> Tuple[str, ...]:
    """De-duplicate *values* keeping first-seen order; drop empty strings."""
    seen = []
    for value in values or ():
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Product:
    """
    A product record extracted from one product page.

    ``colors``, ``sizes`` and ``image_urls`` are sets in meaning; they are
    stored as ordered tuples with duplicates and blanks removed.
    """
    title: str
    description: str
    price: float
    currency: str
    brand: str
    category: str
    source_url: str
    source_site: str
    available: bool = True
    sale_price: Optional[float] = None
    subcategory: Optional[str] = None
    colors: Tuple[str, ...] = ()
    sizes: Tuple[str, ...] = ()
    gender: Optional[Gender] = None
    image_urls: Tuple[str, ...] = ()

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "colors", _ordered_unique(self.colors))
        object.__setattr__(self, "sizes", _ordered_unique(self.sizes))
        object.__setattr__(self, "image_urls", _ordered_unique(self.image_urls))
        if self.gender is not None and not isinstance(self.gender, Gender):
            object.__setattr__(self, "gender", Gender(self.gender))

    @property
    def effective_price(self) -> float:
        """Sale price when one is set, else the regular price."""
        return self.sale_price if self.sale_price is not None else self.price

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        return {
            'title': self.title,
            'description': self.description,
            'price': self.price,
            'sale_price': self.sale_price,
            'currency': self.currency,
            'brand': self.brand,
            'category': self.category,
            'subcategory': self.subcategory,
            'colors': list(self.colors),
            'sizes': list(self.sizes),
            'gender': self.gender.value if self.gender else None,
            'image_urls': list(self.image_urls),
            'source_url': self.source_url,
            'source_site': self.source_site,
            'available': self.available,
        }

    def to_flat_dict(self) -> dict:
        """Convert to flat dictionary for CSV export."""
        flat = self.to_dict()
        flat['colors'] = ' | '.join(self.colors)
        flat['sizes'] = ' | '.join(self.sizes)
        flat['image_urls'] = ' | '.join(self.image_urls)
        flat['description'] = self.description[:5000]
        return flat


# ---------------------------------------------------------------------------
# Frontier
# ---------------------------------------------------------------------------

@dataclass
class FrontierEntry:
    """One known URL and its crawl state."""
    url: str
    domain: str
    state: UrlState = UrlState.QUEUED
    kind: Optional[PageKind] = None
    parent_url: Optional[str] = None
    error: Optional[Exception] = None
    enqueued_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.state in (UrlState.COMPLETED, UrlState.FAILED)


@dataclass(frozen=True)
class FrontierStats:
    """Point-in-time snapshot of frontier counts."""
    queued: int = 0
    in_flight: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.queued + self.in_flight + self.completed + self.failed

    @property
    def dequeued(self) -> int:
        return self.in_flight + self.completed + self.failed

    @property
    def is_drained(self) -> bool:
        return self.queued + self.in_flight == 0

    def to_dict(self) -> dict:
        return {
            'queued': self.queued,
            'in_flight': self.in_flight,
            'completed': self.completed,
            'failed': self.failed,
        }


# ---------------------------------------------------------------------------
# Robots
# ---------------------------------------------------------------------------

DEFAULT_CRAWL_DELAY = 1.0


@dataclass(frozen=True)
class DomainPolicy:
    """Parsed robots.txt rules for one host."""
    domain: str
    allow_rules: Tuple[str, ...] = ("*",)
    disallow_rules: Tuple[str, ...] = ()
    crawl_delay: float = DEFAULT_CRAWL_DELAY
    source: str = "default"

    @classmethod
    def permissive(cls, domain: str) -> "DomainPolicy":
        """Allow everything, crawl responsibly (1 s delay)."""
        return cls(domain=domain)


# ---------------------------------------------------------------------------
# Crawl output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrawlFailure:
    """A URL that ended in the FAILED state."""
    url: str
    kind: str
    message: str
    error: Optional[Exception] = None

    @classmethod
    def from_error(cls, url: str, error: Exception) -> "CrawlFailure":
        kind = getattr(error, "kind", type(error).__name__)
        return cls(url=url, kind=kind, message=str(error), error=error)

    def to_dict(self) -> dict:
        return {'url': self.url, 'kind': self.kind, 'message': self.message}


@dataclass(frozen=True)
class CategoryPage:
    """A category page that was expanded into product-page links."""
    url: str
    discovered: int
    enqueued: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'discovered': self.discovered,
            'enqueued': list(self.enqueued),
        }

"""
Crawl Errors
============
Error taxonomy for a crawl session.

Every per-URL failure is a ``CrawlError`` subclass.  The orchestrator
records it on the frontier entry (``mark_failed``) and emits it as a
``CrawlFailure`` item; none of them aborts the session.

``RobotsFetchError`` never leaves the robots gate: it is downgraded to
the permissive default policy.
"""

from typing import Optional


class CrawlError(Exception):
    """Base class for all per-URL crawl errors."""

    kind = "crawl_error"

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url

    @property
    def message(self) -> str:
        return str(self)


class PolicyViolation(CrawlError):
    """URL is disallowed by the domain's robots.txt."""

    kind = "policy_violation"


class NavigationError(CrawlError):
    """Page could not be loaded (network failure, HTTP error, timeout)."""

    kind = "navigation_error"


class ExtractionError(CrawlError):
    """Expected product data is missing or malformed on the page."""

    kind = "extraction_error"


class UnsupportedRetailer(ExtractionError):
    """No extractor is registered for the URL's host."""


class RobotsFetchError(CrawlError):
    """robots.txt could not be downloaded or parsed."""

    kind = "robots_fetch_error"


class CrawlCancelled(CrawlError):
    """The session was stopped before this URL was fetched."""

    kind = "cancelled"


class FrontierStateError(RuntimeError):
    """Illegal state transition requested on a frontier entry."""

    def __init__(self, url: str, current: Optional[str], requested: str):
        super().__init__(
            f"Cannot move {url} to {requested}: "
            f"current state is {current or 'unknown'}"
        )
        self.url = url
        self.current = current
        self.requested = requested

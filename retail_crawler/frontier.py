"""
URL Frontier
============
The queue and state machine of every URL known to a crawl session.

States::

    QUEUED -> IN_FLIGHT -> COMPLETED
                        -> FAILED

Entries are keyed by normalized URL and never removed, so a URL that was
ever seen (in any state) is never queued again during the session.
Queued entries are served FIFO.

All mutations go through one ``threading.Lock``; the frontier is safe to
share between the event loop and worker threads.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Optional

from .errors import FrontierStateError
from .models import FrontierEntry, FrontierStats, PageKind, UrlState
from .utils import URLNormalizer, extract_domain

logger = logging.getLogger(__name__)


class URLFrontier:
    """
    Deduplicating FIFO frontier.

    Usage::

        frontier = URLFrontier()
        frontier.enqueue(["https://shop.example/cat/tees"])
        url = frontier.dequeue()
        ...
        frontier.mark_completed(url)
    """

    def __init__(self, normalizer: URLNormalizer = None):
        self.normalizer = normalizer or URLNormalizer()
        self._entries: Dict[str, FrontierEntry] = {}
        self._queue: Deque[str] = deque()
        self._counts = {state: 0 for state in UrlState}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Enqueue / dequeue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        urls: Iterable[str],
        base_url: Optional[str] = None,
        kind: Optional[PageKind] = None,
        parent_url: Optional[str] = None,
    ) -> List[str]:
        """
        Queue every URL not already known to the session.

        Args:
            urls: Raw URLs (absolute, or relative to *base_url*)
            base_url: Page the URLs were discovered on
            kind: Page kind hint stored on new entries
            parent_url: Entry that discovered the URLs; defaults to *base_url*

        Returns:
            Normalized URLs that were newly queued, in submission order
        """
        added: List[str] = []
        skipped = 0
        # Whole batch is normalized before any entry is added
        normalized = []
        for raw in urls:
            url = self.normalizer.normalize(raw, base_url)
            if url is None:
                logger.debug(f"[FRONTIER] Ignoring uncrawlable URL: {raw!r}")
                skipped += 1
            else:
                normalized.append(url)

        with self._lock:
            for url in normalized:
                if url in self._entries:
                    skipped += 1
                    continue
                self._entries[url] = FrontierEntry(
                    url=url,
                    domain=extract_domain(url),
                    kind=kind,
                    parent_url=parent_url or base_url,
                )
                self._queue.append(url)
                self._counts[UrlState.QUEUED] += 1
                added.append(url)

        if added or skipped:
            logger.info(
                f"[FRONTIER] Added {len(added)} new URLs "
                f"({skipped} known/ignored). Queue size: {len(self._queue)}"
            )
        return added

    def dequeue(self) -> Optional[str]:
        """Pop the earliest queued URL and move it to IN_FLIGHT."""
        with self._lock:
            if not self._queue:
                return None
            url = self._queue.popleft()
            self._move(self._entries[url], UrlState.IN_FLIGHT)
            return url

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def mark_completed(self, url: str) -> None:
        """IN_FLIGHT -> COMPLETED."""
        with self._lock:
            entry = self._require_in_flight(url, UrlState.COMPLETED)
            self._move(entry, UrlState.COMPLETED)

    def mark_failed(self, url: str, error: Exception) -> None:
        """IN_FLIGHT -> FAILED, keeping *error* on the entry."""
        with self._lock:
            entry = self._require_in_flight(url, UrlState.FAILED)
            entry.error = error
            self._move(entry, UrlState.FAILED)

    def _require_in_flight(self, url: str, requested: UrlState) -> FrontierEntry:
        entry = self._entries.get(url)
        if entry is None:
            normalized = self.normalizer.normalize(url)
            entry = self._entries.get(normalized) if normalized else None
        if entry is None or entry.state is not UrlState.IN_FLIGHT:
            current = entry.state.value if entry else None
            logger.error(
                f"[FRONTIER] Rejected transition of {url} to {requested.value} "
                f"(state: {current or 'unknown'})"
            )
            raise FrontierStateError(url, current, requested.value)
        return entry

    def _move(self, entry: FrontierEntry, state: UrlState) -> None:
        self._counts[entry.state] -= 1
        entry.state = state
        self._counts[state] += 1

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def stats(self) -> FrontierStats:
        with self._lock:
            return FrontierStats(
                queued=self._counts[UrlState.QUEUED],
                in_flight=self._counts[UrlState.IN_FLIGHT],
                completed=self._counts[UrlState.COMPLETED],
                failed=self._counts[UrlState.FAILED],
            )

    @property
    def is_drained(self) -> bool:
        return self.stats().is_drained

    def get(self, url: str) -> Optional[FrontierEntry]:
        with self._lock:
            entry = self._entries.get(url)
        if entry is None:
            normalized = self.normalizer.normalize(url)
            if normalized:
                with self._lock:
                    entry = self._entries.get(normalized)
        return entry

    def entries(self, state: Optional[UrlState] = None) -> Iterator[FrontierEntry]:
        """Snapshot of entries, optionally filtered by state."""
        with self._lock:
            snapshot = list(self._entries.values())
        for entry in snapshot:
            if state is None or entry.state is state:
                yield entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return self.get(url) is not None

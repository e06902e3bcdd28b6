"""
Per-Domain Rate Limiter
=======================
Enforces a minimum interval between requests to the same domain.

The interval is ``60 / requests_per_minute`` seconds (10 rpm when no limit
was set).  Callers may pass an extra floor (the robots.txt crawl delay);
the stricter of the two applies.

Check, sleep and stamp run under one ``asyncio.Lock`` per domain, so two
workers racing for the same domain are strictly serialized and can never
both see a stale last-request time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import CrawlCancelled
from .utils import extract_domain

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_MINUTE = 10.0


@dataclass
class DomainRateState:
    """Budget and last dispatch instant (monotonic) for one domain."""
    requests_per_minute: float = DEFAULT_REQUESTS_PER_MINUTE
    last_request: Optional[float] = None

    @property
    def interval(self) -> float:
        return 60.0 / self.requests_per_minute


async def sleep_or_stop(delay: float, stop_event: Optional[asyncio.Event]) -> bool:
    """
    Sleep for *delay* seconds unless *stop_event* fires first.

    Returns True when the stop event interrupted the sleep.
    """
    if stop_event is None:
        if delay > 0:
            await asyncio.sleep(delay)
        return False
    if stop_event.is_set():
        return True
    if delay <= 0:
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


class RateLimiter:
    """
    Session-scoped per-domain interval gate.

    Usage::

        limiter = RateLimiter()
        limiter.set_limit("shop.example", 30)
        await limiter.await_turn(url, min_interval=crawl_delay)
        # ... issue the request
    """

    def __init__(self, default_requests_per_minute: float = DEFAULT_REQUESTS_PER_MINUTE):
        if default_requests_per_minute <= 0:
            raise ValueError("default_requests_per_minute must be positive")
        self.default_requests_per_minute = default_requests_per_minute
        self._states: Dict[str, DomainRateState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _state(self, domain: str) -> DomainRateState:
        state = self._states.get(domain)
        if state is None:
            state = DomainRateState(requests_per_minute=self.default_requests_per_minute)
            self._states[domain] = state
        return state

    def set_limit(self, domain: str, requests_per_minute: float) -> None:
        """Establish or override the request budget for *domain*."""
        if requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")
        self._state(domain.lower()).requests_per_minute = float(requests_per_minute)
        logger.info(f"[RATE] {domain}: {requests_per_minute} requests/minute")

    def interval_for(self, domain: str) -> float:
        """Minimum seconds between two requests to *domain*."""
        state = self._states.get(domain.lower())
        if state is None:
            return 60.0 / self.default_requests_per_minute
        return state.interval

    def last_request(self, domain: str) -> Optional[float]:
        state = self._states.get(domain.lower())
        return state.last_request if state else None

    async def await_turn(
        self,
        url: str,
        min_interval: float = 0.0,
        stop_event: Optional[asyncio.Event] = None,
    ) -> float:
        """
        Wait until a request to *url*'s domain is allowed, then stamp it.

        Args:
            url: URL about to be requested
            min_interval: Extra floor in seconds (e.g. robots.txt crawl delay)
            stop_event: Session stop signal; interrupts the wait

        Returns:
            Seconds spent waiting

        Raises:
            CrawlCancelled: if *stop_event* fired before the turn came
        """
        domain = extract_domain(url)
        lock = self._locks.setdefault(domain, asyncio.Lock())
        waited = 0.0

        async with lock:
            state = self._state(domain)
            interval = max(state.interval, min_interval or 0.0)

            # Loop: a timer may wake marginally early
            while state.last_request is not None:
                remaining = state.last_request + interval - time.monotonic()
                if remaining <= 0:
                    break
                logger.debug(f"[RATE] Waiting {remaining:.2f}s before requesting {url}")
                if await sleep_or_stop(remaining, stop_event):
                    raise CrawlCancelled("Crawl stopped while waiting for rate limit", url)
                waited += remaining

            if stop_event is not None and stop_event.is_set():
                raise CrawlCancelled("Crawl stopped before request was dispatched", url)

            state.last_request = time.monotonic()

        return waited

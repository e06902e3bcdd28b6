"""
Unified Run Configuration
=========================
Single source of truth for crawler defaults and runtime limits.

CLI flags and environment variables populate ``CrawlerRunConfig``; the
session options are built *from* it via ``to_crawl_options()``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .orchestrator import CrawlOptions
from .robots import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session defaults: CLI and env only ever override these
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "max_products_per_category": 20,
    "requests_per_minute": 10.0,     # per domain
    "max_workers": 4,                # domains crawled in parallel
    "timeout_seconds": 30,           # page navigation timeout
    "link_delay": 2.0,               # seconds before each discovered product page
    "headless": True,
    "use_browser": True,             # False → static requests fetcher
    "respect_robots": True,
    "robots_agent_names": ["googlebot"],
    "viewport_width": 1280,
    "viewport_height": 800,
    "user_agent": DEFAULT_USER_AGENT,
}

ENV_USER_AGENT = "RETAIL_CRAWLER_USER_AGENT"
ENV_RPM = "RETAIL_CRAWLER_RPM"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number")
        return default


@dataclass
class CrawlerRunConfig:
    """
    Configuration consumed by the CLI and the crawl session.

    Populate via:
      - ``CrawlerRunConfig()``                 → all defaults
      - ``CrawlerRunConfig.from_env()``        → defaults + env overrides
      - ``CrawlerRunConfig.from_cli_args(ns)`` → from argparse Namespace
    """

    # ---- Session limits ----
    max_products_per_category: int = _DEFAULTS["max_products_per_category"]
    requests_per_minute: float = _DEFAULTS["requests_per_minute"]
    max_workers: int = _DEFAULTS["max_workers"]
    timeout_seconds: int = _DEFAULTS["timeout_seconds"]
    link_delay: float = _DEFAULTS["link_delay"]

    # ---- Fetching ----
    headless: bool = _DEFAULTS["headless"]
    use_browser: bool = _DEFAULTS["use_browser"]
    user_agent: str = _DEFAULTS["user_agent"]
    viewport_width: int = _DEFAULTS["viewport_width"]
    viewport_height: int = _DEFAULTS["viewport_height"]

    # ---- Robots ----
    respect_robots: bool = _DEFAULTS["respect_robots"]
    robots_agent_names: List[str] = field(
        default_factory=lambda: list(_DEFAULTS["robots_agent_names"])
    )

    # ---- Output paths (None = skip) ----
    output_json: Optional[str] = None
    output_jsonl: Optional[str] = None
    output_csv: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, **overrides) -> "CrawlerRunConfig":
        """Defaults, then environment variables, then explicit overrides."""
        cfg = cls(
            user_agent=os.environ.get(ENV_USER_AGENT) or _DEFAULTS["user_agent"],
            requests_per_minute=_env_float(ENV_RPM, _DEFAULTS["requests_per_minute"]),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(cfg, key, value)
        return cfg

    @classmethod
    def from_cli_args(cls, args) -> "CrawlerRunConfig":
        """
        Build config from an argparse Namespace (``__main__.py``).

        Raises:
            ValueError: a limit is out of range (e.g. a negative ``--max-products``)
        """
        cfg = cls.from_env(
            max_products_per_category=getattr(args, "max_products", None),
            requests_per_minute=getattr(args, "rpm", None),
            max_workers=getattr(args, "workers", None),
            timeout_seconds=getattr(args, "timeout", None),
            link_delay=getattr(args, "link_delay", None),
            use_browser=not getattr(args, "static", False),
            headless=not getattr(args, "headed", False),
            respect_robots=not getattr(args, "ignore_robots", False),
            output_json=getattr(args, "output_json", None),
            output_jsonl=getattr(args, "output_jsonl", None),
            output_csv=getattr(args, "output_csv", None),
        )
        cfg.to_crawl_options()  # range-checks the limits
        return cfg

    # -----------------------------------------------------------------------
    # Converters
    # -----------------------------------------------------------------------
    def to_crawl_options(self) -> CrawlOptions:
        """Return the ``CrawlOptions`` for one session."""
        return CrawlOptions(
            max_products_per_category=self.max_products_per_category,
            link_delay=self.link_delay,
            requests_per_minute_per_domain=self.requests_per_minute,
            max_workers=self.max_workers,
            fetch_timeout=float(self.timeout_seconds),
            user_agent=self.user_agent,
            viewport=(self.viewport_width, self.viewport_height),
            respect_robots=self.respect_robots,
            robots_agent_names=tuple(self.robots_agent_names),
        )

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, seeds: List[str]) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("CRAWL RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Seeds:            {len(seeds)}")
        logger.info(f"  Fetcher:          {'Playwright' if self.use_browser else 'static (requests)'}")
        logger.info(f"  Max Products:     {self.max_products_per_category} per category")
        logger.info(f"  Rate:             {self.requests_per_minute} requests/min per domain")
        logger.info(f"  Workers:          {self.max_workers}")
        logger.info(f"  Timeout:          {self.timeout_seconds}s per page")
        logger.info(f"  Link Delay:       {self.link_delay}s")
        logger.info(f"  Robots.txt:       {'respected' if self.respect_robots else 'IGNORED'}")
        logger.info("=" * 60)

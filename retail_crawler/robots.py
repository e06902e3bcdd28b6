"""
Robots.txt Gate
Responsible for fetching, parsing, and checking robots.txt compliance.

One ``RobotsGate`` lives for exactly one crawl session.  Policies are
fetched lazily, the first time a domain is seen, and cached until the
session ends.  A robots.txt that cannot be fetched or parsed never stops
the crawl: the domain falls back to the permissive default policy.
"""

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import requests

from .errors import RobotsFetchError
from .models import DEFAULT_CRAWL_DELAY, DomainPolicy

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

# Agent tokens whose robots.txt groups apply to us besides "*"
DEFAULT_AGENT_NAMES = ("googlebot",)


def parse_robots_txt(
    text: str,
    domain: str,
    agent_names: Sequence[str] = DEFAULT_AGENT_NAMES,
) -> DomainPolicy:
    """
    Parse a robots.txt body into a ``DomainPolicy``.

    Consecutive ``User-agent`` lines form one group.  A group applies when
    any of its agents is ``*`` or one of *agent_names*; other groups are
    skipped until the next ``User-agent`` line.  Inside applicable groups
    Allow, Disallow and Crawl-delay accumulate.  An empty Disallow means
    "no restriction" and is ignored.
    """
    names = {n.lower() for n in agent_names}
    allow: List[str] = []
    disallow: List[str] = []
    crawl_delay = DEFAULT_CRAWL_DELAY

    applies = False
    in_agent_run = False

    for raw_line in text.splitlines():
        line = raw_line.split('#', 1)[0].strip()
        if not line or ':' not in line:
            continue

        key, _, value = line.partition(':')
        key = key.strip().lower()
        value = value.strip()

        if key == 'user-agent':
            agent = value.lower()
            matched = agent == '*' or agent in names
            # A new group starts unless the previous line was also User-agent
            applies = (applies or matched) if in_agent_run else matched
            in_agent_run = True
            continue

        in_agent_run = False
        if not applies:
            continue

        if key == 'allow':
            if value and value not in allow:
                allow.append(value)
        elif key == 'disallow':
            if value and value not in disallow:
                disallow.append(value)
        elif key == 'crawl-delay':
            try:
                delay = float(value)
            except ValueError:
                logger.debug(f"[ROBOTS] Ignoring bad Crawl-delay {value!r} for {domain}")
                continue
            if delay >= 0:
                crawl_delay = delay

    if not allow and not disallow:
        allow.append('*')

    return DomainPolicy(
        domain=domain,
        allow_rules=tuple(allow),
        disallow_rules=tuple(disallow),
        crawl_delay=crawl_delay,
        source="robots.txt",
    )


def rule_matches(rule: str, path: str) -> bool:
    """
    Match a robots rule against a URL path.

    Plain rules are path prefixes; ``*`` alone matches everything, ``*``
    inside a rule matches any run of characters and a trailing ``$``
    anchors the end of the path.
    """
    if rule == '*':
        return True
    if '*' in rule or rule.endswith('$'):
        anchored = rule.endswith('$')
        body = rule[:-1] if anchored else rule
        regex = re.escape(body).replace(r'\*', '.*')
        if anchored:
            regex += '$'
        return re.match(regex, path) is not None
    return path.startswith(rule)


def policy_allows(policy: DomainPolicy, path: str) -> bool:
    """Disallow is checked first; an explicit block always wins."""
    path = path or '/'
    for rule in policy.disallow_rules:
        if rule_matches(rule, path):
            return False
    for rule in policy.allow_rules:
        if rule_matches(rule, path):
            return True
    return True


class RobotsGate:
    """
    Session-scoped robots.txt compliance gate.

    Usage::

        gate = RobotsGate(user_agent=ua)
        if await gate.is_allowed(url):
            delay = await gate.crawl_delay_for(domain)
    """

    def __init__(
        self,
        user_agent: str = None,
        agent_names: Iterable[str] = DEFAULT_AGENT_NAMES,
        timeout: float = 10.0,
        respect_robots: bool = True,
        session: Optional[requests.Session] = None,
    ):
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.agent_names = tuple(agent_names)
        self.timeout = timeout
        self.respect_robots = respect_robots
        self._session = session or requests.Session()
        self._policies: Dict[str, DomainPolicy] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _download(self, domain: str) -> str:
        """Blocking download of robots.txt; runs in a worker thread."""
        robots_url = f"https://{domain}/robots.txt"
        logger.info(f"[ROBOTS] Fetching {robots_url}")
        try:
            response = self._session.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise RobotsFetchError(f"Failed to fetch robots.txt: {e}", robots_url) from e

        if not 200 <= response.status_code < 300:
            raise RobotsFetchError(
                f"Unexpected status {response.status_code} for robots.txt",
                robots_url,
            )
        return response.text

    async def _load(self, domain: str) -> DomainPolicy:
        try:
            text = await asyncio.to_thread(self._download, domain)
            policy = parse_robots_txt(text, domain, self.agent_names)
        except RobotsFetchError as e:
            logger.info(f"[ROBOTS] {domain}: {e} — using permissive default")
            return DomainPolicy.permissive(domain)
        except (ValueError, UnicodeError) as e:
            logger.warning(f"[ROBOTS] Could not parse robots.txt for {domain}: {e}")
            return DomainPolicy.permissive(domain)
        except Exception as e:
            logger.error(f"[ROBOTS] Unexpected error loading robots.txt for {domain}: {e}", exc_info=True)
            return DomainPolicy.permissive(domain)

        logger.info(
            f"[ROBOTS] Parsed robots.txt for {domain} "
            f"(allow={len(policy.allow_rules)}, disallow={len(policy.disallow_rules)}, "
            f"crawl_delay={policy.crawl_delay}s)"
        )
        return policy

    async def policy_for(self, domain: str) -> DomainPolicy:
        """Return the cached policy for *domain*, fetching it on first use."""
        domain = domain.lower()
        if not self.respect_robots:
            return DomainPolicy(domain=domain, crawl_delay=0.0, source="disabled")

        policy = self._policies.get(domain)
        if policy is not None:
            return policy

        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            # Another caller may have loaded it while we waited
            policy = self._policies.get(domain)
            if policy is None:
                policy = await self._load(domain)
                self._policies[domain] = policy
        return policy

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_allowed(self, url: str) -> bool:
        """Check if the given URL may be fetched according to robots.txt."""
        parsed = urlparse(url)
        domain = (parsed.hostname or '').lower()
        policy = await self.policy_for(domain)
        allowed = policy_allows(policy, parsed.path)
        if not allowed:
            logger.debug(f"[ROBOTS] URL blocked by robots.txt: {url}")
        return allowed

    async def crawl_delay_for(self, domain: str) -> float:
        """Crawl delay in seconds for *domain* (1 s unless robots.txt says otherwise)."""
        policy = await self.policy_for(domain)
        return policy.crawl_delay

    def cached_policy(self, domain: str) -> Optional[DomainPolicy]:
        """Policy already in the cache, without fetching."""
        return self._policies.get(domain.lower())

    @property
    def known_domains(self) -> List[str]:
        return list(self._policies)

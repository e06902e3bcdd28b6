"""
Utility Functions
URL canonicalization for the frontier, plus text and price helpers for
the extractors.
"""

import logging
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse, urljoin, parse_qsl, urlencode

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {'http': 80, 'https': 443}
_UNCRAWLABLE_PREFIXES = ('javascript:', 'mailto:', 'tel:', 'data:', '#')


class URLNormalizer:
    """
    Canonicalizes URLs so the frontier can deduplicate them.

    Scheme and host are lowercased, relative links resolved, and the
    fragment, default port, trailing slash and marketing parameters
    dropped; what is left of the query is sorted.  Non-http(s) links and
    static assets normalize to None.
    """

    # Campaign / affiliate / click-id parameters seen on retail links
    TRACKING_PARAMS = frozenset({
        'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content', 'utm_id',
        'gclid', 'gbraid', 'wbraid', 'dclid', 'fbclid', 'msclkid', 'srsltid',
        'mc_cid', 'mc_eid', 'mkt_tok', 'irclickid', 'cmpid', 'affid',
        '_ga', '_gl', '_gid', 'zanpid', 'epik',
    })

    # Static assets: never a category or product page
    SKIP_EXTENSIONS = (
        # images
        '.jpg', '.jpeg', '.png', '.gif', '.webp', '.avif', '.svg', '.ico', '.bmp',
        # media
        '.mp4', '.webm', '.mov', '.mp3',
        # documents / archives
        '.pdf', '.zip', '.gz',
        # front-end bundles and feeds
        '.css', '.js', '.map', '.json', '.xml', '.rss',
        # fonts
        '.woff', '.woff2', '.ttf', '.otf', '.eot',
    )

    def __init__(self, remove_tracking_params: bool = True, strip_www: bool = False):
        """
        Args:
            remove_tracking_params: Drop TRACKING_PARAMS from the query
            strip_www: Treat ``www.shop.example`` and ``shop.example`` as one host
        """
        self.remove_tracking_params = remove_tracking_params
        self.strip_www = strip_www

    def normalize(self, url: str, base_url: str = None) -> Optional[str]:
        """
        Canonical form of *url*, or None if it cannot be crawled.

        Args:
            url: Absolute URL, or a link relative to *base_url*
            base_url: Page the link was found on
        """
        if not url or not isinstance(url, str):
            return None

        url = url.strip()
        if url.lower().startswith(_UNCRAWLABLE_PREFIXES):
            return None

        try:
            if base_url:
                url = urljoin(base_url, url)
            parsed = urlparse(url)
            port = parsed.port
        except ValueError:
            return None

        scheme = parsed.scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            return None

        host = (parsed.hostname or '').lower()
        if not host:
            return None
        if self.strip_www and host.startswith('www.'):
            host = host[4:]
        netloc = f"{host}:{port}" if port and port != _DEFAULT_PORTS[scheme] else host

        # "//a///b/" -> "/a/b"; the root stays "/"
        path = re.sub(r'/+', '/', parsed.path or '/')
        if len(path) > 1:
            path = path.rstrip('/')

        if path.lower().endswith(self.SKIP_EXTENSIONS):
            return None

        query = ''
        if parsed.query:
            params = parse_qsl(parsed.query, keep_blank_values=True)
            if self.remove_tracking_params:
                params = [(k, v) for k, v in params if k.lower() not in self.TRACKING_PARAMS]
            query = urlencode(sorted(params))

        return urlunparse((scheme, netloc, path, parsed.params, query, ''))


def extract_domain(url: str) -> str:
    """Lowercased host of *url*, without port."""
    return (urlparse(url).hostname or '').lower()


def clean_text(text: str) -> str:
    """Collapse runs of whitespace and trim; None becomes ``""``."""
    if not text:
        return ""
    return re.sub(r'\s+', ' ', text).strip()


def parse_price(text: str) -> Optional[float]:
    """
    Parse a displayed price such as ``"$49.99"`` or ``"AU$ 1,299.00"``.

    Returns None when no number can be read.
    """
    if not text:
        return None
    digits = re.sub(r'[^0-9.\-]', '', text)
    if not digits or digits in ('.', '-'):
        return None
    try:
        return float(digits)
    except ValueError:
        logger.debug(f"Unparseable price text: {text!r}")
        return None

"""
Retail Crawler Package
A polite, concurrent product crawler for fashion retailers.

CLI Usage:
    python -m retail_crawler <seed-url> [<seed-url> ...] [options]

    Options:
        --max-products  Product pages taken per category page (default: 20)
        --rpm           Requests per minute per domain (default: 10)
        --workers       Domains crawled in parallel (default: 4)
        --timeout       Per-page timeout in seconds (default: 30)
        --link-delay    Pause before each product page (default: 2.0)
        --static        Fetch with requests instead of a browser
        --output-json   Export to JSON file
        --output-jsonl  Export to JSONL file
        --output-csv    Export to CSV file
"""

from .errors import (
    CrawlError,
    PolicyViolation,
    NavigationError,
    ExtractionError,
    UnsupportedRetailer,
    RobotsFetchError,
    CrawlCancelled,
    FrontierStateError,
)
from .models import (
    Product,
    Gender,
    PageKind,
    UrlState,
    FrontierEntry,
    FrontierStats,
    DomainPolicy,
    CrawlFailure,
    CategoryPage,
)
from .utils import URLNormalizer, extract_domain
from .robots import RobotsGate, parse_robots_txt
from .rate_limiter import RateLimiter
from .frontier import URLFrontier
from .fetcher import PageFetcher, PlaywrightFetcher, StaticFetcher, FetchedPage, FetchOptions
from .extractors import ProductExtractor, ExtractorRegistry, CottonOnExtractor, TheIconicExtractor
from .orchestrator import CrawlOrchestrator, CrawlOptions, CrawlReport, start_crawl
from .exporter import export_json, export_jsonl, export_csv
from .run_config import CrawlerRunConfig

__all__ = [
    # Errors
    'CrawlError',
    'PolicyViolation',
    'NavigationError',
    'ExtractionError',
    'UnsupportedRetailer',
    'RobotsFetchError',
    'CrawlCancelled',
    'FrontierStateError',
    # Data model
    'Product',
    'Gender',
    'PageKind',
    'UrlState',
    'FrontierEntry',
    'FrontierStats',
    'DomainPolicy',
    'CrawlFailure',
    'CategoryPage',
    # Components
    'URLNormalizer',
    'extract_domain',
    'RobotsGate',
    'parse_robots_txt',
    'RateLimiter',
    'URLFrontier',
    'PageFetcher',
    'PlaywrightFetcher',
    'StaticFetcher',
    'FetchedPage',
    'FetchOptions',
    'ProductExtractor',
    'ExtractorRegistry',
    'CottonOnExtractor',
    'TheIconicExtractor',
    # Session
    'CrawlOrchestrator',
    'CrawlOptions',
    'CrawlReport',
    'start_crawl',
    'CrawlerRunConfig',
    # Export
    'export_json',
    'export_jsonl',
    'export_csv',
]

__version__ = '0.1.0'

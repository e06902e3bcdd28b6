#!/usr/bin/env python3
"""
Retail Crawler CLI
==================
Crawl category or product pages of the supported retailers and export the
product records.

All configuration flows through ``CrawlerRunConfig``.

Run with: python -m retail_crawler <seed-url> [<seed-url> ...]
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .exporter import export_csv, export_json, export_jsonl
from .extractors import ExtractorRegistry
from .fetcher import PlaywrightFetcher, StaticFetcher
from .models import CategoryPage, CrawlFailure, Product
from .orchestrator import CrawlOrchestrator, CrawlReport
from .run_config import CrawlerRunConfig

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def _base_name_from_url(url: str) -> str:
    """Derive a filesystem-safe base name from a URL."""
    parsed = urlparse(url)
    base = parsed.netloc.replace('.', '_').replace(':', '_')
    if parsed.path and parsed.path != '/':
        path_part = parsed.path.strip('/').replace('/', '_')[:30]
        base = f"{base}_{path_part}"
    return base


def print_summary(report: CrawlReport):
    """Print crawl summary."""
    stats = report.stats
    print("\n" + "=" * 65)
    print("CRAWL COMPLETE")
    print("=" * 65)
    print(f"  Products extracted:  {len(report.products)}")
    print(f"  Category pages:      {len(report.categories)}")
    print(f"  Failed URLs:         {len(report.failures)}")
    for kind, count in sorted(report.failures_by_kind().items()):
        print(f"    {kind:<20} {count}")
    print(f"  Frontier:            completed={stats.completed} failed={stats.failed} "
          f"queued={stats.queued}")
    print(f"  Total time:          {report.elapsed_sec:.1f}s")
    print("=" * 65)


async def _run_session(seeds, cfg: CrawlerRunConfig, report: CrawlReport) -> None:
    """Fill *report* as items arrive, so an interrupted run keeps what it has."""
    if cfg.use_browser:
        fetcher = PlaywrightFetcher(headless=cfg.headless)
    else:
        fetcher = StaticFetcher()

    orchestrator = CrawlOrchestrator(
        ExtractorRegistry.default(),
        fetcher,
        cfg.to_crawl_options(),
    )

    start = time.monotonic()
    async with fetcher:
        try:
            async for item in orchestrator.crawl(seeds):
                stats = orchestrator.get_stats()
                progress = f"[{stats.completed + stats.failed}/{stats.total}]"
                if isinstance(item, Product):
                    report.products.append(item)
                    print(f"{progress} {item.title[:60]} — {item.price} {item.currency}")
                elif isinstance(item, CrawlFailure):
                    report.failures.append(item)
                    print(f"{progress} FAILED {item.url[:60]} ({item.kind})")
                elif isinstance(item, CategoryPage):
                    report.categories.append(item)
                    print(f"{progress} Category {item.url[:60]}: {len(item.enqueued)} products queued")
        except asyncio.CancelledError:
            orchestrator.stop()
            raise
        finally:
            report.stats = orchestrator.get_stats()
            report.elapsed_sec = time.monotonic() - start


def _export(report: CrawlReport, cfg: CrawlerRunConfig) -> None:
    exported = []
    if cfg.output_json:
        exported.append(export_json(report.products, cfg.output_json,
                                    failures=report.failures, stats=report.stats))
    if cfg.output_jsonl:
        exported.append(export_jsonl(report.products, cfg.output_jsonl))
    if cfg.output_csv:
        exported.append(export_csv(report.products, cfg.output_csv))
    if exported:
        print("\n" + "-" * 40)
        for path in exported:
            print(f"  Exported: {path}")
        print("-" * 40)
    else:
        logger.warning("No output format was configured — nothing exported")


def run_cli_with_args(argv=None):
    """Parse argv, build CrawlerRunConfig, run."""
    parser = argparse.ArgumentParser(
        description='Retail Crawler - polite product crawler for supported retailers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m retail_crawler https://cottonon.com/AU/women/womens-clothing/
  python -m retail_crawler https://www.theiconic.com.au/womens-clothing-dresses/ --max-products 5
  python -m retail_crawler SEED --rpm 6 --output-jsonl products.jsonl
        """
    )

    parser.add_argument('seeds', nargs='+', help='Category or product page URLs')
    parser.add_argument('--max-products', type=int, help='Product pages taken per category page (default: 20)')
    parser.add_argument('--rpm', type=float, help='Requests per minute per domain (default: 10)')
    parser.add_argument('--workers', type=int, help='Domains crawled in parallel (default: 4)')
    parser.add_argument('--timeout', type=int, help='Page navigation timeout in seconds (default: 30)')
    parser.add_argument('--link-delay', type=float, help='Pause before each product page in seconds (default: 2)')
    parser.add_argument('--static', action='store_true', help='Fetch with requests instead of a browser')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('--ignore-robots', action='store_true', help='Do not consult robots.txt')
    parser.add_argument('--output-json', type=str, help='JSON output file path')
    parser.add_argument('--output-jsonl', type=str, help='JSONL output file path (one product per line)')
    parser.add_argument('--output-csv', type=str, help='CSV output file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args(argv)

    # Load .env file before building the config
    env_path = Path.cwd() / '.env'
    load_dotenv(env_path if env_path.exists() else None)

    _configure_logging(args.verbose)

    seeds = [s if s.startswith(('http://', 'https://')) else 'https://' + s for s in args.seeds]

    try:
        cfg = CrawlerRunConfig.from_cli_args(args)
    except ValueError as e:
        parser.error(str(e))
    if not (cfg.output_json or cfg.output_jsonl or cfg.output_csv):
        cfg.output_json = f"{_base_name_from_url(seeds[0])}.json"
    cfg.log_summary(seeds)

    report = CrawlReport()
    interrupted = False
    try:
        asyncio.run(_run_session(seeds, cfg, report))
    except KeyboardInterrupt:
        interrupted = True
        print("\nCrawl interrupted — keeping partial results.")

    if report.products:
        _export(report, cfg)
    else:
        logger.warning("No products were extracted — skipping export")
    print_summary(report)

    if interrupted:
        sys.exit(130)


if __name__ == '__main__':
    run_cli_with_args()

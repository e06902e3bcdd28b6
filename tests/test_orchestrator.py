"""
Tests for the crawl orchestrator.

Every session runs against ``FakeFetcher`` and a robots gate fed by a fake
``requests`` session, so nothing leaves the process.  Rates are set high
and robots.txt says ``Crawl-delay: 0`` unless a test is about timing.
"""

import asyncio
import time

import pytest

from retail_crawler import orchestrator as orchestrator_module
from retail_crawler.errors import NavigationError, UnsupportedRetailer
from retail_crawler.extractors import ExtractorRegistry
from retail_crawler.models import CategoryPage, CrawlFailure, PageKind, Product, UrlState
from retail_crawler.orchestrator import CrawlOptions, CrawlOrchestrator, start_crawl

from fakes import (
    ExplodingExtractor,
    FakeFetcher,
    RedirectingFetcher,
    ShopExtractor,
    category_html,
    fast_robots,
    product_html,
    robots_gate,
)

TOLERANCE = 5e-3
CATEGORY = "https://shop.test/women/tops"


def fast_options(**overrides):
    opts = dict(link_delay=0.0, requests_per_minute_per_domain=60000, max_workers=4)
    opts.update(overrides)
    return CrawlOptions(**opts)


def shop_pages(count, prefix="https://shop.test/p"):
    return {f"{prefix}/{i}.html": product_html(f"Item {i}") for i in range(count)}


def make(pages, options=None, robots=None, extractors=None, delay=0.0):
    fetcher = FakeFetcher(pages, delay=delay)
    orchestrator = CrawlOrchestrator(
        extractors or {"shop": ShopExtractor()},
        fetcher,
        options or fast_options(),
        robots=robots or fast_robots("shop.test"),
    )
    return orchestrator, fetcher


class TestCategoryExpansion:
    """Category pages turn into a capped list of product pages."""

    def test_links_capped_per_category(self):
        links = [f"/p/{i}.html" for i in range(30)]
        pages = {CATEGORY: category_html(links), **shop_pages(30)}
        orch, fetcher = make(pages, fast_options(max_products_per_category=5))

        report = orch.run([CATEGORY])

        assert [p.title for p in report.products] == [f"Item {i}" for i in range(5)]
        assert len(report.categories) == 1
        category = report.categories[0]
        assert category.url == CATEGORY
        assert category.discovered == 30
        assert len(category.enqueued) == 5
        assert fetcher.fetched == [CATEGORY] + [f"https://shop.test/p/{i}.html" for i in range(5)]
        assert orch.get_stats().total == 6

    def test_cap_applies_before_deduplication(self):
        links = ["/p/1.html", "/p/1.html#reviews", "/p/2.html"]
        pages = {CATEGORY: category_html(links), **shop_pages(3)}
        orch, _ = make(pages, fast_options(max_products_per_category=2))

        report = orch.run([CATEGORY])

        assert report.categories[0].enqueued == ("https://shop.test/p/1.html",)
        assert len(report.products) == 1

    def test_discovered_links_are_product_pages(self):
        pages = {CATEGORY: category_html(["/women/other-list"])}
        pages["https://shop.test/women/other-list"] = product_html("Listed")
        orch, fetcher = make(pages)

        report = orch.run([CATEGORY])

        entry = orch.frontier.get("https://shop.test/women/other-list")
        assert entry.kind is PageKind.PRODUCT
        assert entry.parent_url == CATEGORY
        assert [p.title for p in report.products] == ["Listed"]

    def test_redirected_pages_keep_frontier_urls(self):
        product_url = "https://shop.test/women/tops/p/0.html"
        pages = {CATEGORY: category_html(["p/0.html"]), product_url: product_html("Moved")}
        fetcher = RedirectingFetcher(pages)
        orch = CrawlOrchestrator(
            {"shop": ShopExtractor()}, fetcher, fast_options(), robots=fast_robots("shop.test")
        )

        report = orch.run([CATEGORY])

        # Relative links resolve against the page the browser ended up on
        assert report.categories[0].enqueued == (product_url,)
        product = report.products[0]
        assert product.source_url == product_url
        entry = orch.frontier.get(product.source_url)
        assert entry.state is UrlState.COMPLETED
        assert entry.parent_url == CATEGORY

    def test_malformed_link_does_not_stall_session(self):
        pages = {CATEGORY: category_html(["/p/0.html", "http://[oops/p.html"]), **shop_pages(1)}
        orch, _ = make(pages)

        async def main():
            items = []
            async for item in orch.crawl([CATEGORY]):
                items.append(item)
            return items

        items = asyncio.run(asyncio.wait_for(main(), timeout=3))

        category = next(i for i in items if isinstance(i, CategoryPage))
        assert category.discovered == 2
        assert category.enqueued == ("https://shop.test/p/0.html",)
        assert [i.title for i in items if isinstance(i, Product)] == ["Item 0"]
        stats = orch.get_stats()
        assert (stats.queued, stats.in_flight, stats.completed) == (0, 0, 2)

    def test_product_pages_do_not_expand(self):
        url = "https://shop.test/p/1.html"
        html = product_html("Solo").replace("</body>", "<div class='card'><a href='/p/2.html'>x</a></div></body>")
        orch, fetcher = make({url: html})

        report = orch.run([url])

        assert len(report.products) == 1
        assert orch.get_stats().total == 1
        assert fetcher.fetched == [url]

    def test_category_fetch_asks_for_scroll_and_product_for_ready_selector(self):
        class ScrollingShop(ShopExtractor):
            ready_selector = ".title"
            category_scroll_passes = 3

        pages = {CATEGORY: category_html(["/p/0.html"]), **shop_pages(1)}
        orch, fetcher = make(pages, extractors={"shop": ScrollingShop()})

        orch.run([CATEGORY])

        category_opts, product_opts = fetcher.options
        assert category_opts.scroll_passes == 3
        assert category_opts.wait_for_selector is None
        assert product_opts.scroll_passes == 0
        assert product_opts.wait_for_selector == ".title"


class TestPolicy:
    """robots.txt decides what may be fetched."""

    def test_disallowed_url_never_fetched(self):
        robots = robots_gate({"shop.test": "User-agent: *\nDisallow: /private\nCrawl-delay: 0\n"})
        private = "https://shop.test/private/secret.html"
        public = "https://shop.test/p/1.html"
        orch, fetcher = make({private: product_html("Secret"), public: product_html("Public")},
                             robots=robots)

        report = orch.run([private, public])

        assert private not in fetcher.fetched
        assert [p.title for p in report.products] == ["Public"]
        assert [(f.url, f.kind) for f in report.failures] == [(private, "policy_violation")]
        assert orch.frontier.get(private).state is UrlState.FAILED

    def test_disallowed_discovered_links_fail_individually(self):
        robots = robots_gate({"shop.test": "User-agent: *\nDisallow: /p/1\nCrawl-delay: 0\n"})
        pages = {CATEGORY: category_html(["/p/0.html", "/p/1.html", "/p/2.html"]), **shop_pages(3)}
        orch, fetcher = make(pages, robots=robots)

        report = orch.run([CATEGORY])

        assert sorted(p.title for p in report.products) == ["Item 0", "Item 2"]
        assert report.failures_by_kind() == {"policy_violation": 1}
        assert "https://shop.test/p/1.html" not in fetcher.fetched

    def test_ignoring_robots(self):
        robots = robots_gate({"shop.test": "User-agent: *\nDisallow: /\n"}, respect_robots=False)
        url = "https://shop.test/p/1.html"
        orch, fetcher = make({url: product_html("Open")}, robots=robots)

        report = orch.run([url])

        assert len(report.products) == 1


class TestFailures:
    """Per-URL failures are terminal and never stop the session."""

    def test_failures_are_isolated(self):
        good = shop_pages(3)
        missing = "https://shop.test/p/404.html"
        untitled = "https://shop.test/p/untitled.html"
        pages = {**good, untitled: "<html><body><span class='price'>$5</span></body></html>"}
        orch, _ = make(pages)

        report = orch.run(list(good) + [missing, untitled])

        assert len(report.products) == 3
        assert {(f.url, f.kind) for f in report.failures} == {
            (missing, "navigation_error"),
            (untitled, "extraction_error"),
        }

    def test_every_dequeued_url_ends_terminal(self):
        links = [f"/p/{i}.html" for i in range(6)] + ["/p/gone.html"]
        pages = {CATEGORY: category_html(links), **shop_pages(6)}
        orch, _ = make(pages)

        async def main():
            items = []
            async for item in orch.crawl([CATEGORY, "https://elsewhere.test/p/1.html"]):
                items.append(item)
            return items

        items = asyncio.run(main())
        stats = orch.get_stats()

        assert stats.in_flight == 0
        assert stats.queued == 0
        assert stats.completed + stats.failed == stats.dequeued == stats.total == 9
        assert len(items) == stats.total
        assert all(e.is_terminal for e in orch.frontier.entries())

    def test_unsupported_retailer(self):
        url = "https://elsewhere.test/p/1.html"
        orch, fetcher = make({url: product_html("x")})

        report = orch.run([url])

        failure = report.failures[0]
        assert failure.kind == "extraction_error"
        assert isinstance(failure.error, UnsupportedRetailer)
        assert fetcher.fetched == []

    def test_unexpected_fetch_error_becomes_navigation_error(self):
        url = "https://shop.test/p/1.html"
        orch, _ = make({url: RuntimeError("socket closed")})

        report = orch.run([url])

        assert report.failures[0].kind == "navigation_error"

    def test_unexpected_extractor_error_becomes_extraction_error(self):
        orch, _ = make(shop_pages(2), extractors={"shop": ExplodingExtractor()})

        report = orch.run(list(shop_pages(2)))

        assert report.failures_by_kind() == {"extraction_error": 2}
        assert report.products == []

    def test_unexpected_error_after_fetch_fails_only_that_url(self):
        class PartialShop(ShopExtractor):
            async def extract(self, document):
                if document.url.endswith("/1.html"):
                    return None
                return await super().extract(document)

        pages = shop_pages(3)
        orch, _ = make(pages, extractors={"shop": PartialShop()})

        report = asyncio.run(asyncio.wait_for(orch.collect(list(pages)), timeout=5))

        assert [p.title for p in report.products] == ["Item 0", "Item 2"]
        failure = report.failures[0]
        assert (failure.url, failure.kind) == ("https://shop.test/p/1.html", "extraction_error")
        assert "Unexpected error" in failure.message
        assert orch.get_stats().in_flight == 0

    def test_fetch_timeout(self, monkeypatch):
        monkeypatch.setattr(orchestrator_module, "_FETCH_TIMEOUT_GRACE", 0.0)
        url = "https://shop.test/p/0.html"
        orch, _ = make(shop_pages(1), fast_options(fetch_timeout=0.05), delay=2.0)

        start = time.monotonic()
        report = orch.run([url])

        assert time.monotonic() - start < 1.5
        assert report.failures[0].kind == "navigation_error"
        assert isinstance(report.failures[0].error, NavigationError)
        assert "timed out" in report.failures[0].message


class TestPoliteness:
    """Request spacing and per-domain serialization."""

    def test_one_request_at_a_time_per_domain(self):
        pages = {**shop_pages(4), **shop_pages(4, prefix="https://outlet.test/p")}
        robots = fast_robots("shop.test", "outlet.test")
        orch, fetcher = make(pages, robots=robots, delay=0.03,
                             extractors={"shop": ShopExtractor(["shop.test", "outlet.test"])})

        report = orch.run(list(pages))

        assert len(report.products) == 8
        assert fetcher.max_active_per_domain == {"shop.test": 1, "outlet.test": 1}
        assert fetcher.max_active == 2

    def test_worker_limit_bounds_parallel_domains(self):
        domains = ["a.test", "b.test", "c.test"]
        pages = {}
        for d in domains:
            pages.update(shop_pages(2, prefix=f"https://{d}/p"))
        orch, fetcher = make(pages, fast_options(max_workers=1), robots=fast_robots(*domains),
                             delay=0.02, extractors={"shop": ShopExtractor(domains)})

        report = orch.run(list(pages))

        assert len(report.products) == 6
        assert fetcher.max_active == 1

    def test_rate_limit_spacing_per_domain(self):
        pages = {**shop_pages(3), **shop_pages(3, prefix="https://outlet.test/p")}
        options = fast_options(requests_per_minute_per_domain={"shop.test": 600},
                               default_requests_per_minute=60000)
        orch, fetcher = make(pages, options, robots=fast_robots("shop.test", "outlet.test"),
                             extractors={"shop": ShopExtractor(["shop.test", "outlet.test"])})

        orch.run(list(pages))

        shop_times = fetcher.fetch_times["shop.test"]
        gaps = [b - a for a, b in zip(shop_times, shop_times[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.1 - TOLERANCE for gap in gaps)
        assert orch.rate_limiter.interval_for("outlet.test") == pytest.approx(0.001)

    def test_crawl_delay_is_a_floor(self):
        robots = robots_gate({"shop.test": "User-agent: *\nCrawl-delay: 0.15\n"})
        orch, fetcher = make(shop_pages(2), robots=robots)

        orch.run(list(shop_pages(2)))

        first, second = fetcher.fetch_times["shop.test"]
        assert second - first >= 0.15 - TOLERANCE

    def test_link_delay_before_discovered_pages(self):
        pages = {CATEGORY: category_html(["/p/0.html"]), **shop_pages(1)}
        orch, fetcher = make(pages, fast_options(link_delay=0.1))

        orch.run([CATEGORY])

        category_at, product_at = fetcher.fetch_times["shop.test"]
        assert product_at - category_at >= 0.1 - TOLERANCE


class TestSession:
    """Session lifecycle: stop, reuse, fetcher management."""

    def test_stop_drains_without_new_fetches(self):
        links = [f"/p/{i}.html" for i in range(10)]
        pages = {CATEGORY: category_html(links), **shop_pages(10)}
        orch, fetcher = make(pages, delay=0.05)

        async def main():
            items = []
            async for item in orch.crawl([CATEGORY]):
                items.append(item)
                if isinstance(item, CategoryPage):
                    orch.stop()
            return items

        items = asyncio.run(main())
        stats = orch.get_stats()
        failures = [i for i in items if isinstance(i, CrawlFailure)]

        assert orch.stopped
        assert stats.in_flight == 0
        assert stats.total == 11
        assert stats.completed + stats.failed == len(items)
        assert sum(isinstance(i, Product) for i in items) <= 1
        assert all(f.kind == "cancelled" for f in failures)
        assert len(fetcher.fetched) <= 2

    def test_stop_before_start_fetches_nothing(self):
        orch, fetcher = make(shop_pages(3))
        orch.stop()

        report = orch.run(list(shop_pages(3)))

        assert fetcher.fetched == []
        assert report.products == []
        assert orch.get_stats().queued == 3

    def test_one_session_per_orchestrator(self):
        orch, _ = make(shop_pages(1))
        orch.run(list(shop_pages(1)))

        async def again():
            async for _ in orch.crawl(["https://shop.test/p/0.html"]):
                pass

        with pytest.raises(RuntimeError):
            asyncio.run(again())

    def test_run_manages_fetcher_lifecycle(self):
        orch, fetcher = make(shop_pages(1))
        orch.run(list(shop_pages(1)))
        assert fetcher.started and fetcher.closed

    def test_empty_seed_list(self):
        orch, fetcher = make({})
        report = orch.run([])
        assert report.products == [] and report.failures == []
        assert fetcher.fetched == []

    def test_start_crawl_streams_items(self):
        fetcher = FakeFetcher(shop_pages(2))

        async def main():
            return [
                item async for item in start_crawl(
                    list(shop_pages(2)),
                    ExtractorRegistry([ShopExtractor()]),
                    fetcher,
                    fast_options(respect_robots=False),
                )
            ]

        items = asyncio.run(main())
        assert sorted(i.title for i in items) == ["Item 0", "Item 1"]


class TestOptions:

    @pytest.mark.parametrize("overrides", [
        {"max_products_per_category": -1},
        {"max_workers": 0},
        {"link_delay": -0.5},
        {"fetch_timeout": 0},
        {"requests_per_minute_per_domain": 0},
    ])
    def test_out_of_range_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            CrawlOptions(**overrides)

    def test_zero_cap_enqueues_nothing(self):
        pages = {CATEGORY: category_html(["/p/0.html"]), **shop_pages(1)}
        orch, fetcher = make(pages, fast_options(max_products_per_category=0))

        report = orch.run([CATEGORY])

        assert report.categories[0].discovered == 1
        assert report.categories[0].enqueued == ()
        assert fetcher.fetched == [CATEGORY]

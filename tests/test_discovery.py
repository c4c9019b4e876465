"""Tests for listing-page URL discovery."""

import random
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_crawler.discovery import UrlDiscovery, extract_listing_urls
from catalog_crawler.errors import BlockedError, NavigationError, NotInitializedError
from catalog_crawler.executor import ResilientExecutor
from catalog_crawler.models import DelayRange, ScrapeConfig, SiteProfile
from catalog_crawler.session import SessionManager
from tests.fakes import BLOCK_PAGE, FakePlaywrightFactory, FakeSite, SleepRecorder, listing_markup

LISTING_URL = "https://www.example.com/shop/skincare"


class TestExtractListingUrls(unittest.TestCase):
    def test_limit_returns_first_links_in_page_order(self):
        urls = extract_listing_urls(listing_markup(7), LISTING_URL, 5)

        self.assertEqual(urls, [f"https://www.example.com/p/product-{i}" for i in range(1, 6)])

    def test_smaller_limits_are_prefixes(self):
        markup = listing_markup(7)
        full = extract_listing_urls(markup, LISTING_URL, 10)

        self.assertEqual(len(full), 7)
        for limit in range(1, 8):
            urls = extract_listing_urls(markup, LISTING_URL, limit)
            self.assertEqual(urls, full[:limit])
            self.assertLessEqual(len(urls), limit)

    def test_duplicates_and_fragments_collapse(self):
        markup = (
            '<body>'
            '<a data-testid="product-link" href="/p/serum">Serum</a>'
            '<a data-testid="product-link" href="/p/serum#reviews">Serum reviews</a>'
            '<a data-testid="product-link" href="https://www.example.com/p/serum">Serum again</a>'
            '<a data-testid="product-link" href="/p/toner">Toner</a>'
            '</body>'
        )

        urls = extract_listing_urls(markup, LISTING_URL, 10)

        self.assertEqual(urls, ["https://www.example.com/p/serum", "https://www.example.com/p/toner"])
        self.assertEqual(len(urls), len(set(urls)))

    def test_fewer_candidates_than_limit_is_not_an_error(self):
        self.assertEqual(len(extract_listing_urls(listing_markup(2), LISTING_URL, 10)), 2)
        self.assertEqual(extract_listing_urls("<body><p>No products</p></body>", LISTING_URL, 10), [])

    def test_fallback_selectors_require_product_path(self):
        site = SiteProfile(fallback_link_selectors=(".missing a", ".product-tile a"))
        markup = (
            '<body><div class="product-tile">'
            '<a href="/brand/acme">Acme</a>'
            '<a href="/p/night-cream">Night Cream</a>'
            '</div></body>'
        )
        hits = {}

        urls = extract_listing_urls(markup, LISTING_URL, 5, site, hits)

        self.assertEqual(urls, ["https://www.example.com/p/night-cream"])
        self.assertEqual(hits[site.primary_link_selector], 0)
        self.assertEqual(hits[".missing a"], 0)
        self.assertEqual(hits[".product-tile a"], 2)

    def test_fallbacks_ignored_when_primary_matches(self):
        markup = listing_markup(1) + '<a href="/p/other">Other</a>'
        hits = {}

        urls = extract_listing_urls(markup, LISTING_URL, 5, hits=hits)

        self.assertEqual(urls, ["https://www.example.com/p/product-1"])
        self.assertEqual(list(hits), [SiteProfile().primary_link_selector])

    def test_invalid_selector_counts_as_no_match(self):
        site = SiteProfile(primary_link_selector="a[", fallback_link_selectors=('a[href*="/p/"]',))
        urls = extract_listing_urls('<body><a href="/p/x">X</a></body>', LISTING_URL, 5, site)
        self.assertEqual(urls, ["https://www.example.com/p/x"])


class TestUrlDiscovery(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.site = FakeSite()
        self.factory = FakePlaywrightFactory(self.site)
        self.config = ScrapeConfig(delay_range=DelayRange(100, 200), max_retries=3, jitter_ms=0)
        self.session = SessionManager(self.config, playwright_factory=self.factory)
        self.sleep = SleepRecorder()
        self.executor = ResilientExecutor.from_config(self.config, sleep=self.sleep)
        self.discovery = UrlDiscovery(self.session, self.executor, rng=random.Random(5))
        await self.session.initialize()

    async def asyncTearDown(self):
        await self.session.close()

    async def test_discover_collects_urls_with_dwell(self):
        self.site.add(LISTING_URL, listing_markup(7))

        result = await self.discovery.discover(LISTING_URL, 5)

        self.assertEqual(result.urls, [f"https://www.example.com/p/product-{i}" for i in range(1, 6)])
        self.assertEqual(result.debug.page_title, "Skincare")
        self.assertEqual(result.debug.final_url, LISTING_URL)
        self.assertTrue(result.debug.has_main)
        self.assertEqual(result.debug.selector_hits[SiteProfile().primary_link_selector], 7)

        page = self.factory.browser.contexts[0].pages[0]
        self.assertEqual(len(page.mouse.moves), 1)
        self.assertEqual(len(page.waits), 1)
        self.assertTrue(100 <= page.waits[0] <= 200)
        self.assertEqual(page.waited_selectors, [SiteProfile().ready_selector])
        self.assertEqual(self.factory.browser.goto_calls, [("domcontentloaded", self.config.timeout_ms)])
        self.assertEqual(self.session.open_contexts, 0)

    async def test_transient_failures_are_retried(self):
        self.site.add(LISTING_URL, listing_markup(3))
        self.site.fail(LISTING_URL, times=2)

        result = await self.discovery.discover(LISTING_URL, 5)

        self.assertEqual(len(result.urls), 3)
        self.assertEqual(len(self.sleep.calls), 2)
        self.assertEqual(self.site.visits.count(LISTING_URL), 3)

    async def test_persistent_failure_raises_navigation_error(self):
        self.site.add(LISTING_URL, listing_markup(3))
        self.site.fail(LISTING_URL)

        with self.assertRaises(NavigationError) as ctx:
            await self.discovery.discover(LISTING_URL, 5)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsNotNone(ctx.exception.debug)
        self.assertEqual(ctx.exception.debug.attempts, 3)
        self.assertEqual(self.session.open_contexts, 0)

    async def test_retryable_status_is_retried(self):
        self.site.add(LISTING_URL, listing_markup(3), status=503)

        with self.assertRaises(NavigationError):
            await self.discovery.discover(LISTING_URL, 5)

        self.assertEqual(self.site.visits.count(LISTING_URL), 3)

    async def test_block_page_raises_blocked_error(self):
        self.site.add(LISTING_URL, BLOCK_PAGE)

        with self.assertRaises(BlockedError) as ctx:
            await self.discovery.discover(LISTING_URL, 5)

        self.assertEqual(ctx.exception.marker, "access denied")
        self.assertTrue(ctx.exception.debug.blocked)
        self.assertEqual(self.site.visits.count(LISTING_URL), 1)
        self.assertEqual(self.session.open_contexts, 0)

    async def test_invalid_limit(self):
        with self.assertRaises(ValueError):
            await self.discovery.discover(LISTING_URL, 0)

    async def test_requires_live_session(self):
        await self.session.close()
        with self.assertRaises(NotInitializedError):
            await self.discovery.discover(LISTING_URL, 5)


if __name__ == "__main__":
    unittest.main()

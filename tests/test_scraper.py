"""Tests for the CatalogScraper facade and synchronous entry points."""

import json
import random
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_crawler.errors import BlockedError, NotInitializedError
from catalog_crawler.models import DelayRange, ScrapeConfig
from catalog_crawler.scraper import CatalogScraper, run_crawl, run_selector_scrape
from tests.fakes import (
    BLOCK_PAGE,
    FakePlaywrightFactory,
    FakeSite,
    SleepRecorder,
    listing_markup,
    product_markup,
)

LISTING_URL = "https://www.example.com/shop/skincare"
INGREDIENTS = "water, glycerin, cetyl alcohol, fragrance, citric acid"


def build_site(product_count: int, nameless=()) -> FakeSite:
    site = FakeSite()
    site.add(LISTING_URL, listing_markup(product_count))
    for i in range(1, product_count + 1):
        name = None if i in nameless else f"Product {i}"
        site.add(f"https://www.example.com/p/product-{i}", product_markup(name, INGREDIENTS))
    return site


FAST_CONFIG = ScrapeConfig(jitter_ms=0, settle_ms=0, delay_range=DelayRange(0, 0))


class TestCatalogScraper(unittest.IsolatedAsyncioTestCase):
    def _scraper(self, site, config=FAST_CONFIG):
        self.factory = FakePlaywrightFactory(site)
        return CatalogScraper(
            config,
            playwright_factory=self.factory,
            sleep=SleepRecorder(),
            rng=random.Random(4),
        )

    async def test_discover_and_fetch_drops_nameless_item(self):
        scraper = self._scraper(build_site(3, nameless={2}))

        async with scraper:
            items = await scraper.discover_and_fetch(LISTING_URL, 3)
            open_contexts = scraper.session.open_contexts

        self.assertEqual([item.name for item in items], ["Product 1", "Product 3"])
        self.assertTrue(all(item.category == "Skincare" for item in items))
        self.assertEqual(open_contexts, 0)

    async def test_crawl_report(self):
        scraper = self._scraper(build_site(7))

        async with scraper:
            report = await scraper.crawl(LISTING_URL, 5)

        self.assertEqual(len(report.discovery.urls), 5)
        self.assertEqual(len(report.items), 5)
        data = report.as_dict()
        self.assertEqual((data["discovered"], data["extracted"], data["failed"]), (5, 5, 0))
        # one listing context plus one per product
        self.assertEqual(len(self.factory.browser.contexts), 6)

    async def test_blocked_discovery_propagates(self):
        site = FakeSite()
        site.add(LISTING_URL, BLOCK_PAGE)
        scraper = self._scraper(site)

        async with scraper:
            with self.assertRaises(BlockedError):
                await scraper.discover_and_fetch(LISTING_URL, 3)

    async def test_empty_listing_returns_no_items(self):
        site = FakeSite()
        site.add(LISTING_URL, "<html><body><p>Nothing here</p></body></html>")
        scraper = self._scraper(site)

        async with scraper:
            self.assertEqual(await scraper.discover_and_fetch(LISTING_URL, 3), [])

    async def test_operations_require_initialize(self):
        scraper = self._scraper(FakeSite())

        with self.assertRaises(NotInitializedError):
            await scraper.discover_and_fetch(LISTING_URL, 3)
        with self.assertRaises(NotInitializedError):
            await scraper.scrape_by_selectors(LISTING_URL, {"title": ["h1"]})

        await scraper.close()

    async def test_initialize_with_new_config_replaces_session(self):
        scraper = self._scraper(build_site(1))
        await scraper.initialize()
        first_session = scraper.session

        new_config = ScrapeConfig(headless=False, settle_ms=0, jitter_ms=0, delay_range=DelayRange(0, 0))
        await scraper.initialize(new_config)

        self.assertIsNot(scraper.session, first_session)
        self.assertIs(scraper.session.config, new_config)
        self.assertTrue(self.factory.browsers[0].closed)
        self.assertFalse(self.factory.browser.launch_options["headless"])
        await scraper.close()
        await scraper.close()
        self.assertTrue(self.factory.browser.closed)

    async def test_scrape_by_selectors(self):
        scraper = self._scraper(build_site(1))

        async with scraper:
            fields, debug = await scraper.scrape_by_selectors(
                "https://www.example.com/p/product-1", {"name": ['h1[data-testid="product-title"]']}
            )

        self.assertEqual(fields["name"][0].text, "Product 1")
        self.assertEqual(debug.page_title, "Product 1")


class TestSyncEntryPoints(unittest.TestCase):
    def setUp(self):
        self.config = {
            "scraping": {
                "settle_ms": 0,
                "delay_range": {"min_ms": 0, "max_ms": 0},
                "backoff": {"jitter_ms": 0},
            },
            "output": {"save_json": False},
        }

    def test_run_crawl_returns_results_and_writes_json(self):
        factory = FakePlaywrightFactory(build_site(3, nameless={3}))
        with tempfile.TemporaryDirectory() as tmp, patch("catalog_crawler.session.async_playwright", factory):
            output = str(Path(tmp) / "crawl.json")
            results = run_crawl(LISTING_URL, 3, config=self.config, output_path=output)

            saved = json.loads(Path(output).read_text(encoding="utf-8"))

        self.assertEqual(results["status"], "partial")
        self.assertEqual(results["extracted"], 2)
        self.assertEqual(results["failed"], 1)
        self.assertEqual(results["output_path"], output)
        self.assertEqual([item["name"] for item in saved["items"]], ["Product 1", "Product 2"])
        self.assertTrue(factory.browser.closed)

    def test_run_crawl_headless_override(self):
        factory = FakePlaywrightFactory(build_site(1))
        with patch("catalog_crawler.session.async_playwright", factory):
            results = run_crawl(LISTING_URL, 1, config=self.config, headless=False)

        self.assertEqual(results["status"], "completed")
        self.assertIsNone(results["output_path"])
        self.assertFalse(factory.browser.launch_options["headless"])

    def test_run_selector_scrape(self):
        factory = FakePlaywrightFactory(build_site(1))
        with patch("catalog_crawler.session.async_playwright", factory):
            results = run_selector_scrape(
                "https://www.example.com/p/product-1",
                {"title": ["h1"]},
                config=self.config,
            )

        self.assertEqual(results["fields"]["title"][0]["text"], "Product 1")
        self.assertFalse(results["debug"]["blocked"])


if __name__ == "__main__":
    unittest.main()

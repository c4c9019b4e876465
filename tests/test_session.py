"""Tests for browser session ownership and context lifecycle."""

import asyncio
import random
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_crawler.errors import LaunchError, NotInitializedError
from catalog_crawler.fingerprint import FingerprintGenerator
from catalog_crawler.models import ScrapeConfig
from catalog_crawler.session import LAUNCH_ARGS, SessionManager
from tests.fakes import FakePlaywrightFactory


class TestSessionManager(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.factory = FakePlaywrightFactory()
        self.config = ScrapeConfig(timeout_ms=15000, proxy_url="http://proxy.local:3128")
        self.manager = SessionManager(
            self.config,
            fingerprints=FingerprintGenerator(rng=random.Random(11)),
            playwright_factory=self.factory,
        )

    async def asyncTearDown(self):
        await self.manager.close()

    async def test_initialize_launches_with_stealth_args_and_proxy(self):
        await self.manager.initialize()

        options = self.factory.browser.launch_options
        self.assertTrue(options["headless"])
        self.assertEqual(options["args"], LAUNCH_ARGS)
        self.assertIn("--disable-blink-features=AutomationControlled", options["args"])
        self.assertEqual(options["proxy"], {"server": "http://proxy.local:3128"})
        self.assertTrue(self.manager.is_live)

    async def test_no_proxy_option_when_unset(self):
        manager = SessionManager(ScrapeConfig(), playwright_factory=self.factory)
        await manager.initialize()
        self.assertNotIn("proxy", self.factory.browser.launch_options)
        await manager.close()

    async def test_context_before_initialize_raises(self):
        with self.assertRaises(NotInitializedError):
            async with self.manager.context():
                pass

    async def test_context_uses_fresh_fingerprint_and_init_script(self):
        await self.manager.initialize()

        async with self.manager.context() as scope:
            options = scope.context.options
            self.assertEqual(options["user_agent"], scope.profile.user_agent)
            self.assertEqual(options["viewport"], scope.profile.viewport)
            self.assertEqual(options["locale"], scope.profile.locale)
            self.assertEqual(options["timezone_id"], scope.profile.timezone_id)
            self.assertEqual(options["geolocation"], scope.profile.geolocation)
            self.assertEqual(options["permissions"], ["geolocation"])
            self.assertEqual(options["extra_http_headers"], scope.profile.accept_headers)
            self.assertEqual(scope.context.default_timeout, 15000)
            self.assertEqual(scope.context.default_navigation_timeout, 15000)
            self.assertEqual(len(scope.context.init_scripts), 1)
            self.assertIn("webdriver", scope.context.init_scripts[0])

    async def test_context_closed_exactly_once_on_success_and_failure(self):
        await self.manager.initialize()

        async with self.manager.context():
            pass
        with self.assertRaises(RuntimeError):
            async with self.manager.context():
                raise RuntimeError("operation failed")

        contexts = self.factory.browser.contexts
        self.assertEqual(len(contexts), 2)
        self.assertEqual([c.close_count for c in contexts], [1, 1])
        self.assertEqual(self.manager.contexts_opened, 2)
        self.assertEqual(self.manager.contexts_closed, 2)
        self.assertEqual(self.manager.open_contexts, 0)

    async def test_launch_failure_raises_launch_error(self):
        factory = FakePlaywrightFactory(launch_error=RuntimeError("chromium missing"))
        manager = SessionManager(ScrapeConfig(), playwright_factory=factory)

        with self.assertRaises(LaunchError):
            await manager.initialize()

        self.assertFalse(manager.is_live)
        self.assertTrue(factory.drivers[0].stopped)

    async def test_reinitialize_closes_previous_browser(self):
        await self.manager.initialize()
        first_browser = self.factory.browser
        first_driver = self.factory.drivers[0]

        await self.manager.initialize()

        self.assertEqual(len(self.factory.browsers), 2)
        self.assertTrue(first_browser.closed)
        self.assertTrue(first_driver.stopped)
        self.assertFalse(self.factory.browser.closed)
        self.assertTrue(self.manager.is_live)

    async def test_close_is_idempotent(self):
        await self.manager.initialize()
        await self.manager.close()
        await self.manager.close()

        self.assertTrue(self.factory.browser.closed)
        self.assertFalse(self.manager.is_live)
        with self.assertRaises(NotInitializedError):
            async with self.manager.context():
                pass

    async def test_close_waits_for_in_flight_contexts(self):
        await self.manager.initialize()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold_context():
            async with self.manager.context():
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold_context())
        await entered.wait()
        closer = asyncio.create_task(self.manager.close())
        await asyncio.sleep(0)

        self.assertFalse(self.factory.browser.closed)
        with self.assertRaises(NotInitializedError):
            async with self.manager.context():
                pass

        release.set()
        await holder
        await closer

        self.assertTrue(self.factory.browser.closed)
        self.assertEqual(self.manager.open_contexts, 0)

    async def test_close_gives_up_after_drain_timeout(self):
        manager = SessionManager(ScrapeConfig(drain_timeout_ms=10), playwright_factory=self.factory)
        await manager.initialize()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold_context():
            async with manager.context():
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold_context())
        await entered.wait()

        await manager.close()
        self.assertTrue(self.factory.browser.closed)

        release.set()
        await holder
        self.assertEqual(manager.open_contexts, 0)

    async def test_scope_left_over_from_previous_browser_does_not_skew_drain(self):
        manager = SessionManager(ScrapeConfig(drain_timeout_ms=200), playwright_factory=self.factory)
        await manager.initialize()
        stale_entered = asyncio.Event()
        stale_release = asyncio.Event()

        async def hold_stale_context():
            async with manager.context():
                stale_entered.set()
                await stale_release.wait()

        stale = asyncio.create_task(hold_stale_context())
        await stale_entered.wait()
        await manager.close()

        await manager.initialize()
        stale_release.set()
        await stale

        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold_context():
            async with manager.context():
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold_context())
        await entered.wait()
        closer = asyncio.create_task(manager.close())
        await asyncio.sleep(0.05)

        self.assertFalse(self.factory.browsers[1].closed)

        release.set()
        await holder
        await closer
        self.assertTrue(self.factory.browsers[1].closed)
        self.assertEqual(manager.open_contexts, 0)

    async def test_async_context_manager(self):
        async with SessionManager(ScrapeConfig(), playwright_factory=self.factory) as manager:
            self.assertTrue(manager.is_live)
        self.assertTrue(self.factory.browser.closed)


if __name__ == "__main__":
    unittest.main()

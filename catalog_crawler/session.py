"""Browser session ownership and per-operation stealth contexts."""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional, Tuple

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from catalog_crawler.errors import LaunchError, NotInitializedError
from catalog_crawler.fingerprint import FingerprintGenerator, FingerprintProfile
from catalog_crawler.models import ScrapeConfig

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor,TranslateUI",
    "--disable-ipc-flooding-protection",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-default-apps",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]

_STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {
  get: () => undefined,
});

Object.defineProperty(navigator, 'plugins', {
  get: () => [
    {
      0: { type: "application/x-google-chrome-pdf", suffixes: "pdf", description: "Portable Document Format", enabledPlugin: null },
      description: "Portable Document Format",
      filename: "internal-pdf-viewer",
      length: 1,
      name: "Chrome PDF Plugin"
    }
  ],
});

Object.defineProperty(navigator, 'languages', {
  get: () => __LANGUAGES__,
});

Object.defineProperty(navigator, 'platform', {
  get: () => __PLATFORM__,
});

if (navigator.permissions) {
  const originalQuery = navigator.permissions.query;
  navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications' ?
      Promise.resolve({ state: (window.Notification && Notification.permission) || 'default' }) :
      originalQuery(parameters)
  );
}

window.chrome = {
  runtime: {},
  ...window.chrome
};
"""


def build_stealth_script(profile: FingerprintProfile) -> str:
    """Init script that hides automation flags and mirrors the profile's languages."""
    return (
        _STEALTH_SCRIPT
        .replace("__LANGUAGES__", json.dumps(list(profile.languages)))
        .replace("__PLATFORM__", json.dumps(profile.navigator_platform))
    )


class ScopeTracker:
    """Counts the context scopes opened against one launched browser."""

    def __init__(self):
        self.inflight = 0
        self.idle = asyncio.Event()
        self.idle.set()

    def enter(self):
        self.inflight += 1
        self.idle.clear()

    def exit(self):
        self.inflight = max(0, self.inflight - 1)
        if self.inflight == 0:
            self.idle.set()


@dataclass
class BrowsingContext:
    """An isolated browser context plus the identity it presents."""

    context: BrowserContext
    profile: FingerprintProfile

    async def new_page(self) -> Page:
        return await self.context.new_page()


class SessionManager:
    """Owns at most one browser process and hands out scoped contexts."""

    def __init__(
        self,
        config: ScrapeConfig,
        fingerprints: Optional[FingerprintGenerator] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ):
        """Initialize the manager. No browser is started until ``initialize``.

        Args:
            config: Session settings; kept for the manager's lifetime
            fingerprints: Profile generator (one profile per context)
            playwright_factory: Callable returning an object with an async
                ``start()``; defaults to Playwright's ``async_playwright``
        """
        self.config = config
        self.fingerprints = fingerprints or FingerprintGenerator()
        self._playwright_factory = playwright_factory or async_playwright

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._closing = False
        self._scopes: Optional[ScopeTracker] = None

        self.contexts_opened = 0
        self.contexts_closed = 0

    @property
    def is_live(self) -> bool:
        return self._browser is not None and not self._closing

    @property
    def open_contexts(self) -> int:
        return self.contexts_opened - self.contexts_closed

    async def initialize(self):
        """Start a fresh browser, tearing down any live one first."""
        if self._browser is not None or self._playwright is not None:
            logger.info("Existing browser session found; closing it before relaunch")
            await self.close()

        logger.info(
            f"Starting browser (headless={self.config.headless}, "
            f"proxy={'on' if self.config.proxy_url else 'off'})"
        )
        playwright = None
        try:
            playwright = await self._playwright_factory().start()
            launch_kwargs = {"headless": self.config.headless, "args": list(LAUNCH_ARGS)}
            if self.config.proxy_url:
                launch_kwargs["proxy"] = {"server": self.config.proxy_url}
            browser = await playwright.chromium.launch(**launch_kwargs)
        except Exception as e:
            logger.error(f"Browser launch failed: {e}")
            if playwright is not None:
                try:
                    await playwright.stop()
                except Exception as stop_error:
                    logger.debug(f"Playwright stop after failed launch raised: {stop_error}")
            raise LaunchError(f"Failed to launch browser: {e}") from e

        self._playwright = playwright
        self._browser = browser
        self._closing = False
        self._scopes = ScopeTracker()
        logger.info("Browser started successfully")

    async def _create_context(self) -> Tuple[BrowserContext, FingerprintProfile]:
        profile = self.fingerprints.generate()
        context = await self._browser.new_context(
            user_agent=profile.user_agent,
            viewport=profile.viewport,
            locale=profile.locale,
            timezone_id=profile.timezone_id,
            geolocation=profile.geolocation,
            permissions=["geolocation"],
            color_scheme="light",
            extra_http_headers=profile.accept_headers,
        )
        try:
            context.set_default_timeout(self.config.timeout_ms)
            context.set_default_navigation_timeout(self.config.timeout_ms)
            await context.add_init_script(script=build_stealth_script(profile))
        except Exception:
            await context.close()
            raise
        logger.debug(f"Context created: {profile.user_agent} | {profile.locale} | {profile.timezone_id}")
        return context, profile

    @asynccontextmanager
    async def context(self) -> AsyncIterator[BrowsingContext]:
        """Open one stealth context for the duration of an operation.

        The context is closed on every exit path.

        Raises:
            NotInitializedError: If no browser is live or close() has begun
        """
        if not self.is_live:
            raise NotInitializedError("Browser not initialized. Call initialize() first.")

        scopes = self._scopes
        scopes.enter()
        try:
            context, profile = await self._create_context()
            self.contexts_opened += 1
            try:
                yield BrowsingContext(context=context, profile=profile)
            finally:
                try:
                    await context.close()
                except Exception as e:
                    logger.warning(f"Context close failed: {e}")
                self.contexts_closed += 1
        finally:
            scopes.exit()

    async def close(self):
        """Stop the browser. Safe to call repeatedly.

        Operations still holding a context are given ``drain_timeout_ms`` to
        finish; new context requests are refused as soon as closing starts.
        """
        if self._browser is None and self._playwright is None:
            return

        self._closing = True
        scopes = self._scopes
        if scopes is not None and scopes.inflight:
            logger.info(f"Waiting for {scopes.inflight} in-flight operation(s) before closing browser")
            try:
                await asyncio.wait_for(scopes.idle.wait(), timeout=self.config.drain_timeout_ms / 1000.0)
            except asyncio.TimeoutError:
                logger.warning(f"{scopes.inflight} operation(s) still running; closing browser anyway")

        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None

        logger.info("Stopping browser...")
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Browser close failed: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Playwright stop failed: {e}")
        self._closing = False
        logger.info("Browser stopped")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

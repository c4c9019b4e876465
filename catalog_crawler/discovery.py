"""Listing-page URL discovery."""

import random
from typing import Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag
from loguru import logger

from catalog_crawler.errors import NavigationError, ScraperError
from catalog_crawler.executor import ResilientExecutor
from catalog_crawler.models import DiscoveryResult, SiteProfile
from catalog_crawler.navigation import (
    DEFAULT_BLOCK_MARKERS,
    fill_page_debug,
    load_page,
    raise_if_blocked,
    simulate_dwell,
)
from catalog_crawler.parsing import (
    fill_structure_debug,
    page_text,
    parse_markup,
    resolve_url,
    safe_select,
    strip_fragment,
)
from catalog_crawler.session import SessionManager

SKIPPED_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "#")


def links_from_soup(
    soup: BeautifulSoup,
    listing_url: str,
    limit: int,
    site: SiteProfile,
    hits: Optional[Dict[str, int]] = None,
) -> List[str]:
    """Harvest product URLs with the primary selector, then the fallbacks.

    Returns at most ``limit`` absolute URLs, de-duplicated, in page order.
    """
    if hits is None:
        hits = {}
    urls: Dict[str, None] = {}

    def _collect(elements: Iterable[Tag], require_pattern: bool) -> None:
        for element in elements:
            if len(urls) >= limit:
                return
            href = (element.get("href") or "").strip()
            if not href or href.startswith(SKIPPED_HREF_PREFIXES):
                continue
            if require_pattern and site.product_path_pattern and site.product_path_pattern not in href:
                continue
            urls.setdefault(strip_fragment(resolve_url(href, listing_url)), None)

    primary = safe_select(soup, site.primary_link_selector)
    hits[site.primary_link_selector] = len(primary)
    _collect(primary, require_pattern=False)

    if not urls:
        for selector in site.fallback_link_selectors:
            elements = safe_select(soup, selector)
            hits[selector] = len(elements)
            _collect(elements, require_pattern=True)
            if urls:
                logger.info(f"Primary link selector found nothing; fallback '{selector}' matched")
                break

    return list(urls)


def extract_listing_urls(
    markup: str,
    listing_url: str,
    limit: int,
    site: Optional[SiteProfile] = None,
    hits: Optional[Dict[str, int]] = None,
) -> List[str]:
    """Pure variant of discovery over already-fetched listing markup."""
    return links_from_soup(parse_markup(markup), listing_url, limit, site or SiteProfile(), hits)


class UrlDiscovery:
    """Loads one listing page in a fresh context and harvests detail URLs."""

    def __init__(
        self,
        session: SessionManager,
        executor: ResilientExecutor,
        site: Optional[SiteProfile] = None,
        block_markers: Optional[Dict[str, List[str]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.executor = executor
        self.site = site or SiteProfile()
        self.block_markers = block_markers if block_markers is not None else DEFAULT_BLOCK_MARKERS
        self._rng = rng

    async def discover(self, listing_url: str, limit: int) -> DiscoveryResult:
        """Collect up to ``limit`` candidate product URLs from a listing page.

        Fewer than ``limit`` URLs is a normal result when the page has fewer
        candidates.

        Raises:
            NotInitializedError: If the session is not live
            NavigationError: If the listing page could not be loaded
            BlockedError: If the listing page is a bot-defense page
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1 (got {limit})")

        config = self.session.config
        result = DiscoveryResult(listing_url=listing_url, limit=limit)
        debug = result.debug
        logger.info(f"Discovering up to {limit} product URLs from {listing_url}")

        async with self.session.context() as scope:
            page = await scope.new_page()

            async def _navigate():
                await load_page(
                    page,
                    listing_url,
                    timeout_ms=config.timeout_ms,
                    ready_selector=self.site.ready_selector,
                )
                await simulate_dwell(page, scope.profile.viewport, config.delay_range, self._rng)

            try:
                await self.executor.run(_navigate, description=f"Listing page {listing_url}")
            except Exception as e:
                debug.attempts = getattr(e, "attempts", None)
                debug.error = str(e)
                await fill_page_debug(page, debug)
                if isinstance(e, ScraperError):
                    e.debug = debug
                    raise
                raise NavigationError(
                    f"Failed to load listing page {listing_url}: {e}",
                    debug=debug,
                    attempts=debug.attempts,
                ) from e

            markup = await page.content()
            await fill_page_debug(page, debug)

        soup = parse_markup(markup)
        fill_structure_debug(soup, debug)
        raise_if_blocked(listing_url, debug.page_title, page_text(soup), self.block_markers, debug, markup)

        result.urls = links_from_soup(soup, listing_url, limit, self.site, debug.selector_hits)
        logger.info(f"Found {len(result.urls)} product URLs on {listing_url}")
        return result

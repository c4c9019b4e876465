"""Generic selector-map scraping of a single page."""

import random
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from loguru import logger

from catalog_crawler.errors import NavigationError, ScraperError
from catalog_crawler.executor import ResilientExecutor
from catalog_crawler.models import ElementMatch, ExtractionDebug
from catalog_crawler.navigation import (
    DEFAULT_BLOCK_MARKERS,
    fill_page_debug,
    load_page,
    raise_if_blocked,
    simulate_dwell,
)
from catalog_crawler.parsing import (
    element_text,
    fill_structure_debug,
    page_text,
    parse_markup,
    resolve_url,
    safe_select,
)
from catalog_crawler.session import SessionManager

SelectorMap = Dict[str, List[str]]
ScrapedFields = Dict[str, List[ElementMatch]]

DEFAULT_SELECTOR_MAP: SelectorMap = {
    "titles": ["h1", "h2", ".title", '[class*="title"]'],
    "links": ["a[href]"],
    "images": ["img[src]"],
    "text": ["p", ".description", '[class*="description"]'],
}


def extract_fields(
    soup: BeautifulSoup,
    base_url: str,
    selector_map: SelectorMap,
    hits: Optional[Dict[str, int]] = None,
) -> ScrapedFields:
    """Apply every field's selector chain, stopping at the first selector that matches.

    Hit counts are recorded for each attempted selector, keyed ``field:selector``.
    """
    if hits is None:
        hits = {}
    fields: ScrapedFields = {}

    for field_name, selectors in selector_map.items():
        matches: List[ElementMatch] = []
        for selector in selectors:
            elements = safe_select(soup, selector)
            hits[f"{field_name}:{selector}"] = len(elements)
            if not elements:
                continue
            matches = [
                ElementMatch(
                    text=element_text(element),
                    href=resolve_url(element.get("href"), base_url),
                    src=resolve_url(element.get("src"), base_url),
                    html=element.decode_contents(),
                )
                for element in elements
            ]
            break
        fields[field_name] = matches

    return fields


class SelectorScraper:
    """Scrapes one page with a caller-supplied selector map."""

    def __init__(
        self,
        session: SessionManager,
        executor: ResilientExecutor,
        block_markers: Optional[Dict[str, List[str]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.executor = executor
        self.block_markers = block_markers if block_markers is not None else DEFAULT_BLOCK_MARKERS
        self._rng = rng

    async def scrape(self, url: str, selector_map: Optional[SelectorMap] = None) -> Tuple[ScrapedFields, ExtractionDebug]:
        """Load ``url`` once and collect the matches of every field.

        Args:
            url: Page to scrape
            selector_map: Field name -> ordered selector fallback chain.
                Empty or None uses DEFAULT_SELECTOR_MAP.

        Returns:
            Tuple of (matches per field, debug information)

        Raises:
            NotInitializedError: If the session is not live
            NavigationError: If the page could not be loaded (carries debug)
            BlockedError: If the page is a bot-defense page, even when some
                fields matched
        """
        selector_map = selector_map or DEFAULT_SELECTOR_MAP
        debug = ExtractionDebug()
        config = self.session.config
        logger.info(f"Scraping {url} with {len(selector_map)} field(s)")

        async with self.session.context() as scope:
            page = await scope.new_page()

            async def _navigate():
                await load_page(page, url, timeout_ms=config.timeout_ms, settle_ms=config.settle_ms)
                await simulate_dwell(page, scope.profile.viewport, config.delay_range, self._rng)

            try:
                await self.executor.run(_navigate, description=f"Page {url}")
            except Exception as e:
                debug.attempts = getattr(e, "attempts", None)
                debug.error = str(e)
                await fill_page_debug(page, debug)
                if isinstance(e, ScraperError):
                    e.debug = debug
                    raise
                raise NavigationError(f"Failed to load {url}: {e}", debug=debug, attempts=debug.attempts) from e

            markup = await page.content()
            await fill_page_debug(page, debug)

        soup = parse_markup(markup)
        fill_structure_debug(soup, debug)
        fields = extract_fields(soup, debug.final_url or url, selector_map, debug.selector_hits)

        raise_if_blocked(url, debug.page_title, page_text(soup), self.block_markers, debug, markup)

        matched = sum(1 for matches in fields.values() if matches)
        logger.info(f"Matched {matched}/{len(fields)} field(s) on {url}")
        return fields, debug

"""Catalog crawler facade and synchronous entry points."""

import asyncio
import json
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from catalog_crawler.config_loader import (
    build_scrape_config,
    get_block_markers,
    get_extraction_thresholds,
    get_site_profile,
    get_user_agents,
    load_config,
)
from catalog_crawler.discovery import UrlDiscovery
from catalog_crawler.errors import NotInitializedError
from catalog_crawler.executor import ResilientExecutor
from catalog_crawler.extractor import HeuristicExtractor
from catalog_crawler.fetcher import BatchedDetailFetcher
from catalog_crawler.fingerprint import FingerprintGenerator
from catalog_crawler.models import (
    CrawlReport,
    DiscoveryResult,
    ExtractedItem,
    ExtractionDebug,
    ExtractionThresholds,
    ScrapeConfig,
    SiteProfile,
)
from catalog_crawler.navigation import DEFAULT_BLOCK_MARKERS
from catalog_crawler.parsing import category_from_url
from catalog_crawler.selector_scraper import ScrapedFields, SelectorMap, SelectorScraper
from catalog_crawler.session import SessionManager


class CatalogScraper:
    """Two-stage catalog crawler over one owned browser session.

    Usage::

        async with CatalogScraper(ScrapeConfig(headless=True)) as scraper:
            items = await scraper.discover_and_fetch(listing_url, 10)
    """

    def __init__(
        self,
        config: Optional[ScrapeConfig] = None,
        site: Optional[SiteProfile] = None,
        thresholds: Optional[ExtractionThresholds] = None,
        block_markers: Optional[Dict[str, List[str]]] = None,
        user_agents: Optional[List[str]] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or ScrapeConfig()
        self.site = site or SiteProfile()
        self.extractor = HeuristicExtractor(site=self.site, thresholds=thresholds)
        self.block_markers = block_markers if block_markers is not None else DEFAULT_BLOCK_MARKERS
        self.fingerprints = FingerprintGenerator(user_agents=user_agents, rng=rng)
        self._playwright_factory = playwright_factory
        self._sleep = sleep
        self._rng = rng

        self._session: Optional[SessionManager] = None
        self.executor = ResilientExecutor.from_config(self.config, sleep=sleep)

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        scrape_config: Optional[ScrapeConfig] = None,
        site: Optional[str] = None,
        **kwargs: Any,
    ) -> "CatalogScraper":
        """Build a scraper from a loaded config.yaml dictionary."""
        return cls(
            config=scrape_config or build_scrape_config(config),
            site=get_site_profile(config, site),
            thresholds=get_extraction_thresholds(config),
            block_markers=get_block_markers(config),
            user_agents=get_user_agents(config),
            **kwargs,
        )

    @property
    def session(self) -> SessionManager:
        if self._session is None or not self._session.is_live:
            raise NotInitializedError("Browser not initialized. Call initialize() first.")
        return self._session

    async def initialize(self, config: Optional[ScrapeConfig] = None):
        """Start (or restart) the browser session.

        Args:
            config: Replacement settings. A new session manager is created for
                them; the running session, if any, is closed first.
        """
        if config is not None and config != self.config:
            if self._session is not None:
                await self._session.close()
                self._session = None
            self.config = config
            self.executor = ResilientExecutor.from_config(config, sleep=self._sleep)

        if self._session is None:
            self._session = SessionManager(
                self.config,
                fingerprints=self.fingerprints,
                playwright_factory=self._playwright_factory,
            )
        await self._session.initialize()

    async def discover(self, listing_url: str, limit: int) -> DiscoveryResult:
        """Run only the discovery stage."""
        discovery = UrlDiscovery(self.session, self.executor, self.site, self.block_markers, self._rng)
        return await discovery.discover(listing_url, limit)

    async def crawl(self, listing_url: str, limit: int, category: Optional[str] = None) -> CrawlReport:
        """Discover up to ``limit`` product URLs and fetch every one of them.

        Per-product failures are recorded in the report's outcomes. Discovery
        failures and session-level errors are raised.
        """
        discovery = await self.discover(listing_url, limit)
        report = CrawlReport(listing_url=listing_url, limit=limit, discovery=discovery)
        if not discovery.urls:
            logger.warning(f"No product URLs found on {listing_url}")
            return report

        fetcher = BatchedDetailFetcher(
            self.session,
            self.executor,
            extractor=self.extractor,
            block_markers=self.block_markers,
            sleep=self._sleep,
            rng=self._rng,
        )
        report.outcomes = await fetcher.fetch_all(discovery.urls, category or category_from_url(listing_url))
        logger.info(
            f"Crawl of {listing_url} finished: {len(report.items)}/{len(discovery.urls)} products extracted"
        )
        return report

    async def discover_and_fetch(self, listing_url: str, limit: int) -> List[ExtractedItem]:
        """Best-effort list of products extracted from a listing page."""
        report = await self.crawl(listing_url, limit)
        return report.items

    async def scrape_by_selectors(
        self,
        url: str,
        selector_map: Optional[SelectorMap] = None,
    ) -> Tuple[ScrapedFields, ExtractionDebug]:
        """Scrape one page with a field -> selector chain map."""
        scraper = SelectorScraper(self.session, self.executor, self.block_markers, self._rng)
        return await scraper.scrape(url, selector_map)

    async def close(self):
        """Close the browser session. Safe to call repeatedly."""
        if self._session is not None:
            await self._session.close()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def save_results_json(results: Dict[str, Any], output_path: str) -> str:
    """Write a results dictionary as UTF-8 JSON and return the path."""
    out_path = Path(output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(results, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info(f"Results saved to {out_path}")
    return str(out_path)


def _resolve_output_path(config: Dict[str, Any], output_path: Optional[str], prefix: str) -> Optional[str]:
    if output_path:
        return output_path
    output_cfg = config.get("output", {}) or {}
    if not output_cfg.get("save_json", False):
        return None
    return str(Path(output_cfg.get("dir", "data/output")) / f"{prefix}_{_timestamp()}.json")


def run_crawl(
    listing_url: str,
    limit: int,
    config_path: Optional[str] = None,
    site: Optional[str] = None,
    headless: Optional[bool] = None,
    proxy_url: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    max_retries: Optional[int] = None,
    output_path: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run a complete discovery + detail crawl.

    Args:
        listing_url: Category or search page listing products
        limit: Maximum number of products to fetch
        config_path: Path to config file (ignored when ``config`` is given)
        site: Site profile name from config.yaml
        headless: Override the configured headless flag
        proxy_url: Override the configured proxy server
        timeout_ms: Override the configured navigation timeout
        max_retries: Override the configured attempt budget
        output_path: Write the results JSON here
        config: Already loaded configuration dictionary

    Returns:
        Dictionary with crawl results and statistics
    """
    config = config if config is not None else load_config(config_path)
    scrape_config = build_scrape_config(
        config,
        headless=headless,
        proxy_url=proxy_url,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
    scraper = CatalogScraper.from_config(config, scrape_config, site)
    started_at = datetime.now(timezone.utc).isoformat()

    async def _run() -> CrawlReport:
        async with scraper:
            return await scraper.crawl(listing_url, limit)

    report = asyncio.run(_run())

    results = report.as_dict()
    results["started_at"] = started_at
    results["completed_at"] = datetime.now(timezone.utc).isoformat()
    if results["extracted"] == 0:
        results["status"] = "failed"
    elif results["failed"]:
        results["status"] = "partial"
    else:
        results["status"] = "completed"
    results["output_path"] = None

    target = _resolve_output_path(config, output_path, "crawl")
    if target:
        results["output_path"] = save_results_json(results, target)
    return results


def run_discovery(
    listing_url: str,
    limit: int,
    config_path: Optional[str] = None,
    site: Optional[str] = None,
    headless: Optional[bool] = None,
    proxy_url: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run only the discovery stage and return the candidate URLs."""
    config = config if config is not None else load_config(config_path)
    scrape_config = build_scrape_config(config, headless=headless, proxy_url=proxy_url)
    scraper = CatalogScraper.from_config(config, scrape_config, site)

    async def _run() -> DiscoveryResult:
        async with scraper:
            return await scraper.discover(listing_url, limit)

    return asyncio.run(_run()).as_dict()


def run_selector_scrape(
    url: str,
    selector_map: Optional[SelectorMap] = None,
    config_path: Optional[str] = None,
    headless: Optional[bool] = None,
    proxy_url: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    max_retries: Optional[int] = None,
    output_path: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Scrape one page with a selector map.

    Returns:
        Dictionary with the matches per field and the debug information
    """
    config = config if config is not None else load_config(config_path)
    scrape_config = build_scrape_config(
        config,
        headless=headless,
        proxy_url=proxy_url,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
    scraper = CatalogScraper.from_config(config, scrape_config)

    async def _run() -> Tuple[ScrapedFields, ExtractionDebug]:
        async with scraper:
            return await scraper.scrape_by_selectors(url, selector_map)

    fields, debug = asyncio.run(_run())

    results = {
        "url": url,
        "scraped_at": datetime.now(timezone.utc).isoformat(),
        "fields": {name: [match.as_dict() for match in matches] for name, matches in fields.items()},
        "debug": debug.as_dict(),
        "output_path": None,
    }
    target = _resolve_output_path(config, output_path, "scrape")
    if target:
        results["output_path"] = save_results_json(results, target)
    return results

"""Concurrency-bounded detail page fetching."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from catalog_crawler.errors import FATAL_ERRORS, BlockedError, ExtractionFailure, NavigationError
from catalog_crawler.executor import ResilientExecutor
from catalog_crawler.extractor import HeuristicExtractor
from catalog_crawler.models import FetchOutcome
from catalog_crawler.navigation import (
    DEFAULT_BLOCK_MARKERS,
    fill_page_debug,
    load_page,
    random_delay_ms,
    raise_if_blocked,
)
from catalog_crawler.parsing import fill_structure_debug, page_text, parse_markup
from catalog_crawler.session import SessionManager


class BatchedDetailFetcher:
    """Fetches detail pages in sequential batches of concurrent operations.

    At most ``batch_size`` fetches are in flight at once. A batch fully
    settles before the next one starts, with a random pause in between.
    """

    def __init__(
        self,
        session: SessionManager,
        executor: ResilientExecutor,
        extractor: Optional[HeuristicExtractor] = None,
        block_markers: Optional[Dict[str, List[str]]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.executor = executor
        self.extractor = extractor or HeuristicExtractor()
        self.block_markers = block_markers if block_markers is not None else DEFAULT_BLOCK_MARKERS
        self._sleep = sleep or asyncio.sleep
        self._rng = rng

    async def fetch_all(self, urls: List[str], category: Optional[str] = None) -> List[FetchOutcome]:
        """Fetch and extract every URL.

        Args:
            urls: Detail page URLs, processed in order
            category: Optional category label stamped on every extracted item

        Returns:
            One FetchOutcome per URL, in submission order. Failed URLs have
            ``item`` set to None and ``error`` describing the failure.

        Raises:
            NotInitializedError: If the session is not live
            LaunchError: Re-raised after the batch in which it surfaced settles
        """
        config = self.session.config
        batch_size = config.batch_size
        batches = [urls[i:i + batch_size] for i in range(0, len(urls), batch_size)]
        outcomes: List[FetchOutcome] = []

        for index, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch {index}/{len(batches)} ({len(batch)} URLs)")
            results = await asyncio.gather(
                *(self.fetch_one(url, category) for url in batch),
                return_exceptions=True,
            )

            fatal: Optional[BaseException] = None
            for url, result in zip(batch, results):
                if isinstance(result, FetchOutcome):
                    outcomes.append(result)
                    continue
                if isinstance(result, FATAL_ERRORS) or not isinstance(result, Exception):
                    fatal = fatal or result
                    continue
                logger.error(f"Unexpected error fetching {url}: {result}")
                outcomes.append(FetchOutcome(url=url, error=str(result)))

            if fatal is not None:
                raise fatal

            succeeded = sum(1 for outcome in outcomes[-len(batch):] if outcome.succeeded)
            logger.info(f"Batch {index} done: {succeeded}/{len(batch)} items extracted")

            if index < len(batches):
                delay_ms = random_delay_ms(config.delay_range, self._rng)
                logger.debug(f"Waiting {delay_ms}ms before next batch")
                await self._sleep(delay_ms / 1000.0)

        total = sum(1 for outcome in outcomes if outcome.succeeded)
        logger.info(f"Extracted {total} of {len(urls)} products")
        return outcomes

    async def fetch_one(self, url: str, category: Optional[str] = None) -> FetchOutcome:
        """Fetch one detail page in its own context.

        Soft failures (navigation, block page, missing name) are reported in
        the returned outcome. Only session-level errors are raised.
        """
        outcome = FetchOutcome(url=url)
        debug = outcome.debug
        config = self.session.config

        async with self.session.context() as scope:
            page = await scope.new_page()

            async def _navigate():
                await load_page(page, url, timeout_ms=config.timeout_ms, settle_ms=config.settle_ms)

            try:
                await self.executor.run(_navigate, description=f"Detail page {url}")
            except FATAL_ERRORS:
                raise
            except Exception as e:
                debug.attempts = getattr(e, "attempts", None)
                debug.error = str(e)
                await fill_page_debug(page, debug)
                outcome.error = str(e) if isinstance(e, NavigationError) else f"Navigation to {url} failed: {e}"
                logger.warning(f"Skipping {url}: {outcome.error}")
                return outcome

            markup = await page.content()
            await fill_page_debug(page, debug)

        soup = parse_markup(markup)
        fill_structure_debug(soup, debug)
        try:
            raise_if_blocked(url, debug.page_title, page_text(soup), self.block_markers, debug, markup)
        except BlockedError as e:
            outcome.error = str(e)
            debug.error = str(e)
            logger.warning(f"Skipping {url}: {e}")
            return outcome

        item, strategies = self.extractor.extract_with_debug(markup, url)
        debug.strategies.update(strategies)
        if item is None:
            failure = ExtractionFailure(f"No product name found on {url}", debug=debug)
            outcome.error = str(failure)
            debug.error = str(failure)
            logger.warning(str(failure))
            return outcome

        if category:
            item.category = category
        outcome.item = item
        logger.debug(f"Extracted '{item.name}' from {url}")
        return outcome

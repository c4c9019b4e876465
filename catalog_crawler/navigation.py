"""Page loading, human-like dwell and block-page detection."""

import random
from typing import Dict, List, Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError, Page

from catalog_crawler.errors import BlockedError, NavigationError
from catalog_crawler.models import DelayRange, ExtractionDebug

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Lowercase substrings. "title" and "body" are matched against the page title and the
# visible body text, "markup" against the raw HTML (ids and class names of challenge pages).
DEFAULT_BLOCK_MARKERS = {
    "title": [
        "access denied",
        "blocked",
        "attention required",
        "just a moment",
    ],
    "body": [
        "access denied",
        "verify you are human",
        "checking your browser",
        "enable javascript and cookies",
    ],
    "markup": [
        "cf-challenge",
    ],
}


async def load_page(
    page: Page,
    url: str,
    timeout_ms: int,
    settle_ms: int = 0,
    ready_selector: Optional[str] = None,
    ready_timeout_ms: int = 10000,
) -> None:
    """Navigate ``page`` to ``url`` and wait until content is usable.

    Raises:
        NavigationError: If the page cannot be loaded or the server answered
            with a transient HTTP status
    """
    try:
        response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
    except PlaywrightError as e:
        raise NavigationError(f"Navigation to {url} failed: {e}") from e

    status = getattr(response, "status", None)
    if status in RETRYABLE_STATUS_CODES:
        raise NavigationError(f"Navigation to {url} returned HTTP {status}")

    if ready_selector:
        try:
            await page.wait_for_selector(ready_selector, timeout=min(ready_timeout_ms, timeout_ms))
        except PlaywrightError:
            logger.debug(f"Ready selector '{ready_selector}' not found on {url}, continuing anyway")

    if settle_ms > 0:
        await page.wait_for_timeout(settle_ms)


def random_delay_ms(delay_range: DelayRange, rng: Optional[random.Random] = None) -> int:
    rng = rng or random
    return rng.randint(delay_range.min_ms, delay_range.max_ms)


async def simulate_dwell(
    page: Page,
    viewport: Dict[str, int],
    delay_range: DelayRange,
    rng: Optional[random.Random] = None,
) -> None:
    """Move the cursor a little and pause for a random dwell time."""
    rng = rng or random
    x = rng.uniform(0, viewport.get("width", 1920))
    y = rng.uniform(0, viewport.get("height", 1080))
    await page.mouse.move(x, y, steps=rng.randint(3, 12))
    await page.wait_for_timeout(random_delay_ms(delay_range, rng))


def detect_block_marker(
    title: Optional[str],
    body_text: Optional[str],
    markers: Dict[str, List[str]],
    markup: Optional[str] = None,
) -> Optional[str]:
    """Return the marker that identifies a bot-defense page, if any."""
    title_lower = (title or "").lower()
    for marker in markers.get("title", []):
        if marker in title_lower:
            return marker

    body_lower = (body_text or "").lower()
    for marker in markers.get("body", []):
        if marker in body_lower:
            return marker

    markup_lower = (markup or "").lower()
    for marker in markers.get("markup", []):
        if marker in markup_lower:
            return marker
    return None


def raise_if_blocked(
    url: str,
    title: Optional[str],
    body_text: Optional[str],
    markers: Dict[str, List[str]],
    debug: ExtractionDebug,
    markup: Optional[str] = None,
) -> None:
    """Flag ``debug`` and raise BlockedError when the page is a block page."""
    marker = detect_block_marker(title, body_text, markers, markup)
    if marker is None:
        return
    debug.blocked = True
    debug.block_marker = marker
    raise BlockedError(
        f"Website blocked the request at {url} (marker: '{marker}')",
        marker=marker,
        debug=debug,
    )


async def fill_page_debug(page: Page, debug: ExtractionDebug) -> None:
    """Record title and final URL, tolerating a page that is already gone."""
    try:
        debug.page_title = await page.title()
    except PlaywrightError as e:
        logger.debug(f"Could not read page title: {e}")
    try:
        debug.final_url = page.url
    except PlaywrightError as e:
        logger.debug(f"Could not read page url: {e}")

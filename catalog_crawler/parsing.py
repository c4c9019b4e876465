"""BeautifulSoup helpers shared by the extraction stages."""

import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag
from loguru import logger
from soupsieve import SelectorSyntaxError

from catalog_crawler.models import ExtractionDebug

NOISE_TAGS = ["script", "style", "noscript", "template"]

_SPACE_BEFORE_PUNCT = re.compile(r"\s+([,.;:!?])")


def parse_markup(markup: str, strip_noise: bool = True) -> BeautifulSoup:
    soup = BeautifulSoup(markup or "", "html.parser")
    if strip_noise:
        for tag in soup.find_all(NOISE_TAGS):
            tag.decompose()
    return soup


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse runs of whitespace and drop spaces before punctuation."""
    if not text:
        return ""
    return _SPACE_BEFORE_PUNCT.sub(r"\1", " ".join(text.split()))


def element_text(element: Tag) -> str:
    return collapse_whitespace(element.get_text(" "))


def safe_select(soup: Tag, selector: str) -> List[Tag]:
    """Run a CSS selector, treating an invalid selector as zero matches."""
    if not selector:
        return []
    try:
        return soup.select(selector)
    except SelectorSyntaxError as e:
        logger.warning(f"Invalid selector '{selector}': {e}")
        return []


def first_text(soup: Tag, selectors: Iterable[str]) -> Optional[str]:
    """Text of the first element, across ``selectors`` in order, that has any."""
    for selector in selectors:
        for element in safe_select(soup, selector):
            text = element.get("content", "") if element.name == "meta" else element_text(element)
            text = collapse_whitespace(text)
            if text:
                return text
    return None


def first_attribute(soup: Tag, selectors: Iterable[str], attributes: Iterable[str]) -> Optional[str]:
    attributes = list(attributes)
    for selector in selectors:
        for element in safe_select(soup, selector):
            for attribute in attributes:
                value = (element.get(attribute) or "").strip()
                if value:
                    return value
    return None


def origin_of(url: str) -> str:
    parsed = urlsplit(url)
    return urlunsplit((parsed.scheme, parsed.netloc, "/", "", ""))


def resolve_url(value: Optional[str], base_url: str) -> Optional[str]:
    """Make ``value`` absolute against the origin of ``base_url``."""
    if not value:
        return None
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return value
    if value.startswith("//"):
        return f"{urlsplit(base_url).scheme or 'https'}:{value}"
    return urljoin(origin_of(base_url), value)


def strip_fragment(url: str) -> str:
    parsed = urlsplit(url)
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, parsed.query, ""))


def page_text(soup: BeautifulSoup) -> str:
    """Whitespace-collapsed visible text of a parsed document."""
    root = soup.body or soup
    return collapse_whitespace(root.get_text(" "))


def category_from_url(url: str) -> str:
    """Category label from the last path segment of a listing URL."""
    parts = [part for part in urlsplit(url).path.split("/") if part]
    if not parts:
        return "Unknown"
    last = parts[-1]
    return last[:1].upper() + last[1:]


def fill_structure_debug(soup: BeautifulSoup, debug: ExtractionDebug) -> None:
    debug.has_main = soup.find("main") is not None
    debug.body_children = len(soup.body.find_all(recursive=False)) if soup.body else 0

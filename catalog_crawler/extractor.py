"""Cascading heuristic extraction of product fields from raw markup.

Product pages show the same content (name, ingredient list, benefit claims)
in structurally different DOM shapes, so each field is recovered by trying a
fixed sequence of increasingly permissive strategies:

    attribute-selector   CSS selector chains from the site profile
    sibling-text         text next to a short "anchor" heading
    ancestor-text-diff   anchor's block ancestor text minus the anchor text
    regex-scan           patterns over the whole page text

Candidates from the permissive strategies must pass a plausibility filter
before they are accepted.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Pattern, Sequence, Tuple

from bs4 import BeautifulSoup, Tag
from loguru import logger

from catalog_crawler.models import ExtractedItem, ExtractionThresholds, SiteProfile
from catalog_crawler.parsing import (
    collapse_whitespace,
    element_text,
    first_attribute,
    first_text,
    page_text,
    parse_markup,
    resolve_url,
)


class Strategy(str, Enum):
    ATTRIBUTE_SELECTOR = "attribute-selector"
    SIBLING_TEXT = "sibling-text"
    ANCESTOR_TEXT_DIFF = "ancestor-text-diff"
    REGEX_SCAN = "regex-scan"


BLOCK_TAGS = ["div", "section", "article"]

INGREDIENT_KEYWORDS = ("ingredients",)

INGREDIENT_INDICATORS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"Aqua",
        r"Water",
        r"Sodium\s+\w+",
        r"Glycerin",
        r"Dimethicone",
        r"Parfum",
        r"Fragrance",
        r"Citric\s+Acid",
    )
]

# INCI lists almost always open with water
INGREDIENT_SCAN_PATTERNS = [
    re.compile(r"\b(?:Aqua|Water|Eau)\b(?:\s*\([^)]*\))?(?:\s*/\s*\w+)*\s*,[^.]+", re.IGNORECASE),
]

CLAIM_KEYWORDS = (
    "benefits",
    "details",
    "claims",
    "what it does",
    "key benefits",
    "product benefits",
    "leaves hair",
    "provides",
    "cleanses",
    "nourishes",
    "hydrates",
    "strengthens",
    "repairs",
)

CLAIM_INDICATORS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"leaves hair",
        r"provides",
        r"cleanses",
        r"nourishes",
        r"hydrates",
        r"strengthens",
        r"repairs",
        r"soft",
        r"silky",
        r"manageable",
        r"shine",
        r"conditioning",
        r"\d+x more",
        r"\d+% more",
    )
]

CLAIM_SCAN_PATTERNS = [
    re.compile(r"(?:leaves hair|provides|cleanses|nourishes|hydrates|strengthens|repairs)[^.!?]*[.!?]", re.IGNORECASE),
    re.compile(r"(?:\d+x more|\d+% more|\d+x stronger)[^.!?]*[.!?]", re.IGNORECASE),
    re.compile(r"(?:soft|silky|smooth|manageable|shiny|healthy)[^.!?]*hair[^.!?]*[.!?]", re.IGNORECASE),
]

INGREDIENT_LABEL = re.compile(r"^\s*Ingredients?\b\s*:?\s*", re.IGNORECASE)
CLAIM_LABEL = re.compile(
    r"^\s*(?:Benefits?|Details?|Claims?|What it does|Key benefits?|Product benefits?)\b\s*:?\s*",
    re.IGNORECASE,
)
_SENTENCE_GAP = re.compile(r"([.!?])\s*([A-Z])")


def normalize_ingredients(text: Optional[str]) -> str:
    """Canonical comma-separated ingredient list.

    >>> normalize_ingredients("water, GLYCERIN ,niacinamide")
    'Water, Glycerin, Niacinamide'
    """
    if not text:
        return ""
    cleaned = collapse_whitespace(INGREDIENT_LABEL.sub("", text, count=1))
    segments = [segment.strip() for segment in cleaned.split(",")]
    return ", ".join(segment.capitalize() for segment in segments if segment)


def normalize_claims(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = collapse_whitespace(CLAIM_LABEL.sub("", text, count=1))
    return _SENTENCE_GAP.sub(r"\1 \2", cleaned).strip()


@dataclass(frozen=True)
class FieldRules:
    """Anchor keywords, plausibility filter and normalizer for one field."""

    field: str
    keywords: Tuple[str, ...]
    anchor_max_length: int
    sibling_run: int
    indicators: Sequence[Pattern]
    scan_patterns: Sequence[Pattern]
    min_length: int
    max_length: int
    min_commas: int
    max_matches: int
    filter_scan_matches: bool
    normalize: Callable[[str], str]

    def is_anchor(self, text: str) -> bool:
        return 0 < len(text) < self.anchor_max_length and any(kw in text for kw in self.keywords)

    def is_plausible(self, text: str) -> bool:
        if not self.min_length <= len(text) <= self.max_length:
            return False
        if text.count(",") < self.min_commas:
            return False
        return any(pattern.search(text) for pattern in self.indicators)


def ingredient_rules(thresholds: ExtractionThresholds) -> FieldRules:
    return FieldRules(
        field="ingredients",
        keywords=INGREDIENT_KEYWORDS,
        anchor_max_length=thresholds.ingredients_anchor_max_length,
        sibling_run=thresholds.ingredients_sibling_run,
        indicators=INGREDIENT_INDICATORS,
        scan_patterns=INGREDIENT_SCAN_PATTERNS,
        min_length=thresholds.ingredients_min_length,
        max_length=thresholds.ingredients_max_length,
        min_commas=thresholds.ingredients_min_commas,
        max_matches=thresholds.ingredients_max_matches,
        filter_scan_matches=True,
        normalize=normalize_ingredients,
    )


def claim_rules(thresholds: ExtractionThresholds) -> FieldRules:
    return FieldRules(
        field="claims",
        keywords=CLAIM_KEYWORDS,
        anchor_max_length=thresholds.claims_anchor_max_length,
        sibling_run=thresholds.claims_sibling_run,
        indicators=CLAIM_INDICATORS,
        scan_patterns=CLAIM_SCAN_PATTERNS,
        min_length=thresholds.claims_min_length,
        max_length=thresholds.claims_max_length,
        min_commas=0,
        max_matches=thresholds.claims_max_matches,
        filter_scan_matches=False,
        normalize=normalize_claims,
    )


def _next_sibling_text(anchor: Tag, run: int) -> str:
    sibling = anchor.find_next_sibling()
    return element_text(sibling) if sibling else ""


def _parent_next_sibling_text(anchor: Tag, run: int) -> str:
    parent = anchor.parent
    if parent is None or parent.name == "[document]":
        return ""
    sibling = parent.find_next_sibling()
    return element_text(sibling) if sibling else ""


def _sibling_run_text(anchor: Tag, run: int) -> str:
    siblings = anchor.find_next_siblings(limit=run)
    return collapse_whitespace(" ".join(element_text(sibling) for sibling in siblings))


def _ancestor_diff_text(anchor: Tag, run: int) -> str:
    ancestor = anchor.find_parent(BLOCK_TAGS)
    if ancestor is None:
        return ""
    full_text = element_text(ancestor)
    anchor_text = element_text(anchor)
    position = full_text.find(anchor_text) if anchor_text else -1
    if position < 0:
        return ""
    return full_text[position + len(anchor_text):].strip()


# Evaluated in this order for every anchor.
ANCHOR_APPROACHES: List[Tuple[Strategy, Callable[[Tag, int], str]]] = [
    (Strategy.SIBLING_TEXT, _next_sibling_text),
    (Strategy.SIBLING_TEXT, _parent_next_sibling_text),
    (Strategy.SIBLING_TEXT, _sibling_run_text),
    (Strategy.ANCESTOR_TEXT_DIFF, _ancestor_diff_text),
]


class HeuristicExtractor:
    """Pure transformation from product-page markup to an ExtractedItem."""

    def __init__(self, site: Optional[SiteProfile] = None, thresholds: Optional[ExtractionThresholds] = None):
        self.site = site or SiteProfile()
        self.thresholds = thresholds or ExtractionThresholds()
        self.ingredient_rules = ingredient_rules(self.thresholds)
        self.claim_rules = claim_rules(self.thresholds)

    def extract(self, markup: str, source_url: str) -> Optional[ExtractedItem]:
        """Extract a product, or None when no name can be found."""
        item, _ = self.extract_with_debug(markup, source_url)
        return item

    def extract_with_debug(self, markup: str, source_url: str) -> Tuple[Optional[ExtractedItem], Dict[str, str]]:
        """Extract a product and report which strategy produced each field."""
        soup = parse_markup(markup)
        strategies: Dict[str, str] = {}

        name = first_text(soup, self.site.name_selectors)
        if not name:
            logger.debug(f"Product name not found: {source_url}")
            return None, strategies
        strategies["name"] = Strategy.ATTRIBUTE_SELECTOR.value

        simple_fields = {
            "brand": first_text(soup, self.site.brand_selectors),
            "price": first_text(soup, self.site.price_selectors),
            "description": first_text(soup, self.site.description_selectors),
            "image_url": resolve_url(
                first_attribute(soup, self.site.image_selectors, ("src", "data-src", "content")),
                source_url,
            ),
        }
        for field_name, value in simple_fields.items():
            if value:
                strategies[field_name] = Strategy.ATTRIBUTE_SELECTOR.value

        ingredients, ingredient_strategy = self.extract_field(soup, self.ingredient_rules)
        if ingredient_strategy:
            strategies["ingredients"] = ingredient_strategy.value

        claims, claim_strategy = self.extract_field(soup, self.claim_rules)
        if claim_strategy:
            strategies["claims"] = claim_strategy.value

        item = ExtractedItem(
            name=name,
            source_url=source_url,
            brand=simple_fields["brand"],
            price=simple_fields["price"],
            description=simple_fields["description"],
            ingredients=ingredients or None,
            claims=claims or None,
            image_url=simple_fields["image_url"],
        )
        return item, strategies

    def find_anchors(self, soup: BeautifulSoup, rules: FieldRules) -> Iterator[Tag]:
        """Elements whose own text is short and mentions one of the field keywords."""
        root = soup.body or soup
        for element in root.find_all(True):
            text = element_text(element).lower()
            if rules.is_anchor(text):
                yield element

    def extract_field(self, soup: BeautifulSoup, rules: FieldRules) -> Tuple[str, Optional[Strategy]]:
        """Run the anchor strategies, then the page-wide regex scan."""
        for anchor in self.find_anchors(soup, rules):
            for strategy, approach in ANCHOR_APPROACHES:
                candidate = approach(anchor, rules.sibling_run)
                if candidate and rules.is_plausible(candidate):
                    normalized = rules.normalize(candidate)
                    if normalized:
                        return normalized, strategy

        scanned = self.scan_page(page_text(soup), rules)
        if scanned:
            return scanned, Strategy.REGEX_SCAN
        return "", None

    def scan_page(self, text: str, rules: FieldRules) -> str:
        """Collect up to ``max_matches`` distinct pattern matches from page text."""
        found: List[str] = []
        for pattern in rules.scan_patterns:
            for match in pattern.finditer(text):
                candidate = match.group(0).strip()
                if not candidate or candidate in found:
                    continue
                if rules.filter_scan_matches and not rules.is_plausible(candidate):
                    continue
                found.append(candidate)
                if len(found) >= rules.max_matches:
                    return rules.normalize(" ".join(found))
        return rules.normalize(" ".join(found)) if found else ""

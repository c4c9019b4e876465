"""Value types shared by the crawl pipeline."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from catalog_crawler.errors import ConfigError

MIN_TIMEOUT_MS = 5000
MAX_TIMEOUT_MS = 120000
MIN_RETRIES = 1
MAX_RETRIES = 5


@dataclass(frozen=True)
class DelayRange:
    """Inclusive bounds, in milliseconds, for randomized pauses."""

    min_ms: int = 1000
    max_ms: int = 3000

    def __post_init__(self):
        if self.min_ms < 0 or self.max_ms < 0:
            raise ConfigError(f"delay_range bounds must be >= 0 (got {self.min_ms}..{self.max_ms})")
        if self.min_ms > self.max_ms:
            raise ConfigError(f"delay_range min ({self.min_ms}) is greater than max ({self.max_ms})")


@dataclass(frozen=True)
class ScrapeConfig:
    """Browser session, retry and pacing settings.

    Immutable: a SessionManager keeps the instance it was built with for its
    whole lifetime.
    """

    headless: bool = True
    proxy_url: Optional[str] = None
    timeout_ms: int = 60000
    max_retries: int = 3
    delay_range: DelayRange = field(default_factory=DelayRange)
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 10000
    jitter_ms: int = 1000
    batch_size: int = 3
    settle_ms: int = 2000
    drain_timeout_ms: int = 30000

    def __post_init__(self):
        if not MIN_TIMEOUT_MS <= self.timeout_ms <= MAX_TIMEOUT_MS:
            raise ConfigError(
                f"timeout_ms must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} (got {self.timeout_ms})"
            )
        if not MIN_RETRIES <= self.max_retries <= MAX_RETRIES:
            raise ConfigError(
                f"max_retries must be between {MIN_RETRIES} and {MAX_RETRIES} (got {self.max_retries})"
            )
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1 (got {self.batch_size})")
        for name in ("backoff_base_ms", "backoff_cap_ms", "jitter_ms", "settle_ms", "drain_timeout_ms"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.proxy_url is not None and not self.proxy_url.strip():
            object.__setattr__(self, "proxy_url", None)


@dataclass(frozen=True)
class ExtractionThresholds:
    """Plausibility constants for ingredient and claims candidates.

    Empirically tuned; every value can be overridden from config.yaml.
    """

    ingredients_anchor_max_length: int = 50
    ingredients_min_length: int = 20
    ingredients_max_length: int = 2000
    ingredients_min_commas: int = 3
    ingredients_sibling_run: int = 2
    ingredients_max_matches: int = 1
    claims_anchor_max_length: int = 100
    claims_min_length: int = 20
    claims_max_length: int = 500
    claims_sibling_run: int = 3
    claims_max_matches: int = 5


@dataclass(frozen=True)
class SiteProfile:
    """Selector configuration for one retail site."""

    name: str = "default"
    primary_link_selector: str = 'a[data-testid="product-link"]'
    fallback_link_selectors: Tuple[str, ...] = (
        'a[href*="/p/"]',
        ".product-tile a",
        ".ProductTile a",
        'a[href*="/product/"]',
    )
    product_path_pattern: Optional[str] = "/p/"
    ready_selector: Optional[str] = 'a[data-testid="product-link"]'
    name_selectors: Tuple[str, ...] = (
        'h1[data-testid="product-title"]',
        "h1.ProductHero__title",
        'h1[class*="product-title"]',
        'h1[class*="ProductTitle"]',
        ".product-title h1",
        ".ProductHero h1",
        '[data-testid="product-name"]',
        "h1",
    )
    brand_selectors: Tuple[str, ...] = (
        '[data-testid="product-brand"]',
        '[itemprop="brand"]',
        ".ProductHero__brand",
    )
    price_selectors: Tuple[str, ...] = (
        '[data-testid="product-price"]',
        '[itemprop="price"]',
        ".ProductPricing",
    )
    description_selectors: Tuple[str, ...] = (
        ".ProductDetail__description",
        '[data-testid="product-description"]',
        '[itemprop="description"]',
        'meta[name="description"]',
    )
    image_selectors: Tuple[str, ...] = (
        ".ProductHero__image img",
        'meta[property="og:image"]',
        'img[itemprop="image"]',
    )


@dataclass
class ElementMatch:
    """Data collected from one element matched by a generic selector."""

    text: str
    href: Optional[str] = None
    src: Optional[str] = None
    html: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractionDebug:
    """Diagnostics returned with every discovery, fetch and scrape result."""

    selector_hits: Dict[str, int] = field(default_factory=dict)
    page_title: Optional[str] = None
    final_url: Optional[str] = None
    blocked: bool = False
    block_marker: Optional[str] = None
    has_main: Optional[bool] = None
    body_children: Optional[int] = None
    strategies: Dict[str, str] = field(default_factory=dict)
    attempts: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractedItem:
    """Structured product record recovered from one detail page."""

    name: str
    source_url: str
    brand: Optional[str] = None
    price: Optional[str] = None
    description: Optional[str] = None
    ingredients: Optional[str] = None
    claims: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class DiscoveryResult:
    """Ordered, duplicate-free candidate detail URLs from one listing page."""

    listing_url: str
    limit: int
    urls: List[str] = field(default_factory=list)
    debug: ExtractionDebug = field(default_factory=ExtractionDebug)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "listing_url": self.listing_url,
            "limit": self.limit,
            "urls": list(self.urls),
            "debug": self.debug.as_dict(),
        }


@dataclass
class FetchOutcome:
    """Result of one detail fetch; ``item`` is None when the URL was dropped."""

    url: str
    item: Optional[ExtractedItem] = None
    debug: ExtractionDebug = field(default_factory=ExtractionDebug)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.item is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "item": self.item.as_dict() if self.item else None,
            "debug": self.debug.as_dict(),
            "error": self.error,
        }


@dataclass
class CrawlReport:
    """Discovery plus detail outcomes for one listing crawl."""

    listing_url: str
    limit: int
    discovery: DiscoveryResult
    outcomes: List[FetchOutcome] = field(default_factory=list)

    @property
    def items(self) -> List[ExtractedItem]:
        return [outcome.item for outcome in self.outcomes if outcome.item is not None]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "listing_url": self.listing_url,
            "limit": self.limit,
            "discovered": len(self.discovery.urls),
            "extracted": len(self.items),
            "failed": sum(1 for outcome in self.outcomes if not outcome.succeeded),
            "items": [item.as_dict() for item in self.items],
            "discovery": self.discovery.as_dict(),
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
        }

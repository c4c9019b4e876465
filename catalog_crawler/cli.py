"""Command-line interface for the catalog crawler."""

import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from catalog_crawler.config_loader import (
    ensure_directories,
    get_extraction_thresholds,
    get_site_profile,
    get_user_agents,
    load_config,
)
from catalog_crawler.errors import BlockedError, ScraperError
from catalog_crawler.extractor import HeuristicExtractor
from catalog_crawler.fingerprint import FingerprintGenerator
from catalog_crawler.scraper import run_crawl, run_discovery, run_selector_scrape

EXIT_FAILURE = 1
EXIT_BLOCKED = 2


def setup_logging(config: dict, verbose: bool = False):
    """Setup logging configuration."""
    log_config = config.get("logging", {})
    level = "DEBUG" if verbose else log_config.get("level", "INFO")
    log_file = log_config.get("file", "data/logs/crawler.log")

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}",
    )
    logger.add(
        log_file,
        level=level,
        rotation=log_config.get("rotation", "1 week"),
        retention=log_config.get("retention", "1 month"),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name} | {message}",
    )


def _exit_for_error(e: Exception, action: str):
    """Report a failed command and exit with the matching status code."""
    if isinstance(e, BlockedError):
        logger.error(f"{action} blocked: {e}")
        click.echo(f"Blocked: {e}", err=True)
        sys.exit(EXIT_BLOCKED)
    logger.exception(f"{action} failed")
    click.echo(f"Error: {e}", err=True)
    sys.exit(EXIT_FAILURE)


def _parse_selector_map(value: Optional[str]) -> Optional[dict]:
    """Read a selector map from inline JSON or a JSON file path."""
    if not value:
        return None
    raw = value
    if not value.lstrip().startswith("{"):
        path = Path(value)
        if not path.is_file():
            raise click.BadParameter(f"Selector map file not found: {value}")
        raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Selector map is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("Selector map must be a JSON object")
    selector_map = {}
    for field_name, selectors in data.items():
        if isinstance(selectors, str):
            selectors = [selectors]
        if not isinstance(selectors, list) or not all(isinstance(s, str) for s in selectors):
            raise click.BadParameter(f"Selectors for '{field_name}' must be a string or a list of strings")
        selector_map[field_name] = selectors
    return selector_map


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Catalog Crawler - stealth extraction of JS-rendered product catalogs."""
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        ctx.obj["config"] = cfg
        ctx.obj["config_path"] = config

        ensure_directories(cfg)
        setup_logging(cfg, verbose)

        logger.debug("Catalog crawler initialized")

    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(EXIT_FAILURE)


@cli.command()
@click.argument("listing_url")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, show_default=True, help="Maximum products to fetch")
@click.option("--site", "-s", default=None, help="Site profile from config.yaml")
@click.option("--headless/--no-headless", default=None, help="Override the configured headless flag")
@click.option("--proxy", default=None, help="Proxy server URL")
@click.option("--timeout-ms", type=int, default=None, help="Navigation timeout in milliseconds")
@click.option("--max-retries", type=int, default=None, help="Attempts per page load")
@click.option("--output", "-o", type=click.Path(), default=None, help="Write results JSON to this file")
@click.pass_context
def crawl(ctx, listing_url: str, limit: int, site: Optional[str], headless: Optional[bool],
          proxy: Optional[str], timeout_ms: Optional[int], max_retries: Optional[int], output: Optional[str]):
    """Discover products on LISTING_URL and extract each one."""
    config = ctx.obj["config"]
    logger.info(f"Starting crawl: url={listing_url}, limit={limit}, site={site or 'default'}")

    try:
        results = run_crawl(
            listing_url,
            limit,
            site=site,
            headless=headless,
            proxy_url=proxy,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            output_path=output,
            config=config,
        )
    except Exception as e:
        _exit_for_error(e, "Crawl")

    click.echo(f"\n{'='*70}")
    click.echo("CRAWL RESULTS")
    click.echo(f"{'='*70}")
    click.echo(f"Status: {results.get('status', 'unknown')}")
    click.echo(f"Listing: {results['listing_url']}")
    click.echo(f"URLs discovered: {results['discovered']} (limit {results['limit']})")
    click.echo(f"Products extracted: {results['extracted']}")
    click.echo(f"Products failed: {results['failed']}")

    for item in results["items"]:
        click.echo(f"  - {item['name']}")
        if item.get("ingredients"):
            click.echo(f"      ingredients: {item['ingredients'][:100]}")
        if item.get("claims"):
            click.echo(f"      claims: {item['claims'][:100]}")

    failures = [o for o in results["outcomes"] if o.get("error")]
    if failures:
        click.echo(f"\nErrors ({len(failures)}):")
        for outcome in failures[:5]:
            click.echo(f"  - {outcome['url']}: {outcome['error']}")

    if results.get("output_path"):
        click.echo(f"\nResults: {results['output_path']}")
    click.echo(f"{'='*70}")

    if results.get("status") == "failed":
        sys.exit(EXIT_FAILURE)


@cli.command()
@click.argument("listing_url")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, show_default=True, help="Maximum URLs to collect")
@click.option("--site", "-s", default=None, help="Site profile from config.yaml")
@click.option("--headless/--no-headless", default=None, help="Override the configured headless flag")
@click.option("--proxy", default=None, help="Proxy server URL")
@click.pass_context
def discover(ctx, listing_url: str, limit: int, site: Optional[str], headless: Optional[bool], proxy: Optional[str]):
    """List product URLs found on LISTING_URL without fetching them."""
    config = ctx.obj["config"]

    try:
        result = run_discovery(listing_url, limit, site=site, headless=headless, proxy_url=proxy, config=config)
    except Exception as e:
        _exit_for_error(e, "Discovery")

    click.echo(f"\n{'='*60}")
    click.echo(f"DISCOVERED URLS ({len(result['urls'])}/{result['limit']})")
    click.echo(f"{'='*60}")
    for url in result["urls"]:
        click.echo(url)
    hits = result["debug"].get("selector_hits", {})
    if hits:
        click.echo("\nSelector hits:")
        for selector, count in hits.items():
            click.echo(f"  {selector}: {count}")
    click.echo(f"{'='*60}")


@cli.command()
@click.argument("url")
@click.option("--selectors", "-s", default=None, help="Selector map as inline JSON or a JSON file path")
@click.option("--headless/--no-headless", default=None, help="Override the configured headless flag")
@click.option("--proxy", default=None, help="Proxy server URL")
@click.option("--timeout-ms", type=int, default=None, help="Navigation timeout in milliseconds")
@click.option("--max-retries", type=int, default=None, help="Attempts per page load")
@click.option("--output", "-o", type=click.Path(), default=None, help="Write results JSON to this file")
@click.pass_context
def scrape(ctx, url: str, selectors: Optional[str], headless: Optional[bool], proxy: Optional[str],
           timeout_ms: Optional[int], max_retries: Optional[int], output: Optional[str]):
    """Scrape URL with a field -> selectors map and print raw JSON."""
    config = ctx.obj["config"]
    selector_map = _parse_selector_map(selectors)

    try:
        results = run_selector_scrape(
            url,
            selector_map,
            headless=headless,
            proxy_url=proxy,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            output_path=output,
            config=config,
        )
    except Exception as e:
        _exit_for_error(e, "Scrape")

    click.echo(json.dumps(results, ensure_ascii=False, indent=2))


@cli.command()
@click.argument("html_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--url", "source_url", default="https://example.com/", show_default=True, help="URL the page was saved from")
@click.option("--site", "-s", default=None, help="Site profile from config.yaml")
@click.pass_context
def extract(ctx, html_file: str, source_url: str, site: Optional[str]):
    """Run the field extractor on a saved product page."""
    config = ctx.obj["config"]

    try:
        extractor = HeuristicExtractor(
            site=get_site_profile(config, site),
            thresholds=get_extraction_thresholds(config),
        )
        markup = Path(html_file).read_text(encoding="utf-8", errors="replace")
        item, strategies = extractor.extract_with_debug(markup, source_url)
    except ScraperError as e:
        _exit_for_error(e, "Extraction")

    if item is None:
        click.echo("No product name found; page would be dropped", err=True)
        sys.exit(EXIT_FAILURE)

    click.echo(json.dumps({"item": item.as_dict(), "strategies": strategies}, ensure_ascii=False, indent=2))


@cli.command()
@click.option("--count", "-n", type=click.IntRange(min=1), default=1, show_default=True, help="Number of profiles")
@click.pass_context
def profile(ctx, count: int):
    """Print sample fingerprint profiles."""
    config = ctx.obj["config"]
    generator = FingerprintGenerator(user_agents=get_user_agents(config))
    profiles = [asdict(generator.generate()) for _ in range(count)]
    click.echo(json.dumps(profiles if count > 1 else profiles[0], indent=2))


if __name__ == "__main__":
    cli()

"""Configuration loader for the catalog crawler."""

import os
import re
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from catalog_crawler.errors import ConfigError
from catalog_crawler.models import DelayRange, ExtractionThresholds, ScrapeConfig, SiteProfile
from catalog_crawler.navigation import DEFAULT_BLOCK_MARKERS


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default locations.

    Returns:
        Dictionary with configuration values.
    """
    load_dotenv()

    if config_path is None:
        locations = [
            "config.yaml",
            "config.yml",
            "../config.yaml",
            "../config.yml",
            "/app/config.yaml",
        ]
        for loc in locations:
            if Path(loc).exists():
                config_path = loc
                break

    if config_path is None or not Path(config_path).exists():
        raise FileNotFoundError("Configuration file not found. Please provide config.yaml")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute environment variables in config.

    Supports syntax: ${VAR_NAME} or ${VAR_NAME:default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _substitute_env_string(obj)
    else:
        return obj


def _substitute_env_string(value: str) -> str:
    """Substitute environment variables in a string."""
    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_expr = match.group(1)
        if ':' in var_expr:
            var_name, default = var_expr.split(':', 1)
            return os.getenv(var_name, default)
        else:
            return os.getenv(var_expr, match.group(0))

    return re.sub(pattern, replace, value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer (got {value!r})")


def get_scraping_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get scraping configuration."""
    return config.get("scraping", {}) or {}


def build_scrape_config(config: Dict[str, Any], **overrides: Any) -> ScrapeConfig:
    """Build an immutable ScrapeConfig from the ``scraping`` section.

    Keyword overrides whose value is None are ignored, so CLI flags that were
    not given fall back to the file values.
    """
    scraping = dict(get_scraping_config(config))
    scraping.update({k: v for k, v in overrides.items() if v is not None})

    delay_cfg = scraping.get("delay_range", {}) or {}
    if isinstance(delay_cfg, DelayRange):
        delay_range = delay_cfg
    else:
        delay_range = DelayRange(
            min_ms=_as_int(delay_cfg.get("min_ms", 1000), "delay_range.min_ms"),
            max_ms=_as_int(delay_cfg.get("max_ms", 3000), "delay_range.max_ms"),
        )

    backoff_cfg = scraping.get("backoff", {}) or {}
    proxy_url = scraping.get("proxy_url") or None

    return ScrapeConfig(
        headless=_as_bool(scraping.get("headless", True)),
        proxy_url=proxy_url,
        timeout_ms=_as_int(scraping.get("timeout_ms", 60000), "timeout_ms"),
        max_retries=_as_int(scraping.get("max_retries", 3), "max_retries"),
        delay_range=delay_range,
        backoff_base_ms=_as_int(backoff_cfg.get("base_ms", 1000), "backoff.base_ms"),
        backoff_cap_ms=_as_int(backoff_cfg.get("cap_ms", 10000), "backoff.cap_ms"),
        jitter_ms=_as_int(backoff_cfg.get("jitter_ms", 1000), "backoff.jitter_ms"),
        batch_size=_as_int(scraping.get("batch_size", 3), "batch_size"),
        settle_ms=_as_int(scraping.get("settle_ms", 2000), "settle_ms"),
        drain_timeout_ms=_as_int(scraping.get("drain_timeout_ms", 30000), "drain_timeout_ms"),
    )


def get_site_profile(config: Dict[str, Any], site: Optional[str] = None) -> SiteProfile:
    """Resolve a named site profile, layered over the built-in defaults.

    Args:
        config: Configuration dictionary
        site: Profile name under ``sites``; ``default_site`` is used when None

    Returns:
        SiteProfile with list values converted to tuples
    """
    sites = config.get("sites", {}) or {}
    name = site or config.get("default_site") or "default"
    if name not in sites and name != "default":
        raise ConfigError(f"Unknown site profile '{name}'. Available: {', '.join(sorted(sites)) or 'default'}")

    raw = dict(sites.get(name, {}) or {})
    known = {f.name for f in fields(SiteProfile)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown keys in site profile '{name}': {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {"name": name}
    for key, value in raw.items():
        values[key] = tuple(value) if isinstance(value, list) else value
    return SiteProfile(**values)


def get_extraction_thresholds(config: Dict[str, Any]) -> ExtractionThresholds:
    """Build plausibility thresholds from the ``extraction`` section."""
    raw = config.get("extraction", {}) or {}
    known = {f.name for f in fields(ExtractionThresholds)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown extraction thresholds: {', '.join(sorted(unknown))}")
    return ExtractionThresholds(**{k: _as_int(v, k) for k, v in raw.items()})


def get_block_markers(config: Dict[str, Any]) -> Dict[str, List[str]]:
    """Get block-page markers for page titles, body text and raw markup (lowercase)."""
    raw = config.get("block_markers", {}) or {}
    markers = {}
    for scope in ("title", "body", "markup"):
        values = raw.get(scope, DEFAULT_BLOCK_MARKERS[scope])
        markers[scope] = [str(v).strip().lower() for v in values if str(v).strip()]
    return markers


def get_user_agents(config: Dict[str, Any]) -> Optional[List[str]]:
    """Get a custom user-agent pool, or None to use the built-in one."""
    agents = (config.get("fingerprint", {}) or {}).get("user_agents") or []
    agents = [str(a).strip() for a in agents if str(a).strip()]
    return agents or None


def ensure_directories(config: Dict[str, Any]):
    """Ensure all required directories exist."""
    log_path = config.get("logging", {}).get("file", "data/logs/crawler.log")
    Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    output_dir = config.get("output", {}).get("dir", "data/output")
    Path(output_dir).mkdir(parents=True, exist_ok=True)

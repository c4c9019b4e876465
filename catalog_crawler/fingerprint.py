"""Randomized but internally consistent browser identities."""

import random
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
]

# Desktop resolutions commonly reported by each OS family.
VIEWPORTS = {
    "Windows": [(1920, 1080), (1536, 864), (1366, 768), (1600, 900)],
    "macOS": [(1440, 900), (1680, 1050), (1920, 1080), (2560, 1440)],
    "Linux": [(1920, 1080), (1366, 768), (1600, 900)],
}

NAVIGATOR_PLATFORMS = {
    "Windows": "Win32",
    "macOS": "MacIntel",
    "Linux": "Linux x86_64",
}

# locale, timezone and coordinates always travel together
REGIONS = [
    ("en-US", "America/New_York", 40.7128, -74.0060),
    ("en-US", "America/Chicago", 41.8781, -87.6298),
    ("en-US", "America/Denver", 39.7392, -104.9903),
    ("en-US", "America/Los_Angeles", 34.0522, -118.2437),
    ("en-CA", "America/Toronto", 43.6532, -79.3832),
]

CHROMIUM_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8"
FIREFOX_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"


@dataclass(frozen=True)
class FingerprintProfile:
    """Client-identifying signals presented to a target site."""

    user_agent: str
    locale: str
    languages: List[str]
    timezone_id: str
    viewport: Dict[str, int]
    geolocation: Dict[str, float]
    accept_headers: Dict[str, str] = field(default_factory=dict)
    platform: str = "Windows"

    @property
    def navigator_platform(self) -> str:
        return NAVIGATOR_PLATFORMS.get(self.platform, "Win32")


def detect_platform(user_agent: str) -> str:
    """Map a user-agent string to the OS family it claims."""
    if "Windows" in user_agent:
        return "Windows"
    if "Macintosh" in user_agent or "Mac OS X" in user_agent:
        return "macOS"
    return "Linux"


def _accept_language(locale: str) -> str:
    primary = locale.split("-")[0]
    if primary == locale:
        return locale
    return f"{locale},{primary};q=0.9"


def build_accept_headers(user_agent: str, locale: str, platform: str) -> Dict[str, str]:
    """Build request headers matching the browser engine in ``user_agent``."""
    headers = {
        "Accept-Language": _accept_language(locale),
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    }
    if "Firefox/" in user_agent:
        headers["Accept"] = FIREFOX_ACCEPT
        headers["DNT"] = "1"
        return headers

    headers["Accept"] = CHROMIUM_ACCEPT
    match = re.search(r"Chrome/(\d+)", user_agent)
    if match:
        version = match.group(1)
        headers["Sec-Ch-Ua"] = (
            f'"Not_A Brand";v="8", "Chromium";v="{version}", "Google Chrome";v="{version}"'
        )
        headers["Sec-Ch-Ua-Mobile"] = "?0"
        headers["Sec-Ch-Ua-Platform"] = f'"{platform}"'
    return headers


class FingerprintGenerator:
    """Draws one fingerprint profile per call from curated pools."""

    def __init__(self, user_agents: Optional[Sequence[str]] = None, rng: Optional[random.Random] = None):
        self.user_agents = list(user_agents) if user_agents else list(DEFAULT_USER_AGENTS)
        self._rng = rng or random.Random()

    def generate(self) -> FingerprintProfile:
        user_agent = self._rng.choice(self.user_agents)
        platform = detect_platform(user_agent)
        width, height = self._rng.choice(VIEWPORTS[platform])
        locale, timezone_id, latitude, longitude = self._rng.choice(REGIONS)
        primary = locale.split("-")[0]
        languages = [locale, primary] if primary != locale else [locale]

        return FingerprintProfile(
            user_agent=user_agent,
            locale=locale,
            languages=languages,
            timezone_id=timezone_id,
            viewport={"width": width, "height": height},
            geolocation={"latitude": latitude, "longitude": longitude},
            accept_headers=build_accept_headers(user_agent, locale, platform),
            platform=platform,
        )

"""Tests for fingerprint profile generation."""

import json
import random
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_crawler.fingerprint import (
    DEFAULT_USER_AGENTS,
    REGIONS,
    VIEWPORTS,
    FingerprintGenerator,
    build_accept_headers,
    detect_platform,
)
from catalog_crawler.session import build_stealth_script

CHROME_MAC = DEFAULT_USER_AGENTS[2]
FIREFOX_WIN = DEFAULT_USER_AGENTS[4]


class TestFingerprintGenerator(unittest.TestCase):
    def setUp(self):
        self.generator = FingerprintGenerator(rng=random.Random(7))

    def test_profiles_are_internally_consistent(self):
        for _ in range(50):
            profile = self.generator.generate()

            self.assertIn(profile.user_agent, DEFAULT_USER_AGENTS)
            self.assertEqual(profile.platform, detect_platform(profile.user_agent))
            viewport = (profile.viewport["width"], profile.viewport["height"])
            self.assertIn(viewport, VIEWPORTS[profile.platform])
            region = (
                profile.locale,
                profile.timezone_id,
                profile.geolocation["latitude"],
                profile.geolocation["longitude"],
            )
            self.assertIn(region, REGIONS)
            self.assertEqual(profile.languages[0], profile.locale)
            self.assertTrue(profile.accept_headers["Accept-Language"].startswith(profile.locale))

    def test_same_seed_same_profile(self):
        first = FingerprintGenerator(rng=random.Random(42)).generate()
        second = FingerprintGenerator(rng=random.Random(42)).generate()
        self.assertEqual(first, second)

    def test_custom_user_agents(self):
        generator = FingerprintGenerator(user_agents=[FIREFOX_WIN], rng=random.Random(1))
        profile = generator.generate()
        self.assertEqual(profile.user_agent, FIREFOX_WIN)
        self.assertNotIn("Sec-Ch-Ua", profile.accept_headers)
        self.assertEqual(profile.accept_headers["DNT"], "1")
        self.assertEqual(profile.navigator_platform, "Win32")


class TestAcceptHeaders(unittest.TestCase):
    def test_chromium_sends_client_hints_for_its_platform(self):
        headers = build_accept_headers(CHROME_MAC, "en-US", "macOS")
        self.assertEqual(headers["Sec-Ch-Ua-Platform"], '"macOS"')
        self.assertIn('"Chromium";v="120"', headers["Sec-Ch-Ua"])
        self.assertEqual(headers["Sec-Ch-Ua-Mobile"], "?0")
        self.assertNotIn("DNT", headers)

    def test_firefox_has_no_client_hints(self):
        headers = build_accept_headers(FIREFOX_WIN, "en-CA", "Windows")
        self.assertNotIn("Sec-Ch-Ua", headers)
        self.assertEqual(headers["DNT"], "1")
        self.assertIn("image/avif", headers["Accept"])
        self.assertEqual(headers["Accept-Language"], "en-CA,en;q=0.9")

    def test_detect_platform(self):
        self.assertEqual(detect_platform(DEFAULT_USER_AGENTS[0]), "Windows")
        self.assertEqual(detect_platform(CHROME_MAC), "macOS")
        self.assertEqual(detect_platform(DEFAULT_USER_AGENTS[3]), "Linux")


class TestStealthScript(unittest.TestCase):
    def test_script_mirrors_profile(self):
        profile = FingerprintGenerator(user_agents=[CHROME_MAC], rng=random.Random(3)).generate()
        script = build_stealth_script(profile)

        self.assertIn("navigator, 'webdriver'", script)
        self.assertIn(json.dumps(profile.languages), script)
        self.assertIn('"MacIntel"', script)
        self.assertNotIn("__LANGUAGES__", script)


if __name__ == "__main__":
    unittest.main()

"""Exception types raised by the catalog crawler."""

from typing import Any, Optional


class ScraperError(Exception):
    """Base class for crawler errors.

    Carries the diagnostic bag of the operation that failed (when one exists)
    and the number of attempts the executor spent on it.
    """

    def __init__(self, message: str = "", debug: Optional[Any] = None, attempts: Optional[int] = None):
        super().__init__(message)
        self.debug = debug
        self.attempts = attempts


class ConfigError(ScraperError, ValueError):
    """Raised when scrape configuration values are out of bounds."""
    pass


class LaunchError(ScraperError):
    """Raised when the browser process cannot be started."""
    pass


class NotInitializedError(ScraperError):
    """Raised when a browser operation is attempted without a live session."""
    pass


class NavigationError(ScraperError):
    """Raised when a page cannot be loaded."""
    pass


class BlockedError(ScraperError):
    """Raised when the target site served a bot-defense page."""

    def __init__(self, message: str = "", marker: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.marker = marker


class ExtractionFailure(ScraperError):
    """A detail page yielded no product name. Logged, never raised out of a batch."""
    pass


FATAL_ERRORS = (LaunchError, NotInitializedError)

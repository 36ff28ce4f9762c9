"""Error taxonomy for the EPC scraper."""
from typing import Optional


class ScraperError(Exception):
    """Base class for scraper errors."""


class ConfigError(ScraperError):
    """Required configuration is missing or invalid."""


class NetworkError(ScraperError):
    """Timeout, connection failure or a non-success HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(NetworkError):
    """The source answered HTTP 429."""

    def __init__(self, message: str = "HTTP 429: rate limited"):
        super().__init__(message, status_code=429)


class ConsistencyRepairError(ScraperError):
    """A repair pass could not reconcile one listing path."""

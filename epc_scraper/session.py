"""HTTP session management and the adaptive-delay fetcher."""
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import config
from .datamodel import FetchResult
from .exceptions import NetworkError, RateLimitError
from .utils import get_file_extension_from_content_type, get_file_extension_from_url

logger = logging.getLogger(__name__)


def make_session() -> requests.Session:
    """Create a requests session with headers and retry configuration."""
    session = requests.Session()

    # Set headers
    session.headers.update({
        'User-Agent':
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Accept':
        'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Accept-Encoding': 'gzip, deflate',
        'Connection': 'keep-alive',
        'Upgrade-Insecure-Requests': '1',
    })
    session.headers['Referer'] = config.base_url()

    # Transport-level retries only; 429 is handled by RateLimitedFetcher's backoff
    retry_strategy = Retry(
        total=config.MAX_RETRIES,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods={"HEAD", "GET", "OPTIONS"},
        backoff_factor=config.RETRY_DELAY,
        respect_retry_after_header=False,
        # Hand back the last 5xx response once retries run out
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session


class RateLimitedFetcher:
    """Sequential fetcher with one shared, adaptive pre-request delay.

    Before every request the fetcher sleeps ``current_delay`` seconds. A
    success relaxes the delay toward ``min_delay``; a 429 or transport error
    multiplies it by ``backoff_multiplier`` (clamped to ``max_delay``).
    ``fetch`` and ``fetch_binary`` never raise for HTTP or network failures.
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 initial_delay: float = None,
                 min_delay: float = None,
                 max_delay: float = None,
                 backoff_multiplier: float = None,
                 success_decay: float = None,
                 timeout: float = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.session = session or make_session()
        self.min_delay = config.MIN_DELAY if min_delay is None else min_delay
        self.max_delay = config.MAX_DELAY if max_delay is None else max_delay
        self.backoff_multiplier = (config.BACKOFF_MULTIPLIER
                                   if backoff_multiplier is None else backoff_multiplier)
        self.success_decay = config.SUCCESS_DECAY if success_decay is None else success_decay
        self.timeout = config.REQUEST_TIMEOUT if timeout is None else timeout
        self.current_delay = config.INITIAL_DELAY if initial_delay is None else initial_delay
        self._sleep = sleep

    def fetch(self, url: str) -> FetchResult:
        """GET an HTML page."""
        response, failure = self._get(url)
        if failure:
            return failure
        return FetchResult(
            ok=True,
            url=url,
            status_code=response.status_code,
            html=response.text,
            content_type=response.headers.get("content-type", "").strip(),
        )

    def fetch_binary(self, url: str) -> FetchResult:
        """GET raw bytes (diagram images)."""
        response, failure = self._get(url)
        if failure:
            return failure
        return FetchResult(
            ok=True,
            url=url,
            status_code=response.status_code,
            data=response.content,
            content_type=response.headers.get("content-type", "").strip(),
        )

    def close(self):
        self.session.close()

    # ------------------------------------------------------------------

    def _get(self, url: str) -> Tuple[Optional[requests.Response], Optional[FetchResult]]:
        """Sleep, request, adjust the delay. Returns (response, None) or (None, failure)."""
        self._sleep(self.current_delay)
        try:
            response = self._request(url)
        except NetworkError as e:
            if isinstance(e, RateLimitError) or e.status_code is None:
                self._back_off()
                logger.warning(f"{e} for {url}; delay now {self.current_delay:.1f}s")
            return None, FetchResult(ok=False, url=url, status_code=e.status_code,
                                     error=str(e), exception=e)

        self._relax()
        return response, None

    def _request(self, url: str) -> requests.Response:
        """Issue the request, translating failures into NetworkError/RateLimitError."""
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429:
            raise RateLimitError()
        if response.status_code >= 400:
            raise NetworkError(f"HTTP {response.status_code}", status_code=response.status_code)
        return response

    def _back_off(self):
        self.current_delay = min(self.current_delay * self.backoff_multiplier, self.max_delay)

    def _relax(self):
        self.current_delay = max(self.current_delay * self.success_decay, self.min_delay)


def download_image(fetcher: RateLimitedFetcher, url: str,
                   dst_path: Path) -> Optional[str]:
    """Download image from URL and save to destination path.

    Args:
        fetcher: Rate-limited fetcher shared with the crawl
        url: Image URL
        dst_path: Destination path without extension

    Returns:
        Final file path if successful, None if failed
    """
    if not url or not url.strip():
        logger.warning("Empty image URL provided")
        return None

    logger.info(f"Downloading image: {url}")
    result = fetcher.fetch_binary(url)
    if not result.ok:
        logger.error(f"Failed to download image {url}: {result.error}")
        return None

    if not result.data:
        logger.warning(f"Downloaded image is empty: {url}")
        return None

    # Get content type and determine extension
    extension = get_file_extension_from_content_type(result.content_type)
    if extension == ".bin":
        extension = get_file_extension_from_url(url)

    # Create final path with proper extension
    final_path = dst_path.with_suffix(extension)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    final_path.write_bytes(result.data)

    logger.info(f"Image saved: {final_path} ({len(result.data)} bytes)")
    return str(final_path)

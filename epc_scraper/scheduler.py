"""Resumable crawl scheduling on top of the crawl_state table."""
import logging
from typing import Iterator, Optional

from .store import DataStore

logger = logging.getLogger(__name__)


class CrawlScheduler:
    """Durable URL state machine.

    unknown -> pending -> completed
    pending -> failed -> (reset_failed) -> pending

    ``completed`` is terminal. URLs come out in discovery order.
    """

    def __init__(self, store: DataStore):
        self.store = store

    def enqueue(self, url: str) -> bool:
        """Add url as pending; no-op if it has been seen before."""
        added = self.store.enqueue_url(url)
        if added:
            logger.debug(f"Queued: {url}")
        return added

    def next_pending(self) -> Optional[str]:
        return self.store.next_pending_url()

    def has_pending(self) -> bool:
        return self.next_pending() is not None

    def mark_completed(self, url: str):
        if not self.store.mark_url_completed(url):
            logger.warning(f"mark_completed ignored, URL not pending: {url}")

    def mark_failed(self, url: str, reason: str):
        if not self.store.mark_url_failed(url, reason):
            logger.warning(f"mark_failed ignored, URL not pending: {url}")

    def reset_failed(self) -> int:
        """Move every failed URL back to pending (retry entry point)."""
        count = self.store.reset_failed_urls()
        logger.info(f"Reset {count} failed URLs to pending")
        return count

    def drain(self) -> Iterator[str]:
        """Yield pending URLs until none remain.

        The caller must mark each URL before asking for the next one, or the
        same URL is yielded again.
        """
        while True:
            url = self.next_pending()
            if url is None:
                return
            yield url

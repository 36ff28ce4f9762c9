"""Main pipeline orchestrator."""
import logging
import sqlite3
from typing import Optional

from . import config
from .catalogue import parse_category_page, parse_index_page
from .datamodel import Group
from .pages import PageKind, classify_page
from .reconcile import Reconciler
from .repairs import merge_replacement_parts, repair_shared_parts
from .scheduler import CrawlScheduler
from .session import RateLimitedFetcher, download_image
from .store import DataStore
from .utils import safe_filename, with_frame_no

logger = logging.getLogger(__name__)


class ScrapingPipeline:
    """Main scraping pipeline coordinator."""

    def __init__(self,
                 store: Optional[DataStore] = None,
                 fetcher: Optional[RateLimitedFetcher] = None,
                 download_images: bool = True,
                 repair: bool = False):
        self.store = store or DataStore()
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or RateLimitedFetcher()
        self.download_images = download_images
        self.repair = repair

        self.scheduler = CrawlScheduler(self.store)
        self.reconciler = Reconciler(self.store)

        # run stats
        self.pages_processed: int = 0
        self.pages_failed: int = 0
        self.listing_pages: int = 0
        self.detail_pages: int = 0
        self.parts_inserted: int = 0
        self.links_queued: int = 0
        self.replacements_merged: int = 0
        self.shared_parts_inserted: int = 0
        self.images_saved: int = 0
        self.images_failed: int = 0

    def run(self) -> dict:
        """Crawl until no pending URLs remain, then repair and download images."""
        logger.info("Starting EPC scraper pipeline…")
        logger.info(f"Vehicle: {config.base_url()} (frame_no={config.FRAME_NO or '-'})")

        try:
            if self.scheduler.has_pending():
                logger.info(f"Resuming: {len(self.store.pending_urls())} URLs pending")
            else:
                seed = with_frame_no(config.base_url(), config.FRAME_NO)
                if self.scheduler.enqueue(seed):
                    logger.info(f"Starting fresh from {seed}")
                else:
                    logger.info("No pending URLs; crawl already complete")

            # Step 1: Traverse
            logger.info("=== Step 1: Crawling ===")
            for url in self.scheduler.drain():
                self.process_url(url)

            # Step 2: Repairs
            logger.info("=== Step 2: Repairs ===")
            self.replacements_merged = merge_replacement_parts(self.store)
            if self.repair:
                self.shared_parts_inserted = repair_shared_parts(self.store, self.fetcher)

            # Step 3: Images
            if self.download_images:
                self._download_images()

            self._show_final_stats()
        finally:
            if self._owns_fetcher:
                self.fetcher.close()

        logger.info("Pipeline completed successfully!")
        return self.stats()

    def process_url(self, url: str) -> bool:
        """Fetch, classify and persist one page. A bad page never aborts the crawl."""
        self.pages_processed += 1
        logger.info(f"[{self.pages_processed}] Processing: {url}")

        result = self.fetcher.fetch(url)
        if not result.ok:
            logger.error(f"  Failed: {result.error}")
            self.scheduler.mark_failed(url, result.error or "Unknown error")
            self.pages_failed += 1
            return False

        try:
            self._process_page(url, result.html)
        except sqlite3.Error:
            raise
        except Exception as e:
            logger.exception(f"  ✗ error processing {url} :: {e}")
            self.scheduler.mark_failed(url, f"{type(e).__name__}: {e}")
            self.pages_failed += 1
            return False

        # Mark as completed only after successful writes
        self.scheduler.mark_completed(url)
        return True

    def _process_page(self, url: str, html: str):
        kind = classify_page(html, url)
        logger.debug(f"  Page kind: {kind.value}")

        if kind is PageKind.INDEX:
            self._process_index(url, html)
            return

        if kind is PageKind.LISTING:
            self.listing_pages += 1
            self.reconciler.process_listing_page(url, html)
        elif kind is PageKind.DETAIL:
            self.detail_pages += 1
            self.parts_inserted += self.reconciler.process_detail_page(url, html)

        new_links = 0
        for link in parse_category_page(html, url):
            if self.scheduler.enqueue(with_frame_no(link, config.FRAME_NO)):
                new_links += 1
        if new_links:
            self.links_queued += new_links
            logger.info(f"  Found {new_links} new links to process")

    def _process_index(self, url: str, html: str):
        categories = parse_index_page(html, url)
        logger.info(f"Found {len(categories)} categories: {', '.join(c.id for c in categories)}")
        if not categories:
            logger.warning(f"  Index page has no categories: {url}")

        for category in categories:
            self.store.save_group(Group(id=category.id, name=category.name))
            if self.scheduler.enqueue(with_frame_no(category.url, config.FRAME_NO)):
                self.links_queued += 1

    def _download_images(self):
        diagrams = self.store.diagrams_without_images()
        if not diagrams:
            logger.info("No images to download")
            return

        logger.info(f"=== Step 3: Downloading {len(diagrams)} images ===")
        config.IMAGES_DIR.mkdir(parents=True, exist_ok=True)

        for diagram in diagrams:
            dst = config.IMAGES_DIR / safe_filename(diagram.id)
            path = download_image(self.fetcher, diagram.image_url, dst)
            if path:
                self.store.update_diagram_image_path(diagram.id, path)
                self.images_saved += 1
            else:
                self.images_failed += 1

    def stats(self) -> dict:
        return {
            "pages_processed": self.pages_processed,
            "pages_failed": self.pages_failed,
            "listing_pages": self.listing_pages,
            "detail_pages": self.detail_pages,
            "parts_inserted": self.parts_inserted,
            "links_queued": self.links_queued,
            "mapping_hits": self.reconciler.mapping_hits,
            "mapping_misses": self.reconciler.mapping_misses,
            "replacements_merged": self.replacements_merged,
            "shared_parts_inserted": self.shared_parts_inserted,
            "images_saved": self.images_saved,
            "images_failed": self.images_failed,
        }

    def _show_final_stats(self):
        logger.info("=== Final Statistics ===")
        logger.info(f"Pages processed       : {self.pages_processed}")
        logger.info(f"Pages failed          : {self.pages_failed}")
        logger.info(f"Listing pages         : {self.listing_pages}")
        logger.info(f"Detail pages          : {self.detail_pages}")
        logger.info(f"Parts rows inserted   : {self.parts_inserted}")
        logger.info(f"Mapping hits/misses   : {self.reconciler.mapping_hits}/{self.reconciler.mapping_misses}")
        logger.info(f"Replacements merged   : {self.replacements_merged}")
        logger.info(f"Shared parts inserted : {self.shared_parts_inserted}")
        logger.info(f"Images saved/failed   : {self.images_saved}/{self.images_failed}")

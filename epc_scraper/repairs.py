"""Post-crawl repair passes over the stored catalogue.

Both passes are idempotent: once the store is consistent, re-running them
changes nothing.

- repair_shared_parts: a detail page listed under several sections of one
  listing page must have its parts under every one of those diagrams.
- merge_replacement_parts: collapse "replaces" row pairs into a single row
  carrying replacement_part_number.
"""
import logging
from dataclasses import replace
from typing import Dict, List, Optional

from tenacity import (retry, retry_if_exception_type, stop_after_attempt,
                      wait_exponential)

from . import config
from .datamodel import Diagram
from .exceptions import ConsistencyRepairError, NetworkError, RateLimitError
from .listing import parse_detail_list_sections
from .session import RateLimitedFetcher
from .store import DataStore
from .utils import with_frame_no

logger = logging.getLogger(__name__)


@retry(retry=retry_if_exception_type(RateLimitError),
       stop=stop_after_attempt(config.REPAIR_FETCH_ATTEMPTS),
       wait=wait_exponential(multiplier=1, min=1, max=10),
       reraise=True)
def _fetch_listing(fetcher: RateLimitedFetcher, url: str) -> str:
    """Fetch a listing page, raising on failure so HTTP 429 can be retried."""
    result = fetcher.fetch(url)
    if not result.ok:
        raise result.exception or NetworkError(result.error or "fetch failed")
    return result.html


def listing_url(path: str, frame_no: Optional[str] = None) -> str:
    """Absolute listing URL for a stored subgroup path such as engine/oil-pump."""
    url = config.base_url() + path.strip("/") + "/"
    return with_frame_no(url, config.FRAME_NO if frame_no is None else frame_no)


def _repair_path(store: DataStore, fetcher: RateLimitedFetcher, path: str,
                 frame_no: Optional[str] = None) -> int:
    diagrams = store.diagrams_for_path(path)
    url = listing_url(path, frame_no)

    try:
        html = _fetch_listing(fetcher, url)
    except NetworkError as e:
        raise ConsistencyRepairError(f"could not re-fetch listing {url}: {e}") from e

    sections = parse_detail_list_sections(html, url)
    if len(sections) != len(diagrams):
        raise ConsistencyRepairError(
            f"{path}: page has {len(sections)} sections, store has {len(diagrams)} diagrams")

    by_id = {d.id: d for d in diagrams}
    sharing: Dict[str, List[Diagram]] = {}
    for section in sections:
        diagram = by_id.get(f"{path}/{section.slug}")
        if diagram is None:
            raise ConsistencyRepairError(f"{path}: section '{section.heading}' has no stored diagram")
        for detail_id in section.detail_page_ids:
            sharing.setdefault(detail_id, []).append(diagram)

    inserted = 0
    for detail_id, targets in sharing.items():
        if len(targets) < 2:
            continue

        stored = store.parts_for_detail_page(detail_id)
        if not stored:
            continue

        present = {p.diagram_id for p in stored}
        source_id = next((d.id for d in targets if d.id in present), stored[0].diagram_id)
        source_rows = [p for p in stored if p.diagram_id == source_id]

        for diagram in targets:
            if diagram.id in present:
                continue
            copies = [
                replace(p, id=None, replaces_id=None, diagram_id=diagram.id,
                        group_id=diagram.group_id, subgroup_id=diagram.subgroup_id)
                for p in source_rows
            ]
            added = store.insert_parts(copies)
            if added:
                logger.info(f"  {detail_id}: +{added} parts under {diagram.id}")
            inserted += added

    return inserted


def repair_shared_parts(store: DataStore, fetcher: RateLimitedFetcher,
                        frame_no: Optional[str] = None) -> int:
    """Copy parts of shared detail pages into every diagram that lists them.

    Paths that cannot be re-fetched or whose section count no longer matches
    the store are skipped with a warning.

    Returns:
        Number of part rows inserted
    """
    paths = store.multi_diagram_paths()
    logger.info(f"=== Shared-parts repair: {len(paths)} multi-diagram paths ===")

    inserted = 0
    skipped = 0
    for path, _group_id, diagram_count in paths:
        logger.info(f"Checking {path} ({diagram_count} diagrams)")
        try:
            inserted += _repair_path(store, fetcher, path, frame_no)
        except ConsistencyRepairError as e:
            skipped += 1
            logger.warning(f"Skipping {path}: {e}")

    logger.info(f"Shared-parts repair inserted {inserted} rows ({skipped} paths skipped)")
    return inserted


def merge_replacement_parts(store: DataStore) -> int:
    """Fold each replacement row into the row it replaces.

    The replaced row gets replacement_part_number set to the replacement's
    part number and the replacement row is deleted.

    Returns:
        Number of rows merged
    """
    links = store.replacement_links()
    if not links:
        logger.info("No replacement parts to merge")
        return 0

    merged = store.apply_replacements(links)
    logger.info(f"Merged {merged} replacement parts into preceding rows")
    return merged

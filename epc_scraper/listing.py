# epc_scraper/listing.py
"""Listing page parsing - the diagram sections of a subgroup page."""
import logging
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .datamodel import DetailListSection
from .parts import has_parts_table
from .utils import DETAIL_ID_PATTERN, extract_detail_id, path_parts, slugify_name

logger = logging.getLogger(__name__)

# vehicle/frame/trim/category/subcategory/
LISTING_MIN_DEPTH = 5

DIAGRAM_IMAGE_SELECTOR = "img.parts_picture, img[src*='diagram'], img[src*='scheme']"


def is_subcategory_listing(html: str, url: str) -> bool:
    """True for an intermediate page that links to detail pages but has no parts table.

    e.g. /delica_space_gear/pd6w/hseue9/lubrication/oil-pump-oil-filter/
    """
    if has_parts_table(html):
        return False

    segments = path_parts(url)
    if len(segments) < LISTING_MIN_DEPTH:
        return False
    subcategory = segments[LISTING_MIN_DEPTH - 1]

    soup = BeautifulSoup(html, "html.parser")
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if subcategory in href and DETAIL_ID_PATTERN.search(href):
            return True
    return False


def _unique_slug(slug: str, taken: set) -> str:
    candidate, n = slug, 2
    while candidate in taken:
        candidate = f"{slug}-{n}"
        n += 1
    taken.add(candidate)
    return candidate


def parse_detail_list_sections(html: str, base_url: str) -> List[DetailListSection]:
    """Extract the headed ``td.detail-list`` sections of a listing page.

    Each section has an ``h4`` heading, an optional diagram image and links
    (``<a>`` and image-map ``<area>``) to detail pages. Detail ids are
    de-duplicated within a section but not across sections: a detail page
    may belong to several diagrams.
    """
    soup = BeautifulSoup(html, "html.parser")
    sections: List[DetailListSection] = []
    taken_slugs = set()

    for td in soup.select("td.detail-list"):
        h4 = td.find("h4")
        heading = h4.get_text(strip=True) if h4 is not None else ""
        if not heading:
            continue

        slug = slugify_name(heading)
        if not slug:
            continue

        image_url: Optional[str] = None
        img = td.select_one(DIAGRAM_IMAGE_SELECTOR)
        if img is not None and img.get("src"):
            image_url = urljoin(base_url, img["src"])

        detail_ids: List[str] = []
        for el in td.find_all(["a", "area"]):
            detail_id = extract_detail_id(el.get("href", ""))
            if detail_id and detail_id not in detail_ids:
                detail_ids.append(detail_id)

        sections.append(
            DetailListSection(heading=heading,
                              slug=_unique_slug(slug, taken_slugs),
                              image_url=image_url,
                              detail_page_ids=detail_ids))

    return sections


def detail_page_id_from_url(url: str) -> Optional[str]:
    """Numeric id segment of a detail page URL (6th path segment), if present."""
    segments = path_parts(url)
    if len(segments) > LISTING_MIN_DEPTH:
        return extract_detail_id("/" + segments[LISTING_MIN_DEPTH] + "/")
    return None

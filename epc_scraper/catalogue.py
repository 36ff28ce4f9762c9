"""Catalogue navigation parsing - index categories, outbound links, page titles."""
import logging
import re
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from . import config
from .datamodel import ParsedGroup

logger = logging.getLogger(__name__)

# "11 - Engine" -> "11"
CATEGORY_CODE_PATTERN = re.compile(r"^(\d{2})\s*-")

# Links that are page chrome or features rather than parts categories
SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:")
SKIPPED_HREF_FRAGMENTS = ("amayama.com", "/quick/")


def parse_index_page(html: str, base_url: str) -> List[ParsedGroup]:
    """Extract the ordered top-level categories from the vehicle index page.

    Categories are listed as ``<li>11 - <a href=".../engine/">Engine</a></li>``
    inside ``ul#partnames``. The id is the URL slug, the name keeps the
    two-digit code. The source lists some categories twice; only the first
    occurrence of a slug is kept.
    """
    soup = BeautifulSoup(html, "html.parser")
    categories: List[ParsedGroup] = []
    seen = set()

    for li in soup.select("#partnames li"):
        a = li.find("a")
        if a is None:
            continue
        href = a.get("href")
        link_text = a.get_text(strip=True)
        if not href or not link_text:
            continue

        code_match = CATEGORY_CODE_PATTERN.match(li.get_text(strip=True))
        if not code_match:
            continue

        absolute_url = urljoin(base_url, href)
        segments = [p for p in urlsplit(absolute_url).path.split("/") if p]
        # [vehicle, frame, trim, category, ...]
        if len(segments) < 4:
            continue
        slug = segments[3]

        if slug in seen:
            logger.debug(f"Skipping duplicate category: {slug}")
            continue
        seen.add(slug)

        categories.append(
            ParsedGroup(id=slug,
                        name=f"{code_match.group(1)} - {link_text}",
                        url=absolute_url))

    return categories


def _is_skipped(href: str) -> bool:
    return (href.startswith(SKIPPED_HREF_PREFIXES)
            or any(fragment in href for fragment in SKIPPED_HREF_FRAGMENTS))


def parse_category_page(html: str, base_url: str,
                        vehicle_path: Optional[str] = None) -> List[str]:
    """Links to follow from a crawled page, in order of appearance.

    Only hrefs that contain the vehicle path prefix are followed; navigation
    chrome, external sites and the quick-search feature are dropped.
    ``<a>`` links come first, then image-map ``<area>`` links.
    """
    vehicle_path = vehicle_path or config.vehicle_path()
    soup = BeautifulSoup(html, "html.parser")
    links: List[str] = []
    seen = set()

    for tag in ("a", "area"):
        for element in soup.find_all(tag):
            href = element.get("href")
            if not href or href in ("/", "../") or _is_skipped(href):
                continue
            if vehicle_path not in href:
                continue

            clean_url = urljoin(base_url, href).split("#")[0]
            if clean_url not in seen:
                seen.add(clean_url)
                links.append(clean_url)

    return links


def extract_all_links(html: str, base_url: str,
                      vehicle_path: Optional[str] = None) -> List[str]:
    """Every navigable link whose resolved URL lies under the vehicle path."""
    vehicle_path = vehicle_path or config.vehicle_path()
    soup = BeautifulSoup(html, "html.parser")
    links: List[str] = []
    seen = set()

    for element in soup.find_all(["a", "area"]):
        href = element.get("href")
        if not href or _is_skipped(href) or "google" in href:
            continue

        clean_url = urljoin(base_url, href).split("#")[0]
        if vehicle_path not in clean_url:
            continue
        if clean_url not in seen:
            seen.add(clean_url)
            links.append(clean_url)

    return links


def extract_page_title(html: str) -> Optional[str]:
    """Page heading used as a subgroup/diagram name."""
    soup = BeautifulSoup(html, "html.parser")

    h1 = soup.find("h1")
    if h1 is not None and h1.get_text(strip=True):
        return h1.get_text(strip=True)

    # Titles read "<Page name> for <Vehicle> ..." or "<Page name> - <Site>"
    title = soup.title.get_text(strip=True) if soup.title else ""
    if title:
        match = re.match(r"^(.+?)\s+for\s+", title, re.IGNORECASE)
        if match:
            return match.group(1).strip()
        return title.split(" - ")[0].strip()

    return None

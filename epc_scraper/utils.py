"""Utility functions for the EPC parts scraper."""
import re
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from slugify import slugify

# Detail pages end in a numeric id, sometimes comma-joined (e.g. /723107,723115/)
DETAIL_ID_PATTERN = re.compile(r"/(\d+(?:,\d+)*)/?(?:\?|$)")


def slugify_name(name: str) -> str:
    """Convert name to URL-safe slug (Cyrillic is transliterated)."""
    return slugify(name, max_length=50)


def parse_int(s: str) -> Optional[int]:
    """Parse the leading integer of a cell, e.g. "2" or "2 pcs"."""
    if not s or not s.strip():
        return None
    match = re.match(r"\s*(\d+)", s.replace(",", ""))
    return int(match.group(1)) if match else None


def clean_description(description: Optional[str]) -> Optional[str]:
    """Normalise comma spacing and whitespace in a part description."""
    if not description:
        return None
    cleaned = re.sub(r",(?!\s)", ", ", description)
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
    return cleaned or None


def clean_subgroup_name(name: str) -> str:
    """Strip vehicle suffixes, scheme prefixes and date-range codes from a page name.

    "Схема 1(ALL (LEFT SIDE))" -> "LEFT SIDE"
    "Oil pump 9706.1-0509.3 for Delica Space Gear HSEUE9" -> "Oil pump"
    """
    cleaned = re.sub(r"\s+for Delica Space Gear \w+", "", name, flags=re.IGNORECASE)
    cleaned = re.sub(r"Схема \d+\(([^)]+(?:\([^)]*\)[^)]*)*)\)", r"\1", cleaned)

    # Date range codes in YYMM.D form
    cleaned = re.sub(r"\(\d{4}\.\d-\d{4}\.\d\)", "", cleaned)
    cleaned = re.sub(r"\d{4}\.\d-\d{4}\.\d\s*", "", cleaned)
    cleaned = re.sub(r"\.{2}\d{4}\.\d-?", "", cleaned)
    cleaned = re.sub(r"\d{4}\.\d-\s*", "", cleaned)
    cleaned = re.sub(r"-\d{4}\.\d\s*", "", cleaned)
    cleaned = re.sub(r"\(\d{4}\.\d-?\)", "", cleaned)

    cleaned = re.sub(r"\bALL\s+\(([^)]+)\)", r"\1", cleaned)

    # Artifacts
    cleaned = re.sub(r"\s*\(\s*\)", "", cleaned)
    cleaned = re.sub(r"\s+-\s*$", "", cleaned)
    cleaned = re.sub(r"^\s*-\s+", "", cleaned)
    cleaned = re.sub(r",(?!\s)", ", ", cleaned)
    cleaned = re.sub(r"\s{2,}", " ", cleaned)
    cleaned = re.sub(r"\s*-\s*-\s*", " - ", cleaned)
    cleaned = re.sub(r" - \(([^)]+)\)$", r" - \1", cleaned)
    cleaned = re.sub(r"^\(([^)]+)\)$", r"\1", cleaned)
    return cleaned.strip()


def path_parts(url: str) -> List[str]:
    """Non-empty path segments of a URL."""
    return [p for p in urlsplit(url).path.split("/") if p]


def with_frame_no(url: str, frame_no: str) -> str:
    """Set the frame_no query parameter that identifies the unit on every request."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "frame_no"]
    if frame_no:
        query.append(("frame_no", frame_no))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def extract_detail_id(href: str) -> Optional[str]:
    """Numeric detail-page id at the end of a link, or None."""
    if not href:
        return None
    match = DETAIL_ID_PATTERN.search(href)
    return match.group(1) if match else None


def safe_filename(identifier: str, max_length: int = 100) -> str:
    """Filesystem-safe name for a diagram id such as engine/oil-pump/left-side."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", identifier)[:max_length]


def get_file_extension_from_content_type(content_type: str) -> str:
    """Get file extension from HTTP Content-Type header."""
    if not content_type:
        return ".bin"

    content_type = content_type.lower().split(';')[0].strip()

    mapping = {
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/png": ".png",
        "image/svg+xml": ".svg",
        "image/gif": ".gif",
        "image/webp": ".webp",
        "image/bmp": ".bmp"
    }

    return mapping.get(content_type, ".bin")


def get_file_extension_from_url(url: str, default: str = ".png") -> str:
    """Get file extension from the last path segment of a URL."""
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    if re.fullmatch(r"\.[a-z]+", suffix):
        return suffix
    return default

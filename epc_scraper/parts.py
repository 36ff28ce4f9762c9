# epc_scraper/parts.py
"""Parts table parsing - anchor/offset extraction from the flat cell sequence."""
import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .datamodel import PARTS_TABLE_HEADERS, ParsedDiagramPage, ParsedPart
from .utils import clean_description, parse_int

logger = logging.getLogger(__name__)

PARTS_TABLE_SELECTOR = "table.top_cars"

# OEM part numbers: MD341830, MR580153, MB123456A ...
OEM_PATTERN = re.compile(r"^[A-Z]{1,3}\d{5,}[A-Z0-9]*$|^[A-Z]{2}[A-Z0-9]{4,}$")

# 02878C, 03195L, 3315, 3315A
PNC_PATTERN = re.compile(r"^\d{5}[A-Z0-9]{0,2}$|^\d{4}[A-Z0-9]?$", re.IGNORECASE)

DATE_RANGE_PATTERN = re.compile(
    r"\d{4}[./-]\d{1,2}[./-]?\d{0,2}\s*[-~]\s*\d{4}[./-]\d{1,2}")

HEADER_PATTERN = re.compile(r"^(" + "|".join(PARTS_TABLE_HEADERS) + r")$", re.IGNORECASE)

# "Replaces MD123456" marks the replacement row; "Replaced by ..." is the old row
REPLACES_PATTERN = re.compile(r"\b(?:[Rr]eplaces|REPLACES)\b[\s:]*([A-Z]{1,3}\d{5,}[A-Z0-9]*)?")

# Row layout around the anchor:
# [No][PNC][OEM][Qty][Name][Spec][Notes][Color] ... [DateRange] ... [Price]
REF_OFFSET = -2
PNC_OFFSET = -1
QUANTITY_OFFSET = 1
DESCRIPTION_OFFSET = 2
SPEC_OFFSET = 3
NOTES_OFFSET = 4
COLOR_OFFSET = 5

DATE_SCAN_WINDOW = 15
# An anchor seen past this offset belongs to the next record
NEXT_ANCHOR_MIN_OFFSET = 6


def has_parts_table(html: str) -> bool:
    """True iff the page carries the parts table."""
    soup = BeautifulSoup(html, "html.parser")
    return soup.select_one(PARTS_TABLE_SELECTOR) is not None


def is_anchor(cell: str) -> bool:
    """OEM-shaped cell that is not header text."""
    if not cell or not OEM_PATTERN.match(cell):
        return False
    lowered = cell.lower()
    return "oem" not in lowered and "part number" not in lowered


def clean_field(value: Optional[str]) -> Optional[str]:
    """Drop empty values and literal column-header text."""
    if not value:
        return None
    if HEADER_PATTERN.match(value) or "per car" in value.lower():
        return None
    return value


def clean_pnc(value: Optional[str]) -> Optional[str]:
    """Accept only 4-5 digit position codes with a short alphanumeric suffix."""
    if value and PNC_PATTERN.match(value):
        return value
    return None


def _cell(cells: List[str], index: int) -> Optional[str]:
    if 0 <= index < len(cells):
        return cells[index] or None
    return None


def _find_date_range(cells: List[str], anchor: int) -> Optional[str]:
    """Scan forward from the anchor for a model date range, stopping at the next record."""
    for j in range(anchor + 1, min(anchor + 1 + DATE_SCAN_WINDOW, len(cells))):
        cell = cells[j]
        if not cell:
            continue
        match = DATE_RANGE_PATTERN.search(cell)
        if match:
            return match.group(0)
        if j > anchor + NEXT_ANCHOR_MIN_OFFSET and is_anchor(cell):
            return None
    return None


def replaces_previous_record(values: List[Optional[str]], previous: Optional[str]) -> bool:
    """True iff a cell says this record replaces ``previous``.

    A marker naming a different part number is not a link to the previous row.
    """
    if previous is None:
        return False
    for value in values:
        match = REPLACES_PATTERN.search(value or "")
        if match and match.group(1) in (None, previous):
            return True
    return False


def extract_parts(cells: List[str]) -> List[ParsedPart]:
    """Recover part records from the flat cell texts of a parts table.

    Every OEM-shaped cell is an anchor; the other fields are read at fixed
    offsets around it. Columns are assumed present: a page that omits one
    shifts the following fields (known approximation, not corrected).
    """
    parts: List[ParsedPart] = []

    for i, cell in enumerate(cells):
        if not is_anchor(cell):
            continue

        notes = clean_field(_cell(cells, i + NOTES_OFFSET))
        spec = clean_field(_cell(cells, i + SPEC_OFFSET))
        replaces_previous = replaces_previous_record(
            [notes, spec], parts[-1].part_number if parts else None)

        parts.append(
            ParsedPart(
                part_number=cell,
                pnc=clean_pnc(_cell(cells, i + PNC_OFFSET)),
                description=clean_description(
                    clean_field(_cell(cells, i + DESCRIPTION_OFFSET))),
                ref_number=clean_field(_cell(cells, i + REF_OFFSET)),
                quantity=parse_int(_cell(cells, i + QUANTITY_OFFSET) or "") or None,
                spec=spec,
                notes=notes,
                color=clean_field(_cell(cells, i + COLOR_OFFSET)),
                model_date_range=_find_date_range(cells, i),
                replaces_previous=replaces_previous,
            ))

    return parts


def parse_parts_page(html: str, base_url: str, diagram_id: str) -> ParsedDiagramPage:
    """Parse a detail page: diagram name, image and the parts table.

    The ``table.top_cars`` table mixes headers and several stacked records
    in one row, so all ``td`` texts are flattened and handed to
    :func:`extract_parts`.
    """
    soup = BeautifulSoup(html, "html.parser")

    h1 = soup.find("h1")
    title = soup.title.get_text(strip=True) if soup.title else ""
    name = ((h1.get_text(strip=True) if h1 is not None else "")
            or title.split(" for ")[0].strip()
            or diagram_id)

    image_url: Optional[str] = None
    img = soup.select_one("img.parts_picture[src]")
    if img is not None:
        image_url = urljoin(base_url, img["src"])

    parts: List[ParsedPart] = []
    table = soup.select_one(PARTS_TABLE_SELECTOR)
    if table is not None:
        cells = [td.get_text(strip=True) for td in table.find_all("td")]
        parts = extract_parts(cells)

    return ParsedDiagramPage(diagram_id=diagram_id, name=name,
                             image_url=image_url, parts=parts)

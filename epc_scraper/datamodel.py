"""Data models for the EPC parts scraper."""
from dataclasses import dataclass, field
from typing import List, Literal, Optional

CrawlStatus = Literal["pending", "completed", "failed"]


@dataclass
class Group:
    """Top-level category from the index page; id is the URL slug."""
    id: str
    name: str


@dataclass
class Subgroup:
    """Subcategory; every section of one listing page shares the same path."""
    id: str
    name: str
    group_id: str
    path: str


@dataclass
class Diagram:
    """One parts illustration."""
    id: str
    group_id: str
    subgroup_id: Optional[str]
    name: str
    image_url: Optional[str]
    source_url: str
    image_path: Optional[str] = None


@dataclass
class Part:
    """One catalogue row, unique per (part_number, diagram_id)."""
    part_number: str
    diagram_id: str
    group_id: str
    subgroup_id: Optional[str] = None
    detail_page_id: Optional[str] = None
    pnc: Optional[str] = None
    description: Optional[str] = None
    ref_number: Optional[str] = None
    quantity: Optional[int] = None
    spec: Optional[str] = None
    notes: Optional[str] = None
    color: Optional[str] = None
    model_date_range: Optional[str] = None
    replacement_part_number: Optional[str] = None
    replaces_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class CrawlState:
    """Durable traversal progress for a single URL."""
    url: str
    status: CrawlStatus
    error: Optional[str] = None
    updated_at: Optional[str] = None


# ----------------------------- parsed records -----------------------------


@dataclass
class ParsedGroup:
    """Category entry from the index page."""
    id: str
    name: str
    url: str


@dataclass
class DetailListSection:
    """One headed diagram section of a listing page."""
    heading: str
    slug: str
    image_url: Optional[str]
    detail_page_ids: List[str] = field(default_factory=list)


@dataclass
class ParsedPart:
    """A part record recovered from the flat cell sequence of a parts table."""
    part_number: str
    pnc: Optional[str] = None
    description: Optional[str] = None
    ref_number: Optional[str] = None
    quantity: Optional[int] = None
    spec: Optional[str] = None
    notes: Optional[str] = None
    color: Optional[str] = None
    model_date_range: Optional[str] = None
    replaces_previous: bool = False


@dataclass
class ParsedDiagramPage:
    """Everything extracted from one detail page."""
    diagram_id: str
    name: str
    image_url: Optional[str]
    parts: List[ParsedPart] = field(default_factory=list)


@dataclass
class DiagramTarget:
    """Diagram/subgroup pair a detail page's parts are attached to."""
    diagram_id: str
    subgroup_id: Optional[str]


@dataclass
class FetchResult:
    """Outcome of one fetch; never raised, always returned."""
    ok: bool
    url: str
    status_code: Optional[int] = None
    html: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = ""
    error: Optional[str] = None
    exception: Optional[Exception] = None


# Column order for CSV/Parquet exports
PART_EXPORT_HEADERS = [
    "group_id", "group_name", "subgroup_id", "subgroup_name", "diagram_id",
    "diagram_name", "detail_page_id", "ref_number", "pnc", "part_number",
    "description", "quantity", "spec", "notes", "color", "model_date_range",
    "replacement_part_number", "image_path", "source_url"
]

# Literal column headers of the parts table, rejected as field values
PARTS_TABLE_HEADERS = (
    "no", "pnc", "oem", "required", "name", "spec", "notes", "color"
)

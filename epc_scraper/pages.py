"""Page classification - one step that tags each fetched page with its kind."""
from enum import Enum
from typing import Optional

from . import config
from .listing import is_subcategory_listing
from .parts import has_parts_table
from .utils import path_parts


class PageKind(str, Enum):
    INDEX = "index"          # vehicle index with the category list
    LISTING = "listing"      # subgroup page with diagram sections
    DETAIL = "detail"        # leaf page with a parts table
    CATEGORY = "category"    # anything else under the vehicle path; links only


def classify_page(html: str, url: str, vehicle_path: Optional[str] = None) -> PageKind:
    """Decide which extraction applies to a page."""
    if has_parts_table(html):
        return PageKind.DETAIL
    if is_subcategory_listing(html, url):
        return PageKind.LISTING

    vehicle_path = vehicle_path or config.vehicle_path()
    if path_parts(url) == [p for p in vehicle_path.split("/") if p]:
        return PageKind.INDEX
    return PageKind.CATEGORY

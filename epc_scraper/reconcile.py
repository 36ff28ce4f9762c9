"""Attach extracted records to the right group/subgroup/diagram and persist them."""
import logging
from typing import Dict, List, Optional, Tuple

from .catalogue import extract_page_title
from .datamodel import (Diagram, DiagramTarget, Group, ParsedPart, Part,
                        Subgroup)
from .listing import detail_page_id_from_url, parse_detail_list_sections
from .parts import parse_parts_page
from .store import DataStore
from .utils import clean_subgroup_name, path_parts

logger = logging.getLogger(__name__)

# [vehicle, frame, trim, group, subgroup, detail_id]
GROUP_SEGMENT = 3
SUBGROUP_SEGMENT = 4


class DiagramMapping:
    """In-memory detail_page_id -> DiagramTarget cache for one run.

    Filled from listing pages, read by detail pages visited afterwards. It is
    not persisted; repairs.repair_shared_parts covers what a restart loses.
    """

    def __init__(self):
        self._targets: Dict[str, DiagramTarget] = {}

    def record(self, detail_page_id: str, target: DiagramTarget):
        self._targets[detail_page_id] = target

    def lookup(self, detail_page_id: Optional[str]) -> Optional[DiagramTarget]:
        if not detail_page_id:
            return None
        return self._targets.get(detail_page_id)

    def __len__(self):
        return len(self._targets)


def _slugs(url: str) -> Tuple[Optional[str], Optional[str]]:
    segments = path_parts(url)
    group_slug = segments[GROUP_SEGMENT] if len(segments) > GROUP_SEGMENT else None
    subgroup_slug = segments[SUBGROUP_SEGMENT] if len(segments) > SUBGROUP_SEGMENT else None
    return group_slug, subgroup_slug


def _page_name(html: str, subgroup_slug: str) -> str:
    raw = extract_page_title(html) or subgroup_slug.replace("-", " ")
    return clean_subgroup_name(raw)


def build_part_rows(parsed: List[ParsedPart], detail_page_id: Optional[str],
                    diagram_id: str, group_id: str,
                    subgroup_id: Optional[str]) -> Tuple[List[Part], List[bool]]:
    """Stored Part rows for one detail page plus the per-row replaces flags."""
    rows = [
        Part(part_number=p.part_number,
             diagram_id=diagram_id,
             group_id=group_id,
             subgroup_id=subgroup_id,
             detail_page_id=detail_page_id,
             pnc=p.pnc,
             description=p.description,
             ref_number=p.ref_number,
             quantity=p.quantity,
             spec=p.spec,
             notes=p.notes,
             color=p.color,
             model_date_range=p.model_date_range) for p in parsed
    ]
    return rows, [p.replaces_previous for p in parsed]


class Reconciler:
    """Maps listing sections and detail pages onto stored diagrams."""

    def __init__(self, store: DataStore, mapping: Optional[DiagramMapping] = None):
        self.store = store
        self.mapping = mapping if mapping is not None else DiagramMapping()

        self.mapping_hits: int = 0
        self.mapping_misses: int = 0

    def process_listing_page(self, url: str, html: str) -> int:
        """Create the subgroup(s) and diagram(s) of a listing page.

        One section (or none): subgroup id and diagram id are both
        ``group/subgroup``; the diagram exists only if the section has an
        image. Several sections: one subgroup+diagram pair per section with
        id ``group/subgroup/<slug>``, all sharing the page's path.

        Returns:
            Number of sections found
        """
        group_slug, subgroup_slug = _slugs(url)
        if not group_slug or not subgroup_slug:
            return 0

        base_path = f"{group_slug}/{subgroup_slug}"
        page_title = _page_name(html, subgroup_slug)
        sections = parse_detail_list_sections(html, url)

        if not sections:
            logger.warning(f"  Listing page has no diagram sections: {url}")

        if len(sections) <= 1:
            self.store.save_subgroup(
                Subgroup(id=base_path, name=page_title, group_id=group_slug, path=base_path))
            logger.info(f"  Subgroup: {page_title} (group: {group_slug})")

            if sections and sections[0].image_url:
                section = sections[0]
                self.store.save_diagram(
                    Diagram(id=base_path,
                            group_id=group_slug,
                            subgroup_id=base_path,
                            name=page_title,
                            image_url=section.image_url,
                            source_url=url))
                target = DiagramTarget(diagram_id=base_path, subgroup_id=base_path)
                for detail_id in section.detail_page_ids:
                    self.mapping.record(detail_id, target)
                logger.info(f"    Diagram created with {len(section.detail_page_ids)} detail pages")
            return len(sections)

        logger.info(f"  Subgroup: {page_title} with {len(sections)} diagram sections")
        for section in sections:
            section_id = f"{base_path}/{section.slug}"
            heading = clean_subgroup_name(section.heading)

            self.store.save_subgroup(
                Subgroup(id=section_id,
                         name=f"{page_title} - {heading}",
                         group_id=group_slug,
                         path=base_path))
            self.store.save_diagram(
                Diagram(id=section_id,
                        group_id=group_slug,
                        subgroup_id=section_id,
                        name=heading,
                        image_url=section.image_url,
                        source_url=url))

            target = DiagramTarget(diagram_id=section_id, subgroup_id=section_id)
            for detail_id in section.detail_page_ids:
                self.mapping.record(detail_id, target)
            logger.info(f"    - \"{section.heading}\": {len(section.detail_page_ids)} detail pages")

        return len(sections)

    def process_detail_page(self, url: str, html: str) -> int:
        """Parse a parts page and store its rows under the mapped (or fallback) diagram.

        Returns:
            Number of part rows inserted
        """
        group_slug, subgroup_slug = _slugs(url)
        group_slug = group_slug or "unknown"
        detail_page_id = detail_page_id_from_url(url)

        target = self.mapping.lookup(detail_page_id)
        if target is not None:
            self.mapping_hits += 1
            page = parse_parts_page(html, url, target.diagram_id)
            subgroup_id = target.subgroup_id
            logger.info(f"  Parts page: {page.name}, {len(page.parts)} part(s) found")
        else:
            # Mapping miss: the listing page was not seen this run
            self.mapping_misses += 1
            diagram_id = f"{group_slug}/{subgroup_slug}" if subgroup_slug else group_slug
            page = parse_parts_page(html, url, diagram_id)
            subgroup_id = diagram_id if subgroup_slug else None
            logger.info(f"  Parts page (fallback): {page.name}, {len(page.parts)} part(s) found")

            self.store.save_group(Group(id=group_slug, name=group_slug))
            if subgroup_id:
                self.store.save_subgroup(
                    Subgroup(id=subgroup_id,
                             name=_page_name(html, subgroup_slug),
                             group_id=group_slug,
                             path=subgroup_id),
                    overwrite=False)
            self.store.save_diagram(
                Diagram(id=page.diagram_id,
                        group_id=group_slug,
                        subgroup_id=subgroup_id,
                        name=page.name,
                        image_url=page.image_url,
                        source_url=url),
                overwrite=False)

        if not page.parts:
            logger.warning(f"  Parts table yielded no parts: {url}")
            return 0

        rows, replaces_flags = build_part_rows(page.parts, detail_page_id, page.diagram_id,
                                               group_slug, subgroup_id)
        return self.store.insert_parts(rows, replaces_previous=replaces_flags)

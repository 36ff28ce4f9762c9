"""Repair pass tests.

The shared-parts repair re-fetches listing pages through a scripted
FakeFetcher; tenacity's sleep is stubbed so retry tests take no time.
"""

from __future__ import annotations

from typing import List

import pytest

from conftest import (FakeFetcher, VEHICLE, listing_page_html, page_url,
                      parts_page_html)

from epc_scraper import repairs
from epc_scraper.datamodel import Diagram, FetchResult, Group, Part, Subgroup
from epc_scraper.exceptions import RateLimitError
from epc_scraper.reconcile import Reconciler
from epc_scraper.repairs import merge_replacement_parts, repair_shared_parts
from epc_scraper.store import DataStore

DOOR = "body/door/"
DOOR_PATH = VEHICLE + DOOR


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(repairs._fetch_listing.retry, "sleep", lambda seconds: None)


def _section_diagrams(store: DataStore, slugs: List[str], path: str = "body/door") -> None:
    store.save_group(Group(id="body", name="13 - Body"))
    for slug in slugs:
        section_id = f"{path}/{slug}"
        store.save_subgroup(Subgroup(id=section_id, name=slug, group_id="body", path=path))
        store.save_diagram(Diagram(id=section_id, group_id="body", subgroup_id=section_id,
                                   name=slug, image_url=None, source_url="s"))


def _part(number: str, diagram_id: str, detail_page_id: str = "500", **kwargs) -> Part:
    return Part(part_number=number, diagram_id=diagram_id, group_id="body",
                subgroup_id=diagram_id, detail_page_id=detail_page_id, **kwargs)


# ---------------------------------------------------------------------------
# Cross-diagram sharing
# ---------------------------------------------------------------------------

class TestRepairSharedParts:
    def test_copies_shared_parts_to_missing_diagram(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        store.insert_parts([_part("MD123456", "body/door/front", description="Bolt")])
        fetcher = FakeFetcher({DOOR_PATH: listing_page_html(
            [("Front", None, ["500"]), ("Rear", None, ["500", "501"])], DOOR)})

        assert repair_shared_parts(store, fetcher) == 1

        front = store.get_parts("body/door/front")
        rear = store.get_parts("body/door/rear")
        assert [p.part_number for p in front] == ["MD123456"]
        assert [p.part_number for p in rear] == ["MD123456"]
        assert rear[0].subgroup_id == "body/door/rear"
        assert rear[0].description == "Bolt"
        assert rear[0].detail_page_id == "500"

    def test_second_run_adds_nothing(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        store.insert_parts([_part("MD123456", "body/door/front")])
        fetcher = FakeFetcher({DOOR_PATH: listing_page_html(
            [("Front", None, ["500"]), ("Rear", None, ["500"])], DOOR)})

        repair_shared_parts(store, fetcher)
        assert repair_shared_parts(store, fetcher) == 0
        assert len(store.get_parts()) == 2

    def test_requests_carry_frame_no(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        fetcher = FakeFetcher({DOOR_PATH: listing_page_html(
            [("Front", None, []), ("Rear", None, [])], DOOR)})

        repair_shared_parts(store, fetcher, frame_no="PD6W-0500001")

        assert fetcher.fetched == [
            "https://mitsubishi.epc-data.com" + DOOR_PATH + "?frame_no=PD6W-0500001"]

    def test_section_count_mismatch_skips_path(self, store: DataStore,
                                               caplog: pytest.LogCaptureFixture) -> None:
        _section_diagrams(store, ["front", "rear"])
        _section_diagrams(store, ["left", "right"], path="body/mirror")
        store.insert_parts([_part("MD1", "body/door/front"),
                            _part("MD2", "body/mirror/left", detail_page_id="700")])
        fetcher = FakeFetcher({
            DOOR_PATH: listing_page_html([("Front", None, ["500"])], DOOR),
            VEHICLE + "body/mirror/": listing_page_html(
                [("Left", None, ["700"]), ("Right", None, ["700"])], "body/mirror/"),
        })

        assert repair_shared_parts(store, fetcher) == 1
        assert "Skipping body/door" in caplog.text
        assert store.get_parts("body/door/rear") == []
        assert len(store.get_parts("body/mirror/right")) == 1

    def test_unknown_section_skips_path(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        store.insert_parts([_part("MD1", "body/door/front")])
        fetcher = FakeFetcher({DOOR_PATH: listing_page_html(
            [("Front", None, ["500"]), ("Middle", None, ["500"])], DOOR)})

        assert repair_shared_parts(store, fetcher) == 0

    def test_unreachable_listing_skips_path(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        assert repair_shared_parts(store, FakeFetcher()) == 0

    def test_rate_limited_fetch_is_retried(self, store: DataStore) -> None:
        _section_diagrams(store, ["front", "rear"])
        store.insert_parts([_part("MD1", "body/door/front")])
        html = listing_page_html([("Front", None, ["500"]), ("Rear", None, ["500"])], DOOR)

        class FlakyFetcher(FakeFetcher):
            def fetch(self, url: str) -> FetchResult:
                if len(self.fetched) < 2:
                    self.fetched.append(url)
                    err = RateLimitError()
                    return FetchResult(ok=False, url=url, status_code=429,
                                       error=str(err), exception=err)
                return super().fetch(url)

        fetcher = FlakyFetcher({DOOR_PATH: html})
        assert repair_shared_parts(store, fetcher) == 1
        assert len(fetcher.fetched) == 3


# ---------------------------------------------------------------------------
# Replacement merge
# ---------------------------------------------------------------------------

class TestMergeReplacementParts:
    def _seed(self, store: DataStore) -> None:
        _section_diagrams(store, ["front"])

    def test_collapses_replacement_row(self, store: DataStore) -> None:
        self._seed(store)
        store.insert_parts([_part("MD123456", "body/door/front"),
                            _part("MD999999", "body/door/front")],
                           replaces_previous=[False, True])
        a, b = store.get_parts()

        assert merge_replacement_parts(store) == 1

        remaining = store.get_parts()
        assert [p.id for p in remaining] == [a.id]
        assert remaining[0].replacement_part_number == "MD999999"

    def test_explicit_ids(self, store: DataStore) -> None:
        self._seed(store)
        store.insert_parts([_part("MD111111", "body/door/front", id=10)])
        store.insert_parts([_part("MD999999", "body/door/front", replaces_id=10)])

        merge_replacement_parts(store)

        parts = store.get_parts()
        assert len(parts) == 1
        assert parts[0].part_number == "MD111111"
        assert parts[0].replacement_part_number == "MD999999"

    def test_rerun_is_noop(self, store: DataStore) -> None:
        self._seed(store)
        store.insert_parts([_part("MD123456", "body/door/front"),
                            _part("MD999999", "body/door/front")],
                           replaces_previous=[False, True])

        merge_replacement_parts(store)
        before = store.get_parts()
        assert merge_replacement_parts(store) == 0
        assert store.get_parts() == before

    def test_nothing_to_merge(self, store: DataStore) -> None:
        self._seed(store)
        store.insert_parts([_part("MD1", "body/door/front")])
        assert merge_replacement_parts(store) == 0
        assert len(store.get_parts()) == 1

    def test_replaced_by_row_survives_merge(self, store: DataStore) -> None:
        plain = ["04402", "02877", "MD111111", "1", "Washer", "", "", ""]
        old = ["04403", "02878C", "MD123456", "2", "Bolt", "", "Replaced by MD999999", ""]
        new = ["04403", "02878C", "MD999999", "2", "Bolt", "", "Replaces MD123456", ""]
        Reconciler(store).process_detail_page(page_url(DOOR + "500/"),
                                              parts_page_html([plain, old, new]))

        assert merge_replacement_parts(store) == 1

        assert {p.part_number: p.replacement_part_number for p in store.get_parts()} == {
            "MD111111": None, "MD123456": "MD999999"}

    def test_replacement_wording_deletes_nothing(self, store: DataStore) -> None:
        plain = ["04402", "02877", "MD111111", "1", "Washer", "", "", ""]
        kit = ["04403", "02878C", "MD222222", "1", "Kit", "", "Replacement kit", ""]
        Reconciler(store).process_detail_page(page_url(DOOR + "500/"),
                                              parts_page_html([plain, kit]))

        assert merge_replacement_parts(store) == 0

        assert {p.part_number: p.replacement_part_number for p in store.get_parts()} == {
            "MD111111": None, "MD222222": None}

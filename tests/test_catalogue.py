"""Index/category navigation parsing and page classification."""

from __future__ import annotations

from conftest import (VEHICLE, index_page_html, links_page_html,
                      listing_page_html, page_url, parts_page_html)

from epc_scraper.catalogue import (extract_all_links, extract_page_title,
                                   parse_category_page, parse_index_page)
from epc_scraper.pages import PageKind, classify_page


# ---------------------------------------------------------------------------
# parse_index_page
# ---------------------------------------------------------------------------

class TestParseIndexPage:
    def test_categories_in_order_with_codes(self) -> None:
        html = index_page_html([("11", "Engine", "engine"), ("12", "Lubrication", "lubrication")])
        groups = parse_index_page(html, page_url())

        assert [(g.id, g.name) for g in groups] == [
            ("engine", "11 - Engine"),
            ("lubrication", "12 - Lubrication"),
        ]
        assert groups[0].url == page_url("engine/")

    def test_duplicate_slugs_dropped(self) -> None:
        html = index_page_html([("11", "Engine", "engine"), ("11", "Engine", "engine")])
        assert len(parse_index_page(html, page_url())) == 1

    def test_items_without_code_ignored(self) -> None:
        html = f'<ul id="partnames"><li><a href="{VEHICLE}misc/">Misc</a></li></ul>'
        assert parse_index_page(html, page_url()) == []


# ---------------------------------------------------------------------------
# Link extraction
# ---------------------------------------------------------------------------

class TestParseCategoryPage:
    def test_keeps_vehicle_links_in_order(self) -> None:
        html = links_page_html(["body/door/", "body/mirror/", "body/door/#top"])
        assert parse_category_page(html, page_url("body/")) == [
            page_url("body/door/"),
            page_url("body/mirror/"),
        ]

    def test_drops_chrome_external_and_quick_search(self) -> None:
        html = ("<html><body>"
                '<a href="/">home</a><a href="../">up</a><a href="#x">x</a>'
                '<a href="javascript:void(0)">js</a><a href="mailto:a@b.c">mail</a>'
                f'<a href="https://www.amayama.com{VEHICLE}body/">ext</a>'
                f'<a href="{VEHICLE}quick/search/">quick</a>'
                '<a href="/other_car/x/y/body/">other</a>'
                f'<a href="{VEHICLE}body/">ok</a>'
                "</body></html>")
        assert parse_category_page(html, page_url()) == [page_url("body/")]

    def test_area_links_follow_anchor_links(self) -> None:
        html = (f'<map><area href="{VEHICLE}body/door/500/"></map>'
                f'<a href="{VEHICLE}body/mirror/">m</a>')
        assert parse_category_page(html, page_url("body/")) == [
            page_url("body/mirror/"),
            page_url("body/door/500/"),
        ]

    def test_extract_all_links_resolves_relative(self) -> None:
        html = '<a href="door/">door</a><a href="https://google.com/x">g</a>'
        assert extract_all_links(html, page_url("body/")) == [page_url("body/door/")]


class TestExtractPageTitle:
    def test_h1_wins(self) -> None:
        assert extract_page_title("<title>T for X</title><h1>Oil pump</h1>") == "Oil pump"

    def test_title_forms(self) -> None:
        assert extract_page_title("<title>Oil pump for Delica</title>") == "Oil pump"
        assert extract_page_title("<title>Oil pump - EPC</title>") == "Oil pump"

    def test_none(self) -> None:
        assert extract_page_title("<html></html>") is None


# ---------------------------------------------------------------------------
# classify_page
# ---------------------------------------------------------------------------

class TestClassifyPage:
    def test_detail(self) -> None:
        assert classify_page(parts_page_html([]), page_url("body/door/500/")) is PageKind.DETAIL

    def test_listing(self) -> None:
        html = listing_page_html([("Front", None, ["500"])], "body/door/")
        assert classify_page(html, page_url("body/door/")) is PageKind.LISTING

    def test_index(self) -> None:
        html = index_page_html([("11", "Engine", "engine")])
        assert classify_page(html, page_url() + "?frame_no=X") is PageKind.INDEX

    def test_category(self) -> None:
        assert classify_page(links_page_html(["body/door/"]), page_url("body/")) is PageKind.CATEGORY

"""Shared fixtures: temporary stores, a scripted fetcher and small HTML builders.

Nothing here touches the network. Pages are served from a dict keyed by URL
path, so the ``frame_no`` query parameter never affects lookups.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import pytest

from epc_scraper import config
from epc_scraper.datamodel import FetchResult
from epc_scraper.exceptions import NetworkError
from epc_scraper.store import DataStore

VEHICLE = "/delica_space_gear/pd6w/hseue9/"
SITE = "https://mitsubishi.epc-data.com"


def page_url(path: str = "") -> str:
    """Absolute URL under the test vehicle, e.g. page_url("body/door/")."""
    return SITE + VEHICLE + path


# ---------------------------------------------------------------------------
# HTML builders
# ---------------------------------------------------------------------------

HEADER_CELLS = ["No", "PNC", "OEM part number", "Required per car", "Name", "Spec", "Notes", "Color"]


def parts_page_html(rows: Iterable[Sequence[str]], h1: str = "Door lock",
                    image: Optional[str] = "/images/door_lock.png") -> str:
    cells = "".join(f"<td>{c}</td>" for c in HEADER_CELLS)
    for row in rows:
        cells += "".join(f"<td>{c}</td>" for c in row)
    img = f'<img class="parts_picture" src="{image}">' if image else ""
    return (f"<html><head><title>{h1} for Delica Space Gear HSEUE9</title></head>"
            f"<body><h1>{h1}</h1>{img}"
            f'<table class="top_cars"><tr>{cells}</tr></table></body></html>')


def listing_page_html(sections: List[Tuple[str, Optional[str], List[str]]],
                      path: str, h1: str = "Door") -> str:
    """sections: (heading, image src or None, detail ids)."""
    tds = ""
    for heading, image, ids in sections:
        img = f'<img class="parts_picture" src="{image}">' if image else ""
        links = "".join(f'<a href="{VEHICLE}{path}{i}/">{i}</a>' for i in ids)
        tds += f'<td class="detail-list"><h4>{heading}</h4>{img}{links}</td>'
    return f"<html><body><h1>{h1}</h1><table><tr>{tds}</tr></table></body></html>"


def index_page_html(categories: List[Tuple[str, str, str]]) -> str:
    """categories: (code, name, slug)."""
    items = "".join(f'<li>{code} - <a href="{VEHICLE}{slug}/">{name}</a></li>'
                    for code, name, slug in categories)
    return f'<html><body><ul id="partnames">{items}</ul></body></html>'


def links_page_html(paths: List[str], h1: str = "Body") -> str:
    links = "".join(f'<a href="{VEHICLE}{p}">{p}</a>' for p in paths)
    return f"<html><body><h1>{h1}</h1>{links}</body></html>"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeFetcher:
    """Serves scripted pages by URL path and records every request."""

    def __init__(self, pages: Optional[Dict[str, str]] = None,
                 images: Optional[Dict[str, bytes]] = None) -> None:
        self.pages = pages or {}
        self.images = images or {}
        self.fetched: List[str] = []
        self.closed = False

    def fetch(self, url: str) -> FetchResult:
        self.fetched.append(url)
        html = self.pages.get(urlsplit(url).path)
        if html is None:
            err = NetworkError("HTTP 404", status_code=404)
            return FetchResult(ok=False, url=url, status_code=404, error=str(err), exception=err)
        return FetchResult(ok=True, url=url, status_code=200, html=html, content_type="text/html")

    def fetch_binary(self, url: str) -> FetchResult:
        self.fetched.append(url)
        data = self.images.get(urlsplit(url).path)
        if data is None:
            err = NetworkError("HTTP 404", status_code=404)
            return FetchResult(ok=False, url=url, status_code=404, error=str(err), exception=err)
        return FetchResult(ok=True, url=url, status_code=200, data=data, content_type="image/png")

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def vehicle_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Pin vehicle identity and output paths so a local .env cannot leak in."""
    monkeypatch.setattr(config, "SITE_URL", SITE)
    monkeypatch.setattr(config, "VEHICLE_SLUG", "delica_space_gear")
    monkeypatch.setattr(config, "FRAME_NAME", "pd6w")
    monkeypatch.setattr(config, "TRIM_CODE", "hseue9")
    monkeypatch.setattr(config, "FRAME_NO", "")
    monkeypatch.setattr(config, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(config, "IMAGES_DIR", tmp_path / "images")
    monkeypatch.setattr(config, "SQLITE_PATH", tmp_path / "sqlite" / "test.sqlite")
    monkeypatch.setattr(config, "CSV_OUTPUT", tmp_path / "csv" / "parts.csv")
    monkeypatch.setattr(config, "PARQUET_OUTPUT", tmp_path / "parquet" / "parts.parquet")


@pytest.fixture()
def store(tmp_path: Path) -> DataStore:
    """Fresh on-disk store per test."""
    return DataStore(tmp_path / "catalogue.sqlite")

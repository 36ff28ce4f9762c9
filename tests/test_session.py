"""Rate-limited fetcher tests.

The requests session is a MagicMock and ``sleep`` is a recording stub, so
delays are asserted exactly and no time passes.
"""

from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import requests

from epc_scraper.exceptions import NetworkError, RateLimitError
from epc_scraper.session import RateLimitedFetcher, download_image, make_session


def _response(status: int, text: str = "", content: bytes = b"",
              content_type: str = "text/html") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.content = content
    resp.headers = {"content-type": content_type}
    return resp


def _fetcher(session: MagicMock, sleeps: List[float], **kwargs) -> RateLimitedFetcher:
    params = dict(initial_delay=3.0, min_delay=1.0, max_delay=120.0,
                  backoff_multiplier=1.5, success_decay=0.9)
    params.update(kwargs)
    return RateLimitedFetcher(session=session, sleep=sleeps.append, **params)


# ---------------------------------------------------------------------------
# Delay adaptation
# ---------------------------------------------------------------------------

class TestBackoff:
    def test_three_rate_limits_grow_delay(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(429)
        sleeps: List[float] = []
        fetcher = _fetcher(session, sleeps)

        results = [fetcher.fetch("https://x/a") for _ in range(3)]

        assert sleeps == [3.0, 4.5, 6.75]
        assert all(not r.ok for r in results)
        assert isinstance(results[0].exception, RateLimitError)
        assert results[0].status_code == 429

    def test_transport_error_backs_off(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        sleeps: List[float] = []
        fetcher = _fetcher(session, sleeps)

        result = fetcher.fetch("https://x/a")

        assert not result.ok
        assert isinstance(result.exception, NetworkError)
        assert result.status_code is None
        assert "ConnectionError" in result.error
        assert fetcher.current_delay == 4.5

    def test_delay_clamped_to_max(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(429)
        fetcher = _fetcher(session, [], initial_delay=100.0)

        fetcher.fetch("https://x/a")
        fetcher.fetch("https://x/a")

        assert fetcher.current_delay == 120.0

    def test_other_http_errors_keep_delay(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(404)
        fetcher = _fetcher(session, [])

        result = fetcher.fetch("https://x/missing")

        assert not result.ok
        assert result.status_code == 404
        assert result.error == "HTTP 404"
        assert fetcher.current_delay == 3.0

    def test_server_error_keeps_delay(self) -> None:
        # After the adapter gives up, the last 5xx response reaches the fetcher
        session = MagicMock()
        session.get.return_value = _response(503)
        fetcher = _fetcher(session, [])

        result = fetcher.fetch("https://x/a")

        assert not result.ok
        assert result.status_code == 503
        assert result.error == "HTTP 503"
        assert fetcher.current_delay == 3.0

    def test_adapter_returns_exhausted_5xx_response(self) -> None:
        retry = make_session().get_adapter("https://x/a").max_retries

        assert retry.raise_on_status is False
        assert 503 in retry.status_forcelist
        assert 429 not in retry.status_forcelist


class TestSuccess:
    def test_success_relaxes_toward_min(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(200, text="<html>ok</html>")
        sleeps: List[float] = []
        fetcher = _fetcher(session, sleeps)

        result = fetcher.fetch("https://x/a")

        assert result.ok
        assert result.html == "<html>ok</html>"
        assert fetcher.current_delay == 3.0 * 0.9
        assert sleeps == [3.0]

    def test_delay_never_below_min(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(200)
        fetcher = _fetcher(session, [], initial_delay=1.0)

        fetcher.fetch("https://x/a")

        assert fetcher.current_delay == 1.0

    def test_fetch_binary_returns_bytes(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(200, content=b"\x89PNG", content_type="image/png")
        result = _fetcher(session, []).fetch_binary("https://x/a.png")

        assert result.ok
        assert result.data == b"\x89PNG"
        assert result.content_type == "image/png"

    def test_fetchers_do_not_share_delay(self) -> None:
        slow = MagicMock()
        slow.get.return_value = _response(429)
        a = _fetcher(slow, [])
        b = _fetcher(MagicMock(), [])

        a.fetch("https://x/a")

        assert a.current_delay == 4.5
        assert b.current_delay == 3.0


# ---------------------------------------------------------------------------
# download_image
# ---------------------------------------------------------------------------

class TestDownloadImage:
    def test_writes_file_with_content_type_extension(self, tmp_path: Path) -> None:
        session = MagicMock()
        session.get.return_value = _response(200, content=b"GIF89a", content_type="image/gif")
        fetcher = _fetcher(session, [])

        path = download_image(fetcher, "https://x/img/d1", tmp_path / "engine_oil")

        assert path == str(tmp_path / "engine_oil.gif")
        assert Path(path).read_bytes() == b"GIF89a"

    def test_falls_back_to_url_extension(self, tmp_path: Path) -> None:
        session = MagicMock()
        session.get.return_value = _response(200, content=b"data", content_type="")
        fetcher = _fetcher(session, [])

        path = download_image(fetcher, "https://x/img/d1.jpg", tmp_path / "d1")

        assert path == str(tmp_path / "d1.jpg")

    def test_empty_payload_rejected(self, tmp_path: Path) -> None:
        session = MagicMock()
        session.get.return_value = _response(200, content=b"", content_type="image/png")

        assert download_image(_fetcher(session, []), "https://x/a.png", tmp_path / "a") is None
        assert not (tmp_path / "a.png").exists()

    def test_failed_fetch_returns_none(self, tmp_path: Path) -> None:
        session = MagicMock()
        session.get.return_value = _response(500)

        assert download_image(_fetcher(session, []), "https://x/a.png", tmp_path / "a") is None

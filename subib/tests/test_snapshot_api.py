"""Tests for the HTTP snapshot source."""

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from subib.config import ApiConfig
from subib.errors import SnapshotFetchError
from subib.services.snapshot_api import HttpSnapshotSource


def _run(coro):
    """Helper to run an async function from sync test code."""
    return asyncio.run(coro)


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


def _source(session):
    return HttpSnapshotSource(ApiConfig(base_url="https://api.example.com/api", timeout=5), session=session)


class TestHttpSnapshotSource:
    def test_fetch_converts_snapshots(self):
        session = MagicMock()
        session.get.return_value = _response(body={
            "success": True,
            "data": {
                "snapshots": [{
                    "id": "s1",
                    "timestamp": 1_709_294_400_000,
                    "sub_ibs": [{"ownerName": "Jane", "clients": [{"userId": 1}]}],
                }],
                "pagination": {"page": 2, "limit": 50, "total": 51, "totalPages": 2},
            },
        })

        result = _run(_source(session).fetch(2, 50))

        session.get.assert_called_once_with(
            "https://api.example.com/api/vantage-scraper",
            params={"page": 2, "limit": 50},
            timeout=5,
        )
        assert result["snapshots"][0].id == "s1"
        assert result["snapshots"][0].sub_ibs[0].owner_name == "Jane"
        assert result["pagination"]["totalPages"] == 2

    def test_http_error_uses_server_message(self):
        session = MagicMock()
        session.get.return_value = _response(500, {"message": "scraper down"})
        with pytest.raises(SnapshotFetchError, match="scraper down") as exc:
            _source(session).get_page(1, 50)
        assert exc.value.status_code == 500

    def test_http_error_without_body(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        with pytest.raises(SnapshotFetchError, match="API Error: 404"):
            _source(session).get_page(1, 50)

    def test_unsuccessful_payload(self):
        session = MagicMock()
        session.get.return_value = _response(body={"success": False})
        with pytest.raises(SnapshotFetchError, match="Failed to fetch snapshots"):
            _source(session).get_page(1, 50)

    def test_network_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(SnapshotFetchError, match="Network error"):
            _run(_source(session).fetch(1, 50))

    def test_exhausted_status_retries_report_last_status(self):
        source = HttpSnapshotSource(ApiConfig(base_url="https://api.example.com"))
        retry = source.session.get_adapter("https://api.example.com").max_retries
        assert retry.raise_on_status is False
        assert 503 in retry.status_forcelist

        session = MagicMock()
        session.get.return_value = _response(503, {"error": "busy"})
        with pytest.raises(SnapshotFetchError, match="busy") as exc:
            _source(session).get_page(1, 50)
        assert exc.value.status_code == 503
        source.close()

    def test_retry_error_not_reported_as_network_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.RetryError("too many redirects")
        with pytest.raises(SnapshotFetchError, match="retries exhausted"):
            _source(session).get_page(1, 50)

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HttpSnapshotSource(ApiConfig())

    def test_bearer_token_header(self):
        source = HttpSnapshotSource(ApiConfig(base_url="https://api.example.com", token="t0k"))
        assert source.session.headers["Authorization"] == "Bearer t0k"
        source.close()

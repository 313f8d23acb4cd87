"""
HTTP client for the snapshot API.

    GET {base_url}/vantage-scraper?page=N&limit=M
    -> {"success": true, "data": {"snapshots": [...], "pagination": {...}}}

Requests are blocking, so each call runs in a worker thread and the event
loop stays free. Every failure surfaces as SnapshotFetchError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from subib.config import ApiConfig
from subib.errors import SnapshotFetchError
from subib.parsers.snapshot_builder import Snapshot, snapshot_from_api

logger = logging.getLogger(__name__)

SNAPSHOTS_ENDPOINT = "vantage-scraper"


class HttpSnapshotSource:
    """Paginated snapshot feed backed by the snapshot API."""

    def __init__(
        self,
        config: ApiConfig,
        session: Optional[requests.Session] = None,
        max_retries: int = 2,
    ) -> None:
        if not config.is_configured:
            raise ValueError("Snapshot API base URL is not configured (SUBIB_SNAPSHOT_API_URL)")
        self.config = config
        self.base_url = config.base_url.rstrip("/") + "/"
        self.session = session or self._create_session(max_retries)

    def _create_session(self, max_retries: int) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            backoff_factor=0.5,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Accept": "application/json"})
        if self.config.token:
            session.headers["Authorization"] = f"Bearer {self.config.token}"
        return session

    def get_page(self, page: int, limit: int) -> dict[str, Any]:
        """Blocking fetch of one page, snapshots already converted."""
        url = urljoin(self.base_url, SNAPSHOTS_ENDPOINT)
        try:
            response = self.session.get(
                url, params={"page": page, "limit": limit}, timeout=self.config.timeout
            )
        except requests.exceptions.Timeout as e:
            raise SnapshotFetchError(
                f"Snapshot API timed out after {self.config.timeout} seconds"
            ) from e
        except requests.exceptions.RetryError as e:
            raise SnapshotFetchError(f"Snapshot API retries exhausted: {e}") from e
        except requests.exceptions.RequestException as e:
            raise SnapshotFetchError(
                "Network error: Unable to reach the snapshot server. Please check your connection and try again."
            ) from e

        body = _json_or_none(response)
        if response.status_code >= 400:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            raise SnapshotFetchError(
                message or f"API Error: {response.status_code}", status_code=response.status_code
            )
        if not isinstance(body, dict) or not body.get("success"):
            raise SnapshotFetchError("Failed to fetch snapshots", status_code=response.status_code)

        data = body.get("data") or {}
        snapshots: list[Snapshot] = [snapshot_from_api(s) for s in data.get("snapshots") or []]
        logger.debug("[SnapshotAPI] page=%d limit=%d -> %d snapshots", page, limit, len(snapshots))
        return {"snapshots": snapshots, "pagination": data.get("pagination") or {}}

    async def fetch(self, page: int, limit: int) -> dict[str, Any]:
        return await asyncio.to_thread(self.get_page, page, limit)

    def close(self) -> None:
        self.session.close()


def _json_or_none(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None

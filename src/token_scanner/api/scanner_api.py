"""Client for the scanner REST endpoint - fetches snapshot pages."""

import time
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..state.mapper import SnapshotCommand, map_message


@dataclass
class ScannerResponse:
    """One page returned by ``GET /scanner``."""

    page: int
    total_pages: int
    items: list[dict[str, Any]]
    raw: dict[str, Any]

    def to_command(self, received_at: float | None = None) -> SnapshotCommand | None:
        """Map the page to a snapshot command for the token store."""
        return map_message({"event": "scanner-pairs", "data": self.raw}, received_at)


def build_scanner_query(params: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """
    Build query params from a scanner filter.

    None and empty values are omitted, lists become repeated params and
    booleans are sent as ``true``/``false``.
    """
    query: list[tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None or value == "":
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for v in values:
            query.append((key, str(v).lower() if isinstance(v, bool) else str(v)))
    return query


class ScannerApiClient:
    """Client for the scanner REST API."""

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def get_scanner_page(self, params: Mapping[str, Any] | None = None) -> ScannerResponse:
        """
        Fetch one scanner page.

        Args:
            params: Scanner filter (chain, page, rankBy, orderBy, isNotHP, ...)

        Returns:
            ScannerResponse with the raw items

        Raises:
            httpx.HTTPStatusError: The server answered with an error status
        """
        response = await self._client.get(
            f"{self.base_url}/scanner",
            params=build_scanner_query(params),
            headers={"accept": "application/json"},
        )
        response.raise_for_status()

        data = response.json()
        items = data.get("scannerPairs")
        if not isinstance(items, list):
            items = data.get("pairs") or []

        return ScannerResponse(
            page=int(data.get("page") or (params or {}).get("page") or 1),
            total_pages=int(data.get("totalPages") or 1),
            items=items,
            raw=data,
        )

    async def get_snapshot(self, params: Mapping[str, Any] | None = None) -> SnapshotCommand | None:
        """Fetch a page and map it straight to a snapshot command."""
        result = await self.get_scanner_page(params)
        return result.to_command(received_at=time.time())

    async def health(self) -> bool:
        """True when ``GET /healthz`` answers ``ok``."""
        try:
            response = await self._client.get(f"{self.base_url}/healthz")
        except httpx.HTTPError:
            return False
        return response.status_code == 200 and response.text.strip() == "ok"

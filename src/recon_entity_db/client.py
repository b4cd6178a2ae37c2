"""HTTP client for a running recon-entity-db server.

Requires the 'client' extra: pip install recon-entity-db[client]
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_TIMEOUT = 30


def _get_httpx():
    """Lazy import httpx, raising a clear error if not installed."""
    try:
        import httpx
        return httpx
    except ImportError:
        raise ImportError(
            "httpx is required for ReconClient. "
            "Install it with: pip install recon-entity-db[client]"
        )


class ReconClient:
    """Client for the reconciliation API."""

    def __init__(self, server_url: str = "http://localhost:8222", prefix: str = "/api"):
        self.server_url = server_url.rstrip("/")
        self.api_url = self.server_url + prefix
        self._httpx = _get_httpx()

    def _get(self, url: str, params: Optional[dict] = None) -> Any:
        resp = self._httpx.get(url, params=params, timeout=_TIMEOUT)
        resp.raise_for_status()
        return resp.json()

    def health(self) -> dict:
        """Check server health."""
        return self._get(f"{self.server_url}/")

    def manifest(self) -> dict:
        """Fetch the service manifest."""
        return self._get(self.api_url)

    def reconcile(self, queries: dict[str, dict]) -> dict[str, list[dict]]:
        """
        Run a batch of queries.

        Args:
            queries: Query id -> {"query": ..., "type": ..., "limit": ..., "properties": [...]}

        Returns:
            Query id -> list of candidate dicts
        """
        resp = self._httpx.post(
            self.api_url,
            data={"queries": json.dumps(queries)},
            timeout=_TIMEOUT,
        )
        resp.raise_for_status()
        return {query_id: body["result"] for query_id, body in resp.json().items()}

    def reconcile_one(self, text: str, type: str = "", limit: int = 0) -> list[dict]:
        """Run a single query and return its candidates."""
        query: dict[str, Any] = {"query": text}
        if type:
            query["type"] = type
        if limit:
            query["limit"] = limit
        return self.reconcile({"q0": query})["q0"]

    def extend(self, ids: list[str], properties: list[str]) -> dict:
        """Fetch property values for entity ids."""
        payload = {"ids": ids, "properties": [{"id": p} for p in properties]}
        resp = self._httpx.post(
            self.api_url,
            data={"extend": json.dumps(payload)},
            timeout=_TIMEOUT,
        )
        resp.raise_for_status()
        return resp.json()

    def suggest_entities(self, prefix: str) -> list[dict]:
        return self._get(f"{self.api_url}/auto/entities", {"prefix": prefix})["result"]

    def suggest_types(self, prefix: str) -> list[dict]:
        return self._get(f"{self.api_url}/auto/types", {"prefix": prefix})["result"]

    def suggest_properties(self, prefix: str) -> list[dict]:
        return self._get(f"{self.api_url}/auto/properties", {"prefix": prefix})["result"]

    def propose_properties(self, type_id: str, limit: int = 0) -> list[dict]:
        """List properties declared for a type."""
        params: dict[str, Any] = {"type": type_id}
        if limit:
            params["limit"] = limit
        return self._get(f"{self.api_url}/properties", params)["properties"]

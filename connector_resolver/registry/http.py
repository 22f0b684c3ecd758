"""
Remote registry over HTTP.

Endpoints read:
- ``GET {base}/connectors/{id}/versions`` -> list of catalog entries
- ``GET {base}/connectors/{id}/versions/{version}`` -> manifest
"""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import CatalogUnavailable, ManifestNotFound
from ..models import ConnectorManifest, VersionCatalogEntry
from .base import ConnectorRegistry, sort_entries

logger = logging.getLogger(__name__)


def create_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Create a pooled client for registry lookups.

    Returns:
        httpx.AsyncClient configured with:
        - the given timeout
        - Max 10 concurrent connections
        - Max 5 keep-alive connections
    """
    return httpx.AsyncClient(
        timeout=timeout,
        limits=httpx.Limits(
            max_connections=10, max_keepalive_connections=5
        ),
    )


class HttpRegistry(ConnectorRegistry):
    """Registry client for a remote connector catalog service."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            base_url: Registry base URL, e.g. ``https://registry.example.com/api``
            client: Shared client to use; one is created (and owned) if omitted
            timeout: Request timeout for an owned client
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or create_http_client(timeout)

    def _versions_url(self, connector_id: str) -> str:
        return f"{self.base_url}/connectors/{quote(connector_id, safe='')}/versions"

    async def _get_json(self, url: str, connector_id: str) -> Optional[Any]:
        """GET a JSON document; None on 404."""
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Request to {url} failed: {e}", connector_id) from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CatalogUnavailable(
                f"Registry returned HTTP {response.status_code} for {url}", connector_id
            )

        try:
            return response.json()
        except ValueError as e:
            raise CatalogUnavailable(f"Malformed JSON from {url}", connector_id) from e

    async def get_versions(self, connector_id: str) -> List[VersionCatalogEntry]:
        payload = await self._get_json(self._versions_url(connector_id), connector_id)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise CatalogUnavailable("Version listing is not a JSON array", connector_id)

        entries = []
        for item in payload:
            if not isinstance(item, dict):
                raise CatalogUnavailable("Version listing contains a non-object entry", connector_id)
            try:
                entries.append(VersionCatalogEntry.model_validate({"connectorId": connector_id, **item}))
            except PydanticValidationError as e:
                raise CatalogUnavailable(f"Malformed version entry: {e.error_count()} error(s)", connector_id) from e

        logger.debug(f"Fetched {len(entries)} versions of {connector_id} from {self.base_url}")
        return sort_entries(entries)

    async def get_manifest(self, connector_id: str, version: str) -> ConnectorManifest:
        url = f"{self._versions_url(connector_id)}/{quote(version, safe='')}"
        payload = await self._get_json(url, connector_id)
        if payload is None:
            raise ManifestNotFound(connector_id, version)

        try:
            return ConnectorManifest.model_validate(payload)
        except PydanticValidationError as e:
            raise CatalogUnavailable(f"Malformed manifest for {connector_id}@{version}", connector_id) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

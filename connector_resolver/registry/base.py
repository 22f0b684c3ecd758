"""
Registry capability interface.

The resolver depends only on two lookups: the published versions of a
connector and the manifest of one version. Every adapter (in-memory, JSON
file, HTTP, caching) implements these as coroutines.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List

from packaging.version import InvalidVersion

from ..errors import ManifestNotFound
from ..models import ConnectorManifest, ConnectorVersion, VersionCatalogEntry
from ..resolution.versions import VersionManager, parse_version


def sort_entries(entries: Iterable[VersionCatalogEntry]) -> List[VersionCatalogEntry]:
    """Order catalog entries by version, highest first."""
    by_version = {}
    for entry in entries:
        by_version.setdefault(entry.version, entry)
    ordered = VersionManager.sort_versions(by_version.keys(), descending=True)
    return [by_version[version] for version in ordered]


class ConnectorRegistry(ABC):
    """Read-only view over published connector manifests and versions."""

    @abstractmethod
    async def get_versions(self, connector_id: str) -> List[VersionCatalogEntry]:
        """
        Get all published versions of a connector.

        Args:
            connector_id: Connector identifier

        Returns:
            Catalog entries ordered by version, highest first; empty for an
            unknown connector
        """
        pass

    @abstractmethod
    async def get_manifest(self, connector_id: str, version: str) -> ConnectorManifest:
        """
        Get the manifest of one published version.

        Raises:
            ManifestNotFound: If the connector or version is not published
        """
        pass

    async def list_connector_versions(self, connector_id: str) -> List[ConnectorVersion]:
        """
        Build the version listing shown to API callers.

        ``is_latest`` marks the highest non-yanked version; ``is_stable`` is
        false for pre-releases.

        Raises:
            ManifestNotFound: If the connector has no published versions
        """
        entries = await self.get_versions(connector_id)
        if not entries:
            raise ManifestNotFound(connector_id)

        latest = None
        for entry in entries:
            if entry.yanked:
                continue
            try:
                parse_version(entry.version)
            except InvalidVersion:
                continue
            latest = entry.version
            break

        return [
            ConnectorVersion(
                version=entry.version,
                published_at=entry.published_at,
                description=entry.description,
                changes=list(entry.changes),
                is_latest=entry.version == latest,
                is_stable=not VersionManager.is_prerelease(entry.version),
                yanked=entry.yanked,
                deprecated=entry.deprecated,
            )
            for entry in entries
        ]

    async def aclose(self) -> None:
        """Release any resources held by the registry."""
        return None

"""
In-memory registry.

Publishing is append-only: a (connector, version) pair can be published once
and its manifest never changes afterwards. Only the yanked and deprecated
flags of a catalog entry can be updated.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from ..errors import ManifestNotFound
from ..models import ConnectorManifest, VersionCatalogEntry
from ..resolution.validator import ManifestValidator
from .base import ConnectorRegistry, sort_entries

logger = logging.getLogger(__name__)


class InMemoryRegistry(ConnectorRegistry):
    """Thread-safe registry held in process memory."""

    def __init__(self, validator: Optional[ManifestValidator] = None):
        """
        Args:
            validator: When given, manifests must pass validation to be published
        """
        self.validator = validator
        self._lock = threading.Lock()
        self._manifests: Dict[str, Dict[str, ConnectorManifest]] = {}
        self._entries: Dict[str, Dict[str, VersionCatalogEntry]] = {}

    def publish(
        self,
        manifest: ConnectorManifest,
        published_at: Optional[datetime] = None,
        yanked: bool = False,
        deprecated: bool = False,
        changes: Optional[List[str]] = None,
    ) -> VersionCatalogEntry:
        """
        Publish a manifest version.

        Raises:
            ValueError: If this connector version is already published
            ValidationFailed: If a validator is configured and the manifest is invalid
        """
        if self.validator is not None:
            self.validator.ensure_valid(manifest)

        entry = VersionCatalogEntry(
            connector_id=manifest.id,
            version=manifest.version,
            published_at=published_at or datetime.now(),
            yanked=yanked,
            deprecated=deprecated,
            description=manifest.description,
            changes=list(changes or []),
        )

        with self._lock:
            versions = self._manifests.setdefault(manifest.id, {})
            if manifest.version in versions:
                raise ValueError(f"{manifest.key} is already published")
            versions[manifest.version] = manifest
            self._entries.setdefault(manifest.id, {})[manifest.version] = entry

        logger.debug(f"Published {manifest.key}")
        return entry

    def yank(self, connector_id: str, version: str, yanked: bool = True) -> VersionCatalogEntry:
        """Mark a version yanked (or restore it)."""
        return self._update_entry(connector_id, version, yanked=yanked)

    def deprecate(self, connector_id: str, version: str, deprecated: bool = True) -> VersionCatalogEntry:
        """Mark a version deprecated (or restore it)."""
        return self._update_entry(connector_id, version, deprecated=deprecated)

    def _update_entry(self, connector_id: str, version: str, **flags) -> VersionCatalogEntry:
        with self._lock:
            entries = self._entries.get(connector_id, {})
            if version not in entries:
                raise ManifestNotFound(connector_id, version)
            entry = entries[version].model_copy(update=flags)
            entries[version] = entry
        return entry

    async def get_versions(self, connector_id: str) -> List[VersionCatalogEntry]:
        with self._lock:
            entries = list(self._entries.get(connector_id, {}).values())
        return sort_entries(entries)

    async def get_manifest(self, connector_id: str, version: str) -> ConnectorManifest:
        with self._lock:
            manifest = self._manifests.get(connector_id, {}).get(version)
        if manifest is None:
            raise ManifestNotFound(connector_id, version)
        return manifest

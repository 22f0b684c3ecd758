"""
JSON file registry.

Reads a catalog document of the form::

    {
      "connectors": [
        {"id": "http", "version": "1.0.0", "category": "http",
         "dependencies": [{"connectorId": "auth", "versionConstraint": ">=1.0"}],
         "publishedAt": "2024-01-01T00:00:00", "yanked": false}
      ]
    }

The file is loaded once, on first lookup.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..errors import CatalogUnavailable
from ..models import ConnectorManifest, VersionCatalogEntry
from .memory import InMemoryRegistry

logger = logging.getLogger(__name__)

# Catalog-entry fields stored alongside the manifest fields of a record
_ENTRY_FIELDS = ("publishedAt", "published_at", "yanked", "deprecated", "changes")


class FileRegistry(InMemoryRegistry):
    """Registry backed by a JSON catalog file."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._loaded = False
        self._load_lock = asyncio.Lock()

    async def get_versions(self, connector_id: str) -> List[VersionCatalogEntry]:
        await self._ensure_loaded()
        return await super().get_versions(connector_id)

    async def get_manifest(self, connector_id: str, version: str) -> ConnectorManifest:
        await self._ensure_loaded()
        return await super().get_manifest(connector_id, version)

    async def _ensure_loaded(self):
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            document = await asyncio.to_thread(self._read_document)
            self._load_document(document)
            self._loaded = True

    def _read_document(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise CatalogUnavailable(f"Catalog file not found: {self.path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogUnavailable(f"Cannot read catalog file {self.path}: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("connectors"), list):
            raise CatalogUnavailable(f"Catalog file {self.path} has no 'connectors' list")
        return document

    def _load_document(self, document: Dict[str, Any]):
        loaded = 0
        for position, record in enumerate(document["connectors"]):
            if not isinstance(record, dict):
                logger.warning(f"Skipping catalog record #{position}: not an object")
                continue

            manifest_data = {k: v for k, v in record.items() if k not in _ENTRY_FIELDS}
            try:
                manifest = ConnectorManifest.model_validate(manifest_data)
                published_at = record.get("publishedAt", record.get("published_at"))
                entry = VersionCatalogEntry.model_validate({
                    "connectorId": manifest.id,
                    "version": manifest.version,
                    "description": manifest.description,
                    **({"publishedAt": published_at} if published_at else {}),
                    "yanked": record.get("yanked", False),
                    "deprecated": record.get("deprecated", False),
                    "changes": record.get("changes", []),
                })
            except PydanticValidationError as e:
                logger.warning(f"Skipping catalog record #{position}: {e.error_count()} validation error(s)")
                continue

            try:
                self.publish(
                    manifest,
                    published_at=entry.published_at,
                    yanked=entry.yanked,
                    deprecated=entry.deprecated,
                    changes=entry.changes,
                )
            except ValueError:
                logger.warning(f"Skipping duplicate catalog record {manifest.key}")
                continue
            loaded += 1

        logger.info(f"Loaded {loaded} connector versions from {self.path}")

    @classmethod
    def dump_catalog(cls, records: List[Dict[str, Any]], path: Union[str, Path], indent: Optional[int] = 2):
        """Write a catalog document; used by tooling and tests."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"connectors": records}, f, indent=indent, default=str)

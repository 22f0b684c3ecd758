"""
Catalog snapshot: the immutable working set for one resolve call.

Versions and manifests of every connector reachable from the requested roots
are fetched up front, so registry changes during a search cannot affect it.
Connectors are stored in an arena addressed by a stable integer index
(position in the sorted id list).
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from packaging.version import InvalidVersion, Version

from ..errors import CatalogUnavailable, ConnectorResolverError, ManifestNotFound
from ..models import ConnectorManifest, ValidationResult, VersionCatalogEntry
from ..resolution.validator import ManifestValidator
from ..resolution.versions import VersionManager, parse_version
from .base import ConnectorRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateVersion:
    """One published version of a connector, with its manifest and validation."""
    connector_id: str
    version: str
    parsed: Optional[Version]
    entry: VersionCatalogEntry
    manifest: Optional[ConnectorManifest]
    validation: ValidationResult

    @property
    def is_valid(self) -> bool:
        return self.manifest is not None and self.parsed is not None and self.validation.is_valid

    @property
    def yanked(self) -> bool:
        return self.entry.yanked

    @property
    def deprecated(self) -> bool:
        return self.entry.deprecated


@dataclass
class ConnectorSlot:
    """Arena record for one connector id."""
    index: int
    connector_id: str
    versions: List[CandidateVersion] = field(default_factory=list)  # descending

    def find(self, version: str) -> Optional[int]:
        """Position of a version, matching the exact string first, then semantically."""
        for position, candidate in enumerate(self.versions):
            if candidate.version == version:
                return position
        for position, candidate in enumerate(self.versions):
            if VersionManager.same_version(candidate.version, version):
                return position
        return None


class CatalogSnapshot:
    """Read-only view over the connectors reachable from a request."""

    def __init__(self, slots: Dict[str, List[CandidateVersion]]):
        self.connector_ids: List[str] = sorted(slots)
        self._index: Dict[str, int] = {cid: i for i, cid in enumerate(self.connector_ids)}
        self._slots: List[ConnectorSlot] = [
            ConnectorSlot(index=i, connector_id=cid, versions=list(slots[cid]))
            for i, cid in enumerate(self.connector_ids)
        ]

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, connector_id: str) -> bool:
        return connector_id in self._index

    def index_of(self, connector_id: str) -> Optional[int]:
        return self._index.get(connector_id)

    def slot(self, index: int) -> ConnectorSlot:
        return self._slots[index]

    def slot_for(self, connector_id: str) -> Optional[ConnectorSlot]:
        index = self._index.get(connector_id)
        return None if index is None else self._slots[index]

    @classmethod
    async def build(
        cls,
        registry: ConnectorRegistry,
        root_ids: Iterable[str],
        validator: ManifestValidator,
    ) -> "CatalogSnapshot":
        """
        Fetch every connector reachable from the roots, level by level.

        Each distinct connector id is fetched exactly once; the manifests of
        its versions are fetched concurrently. Dependencies of invalid
        manifests are not followed.

        Raises:
            CatalogUnavailable: If the registry cannot be read
        """
        seen = set(root_ids)
        queue = deque(sorted(seen))
        slots: Dict[str, List[CandidateVersion]] = {}

        while queue:
            batch = list(queue)
            queue.clear()
            fetched = await asyncio.gather(
                *(cls._fetch_connector(registry, connector_id, validator) for connector_id in batch)
            )

            for connector_id, candidates in zip(batch, fetched):
                slots[connector_id] = candidates
                for candidate in candidates:
                    if not candidate.is_valid:
                        continue
                    for dependency in candidate.manifest.dependencies:
                        if dependency.connector_id not in seen:
                            seen.add(dependency.connector_id)
                            queue.append(dependency.connector_id)

        logger.debug(f"Snapshot built with {len(slots)} connectors")
        return cls(slots)

    @staticmethod
    async def _fetch_connector(
        registry: ConnectorRegistry,
        connector_id: str,
        validator: ManifestValidator,
    ) -> List[CandidateVersion]:
        try:
            entries = await registry.get_versions(connector_id)
        except ConnectorResolverError:
            raise
        except Exception as e:
            raise CatalogUnavailable(str(e), connector_id) from e

        candidates = await asyncio.gather(
            *(CatalogSnapshot._fetch_candidate(registry, entry, validator) for entry in entries)
        )

        ordered = sorted(
            candidates,
            key=lambda c: (c.parsed is not None, c.parsed or Version("0"), c.version),
            reverse=True,
        )
        return ordered

    @staticmethod
    async def _fetch_candidate(
        registry: ConnectorRegistry,
        entry: VersionCatalogEntry,
        validator: ManifestValidator,
    ) -> CandidateVersion:
        try:
            parsed = parse_version(entry.version)
        except InvalidVersion:
            parsed = None

        try:
            manifest = await registry.get_manifest(entry.connector_id, entry.version)
        except ManifestNotFound:
            logger.warning(
                f"Catalog lists {entry.connector_id}@{entry.version} but its manifest is missing"
            )
            return CandidateVersion(
                connector_id=entry.connector_id,
                version=entry.version,
                parsed=parsed,
                entry=entry,
                manifest=None,
                validation=ValidationResult(is_valid=False, errors=["Manifest not found"]),
            )
        except ConnectorResolverError:
            raise
        except Exception as e:
            raise CatalogUnavailable(str(e), entry.connector_id) from e

        validation = validator.validate(manifest)
        if manifest.id != entry.connector_id or manifest.version != entry.version:
            validation = ValidationResult(
                is_valid=False,
                errors=validation.errors + [
                    f"Manifest identifies as {manifest.key}, catalog entry is "
                    f"{entry.connector_id}@{entry.version}"
                ],
                warnings=validation.warnings,
            )

        if not validation.is_valid:
            logger.warning(
                f"Excluding {entry.connector_id}@{entry.version} from candidates: "
                f"{'; '.join(validation.errors)}"
            )

        return CandidateVersion(
            connector_id=entry.connector_id,
            version=entry.version,
            parsed=parsed,
            entry=entry,
            manifest=manifest,
            validation=validation,
        )

"""
Read-through cache over any registry.

Version listings expire after a TTL since new versions can be published or
yanked at any time. Manifests are immutable once published and are kept for
the lifetime of the cache.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models import ConnectorManifest, VersionCatalogEntry
from .base import ConnectorRegistry

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached registry response."""
    value: Any
    stored_at: float
    ttl_seconds: Optional[float]

    def is_expired(self, now: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return now - self.stored_at >= self.ttl_seconds


class CachingRegistry(ConnectorRegistry):
    """Wraps a registry with a TTL cache. Safe for concurrent readers."""

    def __init__(
        self,
        inner: ConnectorRegistry,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._versions: Dict[str, CacheEntry] = {}
        self._manifests: Dict[Tuple[str, str], CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    async def get_versions(self, connector_id: str) -> List[VersionCatalogEntry]:
        entry = self._versions.get(connector_id)
        if entry is not None and not entry.is_expired(self._clock()):
            self.hits += 1
            return list(entry.value)

        async with self._locks.setdefault(connector_id, asyncio.Lock()):
            entry = self._versions.get(connector_id)
            if entry is not None and not entry.is_expired(self._clock()):
                self.hits += 1
                return list(entry.value)

            self.misses += 1
            versions = await self.inner.get_versions(connector_id)
            self._versions[connector_id] = CacheEntry(
                value=list(versions), stored_at=self._clock(), ttl_seconds=self.ttl_seconds
            )
            return list(versions)

    async def get_manifest(self, connector_id: str, version: str) -> ConnectorManifest:
        key = (connector_id, version)
        entry = self._manifests.get(key)
        if entry is not None:
            self.hits += 1
            return entry.value

        # ManifestNotFound propagates and is not cached
        self.misses += 1
        manifest = await self.inner.get_manifest(connector_id, version)
        self._manifests[key] = CacheEntry(value=manifest, stored_at=self._clock(), ttl_seconds=None)
        return manifest

    def invalidate(self, connector_id: Optional[str] = None):
        """Drop cached version listings for one connector, or for all."""
        if connector_id is None:
            self._versions.clear()
        else:
            self._versions.pop(connector_id, None)
        logger.debug(f"Invalidated version cache for {connector_id or 'all connectors'}")

    def stats(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "versions": len(self._versions),
            "manifests": len(self._manifests),
        }

    async def aclose(self) -> None:
        await self.inner.aclose()

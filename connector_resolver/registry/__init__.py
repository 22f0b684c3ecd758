"""
Connector Registry Module

Adapters exposing published connector manifests and versions to the resolver.
"""

from .base import ConnectorRegistry, sort_entries
from .cache import CachingRegistry
from .file import FileRegistry
from .http import HttpRegistry, create_http_client
from .memory import InMemoryRegistry
from .snapshot import CandidateVersion, CatalogSnapshot

__all__ = [
    "ConnectorRegistry",
    "InMemoryRegistry",
    "FileRegistry",
    "HttpRegistry",
    "CachingRegistry",
    "CatalogSnapshot",
    "CandidateVersion",
    "create_http_client",
    "sort_entries",
]

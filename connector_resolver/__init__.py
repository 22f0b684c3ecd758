"""
Connector Resolver - dependency resolution for versioned connectors.

Given requested connectors with version constraints, an optional lockfile and
a resolution strategy, computes a deterministic assignment of exact versions
to every connector reachable from the request, or reports the conflicting
constraints that make the request unsatisfiable.
"""

from .errors import (
    CatalogUnavailable,
    ConnectorResolverError,
    InvalidConstraintError,
    ManifestNotFound,
    ValidationFailed,
)
from .models import ConnectorManifest, DependencySpec, ResolutionResult, ResolutionStrategy
from .resolution.engine import ConnectorResolver
from .settings import ResolverSettings, get_settings, reload_settings

__version__ = "0.1.0"
__all__ = [
    "ConnectorResolver",
    "ConnectorManifest",
    "DependencySpec",
    "ResolutionResult",
    "ResolutionStrategy",
    "ResolverSettings",
    "get_settings",
    "reload_settings",
    "ConnectorResolverError",
    "CatalogUnavailable",
    "InvalidConstraintError",
    "ManifestNotFound",
    "ValidationFailed",
]

"""
Connector Resolver Service - FastAPI application exposing resolution.

Endpoints:
- POST /connectors/resolve
- POST /connectors/validate
- GET  /connectors/{connector_id}/versions
- POST /connectors/explain
- POST /connectors/lockfile/validate
- GET  /health

Conflicts are returned as 200 responses with ``success: false``; only
infrastructure failures produce a 500.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import Field

from .. import __version__
from ..errors import CatalogUnavailable, InvalidConstraintError, ManifestNotFound
from ..models import (
    ApiModel,
    ConnectorVersion,
    DependencySpec,
    LockfileValidationResult,
    ResolutionDiagnostics,
    ResolutionResult,
    ResolutionStrategy,
    ValidationResult,
)
from ..registry import CachingRegistry, ConnectorRegistry, FileRegistry, HttpRegistry
from ..resolution.engine import ConnectorResolver
from ..settings import get_settings

logger = logging.getLogger(__name__)


class ResolveRequest(ApiModel):
    """Body of a resolve or explain call."""
    requested_connectors: List[DependencySpec] = Field(default_factory=list)
    resolution_strategy: Optional[ResolutionStrategy] = None
    lockfile: Dict[str, str] = Field(default_factory=dict)


def build_registry() -> ConnectorRegistry:
    """Registry from settings: remote when ``registry_url`` is set, else the JSON catalog."""
    settings = get_settings()
    if settings.registry_url:
        inner = HttpRegistry(settings.registry_url, timeout=settings.http_timeout_seconds)
    else:
        inner = FileRegistry(settings.catalog_path)
    return CachingRegistry(inner, ttl_seconds=settings.cache_ttl_seconds)


def _get_resolver(request: Request) -> ConnectorResolver:
    resolver = request.app.state.resolver
    if resolver is None:
        resolver = ConnectorResolver(build_registry())
        request.app.state.resolver = resolver
    return resolver


def _raise_http(e: Exception):
    """Translate resolver errors into HTTP errors."""
    if isinstance(e, ManifestNotFound):
        raise HTTPException(status_code=404, detail=str(e)) from e
    if isinstance(e, InvalidConstraintError):
        raise HTTPException(status_code=422, detail=str(e)) from e
    if isinstance(e, CatalogUnavailable):
        logger.error(f"Catalog unavailable: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    raise e


def create_app(resolver: Optional[ConnectorResolver] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        resolver: Resolver to serve; built from settings on first use if omitted

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Connector Resolver",
        description="Dependency resolution for versioned connectors",
        version=__version__,
    )
    app.state.resolver = resolver

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """
        Health check endpoint.

        Returns:
            Dictionary with status
        """
        return {"status": "healthy", "version": __version__}

    @app.post("/connectors/resolve", response_model=ResolutionResult)
    async def resolve(body: ResolveRequest, request: Request):
        """Resolve requested connectors; conflicts are a 200 with success=false."""
        try:
            return await _get_resolver(request).resolve(
                body.requested_connectors,
                strategy=body.resolution_strategy,
                lockfile=body.lockfile,
            )
        except (ManifestNotFound, InvalidConstraintError, CatalogUnavailable) as e:
            _raise_http(e)

    @app.post("/connectors/validate", response_model=ValidationResult)
    async def validate(manifest: Dict[str, Any], request: Request):
        """Validate any JSON object as a connector manifest."""
        return _get_resolver(request).validate_manifest(manifest)

    @app.get("/connectors/{connector_id}/versions", response_model=List[ConnectorVersion])
    async def versions(connector_id: str, request: Request):
        """List published versions, highest first."""
        try:
            return await _get_resolver(request).list_versions(connector_id)
        except (ManifestNotFound, CatalogUnavailable) as e:
            _raise_http(e)

    @app.post("/connectors/explain", response_model=ResolutionDiagnostics)
    async def explain(body: ResolveRequest, request: Request):
        """Describe why a request cannot be resolved."""
        try:
            return await _get_resolver(request).explain_failure(
                body.requested_connectors,
                strategy=body.resolution_strategy,
                lockfile=body.lockfile,
            )
        except (ManifestNotFound, InvalidConstraintError, CatalogUnavailable) as e:
            _raise_http(e)

    @app.post("/connectors/lockfile/validate", response_model=LockfileValidationResult)
    async def validate_lockfile(lockfile: Dict[str, str], request: Request):
        """Check a lockfile against the current catalog."""
        try:
            return await _get_resolver(request).validate_lockfile(lockfile)
        except CatalogUnavailable as e:
            _raise_http(e)

    return app


# Create default app instance
app = create_app()

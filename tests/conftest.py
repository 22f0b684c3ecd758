"""
Pytest configuration and fixtures for connector resolver tests.
"""

import tempfile
from pathlib import Path

import pytest

from connector_resolver.models import ConflictRules, ConnectorManifest, DependencySpec
from connector_resolver.registry import InMemoryRegistry
from connector_resolver.resolution.engine import ConnectorResolver
from connector_resolver.settings import ResolverSettings


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def make_manifest():
    """Factory for manifests; dependencies use the compact ``id@constraint`` form."""
    def _make(connector_id, version, *dependencies, incompatible=(), category="data", tags=("test",)):
        return ConnectorManifest(
            id=connector_id,
            version=version,
            name=connector_id,
            category=category,
            tags=set(tags),
            dependencies=[DependencySpec.parse(d) for d in dependencies],
            conflict_rules=ConflictRules(incompatible_with=list(incompatible)),
        )
    return _make


@pytest.fixture
def registry():
    return InMemoryRegistry()


@pytest.fixture
def publish(registry, make_manifest):
    """Publish a connector version into the test registry."""
    def _publish(connector_id, version, *dependencies, yanked=False, deprecated=False, **kwargs):
        manifest = make_manifest(connector_id, version, *dependencies, **kwargs)
        registry.publish(manifest, yanked=yanked, deprecated=deprecated)
        return manifest
    return _publish


@pytest.fixture
def settings():
    return ResolverSettings(solver_timeout_seconds=None)


@pytest.fixture
def resolver(registry, settings):
    return ConnectorResolver(registry, settings=settings)


@pytest.fixture
def b_catalog(publish):
    """B has four versions; A requires B>=2.0."""
    for version in ("1.0", "1.5", "2.0", "2.5"):
        publish("B", version)
    publish("A", "1.0", "B@>=2.0")


@pytest.fixture
def conflict_catalog(publish):
    """A requires B>=2.0 while C requires B<2.0."""
    publish("B", "1.0")
    publish("B", "2.0")
    publish("A", "1.0", "B@>=2.0")
    publish("C", "1.0", "B@<2.0")

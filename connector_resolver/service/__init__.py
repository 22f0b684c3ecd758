"""Connector resolver service package - FastAPI surface over the resolver."""

__all__ = [
    "get_app",
    "create_app",
]


# Lazy imports to avoid circular dependencies
def get_app():
    """Get the FastAPI app instance (lazy import)."""
    from connector_resolver.service.app import app
    return app


def create_app(resolver=None):
    """Create a new FastAPI app instance (lazy import)."""
    from connector_resolver.service.app import create_app as _create_app
    return _create_app(resolver)

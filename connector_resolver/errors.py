"""
Connector resolver errors.

Conflicts are not errors: an unsatisfiable request is reported through a
ResolutionResult. The exceptions below cover lookups, infrastructure failures
and solver bugs.
"""

from typing import List, Optional


class ConnectorResolverError(Exception):
    """Base exception for all connector resolver errors."""
    pass


class ConfigurationError(ConnectorResolverError):
    """Errors in configuration."""
    pass


class ManifestNotFound(ConnectorResolverError):
    """Requested connector or connector version is absent from the catalog."""

    def __init__(self, connector_id: str, version: Optional[str] = None):
        self.connector_id = connector_id
        self.version = version

        message = f"Connector '{connector_id}'"
        if version:
            message += f" version '{version}'"
        message += " not found in catalog"

        super().__init__(message)


class CatalogUnavailable(ConnectorResolverError):
    """Backing registry could not be read. Callers should retry."""

    def __init__(self, message: str, connector_id: Optional[str] = None):
        self.message = message
        self.connector_id = connector_id

        error_msg = f"Catalog unavailable: {message}"
        if connector_id:
            error_msg += f" (while reading '{connector_id}')"

        super().__init__(error_msg)


class ValidationFailed(ConnectorResolverError):
    """Manifest failed structural or semantic checks."""

    def __init__(self, connector_id: str, errors: List[str]):
        self.connector_id = connector_id
        self.errors = list(errors)
        super().__init__(
            f"Manifest '{connector_id}' is invalid: {'; '.join(self.errors)}"
        )


class InvalidConstraintError(ConnectorResolverError, ValueError):
    """Version constraint or request could not be interpreted."""
    pass


class ResolutionCancelled(ConnectorResolverError):
    """Raised inside the solver when its cancellation token fires."""
    pass


class SolverInvariantError(ConnectorResolverError):
    """The solver reached a state that should be impossible."""
    pass

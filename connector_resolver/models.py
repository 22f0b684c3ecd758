"""
Centralized Pydantic models for the connector resolver.

This module contains the data models used throughout the resolution pipeline:
- Connector manifests and dependency specs (inputs)
- Version catalog entries (registry view)
- Resolution, validation and diagnostics results (outputs)

API-facing models serialize with camelCase aliases and accept either spelling
on input.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Core Enums
# =============================================================================

class ResolutionStrategy(str, Enum):
    """Policy governing how version ambiguity is resolved."""
    HIGHEST_COMPATIBLE = "HighestCompatible"
    LOWEST_COMPATIBLE = "LowestCompatible"
    LOCKED = "Locked"
    PINNED_EXACT = "PinnedExact"


class ResolutionOutcome(str, Enum):
    """Terminal outcome of a resolve call."""
    SUCCEEDED = "succeeded"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"


# Pseudo-sources for constraints that do not come from a connector manifest
REQUEST_SOURCE = "<request>"
LOCKFILE_SOURCE = "<lockfile>"

VALID_OPERATORS = ("*", "==", "!=", ">=", "<=", ">", "<", "^", "~")

# Flat connector id -> exact version mapping, persisted as-is by callers
Lockfile = Dict[str, str]


class ApiModel(BaseModel):
    """Base model with camelCase aliases for the HTTP surface."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Manifest Models
# =============================================================================

class VersionConstraint(BaseModel):
    """Version constraint specification (operator + version)."""
    operator: str  # "*", "==", "!=", ">=", "<=", ">", "<", "^", "~"
    version: str = ""

    @field_validator("operator")
    @classmethod
    def validate_operator(cls, v: str) -> str:
        """Validate version operator."""
        if v not in VALID_OPERATORS:
            raise ValueError(f"Invalid operator: {v}. Must be one of {list(VALID_OPERATORS)}")
        return v

    @property
    def is_any(self) -> bool:
        return self.operator == "*"

    @property
    def is_exact(self) -> bool:
        return self.operator == "=="

    def __str__(self) -> str:
        if self.is_any:
            return "*"
        return f"{self.operator}{self.version}"


class DependencySpec(ApiModel):
    """Edge from a connector (or the request) to a target connector."""
    connector_id: str
    version_constraint: str = Field(
        default="*",
        validation_alias=AliasChoices("versionConstraint", "versionRange", "version_constraint"),
        serialization_alias="versionConstraint",
    )
    optional: bool = False

    @classmethod
    def parse(cls, text: str, optional: bool = False) -> "DependencySpec":
        """Parse the compact ``id@constraint`` form (``B@>=2.0``, ``B``, ``B@1.5?``).

        A trailing ``?`` marks the dependency optional.
        """
        text = text.strip()
        if text.endswith("?"):
            optional = True
            text = text[:-1].rstrip()

        connector_id, _, constraint = text.partition("@")
        return cls(
            connector_id=connector_id.strip(),
            version_constraint=constraint.strip() or "*",
            optional=optional,
        )

    def __str__(self) -> str:
        text = f"{self.connector_id}@{self.version_constraint}"
        return f"{text}?" if self.optional else text


class ConflictRules(ApiModel):
    """Connector versions a manifest cannot be installed alongside."""
    incompatible_with: List[str] = Field(default_factory=list)  # "<connectorId>@<constraint>"


class ConnectorManifest(ApiModel):
    """Declarative description of a published connector version.

    Immutable once published; yanked/deprecated flags live on the catalog
    entry, not here.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    version: str
    name: str = ""
    category: str = ""
    description: str = ""
    tags: Set[str] = Field(default_factory=set)
    dependencies: List[DependencySpec] = Field(default_factory=list)
    config_schema: Optional[str] = None
    conflict_rules: ConflictRules = Field(default_factory=ConflictRules)

    @property
    def key(self) -> str:
        return f"{self.id}@{self.version}"


# =============================================================================
# Catalog Models
# =============================================================================

class VersionCatalogEntry(ApiModel):
    """A published version of a connector as recorded by the registry."""
    connector_id: str
    version: str
    published_at: datetime = Field(default_factory=datetime.now)
    yanked: bool = False
    deprecated: bool = False
    description: str = ""
    changes: List[str] = Field(default_factory=list)


class ConnectorVersion(ApiModel):
    """Version listing entry returned to API callers."""
    version: str
    published_at: datetime
    description: str = ""
    changes: List[str] = Field(default_factory=list)
    is_latest: bool = False
    is_stable: bool = True
    yanked: bool = False
    deprecated: bool = False


# =============================================================================
# Resolution Results
# =============================================================================

class CompetingConstraint(ApiModel):
    """One constraint participating in a conflict, with where it came from."""
    constraint: str
    source: str
    source_version: Optional[str] = None

    def describe(self) -> str:
        if self.source_version:
            return f"'{self.constraint}' from {self.source}@{self.source_version}"
        return f"'{self.constraint}' from {self.source}"


class Conflict(ApiModel):
    """A connector for which no single version satisfies all incoming constraints."""
    connector_id: str
    competing_constraints: List[CompetingConstraint] = Field(default_factory=list)
    source_connectors: List[str] = Field(default_factory=list)
    reason: str = ""


class ResolutionWarning(ApiModel):
    """Non-fatal observation attached to a resolution."""
    connector_id: str
    reason: str


class ResolutionResult(ApiModel):
    """Result of a resolve call: success, reported conflict, or cancellation."""
    success: bool
    outcome: ResolutionOutcome
    strategy: ResolutionStrategy
    resolved: Dict[str, str] = Field(default_factory=dict)
    conflicts: List[Conflict] = Field(default_factory=list)
    warnings: List[ResolutionWarning] = Field(default_factory=list)
    lockfile: Dict[str, str] = Field(default_factory=dict)
    install_order: List[str] = Field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.outcome == ResolutionOutcome.CANCELLED


class ResolutionDiagnostics(ApiModel):
    """Explanation of why a request cannot be resolved."""
    has_conflicts: bool
    conflicts: List[Conflict] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    available_versions: Dict[str, List[str]] = Field(default_factory=dict)


# =============================================================================
# Validation Results
# =============================================================================

class ValidationResult(ApiModel):
    """Result of manifest validation."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class LockfileValidationResult(ApiModel):
    """Result of checking a lockfile against the current catalog."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    outdated_versions: List[str] = Field(default_factory=list)
    missing_connectors: List[str] = Field(default_factory=list)


# =============================================================================
# Export all models
# =============================================================================

__all__ = [
    # Enums
    'ResolutionStrategy', 'ResolutionOutcome',

    # Manifest Models
    'VersionConstraint', 'DependencySpec', 'ConflictRules', 'ConnectorManifest',

    # Catalog Models
    'VersionCatalogEntry', 'ConnectorVersion',

    # Resolution Models
    'CompetingConstraint', 'Conflict', 'ResolutionWarning', 'ResolutionResult',
    'ResolutionDiagnostics', 'Lockfile',

    # Validation Models
    'ValidationResult', 'LockfileValidationResult',

    # Constants
    'REQUEST_SOURCE', 'LOCKFILE_SOURCE', 'VALID_OPERATORS',
]

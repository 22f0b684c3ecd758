"""
Manifest Validator for connector manifests.

Gates manifests before they are eligible as resolution candidates or returned
to callers. Checks are split into fatal errors and informational warnings:

Errors:
- id and version present
- version parses as a semantic version
- dependencies name a target and carry a well-formed constraint
- no self-dependency
- incompatibility rules are well-formed

Warnings:
- unknown category
- empty tags
- duplicate dependency targets
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..errors import InvalidConstraintError, ValidationFailed
from ..models import ConnectorManifest, ValidationResult
from .versions import VersionManager, parse_version

logger = logging.getLogger(__name__)


class ManifestValidator:
    """Validates a connector manifest's structural and semantic correctness."""

    def __init__(self, known_categories: Optional[Iterable[str]] = None):
        """Initialize the validator.

        Args:
            known_categories: Categories accepted without a warning. Defaults
                to the configured ``known_categories`` setting.
        """
        if known_categories is None:
            from ..settings import get_settings
            known_categories = get_settings().known_categories
        self.known_categories = frozenset(c.lower() for c in known_categories)

    def validate(self, manifest: Union[ConnectorManifest, Dict[str, Any]]) -> ValidationResult:
        """
        Validate a manifest.

        Args:
            manifest: Manifest model, or a raw dict as received over the wire

        Returns:
            ValidationResult with fatal errors and informational warnings
        """
        errors: List[str] = []
        warnings: List[str] = []

        if isinstance(manifest, dict):
            try:
                manifest = ConnectorManifest.model_validate(manifest)
            except PydanticValidationError as e:
                for error in e.errors():
                    field_path = '.'.join(str(loc) for loc in error['loc'])
                    errors.append(f"Field '{field_path}': {error['msg']}")
                return ValidationResult(is_valid=False, errors=errors, warnings=warnings)

        self._validate_identity(manifest, errors)
        self._validate_dependencies(manifest, errors, warnings)
        self._validate_conflict_rules(manifest, errors)
        self._validate_metadata(manifest, warnings)

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def ensure_valid(self, manifest: ConnectorManifest) -> ValidationResult:
        """Validate and raise ValidationFailed if the manifest has errors."""
        result = self.validate(manifest)
        if not result.is_valid:
            raise ValidationFailed(manifest.id or "<unnamed>", result.errors)
        return result

    def _validate_identity(self, manifest: ConnectorManifest, errors: List[str]):
        if not manifest.id or not manifest.id.strip():
            errors.append("Manifest id is required")

        if not manifest.version or not manifest.version.strip():
            errors.append("Manifest version is required")
            return

        try:
            parse_version(manifest.version)
        except ValueError as e:
            errors.append(f"Version '{manifest.version}' is not a valid semantic version: {e}")

    def _validate_dependencies(self, manifest: ConnectorManifest, errors: List[str], warnings: List[str]):
        seen = set()
        for position, dependency in enumerate(manifest.dependencies):
            target = dependency.connector_id
            if not target or not target.strip():
                errors.append(f"Dependency #{position} has no target connector id")
                continue

            if target == manifest.id:
                errors.append(f"Connector '{manifest.id}' depends on itself")

            try:
                VersionManager.parse_constraint(dependency.version_constraint)
            except InvalidConstraintError as e:
                errors.append(f"Dependency on '{target}': {e}")

            if target in seen:
                warnings.append(f"Duplicate dependency on '{target}'")
            seen.add(target)

    def _validate_conflict_rules(self, manifest: ConnectorManifest, errors: List[str]):
        for rule in manifest.conflict_rules.incompatible_with:
            target, _, constraint = rule.partition("@")
            if not target.strip():
                errors.append(f"Incompatibility rule '{rule}' has no connector id")
                continue
            if target.strip() == manifest.id:
                errors.append(f"Incompatibility rule '{rule}' refers to the connector itself")
            try:
                VersionManager.parse_constraint(constraint or "*")
            except InvalidConstraintError as e:
                errors.append(f"Incompatibility rule '{rule}': {e}")

    def _validate_metadata(self, manifest: ConnectorManifest, warnings: List[str]):
        if not manifest.category:
            warnings.append("Category is missing")
        elif manifest.category.lower() not in self.known_categories:
            warnings.append(f"Unknown category '{manifest.category}'")

        if not manifest.tags or not any(tag.strip() for tag in manifest.tags):
            warnings.append("Manifest has no tags")

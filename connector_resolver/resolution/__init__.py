"""
Connector Resolution Module

Version handling, manifest validation and cancellation. The solver,
reconciler and engine live in their own modules and are imported directly,
since they depend on the registry package.
"""

from .cancellation import CancellationToken
from .validator import ManifestValidator
from .versions import VersionManager, is_valid_version, parse_version

__all__ = [
    "CancellationToken",
    "ManifestValidator",
    "VersionManager",
    "is_valid_version",
    "parse_version",
]

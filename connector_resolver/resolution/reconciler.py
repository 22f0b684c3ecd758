"""
Lockfile Reconciler - translates a lockfile into solver inputs per strategy.

- Locked: entries are hard exact-version constraints
- HighestCompatible / LowestCompatible: entries are advisory preferences
- PinnedExact: requests must be exact versions; the lockfile is ignored

Also handles lockfile persistence (flat JSON object, keys sorted on write).
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import InvalidConstraintError
from ..models import (
    DependencySpec,
    Lockfile,
    ResolutionStrategy,
    ResolutionWarning,
)
from ..registry.snapshot import CatalogSnapshot
from .versions import VersionManager

logger = logging.getLogger(__name__)


@dataclass
class SolverInputs:
    """Everything the solver needs beyond the snapshot."""
    descending: bool
    pins: Dict[str, str] = field(default_factory=dict)
    preferences: Dict[str, str] = field(default_factory=dict)
    allow_yanked: Dict[str, str] = field(default_factory=dict)
    warnings: List[ResolutionWarning] = field(default_factory=list)


class LockfileReconciler:
    """Applies a resolution strategy to a request and an existing lockfile."""

    def __init__(self, strategy: ResolutionStrategy, lockfile: Optional[Lockfile] = None):
        self.strategy = ResolutionStrategy(strategy)
        self.lockfile: Lockfile = dict(lockfile or {})

    @staticmethod
    def check_pinned_request(requested: List[DependencySpec]):
        """
        Require every requested constraint to be an exact version.

        Raises:
            InvalidConstraintError: If a requested constraint is not exact
        """
        for spec in requested:
            if VersionManager.exact_version(spec.version_constraint) is None:
                raise InvalidConstraintError(
                    f"PinnedExact requires an exact version for '{spec.connector_id}', "
                    f"got '{spec.version_constraint}'"
                )

    def prepare(self, requested: List[DependencySpec]) -> SolverInputs:
        """
        Build solver inputs for this strategy.

        Raises:
            InvalidConstraintError: For a non-exact request under PinnedExact
        """
        inputs = SolverInputs(descending=self.strategy != ResolutionStrategy.LOWEST_COMPATIBLE)

        if self.strategy == ResolutionStrategy.LOCKED:
            inputs.pins = dict(self.lockfile)
            # A locked version is never substituted, even once yanked
            inputs.allow_yanked = dict(self.lockfile)

        elif self.strategy == ResolutionStrategy.PINNED_EXACT:
            self.check_pinned_request(requested)
            for spec in requested:
                inputs.allow_yanked[spec.connector_id] = VersionManager.exact_version(spec.version_constraint)
            if self.lockfile:
                inputs.warnings.append(ResolutionWarning(
                    connector_id="*",
                    reason=f"Lockfile with {len(self.lockfile)} entries ignored under PinnedExact",
                ))

        else:
            inputs.preferences = dict(self.lockfile)

        logger.debug(
            f"Reconciling under {self.strategy.value}: {len(inputs.pins)} pins, "
            f"{len(inputs.preferences)} preferences"
        )
        return inputs

    def reconcile(
        self,
        snapshot: CatalogSnapshot,
        resolved: Optional[Dict[str, str]],
    ) -> List[ResolutionWarning]:
        """
        Compare a resolution against the lockfile and explain the differences.

        Args:
            snapshot: Snapshot the resolution was computed from
            resolved: Resolved mapping, or None when the search did not succeed

        Returns:
            Warnings for advisory deviations and dropped entries
        """
        if resolved is None or self.strategy == ResolutionStrategy.PINNED_EXACT:
            return []

        warnings = []
        for connector_id in sorted(self.lockfile):
            locked = self.lockfile[connector_id]
            if connector_id not in resolved:
                warnings.append(ResolutionWarning(
                    connector_id=connector_id,
                    reason=f"Dropped from lockfile: no longer required (was {locked})",
                ))
                continue

            chosen = resolved[connector_id]
            if VersionManager.same_version(chosen, locked):
                continue

            warnings.append(ResolutionWarning(
                connector_id=connector_id,
                reason=self._deviation_reason(snapshot, connector_id, locked, chosen),
            ))
        return warnings

    @staticmethod
    def _deviation_reason(snapshot: CatalogSnapshot, connector_id: str, locked: str, chosen: str) -> str:
        slot = snapshot.slot_for(connector_id)
        position = slot.find(locked) if slot is not None else None
        if position is None:
            return f"Locked version {locked} is no longer published; resolved {chosen}"

        candidate = slot.versions[position]
        if candidate.yanked:
            return f"Locked version {locked} was yanked; resolved {chosen}"
        if not candidate.is_valid:
            return f"Locked version {locked} failed validation; resolved {chosen}"
        return f"Locked version {locked} no longer satisfies constraints; resolved {chosen}"

    def updated_lockfile(self, resolved: Optional[Dict[str, str]]) -> Lockfile:
        """The lockfile to persist: the resolution on success, the input otherwise."""
        if resolved is None:
            return dict(self.lockfile)
        return dict(resolved)


# =============================================================================
# Persistence
# =============================================================================

def load_lockfile(path: Union[str, Path]) -> Lockfile:
    """
    Load a lockfile from a flat JSON object.

    Raises:
        ValueError: If the file is not a flat object of strings
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ValueError(f"Lockfile {path} must be a JSON object mapping connector ids to versions")
    return data


def dump_lockfile(lockfile: Lockfile, path: Union[str, Path]):
    """Write a lockfile as JSON with sorted keys."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(dict(lockfile), f, indent=2, sort_keys=True)
        f.write("\n")

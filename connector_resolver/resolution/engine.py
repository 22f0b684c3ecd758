"""
Connector Resolver - coordinates a resolve call end to end.

request -> reconciler (strategy, lockfile) -> snapshot (registry reads) ->
validator (per manifest) -> solver (worker thread) -> result builder
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from packaging.version import InvalidVersion

from ..errors import InvalidConstraintError, ManifestNotFound
from ..models import (
    ConnectorManifest,
    ConnectorVersion,
    DependencySpec,
    Lockfile,
    LockfileValidationResult,
    ResolutionDiagnostics,
    ResolutionResult,
    ResolutionStrategy,
    ValidationResult,
)
from ..registry.base import ConnectorRegistry
from ..registry.snapshot import CatalogSnapshot
from ..settings import ResolverSettings, get_settings
from .builder import ResolutionResultBuilder
from .cancellation import CancellationToken
from .reconciler import LockfileReconciler
from .solver import ConstraintSolver, SolverOutcome, SolverState
from .validator import ManifestValidator
from .versions import VersionManager, parse_version

logger = logging.getLogger(__name__)

RequestLike = Union[DependencySpec, str, Dict[str, Any]]


def normalize_request(requested: Iterable[RequestLike]) -> List[DependencySpec]:
    """
    Accept specs, compact ``id@constraint`` strings or dicts.

    Raises:
        InvalidConstraintError: If a request is empty or its constraint is malformed
    """
    specs = []
    for item in requested:
        if isinstance(item, DependencySpec):
            spec = item
        elif isinstance(item, str):
            spec = DependencySpec.parse(item)
        else:
            spec = DependencySpec.model_validate(item)

        if not spec.connector_id:
            raise InvalidConstraintError(f"Request '{item}' names no connector")
        VersionManager.parse_constraint(spec.version_constraint)
        specs.append(spec)
    return specs


class ConnectorResolver:
    """
    Resolves requested connectors to exact versions against a registry.

    Holds no per-call state; concurrent resolve calls are independent.
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        validator: Optional[ManifestValidator] = None,
        settings: Optional[ResolverSettings] = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        self.validator = validator or ManifestValidator(self.settings.known_categories)

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(
        self,
        requested: Iterable[RequestLike],
        strategy: Union[ResolutionStrategy, str, None] = None,
        lockfile: Optional[Lockfile] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResolutionResult:
        """
        Resolve requested connectors to a consistent set of exact versions.

        Args:
            requested: Root connectors with version constraints
            strategy: Resolution strategy; defaults to the configured strategy
            lockfile: Previously persisted lockfile
            cancel_token: Token to cancel the search; a deadline from settings
                is used when omitted

        Returns:
            ResolutionResult: success, conflict or cancelled. Conflicts are
            outcomes, not exceptions.

        Raises:
            InvalidConstraintError: Malformed request, or non-exact PinnedExact request
            ManifestNotFound: A requested connector (or pinned version) is not published
            CatalogUnavailable: The registry could not be read
        """
        specs = normalize_request(requested)
        strategy = ResolutionStrategy(strategy or self.settings.default_strategy)
        lockfile = dict(lockfile or {})

        reconciler = LockfileReconciler(strategy, lockfile)
        inputs = reconciler.prepare(specs)

        logger.info(
            f"Resolving {', '.join(str(s) for s in specs) or 'nothing'} "
            f"with {strategy.value} ({len(lockfile)} lockfile entries)"
        )

        snapshot = await CatalogSnapshot.build(
            self.registry, [s.connector_id for s in specs], self.validator
        )
        self._check_roots(snapshot, specs, strategy)

        # The deadline covers the search only, not registry I/O
        token = cancel_token or CancellationToken(self.settings.solver_timeout_seconds)

        solver = ConstraintSolver(snapshot, descending=inputs.descending, cancel_token=token)
        try:
            outcome = await asyncio.to_thread(
                solver.solve,
                specs,
                pins=inputs.pins,
                preferences=inputs.preferences,
                allow_yanked=inputs.allow_yanked,
            )
        except asyncio.CancelledError:
            token.cancel("caller task cancelled")
            raise

        return self._build_result(strategy, reconciler, snapshot, outcome, inputs.warnings)

    @staticmethod
    def _check_roots(snapshot: CatalogSnapshot, specs: List[DependencySpec], strategy: ResolutionStrategy):
        for spec in specs:
            slot = snapshot.slot_for(spec.connector_id)
            if slot is None or not slot.versions:
                raise ManifestNotFound(spec.connector_id)
            if strategy == ResolutionStrategy.PINNED_EXACT:
                version = VersionManager.exact_version(spec.version_constraint)
                if slot.find(version) is None:
                    raise ManifestNotFound(spec.connector_id, version)

    @staticmethod
    def _build_result(
        strategy: ResolutionStrategy,
        reconciler: LockfileReconciler,
        snapshot: CatalogSnapshot,
        outcome: SolverOutcome,
        warnings: List,
    ) -> ResolutionResult:
        builder = ResolutionResultBuilder(strategy).add_warnings(warnings)

        if outcome.state == SolverState.SUCCEEDED:
            builder.add_warnings(outcome.warnings)
            builder.add_warnings(reconciler.reconcile(snapshot, outcome.assignment))
            return builder.success(
                outcome.assignment,
                outcome.edges,
                reconciler.updated_lockfile(outcome.assignment),
            )

        if outcome.state == SolverState.CANCELLED:
            return builder.cancelled(outcome.cancel_reason, reconciler.updated_lockfile(None))

        return builder.conflict(outcome.conflicts, reconciler.updated_lockfile(None))

    # =========================================================================
    # Catalog Queries
    # =========================================================================

    def validate_manifest(self, manifest: Union[ConnectorManifest, Dict[str, Any]]) -> ValidationResult:
        """Validate a manifest without publishing it."""
        return self.validator.validate(manifest)

    async def list_versions(self, connector_id: str) -> List[ConnectorVersion]:
        """
        List published versions of a connector, highest first.

        Raises:
            ManifestNotFound: If the connector is unknown
        """
        return await self.registry.list_connector_versions(connector_id)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def explain_failure(
        self,
        requested: Iterable[RequestLike],
        strategy: Union[ResolutionStrategy, str, None] = None,
        lockfile: Optional[Lockfile] = None,
    ) -> ResolutionDiagnostics:
        """Resolve and, on conflict, describe the options available to the caller."""
        result = await self.resolve(requested, strategy, lockfile)
        if result.success or not result.conflicts:
            return ResolutionDiagnostics(has_conflicts=False)

        suggestions: List[str] = []
        available: Dict[str, List[str]] = {}
        for conflict in result.conflicts:
            entries = await self.registry.get_versions(conflict.connector_id)
            available[conflict.connector_id] = [e.version for e in entries if not e.yanked]

            for competing in conflict.competing_constraints:
                if competing.source_version:
                    suggestions.append(
                        f"Try a different version of {competing.source} "
                        f"(currently {competing.source_version} requires "
                        f"{conflict.connector_id} {competing.constraint})"
                    )
                else:
                    suggestions.append(
                        f"Relax constraint {competing.constraint} on {conflict.connector_id} "
                        f"from {competing.source}"
                    )

        return ResolutionDiagnostics(
            has_conflicts=True,
            conflicts=result.conflicts,
            suggestions=list(dict.fromkeys(suggestions)),
            available_versions=available,
        )

    # =========================================================================
    # Lockfile Operations
    # =========================================================================

    async def validate_lockfile(self, lockfile: Lockfile) -> LockfileValidationResult:
        """Check each lockfile entry against the current catalog."""
        errors: List[str] = []
        warnings: List[str] = []
        outdated: List[str] = []
        missing: List[str] = []

        for connector_id in sorted(lockfile):
            version = lockfile[connector_id]
            entries = await self.registry.get_versions(connector_id)
            if not entries:
                missing.append(connector_id)
                errors.append(f"Connector '{connector_id}' is not in the catalog")
                continue

            entry = next((e for e in entries if VersionManager.same_version(e.version, version)), None)
            if entry is None:
                errors.append(f"{connector_id}@{version} is not published")
                continue

            try:
                manifest = await self.registry.get_manifest(connector_id, entry.version)
            except ManifestNotFound:
                errors.append(f"{connector_id}@{version} has no manifest")
                continue

            validation = self.validator.validate(manifest)
            if not validation.is_valid:
                errors.append(f"{connector_id}@{version} is invalid: {'; '.join(validation.errors)}")
            if entry.yanked:
                errors.append(f"{connector_id}@{version} has been yanked")
            if entry.deprecated:
                warnings.append(f"{connector_id}@{version} is deprecated")

            latest = self._latest_stable(entries)
            if latest is not None and self._is_older(entry.version, latest):
                outdated.append(connector_id)
                warnings.append(f"{connector_id}@{version} is outdated (latest {latest})")

        return LockfileValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            outdated_versions=outdated,
            missing_connectors=missing,
        )

    @staticmethod
    def _latest_stable(entries) -> Optional[str]:
        for entry in entries:
            if entry.yanked:
                continue
            try:
                if not parse_version(entry.version).is_prerelease:
                    return entry.version
            except InvalidVersion:
                continue
        return None

    @staticmethod
    def _is_older(version: str, latest: str) -> bool:
        try:
            return parse_version(version) < parse_version(latest)
        except InvalidVersion:
            return False

    async def update_lockfile(
        self,
        lockfile: Lockfile,
        strategy: Union[ResolutionStrategy, str] = ResolutionStrategy.HIGHEST_COMPATIBLE,
        requested: Optional[Iterable[RequestLike]] = None,
    ) -> ResolutionResult:
        """
        Re-resolve a lockfile's connectors without honouring the old versions.

        Args:
            lockfile: Current lockfile; its entries name the connectors to refresh
            strategy: HighestCompatible or LowestCompatible
            requested: Explicit roots; defaults to every lockfile entry
        """
        strategy = ResolutionStrategy(strategy)
        if strategy in (ResolutionStrategy.LOCKED, ResolutionStrategy.PINNED_EXACT):
            raise InvalidConstraintError(f"Cannot update a lockfile with strategy {strategy.value}")

        roots = list(requested) if requested is not None else [
            DependencySpec(connector_id=connector_id) for connector_id in sorted(lockfile)
        ]
        result = await self.resolve(roots, strategy)
        if not result.success:
            result = result.model_copy(update={"lockfile": dict(sorted(lockfile.items()))})
        return result

    @staticmethod
    def generate_lockfile(result: ResolutionResult) -> Lockfile:
        """Lockfile for a successful result, sorted by connector id."""
        if not result.success:
            raise ValueError("Cannot generate a lockfile from an unsuccessful resolution")
        return {cid: result.resolved[cid] for cid in sorted(result.resolved)}

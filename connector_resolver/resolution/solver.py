"""
Constraint Solver - backtracking search for a consistent version assignment.

The search is iterative: each decision (connector, ordered viable candidates,
cursor) is pushed on an explicit stack and undone in LIFO order. Connectors
are addressed by their arena index in the CatalogSnapshot, and each has
exactly one slot in the assignment array, so dependency cycles need no
special handling.

Selection heuristic: the undecided connector with an active incoming edge and
the fewest viable candidates is decided next (ties broken by index, which is
id order). Candidate order follows the strategy (descending or ascending),
with an advisory preference tried first and candidates that satisfy optional
constraints ahead of those that do not.

On failure the report merges the shallowest dead ends with every candidate
that a decided target ruled out anywhere in the search.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from ..errors import InvalidConstraintError, ResolutionCancelled, SolverInvariantError
from ..models import (
    LOCKFILE_SOURCE,
    REQUEST_SOURCE,
    CompetingConstraint,
    Conflict,
    DependencySpec,
    ResolutionWarning,
    VersionConstraint,
)
from ..registry.snapshot import CandidateVersion, CatalogSnapshot
from .cancellation import CancellationToken
from .versions import VersionManager

logger = logging.getLogger(__name__)

UNDECIDED = -2
OMITTED = -1


# =============================================================================
# Solver State Machine
# =============================================================================

class SolverState(str, Enum):
    INITIALIZED = "initialized"
    SEARCHING = "searching"
    BACKTRACKING = "backtracking"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    SolverState.INITIALIZED: {SolverState.SEARCHING, SolverState.CANCELLED},
    SolverState.SEARCHING: {SolverState.SUCCEEDED, SolverState.BACKTRACKING, SolverState.CANCELLED},
    SolverState.BACKTRACKING: {SolverState.SEARCHING, SolverState.FAILED, SolverState.CANCELLED},
    SolverState.SUCCEEDED: set(),
    SolverState.FAILED: set(),
    SolverState.CANCELLED: set(),
}


# =============================================================================
# Search Structures
# =============================================================================

@dataclass(frozen=True, eq=False)
class Edge:
    """Constraint on a target connector, from a manifest, the request or the lockfile."""
    target: int
    constraint: VersionConstraint
    text: str
    source: str
    source_version: Optional[str] = None
    optional: bool = False
    excludes: bool = False

    def admits(self, version: str) -> bool:
        matched = VersionManager.satisfies(version, self.constraint)
        return not matched if self.excludes else matched

    def competing(self) -> CompetingConstraint:
        constraint = f"not {self.text}" if self.excludes else self.text
        return CompetingConstraint(
            constraint=constraint, source=self.source, source_version=self.source_version
        )


@dataclass
class Frame:
    """One decision on the stack."""
    connector: int
    candidates: List[int]  # version positions in the slot, or OMITTED
    cursor: int = 0
    added: List[Edge] = field(default_factory=list)


@dataclass
class DeadEnd:
    depth: int
    connector_id: str
    edges: List[Edge]
    reason: str


@dataclass
class SolverOutcome:
    """Result of one search."""
    state: SolverState
    assignment: Dict[str, str] = field(default_factory=dict)
    edges: List[Tuple[str, str]] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    warnings: List[ResolutionWarning] = field(default_factory=list)
    steps: int = 0
    backtracks: int = 0
    cancel_reason: str = ""


# =============================================================================
# Constraint Solver
# =============================================================================

class ConstraintSolver:
    """
    Backtracking solver over a catalog snapshot.

    A solver instance runs one search; it is a pure function of the snapshot
    and the arguments to ``solve()``.
    """

    def __init__(
        self,
        snapshot: CatalogSnapshot,
        descending: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.snapshot = snapshot
        self.descending = descending
        self.cancel_token = cancel_token or CancellationToken()
        self.state = SolverState.INITIALIZED

        size = len(snapshot)
        self._assigned: List[int] = [UNDECIDED] * size
        self._incoming: List[List[Edge]] = [[] for _ in range(size)]
        self._active_refs: List[int] = [0] * size
        self._pins: Dict[int, Edge] = {}
        self._order: List[List[int]] = [[] for _ in range(size)]
        self._stack: List[Frame] = []
        self._dead_ends: List[DeadEnd] = []
        self._blocks: Dict[Tuple[str, str], DeadEnd] = {}
        self._steps = 0
        self._backtracks = 0

    def _transition(self, new_state: SolverState):
        if new_state not in _TRANSITIONS[self.state]:
            raise SolverInvariantError(
                f"Illegal solver transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def solve(
        self,
        roots: List[DependencySpec],
        pins: Optional[Dict[str, str]] = None,
        preferences: Optional[Dict[str, str]] = None,
        allow_yanked: Optional[Dict[str, str]] = None,
    ) -> SolverOutcome:
        """
        Search for an assignment satisfying the roots and pins.

        Args:
            roots: Requested connectors (edges from the request)
            pins: Hard exact versions; a pinned connector is not activated by its pin
            preferences: Versions to try first, when eligible
            allow_yanked: Yanked versions that stay eligible, by connector id

        Returns:
            SolverOutcome in state SUCCEEDED, FAILED or CANCELLED

        Raises:
            SolverInvariantError: If the search reaches an impossible state
        """
        if self.state != SolverState.INITIALIZED:
            raise SolverInvariantError("ConstraintSolver instances run a single search")

        try:
            self._prepare(roots, pins or {}, preferences or {}, allow_yanked or {})
            self.cancel_token.raise_if_cancelled()
            self._transition(SolverState.SEARCHING)
            return self._search()
        except ResolutionCancelled:
            self._transition(SolverState.CANCELLED)
            logger.info(
                f"Search cancelled after {self._steps} steps ({self.cancel_token.reason})"
            )
            return SolverOutcome(
                state=self.state,
                steps=self._steps,
                backtracks=self._backtracks,
                cancel_reason=self.cancel_token.reason,
            )

    def _prepare(
        self,
        roots: List[DependencySpec],
        pins: Dict[str, str],
        preferences: Dict[str, str],
        allow_yanked: Dict[str, str],
    ):
        for root in roots:
            index = self.snapshot.index_of(root.connector_id)
            if index is None:
                raise SolverInvariantError(f"Requested connector '{root.connector_id}' missing from snapshot")
            edge = Edge(
                target=index,
                constraint=VersionManager.parse_constraint(root.version_constraint),
                text=root.version_constraint,
                source=REQUEST_SOURCE,
                optional=root.optional,
            )
            self._incoming[index].append(edge)
            self._active_refs[index] += 1

        for connector_id, version in pins.items():
            index = self.snapshot.index_of(connector_id)
            if index is None:
                continue
            self._pins[index] = Edge(
                target=index,
                constraint=VersionConstraint(operator="==", version=version),
                text=f"=={version}",
                source=LOCKFILE_SOURCE,
            )

        for index in range(len(self.snapshot)):
            slot = self.snapshot.slot(index)
            yanked_ok = allow_yanked.get(slot.connector_id)
            eligible = [
                position for position, candidate in enumerate(slot.versions)
                if candidate.is_valid and (
                    not candidate.yanked
                    or (yanked_ok is not None and VersionManager.same_version(candidate.version, yanked_ok))
                )
            ]
            if not self.descending:
                eligible.reverse()

            preferred = preferences.get(slot.connector_id)
            if preferred is not None:
                position = slot.find(preferred)
                if position is not None and position in eligible:
                    eligible.remove(position)
                    eligible.insert(0, position)

            self._order[index] = eligible

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _search(self) -> SolverOutcome:
        while True:
            self.cancel_token.raise_if_cancelled()
            self._steps += 1

            choice = self._select()
            if choice is None:
                return self._succeed()

            connector, candidates = choice
            if candidates:
                frame = Frame(connector=connector, candidates=candidates)
                self._stack.append(frame)
                self._apply(frame)
                continue

            self._transition(SolverState.BACKTRACKING)
            if not self._backtrack():
                return self._fail()
            self._transition(SolverState.SEARCHING)

    def _select(self) -> Optional[Tuple[int, List[int]]]:
        """Pick the next connector to decide; None when the frontier is empty."""
        best: Optional[Tuple[int, List[int]]] = None
        for index in range(len(self.snapshot)):
            if self._assigned[index] != UNDECIDED or self._active_refs[index] == 0:
                continue
            candidates = self._viable(index, record=False)
            if best is None or len(candidates) < len(best[1]):
                best = (index, candidates)

        if best is not None and not best[1]:
            # Re-run to record why this connector is a dead end
            self._viable(best[0], record=True)
        return best

    def _viable(self, index: int, record: bool) -> List[int]:
        """Ordered viable candidates for a connector under the current assignment."""
        slot = self.snapshot.slot(index)
        required = [e for e in self._incoming[index] if not e.optional or e.excludes]
        pin = self._pins.get(index)
        if pin is not None:
            required.append(pin)
        optional = [e for e in self._incoming[index] if e.optional and not e.excludes]

        preferred: List[int] = []
        others: List[int] = []
        blocked: List[Tuple[Edge, CandidateVersion]] = []
        for position in self._order[index]:
            candidate = slot.versions[position]
            if not all(edge.admits(candidate.version) for edge in required):
                continue
            blocker = self._outgoing_block(index, candidate)
            if blocker is not None:
                blocked.append(blocker)
                continue
            if all(edge.admits(candidate.version) for edge in optional):
                preferred.append(position)
            else:
                others.append(position)

        self._note_blocks(blocked)
        viable = preferred + others
        # A locked connector is never dropped, even when only optional edges reach it
        omittable = index not in self._pins and not any(
            not e.optional for e in self._incoming[index] if not e.excludes
        )
        if omittable:
            viable.append(OMITTED)

        if record and not viable:
            self._record_dead_end(index, required, blocked)
        return viable

    def _outgoing_block(
        self, index: int, candidate: CandidateVersion
    ) -> Optional[Tuple[Edge, CandidateVersion]]:
        """First outgoing edge of a candidate that disagrees with a decided target."""
        for edge in self._edges_from(candidate):
            if edge.optional and not edge.excludes:
                continue
            target_state = self._assigned[edge.target]
            if target_state == UNDECIDED:
                continue
            if target_state == OMITTED:
                if edge.excludes:
                    continue
                return edge, candidate
            target_version = self.snapshot.slot(edge.target).versions[target_state].version
            if not edge.admits(target_version):
                return edge, candidate
        return None

    def _edges_from(self, candidate: CandidateVersion) -> List[Edge]:
        manifest = candidate.manifest
        edges = []
        for dependency in manifest.dependencies:
            target = self.snapshot.index_of(dependency.connector_id)
            if target is None:
                raise SolverInvariantError(
                    f"Dependency '{dependency.connector_id}' of {manifest.key} missing from snapshot"
                )
            edges.append(Edge(
                target=target,
                constraint=VersionManager.parse_constraint(dependency.version_constraint),
                text=dependency.version_constraint,
                source=manifest.id,
                source_version=manifest.version,
                optional=dependency.optional,
            ))

        for rule in manifest.conflict_rules.incompatible_with:
            connector_id, _, constraint_text = rule.partition("@")
            target = self.snapshot.index_of(connector_id.strip())
            if target is None:
                # Never pulled into the search, so it cannot be installed alongside
                continue
            constraint_text = constraint_text.strip() or "*"
            try:
                constraint = VersionManager.parse_constraint(constraint_text)
            except InvalidConstraintError as e:
                raise SolverInvariantError(f"Validated manifest {manifest.key} has bad rule '{rule}'") from e
            edges.append(Edge(
                target=target,
                constraint=constraint,
                text=constraint_text,
                source=manifest.id,
                source_version=manifest.version,
                excludes=True,
            ))
        return edges

    # -------------------------------------------------------------------------
    # Decisions and backtracking
    # -------------------------------------------------------------------------

    def _apply(self, frame: Frame):
        position = frame.candidates[frame.cursor]
        self._assigned[frame.connector] = position
        if position == OMITTED:
            logger.debug(f"Omitting optional connector {self._id(frame.connector)}")
            return

        candidate = self.snapshot.slot(frame.connector).versions[position]
        logger.debug(f"Trying {candidate.connector_id}@{candidate.version} at depth {len(self._stack)}")
        for edge in self._edges_from(candidate):
            self._incoming[edge.target].append(edge)
            if not edge.excludes:
                self._active_refs[edge.target] += 1
            frame.added.append(edge)

    def _undo(self, frame: Frame):
        for edge in reversed(frame.added):
            removed = self._incoming[edge.target].pop()
            if removed is not edge:
                raise SolverInvariantError(
                    f"Decision stack out of order while undoing {self._id(frame.connector)}"
                )
            if not edge.excludes:
                self._active_refs[edge.target] -= 1
        frame.added.clear()
        self._assigned[frame.connector] = UNDECIDED

    def _backtrack(self) -> bool:
        """Advance the most recent decision with candidates left. False when exhausted."""
        while self._stack:
            self.cancel_token.raise_if_cancelled()
            self._backtracks += 1
            frame = self._stack[-1]
            self._undo(frame)
            frame.cursor += 1
            if frame.cursor < len(frame.candidates):
                self._apply(frame)
                return True
            self._stack.pop()
            logger.debug(f"Exhausted candidates for {self._id(frame.connector)}")
        return False

    # -------------------------------------------------------------------------
    # Conflict recording
    # -------------------------------------------------------------------------

    def _record_dead_end(
        self,
        index: int,
        required: List[Edge],
        blocked: List[Tuple[Edge, CandidateVersion]],
    ):
        depth = len(self._stack)
        if self._dead_ends and depth > self._dead_ends[0].depth:
            return
        if self._dead_ends and depth < self._dead_ends[0].depth:
            self._dead_ends = []

        connector_id = self._id(index)
        if blocked and len(blocked) == len(self._order[index]):
            for edge, candidate in blocked:
                self._dead_ends.append(self._blocked_dead_end(depth, edge, candidate))
        else:
            self._dead_ends.append(DeadEnd(
                depth=depth,
                connector_id=connector_id,
                edges=list(required),
                reason=self._no_candidate_reason(index),
            ))
            for edge, candidate in blocked:
                self._dead_ends.append(self._blocked_dead_end(depth, edge, candidate))

        logger.debug(f"Dead end on {connector_id} at depth {depth}")

    def _note_blocks(self, blocked: List[Tuple[Edge, CandidateVersion]]):
        """Remember every candidate ruled out by a decided target, at any depth."""
        for edge, candidate in blocked:
            dead_end = self._blocked_dead_end(len(self._stack), edge, candidate)
            seen = self._blocks.setdefault((dead_end.connector_id, dead_end.reason), dead_end)
            if seen is not dead_end:
                seen.edges.extend(e for e in dead_end.edges if e not in seen.edges)

    def _blocked_dead_end(self, depth: int, edge: Edge, candidate: CandidateVersion) -> DeadEnd:
        target_id = self._id(edge.target)
        state = self._assigned[edge.target]
        edges = [e for e in self._incoming[edge.target] if not e.optional or e.excludes]
        pin = self._pins.get(edge.target)
        if pin is not None:
            edges.append(pin)
        edges.append(edge)

        source = f"{candidate.connector_id}@{candidate.version}"
        if state == OMITTED:
            reason = f"{source} requires {target_id} but {target_id} was omitted"
        else:
            target_version = self.snapshot.slot(edge.target).versions[state].version
            if edge.excludes:
                reason = f"{source} is incompatible with {target_id}@{target_version}"
            else:
                reason = (
                    f"{source} requires {target_id} {edge.text} but {target_id} "
                    f"is already resolved to {target_version}"
                )
        return DeadEnd(depth=depth, connector_id=target_id, edges=edges, reason=reason)

    def _no_candidate_reason(self, index: int) -> str:
        slot = self.snapshot.slot(index)
        pin = self._pins.get(index)
        if pin is not None:
            position = slot.find(pin.constraint.version)
            if position is None:
                return f"Locked version {pin.constraint.version} is not published"
            locked = slot.versions[position]
            if not locked.is_valid:
                return (
                    f"Locked version {locked.version} failed validation: "
                    f"{'; '.join(locked.validation.errors)}"
                )

        if not slot.versions:
            return "No published versions"
        if not self._order[index]:
            yanked = sum(1 for v in slot.versions if v.yanked)
            invalid = sum(1 for v in slot.versions if not v.is_valid)
            return f"No eligible versions ({yanked} yanked, {invalid} invalid)"
        return "No version satisfies all constraints"

    def _conflicts(self) -> List[Conflict]:
        merged: Dict[str, Tuple[List[CompetingConstraint], Set[str]]] = {}
        for dead_end in self._dead_ends + list(self._blocks.values()):
            constraints, reasons = merged.setdefault(dead_end.connector_id, ([], set()))
            for edge in dead_end.edges:
                competing = edge.competing()
                if competing not in constraints:
                    constraints.append(competing)
            reasons.add(dead_end.reason)

        conflicts = []
        for connector_id in sorted(merged):
            constraints, reasons = merged[connector_id]
            constraints.sort(key=lambda c: (c.source, c.constraint, c.source_version or ""))
            conflicts.append(Conflict(
                connector_id=connector_id,
                competing_constraints=constraints,
                source_connectors=sorted({c.source for c in constraints}),
                reason="; ".join(sorted(reasons)),
            ))
        return conflicts

    # -------------------------------------------------------------------------
    # Terminal states
    # -------------------------------------------------------------------------

    def _fail(self) -> SolverOutcome:
        self._transition(SolverState.FAILED)
        conflicts = self._conflicts()
        logger.info(
            f"No assignment found after {self._steps} steps and {self._backtracks} backtracks; "
            f"conflicts on {', '.join(c.connector_id for c in conflicts) or 'nothing'}"
        )
        return SolverOutcome(
            state=self.state,
            conflicts=conflicts,
            steps=self._steps,
            backtracks=self._backtracks,
        )

    def _succeed(self) -> SolverOutcome:
        self._transition(SolverState.SUCCEEDED)
        warnings = self._verify()

        assignment: Dict[str, str] = {}
        for index, position in enumerate(self._assigned):
            if position < 0:
                continue
            candidate = self.snapshot.slot(index).versions[position]
            assignment[candidate.connector_id] = candidate.version
            if candidate.yanked:
                warnings.append(ResolutionWarning(
                    connector_id=candidate.connector_id,
                    reason=f"Version {candidate.version} is yanked; kept because it was pinned explicitly",
                ))
            if candidate.deprecated:
                warnings.append(ResolutionWarning(
                    connector_id=candidate.connector_id,
                    reason=f"Version {candidate.version} is deprecated",
                ))

        edges = []
        for incoming in self._incoming:
            for edge in incoming:
                if edge.excludes or edge.source in (REQUEST_SOURCE, LOCKFILE_SOURCE):
                    continue
                if self._assigned[edge.target] >= 0:
                    edges.append((edge.source, self._id(edge.target)))

        logger.info(
            f"Resolved {len(assignment)} connectors in {self._steps} steps "
            f"with {self._backtracks} backtracks"
        )
        return SolverOutcome(
            state=self.state,
            assignment=assignment,
            edges=sorted(set(edges)),
            warnings=warnings,
            steps=self._steps,
            backtracks=self._backtracks,
        )

    def _verify(self) -> List[ResolutionWarning]:
        """Check every active edge against the final assignment."""
        warnings = []
        for index, incoming in enumerate(self._incoming):
            position = self._assigned[index]
            edges = list(incoming)
            if index in self._pins and position >= 0:
                edges.append(self._pins[index])

            for edge in edges:
                label = edge.source if edge.source_version is None else f"{edge.source}@{edge.source_version}"
                if position < 0:
                    if edge.excludes:
                        continue
                    if position == UNDECIDED or not edge.optional:
                        raise SolverInvariantError(
                            f"Constraint {edge.text} from {label} left {self._id(index)} unresolved"
                        )
                    warnings.append(ResolutionWarning(
                        connector_id=self._id(index),
                        reason=f"Optional dependency from {label} was omitted",
                    ))
                    continue

                version = self.snapshot.slot(index).versions[position].version
                if edge.admits(version):
                    continue
                if edge.optional and not edge.excludes:
                    warnings.append(ResolutionWarning(
                        connector_id=self._id(index),
                        reason=f"Optional constraint {edge.text} from {label} not satisfied by {version}",
                    ))
                    continue
                raise SolverInvariantError(
                    f"Resolved {self._id(index)}@{version} violates {edge.text} from {label}"
                )
        return warnings

    def _id(self, index: int) -> str:
        return self.snapshot.connector_ids[index]

"""
Result builder - assembles ResolutionResult values.

Results carry no timestamps so identical inputs always produce identical
results.
"""

import logging
from typing import Dict, Iterable, List, Tuple

import networkx as nx

from ..models import (
    Conflict,
    Lockfile,
    ResolutionOutcome,
    ResolutionResult,
    ResolutionStrategy,
    ResolutionWarning,
)

logger = logging.getLogger(__name__)


def install_order(resolved: Dict[str, str], edges: Iterable[Tuple[str, str]]) -> List[str]:
    """
    Order resolved connectors so dependencies come before their dependents.

    Cycles are condensed into a single node whose members are listed in id
    order; ties between independent connectors are broken by id.

    Args:
        resolved: Resolved connector ids
        edges: (dependent, dependency) pairs

    Returns:
        Connector ids in installation order
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(resolved)
    for dependent, dependency in edges:
        if dependent in resolved and dependency in resolved:
            graph.add_edge(dependency, dependent)

    condensed = nx.condensation(graph)
    members = {
        node: sorted(condensed.nodes[node]["members"])
        for node in condensed.nodes
    }

    order = []
    for node in nx.lexicographical_topological_sort(condensed, key=lambda n: members[n][0]):
        order.extend(members[node])
    return order


def _dedupe_warnings(warnings: Iterable[ResolutionWarning]) -> List[ResolutionWarning]:
    unique = {(w.connector_id, w.reason): w for w in warnings}
    return [unique[key] for key in sorted(unique)]


class ResolutionResultBuilder:
    """Builds the result of one resolve call."""

    def __init__(self, strategy: ResolutionStrategy):
        self.strategy = strategy
        self.warnings: List[ResolutionWarning] = []

    def add_warnings(self, warnings: Iterable[ResolutionWarning]) -> "ResolutionResultBuilder":
        self.warnings.extend(warnings)
        return self

    def success(
        self,
        resolved: Dict[str, str],
        edges: Iterable[Tuple[str, str]],
        lockfile: Lockfile,
    ) -> ResolutionResult:
        ordered = install_order(resolved, edges)
        return ResolutionResult(
            success=True,
            outcome=ResolutionOutcome.SUCCEEDED,
            strategy=self.strategy,
            resolved={cid: resolved[cid] for cid in sorted(resolved)},
            warnings=_dedupe_warnings(self.warnings),
            lockfile={cid: lockfile[cid] for cid in sorted(lockfile)},
            install_order=ordered,
        )

    def conflict(self, conflicts: List[Conflict], lockfile: Lockfile) -> ResolutionResult:
        return ResolutionResult(
            success=False,
            outcome=ResolutionOutcome.CONFLICT,
            strategy=self.strategy,
            conflicts=sorted(conflicts, key=lambda c: c.connector_id),
            warnings=_dedupe_warnings(self.warnings),
            lockfile={cid: lockfile[cid] for cid in sorted(lockfile)},
        )

    def cancelled(self, reason: str, lockfile: Lockfile) -> ResolutionResult:
        self.warnings.append(ResolutionWarning(connector_id="*", reason=f"Resolution cancelled: {reason}"))
        return ResolutionResult(
            success=False,
            outcome=ResolutionOutcome.CANCELLED,
            strategy=self.strategy,
            warnings=_dedupe_warnings(self.warnings),
            lockfile={cid: lockfile[cid] for cid in sorted(lockfile)},
        )

"""Tests for constraint solving through the resolver.

This module covers the search itself:
- Strategy-driven candidate order
- Conflict detection and reporting
- Cycles, diamonds and backtracking
- Optional dependencies and incompatibility rules
- Cancellation and the solver state machine
"""

import asyncio
import itertools
import threading

import pytest

from connector_resolver.errors import SolverInvariantError
from connector_resolver.models import DependencySpec, ResolutionOutcome, ResolutionStrategy
from connector_resolver.registry import CatalogSnapshot
from connector_resolver.resolution.cancellation import CancellationToken
from connector_resolver.resolution.solver import ConstraintSolver, SolverState
from connector_resolver.resolution.validator import ManifestValidator


class TestStrategies:
    """Tests for version selection per strategy."""

    @pytest.mark.asyncio
    async def test_highest_compatible(self, resolver, b_catalog):
        """A requires B>=2.0 and HighestCompatible picks B=2.5."""
        result = await resolver.resolve(["A"], ResolutionStrategy.HIGHEST_COMPATIBLE)

        assert result.success
        assert result.outcome == ResolutionOutcome.SUCCEEDED
        assert result.resolved == {"A": "1.0", "B": "2.5"}
        assert result.lockfile == {"A": "1.0", "B": "2.5"}
        assert result.install_order == ["B", "A"]

    @pytest.mark.asyncio
    async def test_lowest_compatible(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], ResolutionStrategy.LOWEST_COMPATIBLE)

        assert result.resolved["B"] == "2.0"

    @pytest.mark.asyncio
    async def test_default_strategy_from_settings(self, resolver, b_catalog):
        result = await resolver.resolve(["A"])

        assert result.strategy == ResolutionStrategy.HIGHEST_COMPATIBLE
        assert result.resolved["B"] == "2.5"

    @pytest.mark.asyncio
    async def test_yanked_versions_are_skipped(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0", yanked=True)

        result = await resolver.resolve(["B"])

        assert result.resolved == {"B": "1.0"}

    @pytest.mark.asyncio
    async def test_deprecated_version_selected_with_warning(self, resolver, publish):
        publish("B", "1.0", deprecated=True)

        result = await resolver.resolve(["B"])

        assert result.resolved == {"B": "1.0"}
        assert any("deprecated" in w.reason for w in result.warnings)

    @pytest.mark.asyncio
    async def test_invalid_manifests_are_not_candidates(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0", "B@*")  # self-dependency

        result = await resolver.resolve(["B"])

        assert result.resolved == {"B": "1.0"}


class TestConflicts:
    """Tests for conflict detection and reporting."""

    @pytest.mark.asyncio
    async def test_competing_constraints(self, resolver, conflict_catalog):
        """A requires B>=2.0, C requires B<2.0: conflict on B naming both."""
        result = await resolver.resolve(["A", "C"])

        assert not result.success
        assert result.outcome == ResolutionOutcome.CONFLICT
        assert result.resolved == {}
        assert [c.connector_id for c in result.conflicts] == ["B"]

        conflict = result.conflicts[0]
        assert conflict.source_connectors == ["A", "C"]
        constraints = {(c.source, c.constraint) for c in conflict.competing_constraints}
        assert constraints == {("A", ">=2.0"), ("C", "<2.0")}

    @pytest.mark.asyncio
    async def test_conflict_returns_input_lockfile(self, resolver, conflict_catalog):
        result = await resolver.resolve(["A", "C"], lockfile={"A": "1.0"})

        assert result.lockfile == {"A": "1.0"}

    @pytest.mark.asyncio
    async def test_no_matching_version(self, resolver, b_catalog):
        result = await resolver.resolve(["B@>=3.0"])

        assert not result.success
        conflict = result.conflicts[0]
        assert conflict.connector_id == "B"
        assert conflict.source_connectors == ["<request>"]
        assert conflict.reason == "No version satisfies all constraints"

    @pytest.mark.asyncio
    async def test_missing_dependency(self, resolver, publish):
        publish("A", "1.0", "X@>=1.0")

        result = await resolver.resolve(["A"])

        assert not result.success
        assert result.conflicts[0].connector_id == "X"
        assert result.conflicts[0].reason == "No published versions"

    @pytest.mark.asyncio
    async def test_conflicts_are_deterministic(self, resolver, conflict_catalog):
        first = await resolver.resolve(["A", "C"])
        second = await resolver.resolve(["C", "A"])

        assert first.model_dump() == second.model_dump()

    @pytest.mark.asyncio
    async def test_conflict_lists_every_competing_constraint(self, resolver, conflict_catalog, publish):
        """A third requirement on B is reported alongside the first collision."""
        publish("D", "1.0", "B@<1.5")

        result = await resolver.resolve(["A", "C", "D"])

        assert [c.connector_id for c in result.conflicts] == ["B"]
        conflict = result.conflicts[0]
        assert conflict.source_connectors == ["A", "C", "D"]
        constraints = {(c.source, c.constraint) for c in conflict.competing_constraints}
        assert constraints == {("A", ">=2.0"), ("C", "<2.0"), ("D", "<1.5")}

    @pytest.mark.asyncio
    async def test_conflict_reports_ruled_out_alternatives(self, resolver, conflict_catalog, publish):
        """A@1.0 collides with C on B before A@0.9 fails on X; both are reported."""
        publish("X", "1.0")
        publish("A", "0.9", "X@>=5.0")

        result = await resolver.resolve(["A", "C"])

        assert not result.success
        assert [c.connector_id for c in result.conflicts] == ["B", "X"]
        b_conflict, x_conflict = result.conflicts
        assert {(c.source, c.source_version, c.constraint) for c in b_conflict.competing_constraints} == {
            ("A", "1.0", ">=2.0"),
            ("C", "1.0", "<2.0"),
        }
        assert "A@1.0 requires B >=2.0 but B is already resolved to 1.0" in b_conflict.reason
        assert [(c.source, c.constraint) for c in x_conflict.competing_constraints] == [("A", ">=5.0")]


class TestGraphShapes:
    """Tests for cycles, diamonds and choices requiring older versions."""

    @pytest.mark.asyncio
    async def test_cycle_resolves_once_each(self, resolver, publish):
        publish("A", "1.0", "B")
        publish("B", "1.0", "A")

        result = await resolver.resolve(["A"])

        assert result.success
        assert result.resolved == {"A": "1.0", "B": "1.0"}
        assert sorted(result.install_order) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_diamond_with_caret_and_tilde(self, resolver, publish):
        for version in ("1.0.0", "1.2.0", "1.2.5", "1.3.0", "2.0.0"):
            publish("D", version)
        publish("B", "1.0", "D@^1.0")
        publish("C", "1.0", "D@~1.2")
        publish("A", "1.0", "B@>=1.0", "C@>=1.0")

        result = await resolver.resolve(["A"])

        assert result.resolved["D"] == "1.2.5"
        assert result.install_order[0] == "D"
        assert result.install_order[-1] == "A"

    @pytest.mark.asyncio
    async def test_selects_older_version_to_satisfy_siblings(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0")
        publish("A", "1.0", "B@<2.0")
        publish("A", "2.0", "B@>=2.0")
        publish("C", "1.0", "B@<2.0")

        result = await resolver.resolve(["A", "C"])

        assert result.success
        assert result.resolved == {"A": "1.0", "B": "1.0", "C": "1.0"}

    @pytest.mark.asyncio
    async def test_every_required_edge_is_satisfied(self, resolver, publish):
        for version in ("1.0", "1.1", "2.0"):
            publish("E", version)
        publish("D", "1.0", "E@<2.0")
        publish("D", "2.0", "E@>=2.0")
        publish("B", "1.0", "D@>=1.0", "E@!=1.1")
        publish("A", "1.0", "B", "D@<2.0")

        result = await resolver.resolve(["A"])

        assert result.resolved == {"A": "1.0", "B": "1.0", "D": "1.0", "E": "1.0"}


class TestOptionalAndIncompatible:
    """Tests for optional edges and incompatibility rules."""

    @pytest.mark.asyncio
    async def test_optional_dependency_is_pulled_in(self, resolver, publish):
        publish("B", "1.0")
        publish("A", "1.0", "B@>=1.0?")

        result = await resolver.resolve(["A"])

        assert result.resolved == {"A": "1.0", "B": "1.0"}
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_unavailable_optional_dependency_is_omitted(self, resolver, publish):
        publish("A", "1.0", "X?")

        result = await resolver.resolve(["A"])

        assert result.success
        assert result.resolved == {"A": "1.0"}
        assert [(w.connector_id, w.reason) for w in result.warnings] == [
            ("X", "Optional dependency from A@1.0 was omitted"),
        ]

    @pytest.mark.asyncio
    async def test_violated_optional_constraint_is_a_warning(self, resolver, publish):
        publish("B", "1.0")
        publish("A", "1.0", "B@>=2.0?")
        publish("C", "1.0", "B@<2.0")

        result = await resolver.resolve(["A", "C"])

        assert result.success
        assert result.resolved["B"] == "1.0"
        assert any(w.connector_id == "B" and "not satisfied" in w.reason for w in result.warnings)

    @pytest.mark.asyncio
    async def test_incompatibility_excludes_versions(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0")
        publish("A", "1.0", incompatible=["B@<2.0"])

        result = await resolver.resolve(["A", "B"], ResolutionStrategy.LOWEST_COMPATIBLE)

        assert result.resolved == {"A": "1.0", "B": "2.0"}

    @pytest.mark.asyncio
    async def test_incompatibility_conflict(self, resolver, publish):
        publish("B", "1.0")
        publish("A", "1.0", incompatible=["B@<2.0"])

        result = await resolver.resolve(["A", "B@<2.0"])

        assert not result.success
        conflict = result.conflicts[0]
        assert conflict.connector_id == "B"
        assert conflict.source_connectors == ["<request>", "A"]

    @pytest.mark.asyncio
    async def test_incompatibility_does_not_pull_in_target(self, resolver, publish):
        publish("B", "1.0")
        publish("A", "1.0", incompatible=["B@*"])

        result = await resolver.resolve(["A"])

        assert result.resolved == {"A": "1.0"}


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_token_returns_cancelled_result(self, resolver, b_catalog):
        token = CancellationToken()
        token.cancel()

        result = await resolver.resolve(["A"], lockfile={"B": "2.0"}, cancel_token=token)

        assert not result.success
        assert result.cancelled
        assert result.resolved == {}
        assert result.lockfile == {"B": "2.0"}

    @pytest.mark.asyncio
    async def test_cancelled_while_backtracking(self, registry, resolver, publish):
        """A token firing on its fifth check stops the search after the first backtrack."""
        publish("X", "1.0")
        for minor in range(10):
            publish("A", f"1.{minor}", "X@>=5.0")
        snapshot = await CatalogSnapshot.build(registry, ["A"], ManifestValidator(["data"]))

        token = CancellationToken(timeout_seconds=5, clock=itertools.count().__next__)
        outcome = ConstraintSolver(snapshot, cancel_token=token).solve([DependencySpec(connector_id="A")])

        assert outcome.state == SolverState.CANCELLED
        assert outcome.backtracks == 1
        assert outcome.assignment == {}
        assert outcome.conflicts == []
        assert outcome.cancel_reason == "deadline exceeded"

        token = CancellationToken(timeout_seconds=5, clock=itertools.count().__next__)
        result = await resolver.resolve(["A"], cancel_token=token)

        assert result.cancelled
        assert result.resolved == {}
        assert result.conflicts == []

    @pytest.mark.asyncio
    async def test_cancelling_the_task_cancels_the_token(self, resolver, b_catalog):
        searching = threading.Event()
        release = threading.Event()

        def clock():
            # Hold the worker thread inside its first cancellation check
            if threading.current_thread() is not threading.main_thread():
                searching.set()
                release.wait(5)
            return 0.0

        token = CancellationToken(timeout_seconds=3600, clock=clock)
        task = asyncio.create_task(resolver.resolve(["A"], cancel_token=token))
        try:
            assert await asyncio.to_thread(searching.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert token.cancelled
            assert token.reason == "caller task cancelled"
        finally:
            release.set()

    def test_deadline_fires(self):
        now = [0.0]
        token = CancellationToken(timeout_seconds=5, clock=lambda: now[0])

        assert not token.cancelled
        now[0] = 5.0
        assert token.cancelled
        assert token.reason == "deadline exceeded"


class TestSolverStateMachine:
    """Tests for solver state handling."""

    @pytest.mark.asyncio
    async def test_terminal_states(self, registry, b_catalog):
        snapshot = await CatalogSnapshot.build(registry, ["A"], ManifestValidator(["data"]))

        solver = ConstraintSolver(snapshot)
        outcome = solver.solve([DependencySpec(connector_id="A")])
        assert outcome.state == SolverState.SUCCEEDED
        assert outcome.edges == [("A", "B")]

        failing = ConstraintSolver(snapshot)
        outcome = failing.solve([DependencySpec.parse("B@>=9.0")])
        assert outcome.state == SolverState.FAILED

    @pytest.mark.asyncio
    async def test_solver_runs_once(self, registry, b_catalog):
        snapshot = await CatalogSnapshot.build(registry, ["A"], ManifestValidator(["data"]))
        solver = ConstraintSolver(snapshot)
        solver.solve([DependencySpec(connector_id="A")])

        with pytest.raises(SolverInvariantError):
            solver.solve([DependencySpec(connector_id="A")])

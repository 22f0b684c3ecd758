"""Tests for lockfile reconciliation and persistence."""

import json

import pytest

from connector_resolver.errors import InvalidConstraintError, ManifestNotFound
from connector_resolver.models import DependencySpec, ResolutionStrategy
from connector_resolver.resolution.reconciler import LockfileReconciler, dump_lockfile, load_lockfile


class TestLockedStrategy:
    """Tests for hard lockfile constraints."""

    @pytest.mark.asyncio
    async def test_locked_version_is_kept(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], ResolutionStrategy.LOCKED, lockfile={"B": "2.0"})

        assert result.success
        assert result.resolved == {"A": "1.0", "B": "2.0"}

    @pytest.mark.asyncio
    async def test_locked_version_is_never_overridden(self, resolver, b_catalog):
        """Lockfile B=1.5 under Locked with a request for B>=2.0 is a conflict on B."""
        result = await resolver.resolve(["B@>=2.0"], ResolutionStrategy.LOCKED, lockfile={"B": "1.5"})

        assert not result.success
        assert result.resolved == {}
        assert result.lockfile == {"B": "1.5"}

        conflict = result.conflicts[0]
        assert conflict.connector_id == "B"
        constraints = {(c.source, c.constraint) for c in conflict.competing_constraints}
        assert constraints == {("<lockfile>", "==1.5"), ("<request>", ">=2.0")}

    @pytest.mark.asyncio
    async def test_locked_dependency_conflicts_with_manifest(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], ResolutionStrategy.LOCKED, lockfile={"B": "1.5"})

        assert not result.success
        assert result.conflicts[0].source_connectors == ["<lockfile>", "A"]

    @pytest.mark.asyncio
    async def test_locked_version_failing_validation(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "1.5", "B@*")

        result = await resolver.resolve(["B"], ResolutionStrategy.LOCKED, lockfile={"B": "1.5"})

        assert not result.success
        assert "Locked version 1.5 failed validation" in result.conflicts[0].reason
        assert "depends on itself" in result.conflicts[0].reason

    @pytest.mark.asyncio
    async def test_locked_optional_dependency_failing_validation(self, resolver, publish):
        """A locked version reached only through an optional edge still fails the call."""
        publish("B", "1.0")
        publish("B", "1.5", "B@*")
        publish("A", "1.0", "B@*?")

        result = await resolver.resolve(["A"], ResolutionStrategy.LOCKED, lockfile={"B": "1.5"})

        assert not result.success
        assert result.resolved == {}
        assert result.lockfile == {"B": "1.5"}
        assert [c.connector_id for c in result.conflicts] == ["B"]
        assert "Locked version 1.5 failed validation" in result.conflicts[0].reason

    @pytest.mark.asyncio
    async def test_locked_optional_dependency_is_kept(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0")
        publish("A", "1.0", "B@>=2.0?")

        result = await resolver.resolve(["A"], ResolutionStrategy.LOCKED, lockfile={"B": "1.0"})

        assert result.success
        assert result.resolved == {"A": "1.0", "B": "1.0"}
        assert any(w.connector_id == "B" and "not satisfied" in w.reason for w in result.warnings)

    @pytest.mark.asyncio
    async def test_locked_version_not_published(self, resolver, b_catalog):
        result = await resolver.resolve(["B"], ResolutionStrategy.LOCKED, lockfile={"B": "3.0"})

        assert not result.success
        assert result.conflicts[0].reason == "Locked version 3.0 is not published"

    @pytest.mark.asyncio
    async def test_yanked_locked_version_is_kept_with_warning(self, resolver, publish):
        publish("B", "1.0", yanked=True)
        publish("B", "2.0")

        result = await resolver.resolve(["B"], ResolutionStrategy.LOCKED, lockfile={"B": "1.0"})

        assert result.resolved == {"B": "1.0"}
        assert any("yanked" in w.reason for w in result.warnings)

    @pytest.mark.asyncio
    async def test_unlocked_connectors_resolve_freely(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], ResolutionStrategy.LOCKED, lockfile={"A": "1.0"})

        assert result.resolved == {"A": "1.0", "B": "2.5"}


class TestAdvisoryLockfile:
    """Tests for HighestCompatible/LowestCompatible lockfile preferences."""

    @pytest.mark.asyncio
    async def test_preferred_version_is_tried_first(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], lockfile={"B": "2.0"})

        assert result.resolved["B"] == "2.0"
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_deviation_warns(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], lockfile={"B": "1.5"})

        assert result.resolved["B"] == "2.5"
        assert [(w.connector_id, w.reason) for w in result.warnings] == [
            ("B", "Locked version 1.5 no longer satisfies constraints; resolved 2.5"),
        ]

    @pytest.mark.asyncio
    async def test_yanked_preference_warns(self, resolver, publish):
        publish("B", "1.0", yanked=True)
        publish("B", "2.0")

        result = await resolver.resolve(["B"], lockfile={"B": "1.0"})

        assert result.resolved == {"B": "2.0"}
        assert result.warnings[0].reason == "Locked version 1.0 was yanked; resolved 2.0"

    @pytest.mark.asyncio
    async def test_unpublished_preference_warns(self, resolver, b_catalog):
        result = await resolver.resolve(["B"], lockfile={"B": "0.9"})

        assert result.warnings[0].reason == "Locked version 0.9 is no longer published; resolved 2.5"

    @pytest.mark.asyncio
    async def test_unreachable_entries_are_dropped(self, resolver, b_catalog):
        result = await resolver.resolve(["A"], lockfile={"Z": "1.0"})

        assert "Z" not in result.lockfile
        assert any(w.connector_id == "Z" and w.reason.startswith("Dropped") for w in result.warnings)


class TestPinnedExact:
    """Tests for exact-version requests."""

    @pytest.mark.asyncio
    async def test_pinned_yanked_version_is_allowed(self, resolver, publish):
        publish("B", "1.0")
        publish("B", "2.0", yanked=True)

        result = await resolver.resolve(["B@==2.0"], ResolutionStrategy.PINNED_EXACT)

        assert result.resolved == {"B": "2.0"}
        assert any(w.connector_id == "B" and "yanked" in w.reason for w in result.warnings)

    @pytest.mark.asyncio
    async def test_non_exact_request_is_rejected(self, resolver, b_catalog):
        with pytest.raises(InvalidConstraintError):
            await resolver.resolve(["B@>=1.0"], ResolutionStrategy.PINNED_EXACT)

    @pytest.mark.asyncio
    async def test_missing_pinned_version(self, resolver, b_catalog):
        with pytest.raises(ManifestNotFound):
            await resolver.resolve(["B@3.0"], ResolutionStrategy.PINNED_EXACT)

    @pytest.mark.asyncio
    async def test_lockfile_is_ignored_with_warning(self, resolver, b_catalog):
        result = await resolver.resolve(
            ["B@1.5"], ResolutionStrategy.PINNED_EXACT, lockfile={"B": "2.0"}
        )

        assert result.resolved == {"B": "1.5"}
        assert any("ignored under PinnedExact" in w.reason for w in result.warnings)


class TestReconcilerInputs:
    """Tests for the solver inputs built per strategy."""

    def test_locked_inputs(self):
        inputs = LockfileReconciler(ResolutionStrategy.LOCKED, {"B": "1.5"}).prepare([])

        assert inputs.pins == {"B": "1.5"}
        assert inputs.preferences == {}
        assert inputs.descending

    def test_lowest_inputs(self):
        inputs = LockfileReconciler(ResolutionStrategy.LOWEST_COMPATIBLE, {"B": "1.5"}).prepare([])

        assert inputs.pins == {}
        assert inputs.preferences == {"B": "1.5"}
        assert not inputs.descending

    def test_pinned_inputs(self):
        inputs = LockfileReconciler(ResolutionStrategy.PINNED_EXACT).prepare(
            [DependencySpec.parse("B@==2.0")]
        )

        assert inputs.allow_yanked == {"B": "2.0"}

    def test_updated_lockfile(self):
        reconciler = LockfileReconciler(ResolutionStrategy.HIGHEST_COMPATIBLE, {"B": "1.0"})

        assert reconciler.updated_lockfile({"B": "2.0"}) == {"B": "2.0"}
        assert reconciler.updated_lockfile(None) == {"B": "1.0"}


class TestLockfilePersistence:
    """Tests for reading and writing lockfiles."""

    def test_round_trip(self, temp_dir):
        path = temp_dir / "connectors.lock.json"
        dump_lockfile({"b": "2.0", "A": "1.0"}, path)

        assert load_lockfile(path) == {"A": "1.0", "b": "2.0"}
        assert list(json.loads(path.read_text())) == ["A", "b"]

    def test_rejects_nested_values(self, temp_dir):
        path = temp_dir / "bad.lock.json"
        path.write_text(json.dumps({"A": {"version": "1.0"}}))

        with pytest.raises(ValueError):
            load_lockfile(path)

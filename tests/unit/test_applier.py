"""Tests for the create/update/delete orchestrator."""

import asyncio
from unittest.mock import MagicMock, call

import pytest

from kube_converge.applier import KEEP_POLICY_ANNOTATION, Applier, _batches
from kube_converge.config import ClientOptions
from kube_converge.exceptions import (
    AggregateError,
    ApiError,
    ConflictError,
    NoObjectsVisitedError,
    OwnershipError,
)
from kube_converge.manifest import build
from kube_converge.models import ResourceOutcome
from tests.fixtures.resources import STARFISH_PATCH, manifest, new_pod, new_pod_list, new_widget

CONFLICT = "Operation cannot be fulfilled"


def _build(api, *objects):
    return build(api, manifest(*objects), namespace="default")


class TestCreate:
    """Tests for Applier.create."""

    @pytest.mark.asyncio
    async def test_create_retries_conflicts(self, api, applier):
        """Two conflicts then success: three POSTs, one resource created."""
        api.conflicts["/namespaces/default/pods"] = 2
        resources = _build(api, new_pod_list("starfish"))

        result = await applier.create(resources)

        assert len(result.created) == 1
        assert api.actions == ["/namespaces/default/pods:POST"] * 3

    @pytest.mark.asyncio
    async def test_create_failure_after_retry_budget(self, api, applier):
        """Persistent conflicts exhaust the attempt budget and surface the cause."""
        api.conflicts["/namespaces/default/pods"] = 100
        resources = _build(api, new_pod("dolphin"))

        with pytest.raises(AggregateError) as exc_info:
            await applier.create(resources)

        assert CONFLICT in str(exc_info.value)
        assert api.actions == ["/namespaces/default/pods:POST"] * 5
        error = exc_info.value.errors[0]
        assert error.identity == ("Pod", "default", "dolphin")
        assert error.action == "create"
        assert isinstance(error.cause, ConflictError)

    @pytest.mark.asyncio
    async def test_retry_budget_is_configurable(self, api, registry):
        api.conflicts["/namespaces/default/pods"] = 100
        applier = Applier(ClientOptions(create_retry_attempts=2), registry)

        with pytest.raises(AggregateError):
            await applier.create(_build(api, new_pod("dolphin")))
        assert len(api.actions) == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_others(self, api, applier):
        """A failing resource is reported while the rest are still created."""
        api.failures["/namespaces/default/widgets:POST"] = ApiError("admission denied")
        resources = _build(api, new_pod("a"), new_widget("w"), new_pod("b"))

        with pytest.raises(AggregateError) as exc_info:
            await applier.create(resources)

        result = exc_info.value.result
        assert [r.name for r in result.created] == ["a", "b"]
        assert len(result.errors) == 1
        assert "admission denied" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_created_descriptors_refreshed(self, api, applier):
        """Server state is written back into the created descriptors."""
        resources = _build(api, new_pod("a"))
        result = await applier.create(resources)
        assert result.created[0] is resources[0]
        assert result.resources == resources

    @pytest.mark.asyncio
    async def test_result_follows_input_order(self, api, applier):
        """Concurrent workers still record outcomes in input order."""
        names = [f"pod-{i}" for i in range(20)]
        resources = _build(api, *(new_pod(n) for n in names))

        result = await applier.create(resources)

        assert [r.name for r in result.created] == names

    @pytest.mark.asyncio
    async def test_empty_input(self, applier):
        with pytest.raises(NoObjectsVisitedError, match="no objects visited"):
            await applier.create([])


class TestUpdate:
    """Tests for Applier.update."""

    def _seed(self, api):
        """Live pods starfish, otter and squid; dolphin does not exist."""
        for name in ("starfish", "otter", "squid"):
            api.put(new_pod(name))
        current = _build(api, new_pod_list("starfish", "otter", "squid"))
        target_list = new_pod_list("starfish", "otter", "dolphin")
        target_list["items"][0]["spec"]["containers"][0]["ports"] = [
            {"name": "https", "containerPort": 443}
        ]
        target = _build(api, target_list)
        return current, target

    @pytest.mark.parametrize("three_way_merge", [True, False])
    @pytest.mark.asyncio
    async def test_update_sequence(self, api, registry, three_way_merge):
        """Patch changed, refresh unchanged, create new, delete removed."""
        applier = Applier(ClientOptions(three_way_merge=three_way_merge), registry)
        current, target = self._seed(api)
        api.conflicts["/namespaces/default/pods"] = 2

        result = await applier.update(current, target)

        assert len(result.created) == 1
        assert len(result.updated) == 2
        assert len(result.deleted) == 1
        assert api.actions == [
            "/namespaces/default/pods/starfish:GET",
            "/namespaces/default/pods/starfish:GET",
            "/namespaces/default/pods/starfish:PATCH",
            "/namespaces/default/pods/otter:GET",
            "/namespaces/default/pods/otter:GET",
            "/namespaces/default/pods/otter:GET",
            "/namespaces/default/pods/dolphin:GET",
            "/namespaces/default/pods:POST",
            "/namespaces/default/pods:POST",
            "/namespaces/default/pods:POST",
            "/namespaces/default/pods/squid:GET",
            "/namespaces/default/pods/squid:DELETE",
        ]
        assert api.patches[0][1] == STARFISH_PATCH

    @pytest.mark.asyncio
    async def test_update_with_nothing_declared(self, applier):
        with pytest.raises(NoObjectsVisitedError):
            await applier.update([], [])

    @pytest.mark.asyncio
    async def test_removal_already_gone(self, api, applier):
        """Removing a resource that is already gone is skipped, not failed."""
        api.put(new_pod("keep"))
        current = _build(api, new_pod("keep"), new_pod("gone"))
        target = _build(api, new_pod("keep"))

        result = await applier.update(current, target)

        assert result.deleted == ()
        assert result.errors == ()
        assert "/namespaces/default/pods/gone:DELETE" not in api.actions

    @pytest.mark.asyncio
    async def test_keep_policy_blocks_removal(self, api, applier):
        """Live objects annotated with the keep policy survive removal."""
        kept = new_pod("precious")
        kept["metadata"]["annotations"] = {KEEP_POLICY_ANNOTATION: "keep"}
        api.put(kept)
        api.put(new_pod("web"))
        current = _build(api, new_pod("web"), new_pod("precious"))
        target = _build(api, new_pod("web"))

        result = await applier.update(current, target)

        assert result.deleted == ()
        assert "/namespaces/default/pods/precious" in api.store

    @pytest.mark.asyncio
    async def test_undeclared_live_resource_is_not_adopted(self, api, applier):
        """A target that exists live but was never declared raises OwnershipError."""
        api.put(new_pod("squatter"))
        target = _build(api, new_pod("squatter"))

        with pytest.raises(AggregateError) as exc_info:
            await applier.update([], target)

        assert isinstance(exc_info.value.errors[0].cause, OwnershipError)
        assert not api.patches

    @pytest.mark.asyncio
    async def test_target_failure_aborts(self, api, applier):
        """The first failing target stops the pass before removals."""
        api.put(new_pod("a"))
        api.put(new_pod("old"))
        api.failures["/namespaces/default/pods/a:GET"] = ApiError("unavailable")
        current = _build(api, new_pod("a"), new_pod("old"))
        target = _build(api, new_pod("a"), new_pod("b"))

        with pytest.raises(AggregateError) as exc_info:
            await applier.update(current, target)

        assert exc_info.value.result.created == ()
        assert api.actions == ["/namespaces/default/pods/a:GET"]

    @pytest.mark.asyncio
    async def test_removal_failures_accumulate(self, api, applier):
        """Every failing removal is reported after all removals were tried."""
        api.put(new_pod("web"))
        api.put(new_pod("x"))
        api.put(new_pod("y"))
        api.failures["/namespaces/default/pods/x:DELETE"] = ApiError("forbidden")
        api.failures["/namespaces/default/pods/y:DELETE"] = ApiError("forbidden")
        current = _build(api, new_pod("web"), new_pod("x"), new_pod("y"))
        target = _build(api, new_pod("web"))

        with pytest.raises(AggregateError) as exc_info:
            await applier.update(current, target)

        assert [e.identity[2] for e in exc_info.value.errors] == ["x", "y"]
        assert [r.name for r in exc_info.value.result.updated] == ["web"]

    @pytest.mark.asyncio
    async def test_patch_conflict_retried(self, api, applier):
        api.put(new_pod("web"))
        current = _build(api, new_pod("web"))
        target = _build(api, new_pod("web", ports=[{"containerPort": 8080}]))
        api.conflicts["/namespaces/default/pods/web"] = 1

        result = await applier.update(current, target)

        assert api.actions.count("/namespaces/default/pods/web:PATCH") == 2
        assert len(result.updated) == 1

    @pytest.mark.asyncio
    async def test_force_recreate_on_immutable_change(self, api, applier):
        """Changed immutable fields trigger delete and create instead of a patch."""
        old = new_pod("web")
        old["spec"]["restartPolicy"] = "Always"
        api.put(old)
        new = new_pod("web")
        new["spec"]["restartPolicy"] = "Never"
        current = _build(api, old)
        target = _build(api, new)

        result = await applier.update(current, target, force_recreate=True)

        assert api.actions == [
            "/namespaces/default/pods/web:GET",
            "/namespaces/default/pods/web:DELETE",
            "/namespaces/default/pods:POST",
        ]
        assert len(result.updated) == 1
        assert api.store["/namespaces/default/pods/web"]["spec"]["restartPolicy"] == "Never"

    @pytest.mark.asyncio
    async def test_force_recreate_without_immutable_change_patches(self, api, applier):
        api.put(new_pod("web"))
        current = _build(api, new_pod("web"))
        target = _build(api, new_pod("web", ports=[{"containerPort": 8080}]))

        await applier.update(current, target, force_recreate=True)

        assert "/namespaces/default/pods/web:PATCH" in api.actions
        assert "/namespaces/default/pods/web:DELETE" not in api.actions


class TestDelete:
    """Tests for Applier.delete."""

    @pytest.mark.asyncio
    async def test_delete(self, api, applier):
        api.put(new_pod("a"))
        api.put(new_pod("b"))
        resources = _build(api, new_pod("a"), new_pod("b"))

        result, error = await applier.delete(resources)

        assert error is None
        assert [r.name for r in result.deleted] == ["a", "b"]
        assert api.store == {}
        assert {policy for _, policy in api.deletions} == {"Background"}

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, api, applier):
        """Resources that are already gone count as deleted."""
        resources = _build(api, new_pod("ghost"))

        result, error = await applier.delete(resources)

        assert error is None
        assert len(result.deleted) == 1

    @pytest.mark.asyncio
    async def test_propagation_policy(self, api, registry):
        api.put(new_pod("a"))
        applier = Applier(ClientOptions(propagation_policy="Foreground"), registry)

        await applier.delete(_build(api, new_pod("a")))

        assert api.deletions == [("/namespaces/default/pods/a", "Foreground")]

    @pytest.mark.asyncio
    async def test_delete_failure_returned(self, api, applier):
        """Failures come back as an aggregate alongside the partial result."""
        api.put(new_pod("a"))
        api.put(new_pod("b"))
        api.failures["/namespaces/default/pods/a:DELETE"] = ApiError("forbidden")

        result, error = await applier.delete(_build(api, new_pod("a"), new_pod("b")))

        assert isinstance(error, AggregateError)
        assert [r.name for r in result.deleted] == ["b"]
        assert error.result is result

    @pytest.mark.asyncio
    async def test_empty_input(self, applier):
        with pytest.raises(NoObjectsVisitedError):
            await applier.delete([])


class TestVisitor:
    """Tests for the per-resource visitor."""

    @pytest.mark.asyncio
    async def test_visitor_sees_every_outcome(self, api, registry):
        visitor = MagicMock(return_value=None)
        applier = Applier(ClientOptions(), registry, visitor)
        resources = _build(api, new_pod("a"), new_pod("b"))

        await applier.create(resources)

        assert visitor.call_args_list == [
            call(resources[0], ResourceOutcome.CREATED),
            call(resources[1], ResourceOutcome.CREATED),
        ]

    @pytest.mark.asyncio
    async def test_async_visitor(self, api, registry):
        seen = []

        async def visitor(resource, outcome):
            await asyncio.sleep(0)
            seen.append(outcome)

        applier = Applier(ClientOptions(), registry, visitor)
        api.put(new_pod("a"))

        await applier.update(_build(api, new_pod("a")), _build(api, new_pod("a")))

        assert seen == [ResourceOutcome.UNCHANGED]

    @pytest.mark.asyncio
    async def test_visitor_error_aborts(self, api, registry):
        """Whatever the visitor raises propagates unchanged."""

        class Stop(Exception):
            pass

        def visitor(resource, outcome):
            raise Stop(resource.name)

        applier = Applier(ClientOptions(), registry, visitor)
        resources = _build(api, new_pod("a"), new_widget("w"))

        with pytest.raises(Stop, match="a"):
            await applier.create(resources)
        assert "/namespaces/default/widgets:POST" not in api.actions

    @pytest.mark.asyncio
    async def test_visitor_abort_takes_effect_after_the_current_run(self, api, registry):
        """Resources sharing a run with the aborted one are already created."""
        visitor = MagicMock(side_effect=RuntimeError("stop"))
        applier = Applier(ClientOptions(), registry, visitor)
        resources = _build(api, new_pod("a"), new_pod("b"), new_pod("c"), new_widget("w"))

        with pytest.raises(RuntimeError, match="stop"):
            await applier.create(resources)

        assert api.actions == ["/namespaces/default/pods:POST"] * 3
        assert visitor.call_args_list == [call(resources[0], ResourceOutcome.CREATED)]


class TestBatches:
    """Tests for batching by kind."""

    def test_runs_of_same_kind(self, api):
        resources = _build(api, new_pod("a"), new_pod("b"), new_widget("w"), new_pod("c"))
        assert [[r.name for r in b] for b in _batches(resources)] == [["a", "b"], ["w"], ["c"]]

"""Kind-specific readiness predicates.

Each predicate maps the live state of a resource (or None when the resource
does not exist) to a ready verdict. Predicates are pure: they never call the
cluster. The Waiter picks one per resource by group and kind from a table
built when it is constructed.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .models import ResourceDescriptor

WaitPredicate = Callable[[ResourceDescriptor | None], bool]

ReadinessCheck = Callable[[dict[str, Any]], bool]


def _live(check: ReadinessCheck) -> WaitPredicate:
    """Lift a check over object content to a predicate where absence is never ready."""

    def predicate(live: ResourceDescriptor | None) -> bool:
        if live is None:
            return False
        return check(live.content)

    predicate.__name__ = check.__name__
    predicate.__doc__ = check.__doc__
    return predicate


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def _spec(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def _condition(obj: dict[str, Any], condition_type: str) -> dict[str, Any] | None:
    for condition in _status(obj).get("conditions") or []:
        if isinstance(condition, dict) and condition.get("type") == condition_type:
            return condition
    return None


def _condition_true(obj: dict[str, Any], condition_type: str) -> bool:
    condition = _condition(obj, condition_type)
    return condition is not None and condition.get("status") == "True"


def _generation_observed(obj: dict[str, Any]) -> bool:
    generation = (obj.get("metadata") or {}).get("generation")
    observed = _status(obj).get("observedGeneration")
    if generation is None or observed is None:
        return True
    return observed >= generation


def _desired_replicas(obj: dict[str, Any]) -> int:
    replicas = _spec(obj).get("replicas")
    return 1 if replicas is None else replicas


# -----------------------------------------------------------------------------
# Checks
# -----------------------------------------------------------------------------


def exists(live: ResourceDescriptor | None) -> bool:
    """Ready as soon as the resource exists."""
    return live is not None


def absent(live: ResourceDescriptor | None) -> bool:
    """Terminal for deletion waits: the resource is gone."""
    return live is None


@_live
def generic_ready(obj: dict[str, Any]) -> bool:
    """A Ready condition, when reported, must be True; otherwise existence suffices."""
    condition = _condition(obj, "Ready")
    if condition is None:
        return True
    return condition.get("status") == "True"


@_live
def pod_ready(obj: dict[str, Any]) -> bool:
    """Pods are ready once their Ready condition is True."""
    return _condition_true(obj, "Ready")


@_live
def job_ready(obj: dict[str, Any]) -> bool:
    """Jobs are ready once enough pods completed successfully."""
    completions = _spec(obj).get("completions")
    required = 1 if completions is None else completions
    return (_status(obj).get("succeeded") or 0) >= required


@_live
def deployment_ready(obj: dict[str, Any]) -> bool:
    """Deployments are ready once the rollout reached the desired replica count."""
    if _spec(obj).get("paused"):
        return True
    if not _generation_observed(obj):
        return False
    status = _status(obj)
    desired = _desired_replicas(obj)
    updated = status.get("updatedReplicas")
    if updated is not None and updated < desired:
        return False
    return (status.get("readyReplicas") or 0) >= desired


@_live
def replicaset_ready(obj: dict[str, Any]) -> bool:
    """ReplicaSets are ready once enough replicas report ready."""
    if not _generation_observed(obj):
        return False
    return (_status(obj).get("readyReplicas") or 0) >= _desired_replicas(obj)


@_live
def statefulset_ready(obj: dict[str, Any]) -> bool:
    """StatefulSets are ready once every replica is ready and on the current revision."""
    if not _generation_observed(obj):
        return False
    status = _status(obj)
    desired = _desired_replicas(obj)
    updated = status.get("updatedReplicas")
    if updated is not None and updated < desired:
        return False
    return (status.get("readyReplicas") or 0) >= desired


@_live
def daemonset_ready(obj: dict[str, Any]) -> bool:
    if not _generation_observed(obj):
        return False
    status = _status(obj)
    desired = status.get("desiredNumberScheduled")
    if desired is None:
        return False
    updated = status.get("updatedNumberScheduled")
    if updated is not None and updated < desired:
        return False
    return (status.get("numberReady") or 0) >= desired


@_live
def pvc_ready(obj: dict[str, Any]) -> bool:
    return _status(obj).get("phase") == "Bound"


@_live
def service_ready(obj: dict[str, Any]) -> bool:
    """ExternalName services are always ready; load balancers need an ingress."""
    spec = _spec(obj)
    service_type = spec.get("type", "ClusterIP")
    if service_type == "ExternalName":
        return True
    if service_type == "LoadBalancer":
        ingress = (_status(obj).get("loadBalancer") or {}).get("ingress")
        return bool(ingress)
    return bool(spec.get("clusterIP"))


@_live
def crd_ready(obj: dict[str, Any]) -> bool:
    return _condition_true(obj, "Established")


ReadinessKey = str | tuple[str, str]
"""A bare kind (matches every group) or a ``(group, kind)`` pair."""

READINESS_CHECKS: dict[tuple[str, str], WaitPredicate] = {
    ("", "Pod"): pod_ready,
    ("apps", "Deployment"): deployment_ready,
    ("extensions", "Deployment"): deployment_ready,
    ("apps", "ReplicaSet"): replicaset_ready,
    ("extensions", "ReplicaSet"): replicaset_ready,
    ("apps", "StatefulSet"): statefulset_ready,
    ("apps", "DaemonSet"): daemonset_ready,
    ("extensions", "DaemonSet"): daemonset_ready,
    ("", "PersistentVolumeClaim"): pvc_ready,
    ("", "Service"): service_ready,
    ("apiextensions.k8s.io", "CustomResourceDefinition"): crd_ready,
}
"""Readiness predicates keyed by (group, kind). Kinds not listed use ``generic_ready``."""


def readiness_table(
    check_jobs: bool = False,
    overrides: dict[ReadinessKey, WaitPredicate] | None = None,
) -> dict[ReadinessKey, WaitPredicate]:
    """
    Build a (group, kind) -> predicate table.

    Args:
        check_jobs: Require Jobs to complete; otherwise Jobs are ready on existence
        overrides: Extra or replacement predicates, keyed by ``(group, kind)``
            or by a bare kind that applies in every group
    """
    table: dict[ReadinessKey, WaitPredicate] = dict(READINESS_CHECKS)
    table[("batch", "Job")] = job_ready if check_jobs else exists
    if overrides:
        table.update(overrides)
    return table


def lookup_predicate(
    table: dict[ReadinessKey, WaitPredicate], group: str, kind: str
) -> WaitPredicate:
    """Pick the predicate for a kind: bare-kind overrides first, then (group, kind)."""
    predicate = table.get(kind)
    if predicate is None:
        predicate = table.get((group, kind), generic_ready)
    return predicate

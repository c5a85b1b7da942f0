"""Typed kind schemas: list merge keys, immutable fields and validation schemas.

A kind with a registered schema is patched with strategic merge semantics;
any other kind is treated as schemaless and patched with JSON merge.

Field paths are dotted and ignore list positions, so ``spec.containers.ports``
addresses the ``ports`` list of every element of ``spec.containers``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

# Sub-lists of a container, relative to the container itself
_CONTAINER_MERGE_KEYS = {
    "ports": "containerPort",
    "env": "name",
    "volumeMounts": "mountPath",
    "volumeDevices": "devicePath",
}

_POD_SPEC_MERGE_KEYS = {
    "containers": "name",
    "initContainers": "name",
    "ephemeralContainers": "name",
    "volumes": "name",
    "imagePullSecrets": "name",
    "hostAliases": "ip",
}

_OBJECT_MERGE_KEYS = {
    "metadata.ownerReferences": "uid",
}


def pod_spec_merge_keys(prefix: str) -> dict[str, str]:
    """Merge keys of a pod spec located at ``prefix`` (e.g. ``spec.template.spec``)."""
    keys = {f"{prefix}.{name}": key for name, key in _POD_SPEC_MERGE_KEYS.items()}
    for container_list in ("containers", "initContainers", "ephemeralContainers"):
        for name, key in _CONTAINER_MERGE_KEYS.items():
            keys[f"{prefix}.{container_list}.{name}"] = key
    return keys


_CONTAINER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["name", "image"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "image": {"type": "string", "minLength": 1},
        "ports": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["containerPort"],
                "properties": {"containerPort": {"type": "integer"}},
            },
        },
    },
}

_POD_SPEC_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["containers"],
    "properties": {
        "containers": {"type": "array", "minItems": 1, "items": _CONTAINER_SCHEMA},
        "initContainers": {"type": "array", "items": _CONTAINER_SCHEMA},
    },
}

_POD_TEMPLATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["spec"],
    "properties": {"spec": _POD_SPEC_SCHEMA},
}


def _workload_schema(*required: str) -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["spec"],
        "properties": {
            "spec": {
                "type": "object",
                "required": list(required),
                "properties": {
                    "replicas": {"type": "integer", "minimum": 0},
                    "selector": {"type": "object"},
                    "template": _POD_TEMPLATE_SCHEMA,
                },
            }
        },
    }


@dataclass(frozen=True)
class KindSchema:
    """
    Patch and validation metadata for one typed kind.

    Attributes:
        merge_keys: Dotted list path -> key used to merge list elements
        immutable: Dotted paths the server refuses to change after creation
        json_schema: JSON schema applied on top of the base manifest schema
    """

    merge_keys: dict[str, str] = field(default_factory=dict)
    immutable: tuple[str, ...] = ()
    json_schema: dict[str, Any] | None = None

    def merge_key(self, path: Iterable[str]) -> str | None:
        return self.merge_keys.get(".".join(path))


class SchemaRegistry:
    """
    Registry of typed kinds, keyed by (group, kind).

    Example:
        registry = SchemaRegistry.default()
        registry.register("example.com", "Widget", KindSchema(merge_keys={"spec.parts": "id"}))
    """

    def __init__(self) -> None:
        self._schemas: dict[tuple[str, str], KindSchema] = {}

    def register(self, group: str, kind: str, schema: KindSchema) -> None:
        self._schemas[(group, kind)] = schema

    def lookup(self, group: str, kind: str) -> KindSchema | None:
        return self._schemas.get((group, kind))

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    @classmethod
    def default(cls) -> SchemaRegistry:
        """A registry preloaded with the built-in workload and core kinds."""
        registry = cls()
        for group, kind, schema in _builtin_schemas():
            registry.register(group, kind, schema)
        return registry


def _builtin_schemas() -> list[tuple[str, str, KindSchema]]:
    template_spec = pod_spec_merge_keys("spec.template.spec")

    def workload(immutable: tuple[str, ...], *required: str) -> KindSchema:
        return KindSchema(
            merge_keys={**_OBJECT_MERGE_KEYS, **template_spec},
            immutable=immutable,
            json_schema=_workload_schema(*required),
        )

    deployment = workload(("spec.selector",), "selector", "template")
    daemonset = workload(("spec.selector",), "selector", "template")
    replicaset = workload(("spec.selector",), "selector", "template")

    schemas = [
        (
            "",
            "Pod",
            KindSchema(
                merge_keys={**_OBJECT_MERGE_KEYS, **pod_spec_merge_keys("spec")},
                immutable=(
                    "spec.initContainers",
                    "spec.volumes",
                    "spec.nodeName",
                    "spec.restartPolicy",
                    "spec.serviceAccountName",
                ),
                json_schema={
                    "type": "object",
                    "required": ["spec"],
                    "properties": {"spec": _POD_SPEC_SCHEMA},
                },
            ),
        ),
        (
            "",
            "Service",
            KindSchema(
                merge_keys={**_OBJECT_MERGE_KEYS, "spec.ports": "port"},
                immutable=("spec.clusterIP", "spec.clusterIPs"),
                json_schema={
                    "type": "object",
                    "properties": {
                        "spec": {
                            "type": "object",
                            "properties": {
                                "ports": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "required": ["port"],
                                        "properties": {"port": {"type": "integer"}},
                                    },
                                }
                            },
                        }
                    },
                },
            ),
        ),
        (
            "",
            "ConfigMap",
            KindSchema(
                merge_keys=dict(_OBJECT_MERGE_KEYS),
                json_schema={
                    "type": "object",
                    "properties": {
                        "data": {"type": "object", "additionalProperties": {"type": "string"}}
                    },
                },
            ),
        ),
        ("", "Secret", KindSchema(merge_keys=dict(_OBJECT_MERGE_KEYS), immutable=("type",))),
        (
            "",
            "ServiceAccount",
            KindSchema(
                merge_keys={
                    **_OBJECT_MERGE_KEYS,
                    "secrets": "name",
                    "imagePullSecrets": "name",
                }
            ),
        ),
        (
            "",
            "PersistentVolumeClaim",
            KindSchema(
                merge_keys=dict(_OBJECT_MERGE_KEYS),
                immutable=(
                    "spec.accessModes",
                    "spec.storageClassName",
                    "spec.volumeName",
                    "spec.volumeMode",
                ),
            ),
        ),
        ("", "Namespace", KindSchema(merge_keys=dict(_OBJECT_MERGE_KEYS))),
        ("apps", "Deployment", deployment),
        ("extensions", "Deployment", deployment),
        ("apps", "DaemonSet", daemonset),
        ("extensions", "DaemonSet", daemonset),
        ("apps", "ReplicaSet", replicaset),
        ("extensions", "ReplicaSet", replicaset),
        (
            "apps",
            "StatefulSet",
            workload(
                (
                    "spec.selector",
                    "spec.serviceName",
                    "spec.volumeClaimTemplates",
                    "spec.podManagementPolicy",
                ),
                "selector",
                "template",
            ),
        ),
        ("batch", "Job", workload(("spec.selector", "spec.template"), "template")),
        (
            "batch",
            "CronJob",
            KindSchema(
                merge_keys={
                    **_OBJECT_MERGE_KEYS,
                    **pod_spec_merge_keys("spec.jobTemplate.spec.template.spec"),
                },
                json_schema={
                    "type": "object",
                    "required": ["spec"],
                    "properties": {
                        "spec": {
                            "type": "object",
                            "required": ["schedule", "jobTemplate"],
                            "properties": {"schedule": {"type": "string"}},
                        }
                    },
                },
            ),
        ),
    ]
    return schemas


def get_path(obj: Any, path: str) -> Any:
    """Return the value at a dotted path, or None if any segment is missing."""
    current = obj
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def changed_immutable_fields(
    schema: KindSchema | None, current: dict[str, Any], target: dict[str, Any]
) -> list[str]:
    """Immutable paths whose value differs between two declarations."""
    if schema is None:
        return []
    return [path for path in schema.immutable if get_path(current, path) != get_path(target, path)]

"""Core models for kube-converge."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import AggregateError, Identity, NoObjectsVisitedError, format_identity

if TYPE_CHECKING:
    from .exceptions import ResourceOperationError
    from .resource_api import ResourceAPIProtocol


@dataclass(frozen=True)
class KindMapping:
    """
    Endpoint metadata for one resource kind, as returned by ``ResourceAPI.resolve``.

    Attributes:
        group: API group ("" for the core group)
        version: API version within the group
        kind: Kind name (e.g., "Deployment")
        resource: Plural endpoint name (e.g., "deployments")
        namespaced: Whether resources of this kind live in a namespace
    """

    group: str
    version: str
    kind: str
    resource: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        """The ``apiVersion`` string for this kind."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @classmethod
    def from_api_version(
        cls, api_version: str, kind: str, resource: str, namespaced: bool = True
    ) -> KindMapping:
        """Build a mapping from an ``apiVersion`` string such as ``apps/v1``."""
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind, resource=resource, namespaced=namespaced)


@dataclass
class ResourceDescriptor:
    """
    One declared or live resource.

    Identity is (kind, namespace, name). ``content`` is the full object as an
    open-ended attribute tree; it is replaced in place when the server
    returns newer state (see ``refresh``).
    """

    mapping: KindMapping
    namespace: str | None
    name: str
    content: dict[str, Any]
    api: ResourceAPIProtocol | None = field(default=None, repr=False, compare=False)

    @property
    def kind(self) -> str:
        return self.mapping.kind

    @property
    def api_version(self) -> str:
        return self.mapping.api_version

    @property
    def identity(self) -> Identity:
        return (self.mapping.kind, self.namespace, self.name)

    @property
    def ref(self) -> str:
        """Printable reference, e.g. ``Pod default/web``."""
        return format_identity(self.identity)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.content.get("metadata") or {}

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.get("annotations") or {}

    def refresh(self, live: ResourceDescriptor) -> None:
        """Write server-side state back into this descriptor."""
        self.content = live.content

    def __str__(self) -> str:
        return self.ref


class ResourceList(list[ResourceDescriptor]):
    """An ordered list of resource descriptors with identity-based set operations."""

    def get(self, descriptor: ResourceDescriptor) -> ResourceDescriptor | None:
        """Return the entry with the same identity as ``descriptor``, if any."""
        identity = descriptor.identity
        for item in self:
            if item.identity == identity:
                return item
        return None

    def contains(self, descriptor: ResourceDescriptor) -> bool:
        return self.get(descriptor) is not None

    def difference(self, other: Iterable[ResourceDescriptor]) -> ResourceList:
        """Entries of this list whose identity is not in ``other``."""
        exclude = {d.identity for d in other}
        return ResourceList(d for d in self if d.identity not in exclude)

    def intersect(self, other: Iterable[ResourceDescriptor]) -> ResourceList:
        """Entries of this list whose identity is also in ``other``."""
        include = {d.identity for d in other}
        return ResourceList(d for d in self if d.identity in include)

    def visit(self, fn: Callable[[ResourceDescriptor], None]) -> None:
        """
        Call ``fn`` for each entry, in order.

        Raises:
            NoObjectsVisitedError: If the list is empty
        """
        if not self:
            raise NoObjectsVisitedError()
        for item in self:
            fn(item)


class PatchType(Enum):
    """Patch semantics, valued by the content type the server expects."""

    MERGE = "application/merge-patch+json"
    STRATEGIC_MERGE = "application/strategic-merge-patch+json"
    EMPTY = "empty"


EMPTY_PATCH = b"{}"


@dataclass(frozen=True)
class PatchSpec:
    """A serialized patch document plus the semantics it must be applied with."""

    data: bytes
    patch_type: PatchType

    @property
    def is_empty(self) -> bool:
        return self.patch_type is PatchType.EMPTY or self.data == EMPTY_PATCH

    @classmethod
    def empty(cls) -> PatchSpec:
        return cls(data=EMPTY_PATCH, patch_type=PatchType.EMPTY)


class ResourceOutcome(Enum):
    """Terminal outcome of one resource within an orchestration pass."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of one orchestration pass.

    Lists preserve input order. The result is immutable once returned;
    it is assembled internally by a collector.
    """

    created: tuple[ResourceDescriptor, ...] = ()
    updated: tuple[ResourceDescriptor, ...] = ()
    deleted: tuple[ResourceDescriptor, ...] = ()
    errors: tuple[ResourceOperationError, ...] = ()

    @property
    def error(self) -> AggregateError | None:
        """All per-resource failures as one error, or None."""
        if not self.errors:
            return None
        return AggregateError(list(self.errors), self)

    @property
    def resources(self) -> ResourceList:
        """Every resource that was created or updated, in that order."""
        return ResourceList([*self.created, *self.updated])

    def as_dict(self) -> dict[str, Any]:
        """Serialize counts and identities for tooling built on top."""
        return {
            "created": [d.ref for d in self.created],
            "updated": [d.ref for d in self.updated],
            "deleted": [d.ref for d in self.deleted],
            "errors": [str(e) for e in self.errors],
            "counts": {
                "created": len(self.created),
                "updated": len(self.updated),
                "deleted": len(self.deleted),
                "errors": len(self.errors),
            },
        }

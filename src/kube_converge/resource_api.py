"""ResourceAPI protocol for cluster backends.

This module defines the ResourceAPIProtocol that every cluster backend must
implement. The engine never builds transport, authentication or endpoint
discovery itself; it only talks to an object satisfying this protocol.
The protocol uses Python's typing.Protocol with @runtime_checkable,
enabling duck typing and isinstance() checks at runtime.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import KindMapping, PatchType, ResourceDescriptor


@runtime_checkable
class ResourceAPIProtocol(Protocol):
    """
    Protocol for cluster backends.

    Implementations translate their transport failures into library errors:

    - **NotFoundError** when the addressed resource does not exist
    - **ConflictError** on optimistic-concurrency, already-exists or
      admission quota conflicts
    - **ResolutionError** from ``resolve`` for unknown kinds

    Example:
        class MyBackend:
            def resolve(self, api_version: str, kind: str) -> KindMapping:
                ...

            async def get(self, mapping, namespace, name) -> ResourceDescriptor:
                ...

        assert isinstance(MyBackend(), ResourceAPIProtocol)  # True at runtime
    """

    def resolve(self, api_version: str, kind: str) -> "KindMapping":
        """
        Map an (apiVersion, kind) pair to its endpoint metadata.

        Must not perform network I/O; discovery results are expected to be
        cached by the implementation.

        Raises:
            ResolutionError: If the kind is unknown or has no endpoint
        """
        ...

    async def get(
        self, mapping: "KindMapping", namespace: str | None, name: str
    ) -> "ResourceDescriptor":
        """
        Fetch the live state of one resource.

        Raises:
            NotFoundError: If the resource does not exist
        """
        ...

    async def create(self, descriptor: "ResourceDescriptor") -> "ResourceDescriptor":
        """
        Create a resource and return the server's view of it.

        Raises:
            ConflictError: If the resource already exists or admission conflicted
        """
        ...

    async def patch(
        self,
        mapping: "KindMapping",
        namespace: str | None,
        name: str,
        data: bytes,
        patch_type: "PatchType",
    ) -> "ResourceDescriptor":
        """
        Apply a serialized patch and return the server's view of the result.

        Raises:
            NotFoundError: If the resource does not exist
            ConflictError: On an optimistic-concurrency conflict
        """
        ...

    async def delete(
        self,
        mapping: "KindMapping",
        namespace: str | None,
        name: str,
        propagation_policy: str = "Background",
    ) -> "ResourceDescriptor | None":
        """
        Request deletion of a resource.

        Returns the last known state if the server reports one.

        Raises:
            NotFoundError: If the resource does not exist
        """
        ...

"""Convergence client: the entry point tying builder, applier and waiter together."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

from .applier import Applier, Visitor
from .config import ClientOptions
from .exceptions import AggregateError
from .manifest import ManifestSource, build
from .models import MutationResult, PatchSpec, ResourceDescriptor, ResourceList
from .patch import create_patch
from .readiness import ReadinessKey, WaitPredicate
from .resource_api import ResourceAPIProtocol
from .schema import SchemaRegistry
from .waiter import Waiter


class Client:
    """
    Converges a cluster toward declared manifests.

    Example:
        async with Client(api, ClientOptions(namespace="shop")) as client:
            current = client.build(previous_manifest)
            target = client.build(new_manifest)
            result = await client.update(current, target)
            await client.wait(result.resources, timeout=300)

    Args:
        api: Backend implementing ResourceAPIProtocol
        options: Client options (defaults to ``ClientOptions()``)
        registry: Typed kinds for validation and strategic merge
        visitor: Per-resource callback, see ``Applier``
        predicates: Extra readiness predicates keyed by (group, kind) or kind
    """

    def __init__(
        self,
        api: ResourceAPIProtocol,
        options: ClientOptions | None = None,
        *,
        registry: SchemaRegistry | None = None,
        visitor: Visitor | None = None,
        predicates: dict[ReadinessKey, WaitPredicate] | None = None,
    ) -> None:
        self.api = api
        self.options = options or ClientOptions()
        self.registry = registry if registry is not None else SchemaRegistry.default()
        self.applier = Applier(self.options, self.registry, visitor)
        self.waiter = Waiter(self.options.poll_interval, predicates)

    async def close(self) -> None:
        """Close the backend if it exposes ``close()``."""
        close = getattr(self.api, "close", None)
        if close is None:
            return
        ret = close()
        if inspect.isawaitable(ret):
            await ret

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Manifests
    # -------------------------------------------------------------------------

    def build(self, source: ManifestSource, validate: bool | None = None) -> ResourceList:
        """
        Parse a manifest stream into resource descriptors.

        Args:
            source: Manifest text, bytes or stream
            validate: Override ``options.validate`` for this call
        """
        return build(
            self.api,
            source,
            namespace=self.options.namespace,
            validate=self.options.validate if validate is None else validate,
            registry=self.registry,
        )

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    async def create(self, resources: list[ResourceDescriptor]) -> MutationResult:
        return await self.applier.create(resources)

    async def update(
        self,
        current: list[ResourceDescriptor],
        target: list[ResourceDescriptor],
        force_recreate: bool = False,
    ) -> MutationResult:
        return await self.applier.update(current, target, force_recreate)

    async def delete(
        self, resources: list[ResourceDescriptor]
    ) -> tuple[MutationResult, AggregateError | None]:
        return await self.applier.delete(resources)

    async def create_patch(
        self, target: ResourceDescriptor, current: dict[str, Any]
    ) -> PatchSpec:
        """Patch that would be sent for ``target``, given its last declared content."""
        return await create_patch(target, current, self.options.three_way_merge, self.registry)

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    async def wait(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        await self.waiter.wait(resources, timeout, cancel=cancel)

    async def wait_with_jobs(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        await self.waiter.wait_with_jobs(resources, timeout, cancel=cancel)

    async def wait_for_delete(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        await self.waiter.wait_for_delete(resources, timeout, cancel=cancel)

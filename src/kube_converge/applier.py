"""Applies create/update/delete operations to the cluster.

Batch operations (create, delete) split the input into runs of consecutive
resources of the same kind. Resources inside one run are processed
concurrently; runs are processed one after another. Each worker returns its
outcome instead of appending to shared state, and outcomes are recorded in
input order once the run completes, so result lists always follow input
order. Update walks its targets sequentially.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from itertools import groupby
from typing import TypeVar

from .config import ClientOptions
from .exceptions import (
    AggregateError,
    ConflictError,
    MutationError,
    NoObjectsVisitedError,
    NotFoundError,
    OwnershipError,
    ResourceOperationError,
)
from .models import MutationResult, ResourceDescriptor, ResourceList, ResourceOutcome
from .patch import create_patch
from .resource_api import ResourceAPIProtocol
from .schema import SchemaRegistry, changed_immutable_fields

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEEP_POLICY_ANNOTATION = "kube-converge.io/resource-policy"
"""Annotation that, set to ``keep`` on a live object, prevents its removal."""

KEEP_POLICY = "keep"

Visitor = Callable[[ResourceDescriptor, ResourceOutcome], "Awaitable[None] | None"]


@dataclass
class _ResultCollector:
    """Accumulates outcomes for one orchestration pass."""

    created: list[ResourceDescriptor] = field(default_factory=list)
    updated: list[ResourceDescriptor] = field(default_factory=list)
    deleted: list[ResourceDescriptor] = field(default_factory=list)
    errors: list[ResourceOperationError] = field(default_factory=list)

    def record(self, resource: ResourceDescriptor, outcome: ResourceOutcome) -> None:
        if outcome is ResourceOutcome.CREATED:
            self.created.append(resource)
        elif outcome in (ResourceOutcome.UPDATED, ResourceOutcome.UNCHANGED):
            self.updated.append(resource)
        elif outcome is ResourceOutcome.DELETED:
            self.deleted.append(resource)

    def fail(self, resource: ResourceDescriptor, action: str, cause: BaseException) -> None:
        if isinstance(cause, ResourceOperationError):
            self.errors.append(cause)
        else:
            self.errors.append(ResourceOperationError(resource.identity, action, cause))

    def freeze(self) -> MutationResult:
        return MutationResult(
            created=tuple(self.created),
            updated=tuple(self.updated),
            deleted=tuple(self.deleted),
            errors=tuple(self.errors),
        )


def _batches(resources: list[ResourceDescriptor]) -> Iterator[list[ResourceDescriptor]]:
    """Runs of consecutive resources sharing a kind."""
    for _, run in groupby(resources, key=lambda r: (r.mapping.group, r.mapping.kind)):
        yield list(run)


def _api(resource: ResourceDescriptor) -> ResourceAPIProtocol:
    if resource.api is None:
        raise MutationError(f"{resource.ref} has no client attached")
    return resource.api


class Applier:
    """
    Executes create, update and delete passes over resource lists.

    Args:
        options: Client options (retry budget, concurrency, merge mode, ...)
        registry: Typed kinds used for patch computation
        visitor: Called as ``visitor(resource, outcome)`` once per processed
            resource after its outcome is known. May be a coroutine
            function. Anything it raises aborts the pass and propagates
            unchanged. In create and delete the visitor runs once a
            same-kind run has finished, so an abort stops the runs that
            follow; the other resources of the current run were already
            processed. In update it stops before the next resource.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        registry: SchemaRegistry | None = None,
        visitor: Visitor | None = None,
    ) -> None:
        self.options = options or ClientOptions()
        self.registry = registry if registry is not None else SchemaRegistry.default()
        self.visitor = visitor

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def create(self, resources: list[ResourceDescriptor]) -> MutationResult:
        """
        Create every resource, retrying conflicts up to the attempt budget.

        A failing resource does not stop the others.

        Raises:
            NoObjectsVisitedError: If ``resources`` is empty
            AggregateError: If any resource failed (``.result`` has the rest)
        """
        collector = _ResultCollector()
        await self._perform(resources, "create", self._create_resource, collector)
        result = collector.freeze()
        if result.errors:
            raise AggregateError(list(result.errors), result)
        return result

    async def update(
        self,
        current: list[ResourceDescriptor],
        target: list[ResourceDescriptor],
        force_recreate: bool = False,
    ) -> MutationResult:
        """
        Converge from the ``current`` declaration to the ``target`` declaration.

        Targets that do not exist yet are created, existing ones are patched,
        and resources declared in ``current`` but not in ``target`` are
        deleted (unless their live object carries the keep policy).

        Args:
            current: Resources as previously declared
            target: Resources as declared now
            force_recreate: Delete and re-create resources whose immutable
                fields changed, instead of patching them

        Raises:
            NoObjectsVisitedError: If both lists are empty
            AggregateError: On the first failing target (remaining targets
                are not processed) or after removals when any removal failed
        """
        if not current and not target:
            raise NoObjectsVisitedError()

        current_list = ResourceList(current)
        collector = _ResultCollector()

        for resource in target:
            try:
                outcome = await self._update_resource(current_list, resource, force_recreate)
            except Exception as e:
                logger.warning("Failed to update %s: %s", resource.ref, e)
                collector.fail(resource, "update", e)
                await self._visit(resource, ResourceOutcome.FAILED)
                raise AggregateError(list(collector.errors), collector.freeze()) from e
            collector.record(resource, outcome)
            await self._visit(resource, outcome)

        for resource in current_list.difference(target):
            try:
                outcome = await self._remove_resource(resource)
            except Exception as e:
                logger.warning("Failed to delete %s: %s", resource.ref, e)
                collector.fail(resource, "delete", e)
                await self._visit(resource, ResourceOutcome.FAILED)
                continue
            collector.record(resource, outcome)
            await self._visit(resource, outcome)

        result = collector.freeze()
        if result.errors:
            raise AggregateError(list(result.errors), result)
        return result

    async def delete(
        self, resources: list[ResourceDescriptor]
    ) -> tuple[MutationResult, AggregateError | None]:
        """
        Delete every resource. Resources that are already gone count as deleted.

        Returns:
            Tuple of (result, error); error aggregates every failure, or is None

        Raises:
            NoObjectsVisitedError: If ``resources`` is empty
        """
        collector = _ResultCollector()
        await self._perform(resources, "delete", self._delete_resource, collector)
        result = collector.freeze()
        return result, result.error

    # -------------------------------------------------------------------------
    # Batch execution
    # -------------------------------------------------------------------------

    async def _perform(
        self,
        resources: list[ResourceDescriptor],
        action: str,
        fn: Callable[[ResourceDescriptor], Awaitable[ResourceOutcome]],
        collector: _ResultCollector,
    ) -> None:
        if not resources:
            raise NoObjectsVisitedError()

        semaphore = asyncio.Semaphore(self.options.max_concurrency)

        async def run(resource: ResourceDescriptor) -> ResourceOutcome | BaseException:
            async with semaphore:
                try:
                    return await fn(resource)
                except Exception as e:
                    logger.warning("Failed to %s %s: %s", action, resource.ref, e)
                    return e

        for batch in _batches(resources):
            outcomes = await asyncio.gather(*(run(r) for r in batch))
            for resource, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    collector.fail(resource, action, outcome)
                    await self._visit(resource, ResourceOutcome.FAILED)
                else:
                    collector.record(resource, outcome)
                    await self._visit(resource, outcome)

    async def _visit(self, resource: ResourceDescriptor, outcome: ResourceOutcome) -> None:
        if self.visitor is None:
            return
        ret = self.visitor(resource, outcome)
        if inspect.isawaitable(ret):
            await ret

    async def _retry_on_conflict(
        self, resource: ResourceDescriptor, call: Callable[[], Awaitable[T]]
    ) -> T:
        attempts = self.options.create_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except ConflictError as e:
                if attempt == attempts:
                    raise
                logger.debug(
                    "Conflict on %s (attempt %d/%d), retrying: %s",
                    resource.ref,
                    attempt,
                    attempts,
                    e,
                )
        raise AssertionError("unreachable")

    # -------------------------------------------------------------------------
    # Per-resource operations
    # -------------------------------------------------------------------------

    async def _create_resource(self, resource: ResourceDescriptor) -> ResourceOutcome:
        api = _api(resource)
        live = await self._retry_on_conflict(resource, lambda: api.create(resource))
        resource.refresh(live)
        logger.info("Created %s", resource.ref)
        return ResourceOutcome.CREATED

    async def _delete_resource(self, resource: ResourceDescriptor) -> ResourceOutcome:
        api = _api(resource)
        try:
            await api.delete(
                resource.mapping,
                resource.namespace,
                resource.name,
                propagation_policy=self.options.propagation_policy,
            )
        except NotFoundError:
            logger.info("Ignoring delete of %s: not found", resource.ref)
        else:
            logger.info("Deleted %s", resource.ref)
        return ResourceOutcome.DELETED

    async def _update_resource(
        self,
        current: ResourceList,
        resource: ResourceDescriptor,
        force_recreate: bool,
    ) -> ResourceOutcome:
        api = _api(resource)
        try:
            await api.get(resource.mapping, resource.namespace, resource.name)
        except NotFoundError:
            return await self._create_resource(resource)

        original = current.get(resource)
        if original is None:
            raise OwnershipError(resource.identity)

        if force_recreate:
            schema = self.registry.lookup(resource.mapping.group, resource.mapping.kind)
            changed = changed_immutable_fields(schema, original.content, resource.content)
            if changed:
                logger.info(
                    "Recreating %s, immutable fields changed: %s",
                    resource.ref,
                    ", ".join(changed),
                )
                await self._delete_resource(resource)
                await self._create_resource(resource)
                return ResourceOutcome.UPDATED

        patch = await create_patch(
            resource, original.content, self.options.three_way_merge, self.registry
        )
        if patch.is_empty:
            logger.debug("Looks like there are no changes for %s", resource.ref)
            live = await api.get(resource.mapping, resource.namespace, resource.name)
            resource.refresh(live)
            return ResourceOutcome.UNCHANGED

        live = await self._retry_on_conflict(
            resource,
            lambda: api.patch(
                resource.mapping,
                resource.namespace,
                resource.name,
                patch.data,
                patch.patch_type,
            ),
        )
        resource.refresh(live)
        logger.info("Patched %s", resource.ref)
        return ResourceOutcome.UPDATED

    async def _remove_resource(self, resource: ResourceDescriptor) -> ResourceOutcome:
        api = _api(resource)
        try:
            live = await api.get(resource.mapping, resource.namespace, resource.name)
        except NotFoundError:
            logger.info("Skipping delete of %s: already gone", resource.ref)
            return ResourceOutcome.SKIPPED

        if live.annotations.get(KEEP_POLICY_ANNOTATION) == KEEP_POLICY:
            logger.warning(
                "Skipping delete of %s due to annotation [%s=%s]",
                resource.ref,
                KEEP_POLICY_ANNOTATION,
                KEEP_POLICY,
            )
            return ResourceOutcome.SKIPPED

        return await self._delete_resource(resource)

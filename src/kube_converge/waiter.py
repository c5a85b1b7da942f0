"""Post-mutation waiting for readiness or deletion.

Every monitored resource gets its own polling task; all tasks share a single
wall-clock deadline. A resource starts Pending and ends Ready (or Absent for
deletion waits); the wait succeeds only when every resource got there, and
fails with WaitTimeoutError naming the stragglers otherwise.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .config import DEFAULT_POLL_INTERVAL
from .exceptions import (
    ApiError,
    ConfigurationError,
    Identity,
    NotFoundError,
    WaitCancelledError,
    WaitTimeoutError,
)
from .models import ResourceDescriptor
from .readiness import ReadinessKey, WaitPredicate, absent, lookup_predicate, readiness_table

logger = logging.getLogger(__name__)


class Waiter:
    """
    Polls live state until resources are ready or gone.

    Args:
        poll_interval: Seconds between two polls of the same resource
        predicates: Extra or replacement readiness predicates keyed by
            ``(group, kind)``, or by a bare kind for every group

    Example:
        waiter = Waiter(poll_interval=1.0)
        await waiter.wait(result.resources, timeout=300)
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        predicates: dict[ReadinessKey, WaitPredicate] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval", poll_interval, "must be positive")
        self.poll_interval = poll_interval
        self._readiness = readiness_table(check_jobs=False, overrides=predicates)
        self._readiness_with_jobs = readiness_table(check_jobs=True, overrides=predicates)

    def readiness_predicate(
        self, resource: ResourceDescriptor, check_jobs: bool = False
    ) -> WaitPredicate:
        """The predicate used for ``resource`` by ``wait`` (or ``wait_with_jobs``)."""
        table = self._readiness_with_jobs if check_jobs else self._readiness
        return lookup_predicate(table, resource.mapping.group, resource.kind)

    async def wait(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """
        Wait until every resource is ready. Jobs count as ready once they exist.

        Raises:
            WaitTimeoutError: If the deadline elapsed first
            WaitCancelledError: If ``cancel`` was set first
        """
        await self._wait_all(
            resources, timeout, lambda r: self.readiness_predicate(r), cancel, "ready"
        )

    async def wait_with_jobs(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Like ``wait``, but Jobs must also reach their required completions."""
        await self._wait_all(
            resources,
            timeout,
            lambda r: self.readiness_predicate(r, check_jobs=True),
            cancel,
            "ready",
        )

    async def wait_for_delete(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Wait until every resource is reported not-found."""
        await self._wait_all(resources, timeout, lambda r: absent, cancel, "deleted")

    async def _wait_all(
        self,
        resources: list[ResourceDescriptor],
        timeout: float,
        select: Callable[[ResourceDescriptor], WaitPredicate],
        cancel: asyncio.Event | None,
        goal: str,
    ) -> None:
        if not resources:
            return

        logger.info(
            "Waiting for %d resource(s) to be %s with timeout of %gs",
            len(resources),
            goal,
            timeout,
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        stop = asyncio.Event()

        tasks: dict[asyncio.Task[None], ResourceDescriptor] = {
            asyncio.create_task(self._poll(r, select(r), stop, goal)): r for r in resources
        }
        cancel_task = asyncio.create_task(cancel.wait()) if cancel is not None else None
        pending = set(tasks)

        def still_pending() -> list[Identity]:
            return [r.identity for t, r in tasks.items() if t in pending]

        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                watched = (pending | {cancel_task}) if cancel_task is not None else pending
                done, _ = await asyncio.wait(
                    watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_task is not None and cancel_task in done:
                    logger.info("Wait cancelled")
                    raise WaitCancelledError(still_pending())
                for task in done:
                    pending.discard(task)
                    task.result()
        finally:
            # no new polls after this point; in-flight ones are abandoned
            stop.set()
            leftovers = [*pending]
            if cancel_task is not None:
                leftovers.append(cancel_task)
            for task in leftovers:
                task.cancel()
            await asyncio.gather(*leftovers, return_exceptions=True)

        if pending:
            raise WaitTimeoutError(still_pending(), timeout)
        logger.info("All %d resource(s) %s", len(resources), goal)

    async def _poll(
        self,
        resource: ResourceDescriptor,
        predicate: WaitPredicate,
        stop: asyncio.Event,
        goal: str,
    ) -> None:
        if resource.api is None:
            raise ValueError(f"{resource.ref} has no client attached")
        api = resource.api

        while not stop.is_set():
            ready = False
            try:
                live = await api.get(resource.mapping, resource.namespace, resource.name)
            except NotFoundError:
                ready = predicate(None)
            except ApiError as e:
                logger.debug("Error polling %s, will retry: %s", resource.ref, e)
            else:
                ready = predicate(live)

            if ready:
                logger.debug("%s is %s", resource.ref, goal)
                return
            logger.debug("%s is not %s yet", resource.ref, goal)

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

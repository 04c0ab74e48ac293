# courier-dispatch/courier_dispatch/committer.py
"""
Assignment Committer for the Medical Courier Dispatch Engine.

Commits one planned pairing against a store that has no transactions:

1. Re-read the request; skip unless still pending and unassigned
2. Re-read the driver; skip unless still active and free
3. Write #1: request status -> in_progress
4. Write #2: link driver and request (plus a 'Driver Assigned' tracking entry)

If write #2 fails after write #1 succeeded, the request is re-read. When it
is left in_progress with no driver, that is reported as a partial commit and
never rolled back; `find_stuck_deliveries` lists such requests for an
operator to reset. When the driver link did land (a trailing step of the
write failed), the commit counts as successful and a warning is logged.

When the store advertises `supports_conditional_assign`, steps 3 and 4
collapse into one conditional call that re-checks both rows.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Protocol

from . import utils
from .datastore import DataStore
from .errors import PartialCommitError, StaleStateError
from .models import (
    DRIVER_ACTIVE,
    AssignmentEvent,
    CommitOutcome,
    DeliveryRequest,
    DeliveryStatus,
    PlanEntry,
)

logger = logging.getLogger(__name__)

AssignmentListener = Callable[[AssignmentEvent], None]


class DispatchCounter(Protocol):
    """Anything that counts successful dispatches (the scheduler handle)."""

    def record_dispatch(self) -> None:
        ...


class AssignmentCommitter:
    """
    Safely commits PlanEntry pairings one at a time.

    Args:
        store: The data store
        counter: Scheduler handle whose cumulative count is bumped per success
        listeners: Callables notified with an AssignmentEvent per commit
    """

    def __init__(
        self,
        store: DataStore,
        counter: Optional[DispatchCounter] = None,
        listeners: Optional[Iterable[AssignmentListener]] = None,
    ):
        self.store = store
        self.counter = counter
        self.listeners: List[AssignmentListener] = list(listeners or [])

    def add_listener(self, listener: AssignmentListener) -> None:
        self.listeners.append(listener)

    async def commit(self, entry: PlanEntry) -> AssignmentEvent:
        """
        Commit one pairing.

        Never raises for store failures; the outcome is in the returned event.

        Returns:
            AssignmentEvent with outcome committed, skipped, failed or partial
        """
        try:
            await self._verify(entry)
        except StaleStateError as e:
            logger.debug(f"Skipping {entry}: {e}")
            return self._emit(entry, CommitOutcome.SKIPPED, str(e), stale_entity=e.entity)
        except Exception as e:
            logger.warning(f"Pre-check read failed for {entry}: {e}")
            return self._emit(entry, CommitOutcome.FAILED, f"Pre-check failed: {e}")

        if self.store.supports_conditional_assign:
            return await self._commit_conditional(entry)
        return await self._commit_two_writes(entry)

    async def _verify(self, entry: PlanEntry) -> None:
        """
        Raise StaleStateError unless both records are still assignable.
        """
        request = await self.store.get_delivery(entry.request_id)
        if request is None:
            raise StaleStateError("request", entry.request_id, "not found")
        if request.status != DeliveryStatus.PENDING:
            raise StaleStateError("request", entry.request_id, f"status is {request.status.value}")
        if request.assigned_driver:
            raise StaleStateError("request", entry.request_id, f"already assigned to {request.assigned_driver}")

        driver = await self.store.get_driver(entry.driver_id)
        if driver is None:
            raise StaleStateError("driver", entry.driver_id, "not found")
        if driver.status != DRIVER_ACTIVE:
            raise StaleStateError("driver", entry.driver_id, f"status is {driver.status}")
        if driver.current_delivery:
            raise StaleStateError("driver", entry.driver_id, f"already carrying {driver.current_delivery}")

    async def _commit_two_writes(self, entry: PlanEntry) -> AssignmentEvent:
        try:
            await self.store.update_delivery_status(entry.request_id, DeliveryStatus.IN_PROGRESS)
        except Exception as e:
            logger.warning(f"Status update failed for {entry.request_id}: {e}")
            return self._emit(entry, CommitOutcome.FAILED, f"Status update failed: {e}")

        try:
            await self.store.assign_driver(entry.driver_id, entry.request_id)
        except Exception as e:
            return await self._classify_link_failure(entry, e)

        return self._succeed(entry)

    async def _classify_link_failure(self, entry: PlanEntry, cause: Exception) -> AssignmentEvent:
        """
        Decide what a failed write #2 actually left behind.

        The link write may itself be several store calls, so the request is
        re-read: linked to our driver means committed (a later step such as
        the tracking entry failed); in_progress with no driver, or unreadable,
        means a partial commit.
        """
        try:
            request = await self.store.get_delivery(entry.request_id)
        except Exception as e:
            logger.warning(f"Re-read of {entry.request_id} after link failure failed: {e}")
            request = None

        if request is not None and request.assigned_driver == entry.driver_id:
            logger.warning(f"Driver {entry.driver_id} linked to {entry.request_id} but the link write reported: {cause}")
            return self._succeed(entry)

        if request is None or find_stuck_deliveries([request]):
            error = PartialCommitError(entry.request_id, entry.driver_id, cause=cause)
            logger.error(f"{error}. Reset the delivery to pending to retry.")
            return self._emit(entry, CommitOutcome.PARTIAL, str(error))

        logger.warning(f"Link write for {entry} failed and {entry.request_id} is now {request.status.value}: {cause}")
        return self._emit(entry, CommitOutcome.FAILED, f"Driver link failed: {cause}")

    async def _commit_conditional(self, entry: PlanEntry) -> AssignmentEvent:
        try:
            written = await self.store.conditional_assign(entry.driver_id, entry.request_id)
        except Exception as e:
            logger.warning(f"Conditional assignment failed for {entry}: {e}")
            return self._emit(entry, CommitOutcome.FAILED, f"Conditional assignment failed: {e}")

        if not written:
            logger.debug(f"Conditional assignment rejected for {entry}")
            return self._emit(
                entry, CommitOutcome.SKIPPED,
                "Records changed before the conditional write",
                stale_entity="request",
            )
        return self._succeed(entry)

    def _succeed(self, entry: PlanEntry) -> AssignmentEvent:
        if self.counter is not None:
            self.counter.record_dispatch()
        logger.info(f"Assigned driver {entry.driver_id} to delivery {entry.request_id}")
        return self._emit(entry, CommitOutcome.COMMITTED)

    def _emit(
        self,
        entry: PlanEntry,
        outcome: CommitOutcome,
        detail: str = "",
        stale_entity: Optional[str] = None,
    ) -> AssignmentEvent:
        event = AssignmentEvent(
            request_id=entry.request_id,
            driver_id=entry.driver_id,
            outcome=outcome,
            timestamp=utils.utc_now(),
            detail=detail,
            stale_entity=stale_entity,
        )
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Assignment listener failed for {entry}")
        return event


def find_stuck_deliveries(deliveries: Iterable[DeliveryRequest]) -> List[DeliveryRequest]:
    """In-progress deliveries with no driver, i.e. leftovers of partial commits."""
    return [
        d for d in deliveries
        if d.status == DeliveryStatus.IN_PROGRESS and not d.assigned_driver
    ]

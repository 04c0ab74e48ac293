# courier-dispatch/courier_dispatch/coordinator.py
"""
Batch Dispatch Coordinator for the Medical Courier Dispatch Engine.

One dispatch cycle:

1. **Snapshot**: read pending requests and eligible drivers. Each list falls
   back to its last good read when the store call fails.
2. **Plan**: hand the snapshot to the MatchingEngine.
3. **Commit**: walk the plan sequentially, awaiting each commit, with a
   short pause between commits. The driver pool is re-derived as we go:
   - a stale driver is dropped and its request is re-matched from the
     spare pool (eligible drivers the plan did not reserve)
   - a stale request releases its driver back to the spare pool
4. **Report**: aggregate outcomes into one CycleSummary and notify once.

Per-entry failures never escape the cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Tuple, TypeVar, Union

from . import config, utils
from .committer import AssignmentCommitter
from .datastore import DataStore
from .errors import DataUnavailableError
from .matching import MatchingEngine
from .models import (
    CommitOutcome,
    CycleOutcome,
    CycleSummary,
    CycleTrigger,
    DeliveryRequest,
    Driver,
    PlanEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
CycleNotifier = Callable[[CycleSummary], None]


class BatchDispatchCoordinator:
    """
    Runs dispatch cycles against a data store.

    Args:
        store: The data store
        engine: Matching engine (default settings when omitted)
        committer: Assignment committer (built on `store` when omitted)
        notifier: Called once per cycle with the CycleSummary
        pacing_seconds: Pause between two commits of the same cycle
    """

    def __init__(
        self,
        store: DataStore,
        engine: Optional[MatchingEngine] = None,
        committer: Optional[AssignmentCommitter] = None,
        notifier: Optional[CycleNotifier] = None,
        pacing_seconds: float = config.COMMIT_PACING_SECONDS,
    ):
        self.store = store
        self.engine = engine or MatchingEngine()
        self.committer = committer or AssignmentCommitter(store)
        self.notifier = notifier
        self.pacing_seconds = pacing_seconds

        self._cached_requests: Optional[List[DeliveryRequest]] = None
        self._cached_drivers: Optional[List[Driver]] = None

    async def run_cycle(self, trigger: Union[CycleTrigger, str] = CycleTrigger.MANUAL) -> CycleSummary:
        """
        Run one snapshot-plan-commit cycle.

        Args:
            trigger: 'scheduled' or 'manual'

        Returns:
            CycleSummary describing what was attempted and achieved
        """
        summary = CycleSummary(trigger=CycleTrigger(trigger), started_at=utils.utc_now())

        try:
            requests, drivers = await self._snapshot()
        except DataUnavailableError as e:
            logger.error(f"Dispatch cycle missed: {e}")
            summary.outcome = CycleOutcome.MISSED
            summary.error = str(e)
            return self._finish(summary)

        plan = self.engine.plan(requests, drivers)
        if not plan:
            summary.outcome = CycleOutcome.NO_WORK
            return self._finish(summary)

        await self._commit_plan(plan, requests, drivers, summary)
        return self._finish(summary)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def _snapshot(self) -> Tuple[List[DeliveryRequest], List[Driver]]:
        """
        Read both lists, falling back to cached data per list.

        Raises:
            DataUnavailableError: If neither list could be read or recovered
        """
        requests, requests_ok = await self._read("pending deliveries", self.store.list_pending_deliveries)
        if requests_ok:
            self._cached_requests = requests
        else:
            requests = self._cached_requests

        drivers, drivers_ok = await self._read("eligible drivers", self.store.list_eligible_drivers)
        if drivers_ok:
            self._cached_drivers = drivers
        else:
            drivers = self._cached_drivers

        if requests is None and drivers is None:
            raise DataUnavailableError("Couldn't fetch pending deliveries or drivers and no cached data exists")

        if not requests_ok and requests is not None:
            logger.info(f"Using cached pending deliveries ({len(requests)})")
        if not drivers_ok and drivers is not None:
            logger.info(f"Using cached drivers ({len(drivers)})")

        return requests or [], drivers or []

    @staticmethod
    async def _read(label: str, reader: Callable[[], Awaitable[T]]) -> Tuple[Optional[T], bool]:
        try:
            return await reader(), True
        except Exception as e:
            logger.warning(f"Failed to read {label}: {e}")
            return None, False

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def _commit_plan(
        self,
        plan: List[PlanEntry],
        requests: List[DeliveryRequest],
        drivers: List[Driver],
        summary: CycleSummary,
    ) -> None:
        request_by_id: Dict[str, DeliveryRequest] = {r.id: r for r in requests}
        driver_by_id: Dict[str, Driver] = {d.id: d for d in drivers if d.is_eligible}
        reserved = {entry.driver_id for entry in plan}
        spare: List[Driver] = [d for d in driver_by_id.values() if d.id not in reserved]

        queue: Deque[PlanEntry] = deque(plan)
        while queue:
            entry = queue.popleft()
            if summary.attempted > 0 and self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)
            summary.attempted += 1

            try:
                event = await self.committer.commit(entry)
            except Exception:
                logger.exception(f"Unexpected error committing {entry}")
                summary.failed += 1
                continue

            if event.outcome == CommitOutcome.COMMITTED:
                summary.committed += 1
                summary.committed_pairs.append(entry)
            elif event.outcome == CommitOutcome.PARTIAL:
                summary.partial_commits.append(entry.request_id)
            elif event.outcome == CommitOutcome.FAILED:
                summary.failed += 1
            else:
                summary.skipped += 1
                if event.stale_entity == "driver":
                    replacement = self._rematch(request_by_id.get(entry.request_id), spare, summary.committed)
                    if replacement is not None:
                        queue.appendleft(replacement)
                elif entry.driver_id in driver_by_id:
                    spare.append(driver_by_id[entry.driver_id])

    def _rematch(
        self,
        request: Optional[DeliveryRequest],
        spare: List[Driver],
        assignments_made: int,
    ) -> Optional[PlanEntry]:
        """Pick a spare driver for a request whose planned driver went stale."""
        if request is None or not spare:
            return None
        driver = self.engine.select_driver(request, spare, assignments_made)
        if driver is None:
            return None
        spare.remove(driver)
        logger.debug(f"Re-matched delivery {request.id} to spare driver {driver.id}")
        return PlanEntry(request_id=request.id, driver_id=driver.id)

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def _finish(self, summary: CycleSummary) -> CycleSummary:
        summary.finished_at = utils.utc_now()
        logger.info(f"{summary.notification} [{summary.trigger.value}]")
        if self.notifier is not None:
            try:
                self.notifier(summary)
            except Exception:
                logger.exception("Cycle notifier failed")
        return summary

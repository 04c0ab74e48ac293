# courier-dispatch/courier_dispatch/console.py
"""
Dispatch console facade.

Wires the store, matching engine, committer, coordinator, scheduler and
reroute advisor together and exposes the operations a host (CLI or
dashboard) needs. Recent cycle summaries, assignment events and
notifications are kept in bounded in-memory logs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Any, Callable, Deque, List, Optional

from . import config
from .committer import AssignmentCommitter, AssignmentListener, find_stuck_deliveries
from .coordinator import BatchDispatchCoordinator, CycleNotifier
from .datastore import DataStore
from .incidents import IncidentFeed, SimulatedIncidentFeed
from .matching import MatchingEngine
from .models import (
    AssignmentEvent,
    CycleSummary,
    CycleTrigger,
    DeliveryRequest,
    DeliveryStatus,
    DispatchScheduleState,
    DispatchSettings,
    RerouteRecord,
    TrafficIncident,
)
from .reroute import RerouteAdvisor
from .scheduler import CycleFunction, DispatchScheduler
from .scoring import CostFunction

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 200


class DispatchConsole:
    """
    Host-facing entry point to the dispatch engine.

    Args:
        store: The data store
        settings: Matching settings
        cost_fn: Optional cost function for the efficiency method
        scheduler: Scheduler handle (a new one when omitted)
        incident_feed: Traffic incident source (simulated when omitted)
        advisor: Reroute advisor (defaults when omitted)
        pacing_seconds: Pause between commits within a cycle
    """

    def __init__(
        self,
        store: DataStore,
        settings: Optional[DispatchSettings] = None,
        cost_fn: Optional[CostFunction] = None,
        scheduler: Optional[DispatchScheduler] = None,
        incident_feed: Optional[IncidentFeed] = None,
        advisor: Optional[RerouteAdvisor] = None,
        pacing_seconds: float = config.COMMIT_PACING_SECONDS,
    ):
        self.store = store
        self.scheduler = scheduler or DispatchScheduler()
        self.engine = MatchingEngine(settings, cost_fn)
        self.committer = AssignmentCommitter(store, counter=self.scheduler)
        self.coordinator = BatchDispatchCoordinator(
            store,
            engine=self.engine,
            committer=self.committer,
            notifier=self._on_cycle_finished,
            pacing_seconds=pacing_seconds,
        )
        self.incident_feed = incident_feed or SimulatedIncidentFeed()
        self.advisor = advisor or RerouteAdvisor()

        self.cycle_summaries: Deque[CycleSummary] = deque(maxlen=MAX_LOG_ENTRIES)
        self.assignment_events: Deque[AssignmentEvent] = deque(maxlen=MAX_LOG_ENTRIES)
        self.notifications: Deque[str] = deque(maxlen=MAX_LOG_ENTRIES)
        self._cycle_listeners: List[CycleNotifier] = []

        self.committer.add_listener(self.assignment_events.append)

    # ------------------------------------------------------------------
    # Settings and listeners
    # ------------------------------------------------------------------

    @property
    def settings(self) -> DispatchSettings:
        return self.engine.settings

    def update_settings(self, **changes: Any) -> DispatchSettings:
        """Replace dispatch settings, e.g. update_settings(dispatch_method='balanced')."""
        self.engine.settings = replace(self.engine.settings, **changes)
        logger.info(f"Dispatch settings updated: {self.engine.settings}")
        return self.engine.settings

    def add_cycle_listener(self, listener: CycleNotifier) -> None:
        self._cycle_listeners.append(listener)

    def add_assignment_listener(self, listener: AssignmentListener) -> None:
        self.committer.add_listener(listener)

    def add_countdown_listener(self, listener: Callable[[DispatchScheduleState], None]) -> None:
        self.scheduler.add_countdown_listener(listener)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def run_cycle(self, trigger: CycleTrigger = CycleTrigger.MANUAL) -> CycleSummary:
        return await self.coordinator.run_cycle(trigger)

    def enable_auto_dispatch(
        self,
        cycle_fn: Optional[CycleFunction] = None,
        run_immediately: bool = True,
    ) -> DispatchScheduleState:
        """Arm the scheduler; by default one cycle also runs right away."""
        self.scheduler.enable(cycle_fn or self.run_cycle, run_immediately=run_immediately)
        return self.scheduler.state()

    def disable_auto_dispatch(self) -> DispatchScheduleState:
        self.scheduler.disable()
        return self.scheduler.state()

    def trigger_manual_run(self, cycle_fn: Optional[CycleFunction] = None) -> asyncio.Task:
        """Run one cycle now; the returned task resolves to its summary."""
        return self.scheduler.manual_trigger(cycle_fn or self.run_cycle)

    def set_dispatch_interval(self, seconds: float) -> DispatchScheduleState:
        self.scheduler.set_dispatch_interval(seconds)
        return self.scheduler.state()

    def schedule_state(self) -> DispatchScheduleState:
        return self.scheduler.state()

    async def stuck_deliveries(self) -> List[DeliveryRequest]:
        """Deliveries left in_progress without a driver by a partial commit."""
        return find_stuck_deliveries(await self.store.list_active_deliveries())

    async def reset_delivery(self, delivery_id: str) -> bool:
        """
        Put a stuck delivery back to pending so a later cycle can retry it.

        Only deliveries listed by `stuck_deliveries` are reset; a delivery
        that is linked to a driver is left alone.

        Returns:
            True when the delivery was reset
        """
        stuck_ids = {d.id for d in await self.stuck_deliveries()}
        if delivery_id not in stuck_ids:
            logger.warning(f"Not resetting {delivery_id}: it is not a stuck delivery")
            return False
        await self.store.update_delivery_status(delivery_id, DeliveryStatus.PENDING)
        logger.info(f"Delivery {delivery_id} reset to pending")
        return True

    # ------------------------------------------------------------------
    # Rerouting
    # ------------------------------------------------------------------

    def traffic_incidents(self) -> List[TrafficIncident]:
        return self.incident_feed.list_traffic_incidents()

    def refresh_incidents(self) -> List[TrafficIncident]:
        """Refresh the incident feed when it supports it."""
        refresh = getattr(self.incident_feed, "refresh", None)
        if refresh is None:
            return self.traffic_incidents()
        return refresh()

    async def active_deliveries(self) -> List[DeliveryRequest]:
        return await self.store.list_active_deliveries()

    async def affected_deliveries(self) -> List[DeliveryRequest]:
        return self.advisor.affected_deliveries(await self.active_deliveries())

    async def reroute(self, delivery_id: str) -> Optional[RerouteRecord]:
        """
        Reroute one active delivery.

        Returns:
            The reroute record, or None when the delivery is not in progress
        """
        for delivery in await self.active_deliveries():
            if delivery.id == delivery_id:
                return self.advisor.reroute(delivery)
        logger.warning(f"Cannot reroute {delivery_id}: not an active delivery")
        return None

    async def batch_reroute(self) -> List[RerouteRecord]:
        return await self.advisor.batch_reroute(await self.active_deliveries(), self.traffic_incidents())

    async def auto_reroute(self) -> List[RerouteRecord]:
        return await self.advisor.auto_reroute(await self.active_deliveries(), self.traffic_incidents())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()

    def _on_cycle_finished(self, summary: CycleSummary) -> None:
        self.cycle_summaries.append(summary)
        self.notifications.append(summary.notification)
        for listener in self._cycle_listeners:
            try:
                listener(summary)
            except Exception:
                logger.exception("Cycle listener failed")

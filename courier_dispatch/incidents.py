# courier-dispatch/courier_dispatch/incidents.py
"""
Traffic incident feed.

No real traffic data is ingested. `SimulatedIncidentFeed` starts from three
fixed incidents and mutates its list on each `refresh()`: a coin flip
either adds an incident (while fewer than MAX_SIMULATED_INCIDENTS exist)
or removes a random one (while more than one exists).
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional

from . import config
from .models import Severity, TrafficIncident

logger = logging.getLogger(__name__)

INCIDENT_TYPES = ["Accident", "Construction", "Traffic Jam", "Road Closure", "Event", "Lane Closure"]
IMPACT_TYPES = ["Heavy delays", "Moderate delays", "Minor delays", "Road closures"]
NEW_INCIDENT_LOCATION = "Lincoln Blvd & Washington Ave"


def initial_incidents() -> List[TrafficIncident]:
    """The incidents the console shows before the first refresh."""
    return [
        TrafficIncident(
            id="issue1",
            location="Main Street & 5th Avenue",
            type="Accident",
            impact="Heavy delays",
            severity=Severity.HIGH,
            affected_deliveries=2,
            reported_at="10 min ago",
        ),
        TrafficIncident(
            id="issue2",
            location="Highway 101, Mile 24",
            type="Construction",
            impact="Moderate delays",
            severity=Severity.MEDIUM,
            affected_deliveries=1,
            reported_at="25 min ago",
        ),
        TrafficIncident(
            id="issue3",
            location="Downtown Central Area",
            type="Event",
            impact="Road closures",
            severity=Severity.HIGH,
            affected_deliveries=3,
            reported_at="45 min ago",
        ),
    ]


class IncidentFeed(ABC):
    """Source of current traffic incidents."""

    @abstractmethod
    def list_traffic_incidents(self) -> List[TrafficIncident]:
        """Current incidents, newest last."""


class SimulatedIncidentFeed(IncidentFeed):
    """
    In-memory incident feed with a randomized refresh.

    Args:
        incidents: Starting incidents; defaults to `initial_incidents()`
        seed: Seed for the refresh RNG, for reproducible runs
    """

    def __init__(self, incidents: Optional[List[TrafficIncident]] = None, seed: Optional[int] = None):
        self._incidents: List[TrafficIncident] = list(
            incidents if incidents is not None else initial_incidents()
        )
        self._rng = random.Random(seed)
        self._counter = 0

    def list_traffic_incidents(self) -> List[TrafficIncident]:
        return list(self._incidents)

    def refresh(self) -> List[TrafficIncident]:
        """
        Simulate a traffic data refresh.

        Every remaining incident is marked 'Just now'. Then, with equal
        probability, one incident is added or a random one is removed.

        Returns:
            The updated incident list
        """
        updated = [self._mark_recent(incident) for incident in self._incidents]

        should_add = self._rng.random() > 0.5
        if should_add and len(updated) < config.MAX_SIMULATED_INCIDENTS:
            incident = self._new_incident()
            updated.append(incident)
            logger.info(f"Traffic incident reported: {incident.type} at {incident.location}")
        elif len(updated) > 1:
            removed = updated.pop(self._rng.randrange(len(updated)))
            logger.info(f"Traffic incident cleared: {removed.type} at {removed.location}")

        self._incidents = updated
        return list(self._incidents)

    def _new_incident(self) -> TrafficIncident:
        self._counter += 1
        return TrafficIncident(
            id=f"issue-sim-{self._counter}",
            location=NEW_INCIDENT_LOCATION,
            type=self._rng.choice(INCIDENT_TYPES),
            impact=self._rng.choice(IMPACT_TYPES),
            severity=Severity.HIGH if self._rng.random() > 0.5 else Severity.MEDIUM,
            affected_deliveries=self._rng.randint(1, 4),
            reported_at="Just now",
        )

    @staticmethod
    def _mark_recent(incident: TrafficIncident) -> TrafficIncident:
        return replace(incident, reported_at="Just now")

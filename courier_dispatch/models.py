# courier-dispatch/courier_dispatch/models.py
"""
Core domain models for the Medical Courier Dispatch Engine.

This module defines the data structures shared by every dispatch component:
- DeliveryRequest: A specimen/sample pickup awaiting or under delivery
- Driver: A courier who can be linked to at most one delivery
- PlanEntry: One proposed (request, driver) pairing
- CycleSummary: What one dispatch cycle attempted and achieved
- DispatchScheduleState: Read-only view of the auto-dispatch scheduler
- TrafficIncident / RerouteRecord: Inputs and outputs of traffic rerouting

Rows read from a hosted store are mapped with tolerant defaults via the
`from_row` constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config


class DeliveryStatus(Enum):
    """Lifecycle states for a delivery request."""
    PENDING = "pending"          # Created by intake, awaiting a driver
    IN_PROGRESS = "in_progress"  # Driver linked (or partially committed)
    COMPLETED = "completed"
    DECLINED = "declined"


class Priority(Enum):
    """Delivery urgency as chosen at intake."""
    NORMAL = "normal"
    URGENT = "urgent"


class DispatchMethod(Enum):
    """
    How the matching engine picks a driver from the remaining pool.

    - PROXIMITY: first driver in pool order ("nearest courier")
    - BALANCED: round robin over the pool (workload distribution)
    - EFFICIENCY: cost-based pick, or a stable rotation keyed by request id
    """
    PROXIMITY = "proximity"
    BALANCED = "balanced"
    EFFICIENCY = "efficiency"


class Severity(Enum):
    """Severity of a traffic incident."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DRIVER_ACTIVE = "active"
DRIVER_INACTIVE = "inactive"


def _parse_enum(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).strip().lower())


@dataclass(frozen=True)
class TrackingUpdate:
    """One entry in a delivery's append-only tracking history."""
    status: str
    timestamp: str
    location: str = ""
    note: str = ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TrackingUpdate":
        return cls(
            status=row.get("status") or "",
            timestamp=row.get("timestamp") or "",
            location=row.get("location") or "",
            note=row.get("note") or "",
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "location": self.location,
            "note": self.note,
        }


@dataclass
class DeliveryRequest:
    """
    A delivery request from pickup to delivery location.

    Attributes:
        id: Unique identifier
        status: Current lifecycle state
        priority: normal or urgent
        assigned_driver: Id of the linked driver, if any
        package_type: e.g. 'Specimen', 'Refrigerated', 'Temperature Controlled'
        pickup_location / delivery_location: Free-text addresses
        tracking_updates: Ordered, append-only tracking history
        created_at: ISO timestamp of intake
        estimated_delivery: ISO timestamp of the current ETA, if known
    """
    id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    priority: Priority = Priority.NORMAL
    assigned_driver: Optional[str] = None
    package_type: str = ""
    pickup_location: str = ""
    delivery_location: str = ""
    tracking_updates: List[TrackingUpdate] = field(default_factory=list)
    created_at: str = ""
    estimated_delivery: Optional[str] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority == Priority.URGENT

    @property
    def is_approved(self) -> bool:
        """True once an operator has approved the request."""
        return any(u.status == config.APPROVED_TRACKING_STATUS for u in self.tracking_updates)

    @property
    def is_assignable(self) -> bool:
        """Pending and not yet linked to a driver."""
        return self.status == DeliveryStatus.PENDING and not self.assigned_driver

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeliveryRequest":
        """Build a request from a store row, tolerating missing columns."""
        updates = row.get("tracking_updates") or []
        return cls(
            id=str(row["id"]),
            status=_parse_enum(DeliveryStatus, row.get("status"), DeliveryStatus.PENDING),
            priority=_parse_enum(Priority, row.get("priority"), Priority.NORMAL),
            assigned_driver=row.get("assigned_driver") or None,
            package_type=row.get("packageType") or row.get("package_type") or "",
            pickup_location=row.get("pickup_location") or "",
            delivery_location=row.get("delivery_location") or "",
            tracking_updates=[TrackingUpdate.from_row(u) for u in updates],
            created_at=row.get("created_at") or "",
            estimated_delivery=row.get("estimatedDelivery") or row.get("estimated_delivery") or None,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "priority": self.priority.value,
            "assigned_driver": self.assigned_driver,
            "packageType": self.package_type,
            "pickup_location": self.pickup_location,
            "delivery_location": self.delivery_location,
            "tracking_updates": [u.to_row() for u in self.tracking_updates],
            "created_at": self.created_at,
            "estimatedDelivery": self.estimated_delivery,
        }

    def __repr__(self) -> str:
        return f"DeliveryRequest({self.id}, {self.status.value}, {self.priority.value})"


@dataclass
class Driver:
    """
    A courier in the fleet.

    `status` is kept as the raw store value so statuses introduced by
    onboarding (beyond active/inactive) survive a round trip.
    """
    id: str
    name: str = "Unknown Driver"
    status: str = DRIVER_ACTIVE
    current_delivery: Optional[str] = None
    rating: Optional[float] = None
    vehicle_type: str = "Car"

    @property
    def is_eligible(self) -> bool:
        """Active and not currently carrying a delivery."""
        return self.status == DRIVER_ACTIVE and not self.current_delivery

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Driver":
        rating = row.get("rating")
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "Unknown Driver",
            status=row.get("status") or DRIVER_ACTIVE,
            current_delivery=row.get("current_delivery") or None,
            rating=float(rating) if rating not in (None, "") else None,
            vehicle_type=row.get("vehicle_type") or "Car",
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "current_delivery": self.current_delivery,
            "rating": self.rating,
            "vehicle_type": self.vehicle_type,
        }

    def __repr__(self) -> str:
        return f"Driver({self.id}, {self.status}, delivery={self.current_delivery})"


@dataclass
class DispatchSettings:
    """
    Operator-tunable matching settings.

    Attributes:
        prioritize_urgent: Read by the engine but does not change ordering;
            approved/urgent precedence is fixed
        dispatch_method: Driver selection policy
        max_distance: Miles; informational until a distance model exists
    """
    prioritize_urgent: bool = True
    dispatch_method: DispatchMethod = DispatchMethod.PROXIMITY
    max_distance: float = config.DEFAULT_MAX_DISTANCE_MILES

    def __post_init__(self) -> None:
        self.dispatch_method = _parse_enum(DispatchMethod, self.dispatch_method, DispatchMethod.PROXIMITY)


@dataclass(frozen=True)
class PlanEntry:
    """One proposed pairing produced by the matching engine."""
    request_id: str
    driver_id: str

    def __repr__(self) -> str:
        return f"PlanEntry({self.request_id} -> {self.driver_id})"


class CommitOutcome(Enum):
    """Result of committing one plan entry."""
    COMMITTED = "committed"
    SKIPPED = "skipped"   # Pre-check found stale state
    FAILED = "failed"     # First write failed, nothing changed
    PARTIAL = "partial"   # Status written, driver link failed


@dataclass(frozen=True)
class AssignmentEvent:
    """Per-assignment notification for hosts."""
    request_id: str
    driver_id: str
    outcome: CommitOutcome
    timestamp: datetime
    detail: str = ""
    stale_entity: Optional[str] = None  # 'request' or 'driver' for skips


class CycleTrigger(Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class CycleOutcome(Enum):
    COMPLETED = "completed"
    NO_WORK = "no_work"   # Nothing pending or no driver free; not an error
    MISSED = "missed"     # No snapshot could be obtained


@dataclass
class CycleSummary:
    """
    Container for the results of one dispatch cycle.

    `attempted` counts commit attempts, including re-matches made after a
    driver turned out to be stale.
    """
    trigger: CycleTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcome: CycleOutcome = CycleOutcome.COMPLETED
    attempted: int = 0
    committed: int = 0
    skipped: int = 0
    failed: int = 0
    partial_commits: List[str] = field(default_factory=list)
    committed_pairs: List[PlanEntry] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def notification(self) -> str:
        """The single user-visible message for this cycle."""
        if self.outcome == CycleOutcome.MISSED:
            return "Auto-dispatch failed: Couldn't fetch or use any data"
        if self.outcome == CycleOutcome.NO_WORK:
            return "Auto-dispatch: No pending deliveries or available drivers"
        message = f"Auto-dispatch completed: {self.committed} of {self.attempted} deliveries assigned"
        if self.partial_commits:
            message += f" ({len(self.partial_commits)} need manual reset)"
        return message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "Trigger": self.trigger.value,
            "Outcome": self.outcome.value,
            "Attempted": self.attempted,
            "Committed": self.committed,
            "Skipped": self.skipped,
            "Failed": self.failed,
            "Partial": len(self.partial_commits),
            "Started": self.started_at.strftime("%H:%M:%S"),
        }


class SchedulerStatus(Enum):
    DISABLED = "disabled"
    ARMED = "armed"
    RUNNING = "running"


@dataclass(frozen=True)
class DispatchScheduleState:
    """Snapshot of the auto-dispatch scheduler for display."""
    enabled: bool
    status: SchedulerStatus
    interval_seconds: float
    next_run_at: Optional[datetime]
    cumulative_dispatch_count: int
    last_cycle_summary: Optional[CycleSummary]
    countdown: str = ""
    cycle_in_flight: bool = False  # a disabled scheduler may still be finishing one


@dataclass(frozen=True)
class TrafficIncident:
    """A (simulated) traffic incident reported by the incident feed."""
    id: str
    location: str
    type: str
    impact: str
    severity: Severity
    affected_deliveries: int = 0
    reported_at: str = ""


@dataclass(frozen=True)
class RerouteRecord:
    """
    A recorded reroute decision for one in-flight delivery.

    ETAs and timestamp are ISO-8601 strings so repeated reads are
    byte-identical.
    """
    delivery_id: str
    original_eta: str
    new_eta: str
    reason: str
    timestamp: str

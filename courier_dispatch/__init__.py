# courier-dispatch/courier_dispatch/__init__.py

from .models import (
    DeliveryRequest,
    Driver,
    DeliveryStatus,
    Priority,
    DispatchMethod,
    DispatchSettings,
    PlanEntry,
    CycleSummary,
    CycleOutcome,
    CycleTrigger,
    DispatchScheduleState,
    TrafficIncident,
    RerouteRecord,
)
from .config import (
    DEFAULT_DISPATCH_INTERVAL_SECONDS,
    COMMIT_PACING_SECONDS,
    DEFAULT_DELAY_THRESHOLD_MINS,
)
from .errors import DispatchError, DataStoreError, StaleStateError, PartialCommitError, DataUnavailableError
from .datastore import DataStore, InMemoryDataStore
from .rest import RestDataStore
from .matching import MatchingEngine
from .committer import AssignmentCommitter, find_stuck_deliveries
from .coordinator import BatchDispatchCoordinator
from .scheduler import DispatchScheduler
from .reroute import RerouteAdvisor
from .incidents import IncidentFeed, SimulatedIncidentFeed
from .console import DispatchConsole
from .scoring import flat_cost, preference_cost

__version__ = "1.0.0"
__author__ = "Courier Dispatch Team"

__all__ = [
    # Models
    "DeliveryRequest",
    "Driver",
    "DeliveryStatus",
    "Priority",
    "DispatchMethod",
    "DispatchSettings",
    "PlanEntry",
    "CycleSummary",
    "CycleOutcome",
    "CycleTrigger",
    "DispatchScheduleState",
    "TrafficIncident",
    "RerouteRecord",
    # Errors
    "DispatchError",
    "DataStoreError",
    "StaleStateError",
    "PartialCommitError",
    "DataUnavailableError",
    # Stores
    "DataStore",
    "InMemoryDataStore",
    "RestDataStore",
    # Core
    "MatchingEngine",
    "AssignmentCommitter",
    "BatchDispatchCoordinator",
    "DispatchScheduler",
    "RerouteAdvisor",
    "IncidentFeed",
    "SimulatedIncidentFeed",
    "DispatchConsole",
    # Functions
    "find_stuck_deliveries",
    "flat_cost",
    "preference_cost",
    # Config
    "DEFAULT_DISPATCH_INTERVAL_SECONDS",
    "COMMIT_PACING_SECONDS",
    "DEFAULT_DELAY_THRESHOLD_MINS",
]

# courier-dispatch/courier_dispatch/config.py
"""
Configuration parameters for the Medical Courier Dispatch Engine.

This module centralizes all tunable parameters, making it easy to:
- Adjust the auto-dispatch schedule
- Tune commit pacing against the hosted data store
- Configure the traffic rerouting simulation

All parameters are documented with their purpose and typical value ranges.
"""

import os
from typing import Final, Optional

# =============================================================================
# SCHEDULER PARAMETERS
# =============================================================================

DEFAULT_DISPATCH_INTERVAL_SECONDS: float = 15.0
"""Seconds between scheduled auto-dispatch cycles."""

MIN_DISPATCH_INTERVAL_SECONDS: Final[float] = 5.0
"""Smallest interval offered by the console controls."""

MAX_DISPATCH_INTERVAL_SECONDS: Final[float] = 60.0
"""Largest interval offered by the console controls."""

COUNTDOWN_REFRESH_SECONDS: float = 1.0
"""How often countdown listeners are refreshed while auto-dispatch is enabled."""

# =============================================================================
# DISPATCH CYCLE PARAMETERS
# =============================================================================

COMMIT_PACING_SECONDS: float = 0.1
"""
Pause between two commits of the same cycle.
Keeps bursts of writes from hitting the store's rate limits.
"""

DEFAULT_MAX_DISTANCE_MILES: float = 10.0
"""
Maximum dispatch distance shown in the dispatch settings (1 - 20 miles).
Carried with the settings; no distance model exists to enforce it.
"""

# =============================================================================
# TRACKING VOCABULARY
# =============================================================================

APPROVED_TRACKING_STATUS: Final[str] = "Request Approved"
"""Tracking update status that marks a request as approved by an operator."""

DRIVER_ASSIGNED_TRACKING_STATUS: Final[str] = "Driver Assigned"
"""Tracking update status appended when a driver is linked to a delivery."""

DRIVER_ASSIGNED_LOCATION: Final[str] = "Driver location"
"""Location text used on the driver-assigned tracking update."""

DRIVER_ASSIGNED_NOTE: Final[str] = "Driver assigned to delivery"

# =============================================================================
# REROUTING PARAMETERS
# =============================================================================

DEFAULT_DELAY_THRESHOLD_MINS: float = 10.0
"""Deliveries with an estimated delay below this are not automatically rerouted."""

REROUTE_ETA_OFFSET_MINS: float = 20.0
"""New ETA offset (from now) for a single, operator-requested reroute."""

BATCH_REROUTE_ETA_OFFSET_MINS: float = 15.0
"""New ETA offset (from now) for deliveries rerouted in a batch."""

REROUTE_PACING_SECONDS: float = 0.5
"""Pause between two reroutes of the same batch."""

SINGLE_REROUTE_REASON: Final[str] = "Heavy traffic on original route"
BATCH_REROUTE_REASON: Final[str] = "Batch rerouting due to traffic conditions"

MAX_SIMULATED_INCIDENTS: int = 5
"""Upper bound of simulated traffic incidents kept by the incident feed."""

# =============================================================================
# HOSTED DATA STORE CONFIGURATION
# =============================================================================

DATASTORE_URL: Optional[str] = os.getenv("DATASTORE_URL")
"""
Base URL of the PostgREST-compatible store, e.g. "https://<project>.supabase.co".
When unset, hosts fall back to the in-memory store.
"""

DATASTORE_API_KEY: Optional[str] = os.getenv("DATASTORE_API_KEY")
"""API key sent as both `apikey` and bearer token."""

DATASTORE_TIMEOUT_SECONDS: float = float(os.getenv("DATASTORE_TIMEOUT_SECONDS", "5.0"))
"""Timeout for each store request. A hung call stalls at most one commit."""

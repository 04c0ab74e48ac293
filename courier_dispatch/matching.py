# courier-dispatch/courier_dispatch/matching.py
"""
Matching Engine for the Medical Courier Dispatch Engine.

Turns a snapshot of requests and drivers into an ordered assignment plan.
The engine is pure: it never mutates its inputs and never touches the store.

Queue order is fixed:

1. Approved + urgent
2. Approved + normal
3. Urgent, not yet approved
4. Normal, not yet approved

Within a bucket, input order is kept. Driver selection per request follows
the configured DispatchMethod:

- **proximity**: first driver in pool order
- **balanced**: round robin, index = assignments so far mod pool size
- **efficiency**: lowest cost when a cost function is supplied, otherwise a
  stable rotation keyed by the last two characters of the request id
"""

from __future__ import annotations

import logging
import string
from typing import List, Optional, Sequence

from .models import DeliveryRequest, DispatchMethod, DispatchSettings, Driver, PlanEntry
from .scoring import CostFunction

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset(string.hexdigits)


def request_hash(request_id: str) -> int:
    """
    Stable small hash of a request id used by the efficiency rotation.

    Reads the last two characters of the id as hexadecimal, stopping at the
    first non-hex character. Returns 0 when no hex digit leads.

    Example:
        >>> request_hash("req-1a")
        26
        >>> request_hash("req-3z")
        3
        >>> request_hash("req-zz")
        0
    """
    tail = request_id[-2:]
    digits = ""
    for char in tail:
        if char not in _HEX_DIGITS:
            break
        digits += char
    return int(digits, 16) if digits else 0


def bucket_requests(requests: Sequence[DeliveryRequest]) -> List[DeliveryRequest]:
    """
    Order requests into the fixed approved/urgent precedence.

    The sort is stable, so input order is kept within each bucket.
    """
    def rank(request: DeliveryRequest) -> int:
        if request.is_approved:
            return 0 if request.is_urgent else 1
        return 2 if request.is_urgent else 3

    return sorted(requests, key=rank)


class MatchingEngine:
    """
    Produces an assignment plan from a snapshot.

    Args:
        settings: Dispatch settings (method, urgency flag, max distance)
        cost_fn: Optional `cost(driver, request) -> float` used by the
            efficiency method. Lower is better.
    """

    def __init__(
        self,
        settings: Optional[DispatchSettings] = None,
        cost_fn: Optional[CostFunction] = None,
    ):
        self.settings = settings or DispatchSettings()
        self.cost_fn = cost_fn

    def plan(
        self,
        requests: Sequence[DeliveryRequest],
        drivers: Sequence[Driver],
    ) -> List[PlanEntry]:
        """
        Build the ordered assignment plan.

        Ineligible records are filtered out even when the caller already did
        so. Each request id and each driver id appears at most once.

        Args:
            requests: Candidate delivery requests
            drivers: Candidate drivers, in pool order

        Returns:
            List of PlanEntry, at most min(#eligible requests, #eligible drivers) long
        """
        queue = bucket_requests([r for r in requests if r.is_assignable])
        pool = [d for d in drivers if d.is_eligible]

        # prioritize_urgent is read for parity with the console settings; the
        # bucket order above applies either way.
        if not self.settings.prioritize_urgent:
            logger.debug("prioritize_urgent is off; approved/urgent ordering still applies")

        plan: List[PlanEntry] = []
        seen_requests = set()
        for request in queue:
            if not pool:
                break
            if request.id in seen_requests:
                continue

            driver = self.select_driver(request, pool, len(plan))
            if driver is None:
                break

            pool = [d for d in pool if d.id != driver.id]
            seen_requests.add(request.id)
            plan.append(PlanEntry(request_id=request.id, driver_id=driver.id))

        logger.debug(
            f"Planned {len(plan)} assignments "
            f"({len(queue)} requests, {len(drivers)} drivers, method={self.settings.dispatch_method.value})"
        )
        return plan

    def select_driver(
        self,
        request: DeliveryRequest,
        pool: Sequence[Driver],
        assignments_made: int,
    ) -> Optional[Driver]:
        """
        Pick one driver from the remaining pool for a request.

        Args:
            request: The request being matched
            pool: Remaining drivers, in pool order
            assignments_made: Number of pairings already made this plan

        Returns:
            The chosen driver, or None when the pool is empty
        """
        if not pool:
            return None

        method = self.settings.dispatch_method
        if method == DispatchMethod.BALANCED:
            return pool[assignments_made % len(pool)]

        if method == DispatchMethod.EFFICIENCY:
            if self.cost_fn is not None:
                return self._lowest_cost(request, pool)
            return pool[(assignments_made + request_hash(request.id)) % len(pool)]

        return pool[0]

    def _lowest_cost(self, request: DeliveryRequest, pool: Sequence[Driver]) -> Driver:
        """Argmin over the pool; the first driver wins ties."""
        best_driver = pool[0]
        best_cost = float("inf")
        for driver in pool:
            cost = self.cost_fn(driver, request)
            if cost < best_cost:
                best_cost = cost
                best_driver = driver
        return best_driver

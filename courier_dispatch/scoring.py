# courier-dispatch/courier_dispatch/scoring.py
"""
Cost functions for driver selection.

A cost function has the signature `cost(driver, request) -> float` and is
plugged into the MatchingEngine for the 'efficiency' dispatch method.
Lower cost = better candidate. Ties are broken by pool order.

No distance or ETA model exists yet. `flat_cost` is the neutral stub;
`preference_cost` encodes the operator rules the console applies when it
picks a "best driver" by hand.
"""

from __future__ import annotations

from typing import Callable, Dict

from .models import DeliveryRequest, Driver


CostFunction = Callable[[Driver, DeliveryRequest], float]

# Package types that need a temperature-controlled vehicle
TEMPERATURE_SENSITIVE_PACKAGES = frozenset({"refrigerated", "temperature controlled"})

# Vehicle type keywords that satisfy a temperature-sensitive package
TEMPERATURE_VEHICLE_KEYWORDS = ("refrig", "temper")

# Cost added when a temperature-sensitive package meets an ordinary vehicle
VEHICLE_MISMATCH_PENALTY: float = 10.0

MAX_RATING: float = 5.0


def flat_cost(driver: Driver, request: DeliveryRequest) -> float:
    """Neutral cost: every driver is equally good."""
    return 0.0


def requires_temperature_control(request: DeliveryRequest) -> bool:
    return request.package_type.strip().lower() in TEMPERATURE_SENSITIVE_PACKAGES


def has_temperature_control(driver: Driver) -> bool:
    vehicle = (driver.vehicle_type or "").lower()
    return any(keyword in vehicle for keyword in TEMPERATURE_VEHICLE_KEYWORDS)


def preference_cost(driver: Driver, request: DeliveryRequest) -> float:
    """
    Score a driver for a request using the console's manual dispatch rules.

    The rules:
    1. Temperature-sensitive packages (Refrigerated / Temperature Controlled)
       strongly prefer refrigerated or temperature-controlled vehicles
    2. Urgent requests prefer the highest-rated driver
    3. Everything else is neutral

    Args:
        driver: Candidate driver
        request: Request being matched

    Returns:
        Cost score (lower is better)
    """
    cost = 0.0

    if requires_temperature_control(request) and not has_temperature_control(driver):
        cost += VEHICLE_MISMATCH_PENALTY

    if request.is_urgent:
        rating = driver.rating if driver.rating is not None else 0.0
        cost += MAX_RATING - min(rating, MAX_RATING)

    return cost


COST_FUNCTIONS: Dict[str, CostFunction] = {
    "flat": flat_cost,
    "preference": preference_cost,
}


def get_cost_function(name: str) -> CostFunction:
    """
    Look up a registered cost function by name.

    Raises:
        ValueError: If no cost function is registered under that name
    """
    try:
        return COST_FUNCTIONS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown cost function '{name}'. Options: {', '.join(COST_FUNCTIONS)}"
        ) from None

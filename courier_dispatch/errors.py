# courier-dispatch/courier_dispatch/errors.py
"""
Exception hierarchy for the dispatch engine.

Only PartialCommitError is meant to reach an operator: it marks a delivery
left in_progress without a driver. The others are handled inside the engine.
"""

from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatch engine errors."""


class DataStoreError(DispatchError):
    """A single call against the data store failed."""


class StaleStateError(DispatchError):
    """
    A pre-check found the request or driver no longer assignable.

    Attributes:
        entity: Either 'request' or 'driver'
        entity_id: Id of the record that failed the check
    """

    def __init__(self, entity: str, entity_id: str, detail: str = "") -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.detail = detail
        message = f"{entity} {entity_id} is no longer available for assignment"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PartialCommitError(DispatchError):
    """
    The status write succeeded but linking the driver failed.

    The delivery stays in_progress with no driver until an operator resets it
    to pending.
    """

    def __init__(self, request_id: str, driver_id: str, cause: Optional[BaseException] = None) -> None:
        self.request_id = request_id
        self.driver_id = driver_id
        self.cause = cause
        super().__init__(
            f"Delivery {request_id} is in_progress but driver {driver_id} was not linked: {cause}"
        )


class DataUnavailableError(DispatchError):
    """Neither a fresh read nor cached data could provide a snapshot."""

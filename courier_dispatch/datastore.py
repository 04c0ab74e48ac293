# courier-dispatch/courier_dispatch/datastore.py
"""
Data store interface for the Medical Courier Dispatch Engine.

The engine only talks to the store through the coroutines of `DataStore`.
The store offers no transactions: every call is independent and may fail
on its own. Two adapters ship with the package:

- InMemoryDataStore: dict-backed, seeded from lists or CSV files
- RestDataStore (see rest.py): a PostgREST-style hosted store
"""

from __future__ import annotations

import copy
import csv
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from . import config, utils
from .errors import DataStoreError
from .models import DeliveryRequest, DeliveryStatus, Driver, TrackingUpdate

logger = logging.getLogger(__name__)


class DataStore(ABC):
    """
    Abstract collaborator holding delivery requests and drivers.

    `conditional_assign` is an optional capability. Callers must check
    `supports_conditional_assign` before using it.
    """

    supports_conditional_assign: bool = False

    @abstractmethod
    async def list_pending_deliveries(self) -> List[DeliveryRequest]:
        """Requests with status pending."""

    @abstractmethod
    async def list_eligible_drivers(self) -> List[Driver]:
        """Active drivers without a current delivery."""

    @abstractmethod
    async def list_active_deliveries(self) -> List[DeliveryRequest]:
        """Requests with status in_progress."""

    @abstractmethod
    async def get_delivery(self, delivery_id: str) -> Optional[DeliveryRequest]:
        """Fresh read of one request, None if it no longer exists."""

    @abstractmethod
    async def get_driver(self, driver_id: str) -> Optional[Driver]:
        """Fresh read of one driver, None if it no longer exists."""

    @abstractmethod
    async def update_delivery_status(self, delivery_id: str, status: DeliveryStatus) -> None:
        """Write a request's status."""

    @abstractmethod
    async def assign_driver(self, driver_id: str, delivery_id: str) -> None:
        """
        Link a driver and a request.

        Sets driver.current_delivery and request.assigned_driver, and appends
        a 'Driver Assigned' tracking update to the request.
        """

    async def conditional_assign(self, driver_id: str, delivery_id: str) -> bool:
        """
        Check both rows and write status plus link in one step.

        Returns:
            True when the assignment was written, False when either row was
            no longer assignable
        """
        raise NotImplementedError(f"{type(self).__name__} does not support conditional assignment")


def driver_assigned_update(timestamp: Optional[str] = None) -> TrackingUpdate:
    """Tracking entry appended when a driver is linked to a delivery."""
    return TrackingUpdate(
        status=config.DRIVER_ASSIGNED_TRACKING_STATUS,
        timestamp=timestamp or utils.to_iso(utils.utc_now()),
        location=config.DRIVER_ASSIGNED_LOCATION,
        note=config.DRIVER_ASSIGNED_NOTE,
    )


class InMemoryDataStore(DataStore):
    """
    Dict-backed store used by the CLI, the dashboard and the tests.

    Reads return deep copies, so a snapshot never changes under the caller.

    Args:
        deliveries: Initial delivery requests
        drivers: Initial drivers
        conditional_assign: Advertise the conditional assignment capability
    """

    def __init__(
        self,
        deliveries: Optional[Iterable[DeliveryRequest]] = None,
        drivers: Optional[Iterable[Driver]] = None,
        conditional_assign: bool = False,
    ):
        self.deliveries: Dict[str, DeliveryRequest] = {}
        self.drivers: Dict[str, Driver] = {}
        self.supports_conditional_assign = conditional_assign
        for delivery in deliveries or []:
            self.add_delivery(delivery)
        for driver in drivers or []:
            self.add_driver(driver)

    def add_delivery(self, delivery: DeliveryRequest) -> None:
        self.deliveries[delivery.id] = delivery

    def add_driver(self, driver: Driver) -> None:
        self.drivers[driver.id] = driver

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_pending_deliveries(self) -> List[DeliveryRequest]:
        return [
            copy.deepcopy(d) for d in self.deliveries.values()
            if d.status == DeliveryStatus.PENDING
        ]

    async def list_eligible_drivers(self) -> List[Driver]:
        return [copy.deepcopy(d) for d in self.drivers.values() if d.is_eligible]

    async def list_active_deliveries(self) -> List[DeliveryRequest]:
        return [
            copy.deepcopy(d) for d in self.deliveries.values()
            if d.status == DeliveryStatus.IN_PROGRESS
        ]

    async def list_all_deliveries(self) -> List[DeliveryRequest]:
        return [copy.deepcopy(d) for d in self.deliveries.values()]

    async def list_all_drivers(self) -> List[Driver]:
        return [copy.deepcopy(d) for d in self.drivers.values()]

    async def get_delivery(self, delivery_id: str) -> Optional[DeliveryRequest]:
        delivery = self.deliveries.get(delivery_id)
        return copy.deepcopy(delivery) if delivery is not None else None

    async def get_driver(self, driver_id: str) -> Optional[Driver]:
        driver = self.drivers.get(driver_id)
        return copy.deepcopy(driver) if driver is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_delivery_status(self, delivery_id: str, status: DeliveryStatus) -> None:
        self._require_delivery(delivery_id).status = DeliveryStatus(status)

    async def assign_driver(self, driver_id: str, delivery_id: str) -> None:
        delivery = self._require_delivery(delivery_id)
        driver = self._require_driver(driver_id)
        driver.current_delivery = delivery_id
        delivery.assigned_driver = driver_id
        delivery.status = DeliveryStatus.IN_PROGRESS
        delivery.tracking_updates.append(driver_assigned_update())

    async def conditional_assign(self, driver_id: str, delivery_id: str) -> bool:
        if not self.supports_conditional_assign:
            return await super().conditional_assign(driver_id, delivery_id)

        delivery = self.deliveries.get(delivery_id)
        driver = self.drivers.get(driver_id)
        if delivery is None or not delivery.is_assignable:
            return False
        if driver is None or not driver.is_eligible:
            return False

        await self.assign_driver(driver_id, delivery_id)
        return True

    def _require_delivery(self, delivery_id: str) -> DeliveryRequest:
        try:
            return self.deliveries[delivery_id]
        except KeyError:
            raise DataStoreError(f"Unknown delivery: {delivery_id}") from None

    def _require_driver(self, driver_id: str) -> Driver:
        try:
            return self.drivers[driver_id]
        except KeyError:
            raise DataStoreError(f"Unknown driver: {driver_id}") from None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load_csv(
        cls,
        deliveries_file: str,
        drivers_file: str,
        conditional_assign: bool = False,
    ) -> "InMemoryDataStore":
        """
        Build a store from delivery and driver CSV files.

        Delivery columns: id, status, priority, assigned_driver, package_type,
        pickup_location, delivery_location, created_at, estimated_delivery,
        approved. A truthy `approved` column adds a 'Request Approved'
        tracking update.

        Driver columns: id, name, status, current_delivery, rating, vehicle_type.

        Raises:
            FileNotFoundError: If a file doesn't exist
            ValueError: If a row is malformed
        """
        if not os.path.exists(deliveries_file):
            raise FileNotFoundError(f"Deliveries file not found: {deliveries_file}")
        if not os.path.exists(drivers_file):
            raise FileNotFoundError(f"Drivers file not found: {drivers_file}")

        deliveries: List[DeliveryRequest] = []
        with open(deliveries_file, "r", newline="") as f:
            reader = csv.DictReader(f)
            for row in reader:
                try:
                    delivery = DeliveryRequest.from_row(row)
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Invalid delivery data in {deliveries_file}: {e}") from e
                if _is_truthy(row.get("approved")):
                    delivery.tracking_updates.append(TrackingUpdate(
                        status=config.APPROVED_TRACKING_STATUS,
                        timestamp=delivery.created_at,
                    ))
                deliveries.append(delivery)

        drivers: List[Driver] = []
        with open(drivers_file, "r", newline="") as f:
            reader = csv.DictReader(f)
            for row in reader:
                try:
                    drivers.append(Driver.from_row(row))
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Invalid driver data in {drivers_file}: {e}") from e

        logger.info(f"Loaded {len(deliveries)} deliveries and {len(drivers)} drivers from CSV")
        return cls(deliveries, drivers, conditional_assign=conditional_assign)


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "y")

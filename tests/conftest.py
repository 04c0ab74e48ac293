"""
Pytest configuration and fixtures for the dispatch engine tests
"""
from typing import Callable, Dict, List, Optional, Set

import pytest

from courier_dispatch import config
from courier_dispatch.datastore import InMemoryDataStore
from courier_dispatch.errors import DataStoreError
from courier_dispatch.models import (
    DRIVER_ACTIVE,
    DeliveryRequest,
    DeliveryStatus,
    Driver,
    Priority,
    TrackingUpdate,
)


def make_request(
    request_id: str,
    priority: str = "normal",
    approved: bool = False,
    status: DeliveryStatus = DeliveryStatus.PENDING,
    assigned_driver: Optional[str] = None,
    package_type: str = "Specimen",
    estimated_delivery: Optional[str] = None,
) -> DeliveryRequest:
    """Build a delivery request, optionally approved by an operator"""
    updates = []
    if approved:
        updates.append(TrackingUpdate(status=config.APPROVED_TRACKING_STATUS, timestamp="2026-01-15T08:00:00+00:00"))
    return DeliveryRequest(
        id=request_id,
        status=status,
        priority=Priority(priority),
        assigned_driver=assigned_driver,
        package_type=package_type,
        pickup_location=f"Pickup {request_id}",
        delivery_location=f"Dropoff {request_id}",
        tracking_updates=updates,
        created_at="2026-01-15T08:00:00+00:00",
        estimated_delivery=estimated_delivery,
    )


def make_driver(
    driver_id: str,
    status: str = DRIVER_ACTIVE,
    current_delivery: Optional[str] = None,
    rating: Optional[float] = None,
    vehicle_type: str = "Car",
) -> Driver:
    """Build a driver"""
    return Driver(
        id=driver_id,
        name=f"Driver {driver_id}",
        status=status,
        current_delivery=current_delivery,
        rating=rating,
        vehicle_type=vehicle_type,
    )


class FlakyDataStore(InMemoryDataStore):
    """
    In-memory store with failure injection and call recording.

    - fail_reads: names of list_* methods that raise DataStoreError
    - fail_status_for / fail_assign_for: request ids whose writes raise
    - fail_after_link_for: request ids whose link write succeeds but then
      raises, like a hosted store whose tracking entry POST fails
    - before_get_driver: hook run before each driver pre-check read,
      used to simulate another dispatcher racing us
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_reads: Set[str] = set()
        self.fail_status_for: Set[str] = set()
        self.fail_assign_for: Set[str] = set()
        self.fail_after_link_for: Set[str] = set()
        self.before_get_driver: Optional[Callable[[str], None]] = None
        self.calls: List[tuple] = []

    async def list_pending_deliveries(self):
        self.calls.append(("list_pending_deliveries",))
        if "list_pending_deliveries" in self.fail_reads:
            raise DataStoreError("pending read failed")
        return await super().list_pending_deliveries()

    async def list_eligible_drivers(self):
        self.calls.append(("list_eligible_drivers",))
        if "list_eligible_drivers" in self.fail_reads:
            raise DataStoreError("drivers read failed")
        return await super().list_eligible_drivers()

    async def get_driver(self, driver_id):
        if self.before_get_driver is not None:
            self.before_get_driver(driver_id)
        return await super().get_driver(driver_id)

    async def update_delivery_status(self, delivery_id, status):
        self.calls.append(("update_delivery_status", delivery_id, status))
        if delivery_id in self.fail_status_for:
            raise DataStoreError(f"status write failed for {delivery_id}")
        await super().update_delivery_status(delivery_id, status)

    async def assign_driver(self, driver_id, delivery_id):
        self.calls.append(("assign_driver", driver_id, delivery_id))
        if delivery_id in self.fail_assign_for:
            raise DataStoreError(f"link write failed for {delivery_id}")
        await super().assign_driver(driver_id, delivery_id)
        if delivery_id in self.fail_after_link_for:
            raise DataStoreError(f"tracking entry failed for {delivery_id}")

    def committed_pairs(self) -> Dict[str, str]:
        """request id -> driver id for every linked delivery"""
        return {
            d.id: d.assigned_driver for d in self.deliveries.values()
            if d.assigned_driver
        }


class RecordingCounter:
    """Stands in for the scheduler handle"""

    def __init__(self):
        self.count = 0

    def record_dispatch(self):
        self.count += 1


@pytest.fixture
def counter():
    return RecordingCounter()


@pytest.fixture
def store():
    """3 pending requests (1 urgent+approved, 2 normal) and 2 free drivers"""
    return FlakyDataStore(
        deliveries=[
            make_request("req-n1"),
            make_request("req-u1", priority="urgent", approved=True),
            make_request("req-n2"),
        ],
        drivers=[make_driver("drv-a"), make_driver("drv-b")],
    )

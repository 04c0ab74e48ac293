"""
Tests for the in-memory store (CSV loading, conditional assignment) and the REST adapter
"""
import asyncio
import os

import pytest
import requests

from courier_dispatch import config
from courier_dispatch.datastore import InMemoryDataStore
from courier_dispatch.errors import DataStoreError
from courier_dispatch.models import DeliveryRequest, DeliveryStatus, Driver, Priority
from courier_dispatch.rest import RestDataStore

from conftest import make_driver, make_request


DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")

DELIVERIES_CSV = """id,status,priority,assigned_driver,package_type,pickup_location,delivery_location,created_at,estimated_delivery,approved
req-1,pending,urgent,,Specimen,Clinic A,Lab B,2026-01-15T08:00:00+00:00,,yes
req-2,pending,,,Refrigerated,Clinic C,Lab D,2026-01-15T08:05:00+00:00,,
req-3,in_progress,normal,drv-2,Documents,Office,Clinic A,2026-01-15T07:00:00+00:00,2026-01-15T08:30:00+00:00,no
"""

DRIVERS_CSV = """id,name,status,current_delivery,rating,vehicle_type
drv-1,Alex,active,,4.5,Car
drv-2,,active,req-3,,
drv-3,Casey,inactive,,4.8,Van
"""


@pytest.fixture
def csv_files(tmp_path):
    deliveries = tmp_path / "deliveries.csv"
    drivers = tmp_path / "drivers.csv"
    deliveries.write_text(DELIVERIES_CSV)
    drivers.write_text(DRIVERS_CSV)
    return str(deliveries), str(drivers)


def test_load_csv_maps_rows_with_defaults(csv_files):
    store = InMemoryDataStore.load_csv(*csv_files)

    assert set(store.deliveries) == {"req-1", "req-2", "req-3"}
    assert store.deliveries["req-1"].is_approved
    assert store.deliveries["req-1"].priority == Priority.URGENT
    assert store.deliveries["req-2"].priority == Priority.NORMAL
    assert not store.deliveries["req-2"].is_approved
    assert store.deliveries["req-3"].assigned_driver == "drv-2"

    unnamed = store.drivers["drv-2"]
    assert unnamed.name == "Unknown Driver"
    assert unnamed.vehicle_type == "Car"
    assert unnamed.rating is None
    assert store.drivers["drv-1"].rating == 4.5


def test_load_csv_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        InMemoryDataStore.load_csv(str(tmp_path / "nope.csv"), str(tmp_path / "nope2.csv"))


def test_load_csv_bad_status_raises(tmp_path):
    deliveries = tmp_path / "deliveries.csv"
    drivers = tmp_path / "drivers.csv"
    deliveries.write_text("id,status\nreq-1,teleported\n")
    drivers.write_text(DRIVERS_CSV)

    with pytest.raises(ValueError):
        InMemoryDataStore.load_csv(str(deliveries), str(drivers))


def test_bundled_sample_data_loads():
    store = InMemoryDataStore.load_csv(
        os.path.join(DATA_DIR, "deliveries.csv"),
        os.path.join(DATA_DIR, "drivers.csv"),
    )
    pending = asyncio.run(store.list_pending_deliveries())
    drivers = asyncio.run(store.list_eligible_drivers())

    assert pending
    assert drivers
    assert all(d.is_eligible for d in drivers)


def test_list_queries_filter_by_state(csv_files):
    store = InMemoryDataStore.load_csv(*csv_files)

    pending = asyncio.run(store.list_pending_deliveries())
    active = asyncio.run(store.list_active_deliveries())
    drivers = asyncio.run(store.list_eligible_drivers())

    assert [d.id for d in pending] == ["req-1", "req-2"]
    assert [d.id for d in active] == ["req-3"]
    assert [d.id for d in drivers] == ["drv-1"]


def test_reads_are_copies():
    store = InMemoryDataStore([make_request("req-1")], [make_driver("drv-1")])

    snapshot = asyncio.run(store.get_delivery("req-1"))
    snapshot.status = DeliveryStatus.DECLINED

    assert store.deliveries["req-1"].status == DeliveryStatus.PENDING


def test_writes_to_unknown_records_raise_store_error():
    store = InMemoryDataStore()
    with pytest.raises(DataStoreError):
        asyncio.run(store.update_delivery_status("req-x", DeliveryStatus.IN_PROGRESS))
    with pytest.raises(DataStoreError):
        asyncio.run(store.assign_driver("drv-x", "req-x"))


def test_conditional_assign_checks_both_rows():
    store = InMemoryDataStore(
        [make_request("req-1"), make_request("req-2")],
        [make_driver("drv-1"), make_driver("drv-busy", current_delivery="req-9")],
        conditional_assign=True,
    )

    assert asyncio.run(store.conditional_assign("drv-busy", "req-1")) is False
    assert store.deliveries["req-1"].status == DeliveryStatus.PENDING
    assert asyncio.run(store.conditional_assign("drv-1", "req-1")) is True
    assert store.deliveries["req-1"].assigned_driver == "drv-1"
    assert asyncio.run(store.conditional_assign("drv-1", "req-2")) is False


def test_conditional_assign_is_opt_in():
    store = InMemoryDataStore([make_request("req-1")], [make_driver("drv-1")])
    assert store.supports_conditional_assign is False
    with pytest.raises(NotImplementedError):
        asyncio.run(store.conditional_assign("drv-1", "req-1"))


def test_row_mapping_accepts_both_column_spellings():
    camel = DeliveryRequest.from_row({"id": "r1", "packageType": "Specimen", "estimatedDelivery": "x"})
    snake = DeliveryRequest.from_row({"id": "r2", "package_type": "Specimen", "estimated_delivery": "x"})

    assert camel.package_type == snake.package_type == "Specimen"
    assert camel.estimated_delivery == snake.estimated_delivery == "x"
    assert Driver.from_row({"id": "d1"}).status == "active"


# =============================================================================
# REST adapter
# =============================================================================

class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status
        self.content = b"" if payload is None else b"json"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Records requests and replays queued responses"""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json,
                           "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else FakeResponse()


def rest_store(session):
    return RestDataStore(base_url="https://example.test/", api_key="key-123", timeout=2.5, session=session)


def test_rest_requires_a_url(monkeypatch):
    monkeypatch.setattr(config, "DATASTORE_URL", None)
    with pytest.raises(ValueError):
        RestDataStore()


def test_rest_lists_pending_with_tracking_updates():
    session = FakeSession([FakeResponse([{
        "id": "req-1",
        "status": "pending",
        "priority": "urgent",
        "package_type": "Specimen",
        "tracking_updates": [
            {"status": "Request Approved", "timestamp": "2026-01-15T08:05:00Z"},
            {"status": "Request Created", "timestamp": "2026-01-15T08:00:00Z"},
        ],
    }])])

    pending = asyncio.run(rest_store(session).list_pending_deliveries())

    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://example.test/rest/v1/delivery_requests"
    assert call["params"]["status"] == "eq.pending"
    assert call["headers"]["apikey"] == "key-123"
    assert call["headers"]["Authorization"] == "Bearer key-123"
    assert call["timeout"] == 2.5
    assert pending[0].is_approved
    assert pending[0].is_urgent
    assert [u.status for u in pending[0].tracking_updates] == ["Request Created", "Request Approved"]


def test_rest_eligible_drivers_query():
    session = FakeSession([FakeResponse([{"id": "drv-1", "name": "Alex", "status": "active"}])])

    drivers = asyncio.run(rest_store(session).list_eligible_drivers())

    assert session.calls[0]["params"]["current_delivery"] == "is.null"
    assert drivers[0].name == "Alex"


def test_rest_get_missing_returns_none():
    session = FakeSession([FakeResponse([])])
    assert asyncio.run(rest_store(session).get_driver("drv-x")) is None


def test_rest_assign_driver_writes_link_and_tracking_entry():
    session = FakeSession()

    asyncio.run(rest_store(session).assign_driver("drv-1", "req-1"))

    methods = [(c["method"], c["url"].rsplit("/", 1)[-1]) for c in session.calls]
    assert methods == [("PATCH", "drivers"), ("PATCH", "delivery_requests"), ("POST", "tracking_updates")]
    assert session.calls[0]["json"] == {"current_delivery": "req-1"}
    assert session.calls[1]["json"] == {"assigned_driver": "drv-1", "status": "in_progress"}
    tracking = session.calls[2]["json"]
    assert tracking["request_id"] == "req-1"
    assert tracking["status"] == config.DRIVER_ASSIGNED_TRACKING_STATUS
    assert tracking["location"] == config.DRIVER_ASSIGNED_LOCATION


def test_rest_status_update_payload():
    session = FakeSession()
    asyncio.run(rest_store(session).update_delivery_status("req-1", DeliveryStatus.IN_PROGRESS))

    assert session.calls[0]["method"] == "PATCH"
    assert session.calls[0]["params"] == {"id": "eq.req-1"}
    assert session.calls[0]["json"] == {"status": "in_progress"}


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout("slow"),
    requests.exceptions.ConnectionError("down"),
])
def test_rest_transport_errors_become_store_errors(error):
    with pytest.raises(DataStoreError):
        asyncio.run(rest_store(FakeSession(error=error)).list_eligible_drivers())


def test_rest_http_errors_become_store_errors():
    session = FakeSession([FakeResponse({"message": "denied"}, status=401)])
    with pytest.raises(DataStoreError):
        asyncio.run(rest_store(session).update_delivery_status("req-1", DeliveryStatus.IN_PROGRESS))


def test_rest_does_not_offer_conditional_assign():
    store = rest_store(FakeSession())
    assert store.supports_conditional_assign is False
